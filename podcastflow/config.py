from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./podcastflow.db",
        alias="DATABASE_URL"
    )
    sql_echo: bool = Field(default=False, alias="SQL_ECHO")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        alias="ALLOWED_ORIGINS"
    )

    # Used to build actionUrl links in notifications
    app_base_url: str = Field(default="http://localhost:3000", alias="APP_BASE_URL")

    # Rate limiting (slowapi storage URI, e.g. memory:// or redis://host:6379)
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")
    bulk_commit_rate_limit: str = Field(default="30/minute", alias="BULK_COMMIT_RATE_LIMIT")

    # ==============================================
    # Reservations
    # ==============================================
    default_hold_hours: int = Field(default=48, alias="DEFAULT_HOLD_HOURS")
    expiry_sweep_interval: int = Field(default=60, alias="EXPIRY_SWEEP_INTERVAL")  # seconds
    expiry_sweep_batch_size: int = Field(default=100, alias="EXPIRY_SWEEP_BATCH_SIZE")
    bulk_idempotency_ttl_hours: int = Field(default=24, alias="BULK_IDEMPOTENCY_TTL_HOURS")

    # ==============================================
    # Workflow
    # ==============================================
    workflow_settings_cache_ttl: int = Field(default=60, alias="WORKFLOW_SETTINGS_CACHE_TTL")  # seconds

    # ==============================================
    # Notification queue
    # ==============================================
    notification_poll_interval: float = Field(default=1.0, alias="NOTIFICATION_POLL_INTERVAL")  # seconds
    notification_batch_size: int = Field(default=10, alias="NOTIFICATION_BATCH_SIZE")
    notification_max_attempts: int = Field(default=3, alias="NOTIFICATION_MAX_ATTEMPTS")
    notification_retry_delay: int = Field(default=60, alias="NOTIFICATION_RETRY_DELAY")  # seconds
    notification_stale_claim_seconds: int = Field(default=300, alias="NOTIFICATION_STALE_CLAIM_SECONDS")
    immediate_dispatch_max_priority: int = Field(default=3, alias="IMMEDIATE_DISPATCH_MAX_PRIORITY")

    # Outbound webhooks (Slack / organization webhooks / trigger webhooks)
    webhook_timeout_seconds: int = Field(default=10, alias="WEBHOOK_TIMEOUT_SECONDS")
    webhook_max_attempts: int = Field(default=5, alias="WEBHOOK_MAX_ATTEMPTS")

    # Mail gateway - empty URL means log-only delivery
    mail_gateway_url: str = Field(default="", alias="MAIL_GATEWAY_URL")
    mail_gateway_api_key: str = Field(default="", alias="MAIL_GATEWAY_API_KEY")
    mail_from_address: str = Field(default="notifications@podcastflow.pro", alias="MAIL_FROM_ADDRESS")

    # Background loops (run inside FastAPI process)
    workers_enabled: bool = Field(default=True, alias="WORKERS_ENABLED")

    @field_validator('notification_max_attempts', 'webhook_max_attempts')
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max attempts must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)
        return origins or ["http://localhost:3000"]

    @property
    def sqlalchemy_url(self) -> str:
        """Hosted providers hand out postgres:// URLs, SQLAlchemy needs postgresql://"""
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
