"""
Structured Logging Configuration

JSON log lines carry the request id and the tenant (organization / user) of
the HTTP request or worker cycle that produced them, plus an optional entity
reference (reservation, episode inventory, trigger, delivery) so a single
booking or notification can be followed across services.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_var: ContextVar[str] = ContextVar('request_id', default='')
user_id_var: ContextVar[str] = ContextVar('user_id', default='')
organization_id_var: ContextVar[str] = ContextVar('organization_id', default='')

CONTEXT_FIELDS = (
    ("request_id", request_id_var),
    ("organization_id", organization_id_var),
    ("user_id", user_id_var),
)

# LogRecord attributes copied into the JSON line when a caller sets them
RECORD_FIELDS = ("entity_type", "entity_id", "duration_ms")

NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "slowapi")


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log aggregator."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for key, var in CONTEXT_FIELDS:
            value = var.get()
            if value:
                entry[key] = value

        for key in RECORD_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        data = getattr(record, "extra_data", None)
        if data:
            entry["data"] = data

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter with one helper per domain event worth following:
    reservation transitions, ledger adjustments, trigger runs and
    notification deliveries.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def event(
        self,
        level: int,
        msg: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **data
    ):
        extra: Dict[str, Any] = {"extra_data": data}
        if entity_type:
            extra["entity_type"] = entity_type
        if entity_id:
            extra["entity_id"] = entity_id
        if duration_ms is not None:
            extra["duration_ms"] = round(duration_ms, 1)
        self.log(level, msg, extra=extra)

    def reservation_status_changed(
        self,
        reservation_id: str,
        reservation_number: str,
        old_status: Optional[str],
        new_status: str,
        reason: Optional[str] = None
    ):
        self.event(
            logging.INFO,
            f"Reservation {reservation_number}: {old_status or 'new'} -> {new_status}",
            entity_type="reservation",
            entity_id=reservation_id,
            old_status=old_status,
            new_status=new_status,
            reason=reason,
        )

    def inventory_adjusted(self, episode_id: str, placement_type: str, available: int, reserved: int, booked: int):
        self.event(
            logging.DEBUG,
            f"Inventory {episode_id}/{placement_type}: "
            f"available={available} reserved={reserved} booked={booked}",
            entity_type="episode_inventory",
            entity_id=episode_id,
            placement_type=placement_type,
            available=available,
            reserved=reserved,
            booked=booked,
        )

    def trigger_executed(self, trigger_id: str, trigger_name: str, event: str, entity_type: str,
                         entity_id: str, status: str):
        self.event(
            logging.INFO if status != "failed" else logging.WARNING,
            f"Trigger {trigger_name} on {event}: {status}",
            entity_type=entity_type,
            entity_id=entity_id,
            trigger_id=trigger_id,
            status=status,
        )

    def notification_delivered(self, delivery_id: str, event_type: str, channel: str, status: str):
        self.event(
            logging.INFO,
            f"Notification {event_type} via {channel}: {status}",
            entity_type="notification_delivery",
            entity_id=delivery_id,
            event_type=event_type,
            channel=channel,
            status=status,
        )


def setup_logging(level: str = "INFO", json_format: bool = True, include_uvicorn: bool = True) -> None:
    """
    Configure application logging.

    Args:
        level: DEBUG / INFO / WARNING / ERROR
        json_format: JSON lines (production) or plain text (local runs)
        include_uvicorn: route uvicorn's loggers through the same handler
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        JSONFormatter() if json_format
        else logging.Formatter('%(asctime)s %(levelname)-7s [%(name)s] %(message)s')
    )

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = [handler]

    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
            uvicorn_logger = logging.getLogger(name)
            uvicorn_logger.handlers = [handler]
            uvicorn_logger.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str, user_id: Optional[str] = None, organization_id: Optional[str] = None):
    """Bind request / tenant ids to the current task; empty values leave the old ones."""
    request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)
    if organization_id:
        organization_id_var.set(organization_id)


def clear_request_context():
    for _, var in CONTEXT_FIELDS:
        var.set('')
