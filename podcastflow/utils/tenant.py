"""
Tenant Context

Every ledger, reservation, workflow and notification call runs for exactly one
organization. Authentication is handled upstream; the gateway forwards the
resolved identity as headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

from .logging_config import set_request_context, request_id_var

ADMIN_ROLES = ("admin", "master")


@dataclass(frozen=True)
class TenantContext:
    organization_id: str
    user_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def get_tenant(
    x_organization_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> TenantContext:
    """FastAPI dependency: resolve the tenant context from forwarded headers."""
    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-Id header is required"
        )

    set_request_context(request_id_var.get(), user_id=x_user_id, organization_id=x_organization_id)
    return TenantContext(
        organization_id=x_organization_id,
        user_id=x_user_id,
        role=(x_user_role or "").lower() or None,
    )


def require_admin(tenant: TenantContext) -> None:
    if not tenant.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin or master role required"
        )
