"""
Reusable FastAPI dependencies for request scoping.

Dependencies:
  - get_tenant_id   — tenant from the ``X-Tenant-ID`` header (422 if absent)
  - get_editor      — optional operator name from ``X-User`` for audit entries
  - get_payment_service — the shared PaymentService instance
"""

from fastapi import Header, HTTPException, status

from app.services.payment_service import PaymentService, payment_service


async def get_tenant_id(
    x_tenant_id: int = Header(..., description="Tenant the request acts for"),
) -> int:
    """Return the tenant id; every lookup is filtered by it."""
    if x_tenant_id < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid tenant id",
        )
    return x_tenant_id


async def get_editor(
    x_user: str | None = Header(None, max_length=100, description="Operator recording the change"),
) -> str | None:
    """Operator name recorded in edit history, if supplied."""
    return x_user


async def get_payment_service() -> PaymentService:
    return payment_service
