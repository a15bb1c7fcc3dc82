"""
Remittance service — booking remittances and netting them against each other.

Outgoing remittances are debts; incoming remittances are funds that pay
them down. ``settle_remittances`` nets part of one against the other,
stores a ``RemittanceSettlement`` carrying both rates and the profit, and
moves both sides' running totals. The arithmetic is
``remittance_netting.net_remittances``; this module only persists it.

Settling is a read-modify-write on two rows, so it holds both
remittances' locks (taken in id order) and ``FOR UPDATE`` row locks
for its whole duration, the same way payment writes do.
"""

import logging
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.currency import normalize_code
from app.core.exceptions import NotFoundError, PolicyViolation, ValidationError
from app.models.remittance import (
    OPEN_REMITTANCE_STATUSES,
    Remittance,
    RemittanceDirection,
    RemittanceSettlement,
    RemittanceStatus,
)
from app.services.locks import get_transaction_locks
from app.services.remittance_netting import RemittanceSide, net_remittances
from app.services.transaction_service import commit_or_raise

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def load_remittance(
    db: AsyncSession,
    tenant_id: int,
    remittance_id: UUID,
    *,
    for_update: bool = False,
) -> Remittance:
    """Tenant-scoped fetch; with ``for_update`` the row is locked and refreshed."""
    stmt = select(Remittance).where(
        Remittance.id == remittance_id, Remittance.tenant_id == tenant_id,
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    result = await db.execute(stmt)
    remittance = result.scalar_one_or_none()
    if remittance is None:
        raise NotFoundError(f"Remittance {remittance_id} not found")
    return remittance


def _positive(name: str, value) -> Decimal:
    if value is None:
        raise ValidationError(f"{name} is required")
    value = Decimal(value)
    if value <= ZERO:
        raise ValidationError(f"{name} must be greater than zero")
    return value


def _require_open(remittance: Remittance) -> None:
    if remittance.status not in OPEN_REMITTANCE_STATUSES:
        raise PolicyViolation(
            f"Remittance {remittance.reference} is {remittance.status.value}; "
            "only pending or partial remittances can be settled",
            remaining_balance=remittance.remaining,
            currency=remittance.currency,
        )


def _apply_side(remittance: Remittance, amount: Decimal, remaining: Decimal, status: RemittanceStatus):
    remittance.settled_amount = remittance.settled_amount + amount
    remittance.remaining = remaining
    remittance.status = status
    if status == RemittanceStatus.COMPLETED:
        remittance.completed_at = datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def create_remittance(db: AsyncSession, tenant_id: int, data: dict) -> Remittance:
    """Book an outgoing or incoming remittance in PENDING status."""
    try:
        direction = RemittanceDirection(data.get("direction"))
    except ValueError as exc:
        raise ValidationError(f"Unknown remittance direction: {data.get('direction')}") from exc

    for name in ("sender_name", "recipient_name"):
        if not (data.get(name) or "").strip():
            raise ValidationError(f"{name} is required")

    currency = normalize_code(data.get("currency")) or "IRR"
    base_currency = normalize_code(data.get("base_currency")) or "CAD"
    if currency == base_currency:
        raise ValidationError("Remittance currency and base currency must differ")

    amount = _positive("amount", data.get("amount"))
    remittance = Remittance(
        tenant_id=tenant_id,
        direction=direction,
        sender_name=data["sender_name"].strip(),
        recipient_name=data["recipient_name"].strip(),
        currency=currency,
        base_currency=base_currency,
        amount=amount,
        rate=_positive("rate", data.get("rate")),
        remaining=amount,
        notes=data.get("notes"),
    )
    db.add(remittance)
    await commit_or_raise(db, "remittance creation")

    logger.info(
        "%s remittance %s booked: %s %s at %s %s/%s",
        direction.value.capitalize(), remittance.reference, remittance.amount,
        remittance.currency, remittance.rate, remittance.currency, remittance.base_currency,
    )
    return remittance


async def list_remittances(
    db: AsyncSession,
    tenant_id: int,
    *,
    direction: RemittanceDirection | None = None,
    status: RemittanceStatus | None = None,
    unsettled_only: bool = False,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Remittance], int]:
    """Page through a tenant's remittances, newest first."""
    filters = [Remittance.tenant_id == tenant_id]
    if direction is not None:
        filters.append(Remittance.direction == direction)
    if status is not None:
        filters.append(Remittance.status == status)
    if unsettled_only:
        filters.append(Remittance.status.in_(OPEN_REMITTANCE_STATUSES))

    total = (await db.execute(select(func.count(Remittance.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(Remittance)
        .where(*filters)
        .order_by(Remittance.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def cancel_remittance(
    db: AsyncSession, tenant_id: int, remittance_id: UUID, reason: str | None = None, locks=None,
) -> Remittance:
    """Cancel a remittance nothing has been settled against yet."""
    locks = locks or get_transaction_locks()

    async with locks.hold(remittance_id):
        remittance = await load_remittance(db, tenant_id, remittance_id, for_update=True)
        if remittance.status == RemittanceStatus.CANCELLED:
            raise PolicyViolation(f"Remittance {remittance.reference} is already cancelled")
        if remittance.settled_amount > ZERO:
            raise PolicyViolation(
                f"Cannot cancel remittance {remittance.reference}: "
                "it has been partially or fully settled",
                remaining_balance=remittance.remaining,
                currency=remittance.currency,
            )

        remittance.status = RemittanceStatus.CANCELLED
        remittance.cancelled_at = datetime.now(timezone.utc)
        remittance.cancellation_reason = reason
        await commit_or_raise(db, "remittance cancellation")

    logger.info("Remittance %s cancelled: %s", remittance.reference, reason)
    return remittance


async def settle_remittances(
    db: AsyncSession,
    tenant_id: int,
    outgoing_id: UUID,
    incoming_id: UUID,
    amount,
    *,
    notes: str | None = None,
    settled_by: str | None = None,
    locks=None,
) -> tuple[RemittanceSettlement, Remittance, Remittance]:
    """
    Net *amount* of an outgoing remittance against an incoming one.

    Raises ValidationError for a bad amount, mismatched directions or
    currencies, and PolicyViolation when either side is no longer open.
    """
    amount = _positive("amount", amount)
    if outgoing_id == incoming_id:
        raise ValidationError("A remittance cannot be settled against itself")
    locks = locks or get_transaction_locks()

    async with AsyncExitStack() as stack:
        for remittance_id in sorted([outgoing_id, incoming_id]):
            await stack.enter_async_context(locks.hold(remittance_id))

        loaded = {
            rid: await load_remittance(db, tenant_id, rid, for_update=True)
            for rid in sorted([outgoing_id, incoming_id])
        }
        outgoing, incoming = loaded[outgoing_id], loaded[incoming_id]

        if outgoing.direction != RemittanceDirection.OUTGOING:
            raise ValidationError(f"Remittance {outgoing.reference} is not an outgoing remittance")
        if incoming.direction != RemittanceDirection.INCOMING:
            raise ValidationError(f"Remittance {incoming.reference} is not an incoming remittance")
        if (outgoing.currency, outgoing.base_currency) != (incoming.currency, incoming.base_currency):
            raise ValidationError(
                f"Currency mismatch: {outgoing.reference} is {outgoing.currency}/"
                f"{outgoing.base_currency}, {incoming.reference} is "
                f"{incoming.currency}/{incoming.base_currency}"
            )
        _require_open(outgoing)
        _require_open(incoming)

        result = net_remittances(
            RemittanceSide(outgoing.amount, outgoing.remaining, outgoing.rate),
            RemittanceSide(incoming.amount, incoming.remaining, incoming.rate),
            amount,
            currency=outgoing.currency,
            base_currency=outgoing.base_currency,
        )

        settlement = RemittanceSettlement(
            tenant_id=tenant_id,
            outgoing_id=outgoing.id,
            incoming_id=incoming.id,
            amount=result.amount,
            currency=result.currency,
            base_currency=result.base_currency,
            outgoing_rate=outgoing.rate,
            incoming_rate=incoming.rate,
            cost=result.cost,
            revenue=result.revenue,
            profit=result.profit,
            notes=notes,
            settled_by=settled_by,
        )
        db.add(settlement)

        _apply_side(outgoing, result.amount, result.outgoing_remaining, result.outgoing_status)
        _apply_side(incoming, result.amount, result.incoming_remaining, result.incoming_status)
        outgoing.total_profit = outgoing.total_profit + result.profit

        await commit_or_raise(db, "remittance settlement")

    logger.info(
        "Settled %s %s of %s against %s: profit %s %s (%s now %s, %s now %s)",
        result.amount, result.currency, outgoing.reference, incoming.reference,
        result.profit, result.base_currency,
        outgoing.reference, outgoing.status.value, incoming.reference, incoming.status.value,
    )
    return settlement, outgoing, incoming


async def settlement_history(
    db: AsyncSession, tenant_id: int, remittance_id: UUID,
) -> list[RemittanceSettlement]:
    """Every settlement either side of which is *remittance_id*, newest first."""
    await load_remittance(db, tenant_id, remittance_id)
    result = await db.execute(
        select(RemittanceSettlement)
        .where(
            RemittanceSettlement.tenant_id == tenant_id,
            or_(
                RemittanceSettlement.outgoing_id == remittance_id,
                RemittanceSettlement.incoming_id == remittance_id,
            ),
        )
        .order_by(RemittanceSettlement.created_at.desc())
    )
    return list(result.scalars().all())


async def profit_summary(
    db: AsyncSession,
    tenant_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Total, count and average settlement profit, optionally within [start, end]."""
    filters = [RemittanceSettlement.tenant_id == tenant_id]
    if start is not None:
        filters.append(RemittanceSettlement.created_at >= start)
    if end is not None:
        filters.append(RemittanceSettlement.created_at <= end)

    row = (
        await db.execute(
            select(
                func.count(RemittanceSettlement.id),
                func.coalesce(func.sum(RemittanceSettlement.profit), 0),
            ).where(*filters)
        )
    ).one()
    count, total = row[0], Decimal(str(row[1]))
    return {
        "total_profit": total,
        "total_settlements": count,
        "average_profit": total / count if count else ZERO,
    }
