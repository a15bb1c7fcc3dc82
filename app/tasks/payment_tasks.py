"""
Payment Celery tasks — expire stale pending payments.

Runs on a schedule to transition PENDING payments that have exceeded
PENDING_PAYMENT_EXPIRY_HOURS to FAILED. Pending payments never count
toward a balance, so expiring them leaves every settlement unchanged.

Expiry is a settlement write like any other: each affected transaction
is handled under its lock and ``FOR UPDATE`` row lock, and a payment is
only failed if it is still PENDING once those are held.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.config import settings
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

EXPIRY_NOTE = "Expired: not confirmed in time"


async def _expire_stale_pending_payments_async(locks=None) -> dict:
    """
    Async inner function that fails stale PENDING payments.

    Uses session_scope() directly; Celery runs outside the request
    lifecycle, so FastAPI dependencies are not available. One database
    transaction per settlement transaction, committed before its lock
    is released.
    """
    from app.core.exceptions import NotFoundError
    from app.database import session_scope
    from app.models.payment import Payment, PaymentRecordStatus
    from app.services.locks import get_transaction_locks
    from app.services.transaction_service import load_transaction

    locks = locks or get_transaction_locks()
    cutoff = datetime.now(timezone.utc) - timedelta(hours=settings.PENDING_PAYMENT_EXPIRY_HOURS)

    async with session_scope() as session:
        result = await session.execute(
            select(Payment.id, Payment.transaction_id, Payment.tenant_id).where(
                Payment.status == PaymentRecordStatus.PENDING,
                Payment.paid_at < cutoff,
            )
        )
        candidates = result.all()

    # (tenant_id, transaction_id) -> stale payment ids
    by_transaction: dict[tuple, set] = defaultdict(set)
    for payment_id, transaction_id, tenant_id in candidates:
        by_transaction[(tenant_id, transaction_id)].add(payment_id)

    expired_ids = []
    for (tenant_id, transaction_id), payment_ids in by_transaction.items():
        async with locks.hold(transaction_id):
            async with session_scope() as session:
                try:
                    txn = await load_transaction(session, tenant_id, transaction_id, for_update=True)
                except NotFoundError:
                    logger.info("Transaction %s deleted before expiry; skipping", transaction_id)
                    continue

                for payment in txn.payments:
                    if payment.id not in payment_ids:
                        continue
                    if payment.status != PaymentRecordStatus.PENDING:
                        logger.info(
                            "Payment %s became %s before expiry; left as is",
                            payment.id, payment.status.value,
                        )
                        continue
                    payment.transition_to(PaymentRecordStatus.FAILED)
                    payment.notes = f"{payment.notes}\n{EXPIRY_NOTE}" if payment.notes else EXPIRY_NOTE
                    expired_ids.append(str(payment.id))
                    logger.info(
                        "Expired pending payment %s on transaction %s",
                        payment.id, txn.reference,
                    )

    return {
        "expired_count": len(expired_ids),
        "expired_payment_ids": expired_ids,
        "cutoff": cutoff.isoformat(),
    }


@celery_app.task(name="app.tasks.payment_tasks.expire_stale_pending_payments")
def expire_stale_pending_payments():
    """
    Fail PENDING payments older than PENDING_PAYMENT_EXPIRY_HOURS.

    Celery tasks are synchronous, so we run the async function
    in a fresh event loop.
    """
    logger.info("Starting pending payment expiry check")
    loop = asyncio.new_event_loop()
    try:
        result = loop.run_until_complete(_expire_stale_pending_payments_async())
        logger.info(
            "Expiry check completed: %d payments expired",
            result["expired_count"],
        )
        return result
    except Exception:
        logger.exception("Pending payment expiry failed")
        raise
    finally:
        loop.close()
