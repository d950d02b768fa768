"""
Scheduled voucher expiry job.

Expired vouchers are deactivated in bulk and the owners of vouchers that
expire in the warning window are reminded. The job is exposed both as a
Celery beat task and through the cron API.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from celery import Task, shared_task
from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.celery_app import LoggedTask
from printshop.core.config import get_settings
from printshop.core.logging import get_logger
from printshop.database.connection import close_database_connections, get_session
from printshop.services.ledger.service import LedgerService
from printshop.services.notifications.service import (
    NotificationServiceError,
    Notifier,
    get_notifier,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class VoucherExpiryResult:
    deactivated: int
    expiring: int
    notified: int

    def as_dict(self) -> dict[str, int]:
        return {
            "deactivated": self.deactivated,
            "expiring": self.expiring,
            "notified": self.notified,
        }


async def check_voucher_expiration(
    session: AsyncSession,
    notifier: Notifier,
    days_ahead: Optional[int] = None,
    ledger: Optional[LedgerService] = None,
) -> VoucherExpiryResult:
    """
    Deactivate expired vouchers and remind owners of expiring ones.

    Args:
        session: Database session
        notifier: Outbound notification channel
        days_ahead: Warning window; defaults to the configured value
        ledger: Ledger service bound to session

    Returns:
        Counts of deactivated, expiring and notified vouchers
    """
    if days_ahead is None:
        days_ahead = get_settings().voucher_expiry_warning_days
    ledger = ledger or LedgerService(session)

    try:
        deactivated = await ledger.deactivate_expired_vouchers()
        expiring = await ledger.find_expiring_vouchers(days_ahead)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    notified = 0
    for voucher in expiring:
        if voucher.user_id is None:
            continue
        try:
            await notifier.notify_voucher_expiring(voucher, days_ahead)
            notified += 1
        except NotificationServiceError as e:
            logger.warning(
                "Voucher expiry reminder not sent",
                voucher_id=str(voucher.id),
                error=str(e),
            )

    result = VoucherExpiryResult(
        deactivated=deactivated,
        expiring=len(expiring),
        notified=notified,
    )
    logger.info("Voucher expiration check finished", **result.as_dict())
    return result


@shared_task(
    bind=True,
    base=LoggedTask,
    name="vouchers.check_expiration",
    time_limit=600,
    soft_time_limit=540,
)
def check_voucher_expiration_task(self: Task) -> dict[str, Any]:
    """Celery entry point for the daily voucher expiry check."""
    logger.info("Processing voucher expiration task", task_id=self.request.id)

    async def run() -> dict[str, Any]:
        try:
            async with get_session() as session:
                result = await check_voucher_expiration(session, get_notifier())
                return result.as_dict()
        finally:
            await close_database_connections()

    return asyncio.run(run())
