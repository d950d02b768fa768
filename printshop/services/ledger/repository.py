"""
Voucher and loyalty data access.

Every read that precedes a balance write takes a row lock (SELECT ... FOR
UPDATE) so concurrent orders from the same customer serialize on the
voucher and loyalty account rows. The repository never commits; the
service that owns the transaction does.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.logging import get_logger
from printshop.database.models.loyalty import LoyaltyAccount, PointTransaction
from printshop.database.models.voucher import Voucher
from printshop.services.ledger.enums import (
    LoyaltyTier,
    PointTransactionType,
    VoucherType,
)
from printshop.services.ledger.exceptions import DuplicatePointCredit, LedgerError

logger = get_logger(__name__)


class LedgerRepository:
    """Data access for vouchers, loyalty accounts and point transactions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Vouchers
    # ------------------------------------------------------------------

    @staticmethod
    def debitable_vouchers_statement(user_id: uuid.UUID, now: datetime) -> Select:
        """Row-locking select of the user's debitable meter vouchers, oldest first."""
        return (
            select(Voucher)
            .where(
                Voucher.user_id == user_id,
                Voucher.type == VoucherType.METERS,
                Voucher.is_active.is_(True),
                Voucher.is_template.is_(False),
                Voucher.remaining_meters > 0,
                or_(Voucher.expires_at.is_(None), Voucher.expires_at > now),
            )
            .order_by(Voucher.created_at.asc(), Voucher.id.asc())
            .with_for_update()
        )

    async def lock_debitable_vouchers(
        self,
        user_id: uuid.UUID,
        now: datetime,
    ) -> list[Voucher]:
        """
        Lock the user's meter vouchers that can still be debited, oldest first.

        Args:
            user_id: Voucher owner
            now: Reference instant for expiry

        Returns:
            Locked vouchers ordered by (created_at, id)

        Raises:
            LedgerError: If the query fails
        """
        stmt = self.debitable_vouchers_statement(user_id, now)
        try:
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "Failed to lock vouchers",
                user_id=str(user_id),
                error=str(e),
            )
            raise LedgerError(
                "Failed to load vouchers",
                user_id=str(user_id),
            ) from e

    async def list_active_meter_vouchers(
        self,
        user_id: uuid.UUID,
        now: datetime,
    ) -> list[Voucher]:
        """Active, unexpired meter vouchers for display, oldest first."""
        stmt = (
            select(Voucher)
            .where(
                Voucher.user_id == user_id,
                Voucher.type == VoucherType.METERS,
                Voucher.is_active.is_(True),
                Voucher.is_template.is_(False),
                or_(Voucher.expires_at.is_(None), Voucher.expires_at > now),
            )
            .order_by(Voucher.created_at.asc(), Voucher.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_template(self, template_id: uuid.UUID) -> Optional[Voucher]:
        stmt = select(Voucher).where(
            Voucher.id == template_id,
            Voucher.is_template.is_(True),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def vouchers_for_order(self, order_id: uuid.UUID) -> list[Voucher]:
        """Vouchers issued by a purchase order."""
        stmt = (
            select(Voucher)
            .where(Voucher.order_id == order_id)
            .order_by(Voucher.created_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def add_vouchers(self, vouchers: Sequence[Voucher]) -> list[Voucher]:
        """
        Persist newly issued vouchers.

        Raises:
            LedgerError: If a code collides or the insert fails
        """
        try:
            self.session.add_all(list(vouchers))
            await self.session.flush()
            return list(vouchers)
        except IntegrityError as e:
            logger.error("Voucher insert violated a constraint", error=str(e))
            raise LedgerError(
                "Failed to issue vouchers",
                count=len(vouchers),
            ) from e

    async def find_vouchers_expiring_between(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Voucher]:
        """Active, user-owned vouchers with start <= expires_at < end."""
        stmt = (
            select(Voucher)
            .where(
                Voucher.is_active.is_(True),
                Voucher.is_template.is_(False),
                Voucher.user_id.is_not(None),
                Voucher.expires_at >= start,
                Voucher.expires_at < end,
            )
            .order_by(Voucher.expires_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def deactivate_expired(self, now: datetime) -> int:
        """
        Mark every active voucher whose expiry has passed as inactive.

        Returns:
            Number of vouchers deactivated
        """
        stmt = (
            update(Voucher)
            .where(
                Voucher.is_active.is_(True),
                Voucher.is_template.is_(False),
                Voucher.expires_at.is_not(None),
                Voucher.expires_at <= now,
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error("Failed to deactivate expired vouchers", error=str(e))
            raise LedgerError("Failed to deactivate expired vouchers") from e

    # ------------------------------------------------------------------
    # Loyalty
    # ------------------------------------------------------------------

    async def get_account(self, user_id: uuid.UUID) -> Optional[LoyaltyAccount]:
        stmt = select(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_account_for_update(
        self,
        user_id: uuid.UUID,
    ) -> Optional[LoyaltyAccount]:
        stmt = (
            select(LoyaltyAccount)
            .where(LoyaltyAccount.user_id == user_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_account_for_update(
        self,
        user_id: uuid.UUID,
    ) -> LoyaltyAccount:
        """
        Lock the user's loyalty account, creating it on first use.

        A concurrent creator wins the unique(user_id) race; the loser
        re-reads the row under lock.
        """
        account = await self.get_account_for_update(user_id)
        if account is not None:
            return account

        account = LoyaltyAccount(
            user_id=user_id,
            available_points=0,
            total_points=0,
            lifetime_points=0,
            total_spent=Decimal("0.00"),
            tier=LoyaltyTier.BRONZE,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(account)
            logger.info("Loyalty account created", user_id=str(user_id))
            return account
        except IntegrityError:
            logger.info("Loyalty account created concurrently", user_id=str(user_id))
            existing = await self.get_account_for_update(user_id)
            if existing is None:
                raise LedgerError(
                    "Loyalty account could not be created",
                    user_id=str(user_id),
                )
            return existing

    async def add_point_transaction(
        self,
        account: LoyaltyAccount,
        points: int,
        transaction_type: PointTransactionType,
        order_id: Optional[uuid.UUID],
        description: str,
    ) -> PointTransaction:
        """
        Append a point transaction inside a savepoint.

        Raises:
            DuplicatePointCredit: If the order already has a transaction of this type
        """
        transaction = PointTransaction(
            account_id=account.id,
            points=points,
            type=transaction_type,
            order_id=order_id,
            description=description,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(transaction)
        except IntegrityError as e:
            logger.warning(
                "Duplicate point transaction rejected",
                account_id=str(account.id),
                order_id=str(order_id) if order_id else None,
                type=transaction_type.value,
            )
            raise DuplicatePointCredit(
                f"Points already {transaction_type.value} for this order",
                order_id=str(order_id) if order_id else None,
                type=transaction_type.value,
            ) from e
        return transaction

    async def sum_points(self, account_id: uuid.UUID) -> tuple[int, int, int]:
        """
        Aggregate an account's transactions.

        Returns:
            (net sum, earned sum, redeemed absolute sum)
        """
        earned = func.coalesce(
            func.sum(PointTransaction.points).filter(
                PointTransaction.type == PointTransactionType.EARNED
            ),
            0,
        )
        redeemed = func.coalesce(
            func.sum(PointTransaction.points).filter(
                PointTransaction.type == PointTransactionType.REDEEMED
            ),
            0,
        )
        stmt = select(earned, redeemed).where(PointTransaction.account_id == account_id)
        result = await self.session.execute(stmt)
        earned_sum, redeemed_sum = result.one()
        earned_sum = int(earned_sum)
        redeemed_sum = int(redeemed_sum)
        return earned_sum + redeemed_sum, earned_sum, -redeemed_sum
