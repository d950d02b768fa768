"""
Prepaid balance and loyalty ledger.

LedgerService owns every write to voucher balances and loyalty accounts.
It runs inside the caller's transaction and never commits: an order
operation that debits vouchers or credits points commits or rolls back the
ledger mutation together with its own writes.

FIFO debit: a customer's meter vouchers are consumed oldest first. Meters
and free shipments are deducted independently, so one voucher can run out
of shipments before it runs out of meters. A meter shortfall aborts the
whole debit before any row changes; a shipment shortfall is only logged.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.logging import get_logger
from printshop.database.models.loyalty import LoyaltyAccount
from printshop.database.models.order import Order
from printshop.database.models.voucher import Voucher
from printshop.services.ledger import rules
from printshop.services.ledger.enums import (
    LoyaltyTier,
    PointTransactionType,
    VoucherType,
)
from printshop.services.ledger.exceptions import (
    InsufficientBalance,
    InvalidRedemptionAmount,
    LedgerError,
    VoucherNotFoundError,
)
from printshop.services.ledger.repository import LedgerRepository

logger = get_logger(__name__)

ZERO_METERS = Decimal("0.00")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VoucherDebit:
    """Amounts taken from a single voucher."""

    voucher_id: uuid.UUID
    code: str
    meters: Decimal
    shipments: int


@dataclass
class VoucherDebitResult:
    """Outcome of a FIFO voucher debit."""

    consumed_voucher_ids: list[uuid.UUID] = field(default_factory=list)
    debits: list[VoucherDebit] = field(default_factory=list)
    meters_debited: Decimal = ZERO_METERS
    shipments_debited: int = 0
    meter_shortfall: Decimal = ZERO_METERS
    shipment_shortfall: int = 0

    @property
    def remaining_shortfall(self) -> dict[str, Any]:
        return {
            "meters": self.meter_shortfall,
            "shipments": self.shipment_shortfall,
        }

    @property
    def first_voucher_id(self) -> Optional[uuid.UUID]:
        return self.consumed_voucher_ids[0] if self.consumed_voucher_ids else None


@dataclass(frozen=True)
class PointsCredit:
    points_earned: int
    new_tier: LoyaltyTier
    available_points: int


@dataclass(frozen=True)
class PointsRedemption:
    points_used: int
    discount_amount: Decimal
    available_points: int


@dataclass(frozen=True)
class ReconciliationReport:
    """Comparison of an account balance with its transaction log."""

    user_id: uuid.UUID
    available_points: int
    transactions_sum: int
    earned_sum: int
    redeemed_sum: int

    @property
    def is_consistent(self) -> bool:
        return self.transactions_sum == self.available_points

    @property
    def difference(self) -> int:
        return self.available_points - self.transactions_sum


@dataclass(frozen=True)
class AvailableMeters:
    total_meters: Decimal
    total_shipments: int
    vouchers: list[Voucher]


class LedgerService:
    """
    Balance-affecting operations on vouchers and loyalty points.

    Args:
        session: Session whose transaction the ledger joins
        clock: Returns the current timezone-aware instant
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.repository = LedgerRepository(session)
        self.clock = clock

    # ------------------------------------------------------------------
    # Vouchers
    # ------------------------------------------------------------------

    async def debit_vouchers(
        self,
        user_id: uuid.UUID,
        meters_needed: Decimal,
        shipments_needed: int = 1,
    ) -> VoucherDebitResult:
        """
        Debit meters and free shipments from the user's vouchers, oldest first.

        The selected voucher rows stay locked until the caller's transaction
        ends, so two checkouts by the same user cannot both spend the same
        balance.

        Args:
            user_id: Voucher owner
            meters_needed: Meters to debit, must be positive
            shipments_needed: Free shipments to debit

        Returns:
            Per-voucher debits and any shipment shortfall

        Raises:
            LedgerError: If the requested amounts are invalid
            InsufficientBalance: If the vouchers cannot cover the meters
        """
        meters_needed = Decimal(str(meters_needed))
        if meters_needed <= 0:
            raise LedgerError(
                "Meters to debit must be positive",
                meters_needed=str(meters_needed),
            )
        if shipments_needed < 0:
            raise LedgerError(
                "Shipments to debit cannot be negative",
                shipments_needed=shipments_needed,
            )

        vouchers = await self.repository.lock_debitable_vouchers(user_id, self.clock())

        available_meters = sum((v.remaining_meters for v in vouchers), ZERO_METERS)
        if available_meters < meters_needed:
            logger.warning(
                "Insufficient voucher meters",
                user_id=str(user_id),
                meters_needed=str(meters_needed),
                meters_available=str(available_meters),
            )
            raise InsufficientBalance(
                f"Insufficient meters in vouchers: {meters_needed} needed, "
                f"{available_meters} available",
                resource="meters",
                requested=meters_needed,
                available=available_meters,
                user_id=str(user_id),
            )

        # Plan in memory, then apply; nothing is written on a shortfall
        plan: list[tuple[Voucher, Decimal, int]] = []
        meters_left = meters_needed
        shipments_left = shipments_needed
        for voucher in vouchers:
            if meters_left <= 0 and shipments_left <= 0:
                break
            take_meters = min(meters_left, voucher.remaining_meters)
            take_shipments = min(shipments_left, voucher.remaining_shipments)
            if take_meters <= 0 and take_shipments <= 0:
                continue
            plan.append((voucher, take_meters, take_shipments))
            meters_left -= take_meters
            shipments_left -= take_shipments

        result = VoucherDebitResult()
        for voucher, take_meters, take_shipments in plan:
            voucher.remaining_meters -= take_meters
            voucher.remaining_shipments -= take_shipments
            voucher.usage_count = (voucher.usage_count or 0) + 1
            voucher.refresh_active()

            result.consumed_voucher_ids.append(voucher.id)
            result.debits.append(
                VoucherDebit(
                    voucher_id=voucher.id,
                    code=voucher.code,
                    meters=take_meters,
                    shipments=take_shipments,
                )
            )
            result.meters_debited += take_meters
            result.shipments_debited += take_shipments

        result.meter_shortfall = max(meters_left, ZERO_METERS)
        result.shipment_shortfall = max(shipments_left, 0)

        await self.session.flush()

        if result.shipment_shortfall:
            logger.warning(
                "Vouchers do not cover free shipments",
                user_id=str(user_id),
                shipments_needed=shipments_needed,
                shipment_shortfall=result.shipment_shortfall,
            )

        logger.info(
            "Vouchers debited",
            user_id=str(user_id),
            meters_debited=str(result.meters_debited),
            shipments_debited=result.shipments_debited,
            vouchers=[str(v) for v in result.consumed_voucher_ids],
        )
        return result

    async def issue_purchased_vouchers(self, order: Order) -> list[Voucher]:
        """
        Issue the vouchers bought by a paid order.

        Each voucher-purchase item clones its template once per unit of
        quantity. Issuing twice for the same order returns the vouchers
        issued the first time.

        Args:
            order: Paid order with items loaded

        Returns:
            Vouchers linked to the order

        Raises:
            LedgerError: If the order has no owner
            VoucherNotFoundError: If a referenced template does not exist
        """
        purchase_items = [item for item in order.items if item.voucher_template_id]
        if not purchase_items:
            return []

        existing = await self.repository.vouchers_for_order(order.id)
        if existing:
            logger.info(
                "Vouchers already issued for order",
                order_id=str(order.id),
                count=len(existing),
            )
            return existing

        if order.user_id is None:
            raise LedgerError(
                "Voucher purchases require a registered customer",
                order_id=str(order.id),
            )

        now = self.clock()
        issued: list[Voucher] = []
        for item in purchase_items:
            template = await self.repository.get_template(item.voucher_template_id)
            if template is None:
                raise VoucherNotFoundError(
                    "Voucher template not found",
                    template_id=str(item.voucher_template_id),
                    order_id=str(order.id),
                )

            units = max(int(item.quantity), 1)
            for _ in range(units):
                sequence = len(issued) + 1
                expires_at = (
                    now + timedelta(days=template.validity_days)
                    if template.validity_days
                    else template.expires_at
                )
                issued.append(
                    Voucher(
                        code=f"{order.order_number}-{sequence:02d}",
                        name=template.name,
                        type=VoucherType.METERS,
                        initial_meters=template.initial_meters,
                        remaining_meters=template.initial_meters,
                        initial_shipments=template.initial_shipments,
                        remaining_shipments=template.initial_shipments,
                        price=item.unit_price,
                        is_active=True,
                        is_template=False,
                        expires_at=expires_at,
                        user_id=order.user_id,
                        order_id=order.id,
                        template_id=template.id,
                        usage_count=0,
                    )
                )

        await self.repository.add_vouchers(issued)

        logger.info(
            "Purchased vouchers issued",
            order_id=str(order.id),
            user_id=str(order.user_id),
            count=len(issued),
        )
        return issued

    async def get_available_meters(self, user_id: uuid.UUID) -> AvailableMeters:
        vouchers = await self.repository.list_active_meter_vouchers(user_id, self.clock())
        return AvailableMeters(
            total_meters=sum((v.remaining_meters for v in vouchers), ZERO_METERS),
            total_shipments=sum(v.remaining_shipments for v in vouchers),
            vouchers=vouchers,
        )

    async def find_expiring_vouchers(self, days_ahead: int = 7) -> list[Voucher]:
        """Vouchers expiring during the day that starts days_ahead from now."""
        start = self.clock() + timedelta(days=days_ahead)
        return await self.repository.find_vouchers_expiring_between(
            start, start + timedelta(days=1)
        )

    async def deactivate_expired_vouchers(self) -> int:
        count = await self.repository.deactivate_expired(self.clock())
        if count:
            logger.info("Expired vouchers deactivated", count=count)
        return count

    # ------------------------------------------------------------------
    # Loyalty
    # ------------------------------------------------------------------

    async def credit_points(
        self,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        amount_spent: Decimal,
        is_voucher_purchase: bool = False,
    ) -> PointsCredit:
        """
        Credit loyalty points for a paid order.

        Callers check order.points_earned == 0 first. The unique
        (order_id, type) constraint rejects a second credit that slips past
        that check, leaving the account untouched.

        Args:
            user_id: Customer
            order_id: Paid order
            amount_spent: Amount paid for the order
            is_voucher_purchase: Apply the voucher purchase bonus

        Returns:
            Points earned, the resulting tier and the new balance

        Raises:
            DuplicatePointCredit: If points were already credited for the order
        """
        amount = Decimal(str(amount_spent))
        account = await self.repository.get_or_create_account_for_update(user_id)

        points = rules.calculate_points_earned(amount, account.tier, is_voucher_purchase)

        # Nothing to record; the order's points_earned guard stays at 0
        if points == 0:
            logger.info(
                "Amount earns no loyalty points",
                user_id=str(user_id),
                order_id=str(order_id),
                amount=str(amount),
            )
            return PointsCredit(
                points_earned=0,
                new_tier=account.tier,
                available_points=account.available_points,
            )

        description = f"Points earned for order {order_id} ({amount:.2f})"
        if is_voucher_purchase:
            description += " - voucher bonus +25%"
        await self.repository.add_point_transaction(
            account,
            points,
            PointTransactionType.EARNED,
            order_id,
            description,
        )

        account.available_points += points
        account.total_points += points
        account.lifetime_points += points
        account.total_spent = (account.total_spent or Decimal("0.00")) + amount
        previous_tier = account.tier
        account.tier = rules.tier_for_spend(account.total_spent)

        await self.session.flush()

        logger.info(
            "Loyalty points credited",
            user_id=str(user_id),
            order_id=str(order_id),
            points_earned=points,
            tier=account.tier.value,
            tier_changed=account.tier != previous_tier,
        )
        return PointsCredit(
            points_earned=points,
            new_tier=account.tier,
            available_points=account.available_points,
        )

    async def redeem_points(
        self,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        points_to_use: int,
        order_subtotal: Decimal,
    ) -> PointsRedemption:
        """
        Spend loyalty points on an order.

        Raises:
            InvalidRedemptionAmount: If the amount breaks the redemption rules
            InsufficientBalance: If the account holds fewer points
            DuplicatePointCredit: If points were already redeemed on the order
        """
        account = await self.repository.get_account_for_update(user_id)
        available = account.available_points if account else 0
        rules.validate_redemption(points_to_use, available, order_subtotal)

        if account is None:
            raise InvalidRedemptionAmount(
                "Customer has no loyalty account",
                user_id=str(user_id),
            )

        discount = rules.points_to_currency(points_to_use)
        await self.repository.add_point_transaction(
            account,
            -points_to_use,
            PointTransactionType.REDEEMED,
            order_id,
            f"Points redeemed on order {order_id} ({discount:.2f})",
        )
        account.available_points -= points_to_use
        await self.session.flush()

        logger.info(
            "Loyalty points redeemed",
            user_id=str(user_id),
            order_id=str(order_id),
            points_used=points_to_use,
            discount=str(discount),
        )
        return PointsRedemption(
            points_used=points_to_use,
            discount_amount=discount,
            available_points=account.available_points,
        )

    async def reconcile_account(self, user_id: uuid.UUID) -> ReconciliationReport:
        account = await self.repository.get_account(user_id)
        if account is None:
            return ReconciliationReport(
                user_id=user_id,
                available_points=0,
                transactions_sum=0,
                earned_sum=0,
                redeemed_sum=0,
            )

        net, earned, redeemed = await self.repository.sum_points(account.id)
        report = ReconciliationReport(
            user_id=user_id,
            available_points=account.available_points,
            transactions_sum=net,
            earned_sum=earned,
            redeemed_sum=redeemed,
        )
        if not report.is_consistent:
            logger.error(
                "Loyalty ledger out of balance",
                user_id=str(user_id),
                available_points=account.available_points,
                transactions_sum=net,
            )
        return report

    async def get_loyalty_summary(
        self,
        user_id: uuid.UUID,
        subtotal: Optional[Decimal] = None,
    ) -> dict[str, Any]:
        """
        Loyalty status for display, with an optional redemption quote.

        Args:
            user_id: Customer
            subtotal: Cart subtotal to quote a redemption against

        Returns:
            Summary dict
        """
        account: Optional[LoyaltyAccount] = await self.repository.get_account(user_id)
        available = account.available_points if account else 0
        total_spent = account.total_spent if account else Decimal("0.00")
        tier = rules.tier_for_spend(total_spent)
        next_tier, spend_needed = rules.next_tier_info(total_spent)

        summary: dict[str, Any] = {
            "user_id": user_id,
            "tier": tier,
            "available_points": available,
            "total_points": account.total_points if account else 0,
            "lifetime_points": account.lifetime_points if account else 0,
            "total_spent": total_spent,
            "multiplier": rules.TIER_MULTIPLIERS[tier],
            "points_value": rules.points_to_currency(available),
            "next_tier": next_tier,
            "spend_to_next_tier": spend_needed,
        }

        if subtotal is not None:
            max_points = rules.max_redeemable_points(available, subtotal)
            summary["redemption"] = {
                "max_points": max_points,
                "max_discount": rules.points_to_currency(max_points),
            }
        return summary
