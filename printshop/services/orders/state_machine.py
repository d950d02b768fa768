"""Order state machine with transition validation and ledger side effects.

The state machine owns the order's status. A transition locks the order
row, validates the move, stamps the lifecycle timestamp, appends a history
row and, on the first paid transition, credits loyalty points, all in one
transaction. The customer notification goes out only after the commit and
never affects the stored state.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.logging import get_logger
from printshop.database.models.order import Order
from printshop.services.ledger.exceptions import DuplicatePointCredit
from printshop.services.ledger.service import LedgerService, PointsCredit
from printshop.services.notifications.service import (
    Notifier,
    NotificationServiceError,
)
from printshop.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from printshop.services.orders.exceptions import (
    OrderNotFoundError,
    StateTransitionError,
)
from printshop.services.orders.repository import OrderRepository

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStateMachine:
    """State machine for order lifecycle transitions.

    Args:
        session: Session whose transaction the transition runs in
        ledger: Ledger used to credit loyalty points
        notifier: Receives the post-commit status notification
        clock: Returns the current timezone-aware instant
    """

    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerService,
        notifier: Notifier,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.repository = OrderRepository(session)
        self.ledger = ledger
        self.notifier = notifier
        self.clock = clock
        self._transition_guards: Dict[OrderStatus, Callable[[Order], bool]] = (
            self._initialize_guards()
        )
        self._side_effects: Dict[OrderStatus, Callable[[Order], None]] = (
            self._initialize_side_effects()
        )

    def _initialize_guards(self) -> Dict[OrderStatus, Callable[[Order], bool]]:
        """Guards keyed by target status; CANCELLED has none."""
        return {
            OrderStatus.CONFIRMED: self._guard_payment_received,
            OrderStatus.IN_PRODUCTION: self._guard_payment_received,
            OrderStatus.READY: self._guard_payment_received,
            OrderStatus.SHIPPED: self._guard_payment_received,
            OrderStatus.DELIVERED: self._guard_payment_received,
        }

    def _initialize_side_effects(self) -> Dict[OrderStatus, Callable[[Order], None]]:
        return {
            OrderStatus.CONFIRMED: self._effect_confirmed,
            OrderStatus.SHIPPED: self._effect_shipped,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
        }

    def validate_transition(self, order: Order, target_status: OrderStatus) -> None:
        """Validate a move from the order's current status.

        Args:
            order: Order to validate
            target_status: Desired status

        Raises:
            StateTransitionError: If the move is backward, leaves a terminal
                state, or fails its guard
        """
        current_status = order.status

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise StateTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                order_id=str(order.id),
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._transition_guards.get(target_status)
        if guard is not None and not guard(order):
            raise StateTransitionError(
                f"Order must be paid before moving to {target_status.value}",
                current_state=current_status,
                target_state=target_status,
                order_id=str(order.id),
                payment_status=order.payment_status.value,
                guard_failed=True,
            )

    async def transition(
        self,
        order_id: UUID,
        new_status: OrderStatus,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Order:
        """Move an order to a new status and commit.

        A call with the order's current status is a no-op: no history row
        and no notification.

        Args:
            order_id: Order to transition
            new_status: Target status
            notes: Note stored on the history row
            actor: Who caused the change

        Returns:
            Updated order

        Raises:
            OrderNotFoundError: If the order does not exist
            StateTransitionError: If the transition is not allowed
        """
        try:
            order = await self.repository.get_order_for_update(order_id)
            if order is None:
                raise OrderNotFoundError("Order not found", order_id=str(order_id))

            changed = await self.apply_transition(order, new_status, notes, actor)
            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.warning(
                "Order transition failed",
                order_id=str(order_id),
                target_status=new_status.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        if changed:
            await self.notify_status_changed(order, new_status)
        return order

    async def apply_transition(
        self,
        order: Order,
        new_status: OrderStatus,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> bool:
        """Apply a transition inside the caller's transaction.

        Does not commit and does not notify.

        Returns:
            False when the order already had the target status
        """
        if order.status == new_status:
            logger.debug(
                "Transition to current status ignored",
                order_id=str(order.id),
                status=new_status.value,
            )
            return False

        self.validate_transition(order, new_status)

        old_status = order.status
        order.status = new_status

        side_effect = self._side_effects.get(new_status)
        if side_effect is not None:
            side_effect(order)

        await self._record_status_change(order, new_status, notes, actor)

        if new_status != OrderStatus.CANCELLED:
            await self.credit_points_if_eligible(order)

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            order_number=order.order_number,
            transition=f"{old_status.value}->{new_status.value}",
            actor=actor,
        )
        return True

    async def credit_points_if_eligible(self, order: Order) -> Optional[PointsCredit]:
        """Credit loyalty points once per paid order.

        Eligible when the order is paid, has an owner and a positive total,
        and has not been credited yet (points_earned == 0).

        Returns:
            The credit, or None when not eligible
        """
        if (
            order.payment_status != PaymentStatus.PAID
            or order.points_earned
            or order.user_id is None
            or order.total_price <= 0
            or order.status == OrderStatus.CANCELLED
        ):
            return None

        try:
            credit = await self.ledger.credit_points(
                order.user_id,
                order.id,
                order.total_price,
                order.is_voucher_purchase,
            )
        except DuplicatePointCredit:
            logger.warning(
                "Points already credited for order",
                order_id=str(order.id),
            )
            return None

        order.points_earned = credit.points_earned
        return credit

    async def notify_status_changed(self, order: Order, status: OrderStatus) -> None:
        """Send the status notification; failures are logged only."""
        try:
            await self.notifier.notify_order_status_changed(order, status)
        except NotificationServiceError as e:
            logger.warning(
                "Status notification failed",
                order_id=str(order.id),
                status=status.value,
                error=str(e),
            )

    async def _record_status_change(
        self,
        order: Order,
        new_status: OrderStatus,
        notes: Optional[str],
        actor: Optional[str],
    ) -> None:
        await self.repository.add_history(order.id, new_status, notes, actor)

    # Transition Guards

    def _guard_payment_received(self, order: Order) -> bool:
        return order.payment_status == PaymentStatus.PAID

    # Side Effects

    def _effect_confirmed(self, order: Order) -> None:
        order.confirmed_at = self.clock()

    def _effect_shipped(self, order: Order) -> None:
        order.shipped_at = self.clock()

    def _effect_delivered(self, order: Order) -> None:
        order.delivered_at = self.clock()
        if order.shipped_at is None:
            order.shipped_at = order.delivered_at

    def _effect_cancelled(self, order: Order) -> None:
        order.cancelled_at = self.clock()


def get_order_state_machine(
    session: AsyncSession,
    notifier: Notifier,
    ledger: Optional[LedgerService] = None,
) -> OrderStateMachine:
    """Build a state machine with a ledger bound to the same session."""
    return OrderStateMachine(session, ledger or LedgerService(session), notifier)
