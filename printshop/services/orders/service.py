"""
Order service orchestrating checkout, payment and status changes.

Every public write runs in one database transaction together with its
ledger side effects (voucher debit, point redemption and credit, voucher
issuance) and commits once. Notifications and invoice requests are sent
after the commit and only ever logged on failure.
"""

import secrets
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.config import get_settings
from printshop.core.logging import get_logger
from printshop.database.models.order import Order, OrderItem, OrderStatusHistory
from printshop.services.invoices.service import InvoiceService, InvoiceServiceError
from printshop.services.ledger.service import LedgerService
from printshop.services.notifications.service import (
    NotificationServiceError,
    Notifier,
)
from printshop.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductType,
    validate_payment_status_transition,
)
from printshop.services.orders.exceptions import (
    OrderNotFoundError,
    OrderValidationError,
    PaymentTransitionError,
)
from printshop.services.orders.pricing import item_extras_price
from printshop.services.orders.repository import OrderRepository
from printshop.services.orders.state_machine import OrderStateMachine

logger = get_logger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def _money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class OrderService:
    """
    Order service for checkout, payment signals and status updates.

    Attributes:
        repository: Order repository for data access
        ledger: Voucher and loyalty ledger sharing the session
        state_machine: Status transitions
        notifier: Customer and operator notifications
        invoice_service: Invoice generation requests
    """

    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerService,
        notifier: Notifier,
        invoice_service: InvoiceService,
        state_machine: Optional[OrderStateMachine] = None,
        tax_rate: Optional[Decimal] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.repository = OrderRepository(session)
        self.ledger = ledger
        self.notifier = notifier
        self.invoice_service = invoice_service
        self.state_machine = state_machine or OrderStateMachine(
            session, ledger, notifier, clock=clock
        )
        self.tax_rate = tax_rate if tax_rate is not None else get_settings().tax_rate
        self.clock = clock

    async def create_order(
        self,
        items: Sequence[dict[str, Any]],
        customer_name: str,
        customer_email: str,
        user_id: Optional[uuid.UUID] = None,
        customer_phone: Optional[str] = None,
        shipping_address: Optional[dict[str, Any]] = None,
        shipping_cost: Decimal = ZERO,
        discount_amount: Decimal = ZERO,
        points_to_use: int = 0,
        pay_with_vouchers: bool = False,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Order:
        """
        Create an order from checkout data.

        Regular orders start PENDING with payment PENDING. Orders paid with
        meter vouchers debit the vouchers in the same transaction and start
        CONFIRMED/PAID; if the vouchers fall short nothing is stored.

        Args:
            items: Item dicts with product_type, product_name, quantity,
                unit_price and customizations
            customer_name: Customer full name
            customer_email: Contact email
            user_id: Registered customer, None for guest checkout
            customer_phone: Contact phone
            shipping_address: Recipient address snapshot
            shipping_cost: Shipping charge
            discount_amount: Discount from promotional codes
            points_to_use: Loyalty points to redeem
            pay_with_vouchers: Cover meter items and shipping with vouchers
            notes: Customer notes
            actor: Who placed the order

        Returns:
            Created order

        Raises:
            OrderValidationError: If the order data is invalid
            InsufficientBalance: If vouchers or points cannot cover the order
            InvalidRedemptionAmount: If the points redemption is not allowed
        """
        self._validate_order_data(items, user_id, points_to_use, pay_with_vouchers)

        is_voucher_purchase = any(
            (item.get("customizations") or {}).get("kind") == "voucher_purchase"
            for item in items
        )

        order_items = [self._build_item(item, pay_with_vouchers) for item in items]
        subtotal = _money(sum((item.subtotal for item in order_items), ZERO))
        shipping = ZERO if pay_with_vouchers else _money(shipping_cost)
        discount = _money(discount_amount)

        if discount > subtotal:
            raise OrderValidationError(
                "Discount exceeds order subtotal",
                discount=str(discount),
                subtotal=str(subtotal),
            )

        order_number = await self._generate_order_number(is_voucher_purchase)
        order = Order(
            id=uuid.uuid4(),
            order_number=order_number,
            user_id=user_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            subtotal=subtotal,
            shipping_cost=shipping,
            discount_amount=discount,
            points_discount=ZERO,
            tax_amount=ZERO,
            total_price=ZERO,
            points_used=0,
            points_earned=0,
            is_voucher_purchase=is_voucher_purchase,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            shipping_address=shipping_address,
            notes=notes,
            items=order_items,
        )

        try:
            await self.repository.add_order(order)
            await self.repository.add_history(
                order.id, OrderStatus.PENDING, "Order created", actor
            )

            if points_to_use:
                redemption = await self.ledger.redeem_points(
                    user_id, order.id, points_to_use, subtotal
                )
                order.points_used = redemption.points_used
                order.points_discount = min(
                    redemption.discount_amount, subtotal - discount
                )

            self._apply_totals(order)

            if pay_with_vouchers:
                await self._pay_with_vouchers(order, actor)

            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.warning(
                "Order creation aborted",
                order_number=order_number,
                user_id=str(user_id) if user_id else None,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            status=order.status.value,
            payment_status=order.payment_status.value,
            total_price=str(order.total_price),
        )

        await self._notify_admin(order)
        if order.status == OrderStatus.CONFIRMED:
            await self.state_machine.notify_status_changed(order, order.status)
        return order

    async def confirm_payment(
        self,
        order_id: uuid.UUID,
        amount_paid: Optional[Decimal] = None,
        payment_reference: Optional[str] = None,
        actor: Optional[str] = "payment-gateway",
    ) -> Order:
        """
        Handle the payment gateway's "paid" signal.

        Idempotent: an order that is already paid is returned unchanged.

        Args:
            order_id: Paid order
            amount_paid: Amount reported by the gateway
            payment_reference: Gateway session or charge reference
            actor: Recorded on history rows

        Returns:
            Updated order

        Raises:
            OrderNotFoundError: If the order does not exist
            PaymentTransitionError: If the order's payment cannot become PAID
            StateTransitionError: If the order cannot be confirmed
        """
        invoice_due = False
        status_changed = False

        try:
            order = await self.repository.get_order_for_update(order_id)
            if order is None:
                raise OrderNotFoundError("Order not found", order_id=str(order_id))

            if order.payment_status == PaymentStatus.PAID:
                await self.session.commit()
                logger.info(
                    "Payment already confirmed",
                    order_id=str(order_id),
                    order_number=order.order_number,
                )
                return order

            self._set_payment_status(order, PaymentStatus.PAID)
            order.paid_at = self.clock()
            order.payment_method = order.payment_method or PaymentMethod.CARD
            if payment_reference:
                order.payment_reference = payment_reference

            if amount_paid is not None and _money(amount_paid) != order.total_price:
                logger.warning(
                    "Paid amount differs from order total",
                    order_id=str(order_id),
                    amount_paid=str(amount_paid),
                    total_price=str(order.total_price),
                )

            await self.ledger.issue_purchased_vouchers(order)

            if order.status == OrderStatus.PENDING:
                status_changed = await self.state_machine.apply_transition(
                    order, OrderStatus.CONFIRMED, "Payment confirmed", actor
                )
            else:
                await self.state_machine.credit_points_if_eligible(order)

            if order.total_price > 0 and order.invoice_requested_at is None:
                order.invoice_requested_at = self.clock()
                invoice_due = True

            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.warning(
                "Payment confirmation failed",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "Payment confirmed",
            order_id=str(order.id),
            order_number=order.order_number,
            points_earned=order.points_earned,
        )

        if status_changed:
            await self.state_machine.notify_status_changed(order, order.status)
        await self._notify_admin(order)
        if invoice_due:
            await self._request_invoice(order)
        return order

    async def mark_payment_failed(
        self,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
        actor: Optional[str] = "payment-gateway",
    ) -> Order:
        """
        Record a failed or expired payment.

        The order status is unchanged; a history note records the failure.

        Raises:
            OrderNotFoundError: If the order does not exist
            PaymentTransitionError: If the payment is already settled
        """
        try:
            order = await self.repository.get_order_for_update(order_id)
            if order is None:
                raise OrderNotFoundError("Order not found", order_id=str(order_id))

            if order.payment_status == PaymentStatus.FAILED:
                await self.session.commit()
                return order

            self._set_payment_status(order, PaymentStatus.FAILED)
            await self.repository.add_history(
                order.id,
                order.status,
                reason or "Payment failed",
                actor,
            )
            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Payment marked failed",
            order_id=str(order.id),
            order_number=order.order_number,
            reason=reason,
        )
        return order

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Order:
        """Operator status change; see OrderStateMachine.transition."""
        return await self.state_machine.transition(order_id, new_status, notes, actor)

    async def get_order(self, order_id: uuid.UUID) -> Order:
        order = await self.repository.get_order(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return order

    async def get_order_by_number(self, order_number: str) -> Order:
        order = await self.repository.get_by_number(order_number)
        if order is None:
            raise OrderNotFoundError("Order not found", order_number=order_number)
        return order

    async def get_order_history(self, order_id: uuid.UUID) -> list[OrderStatusHistory]:
        await self.get_order(order_id)
        return await self.repository.get_history(order_id)

    async def list_user_orders(
        self,
        user_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        return await self.repository.list_user_orders(user_id, limit, offset)

    async def _pay_with_vouchers(self, order: Order, actor: Optional[str]) -> None:
        meters = order.meters_ordered
        if order.total_price != ZERO:
            raise OrderValidationError(
                "Order total must be fully covered by vouchers",
                total_price=str(order.total_price),
            )
        if meters <= 0:
            raise OrderValidationError("Voucher payment requires meter items")

        debit = await self.ledger.debit_vouchers(order.user_id, meters, 1)

        now = self.clock()
        order.voucher_id = debit.first_voucher_id
        order.payment_method = PaymentMethod.VOUCHER
        order.payment_status = PaymentStatus.PAID
        order.paid_at = now
        await self.state_machine.apply_transition(
            order,
            OrderStatus.CONFIRMED,
            f"Paid with vouchers ({debit.meters_debited} m)",
            actor,
        )

    def _apply_totals(self, order: Order) -> None:
        taxable = order.subtotal - order.discount_amount - order.points_discount
        if taxable < 0:
            taxable = ZERO
        order.tax_amount = _money(taxable * self.tax_rate)
        order.total_price = _money(taxable + order.tax_amount + order.shipping_cost)

    def _set_payment_status(self, order: Order, new_status: PaymentStatus) -> None:
        if not validate_payment_status_transition(order.payment_status, new_status):
            raise PaymentTransitionError(
                f"Invalid payment transition from {order.payment_status.value} "
                f"to {new_status.value}",
                current_state=order.payment_status,
                target_state=new_status,
                order_id=str(order.id),
            )
        order.payment_status = new_status

    def _build_item(self, data: dict[str, Any], pay_with_vouchers: bool) -> OrderItem:
        product_type = ProductType(data["product_type"])
        quantity = Decimal(str(data["quantity"]))
        unit_price = _money(data["unit_price"])
        if pay_with_vouchers and product_type.consumes_meters:
            unit_price = ZERO

        customizations = dict(data.get("customizations") or {"kind": "plain"})
        extras = item_extras_price(product_type, quantity, customizations)
        if extras:
            customizations["extras_price"] = str(extras)

        return OrderItem(
            product_type=product_type,
            product_name=data["product_name"],
            quantity=quantity,
            unit_price=unit_price,
            subtotal=_money(quantity * unit_price + extras),
            customizations=customizations,
        )

    def _validate_order_data(
        self,
        items: Sequence[dict[str, Any]],
        user_id: Optional[uuid.UUID],
        points_to_use: int,
        pay_with_vouchers: bool,
    ) -> None:
        if not items:
            raise OrderValidationError("Order must contain at least one item")

        for index, item in enumerate(items):
            if Decimal(str(item.get("quantity", 0))) <= 0:
                raise OrderValidationError(
                    "Item quantity must be positive",
                    item_index=index,
                )
            if Decimal(str(item.get("unit_price", 0))) < 0:
                raise OrderValidationError(
                    "Item price cannot be negative",
                    item_index=index,
                )

        if points_to_use < 0:
            raise OrderValidationError("Points to use cannot be negative")
        if points_to_use and user_id is None:
            raise OrderValidationError("Redeeming points requires a registered customer")
        if pay_with_vouchers and user_id is None:
            raise OrderValidationError("Voucher payment requires a registered customer")

        has_voucher_purchase = any(
            (item.get("customizations") or {}).get("kind") == "voucher_purchase"
            for item in items
        )
        if has_voucher_purchase and user_id is None:
            raise OrderValidationError("Voucher purchases require a registered customer")
        if has_voucher_purchase and pay_with_vouchers:
            raise OrderValidationError("Vouchers cannot be bought with vouchers")

    async def _generate_order_number(self, is_voucher_purchase: bool) -> str:
        """BONO-/DTF- prefix, base36 millisecond timestamp, 4 random chars."""
        prefix = "BONO" if is_voucher_purchase else "DTF"
        while True:
            timestamp = _base36(int(self.clock().timestamp() * 1000))
            suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(4))
            order_number = f"{prefix}-{timestamp}-{suffix}".upper()
            if not await self.repository.order_number_exists(order_number):
                return order_number

    async def _notify_admin(self, order: Order) -> None:
        try:
            await self.notifier.notify_admin_new_order(order)
        except NotificationServiceError as e:
            logger.warning(
                "Admin notification failed",
                order_id=str(order.id),
                error=str(e),
            )

    async def _request_invoice(self, order: Order) -> None:
        try:
            await self.invoice_service.create_invoice_for_order(order.id)
        except InvoiceServiceError as e:
            logger.error(
                "Invoice request failed",
                order_id=str(order.id),
                order_number=order.order_number,
                error=str(e),
            )
