"""
Tests for OrderService.

Covers checkout pricing, voucher-paid checkout, points redemption, payment
signals and the single invoice request per paid order.
"""

import uuid
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

from printshop.services.invoices.service import InvoiceServiceError
from printshop.services.ledger.enums import LoyaltyTier
from printshop.services.ledger.exceptions import InsufficientBalance
from printshop.services.ledger.service import (
    PointsCredit,
    PointsRedemption,
    VoucherDebitResult,
)
from printshop.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductType,
)
from printshop.services.orders.exceptions import (
    OrderNotFoundError,
    OrderValidationError,
    PaymentTransitionError,
)
from printshop.services.orders.service import OrderService, _base36
from tests.factories import FIXED_NOW, make_order


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def mock_ledger() -> AsyncMock:
    ledger = AsyncMock()
    ledger.issue_purchased_vouchers.return_value = []
    ledger.credit_points.return_value = PointsCredit(
        points_earned=60,
        new_tier=LoyaltyTier.BRONZE,
        available_points=60,
    )
    return ledger


@pytest.fixture
def order_service(
    mock_session, mock_ledger, mock_notifier, mock_invoice_service, clock
) -> OrderService:
    service = OrderService(
        mock_session,
        mock_ledger,
        mock_notifier,
        mock_invoice_service,
        tax_rate=Decimal("0.21"),
        clock=clock,
    )
    service.repository = AsyncMock()
    service.repository.order_number_exists.return_value = False
    service.state_machine.repository = service.repository
    return service


def textile_item(
    quantity: str = "2",
    unit_price: str = "20.00",
    **customizations: Any,
) -> dict[str, Any]:
    return {
        "product_type": ProductType.DTF_TEXTILE.value,
        "product_name": "DTF textil 58cm",
        "quantity": quantity,
        "unit_price": unit_price,
        "customizations": {"kind": "plain", **customizations},
    }


# ============================================================================
# Checkout Tests
# ============================================================================


class TestCreateOrder:
    async def test_regular_order_pricing(
        self, order_service, mock_session, mock_notifier, user_id
    ) -> None:
        order = await order_service.create_order(
            items=[textile_item()],
            customer_name="Lucía Pérez",
            customer_email="lucia@example.com",
            user_id=user_id,
            shipping_cost=Decimal("5.00"),
        )

        assert order.order_number.startswith("DTF-")
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.subtotal == Decimal("40.00")
        assert order.tax_amount == Decimal("8.40")
        assert order.total_price == Decimal("53.40")
        assert order.items[0].customizations == {"kind": "plain"}
        order_service.repository.add_order.assert_awaited_once_with(order)
        order_service.repository.add_history.assert_awaited_once_with(
            order.id, OrderStatus.PENDING, "Order created", None
        )
        mock_session.commit.assert_awaited_once()
        mock_notifier.notify_admin_new_order.assert_awaited_once_with(order)
        mock_notifier.notify_order_status_changed.assert_not_awaited()

    async def test_discount_is_taxed_after(self, order_service) -> None:
        order = await order_service.create_order(
            items=[textile_item()],
            customer_name="Guest",
            customer_email="guest@example.com",
            discount_amount=Decimal("10.00"),
        )

        assert order.tax_amount == Decimal("6.30")
        assert order.total_price == Decimal("36.30")

    async def test_points_redemption_reduces_total(
        self, order_service, mock_ledger, user_id
    ) -> None:
        mock_ledger.redeem_points.return_value = PointsRedemption(
            points_used=200,
            discount_amount=Decimal("10.00"),
            available_points=300,
        )

        order = await order_service.create_order(
            items=[textile_item()],
            customer_name="Lucía Pérez",
            customer_email="lucia@example.com",
            user_id=user_id,
            shipping_cost=Decimal("5.00"),
            points_to_use=200,
        )

        mock_ledger.redeem_points.assert_awaited_once_with(
            user_id, order.id, 200, Decimal("40.00")
        )
        assert order.points_used == 200
        assert order.points_discount == Decimal("10.00")
        assert order.total_price == Decimal("41.30")

    async def test_voucher_purchase_prefix(self, order_service, user_id) -> None:
        order = await order_service.create_order(
            items=[
                {
                    "product_type": ProductType.VOUCHER.value,
                    "product_name": "Bono 50 metros",
                    "quantity": 1,
                    "unit_price": "450.00",
                    "customizations": {
                        "kind": "voucher_purchase",
                        "voucher_template_id": str(uuid.uuid4()),
                    },
                }
            ],
            customer_name="Lucía Pérez",
            customer_email="lucia@example.com",
            user_id=user_id,
        )

        assert order.order_number.startswith("BONO-")
        assert order.is_voucher_purchase is True

    async def test_extras_are_added_to_item_subtotal(self, order_service) -> None:
        item = textile_item(layout=True, cutting=True)
        item["customizations"]["kind"] = "prioritized"
        item["customizations"]["priority"] = 2

        order = await order_service.create_order(
            items=[item],
            customer_name="Guest",
            customer_email="guest@example.com",
        )

        # 2 m: prioritize 4.50 + layout 9.00 + cutting 10.40
        assert order.items[0].customizations["extras_price"] == "23.90"
        assert order.items[0].subtotal == Decimal("63.90")
        assert order.subtotal == Decimal("63.90")
        assert order.tax_amount == Decimal("13.42")
        assert order.total_price == Decimal("77.32")

    async def test_order_number_uses_clock(self, order_service) -> None:
        order = await order_service.create_order(
            items=[textile_item()],
            customer_name="Guest",
            customer_email="guest@example.com",
        )

        expected = _base36(int(FIXED_NOW.timestamp() * 1000)).upper()
        prefix, timestamp, suffix = order.order_number.split("-")
        assert prefix == "DTF"
        assert timestamp == expected
        assert len(suffix) == 4


class TestCreateOrderWithVouchers:
    async def test_voucher_paid_order_is_confirmed(
        self, order_service, mock_ledger, mock_session, mock_notifier, user_id
    ) -> None:
        voucher_id = uuid.uuid4()
        mock_ledger.debit_vouchers.return_value = VoucherDebitResult(
            consumed_voucher_ids=[voucher_id],
            meters_debited=Decimal("3"),
            shipments_debited=1,
        )

        order = await order_service.create_order(
            items=[textile_item(quantity="3", unit_price="15.00")],
            customer_name="Lucía Pérez",
            customer_email="lucia@example.com",
            user_id=user_id,
            shipping_cost=Decimal("6.95"),
            pay_with_vouchers=True,
        )

        mock_ledger.debit_vouchers.assert_awaited_once_with(user_id, Decimal("3"), 1)
        assert order.total_price == Decimal("0.00")
        assert order.shipping_cost == Decimal("0.00")
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.PAID
        assert order.payment_method == PaymentMethod.VOUCHER
        assert order.voucher_id == voucher_id
        assert order.paid_at == FIXED_NOW
        assert order.confirmed_at == FIXED_NOW
        mock_ledger.credit_points.assert_not_awaited()
        mock_session.commit.assert_awaited_once()
        mock_notifier.notify_order_status_changed.assert_awaited_once_with(
            order, OrderStatus.CONFIRMED
        )

    async def test_insufficient_meters_rolls_back(
        self, order_service, mock_ledger, mock_session, mock_notifier, user_id
    ) -> None:
        mock_ledger.debit_vouchers.side_effect = InsufficientBalance(
            "Insufficient meters",
            resource="meters",
            requested=Decimal("3"),
            available=Decimal("1.50"),
        )

        with pytest.raises(InsufficientBalance):
            await order_service.create_order(
                items=[textile_item(quantity="3")],
                customer_name="Lucía Pérez",
                customer_email="lucia@example.com",
                user_id=user_id,
                pay_with_vouchers=True,
            )

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()
        mock_notifier.notify_admin_new_order.assert_not_awaited()

    async def test_priced_items_cannot_be_paid_with_vouchers(
        self, order_service, mock_ledger, mock_session, user_id
    ) -> None:
        uv_item = textile_item()
        uv_item["product_type"] = ProductType.DTF_UV.value

        with pytest.raises(OrderValidationError):
            await order_service.create_order(
                items=[textile_item(), uv_item],
                customer_name="Lucía Pérez",
                customer_email="lucia@example.com",
                user_id=user_id,
                pay_with_vouchers=True,
            )

        mock_ledger.debit_vouchers.assert_not_awaited()
        mock_session.rollback.assert_awaited_once()

    async def test_extras_cannot_be_paid_with_vouchers(
        self, order_service, mock_ledger, user_id
    ) -> None:
        with pytest.raises(OrderValidationError):
            await order_service.create_order(
                items=[textile_item(layout=True)],
                customer_name="Lucía Pérez",
                customer_email="lucia@example.com",
                user_id=user_id,
                pay_with_vouchers=True,
            )

        mock_ledger.debit_vouchers.assert_not_awaited()


class TestCreateOrderValidation:
    async def test_empty_order(self, order_service) -> None:
        with pytest.raises(OrderValidationError):
            await order_service.create_order([], "Guest", "guest@example.com")

    async def test_guest_cannot_redeem_points(self, order_service) -> None:
        with pytest.raises(OrderValidationError):
            await order_service.create_order(
                [textile_item()], "Guest", "guest@example.com", points_to_use=100
            )

    async def test_guest_cannot_pay_with_vouchers(self, order_service) -> None:
        with pytest.raises(OrderValidationError):
            await order_service.create_order(
                [textile_item()], "Guest", "guest@example.com", pay_with_vouchers=True
            )

    async def test_discount_above_subtotal(self, order_service) -> None:
        with pytest.raises(OrderValidationError):
            await order_service.create_order(
                [textile_item()],
                "Guest",
                "guest@example.com",
                discount_amount=Decimal("40.01"),
            )

        order_service.repository.add_order.assert_not_awaited()


# ============================================================================
# Payment Signal Tests
# ============================================================================


class TestConfirmPayment:
    async def test_confirms_and_credits_once(
        self,
        order_service,
        mock_ledger,
        mock_notifier,
        mock_invoice_service,
        user_id,
    ) -> None:
        order = make_order(user_id)
        order_service.repository.get_order_for_update.return_value = order

        result = await order_service.confirm_payment(
            order.id, amount_paid=Decimal("60.50"), payment_reference="cs_test_123"
        )

        assert result.payment_status == PaymentStatus.PAID
        assert result.status == OrderStatus.CONFIRMED
        assert result.payment_method == PaymentMethod.CARD
        assert result.payment_reference == "cs_test_123"
        assert result.paid_at == FIXED_NOW
        assert result.points_earned == 60
        assert result.invoice_requested_at == FIXED_NOW
        mock_ledger.issue_purchased_vouchers.assert_awaited_once_with(order)
        mock_invoice_service.create_invoice_for_order.assert_awaited_once_with(order.id)
        mock_notifier.notify_order_status_changed.assert_awaited_once_with(
            order, OrderStatus.CONFIRMED
        )

        await order_service.confirm_payment(order.id)

        mock_ledger.credit_points.assert_awaited_once()
        mock_ledger.issue_purchased_vouchers.assert_awaited_once()
        mock_invoice_service.create_invoice_for_order.assert_awaited_once()

    async def test_failed_payment_can_be_retried(self, order_service, user_id) -> None:
        order = make_order(user_id, payment_status=PaymentStatus.FAILED)
        order_service.repository.get_order_for_update.return_value = order

        result = await order_service.confirm_payment(order.id)

        assert result.payment_status == PaymentStatus.PAID

    async def test_refunded_order_cannot_be_paid(
        self, order_service, mock_session, user_id
    ) -> None:
        order = make_order(user_id, payment_status=PaymentStatus.REFUNDED)
        order_service.repository.get_order_for_update.return_value = order

        with pytest.raises(PaymentTransitionError):
            await order_service.confirm_payment(order.id)

        mock_session.rollback.assert_awaited_once()

    async def test_confirmed_order_only_gets_points(
        self, order_service, mock_ledger, user_id
    ) -> None:
        order = make_order(user_id, status=OrderStatus.CONFIRMED)
        order_service.repository.get_order_for_update.return_value = order

        result = await order_service.confirm_payment(order.id)

        assert result.status == OrderStatus.CONFIRMED
        assert result.points_earned == 60
        order_service.repository.add_history.assert_not_awaited()

    async def test_invoice_failure_is_logged(
        self, order_service, mock_invoice_service, user_id
    ) -> None:
        order = make_order(user_id)
        order_service.repository.get_order_for_update.return_value = order
        mock_invoice_service.create_invoice_for_order.side_effect = InvoiceServiceError(
            "queue unavailable"
        )

        result = await order_service.confirm_payment(order.id)

        assert result.payment_status == PaymentStatus.PAID

    async def test_unknown_order(self, order_service) -> None:
        order_service.repository.get_order_for_update.return_value = None

        with pytest.raises(OrderNotFoundError):
            await order_service.confirm_payment(uuid.uuid4())


class TestMarkPaymentFailed:
    async def test_records_failure_without_status_change(
        self, order_service, user_id
    ) -> None:
        order = make_order(user_id)
        order_service.repository.get_order_for_update.return_value = order

        result = await order_service.mark_payment_failed(order.id, reason="card declined")

        assert result.payment_status == PaymentStatus.FAILED
        assert result.status == OrderStatus.PENDING
        order_service.repository.add_history.assert_awaited_once_with(
            order.id, OrderStatus.PENDING, "card declined", "payment-gateway"
        )

    async def test_paid_order_cannot_fail(self, order_service, mock_session, user_id) -> None:
        order = make_order(user_id, payment_status=PaymentStatus.PAID)
        order_service.repository.get_order_for_update.return_value = order

        with pytest.raises(PaymentTransitionError):
            await order_service.mark_payment_failed(order.id)

        mock_session.rollback.assert_awaited_once()


class TestQueries:
    async def test_get_order_not_found(self, order_service) -> None:
        order_service.repository.get_order.return_value = None

        with pytest.raises(OrderNotFoundError):
            await order_service.get_order(uuid.uuid4())

    async def test_get_by_number(self, order_service) -> None:
        order = make_order()
        order_service.repository.get_by_number.return_value = order

        assert await order_service.get_order_by_number(order.order_number) is order
