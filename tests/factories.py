"""ORM object factories with every column populated."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from printshop.database.models import (
    LoyaltyAccount,
    Order,
    OrderItem,
    Shipment,
    Voucher,
)
from printshop.services.ledger.enums import LoyaltyTier, VoucherType
from printshop.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    ProductType,
)
from printshop.services.shipments.enums import ShipmentStatus

FIXED_NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def make_voucher(
    user_id: Optional[uuid.UUID],
    meters: str = "10.00",
    shipments: int = 1,
    code: Optional[str] = None,
    created_at: datetime = FIXED_NOW,
    **overrides: Any,
) -> Voucher:
    """Build an active meter voucher with full balances."""
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "code": code or f"V-{uuid.uuid4().hex[:8].upper()}",
        "name": "Bono DTF",
        "type": VoucherType.METERS,
        "initial_meters": Decimal(meters),
        "remaining_meters": Decimal(meters),
        "initial_shipments": shipments,
        "remaining_shipments": shipments,
        "price": Decimal("0.00"),
        "is_active": True,
        "is_template": False,
        "validity_days": None,
        "expires_at": None,
        "user_id": user_id,
        "order_id": None,
        "template_id": None,
        "usage_count": 0,
        "created_at": created_at,
    }
    values.update(overrides)
    return Voucher(**values)


def make_item(
    product_type: ProductType = ProductType.DTF_TEXTILE,
    quantity: str = "2.00",
    unit_price: str = "12.50",
    customizations: Optional[dict[str, Any]] = None,
) -> OrderItem:
    qty = Decimal(quantity)
    price = Decimal(unit_price)
    return OrderItem(
        id=uuid.uuid4(),
        product_type=product_type,
        product_name="DTF textil 58cm",
        quantity=qty,
        unit_price=price,
        subtotal=(qty * price).quantize(Decimal("0.01")),
        customizations=customizations or {"kind": "plain"},
    )


def make_order(
    user_id: Optional[uuid.UUID] = None,
    status: OrderStatus = OrderStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    total_price: str = "60.50",
    items: Optional[list[OrderItem]] = None,
    **overrides: Any,
) -> Order:
    """Build an order with consistent money fields."""
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "order_number": "DTF-LX3K9A1B-7QZ2",
        "user_id": user_id,
        "status": status,
        "payment_status": payment_status,
        "payment_method": None,
        "payment_reference": None,
        "subtotal": Decimal("50.00"),
        "tax_amount": Decimal("10.50"),
        "shipping_cost": Decimal("0.00"),
        "discount_amount": Decimal("0.00"),
        "points_discount": Decimal("0.00"),
        "total_price": Decimal(total_price),
        "points_used": 0,
        "points_earned": 0,
        "voucher_id": None,
        "is_voucher_purchase": False,
        "customer_name": "Lucía Pérez",
        "customer_email": "lucia@example.com",
        "customer_phone": "600123123",
        "shipping_address": {
            "name": "Lucía Pérez",
            "address": "Calle Mayor 1",
            "city": "Valencia",
            "postal_code": "46001",
            "country": "España",
        },
        "notes": None,
        "tracking_number": None,
        "invoice_requested_at": None,
        "paid_at": None,
        "confirmed_at": None,
        "shipped_at": None,
        "delivered_at": None,
        "cancelled_at": None,
        "created_at": FIXED_NOW - timedelta(hours=1),
        "updated_at": FIXED_NOW - timedelta(hours=1),
        "items": items if items is not None else [make_item()],
    }
    values.update(overrides)
    return Order(**values)


def make_account(
    user_id: uuid.UUID,
    available_points: int = 0,
    total_spent: str = "0.00",
    tier: LoyaltyTier = LoyaltyTier.BRONZE,
) -> LoyaltyAccount:
    return LoyaltyAccount(
        id=uuid.uuid4(),
        user_id=user_id,
        available_points=available_points,
        total_points=available_points,
        lifetime_points=available_points,
        total_spent=Decimal(total_spent),
        tier=tier,
    )


def make_shipment(
    order_id: uuid.UUID,
    status: ShipmentStatus = ShipmentStatus.CREATED,
    carrier_reference: Optional[str] = "61771003311234",
    **overrides: Any,
) -> Shipment:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "order_id": order_id,
        "carrier": "GLS",
        "carrier_reference": carrier_reference,
        "tracking_number": "ES1234567890",
        "status": status,
        "incidence": None,
        "last_sync_at": None,
        "delivered_at": None,
        "recipient_name": "Lucía Pérez",
        "recipient_address": "Calle Mayor 1",
        "recipient_city": "Valencia",
        "recipient_postal_code": "46001",
        "recipient_country": "ES",
        "recipient_phone": None,
        "recipient_email": None,
        "packages": 1,
        "weight": None,
        "notes": None,
        "created_at": FIXED_NOW - timedelta(days=1),
        "updated_at": FIXED_NOW - timedelta(days=1),
    }
    values.update(overrides)
    return Shipment(**values)
