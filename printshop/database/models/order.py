"""
Order, order item and order status history models.

An order is created at checkout and keeps its identity for life; only the
status pair, payment details, derived totals and fulfillment timestamps
change afterwards. Status history rows are append-only.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printshop.database.base import BaseModel, LedgerModel
from printshop.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductType,
)

if TYPE_CHECKING:
    from printshop.database.models.shipment import Shipment
    from printshop.database.models.user import User

ZERO = Decimal("0.00")


class Order(BaseModel):
    """
    Customer order with status tracking and fulfillment data.

    Attributes:
        order_number: Human-readable unique number (BONO-/DTF- prefixed)
        status: Fulfillment lifecycle status
        payment_status: Payment axis, orthogonal to status
        subtotal: Sum of item subtotals
        tax_amount: Tax on the discounted subtotal
        shipping_cost: Shipping charge
        discount_amount: Discount from codes
        points_discount: Discount paid with loyalty points
        total_price: Amount charged to the customer
        points_used: Loyalty points redeemed on this order
        points_earned: Loyalty points credited for this order, 0 until credited
        voucher_id: First voucher consumed when paid with meter vouchers
        user_id: Owner, None for guest checkout
        shipping_address: Recipient address snapshot
        is_voucher_purchase: Whether the order buys vouchers
        invoice_requested_at: When the single invoice request was issued
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Customer who placed the order",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", create_constraint=True),
        nullable=False,
        default=OrderStatus.PENDING,
        comment="Current order status",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", create_constraint=True),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="Current payment status",
    )

    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method", create_constraint=True),
        nullable=True,
        comment="How the order was paid",
    )

    payment_reference: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Payment gateway session or charge reference",
    )

    # Pricing fields
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=ZERO,
        comment="Sum of item subtotals",
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=ZERO,
        comment="Tax amount",
    )

    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=ZERO,
        comment="Shipping charge",
    )

    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=ZERO,
        comment="Discount from promotional codes",
    )

    points_discount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=ZERO,
        comment="Discount paid with loyalty points",
    )

    total_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Total charged to the customer",
    )

    # Loyalty and vouchers
    points_used: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Loyalty points redeemed on this order",
    )

    points_earned: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Loyalty points credited for this order",
    )

    voucher_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vouchers.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
        comment="First voucher consumed by this order",
    )

    is_voucher_purchase: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="Whether the order buys vouchers",
    )

    # Customer and delivery
    customer_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Customer full name",
    )

    customer_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Customer contact email",
    )

    customer_phone: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Customer contact phone",
    )

    shipping_address: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Recipient address snapshot",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Customer notes",
    )

    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Carrier tracking number",
    )

    # Lifecycle timestamps
    invoice_requested_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When invoice generation was requested",
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    user: Mapped[Optional["User"]] = relationship(
        "User",
        back_populates="orders",
        foreign_keys=[user_id],
        lazy="raise",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        lazy="raise",
        order_by="OrderStatusHistory.created_at",
    )

    shipment: Mapped[Optional["Shipment"]] = relationship(
        "Shipment",
        back_populates="order",
        uselist=False,
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_payment_status", "payment_status"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("tax_amount >= 0", name="ck_orders_tax_non_negative"),
        CheckConstraint("shipping_cost >= 0", name="ck_orders_shipping_non_negative"),
        CheckConstraint("discount_amount >= 0", name="ck_orders_discount_non_negative"),
        CheckConstraint("points_discount >= 0", name="ck_orders_points_discount_non_negative"),
        CheckConstraint("total_price >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint("points_used >= 0", name="ck_orders_points_used_non_negative"),
        CheckConstraint("points_earned >= 0", name="ck_orders_points_earned_non_negative"),
        {"comment": "Customer orders with payment and fulfillment status"},
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return (
            f"<Order(id={self.id}, order_number={self.order_number}, "
            f"status={status}, total_price={self.total_price})>"
        )

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def meters_ordered(self) -> Decimal:
        """Total meters across meter-measured items."""
        return sum(
            (Decimal(item.quantity) for item in self.items if item.product_type.consumes_meters),
            ZERO,
        )


class OrderItem(BaseModel):
    """
    Order line item.

    Quantity is in meters for DTF_TEXTILE items and in units otherwise.
    Customizations hold one validated variant (voucher purchase,
    prioritized production, or plain).
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_type: Mapped[ProductType] = mapped_column(
        SQLEnum(ProductType, name="product_type", create_constraint=True),
        nullable=False,
        comment="Product line",
    )

    product_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Meters for DTF textile items, units otherwise",
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    customizations: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
        comment="Tagged customization variant",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price_non_negative"),
        CheckConstraint("subtotal >= 0", name="ck_order_items_subtotal_non_negative"),
    )

    @property
    def voucher_template_id(self) -> Optional[uuid.UUID]:
        """Template to issue from when this item buys a voucher."""
        if (self.customizations or {}).get("kind") != "voucher_purchase":
            return None
        value = self.customizations.get("voucher_template_id")
        return uuid.UUID(str(value)) if value else None


class OrderStatusHistory(LedgerModel):
    """Append-only log of order status changes."""

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", create_constraint=True),
        nullable=False,
        comment="Status recorded by this entry",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    actor: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="User, operator or system job that caused the change",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )
