"""
Voucher model for prepaid meter and free-shipment balances.

Templates (is_template=True, no owner) describe purchasable vouchers; a
paid voucher-purchase order clones a template into an owned voucher.
Balances only go down outside administrative correction, and the database
enforces 0 <= remaining <= initial for both meters and shipments.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

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
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printshop.database.base import BaseModel
from printshop.services.ledger.enums import VoucherType

if TYPE_CHECKING:
    from printshop.database.models.user import User


class Voucher(BaseModel):
    """
    Prepaid voucher owned by a customer, or a template for purchase.

    Attributes:
        code: Unique redemption code
        type: Balance kind; only METERS vouchers are debited by orders
        initial_meters / remaining_meters: Meter balance
        initial_shipments / remaining_shipments: Free shipment balance
        is_active: False once both balances are exhausted or expired
        expires_at: Optional expiry instant
        user_id: Owner, None only for unassigned templates
        order_id: Purchase order that issued this voucher
        usage_count: Number of orders that debited this voucher
    """

    __tablename__ = "vouchers"

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Unique voucher code",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name",
    )

    type: Mapped[VoucherType] = mapped_column(
        SQLEnum(VoucherType, name="voucher_type", create_constraint=True),
        nullable=False,
        default=VoucherType.METERS,
    )

    initial_meters: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    remaining_meters: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    initial_shipments: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    remaining_shipments: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Sale price for templates",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    is_template: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="Purchasable template rather than an owned voucher",
    )

    validity_days: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Days of validity granted when issued from a template",
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        comment="Owner",
    )

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Purchase order that issued this voucher",
    )

    template_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vouchers.id", ondelete="SET NULL"),
        nullable=True,
        comment="Template this voucher was issued from",
    )

    usage_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    user: Mapped[Optional["User"]] = relationship(
        "User",
        back_populates="vouchers",
        lazy="raise",
    )

    __table_args__ = (
        # FIFO selection: owner, kind, purchase order
        Index("ix_vouchers_user_type_created", "user_id", "type", "created_at"),
        Index("ix_vouchers_expires_at", "expires_at"),
        CheckConstraint(
            "remaining_meters >= 0 AND remaining_meters <= initial_meters",
            name="ck_vouchers_remaining_meters_bounds",
        ),
        CheckConstraint(
            "remaining_shipments >= 0 AND remaining_shipments <= initial_shipments",
            name="ck_vouchers_remaining_shipments_bounds",
        ),
        CheckConstraint("usage_count >= 0", name="ck_vouchers_usage_non_negative"),
        CheckConstraint(
            "is_template OR user_id IS NOT NULL OR NOT is_active",
            name="ck_vouchers_active_owned",
        ),
        {"comment": "Prepaid meter/shipment vouchers and purchasable templates"},
    )

    def __repr__(self) -> str:
        return (
            f"<Voucher(code={self.code}, remaining_meters={self.remaining_meters}, "
            f"remaining_shipments={self.remaining_shipments}, active={self.is_active})>"
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def refresh_active(self) -> bool:
        """Recompute is_active from the remaining balances."""
        self.is_active = self.remaining_meters > 0 or self.remaining_shipments > 0
        return self.is_active
