"""
Loyalty account and point transaction models.

The account holds running balances; point transactions are the ledger
behind them. The sum of an account's transaction points always equals its
available_points. A unique (order_id, type) pair prevents a second credit
or redemption for the same order even under concurrent requests.
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printshop.database.base import BaseModel, LedgerModel
from printshop.services.ledger.enums import LoyaltyTier, PointTransactionType

if TYPE_CHECKING:
    from printshop.database.models.user import User


class LoyaltyAccount(BaseModel):
    """
    Per-user loyalty balance.

    Attributes:
        available_points: Spendable balance
        total_points: Points earned, never decremented by redemptions
        lifetime_points: Lifetime earned points shown to the customer
        total_spent: Lifetime spend on credited orders
        tier: Bracket derived from total_spent
    """

    __tablename__ = "loyalty_accounts"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    available_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_spent: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    tier: Mapped[LoyaltyTier] = mapped_column(
        SQLEnum(LoyaltyTier, name="loyalty_tier", create_constraint=True),
        nullable=False,
        default=LoyaltyTier.BRONZE,
    )

    user: Mapped["User"] = relationship(
        "User",
        back_populates="loyalty_account",
        lazy="raise",
    )

    transactions: Mapped[list["PointTransaction"]] = relationship(
        "PointTransaction",
        back_populates="account",
        lazy="raise",
        order_by="PointTransaction.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "available_points >= 0", name="ck_loyalty_accounts_available_non_negative"
        ),
        CheckConstraint("total_spent >= 0", name="ck_loyalty_accounts_spent_non_negative"),
    )


class PointTransaction(LedgerModel):
    """Append-only loyalty ledger entry; redemptions carry negative points."""

    __tablename__ = "point_transactions"

    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )

    points: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Signed point delta",
    )

    type: Mapped[PointTransactionType] = mapped_column(
        SQLEnum(PointTransactionType, name="point_transaction_type", create_constraint=True),
        nullable=False,
    )

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
    )

    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    account: Mapped["LoyaltyAccount"] = relationship(
        "LoyaltyAccount",
        back_populates="transactions",
    )

    __table_args__ = (
        UniqueConstraint("order_id", "type", name="uq_point_transactions_order_type"),
        Index("ix_point_transactions_account_created", "account_id", "created_at"),
        CheckConstraint(
            "(type = 'EARNED' AND points > 0) OR (type = 'REDEEMED' AND points < 0)",
            name="ck_point_transactions_sign",
        ),
    )
