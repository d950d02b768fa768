"""
User model for customers who own orders, vouchers and loyalty accounts.

Authentication lives outside this service; the row only anchors ownership
and carries the contact details used by notifications.
"""

from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printshop.database.base import BaseModel

if TYPE_CHECKING:
    from printshop.database.models.loyalty import LoyaltyAccount
    from printshop.database.models.order import Order
    from printshop.database.models.voucher import Voucher


class User(BaseModel):
    """
    Customer account.

    Attributes:
        id: Unique user identifier (UUID)
        email: Contact email, unique
        full_name: Display name used in notifications
        is_active: Whether the account may place orders
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Contact email address",
    )

    full_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Customer display name",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
        comment="Whether the account may place orders",
    )

    orders: Mapped[list["Order"]] = relationship(
        "Order",
        back_populates="user",
        lazy="raise",
    )

    vouchers: Mapped[list["Voucher"]] = relationship(
        "Voucher",
        back_populates="user",
        lazy="raise",
    )

    loyalty_account: Mapped[Optional["LoyaltyAccount"]] = relationship(
        "LoyaltyAccount",
        back_populates="user",
        uselist=False,
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"
