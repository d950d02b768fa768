"""
Database models package initialization.

Models are imported here so they register with the Base metadata for
Alembic and relationship resolution.
"""

from printshop.database.base import (
    Base,
    BaseModel,
    CreatedAtMixin,
    LedgerModel,
    TimestampMixin,
    UUIDMixin,
)
from printshop.database.models.user import User
from printshop.database.models.order import Order, OrderItem, OrderStatusHistory
from printshop.database.models.voucher import Voucher
from printshop.database.models.loyalty import LoyaltyAccount, PointTransaction
from printshop.database.models.shipment import Shipment, ShipmentTrackingEvent
from printshop.database.models.setting import Setting

__all__ = [
    "Base",
    "BaseModel",
    "CreatedAtMixin",
    "LedgerModel",
    "TimestampMixin",
    "UUIDMixin",
    "User",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "Voucher",
    "LoyaltyAccount",
    "PointTransaction",
    "Shipment",
    "ShipmentTrackingEvent",
    "Setting",
]
