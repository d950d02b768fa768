"""
Shipment and carrier tracking event models.

A shipment belongs to exactly one order. Tracking events are inserted
once per (shipment_id, event_date, description); repeated carrier polls
return the same events and must not duplicate them.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printshop.database.base import BaseModel, LedgerModel
from printshop.services.shipments.enums import ShipmentStatus

if TYPE_CHECKING:
    from printshop.database.models.order import Order


class Shipment(BaseModel):
    """
    Carrier shipment for an order.

    Attributes:
        order_id: Owning order (unique)
        carrier: Carrier name
        carrier_reference: Carrier expedition uid used for tracking and labels
        tracking_number: Customer-facing tracking number
        status: Latest forward-only status derived from carrier tracking
        incidence: Incidence text reported by the carrier, if any
        status_before_exception: Lowest status EXCEPTION may be left for
        last_sync_at: Last successful tracking sync
    """

    __tablename__ = "shipments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    carrier: Mapped[str] = mapped_column(String(50), nullable=False, default="GLS")

    carrier_reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Carrier expedition reference",
    )

    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
    )

    status: Mapped[ShipmentStatus] = mapped_column(
        SQLEnum(ShipmentStatus, name="shipment_status", create_constraint=True),
        nullable=False,
        default=ShipmentStatus.CREATED,
    )

    incidence: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status_before_exception: Mapped[Optional[ShipmentStatus]] = mapped_column(
        SQLEnum(ShipmentStatus, name="shipment_status", create_constraint=True),
        nullable=True,
        comment="Status held when the carrier reported the open incidence",
    )

    last_sync_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Recipient snapshot sent to the carrier
    recipient_name: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_address: Mapped[str] = mapped_column(String(500), nullable=False)
    recipient_city: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient_country: Mapped[str] = mapped_column(String(2), nullable=False, default="ES")
    recipient_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    recipient_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    packages: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    weight: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=8, scale=2), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship(
        "Order",
        back_populates="shipment",
        lazy="raise",
    )

    events: Mapped[list["ShipmentTrackingEvent"]] = relationship(
        "ShipmentTrackingEvent",
        back_populates="shipment",
        lazy="raise",
        order_by="ShipmentTrackingEvent.event_date",
    )

    __table_args__ = (
        Index("ix_shipments_status", "status"),
        CheckConstraint("packages >= 1", name="ck_shipments_packages_positive"),
    )


class ShipmentTrackingEvent(LedgerModel):
    """Carrier tracking event, deduplicated on (shipment, date, description)."""

    __tablename__ = "shipment_tracking_events"

    shipment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
    )

    event_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        comment="Carrier-local timestamp as reported",
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[Optional[ShipmentStatus]] = mapped_column(
        SQLEnum(ShipmentStatus, name="shipment_status", create_constraint=True),
        nullable=True,
        comment="Internal status mapped from the event code",
    )

    event_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    event_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="events")

    __table_args__ = (
        UniqueConstraint(
            "shipment_id",
            "event_date",
            "description",
            name="uq_shipment_tracking_events_key",
        ),
    )
