"""
Shipment and tracking event data access.

Tracking events are keyed by (shipment_id, event_date, description). The
repository checks the key before inserting and the unique constraint backs
that check up for overlapping syncs; either way a repeated event surfaces
as StaleTrackingEvent.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Select, and_, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.logging import get_logger
from printshop.database.models.order import Order
from printshop.database.models.setting import Setting
from printshop.database.models.shipment import Shipment, ShipmentTrackingEvent
from printshop.services.orders.enums import OrderStatus
from printshop.services.shipments.enums import SYNCABLE_SHIPMENT_STATUSES, ShipmentStatus
from printshop.services.shipments.exceptions import (
    DuplicateShipment,
    ShipmentServiceError,
    StaleTrackingEvent,
)

logger = get_logger(__name__)


class ShipmentRepository:
    """Repository for shipments, tracking events and carrier settings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, shipment_id: uuid.UUID) -> Optional[Shipment]:
        return await self.session.get(Shipment, shipment_id)

    async def get_for_update(self, shipment_id: uuid.UUID) -> Optional[Shipment]:
        stmt = (
            select(Shipment)
            .where(Shipment.id == shipment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_order(self, order_id: uuid.UUID) -> Optional[Shipment]:
        stmt = select(Shipment).where(Shipment.order_id == order_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, shipment: Shipment) -> Shipment:
        """
        Persist a new shipment.

        Raises:
            DuplicateShipment: If the order already has a shipment
        """
        try:
            async with self.session.begin_nested():
                self.session.add(shipment)
        except IntegrityError as e:
            logger.warning(
                "Shipment insert rejected",
                order_id=str(shipment.order_id),
                error=str(e),
            )
            raise DuplicateShipment(
                "Order already has a shipment",
                order_id=str(shipment.order_id),
            ) from e
        return shipment

    async def event_exists(
        self,
        shipment_id: uuid.UUID,
        event_date: datetime,
        description: str,
    ) -> bool:
        stmt = select(ShipmentTrackingEvent.id).where(
            ShipmentTrackingEvent.shipment_id == shipment_id,
            ShipmentTrackingEvent.event_date == event_date,
            ShipmentTrackingEvent.description == description,
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def add_tracking_event(self, event: ShipmentTrackingEvent) -> ShipmentTrackingEvent:
        """
        Insert a tracking event unless its key is already recorded.

        Raises:
            StaleTrackingEvent: If the event was recorded before
        """
        if await self.event_exists(event.shipment_id, event.event_date, event.description):
            raise StaleTrackingEvent(
                "Tracking event already recorded",
                shipment_id=str(event.shipment_id),
                event_date=event.event_date.isoformat(),
            )

        try:
            async with self.session.begin_nested():
                self.session.add(event)
        except IntegrityError as e:
            raise StaleTrackingEvent(
                "Tracking event recorded concurrently",
                shipment_id=str(event.shipment_id),
                event_date=event.event_date.isoformat(),
            ) from e
        return event

    @staticmethod
    def syncable_statement(limit: Optional[int] = None) -> Select:
        """
        Shipments whose tracking can still change, least recently synced first.

        Delivered shipments are included while their order is still open, so
        a failed order transition is retried by the next sync.
        """
        open_orders = select(Order.id).where(
            Order.status.not_in([OrderStatus.DELIVERED, OrderStatus.CANCELLED])
        )
        stmt = (
            select(Shipment)
            .where(
                Shipment.carrier_reference.is_not(None),
                or_(
                    Shipment.status.in_(sorted(SYNCABLE_SHIPMENT_STATUSES, key=lambda s: s.value)),
                    and_(
                        Shipment.status == ShipmentStatus.DELIVERED,
                        Shipment.order_id.in_(open_orders),
                    ),
                ),
            )
            .order_by(Shipment.last_sync_at.asc().nulls_first(), Shipment.created_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return stmt

    async def list_syncable(self, limit: Optional[int] = None) -> list[Shipment]:
        try:
            result = await self.session.execute(self.syncable_statement(limit))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list syncable shipments", error=str(e))
            raise ShipmentServiceError("Failed to list shipments") from e

    async def get_settings(self, category: str) -> dict[str, str]:
        """Key/value settings of one category."""
        stmt = select(Setting.key, Setting.value).where(Setting.category == category)
        result = await self.session.execute(stmt)
        return {key: value for key, value in result.all()}
