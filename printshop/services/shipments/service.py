"""
Shipment creation and carrier tracking synchronisation.

Carrier calls never run while a row lock is held: the service reads what
it needs, ends that transaction, calls the carrier, then re-locks the
shipment to apply the result. Tracking events are deduplicated on
(shipment, date, description) so overlapping cron and manual syncs are
harmless, and shipment status only moves forward. A delivery reported by
the carrier is pushed into the order state machine after the shipment
commit.
"""

import base64
import binascii
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.cache import SettingsCache
from printshop.core.logging import get_logger, log_performance
from printshop.database.models.order import Order
from printshop.database.models.shipment import Shipment, ShipmentTrackingEvent
from printshop.services.orders.enums import OrderStatus
from printshop.services.orders.exceptions import (
    OrderNotFoundError,
    StateTransitionError,
)
from printshop.services.orders.state_machine import OrderStateMachine
from printshop.services.shipments.carrier_client import (
    SHIPPING_SETTINGS_CATEGORY,
    CarrierAPI,
    CarrierConfig,
    CarrierError,
    CarrierTracking,
    GLSCarrierClient,
    ShipmentRequest,
    normalize_country,
)
from printshop.services.shipments.enums import (
    CARRIER_STATUS_CODES,
    ShipmentStatus,
    is_forward_progress,
    map_carrier_status,
)
from printshop.services.shipments.exceptions import (
    DuplicateShipment,
    MissingShippingAddress,
    ShipmentNotFoundError,
    ShipmentServiceError,
    StaleTrackingEvent,
)
from printshop.services.shipments.repository import ShipmentRepository

logger = get_logger(__name__)

SYNC_ACTOR = "carrier-sync"

REQUIRED_ADDRESS_FIELDS = ("address", "city", "postal_code")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TrackingSyncResult:
    shipment_id: uuid.UUID
    new_events_count: int
    status: ShipmentStatus
    previous_status: ShipmentStatus
    order_delivered: bool = False

    @property
    def status_changed(self) -> bool:
        return self.status != self.previous_status


@dataclass(frozen=True)
class FailedSync:
    shipment_id: uuid.UUID
    error: str
    error_type: str


@dataclass
class SyncRunResult:
    """Outcome of a batch tracking sync; failures are recorded, not raised."""

    checked: int = 0
    updated: int = 0
    delivered: int = 0
    failed: int = 0
    results: list[TrackingSyncResult] = field(default_factory=list)
    failures: list[FailedSync] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "delivered": self.delivered,
            "failed": self.failed,
            "failures": [
                {
                    "shipment_id": str(f.shipment_id),
                    "error": f.error,
                    "error_type": f.error_type,
                }
                for f in self.failures
            ],
        }


async def load_carrier_client(
    session: AsyncSession,
    cache: SettingsCache,
) -> GLSCarrierClient:
    """
    Build the GLS client from cached "shipping" settings.

    Raises:
        CarrierNotConfigured: If the integration is disabled or incomplete
    """
    repository = ShipmentRepository(session)

    async def loader() -> dict[str, str]:
        return await repository.get_settings(SHIPPING_SETTINGS_CATEGORY)

    values = await cache.get(SHIPPING_SETTINGS_CATEGORY, loader)
    return GLSCarrierClient(CarrierConfig.from_settings(values))


class ShipmentService:
    """
    Carrier shipments for orders.

    Args:
        session: Database session
        carrier: Carrier API client
        state_machine: Receives the DELIVERED transition
        clock: Returns the current timezone-aware instant
    """

    def __init__(
        self,
        session: AsyncSession,
        carrier: CarrierAPI,
        state_machine: OrderStateMachine,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.repository = ShipmentRepository(session)
        self.carrier = carrier
        self.state_machine = state_machine
        self.clock = clock

    async def create_shipment(
        self,
        order_id: uuid.UUID,
        packages: int = 1,
        weight: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> Shipment:
        """
        Register an order's shipment with the carrier.

        The order status is left alone; the caller decides whether to move
        it to SHIPPED.

        Args:
            order_id: Order to ship
            packages: Number of parcels
            weight: Total weight in kg
            notes: Notes printed for the courier

        Returns:
            Persisted shipment with carrier reference and tracking number

        Raises:
            OrderNotFoundError: If the order does not exist
            DuplicateShipment: If the order already has a shipment
            MissingShippingAddress: If the address is incomplete
            CarrierError: If the carrier rejects the shipment or is unavailable
        """
        order = await self.state_machine.repository.get_order(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        if await self.repository.get_by_order(order_id) is not None:
            raise DuplicateShipment("Order already has a shipment", order_id=str(order_id))

        request = self._build_request(order, packages, weight, notes)
        # Release the read transaction before the remote call
        await self.session.commit()

        carrier_shipment = await self.carrier.create_shipment(request)

        try:
            shipment = Shipment(
                order_id=order.id,
                carrier="GLS",
                carrier_reference=carrier_shipment.reference,
                tracking_number=carrier_shipment.tracking_number,
                status=ShipmentStatus.CREATED,
                recipient_name=request.recipient_name,
                recipient_address=request.recipient_address,
                recipient_city=request.recipient_city,
                recipient_postal_code=request.recipient_postal_code,
                recipient_country=request.recipient_country,
                recipient_phone=request.recipient_phone,
                recipient_email=request.recipient_email,
                packages=request.packages,
                weight=weight,
                notes=notes,
            )
            await self.repository.add(shipment)

            locked_order = await self.state_machine.repository.get_order_for_update(order_id)
            if locked_order is not None:
                locked_order.tracking_number = carrier_shipment.tracking_number

            await self.session.commit()

        except Exception as e:
            await self.session.rollback()
            logger.error(
                "Carrier shipment created but not stored",
                order_id=str(order_id),
                carrier_reference=carrier_shipment.reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "Shipment created",
            order_id=str(order_id),
            shipment_id=str(shipment.id),
            tracking_number=shipment.tracking_number,
        )
        return shipment

    async def sync_tracking(self, shipment_id: uuid.UUID) -> TrackingSyncResult:
        """
        Pull carrier tracking for one shipment and apply it.

        Args:
            shipment_id: Shipment to refresh

        Returns:
            New event count and resulting status

        Raises:
            ShipmentNotFoundError: If the shipment does not exist
            ShipmentServiceError: If the shipment has no carrier reference
            CarrierError: If the carrier call fails
        """
        shipment = await self.repository.get(shipment_id)
        if shipment is None:
            raise ShipmentNotFoundError("Shipment not found", shipment_id=str(shipment_id))
        if not shipment.carrier_reference:
            raise ShipmentServiceError(
                "Shipment has no carrier reference",
                shipment_id=str(shipment_id),
            )
        reference = shipment.carrier_reference
        await self.session.commit()

        tracking = await self.carrier.get_tracking(reference)

        try:
            shipment = await self.repository.get_for_update(shipment_id)
            if shipment is None:
                raise ShipmentNotFoundError("Shipment not found", shipment_id=str(shipment_id))

            result = await self._apply_tracking(shipment, tracking)
            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        if result.status == ShipmentStatus.DELIVERED:
            delivered = await self._deliver_order(shipment.order_id)
            result = TrackingSyncResult(
                shipment_id=result.shipment_id,
                new_events_count=result.new_events_count,
                status=result.status,
                previous_status=result.previous_status,
                order_delivered=delivered,
            )

        logger.info(
            "Shipment tracking synced",
            shipment_id=str(shipment_id),
            new_events=result.new_events_count,
            status=result.status.value,
            previous_status=result.previous_status.value,
        )
        return result

    async def sync_active_shipments(self, limit: Optional[int] = None) -> SyncRunResult:
        """
        Sync every shipment whose tracking can still change.

        Any error on one shipment is rolled back and recorded in the run
        result, and the batch continues with the next shipment. Delivered
        shipments whose order is still open are picked up again so the
        order transition is retried.
        """
        run = SyncRunResult()

        with log_performance(logger, "sync_active_shipments"):
            shipments = await self.repository.list_syncable(limit)
            shipment_ids = [s.id for s in shipments]
            await self.session.commit()

            for shipment_id in shipment_ids:
                run.checked += 1
                try:
                    result = await self.sync_tracking(shipment_id)
                except Exception as e:
                    await self.session.rollback()
                    run.failed += 1
                    run.failures.append(
                        FailedSync(
                            shipment_id=shipment_id,
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                    )
                    logger.warning(
                        "Shipment sync failed",
                        shipment_id=str(shipment_id),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    continue

                run.results.append(result)
                if result.new_events_count or result.status_changed:
                    run.updated += 1
                if result.order_delivered:
                    run.delivered += 1

        logger.info(
            "Tracking sync run finished",
            checked=run.checked,
            updated=run.updated,
            delivered=run.delivered,
            failed=run.failed,
        )
        return run

    async def get_label(self, shipment_id: uuid.UUID) -> bytes:
        """
        Fetch the shipment label as PDF bytes.

        Raises:
            ShipmentNotFoundError: If the shipment does not exist
            ShipmentServiceError: If the shipment has no carrier reference
            CarrierError: If the carrier call fails or the label is not base64
        """
        shipment = await self.repository.get(shipment_id)
        if shipment is None:
            raise ShipmentNotFoundError("Shipment not found", shipment_id=str(shipment_id))
        if not shipment.carrier_reference:
            raise ShipmentServiceError(
                "Shipment has no carrier reference",
                shipment_id=str(shipment_id),
            )
        reference = shipment.carrier_reference
        await self.session.commit()

        encoded = await self.carrier.get_label(reference)
        try:
            return base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError) as e:
            raise CarrierError(
                "Carrier label is not valid base64",
                shipment_id=str(shipment_id),
            ) from e

    async def _apply_tracking(
        self,
        shipment: Shipment,
        tracking: CarrierTracking,
    ) -> TrackingSyncResult:
        previous_status = shipment.status
        new_events = 0
        latest_event_status: Optional[ShipmentStatus] = None

        for event in tracking.events:
            event_status = self._event_status(event.code, event.event_type)
            if event_status is not None:
                latest_event_status = event_status
            try:
                await self.repository.add_tracking_event(
                    ShipmentTrackingEvent(
                        shipment_id=shipment.id,
                        event_date=event.event_date,
                        description=event.description,
                        location=event.location,
                        status=event_status,
                        event_code=event.code,
                        event_type=event.event_type,
                    )
                )
            except StaleTrackingEvent:
                continue
            new_events += 1

        mapped = map_carrier_status(tracking.status_code, tracking.incidence)
        if mapped is None:
            mapped = latest_event_status

        if mapped is not None and is_forward_progress(
            shipment.status, mapped, shipment.status_before_exception
        ):
            if mapped == ShipmentStatus.EXCEPTION:
                shipment.status_before_exception = shipment.status
            else:
                shipment.status_before_exception = None
            shipment.status = mapped
            if mapped == ShipmentStatus.DELIVERED:
                shipment.delivered_at = self.clock()
        elif mapped is not None and mapped != shipment.status:
            logger.info(
                "Ignoring non-forward carrier status",
                shipment_id=str(shipment.id),
                current_status=shipment.status.value,
                carrier_status=mapped.value,
            )

        shipment.incidence = tracking.incidence
        shipment.last_sync_at = self.clock()

        return TrackingSyncResult(
            shipment_id=shipment.id,
            new_events_count=new_events,
            status=shipment.status,
            previous_status=previous_status,
        )

    async def _deliver_order(self, order_id: uuid.UUID) -> bool:
        """
        Move the order to DELIVERED after the shipment commit.

        Failures are logged and reported as False. The shipment stays
        eligible for the scheduled sync while its order is open.
        """
        try:
            order = await self.state_machine.repository.get_order(order_id)
            if order is None or order.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
                return False
            await self.session.commit()

            await self.state_machine.transition(
                order_id,
                OrderStatus.DELIVERED,
                notes="Delivered according to carrier tracking",
                actor=SYNC_ACTOR,
            )
        except StateTransitionError as e:
            logger.warning(
                "Order could not be marked delivered",
                order_id=str(order_id),
                current_state=e.current_state.value,
                error=str(e),
            )
            return False
        except Exception as e:
            await self.session.rollback()
            logger.error(
                "Order delivery transition failed",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    @staticmethod
    def _event_status(
        code: Optional[str],
        event_type: Optional[str],
    ) -> Optional[ShipmentStatus]:
        """Status carried by a state-change event, None for other events."""
        if not code or (event_type or "").strip().upper() != "ESTADO":
            return None
        try:
            return CARRIER_STATUS_CODES.get(int(code))
        except ValueError:
            return None

    @staticmethod
    def _build_request(
        order: Order,
        packages: int,
        weight: Optional[Decimal],
        notes: Optional[str],
    ) -> ShipmentRequest:
        address: dict[str, Any] = order.shipping_address or {}
        name = (address.get("name") or order.customer_name or "").strip()
        missing = [key for key in REQUIRED_ADDRESS_FIELDS if not str(address.get(key) or "").strip()]
        if not name:
            missing.insert(0, "name")
        if missing:
            raise MissingShippingAddress(
                "Order shipping address is incomplete",
                order_id=str(order.id),
                missing=missing,
            )

        return ShipmentRequest(
            reference=order.order_number,
            recipient_name=name,
            recipient_address=str(address["address"]).strip(),
            recipient_city=str(address["city"]).strip(),
            recipient_postal_code=str(address["postal_code"]).strip(),
            recipient_country=normalize_country(address.get("country")),
            recipient_phone=address.get("phone") or order.customer_phone,
            recipient_email=address.get("email") or order.customer_email,
            packages=max(packages, 1),
            weight=weight,
            notes=notes,
        )
