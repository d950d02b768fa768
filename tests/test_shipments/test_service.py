"""
Tests for ShipmentService.

The carrier is an AsyncMock returning carrier dataclasses; repositories are
AsyncMocks returning real ORM objects.
"""

import base64
import uuid
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from printshop.services.orders.enums import OrderStatus, PaymentStatus
from printshop.services.orders.exceptions import (
    OrderNotFoundError,
    StateTransitionError,
)
from printshop.services.shipments.carrier_client import (
    CarrierError,
    CarrierShipment,
    CarrierTracking,
    CarrierTrackingEvent,
    CarrierUnavailable,
)
from printshop.services.shipments.enums import ShipmentStatus
from printshop.services.shipments.exceptions import (
    DuplicateShipment,
    MissingShippingAddress,
    ShipmentNotFoundError,
    ShipmentServiceError,
    StaleTrackingEvent,
)
from printshop.services.shipments.service import (
    SYNC_ACTOR,
    ShipmentService,
    TrackingSyncResult,
)
from tests.factories import FIXED_NOW, make_order, make_shipment


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def carrier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def state_machine() -> MagicMock:
    machine = MagicMock()
    machine.repository = AsyncMock()
    machine.transition = AsyncMock()
    return machine


@pytest.fixture
def shipment_service(mock_session, carrier, state_machine, clock) -> ShipmentService:
    service = ShipmentService(mock_session, carrier, state_machine, clock=clock)
    service.repository = AsyncMock()
    return service


@pytest.fixture
def shipped_order(user_id):
    return make_order(
        user_id,
        status=OrderStatus.SHIPPED,
        payment_status=PaymentStatus.PAID,
        points_earned=60,
    )


def event(code: str, description: str, day: int, hour: int = 9) -> CarrierTrackingEvent:
    return CarrierTrackingEvent(
        event_date=datetime(2026, 3, day, hour, 0),
        description=description,
        location="VALENCIA",
        code=code,
        event_type="ESTADO",
    )


def use_shipment(service: ShipmentService, shipment) -> None:
    service.repository.get.return_value = shipment
    service.repository.get_for_update.return_value = shipment


# ============================================================================
# Shipment Creation Tests
# ============================================================================


class TestCreateShipment:
    async def test_creates_and_stores_tracking_number(
        self, shipment_service, carrier, state_machine, mock_session, user_id
    ) -> None:
        order = make_order(user_id, status=OrderStatus.READY, payment_status=PaymentStatus.PAID)
        state_machine.repository.get_order.return_value = order
        state_machine.repository.get_order_for_update.return_value = order
        shipment_service.repository.get_by_order.return_value = None
        carrier.create_shipment.return_value = CarrierShipment(
            reference="61771003311234", tracking_number="ES1234567890"
        )

        shipment = await shipment_service.create_shipment(
            order.id, packages=2, weight=Decimal("1.5")
        )

        request = carrier.create_shipment.await_args.args[0]
        assert request.reference == order.order_number
        assert request.recipient_country == "ES"
        assert request.recipient_phone == "600123123"
        assert request.recipient_email == "lucia@example.com"
        assert request.packages == 2
        assert shipment.carrier_reference == "61771003311234"
        assert shipment.status == ShipmentStatus.CREATED
        assert shipment.weight == Decimal("1.5")
        assert order.tracking_number == "ES1234567890"
        assert order.status == OrderStatus.READY
        shipment_service.repository.add.assert_awaited_once_with(shipment)
        assert mock_session.commit.await_count == 2

    async def test_order_not_found(self, shipment_service, state_machine, carrier) -> None:
        state_machine.repository.get_order.return_value = None

        with pytest.raises(OrderNotFoundError):
            await shipment_service.create_shipment(uuid.uuid4())

        carrier.create_shipment.assert_not_awaited()

    async def test_duplicate_shipment(
        self, shipment_service, state_machine, carrier, shipped_order
    ) -> None:
        state_machine.repository.get_order.return_value = shipped_order
        shipment_service.repository.get_by_order.return_value = make_shipment(shipped_order.id)

        with pytest.raises(DuplicateShipment):
            await shipment_service.create_shipment(shipped_order.id)

        carrier.create_shipment.assert_not_awaited()

    async def test_incomplete_address(self, shipment_service, state_machine, carrier, user_id) -> None:
        order = make_order(
            user_id,
            shipping_address={"address": " ", "city": "Valencia"},
        )
        state_machine.repository.get_order.return_value = order
        shipment_service.repository.get_by_order.return_value = None

        with pytest.raises(MissingShippingAddress) as exc_info:
            await shipment_service.create_shipment(order.id)

        assert exc_info.value.context["missing"] == ["address", "postal_code"]
        carrier.create_shipment.assert_not_awaited()

    async def test_store_failure_rolls_back(
        self, shipment_service, state_machine, carrier, mock_session, shipped_order
    ) -> None:
        state_machine.repository.get_order.return_value = shipped_order
        shipment_service.repository.get_by_order.return_value = None
        shipment_service.repository.add.side_effect = RuntimeError("connection lost")
        carrier.create_shipment.return_value = CarrierShipment("617", "ES1")

        with pytest.raises(RuntimeError):
            await shipment_service.create_shipment(shipped_order.id)

        mock_session.rollback.assert_awaited_once()


# ============================================================================
# Tracking Sync Tests
# ============================================================================


class TestSyncTracking:
    async def test_records_events_and_advances_status(
        self, shipment_service, carrier
    ) -> None:
        shipment = make_shipment(uuid.uuid4())
        use_shipment(shipment_service, shipment)
        carrier.get_tracking.return_value = CarrierTracking(
            status_code=3,
            events=[event("1", "RECOGIDO", 1), event("3", "EN TRANSITO", 2)],
        )

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.new_events_count == 2
        assert result.previous_status == ShipmentStatus.CREATED
        assert result.status == ShipmentStatus.IN_TRANSIT
        assert result.status_changed
        assert shipment.last_sync_at == FIXED_NOW
        stored = shipment_service.repository.add_tracking_event.await_args_list
        assert stored[0].args[0].status == ShipmentStatus.PICKED_UP
        assert stored[1].args[0].description == "EN TRANSITO"
        carrier.get_tracking.assert_awaited_once_with("61771003311234")

    async def test_second_sync_adds_nothing(self, shipment_service, carrier) -> None:
        shipment = make_shipment(uuid.uuid4(), status=ShipmentStatus.IN_TRANSIT)
        use_shipment(shipment_service, shipment)
        shipment_service.repository.add_tracking_event.side_effect = StaleTrackingEvent(
            "Tracking event already recorded"
        )
        carrier.get_tracking.return_value = CarrierTracking(
            status_code=3,
            events=[event("1", "RECOGIDO", 1), event("3", "EN TRANSITO", 2)],
        )

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.new_events_count == 0
        assert not result.status_changed

    async def test_status_never_moves_backward(self, shipment_service, carrier) -> None:
        shipment = make_shipment(uuid.uuid4(), status=ShipmentStatus.OUT_FOR_DELIVERY)
        use_shipment(shipment_service, shipment)
        carrier.get_tracking.return_value = CarrierTracking(status_code=3)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.OUT_FOR_DELIVERY

    async def test_incidence_moves_to_exception(self, shipment_service, carrier) -> None:
        shipment = make_shipment(uuid.uuid4(), status=ShipmentStatus.IN_TRANSIT)
        use_shipment(shipment_service, shipment)
        carrier.get_tracking.return_value = CarrierTracking(
            status_code=6, incidence="AUSENTE"
        )

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.EXCEPTION
        assert shipment.incidence == "AUSENTE"
        assert shipment.status_before_exception == ShipmentStatus.IN_TRANSIT

    async def test_exception_is_left_on_regular_status(
        self, shipment_service, carrier
    ) -> None:
        shipment = make_shipment(
            uuid.uuid4(), status=ShipmentStatus.EXCEPTION, incidence="AUSENTE"
        )
        use_shipment(shipment_service, shipment)
        carrier.get_tracking.return_value = CarrierTracking(status_code=6)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.OUT_FOR_DELIVERY
        assert shipment.incidence is None
        assert shipment.status_before_exception is None

    async def test_exception_is_kept_for_an_earlier_status(
        self, shipment_service, carrier
    ) -> None:
        shipment = make_shipment(
            uuid.uuid4(),
            status=ShipmentStatus.EXCEPTION,
            incidence="AUSENTE",
            status_before_exception=ShipmentStatus.IN_TRANSIT,
        )
        use_shipment(shipment_service, shipment)
        carrier.get_tracking.return_value = CarrierTracking(status_code=0)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.EXCEPTION
        assert not result.status_changed
        assert shipment.status_before_exception == ShipmentStatus.IN_TRANSIT

    async def test_unknown_code_falls_back_to_latest_event(
        self, shipment_service, carrier
    ) -> None:
        shipment = make_shipment(uuid.uuid4())
        use_shipment(shipment_service, shipment)
        carrier.get_tracking.return_value = CarrierTracking(
            status_code=None, events=[event("2", "EN PLAZA ORIGEN", 1)]
        )

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.PICKED_UP

    async def test_unknown_code_without_events(self, shipment_service, carrier) -> None:
        shipment = make_shipment(uuid.uuid4(), status=ShipmentStatus.PICKED_UP)
        use_shipment(shipment_service, shipment)
        carrier.get_tracking.return_value = CarrierTracking(status_code=99)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.PICKED_UP
        assert shipment.last_sync_at == FIXED_NOW

    async def test_delivery_transitions_order(
        self, shipment_service, carrier, state_machine, shipped_order
    ) -> None:
        shipment = make_shipment(shipped_order.id, status=ShipmentStatus.OUT_FOR_DELIVERY)
        use_shipment(shipment_service, shipment)
        state_machine.repository.get_order.return_value = shipped_order
        carrier.get_tracking.return_value = CarrierTracking(
            status_code=7, events=[event("7", "ENTREGADO", 3, 12)]
        )

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.DELIVERED
        assert result.order_delivered is True
        assert shipment.delivered_at == FIXED_NOW
        state_machine.transition.assert_awaited_once_with(
            shipped_order.id,
            OrderStatus.DELIVERED,
            notes="Delivered according to carrier tracking",
            actor=SYNC_ACTOR,
        )

    async def test_already_delivered_order_is_left_alone(
        self, shipment_service, carrier, state_machine, user_id
    ) -> None:
        order = make_order(
            user_id, status=OrderStatus.DELIVERED, payment_status=PaymentStatus.PAID
        )
        shipment = make_shipment(order.id, status=ShipmentStatus.OUT_FOR_DELIVERY)
        use_shipment(shipment_service, shipment)
        state_machine.repository.get_order.return_value = order
        carrier.get_tracking.return_value = CarrierTracking(status_code=7)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.order_delivered is False
        state_machine.transition.assert_not_awaited()

    async def test_rejected_order_transition_keeps_shipment_delivered(
        self, shipment_service, carrier, state_machine, user_id
    ) -> None:
        order = make_order(user_id)
        shipment = make_shipment(order.id, status=ShipmentStatus.IN_TRANSIT)
        use_shipment(shipment_service, shipment)
        state_machine.repository.get_order.return_value = order
        state_machine.transition.side_effect = StateTransitionError(
            "Order must be paid before moving to delivered",
            current_state=OrderStatus.PENDING,
            target_state=OrderStatus.DELIVERED,
        )
        carrier.get_tracking.return_value = CarrierTracking(status_code=7)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.DELIVERED
        assert result.order_delivered is False

    async def test_failed_order_transition_is_reported_not_raised(
        self, shipment_service, carrier, state_machine, mock_session, shipped_order
    ) -> None:
        shipment = make_shipment(shipped_order.id, status=ShipmentStatus.OUT_FOR_DELIVERY)
        use_shipment(shipment_service, shipment)
        state_machine.repository.get_order.return_value = shipped_order
        state_machine.transition.side_effect = OperationalError(
            "UPDATE orders", {}, Exception("connection reset")
        )
        carrier.get_tracking.return_value = CarrierTracking(status_code=7)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.status == ShipmentStatus.DELIVERED
        assert result.order_delivered is False
        mock_session.rollback.assert_awaited()

    async def test_delivered_shipment_retries_open_order(
        self, shipment_service, carrier, state_machine, shipped_order
    ) -> None:
        delivered_at = datetime(2026, 3, 1, 12, 0)
        shipment = make_shipment(
            shipped_order.id,
            status=ShipmentStatus.DELIVERED,
            delivered_at=delivered_at,
        )
        use_shipment(shipment_service, shipment)
        state_machine.repository.get_order.return_value = shipped_order
        carrier.get_tracking.return_value = CarrierTracking(status_code=7)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.order_delivered is True
        assert not result.status_changed
        assert shipment.delivered_at == delivered_at
        state_machine.transition.assert_awaited_once()

    async def test_cancelled_order_is_left_alone(
        self, shipment_service, carrier, state_machine, user_id
    ) -> None:
        order = make_order(user_id, status=OrderStatus.CANCELLED)
        shipment = make_shipment(order.id, status=ShipmentStatus.OUT_FOR_DELIVERY)
        use_shipment(shipment_service, shipment)
        state_machine.repository.get_order.return_value = order
        carrier.get_tracking.return_value = CarrierTracking(status_code=7)

        result = await shipment_service.sync_tracking(shipment.id)

        assert result.order_delivered is False
        state_machine.transition.assert_not_awaited()

    async def test_shipment_not_found(self, shipment_service, carrier) -> None:
        shipment_service.repository.get.return_value = None

        with pytest.raises(ShipmentNotFoundError):
            await shipment_service.sync_tracking(uuid.uuid4())

        carrier.get_tracking.assert_not_awaited()

    async def test_shipment_without_reference(self, shipment_service) -> None:
        shipment = make_shipment(uuid.uuid4(), carrier_reference=None)
        use_shipment(shipment_service, shipment)

        with pytest.raises(ShipmentServiceError):
            await shipment_service.sync_tracking(shipment.id)


class TestSyncActiveShipments:
    async def test_failures_do_not_stop_the_batch(self, shipment_service) -> None:
        shipments = [make_shipment(uuid.uuid4()) for _ in range(3)]
        shipment_service.repository.list_syncable.return_value = shipments
        outcomes = [
            TrackingSyncResult(
                shipment_id=shipments[0].id,
                new_events_count=2,
                status=ShipmentStatus.IN_TRANSIT,
                previous_status=ShipmentStatus.CREATED,
            ),
            CarrierUnavailable("Carrier request timed out"),
            TrackingSyncResult(
                shipment_id=shipments[2].id,
                new_events_count=1,
                status=ShipmentStatus.DELIVERED,
                previous_status=ShipmentStatus.OUT_FOR_DELIVERY,
                order_delivered=True,
            ),
        ]

        with patch.object(
            shipment_service, "sync_tracking", AsyncMock(side_effect=outcomes)
        ):
            run = await shipment_service.sync_active_shipments(limit=50)

        assert run.checked == 3
        assert run.updated == 2
        assert run.delivered == 1
        assert run.failed == 1
        assert run.failures[0].shipment_id == shipments[1].id
        assert run.failures[0].error_type == "CarrierUnavailable"
        assert run.as_dict()["failures"][0]["shipment_id"] == str(shipments[1].id)
        shipment_service.repository.list_syncable.assert_awaited_once_with(50)

    async def test_database_error_does_not_stop_the_batch(
        self, shipment_service, carrier, mock_session
    ) -> None:
        broken = make_shipment(uuid.uuid4(), status=ShipmentStatus.PICKED_UP)
        healthy = make_shipment(uuid.uuid4(), status=ShipmentStatus.PICKED_UP)
        shipments = {s.id: s for s in (broken, healthy)}
        shipment_service.repository.list_syncable.return_value = [broken, healthy]
        shipment_service.repository.get.side_effect = lambda shipment_id: shipments[shipment_id]
        shipment_service.repository.get_for_update.side_effect = [
            OperationalError("SELECT shipments", {}, Exception("connection reset")),
            healthy,
        ]
        carrier.get_tracking.return_value = CarrierTracking(status_code=3)

        run = await shipment_service.sync_active_shipments()

        assert run.checked == 2
        assert run.failed == 1
        assert run.failures[0].shipment_id == broken.id
        assert run.failures[0].error_type == "OperationalError"
        assert run.updated == 1
        assert run.results[0].shipment_id == healthy.id
        assert healthy.status == ShipmentStatus.IN_TRANSIT
        assert broken.status == ShipmentStatus.PICKED_UP
        mock_session.rollback.assert_awaited()

    async def test_unchanged_shipment_is_not_counted(self, shipment_service) -> None:
        shipment = make_shipment(uuid.uuid4(), status=ShipmentStatus.IN_TRANSIT)
        shipment_service.repository.list_syncable.return_value = [shipment]
        unchanged = TrackingSyncResult(
            shipment_id=shipment.id,
            new_events_count=0,
            status=ShipmentStatus.IN_TRANSIT,
            previous_status=ShipmentStatus.IN_TRANSIT,
        )

        with patch.object(
            shipment_service, "sync_tracking", AsyncMock(return_value=unchanged)
        ):
            run = await shipment_service.sync_active_shipments()

        assert run.checked == 1
        assert run.updated == 0


class TestGetLabel:
    async def test_decodes_pdf(self, shipment_service, carrier) -> None:
        shipment = make_shipment(uuid.uuid4())
        use_shipment(shipment_service, shipment)
        carrier.get_label.return_value = base64.b64encode(b"%PDF-1.4 label").decode()

        assert await shipment_service.get_label(shipment.id) == b"%PDF-1.4 label"

    async def test_invalid_base64(self, shipment_service, carrier) -> None:
        use_shipment(shipment_service, make_shipment(uuid.uuid4()))
        carrier.get_label.return_value = "abcde"

        with pytest.raises(CarrierError):
            await shipment_service.get_label(uuid.uuid4())
