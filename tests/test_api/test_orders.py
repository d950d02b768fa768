"""
Tests for the order endpoints and domain error translation.
"""

import uuid
from decimal import Decimal

from printshop.services.ledger.exceptions import (
    InsufficientBalance,
    InvalidRedemptionAmount,
)
from printshop.services.orders.enums import OrderStatus
from printshop.services.orders.exceptions import (
    OrderNotFoundError,
    StateTransitionError,
)
from printshop.services.shipments.carrier_client import (
    CarrierError,
    CarrierNotConfigured,
    CarrierUnavailable,
)
from printshop.services.shipments.exceptions import (
    DuplicateShipment,
    MissingShippingAddress,
)
from tests.factories import make_order, make_shipment


def order_payload(**overrides):
    payload = {
        "user_id": str(uuid.uuid4()),
        "customer_name": "Lucía Pérez",
        "customer_email": "Lucia@Example.com",
        "customer_phone": "600123123",
        "shipping_address": {
            "address": "Calle Mayor 1",
            "city": "Valencia",
            "postal_code": "46001",
        },
        "items": [
            {
                "product_type": "dtf_textile",
                "product_name": "DTF textil 58cm",
                "quantity": "3",
                "unit_price": "15.00",
                "customizations": {"kind": "prioritized", "priority": 2, "cutting": True},
            }
        ],
        "pay_with_vouchers": True,
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Order Creation
# ============================================================================


class TestCreateOrderEndpoint:
    def test_created(self, client, order_service) -> None:
        order = make_order()
        order_service.create_order.return_value = order

        response = client.post(
            "/api/v1/orders", json=order_payload(), headers={"X-Actor": "shop-frontend"}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["order_number"] == order.order_number
        assert body["status"] == "pending"
        kwargs = order_service.create_order.await_args.kwargs
        assert kwargs["customer_email"] == "lucia@example.com"
        assert kwargs["pay_with_vouchers"] is True
        assert kwargs["actor"] == "shop-frontend"
        assert kwargs["items"][0]["customizations"]["kind"] == "prioritized"
        assert kwargs["shipping_address"]["country"] == "ES"

    def test_insufficient_meters_is_conflict(self, client, order_service) -> None:
        order_service.create_order.side_effect = InsufficientBalance(
            "Insufficient meters in vouchers",
            resource="meters",
            requested=Decimal("3"),
            available=Decimal("1.50"),
        )

        response = client.post("/api/v1/orders", json=order_payload())

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "Insufficient Balance"
        assert body["resource"] == "meters"
        assert body["requested"] == "3"
        assert body["available"] == "1.50"

    def test_invalid_redemption_is_unprocessable(self, client, order_service) -> None:
        order_service.create_order.side_effect = InvalidRedemptionAmount(
            "Minimum redemption is 100 points", points=50
        )

        response = client.post("/api/v1/orders", json=order_payload(points_to_use=50))

        assert response.status_code == 422
        assert response.json()["details"] == {"points": "50"}

    def test_voucher_item_requires_matching_product(self, client, order_service) -> None:
        payload = order_payload()
        payload["items"][0]["customizations"] = {
            "kind": "voucher_purchase",
            "voucher_template_id": str(uuid.uuid4()),
        }

        response = client.post("/api/v1/orders", json=payload)

        assert response.status_code == 422
        assert response.json()["error"] == "Validation Error"
        order_service.create_order.assert_not_awaited()

    def test_priority_out_of_range(self, client) -> None:
        payload = order_payload()
        payload["items"][0]["customizations"]["priority"] = 9

        assert client.post("/api/v1/orders", json=payload).status_code == 422


# ============================================================================
# Order Reads and Status
# ============================================================================


class TestOrderEndpoints:
    def test_get_order(self, client, order_service) -> None:
        order = make_order()
        order_service.get_order.return_value = order

        response = client.get(f"/api/v1/orders/{order.id}")

        assert response.status_code == 200
        assert response.json()["total_price"] == "60.50"

    def test_get_missing_order(self, client, order_service) -> None:
        order_service.get_order.side_effect = OrderNotFoundError("Order not found")

        response = client.get(f"/api/v1/orders/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"] == "Not Found"

    def test_list_user_orders(self, client, order_service) -> None:
        order_service.list_user_orders.return_value = ([make_order()], 1)

        response = client.get(f"/api/v1/orders/user/{uuid.uuid4()}?limit=5")

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["limit"] == 5

    def test_backward_status_is_conflict(self, client, order_service) -> None:
        order_service.update_order_status.side_effect = StateTransitionError(
            "Invalid transition from shipped to confirmed",
            current_state=OrderStatus.SHIPPED,
            target_state=OrderStatus.CONFIRMED,
        )

        response = client.patch(
            f"/api/v1/orders/{uuid.uuid4()}/status", json={"status": "confirmed"}
        )

        assert response.status_code == 409
        assert response.json()["details"]["current_state"] == "shipped"


# ============================================================================
# Shipment Creation
# ============================================================================


class TestCreateShipmentEndpoint:
    def test_created(self, client, shipment_service) -> None:
        order_id = uuid.uuid4()
        shipment_service.create_shipment.return_value = make_shipment(order_id)

        response = client.post(f"/api/v1/orders/{order_id}/shipment", json={"packages": 2})

        assert response.status_code == 201
        assert response.json()["carrier_reference"] == "61771003311234"
        assert shipment_service.create_shipment.await_args.kwargs["packages"] == 2

    def test_error_mapping(self, client, shipment_service) -> None:
        order_id = uuid.uuid4()
        cases = [
            (DuplicateShipment("Order already has a shipment"), 409),
            (MissingShippingAddress("Order shipping address is incomplete"), 422),
            (CarrierUnavailable("Carrier request timed out"), 503),
            (CarrierNotConfigured("GLS integration is disabled"), 503),
            (CarrierError("Carrier fault: Usuario no autorizado"), 502),
        ]
        for error, expected in cases:
            shipment_service.create_shipment.side_effect = error

            response = client.post(f"/api/v1/orders/{order_id}/shipment", json={})

            assert response.status_code == expected, type(error).__name__


class TestHealth:
    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers
