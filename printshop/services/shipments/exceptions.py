"""Shipment service error hierarchy."""

from typing import Any


class ShipmentServiceError(Exception):
    """Base exception for shipment service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class ShipmentNotFoundError(ShipmentServiceError):
    """Raised when a shipment or its order is not found."""

    pass


class DuplicateShipment(ShipmentServiceError):
    """Raised when an order already has a shipment."""

    pass


class MissingShippingAddress(ShipmentServiceError):
    """Raised when an order lacks the address fields the carrier needs."""

    pass


class StaleTrackingEvent(ShipmentServiceError):
    """Raised for a carrier event that is already recorded; callers skip it."""

    pass
