"""Shipment status enum and carrier status-code mapping.

Shipment status only moves forward along

    CREATED -> PICKED_UP -> IN_TRANSIT -> OUT_FOR_DELIVERY -> DELIVERED

EXCEPTION can be entered from any non-terminal state when the carrier
flags an incidence. It is left when the carrier reports a regular status
at or beyond the one held before the incidence. DELIVERED is terminal.
"""

from enum import Enum
from typing import Dict, Optional


class ShipmentStatus(str, Enum):
    """Carrier-side lifecycle of a shipment."""

    CREATED = "created"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"

    def is_terminal(self) -> bool:
        return self == ShipmentStatus.DELIVERED


SHIPMENT_STATUS_PROGRESS: Dict[ShipmentStatus, int] = {
    ShipmentStatus.CREATED: 0,
    ShipmentStatus.PICKED_UP: 1,
    ShipmentStatus.IN_TRANSIT: 2,
    ShipmentStatus.OUT_FOR_DELIVERY: 3,
    ShipmentStatus.DELIVERED: 4,
}

# GLS "codestado" values
CARRIER_STATUS_CODES: Dict[int, ShipmentStatus] = {
    0: ShipmentStatus.CREATED,
    1: ShipmentStatus.PICKED_UP,
    2: ShipmentStatus.PICKED_UP,
    3: ShipmentStatus.IN_TRANSIT,
    4: ShipmentStatus.IN_TRANSIT,
    5: ShipmentStatus.IN_TRANSIT,
    6: ShipmentStatus.OUT_FOR_DELIVERY,
    7: ShipmentStatus.DELIVERED,
}

# Shipments polled by the scheduled tracking sync
SYNCABLE_SHIPMENT_STATUSES = frozenset(
    {
        ShipmentStatus.CREATED,
        ShipmentStatus.PICKED_UP,
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.OUT_FOR_DELIVERY,
        ShipmentStatus.EXCEPTION,
    }
)


def map_carrier_status(
    code: Optional[int],
    incidence: Optional[str] = None,
) -> Optional[ShipmentStatus]:
    """Map a carrier status code to the internal status.

    A reported incidence overrides the code. Unknown codes without an
    incidence map to None (no change).

    Args:
        code: Carrier status code, if reported
        incidence: Carrier incidence text, if any

    Returns:
        Mapped status or None
    """
    if incidence and incidence.strip():
        return ShipmentStatus.EXCEPTION
    if code is None:
        return None
    return CARRIER_STATUS_CODES.get(code)


def is_forward_progress(
    current: ShipmentStatus,
    new: ShipmentStatus,
    resume_from: Optional[ShipmentStatus] = None,
) -> bool:
    """Check whether moving from current to new advances the shipment.

    Args:
        current: Stored shipment status
        new: Status derived from the latest carrier response
        resume_from: Status held before the shipment entered EXCEPTION

    Returns:
        True if the stored status should be replaced
    """
    if current.is_terminal() or current == new:
        return False
    if new == ShipmentStatus.EXCEPTION:
        return True
    if current == ShipmentStatus.EXCEPTION:
        if resume_from is None or resume_from == ShipmentStatus.EXCEPTION:
            return True
        return SHIPMENT_STATUS_PROGRESS[new] >= SHIPMENT_STATUS_PROGRESS[resume_from]
    return SHIPMENT_STATUS_PROGRESS[new] > SHIPMENT_STATUS_PROGRESS[current]
