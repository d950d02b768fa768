"""
Order and payment status with their transition rules.

Order status only moves forward along

    PENDING -> CONFIRMED -> IN_PRODUCTION -> READY -> SHIPPED -> DELIVERED

and may skip steps. CANCELLED is reachable from any state that is not
terminal. DELIVERED and CANCELLED are terminal. Payment status is a
separate axis with its own table.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PRODUCTION = "in_production"
    READY = "ready"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CARD = "card"
    VOUCHER = "voucher"
    BANK_TRANSFER = "bank_transfer"


class ProductType(str, Enum):
    """Product line of an order item. Only DTF textile is sold by the meter."""

    DTF_TEXTILE = "dtf_textile"
    DTF_UV = "dtf_uv"
    VOUCHER = "voucher"
    OTHER = "other"

    @property
    def consumes_meters(self) -> bool:
        return self == ProductType.DTF_TEXTILE


_FORWARD_ORDER = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.IN_PRODUCTION,
    OrderStatus.READY,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

# A failed payment can be retried, a refund is final
PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PAID, PaymentStatus.PENDING},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}


def validate_order_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """
    Whether an order may move from current to new.

    Staying in the same status is not a transition and returns False;
    callers short-circuit that case as a no-op first.
    """
    if current.is_terminal() or current == new:
        return False
    if new == OrderStatus.CANCELLED:
        return True
    return _FORWARD_ORDER.index(new) > _FORWARD_ORDER.index(current)


def validate_payment_status_transition(
    current: PaymentStatus, new: PaymentStatus
) -> bool:
    return new in PAYMENT_STATUS_TRANSITIONS[current]


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    return {
        candidate
        for candidate in OrderStatus
        if validate_order_status_transition(current, candidate)
    }


def get_allowed_payment_transitions(current: PaymentStatus) -> Set[PaymentStatus]:
    return set(PAYMENT_STATUS_TRANSITIONS[current])
