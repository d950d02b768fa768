"""Order service error hierarchy."""

from typing import Any

from printshop.services.orders.enums import OrderStatus, PaymentStatus


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised when order input fails validation."""

    pass


class OrderNotFoundError(OrderServiceError):
    """Raised when order is not found."""

    pass


class StateTransitionError(OrderServiceError):
    """Raised when an invalid order status transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context: Any,
    ):
        super().__init__(
            message,
            current_state=current_state.value,
            target_state=target_state.value,
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state


class PaymentTransitionError(OrderServiceError):
    """Raised when an invalid payment status transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: PaymentStatus,
        target_state: PaymentStatus,
        **context: Any,
    ):
        super().__init__(
            message,
            current_state=current_state.value,
            target_state=target_state.value,
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state
