"""
Payment gateway signal endpoints.

The gateway adapter calls these after a checkout settles. Both endpoints
are idempotent, so a redelivered signal is harmless.
"""

from fastapi import APIRouter, Depends

from printshop.api.deps import OrderServiceDep, verify_payment_secret
from printshop.core.logging import get_logger
from printshop.schemas.payments import (
    PaymentConfirmedSignal,
    PaymentFailedSignal,
    PaymentSignalResponse,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/payments",
    tags=["Payments"],
    dependencies=[Depends(verify_payment_secret)],
)

GATEWAY_ACTOR = "payment-gateway"


@router.post("/confirm", response_model=PaymentSignalResponse)
async def confirm_payment(
    signal: PaymentConfirmedSignal,
    service: OrderServiceDep,
) -> PaymentSignalResponse:
    """
    Mark an order paid, issue bought vouchers and credit loyalty points.

    Raises:
        OrderNotFoundError: 404
        PaymentTransitionError: 409 when the payment was refunded
    """
    logger.info(
        "Payment confirmation received",
        order_id=str(signal.order_id),
        payment_reference=signal.payment_reference,
    )
    order = await service.confirm_payment(
        signal.order_id,
        amount_paid=signal.amount_paid,
        payment_reference=signal.payment_reference,
        actor=GATEWAY_ACTOR,
    )
    return PaymentSignalResponse.model_validate(order)


@router.post("/failed", response_model=PaymentSignalResponse)
async def payment_failed(
    signal: PaymentFailedSignal,
    service: OrderServiceDep,
) -> PaymentSignalResponse:
    logger.info(
        "Payment failure received",
        order_id=str(signal.order_id),
        reason=signal.reason,
    )
    order = await service.mark_payment_failed(
        signal.order_id,
        reason=signal.reason,
        actor=GATEWAY_ACTOR,
    )
    return PaymentSignalResponse.model_validate(order)
