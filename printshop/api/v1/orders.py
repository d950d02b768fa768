"""
Order API endpoints.

Domain errors raised by the services are translated to HTTP responses by
the exception handlers registered in printshop.main.
"""

from uuid import UUID

from fastapi import APIRouter, Query, status

from printshop.api.deps import Actor, OrderServiceDep, ShipmentServiceDep
from printshop.core.logging import get_logger
from printshop.schemas.orders import (
    OrderCreateRequest,
    OrderHistoryResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdateRequest,
)
from printshop.schemas.shipments import ShipmentCreateRequest, ShipmentResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
)
async def create_order(
    request: OrderCreateRequest,
    service: OrderServiceDep,
    actor: Actor,
) -> OrderResponse:
    """
    Place an order, optionally paid from meter vouchers and loyalty points.

    Raises:
        InsufficientBalance: 409 when vouchers or points fall short
        OrderValidationError: 422 for inconsistent order data
    """
    logger.info(
        "Creating order",
        user_id=str(request.user_id) if request.user_id else None,
        item_count=len(request.items),
        pay_with_vouchers=request.pay_with_vouchers,
    )

    order = await service.create_order(
        items=[item.to_service_dict() for item in request.items],
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        user_id=request.user_id,
        customer_phone=request.customer_phone,
        shipping_address=(
            request.shipping_address.model_dump(mode="json")
            if request.shipping_address
            else None
        ),
        shipping_cost=request.shipping_cost,
        discount_amount=request.discount_amount,
        points_to_use=request.points_to_use,
        pay_with_vouchers=request.pay_with_vouchers,
        notes=request.notes,
        actor=actor,
    )
    return OrderResponse.model_validate(order)


@router.get("/by-number/{order_number}", response_model=OrderResponse)
async def get_order_by_number(order_number: str, service: OrderServiceDep) -> OrderResponse:
    order = await service.get_order_by_number(order_number)
    return OrderResponse.model_validate(order)


@router.get("/user/{user_id}", response_model=OrderListResponse)
async def list_user_orders(
    user_id: UUID,
    service: OrderServiceDep,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> OrderListResponse:
    orders, total = await service.list_user_orders(user_id, limit, offset)
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: UUID, service: OrderServiceDep) -> OrderResponse:
    order = await service.get_order(order_id)
    return OrderResponse.model_validate(order)


@router.get("/{order_id}/history", response_model=list[OrderHistoryResponse])
async def get_order_history(
    order_id: UUID,
    service: OrderServiceDep,
) -> list[OrderHistoryResponse]:
    history = await service.get_order_history(order_id)
    return [OrderHistoryResponse.model_validate(entry) for entry in history]


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Change order status",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdateRequest,
    service: OrderServiceDep,
    actor: Actor,
) -> OrderResponse:
    """
    Operator status change.

    Raises:
        StateTransitionError: 409 for backward moves or unpaid orders
    """
    order = await service.update_order_status(order_id, request.status, request.notes, actor)
    logger.info(
        "Order status updated",
        order_id=str(order_id),
        status=order.status.value,
        actor=actor,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/shipment",
    response_model=ShipmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register the order's shipment with the carrier",
)
async def create_shipment(
    order_id: UUID,
    request: ShipmentCreateRequest,
    service: ShipmentServiceDep,
) -> ShipmentResponse:
    """
    Raises:
        DuplicateShipment: 409 when the order already has a shipment
        MissingShippingAddress: 422 when the address is incomplete
        CarrierError: 502, or 503 when the carrier is unavailable
    """
    shipment = await service.create_shipment(
        order_id,
        packages=request.packages,
        weight=request.weight,
        notes=request.notes,
    )
    return ShipmentResponse.model_validate(shipment)
