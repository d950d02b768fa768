"""Shipment tracking and label endpoints."""

from uuid import UUID

from fastapi import APIRouter
from fastapi.responses import Response

from printshop.api.deps import ShipmentServiceDep
from printshop.core.logging import get_logger
from printshop.schemas.shipments import TrackingSyncResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/shipments", tags=["Shipments"])


@router.post("/{shipment_id}/sync", response_model=TrackingSyncResponse)
async def sync_shipment(
    shipment_id: UUID,
    service: ShipmentServiceDep,
) -> TrackingSyncResponse:
    """
    Pull the latest carrier tracking for one shipment.

    Raises:
        ShipmentNotFoundError: 404
        CarrierError: 502, or 503 when the carrier is unavailable
    """
    result = await service.sync_tracking(shipment_id)
    return TrackingSyncResponse.model_validate(result)


@router.get(
    "/{shipment_id}/label",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}},
)
async def get_shipment_label(shipment_id: UUID, service: ShipmentServiceDep) -> Response:
    label = await service.get_label(shipment_id)
    return Response(
        content=label,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="label-{shipment_id}.pdf"'},
    )
