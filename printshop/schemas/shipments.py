"""Shipment and tracking sync schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from printshop.services.shipments.enums import ShipmentStatus


class ShipmentCreateRequest(BaseModel):
    """Parcels to register with the carrier for an order."""

    packages: int = Field(default=1, ge=1, le=99)
    weight: Optional[Decimal] = Field(None, gt=0, max_digits=8, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=500)


class ShipmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    carrier: str
    carrier_reference: Optional[str]
    tracking_number: Optional[str]
    status: ShipmentStatus
    incidence: Optional[str]
    last_sync_at: Optional[datetime]
    delivered_at: Optional[datetime]
    recipient_name: str
    recipient_city: str
    recipient_postal_code: str
    recipient_country: str
    packages: int
    weight: Optional[Decimal]
    created_at: datetime


class TrackingSyncResponse(BaseModel):
    """Outcome of syncing one shipment."""

    model_config = ConfigDict(from_attributes=True)

    shipment_id: UUID
    new_events_count: int
    status: ShipmentStatus
    previous_status: ShipmentStatus
    order_delivered: bool


class FailedSyncResponse(BaseModel):
    shipment_id: UUID
    error: str
    error_type: str


class SyncRunResponse(BaseModel):
    """Counters of a batch tracking sync."""

    checked: int
    updated: int
    delivered: int
    failed: int
    failures: list[FailedSyncResponse] = Field(default_factory=list)
