"""
Scheduler-triggered jobs.

The same jobs run on the Celery beat schedule; these endpoints let an
external scheduler or an operator trigger a run.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from printshop.api.deps import (
    DatabaseSession,
    LedgerServiceDep,
    NotifierDep,
    ShipmentServiceDep,
    verify_cron_secret,
)
from printshop.schemas.shipments import SyncRunResponse
from printshop.services.ledger.tasks import check_voucher_expiration

router = APIRouter(
    prefix="/cron",
    tags=["Cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.post("/update-tracking", response_model=SyncRunResponse)
async def update_tracking(
    service: ShipmentServiceDep,
    limit: Optional[int] = Query(None, ge=1, le=1000),
) -> SyncRunResponse:
    result = await service.sync_active_shipments(limit)
    return SyncRunResponse(**result.as_dict())


@router.post("/check-voucher-expiration")
async def check_voucher_expiration_endpoint(
    db: DatabaseSession,
    ledger: LedgerServiceDep,
    notifier: NotifierDep,
) -> dict[str, int]:
    result = await check_voucher_expiration(db, notifier, ledger=ledger)
    return result.as_dict()
