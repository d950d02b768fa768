"""Customer voucher balance and loyalty endpoints."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query

from printshop.api.deps import LedgerServiceDep
from printshop.schemas.ledger import (
    AvailableMetersResponse,
    LoyaltySummaryResponse,
    ReconciliationResponse,
    VoucherBalanceResponse,
)

router = APIRouter(prefix="/users", tags=["Vouchers & Loyalty"])


@router.get("/{user_id}/vouchers/available-meters", response_model=AvailableMetersResponse)
async def get_available_meters(
    user_id: UUID,
    ledger: LedgerServiceDep,
) -> AvailableMetersResponse:
    available = await ledger.get_available_meters(user_id)
    return AvailableMetersResponse(
        user_id=user_id,
        total_meters=available.total_meters,
        total_shipments=available.total_shipments,
        vouchers=[VoucherBalanceResponse.model_validate(v) for v in available.vouchers],
    )


@router.get("/{user_id}/loyalty", response_model=LoyaltySummaryResponse)
async def get_loyalty_summary(
    user_id: UUID,
    ledger: LedgerServiceDep,
    subtotal: Optional[Decimal] = Query(
        None,
        ge=0,
        description="Cart subtotal to quote a points redemption against",
    ),
) -> LoyaltySummaryResponse:
    summary = await ledger.get_loyalty_summary(user_id, subtotal)
    return LoyaltySummaryResponse(**summary)


@router.get("/{user_id}/loyalty/reconciliation", response_model=ReconciliationResponse)
async def reconcile_loyalty_account(
    user_id: UUID,
    ledger: LedgerServiceDep,
) -> ReconciliationResponse:
    """Compare the cached point balance with the transaction log."""
    report = await ledger.reconcile_account(user_id)
    return ReconciliationResponse.model_validate(report)
