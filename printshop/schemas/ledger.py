"""Voucher balance and loyalty schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from printshop.services.ledger.enums import LoyaltyTier


class VoucherBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    remaining_meters: Decimal
    remaining_shipments: int
    expires_at: Optional[datetime]


class AvailableMetersResponse(BaseModel):
    """Meters and shipments left across a customer's active vouchers."""

    user_id: UUID
    total_meters: Decimal
    total_shipments: int
    vouchers: list[VoucherBalanceResponse] = Field(default_factory=list)


class RedemptionQuoteResponse(BaseModel):
    max_points: int
    max_discount: Decimal


class LoyaltySummaryResponse(BaseModel):
    """Loyalty account overview."""

    user_id: UUID
    tier: LoyaltyTier
    available_points: int
    total_points: int
    lifetime_points: int
    total_spent: Decimal
    multiplier: Decimal
    points_value: Decimal
    next_tier: Optional[LoyaltyTier]
    spend_to_next_tier: Decimal
    redemption: Optional[RedemptionQuoteResponse] = None


class ReconciliationResponse(BaseModel):
    """Cached balance compared against the transaction log."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    available_points: int
    transactions_sum: int
    earned_sum: int
    redeemed_sum: int
    is_consistent: bool
    difference: int
