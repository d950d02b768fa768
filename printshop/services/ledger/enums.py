"""Voucher, loyalty tier and point transaction enums."""

from enum import Enum


class VoucherType(str, Enum):
    """Kind of balance a voucher carries.

    METERS vouchers hold prepaid print meters and free shipments and are
    the only kind consumed by the FIFO debit.
    """

    METERS = "meters"
    DISCOUNT_AMOUNT = "discount_amount"
    DISCOUNT_PERCENT = "discount_percent"


class LoyaltyTier(str, Enum):
    """Loyalty bracket derived from lifetime spend."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class PointTransactionType(str, Enum):
    """Direction of a loyalty point ledger entry."""

    EARNED = "earned"
    REDEEMED = "redeemed"
