"""
Loyalty program rules.

Pure functions over amounts and point balances; nothing here touches the
database. Points are integers, money is Decimal.

    BRONZE    >= 0       x1
    SILVER    >= 200     x1.25
    GOLD      >= 500     x1.5
    PLATINUM  >= 1000    x2

100 points are worth 5.00 and at most 20% of an order subtotal can be paid
with points, in multiples of 100.
"""

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from typing import Optional, Union

from printshop.services.ledger.enums import LoyaltyTier
from printshop.services.ledger.exceptions import (
    InsufficientBalance,
    InvalidRedemptionAmount,
)

TIER_THRESHOLDS: dict[LoyaltyTier, Decimal] = {
    LoyaltyTier.BRONZE: Decimal("0"),
    LoyaltyTier.SILVER: Decimal("200"),
    LoyaltyTier.GOLD: Decimal("500"),
    LoyaltyTier.PLATINUM: Decimal("1000"),
}

TIER_MULTIPLIERS: dict[LoyaltyTier, Decimal] = {
    LoyaltyTier.BRONZE: Decimal("1"),
    LoyaltyTier.SILVER: Decimal("1.25"),
    LoyaltyTier.GOLD: Decimal("1.5"),
    LoyaltyTier.PLATINUM: Decimal("2"),
}

TIER_ORDER = [
    LoyaltyTier.BRONZE,
    LoyaltyTier.SILVER,
    LoyaltyTier.GOLD,
    LoyaltyTier.PLATINUM,
]

VOUCHER_PURCHASE_BONUS = Decimal("1.25")

POINTS_PER_REDEMPTION_UNIT = 100
REDEMPTION_UNIT_VALUE = Decimal("5.00")
POINT_VALUE = Decimal("0.05")
MIN_REDEMPTION_POINTS = 100
MAX_REDEMPTION_RATIO = Decimal("0.20")

CENTS = Decimal("0.01")

Amount = Union[Decimal, int, str]


def _to_decimal(value: Amount) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def tier_for_spend(total_spent: Amount) -> LoyaltyTier:
    """Return the highest tier whose threshold the spend reaches."""
    spent = _to_decimal(total_spent)
    tier = LoyaltyTier.BRONZE
    for candidate in TIER_ORDER:
        if spent >= TIER_THRESHOLDS[candidate]:
            tier = candidate
    return tier


def calculate_points_earned(
    amount: Amount,
    tier: LoyaltyTier,
    is_voucher_purchase: bool = False,
) -> int:
    """
    Calculate points earned for a paid amount.

    Args:
        amount: Amount paid
        tier: Customer tier before this purchase
        is_voucher_purchase: Apply the voucher purchase bonus

    Returns:
        Points earned, never negative
    """
    value = _to_decimal(amount)
    if value <= 0:
        return 0

    points = _floor(value * TIER_MULTIPLIERS[tier])
    if is_voucher_purchase:
        points = _floor(Decimal(points) * VOUCHER_PURCHASE_BONUS)
    return points


def points_to_currency(points: int) -> Decimal:
    """Currency value of points; only whole redemption units count."""
    if points <= 0:
        return Decimal("0.00")
    units = points // POINTS_PER_REDEMPTION_UNIT
    return (REDEMPTION_UNIT_VALUE * units).quantize(CENTS)


def currency_to_points(amount: Amount) -> int:
    """Points needed to cover an amount at the per-point value."""
    value = _to_decimal(amount)
    if value <= 0:
        return 0
    return _ceil(value / POINT_VALUE)


def max_redeemable_points(available: int, subtotal: Amount) -> int:
    """
    Largest number of points usable on an order.

    Bounded by the balance, the 20% subtotal cap and whole redemption units.

    Args:
        available: Available point balance
        subtotal: Order subtotal

    Returns:
        Maximum redeemable points (possibly 0)
    """
    if available <= 0:
        return 0
    cap = currency_to_points(_to_decimal(subtotal) * MAX_REDEMPTION_RATIO)
    usable = min(available, cap)
    points = (usable // POINTS_PER_REDEMPTION_UNIT) * POINTS_PER_REDEMPTION_UNIT
    return points if points >= MIN_REDEMPTION_POINTS else 0


def validate_redemption(points: int, available: int, subtotal: Amount) -> None:
    """
    Validate a redemption request.

    Checks run in a fixed order so the first broken rule is reported.

    Args:
        points: Points the customer wants to use
        available: Available point balance
        subtotal: Order subtotal

    Raises:
        InvalidRedemptionAmount: Below minimum, not a multiple of 100, or over the cap
        InsufficientBalance: More points than available
    """
    if points < MIN_REDEMPTION_POINTS:
        raise InvalidRedemptionAmount(
            f"Minimum redemption is {MIN_REDEMPTION_POINTS} points",
            points=points,
        )

    if points % POINTS_PER_REDEMPTION_UNIT != 0:
        raise InvalidRedemptionAmount(
            f"Points must be redeemed in multiples of {POINTS_PER_REDEMPTION_UNIT}",
            points=points,
        )

    if points > available:
        raise InsufficientBalance(
            f"Not enough points: requested {points}, available {available}",
            resource="points",
            requested=points,
            available=available,
        )

    cap = currency_to_points(_to_decimal(subtotal) * MAX_REDEMPTION_RATIO)
    if points > cap:
        raise InvalidRedemptionAmount(
            "Points can cover at most 20% of the order subtotal",
            points=points,
            max_points=cap,
        )


def next_tier_info(total_spent: Amount) -> tuple[Optional[LoyaltyTier], Decimal]:
    """
    Next tier and the spend still needed to reach it.

    Returns:
        (next tier, remaining spend), or (None, 0) at the top tier
    """
    spent = _to_decimal(total_spent)
    current = tier_for_spend(spent)
    index = TIER_ORDER.index(current)
    if index == len(TIER_ORDER) - 1:
        return None, Decimal("0.00")

    following = TIER_ORDER[index + 1]
    remaining = (TIER_THRESHOLDS[following] - spent).quantize(CENTS)
    return following, remaining
