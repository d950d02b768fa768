"""Tests for loyalty tier, earning and redemption rules."""

from decimal import Decimal

import pytest

from printshop.services.ledger import rules
from printshop.services.ledger.enums import LoyaltyTier
from printshop.services.ledger.exceptions import (
    InsufficientBalance,
    InvalidRedemptionAmount,
)


# ============================================================================
# Tiers
# ============================================================================


class TestTierForSpend:
    @pytest.mark.parametrize(
        "spent,expected",
        [
            ("0", LoyaltyTier.BRONZE),
            ("199.99", LoyaltyTier.BRONZE),
            ("200", LoyaltyTier.SILVER),
            ("499.99", LoyaltyTier.SILVER),
            ("500", LoyaltyTier.GOLD),
            ("1000", LoyaltyTier.PLATINUM),
            ("25000", LoyaltyTier.PLATINUM),
        ],
    )
    def test_highest_reached_threshold_wins(self, spent: str, expected: LoyaltyTier) -> None:
        assert rules.tier_for_spend(Decimal(spent)) == expected

    def test_next_tier_reports_remaining_spend(self) -> None:
        next_tier, remaining = rules.next_tier_info("150")

        assert next_tier == LoyaltyTier.SILVER
        assert remaining == Decimal("50.00")

    def test_next_tier_from_gold(self) -> None:
        assert rules.next_tier_info(Decimal("620.40")) == (
            LoyaltyTier.PLATINUM,
            Decimal("379.60"),
        )

    def test_top_tier_has_no_next(self) -> None:
        assert rules.next_tier_info("1200") == (None, Decimal("0.00"))


# ============================================================================
# Earning
# ============================================================================


class TestCalculatePointsEarned:
    def test_bronze_floors_to_whole_points(self) -> None:
        assert rules.calculate_points_earned(Decimal("60.50"), LoyaltyTier.BRONZE) == 60

    def test_silver_multiplier(self) -> None:
        assert rules.calculate_points_earned(Decimal("100"), LoyaltyTier.SILVER) == 125

    def test_voucher_purchase_bonus(self) -> None:
        points = rules.calculate_points_earned(
            Decimal("100"), LoyaltyTier.BRONZE, is_voucher_purchase=True
        )
        assert points == 125

    def test_bonus_applies_after_tier_flooring(self) -> None:
        assert rules.calculate_points_earned(Decimal("33.33"), LoyaltyTier.GOLD) == 49
        assert (
            rules.calculate_points_earned(
                Decimal("33.33"), LoyaltyTier.GOLD, is_voucher_purchase=True
            )
            == 61
        )

    def test_platinum_doubles(self) -> None:
        assert rules.calculate_points_earned("10.99", LoyaltyTier.PLATINUM) == 21

    @pytest.mark.parametrize("amount", ["0", "-15.00"])
    def test_non_positive_amount_earns_nothing(self, amount: str) -> None:
        assert rules.calculate_points_earned(Decimal(amount), LoyaltyTier.GOLD, True) == 0


# ============================================================================
# Conversion
# ============================================================================


class TestConversion:
    def test_points_to_currency_counts_whole_units(self) -> None:
        assert rules.points_to_currency(100) == Decimal("5.00")
        assert rules.points_to_currency(250) == Decimal("10.00")
        assert rules.points_to_currency(99) == Decimal("0.00")
        assert rules.points_to_currency(0) == Decimal("0.00")

    def test_currency_to_points_rounds_up(self) -> None:
        assert rules.currency_to_points(Decimal("10.00")) == 200
        assert rules.currency_to_points(Decimal("10.01")) == 201
        assert rules.currency_to_points(Decimal("0")) == 0


# ============================================================================
# Redemption
# ============================================================================


class TestMaxRedeemablePoints:
    def test_capped_by_subtotal_and_rounded_to_units(self) -> None:
        # 20% of 110.00 is 22.00 = 440 points, rounded down to 400
        assert rules.max_redeemable_points(1000, Decimal("110.00")) == 400

    def test_capped_by_balance(self) -> None:
        assert rules.max_redeemable_points(250, Decimal("1000.00")) == 200

    def test_no_balance(self) -> None:
        assert rules.max_redeemable_points(0, Decimal("500.00")) == 0

    def test_below_minimum_returns_zero(self) -> None:
        assert rules.max_redeemable_points(80, Decimal("500.00")) == 0
        assert rules.max_redeemable_points(1000, Decimal("4.00")) == 0


class TestValidateRedemption:
    def test_below_minimum(self) -> None:
        with pytest.raises(InvalidRedemptionAmount):
            rules.validate_redemption(50, 1000, Decimal("500.00"))

    def test_not_a_multiple_of_unit(self) -> None:
        with pytest.raises(InvalidRedemptionAmount):
            rules.validate_redemption(150, 1000, Decimal("500.00"))

    def test_more_than_available(self) -> None:
        with pytest.raises(InsufficientBalance) as exc_info:
            rules.validate_redemption(300, 200, Decimal("500.00"))

        assert exc_info.value.resource == "points"
        assert exc_info.value.requested == 300
        assert exc_info.value.available == 200

    def test_balance_checked_before_cap(self) -> None:
        with pytest.raises(InsufficientBalance):
            rules.validate_redemption(500, 200, Decimal("10.00"))

    def test_over_subtotal_cap(self) -> None:
        with pytest.raises(InvalidRedemptionAmount) as exc_info:
            rules.validate_redemption(500, 1000, Decimal("100.00"))

        assert exc_info.value.context["max_points"] == 400

    def test_at_cap_is_allowed(self) -> None:
        rules.validate_redemption(400, 1000, Decimal("100.00"))
