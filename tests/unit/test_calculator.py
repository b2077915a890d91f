"""
Tests for the rebate accrual calculator (``incentive_programs.calculator``).

Covers tier selection as a step function, floor rates, the per-dealer
cap, minimum order volume, half-up rounding, tier progress and the
straight-line projection.
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from incentive_kernel.exceptions import ValidationError
from incentive_programs.calculator import (
    calculate_accrual,
    next_tier,
    project_rebate,
    resolve_rate,
    select_tier,
    tier_progress,
)
from incentive_programs.models import (
    AccrualPeriod,
    FlatRate,
    PayoutCaps,
    PeriodType,
    Tier,
    TieredRates,
)
from tests.conftest import TIERED_RULESET

FEBRUARY = AccrualPeriod(PeriodType.MONTHLY, date(2026, 2, 1), date(2026, 2, 28))

volumes = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("10000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestTierSelection:
    """The highest threshold not above the volume wins."""

    def test_middle_tier(self):
        tier = select_tier(TIERED_RULESET.tiers, Decimal("25000"))
        assert tier.name == "Silver"

    def test_threshold_is_inclusive(self):
        assert select_tier(TIERED_RULESET.tiers, Decimal("50000")).name == "Gold"
        assert select_tier(TIERED_RULESET.tiers, Decimal("49999.99")).name == "Silver"

    def test_zero_volume_gets_zero_threshold_tier(self):
        assert select_tier(TIERED_RULESET.tiers, Decimal("0")).name == "Base"

    def test_below_every_threshold_is_none(self):
        tiers = (Tier("Silver", Decimal("10000"), Decimal("0.02")),)
        assert select_tier(tiers, Decimal("9999")) is None

    def test_next_tier(self):
        silver = select_tier(TIERED_RULESET.tiers, Decimal("25000"))
        assert next_tier(TIERED_RULESET.tiers, silver).name == "Gold"
        gold = select_tier(TIERED_RULESET.tiers, Decimal("60000"))
        assert next_tier(TIERED_RULESET.tiers, gold) is None
        assert next_tier(TIERED_RULESET.tiers, None).name == "Base"

    def test_floor_rate_below_first_tier(self):
        ruleset = TieredRates(
            tiers=(Tier("Silver", Decimal("10000"), Decimal("0.02")),),
            floor_rate=Decimal("0.005"),
        )
        rate, tier = resolve_rate(ruleset, Decimal("5000"))
        assert rate == Decimal("0.005")
        assert tier is None

    def test_flat_rate_has_no_tier(self):
        rate, tier = resolve_rate(FlatRate(rate=Decimal("0.05")), Decimal("123"))
        assert rate == Decimal("0.05")
        assert tier is None

    @given(volume=volumes)
    @settings(max_examples=200)
    def test_selected_tier_is_highest_reachable(self, volume):
        tier = select_tier(TIERED_RULESET.tiers, volume)
        assert tier is not None
        assert tier.min_volume <= volume
        assert not any(
            tier.min_volume < t.min_volume <= volume for t in TIERED_RULESET.tiers
        )


class TestCalculateAccrual:

    def test_silver_example(self):
        calc = calculate_accrual(TIERED_RULESET, Decimal("25000"))
        assert calc.rate == Decimal("0.02")
        assert calc.tier_achieved == "Silver"
        assert calc.accrued_amount == Decimal("500.00")
        assert calc.final_amount == Decimal("500.00")
        assert not calc.capped

    def test_per_dealer_cap(self):
        calc = calculate_accrual(TIERED_RULESET, Decimal("1000000"))
        assert calc.tier_achieved == "Gold"
        assert calc.accrued_amount == Decimal("30000.00")
        assert calc.final_amount == Decimal("20000.00")
        assert calc.capped

    def test_zero_volume(self):
        calc = calculate_accrual(TIERED_RULESET, Decimal("0"))
        assert calc.accrued_amount == Decimal("0")
        assert calc.final_amount == Decimal("0")
        assert calc.tier_achieved == "Base"

    def test_negative_volume_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            calculate_accrual(TIERED_RULESET, Decimal("-1"))
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_rounds_half_up(self):
        calc = calculate_accrual(FlatRate(rate=Decimal("0.05")), Decimal("10.10"))
        assert calc.accrued_amount == Decimal("0.51")

    def test_decimal_places_configurable(self):
        calc = calculate_accrual(
            FlatRate(rate=Decimal("0.05")), Decimal("10.10"), decimal_places=3
        )
        assert calc.accrued_amount == Decimal("0.505")

    def test_below_minimum_volume_accrues_nothing(self):
        calc = calculate_accrual(
            TIERED_RULESET, Decimal("4000"), minimum_volume=Decimal("5000")
        )
        assert calc.rate == Decimal("0")
        assert calc.final_amount == Decimal("0")
        assert calc.tier_achieved is None

    def test_minimum_volume_met(self):
        calc = calculate_accrual(
            TIERED_RULESET, Decimal("5000"), minimum_volume=Decimal("5000")
        )
        assert calc.final_amount == Decimal("50.00")

    def test_deterministic(self):
        first = calculate_accrual(TIERED_RULESET, Decimal("33333.33"))
        second = calculate_accrual(TIERED_RULESET, Decimal("33333.33"))
        assert first == second

    @given(volume=volumes)
    @settings(max_examples=200)
    def test_final_never_exceeds_accrued_or_cap(self, volume):
        calc = calculate_accrual(TIERED_RULESET, volume)
        assert calc.final_amount <= calc.accrued_amount
        assert calc.final_amount <= TIERED_RULESET.caps.max_payout_per_dealer
        assert calc.final_amount >= 0

    @given(volume=volumes)
    def test_uncapped_final_equals_accrued(self, volume):
        ruleset = FlatRate(rate=Decimal("0.03"), caps=PayoutCaps())
        calc = calculate_accrual(ruleset, volume)
        assert calc.final_amount == calc.accrued_amount


class TestTierProgress:

    def test_progress_between_tiers(self):
        assert tier_progress(TIERED_RULESET, Decimal("25000")) == Decimal("37.50")

    def test_top_tier_is_complete(self):
        assert tier_progress(TIERED_RULESET, Decimal("75000")) == Decimal("100.00")

    def test_flat_rate_has_no_progress(self):
        assert tier_progress(FlatRate(rate=Decimal("0.05")), Decimal("5000")) == 0

    @given(volume=volumes)
    def test_progress_bounded(self, volume):
        progress = tier_progress(TIERED_RULESET, volume)
        assert Decimal("0") <= progress <= Decimal("100")


class TestProjectRebate:

    def test_mid_period_projection(self):
        projection = project_rebate(
            TIERED_RULESET, Decimal("7000"), FEBRUARY, date(2026, 2, 14)
        )
        assert projection.days_remaining == 14
        assert projection.average_daily_volume == Decimal("500.00")
        assert projection.projected_volume == Decimal("14000.00")
        assert projection.current_tier == "Base"
        assert projection.projected_tier == "Silver"
        assert projection.current_accrual == Decimal("70.00")
        assert projection.projected_accrual == Decimal("280.00")
        assert projection.next_tier.name == "Silver"
        assert projection.volume_to_next_tier == Decimal("3000")

    def test_before_period_start_counts_one_day(self):
        projection = project_rebate(
            TIERED_RULESET, Decimal("100"), FEBRUARY, date(2026, 1, 20)
        )
        assert projection.average_daily_volume == Decimal("100.00")
        assert projection.days_remaining == 27

    def test_after_period_end_projects_current_volume(self):
        projection = project_rebate(
            TIERED_RULESET, Decimal("12000"), FEBRUARY, date(2026, 3, 5)
        )
        assert projection.days_remaining == 0
        assert projection.projected_volume == Decimal("12000.00")

    def test_top_tier_has_no_next_tier(self):
        projection = project_rebate(
            TIERED_RULESET, Decimal("60000"), FEBRUARY, date(2026, 2, 10)
        )
        assert projection.next_tier is None
        assert projection.volume_to_next_tier is None

    def test_flat_rate_has_no_next_tier(self):
        projection = project_rebate(
            FlatRate(rate=Decimal("0.05")), Decimal("1000"), FEBRUARY, date(2026, 2, 10)
        )
        assert projection.next_tier is None
        assert projection.current_rate == projection.projected_rate == Decimal("0.05")

    def test_negative_volume_rejected(self):
        with pytest.raises(ValidationError):
            project_rebate(TIERED_RULESET, Decimal("-5"), FEBRUARY, date(2026, 2, 10))
