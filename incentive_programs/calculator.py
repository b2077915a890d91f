"""
Rebate Accrual Calculator (``incentive_programs.calculator``).

Responsibility
--------------
Pure calculation functions: tier resolution, accrual amount and cap,
progress toward the next tier, and straight-line rebate projection.

Architecture position
---------------------
**Programs layer** -- pure helper functions.  No I/O, no session, no
clock.  Called by the batch accrual runner and the projection query, and
directly from tests.

Invariants enforced
-------------------
* Tier selection is a step function: the tier with the highest
  ``min_volume`` not exceeding the volume wins; no interpolation.
* ``final_amount <= accrued_amount``, and ``final_amount <=
  max_payout_per_dealer`` when that cap is set.
* Identical inputs always produce identical output.

Failure modes
-------------
* Negative volume -> ``ValidationError``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from incentive_kernel.db.types import HUNDRED, ZERO, round_money
from incentive_kernel.exceptions import ValidationError
from incentive_programs.models import (
    AccrualCalculation,
    AccrualPeriod,
    FlatRate,
    RateRuleset,
    RebateProjection,
    Tier,
    TieredRates,
)


def select_tier(tiers: tuple[Tier, ...], volume: Decimal) -> Tier | None:
    """Return the tier with the largest ``min_volume <= volume``, or None."""
    for tier in sorted(tiers, key=lambda t: t.min_volume, reverse=True):
        if tier.min_volume <= volume:
            return tier
    return None


def next_tier(tiers: tuple[Tier, ...], current: Tier | None) -> Tier | None:
    """The next-higher tier after ``current`` (the lowest tier when None)."""
    ordered = sorted(tiers, key=lambda t: t.min_volume)
    if current is None:
        return ordered[0] if ordered else None
    for tier in ordered:
        if tier.min_volume > current.min_volume:
            return tier
    return None


def resolve_rate(ruleset: RateRuleset, volume: Decimal) -> tuple[Decimal, Tier | None]:
    """Rate and achieved tier for ``volume`` under ``ruleset``."""
    if isinstance(ruleset, FlatRate):
        return ruleset.rate, None
    tier = select_tier(ruleset.tiers, volume)
    if tier is None:
        return ruleset.floor_rate, None
    return tier.rate, tier


def tier_progress(ruleset: RateRuleset, volume: Decimal) -> Decimal:
    """
    Percentage (0-100) of the way from the achieved tier to the next one.

    100 at or above the top tier; 0 when no tier is achieved or the
    ruleset has no tiers.
    """
    if not isinstance(ruleset, TieredRates):
        return ZERO
    achieved = select_tier(ruleset.tiers, volume)
    if achieved is None:
        return ZERO
    upcoming = next_tier(ruleset.tiers, achieved)
    if upcoming is None:
        return round_money(HUNDRED)
    span = upcoming.min_volume - achieved.min_volume
    progress = (volume - achieved.min_volume) / span * HUNDRED
    return round_money(min(HUNDRED, max(ZERO, progress)))


def calculate_accrual(
    ruleset: RateRuleset,
    volume: Decimal,
    decimal_places: int = 2,
    minimum_volume: Decimal | None = None,
) -> AccrualCalculation:
    """
    Compute rate, tier, accrual and capped final amount for one dealer.

    Preconditions:
        - ``volume`` is a ``Decimal`` >= 0 (already filtered for product
          eligibility).
    Postconditions:
        - ``accrued_amount == round(volume * rate)``.
        - ``final_amount == min(accrued_amount, max_payout_per_dealer)``.
        - Volume below ``minimum_volume`` (the program's minimum order
          volume) accrues nothing at rate zero.

    Raises:
        ValidationError: If volume is negative.
    """
    if volume < ZERO:
        raise ValidationError("qualifying_volume", f"cannot be negative ({volume})")

    if minimum_volume is not None and volume < minimum_volume:
        return AccrualCalculation(
            qualifying_volume=volume,
            rate=ZERO,
            tier_achieved=None,
            accrued_amount=round_money(ZERO, decimal_places),
            final_amount=round_money(ZERO, decimal_places),
            tier_progress=ZERO,
        )

    rate, tier = resolve_rate(ruleset, volume)
    accrued = round_money(volume * rate, decimal_places)

    final = accrued
    cap = ruleset.caps.max_payout_per_dealer
    if cap is not None and cap < final:
        final = round_money(cap, decimal_places)

    return AccrualCalculation(
        qualifying_volume=volume,
        rate=rate,
        tier_achieved=tier.name if tier else None,
        accrued_amount=accrued,
        final_amount=final,
        tier_progress=tier_progress(ruleset, volume),
    )


def project_rebate(
    ruleset: RateRuleset,
    current_volume: Decimal,
    period: AccrualPeriod,
    as_of: date,
    decimal_places: int = 2,
) -> RebateProjection:
    """
    Extrapolate the period's volume from the average daily volume so far.

    Days elapsed counts ``as_of`` itself and is at least 1; days remaining
    never goes negative.
    """
    if current_volume < ZERO:
        raise ValidationError("current_volume", f"cannot be negative ({current_volume})")

    total_days = period.days
    days_elapsed = min(total_days, max(1, (as_of - period.start).days + 1))
    days_remaining = max(0, total_days - days_elapsed)

    average_daily = current_volume / Decimal(days_elapsed)
    projected_volume = round_money(
        current_volume + average_daily * Decimal(days_remaining), decimal_places
    )

    current_rate, current_tier = resolve_rate(ruleset, current_volume)
    projected_rate, projected_tier = resolve_rate(ruleset, projected_volume)

    upcoming: Tier | None = None
    volume_to_next: Decimal | None = None
    if isinstance(ruleset, TieredRates):
        upcoming = next_tier(ruleset.tiers, current_tier)
        if upcoming is not None:
            volume_to_next = upcoming.min_volume - current_volume

    return RebateProjection(
        current_volume=current_volume,
        projected_volume=projected_volume,
        current_rate=current_rate,
        projected_rate=projected_rate,
        current_accrual=round_money(current_volume * current_rate, decimal_places),
        projected_accrual=round_money(projected_volume * projected_rate, decimal_places),
        current_tier=current_tier.name if current_tier else None,
        projected_tier=projected_tier.name if projected_tier else None,
        next_tier=upcoming,
        volume_to_next_tier=volume_to_next,
        days_remaining=days_remaining,
        average_daily_volume=round_money(average_daily, decimal_places),
    )
