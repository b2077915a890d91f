"""
Accrual period resolution.

Calendar boundaries for monthly, quarterly and annual runs, plus explicit
date ranges labelled by their length.  Accruals are keyed by
``period.start`` only, so two runs that resolve to the same start date
address the same accrual rows.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from incentive_programs.models import AccrualPeriod, PeriodType, coerce_enum

MONTHLY_MAX_SPAN_DAYS = 35
QUARTERLY_MAX_SPAN_DAYS = 95


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def parse_period_type(value: PeriodType | str) -> PeriodType:
    return coerce_enum(PeriodType, value, "period_type")


def resolve_period(period_type: PeriodType | str, reference_date: date) -> AccrualPeriod:
    """
    Calendar period of ``period_type`` containing ``reference_date``.

    monthly   -- first to last day of the month
    quarterly -- 3-month block starting at a month index divisible by 3
    annual    -- calendar year
    """
    kind = parse_period_type(period_type)
    year, month = reference_date.year, reference_date.month

    if kind is PeriodType.MONTHLY:
        return AccrualPeriod(kind, date(year, month, 1), _month_end(year, month))
    if kind is PeriodType.QUARTERLY:
        first_month = ((month - 1) // 3) * 3 + 1
        return AccrualPeriod(
            kind, date(year, first_month, 1), _month_end(year, first_month + 2)
        )
    return AccrualPeriod(kind, date(year, 1, 1), date(year, 12, 31))


def period_type_for_range(period_start: date, period_end: date) -> PeriodType:
    """
    Label an explicit range by its length: up to 35 days is monthly, up to
    95 days quarterly, anything longer annual.
    """
    span = (period_end - period_start).days
    if span <= MONTHLY_MAX_SPAN_DAYS:
        return PeriodType.MONTHLY
    if span <= QUARTERLY_MAX_SPAN_DAYS:
        return PeriodType.QUARTERLY
    return PeriodType.ANNUAL


def explicit_period(period_start: date, period_end: date) -> AccrualPeriod:
    """An explicit inclusive range, labelled by ``period_type_for_range``."""
    return AccrualPeriod(
        period_type_for_range(period_start, period_end), period_start, period_end
    )


def is_calendar_period(period: AccrualPeriod) -> bool:
    return resolve_period(period.period_type, period.start) == period


def previous_period(period: AccrualPeriod) -> AccrualPeriod:
    """
    The period immediately before ``period``: the previous calendar period
    for calendar-aligned periods, else a range of the same length.
    """
    if not is_calendar_period(period):
        length = timedelta(days=period.days)
        return explicit_period(period.start - length, period.start - timedelta(days=1))
    return resolve_period(period.period_type, period.start - timedelta(days=1))


def available_periods(as_of: date) -> tuple[AccrualPeriod, ...]:
    """Current and previous month, quarter and year, for run pickers."""
    result: list[AccrualPeriod] = []
    for kind in (PeriodType.MONTHLY, PeriodType.QUARTERLY, PeriodType.ANNUAL):
        current = resolve_period(kind, as_of)
        result.append(current)
        result.append(previous_period(current))
    return tuple(result)
