"""Tests for accrual period resolution (``incentive_programs.periods``)."""

from datetime import date

import pytest

from incentive_kernel.exceptions import ValidationError
from incentive_programs.models import AccrualPeriod, PeriodType
from incentive_programs.periods import (
    available_periods,
    explicit_period,
    parse_period_type,
    period_type_for_range,
    previous_period,
    resolve_period,
)


class TestResolvePeriod:

    def test_monthly(self):
        period = resolve_period("monthly", date(2026, 2, 15))
        assert (period.start, period.end) == (date(2026, 2, 1), date(2026, 2, 28))
        assert period.period_type is PeriodType.MONTHLY

    def test_monthly_leap_year(self):
        period = resolve_period(PeriodType.MONTHLY, date(2024, 2, 3))
        assert period.end == date(2024, 2, 29)
        assert period.days == 29

    def test_quarterly(self):
        period = resolve_period("quarterly", date(2026, 5, 10))
        assert (period.start, period.end) == (date(2026, 4, 1), date(2026, 6, 30))

    def test_quarterly_last_quarter(self):
        period = resolve_period("quarterly", date(2026, 12, 31))
        assert (period.start, period.end) == (date(2026, 10, 1), date(2026, 12, 31))

    def test_annual(self):
        period = resolve_period("annual", date(2026, 7, 4))
        assert (period.start, period.end) == (date(2026, 1, 1), date(2026, 12, 31))

    def test_custom_is_not_a_period_type(self):
        with pytest.raises(ValidationError):
            resolve_period("custom", date(2026, 7, 4))

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_period_type("weekly")
        assert exc_info.value.field == "period_type"


class TestExplicitAndPrevious:

    def test_short_explicit_range_is_monthly(self):
        period = explicit_period(date(2026, 1, 10), date(2026, 1, 19))
        assert period.period_type is PeriodType.MONTHLY
        assert period.days == 10
        assert period.contains(date(2026, 1, 19))
        assert not period.contains(date(2026, 1, 20))

    @pytest.mark.parametrize(
        "start, end, expected",
        [
            (date(2026, 1, 1), date(2026, 2, 5), PeriodType.MONTHLY),
            (date(2026, 1, 1), date(2026, 2, 6), PeriodType.QUARTERLY),
            (date(2026, 1, 1), date(2026, 3, 31), PeriodType.QUARTERLY),
            (date(2026, 1, 1), date(2026, 4, 6), PeriodType.QUARTERLY),
            (date(2026, 1, 1), date(2026, 4, 7), PeriodType.ANNUAL),
            (date(2026, 1, 1), date(2026, 12, 31), PeriodType.ANNUAL),
        ],
    )
    def test_explicit_range_labelled_by_length(self, start, end, expected):
        assert period_type_for_range(start, end) is expected
        assert explicit_period(start, end).period_type is expected

    def test_start_after_end_rejected(self):
        with pytest.raises(ValidationError):
            AccrualPeriod(PeriodType.MONTHLY, date(2026, 2, 1), date(2026, 1, 1))

    def test_previous_month_crosses_year(self):
        january = resolve_period("monthly", date(2026, 1, 5))
        december = previous_period(january)
        assert (december.start, december.end) == (date(2025, 12, 1), date(2025, 12, 31))

    def test_previous_quarter(self):
        q1 = resolve_period("quarterly", date(2026, 2, 1))
        q4 = previous_period(q1)
        assert (q4.start, q4.end) == (date(2025, 10, 1), date(2025, 12, 31))

    def test_previous_unaligned_range_has_same_length(self):
        period = explicit_period(date(2026, 1, 10), date(2026, 1, 19))
        earlier = previous_period(period)
        assert (earlier.start, earlier.end) == (date(2025, 12, 31), date(2026, 1, 9))

    def test_previous_of_aligned_explicit_range_is_calendar(self):
        january = explicit_period(date(2026, 1, 1), date(2026, 1, 31))
        assert january == resolve_period("monthly", date(2026, 1, 15))
        december = previous_period(january)
        assert (december.start, december.end) == (date(2025, 12, 1), date(2025, 12, 31))


class TestAvailablePeriods:

    def test_current_and_previous_of_each_type(self):
        periods = available_periods(date(2026, 2, 1))
        assert len(periods) == 6
        starts = [(p.period_type, p.start) for p in periods]
        assert starts == [
            (PeriodType.MONTHLY, date(2026, 2, 1)),
            (PeriodType.MONTHLY, date(2026, 1, 1)),
            (PeriodType.QUARTERLY, date(2026, 1, 1)),
            (PeriodType.QUARTERLY, date(2025, 10, 1)),
            (PeriodType.ANNUAL, date(2026, 1, 1)),
            (PeriodType.ANNUAL, date(2025, 1, 1)),
        ]
