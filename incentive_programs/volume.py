"""
Qualifying volume sources.

The batch accrual runner asks a ``VolumeSource`` how much qualifying
purchase volume a dealer had in a period.  Order storage is not owned by
this package; ``OrderLineVolumeSource`` adapts any callable that yields
``OrderLine`` records.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from incentive_kernel.db.types import ZERO, to_decimal
from incentive_kernel.exceptions import ValidationError
from incentive_programs.models import AccrualPeriod, OrderLine, Program

DEFAULT_COUNTED_STATUSES: tuple[str, ...] = ("delivered", "shipped")


@runtime_checkable
class VolumeSource(Protocol):
    """Answers: qualifying volume for this dealer, program and period."""

    def qualifying_volume(
        self, program: Program, dealer_id: UUID, period: AccrualPeriod
    ) -> Decimal: ...


def _non_negative(value: Decimal, dealer_id: UUID) -> Decimal:
    if value < ZERO:
        raise ValidationError(
            "qualifying_volume", f"negative volume {value} for dealer {dealer_id}"
        )
    return value


class StaticVolumeSource:
    """
    Volumes from an in-memory mapping.

    Keys are either a dealer id or a ``(dealer_id, period_start)`` pair; the
    period-specific key wins.  Dealers with no entry have zero volume.
    """

    def __init__(
        self, volumes: Mapping[UUID | tuple[UUID, date], Decimal | int | str] | None = None
    ):
        self._volumes = dict(volumes or {})

    def set(
        self,
        dealer_id: UUID,
        volume: Decimal | int | str,
        period_start: date | None = None,
    ) -> None:
        key = dealer_id if period_start is None else (dealer_id, period_start)
        self._volumes[key] = volume

    def qualifying_volume(
        self, program: Program, dealer_id: UUID, period: AccrualPeriod
    ) -> Decimal:
        raw = self._volumes.get((dealer_id, period.start))
        if raw is None:
            raw = self._volumes.get(dealer_id, ZERO)
        return _non_negative(to_decimal(raw), dealer_id)


class OrderLineVolumeSource:
    """
    Sums order lines supplied by ``fetch_lines(dealer_id, period)``.

    A line counts when its status is one of ``counted_statuses``, its
    ``order_date`` falls inside the period, and the program's product
    filter includes its category.
    """

    def __init__(
        self,
        fetch_lines: Callable[[UUID, AccrualPeriod], Iterable[OrderLine]],
        counted_statuses: Iterable[str] = DEFAULT_COUNTED_STATUSES,
    ):
        self._fetch_lines = fetch_lines
        self._counted_statuses = frozenset(counted_statuses)

    def qualifying_volume(
        self, program: Program, dealer_id: UUID, period: AccrualPeriod
    ) -> Decimal:
        product_filter = program.ruleset.product_filter
        total = ZERO
        for line in self._fetch_lines(dealer_id, period):
            if line.dealer_id != dealer_id:
                continue
            if line.status not in self._counted_statuses:
                continue
            if not period.contains(line.order_date):
                continue
            if not product_filter.includes(line.category_id):
                continue
            total += to_decimal(line.amount)
        return _non_negative(total, dealer_id)
