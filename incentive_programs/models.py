"""
Incentive Program Domain Models.

The nouns of the incentive engine: programs and their rate rulesets,
enrollments, accruals, claims, payouts, and the result records returned
by batch and report operations.  All DTOs are frozen; monetary values are
``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from incentive_kernel.exceptions import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")


# ---------------------------------------------------------------------------
# Status and type enums
# ---------------------------------------------------------------------------


class ProgramType(Enum):
    """Kinds of dealer incentive programs."""
    REBATE = "rebate"
    COOP = "coop"
    CONTEST = "contest"
    SPIFF = "spiff"


class ProgramStatus(Enum):
    """Program lifecycle states."""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EnrollmentStatus(Enum):
    """Dealer participation states."""
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    WITHDRAWN = "withdrawn"


class AccrualStatus(Enum):
    """Accrual states; monotonic calculated -> finalized -> paid."""
    CALCULATED = "calculated"
    FINALIZED = "finalized"
    PAID = "paid"


class ClaimStatus(Enum):
    """Claim lifecycle states."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    DENIED = "denied"
    PAID = "paid"


class ClaimType(Enum):
    """What a claim asks to be reimbursed for."""
    ADVERTISING = "advertising"
    MARKETING_MATERIALS = "marketing_materials"
    TRADE_SHOW = "trade_show"
    TRAINING = "training"
    PROMOTIONAL = "promotional"
    DIGITAL_MARKETING = "digital_marketing"
    SIGNAGE = "signage"
    SPIFF = "spiff"
    CONTEST = "contest"
    OTHER = "other"


class ReviewDecision(Enum):
    APPROVED = "approved"
    DENIED = "denied"


class PayoutStatus(Enum):
    """Payout lifecycle states; completed is terminal."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PeriodType(Enum):
    """Calendar bucketing for accrual runs."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


# ---------------------------------------------------------------------------
# Rate ruleset (tagged union: FlatRate | TieredRates)
# ---------------------------------------------------------------------------


def _check_fraction(value: Decimal, field_name: str, allow_zero: bool) -> None:
    if not isinstance(value, Decimal):
        raise ValidationError(field_name, "must be a Decimal")
    if value > ONE or value < ZERO or (value == ZERO and not allow_zero):
        bounds = "[0, 1]" if allow_zero else "(0, 1]"
        raise ValidationError(field_name, f"rate {value} outside {bounds}")


@dataclass(frozen=True)
class Tier:
    """A volume threshold mapped to a rate.  ``min_volume`` is inclusive."""
    name: str
    min_volume: Decimal
    rate: Decimal
    max_volume: Decimal | None = None

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValidationError("tier.name", "cannot be empty")
        if self.min_volume < ZERO:
            raise ValidationError("tier.min_volume", "cannot be negative")
        _check_fraction(self.rate, f"tier {self.name} rate", allow_zero=True)
        if self.max_volume is not None and self.max_volume <= self.min_volume:
            raise ValidationError(
                "tier.max_volume", f"must exceed min_volume for tier {self.name}"
            )


@dataclass(frozen=True)
class PayoutCaps:
    """Program-wide and per-dealer payout caps."""
    max_payout: Decimal | None = None
    max_payout_per_dealer: Decimal | None = None

    def __post_init__(self):
        if self.max_payout is not None and self.max_payout <= ZERO:
            raise ValidationError("max_payout", "must be positive")
        if self.max_payout_per_dealer is not None and self.max_payout_per_dealer <= ZERO:
            raise ValidationError("max_payout_per_dealer", "must be positive")


@dataclass(frozen=True)
class ProductFilter:
    """Product category eligibility.  Qualifying categories win when set."""
    qualifying_categories: tuple[str, ...] = ()
    excluded_categories: tuple[str, ...] = ()

    def includes(self, category_id: str | None) -> bool:
        category = category_id or ""
        if self.qualifying_categories:
            return category in self.qualifying_categories
        if self.excluded_categories:
            return category not in self.excluded_categories
        return True


@dataclass(frozen=True)
class FlatRate:
    """A single rate applied to all qualifying volume."""
    rate: Decimal
    caps: PayoutCaps = PayoutCaps()
    product_filter: ProductFilter = ProductFilter()

    def __post_init__(self):
        _check_fraction(self.rate, "flat_rate", allow_zero=False)


@dataclass(frozen=True)
class TieredRates:
    """A step function of tiers; the highest threshold not above volume wins.

    ``tiers`` is normalized to ascending ``min_volume`` order.  ``floor_rate``
    applies when volume is below every threshold.
    """
    tiers: tuple[Tier, ...]
    floor_rate: Decimal = ZERO
    caps: PayoutCaps = PayoutCaps()
    product_filter: ProductFilter = ProductFilter()

    def __post_init__(self):
        if not self.tiers:
            raise ValidationError("tiers", "tiered ruleset needs at least one tier")
        thresholds = [t.min_volume for t in self.tiers]
        if len(set(thresholds)) != len(thresholds):
            raise ValidationError("tiers", "tier min_volume thresholds must be distinct")
        names = [t.name for t in self.tiers]
        if len(set(names)) != len(names):
            raise ValidationError("tiers", "tier names must be unique")
        _check_fraction(self.floor_rate, "floor_rate", allow_zero=True)
        object.__setattr__(
            self, "tiers", tuple(sorted(self.tiers, key=lambda t: t.min_volume))
        )


RateRuleset = FlatRate | TieredRates


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Program:
    """A dealer incentive program."""
    id: UUID
    code: str
    name: str
    program_type: ProgramType
    status: ProgramStatus
    start_date: date
    ruleset: RateRuleset
    description: str | None = None
    end_date: date | None = None
    enrollment_deadline: date | None = None
    eligible_tiers: tuple[str, ...] = ()
    eligible_regions: tuple[str, ...] = ()
    min_order_volume: Decimal | None = None
    budget_amount: Decimal | None = None
    spent_amount: Decimal = ZERO
    auto_enroll: bool = False
    requires_approval: bool = True

    @property
    def remaining_budget(self) -> Decimal | None:
        if self.budget_amount is None:
            return None
        return self.budget_amount - self.spent_amount


@dataclass(frozen=True)
class Enrollment:
    """One dealer's participation in one program, with running balances."""
    id: UUID
    program_id: UUID
    dealer_id: UUID
    status: EnrollmentStatus
    accrued_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    pending_amount: Decimal = ZERO
    tier_achieved: str | None = None
    tier_progress: Decimal = ZERO
    enrolled_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by_id: UUID | None = None
    withdrawn_at: datetime | None = None
    withdrawal_reason: str | None = None
    terms_version: str | None = None


@dataclass(frozen=True)
class AccrualPeriod:
    """An inclusive date range that keys accruals by its start date."""
    period_type: PeriodType
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValidationError("period", f"start {self.start} is after end {self.end}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class AccrualCalculation:
    """Pure calculator output for one dealer and period."""
    qualifying_volume: Decimal
    rate: Decimal
    tier_achieved: str | None
    accrued_amount: Decimal
    final_amount: Decimal
    tier_progress: Decimal

    @property
    def capped(self) -> bool:
        return self.final_amount < self.accrued_amount


@dataclass(frozen=True)
class RebateAccrual:
    """A persisted accrual for (program, dealer, period_start)."""
    id: UUID
    program_id: UUID
    dealer_id: UUID
    period_type: PeriodType
    period_start: date
    period_end: date
    qualifying_volume: Decimal
    rebate_rate: Decimal
    accrued_amount: Decimal
    final_amount: Decimal
    tier_achieved: str | None
    status: AccrualStatus
    calculated_at: datetime | None = None
    finalized_at: datetime | None = None
    paid_at: datetime | None = None


@dataclass(frozen=True)
class IncentiveClaim:
    """A dealer request for reimbursement or a spiff/contest award."""
    id: UUID
    program_id: UUID
    dealer_id: UUID
    claim_type: ClaimType
    requested_amount: Decimal
    status: ClaimStatus
    claim_number: str | None = None
    approved_amount: Decimal | None = None
    description: str | None = None
    activity_date: date | None = None
    vendor_name: str | None = None
    invoice_number: str | None = None
    submitted_at: datetime | None = None
    submitted_by_id: UUID | None = None
    reviewer_id: UUID | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    approved_at: datetime | None = None
    denial_reason: str | None = None
    paid_at: datetime | None = None


@dataclass(frozen=True)
class IncentivePayout:
    """A scheduled or completed transfer of funds to a dealer."""
    id: UUID
    program_id: UUID
    dealer_id: UUID
    amount: Decimal
    payout_type: ProgramType
    status: PayoutStatus
    scheduled_date: date | None = None
    paid_date: date | None = None
    reference_number: str | None = None
    payment_method: str | None = None
    claim_id: UUID | None = None
    accrual_id: UUID | None = None
    processed_by_id: UUID | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class OrderLine:
    """One order line as seen by the volume source."""
    dealer_id: UUID
    order_date: date
    amount: Decimal
    category_id: str | None = None
    status: str = "delivered"


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemError:
    """A per-item failure inside a batch operation."""
    item_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class AccrualRunResult:
    """Summary of one batch accrual run."""
    run_id: UUID
    program_id: UUID
    period: AccrualPeriod
    processed_count: int
    total_accrued: Decimal
    total_final: Decimal
    skipped: tuple[ItemError, ...]
    errors: tuple[ItemError, ...]
    started_at: datetime
    completed_at: datetime

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def error_count(self) -> int:
        return len(self.errors)


@dataclass(frozen=True)
class FinalizeResult:
    count: int
    total_amount: Decimal


@dataclass(frozen=True)
class StatusTotals:
    count: int
    amount: Decimal


@dataclass(frozen=True)
class PeriodTotals:
    """Accrual aggregates for one period of one program."""
    period_start: date
    period_end: date
    dealer_count: int
    total_volume: Decimal
    total_accrued: Decimal
    total_final: Decimal
    status_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AccrualSummary:
    """Program-level accrual aggregates by status and by period."""
    program_id: UUID
    total_accruals: int
    total_qualifying_volume: Decimal
    total_accrued: Decimal
    total_final: Decimal
    by_status: dict[str, StatusTotals]
    by_period: tuple[PeriodTotals, ...]


@dataclass(frozen=True)
class DealerAccrualSummary:
    dealer_id: UUID
    total_accrued: Decimal
    total_finalized: Decimal
    total_paid: Decimal
    pending: Decimal
    accruals: tuple[RebateAccrual, ...]


@dataclass(frozen=True)
class RebateProjection:
    """Straight-line projection of a dealer's rebate to period end."""
    current_volume: Decimal
    projected_volume: Decimal
    current_rate: Decimal
    projected_rate: Decimal
    current_accrual: Decimal
    projected_accrual: Decimal
    current_tier: str | None
    projected_tier: str | None
    next_tier: Tier | None
    volume_to_next_tier: Decimal | None
    days_remaining: int
    average_daily_volume: Decimal


@dataclass(frozen=True)
class CoopFundBalance:
    """A dealer's co-op position in one program."""
    program_id: UUID
    program_name: str
    dealer_id: UUID
    accrued_amount: Decimal
    total_claimed: Decimal
    total_approved: Decimal
    total_paid: Decimal
    available_balance: Decimal
    pending_claims: int


@dataclass(frozen=True)
class BatchApproveResult:
    approved_ids: tuple[UUID, ...]
    errors: tuple[ItemError, ...]

    @property
    def approved_count(self) -> int:
        return len(self.approved_ids)


@dataclass(frozen=True)
class PayoutBatchResult:
    created: tuple[IncentivePayout, ...]
    total_amount: Decimal
    errors: tuple[ItemError, ...]


@dataclass(frozen=True)
class Page:
    """One page of a listing."""
    items: tuple
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class GroupTotals:
    key: str
    amount: Decimal
    count: int


@dataclass(frozen=True)
class PayoutReport:
    payouts: tuple[IncentivePayout, ...]
    total_amount: Decimal
    completed_amount: Decimal
    pending_amount: Decimal
    count: int
    completed_count: int
    pending_count: int
    grouped: tuple[GroupTotals, ...] = ()


@dataclass(frozen=True)
class ProgramPayoutTotals:
    program_id: UUID
    program_name: str
    program_type: ProgramType
    amount: Decimal
    count: int


@dataclass(frozen=True)
class PayoutStatement:
    """Completed payouts for a dealer over a date range."""
    dealer_id: UUID
    start_date: date
    end_date: date
    payouts: tuple[IncentivePayout, ...]
    total_amount: Decimal
    by_program: tuple[ProgramPayoutTotals, ...]

    @property
    def payout_count(self) -> int:
        return len(self.payouts)


@dataclass(frozen=True)
class ProgramStats:
    program_id: UUID
    enrollment_count: int
    active_enrollments: int
    total_accrued: Decimal
    total_paid: Decimal
    claims_by_status: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DealerDashboard:
    """
    One dealer's incentive position across all programs.

    ``total_accrued``, ``total_paid`` and ``pending`` come from the dealer's
    accruals; ``ytd_paid`` sums completed payouts paid since January 1 of
    the ``as_of`` year.
    """
    dealer_id: UUID
    as_of: date
    active_programs: int
    total_accrued: Decimal
    total_paid: Decimal
    pending: Decimal
    ytd_paid: Decimal
    enrollments: tuple[Enrollment, ...]
    recent_claims: tuple[IncentiveClaim, ...]
    recent_payouts: tuple[IncentivePayout, ...]


@dataclass(frozen=True)
class ClaimStats:
    """Review queue counters for claim administrators."""
    as_of: date
    submitted: int
    under_review: int
    approved_today: int
    denied_today: int
    pending_requested_amount: Decimal


def coerce_enum(enum_cls: type[Enum], value: Enum | str, field_name: str):
    """Accept an enum member or its string value; anything else is a ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(field_name, f"{value!r} is not one of: {allowed}") from None
