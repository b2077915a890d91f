"""
SQLAlchemy ORM persistence models for the incentive engine.

Responsibility
--------------
Provide database-backed persistence for programs, enrollments, rebate
accruals, claims and payouts, and own the storage format of the rate
ruleset.  ``ruleset_to_json`` / ``ruleset_from_json`` are the only place
the ruleset tagged union is serialized; business code only ever sees the
``FlatRate`` / ``TieredRates`` value types.

Architecture position
---------------------
**Programs layer** -- ORM models consumed by the engine services.
Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (Numeric(38,9)); rates use
  Numeric(38,18) -- NEVER float.
* Enum fields stored as short strings for readability and portability.
* Exactly one enrollment per ``(dealer_id, program_id)``.
* Exactly one accrual per ``(program_id, dealer_id, period_start)``; this
  constraint is the idempotency guard of the batch runner.
* A payout references exactly one source: a claim or an accrual.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from incentive_kernel.db.base import TrackedBase
from incentive_kernel.db.types import to_decimal
from incentive_kernel.exceptions import ValidationError
from incentive_programs.models import (
    AccrualStatus,
    ClaimStatus,
    ClaimType,
    Enrollment,
    EnrollmentStatus,
    FlatRate,
    IncentiveClaim,
    IncentivePayout,
    PayoutCaps,
    PayoutStatus,
    PeriodType,
    ProductFilter,
    Program,
    ProgramStatus,
    ProgramType,
    RateRuleset,
    RebateAccrual,
    Tier,
    TieredRates,
)


# ---------------------------------------------------------------------------
# Ruleset storage codec
# ---------------------------------------------------------------------------


def _dec_or_none(value: Any) -> Decimal | None:
    return None if value is None else to_decimal(value)


def _str_or_none(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def ruleset_to_json(ruleset: RateRuleset) -> dict[str, Any]:
    """Serialize a ruleset to a JSON-safe dict.  Decimals travel as strings."""
    data: dict[str, Any] = {
        "max_payout": _str_or_none(ruleset.caps.max_payout),
        "max_payout_per_dealer": _str_or_none(ruleset.caps.max_payout_per_dealer),
        "qualifying_categories": list(ruleset.product_filter.qualifying_categories),
        "excluded_categories": list(ruleset.product_filter.excluded_categories),
    }
    if isinstance(ruleset, FlatRate):
        data["kind"] = "flat"
        data["flat_rate"] = str(ruleset.rate)
    else:
        data["kind"] = "tiered"
        data["floor_rate"] = str(ruleset.floor_rate)
        data["tiers"] = [
            {
                "name": t.name,
                "min_volume": str(t.min_volume),
                "max_volume": _str_or_none(t.max_volume),
                "rate": str(t.rate),
            }
            for t in ruleset.tiers
        ]
    return data


def ruleset_from_json(data: dict[str, Any]) -> RateRuleset:
    """Parse the stored dict back into ``FlatRate`` or ``TieredRates``."""
    caps = PayoutCaps(
        max_payout=_dec_or_none(data.get("max_payout")),
        max_payout_per_dealer=_dec_or_none(data.get("max_payout_per_dealer")),
    )
    product_filter = ProductFilter(
        qualifying_categories=tuple(data.get("qualifying_categories") or ()),
        excluded_categories=tuple(data.get("excluded_categories") or ()),
    )
    kind = data.get("kind")
    if kind == "flat":
        return FlatRate(
            rate=to_decimal(data["flat_rate"]),
            caps=caps,
            product_filter=product_filter,
        )
    if kind == "tiered":
        return TieredRates(
            tiers=tuple(
                Tier(
                    name=t["name"],
                    min_volume=to_decimal(t["min_volume"]),
                    rate=to_decimal(t["rate"]),
                    max_volume=_dec_or_none(t.get("max_volume")),
                )
                for t in data.get("tiers") or ()
            ),
            floor_rate=to_decimal(data.get("floor_rate") or "0"),
            caps=caps,
            product_filter=product_filter,
        )
    raise ValidationError("rules.kind", f"unknown ruleset kind {kind!r}")


# ---------------------------------------------------------------------------
# ProgramModel
# ---------------------------------------------------------------------------


class ProgramModel(TrackedBase):
    """
    A dealer incentive program.

    Maps to the ``Program`` DTO in ``incentive_programs.models``.

    Guarantees:
        - ``code`` is unique and stored uppercase.
        - ``status`` follows PROGRAM_WORKFLOW.
    """

    __tablename__ = "incentive_programs"

    __table_args__ = (
        UniqueConstraint("code", name="uq_incentive_program_code"),
        Index("idx_incentive_program_status", "status"),
        Index("idx_incentive_program_type", "program_type"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    program_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    enrollment_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    eligible_tiers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    eligible_regions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    min_order_volume: Mapped[Decimal | None] = mapped_column(nullable=True)
    rules: Mapped[dict] = mapped_column(JSON, nullable=False)
    budget_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    spent_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    auto_enroll: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def ruleset(self) -> RateRuleset:
        return ruleset_from_json(self.rules)

    @ruleset.setter
    def ruleset(self, value: RateRuleset) -> None:
        self.rules = ruleset_to_json(value)

    def to_dto(self) -> Program:
        return Program(
            id=self.id,
            code=self.code,
            name=self.name,
            description=self.description,
            program_type=ProgramType(self.program_type),
            status=ProgramStatus(self.status),
            start_date=self.start_date,
            end_date=self.end_date,
            enrollment_deadline=self.enrollment_deadline,
            eligible_tiers=tuple(self.eligible_tiers or ()),
            eligible_regions=tuple(self.eligible_regions or ()),
            min_order_volume=_dec_or_none(self.min_order_volume),
            ruleset=self.ruleset,
            budget_amount=_dec_or_none(self.budget_amount),
            spent_amount=to_decimal(self.spent_amount),
            auto_enroll=self.auto_enroll,
            requires_approval=self.requires_approval,
        )

    @classmethod
    def from_dto(cls, dto: Program, created_by_id: UUID) -> "ProgramModel":
        return cls(
            id=dto.id,
            code=dto.code,
            name=dto.name,
            description=dto.description,
            program_type=dto.program_type.value,
            status=dto.status.value,
            start_date=dto.start_date,
            end_date=dto.end_date,
            enrollment_deadline=dto.enrollment_deadline,
            eligible_tiers=list(dto.eligible_tiers),
            eligible_regions=list(dto.eligible_regions),
            min_order_volume=dto.min_order_volume,
            rules=ruleset_to_json(dto.ruleset),
            budget_amount=dto.budget_amount,
            spent_amount=dto.spent_amount,
            auto_enroll=dto.auto_enroll,
            requires_approval=dto.requires_approval,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<ProgramModel {self.code} {self.program_type} [{self.status}]>"


# ---------------------------------------------------------------------------
# EnrollmentModel
# ---------------------------------------------------------------------------


class EnrollmentModel(TrackedBase):
    """
    A dealer's participation record in one program.

    Guarantees:
        - Unique per ``(dealer_id, program_id)``; never deleted.
        - ``accrued_amount`` is written only by the batch accrual runner,
          ``paid_amount`` / ``pending_amount`` only by the payout processor.
    """

    __tablename__ = "dealer_program_enrollments"

    __table_args__ = (
        UniqueConstraint("dealer_id", "program_id", name="uq_enrollment_dealer_program"),
        Index("idx_enrollment_program_status", "program_id", "status"),
        Index("idx_enrollment_dealer", "dealer_id"),
    )

    program_id: Mapped[UUID] = mapped_column(ForeignKey("incentive_programs.id"), nullable=False)
    dealer_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    accrued_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pending_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tier_achieved: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tier_progress: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    enrolled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawal_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    terms_version: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def to_dto(self) -> Enrollment:
        return Enrollment(
            id=self.id,
            program_id=self.program_id,
            dealer_id=self.dealer_id,
            status=EnrollmentStatus(self.status),
            accrued_amount=to_decimal(self.accrued_amount),
            paid_amount=to_decimal(self.paid_amount),
            pending_amount=to_decimal(self.pending_amount),
            tier_achieved=self.tier_achieved,
            tier_progress=to_decimal(self.tier_progress),
            enrolled_at=self.enrolled_at,
            approved_at=self.approved_at,
            approved_by_id=self.approved_by_id,
            withdrawn_at=self.withdrawn_at,
            withdrawal_reason=self.withdrawal_reason,
            terms_version=self.terms_version,
        )

    def __repr__(self) -> str:
        return (
            f"<EnrollmentModel dealer={self.dealer_id} program={self.program_id} "
            f"[{self.status}] accrued={self.accrued_amount} paid={self.paid_amount}>"
        )


# ---------------------------------------------------------------------------
# RebateAccrualModel
# ---------------------------------------------------------------------------


class RebateAccrualModel(TrackedBase):
    """
    A computed accrual for one dealer, program and period.

    Guarantees:
        - Unique per ``(program_id, dealer_id, period_start)`` (exact match).
        - ``final_amount <= accrued_amount``.
        - Only ``calculated`` rows are ever recalculated.
    """

    __tablename__ = "rebate_accruals"

    __table_args__ = (
        UniqueConstraint(
            "program_id", "dealer_id", "period_start", name="uq_accrual_program_dealer_period"
        ),
        CheckConstraint("final_amount <= accrued_amount", name="ck_accrual_final_le_accrued"),
        Index("idx_accrual_program_period", "program_id", "period_start"),
        Index("idx_accrual_dealer", "dealer_id"),
        Index("idx_accrual_status", "status"),
    )

    program_id: Mapped[UUID] = mapped_column(ForeignKey("incentive_programs.id"), nullable=False)
    dealer_id: Mapped[UUID] = mapped_column(nullable=False)
    period_type: Mapped[str] = mapped_column(String(20), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    qualifying_volume: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    rebate_rate: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    accrued_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    final_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tier_achieved: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="calculated")
    calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_locked(self) -> bool:
        return self.status != AccrualStatus.CALCULATED.value

    def to_dto(self) -> RebateAccrual:
        return RebateAccrual(
            id=self.id,
            program_id=self.program_id,
            dealer_id=self.dealer_id,
            period_type=PeriodType(self.period_type),
            period_start=self.period_start,
            period_end=self.period_end,
            qualifying_volume=to_decimal(self.qualifying_volume),
            rebate_rate=to_decimal(self.rebate_rate),
            accrued_amount=to_decimal(self.accrued_amount),
            final_amount=to_decimal(self.final_amount),
            tier_achieved=self.tier_achieved,
            status=AccrualStatus(self.status),
            calculated_at=self.calculated_at,
            finalized_at=self.finalized_at,
            paid_at=self.paid_at,
        )

    def __repr__(self) -> str:
        return (
            f"<RebateAccrualModel dealer={self.dealer_id} {self.period_start} "
            f"[{self.status}] {self.final_amount}>"
        )


# ---------------------------------------------------------------------------
# IncentiveClaimModel
# ---------------------------------------------------------------------------


class IncentiveClaimModel(TrackedBase):
    """
    A dealer-submitted claim.

    Guarantees:
        - ``claim_number`` is unique once assigned (NULL while draft).
        - ``approved_amount`` is set iff status is approved or paid.
    """

    __tablename__ = "incentive_claims"

    __table_args__ = (
        UniqueConstraint("claim_number", name="uq_incentive_claim_number"),
        Index("idx_claim_program_dealer", "program_id", "dealer_id"),
        Index("idx_claim_status", "status"),
    )

    claim_number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    program_id: Mapped[UUID] = mapped_column(ForeignKey("incentive_programs.id"), nullable=False)
    dealer_id: Mapped[UUID] = mapped_column(nullable=False)
    claim_type: Mapped[str] = mapped_column(String(30), nullable=False)
    requested_amount: Mapped[Decimal] = mapped_column(nullable=False)
    approved_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    reviewer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dto(self) -> IncentiveClaim:
        return IncentiveClaim(
            id=self.id,
            claim_number=self.claim_number,
            program_id=self.program_id,
            dealer_id=self.dealer_id,
            claim_type=ClaimType(self.claim_type),
            requested_amount=to_decimal(self.requested_amount),
            approved_amount=_dec_or_none(self.approved_amount),
            description=self.description,
            activity_date=self.activity_date,
            vendor_name=self.vendor_name,
            invoice_number=self.invoice_number,
            status=ClaimStatus(self.status),
            submitted_at=self.submitted_at,
            submitted_by_id=self.submitted_by_id,
            reviewer_id=self.reviewer_id,
            reviewed_at=self.reviewed_at,
            review_notes=self.review_notes,
            approved_at=self.approved_at,
            denial_reason=self.denial_reason,
            paid_at=self.paid_at,
        )

    def __repr__(self) -> str:
        return f"<IncentiveClaimModel {self.claim_number or 'draft'} [{self.status}] {self.requested_amount}>"


# ---------------------------------------------------------------------------
# IncentivePayoutModel
# ---------------------------------------------------------------------------


class IncentivePayoutModel(TrackedBase):
    """
    A payout to a dealer, sourced from one approved claim or finalized accrual.

    Guarantees:
        - ``reference_number`` and ``paid_date`` are set together, only by
          ``complete()``.
        - ``completed`` is terminal.
    """

    __tablename__ = "incentive_payouts"

    __table_args__ = (
        CheckConstraint(
            "(claim_id IS NULL) <> (accrual_id IS NULL)", name="ck_payout_single_source"
        ),
        Index("idx_payout_program", "program_id"),
        Index("idx_payout_dealer_status", "dealer_id", "status"),
        Index("idx_payout_claim", "claim_id"),
        Index("idx_payout_accrual", "accrual_id"),
    )

    program_id: Mapped[UUID] = mapped_column(ForeignKey("incentive_programs.id"), nullable=False)
    dealer_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payout_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    claim_id: Mapped[UUID | None] = mapped_column(ForeignKey("incentive_claims.id"), nullable=True)
    accrual_id: Mapped[UUID | None] = mapped_column(ForeignKey("rebate_accruals.id"), nullable=True)
    processed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def complete(self, reference_number: str, paid_date: date, processed_by_id: UUID) -> None:
        """Stamp the completion fields together."""
        self.status = PayoutStatus.COMPLETED.value
        self.reference_number = reference_number
        self.paid_date = paid_date
        self.processed_by_id = processed_by_id
        self.updated_by_id = processed_by_id

    def to_dto(self) -> IncentivePayout:
        return IncentivePayout(
            id=self.id,
            program_id=self.program_id,
            dealer_id=self.dealer_id,
            amount=to_decimal(self.amount),
            payout_type=ProgramType(self.payout_type),
            status=PayoutStatus(self.status),
            scheduled_date=self.scheduled_date,
            paid_date=self.paid_date,
            reference_number=self.reference_number,
            payment_method=self.payment_method,
            claim_id=self.claim_id,
            accrual_id=self.accrual_id,
            processed_by_id=self.processed_by_id,
            failure_reason=self.failure_reason,
        )

    def __repr__(self) -> str:
        return f"<IncentivePayoutModel dealer={self.dealer_id} {self.amount} [{self.status}]>"
