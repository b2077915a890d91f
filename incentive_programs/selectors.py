"""
Read-side queries for the incentive engine.

Accrual summaries, payout reports, dealer statements, program stats and
the dealer and claim-review dashboards.
All aggregation is done over loaded rows in Python so that money totals
stay ``Decimal`` on every backend.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select

from incentive_kernel.db.types import ZERO, to_decimal
from incentive_kernel.exceptions import ValidationError
from incentive_kernel.selectors.base import BaseSelector
from incentive_programs._loaders import load_program
from incentive_programs.models import (
    AccrualStatus,
    AccrualSummary,
    ClaimStats,
    ClaimStatus,
    DealerAccrualSummary,
    DealerDashboard,
    EnrollmentStatus,
    GroupTotals,
    IncentivePayout,
    PayoutReport,
    PayoutStatement,
    PayoutStatus,
    PeriodTotals,
    ProgramPayoutTotals,
    ProgramStats,
    ProgramType,
    RebateAccrual,
    StatusTotals,
    coerce_enum,
)
from incentive_programs.orm import (
    EnrollmentModel,
    IncentiveClaimModel,
    IncentivePayoutModel,
    ProgramModel,
    RebateAccrualModel,
)

PAYOUT_GROUPINGS = ("program", "dealer", "month")
DASHBOARD_RECENT_LIMIT = 5


class IncentiveSelector(BaseSelector):
    """Read-only reports over accruals, payouts and enrollments."""

    # ------------------------------------------------------------------
    # Accruals
    # ------------------------------------------------------------------

    def get_accrual_summary(self, program_id: UUID) -> AccrualSummary:
        load_program(self.session, program_id)
        rows = self.session.execute(
            select(RebateAccrualModel)
            .where(RebateAccrualModel.program_id == program_id)
            .order_by(RebateAccrualModel.period_start, RebateAccrualModel.dealer_id)
        ).scalars().all()

        by_status: dict[str, list] = defaultdict(list)
        by_period: dict[date, list] = defaultdict(list)
        for row in rows:
            by_status[row.status].append(row)
            by_period[row.period_start].append(row)

        status_totals = {
            status: StatusTotals(
                count=len(items),
                amount=sum((to_decimal(r.final_amount) for r in items), ZERO),
            )
            for status, items in by_status.items()
        }

        period_totals = []
        for period_start in sorted(by_period):
            items = by_period[period_start]
            counts: dict[str, int] = defaultdict(int)
            for r in items:
                counts[r.status] += 1
            period_totals.append(
                PeriodTotals(
                    period_start=period_start,
                    period_end=max(r.period_end for r in items),
                    dealer_count=len({r.dealer_id for r in items}),
                    total_volume=sum((to_decimal(r.qualifying_volume) for r in items), ZERO),
                    total_accrued=sum((to_decimal(r.accrued_amount) for r in items), ZERO),
                    total_final=sum((to_decimal(r.final_amount) for r in items), ZERO),
                    status_counts=dict(counts),
                )
            )

        return AccrualSummary(
            program_id=program_id,
            total_accruals=len(rows),
            total_qualifying_volume=sum((to_decimal(r.qualifying_volume) for r in rows), ZERO),
            total_accrued=sum((to_decimal(r.accrued_amount) for r in rows), ZERO),
            total_final=sum((to_decimal(r.final_amount) for r in rows), ZERO),
            by_status=status_totals,
            by_period=tuple(period_totals),
        )

    def get_period_accruals(
        self, program_id: UUID, period_start: date
    ) -> tuple[RebateAccrual, ...]:
        rows = self.session.execute(
            select(RebateAccrualModel)
            .where(
                RebateAccrualModel.program_id == program_id,
                RebateAccrualModel.period_start == period_start,
            )
            .order_by(RebateAccrualModel.final_amount.desc(), RebateAccrualModel.dealer_id)
        ).scalars()
        return tuple(r.to_dto() for r in rows)

    def get_dealer_accrual_summary(
        self, dealer_id: UUID, program_id: UUID | None = None
    ) -> DealerAccrualSummary:
        """
        A dealer's accruals with totals by status.

        ``pending`` is the final amount still ``calculated`` (not yet
        finalized).
        """
        stmt = select(RebateAccrualModel).where(RebateAccrualModel.dealer_id == dealer_id)
        if program_id is not None:
            stmt = stmt.where(RebateAccrualModel.program_id == program_id)
        stmt = stmt.order_by(RebateAccrualModel.period_start.desc())
        accruals = tuple(r.to_dto() for r in self.session.execute(stmt).scalars())

        def _total(*statuses: AccrualStatus):
            return sum((a.final_amount for a in accruals if a.status in statuses), ZERO)

        return DealerAccrualSummary(
            dealer_id=dealer_id,
            total_accrued=sum((a.final_amount for a in accruals), ZERO),
            total_finalized=_total(AccrualStatus.FINALIZED),
            total_paid=_total(AccrualStatus.PAID),
            pending=_total(AccrualStatus.CALCULATED),
            accruals=accruals,
        )

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def get_payout_report(
        self,
        program_id: UUID | None = None,
        dealer_id: UUID | None = None,
        status: PayoutStatus | str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        group_by: str | None = None,
    ) -> PayoutReport:
        """
        Payouts filtered by program, dealer, status and scheduled date.

        ``group_by`` is one of ``program``, ``dealer`` or ``month``
        (``YYYY-MM`` of the scheduled date).
        """
        if group_by is not None and group_by not in PAYOUT_GROUPINGS:
            raise ValidationError("group_by", f"must be one of {PAYOUT_GROUPINGS}")

        stmt = select(IncentivePayoutModel)
        if program_id is not None:
            stmt = stmt.where(IncentivePayoutModel.program_id == program_id)
        if dealer_id is not None:
            stmt = stmt.where(IncentivePayoutModel.dealer_id == dealer_id)
        if status is not None:
            state = coerce_enum(PayoutStatus, status, "status")
            stmt = stmt.where(IncentivePayoutModel.status == state.value)
        if start_date is not None:
            stmt = stmt.where(IncentivePayoutModel.scheduled_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(IncentivePayoutModel.scheduled_date <= end_date)
        stmt = stmt.order_by(
            IncentivePayoutModel.scheduled_date.desc(), IncentivePayoutModel.dealer_id
        )
        payouts = tuple(p.to_dto() for p in self.session.execute(stmt).scalars())

        completed = [p for p in payouts if p.status is PayoutStatus.COMPLETED]
        pending = [
            p for p in payouts
            if p.status in (PayoutStatus.PENDING, PayoutStatus.PROCESSING)
        ]

        grouped: tuple[GroupTotals, ...] = ()
        if group_by is not None:
            buckets: dict[str, list[IncentivePayout]] = defaultdict(list)
            for p in payouts:
                buckets[_group_key(p, group_by)].append(p)
            grouped = tuple(
                GroupTotals(
                    key=key,
                    amount=sum((p.amount for p in items), ZERO),
                    count=len(items),
                )
                for key, items in sorted(buckets.items())
            )

        return PayoutReport(
            payouts=payouts,
            total_amount=sum((p.amount for p in payouts), ZERO),
            completed_amount=sum((p.amount for p in completed), ZERO),
            pending_amount=sum((p.amount for p in pending), ZERO),
            count=len(payouts),
            completed_count=len(completed),
            pending_count=len(pending),
            grouped=grouped,
        )

    def get_scheduled_payouts(
        self, start_date: date, end_date: date
    ) -> tuple[IncentivePayout, ...]:
        """Pending and processing payouts scheduled inside the range."""
        rows = self.session.execute(
            select(IncentivePayoutModel)
            .where(
                IncentivePayoutModel.status.in_(
                    (PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value)
                ),
                IncentivePayoutModel.scheduled_date >= start_date,
                IncentivePayoutModel.scheduled_date <= end_date,
            )
            .order_by(IncentivePayoutModel.scheduled_date, IncentivePayoutModel.dealer_id)
        ).scalars()
        return tuple(p.to_dto() for p in rows)

    def generate_payout_statement(
        self, dealer_id: UUID, start_date: date, end_date: date
    ) -> PayoutStatement:
        if start_date > end_date:
            raise ValidationError("start_date", f"{start_date} is after end_date {end_date}")

        rows = self.session.execute(
            select(IncentivePayoutModel, ProgramModel)
            .join(ProgramModel, ProgramModel.id == IncentivePayoutModel.program_id)
            .where(
                IncentivePayoutModel.dealer_id == dealer_id,
                IncentivePayoutModel.status == PayoutStatus.COMPLETED.value,
                IncentivePayoutModel.paid_date >= start_date,
                IncentivePayoutModel.paid_date <= end_date,
            )
            .order_by(IncentivePayoutModel.paid_date, ProgramModel.code)
        ).all()

        payouts = tuple(payout.to_dto() for payout, _ in rows)
        per_program: dict[UUID, list] = defaultdict(list)
        programs: dict[UUID, ProgramModel] = {}
        for payout, program in rows:
            per_program[program.id].append(to_decimal(payout.amount))
            programs[program.id] = program

        by_program = tuple(
            ProgramPayoutTotals(
                program_id=pid,
                program_name=programs[pid].name,
                program_type=ProgramType(programs[pid].program_type),
                amount=sum(amounts, ZERO),
                count=len(amounts),
            )
            for pid, amounts in sorted(per_program.items(), key=lambda kv: programs[kv[0]].code)
        )
        return PayoutStatement(
            dealer_id=dealer_id,
            start_date=start_date,
            end_date=end_date,
            payouts=payouts,
            total_amount=sum((p.amount for p in payouts), ZERO),
            by_program=by_program,
        )

    # ------------------------------------------------------------------
    # Programs
    # ------------------------------------------------------------------

    def get_program_stats(self, program_id: UUID) -> ProgramStats:
        load_program(self.session, program_id)
        enrollments = self.session.execute(
            select(EnrollmentModel).where(EnrollmentModel.program_id == program_id)
        ).scalars().all()
        claim_statuses = self.session.execute(
            select(IncentiveClaimModel.status).where(IncentiveClaimModel.program_id == program_id)
        ).scalars()

        claims_by_status: dict[str, int] = defaultdict(int)
        for status in claim_statuses:
            claims_by_status[status] += 1

        return ProgramStats(
            program_id=program_id,
            enrollment_count=len(enrollments),
            active_enrollments=sum(
                1 for e in enrollments if e.status == EnrollmentStatus.ACTIVE.value
            ),
            total_accrued=sum((to_decimal(e.accrued_amount) for e in enrollments), ZERO),
            total_paid=sum((to_decimal(e.paid_amount) for e in enrollments), ZERO),
            claims_by_status=dict(claims_by_status),
        )

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------

    def get_dealer_dashboard(self, dealer_id: UUID, as_of: date) -> DealerDashboard:
        """
        Active programs, accrual totals, year-to-date payouts and the most
        recent claims and completed payouts for one dealer.
        """
        enrollments = tuple(
            e.to_dto()
            for e in self.session.execute(
                select(EnrollmentModel)
                .where(
                    EnrollmentModel.dealer_id == dealer_id,
                    EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
                )
                .order_by(EnrollmentModel.enrolled_at)
            ).scalars()
        )
        accruals = self.get_dealer_accrual_summary(dealer_id)

        recent_claims = tuple(
            c.to_dto()
            for c in self.session.execute(
                select(IncentiveClaimModel)
                .where(IncentiveClaimModel.dealer_id == dealer_id)
                .order_by(
                    IncentiveClaimModel.created_at.desc(),
                    IncentiveClaimModel.claim_number.desc(),
                )
                .limit(DASHBOARD_RECENT_LIMIT)
            ).scalars()
        )

        completed = self.session.execute(
            select(IncentivePayoutModel)
            .where(
                IncentivePayoutModel.dealer_id == dealer_id,
                IncentivePayoutModel.status == PayoutStatus.COMPLETED.value,
            )
            .order_by(IncentivePayoutModel.paid_date.desc(), IncentivePayoutModel.id)
        ).scalars().all()
        year_start = date(as_of.year, 1, 1)
        ytd_paid = sum(
            (
                to_decimal(p.amount) for p in completed
                if p.paid_date is not None and year_start <= p.paid_date <= as_of
            ),
            ZERO,
        )

        return DealerDashboard(
            dealer_id=dealer_id,
            as_of=as_of,
            active_programs=len(enrollments),
            total_accrued=accruals.total_accrued,
            total_paid=accruals.total_paid,
            pending=accruals.pending,
            ytd_paid=ytd_paid,
            enrollments=enrollments,
            recent_claims=recent_claims,
            recent_payouts=tuple(
                p.to_dto() for p in completed[:DASHBOARD_RECENT_LIMIT]
            ),
        )

    def get_claim_stats(self, as_of: date) -> ClaimStats:
        """
        Counts for the claim review queue.

        ``approved_today`` and ``denied_today`` count reviews on or after
        ``as_of``; the pending amount sums requests still submitted or
        under review.
        """
        rows = self.session.execute(
            select(IncentiveClaimModel).where(
                IncentiveClaimModel.status.in_(
                    (
                        ClaimStatus.SUBMITTED.value,
                        ClaimStatus.UNDER_REVIEW.value,
                        ClaimStatus.APPROVED.value,
                        ClaimStatus.DENIED.value,
                    )
                )
            )
        ).scalars().all()

        def _count(status: ClaimStatus, stamp: str | None = None) -> int:
            return sum(
                1 for c in rows
                if c.status == status.value
                and (stamp is None or _on_or_after(getattr(c, stamp), as_of))
            )

        open_statuses = (ClaimStatus.SUBMITTED.value, ClaimStatus.UNDER_REVIEW.value)
        return ClaimStats(
            as_of=as_of,
            submitted=_count(ClaimStatus.SUBMITTED),
            under_review=_count(ClaimStatus.UNDER_REVIEW),
            approved_today=_count(ClaimStatus.APPROVED, "approved_at"),
            denied_today=_count(ClaimStatus.DENIED, "reviewed_at"),
            pending_requested_amount=sum(
                (to_decimal(c.requested_amount) for c in rows if c.status in open_statuses),
                ZERO,
            ),
        )


def _on_or_after(stamp: datetime | None, day: date) -> bool:
    return stamp is not None and stamp.date() >= day


def _group_key(payout: IncentivePayout, group_by: str) -> str:
    if group_by == "program":
        return str(payout.program_id)
    if group_by == "dealer":
        return str(payout.dealer_id)
    if payout.scheduled_date is None:
        return "unscheduled"
    return payout.scheduled_date.strftime("%Y-%m")
