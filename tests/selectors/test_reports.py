"""
Tests for the read-side reports: accrual summaries, payout reports,
dealer statements, program stats and rebate projections.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from incentive_kernel.exceptions import ProgramNotFoundError, ValidationError
from incentive_programs import IncentiveService, PayoutStatus, ProgramType
from tests.conftest import JANUARY, REVIEWER_ID, TEST_ACTOR_ID

FEBRUARY = (date(2026, 2, 1), date(2026, 2, 28))


@pytest.fixture
def reporting(service, rebate_program, enroll, volumes):
    """
    Two rebate dealers: January finalized and scheduled for payout (silver's
    payout completed on 2026-02-05), February calculated only.
    """
    silver = enroll(rebate_program).dealer_id
    gold = enroll(rebate_program).dealer_id
    volumes.set(silver, Decimal("25000"))
    volumes.set(gold, Decimal("60000"))

    service.run_batch_accrual(
        rebate_program.id, TEST_ACTOR_ID, period_start=JANUARY[0], period_end=JANUARY[1]
    )
    service.finalize_accruals(rebate_program.id, JANUARY[0], JANUARY[1], TEST_ACTOR_ID)
    batch = service.create_period_payouts(
        rebate_program.id, JANUARY[0], JANUARY[1], TEST_ACTOR_ID
    )
    payouts = {p.dealer_id: p for p in batch.created}
    service.process_payout(
        payouts[silver].id, "ACH-0001", REVIEWER_ID, paid_date=date(2026, 2, 5)
    )
    service.run_batch_accrual(
        rebate_program.id, TEST_ACTOR_ID, period_start=FEBRUARY[0], period_end=FEBRUARY[1]
    )
    return rebate_program, silver, gold


class TestAccrualSummary:

    def test_program_summary(self, service, reporting):
        program, _, _ = reporting
        summary = service.get_accrual_summary(program.id)

        assert summary.total_accruals == 4
        assert summary.total_qualifying_volume == Decimal("170000")
        assert summary.total_final == Decimal("4600.00")
        assert set(summary.by_status) == {"paid", "finalized", "calculated"}
        assert summary.by_status["calculated"].count == 2
        assert summary.by_status["calculated"].amount == Decimal("2300.00")
        assert summary.by_status["paid"].amount == Decimal("500.00")

        january, february = summary.by_period
        assert (january.period_start, january.period_end) == JANUARY
        assert january.dealer_count == 2
        assert january.status_counts == {"paid": 1, "finalized": 1}
        assert february.status_counts == {"calculated": 2}

    def test_unknown_program(self, service):
        with pytest.raises(ProgramNotFoundError):
            service.get_accrual_summary(uuid4())

    def test_dealer_summary(self, service, reporting):
        program, silver, _ = reporting
        summary = service.get_dealer_accrual_summary(silver, program.id)

        assert summary.total_accrued == Decimal("1000.00")
        assert summary.total_paid == Decimal("500.00")
        assert summary.total_finalized == 0
        assert summary.pending == Decimal("500.00")
        assert [a.period_start for a in summary.accruals] == [FEBRUARY[0], JANUARY[0]]

    def test_dealer_without_accruals(self, service):
        summary = service.get_dealer_accrual_summary(uuid4())
        assert summary.accruals == ()
        assert summary.total_accrued == 0


class TestPayoutReport:

    def test_totals(self, service, reporting):
        program, _, _ = reporting
        report = service.get_payout_report(program_id=program.id)

        assert report.count == 2
        assert report.total_amount == Decimal("2300.00")
        assert report.completed_amount == Decimal("500.00")
        assert report.completed_count == 1
        assert report.pending_amount == Decimal("1800.00")
        assert report.pending_count == 1
        assert report.grouped == ()

    def test_filters(self, service, reporting):
        program, silver, _ = reporting
        completed = service.get_payout_report(status="completed")
        assert [p.dealer_id for p in completed.payouts] == [silver]
        assert service.get_payout_report(dealer_id=uuid4()).count == 0
        assert service.get_payout_report(start_date=date(2026, 3, 1)).count == 0

    @pytest.mark.parametrize(
        "group_by, expected_keys",
        [("program", 1), ("dealer", 2), ("month", 1)],
    )
    def test_grouping(self, service, reporting, group_by, expected_keys):
        report = service.get_payout_report(group_by=group_by)
        assert len(report.grouped) == expected_keys
        assert sum(g.amount for g in report.grouped) == Decimal("2300.00")
        assert sum(g.count for g in report.grouped) == 2

    def test_month_key(self, service, reporting):
        (bucket,) = service.get_payout_report(group_by="month").grouped
        assert bucket.key == "2026-02"

    def test_invalid_grouping(self, service):
        with pytest.raises(ValidationError):
            service.get_payout_report(group_by="region")

    def test_invalid_status(self, service):
        with pytest.raises(ValidationError):
            service.get_payout_report(status="lost")

    def test_scheduled_payouts_only_open(self, service, reporting):
        _, _, gold = reporting
        (scheduled,) = service.get_scheduled_payouts(FEBRUARY[0], FEBRUARY[1])
        assert scheduled.dealer_id == gold
        assert scheduled.status is PayoutStatus.PENDING
        assert service.get_scheduled_payouts(date(2026, 3, 1), date(2026, 3, 31)) == ()


class TestPayoutStatement:

    def test_statement_lists_completed_payouts(self, service, reporting):
        program, silver, _ = reporting
        statement = service.generate_payout_statement(silver, FEBRUARY[0], FEBRUARY[1])

        assert statement.payout_count == 1
        assert statement.total_amount == Decimal("500.00")
        (line,) = statement.by_program
        assert line.program_id == program.id
        assert line.program_name == "REBATE-2026 program"
        assert line.program_type is ProgramType.REBATE
        assert line.count == 1

    def test_pending_payouts_not_on_statement(self, service, reporting):
        _, _, gold = reporting
        statement = service.generate_payout_statement(gold, FEBRUARY[0], FEBRUARY[1])
        assert statement.payouts == ()
        assert statement.total_amount == 0

    def test_paid_date_outside_range(self, service, reporting):
        _, silver, _ = reporting
        statement = service.generate_payout_statement(silver, date(2026, 2, 6), FEBRUARY[1])
        assert statement.payout_count == 0

    def test_inverted_range(self, service):
        with pytest.raises(ValidationError):
            service.generate_payout_statement(uuid4(), FEBRUARY[1], FEBRUARY[0])


class TestProgramStats:

    def test_stats(self, service, reporting, enroll):
        program, silver, _ = reporting
        claimant = enroll(program)
        service.suspend_enrollment(claimant.id, TEST_ACTOR_ID)

        stats = service.get_program_stats(program.id)
        assert stats.enrollment_count == 3
        assert stats.active_enrollments == 2
        assert stats.total_accrued == Decimal("4600.00")
        assert stats.total_paid == Decimal("500.00")
        assert stats.claims_by_status == {}

    def test_claim_counts(self, service, create_active_program, enroll):
        program = create_active_program(code="SPIFF-2026", program_type="spiff")
        dealer = enroll(program).dealer_id
        for amount in ("100", "200"):
            service.submit_claim(dealer, program.id, "spiff", Decimal(amount), TEST_ACTOR_ID)
        service.save_claim_draft(dealer, program.id, "spiff", Decimal("50"), TEST_ACTOR_ID)

        stats = service.get_program_stats(program.id)
        assert stats.claims_by_status == {"submitted": 2, "draft": 1}


class TestProjectedRebate:

    def test_projection_for_current_month(self, service, rebate_program, enroll, volumes):
        dealer = enroll(rebate_program).dealer_id
        volumes.set(dealer, Decimal("7000"))

        projection = service.get_projected_rebate(
            rebate_program.id, dealer, as_of=date(2026, 2, 14)
        )
        assert projection.current_tier == "Base"
        assert projection.current_accrual == Decimal("70.00")
        assert projection.projected_volume == Decimal("14000.00")
        assert projection.projected_tier == "Silver"
        assert projection.projected_accrual == Decimal("280.00")
        assert projection.volume_to_next_tier == Decimal("3000")
        assert projection.days_remaining == 14

    def test_as_of_defaults_to_today(self, service, rebate_program, enroll, volumes):
        dealer = enroll(rebate_program).dealer_id
        volumes.set(dealer, Decimal("1000"))
        projection = service.get_projected_rebate(rebate_program.id, dealer)
        assert projection.current_volume == Decimal("1000")
        assert projection.projected_volume == Decimal("28000.00")

    def test_requires_volume_source(self, session, clock, settings, rebate_program):
        bare = IncentiveService(session, clock=clock, config=settings)
        with pytest.raises(ValidationError):
            bare.get_projected_rebate(rebate_program.id, uuid4())


class TestDealerDashboard:

    def test_dashboard_totals(self, service, reporting):
        program, silver, _ = reporting
        dashboard = service.get_dealer_dashboard(silver, as_of=FEBRUARY[1])

        assert dashboard.active_programs == 1
        assert [e.program_id for e in dashboard.enrollments] == [program.id]
        assert dashboard.total_accrued == Decimal("1000.00")
        assert dashboard.total_paid == Decimal("500.00")
        assert dashboard.pending == Decimal("500.00")
        assert dashboard.ytd_paid == Decimal("500.00")
        (payout,) = dashboard.recent_payouts
        assert payout.status is PayoutStatus.COMPLETED
        assert dashboard.recent_claims == ()

    def test_ytd_excludes_payouts_after_as_of(self, service, reporting):
        _, silver, _ = reporting
        # The clock reads 2026-02-01; the payout was paid on 2026-02-05.
        assert service.get_dealer_dashboard(silver).ytd_paid == 0
        assert service.get_dealer_dashboard(silver, as_of=date(2027, 1, 15)).ytd_paid == 0

    def test_pending_payouts_not_recent(self, service, reporting):
        _, _, gold = reporting
        dashboard = service.get_dealer_dashboard(gold, as_of=FEBRUARY[1])
        assert dashboard.recent_payouts == ()
        assert dashboard.ytd_paid == 0

    def test_recent_claims_capped_at_five(self, service, create_active_program, enroll):
        program = create_active_program(code="SPIFF-2026", program_type="spiff")
        dealer = enroll(program).dealer_id
        for amount in range(100, 700, 100):
            service.submit_claim(dealer, program.id, "spiff", Decimal(amount), TEST_ACTOR_ID)

        dashboard = service.get_dealer_dashboard(dealer)
        assert [c.claim_number for c in dashboard.recent_claims] == [
            f"CLM-2026-0000{n}" for n in (6, 5, 4, 3, 2)
        ]

    def test_suspended_enrollment_not_counted(self, service, rebate_program, enroll):
        enrollment = enroll(rebate_program)
        service.suspend_enrollment(enrollment.id, TEST_ACTOR_ID)
        dashboard = service.get_dealer_dashboard(enrollment.dealer_id)
        assert dashboard.active_programs == 0
        assert dashboard.enrollments == ()


class TestClaimStats:

    @pytest.fixture
    def review_queue(self, service, create_active_program, enroll):
        program = create_active_program(code="SPIFF-2026", program_type="spiff")
        dealer = enroll(program).dealer_id
        submitted, reviewing, approved, denied = (
            service.submit_claim(dealer, program.id, "spiff", Decimal(amount), TEST_ACTOR_ID)
            for amount in ("100", "200", "300", "400")
        )
        service.start_review(reviewing.id, REVIEWER_ID)
        service.review_claim(approved.id, REVIEWER_ID, "approved")
        service.review_claim(denied.id, REVIEWER_ID, "denied", denial_reason="No proof")
        service.save_claim_draft(dealer, program.id, "spiff", Decimal("50"), TEST_ACTOR_ID)
        return program

    def test_counts_for_today(self, service, review_queue):
        stats = service.get_claim_stats()
        assert stats.as_of == date(2026, 2, 1)
        assert stats.submitted == 1
        assert stats.under_review == 1
        assert stats.approved_today == 1
        assert stats.denied_today == 1
        assert stats.pending_requested_amount == Decimal("300")

    def test_reviews_from_earlier_days_not_counted(self, service, review_queue):
        stats = service.get_claim_stats(as_of=date(2026, 2, 2))
        assert stats.approved_today == 0
        assert stats.denied_today == 0
        assert stats.submitted == 1

    def test_empty_queue(self, service):
        stats = service.get_claim_stats()
        assert (stats.submitted, stats.under_review) == (0, 0)
        assert stats.pending_requested_amount == 0
