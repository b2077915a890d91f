"""
Tests for the claim workflow: numbering, submission checks, drafts,
review decisions, batch approval and claim queries.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import delete

from incentive_kernel.exceptions import (
    ClaimNotFoundError,
    EnrollmentNotActiveError,
    InvalidTransitionError,
    ProgramNotEligibleError,
    ValidationError,
)
from incentive_kernel.services.sequence_service import SequenceCounter
from incentive_programs import ClaimStatus, ClaimType, FlatRate
from tests.conftest import REVIEWER_ID, TEST_ACTOR_ID


@pytest.fixture
def spiff_dealer(create_active_program, enroll):
    """An active spiff program (no co-op balance) and an enrolled dealer."""
    program = create_active_program(
        code="SPIFF-2026", program_type="spiff", ruleset=FlatRate(rate=Decimal("0.01"))
    )
    return program, enroll(program).dealer_id


def _submit(service, program, dealer, amount="500", claim_type="spiff", **details):
    return service.submit_claim(
        dealer, program.id, claim_type, Decimal(amount), TEST_ACTOR_ID, **details
    )


class TestClaimNumbers:

    def test_numbers_increase_within_year(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        first = _submit(service, program, dealer)
        second = _submit(service, program, dealer)
        assert first.claim_number == "CLM-2026-00001"
        assert second.claim_number == "CLM-2026-00002"

    def test_numbers_restart_each_year(self, service, clock, spiff_dealer):
        program, dealer = spiff_dealer
        _submit(service, program, dealer)
        clock.set_time(datetime(2027, 1, 5, 9, 0, tzinfo=timezone.utc))
        assert _submit(service, program, dealer).claim_number == "CLM-2027-00001"

    def test_prefix_and_width_from_settings(self, session, clock, volumes, spiff_dealer):
        from incentive_config import IncentiveSettings
        from incentive_programs import IncentiveService

        program, dealer = spiff_dealer
        custom = IncentiveService(
            session, clock=clock, volume_source=volumes,
            config=IncentiveSettings(claim_number_prefix="SPF", claim_sequence_width=3),
        )
        assert _submit(custom, program, dealer).claim_number == "SPF-2026-001"

    def test_missing_counter_is_seeded_from_issued_numbers(self, service, session, spiff_dealer):
        program, dealer = spiff_dealer
        _submit(service, program, dealer)
        _submit(service, program, dealer)
        session.execute(delete(SequenceCounter))
        session.commit()

        assert _submit(service, program, dealer).claim_number == "CLM-2026-00003"

    def test_rejected_submission_does_not_consume_a_number(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        with pytest.raises(EnrollmentNotActiveError):
            _submit(service, program, uuid4())
        assert _submit(service, program, dealer).claim_number == "CLM-2026-00001"


class TestSubmitClaim:

    def test_submitted_claim(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        claim = _submit(
            service, program, dealer, "750.25",
            description="Floor staff bonus", activity_date=date(2026, 1, 20),
        )
        assert claim.status is ClaimStatus.SUBMITTED
        assert claim.claim_type is ClaimType.SPIFF
        assert claim.requested_amount == Decimal("750.25")
        assert claim.submitted_by_id == TEST_ACTOR_ID
        assert claim.submitted_at is not None
        assert claim.approved_amount is None
        assert claim.activity_date == date(2026, 1, 20)

    def test_not_enrolled(self, service, spiff_dealer):
        program, _ = spiff_dealer
        with pytest.raises(EnrollmentNotActiveError) as exc_info:
            _submit(service, program, uuid4())
        assert exc_info.value.status is None

    def test_suspended_enrollment(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        (enrollment,) = service.list_dealer_enrollments(dealer)
        service.suspend_enrollment(enrollment.id, TEST_ACTOR_ID)
        with pytest.raises(EnrollmentNotActiveError) as exc_info:
            _submit(service, program, dealer)
        assert exc_info.value.status == "suspended"

    def test_paused_program(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        service.change_program_status(program.id, "pause", TEST_ACTOR_ID)
        with pytest.raises(ProgramNotEligibleError):
            _submit(service, program, dealer)

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10"), 25.0])
    def test_invalid_amount(self, service, spiff_dealer, amount):
        program, dealer = spiff_dealer
        with pytest.raises(ValidationError):
            service.submit_claim(dealer, program.id, "spiff", amount, TEST_ACTOR_ID)

    def test_unknown_claim_type(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        with pytest.raises(ValidationError):
            _submit(service, program, dealer, claim_type="lunch")


class TestDrafts:

    def test_draft_then_submit(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        draft = service.save_claim_draft(
            dealer, program.id, "spiff", Decimal("120"), TEST_ACTOR_ID,
            vendor_name="Acme Print", invoice_number="INV-77",
        )
        assert draft.status is ClaimStatus.DRAFT
        assert draft.claim_number is None
        assert draft.vendor_name == "Acme Print"

        submitted = service.submit_draft_claim(draft.id, TEST_ACTOR_ID)
        assert submitted.status is ClaimStatus.SUBMITTED
        assert submitted.claim_number == "CLM-2026-00001"

        with pytest.raises(InvalidTransitionError):
            service.submit_draft_claim(draft.id, TEST_ACTOR_ID)

    def test_draft_submit_checks_enrollment(self, service, spiff_dealer):
        program, _ = spiff_dealer
        draft = service.save_claim_draft(
            uuid4(), program.id, "spiff", Decimal("120"), TEST_ACTOR_ID
        )
        with pytest.raises(EnrollmentNotActiveError):
            service.submit_draft_claim(draft.id, TEST_ACTOR_ID)
        assert service.get_claim(draft.id).status is ClaimStatus.DRAFT


class TestReview:

    def test_full_approval_defaults_to_requested(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        claim = _submit(service, program, dealer, "500")
        approved = service.review_claim(claim.id, REVIEWER_ID, "approved", notes="ok")
        assert approved.status is ClaimStatus.APPROVED
        assert approved.approved_amount == Decimal("500")
        assert approved.reviewer_id == REVIEWER_ID
        assert approved.review_notes == "ok"
        assert approved.approved_at is not None

    def test_partial_approval_after_review_started(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        claim = _submit(service, program, dealer, "500")
        under_review = service.start_review(claim.id, REVIEWER_ID)
        assert under_review.status is ClaimStatus.UNDER_REVIEW

        approved = service.review_claim(
            claim.id, REVIEWER_ID, "approved", approved_amount=Decimal("300")
        )
        assert approved.approved_amount == Decimal("300")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("500.01")])
    def test_approval_amount_bounds(self, service, spiff_dealer, amount):
        program, dealer = spiff_dealer
        claim = _submit(service, program, dealer, "500")
        with pytest.raises(ValidationError):
            service.review_claim(claim.id, REVIEWER_ID, "approved", approved_amount=amount)
        assert service.get_claim(claim.id).status is ClaimStatus.SUBMITTED

    def test_denial_needs_reason(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        claim = _submit(service, program, dealer)
        with pytest.raises(ValidationError):
            service.review_claim(claim.id, REVIEWER_ID, "denied")

        denied = service.review_claim(
            claim.id, REVIEWER_ID, "denied", denial_reason="Outside program dates"
        )
        assert denied.status is ClaimStatus.DENIED
        assert denied.denial_reason == "Outside program dates"
        assert denied.approved_amount is None

    def test_denied_claim_is_final(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        claim = _submit(service, program, dealer)
        service.review_claim(claim.id, REVIEWER_ID, "denied", denial_reason="Duplicate")
        with pytest.raises(InvalidTransitionError):
            service.review_claim(claim.id, REVIEWER_ID, "approved")

    def test_draft_cannot_be_reviewed(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        draft = service.save_claim_draft(dealer, program.id, "spiff", Decimal("10"), TEST_ACTOR_ID)
        with pytest.raises(InvalidTransitionError):
            service.start_review(draft.id, REVIEWER_ID)

    def test_unknown_decision(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        claim = _submit(service, program, dealer)
        with pytest.raises(ValidationError):
            service.review_claim(claim.id, REVIEWER_ID, "maybe")

    def test_unknown_claim(self, service):
        with pytest.raises(ClaimNotFoundError):
            service.review_claim(uuid4(), REVIEWER_ID, "approved")


class TestBatchApprove:

    def test_collects_per_claim_failures(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        good = [_submit(service, program, dealer, amount) for amount in ("100", "200")]
        denied = _submit(service, program, dealer, "300")
        service.review_claim(denied.id, REVIEWER_ID, "denied", denial_reason="No proof")
        missing = uuid4()

        result = service.batch_approve(
            [good[0].id, denied.id, missing, good[1].id], REVIEWER_ID, notes="batch"
        )
        assert result.approved_ids == (good[0].id, good[1].id)
        assert result.approved_count == 2
        assert [(e.item_id, e.code) for e in result.errors] == [
            (denied.id, "INVALID_TRANSITION"),
            (missing, "CLAIM_NOT_FOUND"),
        ]
        assert service.get_claim(good[1].id).approved_amount == Decimal("200")
        assert service.get_claim(denied.id).status is ClaimStatus.DENIED


class TestClaimQueries:

    def test_pending_claims(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        submitted = _submit(service, program, dealer)
        reviewing = _submit(service, program, dealer)
        service.start_review(reviewing.id, REVIEWER_ID)
        approved = _submit(service, program, dealer)
        service.review_claim(approved.id, REVIEWER_ID, "approved")

        pending = service.get_pending_claims(program.id)
        assert {c.id for c in pending} == {submitted.id, reviewing.id}

    def test_list_claims_filters_and_pages(self, service, spiff_dealer):
        program, dealer = spiff_dealer
        for _ in range(3):
            _submit(service, program, dealer)
        service.save_claim_draft(dealer, program.id, "spiff", Decimal("5"), TEST_ACTOR_ID)

        assert service.list_claims(dealer_id=dealer).total == 4
        submitted = service.list_claims(program_id=program.id, status="submitted", limit=2)
        assert submitted.total == 3
        assert len(submitted.items) == 2
        assert submitted.total_pages == 2
        assert service.list_claims(dealer_id=uuid4()).items == ()
