"""
Claim Workflow (``incentive_programs.claims``).

Responsibility
--------------
Dealer claims from draft through submission, review and approval or
denial.  Assigns claim numbers, checks enrollment and program eligibility,
and enforces co-op balances.

Architecture position
---------------------
**Programs layer** -- write-side service.  Claim numbers come from the
kernel ``SequenceService``; co-op checks are delegated to
``CoopFundTracker``.  The caller owns the transaction.

Invariants enforced
-------------------
* Claim numbers are ``<prefix>-<year>-<seq>``; ``seq`` is strictly
  increasing within a year and restarts at 1 for a new year.
* A claim is submitted only for an active enrollment in an active program.
* A co-op claim is never submitted or approved above the available
  balance.
* ``approved_amount`` is set iff the claim is approved or paid, and
  ``0 < approved_amount <= requested_amount``.
* Status changes only through CLAIM_WORKFLOW actions.

Failure modes
-------------
* ``ValidationError`` -- non-positive amount, unknown claim type, bad
  approval amount, denial without a reason.
* ``EnrollmentNotActiveError`` / ``ProgramNotEligibleError`` -- at submit.
* ``InsufficientBalanceError`` -- co-op balance exceeded.
* ``InvalidTransitionError`` -- action not legal from the claim's state.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from incentive_kernel.db.types import ZERO
from incentive_kernel.domain.clock import Clock
from incentive_kernel.exceptions import (
    EnrollmentNotActiveError,
    IncentiveEngineError,
    ProgramNotEligibleError,
    ValidationError,
)
from incentive_kernel.logging_config import LogContext, get_logger
from incentive_kernel.services.base import BaseService
from incentive_kernel.services.sequence_service import SequenceService
from incentive_programs._loaders import find_enrollment, load_claim, load_program
from incentive_programs.coop import CoopFundTracker
from incentive_programs.models import (
    BatchApproveResult,
    ClaimStatus,
    ClaimType,
    EnrollmentStatus,
    IncentiveClaim,
    ItemError,
    Page,
    ProgramStatus,
    ProgramType,
    ReviewDecision,
    coerce_enum,
)
from incentive_programs.orm import IncentiveClaimModel, ProgramModel
from incentive_programs.workflows import CLAIM_WORKFLOW, require_transition

logger = get_logger("programs.claims")


class ClaimWorkflowService(BaseService):
    """
    Claim submission and review.

    Contract:
        Mutating methods return the resulting ``IncentiveClaim`` DTO.
        ``batch_approve`` isolates each claim in a SAVEPOINT.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        coop: CoopFundTracker | None = None,
        number_prefix: str = "CLM",
        sequence_width: int = 5,
    ):
        super().__init__(session, clock)
        self._coop = coop or CoopFundTracker(session, self.clock)
        self._sequences = SequenceService(session)
        self._number_prefix = number_prefix
        self._sequence_width = sequence_width

    # ------------------------------------------------------------------
    # Claim numbers
    # ------------------------------------------------------------------

    def _highest_issued(self, prefix: str) -> int:
        numbers = self.session.execute(
            select(IncentiveClaimModel.claim_number).where(
                IncentiveClaimModel.claim_number.like(f"{prefix}%")
            )
        ).scalars()
        highest = 0
        for number in numbers:
            suffix = number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return highest

    def next_claim_number(self) -> str:
        """Allocate the next number for the clock's current year."""
        year = self.clock.now().year
        prefix = f"{self._number_prefix}-{year}-"
        sequence_name = f"claim_number:{year}"
        seed = 0
        if self._sequences.current_value(sequence_name) is None:
            seed = self._highest_issued(prefix)
        value = self._sequences.next_value(sequence_name, seed=seed)
        return f"{prefix}{value:0{self._sequence_width}d}"

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _validate_request(
        self, claim_type: ClaimType | str, requested_amount: Decimal
    ) -> ClaimType:
        kind = coerce_enum(ClaimType, claim_type, "claim_type")
        if not isinstance(requested_amount, Decimal):
            raise ValidationError("requested_amount", "must be a Decimal")
        if requested_amount <= ZERO:
            raise ValidationError("requested_amount", "must be greater than zero")
        return kind

    def _check_submission(
        self, program_id: UUID, dealer_id: UUID, amount: Decimal
    ) -> ProgramModel:
        enrollment = find_enrollment(self.session, dealer_id, program_id)
        if enrollment is None or enrollment.status != EnrollmentStatus.ACTIVE.value:
            raise EnrollmentNotActiveError(
                str(dealer_id), str(program_id), enrollment.status if enrollment else None
            )
        program = load_program(self.session, program_id)
        if program.status != ProgramStatus.ACTIVE.value:
            raise ProgramNotEligibleError(
                str(program_id), f"program is {program.status}, not active"
            )
        if program.program_type == ProgramType.COOP.value:
            self._coop.ensure_sufficient(dealer_id, program_id, amount)
        return program

    def _stamp_submitted(self, claim: IncentiveClaimModel, actor_id: UUID) -> None:
        claim.status = require_transition(CLAIM_WORKFLOW, claim.id, claim.status, "submit")
        claim.claim_number = self.next_claim_number()
        claim.submitted_at = self.clock.now()
        claim.submitted_by_id = actor_id
        claim.updated_by_id = actor_id

    def save_draft(
        self,
        dealer_id: UUID,
        program_id: UUID,
        claim_type: ClaimType | str,
        requested_amount: Decimal,
        actor_id: UUID,
        description: str | None = None,
        activity_date: date | None = None,
        vendor_name: str | None = None,
        invoice_number: str | None = None,
    ) -> IncentiveClaim:
        """Store a claim as ``draft``; no number, no eligibility checks yet."""
        kind = self._validate_request(claim_type, requested_amount)
        load_program(self.session, program_id)
        claim = IncentiveClaimModel(
            program_id=program_id,
            dealer_id=dealer_id,
            claim_type=kind.value,
            requested_amount=requested_amount,
            description=description,
            activity_date=activity_date,
            vendor_name=vendor_name,
            invoice_number=invoice_number,
            status=ClaimStatus.DRAFT.value,
            created_by_id=actor_id,
        )
        self.session.add(claim)
        self.session.flush()
        logger.info(
            "claim_draft_saved",
            extra={"claim_id": str(claim.id), "dealer_id": str(dealer_id)},
        )
        return claim.to_dto()

    def submit_draft(self, claim_id: UUID, actor_id: UUID) -> IncentiveClaim:
        claim = load_claim(self.session, claim_id, lock=True)
        require_transition(CLAIM_WORKFLOW, claim_id, claim.status, "submit")
        self._check_submission(claim.program_id, claim.dealer_id, claim.requested_amount)
        self._stamp_submitted(claim, actor_id)
        self.session.flush()
        logger.info(
            "claim_submitted",
            extra={"claim_id": str(claim.id), "claim_number": claim.claim_number},
        )
        return claim.to_dto()

    def submit_claim(
        self,
        dealer_id: UUID,
        program_id: UUID,
        claim_type: ClaimType | str,
        requested_amount: Decimal,
        submitted_by_id: UUID,
        description: str | None = None,
        activity_date: date | None = None,
        vendor_name: str | None = None,
        invoice_number: str | None = None,
    ) -> IncentiveClaim:
        """
        Create and submit a claim in one step.

        All checks run before the claim row is added, so a rejected
        submission leaves nothing behind.
        """
        kind = self._validate_request(claim_type, requested_amount)
        with LogContext.bind(dealer_id=dealer_id, program_id=program_id):
            self._check_submission(program_id, dealer_id, requested_amount)

            claim = IncentiveClaimModel(
                program_id=program_id,
                dealer_id=dealer_id,
                claim_type=kind.value,
                requested_amount=requested_amount,
                description=description,
                activity_date=activity_date,
                vendor_name=vendor_name,
                invoice_number=invoice_number,
                status=ClaimStatus.DRAFT.value,
                created_by_id=submitted_by_id,
            )
            self.session.add(claim)
            self.session.flush()
            self._stamp_submitted(claim, submitted_by_id)
            self.session.flush()

            logger.info(
                "claim_submitted",
                extra={
                    "claim_id": str(claim.id),
                    "claim_number": claim.claim_number,
                    "claim_type": kind.value,
                    "requested_amount": str(requested_amount),
                },
            )
        return claim.to_dto()

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def start_review(self, claim_id: UUID, reviewer_id: UUID) -> IncentiveClaim:
        claim = load_claim(self.session, claim_id, lock=True)
        claim.status = require_transition(CLAIM_WORKFLOW, claim_id, claim.status, "start_review")
        claim.reviewer_id = reviewer_id
        claim.updated_by_id = reviewer_id
        self.session.flush()
        logger.info("claim_review_started", extra={"claim_id": str(claim_id)})
        return claim.to_dto()

    def review_claim(
        self,
        claim_id: UUID,
        reviewer_id: UUID,
        decision: ReviewDecision | str,
        approved_amount: Decimal | None = None,
        notes: str | None = None,
        denial_reason: str | None = None,
    ) -> IncentiveClaim:
        """
        Approve or deny a submitted or under-review claim.

        Approval defaults to the requested amount.  Denial needs a reason.
        """
        verdict = coerce_enum(ReviewDecision, decision, "decision")
        action = "approve" if verdict is ReviewDecision.APPROVED else "deny"

        claim = load_claim(self.session, claim_id, lock=True)
        target = require_transition(CLAIM_WORKFLOW, claim_id, claim.status, action)
        now = self.clock.now()

        if verdict is ReviewDecision.APPROVED:
            requested = claim.requested_amount
            amount = requested if approved_amount is None else approved_amount
            if amount <= ZERO or amount > requested:
                raise ValidationError(
                    "approved_amount", f"{amount} must be > 0 and <= requested {requested}"
                )
            program = load_program(self.session, claim.program_id)
            if program.program_type == ProgramType.COOP.value:
                self._coop.ensure_sufficient(
                    claim.dealer_id, claim.program_id, amount, exclude_claim_id=claim.id
                )
            claim.approved_amount = amount
            claim.approved_at = now
        else:
            if not denial_reason or not denial_reason.strip():
                raise ValidationError("denial_reason", "is required to deny a claim")
            claim.denial_reason = denial_reason

        claim.status = target
        claim.reviewer_id = reviewer_id
        claim.reviewed_at = now
        claim.review_notes = notes
        claim.updated_by_id = reviewer_id
        self.session.flush()

        logger.info(
            "claim_reviewed",
            extra={
                "claim_id": str(claim_id),
                "decision": verdict.value,
                "approved_amount": str(claim.approved_amount) if claim.approved_amount is not None else None,
            },
        )
        return claim.to_dto()

    def batch_approve(
        self,
        claim_ids: Iterable[UUID],
        reviewer_id: UUID,
        notes: str | None = None,
    ) -> BatchApproveResult:
        """Approve each claim at its requested amount; failures are collected."""
        approved: list[UUID] = []
        errors: list[ItemError] = []
        for claim_id in claim_ids:
            savepoint = self.session.begin_nested()
            try:
                self.review_claim(claim_id, reviewer_id, ReviewDecision.APPROVED, notes=notes)
                savepoint.commit()
            except IncentiveEngineError as exc:
                savepoint.rollback()
                errors.append(ItemError(claim_id, exc.code, str(exc)))
                logger.warning(
                    "claim_batch_approve_item_failed",
                    extra={"claim_id": str(claim_id), "error_code": exc.code},
                )
                continue
            approved.append(claim_id)

        logger.info(
            "claim_batch_approved",
            extra={"approved_count": len(approved), "error_count": len(errors)},
        )
        return BatchApproveResult(approved_ids=tuple(approved), errors=tuple(errors))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_claim(self, claim_id: UUID) -> IncentiveClaim:
        return load_claim(self.session, claim_id).to_dto()

    def list_claims(
        self,
        dealer_id: UUID | None = None,
        program_id: UUID | None = None,
        status: ClaimStatus | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        if page < 1:
            raise ValidationError("page", "must be >= 1")
        if limit < 1:
            raise ValidationError("limit", "must be >= 1")

        conditions = []
        if dealer_id is not None:
            conditions.append(IncentiveClaimModel.dealer_id == dealer_id)
        if program_id is not None:
            conditions.append(IncentiveClaimModel.program_id == program_id)
        if status is not None:
            state = coerce_enum(ClaimStatus, status, "status")
            conditions.append(IncentiveClaimModel.status == state.value)

        total = self.session.execute(
            select(func.count()).select_from(IncentiveClaimModel).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(IncentiveClaimModel)
            .where(*conditions)
            .order_by(IncentiveClaimModel.created_at.desc(), IncentiveClaimModel.claim_number)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return Page(items=tuple(c.to_dto() for c in rows), total=total, page=page, limit=limit)

    def get_pending_claims(self, program_id: UUID | None = None) -> tuple[IncentiveClaim, ...]:
        """Submitted and under-review claims, oldest submission first."""
        stmt = select(IncentiveClaimModel).where(
            IncentiveClaimModel.status.in_(
                (ClaimStatus.SUBMITTED.value, ClaimStatus.UNDER_REVIEW.value)
            )
        )
        if program_id is not None:
            stmt = stmt.where(IncentiveClaimModel.program_id == program_id)
        stmt = stmt.order_by(IncentiveClaimModel.submitted_at, IncentiveClaimModel.claim_number)
        return tuple(c.to_dto() for c in self.session.execute(stmt).scalars())
