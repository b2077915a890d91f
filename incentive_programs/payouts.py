"""
Payout Processor (``incentive_programs.payouts``).

Responsibility
--------------
Turn approved claims and finalized rebate accruals into payouts, settle
them, and keep enrollment ``pending_amount`` / ``paid_amount`` and
program ``spent_amount`` consistent with payout state.

Architecture position
---------------------
**Programs layer** -- write-side service.  Flushes only; the
``IncentiveService`` facade commits or rolls back, which makes
``process_payout`` all-or-nothing.

Invariants enforced
-------------------
* A source (claim or accrual) has at most one non-failed payout.
* Creating a payout adds its amount to the enrollment's pending amount;
  completing moves it from pending to paid; failing releases it.
* ``completed`` is terminal: ``reference_number`` and ``paid_date`` are
  written once, together.
* Program ``spent_amount + open payouts`` never exceeds ``budget_amount``,
  and non-failed payouts never exceed the ruleset's ``max_payout``.
* Statuses never regress.

Failure modes
-------------
* ``AlreadyProcessedError`` -- payout completed, or source already has a
  live payout / is already paid.
* ``InvalidTransitionError`` -- payout failed, source in the wrong state.
* ``BudgetExceededError`` -- budget or max payout would be exceeded.
* ``ProgramNotEligibleError`` -- accrual payout for a non-rebate program.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from incentive_kernel.db.types import ZERO, to_decimal
from incentive_kernel.domain.clock import Clock
from incentive_kernel.exceptions import (
    AlreadyProcessedError,
    BudgetExceededError,
    IncentiveEngineError,
    InvalidTransitionError,
    ProgramNotEligibleError,
    ValidationError,
)
from incentive_kernel.logging_config import get_logger
from incentive_kernel.services.base import BaseService
from incentive_programs._loaders import (
    load_accrual,
    load_claim,
    load_payout,
    load_program,
    require_enrollment,
)
from incentive_programs.models import (
    AccrualStatus,
    ClaimStatus,
    IncentivePayout,
    ItemError,
    PayoutBatchResult,
    PayoutStatus,
    ProgramType,
)
from incentive_programs.orm import (
    IncentivePayoutModel,
    ProgramModel,
    RebateAccrualModel,
)
from incentive_programs.workflows import (
    ACCRUAL_WORKFLOW,
    CLAIM_WORKFLOW,
    PAYOUT_WORKFLOW,
    require_transition,
)

logger = get_logger("programs.payouts")

_OPEN_STATUSES = (PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value)


class PayoutProcessor(BaseService):
    """
    Payout creation and settlement.

    Contract:
        ``mark_claim_paid_on_schedule`` selects when a claim becomes
        ``paid``: when its payout is created (True) or when the payout
        completes (False).
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        mark_claim_paid_on_schedule: bool = True,
    ):
        super().__init__(session, clock)
        self._mark_claim_paid_on_schedule = mark_claim_paid_on_schedule

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _live_payout(
        self, claim_id: UUID | None = None, accrual_id: UUID | None = None
    ) -> IncentivePayoutModel | None:
        stmt = select(IncentivePayoutModel).where(
            IncentivePayoutModel.status != PayoutStatus.FAILED.value
        )
        if claim_id is not None:
            stmt = stmt.where(IncentivePayoutModel.claim_id == claim_id)
        else:
            stmt = stmt.where(IncentivePayoutModel.accrual_id == accrual_id)
        return self.session.execute(stmt.limit(1)).scalar_one_or_none()

    def _check_budget(self, program: ProgramModel, amount: Decimal) -> None:
        payouts = self.session.execute(
            select(IncentivePayoutModel.status, IncentivePayoutModel.amount).where(
                IncentivePayoutModel.program_id == program.id,
                IncentivePayoutModel.status != PayoutStatus.FAILED.value,
            )
        ).all()
        open_total = sum(
            (to_decimal(a) for s, a in payouts if s in _OPEN_STATUSES), ZERO
        )
        live_total = sum((to_decimal(a) for _, a in payouts), ZERO)

        if program.budget_amount is not None:
            budget = to_decimal(program.budget_amount)
            committed = to_decimal(program.spent_amount) + open_total
            if committed + amount > budget:
                raise BudgetExceededError(
                    str(program.id), "budget_amount", budget, committed, amount
                )

        max_payout = program.ruleset.caps.max_payout
        if max_payout is not None and live_total + amount > max_payout:
            raise BudgetExceededError(
                str(program.id), "max_payout", max_payout, live_total, amount
            )

    def _schedule(
        self,
        program: ProgramModel,
        dealer_id: UUID,
        amount: Decimal,
        actor_id: UUID,
        scheduled_date: date | None,
        payment_method: str | None,
        claim_id: UUID | None = None,
        accrual_id: UUID | None = None,
    ) -> IncentivePayoutModel:
        if amount <= ZERO:
            raise ValidationError("amount", f"payout amount must be positive, got {amount}")
        enrollment = require_enrollment(self.session, dealer_id, program.id, lock=True)
        self._check_budget(program, amount)

        payout = IncentivePayoutModel(
            program_id=program.id,
            dealer_id=dealer_id,
            amount=amount,
            payout_type=program.program_type,
            status=PayoutStatus.PENDING.value,
            scheduled_date=scheduled_date or self.clock.today(),
            payment_method=payment_method,
            claim_id=claim_id,
            accrual_id=accrual_id,
            created_by_id=actor_id,
        )
        self.session.add(payout)
        enrollment.pending_amount = to_decimal(enrollment.pending_amount) + amount
        enrollment.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "payout_scheduled",
            extra={
                "payout_id": str(payout.id),
                "program_id": str(program.id),
                "dealer_id": str(dealer_id),
                "amount": str(amount),
                "claim_id": str(claim_id) if claim_id else None,
                "accrual_id": str(accrual_id) if accrual_id else None,
            },
        )
        return payout

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_from_claim(
        self,
        claim_id: UUID,
        actor_id: UUID,
        scheduled_date: date | None = None,
        payment_method: str | None = None,
    ) -> IncentivePayout:
        """
        Schedule a payout for an approved claim.

        A ``paid`` claim whose payouts all failed may be scheduled again.
        """
        claim = load_claim(self.session, claim_id, lock=True)
        if self._live_payout(claim_id=claim_id) is not None:
            raise AlreadyProcessedError(CLAIM_WORKFLOW.name, str(claim_id))
        if claim.status not in (ClaimStatus.APPROVED.value, ClaimStatus.PAID.value):
            raise InvalidTransitionError(
                CLAIM_WORKFLOW.name, str(claim_id), claim.status, "schedule_payout"
            )
        if claim.approved_amount is None:
            raise ValidationError("approved_amount", f"claim {claim_id} has no approved amount")

        program = load_program(self.session, claim.program_id, lock=True)
        payout = self._schedule(
            program,
            claim.dealer_id,
            to_decimal(claim.approved_amount),
            actor_id,
            scheduled_date,
            payment_method,
            claim_id=claim.id,
        )

        if self._mark_claim_paid_on_schedule and claim.status == ClaimStatus.APPROVED.value:
            self._mark_claim_paid(claim, actor_id)
            self.session.flush()
        return payout.to_dto()

    def create_from_accrual(
        self,
        accrual_id: UUID,
        actor_id: UUID,
        scheduled_date: date | None = None,
        payment_method: str | None = None,
    ) -> IncentivePayout:
        """Schedule a payout of a finalized rebate accrual's final amount."""
        accrual = load_accrual(self.session, accrual_id, lock=True)
        if accrual.status == AccrualStatus.PAID.value:
            raise AlreadyProcessedError(ACCRUAL_WORKFLOW.name, str(accrual_id))
        if accrual.status != AccrualStatus.FINALIZED.value:
            raise InvalidTransitionError(
                ACCRUAL_WORKFLOW.name, str(accrual_id), accrual.status, "schedule_payout"
            )
        if self._live_payout(accrual_id=accrual_id) is not None:
            raise AlreadyProcessedError(ACCRUAL_WORKFLOW.name, str(accrual_id))

        program = load_program(self.session, accrual.program_id, lock=True)
        if program.program_type != ProgramType.REBATE.value:
            raise ProgramNotEligibleError(
                str(program.id), f"{program.program_type} accruals are not paid out directly"
            )

        payout = self._schedule(
            program,
            accrual.dealer_id,
            to_decimal(accrual.final_amount),
            actor_id,
            scheduled_date,
            payment_method,
            accrual_id=accrual.id,
        )
        return payout.to_dto()

    def create_period_payouts(
        self,
        program_id: UUID,
        period_start: date,
        period_end: date,
        actor_id: UUID,
        scheduled_date: date | None = None,
        payment_method: str | None = None,
    ) -> PayoutBatchResult:
        """One payout per finalized, non-zero accrual in the range; failures collected."""
        program = load_program(self.session, program_id)
        if program.program_type != ProgramType.REBATE.value:
            raise ProgramNotEligibleError(
                str(program_id), f"{program.program_type} accruals are not paid out directly"
            )

        accrual_ids = self.session.execute(
            select(RebateAccrualModel.id)
            .where(
                RebateAccrualModel.program_id == program_id,
                RebateAccrualModel.status == AccrualStatus.FINALIZED.value,
                RebateAccrualModel.period_start >= period_start,
                RebateAccrualModel.period_end <= period_end,
                RebateAccrualModel.final_amount > 0,
            )
            .order_by(RebateAccrualModel.dealer_id, RebateAccrualModel.period_start)
        ).scalars().all()

        created: list[IncentivePayout] = []
        errors: list[ItemError] = []
        total = ZERO
        for accrual_id in accrual_ids:
            savepoint = self.session.begin_nested()
            try:
                payout = self.create_from_accrual(
                    accrual_id, actor_id, scheduled_date, payment_method
                )
                savepoint.commit()
            except IncentiveEngineError as exc:
                savepoint.rollback()
                errors.append(ItemError(accrual_id, exc.code, str(exc)))
                logger.warning(
                    "period_payout_item_failed",
                    extra={"accrual_id": str(accrual_id), "error_code": exc.code},
                )
                continue
            created.append(payout)
            total += payout.amount

        logger.info(
            "period_payouts_created",
            extra={
                "program_id": str(program_id),
                "created_count": len(created),
                "error_count": len(errors),
                "total_amount": str(total),
            },
        )
        return PayoutBatchResult(created=tuple(created), total_amount=total, errors=tuple(errors))

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def mark_processing(self, payout_id: UUID, actor_id: UUID) -> IncentivePayout:
        payout = load_payout(self.session, payout_id, lock=True)
        payout.status = require_transition(
            PAYOUT_WORKFLOW, payout_id, payout.status, "start_processing"
        )
        payout.updated_by_id = actor_id
        self.session.flush()
        logger.info("payout_processing", extra={"payout_id": str(payout_id)})
        return payout.to_dto()

    def _mark_claim_paid(self, claim, actor_id: UUID) -> None:
        claim.status = require_transition(CLAIM_WORKFLOW, claim.id, claim.status, "mark_paid")
        claim.paid_at = self.clock.now()
        claim.updated_by_id = actor_id

    def process_payout(
        self,
        payout_id: UUID,
        reference_number: str,
        processed_by_id: UUID,
        paid_date: date | None = None,
    ) -> IncentivePayout:
        """
        Complete a payout and move its amount from pending to paid.

        Payout, enrollment and program rows are locked.  Every write lands
        in the caller's transaction; any exception leaves all of them
        unapplied once the caller rolls back.
        """
        if not reference_number or not reference_number.strip():
            raise ValidationError("reference_number", "is required")

        payout = load_payout(self.session, payout_id, lock=True)
        if payout.status == PayoutStatus.COMPLETED.value:
            raise AlreadyProcessedError(PAYOUT_WORKFLOW.name, str(payout_id))
        require_transition(PAYOUT_WORKFLOW, payout_id, payout.status, "complete")

        enrollment = require_enrollment(
            self.session, payout.dealer_id, payout.program_id, lock=True
        )
        program = load_program(self.session, payout.program_id, lock=True)
        amount = to_decimal(payout.amount)

        enrollment.paid_amount = to_decimal(enrollment.paid_amount) + amount
        enrollment.pending_amount = to_decimal(enrollment.pending_amount) - amount
        enrollment.updated_by_id = processed_by_id

        payout.complete(reference_number, paid_date or self.clock.today(), processed_by_id)

        program.spent_amount = to_decimal(program.spent_amount) + amount
        program.updated_by_id = processed_by_id

        if payout.accrual_id is not None:
            accrual = load_accrual(self.session, payout.accrual_id, lock=True)
            accrual.status = require_transition(
                ACCRUAL_WORKFLOW, accrual.id, accrual.status, "mark_paid"
            )
            accrual.paid_at = self.clock.now()
            accrual.updated_by_id = processed_by_id
        else:
            claim = load_claim(self.session, payout.claim_id, lock=True)
            if claim.status == ClaimStatus.APPROVED.value:
                self._mark_claim_paid(claim, processed_by_id)

        self.session.flush()
        logger.info(
            "payout_processed",
            extra={
                "payout_id": str(payout_id),
                "amount": str(amount),
                "reference_number": reference_number,
            },
        )
        return payout.to_dto()

    def fail_payout(self, payout_id: UUID, reason: str, actor_id: UUID) -> IncentivePayout:
        """Mark a pending or processing payout failed and release its pending amount."""
        if not reason or not reason.strip():
            raise ValidationError("reason", "is required to fail a payout")
        payout = load_payout(self.session, payout_id, lock=True)
        payout.status = require_transition(PAYOUT_WORKFLOW, payout_id, payout.status, "fail")
        payout.failure_reason = reason
        payout.updated_by_id = actor_id

        enrollment = require_enrollment(
            self.session, payout.dealer_id, payout.program_id, lock=True
        )
        enrollment.pending_amount = to_decimal(enrollment.pending_amount) - to_decimal(payout.amount)
        enrollment.updated_by_id = actor_id
        self.session.flush()

        logger.warning(
            "payout_failed",
            extra={"payout_id": str(payout_id), "failure_reason": reason},
        )
        return payout.to_dto()
