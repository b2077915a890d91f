"""
Co-op Fund Balance Tracker (``incentive_programs.coop``).

Responsibility
--------------
Derive a dealer's spendable co-op balance from the enrollment's accrued
amount and the claims already approved against it, and enforce that
balance at claim submission and approval.

Invariants enforced
-------------------
* ``available = max(0, accrued_amount - total_approved)`` where
  ``total_approved`` sums approved amounts of approved and paid claims.
* Balance checks run with the enrollment row locked (``FOR UPDATE``) in
  the same transaction that writes the claim, so concurrent submissions
  for one dealer serialize.

Failure modes
-------------
* ``InsufficientBalanceError`` -- requested or approved amount exceeds
  the available balance.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from incentive_kernel.db.types import ZERO, to_decimal
from incentive_kernel.exceptions import InsufficientBalanceError
from incentive_kernel.logging_config import get_logger
from incentive_kernel.services.base import BaseService
from incentive_programs._loaders import require_enrollment
from incentive_programs.models import (
    ClaimStatus,
    CoopFundBalance,
    EnrollmentStatus,
    ProgramStatus,
    ProgramType,
)
from incentive_programs.orm import EnrollmentModel, IncentiveClaimModel, ProgramModel

logger = get_logger("programs.coop")

_APPROVED_STATUSES = (ClaimStatus.APPROVED.value, ClaimStatus.PAID.value)
_PENDING_STATUSES = (ClaimStatus.SUBMITTED.value, ClaimStatus.UNDER_REVIEW.value)
_UNCOUNTED_STATUSES = (ClaimStatus.DRAFT.value, ClaimStatus.DENIED.value)


@dataclass(frozen=True)
class _ClaimTotals:
    claimed: Decimal
    approved: Decimal
    paid: Decimal
    pending_count: int


class CoopFundTracker(BaseService):
    """Co-op balances and the checks that protect them."""

    def _claim_totals(
        self, dealer_id: UUID, program_id: UUID, exclude_claim_id: UUID | None = None
    ) -> _ClaimTotals:
        claims = self.session.execute(
            select(IncentiveClaimModel).where(
                IncentiveClaimModel.dealer_id == dealer_id,
                IncentiveClaimModel.program_id == program_id,
            )
        ).scalars()

        claimed = approved = paid = ZERO
        pending = 0
        for claim in claims:
            if claim.id == exclude_claim_id:
                continue
            if claim.status not in _UNCOUNTED_STATUSES:
                claimed += to_decimal(claim.requested_amount)
            if claim.status in _APPROVED_STATUSES:
                approved += to_decimal(claim.approved_amount)
            if claim.status == ClaimStatus.PAID.value:
                paid += to_decimal(claim.approved_amount)
            if claim.status in _PENDING_STATUSES:
                pending += 1
        return _ClaimTotals(claimed, approved, paid, pending)

    def _balance(self, enrollment: EnrollmentModel, program: ProgramModel) -> CoopFundBalance:
        totals = self._claim_totals(enrollment.dealer_id, program.id)
        accrued = to_decimal(enrollment.accrued_amount)
        return CoopFundBalance(
            program_id=program.id,
            program_name=program.name,
            dealer_id=enrollment.dealer_id,
            accrued_amount=accrued,
            total_claimed=totals.claimed,
            total_approved=totals.approved,
            total_paid=totals.paid,
            available_balance=max(ZERO, accrued - totals.approved),
            pending_claims=totals.pending_count,
        )

    def get_balances(
        self, dealer_id: UUID, program_id: UUID | None = None
    ) -> tuple[CoopFundBalance, ...]:
        """One balance per active enrollment of the dealer in an active co-op program."""
        stmt = (
            select(EnrollmentModel, ProgramModel)
            .join(ProgramModel, ProgramModel.id == EnrollmentModel.program_id)
            .where(
                EnrollmentModel.dealer_id == dealer_id,
                EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
                ProgramModel.program_type == ProgramType.COOP.value,
                ProgramModel.status == ProgramStatus.ACTIVE.value,
            )
            .order_by(ProgramModel.code)
        )
        if program_id is not None:
            stmt = stmt.where(ProgramModel.id == program_id)
        return tuple(
            self._balance(enrollment, program)
            for enrollment, program in self.session.execute(stmt).all()
        )

    def available_balance(self, dealer_id: UUID, program_id: UUID) -> Decimal:
        enrollment = require_enrollment(self.session, dealer_id, program_id)
        totals = self._claim_totals(dealer_id, program_id)
        return max(ZERO, to_decimal(enrollment.accrued_amount) - totals.approved)

    def ensure_sufficient(
        self,
        dealer_id: UUID,
        program_id: UUID,
        amount: Decimal,
        exclude_claim_id: UUID | None = None,
    ) -> Decimal:
        """
        Lock the enrollment and check ``amount`` against the available balance.

        ``exclude_claim_id`` leaves one claim out of the approved total, so a
        claim under review is not counted against itself.

        Returns:
            The available balance before ``amount`` is applied.
        """
        enrollment = require_enrollment(self.session, dealer_id, program_id, lock=True)
        totals = self._claim_totals(dealer_id, program_id, exclude_claim_id=exclude_claim_id)
        available = max(ZERO, to_decimal(enrollment.accrued_amount) - totals.approved)
        if amount > available:
            logger.warning(
                "coop_balance_insufficient",
                extra={
                    "dealer_id": str(dealer_id),
                    "program_id": str(program_id),
                    "requested": str(amount),
                    "available": str(available),
                },
            )
            raise InsufficientBalanceError(str(dealer_id), str(program_id), amount, available)
        return available
