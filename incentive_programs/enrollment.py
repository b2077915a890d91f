"""
Enrollment Ledger (``incentive_programs.enrollment``).

Responsibility
--------------
Dealer participation in programs: eligibility checks at enrollment, the
enrollment lifecycle, and lookups.  The balance columns on an enrollment
are written by the accrual runner and the payout processor, never here.

Invariants enforced
-------------------
* One enrollment per ``(dealer_id, program_id)``; enrollments are never
  deleted.
* A new enrollment is ``pending`` iff the program requires approval and
  does not auto-enroll; otherwise it starts ``active``.
* Status changes only through ENROLLMENT_WORKFLOW actions.

Failure modes
-------------
* ``ProgramNotEligibleError`` -- program not active or already ended.
* ``DealerNotEligibleError`` -- deadline passed, tier or region excluded.
* ``DuplicateEnrollmentError`` -- dealer already enrolled.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from incentive_kernel.exceptions import (
    DealerNotEligibleError,
    DuplicateEnrollmentError,
    ProgramNotEligibleError,
)
from incentive_kernel.logging_config import get_logger
from incentive_kernel.services.base import BaseService
from incentive_programs._loaders import find_enrollment, load_enrollment, load_program
from incentive_programs.models import (
    Enrollment,
    EnrollmentStatus,
    ProgramStatus,
    coerce_enum,
)
from incentive_programs.orm import EnrollmentModel
from incentive_programs.workflows import ENROLLMENT_WORKFLOW, require_transition

logger = get_logger("programs.enrollment")


class EnrollmentLedger(BaseService):
    """Enrollment creation and lifecycle."""

    def enroll(
        self,
        program_id: UUID,
        dealer_id: UUID,
        actor_id: UUID,
        terms_version: str | None = None,
        dealer_tier: str | None = None,
        dealer_region: str | None = None,
    ) -> Enrollment:
        """
        Enroll a dealer in an active program.

        Tier and region are only checked when the program restricts them;
        a restricted program rejects a dealer whose tier or region is
        unknown.
        """
        program = load_program(self.session, program_id)
        if program.status != ProgramStatus.ACTIVE.value:
            raise ProgramNotEligibleError(
                str(program_id), f"program is {program.status}, not active"
            )

        today = self.clock.today()
        if program.end_date is not None and today > program.end_date:
            raise ProgramNotEligibleError(str(program_id), f"program ended {program.end_date}")
        if program.enrollment_deadline is not None and today > program.enrollment_deadline:
            raise DealerNotEligibleError(
                str(dealer_id),
                str(program_id),
                f"enrollment deadline {program.enrollment_deadline} has passed",
            )
        if program.eligible_tiers and dealer_tier not in program.eligible_tiers:
            raise DealerNotEligibleError(
                str(dealer_id), str(program_id), f"dealer tier {dealer_tier!r} not eligible"
            )
        if program.eligible_regions and dealer_region not in program.eligible_regions:
            raise DealerNotEligibleError(
                str(dealer_id), str(program_id), f"dealer region {dealer_region!r} not eligible"
            )

        if find_enrollment(self.session, dealer_id, program_id) is not None:
            raise DuplicateEnrollmentError(str(dealer_id), str(program_id))

        now = self.clock.now()
        needs_approval = program.requires_approval
        enrollment = EnrollmentModel(
            program_id=program_id,
            dealer_id=dealer_id,
            status=(
                EnrollmentStatus.PENDING.value if needs_approval
                else EnrollmentStatus.ACTIVE.value
            ),
            enrolled_at=now,
            approved_at=None if needs_approval else now,
            terms_version=terms_version,
            created_by_id=actor_id,
        )
        self.session.add(enrollment)
        self.session.flush()

        logger.info(
            "dealer_enrolled",
            extra={
                "enrollment_id": str(enrollment.id),
                "program_id": str(program_id),
                "dealer_id": str(dealer_id),
                "status": enrollment.status,
            },
        )
        return enrollment.to_dto()

    def _transition(
        self, enrollment_id: UUID, action: str, actor_id: UUID
    ) -> EnrollmentModel:
        enrollment = load_enrollment(self.session, enrollment_id, lock=True)
        previous = enrollment.status
        enrollment.status = require_transition(
            ENROLLMENT_WORKFLOW, enrollment_id, previous, action
        )
        enrollment.updated_by_id = actor_id
        logger.info(
            "enrollment_status_changed",
            extra={
                "enrollment_id": str(enrollment_id),
                "action": action,
                "from_status": previous,
                "to_status": enrollment.status,
            },
        )
        return enrollment

    def approve(self, enrollment_id: UUID, actor_id: UUID) -> Enrollment:
        enrollment = self._transition(enrollment_id, "approve", actor_id)
        enrollment.approved_at = self.clock.now()
        enrollment.approved_by_id = actor_id
        self.session.flush()
        return enrollment.to_dto()

    def suspend(self, enrollment_id: UUID, actor_id: UUID) -> Enrollment:
        enrollment = self._transition(enrollment_id, "suspend", actor_id)
        self.session.flush()
        return enrollment.to_dto()

    def reinstate(self, enrollment_id: UUID, actor_id: UUID) -> Enrollment:
        enrollment = self._transition(enrollment_id, "reinstate", actor_id)
        self.session.flush()
        return enrollment.to_dto()

    def withdraw(
        self, enrollment_id: UUID, actor_id: UUID, reason: str | None = None
    ) -> Enrollment:
        enrollment = self._transition(enrollment_id, "withdraw", actor_id)
        enrollment.withdrawn_at = self.clock.now()
        enrollment.withdrawal_reason = reason
        self.session.flush()
        return enrollment.to_dto()

    def get(self, enrollment_id: UUID) -> Enrollment:
        return load_enrollment(self.session, enrollment_id).to_dto()

    def list_dealer_enrollments(
        self,
        dealer_id: UUID,
        status: EnrollmentStatus | str | None = None,
    ) -> tuple[Enrollment, ...]:
        stmt = select(EnrollmentModel).where(EnrollmentModel.dealer_id == dealer_id)
        if status is not None:
            state = coerce_enum(EnrollmentStatus, status, "status")
            stmt = stmt.where(EnrollmentModel.status == state.value)
        stmt = stmt.order_by(EnrollmentModel.enrolled_at)
        return tuple(e.to_dto() for e in self.session.execute(stmt).scalars())

    def active_enrollments(self, program_id: UUID) -> list[EnrollmentModel]:
        """Active enrollments of a program, in dealer order."""
        return list(
            self.session.execute(
                select(EnrollmentModel)
                .where(
                    EnrollmentModel.program_id == program_id,
                    EnrollmentModel.status == EnrollmentStatus.ACTIVE.value,
                )
                .order_by(EnrollmentModel.dealer_id)
            ).scalars()
        )
