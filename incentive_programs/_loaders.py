"""
Row loaders shared by the engine services.

Each loader fetches one ORM row by id and raises the matching typed
``NotFoundError`` when it is missing.  ``lock=True`` issues
``SELECT ... FOR UPDATE`` and refreshes the identity-map copy.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from incentive_kernel.exceptions import (
    AccrualNotFoundError,
    ClaimNotFoundError,
    EnrollmentNotFoundError,
    PayoutNotFoundError,
    ProgramNotFoundError,
)
from incentive_programs.orm import (
    EnrollmentModel,
    IncentiveClaimModel,
    IncentivePayoutModel,
    ProgramModel,
    RebateAccrualModel,
)


def _load(session: Session, model, entity_id: UUID, lock: bool):
    stmt = select(model).where(model.id == entity_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.execute(stmt).scalar_one_or_none()


def load_program(session: Session, program_id: UUID, lock: bool = False) -> ProgramModel:
    program = _load(session, ProgramModel, program_id, lock)
    if program is None:
        raise ProgramNotFoundError(str(program_id))
    return program


def load_enrollment(
    session: Session, enrollment_id: UUID, lock: bool = False
) -> EnrollmentModel:
    enrollment = _load(session, EnrollmentModel, enrollment_id, lock)
    if enrollment is None:
        raise EnrollmentNotFoundError(str(enrollment_id))
    return enrollment


def find_enrollment(
    session: Session, dealer_id: UUID, program_id: UUID, lock: bool = False
) -> EnrollmentModel | None:
    """The enrollment for a dealer/program pair, or None."""
    stmt = select(EnrollmentModel).where(
        EnrollmentModel.dealer_id == dealer_id,
        EnrollmentModel.program_id == program_id,
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.execute(stmt).scalar_one_or_none()


def require_enrollment(
    session: Session, dealer_id: UUID, program_id: UUID, lock: bool = False
) -> EnrollmentModel:
    enrollment = find_enrollment(session, dealer_id, program_id, lock=lock)
    if enrollment is None:
        raise EnrollmentNotFoundError(f"{dealer_id}/{program_id}")
    return enrollment


def load_accrual(
    session: Session, accrual_id: UUID, lock: bool = False
) -> RebateAccrualModel:
    accrual = _load(session, RebateAccrualModel, accrual_id, lock)
    if accrual is None:
        raise AccrualNotFoundError(str(accrual_id))
    return accrual


def load_claim(session: Session, claim_id: UUID, lock: bool = False) -> IncentiveClaimModel:
    claim = _load(session, IncentiveClaimModel, claim_id, lock)
    if claim is None:
        raise ClaimNotFoundError(str(claim_id))
    return claim


def load_payout(
    session: Session, payout_id: UUID, lock: bool = False
) -> IncentivePayoutModel:
    payout = _load(session, IncentivePayoutModel, payout_id, lock)
    if payout is None:
        raise PayoutNotFoundError(str(payout_id))
    return payout
