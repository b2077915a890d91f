"""
Program Catalog (``incentive_programs.catalog``).

Responsibility
--------------
Create, read, update, delete and change the status of incentive programs.
Owns code uniqueness and the program lifecycle.

Architecture position
---------------------
**Programs layer** -- write-side service.  Flushes only; the
``IncentiveService`` facade owns the transaction.

Invariants enforced
-------------------
* Program codes are stored uppercase and are unique.
* ``end_date >= start_date``; ``budget_amount > 0`` when set.
* Status changes only through PROGRAM_WORKFLOW actions.
* Completed or cancelled programs are read-only.
* A program is deletable only while ``draft`` with no dependents.

Failure modes
-------------
* ``ValidationError`` -- missing or malformed fields.
* ``DuplicateProgramCodeError`` -- code already in use.
* ``InvalidTransitionError`` -- illegal status action, or update of a
  closed program.
* ``ProgramNotDeletableError`` -- delete outside draft or with dependents.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select

from incentive_kernel.db.types import ZERO
from incentive_kernel.exceptions import (
    DuplicateProgramCodeError,
    InvalidTransitionError,
    ProgramNotDeletableError,
    ProgramNotFoundError,
    ValidationError,
)
from incentive_kernel.logging_config import get_logger
from incentive_kernel.services.base import BaseService
from incentive_programs._loaders import load_program
from incentive_programs.models import (
    FlatRate,
    Page,
    Program,
    ProgramStatus,
    ProgramType,
    RateRuleset,
    TieredRates,
    coerce_enum,
)
from incentive_programs.orm import (
    EnrollmentModel,
    IncentiveClaimModel,
    IncentivePayoutModel,
    ProgramModel,
    RebateAccrualModel,
    ruleset_to_json,
)
from incentive_programs.workflows import PROGRAM_ACTIONS, PROGRAM_WORKFLOW, require_transition

logger = get_logger("programs.catalog")

UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "end_date",
    "enrollment_deadline",
    "eligible_tiers",
    "eligible_regions",
    "min_order_volume",
    "ruleset",
    "budget_amount",
    "auto_enroll",
    "requires_approval",
})

_CLOSED_STATUSES = (ProgramStatus.COMPLETED.value, ProgramStatus.CANCELLED.value)


def _check_ruleset(ruleset: RateRuleset) -> None:
    if not isinstance(ruleset, (FlatRate, TieredRates)):
        raise ValidationError("ruleset", "must be a FlatRate or TieredRates")


def _check_dates(start_date: date, end_date: date | None) -> None:
    if end_date is not None and end_date < start_date:
        raise ValidationError("end_date", f"{end_date} is before start_date {start_date}")


def _check_budget(budget_amount: Decimal | None) -> None:
    if budget_amount is not None and budget_amount <= ZERO:
        raise ValidationError("budget_amount", "must be positive when set")


class ProgramCatalog(BaseService):
    """
    Program CRUD and lifecycle.

    Contract:
        Mutating methods take ``actor_id`` for the audit columns and return
        the resulting ``Program`` DTO.
    """

    def create_program(
        self,
        code: str,
        name: str,
        program_type: ProgramType | str,
        start_date: date,
        ruleset: RateRuleset,
        actor_id: UUID,
        description: str | None = None,
        end_date: date | None = None,
        enrollment_deadline: date | None = None,
        eligible_tiers: tuple[str, ...] = (),
        eligible_regions: tuple[str, ...] = (),
        min_order_volume: Decimal | None = None,
        budget_amount: Decimal | None = None,
        auto_enroll: bool = False,
        requires_approval: bool = True,
    ) -> Program:
        """
        Create a program in ``draft``.

        Raises:
            ValidationError: Missing name/code, bad dates, budget or ruleset.
            DuplicateProgramCodeError: Code already used by another program.
        """
        if not code or not code.strip():
            raise ValidationError("code", "is required")
        if not name or not name.strip():
            raise ValidationError("name", "is required")
        if start_date is None:
            raise ValidationError("start_date", "is required")
        kind = coerce_enum(ProgramType, program_type, "program_type")
        _check_ruleset(ruleset)
        _check_dates(start_date, end_date)
        _check_budget(budget_amount)
        if min_order_volume is not None and min_order_volume < ZERO:
            raise ValidationError("min_order_volume", "cannot be negative")

        normalized = code.strip().upper()
        if self._find_by_code(normalized) is not None:
            raise DuplicateProgramCodeError(normalized)

        program = Program(
            id=uuid4(),
            code=normalized,
            name=name.strip(),
            description=description,
            program_type=kind,
            status=ProgramStatus.DRAFT,
            start_date=start_date,
            end_date=end_date,
            enrollment_deadline=enrollment_deadline,
            eligible_tiers=tuple(eligible_tiers),
            eligible_regions=tuple(eligible_regions),
            min_order_volume=min_order_volume,
            ruleset=ruleset,
            budget_amount=budget_amount,
            spent_amount=ZERO,
            auto_enroll=auto_enroll,
            requires_approval=requires_approval,
        )
        model = ProgramModel.from_dto(program, created_by_id=actor_id)
        self.session.add(model)
        self.session.flush()

        logger.info(
            "program_created",
            extra={
                "program_id": str(model.id),
                "code": normalized,
                "program_type": kind.value,
            },
        )
        return model.to_dto()

    def _find_by_code(self, code: str) -> ProgramModel | None:
        return self.session.execute(
            select(ProgramModel).where(ProgramModel.code == code.strip().upper())
        ).scalar_one_or_none()

    def get_program(self, program_ref: UUID | str) -> Program:
        """Look up a program by id or by code."""
        if isinstance(program_ref, UUID):
            return load_program(self.session, program_ref).to_dto()
        model = self._find_by_code(program_ref)
        if model is None:
            raise ProgramNotFoundError(program_ref)
        return model.to_dto()

    def list_programs(
        self,
        program_type: ProgramType | str | None = None,
        status: ProgramStatus | str | None = None,
        dealer_tier: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        """
        Page through programs, newest start date first.

        ``dealer_tier`` keeps programs open to every tier plus those that
        list the tier.  Tier lists live in a JSON column, so that filter is
        applied in Python.
        """
        if page < 1:
            raise ValidationError("page", "must be >= 1")
        if limit < 1:
            raise ValidationError("limit", "must be >= 1")

        stmt = select(ProgramModel)
        if program_type is not None:
            kind = coerce_enum(ProgramType, program_type, "program_type")
            stmt = stmt.where(ProgramModel.program_type == kind.value)
        if status is not None:
            state = coerce_enum(ProgramStatus, status, "status")
            stmt = stmt.where(ProgramModel.status == state.value)
        stmt = stmt.order_by(ProgramModel.start_date.desc(), ProgramModel.code)

        rows = list(self.session.execute(stmt).scalars())
        if dealer_tier is not None:
            rows = [r for r in rows if not r.eligible_tiers or dealer_tier in r.eligible_tiers]

        offset = (page - 1) * limit
        items = tuple(r.to_dto() for r in rows[offset:offset + limit])
        return Page(items=items, total=len(rows), page=page, limit=limit)

    def update_program(self, program_id: UUID, actor_id: UUID, **changes) -> Program:
        """
        Apply field changes to a program that is not completed or cancelled.

        Status is never changed here; use ``change_status``.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError("changes", f"cannot update {sorted(unknown)}")

        model = load_program(self.session, program_id, lock=True)
        if model.status in _CLOSED_STATUSES:
            raise InvalidTransitionError(
                PROGRAM_WORKFLOW.name, str(program_id), model.status, "update"
            )

        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("name", "is required")
        if "ruleset" in changes:
            _check_ruleset(changes["ruleset"])
        if "end_date" in changes:
            _check_dates(model.start_date, changes["end_date"])
        if "budget_amount" in changes:
            _check_budget(changes["budget_amount"])

        for field_name, value in changes.items():
            if field_name == "ruleset":
                model.rules = ruleset_to_json(value)
            elif field_name in ("eligible_tiers", "eligible_regions"):
                setattr(model, field_name, list(value or ()))
            else:
                setattr(model, field_name, value)
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "program_updated",
            extra={"program_id": str(program_id), "fields": sorted(changes)},
        )
        return model.to_dto()

    def change_status(self, program_id: UUID, action: str, actor_id: UUID) -> Program:
        """Apply one of ``activate``, ``pause``, ``complete`` or ``cancel``."""
        if action not in PROGRAM_ACTIONS:
            raise ValidationError("action", f"must be one of {PROGRAM_ACTIONS}")
        model = load_program(self.session, program_id, lock=True)
        previous = model.status
        model.status = require_transition(PROGRAM_WORKFLOW, program_id, previous, action)
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "program_status_changed",
            extra={
                "program_id": str(program_id),
                "action": action,
                "from_status": previous,
                "to_status": model.status,
            },
        )
        return model.to_dto()

    def delete_program(self, program_id: UUID) -> None:
        """Delete a draft program that nothing references."""
        model = load_program(self.session, program_id, lock=True)
        if model.status != ProgramStatus.DRAFT.value:
            raise ProgramNotDeletableError(str(program_id), f"status is {model.status}")

        for dependent, label in (
            (EnrollmentModel, "enrollments"),
            (RebateAccrualModel, "accruals"),
            (IncentiveClaimModel, "claims"),
            (IncentivePayoutModel, "payouts"),
        ):
            count = self.session.execute(
                select(func.count()).select_from(dependent).where(
                    dependent.program_id == program_id
                )
            ).scalar_one()
            if count:
                raise ProgramNotDeletableError(str(program_id), f"has {count} {label}")

        self.session.delete(model)
        self.session.flush()
        logger.info("program_deleted", extra={"program_id": str(program_id)})
