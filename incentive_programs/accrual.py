"""
Batch Accrual Runner (``incentive_programs.accrual``).

Responsibility
--------------
Compute and persist rebate / co-op accruals for every active enrollment of
a program over one period, keep enrollment accrued balances in step, and
finalize accruals for payout.

Architecture position
---------------------
**Programs layer** -- write-side service.  Pure math is delegated to
``incentive_programs.calculator``; volume comes from an injected
``VolumeSource``.  Each dealer runs inside its own SAVEPOINT so one bad
dealer never aborts the batch.  The caller owns the outer transaction.

Invariants enforced
-------------------
* One accrual per ``(program_id, dealer_id, period_start)``; a re-run
  without ``recalculate`` writes nothing and reports the dealer skipped.
* Finalized and paid accruals are never recalculated.
* ``Enrollment.accrued_amount`` moves by the change in ``final_amount``
  for the period, so recalculation never double counts.

Failure modes
-------------
* ``ProgramNotEligibleError`` -- program not rebate/co-op, or not active.
  Raised before any write.
* Per-dealer errors are collected into ``AccrualRunResult.errors``
  (``AccrualLockedError``, volume validation, unexpected exceptions).

Audit relevance
---------------
``accrual_run_started`` / ``accrual_run_completed`` log events carry the
run id, program id and totals; every per-dealer failure is logged with
its error code.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from incentive_kernel.db.types import ZERO, to_decimal
from incentive_kernel.domain.clock import Clock
from incentive_kernel.exceptions import (
    AccrualLockedError,
    DuplicateAccrualError,
    IncentiveEngineError,
    ProgramNotEligibleError,
    ValidationError,
)
from incentive_kernel.logging_config import LogContext, get_logger
from incentive_kernel.services.base import BaseService
from incentive_programs._loaders import load_program
from incentive_programs.calculator import calculate_accrual
from incentive_programs.enrollment import EnrollmentLedger
from incentive_programs.models import (
    AccrualCalculation,
    AccrualPeriod,
    AccrualRunResult,
    AccrualStatus,
    FinalizeResult,
    ItemError,
    PeriodType,
    Program,
    ProgramStatus,
    ProgramType,
)
from incentive_programs.orm import EnrollmentModel, RebateAccrualModel
from incentive_programs.periods import explicit_period, resolve_period
from incentive_programs.volume import VolumeSource
from incentive_programs.workflows import ACCRUAL_WORKFLOW, require_transition

logger = get_logger("programs.accrual")

ACCRUING_PROGRAM_TYPES = (ProgramType.REBATE.value, ProgramType.COOP.value)


class BatchAccrualRunner(BaseService):
    """
    Runs accrual batches and finalizes accruals.

    Contract:
        ``run_batch`` never raises for a single dealer's failure; it raises
        only when the program itself cannot accrue.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        volume_source: VolumeSource | None = None,
        decimal_places: int = 2,
        default_period_type: PeriodType | str = PeriodType.MONTHLY,
    ):
        super().__init__(session, clock)
        self._volume_source = volume_source
        self._decimal_places = decimal_places
        self._default_period_type = default_period_type
        self._enrollments = EnrollmentLedger(session, self.clock)

    def resolve_run_period(
        self,
        period_type: PeriodType | str | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
        reference_date: date | None = None,
    ) -> AccrualPeriod:
        """An explicit range when both bounds are given, else a calendar period."""
        if period_start is not None or period_end is not None:
            if period_start is None or period_end is None:
                raise ValidationError("period", "both period_start and period_end are required")
            return explicit_period(period_start, period_end)
        return resolve_period(
            period_type or self._default_period_type,
            reference_date or self.clock.today(),
        )

    def run_batch(
        self,
        program_id: UUID,
        actor_id: UUID,
        period_type: PeriodType | str | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
        recalculate: bool = False,
        reference_date: date | None = None,
    ) -> AccrualRunResult:
        """
        Accrue every active enrollment of ``program_id`` for one period.

        Preconditions:
            - Program exists, is ``rebate`` or ``coop``, and is ``active``.
        Postconditions:
            - Each active dealer is in exactly one of: processed, skipped,
              errors.
            - Dealers in skipped or errors have no writes from this run.
        """
        period = self.resolve_run_period(period_type, period_start, period_end, reference_date)
        program = load_program(self.session, program_id)
        if program.program_type not in ACCRUING_PROGRAM_TYPES:
            raise ProgramNotEligibleError(
                str(program_id), f"{program.program_type} programs do not accrue"
            )
        if program.status != ProgramStatus.ACTIVE.value:
            raise ProgramNotEligibleError(
                str(program_id), f"program is {program.status}, not active"
            )
        if self._volume_source is None:
            raise ValidationError("volume_source", "no volume source configured")

        run_id = uuid4()
        program_dto = program.to_dto()
        started_at = self.clock.now()

        processed = 0
        total_accrued = ZERO
        total_final = ZERO
        skipped: list[ItemError] = []
        errors: list[ItemError] = []

        with LogContext.bind(run_id=run_id, program_id=program_id):
            enrollments = self._enrollments.active_enrollments(program_id)
            logger.info(
                "accrual_run_started",
                extra={
                    "period_type": period.period_type.value,
                    "period_start": period.start.isoformat(),
                    "period_end": period.end.isoformat(),
                    "recalculate": recalculate,
                    "enrollment_count": len(enrollments),
                },
            )

            for enrollment in enrollments:
                dealer_id = enrollment.dealer_id
                savepoint = self.session.begin_nested()
                try:
                    calc = self._accrue_dealer(
                        program_dto, enrollment, period, recalculate, actor_id
                    )
                    savepoint.commit()
                except DuplicateAccrualError as exc:
                    savepoint.rollback()
                    skipped.append(ItemError(dealer_id, exc.code, str(exc)))
                    continue
                except IntegrityError:
                    savepoint.rollback()
                    conflict = DuplicateAccrualError(str(program_id), str(dealer_id), str(period.start))
                    skipped.append(ItemError(dealer_id, conflict.code, str(conflict)))
                    logger.warning(
                        "accrual_insert_conflict",
                        extra={"dealer_id": str(dealer_id), "period_start": period.start.isoformat()},
                    )
                    continue
                except IncentiveEngineError as exc:
                    savepoint.rollback()
                    errors.append(ItemError(dealer_id, exc.code, str(exc)))
                    logger.warning(
                        "accrual_dealer_failed",
                        extra={"dealer_id": str(dealer_id), "error_code": exc.code},
                    )
                    continue
                except Exception as exc:
                    savepoint.rollback()
                    errors.append(ItemError(dealer_id, "UNHANDLED_EXCEPTION", str(exc)))
                    logger.exception(
                        "accrual_dealer_failed",
                        extra={"dealer_id": str(dealer_id), "error_code": "UNHANDLED_EXCEPTION"},
                    )
                    continue

                processed += 1
                total_accrued += calc.accrued_amount
                total_final += calc.final_amount

            self.session.flush()
            completed_at = self.clock.now()
            logger.info(
                "accrual_run_completed",
                extra={
                    "processed_count": processed,
                    "skipped_count": len(skipped),
                    "error_count": len(errors),
                    "total_accrued": str(total_accrued),
                    "total_final": str(total_final),
                },
            )

        return AccrualRunResult(
            run_id=run_id,
            program_id=program_id,
            period=period,
            processed_count=processed,
            total_accrued=total_accrued,
            total_final=total_final,
            skipped=tuple(skipped),
            errors=tuple(errors),
            started_at=started_at,
            completed_at=completed_at,
        )

    def _existing_accrual(
        self, program_id: UUID, dealer_id: UUID, period_start: date, lock: bool = False
    ) -> RebateAccrualModel | None:
        stmt = select(RebateAccrualModel).where(
            RebateAccrualModel.program_id == program_id,
            RebateAccrualModel.dealer_id == dealer_id,
            RebateAccrualModel.period_start == period_start,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def _accrue_dealer(
        self,
        program: Program,
        enrollment: EnrollmentModel,
        period: AccrualPeriod,
        recalculate: bool,
        actor_id: UUID,
    ) -> AccrualCalculation:
        dealer_id = enrollment.dealer_id
        existing = self._existing_accrual(program.id, dealer_id, period.start)
        if existing is not None:
            if existing.is_locked:
                raise AccrualLockedError(str(existing.id), existing.status)
            if not recalculate:
                raise DuplicateAccrualError(str(program.id), str(dealer_id), str(period.start))
            # Concurrent recalculations serialize here.
            existing = self._existing_accrual(program.id, dealer_id, period.start, lock=True)
            if existing.is_locked:
                raise AccrualLockedError(str(existing.id), existing.status)

        volume = self._volume_source.qualifying_volume(program, dealer_id, period)
        calc = calculate_accrual(
            program.ruleset,
            to_decimal(volume),
            decimal_places=self._decimal_places,
            minimum_volume=program.min_order_volume,
        )
        now = self.clock.now()

        if existing is not None:
            existing.status = require_transition(
                ACCRUAL_WORKFLOW, existing.id, existing.status, "recalculate"
            )
            previous_final = to_decimal(existing.final_amount)
            existing.period_type = period.period_type.value
            existing.period_end = period.end
            existing.qualifying_volume = calc.qualifying_volume
            existing.rebate_rate = calc.rate
            existing.accrued_amount = calc.accrued_amount
            existing.final_amount = calc.final_amount
            existing.tier_achieved = calc.tier_achieved
            existing.calculated_at = now
            existing.updated_by_id = actor_id
        else:
            previous_final = ZERO
            self.session.add(
                RebateAccrualModel(
                    program_id=program.id,
                    dealer_id=dealer_id,
                    period_type=period.period_type.value,
                    period_start=period.start,
                    period_end=period.end,
                    qualifying_volume=calc.qualifying_volume,
                    rebate_rate=calc.rate,
                    accrued_amount=calc.accrued_amount,
                    final_amount=calc.final_amount,
                    tier_achieved=calc.tier_achieved,
                    status=AccrualStatus.CALCULATED.value,
                    calculated_at=now,
                    created_by_id=actor_id,
                )
            )

        enrollment.accrued_amount = (
            to_decimal(enrollment.accrued_amount) + calc.final_amount - previous_final
        )
        enrollment.tier_achieved = calc.tier_achieved
        enrollment.tier_progress = calc.tier_progress
        enrollment.updated_by_id = actor_id
        self.session.flush()

        logger.debug(
            "dealer_accrued",
            extra={
                "dealer_id": str(dealer_id),
                "qualifying_volume": str(calc.qualifying_volume),
                "rate": str(calc.rate),
                "tier_achieved": calc.tier_achieved,
                "final_amount": str(calc.final_amount),
                "recalculated": existing is not None,
            },
        )
        return calc

    def finalize(
        self,
        program_id: UUID,
        period_start: date,
        period_end: date,
        actor_id: UUID,
    ) -> FinalizeResult:
        """
        Finalize every calculated accrual inside ``[period_start, period_end]``.

        An accrual is inside the range when its own period starts on or after
        ``period_start`` and ends on or before ``period_end``.
        """
        if period_start > period_end:
            raise ValidationError("period", f"start {period_start} is after end {period_end}")
        load_program(self.session, program_id)

        rows = self.session.execute(
            select(RebateAccrualModel)
            .where(
                RebateAccrualModel.program_id == program_id,
                RebateAccrualModel.status == AccrualStatus.CALCULATED.value,
                RebateAccrualModel.period_start >= period_start,
                RebateAccrualModel.period_end <= period_end,
            )
            .with_for_update()
        ).scalars().all()

        now = self.clock.now()
        total = ZERO
        for accrual in rows:
            accrual.status = require_transition(
                ACCRUAL_WORKFLOW, accrual.id, accrual.status, "finalize"
            )
            accrual.finalized_at = now
            accrual.updated_by_id = actor_id
            total += to_decimal(accrual.final_amount)
        self.session.flush()

        logger.info(
            "accruals_finalized",
            extra={
                "program_id": str(program_id),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "count": len(rows),
                "total_amount": str(total),
            },
        )
        return FinalizeResult(count=len(rows), total_amount=total)
