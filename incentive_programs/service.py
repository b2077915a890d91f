"""
Incentive Service (``incentive_programs.service``).

Responsibility
--------------
The single public entry point of the incentive engine.  Composes the
catalog, enrollment ledger, accrual runner, co-op tracker, claim
workflow, payout processor and selectors over one session, and owns the
transaction boundary of every operation.

Architecture position
---------------------
**Programs layer** -- facade.  Component services only ``flush()``; each
public method here commits on success and rolls back on any exception, so
every operation is one transaction.

Invariants enforced
-------------------
* One operation == one transaction (commit on success, rollback and
  re-raise on failure).
* Settings come from ``incentive_config.get_active_config()`` unless an
  ``IncentiveSettings`` is injected.

Failure modes
-------------
* Every typed ``IncentiveEngineError`` raised by a component propagates
  unchanged after rollback.

Usage::

    service = IncentiveService(session, clock=clock, volume_source=volumes)
    program = service.create_program(
        code="Q1-REBATE", name="Q1 Rebate", program_type="rebate",
        start_date=date(2026, 1, 1),
        ruleset=TieredRates(tiers=(Tier("Base", Decimal("0"), Decimal("0.01")),)),
        actor_id=actor_id,
    )
    service.change_program_status(program.id, "activate", actor_id)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from incentive_config import IncentiveSettings, get_active_config
from incentive_kernel.db.engine import create_tables, init_engine_from_url
from incentive_kernel.domain.clock import Clock, SystemClock
from incentive_kernel.exceptions import ValidationError
from incentive_kernel.logging_config import LogContext, configure_logging, get_logger
from incentive_programs.accrual import BatchAccrualRunner
from incentive_programs.calculator import project_rebate
from incentive_programs.catalog import ProgramCatalog
from incentive_programs.claims import ClaimWorkflowService
from incentive_programs.coop import CoopFundTracker
from incentive_programs.enrollment import EnrollmentLedger
from incentive_programs.models import (
    AccrualPeriod,
    AccrualRunResult,
    AccrualSummary,
    BatchApproveResult,
    ClaimStats,
    ClaimStatus,
    ClaimType,
    CoopFundBalance,
    DealerAccrualSummary,
    DealerDashboard,
    Enrollment,
    EnrollmentStatus,
    FinalizeResult,
    IncentiveClaim,
    IncentivePayout,
    OrderLine,
    Page,
    PayoutBatchResult,
    PayoutReport,
    PayoutStatement,
    PayoutStatus,
    PeriodType,
    Program,
    ProgramStats,
    ProgramStatus,
    ProgramType,
    RateRuleset,
    RebateAccrual,
    RebateProjection,
    ReviewDecision,
)
from incentive_programs.payouts import PayoutProcessor
from incentive_programs.periods import resolve_period
from incentive_programs.selectors import IncentiveSelector
from incentive_programs.volume import OrderLineVolumeSource, VolumeSource

logger = get_logger("programs.service")


class IncentiveService:
    """
    Facade over the incentive engine components.

    Contract
    --------
    * Mutating methods take the acting user's id (``actor_id`` or a
      role-specific name such as ``reviewer_id``) for audit columns.
    * Returns frozen DTOs from ``incentive_programs.models``.

    Guarantees
    ----------
    * Session is committed only when the whole operation succeeds.
    * Clock is injectable for deterministic testing.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        volume_source: VolumeSource | None = None,
        config: IncentiveSettings | None = None,
        order_line_fetcher: Callable[[UUID, AccrualPeriod], Iterable[OrderLine]] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        if volume_source is None and order_line_fetcher is not None:
            volume_source = OrderLineVolumeSource(
                order_line_fetcher, self._config.counted_order_statuses
            )
        self._volume_source = volume_source

        places = self._config.money_decimal_places
        self._catalog = ProgramCatalog(session, self._clock)
        self._enrollments = EnrollmentLedger(session, self._clock)
        self._coop = CoopFundTracker(session, self._clock)
        self._accruals = BatchAccrualRunner(
            session,
            self._clock,
            volume_source=volume_source,
            decimal_places=places,
            default_period_type=self._config.default_period_type,
        )
        self._claims = ClaimWorkflowService(
            session,
            self._clock,
            coop=self._coop,
            number_prefix=self._config.claim_number_prefix,
            sequence_width=self._config.claim_sequence_width,
        )
        self._payouts = PayoutProcessor(
            session,
            self._clock,
            mark_claim_paid_on_schedule=self._config.mark_claim_paid_on_schedule,
        )
        self._selector = IncentiveSelector(session)

    @contextmanager
    def _transaction(self, operation: str, actor_id: UUID | None = None) -> Iterator[None]:
        with LogContext.bind(actor_id=actor_id):
            try:
                yield
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                logger.warning(
                    "incentive_operation_rolled_back",
                    extra={
                        "operation": operation,
                        "error_type": type(exc).__name__,
                        "error_code": getattr(exc, "code", None),
                    },
                )
                raise
            logger.debug("incentive_operation_committed", extra={"operation": operation})

    # ------------------------------------------------------------------
    # Program catalog
    # ------------------------------------------------------------------

    def create_program(
        self,
        code: str,
        name: str,
        program_type: ProgramType | str,
        start_date: date,
        ruleset: RateRuleset,
        actor_id: UUID,
        **options,
    ) -> Program:
        """Create a ``draft`` program.  ``options`` are the optional program fields."""
        with self._transaction("create_program", actor_id):
            return self._catalog.create_program(
                code, name, program_type, start_date, ruleset, actor_id, **options
            )

    def update_program(self, program_id: UUID, actor_id: UUID, **changes) -> Program:
        with self._transaction("update_program", actor_id):
            return self._catalog.update_program(program_id, actor_id, **changes)

    def change_program_status(self, program_id: UUID, action: str, actor_id: UUID) -> Program:
        with self._transaction("change_program_status", actor_id):
            return self._catalog.change_status(program_id, action, actor_id)

    def delete_program(self, program_id: UUID, actor_id: UUID) -> None:
        with self._transaction("delete_program", actor_id):
            self._catalog.delete_program(program_id)

    def get_program(self, program_ref: UUID | str) -> Program:
        with self._transaction("get_program"):
            return self._catalog.get_program(program_ref)

    def list_programs(
        self,
        program_type: ProgramType | str | None = None,
        status: ProgramStatus | str | None = None,
        dealer_tier: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        with self._transaction("list_programs"):
            return self._catalog.list_programs(program_type, status, dealer_tier, page, limit)

    # ------------------------------------------------------------------
    # Enrollment ledger
    # ------------------------------------------------------------------

    def enroll_dealer(
        self,
        program_id: UUID,
        dealer_id: UUID,
        actor_id: UUID,
        terms_version: str | None = None,
        dealer_tier: str | None = None,
        dealer_region: str | None = None,
    ) -> Enrollment:
        with self._transaction("enroll_dealer", actor_id):
            return self._enrollments.enroll(
                program_id, dealer_id, actor_id, terms_version, dealer_tier, dealer_region
            )

    def approve_enrollment(self, enrollment_id: UUID, actor_id: UUID) -> Enrollment:
        with self._transaction("approve_enrollment", actor_id):
            return self._enrollments.approve(enrollment_id, actor_id)

    def suspend_enrollment(self, enrollment_id: UUID, actor_id: UUID) -> Enrollment:
        with self._transaction("suspend_enrollment", actor_id):
            return self._enrollments.suspend(enrollment_id, actor_id)

    def reinstate_enrollment(self, enrollment_id: UUID, actor_id: UUID) -> Enrollment:
        with self._transaction("reinstate_enrollment", actor_id):
            return self._enrollments.reinstate(enrollment_id, actor_id)

    def withdraw_enrollment(
        self, enrollment_id: UUID, actor_id: UUID, reason: str | None = None
    ) -> Enrollment:
        with self._transaction("withdraw_enrollment", actor_id):
            return self._enrollments.withdraw(enrollment_id, actor_id, reason)

    def get_enrollment(self, enrollment_id: UUID) -> Enrollment:
        with self._transaction("get_enrollment"):
            return self._enrollments.get(enrollment_id)

    def list_dealer_enrollments(
        self, dealer_id: UUID, status: EnrollmentStatus | str | None = None
    ) -> tuple[Enrollment, ...]:
        with self._transaction("list_dealer_enrollments"):
            return self._enrollments.list_dealer_enrollments(dealer_id, status)

    # ------------------------------------------------------------------
    # Accruals
    # ------------------------------------------------------------------

    def run_batch_accrual(
        self,
        program_id: UUID,
        actor_id: UUID,
        period_type: PeriodType | str | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
        recalculate: bool = False,
        reference_date: date | None = None,
    ) -> AccrualRunResult:
        with self._transaction("run_batch_accrual", actor_id):
            return self._accruals.run_batch(
                program_id,
                actor_id,
                period_type=period_type,
                period_start=period_start,
                period_end=period_end,
                recalculate=recalculate,
                reference_date=reference_date,
            )

    def finalize_accruals(
        self, program_id: UUID, period_start: date, period_end: date, actor_id: UUID
    ) -> FinalizeResult:
        with self._transaction("finalize_accruals", actor_id):
            return self._accruals.finalize(program_id, period_start, period_end, actor_id)

    def get_accrual_summary(self, program_id: UUID) -> AccrualSummary:
        with self._transaction("get_accrual_summary"):
            return self._selector.get_accrual_summary(program_id)

    def get_period_accruals(
        self, program_id: UUID, period_start: date
    ) -> tuple[RebateAccrual, ...]:
        with self._transaction("get_period_accruals"):
            return self._selector.get_period_accruals(program_id, period_start)

    def get_dealer_accrual_summary(
        self, dealer_id: UUID, program_id: UUID | None = None
    ) -> DealerAccrualSummary:
        with self._transaction("get_dealer_accrual_summary"):
            return self._selector.get_dealer_accrual_summary(dealer_id, program_id)

    def get_projected_rebate(
        self,
        program_id: UUID,
        dealer_id: UUID,
        as_of: date | None = None,
        period_type: PeriodType | str | None = None,
    ) -> RebateProjection:
        """Project the dealer's rebate for the period containing ``as_of``."""
        if self._volume_source is None:
            raise ValidationError("volume_source", "no volume source configured")
        with self._transaction("get_projected_rebate"):
            program = self._catalog.get_program(program_id)
            as_of = as_of or self._clock.today()
            period = resolve_period(period_type or self._config.default_period_type, as_of)
            to_date = AccrualPeriod(period.period_type, period.start, min(as_of, period.end))
            volume = self._volume_source.qualifying_volume(program, dealer_id, to_date)
            return project_rebate(
                program.ruleset,
                volume,
                period,
                as_of,
                decimal_places=self._config.money_decimal_places,
            )

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def save_claim_draft(
        self,
        dealer_id: UUID,
        program_id: UUID,
        claim_type: ClaimType | str,
        requested_amount: Decimal,
        actor_id: UUID,
        **details,
    ) -> IncentiveClaim:
        with self._transaction("save_claim_draft", actor_id):
            return self._claims.save_draft(
                dealer_id, program_id, claim_type, requested_amount, actor_id, **details
            )

    def submit_draft_claim(self, claim_id: UUID, actor_id: UUID) -> IncentiveClaim:
        with self._transaction("submit_draft_claim", actor_id):
            return self._claims.submit_draft(claim_id, actor_id)

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
        with self._transaction("submit_claim", submitted_by_id):
            return self._claims.submit_claim(
                dealer_id,
                program_id,
                claim_type,
                requested_amount,
                submitted_by_id,
                description=description,
                activity_date=activity_date,
                vendor_name=vendor_name,
                invoice_number=invoice_number,
            )

    def start_review(self, claim_id: UUID, reviewer_id: UUID) -> IncentiveClaim:
        with self._transaction("start_review", reviewer_id):
            return self._claims.start_review(claim_id, reviewer_id)

    def review_claim(
        self,
        claim_id: UUID,
        reviewer_id: UUID,
        decision: ReviewDecision | str,
        approved_amount: Decimal | None = None,
        notes: str | None = None,
        denial_reason: str | None = None,
    ) -> IncentiveClaim:
        with self._transaction("review_claim", reviewer_id):
            return self._claims.review_claim(
                claim_id, reviewer_id, decision, approved_amount, notes, denial_reason
            )

    def batch_approve(
        self, claim_ids: Iterable[UUID], reviewer_id: UUID, notes: str | None = None
    ) -> BatchApproveResult:
        with self._transaction("batch_approve", reviewer_id):
            return self._claims.batch_approve(claim_ids, reviewer_id, notes)

    def get_claim(self, claim_id: UUID) -> IncentiveClaim:
        with self._transaction("get_claim"):
            return self._claims.get_claim(claim_id)

    def list_claims(
        self,
        dealer_id: UUID | None = None,
        program_id: UUID | None = None,
        status: ClaimStatus | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        with self._transaction("list_claims"):
            return self._claims.list_claims(dealer_id, program_id, status, page, limit)

    def get_pending_claims(self, program_id: UUID | None = None) -> tuple[IncentiveClaim, ...]:
        with self._transaction("get_pending_claims"):
            return self._claims.get_pending_claims(program_id)

    def get_coop_fund_balance(
        self, dealer_id: UUID, program_id: UUID | None = None
    ) -> tuple[CoopFundBalance, ...]:
        with self._transaction("get_coop_fund_balance"):
            return self._coop.get_balances(dealer_id, program_id)

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def create_payout_from_claim(
        self,
        claim_id: UUID,
        actor_id: UUID,
        scheduled_date: date | None = None,
        payment_method: str | None = None,
    ) -> IncentivePayout:
        with self._transaction("create_payout_from_claim", actor_id):
            return self._payouts.create_from_claim(
                claim_id, actor_id, scheduled_date, payment_method
            )

    def create_payout_from_accrual(
        self,
        accrual_id: UUID,
        actor_id: UUID,
        scheduled_date: date | None = None,
        payment_method: str | None = None,
    ) -> IncentivePayout:
        with self._transaction("create_payout_from_accrual", actor_id):
            return self._payouts.create_from_accrual(
                accrual_id, actor_id, scheduled_date, payment_method
            )

    def create_period_payouts(
        self,
        program_id: UUID,
        period_start: date,
        period_end: date,
        actor_id: UUID,
        scheduled_date: date | None = None,
        payment_method: str | None = None,
    ) -> PayoutBatchResult:
        with self._transaction("create_period_payouts", actor_id):
            return self._payouts.create_period_payouts(
                program_id, period_start, period_end, actor_id, scheduled_date, payment_method
            )

    def mark_payout_processing(self, payout_id: UUID, actor_id: UUID) -> IncentivePayout:
        with self._transaction("mark_payout_processing", actor_id):
            return self._payouts.mark_processing(payout_id, actor_id)

    def process_payout(
        self,
        payout_id: UUID,
        reference_number: str,
        processed_by_id: UUID,
        paid_date: date | None = None,
    ) -> IncentivePayout:
        with self._transaction("process_payout", processed_by_id):
            return self._payouts.process_payout(
                payout_id, reference_number, processed_by_id, paid_date
            )

    def fail_payout(self, payout_id: UUID, reason: str, actor_id: UUID) -> IncentivePayout:
        with self._transaction("fail_payout", actor_id):
            return self._payouts.fail_payout(payout_id, reason, actor_id)

    # ------------------------------------------------------------------
    # Reports
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
        with self._transaction("get_payout_report"):
            return self._selector.get_payout_report(
                program_id, dealer_id, status, start_date, end_date, group_by
            )

    def get_scheduled_payouts(
        self, start_date: date, end_date: date
    ) -> tuple[IncentivePayout, ...]:
        with self._transaction("get_scheduled_payouts"):
            return self._selector.get_scheduled_payouts(start_date, end_date)

    def generate_payout_statement(
        self, dealer_id: UUID, start_date: date, end_date: date
    ) -> PayoutStatement:
        with self._transaction("generate_payout_statement"):
            return self._selector.generate_payout_statement(dealer_id, start_date, end_date)

    def get_program_stats(self, program_id: UUID) -> ProgramStats:
        with self._transaction("get_program_stats"):
            return self._selector.get_program_stats(program_id)

    def get_dealer_dashboard(
        self, dealer_id: UUID, as_of: date | None = None
    ) -> DealerDashboard:
        with self._transaction("get_dealer_dashboard"):
            return self._selector.get_dealer_dashboard(dealer_id, as_of or self._clock.today())

    def get_claim_stats(self, as_of: date | None = None) -> ClaimStats:
        """Review queue counts; "today" is ``as_of`` or the clock's date."""
        with self._transaction("get_claim_stats"):
            return self._selector.get_claim_stats(as_of or self._clock.today())



def bootstrap(settings: IncentiveSettings | None = None) -> Engine:
    """
    Configure logging, initialize the engine and create tables from settings.

    Returns:
        The initialized SQLAlchemy ``Engine``.
    """
    settings = settings or get_active_config()
    configure_logging(level=settings.log_level)
    engine = init_engine_from_url(settings.database_url, echo=settings.echo_sql)
    create_tables()
    logger.info("incentive_engine_bootstrapped", extra={"dialect": engine.dialect.name})
    return engine
