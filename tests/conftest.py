"""
Pytest configuration and shared fixtures for incentive engine tests.

Every test gets its own in-memory SQLite database with SAVEPOINT support,
a DeterministicClock pinned to 2026-02-01 12:00 UTC, and an
``IncentiveService`` wired to a ``StaticVolumeSource`` the test fills in.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import incentive_kernel.services.sequence_service  # noqa: F401  registers sequence_counters
import incentive_programs.orm  # noqa: F401  registers incentive tables
from incentive_config import IncentiveSettings
from incentive_kernel.db.base import Base
from incentive_kernel.db.engine import enable_sqlite_savepoints
from incentive_kernel.domain.clock import DeterministicClock
from incentive_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from incentive_programs import (
    EnrollmentStatus,
    FlatRate,
    IncentiveService,
    PayoutCaps,
    StaticVolumeSource,
    Tier,
    TieredRates,
)

TEST_ACTOR_ID = uuid4()
REVIEWER_ID = uuid4()

FIXED_NOW = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)
PROGRAM_START = date(2026, 1, 1)
JANUARY = (date(2026, 1, 1), date(2026, 1, 31))

TIERED_RULESET = TieredRates(
    tiers=(
        Tier("Base", Decimal("0"), Decimal("0.01")),
        Tier("Silver", Decimal("10000"), Decimal("0.02")),
        Tier("Gold", Decimal("50000"), Decimal("0.03")),
    ),
    caps=PayoutCaps(max_payout_per_dealer=Decimal("20000")),
)

COOP_RULESET = FlatRate(rate=Decimal("0.05"))


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def _configure_test_logging():
    """Structured JSON logging at DEBUG for the whole test session."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture engine log lines as parsed JSON dicts.

    Usage:
        def test_something(captured_logs):
            ...
            events = [r["message"] for r in captured_logs()]
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("incentive_kernel")
    previous_level = root.level
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)

    def _records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]

    yield _records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", poolclass=StaticPool)
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    session = sessionmaker(bind=engine)()
    yield session
    session.rollback()
    session.close()


# ---------------------------------------------------------------------------
# Engine services
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def settings():
    return IncentiveSettings(database_url="sqlite://")


@pytest.fixture
def volumes():
    return StaticVolumeSource()


@pytest.fixture
def service(session, clock, volumes, settings):
    return IncentiveService(session, clock=clock, volume_source=volumes, config=settings)


@pytest.fixture
def create_active_program(service):
    """Factory: create a program starting 2026-01-01 and activate it."""

    def _create(
        code: str = "REBATE-2026",
        program_type: str = "rebate",
        ruleset=TIERED_RULESET,
        **options,
    ):
        options.setdefault("requires_approval", False)
        program = service.create_program(
            code=code,
            name=f"{code} program",
            program_type=program_type,
            start_date=PROGRAM_START,
            ruleset=ruleset,
            actor_id=TEST_ACTOR_ID,
            **options,
        )
        return service.change_program_status(program.id, "activate", TEST_ACTOR_ID)

    return _create


@pytest.fixture
def enroll(service):
    """Factory: enroll a dealer and approve the enrollment if it is pending."""

    def _enroll(program, dealer_id=None, **kwargs):
        enrollment = service.enroll_dealer(
            program.id, dealer_id or uuid4(), TEST_ACTOR_ID, **kwargs
        )
        if enrollment.status is EnrollmentStatus.PENDING:
            enrollment = service.approve_enrollment(enrollment.id, TEST_ACTOR_ID)
        return enrollment

    return _enroll


@pytest.fixture
def rebate_program(create_active_program):
    return create_active_program()


@pytest.fixture
def coop_setup(service, create_active_program, enroll, volumes):
    """
    An active co-op program (flat 5%) with one dealer whose January volume
    of 20,000 has accrued a 1,000.00 co-op balance.
    """
    program = create_active_program(code="COOP-2026", program_type="coop", ruleset=COOP_RULESET)
    enrollment = enroll(program)
    volumes.set(enrollment.dealer_id, Decimal("20000"))
    service.run_batch_accrual(
        program.id, TEST_ACTOR_ID, period_start=JANUARY[0], period_end=JANUARY[1]
    )
    return program, enrollment.dealer_id
