"""
BaseService -- abstract base for all write-side engine services.

Responsibility:
    Provides the common constructor and session-handling contract for
    the catalog, enrollment, accrual, co-op, claim and payout services.
    Each receives a SQLAlchemy ``Session`` that it uses via
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's
    transaction and never commit or rollback themselves.  The
    ``IncentiveService`` facade (or a test harness) owns commit/rollback.
    Batch loops may open SAVEPOINTs (``begin_nested``) to isolate items.
"""

from abc import ABC

from sqlalchemy.orm import Session

from incentive_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for engine services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the outer transaction.

    Non-goals:
        - Does NOT provide report queries -- those belong in selectors.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to the system clock.
        """
        self.session = session
        self.clock = clock or SystemClock()
