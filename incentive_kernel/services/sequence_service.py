"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers for named sequences
    (claim numbers use one sequence per calendar year).  Uses a dedicated
    counter table with row-level locking (``SELECT ... FOR UPDATE``) so
    concurrent allocations for the same name serialize.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by the claim workflow when a claim is submitted.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value; aggregate-max-plus-one over business tables is only
      ever used to *seed* a counter that does not exist yet.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: Concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from incentive_kernel.db.base import Base
from incentive_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "claim_number:2026")
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is only committed when the caller's
        transaction commits.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str, seed: int = 0) -> int:
        """
        Get the next value for a named sequence.

        This method:
        1. Locks the sequence row (or creates it, starting after ``seed``)
        2. Increments the counter
        3. Returns the new value

        Args:
            sequence_name: Name of the sequence.
            seed: Highest value already in use when the counter does not
                exist yet (e.g. numbers issued before the counter table).

        Returns:
            The next sequence value (always > seed and > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use of this sequence; another transaction may create it
            # concurrently, so isolate the insert in a savepoint.
            first_value = seed + 1
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=first_value)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": first_value},
                )
                return first_value
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value = max(counter.current_value, seed) + 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """
        Get the current value of a sequence without incrementing.

        Returns:
            Current value, or None if sequence doesn't exist.
        """
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None
