"""
SequenceService -- monotonic sequence allocation via a counter row.

Responsibility:
    Hands out strictly increasing integers for human-readable order numbers.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    OrderStore.create_order.

Invariants enforced:
    - Values come from an in-place ``current_value = current_value + 1``
      UPDATE, never from ``MAX(...) + 1``.  The UPDATE takes the row lock
      (PostgreSQL) or the database write lock (SQLite), so concurrent
      allocators serialize and never see the same value.
    - Transactional: the increment is only visible after the caller commits;
      a rollback returns the value.

Failure modes:
    - IntegrityError on a concurrent first-use insert race (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from replenishment_kernel.logging_config import get_logger
from replenishment_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional named sequences.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    ORDER_NUMBER = "order_number"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Increment and return the named sequence.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for ``sequence_name``.
        """
        allocated = self._increment(sequence_name)
        if allocated is None:
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                allocated = 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                allocated = self._increment(sequence_name)
                if allocated is None:
                    raise

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": allocated},
        )
        return allocated

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one_or_none()

    def _increment(self, sequence_name: str) -> int | None:
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one()
