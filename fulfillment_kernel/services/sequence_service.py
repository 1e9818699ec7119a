"""
SequenceService -- gap-free counters for order numbers and event streams.

Each named counter is one row in ``sequence_counters``.  Allocation is a
single ``UPDATE ... SET current_value = current_value + 1`` followed by a
read of the new value, so two transactions allocating from the same
counter serialize on that row and can never see the same number.
Reading ``max(sequence) + 1`` from the event table is never used.

Counters advance inside the caller's transaction: a rollback gives the
number back, and nothing here commits.

    sequences = SequenceService(session)
    seq = sequences.next_value(SequenceService.order_events(order_id))
"""

from sqlalchemy import Integer, String, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from fulfillment_kernel.db.base import Base
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Last value handed out for one named counter."""

    __tablename__ = "sequence_counters"

    # "order_number" or "order_events:<order_id>"
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SequenceService:
    ORDER_NUMBER = "order_number"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def order_events(order_id) -> str:
        """Counter name for the activity event stream of one order."""
        return f"order_events:{order_id}"

    def next_value(self, sequence_name: str) -> int:
        """
        Allocate the next value, starting at 1.

        The counter row stays write-locked until the caller's transaction
        ends.  A counter seen for the first time is created inside a
        savepoint; losing that creation race to another transaction falls
        back to incrementing the winner's row.
        """
        if not self._increment(sequence_name):
            self._create_or_increment(sequence_name)

        value = self.current_value(sequence_name)
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Last allocated value without advancing, or None for an unused counter."""
        return self._session.scalar(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        )

    def _increment(self, sequence_name: str) -> bool:
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def _create_or_increment(self, sequence_name: str) -> None:
        savepoint = self._session.begin_nested()
        try:
            self._session.add(SequenceCounter(name=sequence_name, current_value=1))
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": sequence_name})
            self._increment(sequence_name)
        else:
            savepoint.commit()
