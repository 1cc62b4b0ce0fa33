"""
SequenceService -- per-name counters behind cost-layer ``seq``.

Two layers of the same SKU received at the same instant (a goods receipt
with repeated lines, a batch import of opening balances) must still deplete
in a fixed order.  Every new layer takes the next ``cost_layer`` value, and
FIFO sorts on (received_at, seq).

The counter row is read ``FOR UPDATE`` so concurrent receipts serialize on
it; a value taken inside a transaction that later rolls back is handed out
again, which is harmless because seq only has to be ordered, not gap-free.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.sequence_counter import SequenceCounter
from cogs_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceService(BaseService):

    COST_LAYER = "cost_layer"

    def _lock(self, name: str) -> SequenceCounter | None:
        return self.session.scalars(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).one_or_none()

    def _create(self, name: str) -> SequenceCounter | None:
        """Insert a fresh counter at 0; None if a concurrent caller won the insert."""
        savepoint = self.session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=0)
            self.session.add(counter)
            self.session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_created_concurrently", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return counter

    def next_value(self, name: str) -> int:
        """Increment and return the counter, creating it on first use (first value is 1)."""
        counter = self._lock(name) or self._create(name) or self._lock(name)
        if counter is None:
            raise RuntimeError(f"Sequence counter {name!r} could not be created or locked")

        counter.current_value += 1
        self.session.flush()
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        return self.session.scalar(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        )
