"""
cogs_services.ledger -- Append-only writer for the COGS allocation ledger.

Responsibility:
    Insert original and reversal lines, stamp originals as reversed, and
    answer the locking-free lookups the write path needs (active lines of a
    key, rows of a batch, active lines referencing a layer).

Invariants enforced:
    - Rows are only ever inserted.  The single permitted update is stamping
      reversed_at / reversed_by_id / reversed_reason on an original.
    - amount = quantize(qty * unit_cost_used) unless the caller supplies the
      exact amount (closing row of a batch).
    - An offset row produced by ``reverse_line`` points back at its
      original via reverses_allocation_id and shares its batch_id.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from cogs_kernel.domain.clock import Clock
from cogs_kernel.domain.costing import CostingMethod, quantize_amount
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.cogs_allocation import CogsAllocation
from cogs_kernel.services.base import BaseService

logger = get_logger("services.ledger")


def _active_clause():
    return (
        CogsAllocation.is_reversal.is_(False),
        CogsAllocation.reversed_at.is_(None),
    )


class AllocationLedger(BaseService):
    """
    Writer for ``cogs_allocations``.

    Non-goals:
        - Does not touch cost layers; restoring stock is the caller's job.
        - Does not commit.
    """

    def __init__(self, session: Session, actor_id: UUID, clock: Clock):
        super().__init__(session)
        self._actor_id = actor_id
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def post_line(
        self,
        *,
        order_id: str,
        sku: str,
        batch_id: UUID,
        line_no: int,
        shipped_at: datetime,
        method: CostingMethod,
        qty: Decimal,
        unit_cost: Decimal,
        layer_id: UUID | None,
        is_reversal: bool = False,
        amount: Decimal | None = None,
        reverses_allocation_id: UUID | None = None,
    ) -> CogsAllocation:
        """Insert one row and flush (unique conflicts surface here)."""
        row = CogsAllocation(
            order_id=order_id,
            sku=sku,
            batch_id=batch_id,
            line_no=line_no,
            shipped_at=shipped_at,
            method=method.value,
            qty=qty,
            unit_cost_used=quantize_amount(unit_cost),
            amount=quantize_amount(amount if amount is not None else qty * unit_cost),
            layer_id=layer_id,
            is_reversal=is_reversal,
            reverses_allocation_id=reverses_allocation_id,
            created_at=self._clock.now_utc(),
            created_by_id=self._actor_id,
        )
        self.session.add(row)
        self.session.flush()
        logger.debug(
            "cogs_line_posted",
            extra={
                "allocation_id": str(row.id),
                "batch_id": str(batch_id),
                "line_no": line_no,
                "qty": qty,
                "amount": row.amount,
                "is_reversal": is_reversal,
            },
        )
        return row

    def stamp_reversed(self, row: CogsAllocation, reason: str) -> None:
        row.reversed_at = self._clock.now_utc()
        row.reversed_by_id = self._actor_id
        row.reversed_reason = reason

    def reverse_line(
        self,
        row: CogsAllocation,
        reason: str,
        qty: Decimal | None = None,
        amount: Decimal | None = None,
    ) -> CogsAllocation | None:
        """
        Stamp ``row`` reversed and post its offset.

        ``qty`` is the positive quantity to offset (defaults to the whole
        line); the offset keeps the original's shipped_at so the day it was
        booked nets out.  A zero quantity only stamps.
        """
        open_qty = row.qty if qty is None else qty
        self.stamp_reversed(row, reason)
        if open_qty == 0:
            self.session.flush()
            return None
        return self.post_line(
            order_id=row.order_id,
            sku=row.sku,
            batch_id=row.batch_id,
            line_no=row.line_no,
            shipped_at=row.shipped_at,
            method=CostingMethod(row.method),
            qty=-open_qty,
            unit_cost=row.unit_cost_used,
            amount=amount,
            layer_id=row.layer_id,
            is_reversal=True,
            reverses_allocation_id=row.id,
        )

    @staticmethod
    def new_batch_id() -> UUID:
        return uuid4()

    # ------------------------------------------------------------------
    # Lookups used by the write path
    # ------------------------------------------------------------------

    def active_rows(self, order_id: str, sku: str) -> list[CogsAllocation]:
        return list(
            self.session.scalars(
                select(CogsAllocation)
                .where(
                    CogsAllocation.order_id == order_id,
                    CogsAllocation.sku == sku,
                    *_active_clause(),
                )
                .order_by(CogsAllocation.line_no)
            )
        )

    def has_active(self, order_id: str, sku: str) -> bool:
        return self.session.execute(
            select(CogsAllocation.id)
            .where(
                CogsAllocation.order_id == order_id,
                CogsAllocation.sku == sku,
                *_active_clause(),
            )
            .limit(1)
        ).first() is not None

    def has_any(self, order_id: str, sku: str) -> bool:
        return self.session.execute(
            select(CogsAllocation.id)
            .where(CogsAllocation.order_id == order_id, CogsAllocation.sku == sku)
            .limit(1)
        ).first() is not None

    def active_rows_for_order(self, order_id: str) -> list[CogsAllocation]:
        return list(
            self.session.scalars(
                select(CogsAllocation)
                .where(CogsAllocation.order_id == order_id, *_active_clause())
                .order_by(CogsAllocation.sku, CogsAllocation.line_no)
            )
        )

    def active_rows_for_layer(self, layer_id: UUID) -> list[CogsAllocation]:
        return list(
            self.session.scalars(
                select(CogsAllocation)
                .where(CogsAllocation.layer_id == layer_id, *_active_clause())
                .order_by(CogsAllocation.shipped_at, CogsAllocation.line_no)
            )
        )

    def batch_rows(self, batch_id: UUID) -> list[CogsAllocation]:
        return list(
            self.session.scalars(
                select(CogsAllocation)
                .where(CogsAllocation.batch_id == batch_id)
                .order_by(CogsAllocation.line_no)
            )
        )

    def reversal_for_layer(self, layer_id: UUID) -> CogsAllocation | None:
        return self.session.scalars(
            select(CogsAllocation)
            .where(
                CogsAllocation.layer_id == layer_id,
                CogsAllocation.is_reversal.is_(True),
                CogsAllocation.reverses_allocation_id.is_(None),
            )
            .limit(1)
        ).first()

    @staticmethod
    def net(rows: Sequence[CogsAllocation]) -> tuple[Decimal, Decimal]:
        """(sum qty, sum amount) over ``rows``."""
        qty = sum((row.qty for row in rows), Decimal("0"))
        amount = sum((row.amount for row in rows), Decimal("0"))
        return qty, amount
