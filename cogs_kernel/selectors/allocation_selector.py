"""
Module: cogs_kernel.selectors.allocation_selector
Responsibility: Read-only queries over the COGS allocation ledger: lines per
    order or key, per-key state, and daily COGS.

Invariants enforced:
    - Daily COGS is the signed sum of every row (originals and reversals)
      whose shipped_at falls inside the business day, rounded half-up to the
      configured places and floored at zero.
    - Sums are taken over Decimal values in Python, never database floats.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select

from cogs_kernel.domain.business_time import DEFAULT_BUSINESS_TIMEZONE, business_day_bounds
from cogs_kernel.domain.costing import AllocationState
from cogs_kernel.domain.dtos import AllocationLineInfo
from cogs_kernel.models.cogs_allocation import CogsAllocation
from cogs_kernel.selectors.base import BaseSelector


class AllocationSelector(BaseSelector):
    """Read side of the allocation ledger."""

    def lines_for_order(self, order_id: str) -> list[AllocationLineInfo]:
        stmt = (
            select(CogsAllocation)
            .where(CogsAllocation.order_id == order_id)
            .order_by(CogsAllocation.sku, CogsAllocation.created_at, CogsAllocation.line_no)
        )
        return [AllocationLineInfo.from_model(row) for row in self.session.scalars(stmt)]

    def lines_for_key(self, order_id: str, sku: str) -> list[AllocationLineInfo]:
        return [line for line in self.lines_for_order(order_id) if line.sku == sku]

    def active_lines(self, order_id: str, sku: str) -> list[AllocationLineInfo]:
        return [line for line in self.lines_for_key(order_id, sku) if line.is_active]

    def state_of(self, order_id: str, sku: str) -> AllocationState:
        """
        Derive the persisted state of one key.

        No rows: UNALLOCATED.  Any active original: ALLOCATED.  Rows exist
        but none active: REVERSED (the key may be allocated again).
        """
        lines = self.lines_for_key(order_id, sku)
        if not lines:
            return AllocationState.UNALLOCATED
        if any(line.is_active for line in lines):
            return AllocationState.ALLOCATED
        return AllocationState.REVERSED

    def net_for_key(self, order_id: str, sku: str) -> tuple[Decimal, Decimal]:
        """(sum qty, sum amount) over every row of the key."""
        lines = self.lines_for_key(order_id, sku)
        qty = sum((line.qty for line in lines), Decimal("0"))
        amount = sum((line.amount for line in lines), Decimal("0"))
        return qty, amount

    def daily_cogs(
        self,
        day: date,
        tz_name: str = DEFAULT_BUSINESS_TIMEZONE,
        places: int = 2,
    ) -> Decimal:
        start, end = business_day_bounds(day, tz_name)
        amounts = self.session.scalars(
            select(CogsAllocation.amount).where(
                CogsAllocation.shipped_at >= start,
                CogsAllocation.shipped_at < end,
            )
        )
        total = sum(amounts, Decimal("0"))
        quantum = Decimal(1).scaleb(-places)
        rounded = total.quantize(quantum, rounding=ROUND_HALF_UP)
        if rounded < 0:
            return Decimal("0").quantize(quantum)
        return rounded
