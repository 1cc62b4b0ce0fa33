"""
Module: cogs_kernel.models.cogs_allocation
Responsibility: ORM persistence for the append-only COGS allocation ledger.
    One row per consumed layer slice (original lines) or per offset (reversal
    lines).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: rows are never updated except to stamp reversed_at /
      reversed_by_id / reversed_reason on an original that has been offset.
    - At most one active line per (order_id, sku, line_no): partial unique
      index over is_reversal = false AND reversed_at IS NULL.  This is the
      authoritative de-duplication key for concurrent allocations.
    - qty != 0, unit_cost_used >= 0, method in (FIFO, AVG) (CHECK).
    - Once a batch is fully reversed, SUM(qty) and SUM(amount) over the
      batch's rows are exactly zero.

Failure modes:
    - IntegrityError when a concurrent run already holds the active key.
      The allocation engine reports this as already_allocated.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TrackedBase, UUIDString


class CogsAllocation(TrackedBase):
    """
    One ledger line.

    Contract:
        Original lines: is_reversal = false, qty > 0, layer_id set (null
        only for legacy rows).  Reversal lines: is_reversal = true, qty < 0,
        amount = qty * unit_cost_used except on the closing row of a batch,
        which carries the exact residual amount.

    Guarantees:
        - batch_id ties every line of one allocation run to every reversal
          that offsets it.
        - reverses_allocation_id is set on line-level reversals (void
          cascade, admin clear) and null on Method B return reversals.
    """

    __tablename__ = "cogs_allocations"

    __table_args__ = (
        CheckConstraint("qty <> 0", name="ck_alloc_qty_nonzero"),
        CheckConstraint("unit_cost_used >= 0", name="ck_alloc_unit_cost_nonneg"),
        CheckConstraint("method IN ('FIFO', 'AVG')", name="ck_alloc_method"),
        # Query: ledger of one order / key
        Index("idx_cogs_alloc_order_sku", "order_id", "sku"),
        # Query: daily COGS
        Index("idx_cogs_alloc_shipped_at", "shipped_at"),
        # Query: void cascade
        Index("idx_cogs_alloc_layer", "layer_id"),
        Index("idx_cogs_alloc_batch", "batch_id"),
        Index(
            "uq_cogs_alloc_active_line",
            "order_id",
            "sku",
            "line_no",
            unique=True,
            sqlite_where=text("is_reversal = 0 AND reversed_at IS NULL"),
            postgresql_where=text("is_reversal = false AND reversed_at IS NULL"),
        ),
    )

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    batch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    shipped_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    method: Mapped[str] = mapped_column(String(10), nullable=False)

    # Signed: positive for originals, negative for reversals
    qty: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost_used: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    layer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    is_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reverses_allocation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    reversed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reversed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_active(self) -> bool:
        return not self.is_reversal and self.reversed_at is None

    def __repr__(self) -> str:
        kind = "REV" if self.is_reversal else "ALLOC"
        return (
            f"<CogsAllocation {kind} {self.order_id}/{self.sku}#{self.line_no}: "
            f"{self.qty} @ {self.unit_cost_used} = {self.amount}>"
        )
