"""
Module: cogs_kernel.models.cost_layer
Responsibility: ORM persistence for inventory cost layers.  Each layer is a
    quantity of one SKU received at one unit cost; allocations consume
    qty_remaining in FIFO order.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - qty_received > 0 (CHECK).
    - 0 <= qty_remaining <= qty_received (CHECK).  A depletion or restore that
      would break this is rejected by the conditional UPDATE in the layer
      store before the database has to.
    - unit_cost >= 0 (CHECK); zero is valid for degraded return layers.
    - At most one active RETURN layer per (ref_id, sku): partial unique index.
    - (sku, received_at, seq) index gives a deterministic FIFO order; seq is
      drawn from the sequence counter so ties on received_at are stable.

Failure modes:
    - IntegrityError on a second active RETURN layer for the same return.
      The reversal engine reads this as "return already processed".

Audit relevance:
    Layers are never deleted.  Voiding is a soft, terminal state that records
    who voided the layer, when, and why.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TrackedBase, UUIDString


class CostLayer(TrackedBase):
    """
    Persistent storage for one cost layer.

    Contract:
        qty_received, unit_cost, ref_type and ref_id are fixed at creation
        (except through the opening-balance amend path while untouched).
        qty_remaining moves only through the layer store's conditional
        updates.

    Non-goals:
        - No foreign key to inventory_items; SKU registration is checked by
          the services so that legacy layers of retired SKUs stay readable.
    """

    __tablename__ = "cost_layers"

    __table_args__ = (
        CheckConstraint("qty_received > 0", name="ck_layer_qty_received_pos"),
        CheckConstraint(
            "qty_remaining >= 0 AND qty_remaining <= qty_received",
            name="ck_layer_qty_remaining_range",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_layer_unit_cost_nonneg"),
        CheckConstraint(
            "ref_type IN ('OPENING_BALANCE', 'STOCK_IN', 'RETURN')",
            name="ck_layer_ref_type",
        ),
        # Query: FIFO walk for one SKU
        Index("idx_cost_layer_fifo", "sku", "received_at", "seq"),
        # Query: layers created by one document
        Index("idx_cost_layer_ref", "ref_type", "ref_id"),
        Index(
            "uq_cost_layer_active_return",
            "ref_id",
            "sku",
            unique=True,
            sqlite_where=text("ref_type = 'RETURN' AND voided = 0"),
            postgresql_where=text("ref_type = 'RETURN' AND voided = false"),
        ),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    qty_received: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    qty_remaining: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    ref_type: Mapped[str] = mapped_column(String(20), nullable=False)

    ref_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Creation order; FIFO tie-breaker
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        state = " VOID" if self.voided else ""
        return (
            f"<CostLayer {self.id}: sku={self.sku} "
            f"{self.qty_remaining}/{self.qty_received} @ {self.unit_cost}{state}>"
        )
