"""
DTOs -- Read-side and action-result data transfer objects.

Selectors return these instead of ORM entities so that callers never hold a
live, mutable row outside the session that loaded it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from cogs_kernel.domain.business_time import as_utc
from cogs_kernel.domain.costing import CostingMethod, LayerRefType

if TYPE_CHECKING:
    from cogs_kernel.models.cogs_allocation import CogsAllocation
    from cogs_kernel.models.cost_layer import CostLayer


@dataclass(frozen=True)
class CostLayerInfo:
    id: UUID
    sku: str
    received_at: datetime
    qty_received: Decimal
    qty_remaining: Decimal
    unit_cost: Decimal
    ref_type: LayerRefType
    ref_id: str | None
    seq: int
    voided: bool

    @property
    def is_untouched(self) -> bool:
        return self.qty_remaining == self.qty_received

    @classmethod
    def from_model(cls, layer: CostLayer) -> CostLayerInfo:
        return cls(
            id=layer.id,
            sku=layer.sku,
            received_at=as_utc(layer.received_at),
            qty_received=layer.qty_received,
            qty_remaining=layer.qty_remaining,
            unit_cost=layer.unit_cost,
            ref_type=LayerRefType(layer.ref_type),
            ref_id=layer.ref_id,
            seq=layer.seq,
            voided=layer.voided,
        )


@dataclass(frozen=True)
class AllocationLineInfo:
    id: UUID
    order_id: str
    sku: str
    batch_id: UUID
    line_no: int
    shipped_at: datetime
    method: CostingMethod
    qty: Decimal
    unit_cost_used: Decimal
    amount: Decimal
    layer_id: UUID | None
    is_reversal: bool
    reverses_allocation_id: UUID | None
    reversed_at: datetime | None

    @property
    def is_active(self) -> bool:
        return not self.is_reversal and self.reversed_at is None

    @classmethod
    def from_model(cls, row: CogsAllocation) -> AllocationLineInfo:
        return cls(
            id=row.id,
            order_id=row.order_id,
            sku=row.sku,
            batch_id=row.batch_id,
            line_no=row.line_no,
            shipped_at=as_utc(row.shipped_at),
            method=CostingMethod(row.method),
            qty=row.qty,
            unit_cost_used=row.unit_cost_used,
            amount=row.amount,
            layer_id=row.layer_id,
            is_reversal=row.is_reversal,
            reverses_allocation_id=row.reverses_allocation_id,
            reversed_at=as_utc(row.reversed_at),
        )


@dataclass(frozen=True)
class SkuValuation:
    """On-hand quantity and value across the active layers of one SKU."""

    sku: str
    qty_on_hand: Decimal
    value: Decimal
    layer_count: int

    @property
    def average_unit_cost(self) -> Decimal:
        if self.qty_on_hand == 0:
            return Decimal("0")
        return self.value / self.qty_on_hand


@dataclass(frozen=True)
class LayerActionResult:
    """Outcome of an admin layer action (amend / void / void with reversal)."""

    success: bool
    layer_id: UUID | None = None
    message: str | None = None
    reversed_lines: int = 0
    warnings: tuple[str, ...] = field(default_factory=tuple)
