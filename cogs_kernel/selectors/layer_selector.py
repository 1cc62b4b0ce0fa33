"""
Module: cogs_kernel.selectors.layer_selector
Responsibility: Read-only cost-layer queries: listing, FIFO order, on-hand
    quantity and valuation per SKU.

Invariants enforced:
    - FIFO order is (received_at, seq) ascending; seq breaks ties.
    - Voided layers never count toward on-hand or valuation.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from cogs_kernel.domain.costing import LayerRefType
from cogs_kernel.domain.dtos import CostLayerInfo, SkuValuation
from cogs_kernel.models.cost_layer import CostLayer
from cogs_kernel.selectors.base import BaseSelector


class LayerSelector(BaseSelector):
    """Read side of the layer store."""

    def get(self, layer_id: UUID) -> CostLayerInfo | None:
        layer = self.session.get(CostLayer, layer_id)
        return CostLayerInfo.from_model(layer) if layer else None

    def list_for_sku(
        self,
        sku: str,
        include_voided: bool = False,
    ) -> list[CostLayerInfo]:
        """All layers of a SKU in FIFO order."""
        stmt = select(CostLayer).where(CostLayer.sku == sku)
        if not include_voided:
            stmt = stmt.where(CostLayer.voided.is_(False))
        stmt = stmt.order_by(CostLayer.received_at, CostLayer.seq)
        return [CostLayerInfo.from_model(row) for row in self.session.scalars(stmt)]

    def available_for_sku(self, sku: str) -> list[CostLayerInfo]:
        """Active layers with stock left, in the order allocation consumes them."""
        return [layer for layer in self.list_for_sku(sku) if layer.qty_remaining > 0]

    def find_by_ref(
        self,
        ref_type: LayerRefType,
        ref_id: str,
        sku: str | None = None,
        include_voided: bool = False,
    ) -> list[CostLayerInfo]:
        stmt = select(CostLayer).where(
            CostLayer.ref_type == ref_type.value,
            CostLayer.ref_id == ref_id,
        )
        if sku is not None:
            stmt = stmt.where(CostLayer.sku == sku)
        if not include_voided:
            stmt = stmt.where(CostLayer.voided.is_(False))
        stmt = stmt.order_by(CostLayer.seq)
        return [CostLayerInfo.from_model(row) for row in self.session.scalars(stmt)]

    def on_hand(self, sku: str) -> Decimal:
        return self.valuation(sku).qty_on_hand

    def valuation(self, sku: str) -> SkuValuation:
        """Quantity and value of remaining stock across active layers."""
        layers = self.available_for_sku(sku)
        qty = sum((layer.qty_remaining for layer in layers), Decimal("0"))
        value = sum(
            (layer.qty_remaining * layer.unit_cost for layer in layers),
            Decimal("0"),
        )
        return SkuValuation(sku=sku, qty_on_hand=qty, value=value, layer_count=len(layers))
