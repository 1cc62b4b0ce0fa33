"""Pure domain types: clock, business time, costing values and DTOs."""

from cogs_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from cogs_kernel.domain.costing import (
    AllocationResult,
    AllocationState,
    AllocationStatus,
    BundleComponent,
    CostingMethod,
    FailureReason,
    LayerRefType,
    StockInLine,
    quantize_amount,
)
from cogs_kernel.domain.dtos import (
    AllocationLineInfo,
    CostLayerInfo,
    LayerActionResult,
    SkuValuation,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "AllocationResult",
    "AllocationState",
    "AllocationStatus",
    "BundleComponent",
    "CostingMethod",
    "FailureReason",
    "LayerRefType",
    "StockInLine",
    "quantize_amount",
    "AllocationLineInfo",
    "CostLayerInfo",
    "LayerActionResult",
    "SkuValuation",
]
