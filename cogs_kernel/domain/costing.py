"""
Costing -- Pure value types for the COGS ledger.

Responsibility:
    Enumerations (costing method, layer provenance, outcome status, failure
    reason, per-key state), the AllocationResult returned by every allocation
    path, and the decimal quantization used for stored amounts.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Stored quantities, unit costs and amounts carry at most 9 decimal
      places (the scale of the Numeric(38, 9) columns).
    - AllocationResult never mixes a SUCCESS status with a failure reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from cogs_kernel.exceptions import (
    AlreadyAllocatedError,
    ConcurrentModificationError,
    InsufficientStockError,
    MissingBundleRecipeError,
    PartialBundleAllocationError,
    SkuNotFoundError,
    ValidationError,
)

AMOUNT_QUANTUM = Decimal("0.000000001")
ZERO = Decimal("0")


def quantize_amount(value: Decimal) -> Decimal:
    """Round to storage scale (9 dp, half-up)."""
    return Decimal(value).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


class CostingMethod(str, Enum):
    """How a shipment is costed."""

    FIFO = "FIFO"  # Oldest layer's cost first
    AVG = "AVG"  # Weighted average over all active layers


class LayerRefType(str, Enum):
    """Provenance of a cost layer."""

    OPENING_BALANCE = "OPENING_BALANCE"
    STOCK_IN = "STOCK_IN"
    RETURN = "RETURN"


class AllocationStatus(str, Enum):
    SUCCESS = "success"
    ALREADY_ALLOCATED = "already_allocated"
    PARTIAL = "partial"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Machine-readable reason attached to non-success outcomes."""

    INSUFFICIENT_STOCK = "insufficient_stock"
    NO_BUNDLE_RECIPE = "no_bundle_recipe"
    INVALID_QUANTITY = "invalid_quantity"
    MISSING_SKU = "missing_sku"
    MISSING_SHIPPED_AT = "missing_shipped_at"
    SKU_NOT_FOUND = "sku_not_found"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    PARTIAL_BUNDLE_ALLOCATION = "partial_bundle_allocation"
    INVALID_METHOD = "invalid_method"
    MISSING_ORDER_ID = "missing_order_id"


class AllocationState(str, Enum):
    """
    Persisted state of one (order_id, sku) key.

    Lifecycle: UNALLOCATED -> ALLOCATED -> REVERSED -> (re-allocate) ALLOCATED.
    FAILED is an outcome, never a stored state.
    """

    UNALLOCATED = "UNALLOCATED"
    ALLOCATED = "ALLOCATED"
    REVERSED = "REVERSED"


@dataclass(frozen=True)
class BundleComponent:
    """One line of a bundle recipe."""

    component_sku: str
    quantity: Decimal
    position: int = 0


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of one allocation call (single SKU or whole bundle).

    Contract:
        Business failures are values, not exceptions.  ``raise_for_status``
        converts a non-success outcome into the matching typed exception for
        callers that prefer one.

    Guarantees:
        - ``amount`` and ``qty`` describe what THIS call posted (zero for
          already_allocated).  A failed insufficient-stock run may still
          carry a non-zero amount: the covered part is posted.
        - ``reason`` is None iff status is SUCCESS or ALREADY_ALLOCATED.
    """

    status: AllocationStatus
    order_id: str
    allocated_skus: tuple[str, ...] = ()
    missing_skus: tuple[str, ...] = ()
    reason: FailureReason | None = None
    amount: Decimal = ZERO
    qty: Decimal = ZERO
    requested_qty: Decimal = ZERO
    message: str | None = None
    conflict_layer_id: str | None = None

    def __post_init__(self) -> None:
        ok = self.status in (AllocationStatus.SUCCESS, AllocationStatus.ALREADY_ALLOCATED)
        if ok and self.reason is not None:
            raise ValueError(f"{self.status.value} result cannot carry a reason")

    @classmethod
    def success(
        cls,
        order_id: str,
        skus: tuple[str, ...],
        amount: Decimal = ZERO,
        qty: Decimal = ZERO,
    ) -> AllocationResult:
        return cls(
            status=AllocationStatus.SUCCESS,
            order_id=order_id,
            allocated_skus=tuple(skus),
            amount=amount,
            qty=qty,
            requested_qty=qty,
        )

    @classmethod
    def already_allocated(cls, order_id: str, skus: tuple[str, ...]) -> AllocationResult:
        return cls(
            status=AllocationStatus.ALREADY_ALLOCATED,
            order_id=order_id,
            allocated_skus=tuple(skus),
        )

    @classmethod
    def failed(
        cls,
        order_id: str,
        skus: tuple[str, ...],
        reason: FailureReason,
        message: str | None = None,
        amount: Decimal = ZERO,
        qty: Decimal = ZERO,
        requested_qty: Decimal = ZERO,
        conflict_layer_id: str | None = None,
    ) -> AllocationResult:
        return cls(
            status=AllocationStatus.FAILED,
            order_id=order_id,
            missing_skus=tuple(skus),
            reason=reason,
            message=message,
            amount=amount,
            qty=qty,
            requested_qty=requested_qty,
            conflict_layer_id=conflict_layer_id,
        )

    @classmethod
    def partial(
        cls,
        order_id: str,
        allocated_skus: tuple[str, ...],
        missing_skus: tuple[str, ...],
        amount: Decimal = ZERO,
        qty: Decimal = ZERO,
        message: str | None = None,
    ) -> AllocationResult:
        return cls(
            status=AllocationStatus.PARTIAL,
            order_id=order_id,
            allocated_skus=tuple(allocated_skus),
            missing_skus=tuple(missing_skus),
            reason=FailureReason.PARTIAL_BUNDLE_ALLOCATION,
            amount=amount,
            qty=qty,
            message=message,
        )

    @property
    def is_satisfied(self) -> bool:
        """True when COGS is (now or previously) booked for every SKU asked."""
        return self.status in (AllocationStatus.SUCCESS, AllocationStatus.ALREADY_ALLOCATED)

    def raise_for_status(self, strict: bool = False) -> None:
        """
        Raise the typed exception matching a non-success outcome.

        Args:
            strict: Also raise AlreadyAllocatedError for idempotent no-ops.
        """
        match self.status:
            case AllocationStatus.SUCCESS:
                return
            case AllocationStatus.ALREADY_ALLOCATED:
                if strict:
                    raise AlreadyAllocatedError(self.order_id, self.allocated_skus)
                return
            case AllocationStatus.PARTIAL:
                raise PartialBundleAllocationError(
                    self.order_id, self.allocated_skus, self.missing_skus
                )

        sku = self.missing_skus[0] if self.missing_skus else ""
        match self.reason:
            case FailureReason.INSUFFICIENT_STOCK:
                raise InsufficientStockError(sku, self.requested_qty, self.qty)
            case FailureReason.NO_BUNDLE_RECIPE:
                raise MissingBundleRecipeError(sku)
            case FailureReason.SKU_NOT_FOUND:
                raise SkuNotFoundError(sku)
            case FailureReason.CONCURRENT_MODIFICATION:
                raise ConcurrentModificationError(self.conflict_layer_id or "", 0)
            case FailureReason.MISSING_SKU:
                raise ValidationError("sku", self.message or "sku is required")
            case FailureReason.MISSING_SHIPPED_AT:
                raise ValidationError("shipped_at", self.message or "shipped_at is required")
            case FailureReason.INVALID_METHOD:
                raise ValidationError("method", self.message or "unknown costing method")
            case FailureReason.MISSING_ORDER_ID:
                raise ValidationError("order_id", self.message or "order_id is required")
            case _:
                raise ValidationError("qty", self.message or "quantity must be positive")


@dataclass(frozen=True)
class StockInLine:
    """One received line of a goods-receipt document."""

    sku: str
    qty: Decimal
    unit_cost: Decimal
