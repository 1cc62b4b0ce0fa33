"""
Typed Exception Hierarchy for the COGS Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Costing errors must be handled precisely.  Batch drivers aggregate
success / skip / fail counts per order, so they need to know *which* failure
happened without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Business failures (insufficient stock, missing recipe, partial bundle) are
normally RETURNED as ``AllocationResult`` values by the services.  The
matching exception types exist so that ``AllocationResult.raise_for_status()``
can convert an outcome into an exception for callers that prefer one.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CostingKernelError (base)
    |
    +-- ValidationError
    |   +-- SkuNotFoundError
    |
    +-- AllocationError
    |   +-- InsufficientStockError
    |   +-- MissingBundleRecipeError
    |   +-- AlreadyAllocatedError
    |   +-- PartialBundleAllocationError
    |
    +-- LayerError
    |   +-- LayerNotFoundError
    |   +-- LayerInUseError
    |   +-- LayerAlreadyVoidedError
    |
    +-- ConcurrencyError
        +-- ConcurrentModificationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|---------------------------------------
Validation   | VALIDATION_ERROR              | Bad qty / unit_cost / sku / reason
             | SKU_NOT_FOUND                 | SKU not in the item master
-------------|-------------------------------|---------------------------------------
Allocation   | INSUFFICIENT_STOCK            | Layers exhausted before qty covered
             | MISSING_BUNDLE_RECIPE         | Bundle SKU has no components
             | ALREADY_ALLOCATED             | Active allocation exists (OK)
             | PARTIAL_BUNDLE_ALLOCATION     | Some bundle components missing
-------------|-------------------------------|---------------------------------------
Layer        | LAYER_NOT_FOUND               | Layer id doesn't exist
             | LAYER_IN_USE                  | Void/amend blocked by consumption
             | LAYER_ALREADY_VOIDED          | Ordinary void of a voided layer
-------------|-------------------------------|---------------------------------------
Concurrency  | CONCURRENT_MODIFICATION       | Conditional update lost a race

===============================================================================
HANDLING PATTERNS
===============================================================================

1. IDEMPOTENCY HANDLING (AlreadyAllocatedError is success):

    try:
        result.raise_for_status()
    except AlreadyAllocatedError:
        pass  # previous run already booked COGS for this key

2. CONCURRENCY (retry the whole call, it is idempotent):

    except ConcurrentModificationError as e:
        log.warning("retrying", extra={"layer_id": e.layer_id})
"""

from decimal import Decimal


class CostingKernelError(Exception):
    """
    Base exception for all COGS kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COSTING_KERNEL_ERROR"


# Validation


class ValidationError(CostingKernelError):
    """Input rejected before any state was touched."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid {field}: {message}")


class SkuNotFoundError(ValidationError):
    """SKU is not registered in the item master."""

    code: str = "SKU_NOT_FOUND"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__("sku", f"SKU {sku} not found in inventory items")


# Allocation outcomes


class AllocationError(CostingKernelError):
    """Base exception for allocation outcomes that are not a clean success."""

    code: str = "ALLOCATION_ERROR"


class InsufficientStockError(AllocationError):
    """Active layers could not cover the requested quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, sku: str, requested: Decimal, covered: Decimal):
        self.sku = sku
        self.requested = requested
        self.covered = covered
        super().__init__(
            f"Insufficient stock for SKU {sku}: requested {requested}, covered {covered}"
        )


class MissingBundleRecipeError(AllocationError):
    """Bundle SKU has no (or an empty) recipe."""

    code: str = "MISSING_BUNDLE_RECIPE"

    def __init__(self, bundle_sku: str):
        self.bundle_sku = bundle_sku
        super().__init__(f"Bundle {bundle_sku} has no components")


class AlreadyAllocatedError(AllocationError):
    """An active allocation already exists for the key (idempotent no-op)."""

    code: str = "ALREADY_ALLOCATED"

    def __init__(self, order_id: str, skus: tuple[str, ...]):
        self.order_id = order_id
        self.skus = skus
        super().__init__(
            f"COGS already allocated for order {order_id} SKU(s) {', '.join(skus)}"
        )


class PartialBundleAllocationError(AllocationError):
    """Some bundle components were satisfied, others are still missing."""

    code: str = "PARTIAL_BUNDLE_ALLOCATION"

    def __init__(
        self,
        order_id: str,
        allocated_skus: tuple[str, ...],
        missing_skus: tuple[str, ...],
    ):
        self.order_id = order_id
        self.allocated_skus = allocated_skus
        self.missing_skus = missing_skus
        super().__init__(
            f"Order {order_id}: allocated [{', '.join(allocated_skus)}], "
            f"missing [{', '.join(missing_skus)}]"
        )


# Cost layers


class LayerError(CostingKernelError):
    """Base exception for cost-layer lifecycle errors."""

    code: str = "LAYER_ERROR"


class LayerNotFoundError(LayerError):
    """Cost layer with given ID was not found."""

    code: str = "LAYER_NOT_FOUND"

    def __init__(self, layer_id: str):
        self.layer_id = layer_id
        super().__init__(f"Cost layer not found: {layer_id}")


class LayerInUseError(LayerError):
    """Layer has been consumed or is referenced by an active allocation."""

    code: str = "LAYER_IN_USE"

    def __init__(self, layer_id: str, reason: str):
        self.layer_id = layer_id
        self.reason = reason
        super().__init__(f"Cost layer {layer_id} is in use: {reason}")


class LayerAlreadyVoidedError(LayerError):
    """Ordinary void requested on a layer that is already voided."""

    code: str = "LAYER_ALREADY_VOIDED"

    def __init__(self, layer_id: str):
        self.layer_id = layer_id
        super().__init__(f"Cost layer {layer_id} is already voided")


# Concurrency


class ConcurrencyError(CostingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Optimistic conditional update matched no row."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, layer_id: str, attempts: int):
        self.layer_id = layer_id
        self.attempts = attempts
        super().__init__(
            f"Cost layer {layer_id} was modified by another transaction "
            f"({attempts} attempt(s))"
        )
