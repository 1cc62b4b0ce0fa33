"""Read-only selectors returning DTOs."""

from cogs_kernel.selectors.allocation_selector import AllocationSelector
from cogs_kernel.selectors.base import BaseSelector
from cogs_kernel.selectors.catalog_selector import CatalogSelector
from cogs_kernel.selectors.layer_selector import LayerSelector

__all__ = [
    "AllocationSelector",
    "BaseSelector",
    "CatalogSelector",
    "LayerSelector",
]
