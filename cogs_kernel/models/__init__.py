"""ORM models for the COGS ledger."""

from cogs_kernel.models.bundle_component import BundleComponentModel
from cogs_kernel.models.cogs_allocation import CogsAllocation
from cogs_kernel.models.cost_layer import CostLayer
from cogs_kernel.models.inventory_item import InventoryItem
from cogs_kernel.models.sequence_counter import SequenceCounter
from cogs_kernel.models.stock_in_document import StockInDocument

__all__ = [
    "BundleComponentModel",
    "CogsAllocation",
    "CostLayer",
    "InventoryItem",
    "SequenceCounter",
    "StockInDocument",
]
