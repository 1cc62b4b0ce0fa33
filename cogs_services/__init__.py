"""
cogs_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure engines
    (cogs_engines/) with database sessions and the clock.  This is the only
    layer that writes cost layers or allocation lines.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        cogs_services/ -> cogs_engines/  (allowed)
        cogs_services/ -> cogs_kernel/   (allowed)
        cogs_engines/  -> cogs_services/ (FORBIDDEN)
        cogs_kernel/   -> cogs_services/ (FORBIDDEN)

Audit relevance:
    CostingService is the canonical entry point for external callers.
"""

from cogs_services.allocation_engine import AllocationEngine
from cogs_services.bundle_resolver import BundleResolver
from cogs_services.catalog import CatalogService
from cogs_services.costing_service import CostingService
from cogs_services.layer_store import LayerStore, LineReverser
from cogs_services.ledger import AllocationLedger
from cogs_services.reversal_engine import ReversalEngine
from cogs_services.snapshot import LoggingSnapshotRebuilder, SnapshotRebuilder

__all__ = [
    "AllocationEngine",
    "AllocationLedger",
    "BundleResolver",
    "CatalogService",
    "CostingService",
    "LayerStore",
    "LineReverser",
    "LoggingSnapshotRebuilder",
    "ReversalEngine",
    "SnapshotRebuilder",
]
