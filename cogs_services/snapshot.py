"""
Snapshot-rebuild port.

Derived inventory snapshots (daily on-hand quantity and value) live outside
this package.  When an admin correction rewrites history, the layer store
asks the collaborator to recompute a SKU over a date range.
"""

from datetime import date
from typing import Protocol, runtime_checkable

from cogs_kernel.logging_config import get_logger

logger = get_logger("services.snapshot")


@runtime_checkable
class SnapshotRebuilder(Protocol):
    def rebuild(self, sku: str, start_date: date, end_date: date) -> None:
        """Recompute derived snapshots of ``sku`` for [start_date, end_date]."""
        ...


class LoggingSnapshotRebuilder:
    """Default collaborator: records the request for an external job to pick up."""

    def rebuild(self, sku: str, start_date: date, end_date: date) -> None:
        logger.info(
            "snapshot_rebuild_requested",
            extra={
                "rebuild_sku": sku,
                "start_date": start_date,
                "end_date": end_date,
            },
        )
