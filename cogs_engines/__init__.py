"""
Module: cogs_engines
Responsibility:
    Pure calculation engines for COGS: FIFO depletion planning,
    weighted-average cost, bundle explosion and outcome aggregation.

Architecture position:
    Engines -- zero I/O.  May import cogs_kernel.domain and
    cogs_kernel.logging_config only.  MUST NOT import cogs_services.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic.
"""

from cogs_engines.bundle import BundleEngine
from cogs_engines.depletion import (
    DepletionEngine,
    DepletionPlan,
    DepletionStep,
    LayerPosition,
)
from cogs_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "BundleEngine",
    "DepletionEngine",
    "DepletionPlan",
    "DepletionStep",
    "LayerPosition",
    "compute_input_fingerprint",
    "traced_engine",
]
