"""
COGS Kernel

Persistence, domain types and read side of the inventory costing ledger:
- Cost layers per SKU with FIFO ordering
- Append-only allocation ledger with idempotent active keys
- Bundle recipes
- Typed exceptions and structured logging
"""

__version__ = "0.1.0"
