"""
Module: cogs_engines.bundle
Responsibility:
    Pure bundle (kit) arithmetic: explode a number of sets into component
    quantities, and fold per-component allocation outcomes into one result
    for the bundle line.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Aggregation rules:
    every component satisfied, at least one newly posted  -> success
    every component satisfied by a previous run           -> already_allocated
    some satisfied, some not                              -> partial
    none satisfied                                        -> failed
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from cogs_engines.tracer import traced_engine
from cogs_kernel.domain.costing import (
    AllocationResult,
    AllocationStatus,
    BundleComponent,
    FailureReason,
)


class BundleEngine:

    @traced_engine(
        "bundle_explode",
        "1.0",
        fingerprint_fields=("components", "sets"),
        summarize=lambda parts: {"components": len(parts)},
    )
    def explode(
        self,
        components: Sequence[BundleComponent],
        sets: Decimal,
    ) -> list[tuple[str, Decimal]]:
        """(component_sku, quantity_per_set * sets) in recipe order."""
        ordered = sorted(components, key=lambda c: (c.position, c.component_sku))
        return [(c.component_sku, c.quantity * sets) for c in ordered]

    def aggregate(
        self,
        order_id: str,
        outcomes: Sequence[tuple[str, AllocationResult]],
    ) -> AllocationResult:
        """Combine per-component results into the bundle-level outcome."""
        satisfied = [sku for sku, result in outcomes if result.is_satisfied]
        missing = [sku for sku, result in outcomes if not result.is_satisfied]
        amount = sum((result.amount for _, result in outcomes), Decimal("0"))
        qty = sum((result.qty for _, result in outcomes), Decimal("0"))

        if not missing:
            fresh = any(r.status == AllocationStatus.SUCCESS for _, r in outcomes)
            if not fresh:
                return AllocationResult.already_allocated(order_id, tuple(satisfied))
            return AllocationResult.success(order_id, tuple(satisfied), amount, qty)

        messages = "; ".join(
            f"{sku}: {result.reason.value if result.reason else 'failed'}"
            for sku, result in outcomes
            if not result.is_satisfied
        )
        if satisfied:
            return AllocationResult.partial(
                order_id,
                tuple(satisfied),
                tuple(missing),
                amount=amount,
                qty=qty,
                message=messages,
            )

        first_failure = next(r for _, r in outcomes if not r.is_satisfied)
        return AllocationResult.failed(
            order_id,
            tuple(missing),
            first_failure.reason or FailureReason.INSUFFICIENT_STOCK,
            message=messages,
            amount=amount,
            qty=qty,
            requested_qty=first_failure.requested_qty,
            conflict_layer_id=first_failure.conflict_layer_id,
        )
