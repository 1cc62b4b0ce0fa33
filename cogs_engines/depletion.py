"""
Module: cogs_engines.depletion
Responsibility:
    Pure FIFO depletion planning and weighted-average unit cost.  Given a
    snapshot of a SKU's layers, decide which layers a shipment consumes and
    at what cost.  Applying the plan (the conditional updates) is the layer
    store's job.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: the steps of a plan sum to min(requested, available).
    - No step consumes more than its layer's remaining quantity, and no
      step has a non-positive quantity.
    - Layers are consumed in (received_at, seq) order; zero-remaining
      layers are skipped.
    - Weighted averages are quantized to 9 dp half-up.

Failure modes:
    - ValueError if requested quantity is not positive.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from cogs_engines.tracer import traced_engine
from cogs_kernel.domain.costing import quantize_amount
from cogs_kernel.logging_config import get_logger

logger = get_logger("engines.depletion")

ZERO = Decimal("0")


@dataclass(frozen=True)
class LayerPosition:
    """Snapshot of one layer as the planner sees it."""

    layer_id: UUID
    received_at: datetime
    seq: int
    qty_remaining: Decimal
    unit_cost: Decimal


@dataclass(frozen=True)
class DepletionStep:
    """Consume ``qty`` from ``layer_id``; the layer's own cost is kept for FIFO."""

    layer_id: UUID
    qty: Decimal
    layer_unit_cost: Decimal

    @property
    def amount(self) -> Decimal:
        return quantize_amount(self.qty * self.layer_unit_cost)


@dataclass(frozen=True)
class DepletionPlan:
    requested: Decimal
    steps: tuple[DepletionStep, ...]

    @property
    def covered(self) -> Decimal:
        return sum((step.qty for step in self.steps), ZERO)

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.covered

    @property
    def is_complete(self) -> bool:
        return self.shortfall == ZERO


class DepletionEngine:
    """
    FIFO planner and weighted-average calculator.

    Contract:
        Pure functions, deterministic for identical inputs.
    Non-goals:
        - Does not lock or mutate layers.
        - Does not decide between FIFO and AVG; the allocation engine does.
    """

    @traced_engine(
        "depletion",
        "1.0",
        fingerprint_fields=("layers", "qty"),
        summarize=lambda plan: {
            "requested": plan.requested,
            "covered": plan.covered,
            "steps": len(plan.steps),
        },
    )
    def plan_fifo(self, layers: Sequence[LayerPosition], qty: Decimal) -> DepletionPlan:
        """
        Walk layers oldest-first consuming ``min(remaining, needed)``.

        Returns a plan whose ``shortfall`` is positive when the layers run
        out before ``qty`` is covered.
        """
        if qty <= ZERO:
            raise ValueError(f"Depletion quantity must be positive, got {qty}")

        ordered = sorted(layers, key=lambda layer: (layer.received_at, layer.seq))
        needed = qty
        steps: list[DepletionStep] = []
        for layer in ordered:
            if needed <= ZERO:
                break
            if layer.qty_remaining <= ZERO:
                continue
            take = min(layer.qty_remaining, needed)
            steps.append(
                DepletionStep(
                    layer_id=layer.layer_id,
                    qty=take,
                    layer_unit_cost=layer.unit_cost,
                )
            )
            needed -= take

        plan = DepletionPlan(requested=qty, steps=tuple(steps))
        if not plan.is_complete:
            logger.info(
                "depletion_shortfall",
                extra={
                    "requested": qty,
                    "covered": plan.covered,
                    "layer_count": len(ordered),
                },
            )
        return plan

    @traced_engine("weighted_average", "1.0")
    def weighted_average(
        self,
        positions: Iterable[tuple[Decimal, Decimal]],
    ) -> Decimal | None:
        """
        ``sum(q * c) / sum(q)`` over (quantity, unit_cost) pairs.

        Pairs with non-positive quantity are ignored.  Returns None when no
        quantity is left to average over.
        """
        total_qty = ZERO
        total_value = ZERO
        for qty, unit_cost in positions:
            if qty <= ZERO:
                continue
            total_qty += qty
            total_value += qty * unit_cost
        if total_qty == ZERO:
            return None
        return quantize_amount(total_value / total_qty)

    def average_of_layers(self, layers: Sequence[LayerPosition]) -> Decimal | None:
        return self.weighted_average(
            (layer.qty_remaining, layer.unit_cost) for layer in layers
        )
