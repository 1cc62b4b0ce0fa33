"""
Tests for DepletionEngine - FIFO planning and weighted-average cost.

Tests cover:
- FIFO ordering by received_at then seq
- Zero-remaining layers are skipped
- Shortfall reporting
- Weighted average over layers and over ledger lines
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from cogs_engines.depletion import DepletionEngine, LayerPosition

DAY1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def layer(qty, cost, day=0, seq=1, remaining=None):
    return LayerPosition(
        layer_id=uuid4(),
        received_at=DAY1 + timedelta(days=day),
        seq=seq,
        qty_remaining=Decimal(str(remaining if remaining is not None else qty)),
        unit_cost=Decimal(str(cost)),
    )


@pytest.fixture
def engine():
    return DepletionEngine()


class TestPlanFifo:

    def test_consumes_oldest_layer_first(self, engine):
        """10 @ 1 then 10 @ 2; taking 15 uses all of the first and 5 of the second."""
        l1 = layer(10, 1, day=0)
        l2 = layer(10, 2, day=1)

        plan = engine.plan_fifo([l2, l1], Decimal("15"))

        assert [step.layer_id for step in plan.steps] == [l1.layer_id, l2.layer_id]
        assert [step.qty for step in plan.steps] == [Decimal("10"), Decimal("5")]
        assert sum(step.amount for step in plan.steps) == Decimal("20")
        assert plan.is_complete

    def test_seq_breaks_received_at_ties(self, engine):
        late = layer(5, 3, day=0, seq=7)
        early = layer(5, 4, day=0, seq=2)

        plan = engine.plan_fifo([late, early], Decimal("5"))

        assert plan.steps[0].layer_id == early.layer_id

    def test_zero_remaining_layers_are_skipped(self, engine):
        empty = layer(10, 1, day=0, remaining=0)
        full = layer(10, 2, day=1)

        plan = engine.plan_fifo([empty, full], Decimal("3"))

        assert len(plan.steps) == 1
        assert plan.steps[0].layer_id == full.layer_id

    def test_shortfall_when_layers_run_out(self, engine):
        plan = engine.plan_fifo([layer(30, 1), layer(40, 1, day=1)], Decimal("700"))

        assert plan.covered == Decimal("70")
        assert plan.shortfall == Decimal("630")
        assert not plan.is_complete

    def test_no_layers_gives_empty_plan(self, engine):
        plan = engine.plan_fifo([], Decimal("1"))

        assert plan.steps == ()
        assert plan.shortfall == Decimal("1")

    @pytest.mark.parametrize("qty", [Decimal("0"), Decimal("-1")])
    def test_non_positive_quantity_rejected(self, engine, qty):
        with pytest.raises(ValueError):
            engine.plan_fifo([layer(1, 1)], qty)

    def test_plan_emits_engine_trace(self, engine, captured_logs):
        engine.plan_fifo([layer(1, 1)], Decimal("1"))

        traces = [r for r in captured_logs() if r["message"] == "COGS_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "depletion"
        assert len(traces[-1]["input_fingerprint"]) == 16


class TestWeightedAverage:

    def test_average_of_layers(self, engine):
        assert engine.average_of_layers([layer(10, 1), layer(10, 2, day=1)]) == Decimal("1.5")

    def test_average_uses_remaining_quantity(self, engine):
        positions = [layer(10, 1, remaining=0), layer(10, 2, day=1, remaining=5)]

        assert engine.average_of_layers(positions) == Decimal("2")

    def test_average_of_ledger_lines(self, engine):
        pairs = [(Decimal("10"), Decimal("1")), (Decimal("5"), Decimal("2"))]

        assert engine.weighted_average(pairs) == Decimal("1.333333333")

    def test_nothing_to_average_returns_none(self, engine):
        assert engine.weighted_average([]) is None
        assert engine.weighted_average([(Decimal("0"), Decimal("5"))]) is None
