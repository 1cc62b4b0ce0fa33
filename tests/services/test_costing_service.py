"""
Tests for CostingService - the transaction-owning facade.

Tests cover:
- Opening balances and goods receipts
- Input validation outcomes for shipments
- Bundle dispatch
- Returns through the facade
- Admin layer actions and order clears
- Commit / rollback behaviour and log context
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from cogs_kernel.domain.costing import (
    AllocationState,
    AllocationStatus,
    BundleComponent,
    CostingMethod,
    FailureReason,
    LayerRefType,
    StockInLine,
)
from cogs_kernel.exceptions import ValidationError
from cogs_kernel.models.cogs_allocation import CogsAllocation
from cogs_kernel.models.cost_layer import CostLayer

SHIPPED = datetime(2024, 1, 5, 12, tzinfo=timezone.utc)
REASON = "supplier invoice was cancelled"


def utc(day: int, hour: int = 12) -> datetime:
    return datetime(2024, 1, day, hour, tzinfo=timezone.utc)


class TestOpeningBalance:

    def test_returns_layer_id_and_commits(self, costing, layers, session, items):
        layer_id = costing.record_opening_balance("SKU-A", Decimal("10"), Decimal("2.5"), date(2024, 1, 1))

        session.rollback()
        info = layers.get(layer_id)
        assert info is not None
        assert info.ref_type == LayerRefType.OPENING_BALANCE
        assert info.unit_cost == Decimal("2.5")

    @pytest.mark.parametrize(
        "sku,qty,cost",
        [
            ("SKU-A", Decimal("0"), Decimal("1")),
            ("SKU-A", Decimal("1"), Decimal("-1")),
            ("GHOST", Decimal("1"), Decimal("1")),
            ("SKU-A", "not-a-number", Decimal("1")),
        ],
    )
    def test_rejected_input_returns_none(self, costing, session, items, sku, qty, cost, captured_logs):
        assert costing.record_opening_balance(sku, qty, cost, date(2024, 1, 1)) is None

        assert session.scalar(select(func.count()).select_from(CostLayer)) == 0
        assert any(r["message"] == "opening_balance_rejected" for r in captured_logs())

    def test_infrastructure_errors_propagate_after_rollback(self, costing, session, items, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(costing._layers, "receive", boom)

        with pytest.raises(RuntimeError):
            costing.record_opening_balance("SKU-A", Decimal("1"), Decimal("1"), date(2024, 1, 1))


class TestStockIn:

    def test_document_with_one_layer_per_line(self, costing, layers, items):
        doc_id = costing.record_stock_in(
            "PO-1001",
            utc(3),
            [
                StockInLine("SKU-A", Decimal("5"), Decimal("2")),
                StockInLine("SKU-B", Decimal("7"), Decimal("3")),
            ],
            supplier="Acme",
        )

        assert doc_id is not None
        assert len(layers.find_by_ref(LayerRefType.STOCK_IN, str(doc_id))) == 2

    def test_one_bad_line_rejects_the_whole_document(self, costing, session, items):
        doc_id = costing.record_stock_in(
            "PO-1002",
            utc(3),
            [
                StockInLine("SKU-A", Decimal("5"), Decimal("2")),
                StockInLine("GHOST", Decimal("1"), Decimal("1")),
            ],
        )

        assert doc_id is None
        assert session.scalar(select(func.count()).select_from(CostLayer)) == 0

    def test_empty_document_rejected(self, costing, items):
        assert costing.record_stock_in("PO-1003", utc(3), []) is None


class TestShipmentValidation:

    @pytest.mark.parametrize(
        "order_id,sku,qty,shipped_at,method,reason",
        [
            ("", "SKU-A", Decimal("1"), SHIPPED, "FIFO", FailureReason.MISSING_ORDER_ID),
            ("ORD-1", "", Decimal("1"), SHIPPED, "FIFO", FailureReason.MISSING_SKU),
            ("ORD-1", "SKU-A", Decimal("0"), SHIPPED, "FIFO", FailureReason.INVALID_QUANTITY),
            ("ORD-1", "SKU-A", "abc", SHIPPED, "FIFO", FailureReason.INVALID_QUANTITY),
            ("ORD-1", "SKU-A", Decimal("1"), None, "FIFO", FailureReason.MISSING_SHIPPED_AT),
            ("ORD-1", "SKU-A", Decimal("1"), SHIPPED, "LIFO", FailureReason.INVALID_METHOD),
            ("ORD-1", "GHOST", Decimal("1"), SHIPPED, "FIFO", FailureReason.SKU_NOT_FOUND),
        ],
    )
    def test_invalid_input_is_a_failed_result(
        self, costing, two_layers, session, order_id, sku, qty, shipped_at, method, reason
    ):
        result = costing.apply_cogs_for_order_shipped(order_id, sku, qty, shipped_at, method)

        assert result.status == AllocationStatus.FAILED
        assert result.reason == reason
        assert session.scalar(select(func.count()).select_from(CogsAllocation)) == 0


class TestShipment:

    def test_fifo_example(self, costing, two_layers, allocations):
        result = costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("15"), SHIPPED, CostingMethod.FIFO)

        assert result.status == AllocationStatus.SUCCESS
        assert result.amount == Decimal("20")
        assert costing.state_of("ORD-1", "SKU-A") == AllocationState.ALLOCATED

    def test_avg_example_with_string_method(self, costing, two_layers):
        result = costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("5"), SHIPPED, "avg")

        assert result.amount == Decimal("7.5")

    def test_default_method_comes_from_config(self, session, clock, snapshot_rebuilder, two_layers):
        from cogs_config import CostingConfig
        from cogs_services.costing_service import CostingService

        service = CostingService(
            session,
            uuid4(),
            config=CostingConfig(default_method=CostingMethod.AVG),
            clock=clock,
        )

        result = service.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("5"), SHIPPED)

        assert result.amount == Decimal("7.5")

    def test_idempotent(self, costing, two_layers, allocations):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("15"), SHIPPED, "FIFO")
        again = costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("15"), SHIPPED, "FIFO")

        assert again.status == AllocationStatus.ALREADY_ALLOCATED
        assert allocations.net_for_key("ORD-1", "SKU-A") == (Decimal("15"), Decimal("20"))

    def test_insufficient_stock_commits_covered_part(self, costing, two_layers, session, allocations):
        result = costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("25"), SHIPPED, "FIFO")

        session.rollback()
        assert result.reason == FailureReason.INSUFFICIENT_STOCK
        assert allocations.net_for_key("ORD-1", "SKU-A") == (Decimal("20"), Decimal("30"))

    def test_bundle_is_dispatched_to_components(self, costing, items, allocations):
        costing.record_opening_balance("SKU-A", Decimal("10"), Decimal("1"), date(2024, 1, 1))
        costing.record_opening_balance("SKU-B", Decimal("10"), Decimal("3"), date(2024, 1, 1))
        assert costing.upsert_bundle_recipe("KIT-1", [("SKU-A", 2), ("SKU-B", 1)])

        result = costing.apply_cogs_for_order_shipped("ORD-1", "KIT-1", Decimal("2"), SHIPPED, "FIFO")

        assert result.status == AllocationStatus.SUCCESS
        assert result.allocated_skus == ("SKU-A", "SKU-B")
        assert result.amount == Decimal("10")

    def test_flagged_bundle_without_recipe(self, costing, items):
        costing.upsert_item("KIT-2", "Empty kit", is_bundle=True)

        result = costing.apply_cogs_for_order_shipped("ORD-1", "KIT-2", Decimal("1"), SHIPPED, "FIFO")

        assert result.reason == FailureReason.NO_BUNDLE_RECIPE

    def test_outcome_is_logged_with_order_context(self, costing, two_layers, captured_logs):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("1"), SHIPPED, "FIFO")

        outcome = [r for r in captured_logs() if r["message"] == "cogs_allocation_outcome"]
        assert outcome[-1]["status"] == "success"
        assert outcome[-1]["order_id"] == "ORD-1"
        assert outcome[-1]["sku"] == "SKU-A"
        assert outcome[-1]["operation"] == "apply_cogs_for_order_shipped"

    def test_naive_shipment_time_is_business_local(self, costing, two_layers, allocations):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("1"), datetime(2024, 1, 5, 6, 0), "FIFO")

        line = allocations.lines_for_key("ORD-1", "SKU-A")[0]
        assert line.shipped_at == datetime(2024, 1, 4, 23, 0, tzinfo=timezone.utc)


class TestRecipesThroughFacade:

    def test_invalid_recipe_returns_false(self, costing, items):
        assert costing.upsert_bundle_recipe("KIT-1", [("KIT-1", 1)]) is False
        assert costing.get_bundle_components("KIT-1") == []

    def test_components_read_back(self, costing, items):
        costing.upsert_bundle_recipe("KIT-1", [("SKU-A", 2)])

        assert costing.get_bundle_components("KIT-1") == [BundleComponent("SKU-A", Decimal("2"), 0)]

    def test_stocked_sku_cannot_be_flagged_as_bundle(self, costing, two_layers):
        with pytest.raises(ValidationError, match="cost layers"):
            costing.upsert_item("SKU-A", "Widget A", is_bundle=True)

        result = costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("1"), SHIPPED, "FIFO")
        assert result.status == AllocationStatus.SUCCESS

    def test_component_cannot_be_flagged_as_bundle(self, costing, items):
        assert costing.upsert_bundle_recipe("KIT-1", [("SKU-B", 1)]) is True

        with pytest.raises(ValidationError, match="component of another bundle"):
            costing.upsert_item("SKU-B", "Widget B", is_bundle=True)


class TestReturnsThroughFacade:

    def test_return_commits_on_success(self, costing, two_layers, allocations, session):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("15"), SHIPPED, "FIFO")

        assert costing.apply_return_reverse_cogs("ORD-1", "SKU-A", Decimal("15"), date(2024, 1, 9), "FIFO")

        session.rollback()
        assert allocations.net_for_key("ORD-1", "SKU-A") == (Decimal("0"), Decimal("0"))
        assert costing.state_of("ORD-1", "SKU-A") == AllocationState.REVERSED

    def test_cancellation_puts_units_and_value_back(self, costing, two_layers, layers, allocations, session):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("5"), SHIPPED, "FIFO")

        assert costing.apply_return_reverse_cogs("ORD-1", "SKU-A", Decimal("5"), date(2024, 1, 9), "FIFO")

        session.rollback()
        valuation = layers.valuation("SKU-A")
        assert allocations.net_for_key("ORD-1", "SKU-A") == (Decimal("0"), Decimal("0"))
        assert valuation.qty_on_hand == Decimal("20")
        assert valuation.value == Decimal("30")

    def test_refused_restore_rolls_back_and_returns_false(self, costing, two_layers, allocations, monkeypatch):
        from cogs_kernel.exceptions import ConcurrentModificationError

        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("5"), SHIPPED, "FIFO")

        def lost_race(layer_id, qty):
            raise ConcurrentModificationError(str(layer_id), 1)

        monkeypatch.setattr(costing._layers, "restore", lost_race)

        assert costing.apply_return_reverse_cogs("ORD-1", "SKU-A", Decimal("5"), date(2024, 1, 9)) is False
        assert allocations.net_for_key("ORD-1", "SKU-A") == (Decimal("5"), Decimal("5"))

    @pytest.mark.parametrize(
        "qty,method",
        [(Decimal("0"), "FIFO"), (Decimal("-2"), "FIFO"), (Decimal("1"), "LIFO")],
    )
    def test_invalid_input_returns_false(self, costing, two_layers, qty, method):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("5"), SHIPPED, "FIFO")

        assert costing.apply_return_reverse_cogs("ORD-1", "SKU-A", qty, date(2024, 1, 9), method) is False

    def test_physical_return_twice(self, costing, two_layers, layers, allocations):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("15"), SHIPPED, "FIFO")

        for _ in range(2):
            assert costing.apply_return_reverse_cogs(
                "ORD-1", "SKU-A", Decimal("5"), date(2024, 1, 9), "FIFO", return_id="RET-1"
            )

        assert len(layers.find_by_ref(LayerRefType.RETURN, "RET-1")) == 1
        assert allocations.net_for_key("ORD-1", "SKU-A")[0] == Decimal("10")

    def test_clear_order_allocations(self, costing, two_layers, layers):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("15"), SHIPPED, "FIFO")

        assert costing.clear_order_allocations("ORD-1", "booked against wrong order") == 2
        assert layers.on_hand("SKU-A") == Decimal("20")
        assert costing.state_of("ORD-1", "SKU-A") == AllocationState.REVERSED


class TestLayerActions:

    def test_void_untouched_layer(self, costing, two_layers, layers):
        first, _ = two_layers

        result = costing.void_layer(first, REASON)

        assert result.success
        assert layers.get(first).voided

    def test_void_consumed_layer_fails_softly(self, costing, two_layers):
        first, _ = two_layers
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("1"), SHIPPED, "FIFO")

        result = costing.void_layer(first, REASON)

        assert not result.success
        assert "in use" in result.message

    def test_void_unknown_layer(self, costing, items):
        result = costing.void_layer(uuid4(), REASON)

        assert not result.success
        assert "not found" in result.message

    def test_void_with_reversal_through_facade(self, costing, two_layers, snapshot_rebuilder, allocations):
        first, _ = two_layers
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("4"), SHIPPED, "FIFO")

        result = costing.void_layer_with_reversal(first, REASON)

        assert result.success
        assert result.reversed_lines == 1
        assert allocations.net_for_key("ORD-1", "SKU-A") == (Decimal("0"), Decimal("0"))
        assert snapshot_rebuilder.calls[0][0] == "SKU-A"

    def test_void_with_reversal_short_reason(self, costing, two_layers):
        first, _ = two_layers

        result = costing.void_layer_with_reversal(first, "typo")

        assert not result.success

    def test_amend_opening_balance(self, costing, two_layers, layers):
        first, _ = two_layers

        result = costing.amend_opening_balance(first, Decimal("12"), Decimal("1.25"), date(2024, 1, 1))

        assert result.success
        assert layers.get(first).qty_remaining == Decimal("12")


class TestDailyCogs:

    def test_daily_total_uses_business_day(self, costing, two_layers):
        # 2024-01-05 18:00 UTC is 2024-01-06 01:00 in Bangkok
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("3"), utc(5, 10), "FIFO")
        costing.apply_cogs_for_order_shipped("ORD-2", "SKU-A", Decimal("4"), utc(5, 18), "FIFO")

        assert costing.compute_daily_cogs(date(2024, 1, 5)) == Decimal("3.00")
        assert costing.compute_daily_cogs(date(2024, 1, 6)) == Decimal("4.00")

    def test_day_with_only_a_return_floors_at_zero(self, costing, two_layers):
        costing.apply_cogs_for_order_shipped("ORD-1", "SKU-A", Decimal("3"), utc(5), "FIFO")
        costing.apply_return_reverse_cogs("ORD-1", "SKU-A", Decimal("1"), utc(8), "FIFO")

        assert costing.compute_daily_cogs(date(2024, 1, 8)) == Decimal("0.00")
