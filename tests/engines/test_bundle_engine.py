"""
Tests for BundleEngine - explosion and outcome aggregation.
"""

from decimal import Decimal

from cogs_engines.bundle import BundleEngine
from cogs_kernel.domain.costing import (
    AllocationResult,
    AllocationStatus,
    BundleComponent,
    FailureReason,
)

ENGINE = BundleEngine()


def ok(sku, amount="10"):
    return sku, AllocationResult.success("ORD-1", (sku,), Decimal(amount), Decimal("1"))


def done(sku):
    return sku, AllocationResult.already_allocated("ORD-1", (sku,))


def short(sku, reason=FailureReason.INSUFFICIENT_STOCK):
    return sku, AllocationResult.failed("ORD-1", (sku,), reason)


class TestExplode:

    def test_multiplies_quantity_per_set_in_recipe_order(self):
        components = [
            BundleComponent("SKU-B", Decimal("1"), position=1),
            BundleComponent("SKU-A", Decimal("2"), position=0),
        ]

        assert ENGINE.explode(components, Decimal("3")) == [
            ("SKU-A", Decimal("6")),
            ("SKU-B", Decimal("3")),
        ]


class TestAggregate:

    def test_all_new_is_success(self):
        result = ENGINE.aggregate("ORD-1", [ok("SKU-A"), ok("SKU-B", "5")])

        assert result.status == AllocationStatus.SUCCESS
        assert result.allocated_skus == ("SKU-A", "SKU-B")
        assert result.amount == Decimal("15")

    def test_completing_a_partial_run_is_success(self):
        """Components booked earlier plus the one booked now."""
        result = ENGINE.aggregate("ORD-1", [done("SKU-A"), ok("SKU-B")])

        assert result.status == AllocationStatus.SUCCESS
        assert result.allocated_skus == ("SKU-A", "SKU-B")

    def test_everything_booked_before_is_already_allocated(self):
        result = ENGINE.aggregate("ORD-1", [done("SKU-A"), done("SKU-B")])

        assert result.status == AllocationStatus.ALREADY_ALLOCATED

    def test_mixed_outcome_is_partial(self):
        result = ENGINE.aggregate("ORD-1", [ok("SKU-A"), short("SKU-B")])

        assert result.status == AllocationStatus.PARTIAL
        assert result.allocated_skus == ("SKU-A",)
        assert result.missing_skus == ("SKU-B",)
        assert "SKU-B: insufficient_stock" in result.message

    def test_nothing_satisfied_is_failed_with_first_reason(self):
        result = ENGINE.aggregate(
            "ORD-1",
            [short("SKU-A", FailureReason.CONCURRENT_MODIFICATION), short("SKU-B")],
        )

        assert result.status == AllocationStatus.FAILED
        assert result.reason == FailureReason.CONCURRENT_MODIFICATION
        assert result.missing_skus == ("SKU-A", "SKU-B")
