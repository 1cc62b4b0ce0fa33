"""Tests for the structured logging system (cogs_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from cogs_kernel.exceptions import InsufficientStockError
from cogs_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "cogs_kernel.test"
        assert "ts" in record

    def test_decimal_and_uuid_extras_are_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        layer_id = uuid4()
        get_logger("test").info("depleted", extra={"qty": Decimal("1.50"), "layer_id": layer_id})

        record = _parse_all_logs(stream)[0]
        assert record["qty"] == "1.50"
        assert record["layer_id"] == str(layer_id)

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(order_id="ORD-1", sku="SKU-A", operation="ship"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["order_id"] == "ORD-1"
        assert inside["sku"] == "SKU-A"
        assert inside["operation"] == "ship"
        assert "order_id" not in outside

    def test_kernel_exception_fields_are_flattened(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientStockError("SKU-A", Decimal("700"), Decimal("70"))
        except InsufficientStockError:
            get_logger("test").error("allocation_failed", exc_info=True)

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_sku"] == "SKU-A"
        assert record["exc_covered"] == "70"
        assert "traceback" in record


class TestLogContext:

    def test_nested_bindings_merge_and_unwind(self):
        with LogContext.bind(actor_id="svc", operation="clear_order_allocations"):
            with LogContext.bind(order_id="ORD-9"):
                assert LogContext.current() == {
                    "actor_id": "svc",
                    "operation": "clear_order_allocations",
                    "order_id": "ORD-9",
                }
            assert "order_id" not in LogContext.current()
        assert LogContext.current() == {}

    def test_none_values_are_not_bound(self):
        with LogContext.bind(order_id=None, sku="SKU-A"):
            assert LogContext.current() == {"sku": "SKU-A"}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            LogContext.bind(warehouse="BKK-1")

    def test_context_wins_over_extra_with_same_key(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(sku="SKU-A"):
            get_logger("test").info("component", extra={"sku": "SKU-B", "qty": Decimal("2")})

        record = _parse_all_logs(stream)[0]
        assert record["sku"] == "SKU-A"
        assert record["qty"] == "2"


class TestConfigureLogging:

    def test_is_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)

        assert len(logging.getLogger("cogs_kernel").handlers) == 1

    def test_level_filters_records(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        get_logger("test").info("dropped")
        get_logger("test").warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_does_not_propagate_to_root(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)

        assert logging.getLogger("cogs_kernel").propagate is False
