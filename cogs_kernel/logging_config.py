"""
Structured JSON logging for the COGS kernel.

Every record is one JSON object per line. Records emitted while a
``LogContext.bind(...)`` block is active carry the bound order / SKU /
actor fields, so a single shipment or return can be followed through the
engine, the layer store and the ledger with one filter::

    with LogContext.bind(order_id="ORD-1", sku="SKU-A", operation="ship"):
        logger.info("cogs_allocation_outcome", extra={"status": "success"})

Decimal quantities and amounts are written as strings so no precision is
lost in the log stream.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "cogs_kernel"


class LogContext:
    """Request-scoped fields merged into every record (contextvars based)."""

    FIELDS: tuple[str, ...] = (
        "correlation_id",
        "actor_id",
        "order_id",
        "sku",
        "operation",
    )

    _bound: ContextVar[dict[str, str]] = ContextVar("cogs_log_context", default={})

    @classmethod
    def current(cls) -> dict[str, str]:
        return dict(cls._bound.get())

    @classmethod
    def clear(cls) -> None:
        cls._bound.set({})

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """Bind fields for the duration of a ``with`` block; None values are skipped."""
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        return _Binding({k: str(v) for k, v in fields.items() if v is not None})


class _Binding:

    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> dict[str, str]:
        merged = {**LogContext._bound.get(), **self._fields}
        self._token = LogContext._bound.set(merged)
        return merged

    def __exit__(self, *exc: Any) -> None:
        LogContext._bound.reset(self._token)


_RESERVED = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # Kernel errors keep their structured data as public attributes
    # (sku, requested, covered, layer_id, ...).
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, bound context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = LogContext.current()

        extras = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        payload.update(extras)
        payload.update(context)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``cogs_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``cogs_kernel`` logger. Idempotent."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

        logger = logging.getLogger(_LOGGER_PREFIX)
        logger.setLevel(level)
        logger.propagate = False

        target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        logger.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and the configured flag. Used by the test suite."""
    global _configured
    with _lock:
        _configured = False
        logger = logging.getLogger(_LOGGER_PREFIX)
        logger.handlers.clear()
        logger.setLevel(logging.WARNING)
