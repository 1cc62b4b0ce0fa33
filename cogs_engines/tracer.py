"""
cogs_engines.tracer -- COGS_ENGINE_TRACE records for pure engine calls.

``@traced_engine`` wraps a planner or calculator and logs, after each call:

    engine_name / engine_version   which algorithm produced the numbers
    input_fingerprint              SHA-256 prefix over the chosen arguments,
                                   so two runs over the same layer snapshot
                                   can be matched in the log stream
    result                         optional summary built by ``summarize``
                                   (e.g. requested / covered for a depletion)
    duration_ms

Usage:
    @traced_engine(
        "depletion", "1.0",
        fingerprint_fields=("layers", "qty"),
        summarize=lambda plan: {"covered": plan.covered},
    )
    def plan_fifo(self, layers, qty): ...

The decorator never changes arguments or the return value; a failing
``summarize`` only drops the summary.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from dataclasses import fields, is_dataclass
from typing import Any

from cogs_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name) for f in fields(value)}
    if isinstance(value, Mapping):
        pairs = sorted((str(k), _canonical(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """16 hex chars; absent fields hash as ``null``."""
    canonical = "|".join(
        f"{name}={_canonical(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], Mapping[str, Any]] | None = None,
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.perf_counter()
            result = func(*args, **kwargs)
            trace: dict[str, Any] = {
                "trace_type": "COGS_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "function": func.__qualname__,
                "input_fingerprint": fingerprint,
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
            }
            if summarize is not None:
                try:
                    trace["result"] = dict(summarize(result))
                except Exception:
                    _logger.debug(
                        "engine_trace_summary_failed",
                        extra={"engine_name": engine_name},
                        exc_info=True,
                    )

            _logger.info("COGS_ENGINE_TRACE", extra=trace)
            return result

        return wrapper

    return decorator
