"""
cogs_config -- single public entrypoint for costing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Values are layered: packaged defaults
    (``defaults.yaml``), then an optional override file, then keyword
    overrides.

Architecture position:
    Configuration -- sits above ``cogs_kernel`` and below ``cogs_services``.
    The kernel MUST NEVER import from ``cogs_config``.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``COGS_CONFIG_TRACE`` log entry with the merged values and their
    checksum.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from cogs_config.loader import compute_checksum, load_costing_section
from cogs_config.schema import CostingConfig
from cogs_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | None = None, **overrides: Any) -> CostingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Optional YAML file whose ``costing`` section overrides the
            packaged defaults.
        **overrides: Final per-field overrides (e.g. in tests).

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: On unknown keys or invalid values.
    """
    data = load_costing_section(_DEFAULTS_FILE)
    source = str(_DEFAULTS_FILE.name)
    if path is not None:
        data.update(load_costing_section(Path(path)))
        source = str(path)
    data.update(overrides)

    config = CostingConfig.from_dict(data)

    _logger.info(
        "COGS_CONFIG_TRACE",
        extra={
            "trace_type": "COGS_CONFIG_TRACE",
            "source": source,
            "checksum": compute_checksum(config.to_dict()),
            "default_method": config.default_method.value,
            "business_timezone": config.business_timezone,
        },
    )
    return config


__all__ = ["CostingConfig", "get_active_config"]
