"""
Configuration Loader (``cogs_config.loader``).

Reads YAML files into plain mappings.  The public runtime entrypoint is
``cogs_config.get_active_config()``; nothing else should call this module.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Top-level value that is not a mapping  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level, got {type(data).__name__}")
    return data


def load_costing_section(path: Path) -> dict[str, Any]:
    """
    Return the ``costing:`` section of a YAML file.

    A file without a ``costing`` key is read as the section itself.
    """
    data = load_yaml_file(path)
    section = data.get("costing", data)
    if not isinstance(section, dict):
        raise ValueError(f"{path}: 'costing' must be a mapping")
    return section


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
