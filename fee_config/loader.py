"""
Configuration Loader (``fee_config.loader``).

Responsibility
--------------
Reads a YAML configuration file and parses it into the frozen
``fee_config.schema`` dataclasses.  Runtime callers go through
``fee_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key in a section  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from fee_config.schema import (
    DatabaseConfig,
    FeeHeadsConfig,
    LedgerConfig,
    LedgerSettings,
    LoggingConfig,
    NumberingConfig,
)

_SECTIONS = {
    "database": DatabaseConfig,
    "ledger": LedgerSettings,
    "numbering": NumberingConfig,
    "fee_heads": FeeHeadsConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_section(name: str, cls: type, data: dict[str, Any] | None) -> Any:
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{name}' section: {', '.join(unknown)}")
    return cls(**data)


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Build a ``LedgerConfig`` from a parsed YAML mapping.

    Missing sections and keys take the schema defaults.
    """
    unknown = sorted(set(data) - set(_SECTIONS) - {"config_id", "version"})
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(unknown)}")

    sections = {
        name: _parse_section(name, cls, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    return LedgerConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        **sections,
    )


def load_config(path: Path) -> LedgerConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization.  Deterministic."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
