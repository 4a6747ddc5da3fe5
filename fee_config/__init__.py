"""
fee_config -- single public entrypoint for fee ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services never read files or environment
    variables themselves; they receive the sections of ``LedgerConfig``
    they need from ``fee_services.LedgerOrchestrator``.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  Sits beside
    ``fee_ledger`` and below ``fee_services``.  The kernel MUST NEVER
    import from ``fee_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - A configuration that fails validation is never returned.
    - Same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- unknown sections or keys.
    - ``ConfigValidationError`` -- values the ledger cannot run with.

Audit relevance:
    Every successful call emits a ``fee_config_loaded`` log entry with the
    config id, version and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fee_config.loader import load_config
from fee_config.schema import (
    DatabaseConfig,
    FeeHeadsConfig,
    LedgerConfig,
    LedgerSettings,
    LoggingConfig,
    NumberingConfig,
)
from fee_config.validator import ConfigValidationError, validate_or_raise

_logger = logging.getLogger("fee_ledger.config")

# Default configuration set
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to the packaged
            ``fee_config/sets/default.yaml``.

    Returns:
        A validated, frozen ``LedgerConfig``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file has unknown sections or keys.
        ConfigValidationError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = validate_or_raise(load_config(path))

    _logger.info(
        "fee_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
        },
    )
    return config


__all__ = [
    "ConfigValidationError",
    "DatabaseConfig",
    "FeeHeadsConfig",
    "LedgerConfig",
    "LedgerSettings",
    "LoggingConfig",
    "NumberingConfig",
    "get_active_config",
]
