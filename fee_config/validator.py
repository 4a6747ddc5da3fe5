"""
Configuration Validator (``fee_config.validator``).

Responsibility
--------------
Checks a parsed ``LedgerConfig`` for values the ledger cannot run with.
Collects every problem instead of stopping at the first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fee_config.schema import LedgerConfig

_LOG_LEVELS = frozenset(logging.getLevelNamesMapping())


class ConfigValidationError(ValueError):
    """Raised by ``validate_or_raise`` with every collected error."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: LedgerConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _validate_database(config, result)
    _validate_ledger(config, result)
    _validate_numbering(config, result)

    if config.fee_heads.max_priority < 1:
        result.add_error("fee_heads.max_priority must be at least 1")
    if config.logging.level.upper() not in _LOG_LEVELS:
        result.add_error(f"logging.level {config.logging.level!r} is not a logging level")
    return result


def validate_or_raise(config: LedgerConfig) -> LedgerConfig:
    result = validate_configuration(config)
    if not result.is_valid:
        raise ConfigValidationError(result.errors)
    return config


def _validate_database(config: LedgerConfig, result: ConfigValidationResult) -> None:
    db = config.database
    if not db.url:
        result.add_error("database.url must not be empty")
    if db.pool_size < 1:
        result.add_error("database.pool_size must be at least 1")
    if db.max_overflow < 0:
        result.add_error("database.max_overflow must not be negative")
    if db.pool_timeout <= 0:
        result.add_error("database.pool_timeout must be positive")
    if db.sqlite_busy_timeout <= 0:
        result.add_error("database.sqlite_busy_timeout must be positive")
    if db.url.startswith("sqlite") and ":memory:" in db.url:
        result.add_warning(
            "in-memory SQLite gives each connection its own database; "
            "concurrent allocation needs a file or PostgreSQL"
        )


def _validate_ledger(config: LedgerConfig, result: ConfigValidationResult) -> None:
    ledger = config.ledger
    if ledger.currency_decimal_places != 2:
        result.add_error(
            "ledger.currency_decimal_places must be 2; amounts are stored as NUMERIC(18, 2)"
        )
    if not 1 <= ledger.default_due_day <= 28:
        result.add_error("ledger.default_due_day must be between 1 and 28")
    if ledger.max_conflict_retries < 0:
        result.add_error("ledger.max_conflict_retries must not be negative")
    if ledger.retry_backoff_seconds < 0:
        result.add_error("ledger.retry_backoff_seconds must not be negative")


def _validate_numbering(config: LedgerConfig, result: ConfigValidationResult) -> None:
    numbering = config.numbering
    types = {
        "receipt_type": numbering.receipt_type,
        "voucher_type": numbering.voucher_type,
        "admission_type": numbering.admission_type,
        "roll_type": numbering.roll_type,
    }
    for key, value in types.items():
        if not value or not value.strip():
            result.add_error(f"numbering.{key} must not be empty")
        elif len(value) > 30:
            result.add_error(f"numbering.{key} is longer than 30 characters")
    distinct = {v for v in types.values() if v}
    if len(distinct) != len([v for v in types.values() if v]):
        result.add_error("numbering counter types must be distinct")
