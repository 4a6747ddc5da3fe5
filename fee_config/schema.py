"""
LedgerConfig schema.

Frozen dataclasses that the YAML configuration set is parsed into.  The
loader fills them, the validator checks them, and services receive the
individual sections they need.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings passed to fee_ledger.db.init_engine_from_url."""

    url: str = "sqlite:///fee_ledger.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    sqlite_busy_timeout: float = 30.0


@dataclass(frozen=True)
class LedgerSettings:
    currency_decimal_places: int = 2
    default_due_day: int = 20
    max_conflict_retries: int = 5
    retry_backoff_seconds: float = 0.05
    allow_overpayment: bool = False


@dataclass(frozen=True)
class NumberingConfig:
    """Counter types of the identifier scopes."""

    receipt_type: str = "RCP"
    voucher_type: str = "VCH"
    admission_type: str = "admission"
    roll_type: str = "roll"


@dataclass(frozen=True)
class FeeHeadsConfig:
    max_priority: int = 10


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """
    Complete runtime configuration.

    ``checksum`` is the SHA-256 of the canonical source mapping and
    identifies the configuration in log traces.
    """

    config_id: str = "default"
    version: int = 1
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    fee_heads: FeeHeadsConfig = field(default_factory=FeeHeadsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
