"""Database layer - engine, base classes and column types."""

from fee_ledger.db.base import Base, TrackedBase, UUIDString
from fee_ledger.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from fee_ledger.db.types import round_money, to_money

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session_factory",
    "reset_engine",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "round_money",
    "to_money",
]
