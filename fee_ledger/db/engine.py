"""
Module: fee_ledger.db.engine
Responsibility: Owns the process-wide SQLAlchemy engine and session factory
    and creates or drops the ledger schema.
Architecture position: Kernel > DB.  Imports db/base.py; the model
    registry is only imported inside create_tables/drop_tables.

Invariants enforced:
    - PostgreSQL: QueuePool with pre-ping, READ COMMITTED.  Counter and
      payment correctness comes from row locks and single-statement
      updates, not from the isolation level.
    - SQLite: foreign keys enforced, and every transaction starts with
      BEGIN IMMEDIATE.  Writers queue on the database lock for up to
      ``sqlite_busy_timeout`` seconds instead of deadlocking on a read
      lock upgrade.
    - Sessions are created with expire_on_commit=False.

Failure modes:
    - RuntimeError when the engine is used before init_engine_from_url().
    - OperationalError "database is locked" once a SQLite writer has
      waited past the busy timeout.
"""

import atexit

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from fee_ledger.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite's own transaction handling would defer BEGIN and break savepoints.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Build the engine and session factory, replacing any previous ones.

    The pool arguments apply to server databases only.  SQLite opens one
    connection per checkout and honours ``sqlite_busy_timeout``.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": sqlite_busy_timeout, "check_same_thread": False},
        )
        _install_sqlite_hooks(engine)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": backend,
            "pool_size": None if backend == "sqlite" else pool_size,
            "echo": echo,
        },
    )
    return engine


def _not_initialized() -> RuntimeError:
    return RuntimeError("Engine not initialized. Call init_engine_from_url() first.")


def get_engine() -> Engine:
    if _engine is None:
        raise _not_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for new sessions.  Give every thread its own session."""
    if _SessionFactory is None:
        raise _not_initialized()
    return _SessionFactory


def _metadata():
    from fee_ledger.db.base import Base
    import fee_ledger.models  # noqa: F401
    import fee_ledger.services.sequence_allocator  # noqa: F401  ScopedCounter

    return Base.metadata


def create_tables() -> None:
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables() -> None:
    """Drop every ledger table.  Tests and local resets only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def _dispose_at_exit() -> None:
    if _engine is not None:
        _engine.dispose()


atexit.register(_dispose_at_exit)
