"""
BaseService -- common base for ledger services.

Responsibility:
    Holds the caller's SQLAlchemy ``Session`` and the translation of
    low-level persistence failures into the typed ledger errors.  Services
    use ``session.flush()`` and never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell.  Every write service in
    ``fee_ledger/services/`` extends this class.

Invariants enforced:
    - Transaction boundaries belong to the caller (fee_services or a test
      harness).  A failed operation leaves rollback to that caller.
    - StaleDataError and transient lock errors surface as
      ConcurrencyConflictError, which is the only retryable error.
"""

from abc import ABC
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fee_ledger.db.base import Base
from fee_ledger.exceptions import ConcurrencyConflictError

ModelType = TypeVar("ModelType", bound=Base)

# Driver messages that mean "another transaction got there first"
_TRANSIENT_MARKERS = (
    "deadlock",
    "could not serialize",
    "serialization failure",
    "database is locked",
    "lock timeout",
    "could not obtain lock",
)


def is_transient_lock_error(exc: DBAPIError) -> bool:
    """True for deadlocks, serialization failures and busy-database errors."""
    if getattr(exc.orig, "pgcode", None) in ("40001", "40P01", "55P03"):
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for ledger services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the outer transaction.  Savepoints it
          opens itself are its own to release.

    Non-goals:
        - Read-only projections belong in ``fee_ledger/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _conflict_guard(
        self, entity_type: str, entity_id: UUID | None = None
    ) -> Iterator[None]:
        """Translate lost-update failures raised inside the block."""
        try:
            yield
        except StaleDataError as exc:
            raise ConcurrencyConflictError(
                entity_type, entity_id, "row version changed"
            ) from exc
        except OperationalError as exc:
            if is_transient_lock_error(exc):
                raise ConcurrencyConflictError(
                    entity_type, entity_id, str(exc.orig)
                ) from exc
            raise
