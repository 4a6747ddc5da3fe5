"""
fee_services.unit_of_work -- transaction boundary with bounded retry.

Responsibility:
    Runs one unit of work in its own session: commit on success, rollback
    on failure.  A ConcurrencyConflictError rolls back and re-runs the
    whole unit with linear backoff, up to ``max_attempts`` runs.

Architecture position:
    Services -- the only place in the project that commits.  Kernel
    services flush; this module decides when their work becomes durable.

Invariants enforced:
    - Each attempt gets a fresh session, so no state from a failed attempt
      leaks into the next.
    - Only ConcurrencyConflictError is retried.  ScopeUnavailableError and
      every other exception roll back and propagate unchanged.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session, sessionmaker

from fee_ledger.exceptions import ConcurrencyConflictError
from fee_ledger.logging_config import get_logger

logger = get_logger("services.unit_of_work")

T = TypeVar("T")


def run_in_transaction(
    session_factory: sessionmaker[Session],
    work: Callable[[Session], T],
    max_attempts: int = 6,
    backoff: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``work(session)`` and commit.

    Args:
        session_factory: Builds one session per attempt.
        work: The unit of work.  It must be safe to run again from scratch.
        max_attempts: Total runs allowed, including the first.
        backoff: Sleep before retry n is ``backoff * n`` seconds.
        sleep: Injected for tests.

    Returns:
        Whatever ``work`` returned on the attempt that committed.

    Raises:
        ConcurrencyConflictError: Still conflicting after max_attempts.
        Any other exception raised by ``work`` or by the commit.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    attempt = 1
    while True:
        session = session_factory()
        try:
            result = work(session)
            session.commit()
            return result
        except ConcurrencyConflictError as exc:
            session.rollback()
            if attempt >= max_attempts:
                logger.error(
                    "transaction_retries_exhausted",
                    extra={
                        "attempt": attempt,
                        "entity_type": exc.entity_type,
                        "entity_id": exc.entity_id,
                    },
                )
                raise
            logger.warning(
                "transaction_retry",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "entity_type": exc.entity_type,
                    "entity_id": exc.entity_id,
                    "detail": exc.detail,
                },
            )
            sleep(backoff * attempt)
            attempt += 1
        except Exception:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()
