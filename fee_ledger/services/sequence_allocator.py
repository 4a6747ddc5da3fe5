"""
SequenceAllocator -- atomic per-scope counters.

Responsibility:
    Hands out strictly increasing integers per scope key
    (institution, counter type, period).  Every unique human-facing number
    in the ledger (application, roll, receipt and voucher numbers) is
    rendered from a value allocated here.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    IdentifierService, VoucherIssuer and PaymentApplicator.

Invariants enforced:
    - Increment-and-fetch is ONE statement:
      ``UPDATE scoped_counters SET seq = seq + 1 WHERE <scope> RETURNING seq``.
      Read-current-add-one-write-back and counting existing rows are
      FORBIDDEN.
    - The counter row is created lazily with
      ``INSERT ... ON CONFLICT DO NOTHING`` so concurrent first use of a
      scope cannot collide.
    - The increment belongs to the caller's transaction.  A rollback returns
      the value; nothing is consumed until commit, and no value is handed
      out twice.
    - seq never decreases.  raise_floor only moves it up.
    - Lock order: suspense row, then ledger entries, then the counter.
      Callers lock the entries they bill or pay before allocating and take
      no entry lock while holding a counter lock.  The counter lock is held
      to the end of the caller's transaction.

Failure modes:
    - ConcurrencyConflictError: lock wait ended in a deadlock, serialization
      failure or SQLite busy timeout.  Retryable.
    - ScopeUnavailableError: the counter store could not be reached or the
      statement failed for any other driver reason.  Fatal; there is no
      fallback.

Audit relevance:
    Allocations are logged at DEBUG with the scope and value.
"""

from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, CheckConstraint, String, UniqueConstraint, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, mapped_column

from fee_ledger.db.base import Base
from fee_ledger.exceptions import ConcurrencyConflictError, ScopeUnavailableError
from fee_ledger.logging_config import get_logger
from fee_ledger.services.base import is_transient_lock_error

logger = get_logger("services.sequence_allocator")


class ScopedCounter(Base):
    """
    One counter per scope key.

    Rows are created on first allocation and never deleted.
    """

    __tablename__ = "scoped_counters"

    __table_args__ = (
        UniqueConstraint(
            "institution_id", "period", "counter_type", name="uq_scoped_counter_scope"
        ),
        CheckConstraint("seq >= 0", name="ck_scoped_counter_seq"),
    )

    institution_id: Mapped[UUID] = mapped_column(nullable=False)

    # "" for counters without a period (admission, roll)
    period: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    counter_type: Mapped[str] = mapped_column(String(30), nullable=False)

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


@dataclass(frozen=True)
class ScopeKey:
    """
    Composite counter key.

    ``ScopeKey(inst, "RCP", 2025)`` and ``ScopeKey(inst, "RCP", "2025")``
    name the same counter.
    """

    institution_id: UUID
    counter_type: str
    period: str = ""

    def __post_init__(self) -> None:
        counter_type = self.counter_type.strip()
        if not counter_type:
            raise ValueError("counter_type must not be empty")
        object.__setattr__(self, "counter_type", counter_type)
        object.__setattr__(self, "period", "" if self.period is None else str(self.period))

    def __str__(self) -> str:
        if self.period:
            return f"{self.institution_id}/{self.counter_type}/{self.period}"
        return f"{self.institution_id}/{self.counter_type}"


class SequenceAllocator:
    """
    Transactional scoped sequence allocation.

    Contract:
        ``allocate(scope)`` returns the next integer for the scope.  The
        value is durable once the caller commits.

    Guarantees:
        - N concurrent callers on one scope receive N distinct values that
          form a contiguous run after the prior maximum.
        - A rolled-back allocation is never observed by anyone and its
          value is reissued to the next committed caller.

    Non-goals:
        - Does NOT commit.  Callers own transaction boundaries.
        - Does NOT format identifiers (see domain/identifiers.py).
        - Callers take every entry lock they need before allocating.

    Usage:
        value = SequenceAllocator(session).allocate(ScopeKey(inst, "RCP", 2025))
    """

    def __init__(self, session: Session):
        self._session = session

    def _scope_filter(self, scope: ScopeKey):
        return (
            ScopedCounter.institution_id == scope.institution_id,
            ScopedCounter.period == scope.period,
            ScopedCounter.counter_type == scope.counter_type,
        )

    def _insert_if_missing(self, scope: ScopeKey, initial: int = 0):
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            insert_fn = postgresql.insert
        elif dialect == "sqlite":
            insert_fn = sqlite.insert
        else:
            raise ScopeUnavailableError(
                str(scope), f"unsupported counter store dialect {dialect!r}"
            )
        stmt = insert_fn(ScopedCounter).values(
            id=uuid4(),
            institution_id=scope.institution_id,
            period=scope.period,
            counter_type=scope.counter_type,
            seq=initial,
        )
        return stmt.on_conflict_do_nothing(
            index_elements=["institution_id", "period", "counter_type"]
        )

    def _execute(self, scope: ScopeKey, stmt):
        try:
            return self._session.execute(stmt)
        except DBAPIError as exc:
            if is_transient_lock_error(exc):
                logger.warning(
                    "sequence_allocation_conflict",
                    extra={"scope": str(scope), "detail": str(exc.orig)},
                )
                raise ConcurrencyConflictError(
                    "ScopedCounter", str(scope), str(exc.orig)
                ) from exc
            logger.error(
                "sequence_scope_unavailable",
                extra={"scope": str(scope), "detail": str(exc.orig)},
            )
            raise ScopeUnavailableError(str(scope), str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "sequence_scope_unavailable",
                extra={"scope": str(scope), "detail": str(exc)},
            )
            raise ScopeUnavailableError(str(scope), str(exc)) from exc

    def allocate(self, scope: ScopeKey) -> int:
        """
        Atomically increment the scope's counter and return the new value.

        Postconditions:
            - Returns an integer >= 1, greater than every value committed
              for this scope before the call.
            - The counter row stays locked until the caller's transaction
              ends.

        Raises:
            ConcurrencyConflictError: Lock wait failed; retry the unit of work.
            ScopeUnavailableError: Store unreachable; do not fall back.
        """
        self._execute(scope, self._insert_if_missing(scope))
        result = self._execute(
            scope,
            update(ScopedCounter)
            .where(*self._scope_filter(scope))
            .values(seq=ScopedCounter.seq + 1)
            .returning(ScopedCounter.seq)
            .execution_options(synchronize_session=False),
        )
        value = result.scalar_one()
        logger.debug(
            "sequence_allocated",
            extra={
                "institution_id": str(scope.institution_id),
                "counter_type": scope.counter_type,
                "period": scope.period,
                "value": value,
            },
        )
        return value

    def current_value(self, scope: ScopeKey) -> int | None:
        """
        Last allocated value without incrementing, or None if the scope has
        never been used.
        """
        result = self._execute(
            scope,
            select(ScopedCounter.seq).where(*self._scope_filter(scope)),
        )
        return result.scalar_one_or_none()

    def raise_floor(self, scope: ScopeKey, floor: int) -> int:
        """
        Ensure the counter is at least ``floor``.  Never lowers it.

        Migration helper for seeding a scope from legacy numbers: after
        ``raise_floor(scope, 120)`` the next allocation returns 121 unless
        the counter was already higher.

        Returns:
            The counter value after the call.
        """
        if floor < 0:
            raise ValueError(f"floor must not be negative, got {floor}")
        self._execute(scope, self._insert_if_missing(scope))
        result = self._execute(
            scope,
            update(ScopedCounter)
            .where(*self._scope_filter(scope))
            .values(
                seq=func.max(ScopedCounter.seq, floor)
                if self._session.get_bind().dialect.name == "sqlite"
                else func.greatest(ScopedCounter.seq, floor)
            )
            .returning(ScopedCounter.seq)
            .execution_options(synchronize_session=False),
        )
        value = result.scalar_one()
        logger.info(
            "sequence_floor_raised",
            extra={"scope": str(scope), "floor": floor, "value": value},
        )
        return value
