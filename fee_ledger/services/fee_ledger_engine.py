"""
FeeLedgerEngine -- lifecycle of student ledger entries.

Responsibility:
    Creates ledger entries (directly or from a class's fee structures),
    changes discounts, re-derives balances and status, sweeps overdue
    entries and soft-deactivates entries.  A billed monthly entry is rolled
    over to a fresh entry when its next period is billed.

Architecture position:
    Kernel > Services -- imperative shell around domain/ledger_math.py.
    Depends on FeeMatrixResolver for enrollment.  VoucherIssuer and
    PaymentApplicator call back into it for lookups and recomputation.

Invariants enforced:
    - Every mutation ends with ledger_math.recompute on the entry before
      the flush.  Persistence never recomputes implicitly.
    - One ACTIVE entry per (student, fee head, academic year).  Deactivated
      rows are history and do not count.
    - Optimistic concurrency through StudentFee.version.  A lost update
      raises ConcurrencyConflictError.

Failure modes:
    - LedgerEntryNotFoundError, FeeHeadNotFoundError, FeeHeadInactiveError.
    - InactiveLedgerEntryError when mutating a deactivated entry.
    - DuplicateLedgerEntryError on a second active entry or assignment.
    - FeeStructureNotFoundError when a class has nothing to assign.
    - InvalidAmountError / InvalidDiscountError on bad amounts.
    - ConcurrencyConflictError on a stale version.

Audit relevance:
    Creation, discount changes and deactivations log at INFO with the entry
    id and the resulting amounts.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fee_ledger.db.types import ZERO, to_money
from fee_ledger.domain import ledger_math
from fee_ledger.domain.clock import Clock, SystemClock
from fee_ledger.domain.ledger_math import DiscountType, LedgerStatus
from fee_ledger.exceptions import (
    ConcurrencyConflictError,
    DuplicateLedgerEntryError,
    FeeHeadInactiveError,
    FeeHeadNotFoundError,
    FeeStructureNotFoundError,
    InactiveLedgerEntryError,
    LedgerEntryNotFoundError,
)
from fee_ledger.logging_config import LogContext, get_logger
from fee_ledger.models.fee_head import FeeHead
from fee_ledger.models.ledger import StudentFee
from fee_ledger.services.base import BaseService
from fee_ledger.services.fee_matrix_resolver import FeeMatrixResolver

logger = get_logger("services.ledger_engine")


@dataclass(frozen=True)
class DiscountSpec:
    """Discount to apply when an entry is created from a fee structure."""

    amount: Decimal
    discount_type: DiscountType = DiscountType.FLAT
    reason: str | None = None


class FeeLedgerEngine(BaseService[StudentFee]):
    """
    Owns StudentFee rows.

    Contract:
        Methods flush and return the ORM entry.  They never commit.

    Guarantees:
        - After any method returns, remaining = max(0, final - paid) and
          status follows the derivation rule for today's date.
        - recompute() is idempotent and writes nothing when the entry is
          already consistent.

    Non-goals:
        - Structure changes do not flow into existing entries.  Only
          apply_discount and recompute change an entry's amounts.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        matrix_resolver: FeeMatrixResolver | None = None,
        default_due_day: int = 20,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._resolver = matrix_resolver or FeeMatrixResolver(session)
        self._default_due_day = default_due_day

    @property
    def clock(self) -> Clock:
        return self._clock

    def _today(self) -> date:
        return self._clock.today()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: UUID, for_update: bool = False) -> StudentFee:
        """
        Load an entry.

        Args:
            entry_id: Ledger entry id.
            for_update: Take a row lock (PostgreSQL) and refresh the row.

        Raises:
            LedgerEntryNotFoundError: No such entry.
        """
        stmt = select(StudentFee).where(StudentFee.id == entry_id)
        if for_update:
            stmt = stmt.with_for_update(of=StudentFee).execution_options(
                populate_existing=True
            )
        entry = self.session.execute(stmt).unique().scalar_one_or_none()
        if entry is None:
            raise LedgerEntryNotFoundError(entry_id)
        return entry

    def lock_entries(self, entry_ids: Iterable[UUID]) -> None:
        """
        Row-lock several entries in id order.

        On SQLite the database write lock already covers them.
        """
        ids = set(entry_ids)
        if not ids:
            return
        with self._conflict_guard("StudentFee"):
            self.session.execute(
                select(StudentFee.id)
                .where(StudentFee.id.in_(ids))
                .order_by(StudentFee.id)
                .with_for_update()
            ).all()

    def get_active_entry(self, entry_id: UUID, for_update: bool = False) -> StudentFee:
        """Like get_entry, but rejects deactivated entries."""
        entry = self.get_entry(entry_id, for_update=for_update)
        if not entry.is_active:
            raise InactiveLedgerEntryError(entry_id)
        return entry

    def _active_entries(self, student_id: UUID, academic_year: str):
        return (
            select(StudentFee)
            .where(StudentFee.student_id == student_id)
            .where(StudentFee.academic_year == academic_year)
            .where(StudentFee.is_active.is_(True))
        )

    def _flush(self, entry: StudentFee) -> None:
        with self._conflict_guard("StudentFee", entry.id):
            self.session.flush()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_entry(
        self,
        institution_id: UUID,
        student_id: UUID,
        fee_head_id: UUID,
        base_amount: Decimal | int | str,
        discount: Decimal | int | str,
        discount_type: DiscountType | str,
        due_date: date | None,
        actor_id: UUID,
        academic_year: str,
        class_id: UUID | None = None,
        fee_structure_id: UUID | None = None,
        discount_reason: str | None = None,
    ) -> StudentFee:
        """
        Create a ledger entry with nothing paid.

        Postconditions:
            final = max(0, base - discount), paid = 0, remaining = final.
            Status is pending, overdue if due_date already passed, or paid
            when final is zero.

        Raises:
            InvalidAmountError: base_amount negative.
            InvalidDiscountError: discount negative or percentage over 100.
            FeeHeadNotFoundError / FeeHeadInactiveError: bad fee head.
            DuplicateLedgerEntryError: an active entry already exists for
                this student, fee head and academic year.
        """
        head = self.session.get(FeeHead, fee_head_id)
        if head is None:
            raise FeeHeadNotFoundError(fee_head_id)
        if not head.is_active:
            raise FeeHeadInactiveError(fee_head_id)

        state = ledger_math.new_state(
            to_money(base_amount),
            to_money(discount),
            discount_type,
            due_date,
            self._today(),
        )

        existing = self.session.execute(
            self._active_entries(student_id, academic_year)
            .where(StudentFee.fee_head_id == fee_head_id)
        ).unique().scalars().first()
        if existing is not None:
            raise DuplicateLedgerEntryError(
                student_id, fee_head_id, academic_year, existing.id
            )

        entry = StudentFee(
            institution_id=institution_id,
            student_id=student_id,
            academic_year=academic_year,
            class_id=class_id,
            fee_head_id=fee_head_id,
            fee_structure_id=fee_structure_id,
            discount_reason=discount_reason,
            is_active=True,
            created_by_id=actor_id,
        )
        entry.apply_state(state)
        savepoint = self.session.begin_nested()
        try:
            self.session.add(entry)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateLedgerEntryError(student_id, fee_head_id, academic_year) from exc

        logger.info(
            "ledger_entry_created",
            extra={
                "entry_id": str(entry.id),
                "student_id": str(student_id),
                "fee_head_id": str(fee_head_id),
                "final_amount": state.final_amount,
                "status": state.status.value,
            },
        )
        return entry

    def assign_class_fees(
        self,
        student_id: UUID,
        institution_id: UUID,
        academic_year: str,
        class_id: UUID,
        actor_id: UUID,
        due_date: date | None = None,
        default_discount: DiscountSpec | None = None,
        fee_head_discounts: Mapping[UUID, DiscountSpec] | None = None,
    ) -> list[StudentFee]:
        """
        Create one entry per active fee structure of the class.

        A per-fee-head discount overrides ``default_discount``.  Structures
        whose amount is zero produce no entry.

        Raises:
            DuplicateLedgerEntryError: The student already has active
                entries for this class and academic year.
            FeeStructureNotFoundError: The class has no active structures.
        """
        existing = self.session.execute(
            self._active_entries(student_id, academic_year)
            .where(StudentFee.class_id == class_id)
        ).unique().scalars().first()
        if existing is not None:
            raise DuplicateLedgerEntryError(
                student_id, existing.fee_head_id, academic_year, existing.id
            )

        structures = [
            s
            for s in self._resolver.structures_for_class(
                institution_id, academic_year, class_id
            )
            if s.amount > ZERO
        ]
        if not structures:
            raise FeeStructureNotFoundError(class_id, academic_year)

        due = due_date or ledger_math.default_due_date(
            self._today(), self._default_due_day
        )
        overrides = fee_head_discounts or {}

        entries = []
        with LogContext.bind(institution_id=institution_id, actor_id=actor_id):
            for structure in structures:
                spec = overrides.get(structure.fee_head_id, default_discount)
                entries.append(
                    self.create_entry(
                        institution_id=institution_id,
                        student_id=student_id,
                        fee_head_id=structure.fee_head_id,
                        base_amount=structure.amount,
                        discount=spec.amount if spec else ZERO,
                        discount_type=spec.discount_type if spec else DiscountType.FLAT,
                        due_date=due,
                        actor_id=actor_id,
                        academic_year=academic_year,
                        class_id=class_id,
                        fee_structure_id=structure.id,
                        discount_reason=spec.reason if spec else None,
                    )
                )

            logger.info(
                "class_fees_assigned",
                extra={
                    "student_id": str(student_id),
                    "class_id": str(class_id),
                    "academic_year": academic_year,
                    "entry_count": len(entries),
                },
            )
        return entries

    def reassign_class_fees(
        self,
        student_id: UUID,
        institution_id: UUID,
        academic_year: str,
        class_id: UUID,
        actor_id: UUID,
        due_date: date | None = None,
        default_discount: DiscountSpec | None = None,
        fee_head_discounts: Mapping[UUID, DiscountSpec] | None = None,
    ) -> list[StudentFee]:
        """
        Move a student to another class (promotion or transfer).

        Deactivates the student's active entries for the academic year and
        assigns the new class's fees.  Deactivated entries stay on record
        with their receipts.
        """
        current = self.session.execute(
            self._active_entries(student_id, academic_year)
        ).unique().scalars().all()
        for entry in current:
            self.deactivate_entry(entry.id, actor_id)

        return self.assign_class_fees(
            student_id=student_id,
            institution_id=institution_id,
            academic_year=academic_year,
            class_id=class_id,
            actor_id=actor_id,
            due_date=due_date,
            default_discount=default_discount,
            fee_head_discounts=fee_head_discounts,
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_discount(
        self,
        entry_id: UUID,
        discount: Decimal | int | str,
        discount_type: DiscountType | str,
        actor_id: UUID,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> StudentFee:
        """
        Replace the entry's discount.

        When the final amount changes, paid resets to zero and the entry is
        re-billed from pending under a new billing cycle.  Receipts are kept,
        and reversing one from an earlier cycle leaves the new balance alone.

        Args:
            expected_version: Version the caller last read.  A mismatch
                raises ConcurrencyConflictError before anything changes.

        Raises:
            InvalidDiscountError, InactiveLedgerEntryError,
            ConcurrencyConflictError.
        """
        entry = self.get_active_entry(entry_id)
        if expected_version is not None and entry.version != expected_version:
            raise ConcurrencyConflictError(
                "StudentFee",
                entry_id,
                f"expected version {expected_version}, found {entry.version}",
            )

        before = entry.to_state()
        after = ledger_math.apply_discount(
            before, to_money(discount), discount_type, self._today()
        )
        rebilled = after.final_amount != before.final_amount
        entry.apply_state(after)
        if rebilled:
            entry.billing_cycle += 1
        entry.discount_reason = reason
        entry.updated_by_id = actor_id
        self._flush(entry)

        logger.info(
            "ledger_discount_applied",
            extra={
                "entry_id": str(entry.id),
                "discount": after.discount_amount,
                "discount_type": after.discount_type.value,
                "previous_final": before.final_amount,
                "final_amount": after.final_amount,
                "paid_reset": after.paid_amount != before.paid_amount,
                "billing_cycle": entry.billing_cycle,
            },
        )
        return entry

    def recompute(self, entry: StudentFee | UUID) -> StudentFee:
        """
        Re-derive remaining amount and status from final, paid and due date.

        Safe to call redundantly: a consistent entry is left untouched and
        no UPDATE is issued.
        """
        if not isinstance(entry, StudentFee):
            entry = self.get_entry(entry)
        before = entry.to_state()
        after = ledger_math.recompute(before, self._today())
        if after is not before:
            entry.remaining_amount = after.remaining_amount
            entry.status = after.status.value
            self._flush(entry)
            logger.debug(
                "ledger_entry_recomputed",
                extra={
                    "entry_id": str(entry.id),
                    "status": after.status.value,
                    "remaining_amount": after.remaining_amount,
                },
            )
        return entry

    def refresh_overdue(self, institution_id: UUID, as_of: date | None = None) -> int:
        """
        Recompute every active, unpaid entry of the institution that is
        past its due date.

        Called by billing triggers outside this package.

        Returns:
            Number of entries whose status changed.
        """
        today = as_of or self._today()
        candidates = self.session.execute(
            select(StudentFee)
            .where(StudentFee.institution_id == institution_id)
            .where(StudentFee.is_active.is_(True))
            .where(
                StudentFee.status.in_(
                    [LedgerStatus.PENDING.value, LedgerStatus.PARTIAL.value]
                )
            )
            .where(StudentFee.due_date < today)
        ).unique().scalars().all()

        changed = 0
        for entry in candidates:
            after = ledger_math.recompute(entry.to_state(), today)
            if after.status != entry.status:
                entry.remaining_amount = after.remaining_amount
                entry.status = after.status.value
                changed += 1
        if changed:
            with self._conflict_guard("StudentFee"):
                self.session.flush()

        logger.info(
            "overdue_refreshed",
            extra={
                "institution_id": str(institution_id),
                "as_of": today,
                "scanned": len(candidates),
                "changed": changed,
            },
        )
        return changed

    def deactivate_entry(self, entry_id: UUID, actor_id: UUID) -> StudentFee:
        """Soft-deactivate.  The row, its vouchers and receipts remain."""
        entry = self.get_entry(entry_id)
        if not entry.is_active:
            return entry
        entry.is_active = False
        entry.updated_by_id = actor_id
        self._flush(entry)
        logger.info(
            "ledger_entry_deactivated",
            extra={"entry_id": str(entry.id), "paid_amount": entry.paid_amount},
        )
        return entry

    def roll_over_entry(
        self, entry: StudentFee, month: int, year: int, actor_id: UUID
    ) -> StudentFee:
        """
        Retire a billed monthly entry and open its successor for a period.

        The old entry is deactivated and keeps its vouchers and receipts.
        The successor copies the base amount, discount, class and structure,
        starts with nothing paid, and is due on the configured due day of
        ``month``/``year``.

        The caller holds the lock on ``entry``.
        """
        self.deactivate_entry(entry.id, actor_id)

        due = ledger_math.default_due_date(date(year, month, 1), self._default_due_day)
        state = ledger_math.new_state(
            entry.base_amount,
            entry.discount_amount,
            entry.discount_type,
            due,
            self._today(),
        )
        successor = StudentFee(
            institution_id=entry.institution_id,
            student_id=entry.student_id,
            academic_year=entry.academic_year,
            class_id=entry.class_id,
            fee_head_id=entry.fee_head_id,
            fee_structure_id=entry.fee_structure_id,
            discount_reason=entry.discount_reason,
            is_active=True,
            created_by_id=actor_id,
        )
        successor.apply_state(state)
        self.session.add(successor)
        self._flush(successor)

        logger.info(
            "ledger_entry_rolled_over",
            extra={
                "entry_id": str(successor.id),
                "previous_entry_id": str(entry.id),
                "month": month,
                "year": year,
                "final_amount": state.final_amount,
                "status": state.status.value,
            },
        )
        return successor
