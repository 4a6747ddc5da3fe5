"""
VoucherIssuer -- billing-period vouchers with allocated numbers.

Responsibility:
    Issues a voucher for one (month, year) against a ledger entry, stamps
    it with a number from the (institution, "VCH", year) scope, and cancels
    vouchers together with the payments collected against them.  Also runs
    the per-period billing helper over many entries.

Architecture position:
    Kernel > Services.  Depends on FeeLedgerEngine (entry lookup and
    monthly rollover), IdentifierService (number allocation) and
    PaymentApplicator (reversals on cancellation).

Invariants enforced:
    - Check-duplicate, allocate and append are one unit inside the caller's
      transaction:
        1. the entry row is locked (SELECT ... FOR UPDATE on PostgreSQL,
           the database write lock on SQLite);
        2. an issued voucher for the period raises DuplicateVoucherError;
        3. a used monthly entry is rolled over to a fresh entry;
        4. the number is allocated and the voucher flushed;
        5. the partial unique index uq_voucher_entry_period catches any
           duplicate that slipped past the check, and the savepoint
           rollback un-allocates the number and undoes the rollover.
    - Lock order is always ledger entries, then the voucher counter.  A
      single issue locks its entry before allocating.  A batch locks all
      of its entries in id order before the first allocation.
    - For monthly heads the duplicate check spans the entries a rollover
      retired, so a period is billed once per student, head and year.
    - Vouchers are never deleted.  A cancelled period may be billed again
      under a new number.

Failure modes:
    - InvalidPeriodError for month outside 1..12 or year outside 2000..9999.
    - DuplicateVoucherError, InactiveLedgerEntryError,
      LedgerEntryNotFoundError, VoucherNotFoundError,
      VoucherAlreadyCancelledError.
    - ScopeUnavailableError from the allocator (fatal).
    - ConcurrencyConflictError is never absorbed into a batch result.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fee_ledger.db.types import ZERO
from fee_ledger.domain.ledger_math import LedgerStatus
from fee_ledger.exceptions import (
    ConcurrencyConflictError,
    DuplicateVoucherError,
    FeeLedgerError,
    InvalidPeriodError,
    ScopeUnavailableError,
    VoucherAlreadyCancelledError,
    VoucherNotFoundError,
)
from fee_ledger.logging_config import get_logger
from fee_ledger.models.fee_head import FrequencyType
from fee_ledger.models.ledger import StudentFee, Voucher, VoucherStatus
from fee_ledger.models.receipt import Receipt, ReceiptStatus
from fee_ledger.services.base import BaseService
from fee_ledger.services.fee_ledger_engine import FeeLedgerEngine
from fee_ledger.services.identifier_service import IdentifierService
from fee_ledger.services.payment_applicator import PaymentApplicator

logger = get_logger("services.voucher_issuer")

MIN_YEAR = 2000
MAX_YEAR = 9999


@dataclass(frozen=True)
class EntryFailure:
    entry_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class VoucherBatchResult:
    """Outcome of issue_for_entries.  Duplicates count as skipped."""

    issued: tuple[Voucher, ...] = field(default_factory=tuple)
    skipped: tuple[UUID, ...] = field(default_factory=tuple)
    errors: tuple[EntryFailure, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class VoucherCancellation:
    """A cancelled voucher and the receipts reversed with it."""

    voucher: Voucher
    reversed_receipts: tuple[Receipt, ...] = field(default_factory=tuple)

    @property
    def reversed_amount(self) -> Decimal:
        return sum((r.amount for r in self.reversed_receipts), ZERO)


def validate_period(month: int, year: int) -> None:
    if not 1 <= month <= 12:
        raise InvalidPeriodError(month, year, "month must be between 1 and 12")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidPeriodError(
            month, year, f"year must be between {MIN_YEAR} and {MAX_YEAR}"
        )


def needs_rollover(entry: StudentFee) -> bool:
    """
    A monthly entry that was already billed or paid is history: the next
    period is billed on a fresh entry.
    """
    if FrequencyType(entry.fee_head.frequency_type) is not FrequencyType.MONTHLY:
        return False
    return (
        any(v.status == VoucherStatus.ISSUED for v in entry.vouchers)
        or entry.paid_amount > ZERO
        or entry.status == LedgerStatus.PAID
    )


class VoucherIssuer(BaseService[Voucher]):
    """
    Issues and cancels vouchers.

    Guarantees:
        - At most one issued voucher per (entry, month, year), under any
          number of concurrent issuers.
        - A voucher number is consumed only if its voucher is persisted.
        - The returned voucher always belongs to the entry that was
          actually billed, which differs from the requested one after a
          monthly rollover.
    """

    def __init__(
        self,
        session: Session,
        ledger_engine: FeeLedgerEngine,
        identifiers: IdentifierService | None = None,
        payments: PaymentApplicator | None = None,
    ):
        super().__init__(session)
        self._engine = ledger_engine
        self._identifiers = identifiers or IdentifierService(session)
        self._payments = payments or PaymentApplicator(
            session, ledger_engine, identifiers=self._identifiers
        )

    def _billed_for_period(self, entry: StudentFee, month: int, year: int) -> bool:
        if entry.issued_voucher_for(month, year) is not None:
            return True
        if FrequencyType(entry.fee_head.frequency_type) is not FrequencyType.MONTHLY:
            return False
        retired = self.session.execute(
            select(Voucher.id)
            .join(StudentFee, Voucher.ledger_entry_id == StudentFee.id)
            .where(StudentFee.student_id == entry.student_id)
            .where(StudentFee.fee_head_id == entry.fee_head_id)
            .where(StudentFee.academic_year == entry.academic_year)
            .where(Voucher.month == month)
            .where(Voucher.year == year)
            .where(Voucher.status == VoucherStatus.ISSUED.value)
            .limit(1)
        ).first()
        return retired is not None

    def issue_voucher(
        self,
        entry_id: UUID,
        month: int,
        year: int,
        issuer_id: UUID,
    ) -> Voucher:
        """
        Issue the voucher for ``month``/``year`` on an active entry.

        A monthly entry that already carries an issued voucher or a payment
        is deactivated and replaced by a fresh pending entry with the same
        amounts, due in the billed month.  The voucher is issued on the
        fresh entry.

        Raises:
            InvalidPeriodError: Bad month or year.
            DuplicateVoucherError: The period already has an issued voucher.
            InactiveLedgerEntryError: Entry deactivated.
            ScopeUnavailableError: Voucher counter unreachable.
        """
        validate_period(month, year)
        entry = self._engine.get_active_entry(entry_id, for_update=True)

        if self._billed_for_period(entry, month, year):
            raise DuplicateVoucherError(entry_id, month, year)

        savepoint = self.session.begin_nested()
        try:
            if needs_rollover(entry):
                entry = self._engine.roll_over_entry(entry, month, year, issuer_id)
            number, value = self._identifiers.next_voucher_number(
                entry.institution_id, year, month
            )
            voucher = Voucher(
                ledger_entry_id=entry.id,
                institution_id=entry.institution_id,
                month=month,
                year=year,
                voucher_number=number,
                sequence_value=value,
                status=VoucherStatus.ISSUED.value,
                issued_at=self._engine.clock.now(),
                issued_by_id=issuer_id,
            )
            self.session.add(voucher)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            logger.warning(
                "voucher_duplicate_rejected",
                extra={"entry_id": str(entry_id), "month": month, "year": year},
            )
            raise DuplicateVoucherError(entry_id, month, year) from exc
        except Exception:
            savepoint.rollback()
            raise

        self.session.refresh(entry, attribute_names=["vouchers"])
        logger.info(
            "voucher_issued",
            extra={
                "entry_id": str(entry.id),
                "requested_entry_id": str(entry_id),
                "voucher_number": number,
                "month": month,
                "year": year,
            },
        )
        return voucher

    def cancel_voucher(
        self, voucher_id: UUID, actor_id: UUID, reason: str
    ) -> VoucherCancellation:
        """
        issued -> cancelled.  The period can then be billed again.

        Completed receipts that settled this voucher are reversed in the
        same transaction, oldest first.

        Raises:
            VoucherNotFoundError, VoucherAlreadyCancelledError.
        """
        voucher = self.session.get(Voucher, voucher_id)
        if voucher is None:
            raise VoucherNotFoundError(voucher_id)

        flipped = self.session.execute(
            update(Voucher)
            .where(Voucher.id == voucher_id)
            .where(Voucher.status == VoucherStatus.ISSUED.value)
            .values(
                status=VoucherStatus.CANCELLED.value,
                cancelled_at=self._engine.clock.now(),
                cancelled_by_id=actor_id,
                cancel_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount == 0:
            raise VoucherAlreadyCancelledError(voucher.id, voucher.voucher_number)
        self.session.refresh(voucher)

        receipts = self.session.execute(
            select(Receipt)
            .where(Receipt.ledger_entry_id == voucher.ledger_entry_id)
            .where(Receipt.voucher_number == voucher.voucher_number)
            .where(Receipt.status == ReceiptStatus.COMPLETED.value)
            .order_by(Receipt.paid_at, Receipt.sequence_value)
        ).scalars().all()
        refund_reason = f"voucher {voucher.voucher_number} cancelled: {reason}"
        reversed_receipts = tuple(
            self._payments.reverse_payment(receipt.id, actor_id, refund_reason).receipt
            for receipt in receipts
        )
        result = VoucherCancellation(voucher=voucher, reversed_receipts=reversed_receipts)
        logger.info(
            "voucher_cancelled",
            extra={
                "voucher_number": voucher.voucher_number,
                "reason": reason,
                "reversed_count": len(reversed_receipts),
                "reversed_amount": result.reversed_amount,
            },
        )
        return result

    def issue_for_entries(
        self,
        entry_ids: Iterable[UUID],
        month: int,
        year: int,
        issuer_id: UUID,
    ) -> VoucherBatchResult:
        """
        Billing-cycle helper: issue the period's voucher on many entries.

        Every entry is locked up front, in id order, before the first
        number is allocated.  Each entry then runs in its own savepoint.
        Entries already billed for the period are skipped; other failures
        are collected per entry.
        ScopeUnavailableError and ConcurrencyConflictError abort the whole
        batch so the caller can fail or retry it as one unit.
        """
        validate_period(month, year)
        entry_ids = list(entry_ids)
        # Entry locks first, then the voucher counter.
        self._engine.lock_entries(entry_ids)
        issued: list[Voucher] = []
        skipped: list[UUID] = []
        errors: list[EntryFailure] = []

        for entry_id in entry_ids:
            savepoint = self.session.begin_nested()
            try:
                issued.append(self.issue_voucher(entry_id, month, year, issuer_id))
                savepoint.commit()
            except DuplicateVoucherError:
                savepoint.rollback()
                skipped.append(entry_id)
            except (ScopeUnavailableError, ConcurrencyConflictError):
                savepoint.rollback()
                raise
            except FeeLedgerError as exc:
                savepoint.rollback()
                errors.append(EntryFailure(entry_id, exc.code, str(exc)))

        logger.info(
            "vouchers_issued_for_period",
            extra={
                "month": month,
                "year": year,
                "issued_count": len(issued),
                "skipped_count": len(skipped),
                "error_count": len(errors),
            },
        )
        return VoucherBatchResult(
            issued=tuple(issued), skipped=tuple(skipped), errors=tuple(errors)
        )
