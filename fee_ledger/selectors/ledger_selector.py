"""
Module: fee_ledger.selectors.ledger_selector
Responsibility: Read-only projections over ledger entries, receipts,
    vouchers and suspense rows: outstanding balances, a student's ledger,
    receipts per entry and vouchers per billing period.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Balances are read from the recomputed ledger fields.  Nothing here
      re-derives or writes them.
    - Every result is a frozen DTO.

Failure modes:
    - Returns empty results and a zero total when nothing matches.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from fee_ledger.db.types import ZERO
from fee_ledger.models.ledger import StudentFee, Voucher
from fee_ledger.models.receipt import Receipt
from fee_ledger.models.suspense import SuspenseEntry, SuspenseStatus
from fee_ledger.selectors.base import BaseSelector


@dataclass(frozen=True)
class VoucherDTO:
    id: UUID
    ledger_entry_id: UUID
    voucher_number: str
    month: int
    year: int
    status: str
    issued_at: datetime


@dataclass(frozen=True)
class LedgerEntryDTO:
    """One ledger entry with its fee head name and vouchers."""

    id: UUID
    institution_id: UUID
    student_id: UUID
    academic_year: str
    fee_head_id: UUID
    fee_head_name: str
    fee_head_priority: int | None
    base_amount: Decimal
    discount_amount: Decimal
    discount_type: str
    final_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: str
    due_date: date | None
    last_payment_at: datetime | None
    is_active: bool
    version: int
    vouchers: tuple[VoucherDTO, ...]


@dataclass(frozen=True)
class ReceiptDTO:
    id: UUID
    receipt_number: str
    ledger_entry_id: UUID
    student_id: UUID
    amount: Decimal
    method: str
    paid_at: datetime
    status: str
    voucher_number: str | None
    reference: str | None


@dataclass(frozen=True)
class SuspenseDTO:
    id: UUID
    amount: Decimal
    method: str
    received_at: datetime
    transaction_ref: str | None
    status: str
    reconciled_entry_id: UUID | None
    parent_id: UUID | None


@dataclass(frozen=True)
class OutstandingSummary:
    """Unpaid active entries and their total remaining balance."""

    entries: tuple[LedgerEntryDTO, ...]
    total_outstanding: Decimal
    count: int


def _voucher_dto(voucher: Voucher) -> VoucherDTO:
    return VoucherDTO(
        id=voucher.id,
        ledger_entry_id=voucher.ledger_entry_id,
        voucher_number=voucher.voucher_number,
        month=voucher.month,
        year=voucher.year,
        status=voucher.status,
        issued_at=voucher.issued_at,
    )


def _entry_dto(entry: StudentFee) -> LedgerEntryDTO:
    return LedgerEntryDTO(
        id=entry.id,
        institution_id=entry.institution_id,
        student_id=entry.student_id,
        academic_year=entry.academic_year,
        fee_head_id=entry.fee_head_id,
        fee_head_name=entry.fee_head.name,
        fee_head_priority=entry.fee_head.priority,
        base_amount=entry.base_amount,
        discount_amount=entry.discount_amount,
        discount_type=entry.discount_type,
        final_amount=entry.final_amount,
        paid_amount=entry.paid_amount,
        remaining_amount=entry.remaining_amount,
        status=entry.status,
        due_date=entry.due_date,
        last_payment_at=entry.last_payment_at,
        is_active=entry.is_active,
        version=entry.version,
        vouchers=tuple(_voucher_dto(v) for v in entry.vouchers),
    )


class LedgerSelector(BaseSelector[StudentFee]):
    """
    Read path for fee ledger queries.

    Non-goals:
        - No report formatting or currency rendering.
    """

    def outstanding_balances(
        self,
        institution_id: UUID,
        student_id: UUID | None = None,
        academic_year: str | None = None,
    ) -> OutstandingSummary:
        """
        Active entries with remaining > 0, earliest due date first.
        Entries without a due date sort last.
        """
        stmt = (
            select(StudentFee)
            .where(StudentFee.institution_id == institution_id)
            .where(StudentFee.is_active.is_(True))
            .where(StudentFee.remaining_amount > 0)
        )
        if student_id is not None:
            stmt = stmt.where(StudentFee.student_id == student_id)
        if academic_year is not None:
            stmt = stmt.where(StudentFee.academic_year == academic_year)
        stmt = stmt.order_by(
            StudentFee.due_date.is_(None),
            StudentFee.due_date,
            StudentFee.created_at,
        )

        entries = tuple(
            _entry_dto(e) for e in self.session.execute(stmt).unique().scalars()
        )
        total = sum((e.remaining_amount for e in entries), ZERO)
        return OutstandingSummary(
            entries=entries, total_outstanding=total, count=len(entries)
        )

    def entries_for_student(
        self,
        student_id: UUID,
        include_inactive: bool = False,
    ) -> list[LedgerEntryDTO]:
        """A student's ledger, by academic year then fee head priority."""
        stmt = select(StudentFee).where(StudentFee.student_id == student_id)
        if not include_inactive:
            stmt = stmt.where(StudentFee.is_active.is_(True))
        entries = self.session.execute(stmt).unique().scalars().all()
        entries = sorted(
            entries,
            key=lambda e: (
                e.academic_year,
                e.fee_head.priority is None,
                e.fee_head.priority or 0,
            ),
        )
        return [_entry_dto(e) for e in entries]

    def receipts_for_entry(self, entry_id: UUID) -> list[ReceiptDTO]:
        """All receipts of an entry, refunded ones included, oldest first."""
        rows = self.session.execute(
            select(Receipt)
            .where(Receipt.ledger_entry_id == entry_id)
            .order_by(Receipt.paid_at, Receipt.sequence_value)
        ).scalars()
        return [
            ReceiptDTO(
                id=r.id,
                receipt_number=r.receipt_number,
                ledger_entry_id=r.ledger_entry_id,
                student_id=r.student_id,
                amount=r.amount,
                method=r.method,
                paid_at=r.paid_at,
                status=r.status,
                voucher_number=r.voucher_number,
                reference=r.reference,
            )
            for r in rows
        ]

    def vouchers_for_period(
        self,
        institution_id: UUID,
        month: int,
        year: int,
    ) -> list[VoucherDTO]:
        rows = self.session.execute(
            select(Voucher)
            .where(Voucher.institution_id == institution_id)
            .where(Voucher.month == month)
            .where(Voucher.year == year)
            .order_by(Voucher.sequence_value)
        ).scalars()
        return [_voucher_dto(v) for v in rows]

    def suspense_entries(
        self,
        institution_id: UUID,
        status: SuspenseStatus | str | None = SuspenseStatus.UNIDENTIFIED,
    ) -> list[SuspenseDTO]:
        """Suspense rows in ``status``; pass None for every status."""
        stmt = select(SuspenseEntry).where(SuspenseEntry.institution_id == institution_id)
        if status is not None:
            stmt = stmt.where(SuspenseEntry.status == SuspenseStatus(status).value)
        stmt = stmt.order_by(SuspenseEntry.received_at)
        return [
            SuspenseDTO(
                id=s.id,
                amount=s.amount,
                method=s.method,
                received_at=s.received_at,
                transaction_ref=s.transaction_ref,
                status=s.status,
                reconciled_entry_id=s.reconciled_entry_id,
                parent_id=s.parent_id,
            )
            for s in self.session.execute(stmt).scalars()
        ]
