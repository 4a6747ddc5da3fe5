"""
Suspense account for unidentified incoming payments.

Bank transfers and deposits that arrive without a recognisable student
are parked here.  Reconciliation moves the money onto a ledger entry
through PaymentApplicator, so a reconciled payment gets a normal receipt
with an allocated number.  When the suspense amount is larger than the
entry's remaining balance the row is split and the rest stays in
suspense.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fee_ledger.db.types import ZERO, to_money
from fee_ledger.exceptions import (
    DuplicateTransactionRefError,
    InvalidAmountError,
    SuspenseAlreadyReconciledError,
    SuspenseEntryNotFoundError,
)
from fee_ledger.logging_config import get_logger
from fee_ledger.models.receipt import PaymentMethod, Receipt
from fee_ledger.models.suspense import SuspenseEntry, SuspenseStatus
from fee_ledger.services.base import BaseService
from fee_ledger.services.fee_ledger_engine import FeeLedgerEngine
from fee_ledger.services.payment_applicator import PaymentApplicator

logger = get_logger("services.suspense")


@dataclass(frozen=True)
class ReconcileResult:
    """
    reconciled is the row now pointing at the receipt.  remainder is the
    row still in suspense after a split, or None when fully matched.
    """

    reconciled: SuspenseEntry
    receipt: Receipt
    remainder: SuspenseEntry | None
    applied_amount: Decimal


class SuspenseService(BaseService[SuspenseEntry]):
    def __init__(
        self,
        session: Session,
        ledger_engine: FeeLedgerEngine,
        payments: PaymentApplicator | None = None,
    ):
        super().__init__(session)
        self._engine = ledger_engine
        self._payments = payments or PaymentApplicator(session, ledger_engine)

    def _get_unidentified(self, suspense_id: UUID) -> SuspenseEntry:
        row = self.session.get(SuspenseEntry, suspense_id, with_for_update=True)
        if row is None:
            raise SuspenseEntryNotFoundError(suspense_id)
        if row.status != SuspenseStatus.UNIDENTIFIED:
            raise SuspenseAlreadyReconciledError(row.id, row.status)
        return row

    def record_unidentified(
        self,
        institution_id: UUID,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        received_at: datetime,
        actor_id: UUID,
        transaction_ref: str | None = None,
        bank_name: str | None = None,
        remarks: str | None = None,
    ) -> SuspenseEntry:
        """
        Park an incoming payment.

        Raises:
            InvalidAmountError: amount <= 0.
            DuplicateTransactionRefError: transaction_ref already recorded.
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise InvalidAmountError("suspense amount", amount, "must be positive")

        row = SuspenseEntry(
            institution_id=institution_id,
            amount=amount,
            method=PaymentMethod(method).value,
            received_at=received_at,
            transaction_ref=transaction_ref,
            bank_name=bank_name,
            remarks=remarks,
            status=SuspenseStatus.UNIDENTIFIED.value,
            created_by_id=actor_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateTransactionRefError(transaction_ref) from exc

        logger.info(
            "suspense_recorded",
            extra={
                "suspense_id": str(row.id),
                "amount": amount,
                "transaction_ref": transaction_ref,
            },
        )
        return row

    def reconcile(
        self,
        suspense_id: UUID,
        entry_id: UUID,
        actor_id: UUID,
        remarks: str | None = None,
    ) -> ReconcileResult:
        """
        Apply a suspense amount to a ledger entry.

        The applied amount is min(suspense amount, entry remaining).  If it
        is the smaller of the two, the original row keeps the balance as
        unidentified and a child row records the matched portion.

        Raises:
            SuspenseEntryNotFoundError, SuspenseAlreadyReconciledError.
            InvalidAmountError: the entry has nothing left to pay.
            Anything PaymentApplicator.apply_payment raises.
        """
        row = self._get_unidentified(suspense_id)
        entry = self._engine.get_active_entry(entry_id, for_update=True)
        if entry.remaining_amount <= ZERO:
            raise InvalidAmountError(
                "suspense amount", row.amount, f"ledger entry {entry_id} is fully paid"
            )

        applied = min(row.amount, entry.remaining_amount)
        payment = self._payments.apply_payment(
            entry_id=entry.id,
            amount=applied,
            method=row.method,
            collector_id=actor_id,
            paid_at=row.received_at,
            reference=row.transaction_ref,
            bank_name=row.bank_name,
            remarks=remarks or row.remarks,
        )
        now = self._engine.clock.now()

        remainder = None
        if applied < row.amount:
            # The original row keeps the balance so its transaction_ref stays unique.
            matched = SuspenseEntry(
                institution_id=row.institution_id,
                amount=applied,
                method=row.method,
                received_at=row.received_at,
                bank_name=row.bank_name,
                remarks=remarks or row.remarks,
                parent_id=row.id,
                created_by_id=actor_id,
            )
            self.session.add(matched)
            row.amount = row.amount - applied
            row.updated_by_id = actor_id
            remainder = row
        else:
            matched = row

        matched.status = SuspenseStatus.RECONCILED.value
        matched.reconciled_entry_id = entry.id
        matched.reconciled_receipt_id = payment.receipt.id
        matched.reconciled_at = now
        matched.reconciled_by_id = actor_id
        matched.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "suspense_reconciled",
            extra={
                "suspense_id": str(suspense_id),
                "entry_id": str(entry.id),
                "receipt_number": payment.receipt.receipt_number,
                "applied_amount": applied,
                "split": remainder is not None,
            },
        )
        return ReconcileResult(
            reconciled=matched,
            receipt=payment.receipt,
            remainder=remainder,
            applied_amount=applied,
        )

    def cancel(self, suspense_id: UUID, actor_id: UUID) -> SuspenseEntry:
        """Write off an unidentified row, e.g. a payment returned to the bank."""
        row = self._get_unidentified(suspense_id)
        row.status = SuspenseStatus.CANCELLED.value
        row.updated_by_id = actor_id
        self.session.flush()
        logger.info("suspense_cancelled", extra={"suspense_id": str(row.id)})
        return row
