"""
PaymentApplicator -- applies payments to ledger entries and issues receipts.

Responsibility:
    Records a payment against one ledger entry: increments paid_amount,
    re-derives remaining and status, and creates a receipt whose number
    comes from the (institution, "RCP", year) scope.  Reverses a receipt by
    the mirror-image steps.

Architecture position:
    Kernel > Services.  Depends on FeeLedgerEngine (lookups, clock) and
    IdentifierService (receipt numbers).

Invariants enforced:
    - paid_amount is changed by a single UPDATE ... SET paid_amount =
      paid_amount + :amount statement, never by read-modify-write in
      Python.  Concurrent payments on one entry therefore all land.
    - The increment and the overpayment check run inside one savepoint: a
      rejected payment leaves no trace, including its version bump.
    - remaining and status are recomputed from the post-increment value in
      the same transaction.
    - Every receipt number is allocated, never counted.
    - The entry row is locked before the receipt number is allocated, so
      the lock order is entry, then receipt counter.
    - A reversal decrements paid_amount only for a receipt from the
      entry's current billing cycle.

Failure modes:
    - InvalidAmountError: amount <= 0.
    - OverpaymentError: amount exceeds the remaining balance and
      overpayment is not allowed.
    - LedgerEntryNotFoundError / InactiveLedgerEntryError.
    - ReceiptNotFoundError / ReceiptAlreadyRefundedError on reversal.
    - ScopeUnavailableError from the receipt allocator (fatal).

Audit relevance:
    payment_applied and payment_reversed log at INFO with the receipt
    number, amount and resulting balance.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from fee_ledger.db.types import ZERO, to_money
from fee_ledger.domain import ledger_math
from fee_ledger.exceptions import (
    InactiveLedgerEntryError,
    InvalidAmountError,
    OverpaymentError,
    ReceiptAlreadyRefundedError,
    ReceiptNotFoundError,
)
from fee_ledger.logging_config import get_logger
from fee_ledger.models.ledger import StudentFee
from fee_ledger.models.receipt import PaymentMethod, Receipt, ReceiptStatus
from fee_ledger.services.base import BaseService
from fee_ledger.services.fee_ledger_engine import FeeLedgerEngine
from fee_ledger.services.identifier_service import IdentifierService

logger = get_logger("services.payments")


@dataclass(frozen=True)
class PaymentResult:
    entry: StudentFee
    receipt: Receipt


class PaymentApplicator(BaseService[Receipt]):
    """
    Applies and reverses payments.

    Contract:
        Flushes inside the caller's transaction.  A receipt number is only
        consumed when that transaction commits.

    Guarantees:
        - N concurrent payments on one entry raise paid_amount by their sum.
        - Receipt numbers are unique and increasing within a year.
    """

    def __init__(
        self,
        session: Session,
        ledger_engine: FeeLedgerEngine,
        identifiers: IdentifierService | None = None,
        allow_overpayment: bool = False,
    ):
        super().__init__(session)
        self._engine = ledger_engine
        self._identifiers = identifiers or IdentifierService(session)
        self._allow_overpayment = allow_overpayment

    def _increment_paid(self, entry_id: UUID, delta):
        return self.session.execute(
            update(StudentFee)
            .where(StudentFee.id == entry_id)
            .where(StudentFee.is_active.is_(True))
            .values(
                paid_amount=StudentFee.paid_amount + delta,
                version=StudentFee.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

    def _finish(self, entry: StudentFee, actor_id: UUID) -> StudentFee:
        """Recompute the reloaded entry and flush it."""
        state = ledger_math.recompute(entry.to_state(), self._engine.clock.today())
        entry.apply_state(state)
        entry.updated_by_id = actor_id
        with self._conflict_guard("StudentFee", entry.id):
            self.session.flush()
        return entry

    def apply_payment(
        self,
        entry_id: UUID,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        collector_id: UUID,
        paid_at: datetime | None = None,
        reference: str | None = None,
        bank_name: str | None = None,
        remarks: str | None = None,
        voucher_number: str | None = None,
    ) -> PaymentResult:
        """
        Apply a payment and issue its receipt.

        Args:
            entry_id: Ledger entry being paid.
            amount: Positive payment amount.
            method: Payment method.
            collector_id: User collecting the payment.
            paid_at: Payment time.  Defaults to now; its year selects the
                receipt number scope.
            reference: Cheque number or transaction id.
            voucher_number: Voucher being settled.  When None, the entry's
                issued voucher for paid_at's month and year is used, if any.

        Raises:
            InvalidAmountError, OverpaymentError, LedgerEntryNotFoundError,
            InactiveLedgerEntryError, ScopeUnavailableError.
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise InvalidAmountError("payment amount", amount, "must be positive")
        method = PaymentMethod(method)
        paid_at = paid_at or self._engine.clock.now()

        entry = None
        savepoint = self.session.begin_nested()
        try:
            with self._conflict_guard("StudentFee", entry_id):
                result = self._increment_paid(entry_id, amount)
            if result.rowcount == 0:
                entry = self._engine.get_entry(entry_id)
                raise InactiveLedgerEntryError(entry.id)

            entry = self._engine.get_entry(entry_id, for_update=True)
            if entry.paid_amount > entry.final_amount and not self._allow_overpayment:
                remaining = max(ZERO, entry.final_amount - (entry.paid_amount - amount))
                raise OverpaymentError(entry_id, amount, remaining)
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            if entry is not None:
                # The reloaded row still holds the rolled-back increment.
                self.session.expire(entry)
            raise

        entry.last_payment_at = paid_at
        self._finish(entry, collector_id)

        if voucher_number is None:
            voucher = entry.issued_voucher_for(paid_at.month, paid_at.year)
            voucher_number = voucher.voucher_number if voucher else None

        number, value = self._identifiers.next_receipt_number(
            entry.institution_id, paid_at.year
        )
        receipt = Receipt(
            receipt_number=number,
            sequence_value=value,
            institution_id=entry.institution_id,
            student_id=entry.student_id,
            ledger_entry_id=entry.id,
            amount=amount,
            method=method.value,
            paid_at=paid_at,
            status=ReceiptStatus.COMPLETED.value,
            voucher_number=voucher_number,
            billing_cycle=entry.billing_cycle,
            reference=reference,
            bank_name=bank_name,
            remarks=remarks,
            collected_by_id=collector_id,
            created_by_id=collector_id,
        )
        self.session.add(receipt)
        self.session.flush()

        logger.info(
            "payment_applied",
            extra={
                "entry_id": str(entry.id),
                "receipt_number": number,
                "amount": amount,
                "method": method.value,
                "paid_amount": entry.paid_amount,
                "remaining_amount": entry.remaining_amount,
                "status": entry.status,
            },
        )
        return PaymentResult(entry=entry, receipt=receipt)

    def reverse_payment(self, receipt_id: UUID, actor_id: UUID, reason: str) -> PaymentResult:
        """
        Refund a receipt and take its amount back off the entry.

        paid_amount is decremented atomically and clamped at zero, but only
        while the entry is still in the receipt's billing cycle.  A receipt
        collected before a discount change re-billed the entry is no longer
        part of paid_amount, so reversing it only flips its status.
        last_payment_at falls back to the latest completed receipt left.

        Raises:
            ReceiptNotFoundError, ReceiptAlreadyRefundedError.
        """
        receipt = self.session.get(Receipt, receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(receipt_id)

        # Status flip is the guard against a concurrent second reversal.
        flipped = self.session.execute(
            update(Receipt)
            .where(Receipt.id == receipt_id)
            .where(Receipt.status == ReceiptStatus.COMPLETED.value)
            .values(
                status=ReceiptStatus.REFUNDED.value,
                refunded_at=self._engine.clock.now(),
                refund_reason=reason,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount == 0:
            raise ReceiptAlreadyRefundedError(receipt.id, receipt.receipt_number)
        self.session.refresh(receipt)

        remaining_paid = StudentFee.paid_amount - receipt.amount
        adjusted = self.session.execute(
            update(StudentFee)
            .where(StudentFee.id == receipt.ledger_entry_id)
            .where(StudentFee.billing_cycle == receipt.billing_cycle)
            .values(
                paid_amount=case((remaining_paid < 0, 0), else_=remaining_paid),
                version=StudentFee.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

        entry = self._engine.get_entry(receipt.ledger_entry_id, for_update=True)
        entry.last_payment_at = self.session.execute(
            select(Receipt.paid_at)
            .where(Receipt.ledger_entry_id == entry.id)
            .where(Receipt.status == ReceiptStatus.COMPLETED.value)
            .order_by(Receipt.paid_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        self._finish(entry, actor_id)

        logger.info(
            "payment_reversed",
            extra={
                "entry_id": str(entry.id),
                "receipt_number": receipt.receipt_number,
                "amount": receipt.amount,
                "balance_adjusted": adjusted.rowcount > 0,
                "paid_amount": entry.paid_amount,
                "status": entry.status,
                "reason": reason,
            },
        )
        return PaymentResult(entry=entry, receipt=receipt)
