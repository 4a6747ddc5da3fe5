"""
Tests for SuspenseService -- unidentified incoming payments.

Covers:
- record_unidentified(): validation and unique bank references
- reconcile(): full match, split when the amount exceeds the balance,
  rejected states
- cancel()
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from fee_ledger.exceptions import (
    DuplicateTransactionRefError,
    InvalidAmountError,
    SuspenseAlreadyReconciledError,
    SuspenseEntryNotFoundError,
)

RECEIVED_AT = datetime(2025, 1, 14, 11, 0, tzinfo=timezone.utc)


@pytest.fixture
def park(suspense_service, institution_id, test_actor_id):
    """Factory: park(amount, transaction_ref=...) -> SuspenseEntry."""

    def _park(amount: str, transaction_ref: str | None = "TRX-1001"):
        return suspense_service.record_unidentified(
            institution_id=institution_id,
            amount=amount,
            method="bank_transfer",
            received_at=RECEIVED_AT,
            actor_id=test_actor_id,
            transaction_ref=transaction_ref,
            bank_name="First Bank",
        )

    return _park


class TestRecordUnidentified:
    def test_record(self, park):
        row = park("400.00")
        assert row.status == "unidentified"
        assert row.amount == Decimal("400.00")
        assert row.method == "bank_transfer"
        assert row.parent_id is None

    def test_duplicate_reference(self, park):
        park("400.00", transaction_ref="TRX-1001")
        with pytest.raises(DuplicateTransactionRefError) as exc_info:
            park("400.00", transaction_ref="TRX-1001")
        assert exc_info.value.transaction_ref == "TRX-1001"

    def test_missing_references_do_not_collide(self, park):
        first = park("100.00", transaction_ref=None)
        second = park("100.00", transaction_ref=None)
        assert first.id != second.id

    def test_non_positive_amount(self, park):
        with pytest.raises(InvalidAmountError):
            park("0.00")


class TestReconcile:
    def test_full_match(self, park, create_entry, suspense_service, test_actor_id):
        row = park("400.00")
        entry = create_entry(base_amount="1000.00")

        result = suspense_service.reconcile(row.id, entry.id, test_actor_id)

        assert result.reconciled.id == row.id
        assert result.reconciled.status == "reconciled"
        assert result.reconciled.reconciled_entry_id == entry.id
        assert result.reconciled.reconciled_receipt_id == result.receipt.id
        assert result.remainder is None
        assert result.applied_amount == Decimal("400.00")
        assert result.receipt.reference == "TRX-1001"
        assert result.receipt.method == "bank_transfer"
        assert entry.paid_amount == Decimal("400.00")
        assert entry.status == "partial"

    def test_split_keeps_balance_in_suspense(self, park, create_entry, suspense_service, test_actor_id):
        row = park("1500.00")
        entry = create_entry(base_amount="1000.00")

        result = suspense_service.reconcile(row.id, entry.id, test_actor_id)

        assert result.applied_amount == Decimal("1000.00")
        assert result.reconciled.amount == Decimal("1000.00")
        assert result.reconciled.parent_id == row.id
        assert result.reconciled.status == "reconciled"
        assert result.remainder.id == row.id
        assert result.remainder.amount == Decimal("500.00")
        assert result.remainder.status == "unidentified"
        assert result.remainder.transaction_ref == "TRX-1001"
        assert entry.status == "paid"

    def test_remainder_can_be_reconciled_later(
        self, park, create_entry, create_fee_head, suspense_service, test_actor_id
    ):
        row = park("1500.00")
        tuition_entry = create_entry(base_amount="1000.00")
        exam = create_fee_head("Exam Fee", priority=2)
        exam_entry = create_entry(fee_head_id=exam.id, base_amount="500.00")

        suspense_service.reconcile(row.id, tuition_entry.id, test_actor_id)
        second = suspense_service.reconcile(row.id, exam_entry.id, test_actor_id)

        assert second.remainder is None
        assert second.reconciled.id == row.id
        assert exam_entry.status == "paid"

    def test_receipt_dated_when_money_arrived(
        self, park, create_entry, suspense_service, test_actor_id
    ):
        row = park("400.00")
        entry = create_entry()
        result = suspense_service.reconcile(row.id, entry.id, test_actor_id)
        assert result.receipt.paid_at.replace(tzinfo=None) == RECEIVED_AT.replace(tzinfo=None)

    def test_already_reconciled(self, park, create_entry, suspense_service, test_actor_id):
        row = park("400.00")
        entry = create_entry()
        suspense_service.reconcile(row.id, entry.id, test_actor_id)
        with pytest.raises(SuspenseAlreadyReconciledError):
            suspense_service.reconcile(row.id, entry.id, test_actor_id)

    def test_fully_paid_entry(self, park, create_entry, payment_applicator, suspense_service, test_actor_id):
        row = park("400.00")
        entry = create_entry(base_amount="100.00")
        payment_applicator.apply_payment(entry.id, "100.00", "cash", test_actor_id)
        with pytest.raises(InvalidAmountError):
            suspense_service.reconcile(row.id, entry.id, test_actor_id)
        assert row.status == "unidentified"

    def test_unknown_row(self, create_entry, suspense_service, test_actor_id):
        entry = create_entry()
        with pytest.raises(SuspenseEntryNotFoundError):
            suspense_service.reconcile(uuid4(), entry.id, test_actor_id)


class TestCancel:
    def test_cancel(self, park, suspense_service, test_actor_id):
        row = park("400.00")
        assert suspense_service.cancel(row.id, test_actor_id).status == "cancelled"

    def test_cancelled_row_cannot_be_reconciled(
        self, park, create_entry, suspense_service, test_actor_id
    ):
        row = park("400.00")
        entry = create_entry()
        suspense_service.cancel(row.id, test_actor_id)
        with pytest.raises(SuspenseAlreadyReconciledError):
            suspense_service.reconcile(row.id, entry.id, test_actor_id)
