"""
Module: fee_ledger.models.receipt
Responsibility: ORM persistence for payment receipts, one per payment
    transaction applied to a ledger entry.
Architecture position: Kernel > Models.  May import from db/ and sibling
    models only.

Invariants enforced:
    - receipt_number is globally unique and comes from the scoped allocator
      (RCP-{year}-{seq:06d}).  It is never derived by counting receipts.
    - amount > 0.
    - A receipt is never deleted.  Reversal flips status to refunded.
    - Reversing a receipt only changes the entry balance while the entry is
      still in the receipt's billing cycle.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fee_ledger.db.base import TrackedBase, UUIDString


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHEQUE = "cheque"
    BANK_TRANSFER = "bank_transfer"
    ONLINE = "online"
    CARD = "card"
    UPI = "upi"
    OTHER = "other"


class ReceiptStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"


class Receipt(TrackedBase):
    __tablename__ = "fee_receipts"

    __table_args__ = (
        UniqueConstraint("receipt_number", name="uq_receipt_number"),
        CheckConstraint("amount > 0", name="ck_receipt_amount"),
        Index("idx_receipt_entry", "ledger_entry_id", "status"),
        Index("idx_receipt_student", "institution_id", "student_id"),
    )

    receipt_number: Mapped[str] = mapped_column(String(40), nullable=False)

    sequence_value: Mapped[int] = mapped_column(nullable=False)

    institution_id: Mapped[UUID] = mapped_column(nullable=False)

    student_id: Mapped[UUID] = mapped_column(nullable=False)

    ledger_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("student_fees.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)

    paid_at: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[ReceiptStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ReceiptStatus.COMPLETED.value,
    )

    # Billing cycle of the entry when the payment was counted.
    billing_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    voucher_number: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # Cheque number or transaction id
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    remarks: Mapped[str | None] = mapped_column(String(500), nullable=True)

    collected_by_id: Mapped[UUID] = mapped_column(nullable=False)

    refunded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    refund_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Receipt {self.receipt_number} {self.amount} {self.status}>"
