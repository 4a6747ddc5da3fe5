"""
Module: fee_ledger.models.suspense
Responsibility: ORM persistence for unidentified incoming payments held in
    suspense until they are matched to a ledger entry.
Architecture position: Kernel > Models.  May import from db/ and sibling
    models only.

Invariants enforced:
    - transaction_ref is unique when present (uq_suspense_transaction_ref).
    - A reconciled row points at the ledger entry and receipt it produced.
    - Partial reconciliation splits the row: the parent keeps the unmatched
      balance, the child (parent_id set) records the matched portion.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fee_ledger.db.base import TrackedBase, UUIDString


class SuspenseStatus(str, Enum):
    UNIDENTIFIED = "unidentified"
    RECONCILED = "reconciled"
    CANCELLED = "cancelled"


class SuspenseEntry(TrackedBase):
    __tablename__ = "suspense_entries"

    __table_args__ = (
        UniqueConstraint("transaction_ref", name="uq_suspense_transaction_ref"),
        CheckConstraint("amount > 0", name="ck_suspense_amount"),
        Index("idx_suspense_status", "institution_id", "status"),
    )

    institution_id: Mapped[UUID] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    method: Mapped[str] = mapped_column(String(20), nullable=False)

    received_at: Mapped[datetime] = mapped_column(nullable=False)

    transaction_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    remarks: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[SuspenseStatus] = mapped_column(
        String(20),
        nullable=False,
        default=SuspenseStatus.UNIDENTIFIED.value,
    )

    reconciled_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("student_fees.id"),
        nullable=True,
    )

    reconciled_receipt_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("fee_receipts.id"),
        nullable=True,
    )

    reconciled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    reconciled_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("suspense_entries.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<SuspenseEntry {self.amount} {self.status}>"
