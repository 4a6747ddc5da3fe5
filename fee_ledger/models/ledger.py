"""
Module: fee_ledger.models.ledger
Responsibility: ORM persistence for student ledger entries (StudentFee) and
    the billing-period vouchers they own.
Architecture position: Kernel > Models.  May import from db/ and sibling
    models only.  All balance derivation lives in domain/ledger_math.py;
    the model never recomputes on save.

Invariants enforced:
    - final = max(0, base - discount), remaining = max(0, final - paid) and
      the status rule hold after every service mutation (FeeLedgerEngine and
      PaymentApplicator call ledger_math.recompute before flushing).
    - version is an optimistic concurrency column.  A stale ORM update raises
      StaleDataError, translated to ConcurrencyConflictError.
    - At most one ISSUED voucher per (entry, month, year), enforced by the
      partial unique index uq_voucher_entry_period.
    - voucher_number is globally unique.
    - Entries and vouchers are never hard-deleted.
    - billing_cycle starts at 1 and grows by one whenever a discount change
      resets paid_amount.  Receipts record the cycle they were counted in.

Failure modes:
    - IntegrityError on a duplicate voucher period, translated to
      DuplicateVoucherError by VoucherIssuer.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_ledger.db.base import Base, TrackedBase, UUIDString
from fee_ledger.domain.ledger_math import (
    DiscountType,
    LedgerState,
    LedgerStatus,
)
from fee_ledger.models.fee_head import FeeHead


class VoucherStatus(str, Enum):
    ISSUED = "issued"
    CANCELLED = "cancelled"


class StudentFee(TrackedBase):
    """
    One student's running balance for one fee head in one academic year.

    Contract:
        Amount fields are written only through the services, which always
        pass the state through ledger_math before flushing.

    Guarantees:
        - Amounts are Decimal(18, 2) and never negative.
        - vouchers are ordered by (year, month).
    """

    __tablename__ = "student_fees"

    __table_args__ = (
        CheckConstraint("base_amount >= 0", name="ck_student_fee_base"),
        CheckConstraint("final_amount >= 0", name="ck_student_fee_final"),
        CheckConstraint("paid_amount >= 0", name="ck_student_fee_paid"),
        CheckConstraint("remaining_amount >= 0", name="ck_student_fee_remaining"),
        Index(
            "idx_student_fee_student",
            "institution_id",
            "student_id",
            "academic_year",
        ),
        Index(
            "uq_student_fee_active_head",
            "student_id",
            "fee_head_id",
            "academic_year",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_student_fee_status", "institution_id", "status", "is_active"),
        Index("idx_student_fee_due", "due_date", "status"),
    )

    institution_id: Mapped[UUID] = mapped_column(nullable=False)

    student_id: Mapped[UUID] = mapped_column(nullable=False)

    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)

    class_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("school_classes.id"),
        nullable=True,
    )

    fee_head_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fee_heads.id"),
        nullable=False,
    )

    fee_structure_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("fee_structures.id"),
        nullable=True,
    )

    base_amount: Mapped[Decimal] = mapped_column(nullable=False)

    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    discount_type: Mapped[DiscountType] = mapped_column(
        String(20),
        nullable=False,
        default=DiscountType.FLAT.value,
    )

    discount_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    final_amount: Mapped[Decimal] = mapped_column(nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[LedgerStatus] = mapped_column(
        String(20),
        nullable=False,
        default=LedgerStatus.PENDING.value,
    )

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    last_payment_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Bumped each time a discount change re-bills the entry.
    billing_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    fee_head: Mapped[FeeHead] = relationship(lazy="joined", innerjoin=True)

    vouchers: Mapped[list["Voucher"]] = relationship(
        back_populates="ledger_entry",
        order_by="[Voucher.year, Voucher.month, Voucher.issued_at]",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_state(self) -> LedgerState:
        """Snapshot the numeric fields for ledger_math."""
        return LedgerState(
            base_amount=self.base_amount,
            discount_amount=self.discount_amount,
            discount_type=DiscountType(self.discount_type),
            final_amount=self.final_amount,
            paid_amount=self.paid_amount,
            remaining_amount=self.remaining_amount,
            status=LedgerStatus(self.status),
            due_date=self.due_date,
        )

    def apply_state(self, state: LedgerState) -> None:
        """Write a ledger_math result back onto the row."""
        self.base_amount = state.base_amount
        self.discount_amount = state.discount_amount
        self.discount_type = state.discount_type.value
        self.final_amount = state.final_amount
        self.paid_amount = state.paid_amount
        self.remaining_amount = state.remaining_amount
        self.status = state.status.value
        self.due_date = state.due_date

    def issued_voucher_for(self, month: int, year: int) -> "Voucher | None":
        for voucher in self.vouchers:
            if (
                voucher.month == month
                and voucher.year == year
                and voucher.status == VoucherStatus.ISSUED
            ):
                return voucher
        return None

    def __repr__(self) -> str:
        return (
            f"<StudentFee student={self.student_id} head={self.fee_head_id} "
            f"{self.status} remaining={self.remaining_amount}>"
        )


class Voucher(Base):
    """
    Billing-period demand notice for a ledger entry.

    Contract:
        Immutable once issued except for cancellation.  Owned by exactly one
        StudentFee.
    """

    __tablename__ = "fee_vouchers"

    __table_args__ = (
        UniqueConstraint("voucher_number", name="uq_voucher_number"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_voucher_month"),
        Index(
            "uq_voucher_entry_period",
            "ledger_entry_id",
            "month",
            "year",
            unique=True,
            postgresql_where=text("status = 'issued'"),
            sqlite_where=text("status = 'issued'"),
        ),
        Index("idx_voucher_period", "institution_id", "year", "month"),
    )

    ledger_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("student_fees.id"),
        nullable=False,
    )

    institution_id: Mapped[UUID] = mapped_column(nullable=False)

    month: Mapped[int] = mapped_column(Integer, nullable=False)

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    voucher_number: Mapped[str] = mapped_column(String(40), nullable=False)

    sequence_value: Mapped[int] = mapped_column(nullable=False)

    status: Mapped[VoucherStatus] = mapped_column(
        String(20),
        nullable=False,
        default=VoucherStatus.ISSUED.value,
    )

    issued_at: Mapped[datetime] = mapped_column(nullable=False)

    issued_by_id: Mapped[UUID] = mapped_column(nullable=False)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancelled_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    ledger_entry: Mapped[StudentFee] = relationship(back_populates="vouchers")

    def __repr__(self) -> str:
        return f"<Voucher {self.voucher_number} {self.status}>"
