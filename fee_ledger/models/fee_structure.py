"""
Module: fee_ledger.models.fee_structure
Responsibility: ORM persistence for the configured fee amount of one
    (institution, academic year, class, fee head) tuple.
Architecture position: Kernel > Models.  May import from db/ and sibling
    models only.

Invariants enforced:
    - At most one ACTIVE structure per tuple, enforced by the partial unique
      index uq_fee_structure_active.  Inactive history rows may repeat.
    - fee_head_id is the only link between a structure and its fee head.
      There is no name-based matching.
    - amount >= 0 (ck_fee_structure_amount).

Failure modes:
    - IntegrityError on a second active row for the tuple; FeeMatrixResolver
      retries the cell as an update.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_ledger.db.base import TrackedBase, UUIDString
from fee_ledger.models.fee_head import FeeHead
from fee_ledger.models.school_class import SchoolClass


class FeeStructure(TrackedBase):
    """
    Configured fee amount for a class and fee head in one academic year.

    Non-goals:
        Changing a structure does not touch ledger entries already created
        from it.
    """

    __tablename__ = "fee_structures"

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_fee_structure_amount"),
        Index(
            "uq_fee_structure_active",
            "institution_id",
            "academic_year",
            "class_id",
            "fee_head_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_fee_structure_lookup", "institution_id", "academic_year"),
    )

    institution_id: Mapped[UUID] = mapped_column(nullable=False)

    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)

    class_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("school_classes.id"),
        nullable=False,
    )

    fee_head_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fee_heads.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    fee_head: Mapped[FeeHead] = relationship(lazy="joined")

    school_class: Mapped[SchoolClass] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<FeeStructure {self.academic_year} class={self.class_id} "
            f"head={self.fee_head_id} amount={self.amount}>"
        )
