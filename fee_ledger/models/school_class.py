"""
Module: fee_ledger.models.school_class
Responsibility: Minimal class row used as the row axis of the fee matrix
    and as the academic context of a ledger entry.  Class CRUD belongs to
    the academic services outside this package.
"""

from uuid import UUID

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fee_ledger.db.base import TrackedBase


class SchoolClass(TrackedBase):
    __tablename__ = "school_classes"

    __table_args__ = (
        UniqueConstraint("institution_id", "name", name="uq_school_class_name"),
        Index("idx_school_class_institution", "institution_id", "is_active"),
    )

    institution_id: Mapped[UUID] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Ordering key for matrix rows (Nursery=0, Grade 1=1, ...)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SchoolClass {self.name} level={self.level}>"
