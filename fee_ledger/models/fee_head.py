"""
Module: fee_ledger.models.fee_head
Responsibility: ORM persistence for fee heads, the named billing categories
    (Tuition, Transport, ...) shared by every institution.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - priority is globally unique (uq_fee_head_priority).  NULL priorities
      (released by deactivated heads) do not collide.
    - Fee heads are soft-deleted via is_active and never physically removed,
      so historical ledger entries keep their head.

Failure modes:
    - IntegrityError on a duplicate priority, translated to
      DuplicatePriorityError by FeeHeadService.
"""

from enum import Enum

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fee_ledger.db.base import TrackedBase


class FrequencyType(str, Enum):
    MONTHLY = "monthly"
    ONE_TIME = "one_time"
    UNDEFINED = "undefined"


class AccountType(str, Enum):
    LIABILITIES = "liabilities"
    INCOME = "income"
    OTHER_INCOME = "other_income"


class FeeHead(TrackedBase):
    """
    Named billing category with a global display priority.

    Contract:
        A priority, once taken, stays taken until the holder is deactivated
        and its priority explicitly released.

    Guarantees:
        - priority unique across all heads, active or not.
        - gl_account is always populated (derived from priority if absent).
    """

    __tablename__ = "fee_heads"

    __table_args__ = (
        UniqueConstraint("priority", name="uq_fee_head_priority"),
        Index("idx_fee_head_active", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)

    frequency_type: Mapped[FrequencyType] = mapped_column(
        String(20),
        nullable=False,
        default=FrequencyType.UNDEFINED.value,
    )

    account_type: Mapped[AccountType] = mapped_column(
        String(20),
        nullable=False,
        default=AccountType.INCOME.value,
    )

    gl_account: Mapped[str] = mapped_column(String(50), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<FeeHead {self.name} priority={self.priority}>"
