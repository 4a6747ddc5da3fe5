"""
Fee matrix DTOs -- the class x fee-head amount grid.

Responsibility:
    Immutable value types exchanged with FeeMatrixResolver: the dense grid
    produced by build_matrix, the per-cell edits accepted by save_matrix,
    and the per-cell outcome report.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.

Invariants enforced:
    - Every (class, fee head) pair of a built matrix has an amount; cells
      with no configured structure hold 0.00.
    - Amount mappings are read-only views.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from uuid import UUID

from fee_ledger.db.types import ZERO


@dataclass(frozen=True)
class ClassInfo:
    id: UUID
    name: str
    level: int


@dataclass(frozen=True)
class FeeHeadInfo:
    """Read-only view of a fee head."""

    id: UUID
    name: str
    priority: int | None
    frequency_type: str
    account_type: str = "income"
    gl_account: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class MatrixCell:
    """One amount edit: the fee for fee_head_id in class_id."""

    class_id: UUID
    fee_head_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class FeeMatrix:
    """
    Dense fee grid for one institution and academic year.

    ``amounts[class_id][fee_head_id]`` is the configured fee.  Rows follow
    ``classes`` order, columns follow ``fee_heads`` order.
    """

    institution_id: UUID
    academic_year: str
    classes: tuple[ClassInfo, ...]
    fee_heads: tuple[FeeHeadInfo, ...]
    amounts: Mapping[UUID, Mapping[UUID, Decimal]]

    def __post_init__(self) -> None:
        frozen = {
            class_id: MappingProxyType(dict(row))
            for class_id, row in self.amounts.items()
        }
        object.__setattr__(self, "amounts", MappingProxyType(frozen))

    def amount(self, class_id: UUID, fee_head_id: UUID) -> Decimal:
        return self.amounts.get(class_id, {}).get(fee_head_id, ZERO)

    def cells(self) -> Iterator[MatrixCell]:
        for class_info in self.classes:
            for head in self.fee_heads:
                yield MatrixCell(
                    class_id=class_info.id,
                    fee_head_id=head.id,
                    amount=self.amount(class_info.id, head.id),
                )

    def with_amount(
        self, class_id: UUID, fee_head_id: UUID, amount: Decimal
    ) -> "FeeMatrix":
        """Copy of this matrix with one cell changed."""
        rows = {cid: dict(row) for cid, row in self.amounts.items()}
        rows.setdefault(class_id, {})[fee_head_id] = amount
        return FeeMatrix(
            institution_id=self.institution_id,
            academic_year=self.academic_year,
            classes=self.classes,
            fee_heads=self.fee_heads,
            amounts=rows,
        )

    def row_total(self, class_id: UUID) -> Decimal:
        return sum(self.amounts.get(class_id, {}).values(), ZERO)


@dataclass(frozen=True)
class CellError:
    class_id: UUID
    fee_head_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class MatrixSaveResult:
    """Per-cell outcome counts of save_matrix.  Errors never abort the batch."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: tuple[CellError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors
