"""
FeeMatrixResolver -- class x fee-head amount grid over FeeStructure rows.

Responsibility:
    Builds the dense fee grid for an institution and academic year, saves
    edited grids cell by cell, and resolves the structures that seed ledger
    entries at enrollment.

Architecture position:
    Kernel > Services.  Depends on models only.  FeeLedgerEngine calls
    ``structures_for_class`` and ``resolve_structure``.

Invariants enforced:
    - A structure joins its fee head through fee_structures.fee_head_id.
      Names are never compared.
    - Every cell of a built matrix is present; unconfigured cells are 0.00.
    - Each saved cell is atomic (its own savepoint).  One failed cell is
      reported as a CellError and the rest of the batch continues.
    - A zero cell with no active structure is skipped, never created.

Failure modes:
    - FeeStructureNotFoundError from resolve_structure.
    - Per-cell errors (bad amount, unknown class, unknown or inactive fee
      head) are returned in MatrixSaveResult.errors, never raised.
    - ConcurrencyConflictError aborts save_matrix so the unit of work can
      retry it."""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fee_ledger.db.types import ZERO, to_money
from fee_ledger.domain.matrix import (
    CellError,
    ClassInfo,
    FeeMatrix,
    MatrixCell,
    MatrixSaveResult,
)
from fee_ledger.exceptions import (
    ConcurrencyConflictError,
    FeeHeadInactiveError,
    FeeHeadNotFoundError,
    FeeLedgerError,
    FeeStructureNotFoundError,
    InvalidAmountError,
    SchoolClassNotFoundError,
)
from fee_ledger.logging_config import get_logger
from fee_ledger.models.fee_head import FeeHead
from fee_ledger.models.fee_structure import FeeStructure
from fee_ledger.models.school_class import SchoolClass
from fee_ledger.services.base import BaseService
from fee_ledger.services.fee_head_service import to_fee_head_info

logger = get_logger("services.fee_matrix")

_CREATED = "created"
_UPDATED = "updated"
_SKIPPED = "skipped"


class FeeMatrixResolver(BaseService[FeeStructure]):
    """
    Reads and writes the fee structure grid.

    Contract:
        build_matrix never writes.  save_matrix never raises for a bad cell.

    Non-goals:
        - Existing ledger entries are not touched when a structure changes.
    """

    def _active_structures(self, institution_id: UUID, academic_year: str):
        return (
            select(FeeStructure)
            .where(FeeStructure.institution_id == institution_id)
            .where(FeeStructure.academic_year == academic_year)
            .where(FeeStructure.is_active.is_(True))
        )

    def build_matrix(self, institution_id: UUID, academic_year: str) -> FeeMatrix:
        """
        Dense grid: active classes of the institution x active fee heads.

        Returns:
            FeeMatrix with classes ordered by (level, name) and fee heads by
            priority.  Cells default to 0.00 and carry the active structure
            amount where one exists.
        """
        classes = self.session.execute(
            select(SchoolClass)
            .where(SchoolClass.institution_id == institution_id)
            .where(SchoolClass.is_active.is_(True))
            .order_by(SchoolClass.level, SchoolClass.name)
        ).scalars().all()

        heads = self.session.execute(
            select(FeeHead)
            .where(FeeHead.is_active.is_(True))
            .order_by(FeeHead.priority)
        ).scalars().all()

        amounts: dict[UUID, dict[UUID, Decimal]] = {
            c.id: {h.id: ZERO for h in heads} for c in classes
        }
        for structure in self.session.execute(
            self._active_structures(institution_id, academic_year)
        ).scalars():
            row = amounts.get(structure.class_id)
            if row is not None and structure.fee_head_id in row:
                row[structure.fee_head_id] = structure.amount

        return FeeMatrix(
            institution_id=institution_id,
            academic_year=academic_year,
            classes=tuple(ClassInfo(id=c.id, name=c.name, level=c.level) for c in classes),
            fee_heads=tuple(to_fee_head_info(h) for h in heads),
            amounts=amounts,
        )

    def save_matrix(
        self,
        matrix: FeeMatrix | Iterable[MatrixCell],
        actor_id: UUID,
        institution_id: UUID | None = None,
        academic_year: str | None = None,
    ) -> MatrixSaveResult:
        """
        Upsert every cell of ``matrix``.

        Args:
            matrix: A FeeMatrix (its institution and year are used) or an
                iterable of MatrixCell edits.
            actor_id: Editing user.
            institution_id: Required when passing bare cells.
            academic_year: Required when passing bare cells.

        Returns:
            MatrixSaveResult with created/updated/skipped counts and one
            CellError per rejected cell.
        """
        if isinstance(matrix, FeeMatrix):
            institution_id = matrix.institution_id
            academic_year = matrix.academic_year
            cells = list(matrix.cells())
        else:
            cells = list(matrix)
        if institution_id is None or academic_year is None:
            raise ValueError("institution_id and academic_year are required for bare cells")

        counts = {_CREATED: 0, _UPDATED: 0, _SKIPPED: 0}
        errors: list[CellError] = []

        for cell in cells:
            savepoint = self.session.begin_nested()
            try:
                outcome = self._save_cell(cell, institution_id, academic_year, actor_id)
                savepoint.commit()
            except ConcurrencyConflictError:
                savepoint.rollback()
                raise
            except FeeLedgerError as exc:
                savepoint.rollback()
                errors.append(
                    CellError(
                        class_id=cell.class_id,
                        fee_head_id=cell.fee_head_id,
                        code=exc.code,
                        message=str(exc),
                    )
                )
                continue
            counts[outcome] += 1

        result = MatrixSaveResult(
            created=counts[_CREATED],
            updated=counts[_UPDATED],
            skipped=counts[_SKIPPED],
            errors=tuple(errors),
        )
        log = logger.warning if errors else logger.info
        log(
            "fee_matrix_saved",
            extra={
                "institution_id": str(institution_id),
                "academic_year": academic_year,
                "created_count": result.created,
                "updated_count": result.updated,
                "skipped_count": result.skipped,
                "error_count": len(errors),
            },
        )
        return result

    def _find_active(
        self,
        institution_id: UUID,
        academic_year: str,
        class_id: UUID,
        fee_head_id: UUID,
    ) -> FeeStructure | None:
        return self.session.execute(
            self._active_structures(institution_id, academic_year)
            .where(FeeStructure.class_id == class_id)
            .where(FeeStructure.fee_head_id == fee_head_id)
        ).scalar_one_or_none()

    def _save_cell(
        self,
        cell: MatrixCell,
        institution_id: UUID,
        academic_year: str,
        actor_id: UUID,
    ) -> str:
        try:
            amount = to_money(cell.amount)
        except (TypeError, ValueError) as exc:
            raise InvalidAmountError("amount", str(cell.amount), str(exc)) from exc
        if amount < ZERO:
            raise InvalidAmountError("amount", amount, "must not be negative")

        school_class = self.session.get(SchoolClass, cell.class_id)
        if school_class is None or school_class.institution_id != institution_id:
            raise SchoolClassNotFoundError(cell.class_id)

        head = self.session.get(FeeHead, cell.fee_head_id)
        if head is None:
            raise FeeHeadNotFoundError(cell.fee_head_id)
        if not head.is_active:
            raise FeeHeadInactiveError(head.id)

        existing = self._find_active(
            institution_id, academic_year, cell.class_id, cell.fee_head_id
        )
        if existing is None:
            if amount == ZERO:
                return _SKIPPED
            insert_point = self.session.begin_nested()
            try:
                self.session.add(
                    FeeStructure(
                        institution_id=institution_id,
                        academic_year=academic_year,
                        class_id=cell.class_id,
                        fee_head_id=cell.fee_head_id,
                        amount=amount,
                        is_active=True,
                        created_by_id=actor_id,
                    )
                )
                self.session.flush()
                insert_point.commit()
                return _CREATED
            except IntegrityError as exc:
                # Another writer created the structure first; update theirs.
                insert_point.rollback()
                logger.debug(
                    "fee_structure_insert_race",
                    extra={
                        "class_id": str(cell.class_id),
                        "fee_head_id": str(cell.fee_head_id),
                    },
                )
                existing = self._find_active(
                    institution_id, academic_year, cell.class_id, cell.fee_head_id
                )
                if existing is None:
                    raise ConcurrencyConflictError(
                        "FeeStructure", None, "active structure changed during insert"
                    ) from exc

        if existing.amount == amount:
            return _SKIPPED
        existing.amount = amount
        existing.updated_by_id = actor_id
        self.session.flush()
        return _UPDATED

    def structures_for_class(
        self,
        institution_id: UUID,
        academic_year: str,
        class_id: UUID,
    ) -> list[FeeStructure]:
        """Active structures of a class whose fee head is active, by priority."""
        return list(
            self.session.execute(
                self._active_structures(institution_id, academic_year)
                .join(FeeHead, FeeStructure.fee_head_id == FeeHead.id)
                .where(FeeStructure.class_id == class_id)
                .where(FeeHead.is_active.is_(True))
                .order_by(FeeHead.priority)
            ).scalars().unique()
        )

    def resolve_structure(
        self,
        institution_id: UUID,
        academic_year: str,
        class_id: UUID,
        fee_head_id: UUID,
    ) -> FeeStructure:
        """
        The active structure for one tuple.

        Raises:
            FeeStructureNotFoundError: No active structure matches.
        """
        structure = self._find_active(institution_id, academic_year, class_id, fee_head_id)
        if structure is None:
            raise FeeStructureNotFoundError(class_id, academic_year, fee_head_id)
        return structure
