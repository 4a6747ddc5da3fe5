"""
Tests for FeeMatrixResolver -- the class x fee-head grid.

Covers:
- build_matrix(): dense grid, ordering, inactive heads excluded
- save_matrix(): created / updated / skipped counts, per-cell errors that
  do not abort the batch, conflicts that do
- structures_for_class() and resolve_structure()
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fee_ledger.domain.matrix import MatrixCell
from fee_ledger.exceptions import ConcurrencyConflictError, FeeStructureNotFoundError


@pytest.fixture
def school(institution_id, create_school_class, create_fee_head, create_fee_structure):
    """Two classes, two heads, one configured structure."""
    grade2 = create_school_class(institution_id, "Grade 2", level=2)
    grade1 = create_school_class(institution_id, "Grade 1", level=1)
    exam = create_fee_head("Exam Fee", priority=2, frequency_type="one_time")
    tuition = create_fee_head("Tuition Fee", priority=1)
    create_fee_structure(institution_id, grade1.id, tuition.id, "1000.00")
    return grade1, grade2, tuition, exam


class TestBuildMatrix:
    def test_dense_grid(self, matrix_resolver, institution_id, academic_year, school):
        grade1, grade2, tuition, exam = school
        matrix = matrix_resolver.build_matrix(institution_id, academic_year)

        assert [c.name for c in matrix.classes] == ["Grade 1", "Grade 2"]
        assert [h.name for h in matrix.fee_heads] == ["Tuition Fee", "Exam Fee"]
        assert matrix.amount(grade1.id, tuition.id) == Decimal("1000.00")
        assert matrix.amount(grade1.id, exam.id) == Decimal("0.00")
        assert matrix.amount(grade2.id, tuition.id) == Decimal("0.00")
        assert len(list(matrix.cells())) == 4

    def test_other_year_is_empty(self, matrix_resolver, institution_id, school):
        grade1, _, tuition, _ = school
        matrix = matrix_resolver.build_matrix(institution_id, "2025-2026")
        assert matrix.amount(grade1.id, tuition.id) == Decimal("0.00")

    def test_inactive_head_excluded(
        self, matrix_resolver, fee_head_service, institution_id, academic_year, school, test_actor_id
    ):
        _, _, _, exam = school
        fee_head_service.deactivate_fee_head(exam.id, test_actor_id)
        matrix = matrix_resolver.build_matrix(institution_id, academic_year)
        assert [h.name for h in matrix.fee_heads] == ["Tuition Fee"]

    def test_other_institution_classes_excluded(self, matrix_resolver, academic_year, school):
        matrix = matrix_resolver.build_matrix(uuid4(), academic_year)
        assert matrix.classes == ()


class TestSaveMatrix:
    def test_counts(self, matrix_resolver, institution_id, academic_year, school, test_actor_id):
        grade1, grade2, tuition, exam = school
        matrix = matrix_resolver.build_matrix(institution_id, academic_year)
        matrix = matrix.with_amount(grade1.id, exam.id, Decimal("200.00"))
        matrix = matrix.with_amount(grade2.id, tuition.id, Decimal("1200.00"))

        result = matrix_resolver.save_matrix(matrix, test_actor_id)

        assert (result.created, result.updated, result.skipped) == (2, 0, 2)
        assert result.ok
        rebuilt = matrix_resolver.build_matrix(institution_id, academic_year)
        assert rebuilt.amount(grade1.id, exam.id) == Decimal("200.00")
        assert rebuilt.amount(grade2.id, tuition.id) == Decimal("1200.00")

    def test_update_existing(self, matrix_resolver, institution_id, academic_year, school, test_actor_id):
        grade1, _, tuition, _ = school
        result = matrix_resolver.save_matrix(
            [MatrixCell(grade1.id, tuition.id, Decimal("1100.00"))],
            test_actor_id,
            institution_id=institution_id,
            academic_year=academic_year,
        )
        assert result.updated == 1
        structure = matrix_resolver.resolve_structure(
            institution_id, academic_year, grade1.id, tuition.id
        )
        assert structure.amount == Decimal("1100.00")

    def test_bad_cells_do_not_abort_batch(
        self, matrix_resolver, institution_id, academic_year, school, test_actor_id
    ):
        grade1, grade2, tuition, exam = school
        unknown_class = uuid4()
        result = matrix_resolver.save_matrix(
            [
                MatrixCell(grade1.id, exam.id, Decimal("-5")),
                MatrixCell(unknown_class, tuition.id, Decimal("100")),
                MatrixCell(grade2.id, exam.id, 150.0),
                MatrixCell(grade2.id, tuition.id, Decimal("900")),
            ],
            test_actor_id,
            institution_id=institution_id,
            academic_year=academic_year,
        )

        assert result.created == 1
        assert not result.ok
        codes = {(e.class_id, e.code) for e in result.errors}
        assert codes == {
            (grade1.id, "INVALID_AMOUNT"),
            (unknown_class, "SCHOOL_CLASS_NOT_FOUND"),
            (grade2.id, "INVALID_AMOUNT"),
        }

    def test_conflict_aborts_batch(
        self, monkeypatch, matrix_resolver, institution_id, academic_year, school, test_actor_id
    ):
        grade1, _, tuition, _ = school

        def conflicting_save(*args, **kwargs):
            raise ConcurrencyConflictError("FeeStructure", None, "active structure changed")

        monkeypatch.setattr(matrix_resolver, "_save_cell", conflicting_save)
        with pytest.raises(ConcurrencyConflictError):
            matrix_resolver.save_matrix(
                [MatrixCell(grade1.id, tuition.id, Decimal("1100.00"))],
                test_actor_id,
                institution_id=institution_id,
                academic_year=academic_year,
            )

    def test_inactive_head_cell_rejected(
        self, matrix_resolver, fee_head_service, institution_id, academic_year, school, test_actor_id
    ):
        grade1, _, _, exam = school
        fee_head_service.deactivate_fee_head(exam.id, test_actor_id)
        result = matrix_resolver.save_matrix(
            [MatrixCell(grade1.id, exam.id, Decimal("50"))],
            test_actor_id,
            institution_id=institution_id,
            academic_year=academic_year,
        )
        assert result.errors[0].code == "FEE_HEAD_INACTIVE"

    def test_bare_cells_need_scope(self, matrix_resolver, test_actor_id):
        with pytest.raises(ValueError):
            matrix_resolver.save_matrix([], test_actor_id)

    def test_errors_logged_as_warning(
        self, matrix_resolver, institution_id, academic_year, school, test_actor_id, captured_logs
    ):
        grade1, _, tuition, _ = school
        matrix_resolver.save_matrix(
            [MatrixCell(grade1.id, tuition.id, Decimal("-1"))],
            test_actor_id,
            institution_id=institution_id,
            academic_year=academic_year,
        )
        record = [r for r in captured_logs() if r["message"] == "fee_matrix_saved"][-1]
        assert record["level"] == "WARNING"
        assert record["error_count"] == 1


class TestStructureLookup:
    def test_structures_for_class_by_priority(
        self, matrix_resolver, create_fee_structure, institution_id, academic_year, school
    ):
        grade1, _, tuition, exam = school
        create_fee_structure(institution_id, grade1.id, exam.id, "300.00")
        structures = matrix_resolver.structures_for_class(institution_id, academic_year, grade1.id)
        assert [s.fee_head_id for s in structures] == [tuition.id, exam.id]

    def test_resolve_missing_structure(self, matrix_resolver, institution_id, academic_year, school):
        _, grade2, tuition, _ = school
        with pytest.raises(FeeStructureNotFoundError):
            matrix_resolver.resolve_structure(institution_id, academic_year, grade2.id, tuition.id)
