"""
Unit tests for the fee matrix value types.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fee_ledger.domain.matrix import (
    CellError,
    ClassInfo,
    FeeHeadInfo,
    FeeMatrix,
    MatrixCell,
    MatrixSaveResult,
)


@pytest.fixture
def grid():
    grade1 = ClassInfo(id=uuid4(), name="Grade 1", level=1)
    grade2 = ClassInfo(id=uuid4(), name="Grade 2", level=2)
    tuition = FeeHeadInfo(id=uuid4(), name="Tuition Fee", priority=1, frequency_type="monthly")
    exam = FeeHeadInfo(id=uuid4(), name="Exam Fee", priority=2, frequency_type="one_time")
    matrix = FeeMatrix(
        institution_id=uuid4(),
        academic_year="2024-2025",
        classes=(grade1, grade2),
        fee_heads=(tuition, exam),
        amounts={
            grade1.id: {tuition.id: Decimal("1000.00"), exam.id: Decimal("200.00")},
            grade2.id: {tuition.id: Decimal("1200.00")},
        },
    )
    return matrix, grade1, grade2, tuition, exam


class TestFeeMatrix:
    def test_amount_lookup(self, grid):
        matrix, grade1, _, tuition, _ = grid
        assert matrix.amount(grade1.id, tuition.id) == Decimal("1000.00")

    def test_missing_cell_is_zero(self, grid):
        matrix, _, grade2, _, exam = grid
        assert matrix.amount(grade2.id, exam.id) == Decimal("0.00")

    def test_unknown_class_is_zero(self, grid):
        matrix, _, _, tuition, _ = grid
        assert matrix.amount(uuid4(), tuition.id) == Decimal("0.00")

    def test_cells_are_dense_and_ordered(self, grid):
        matrix, grade1, grade2, tuition, exam = grid
        cells = list(matrix.cells())
        assert [(c.class_id, c.fee_head_id) for c in cells] == [
            (grade1.id, tuition.id),
            (grade1.id, exam.id),
            (grade2.id, tuition.id),
            (grade2.id, exam.id),
        ]
        assert cells[3].amount == Decimal("0.00")

    def test_amounts_are_read_only(self, grid):
        matrix, grade1, _, tuition, _ = grid
        with pytest.raises(TypeError):
            matrix.amounts[grade1.id][tuition.id] = Decimal("1")

    def test_with_amount_returns_copy(self, grid):
        matrix, _, grade2, _, exam = grid
        edited = matrix.with_amount(grade2.id, exam.id, Decimal("250.00"))
        assert edited.amount(grade2.id, exam.id) == Decimal("250.00")
        assert matrix.amount(grade2.id, exam.id) == Decimal("0.00")

    def test_row_total(self, grid):
        matrix, grade1, _, _, _ = grid
        assert matrix.row_total(grade1.id) == Decimal("1200.00")


class TestMatrixSaveResult:
    def test_ok_without_errors(self):
        assert MatrixSaveResult(created=2, skipped=1).ok

    def test_not_ok_with_errors(self):
        error = CellError(uuid4(), uuid4(), "INVALID_AMOUNT", "bad")
        assert not MatrixSaveResult(errors=(error,)).ok

    def test_cell_is_frozen(self):
        cell = MatrixCell(uuid4(), uuid4(), Decimal("1"))
        with pytest.raises(AttributeError):
            cell.amount = Decimal("2")
