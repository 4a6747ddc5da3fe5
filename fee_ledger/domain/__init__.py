"""Pure domain core: ledger math, identifier formats, matrix DTOs, clock."""

from fee_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from fee_ledger.domain.identifiers import (
    format_application_number,
    format_receipt_number,
    format_roll_number,
    format_voucher_number,
)
from fee_ledger.domain.ledger_math import (
    DiscountType,
    LedgerState,
    LedgerStatus,
    compute_discount,
    compute_final_amount,
    derive_status,
    recompute,
)
from fee_ledger.domain.matrix import (
    CellError,
    ClassInfo,
    FeeHeadInfo,
    FeeMatrix,
    MatrixCell,
    MatrixSaveResult,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "format_application_number",
    "format_roll_number",
    "format_receipt_number",
    "format_voucher_number",
    "DiscountType",
    "LedgerState",
    "LedgerStatus",
    "compute_discount",
    "compute_final_amount",
    "derive_status",
    "recompute",
    "CellError",
    "ClassInfo",
    "FeeHeadInfo",
    "FeeMatrix",
    "MatrixCell",
    "MatrixSaveResult",
]
