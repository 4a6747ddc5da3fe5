"""Selectors for the fee ledger (read side)."""

from fee_ledger.selectors.ledger_selector import (
    LedgerEntryDTO,
    LedgerSelector,
    OutstandingSummary,
    ReceiptDTO,
    SuspenseDTO,
    VoucherDTO,
)

__all__ = [
    "LedgerEntryDTO",
    "LedgerSelector",
    "OutstandingSummary",
    "ReceiptDTO",
    "SuspenseDTO",
    "VoucherDTO",
]
