"""
Identifier formatting -- pure rendering of allocated sequence values.

Downstream reports parse these strings, so the formats are fixed:

    application number   "123"
    roll number          "42"
    receipt number       "RCP-2025-000123"
    voucher number       "VCH-2025-03-000007"

The allocator hands out integers; nothing here touches the store.
"""

RECEIPT_PREFIX = "RCP"
VOUCHER_PREFIX = "VCH"
SEQUENCE_WIDTH = 6


def _require_positive(value: int) -> None:
    if value < 1:
        raise ValueError(f"Sequence values start at 1, got {value}")


def format_application_number(value: int) -> str:
    _require_positive(value)
    return str(value)


def format_roll_number(value: int) -> str:
    _require_positive(value)
    return str(value)


def format_receipt_number(year: int, value: int, prefix: str = RECEIPT_PREFIX) -> str:
    """RCP-{year}-{seq:06d}"""
    _require_positive(value)
    return f"{prefix}-{year}-{value:0{SEQUENCE_WIDTH}d}"


def format_voucher_number(
    year: int,
    month: int,
    value: int,
    prefix: str = VOUCHER_PREFIX,
) -> str:
    """VCH-{year}-{month:02d}-{seq:06d}"""
    _require_positive(value)
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    return f"{prefix}-{year}-{month:02d}-{value:0{SEQUENCE_WIDTH}d}"


def gl_account_for_priority(priority: int) -> str:
    """Default GL account pair for a fee head: 401090{p-1}-101090{p-1}."""
    suffix = priority - 1
    return f"401090{suffix}-101090{suffix}"
