"""
Module: fee_ledger.db.types
Responsibility: Money helpers shared by models, domain math and services.
    Column types come from Base.type_annotation_map in db/base.py.
Architecture position: Kernel > DB.  May be imported by every other kernel
    layer.  MUST NOT import from any of them.

Invariants enforced:
    - MONEY_DECIMAL_PLACES is the ledger precision.  round_money() is the
      only sanctioned rounding function and always rounds half-up.
    - No floats.  to_money() refuses float input outright.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the ledger precision.

    Args:
        value: Decimal amount.
        decimal_places: Number of decimal places to keep.
        rounding: Decimal rounding mode.

    Returns:
        The quantized Decimal.
    """
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Coerce caller input to a rounded Decimal amount.

    Raises:
        TypeError: If value is a float (or bool).
        ValueError: If value is not a number.
    """
    if isinstance(value, (float, bool)):
        raise TypeError(
            f"Monetary amounts must be Decimal, int or str, got {type(value).__name__}"
        )
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return round_money(amount)
