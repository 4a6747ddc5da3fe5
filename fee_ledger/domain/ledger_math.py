"""
Ledger math -- pure balance and status derivation for ledger entries.

Responsibility:
    Computes discounts, final and remaining amounts, and the entry status
    from the raw ledger fields.  Every mutating service operation ends by
    passing the entry's state through ``recompute`` here, so the balance
    invariants are testable without a database.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Time arrives as the
    ``today`` argument, never from the system clock.

Invariants enforced:
    - final = max(0, base - discount), discount derived from discount_type.
    - remaining = max(0, final - paid).
    - status = paid iff remaining == 0; partial iff 0 < paid < final;
      otherwise pending.  Any unpaid status becomes overdue once today is
      past the due date.
    - All arithmetic is Decimal, rounded half-up to 2 places.

Failure modes:
    - InvalidAmountError for a negative base, paid or payment amount.
    - InvalidDiscountError for a negative discount or a percentage above 100.
"""

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum

from fee_ledger.db.types import ZERO, round_money
from fee_ledger.exceptions import InvalidAmountError, InvalidDiscountError

HUNDRED = Decimal("100")


class DiscountType(str, Enum):
    FLAT = "flat"
    PERCENTAGE = "percentage"


class LedgerStatus(str, Enum):
    """Ledger entry status.  Never stored independently of the amounts."""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class LedgerState:
    """
    Snapshot of the numeric fields of one ledger entry.

    Guarantees:
        States returned by this module always satisfy the balance
        invariants listed in the module docstring.
    """

    base_amount: Decimal
    discount_amount: Decimal
    discount_type: DiscountType
    final_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: LedgerStatus
    due_date: date | None = None


def _require_non_negative(field: str, value: Decimal) -> None:
    if value < 0:
        raise InvalidAmountError(field, value, "must not be negative")


def compute_discount(
    base_amount: Decimal,
    discount: Decimal,
    discount_type: DiscountType | str,
) -> Decimal:
    """
    Money value of a discount.

    A percentage discount is ``base * pct / 100`` rounded half-up.  A flat
    discount is returned as given (it may exceed the base; the final amount
    clamps at zero).
    """
    discount_type = DiscountType(discount_type)
    if discount < 0:
        raise InvalidDiscountError("discount", discount, "must not be negative")
    if discount_type is DiscountType.PERCENTAGE:
        if discount > HUNDRED:
            raise InvalidDiscountError(
                "discount", discount, "percentage must be between 0 and 100"
            )
        return round_money(base_amount * discount / HUNDRED)
    return round_money(discount)


def compute_final_amount(
    base_amount: Decimal,
    discount: Decimal,
    discount_type: DiscountType | str,
) -> Decimal:
    """final = max(0, base - discount value)."""
    _require_non_negative("base amount", base_amount)
    value = compute_discount(base_amount, discount, discount_type)
    return max(ZERO, round_money(base_amount - value))


def compute_remaining(final_amount: Decimal, paid_amount: Decimal) -> Decimal:
    return max(ZERO, round_money(final_amount - paid_amount))


def is_past_due(due_date: date | None, today: date) -> bool:
    return due_date is not None and today > due_date


def derive_status(
    final_amount: Decimal,
    paid_amount: Decimal,
    due_date: date | None,
    today: date,
) -> LedgerStatus:
    """
    Status derivation rule.

    Examples:
        final=1000, paid=0,    due tomorrow  -> pending
        final=1000, paid=400,  due tomorrow  -> partial
        final=1000, paid=1000               -> paid
        final=1000, paid=0,    due yesterday -> overdue
        final=0                              -> paid
    """
    if compute_remaining(final_amount, paid_amount) == ZERO:
        return LedgerStatus.PAID
    if is_past_due(due_date, today):
        return LedgerStatus.OVERDUE
    if paid_amount > ZERO:
        return LedgerStatus.PARTIAL
    return LedgerStatus.PENDING


def recompute(state: LedgerState, today: date) -> LedgerState:
    """
    Re-derive remaining amount and status from final, paid and due date.

    Idempotent: ``recompute(recompute(s, d), d) == recompute(s, d)``.
    """
    remaining = compute_remaining(state.final_amount, state.paid_amount)
    status = derive_status(
        state.final_amount, state.paid_amount, state.due_date, today
    )
    if remaining == state.remaining_amount and status == state.status:
        return state
    return replace(state, remaining_amount=remaining, status=status)


def new_state(
    base_amount: Decimal,
    discount: Decimal,
    discount_type: DiscountType | str,
    due_date: date | None,
    today: date,
) -> LedgerState:
    """Initial state of a freshly created entry: nothing paid."""
    discount_type = DiscountType(discount_type)
    final = compute_final_amount(base_amount, discount, discount_type)
    state = LedgerState(
        base_amount=round_money(base_amount),
        discount_amount=round_money(discount),
        discount_type=discount_type,
        final_amount=final,
        paid_amount=ZERO,
        remaining_amount=final,
        status=LedgerStatus.PENDING,
        due_date=due_date,
    )
    return recompute(state, today)


def apply_discount(
    state: LedgerState,
    discount: Decimal,
    discount_type: DiscountType | str,
    today: date,
) -> LedgerState:
    """
    Replace the discount and re-derive the entry.

    When the final amount changes the entry is re-billed: paid resets to
    zero.  Receipts stay on record; only the balance view restarts.
    """
    discount_type = DiscountType(discount_type)
    final = compute_final_amount(state.base_amount, discount, discount_type)
    paid = state.paid_amount if final == state.final_amount else ZERO
    updated = replace(
        state,
        discount_amount=round_money(discount),
        discount_type=discount_type,
        final_amount=final,
        paid_amount=paid,
        status=LedgerStatus.PENDING if paid == ZERO else state.status,
    )
    return recompute(updated, today)


def apply_payment(state: LedgerState, amount: Decimal, today: date) -> LedgerState:
    """paid += amount, then recompute."""
    if amount <= 0:
        raise InvalidAmountError("payment amount", amount, "must be positive")
    return recompute(
        replace(state, paid_amount=round_money(state.paid_amount + amount)),
        today,
    )


def reverse_payment(state: LedgerState, amount: Decimal, today: date) -> LedgerState:
    """paid -= amount, clamped at zero, then recompute."""
    if amount <= 0:
        raise InvalidAmountError("refund amount", amount, "must be positive")
    paid = max(ZERO, round_money(state.paid_amount - amount))
    return recompute(replace(state, paid_amount=paid), today)


def default_due_date(today: date, due_day: int) -> date:
    """
    ``due_day`` of the current month, or of the next month once that day
    has passed.
    """
    if not 1 <= due_day <= 28:
        raise ValueError(f"due_day must be between 1 and 28, got {due_day}")
    if today.day <= due_day:
        return today.replace(day=due_day)
    if today.month == 12:
        return date(today.year + 1, 1, due_day)
    return date(today.year, today.month + 1, due_day)


def check_invariants(state: LedgerState, today: date) -> list[str]:
    """Return a description of each violated balance invariant."""
    violations = []
    if state.final_amount < 0 or state.paid_amount < 0 or state.remaining_amount < 0:
        violations.append("negative amount")
    expected_remaining = compute_remaining(state.final_amount, state.paid_amount)
    if state.remaining_amount != expected_remaining:
        violations.append(
            f"remaining {state.remaining_amount} != {expected_remaining}"
        )
    expected_status = derive_status(
        state.final_amount, state.paid_amount, state.due_date, today
    )
    if state.status != expected_status:
        violations.append(f"status {state.status} != {expected_status}")
    return violations
