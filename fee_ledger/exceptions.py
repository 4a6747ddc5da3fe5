"""
Typed Exception Hierarchy for the Fee Ledger.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from FeeLedgerError:

    FeeLedgerError (base)
    |
    +-- NotFoundError
    |   +-- LedgerEntryNotFoundError
    |   +-- FeeHeadNotFoundError
    |   +-- FeeStructureNotFoundError
    |   +-- SchoolClassNotFoundError
    |   +-- ReceiptNotFoundError
    |   +-- VoucherNotFoundError
    |   +-- SuspenseEntryNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   |   +-- InvalidDiscountError
    |   |   +-- OverpaymentError
    |   +-- InvalidPeriodError
    |   +-- DuplicatePriorityError
    |   +-- DuplicateVoucherError
    |   +-- DuplicateLedgerEntryError
    |   +-- DuplicateTransactionRefError
    |
    +-- StateError
    |   +-- InactiveLedgerEntryError
    |   +-- FeeHeadInactiveError
    |   +-- ReceiptAlreadyRefundedError
    |   +-- VoucherAlreadyCancelledError
    |   +-- SuspenseAlreadyReconciledError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ScopeUnavailableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|------------------------------------
Not found    | LEDGER_ENTRY_NOT_FOUND        | Ledger entry ID doesn't exist
             | FEE_HEAD_NOT_FOUND            | Fee head ID doesn't exist
             | FEE_STRUCTURE_NOT_FOUND       | No active structure for the tuple
             | SCHOOL_CLASS_NOT_FOUND        | Class ID doesn't exist
             | RECEIPT_NOT_FOUND             | Receipt ID doesn't exist
             | VOUCHER_NOT_FOUND             | Voucher ID doesn't exist
             | SUSPENSE_ENTRY_NOT_FOUND      | Suspense entry ID doesn't exist
-------------|-------------------------------|------------------------------------
Validation   | INVALID_AMOUNT                | Negative/zero where positive needed
             | INVALID_DISCOUNT              | Negative discount, percent > 100
             | OVERPAYMENT                   | Payment exceeds remaining balance
             | INVALID_PERIOD                | Month outside 1..12, bad year
             | DUPLICATE_PRIORITY            | Fee head priority already held
             | DUPLICATE_VOUCHER             | Period already billed on entry
             | DUPLICATE_LEDGER_ENTRY        | Active entry already exists
             | DUPLICATE_TRANSACTION_REF     | Suspense bank reference reused
-------------|-------------------------------|------------------------------------
State        | INACTIVE_LEDGER_ENTRY         | Mutating a deactivated entry
             | FEE_HEAD_INACTIVE             | Billing against inactive head
             | RECEIPT_ALREADY_REFUNDED      | Reversing a refunded receipt
             | VOUCHER_ALREADY_CANCELLED     | Cancelling a cancelled voucher
             | SUSPENSE_ALREADY_RECONCILED   | Reconciling a closed suspense row
-------------|-------------------------------|------------------------------------
Concurrency  | CONCURRENCY_CONFLICT          | Lost update detected (retryable)
-------------|-------------------------------|------------------------------------
Store        | SCOPE_UNAVAILABLE             | Counter store unreachable (fatal)

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Validation errors go straight back to the caller with the offending
   values attached as attributes:

    except DuplicateVoucherError as e:
        return {"error": e.code, "month": e.month, "year": e.year}

2. ConcurrencyConflictError is retried by fee_services.run_in_transaction
   a bounded number of times before it reaches the caller.

3. ScopeUnavailableError aborts the whole identifier-dependent operation.
   It is never retried and never replaced by a row-counting fallback.
"""

from decimal import Decimal
from uuid import UUID


class FeeLedgerError(Exception):
    """
    Base exception for all fee ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FEE_LEDGER_ERROR"


# Not-found exceptions


class NotFoundError(FeeLedgerError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"

    entity_type: str = "entity"

    def __init__(self, entity_id: UUID | str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class LedgerEntryNotFoundError(NotFoundError):
    code: str = "LEDGER_ENTRY_NOT_FOUND"
    entity_type = "Ledger entry"


class FeeHeadNotFoundError(NotFoundError):
    code: str = "FEE_HEAD_NOT_FOUND"
    entity_type = "Fee head"


class SchoolClassNotFoundError(NotFoundError):
    code: str = "SCHOOL_CLASS_NOT_FOUND"
    entity_type = "Class"


class ReceiptNotFoundError(NotFoundError):
    code: str = "RECEIPT_NOT_FOUND"
    entity_type = "Receipt"


class VoucherNotFoundError(NotFoundError):
    code: str = "VOUCHER_NOT_FOUND"
    entity_type = "Voucher"


class SuspenseEntryNotFoundError(NotFoundError):
    code: str = "SUSPENSE_ENTRY_NOT_FOUND"
    entity_type = "Suspense entry"


class FeeStructureNotFoundError(NotFoundError):
    """No active fee structure matches the requested tuple."""

    code: str = "FEE_STRUCTURE_NOT_FOUND"
    entity_type = "Fee structure"

    def __init__(
        self,
        class_id: UUID,
        academic_year: str,
        fee_head_id: UUID | None = None,
    ):
        self.class_id = class_id
        self.academic_year = academic_year
        self.fee_head_id = fee_head_id
        self.entity_id = fee_head_id or class_id
        scope = f"class {class_id}, year {academic_year!r}"
        if fee_head_id is not None:
            scope += f", fee head {fee_head_id}"
        Exception.__init__(self, f"No active fee structure for {scope}")


# Validation exceptions


class ValidationError(FeeLedgerError):
    """Base exception for input the caller can correct."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Amount is negative, or zero where a positive amount is required."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: Decimal | int | str, reason: str):
        self.field = field
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid {field} {amount}: {reason}")


class InvalidDiscountError(InvalidAmountError):
    code: str = "INVALID_DISCOUNT"


class OverpaymentError(InvalidAmountError):
    """Payment amount exceeds the entry's remaining balance."""

    code: str = "OVERPAYMENT"

    def __init__(self, entry_id: UUID, amount: Decimal, remaining: Decimal):
        self.entry_id = entry_id
        self.remaining = remaining
        super().__init__(
            "payment amount",
            amount,
            f"exceeds remaining amount {remaining} on entry {entry_id}",
        )


class InvalidPeriodError(ValidationError):
    """Billing period is outside the accepted range."""

    code: str = "INVALID_PERIOD"

    def __init__(self, month: int, year: int, reason: str):
        self.month = month
        self.year = year
        self.reason = reason
        super().__init__(f"Invalid billing period {month}/{year}: {reason}")


class DuplicatePriorityError(ValidationError):
    """Fee head priority is already held by another fee head."""

    code: str = "DUPLICATE_PRIORITY"

    def __init__(
        self,
        priority: int,
        holder_id: UUID | None = None,
        holder_active: bool = True,
    ):
        self.priority = priority
        self.holder_id = holder_id
        self.holder_active = holder_active
        if holder_active:
            message = f"Priority {priority} is already used by another fee head"
        else:
            message = (
                f"Priority {priority} is held by inactive fee head {holder_id}; "
                "release its priority before reuse"
            )
        super().__init__(message)


class DuplicateVoucherError(ValidationError):
    """A voucher for this billing period already exists on the entry."""

    code: str = "DUPLICATE_VOUCHER"

    def __init__(self, entry_id: UUID, month: int, year: int):
        self.entry_id = entry_id
        self.month = month
        self.year = year
        super().__init__(
            f"Ledger entry {entry_id} already has a voucher for {month:02d}/{year}"
        )


class DuplicateLedgerEntryError(ValidationError):
    """An active ledger entry already exists for the student and fee head."""

    code: str = "DUPLICATE_LEDGER_ENTRY"

    def __init__(
        self,
        student_id: UUID,
        fee_head_id: UUID | None,
        academic_year: str,
        existing_id: UUID | None = None,
    ):
        self.student_id = student_id
        self.fee_head_id = fee_head_id
        self.academic_year = academic_year
        self.existing_id = existing_id
        super().__init__(
            f"Student {student_id} already has an active ledger entry for "
            f"fee head {fee_head_id} in {academic_year!r}"
        )


class DuplicateTransactionRefError(ValidationError):
    """A suspense entry with this bank transaction reference already exists."""

    code: str = "DUPLICATE_TRANSACTION_REF"

    def __init__(self, transaction_ref: str):
        self.transaction_ref = transaction_ref
        super().__init__(f"Transaction reference {transaction_ref!r} is already recorded")


# State exceptions


class StateError(FeeLedgerError):
    """Base exception for operations invalid in the entity's current state."""

    code: str = "STATE_ERROR"


class InactiveLedgerEntryError(StateError):
    code: str = "INACTIVE_LEDGER_ENTRY"

    def __init__(self, entry_id: UUID):
        self.entry_id = entry_id
        super().__init__(f"Ledger entry {entry_id} is not active")


class FeeHeadInactiveError(StateError):
    code: str = "FEE_HEAD_INACTIVE"

    def __init__(self, fee_head_id: UUID):
        self.fee_head_id = fee_head_id
        super().__init__(f"Fee head {fee_head_id} is not active")


class ReceiptAlreadyRefundedError(StateError):
    code: str = "RECEIPT_ALREADY_REFUNDED"

    def __init__(self, receipt_id: UUID, receipt_number: str):
        self.receipt_id = receipt_id
        self.receipt_number = receipt_number
        super().__init__(f"Receipt {receipt_number} is already refunded")


class VoucherAlreadyCancelledError(StateError):
    code: str = "VOUCHER_ALREADY_CANCELLED"

    def __init__(self, voucher_id: UUID, voucher_number: str):
        self.voucher_id = voucher_id
        self.voucher_number = voucher_number
        super().__init__(f"Voucher {voucher_number} is already cancelled")


class SuspenseAlreadyReconciledError(StateError):
    code: str = "SUSPENSE_ALREADY_RECONCILED"

    def __init__(self, suspense_id: UUID, status: str):
        self.suspense_id = suspense_id
        self.status = status
        super().__init__(
            f"Suspense entry {suspense_id} is {status}, not unidentified"
        )


# Concurrency exceptions


class ConcurrencyError(FeeLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    Lost update detected: the row changed between read and write.

    Retryable. fee_services retries the whole unit of work a bounded
    number of times before surfacing this to the caller.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: UUID | str | None, detail: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        message = f"Concurrent modification of {entity_type} {entity_id}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


# Store exceptions


class ScopeUnavailableError(FeeLedgerError):
    """
    Counter store could not be reached for an allocation.

    Fatal for the current operation. Callers must not fall back to
    counting existing rows.
    """

    code: str = "SCOPE_UNAVAILABLE"

    def __init__(self, scope: str, detail: str):
        self.scope = scope
        self.detail = detail
        super().__init__(f"Sequence scope {scope} unavailable: {detail}")
