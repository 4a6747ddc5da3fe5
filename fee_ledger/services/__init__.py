"""Services for the fee ledger (write side)."""

from fee_ledger.services.fee_head_service import FeeHeadService, PriorityAvailability
from fee_ledger.services.fee_ledger_engine import DiscountSpec, FeeLedgerEngine
from fee_ledger.services.fee_matrix_resolver import FeeMatrixResolver
from fee_ledger.services.identifier_service import IdentifierService
from fee_ledger.services.payment_applicator import PaymentApplicator, PaymentResult
from fee_ledger.services.sequence_allocator import (
    ScopedCounter,
    ScopeKey,
    SequenceAllocator,
)
from fee_ledger.services.suspense_service import ReconcileResult, SuspenseService
from fee_ledger.services.voucher_issuer import (
    EntryFailure,
    VoucherBatchResult,
    VoucherCancellation,
    VoucherIssuer,
)

__all__ = [
    "DiscountSpec",
    "EntryFailure",
    "FeeHeadService",
    "FeeLedgerEngine",
    "FeeMatrixResolver",
    "IdentifierService",
    "PaymentApplicator",
    "PaymentResult",
    "PriorityAvailability",
    "ReconcileResult",
    "ScopeKey",
    "ScopedCounter",
    "SequenceAllocator",
    "SuspenseService",
    "VoucherBatchResult",
    "VoucherCancellation",
    "VoucherIssuer",
]
