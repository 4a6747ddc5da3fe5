"""ORM models for the fee ledger."""

from fee_ledger.models.fee_head import AccountType, FeeHead, FrequencyType
from fee_ledger.models.fee_structure import FeeStructure
from fee_ledger.models.ledger import StudentFee, Voucher, VoucherStatus
from fee_ledger.models.receipt import PaymentMethod, Receipt, ReceiptStatus
from fee_ledger.models.school_class import SchoolClass
from fee_ledger.models.suspense import SuspenseEntry, SuspenseStatus

__all__ = [
    "AccountType",
    "FeeHead",
    "FrequencyType",
    "FeeStructure",
    "StudentFee",
    "Voucher",
    "VoucherStatus",
    "PaymentMethod",
    "Receipt",
    "ReceiptStatus",
    "SchoolClass",
    "SuspenseEntry",
    "SuspenseStatus",
]
