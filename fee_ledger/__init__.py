"""
Fee Ledger - sequence numbering and student fee ledger core.

A multi-tenant fee ledger with:
- Atomic, scoped sequence allocation (application, roll, receipt, voucher numbers)
- Per-student, per-fee-head ledger entries with explicit recomputation
- Period-unique voucher issuance
- Lost-update-safe payment application
"""

__version__ = "0.1.0"
