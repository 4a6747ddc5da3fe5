"""
fee_services -- composition layer over the fee ledger kernel.

Owns transaction boundaries (commit, rollback, bounded retry on
ConcurrencyConflictError) and builds the kernel services from a
LedgerConfig.
"""

from fee_services.ledger_orchestrator import LedgerOrchestrator
from fee_services.unit_of_work import run_in_transaction

__all__ = ["LedgerOrchestrator", "run_in_transaction"]
