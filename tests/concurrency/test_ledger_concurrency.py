"""
Concurrent payments and voucher issuance on one ledger entry.

- 50 concurrent payments must all land: paid_amount equals their sum and
  every receipt number is distinct.
- Concurrent issuers of the same billing period produce exactly one
  voucher.

Run with: pytest tests/concurrency/test_ledger_concurrency.py -v
Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from fee_config.schema import LedgerConfig, LedgerSettings
from fee_ledger.exceptions import DuplicateVoucherError
from fee_ledger.services.fee_head_service import FeeHeadService
from fee_services import LedgerOrchestrator

pytestmark = pytest.mark.slow_locks


@pytest.fixture
def orchestrator(session_factory, deterministic_clock):
    config = LedgerConfig(
        ledger=LedgerSettings(max_conflict_retries=30, retry_backoff_seconds=0.01)
    )
    return LedgerOrchestrator(session_factory, config=config, clock=deterministic_clock)


@pytest.fixture
def shared_entry(session_factory, orchestrator, institution_id, student_id,
                 academic_year, future_due_date, test_actor_id):
    """A committed 5000.00 tuition entry."""
    session = session_factory()
    head = FeeHeadService(session).create_fee_head(
        name="Tuition Fee",
        priority=1,
        frequency_type="monthly",
        account_type="income",
        actor_id=test_actor_id,
    )
    session.commit()
    session.close()

    return orchestrator.create_entry(
        institution_id=institution_id,
        student_id=student_id,
        fee_head_id=head.id,
        base_amount="5000.00",
        discount="0",
        discount_type="flat",
        due_date=future_due_date,
        actor_id=test_actor_id,
        academic_year=academic_year,
    )


class TestConcurrentPayments:
    def test_50_payments_all_land(self, orchestrator, shared_entry, institution_id, test_actor_id):
        num_threads = 50
        barrier = Barrier(num_threads, timeout=30)

        def pay(_: int):
            barrier.wait()
            return orchestrator.apply_payment(shared_entry.id, "100.00", "cash", test_actor_id)

        with ThreadPoolExecutor(max_workers=num_threads) as executor:
            results = list(executor.map(pay, range(num_threads)))

        numbers = sorted(r.receipt.receipt_number for r in results)
        assert numbers == [f"RCP-2025-{i:06d}" for i in range(1, num_threads + 1)]

        entry = orchestrator.recompute(shared_entry.id)
        assert entry.paid_amount == Decimal("5000.00")
        assert entry.remaining_amount == Decimal("0.00")
        assert entry.status == "paid"
        assert orchestrator.outstanding_balances(institution_id).count == 0

    def test_overpaying_race_admits_only_the_balance(
        self, orchestrator, shared_entry, test_actor_id
    ):
        """20 threads try to pay 500 on a 5000 balance: exactly 10 succeed."""
        num_threads = 20
        barrier = Barrier(num_threads, timeout=30)

        def pay(_: int) -> str:
            barrier.wait()
            try:
                orchestrator.apply_payment(shared_entry.id, "500.00", "cash", test_actor_id)
            except Exception as exc:
                return type(exc).__name__
            return "ok"

        with ThreadPoolExecutor(max_workers=num_threads) as executor:
            outcomes = list(executor.map(pay, range(num_threads)))

        assert outcomes.count("ok") == 10
        assert set(outcomes) == {"ok", "OverpaymentError"}
        assert orchestrator.recompute(shared_entry.id).paid_amount == Decimal("5000.00")


class TestConcurrentVouchers:
    def test_one_voucher_per_period(self, orchestrator, shared_entry, institution_id, test_actor_id):
        num_threads = 10
        barrier = Barrier(num_threads, timeout=30)

        def issue(_: int) -> str:
            barrier.wait()
            try:
                return orchestrator.issue_voucher(shared_entry.id, 3, 2025, test_actor_id).voucher_number
            except DuplicateVoucherError:
                return "duplicate"

        with ThreadPoolExecutor(max_workers=num_threads) as executor:
            outcomes = list(executor.map(issue, range(num_threads)))

        issued = [o for o in outcomes if o != "duplicate"]
        assert issued == ["VCH-2025-03-000001"]

        summary = orchestrator.outstanding_balances(institution_id)
        assert [v.voucher_number for v in summary.entries[0].vouchers] == issued
