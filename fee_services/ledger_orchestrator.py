"""
fee_services.ledger_orchestrator -- DI container and transaction runner.

Responsibility:
    Creates the kernel services for each unit of work, wires them together
    with the configured settings and clock, and runs every public operation
    in its own transaction through ``run_in_transaction``.

Architecture position:
    Services -- top of the stack.  The only place where kernel services
    are constructed and composed, and where LedgerConfig is read.

Invariants enforced:
    - One transaction per public call.  A conflict re-runs the whole call
      against fresh state.
    - DI transparency: all service wiring is visible in ``_services``.

Usage:
    from fee_config import get_active_config
    from fee_services import LedgerOrchestrator

    orchestrator = LedgerOrchestrator.from_config(get_active_config())
    result = orchestrator.apply_payment(entry_id, "500.00", "cash", collector_id)
    result.receipt.receipt_number   # "RCP-2025-000001"
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from fee_config.schema import LedgerConfig
from fee_ledger.db.engine import create_tables, get_session_factory, init_engine_from_url
from fee_ledger.domain.clock import Clock, SystemClock
from fee_ledger.domain.ledger_math import DiscountType
from fee_ledger.domain.matrix import FeeHeadInfo, FeeMatrix, MatrixCell, MatrixSaveResult
from fee_ledger.logging_config import configure_logging
from fee_ledger.models.fee_head import AccountType, FrequencyType
from fee_ledger.models.ledger import StudentFee, Voucher
from fee_ledger.models.receipt import PaymentMethod
from fee_ledger.models.suspense import SuspenseEntry
from fee_ledger.selectors.ledger_selector import (
    LedgerEntryDTO,
    LedgerSelector,
    OutstandingSummary,
    ReceiptDTO,
    SuspenseDTO,
)
from fee_ledger.services.fee_head_service import FeeHeadService, PriorityAvailability
from fee_ledger.services.fee_ledger_engine import DiscountSpec, FeeLedgerEngine
from fee_ledger.services.fee_matrix_resolver import FeeMatrixResolver
from fee_ledger.services.identifier_service import IdentifierService
from fee_ledger.services.payment_applicator import PaymentApplicator, PaymentResult
from fee_ledger.services.sequence_allocator import ScopeKey, SequenceAllocator
from fee_ledger.services.suspense_service import ReconcileResult, SuspenseService
from fee_ledger.services.voucher_issuer import (
    VoucherBatchResult,
    VoucherCancellation,
    VoucherIssuer,
)
from fee_services.unit_of_work import run_in_transaction

T = TypeVar("T")


@dataclass
class _Services:
    """Kernel services bound to one session."""

    session: Session
    allocator: SequenceAllocator
    identifiers: IdentifierService
    fee_heads: FeeHeadService
    matrix: FeeMatrixResolver
    ledger: FeeLedgerEngine
    vouchers: VoucherIssuer
    payments: PaymentApplicator
    suspense: SuspenseService
    selector: LedgerSelector


class LedgerOrchestrator:
    """
    Public face of the fee ledger.

    Contract:
        Every method commits before it returns, or rolls back and raises.
        Returned ORM objects are detached with their loaded state intact.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self._session_factory = session_factory
        self._config = config or LedgerConfig()
        self._clock = clock or SystemClock()
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        clock: Clock | None = None,
        create_schema: bool = False,
    ) -> LedgerOrchestrator:
        """Initialise logging and the engine from ``config`` and build an orchestrator."""
        configure_logging(level=config.logging.level.upper())
        db = config.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            sqlite_busy_timeout=db.sqlite_busy_timeout,
        )
        if create_schema:
            create_tables()
        return cls(get_session_factory(), config=config, clock=clock)

    @property
    def config(self) -> LedgerConfig:
        return self._config

    def _services(self, session: Session) -> _Services:
        numbering = self._config.numbering
        settings = self._config.ledger

        allocator = SequenceAllocator(session)
        identifiers = IdentifierService(
            session,
            allocator=allocator,
            receipt_type=numbering.receipt_type,
            voucher_type=numbering.voucher_type,
            admission_type=numbering.admission_type,
            roll_type=numbering.roll_type,
        )
        matrix = FeeMatrixResolver(session)
        ledger = FeeLedgerEngine(
            session,
            clock=self._clock,
            matrix_resolver=matrix,
            default_due_day=settings.default_due_day,
        )
        payments = PaymentApplicator(
            session,
            ledger,
            identifiers=identifiers,
            allow_overpayment=settings.allow_overpayment,
        )
        return _Services(
            session=session,
            allocator=allocator,
            identifiers=identifiers,
            fee_heads=FeeHeadService(session),
            matrix=matrix,
            ledger=ledger,
            vouchers=VoucherIssuer(session, ledger, identifiers=identifiers, payments=payments),
            payments=payments,
            suspense=SuspenseService(session, ledger, payments=payments),
            selector=LedgerSelector(session),
        )

    def _run(self, work: Callable[[_Services], T]) -> T:
        settings = self._config.ledger
        kwargs = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return run_in_transaction(
            self._session_factory,
            lambda session: work(self._services(session)),
            max_attempts=settings.max_conflict_retries + 1,
            backoff=settings.retry_backoff_seconds,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def allocate(
        self,
        institution_id: UUID,
        counter_type: str,
        period: str | int | None = None,
    ) -> int:
        scope = ScopeKey(institution_id, counter_type, "" if period is None else period)
        return self._run(lambda s: s.allocator.allocate(scope))

    def next_application_number(self, institution_id: UUID) -> str:
        return self._run(lambda s: s.identifiers.next_application_number(institution_id))

    def next_roll_number(self, institution_id: UUID) -> str:
        return self._run(lambda s: s.identifiers.next_roll_number(institution_id))

    def seed_roll_numbers(self, institution_id: UUID, existing_max: int) -> int:
        return self._run(
            lambda s: s.identifiers.seed_roll_numbers(institution_id, existing_max)
        )

    # ------------------------------------------------------------------
    # Fee heads
    # ------------------------------------------------------------------

    def create_fee_head(
        self,
        name: str,
        priority: int,
        frequency_type: FrequencyType | str,
        account_type: AccountType | str,
        actor_id: UUID,
        gl_account: str | None = None,
    ) -> FeeHeadInfo:
        return self._run(
            lambda s: s.fee_heads.create_fee_head(
                name=name,
                priority=priority,
                frequency_type=frequency_type,
                account_type=account_type,
                actor_id=actor_id,
                gl_account=gl_account,
            )
        )

    def deactivate_fee_head(self, fee_head_id: UUID, actor_id: UUID) -> FeeHeadInfo:
        return self._run(lambda s: s.fee_heads.deactivate_fee_head(fee_head_id, actor_id))

    def release_priority(self, fee_head_id: UUID, actor_id: UUID) -> FeeHeadInfo:
        return self._run(lambda s: s.fee_heads.release_priority(fee_head_id, actor_id))

    def available_priorities(self) -> list[PriorityAvailability]:
        """Priority slots up to the configured ``fee_heads.max_priority``."""
        max_priority = self._config.fee_heads.max_priority
        return self._run(lambda s: s.fee_heads.available_priorities(max_priority))

    def list_fee_heads(self, active_only: bool = True) -> list[FeeHeadInfo]:
        return self._run(lambda s: s.fee_heads.list_fee_heads(active_only=active_only))

    # ------------------------------------------------------------------
    # Fee matrix
    # ------------------------------------------------------------------

    def build_matrix(self, institution_id: UUID, academic_year: str) -> FeeMatrix:
        return self._run(lambda s: s.matrix.build_matrix(institution_id, academic_year))

    def save_matrix(
        self,
        matrix: FeeMatrix | Iterable[MatrixCell],
        actor_id: UUID,
        institution_id: UUID | None = None,
        academic_year: str | None = None,
    ) -> MatrixSaveResult:
        cells = matrix if isinstance(matrix, FeeMatrix) else list(matrix)
        return self._run(
            lambda s: s.matrix.save_matrix(
                cells, actor_id, institution_id=institution_id, academic_year=academic_year
            )
        )

    # ------------------------------------------------------------------
    # Ledger entries
    # ------------------------------------------------------------------

    def create_entry(
        self,
        institution_id: UUID,
        student_id: UUID,
        fee_head_id: UUID,
        base_amount: Decimal | int | str,
        discount: Decimal | int | str,
        discount_type: DiscountType | str,
        due_date: date | None,
        actor_id: UUID,
        academic_year: str,
        class_id: UUID | None = None,
    ) -> StudentFee:
        return self._run(
            lambda s: s.ledger.create_entry(
                institution_id=institution_id,
                student_id=student_id,
                fee_head_id=fee_head_id,
                base_amount=base_amount,
                discount=discount,
                discount_type=discount_type,
                due_date=due_date,
                actor_id=actor_id,
                academic_year=academic_year,
                class_id=class_id,
            )
        )

    def assign_class_fees(
        self,
        student_id: UUID,
        institution_id: UUID,
        academic_year: str,
        class_id: UUID,
        actor_id: UUID,
        due_date: date | None = None,
        default_discount: DiscountSpec | None = None,
        fee_head_discounts: Mapping[UUID, DiscountSpec] | None = None,
    ) -> list[StudentFee]:
        return self._run(
            lambda s: s.ledger.assign_class_fees(
                student_id=student_id,
                institution_id=institution_id,
                academic_year=academic_year,
                class_id=class_id,
                actor_id=actor_id,
                due_date=due_date,
                default_discount=default_discount,
                fee_head_discounts=fee_head_discounts,
            )
        )

    def reassign_class_fees(
        self,
        student_id: UUID,
        institution_id: UUID,
        academic_year: str,
        class_id: UUID,
        actor_id: UUID,
        due_date: date | None = None,
        default_discount: DiscountSpec | None = None,
        fee_head_discounts: Mapping[UUID, DiscountSpec] | None = None,
    ) -> list[StudentFee]:
        return self._run(
            lambda s: s.ledger.reassign_class_fees(
                student_id=student_id,
                institution_id=institution_id,
                academic_year=academic_year,
                class_id=class_id,
                actor_id=actor_id,
                due_date=due_date,
                default_discount=default_discount,
                fee_head_discounts=fee_head_discounts,
            )
        )

    def deactivate_entry(self, entry_id: UUID, actor_id: UUID) -> StudentFee:
        return self._run(lambda s: s.ledger.deactivate_entry(entry_id, actor_id))

    def apply_discount(
        self,
        entry_id: UUID,
        discount: Decimal | int | str,
        discount_type: DiscountType | str,
        actor_id: UUID,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> StudentFee:
        return self._run(
            lambda s: s.ledger.apply_discount(
                entry_id,
                discount,
                discount_type,
                actor_id,
                reason=reason,
                expected_version=expected_version,
            )
        )

    def recompute(self, entry_id: UUID) -> StudentFee:
        return self._run(lambda s: s.ledger.recompute(entry_id))

    def refresh_overdue(self, institution_id: UUID, as_of: date | None = None) -> int:
        return self._run(lambda s: s.ledger.refresh_overdue(institution_id, as_of=as_of))

    # ------------------------------------------------------------------
    # Vouchers and payments
    # ------------------------------------------------------------------

    def issue_voucher(
        self, entry_id: UUID, month: int, year: int, issuer_id: UUID
    ) -> Voucher:
        return self._run(lambda s: s.vouchers.issue_voucher(entry_id, month, year, issuer_id))

    def cancel_voucher(
        self, voucher_id: UUID, actor_id: UUID, reason: str
    ) -> VoucherCancellation:
        return self._run(lambda s: s.vouchers.cancel_voucher(voucher_id, actor_id, reason))

    def issue_vouchers(
        self, entry_ids: Iterable[UUID], month: int, year: int, issuer_id: UUID
    ) -> VoucherBatchResult:
        ids = list(entry_ids)
        return self._run(lambda s: s.vouchers.issue_for_entries(ids, month, year, issuer_id))

    def apply_payment(
        self,
        entry_id: UUID,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        collector_id: UUID,
        paid_at: datetime | None = None,
        reference: str | None = None,
        bank_name: str | None = None,
        remarks: str | None = None,
        voucher_number: str | None = None,
    ) -> PaymentResult:
        return self._run(
            lambda s: s.payments.apply_payment(
                entry_id,
                amount,
                method,
                collector_id,
                paid_at=paid_at,
                reference=reference,
                bank_name=bank_name,
                remarks=remarks,
                voucher_number=voucher_number,
            )
        )

    def reverse_payment(self, receipt_id: UUID, actor_id: UUID, reason: str) -> PaymentResult:
        return self._run(lambda s: s.payments.reverse_payment(receipt_id, actor_id, reason))

    def record_suspense(
        self,
        institution_id: UUID,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        received_at: datetime,
        actor_id: UUID,
        transaction_ref: str | None = None,
        bank_name: str | None = None,
        remarks: str | None = None,
    ) -> SuspenseEntry:
        return self._run(
            lambda s: s.suspense.record_unidentified(
                institution_id,
                amount,
                method,
                received_at,
                actor_id,
                transaction_ref=transaction_ref,
                bank_name=bank_name,
                remarks=remarks,
            )
        )

    def cancel_suspense(self, suspense_id: UUID, actor_id: UUID) -> SuspenseEntry:
        return self._run(lambda s: s.suspense.cancel(suspense_id, actor_id))

    def reconcile_suspense(
        self,
        suspense_id: UUID,
        entry_id: UUID,
        actor_id: UUID,
        remarks: str | None = None,
    ) -> ReconcileResult:
        return self._run(
            lambda s: s.suspense.reconcile(suspense_id, entry_id, actor_id, remarks=remarks)
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def outstanding_balances(
        self,
        institution_id: UUID,
        student_id: UUID | None = None,
        academic_year: str | None = None,
    ) -> OutstandingSummary:
        return self._run(
            lambda s: s.selector.outstanding_balances(
                institution_id, student_id=student_id, academic_year=academic_year
            )
        )

    def student_ledger(
        self, student_id: UUID, include_inactive: bool = False
    ) -> list[LedgerEntryDTO]:
        return self._run(
            lambda s: s.selector.entries_for_student(
                student_id, include_inactive=include_inactive
            )
        )

    def receipts_for_entry(self, entry_id: UUID) -> list[ReceiptDTO]:
        return self._run(lambda s: s.selector.receipts_for_entry(entry_id))

    def unidentified_payments(self, institution_id: UUID) -> list[SuspenseDTO]:
        return self._run(lambda s: s.selector.suspense_entries(institution_id))
