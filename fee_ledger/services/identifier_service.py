"""
IdentifierService -- human-facing numbers backed by the scoped allocator.

Responsibility:
    Binds each identifier kind to its scope key and format:

        application number   (institution, "admission")      "123"
        roll number          (institution, "roll")           "42"
        receipt number       (institution, "RCP", year)      "RCP-2025-000123"
        voucher number       (institution, "VCH", year)      "VCH-2025-03-000007"

    Roll numbers use the allocator like every other identifier.  Legacy
    institutions whose roll numbers were assigned by scanning for the
    maximum are migrated once with ``seed_roll_numbers``.

Architecture position:
    Kernel > Services.  Depends on SequenceAllocator and
    domain/identifiers.py only.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from fee_ledger.domain.identifiers import (
    RECEIPT_PREFIX,
    VOUCHER_PREFIX,
    format_application_number,
    format_receipt_number,
    format_roll_number,
    format_voucher_number,
)
from fee_ledger.logging_config import get_logger
from fee_ledger.services.sequence_allocator import ScopeKey, SequenceAllocator

logger = get_logger("services.identifiers")


class IdentifierService:
    """
    Allocates and formats identifiers.

    Non-goals:
        - Does NOT commit.  An identifier is only consumed when the caller's
          transaction commits.
    """

    def __init__(
        self,
        session: Session,
        allocator: SequenceAllocator | None = None,
        receipt_type: str = RECEIPT_PREFIX,
        voucher_type: str = VOUCHER_PREFIX,
        admission_type: str = "admission",
        roll_type: str = "roll",
    ):
        self._allocator = allocator or SequenceAllocator(session)
        self._receipt_type = receipt_type
        self._voucher_type = voucher_type
        self._admission_type = admission_type
        self._roll_type = roll_type

    @property
    def allocator(self) -> SequenceAllocator:
        return self._allocator

    def application_scope(self, institution_id: UUID) -> ScopeKey:
        return ScopeKey(institution_id, self._admission_type)

    def roll_scope(self, institution_id: UUID) -> ScopeKey:
        return ScopeKey(institution_id, self._roll_type)

    def receipt_scope(self, institution_id: UUID, year: int) -> ScopeKey:
        return ScopeKey(institution_id, self._receipt_type, str(year))

    def voucher_scope(self, institution_id: UUID, year: int) -> ScopeKey:
        return ScopeKey(institution_id, self._voucher_type, str(year))

    def next_application_number(self, institution_id: UUID) -> str:
        value = self._allocator.allocate(self.application_scope(institution_id))
        return format_application_number(value)

    def next_roll_number(self, institution_id: UUID) -> str:
        value = self._allocator.allocate(self.roll_scope(institution_id))
        return format_roll_number(value)

    def seed_roll_numbers(self, institution_id: UUID, existing_max: int) -> int:
        """
        Move the roll counter past legacy roll numbers.

        Args:
            institution_id: Institution whose roll numbers are migrated.
            existing_max: Highest roll number already in use.

        Returns:
            The counter value after seeding.  Never lower than before.
        """
        value = self._allocator.raise_floor(self.roll_scope(institution_id), existing_max)
        logger.info(
            "roll_numbers_seeded",
            extra={
                "institution_id": str(institution_id),
                "existing_max": existing_max,
                "counter_value": value,
            },
        )
        return value

    def next_receipt_number(self, institution_id: UUID, year: int) -> tuple[str, int]:
        """Returns (receipt_number, sequence_value)."""
        value = self._allocator.allocate(self.receipt_scope(institution_id, year))
        return format_receipt_number(year, value, self._receipt_type), value

    def next_voucher_number(
        self, institution_id: UUID, year: int, month: int
    ) -> tuple[str, int]:
        """Returns (voucher_number, sequence_value)."""
        value = self._allocator.allocate(self.voucher_scope(institution_id, year))
        return format_voucher_number(year, month, value, self._voucher_type), value
