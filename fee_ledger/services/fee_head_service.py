"""
Service layer for the fee head catalog.

Fee heads are shared by every institution and ordered by a globally unique
priority.  A deactivated head keeps its priority until it is explicitly
released, so a priority is never silently reused while history still
points at it.

Returns FeeHeadInfo DTOs instead of ORM entities.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fee_ledger.domain.identifiers import gl_account_for_priority
from fee_ledger.domain.matrix import FeeHeadInfo
from fee_ledger.exceptions import (
    DuplicatePriorityError,
    FeeHeadNotFoundError,
    InvalidAmountError,
    StateError,
)
from fee_ledger.logging_config import get_logger
from fee_ledger.models.fee_head import AccountType, FeeHead, FrequencyType
from fee_ledger.services.base import BaseService

logger = get_logger("services.fee_heads")


@dataclass(frozen=True)
class PriorityAvailability:
    value: int
    available: bool
    holder_id: UUID | None = None


def to_fee_head_info(head: FeeHead) -> FeeHeadInfo:
    return FeeHeadInfo(
        id=head.id,
        name=head.name,
        priority=head.priority,
        frequency_type=FrequencyType(head.frequency_type).value,
        account_type=AccountType(head.account_type).value,
        gl_account=head.gl_account,
        is_active=head.is_active,
    )


class FeeHeadService(BaseService[FeeHead]):
    """
    Manages the fee head catalog.

    Contract:
        Priorities are unique across all heads, active and inactive.

    Guarantees:
        - DuplicatePriorityError names the holder and whether it is inactive,
          so the caller knows a release is needed.
        - A priority collision raced in by a concurrent writer is reported
          as DuplicatePriorityError, not as a raw IntegrityError.
    """

    def _get(self, fee_head_id: UUID) -> FeeHead:
        head = self.session.get(FeeHead, fee_head_id)
        if head is None:
            raise FeeHeadNotFoundError(fee_head_id)
        return head

    def _check_priority(self, priority: int, exclude_id: UUID | None = None) -> None:
        if priority < 1:
            raise InvalidAmountError("priority", priority, "must be at least 1")
        stmt = select(FeeHead).where(FeeHead.priority == priority)
        if exclude_id is not None:
            stmt = stmt.where(FeeHead.id != exclude_id)
        holder = self.session.execute(stmt).scalar_one_or_none()
        if holder is not None:
            raise DuplicatePriorityError(priority, holder.id, holder.is_active)

    def _flush_priority(self, priority: int | None) -> None:
        savepoint = self.session.begin_nested()
        try:
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            logger.warning(
                "fee_head_priority_race",
                extra={"priority": priority},
            )
            raise DuplicatePriorityError(priority) from exc

    def get_fee_head(self, fee_head_id: UUID) -> FeeHeadInfo:
        return to_fee_head_info(self._get(fee_head_id))

    def create_fee_head(
        self,
        name: str,
        priority: int,
        frequency_type: FrequencyType | str,
        account_type: AccountType | str,
        actor_id: UUID,
        gl_account: str | None = None,
    ) -> FeeHeadInfo:
        """
        Create a fee head.

        Args:
            name: Display name, e.g. "Tuition Fee".
            priority: Global ordering key, >= 1 and unused.
            frequency_type: monthly, one_time or undefined.
            account_type: liabilities, income or other_income.
            actor_id: Creating user.
            gl_account: Explicit GL account.  Derived from priority if None.

        Raises:
            DuplicatePriorityError: Priority held by another head.
            InvalidAmountError: Priority below 1.
        """
        name = name.strip()
        if not name:
            raise ValueError("Fee head name must not be empty")
        self._check_priority(priority)

        head = FeeHead(
            name=name,
            priority=priority,
            frequency_type=FrequencyType(frequency_type).value,
            account_type=AccountType(account_type).value,
            gl_account=gl_account or gl_account_for_priority(priority),
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(head)
        self._flush_priority(priority)

        logger.info(
            "fee_head_created",
            extra={"fee_head_id": str(head.id), "fee_head_name": name, "priority": priority},
        )
        return to_fee_head_info(head)

    def update_fee_head(
        self,
        fee_head_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        priority: int | None = None,
        frequency_type: FrequencyType | str | None = None,
        account_type: AccountType | str | None = None,
        gl_account: str | None = None,
    ) -> FeeHeadInfo:
        """
        Update fee head details.

        A priority change re-checks uniqueness against every other head.
        The GL account is not re-derived on a priority change unless it was
        the derived default.
        """
        head = self._get(fee_head_id)

        if priority is not None and priority != head.priority:
            self._check_priority(priority, exclude_id=head.id)
            if head.priority is None or head.gl_account == gl_account_for_priority(head.priority):
                head.gl_account = gl_account_for_priority(priority)
            head.priority = priority
        if name is not None:
            head.name = name.strip()
        if frequency_type is not None:
            head.frequency_type = FrequencyType(frequency_type).value
        if account_type is not None:
            head.account_type = AccountType(account_type).value
        if gl_account is not None:
            head.gl_account = gl_account
        head.updated_by_id = actor_id

        self._flush_priority(head.priority)
        logger.info("fee_head_updated", extra={"fee_head_id": str(head.id)})
        return to_fee_head_info(head)

    def deactivate_fee_head(self, fee_head_id: UUID, actor_id: UUID) -> FeeHeadInfo:
        """
        Soft-delete a fee head.  It keeps its priority until released.
        """
        head = self._get(fee_head_id)
        head.is_active = False
        head.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "fee_head_deactivated",
            extra={"fee_head_id": str(head.id), "priority": head.priority},
        )
        return to_fee_head_info(head)

    def release_priority(self, fee_head_id: UUID, actor_id: UUID) -> FeeHeadInfo:
        """
        Free an inactive head's priority for reuse.

        Raises:
            StateError: The head is still active.
        """
        head = self._get(fee_head_id)
        if head.is_active:
            raise StateError(
                f"Fee head {fee_head_id} is active; deactivate it before releasing priority"
            )
        released = head.priority
        head.priority = None
        head.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "fee_head_priority_released",
            extra={"fee_head_id": str(head.id), "priority": released},
        )
        return to_fee_head_info(head)

    def reactivate_fee_head(
        self,
        fee_head_id: UUID,
        actor_id: UUID,
        priority: int | None = None,
    ) -> FeeHeadInfo:
        """
        Reactivate a head, optionally under a new priority.

        A head whose priority was released must be given one.

        Raises:
            DuplicatePriorityError: The requested priority is taken.
        """
        head = self._get(fee_head_id)
        target = priority if priority is not None else head.priority
        if target is None:
            raise InvalidAmountError(
                "priority", "None", "a released fee head needs a new priority"
            )
        if target != head.priority:
            self._check_priority(target, exclude_id=head.id)
            head.priority = target
        head.is_active = True
        head.updated_by_id = actor_id
        self._flush_priority(target)
        logger.info(
            "fee_head_reactivated",
            extra={"fee_head_id": str(head.id), "priority": target},
        )
        return to_fee_head_info(head)

    def available_priorities(self, max_priority: int = 10) -> list[PriorityAvailability]:
        """Priorities 1..max_priority with their holders."""
        held = dict(
            self.session.execute(
                select(FeeHead.priority, FeeHead.id).where(FeeHead.priority.is_not(None))
            ).all()
        )
        return [
            PriorityAvailability(value=p, available=p not in held, holder_id=held.get(p))
            for p in range(1, max_priority + 1)
        ]

    def list_fee_heads(self, active_only: bool = True) -> list[FeeHeadInfo]:
        stmt = select(FeeHead)
        if active_only:
            stmt = stmt.where(FeeHead.is_active.is_(True))
        stmt = stmt.order_by(FeeHead.priority.is_(None), FeeHead.priority, FeeHead.name)
        return [to_fee_head_info(h) for h in self.session.execute(stmt).scalars()]
