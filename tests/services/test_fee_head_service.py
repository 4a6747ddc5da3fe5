"""
Tests for FeeHeadService -- the fee head catalog.

Covers:
- create_fee_head(): derived GL account, priority uniqueness, validation
- deactivate / release_priority / reactivate lifecycle
- update_fee_head(): priority moves re-derive the default GL account
- available_priorities() and list_fee_heads() ordering
"""

from uuid import uuid4

import pytest

from fee_ledger.exceptions import (
    DuplicatePriorityError,
    FeeHeadNotFoundError,
    InvalidAmountError,
    StateError,
)


class TestCreateFeeHead:
    def test_create(self, create_fee_head):
        head = create_fee_head("Tuition Fee", priority=1)
        assert head.name == "Tuition Fee"
        assert head.priority == 1
        assert head.frequency_type == "monthly"
        assert head.account_type == "income"
        assert head.is_active

    def test_gl_account_derived_from_priority(self, create_fee_head):
        assert create_fee_head("Tuition Fee", priority=1).gl_account == "4010900-1010900"
        assert create_fee_head("Exam Fee", priority=3).gl_account == "4010902-1010902"

    def test_explicit_gl_account(self, fee_head_service, test_actor_id):
        head = fee_head_service.create_fee_head(
            name="Security Deposit",
            priority=5,
            frequency_type="one_time",
            account_type="liabilities",
            actor_id=test_actor_id,
            gl_account="2010100-1010100",
        )
        assert head.gl_account == "2010100-1010100"

    def test_gl_account_is_not_unique(self, fee_head_service, test_actor_id):
        for priority in (1, 2):
            fee_head_service.create_fee_head(
                name=f"Head {priority}",
                priority=priority,
                frequency_type="monthly",
                account_type="income",
                actor_id=test_actor_id,
                gl_account="4010900-1010900",
            )
        assert len(fee_head_service.list_fee_heads()) == 2

    def test_duplicate_priority(self, create_fee_head):
        first = create_fee_head("Tuition Fee", priority=1)
        with pytest.raises(DuplicatePriorityError) as exc_info:
            create_fee_head("Library Fee", priority=1)
        assert exc_info.value.priority == 1
        assert exc_info.value.holder_id == first.id
        assert exc_info.value.holder_active

    def test_priority_must_be_positive(self, create_fee_head):
        with pytest.raises(InvalidAmountError):
            create_fee_head("Tuition Fee", priority=0)

    def test_blank_name_rejected(self, create_fee_head):
        with pytest.raises(ValueError):
            create_fee_head("   ", priority=1)

    def test_unknown_frequency_rejected(self, create_fee_head):
        with pytest.raises(ValueError):
            create_fee_head("Tuition Fee", priority=1, frequency_type="weekly")

    def test_creation_is_logged(self, create_fee_head, captured_logs):
        create_fee_head("Tuition Fee", priority=1)
        records = [r for r in captured_logs() if r["message"] == "fee_head_created"]
        assert records[0]["priority"] == 1
        assert records[0]["fee_head_name"] == "Tuition Fee"


class TestPriorityLifecycle:
    def test_inactive_head_keeps_priority(self, create_fee_head, fee_head_service, test_actor_id):
        old = create_fee_head("Old Transport Fee", priority=4)
        fee_head_service.deactivate_fee_head(old.id, test_actor_id)

        with pytest.raises(DuplicatePriorityError) as exc_info:
            create_fee_head("Transport Fee", priority=4)
        assert exc_info.value.holder_id == old.id
        assert not exc_info.value.holder_active
        assert "release" in str(exc_info.value)

    def test_release_then_reuse(self, create_fee_head, fee_head_service, test_actor_id):
        old = create_fee_head("Old Transport Fee", priority=4)
        fee_head_service.deactivate_fee_head(old.id, test_actor_id)
        released = fee_head_service.release_priority(old.id, test_actor_id)
        assert released.priority is None

        new = create_fee_head("Transport Fee", priority=4)
        assert new.priority == 4

    def test_release_active_head_rejected(self, create_fee_head, fee_head_service, test_actor_id):
        head = create_fee_head("Tuition Fee", priority=1)
        with pytest.raises(StateError):
            fee_head_service.release_priority(head.id, test_actor_id)

    def test_reactivate_keeps_priority(self, create_fee_head, fee_head_service, test_actor_id):
        head = create_fee_head("Tuition Fee", priority=1)
        fee_head_service.deactivate_fee_head(head.id, test_actor_id)
        reactivated = fee_head_service.reactivate_fee_head(head.id, test_actor_id)
        assert reactivated.is_active
        assert reactivated.priority == 1

    def test_reactivate_released_head_needs_priority(
        self, create_fee_head, fee_head_service, test_actor_id
    ):
        head = create_fee_head("Tuition Fee", priority=1)
        fee_head_service.deactivate_fee_head(head.id, test_actor_id)
        fee_head_service.release_priority(head.id, test_actor_id)

        with pytest.raises(InvalidAmountError):
            fee_head_service.reactivate_fee_head(head.id, test_actor_id)

        reactivated = fee_head_service.reactivate_fee_head(head.id, test_actor_id, priority=7)
        assert reactivated.priority == 7

    def test_reactivate_into_taken_priority(self, create_fee_head, fee_head_service, test_actor_id):
        head = create_fee_head("Tuition Fee", priority=1)
        fee_head_service.deactivate_fee_head(head.id, test_actor_id)
        fee_head_service.release_priority(head.id, test_actor_id)
        create_fee_head("New Tuition Fee", priority=1)

        with pytest.raises(DuplicatePriorityError):
            fee_head_service.reactivate_fee_head(head.id, test_actor_id, priority=1)


class TestUpdateFeeHead:
    def test_priority_move_rederives_default_gl(self, create_fee_head, fee_head_service, test_actor_id):
        head = create_fee_head("Exam Fee", priority=2)
        updated = fee_head_service.update_fee_head(head.id, test_actor_id, priority=6)
        assert updated.priority == 6
        assert updated.gl_account == "4010905-1010905"

    def test_priority_move_keeps_custom_gl(self, fee_head_service, test_actor_id):
        head = fee_head_service.create_fee_head(
            name="Exam Fee",
            priority=2,
            frequency_type="one_time",
            account_type="income",
            actor_id=test_actor_id,
            gl_account="4999999-1999999",
        )
        updated = fee_head_service.update_fee_head(head.id, test_actor_id, priority=6)
        assert updated.gl_account == "4999999-1999999"

    def test_priority_move_onto_taken_priority(self, create_fee_head, fee_head_service, test_actor_id):
        create_fee_head("Tuition Fee", priority=1)
        exam = create_fee_head("Exam Fee", priority=2)
        with pytest.raises(DuplicatePriorityError):
            fee_head_service.update_fee_head(exam.id, test_actor_id, priority=1)

    def test_rename(self, create_fee_head, fee_head_service, test_actor_id):
        head = create_fee_head("Exam Fee", priority=2)
        assert fee_head_service.update_fee_head(
            head.id, test_actor_id, name=" Examination Fee "
        ).name == "Examination Fee"

    def test_unknown_head(self, fee_head_service, test_actor_id):
        with pytest.raises(FeeHeadNotFoundError):
            fee_head_service.update_fee_head(uuid4(), test_actor_id, name="x")


class TestCatalogQueries:
    def test_available_priorities(self, create_fee_head, fee_head_service):
        tuition = create_fee_head("Tuition Fee", priority=1)
        create_fee_head("Exam Fee", priority=3)

        slots = fee_head_service.available_priorities(max_priority=4)
        assert [s.value for s in slots] == [1, 2, 3, 4]
        assert [s.available for s in slots] == [False, True, False, True]
        assert slots[0].holder_id == tuition.id

    def test_list_ordered_by_priority(self, create_fee_head, fee_head_service, test_actor_id):
        create_fee_head("Exam Fee", priority=3)
        create_fee_head("Tuition Fee", priority=1)
        inactive = create_fee_head("Old Fee", priority=2)
        fee_head_service.deactivate_fee_head(inactive.id, test_actor_id)

        assert [h.name for h in fee_head_service.list_fee_heads()] == ["Tuition Fee", "Exam Fee"]
        assert [h.name for h in fee_head_service.list_fee_heads(active_only=False)] == [
            "Tuition Fee",
            "Old Fee",
            "Exam Fee",
        ]
