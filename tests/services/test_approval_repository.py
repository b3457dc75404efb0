"""
Tests for approval request persistence.

Verifies the optimistic version check, insert conflicts, DTO round trips
and the ORM guards that keep decided entries immutable.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from recon_engines.approval_workflow import decide, submit
from recon_kernel.domain.approval import ApprovalStatus, EntryStatus
from recon_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    ImmutabilityViolationError,
    OptimisticLockError,
    RequestAlreadyPendingError,
)
from recon_kernel.models.approval import ApprovalEntryModel
from recon_kernel.services.approval_repository import SqlApprovalRequestRepository
from tests.conftest import make_expense, make_policy

NOW = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository(session):
    return SqlApprovalRequestRepository(session)


@pytest.fixture
def pending(repository):
    outcome = submit(make_expense(), make_policy(), "emp-1", NOW, comments="please")
    return repository.save(outcome.request)


class TestSave:

    def test_round_trip_after_reload(self, repository, session, pending):
        session.expire_all()

        loaded = repository.get(pending.request_id)

        assert loaded == pending
        assert loaded.submitted_at.tzinfo is not None
        assert [e.approver_id for e in loaded.approvers] == ["mgr-1", "dir-1"]

    def test_duplicate_insert_conflicts(self, repository, pending):
        with pytest.raises(OptimisticLockError):
            repository.save(pending)

    def test_second_pending_request_for_expense_rejected(self, repository, pending):
        another = submit(make_expense(), make_policy(), "emp-2", NOW).request

        with pytest.raises(RequestAlreadyPendingError) as exc_info:
            repository.save(another)

        assert exc_info.value.expense_id == pending.expense_id

    def test_resolved_request_allows_new_pending(self, repository, pending):
        rejected = decide(pending, "mgr-1", "reject", NOW).request
        repository.save(rejected, expected_version=pending.version)

        fresh = repository.save(submit(make_expense(), make_policy(), "emp-1", NOW).request)

        assert fresh.status is ApprovalStatus.PENDING
        assert fresh.expense_id == pending.expense_id

    def test_update_with_expected_version(self, repository, pending):
        outcome = decide(pending, "mgr-1", "approve", NOW)

        saved = repository.save(outcome.request, expected_version=pending.version)

        assert saved.version == pending.version + 1
        assert saved.current_level == 2
        assert saved.approvers[0].status is EntryStatus.APPROVED

    def test_stale_writer_loses(self, repository, pending):
        first = decide(pending, "mgr-1", "approve", NOW)
        second = decide(pending, "mgr-1", "reject", NOW)
        repository.save(first.request, expected_version=pending.version)

        with pytest.raises(OptimisticLockError) as exc_info:
            repository.save(second.request, expected_version=pending.version)

        assert exc_info.value.code == "OPTIMISTIC_LOCK_CONFLICT"
        assert repository.get(pending.request_id).version == pending.version + 1

    def test_delegation_appends_entry(self, repository, session, pending):
        outcome = decide(pending, "mgr-1", "delegate", NOW, delegate_to="deputy-1")
        repository.save(outcome.request, expected_version=pending.version)
        session.expire_all()

        loaded = repository.get(pending.request_id)

        assert [e.approver_id for e in loaded.approvers] == ["mgr-1", "dir-1", "deputy-1"]
        assert loaded.approvers[2].delegated_from == "mgr-1"

    def test_unknown_request(self, repository):
        outcome = submit(make_expense(), make_policy(), "emp-1", NOW)
        with pytest.raises(ApprovalRequestNotFoundError):
            repository.save(outcome.request, expected_version=1)

    def test_list_filters_by_status_and_expiry(self, repository, pending):
        assert repository.list(status=ApprovalStatus.PENDING) == [pending]
        assert repository.list(expires_before=NOW) == []
        assert repository.list(expires_before=pending.expires_at) == [pending]
        assert repository.list(status=ApprovalStatus.APPROVED) == []


class TestEntryImmutability:

    def _entry(self, session, approver_id):
        return session.execute(
            select(ApprovalEntryModel).where(ApprovalEntryModel.approver_id == approver_id)
        ).scalar_one()

    def test_decided_entry_cannot_change(self, repository, session, pending):
        outcome = decide(pending, "mgr-1", "approve", NOW)
        repository.save(outcome.request, expected_version=pending.version)

        entry = self._entry(session, "mgr-1")
        entry.status = "pending"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_entries_cannot_be_deleted(self, session, pending):
        session.delete(self._entry(session, "dir-1"))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
