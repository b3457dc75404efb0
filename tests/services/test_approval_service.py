"""
Integration tests for ApprovalService against a real session.

Covers:
- Submission persists a pending request and notifies level-1 approvers
- Multi-level walkthrough to approval with expense status updates
- Auto-resolving policies never persist a request
- Refused operations are logged with their error code and re-raised
- Approver inbox, expense history and escalation queries
- One pending request per expense
- The per-request lock registry empties once operations finish
"""

import threading
import time
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from recon_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalStatus,
    AutoResult,
    EscalationAction,
    EscalationRule,
    ExpenseStatus,
    PolicyAction,
    WorkflowEventType,
    WorkflowSettings,
)
from recon_kernel.domain.conditions import PolicyCondition
from recon_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    NoMatchingPolicyError,
    RequestAlreadyPendingError,
    StaleRequestError,
    UnauthorizedApproverError,
)
from recon_kernel.services.approval_service import ApprovalService, RequestLocks
from tests.conftest import make_expense, make_policy


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, request, event):
        self.events.append((request.request_id, event))

    def of_type(self, event_type):
        return [e for _, e in self.events if e.event_type is event_type]


class RecordingExpenses:
    def __init__(self):
        self.statuses = {}

    def mark_status(self, expense_id, status):
        self.statuses[expense_id] = status


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def expenses():
    return RecordingExpenses()


@pytest.fixture
def service_factory(session, deterministic_clock, notifier, expenses):
    def _build(policies=None, settings=None, locks=None):
        return ApprovalService(
            session,
            policies if policies is not None else [make_policy()],
            settings=settings,
            notifier=notifier,
            expenses=expenses,
            clock=deterministic_clock,
            locks=locks,
        )
    return _build


@pytest.fixture
def service(service_factory):
    return service_factory()


class TestSubmit:

    def test_submit_persists_pending_request(self, service, notifier, expenses, deterministic_clock):
        request = service.submit(make_expense(), "emp-1", comments="client lunch")

        stored = service.get_request(request.request_id)
        assert stored == request
        assert stored.status is ApprovalStatus.PENDING
        assert stored.current_level == 1
        assert stored.total_levels == 2
        assert stored.version == 1
        assert stored.submitted_at == deterministic_clock.now()
        assert [c.body for c in stored.comments] == ["client lunch"]

        submitted = notifier.of_type(WorkflowEventType.SUBMITTED)
        assert len(submitted) == 1
        assert submitted[0].recipients == ("mgr-1",)
        assert expenses.statuses["exp-1"] is ExpenseStatus.PENDING_REVIEW

    def test_auto_approve_policy_never_persists(self, service_factory, expenses):
        service = service_factory([make_policy("auto", action=PolicyAction.AUTO_APPROVE)])

        result = service.submit(make_expense(), "emp-1")

        assert isinstance(result, AutoResult)
        assert result.expense_status is ExpenseStatus.VERIFIED
        assert expenses.statuses["exp-1"] is ExpenseStatus.VERIFIED
        assert service.history_for_expense("exp-1") == []

    def test_no_matching_policy_refused(self, service_factory, captured_logs):
        service = service_factory([make_policy(
            conditions=(PolicyCondition("amount", "gt", Decimal("10000")),),
        )])

        with pytest.raises(NoMatchingPolicyError):
            service.submit(make_expense(amount="20.00"), "emp-1")

        refused = [r for r in captured_logs() if r["message"] == "approval_operation_refused"]
        assert refused[0]["error_code"] == "NO_MATCHING_POLICY"
        assert refused[0]["operation"] == "submit"

    def test_second_pending_submission_refused(self, service, captured_logs):
        first = service.submit(make_expense(), "emp-1")

        with pytest.raises(RequestAlreadyPendingError) as exc_info:
            service.submit(make_expense(), "emp-1")

        assert exc_info.value.expense_id == "exp-1"
        assert exc_info.value.request_id == str(first.request_id)
        pending = [r for r in service.history_for_expense("exp-1") if r.status is ApprovalStatus.PENDING]
        assert [r.request_id for r in pending] == [first.request_id]
        refused = [r for r in captured_logs() if r["message"] == "approval_operation_refused"]
        assert refused[0]["error_code"] == "REQUEST_ALREADY_PENDING"

    def test_pending_request_blocks_auto_approval(self, service_factory):
        service_factory().submit(make_expense(), "emp-1")
        auto = service_factory([make_policy("auto", action=PolicyAction.AUTO_APPROVE)])

        with pytest.raises(RequestAlreadyPendingError):
            auto.submit(make_expense(), "emp-1")


class TestDecide:

    def test_two_level_walkthrough(self, service, notifier, expenses):
        request = service.submit(make_expense(), "emp-1")

        after_manager = service.decide(request.request_id, "mgr-1", ApprovalDecision.APPROVE)
        assert after_manager.current_level == 2
        assert after_manager.version == 2
        assert notifier.of_type(WorkflowEventType.LEVEL_ADVANCE)[0].recipients == ("dir-1",)

        final = service.decide(request.request_id, "dir-1", "approve", comments="ok")
        assert final.status is ApprovalStatus.APPROVED
        assert final.completed_at is not None
        assert final.version == 3
        assert expenses.statuses["exp-1"] is ExpenseStatus.VERIFIED
        assert notifier.of_type(WorkflowEventType.APPROVED)[0].recipients == ("emp-1",)

    def test_rejection_terminates(self, service, expenses):
        request = service.submit(make_expense(), "emp-1")

        rejected = service.decide(request.request_id, "mgr-1", "reject", comments="no receipt")

        assert rejected.status is ApprovalStatus.REJECTED
        assert expenses.statuses["exp-1"] is ExpenseStatus.REJECTED

    def test_decision_after_completion_is_stale(self, service, captured_logs):
        request = service.submit(make_expense(), "emp-1")
        service.decide(request.request_id, "mgr-1", "reject")

        with pytest.raises(StaleRequestError):
            service.decide(request.request_id, "mgr-1", "approve")

        refused = [r for r in captured_logs() if r["message"] == "approval_operation_refused"]
        assert refused[-1]["error_code"] == "STALE_REQUEST"
        assert refused[-1]["operation"] == "decide"

    def test_wrong_level_approver_refused(self, service):
        request = service.submit(make_expense(), "emp-1")

        with pytest.raises(UnauthorizedApproverError):
            service.decide(request.request_id, "dir-1", "approve")
        assert service.get_request(request.request_id).version == 1

    def test_delegation_hands_over_inbox(self, service):
        request = service.submit(make_expense(), "emp-1")

        service.decide(request.request_id, "mgr-1", "delegate", delegate_to="deputy-1")

        assert service.list_pending_for_approver("mgr-1") == []
        assert [r.request_id for r in service.list_pending_for_approver("deputy-1")] == [
            request.request_id,
        ]

    def test_unknown_request(self, service):
        with pytest.raises(ApprovalRequestNotFoundError):
            service.decide(uuid4(), "mgr-1", "approve")

    def test_transition_logged(self, service, captured_logs):
        request = service.submit(make_expense(), "emp-1")
        service.decide(request.request_id, "mgr-1", "approve")

        applied = [r for r in captured_logs() if r["message"] == "approval_transition_applied"]
        assert applied[-1]["workflow_action"] == "level_advanced"
        assert applied[-1]["request_id"] == str(request.request_id)


class TestWithdraw:

    def test_submitter_withdraws(self, service, expenses):
        request = service.submit(make_expense(), "emp-1")

        withdrawn = service.withdraw(request.request_id, "emp-1", reason="duplicate")

        assert withdrawn.status is ApprovalStatus.WITHDRAWN
        assert expenses.statuses["exp-1"] is ExpenseStatus.DRAFT

    def test_resubmission_keeps_history(self, service):
        first = service.submit(make_expense(), "emp-1")
        service.withdraw(first.request_id, "emp-1")
        second = service.submit(make_expense(), "emp-1")

        history = service.history_for_expense("exp-1")
        assert [r.request_id for r in history] == [first.request_id, second.request_id]
        assert [r.status for r in history] == [ApprovalStatus.WITHDRAWN, ApprovalStatus.PENDING]


class TestQueries:

    def test_pending_for_approver_follows_level(self, service):
        request = service.submit(make_expense(), "emp-1")

        assert [r.request_id for r in service.list_pending_for_approver("mgr-1")] == [request.request_id]
        assert service.list_pending_for_approver("dir-1") == []

        service.decide(request.request_id, "mgr-1", "approve")

        assert service.list_pending_for_approver("mgr-1") == []
        assert [r.request_id for r in service.list_pending_for_approver("dir-1")] == [request.request_id]

    def test_due_for_escalation_uses_clock(self, service, deterministic_clock):
        request = service.submit(make_expense(), "emp-1")

        assert service.due_for_escalation() == []
        deterministic_clock.advance(hours=72)
        assert [r.request_id for r in service.due_for_escalation()] == [request.request_id]


class TestEscalate:

    def test_default_rule_notifies_and_extends(self, service_factory, deterministic_clock, notifier):
        settings = WorkflowSettings(escalation_rules=(
            EscalationRule("remind", 72, EscalationAction.NOTIFY, escalate_to=("boss",), extend_hours=48),
        ))
        service = service_factory(settings=settings)
        request = service.submit(make_expense(), "emp-1")
        deterministic_clock.advance(hours=72)

        escalated = service.escalate(request.request_id)

        assert escalated.status is ApprovalStatus.PENDING
        assert escalated.escalations_applied == ("remind",)
        assert escalated.expires_at == deterministic_clock.now() + timedelta(hours=48)
        assert "boss" in notifier.of_type(WorkflowEventType.ESCALATED)[0].recipients
        assert [r.request_id for r in service.list_pending_for_approver("boss")] == [request.request_id]

    def test_no_rules_expires(self, service, deterministic_clock):
        request = service.submit(make_expense(), "emp-1")
        deterministic_clock.advance(hours=72)

        expired = service.escalate(request.request_id)

        assert expired.status is ApprovalStatus.EXPIRED
        assert expired.completed_at == deterministic_clock.now()

    def test_policy_rules_take_precedence(self, service_factory, deterministic_clock, expenses):
        policy = make_policy(escalation_rules=(
            EscalationRule("auto", 24, EscalationAction.AUTO_APPROVE),
        ))
        settings = WorkflowSettings(escalation_rules=(
            EscalationRule("reject", 0, EscalationAction.REJECT),
        ))
        service = service_factory([policy], settings)
        request = service.submit(make_expense(), "emp-1")
        deterministic_clock.advance(hours=72)

        approved = service.escalate(request.request_id)

        assert approved.status is ApprovalStatus.APPROVED
        assert expenses.statuses["exp-1"] is ExpenseStatus.VERIFIED

    def test_escalation_before_deadline_is_stale(self, service):
        request = service.submit(make_expense(), "emp-1")

        with pytest.raises(StaleRequestError):
            service.escalate(request.request_id)


class TestRequestLocks:

    def test_locks_released_once_requests_settle(self, service_factory):
        locks = RequestLocks()
        service = service_factory(locks=locks)

        for i in range(50):
            request = service.submit(make_expense(f"exp-{i}"), "emp-1")
            service.decide(request.request_id, "mgr-1", ApprovalDecision.REJECT)

        assert len(locks) == 0

    def test_same_request_is_serialized(self):
        locks = RequestLocks()
        request_id = uuid4()
        inside = []
        peak = []

        def worker():
            with locks.hold(request_id):
                inside.append(1)
                peak.append(len(inside))
                time.sleep(0.005)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert max(peak) == 1
        assert len(locks) == 0

    def test_lock_released_when_operation_fails(self, service_factory):
        locks = RequestLocks()
        service = service_factory(locks=locks)

        with pytest.raises(ApprovalRequestNotFoundError):
            service.decide(uuid4(), "mgr-1", ApprovalDecision.APPROVE)

        assert len(locks) == 0
