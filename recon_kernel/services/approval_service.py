"""
recon_kernel.services.approval_service -- Approval lifecycle management.

Responsibility:
    Runs the expense approval workflow against persistent state: selects
    the governing policy, submits expenses, records approver decisions,
    withdrawals and escalations, and delivers the resulting notification
    events and expense status changes.  All state transitions are
    delegated to the pure ``recon_engines.approval_workflow`` engine.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and the pure engines.

Invariants enforced:
    - An expense has at most one pending request; a second submission is
      refused until the first is resolved or withdrawn.
    - Mutations of one request are serialized by a per-request lock from
      the injected RequestLocks registry, and persisted with an optimistic
      version check.
    - Events are delivered and expense status updated only after the new
      request state has been flushed.
    - ``now`` comes from the injected Clock, never from the engines.

Failure modes:
    - NoMatchingPolicyError when no active policy applies to an expense.
    - RequestAlreadyPendingError when the expense is already awaiting
      approval.
    - ApprovalRequestNotFoundError for an unknown request_id.
    - StaleRequestError, UnauthorizedApproverError, ApproverNotFoundError,
      InvalidDecisionError from the workflow engine.
    - OptimisticLockError when another writer won the race.

Audit relevance:
    Every transition is logged with the request id, the actor and the
    resulting status.  Refused operations are logged with their error code
    before the exception propagates.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy.orm import Session

from recon_engines.approval_rules import require_policy
from recon_engines.approval_workflow import (
    check_escalations,
    decide as decide_request,
    escalate as escalate_request,
    submit as submit_expense,
    withdraw as withdraw_request,
)
from recon_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalPolicy,
    ApprovalRequest,
    ApprovalStatus,
    AutoResult,
    Expense,
    WorkflowOutcome,
    WorkflowSettings,
)
from recon_kernel.domain.clock import Clock, SystemClock
from recon_kernel.domain.ports import (
    ApprovalRequestRepository,
    ExpenseRepository,
    NotificationSink,
)
from recon_kernel.exceptions import ReconKernelError, RequestAlreadyPendingError
from recon_kernel.logging_config import LogContext, get_logger
from recon_kernel.selectors.approval_selector import ApprovalSelector
from recon_kernel.services.approval_repository import SqlApprovalRequestRepository

logger = get_logger("services.approval_service")


class RequestLocks:
    """Per-request locks that live only while a caller holds or awaits them.

    Services that may touch the same requests from several threads must
    share one registry.  An entry is dropped when its last holder leaves,
    so the map never outgrows the number of requests in flight.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[UUID, _LockSlot] = {}

    @contextmanager
    def hold(self, request_id: UUID):
        with self._guard:
            slot = self._slots.get(request_id)
            if slot is None:
                slot = self._slots[request_id] = _LockSlot()
            slot.holders += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._guard:
                slot.holders -= 1
                if slot.holders == 0:
                    del self._slots[request_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)


class _LockSlot:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class ApprovalService:
    """Approval workflow over a caller-owned session."""

    def __init__(
        self,
        session: Session,
        policies: Sequence[ApprovalPolicy],
        settings: WorkflowSettings | None = None,
        notifier: NotificationSink | None = None,
        expenses: ExpenseRepository | None = None,
        clock: Clock | None = None,
        repository: ApprovalRequestRepository | None = None,
        locks: RequestLocks | None = None,
    ) -> None:
        self._session = session
        self._policies = tuple(policies)
        self._settings = settings or WorkflowSettings()
        self._notifier = notifier
        self._expenses = expenses
        self._clock = clock or SystemClock()
        self._repository = repository or SqlApprovalRequestRepository(session)
        self._selector = ApprovalSelector(session)
        self._locks = locks if locks is not None else RequestLocks()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit(
        self,
        expense: Expense,
        submitter_id: str,
        comments: str | None = None,
    ) -> ApprovalRequest | AutoResult:
        """Route ``expense`` through the first matching policy."""
        with LogContext.bind(actor_id=submitter_id, record_id=expense.expense_id):
            try:
                self._require_no_pending(expense.expense_id)
                policy = require_policy(expense, submitter_id, self._policies)
            except ReconKernelError as exc:
                self._log_refused("submit", exc, expense_id=expense.expense_id)
                raise

            result = submit_expense(
                expense, policy, submitter_id, self._clock.now(),
                settings=self._settings, comments=comments,
            )
            if isinstance(result, AutoResult):
                self._mark_expense(result.expense_id, result)
                return result

            try:
                saved = self._repository.save(result.request)
            except ReconKernelError as exc:
                self._log_refused("submit", exc, expense_id=expense.expense_id)
                raise
            self._deliver(saved, result)
            return saved

    def decide(
        self,
        request_id: UUID,
        approver_id: str,
        decision: ApprovalDecision | str,
        comments: str | None = None,
        delegate_to: str | None = None,
    ) -> ApprovalRequest:
        """Record one approver decision."""
        return self._transition(
            request_id,
            "decide",
            approver_id,
            lambda request, now: decide_request(
                request, approver_id, decision, now,
                comments=comments, delegate_to=delegate_to,
            ),
        )

    def withdraw(
        self,
        request_id: UUID,
        actor_id: str,
        reason: str | None = None,
    ) -> ApprovalRequest:
        return self._transition(
            request_id,
            "withdraw",
            actor_id,
            lambda request, now: withdraw_request(request, actor_id, now, reason=reason),
        )

    def escalate(self, request_id: UUID) -> ApprovalRequest:
        """Apply the next escalation step to an overdue request."""
        def step(request: ApprovalRequest, now) -> WorkflowOutcome:
            return escalate_request(
                request, now,
                policy=self._policy(request.policy_id),
                default_rules=self._settings.escalation_rules,
            )

        return self._transition(request_id, "escalate", None, step)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        return self._repository.get(request_id)

    def due_for_escalation(self) -> list[ApprovalRequest]:
        now = self._clock.now()
        candidates = self._repository.list(status=ApprovalStatus.PENDING, expires_before=now)
        return check_escalations(candidates, now)

    def list_pending_for_approver(self, approver_id: str) -> list[ApprovalRequest]:
        return self._selector.pending_for_approver(approver_id)

    def history_for_expense(self, expense_id: str) -> list[ApprovalRequest]:
        return self._selector.history_for_expense(expense_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        request_id: UUID,
        operation: str,
        actor_id: str | None,
        step: Callable[[ApprovalRequest, object], WorkflowOutcome],
    ) -> ApprovalRequest:
        with LogContext.bind(request_id=str(request_id), actor_id=actor_id), self._locks.hold(request_id):
            try:
                current = self._repository.get(request_id)
                outcome = step(current, self._clock.now())
                saved = self._repository.save(outcome.request, expected_version=current.version)
            except ReconKernelError as exc:
                self._log_refused(operation, exc, request_id=str(request_id), actor_id=actor_id)
                raise

        logger.info("approval_transition_applied", extra={
            "operation": operation,
            "request_id": str(request_id),
            "workflow_action": outcome.action,
            "status": saved.status.value,
            "current_level": saved.current_level,
            "version": saved.version,
        })
        self._deliver(saved, outcome)
        return saved

    def _deliver(self, request: ApprovalRequest, outcome: WorkflowOutcome) -> None:
        if outcome.expense_status is not None:
            self._mark_expense(request.expense_id, outcome)
        if self._notifier is None:
            return
        for event in outcome.events:
            self._notifier.notify(request, event)

    def _mark_expense(self, expense_id: str, result: WorkflowOutcome | AutoResult) -> None:
        if self._expenses is not None:
            self._expenses.mark_status(expense_id, result.expense_status)
        logger.info("expense_status_changed", extra={
            "expense_id": expense_id,
            "expense_status": result.expense_status.value,
        })

    def _require_no_pending(self, expense_id: str) -> None:
        existing = self._selector.pending_for_expense(expense_id)
        if existing is not None:
            raise RequestAlreadyPendingError(expense_id, str(existing.request_id))

    def _policy(self, policy_id: str) -> ApprovalPolicy | None:
        for policy in self._policies:
            if policy.policy_id == policy_id:
                return policy
        return None

    @staticmethod
    def _log_refused(operation: str, exc: ReconKernelError, **fields) -> None:
        logger.warning("approval_operation_refused", extra={
            "operation": operation,
            "error_code": exc.code,
            "error": str(exc),
            **fields,
        })
