"""
recon_engines.approval_workflow -- Approval request state machine.

Responsibility:
    Create approval requests from a selected policy and advance them in
    response to approver decisions, withdrawal and deadline escalation.
    Each transition returns a new immutable request plus the events the
    caller must deliver and the expense status it must record.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is always an
    argument.  Persistence, locking and notification delivery belong to
    ``recon_kernel.services.approval_service``.

Invariants enforced:
    - Request status moves only along APPROVAL_TRANSITIONS; a decision on
      a terminal request raises StaleRequestError.
    - Entry status moves only along ENTRY_TRANSITIONS.  Entries are never
      removed; delegation appends a new entry for the delegate.
    - current_level never decreases.
    - A level is complete when it has at least one approval and every
      required, non-delegated entry on it is approved.  A delegated entry
      is represented by its delegate's entry, which inherits is_required.
    - The request is approved only after its last level completes.
    - A single rejection at any level is a veto.
    - Every transition increments ``version`` by exactly one.
    - On a terminal transition, entries still pending become expired.

Failure modes:
    - StaleRequestError: request not pending, or the approver's entries
      are all decided (replayed decision).
    - UnauthorizedApproverError: the approver's pending entry sits above
      the current level, the amount exceeds their limit, they may not
      delegate, or a non-submitter tries to withdraw.
    - ApproverNotFoundError: approver has no entry on the request.
    - InvalidDecisionError: delegate without a usable target.

Audit relevance:
    Request comments and per-entry decided_at/delegated_to/delegated_from
    fields preserve the full chain of custody for each decision.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from recon_engines.approval_rules import evaluate_conditions
from recon_engines.tracer import traced_engine
from recon_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ENTRY_TRANSITIONS,
    ApprovalComment,
    ApprovalDecision,
    ApprovalEntry,
    ApprovalPolicy,
    ApprovalRequest,
    ApprovalStatus,
    AutoResult,
    EntryStatus,
    EscalationAction,
    EscalationRule,
    Expense,
    ExpenseStatus,
    PolicyAction,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowOutcome,
    WorkflowSettings,
    priority_for_amount,
)
from recon_kernel.domain.conditions import PolicyField
from recon_kernel.exceptions import (
    ApproverNotFoundError,
    InvalidDecisionError,
    StaleRequestError,
    UnauthorizedApproverError,
)
from recon_kernel.logging_config import get_logger

logger = get_logger("engines.approval_workflow")


# =========================================================================
# Submission
# =========================================================================


@traced_engine("approval_workflow.submit", "1.0", fingerprint_fields=("expense", "policy", "submitter_id"))
def submit(
    expense: Expense,
    policy: ApprovalPolicy,
    submitter_id: str,
    now: datetime,
    settings: WorkflowSettings | None = None,
    comments: str | None = None,
    request_id: UUID | None = None,
) -> WorkflowOutcome | AutoResult:
    """Apply ``policy`` to ``expense``.

    Returns an AutoResult when the policy (or a disabled workflow)
    resolves the expense immediately; otherwise a WorkflowOutcome holding
    the new pending request.
    """
    settings = settings or WorkflowSettings()

    if not settings.is_active or policy.action is PolicyAction.AUTO_APPROVE:
        logger.info("expense_auto_approved", extra={
            "expense_id": expense.expense_id,
            "policy_id": policy.policy_id,
            "workflow_active": settings.is_active,
        })
        return AutoResult(
            expense_id=expense.expense_id,
            policy_id=policy.policy_id,
            action=PolicyAction.AUTO_APPROVE,
            expense_status=ExpenseStatus.VERIFIED,
        )

    if policy.action is PolicyAction.REJECT:
        logger.info("expense_auto_rejected", extra={
            "expense_id": expense.expense_id,
            "policy_id": policy.policy_id,
        })
        return AutoResult(
            expense_id=expense.expense_id,
            policy_id=policy.policy_id,
            action=PolicyAction.REJECT,
            expense_status=ExpenseStatus.REJECTED,
        )

    entries = tuple(
        ApprovalEntry(
            entry_id=uuid4(),
            approver_id=level.approver_id,
            level=level.level,
            is_required=level.is_required,
            can_delegate=level.can_delegate,
            max_amount=level.max_amount,
        )
        for level in policy.approver_levels
    )
    request = ApprovalRequest(
        request_id=request_id or uuid4(),
        expense_id=expense.expense_id,
        policy_id=policy.policy_id,
        submitter_id=submitter_id,
        amount=expense.amount,
        currency=expense.currency,
        status=ApprovalStatus.PENDING,
        current_level=1,
        total_levels=policy.total_levels,
        submitted_at=now,
        expires_at=now + timedelta(hours=settings.escalation_delay_hours),
        approvers=entries,
        comments=_with_comment((), submitter_id, comments, now),
        priority=priority_for_amount(expense.amount),
        category=expense.category,
        vendor=expense.vendor,
    )

    logger.info("approval_request_submitted", extra={
        "request_id": str(request.request_id),
        "expense_id": expense.expense_id,
        "policy_id": policy.policy_id,
        "total_levels": request.total_levels,
        "approver_count": len(entries),
        "expires_at": request.expires_at,
        "priority": request.priority.value,
    })

    return WorkflowOutcome(
        request=request,
        events=(_event(WorkflowEventType.SUBMITTED, request, request.pending_approvers_at(1), 1),),
        expense_status=ExpenseStatus.PENDING_REVIEW,
        action="submitted",
    )


# =========================================================================
# Decisions
# =========================================================================


def decide(
    request: ApprovalRequest,
    approver_id: str,
    decision: ApprovalDecision | str,
    now: datetime,
    comments: str | None = None,
    delegate_to: str | None = None,
) -> WorkflowOutcome:
    """Apply one approver decision to a pending request."""
    decision = ApprovalDecision(decision)
    _require_pending(request, f"cannot {decision.value}")
    index = _actionable_entry_index(request, approver_id)
    entry = request.approvers[index]

    if decision is ApprovalDecision.REJECT:
        return _reject(request, index, now, comments)
    if decision is ApprovalDecision.DELEGATE:
        return _delegate(request, index, now, comments, delegate_to)

    if entry.max_amount is not None and request.amount > entry.max_amount:
        raise UnauthorizedApproverError(
            str(request.request_id), approver_id,
            f"amount {request.amount} exceeds approval limit {entry.max_amount}",
        )
    return _approve(request, index, now, comments)


def _approve(
    request: ApprovalRequest,
    index: int,
    now: datetime,
    comments: str | None,
) -> WorkflowOutcome:
    entry = request.approvers[index]
    approvers = _replace_entry(
        request.approvers, index,
        status=EntryStatus.APPROVED, decided_at=now, comments=comments,
    )
    request = _bump(
        request,
        approvers=approvers,
        comments=_with_comment(request.comments, entry.approver_id, comments, now),
    )

    if not level_complete(request.approvers, request.current_level):
        logger.info("approval_entry_approved", extra={
            "request_id": str(request.request_id),
            "approver_id": entry.approver_id,
            "level": entry.level,
            "current_level": request.current_level,
        })
        return WorkflowOutcome(request=request, action="entry_approved")

    if request.current_level >= request.total_levels:
        request = _terminate(request, ApprovalStatus.APPROVED, now)
        logger.info("approval_request_approved", extra={
            "request_id": str(request.request_id),
            "expense_id": request.expense_id,
            "final_approver_id": entry.approver_id,
        })
        return WorkflowOutcome(
            request=request,
            events=(_event(WorkflowEventType.APPROVED, request, (request.submitter_id,)),),
            expense_status=ExpenseStatus.VERIFIED,
            action="approved",
        )

    request = replace(request, current_level=request.current_level + 1)
    logger.info("approval_level_advanced", extra={
        "request_id": str(request.request_id),
        "current_level": request.current_level,
        "total_levels": request.total_levels,
    })
    return WorkflowOutcome(
        request=request,
        events=(_event(
            WorkflowEventType.LEVEL_ADVANCE, request,
            request.pending_approvers_at(request.current_level), request.current_level,
        ),),
        action="level_advanced",
    )


def _reject(
    request: ApprovalRequest,
    index: int,
    now: datetime,
    comments: str | None,
) -> WorkflowOutcome:
    entry = request.approvers[index]
    approvers = _replace_entry(
        request.approvers, index,
        status=EntryStatus.REJECTED, decided_at=now, comments=comments,
    )
    request = _bump(
        request,
        approvers=approvers,
        comments=_with_comment(request.comments, entry.approver_id, comments, now),
    )
    request = _terminate(request, ApprovalStatus.REJECTED, now)
    logger.info("approval_request_rejected", extra={
        "request_id": str(request.request_id),
        "expense_id": request.expense_id,
        "approver_id": entry.approver_id,
        "level": entry.level,
    })
    return WorkflowOutcome(
        request=request,
        events=(_event(WorkflowEventType.REJECTED, request, (request.submitter_id,)),),
        expense_status=ExpenseStatus.REJECTED,
        action="rejected",
    )


def _delegate(
    request: ApprovalRequest,
    index: int,
    now: datetime,
    comments: str | None,
    delegate_to: str | None,
) -> WorkflowOutcome:
    entry = request.approvers[index]
    request_ref = str(request.request_id)

    if not delegate_to or delegate_to == entry.approver_id:
        raise InvalidDecisionError(request_ref, "delegate", "a different delegate is required")
    if not entry.can_delegate:
        raise UnauthorizedApproverError(
            request_ref, entry.approver_id, "delegation not permitted for this entry",
        )
    if any(
        e.approver_id == delegate_to and e.level == entry.level and e.status is EntryStatus.PENDING
        for e in request.approvers
    ):
        raise InvalidDecisionError(
            request_ref, "delegate", f"{delegate_to} already holds a pending entry at level {entry.level}",
        )

    approvers = _replace_entry(
        request.approvers, index,
        status=EntryStatus.DELEGATED, decided_at=now, delegated_to=delegate_to, comments=comments,
    )
    delegate_entry = ApprovalEntry(
        entry_id=uuid4(),
        approver_id=delegate_to,
        level=entry.level,
        is_required=entry.is_required,
        can_delegate=entry.can_delegate,
        max_amount=entry.max_amount,
        delegated_from=entry.approver_id,
    )
    request = _bump(
        request,
        approvers=approvers + (delegate_entry,),
        comments=_with_comment(request.comments, entry.approver_id, comments, now),
    )
    logger.info("approval_entry_delegated", extra={
        "request_id": request_ref,
        "approver_id": entry.approver_id,
        "delegate_to": delegate_to,
        "level": entry.level,
    })
    return WorkflowOutcome(
        request=request,
        events=(_event(WorkflowEventType.SUBMITTED, request, (delegate_to,), entry.level),),
        action="delegated",
    )


def withdraw(
    request: ApprovalRequest,
    actor_id: str,
    now: datetime,
    reason: str | None = None,
) -> WorkflowOutcome:
    """Submitter pulls a pending request back."""
    _require_pending(request, "cannot withdraw")
    if actor_id != request.submitter_id:
        raise UnauthorizedApproverError(
            str(request.request_id), actor_id, "only the submitter may withdraw",
        )
    request = _bump(request, comments=_with_comment(request.comments, actor_id, reason, now))
    request = _terminate(request, ApprovalStatus.WITHDRAWN, now)
    logger.info("approval_request_withdrawn", extra={
        "request_id": str(request.request_id),
        "expense_id": request.expense_id,
    })
    return WorkflowOutcome(
        request=request,
        expense_status=ExpenseStatus.DRAFT,
        action="withdrawn",
    )


# =========================================================================
# Escalation
# =========================================================================


def check_escalations(
    requests: Iterable[ApprovalRequest],
    now: datetime,
) -> list[ApprovalRequest]:
    """Pending requests whose deadline has passed, oldest deadline first."""
    due = [
        r for r in requests
        if r.status is ApprovalStatus.PENDING and now >= r.expires_at
    ]
    due.sort(key=lambda r: (r.expires_at, str(r.request_id)))
    return due


def select_escalation_rule(
    request: ApprovalRequest,
    rules: Sequence[EscalationRule],
    now: datetime,
) -> EscalationRule | None:
    """First unapplied rule whose trigger time has passed and whose conditions hold."""
    hours_pending = (now - request.submitted_at).total_seconds() / 3600
    facts = {
        PolicyField.AMOUNT: request.amount,
        PolicyField.CATEGORY: request.category,
        PolicyField.VENDOR: request.vendor,
        PolicyField.SUBMITTER_ID: request.submitter_id,
    }
    for rule in sorted(rules, key=lambda r: (r.trigger_after_hours, r.rule_id)):
        if rule.rule_id in request.escalations_applied:
            continue
        if rule.trigger_after_hours > hours_pending:
            continue
        if evaluate_conditions(rule.conditions, facts):
            return rule
    return None


def escalate(
    request: ApprovalRequest,
    now: datetime,
    policy: ApprovalPolicy | None = None,
    default_rules: Sequence[EscalationRule] = (),
) -> WorkflowOutcome:
    """Act on a request that is past its deadline.

    The policy's own escalation rules take precedence over the workflow
    defaults.  When no rule is left to apply, the request expires.
    """
    _require_pending(request, "cannot escalate")
    if now < request.expires_at:
        raise StaleRequestError(
            str(request.request_id), request.status.value,
            f"escalation deadline {request.expires_at.isoformat()} not reached",
        )

    rules = policy.escalation_rules if policy is not None and policy.escalation_rules else default_rules
    rule = select_escalation_rule(request, rules, now)

    if rule is None:
        recipients = _unique(request.pending_approvers_at(request.current_level) + (request.submitter_id,))
        request = _terminate(_bump(request), ApprovalStatus.EXPIRED, now)
        logger.warning("approval_request_expired", extra={
            "request_id": str(request.request_id),
            "expense_id": request.expense_id,
            "current_level": request.current_level,
        })
        return WorkflowOutcome(
            request=request,
            events=(_event(WorkflowEventType.ESCALATED, request, recipients, request.current_level),),
            action="expired",
        )

    request = _bump(request, escalations_applied=request.escalations_applied + (rule.rule_id,))
    extra = {
        "request_id": str(request.request_id),
        "escalation_rule_id": rule.rule_id,
        "escalation_action": rule.action.value,
    }

    if rule.action is EscalationAction.NOTIFY:
        request = replace(
            request,
            approvers=request.approvers + _escalation_entries(request, rule),
            expires_at=now + timedelta(hours=rule.extend_hours),
        )
        recipients = _unique(request.pending_approvers_at(request.current_level) + rule.escalate_to)
        logger.info("approval_request_escalated", extra={**extra, "expires_at": request.expires_at})
        return WorkflowOutcome(
            request=request,
            events=(_event(WorkflowEventType.ESCALATED, request, recipients, request.current_level),),
            action="escalation_notified",
            escalation_rule_id=rule.rule_id,
        )

    pending = request.pending_approvers_at(request.current_level)
    if rule.action is EscalationAction.AUTO_APPROVE:
        status, event_type, expense_status = (
            ApprovalStatus.APPROVED, WorkflowEventType.APPROVED, ExpenseStatus.VERIFIED,
        )
    else:
        status, event_type, expense_status = (
            ApprovalStatus.REJECTED, WorkflowEventType.REJECTED, ExpenseStatus.REJECTED,
        )
    request = _terminate(request, status, now)
    logger.info("approval_request_escalated", extra={**extra, "new_status": status.value})
    return WorkflowOutcome(
        request=request,
        events=(
            _event(WorkflowEventType.ESCALATED, request, _unique(pending + rule.escalate_to), request.current_level),
            _event(event_type, request, (request.submitter_id,)),
        ),
        expense_status=expense_status,
        action=f"escalation_{status.value}",
        escalation_rule_id=rule.rule_id,
    )


# =========================================================================
# Helpers
# =========================================================================


def level_complete(approvers: Sequence[ApprovalEntry], level: int) -> bool:
    """At least one approval and every required live entry approved."""
    live = [e for e in approvers if e.level == level and e.status is not EntryStatus.DELEGATED]
    if not any(e.status is EntryStatus.APPROVED for e in live):
        return False
    return all(e.status is EntryStatus.APPROVED for e in live if e.is_required)


def _require_pending(request: ApprovalRequest, what: str) -> None:
    if request.status is not ApprovalStatus.PENDING:
        raise StaleRequestError(
            str(request.request_id), request.status.value, f"request is no longer pending; {what}",
        )


def _actionable_entry_index(request: ApprovalRequest, approver_id: str) -> int:
    own = [(i, e) for i, e in enumerate(request.approvers) if e.approver_id == approver_id]
    if not own:
        raise ApproverNotFoundError(str(request.request_id), approver_id)

    pending = [(i, e) for i, e in own if e.status is EntryStatus.PENDING]
    actionable = [(i, e) for i, e in pending if e.level <= request.current_level]
    if actionable:
        return max(actionable, key=lambda item: (item[1].level, item[0]))[0]
    if pending:
        raise UnauthorizedApproverError(
            str(request.request_id), approver_id,
            f"entry is at level {min(e.level for _, e in pending)}, "
            f"request is at level {request.current_level}",
        )
    raise StaleRequestError(
        str(request.request_id), request.status.value,
        f"approver {approver_id} has already decided",
    )


def _replace_entry(
    approvers: tuple[ApprovalEntry, ...],
    index: int,
    **changes,
) -> tuple[ApprovalEntry, ...]:
    entry = approvers[index]
    new_status = changes.get("status", entry.status)
    assert new_status in ENTRY_TRANSITIONS[entry.status], (
        f"illegal entry transition {entry.status.value} -> {new_status.value}"
    )
    return approvers[:index] + (replace(entry, **changes),) + approvers[index + 1:]


def _bump(request: ApprovalRequest, **changes) -> ApprovalRequest:
    return replace(request, version=request.version + 1, **changes)


def _terminate(request: ApprovalRequest, status: ApprovalStatus, now: datetime) -> ApprovalRequest:
    assert status in APPROVAL_TRANSITIONS[request.status], (
        f"illegal transition {request.status.value} -> {status.value}"
    )
    approvers = tuple(
        replace(e, status=EntryStatus.EXPIRED) if e.status is EntryStatus.PENDING else e
        for e in request.approvers
    )
    return replace(request, status=status, completed_at=now, approvers=approvers)


def _escalation_entries(
    request: ApprovalRequest,
    rule: EscalationRule,
) -> tuple[ApprovalEntry, ...]:
    already = set(request.pending_approvers_at(request.current_level))
    added: list[ApprovalEntry] = []
    for approver_id in rule.escalate_to:
        if approver_id in already:
            continue
        already.add(approver_id)
        added.append(ApprovalEntry(
            entry_id=uuid4(),
            approver_id=approver_id,
            level=request.current_level,
            is_required=False,
        ))
    return tuple(added)


def _with_comment(
    comments: tuple[ApprovalComment, ...],
    author_id: str,
    body: str | None,
    now: datetime,
) -> tuple[ApprovalComment, ...]:
    if not body:
        return comments
    return comments + (ApprovalComment(author_id=author_id, body=body, created_at=now),)


def _unique(ids: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(ids))


def _event(
    event_type: WorkflowEventType,
    request: ApprovalRequest,
    recipients: Iterable[str],
    level: int | None = None,
) -> WorkflowEvent:
    return WorkflowEvent(
        event_type=event_type,
        request_id=request.request_id,
        recipients=_unique(recipients),
        level=level,
    )
