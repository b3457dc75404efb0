"""
Approval domain types (``recon_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the expense approval workflow: policies and
approver levels, escalation rules, the ``ApprovalRequest`` aggregate and
its per-approver entries, and the outcomes/events produced by the
workflow state machine.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Request lifecycle: ``APPROVAL_TRANSITIONS`` -- ``pending`` may move to
  any terminal status; terminal statuses have no outgoing edges.
* Entry lifecycle: ``ENTRY_TRANSITIONS`` -- ``pending`` moves one way to
  ``approved``, ``rejected``, ``delegated`` or ``expired``.
* Approver levels are 1-indexed, listed in non-decreasing order and
  contiguous.  ``require_approval`` policies have at least one approver.
* Requests are frozen; every transition yields a new value whose
  ``version`` is one higher.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from recon_kernel.domain.conditions import PolicyCondition
from recon_kernel.exceptions import InvalidPolicyError

DEFAULT_ESCALATION_DELAY_HOURS = 72


# =========================================================================
# Expenses
# =========================================================================


class ExpenseStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    VERIFIED = "verified"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Expense:
    """The expense being routed for approval."""

    expense_id: str
    amount: Decimal
    currency: str = "USD"
    category: str = ""
    vendor: str = ""
    description: str = ""
    status: ExpenseStatus = ExpenseStatus.DRAFT

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))


# =========================================================================
# Status lifecycles
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.EXPIRED,
    ApprovalStatus.WITHDRAWN,
})

APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: TERMINAL_APPROVAL_STATUSES,
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
    ApprovalStatus.WITHDRAWN: frozenset(),
}


class EntryStatus(str, Enum):
    """Per-approver entry states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    EXPIRED = "expired"


ENTRY_TRANSITIONS: dict[EntryStatus, frozenset[EntryStatus]] = {
    EntryStatus.PENDING: frozenset({
        EntryStatus.APPROVED,
        EntryStatus.REJECTED,
        EntryStatus.DELEGATED,
        EntryStatus.EXPIRED,
    }),
    EntryStatus.APPROVED: frozenset(),
    EntryStatus.REJECTED: frozenset(),
    EntryStatus.DELEGATED: frozenset(),
    EntryStatus.EXPIRED: frozenset(),
}


class ApprovalDecision(str, Enum):
    """Decisions an approver can make."""

    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"


class ApprovalPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


def priority_for_amount(amount: Decimal) -> ApprovalPriority:
    """Review priority by expense size."""
    if amount > 10000:
        return ApprovalPriority.URGENT
    if amount > 5000:
        return ApprovalPriority.HIGH
    if amount > 1000:
        return ApprovalPriority.NORMAL
    return ApprovalPriority.LOW


# =========================================================================
# Policy types
# =========================================================================


class PolicyAction(str, Enum):
    AUTO_APPROVE = "auto_approve"
    REQUIRE_APPROVAL = "require_approval"
    REJECT = "reject"


class EscalationAction(str, Enum):
    NOTIFY = "notify"
    AUTO_APPROVE = "auto_approve"
    REJECT = "reject"


@dataclass(frozen=True)
class ApproverLevel:
    """One configured approver slot in a policy."""

    approver_id: str
    level: int
    is_required: bool = True
    can_delegate: bool = False
    max_amount: Decimal | None = None

    def __post_init__(self) -> None:
        if self.max_amount is not None and not isinstance(self.max_amount, Decimal):
            object.__setattr__(self, "max_amount", Decimal(str(self.max_amount)))


@dataclass(frozen=True)
class EscalationRule:
    """What to do when a request sits past its deadline.

    Rules apply once each, in ascending ``trigger_after_hours`` order,
    and only once the request has been pending at least that long.
    """

    rule_id: str
    trigger_after_hours: int
    action: EscalationAction
    escalate_to: tuple[str, ...] = ()
    extend_hours: int = 24
    conditions: tuple[PolicyCondition, ...] = ()
    name: str = ""

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "action", EscalationAction(self.action))
        except ValueError as e:
            raise InvalidPolicyError(self.rule_id, f"unknown escalation action {self.action!r}") from e
        if self.trigger_after_hours < 0:
            raise InvalidPolicyError(self.rule_id, "trigger_after_hours must be >= 0")
        if self.action is EscalationAction.NOTIFY and self.extend_hours <= 0:
            raise InvalidPolicyError(self.rule_id, "notify escalation must extend the deadline")
        object.__setattr__(self, "escalate_to", tuple(self.escalate_to))
        object.__setattr__(self, "conditions", tuple(self.conditions))


@dataclass(frozen=True)
class ApprovalPolicy:
    """Prioritized policy selecting how an expense is approved."""

    policy_id: str
    priority: int
    action: PolicyAction
    conditions: tuple[PolicyCondition, ...] = ()
    approver_levels: tuple[ApproverLevel, ...] = ()
    escalation_rules: tuple[EscalationRule, ...] = ()
    is_active: bool = True
    name: str = ""

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "action", PolicyAction(self.action))
        except ValueError as e:
            raise InvalidPolicyError(self.policy_id, f"unknown action {self.action!r}") from e
        levels = tuple(self.approver_levels)
        object.__setattr__(self, "approver_levels", levels)
        object.__setattr__(self, "conditions", tuple(self.conditions))
        object.__setattr__(self, "escalation_rules", tuple(self.escalation_rules))

        if self.action is PolicyAction.REQUIRE_APPROVAL and not levels:
            raise InvalidPolicyError(self.policy_id, "require_approval needs at least one approver")
        previous = 0
        for approver in levels:
            if approver.level < 1:
                raise InvalidPolicyError(self.policy_id, "approver levels are 1-indexed")
            if approver.level not in (previous, previous + 1):
                raise InvalidPolicyError(
                    self.policy_id,
                    f"approver levels must be ordered and contiguous, got level "
                    f"{approver.level} after {previous}",
                )
            previous = approver.level
        ids_per_level = [(a.level, a.approver_id) for a in levels]
        if len(set(ids_per_level)) != len(ids_per_level):
            raise InvalidPolicyError(self.policy_id, "approver listed twice at one level")

    @property
    def total_levels(self) -> int:
        return max((a.level for a in self.approver_levels), default=0)


@dataclass(frozen=True)
class WorkflowSettings:
    """Tenant-wide workflow switches."""

    is_active: bool = True
    escalation_delay_hours: int = DEFAULT_ESCALATION_DELAY_HOURS
    escalation_rules: tuple[EscalationRule, ...] = ()


# =========================================================================
# Request aggregate
# =========================================================================


@dataclass(frozen=True)
class ApprovalComment:
    author_id: str
    body: str
    created_at: datetime


@dataclass(frozen=True)
class ApprovalEntry:
    """Per-approver record.  Appended or transitioned, never removed."""

    entry_id: UUID
    approver_id: str
    level: int
    status: EntryStatus = EntryStatus.PENDING
    is_required: bool = True
    can_delegate: bool = False
    max_amount: Decimal | None = None
    decided_at: datetime | None = None
    delegated_to: str | None = None
    delegated_from: str | None = None
    comments: str | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Aggregate root, one-to-one with the expense under approval."""

    request_id: UUID
    expense_id: str
    policy_id: str
    submitter_id: str
    amount: Decimal
    currency: str
    status: ApprovalStatus
    current_level: int
    total_levels: int
    submitted_at: datetime
    expires_at: datetime
    approvers: tuple[ApprovalEntry, ...] = ()
    comments: tuple[ApprovalComment, ...] = ()
    completed_at: datetime | None = None
    priority: ApprovalPriority = ApprovalPriority.LOW
    category: str = ""
    vendor: str = ""
    escalations_applied: tuple[str, ...] = ()
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    def entries_at(self, level: int) -> tuple[ApprovalEntry, ...]:
        return tuple(e for e in self.approvers if e.level == level)

    def entries_for(self, approver_id: str) -> tuple[ApprovalEntry, ...]:
        return tuple(e for e in self.approvers if e.approver_id == approver_id)

    def pending_approvers_at(self, level: int) -> tuple[str, ...]:
        seen: list[str] = []
        for entry in self.entries_at(level):
            if entry.status is EntryStatus.PENDING and entry.approver_id not in seen:
                seen.append(entry.approver_id)
        return tuple(seen)


# =========================================================================
# Workflow outputs
# =========================================================================


class WorkflowEventType(str, Enum):
    """Events signalled to the notification collaborator."""

    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    LEVEL_ADVANCE = "level_advance"
    ESCALATED = "escalated"


@dataclass(frozen=True)
class WorkflowEvent:
    event_type: WorkflowEventType
    request_id: UUID
    recipients: tuple[str, ...]
    level: int | None = None


@dataclass(frozen=True)
class AutoResult:
    """Marker returned when a policy resolves an expense without a request."""

    expense_id: str
    policy_id: str | None
    action: PolicyAction
    expense_status: ExpenseStatus


@dataclass(frozen=True)
class WorkflowOutcome:
    """A transitioned request plus the side effects the caller must carry out."""

    request: ApprovalRequest
    events: tuple[WorkflowEvent, ...] = ()
    expense_status: ExpenseStatus | None = None
    action: str = ""
    escalation_rule_id: str | None = None
