"""
Pure domain layer.

Value objects and collaborator contracts with NO dependencies on the ORM,
the database, the clock or any other I/O.  All domain objects are
immutable.
"""

from recon_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ENTRY_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalComment,
    ApprovalDecision,
    ApprovalEntry,
    ApprovalPolicy,
    ApprovalPriority,
    ApprovalRequest,
    ApprovalStatus,
    ApproverLevel,
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
from recon_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from recon_kernel.domain.conditions import (
    LogicalOperator,
    MatchCondition,
    MatchField,
    MatchOperator,
    PolicyCondition,
    PolicyField,
    PolicyOperator,
    chain_conditions,
)
from recon_kernel.domain.records import (
    DEFAULT_MATCHING_RULE,
    FieldScores,
    FieldWeights,
    MatchableRecord,
    MatchDiscrepancy,
    MatchingRule,
    MatchingStatistics,
    MatchMethod,
    MatchResult,
    RecordStatus,
    Severity,
    ToleranceKind,
)

__all__ = [
    "APPROVAL_TRANSITIONS",
    "ENTRY_TRANSITIONS",
    "TERMINAL_APPROVAL_STATUSES",
    "ApprovalComment",
    "ApprovalDecision",
    "ApprovalEntry",
    "ApprovalPolicy",
    "ApprovalPriority",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApproverLevel",
    "AutoResult",
    "EntryStatus",
    "EscalationAction",
    "EscalationRule",
    "Expense",
    "ExpenseStatus",
    "PolicyAction",
    "WorkflowEvent",
    "WorkflowEventType",
    "WorkflowOutcome",
    "WorkflowSettings",
    "priority_for_amount",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "LogicalOperator",
    "MatchCondition",
    "MatchField",
    "MatchOperator",
    "PolicyCondition",
    "PolicyField",
    "PolicyOperator",
    "chain_conditions",
    "DEFAULT_MATCHING_RULE",
    "FieldScores",
    "FieldWeights",
    "MatchableRecord",
    "MatchDiscrepancy",
    "MatchingRule",
    "MatchingStatistics",
    "MatchMethod",
    "MatchResult",
    "RecordStatus",
    "Severity",
    "ToleranceKind",
]
