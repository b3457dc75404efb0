"""
recon_engines.approval_rules -- Approval policy selection.

Responsibility:
    Evaluate policy condition chains against an expense and pick the
    approval policy that governs it.  The same condition evaluator gates
    escalation rules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Active policies are evaluated highest priority first (ties broken
      by policy_id); the first whose conditions hold wins.
    - Conditions chain left-to-right with short-circuit; an empty chain
      always holds, which is how a catch-all policy is written.
    - ``contains`` is case-insensitive; ``eq``/``in`` compare exactly.
    - A missing fact (None) satisfies ``ne`` and ``not_in`` and fails
      every other operator.

Failure modes:
    - ``select_policy`` returns None when nothing matches.
    - ``require_policy`` raises NoMatchingPolicyError instead.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from recon_engines.tracer import traced_engine
from recon_kernel.domain.approval import ApprovalPolicy, Expense
from recon_kernel.domain.conditions import (
    PolicyCondition,
    PolicyField,
    PolicyOperator,
    chain_conditions,
)
from recon_kernel.exceptions import NoMatchingPolicyError
from recon_kernel.logging_config import get_logger

logger = get_logger("engines.approval_rules")


def expense_facts(expense: Expense, submitter_id: str) -> dict[PolicyField, Any]:
    return {
        PolicyField.AMOUNT: expense.amount,
        PolicyField.CATEGORY: expense.category,
        PolicyField.VENDOR: expense.vendor,
        PolicyField.SUBMITTER_ID: submitter_id,
    }


def condition_holds(condition: PolicyCondition, facts: Mapping[PolicyField, Any]) -> bool:
    actual = facts.get(condition.field)
    expected = condition.value
    op = condition.operator
    if actual is None:
        # an absent fact equals nothing, so only the negations hold
        return op in (PolicyOperator.NE, PolicyOperator.NOT_IN)

    if op is PolicyOperator.IN:
        return actual in expected
    if op is PolicyOperator.NOT_IN:
        return actual not in expected
    if op is PolicyOperator.EQ:
        return actual == expected
    if op is PolicyOperator.NE:
        return actual != expected
    if op is PolicyOperator.CONTAINS:
        return str(expected).lower() in str(actual).lower()

    # Ordering operators are restricted to the amount field at construction
    actual = Decimal(actual)
    if op is PolicyOperator.GT:
        return actual > expected
    if op is PolicyOperator.GTE:
        return actual >= expected
    if op is PolicyOperator.LT:
        return actual < expected
    if op is PolicyOperator.LTE:
        return actual <= expected
    raise AssertionError(f"unhandled policy operator {op}")


def evaluate_conditions(
    conditions: Sequence[PolicyCondition],
    facts: Mapping[PolicyField, Any],
) -> bool:
    return chain_conditions(conditions, lambda c: condition_holds(c, facts))


@traced_engine("approval_rules", "1.0", fingerprint_fields=("expense", "submitter_id"))
def select_policy(
    expense: Expense,
    submitter_id: str,
    policies: Sequence[ApprovalPolicy],
) -> ApprovalPolicy | None:
    """Return the highest-priority active policy whose conditions hold."""
    facts = expense_facts(expense, submitter_id)
    ordered = sorted(
        (p for p in policies if p.is_active),
        key=lambda p: (-p.priority, p.policy_id),
    )
    for policy in ordered:
        if evaluate_conditions(policy.conditions, facts):
            logger.info("approval_policy_selected", extra={
                "expense_id": expense.expense_id,
                "policy_id": policy.policy_id,
                "action": policy.action.value,
            })
            return policy

    logger.warning("approval_policy_not_found", extra={
        "expense_id": expense.expense_id,
        "policy_count": len(ordered),
    })
    return None


def require_policy(
    expense: Expense,
    submitter_id: str,
    policies: Sequence[ApprovalPolicy],
) -> ApprovalPolicy:
    policy = select_policy(expense, submitter_id, policies)
    if policy is None:
        raise NoMatchingPolicyError(expense.expense_id, len(policies))
    return policy
