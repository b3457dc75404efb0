"""
Tests for approval policy selection.

Covers:
- Priority ordering and tie-breaks
- Condition operators and chaining
- Inactive policies and the no-match case
"""

from decimal import Decimal

import pytest

from recon_engines.approval_rules import (
    condition_holds,
    evaluate_conditions,
    require_policy,
    select_policy,
)
from recon_kernel.domain.approval import PolicyAction
from recon_kernel.domain.conditions import (
    LogicalOperator,
    PolicyCondition,
    PolicyField,
    PolicyOperator,
)
from recon_kernel.exceptions import NoMatchingPolicyError
from tests.conftest import make_expense, make_policy


def amount_at_least(value):
    return PolicyCondition(PolicyField.AMOUNT, PolicyOperator.GTE, value)


class TestSelectPolicy:

    def test_highest_priority_match_wins(self):
        small = make_policy("small", priority=100, action=PolicyAction.AUTO_APPROVE,
                            conditions=(PolicyCondition(PolicyField.AMOUNT, PolicyOperator.LT, "100"),))
        big = make_policy("big", priority=90, conditions=(amount_at_least("100"),))

        assert select_policy(make_expense(amount="50"), "emp-1", [big, small]).policy_id == "small"
        assert select_policy(make_expense(amount="150"), "emp-1", [big, small]).policy_id == "big"

    def test_ties_broken_by_policy_id(self):
        policies = [make_policy("zeta", priority=5), make_policy("alpha", priority=5)]
        assert select_policy(make_expense(), "emp-1", policies).policy_id == "alpha"

    def test_inactive_policy_skipped(self):
        policies = [
            make_policy("off", priority=50, is_active=False),
            make_policy("on", priority=1),
        ]
        assert select_policy(make_expense(), "emp-1", policies).policy_id == "on"

    def test_no_match_returns_none_and_logs(self, captured_logs):
        policy = make_policy("big", conditions=(amount_at_least("1000"),))

        assert select_policy(make_expense(amount="10"), "emp-1", [policy]) is None
        assert any(r["message"] == "approval_policy_not_found" for r in captured_logs())

    def test_require_policy_raises(self):
        with pytest.raises(NoMatchingPolicyError) as exc_info:
            require_policy(make_expense(expense_id="exp-9"), "emp-1", [])
        assert exc_info.value.expense_id == "exp-9"

    def test_submitter_condition(self):
        execs = make_policy(
            "execs", priority=10, action=PolicyAction.AUTO_APPROVE,
            conditions=(PolicyCondition(PolicyField.SUBMITTER_ID, PolicyOperator.IN, ["ceo", "cfo"]),),
        )
        fallback = make_policy("fallback", priority=0)

        assert select_policy(make_expense(), "cfo", [execs, fallback]).policy_id == "execs"
        assert select_policy(make_expense(), "emp-1", [execs, fallback]).policy_id == "fallback"


class TestConditions:

    facts = {
        PolicyField.AMOUNT: Decimal("250.00"),
        PolicyField.CATEGORY: "Travel",
        PolicyField.VENDOR: "Delta Air Lines",
        PolicyField.SUBMITTER_ID: "emp-1",
    }

    @pytest.mark.parametrize("operator,value,expected", [
        (PolicyOperator.EQ, "250", True),
        (PolicyOperator.NE, "250", False),
        (PolicyOperator.GT, "249.99", True),
        (PolicyOperator.GTE, "250", True),
        (PolicyOperator.LT, "250", False),
        (PolicyOperator.LTE, "250", True),
        (PolicyOperator.IN, ["100", "250"], True),
        (PolicyOperator.NOT_IN, ["100", "250"], False),
    ])
    def test_amount_operators(self, operator, value, expected):
        condition = PolicyCondition(PolicyField.AMOUNT, operator, value)
        assert condition_holds(condition, self.facts) is expected

    def test_contains_is_case_insensitive(self):
        condition = PolicyCondition(PolicyField.VENDOR, PolicyOperator.CONTAINS, "delta")
        assert condition_holds(condition, self.facts)

    def test_eq_is_exact(self):
        condition = PolicyCondition(PolicyField.CATEGORY, PolicyOperator.EQ, "travel")
        assert not condition_holds(condition, self.facts)

    def test_and_chain(self):
        conditions = [
            PolicyCondition(PolicyField.CATEGORY, PolicyOperator.EQ, "Travel"),
            amount_at_least("1000"),
        ]
        assert not evaluate_conditions(conditions, self.facts)

    def test_or_chain(self):
        conditions = [
            PolicyCondition(
                PolicyField.CATEGORY, PolicyOperator.EQ, "Meals",
                logical_operator=LogicalOperator.OR,
            ),
            PolicyCondition(PolicyField.VENDOR, PolicyOperator.CONTAINS, "air"),
        ]
        assert evaluate_conditions(conditions, self.facts)

    def test_empty_chain_holds(self):
        assert evaluate_conditions([], self.facts)

    @pytest.mark.parametrize("operator,value,expected", [
        (PolicyOperator.NE, "Globex", True),
        (PolicyOperator.NOT_IN, ["Globex", "Initech"], True),
        (PolicyOperator.EQ, "Globex", False),
        (PolicyOperator.IN, ["Globex"], False),
        (PolicyOperator.CONTAINS, "glob", False),
    ])
    def test_missing_fact_only_satisfies_negations(self, operator, value, expected):
        facts = {**self.facts, PolicyField.VENDOR: None}
        condition = PolicyCondition(PolicyField.VENDOR, operator, value)
        assert condition_holds(condition, facts) is expected
