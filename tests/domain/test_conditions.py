"""
Tests for condition value objects.

Conditions validate their field/operator pairing and coerce values when
constructed, so malformed configuration fails at load time.
"""

from decimal import Decimal

import pytest

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
from recon_kernel.exceptions import InvalidConditionError


class TestMatchCondition:

    def test_string_inputs_coerced_to_enums(self):
        condition = MatchCondition("vendor", "contains", "acme", logical_operator="OR")
        assert condition.field is MatchField.VENDOR
        assert condition.operator is MatchOperator.CONTAINS
        assert condition.logical_operator is LogicalOperator.OR

    def test_amount_value_coerced_to_decimal(self):
        condition = MatchCondition(MatchField.AMOUNT, MatchOperator.WITHIN, "0.50")
        assert condition.value == Decimal("0.50")

    @pytest.mark.parametrize("field,operator,value", [
        ("amount", "contains", "x"),
        ("vendor", "within", None),
        ("date", "regex", "."),
        ("color", "equals", "red"),
        ("vendor", "like", "acme"),
    ])
    def test_operator_not_allowed_for_field(self, field, operator, value):
        with pytest.raises(InvalidConditionError):
            MatchCondition(field, operator, value)

    def test_negative_amount_tolerance_rejected(self):
        with pytest.raises(InvalidConditionError):
            MatchCondition(MatchField.AMOUNT, MatchOperator.WITHIN, "-1")

    def test_date_tolerance_must_be_int(self):
        with pytest.raises(InvalidConditionError):
            MatchCondition(MatchField.DATE, MatchOperator.WITHIN, "3")

    def test_text_value_required(self):
        with pytest.raises(InvalidConditionError):
            MatchCondition(MatchField.DESCRIPTION, MatchOperator.EQUALS, "")

    def test_bad_regex_rejected(self):
        with pytest.raises(InvalidConditionError) as exc_info:
            MatchCondition(MatchField.VENDOR, MatchOperator.REGEX, "([unclosed")
        assert exc_info.value.field == "vendor"


class TestPolicyCondition:

    def test_membership_values_become_tuple(self):
        condition = PolicyCondition("category", "in", ["travel", "meals"])
        assert condition.value == ("travel", "meals")

    def test_membership_needs_a_list(self):
        with pytest.raises(InvalidConditionError):
            PolicyCondition(PolicyField.CATEGORY, PolicyOperator.IN, "travel")

    def test_ordering_operators_only_for_amount(self):
        with pytest.raises(InvalidConditionError):
            PolicyCondition(PolicyField.VENDOR, PolicyOperator.GT, "m")

    def test_amount_value_must_be_numeric(self):
        with pytest.raises(InvalidConditionError):
            PolicyCondition(PolicyField.AMOUNT, PolicyOperator.GT, "lots")

    def test_amount_value_coerced(self):
        assert PolicyCondition("amount", "gte", 100).value == Decimal("100")


class TestChaining:

    def test_left_to_right_with_short_circuit(self):
        seen = []

        class Step:
            def __init__(self, name, result, joiner=None):
                self.name, self.result, self.logical_operator = name, result, joiner

        def holds(step):
            seen.append(step.name)
            return step.result

        steps = [
            Step("a", False, LogicalOperator.AND),
            Step("b", True, LogicalOperator.OR),
            Step("c", True),
        ]
        # (a AND b) OR c; b is never evaluated
        assert chain_conditions(steps, holds)
        assert seen == ["a", "c"]

    def test_default_joiner_is_and(self):
        class Step:
            logical_operator = None

            def __init__(self, result):
                self.result = result

        assert not chain_conditions([Step(True), Step(False)], lambda s: s.result)
