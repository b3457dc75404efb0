"""
Condition types (``recon_kernel.domain.conditions``).

Responsibility
--------------
Closed, tagged condition types used by matching rules and approval
policies, together with the left-to-right chaining semantics shared by
both evaluators.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Every condition names a known field and an operator from that field's
  closed operator set.  Anything else raises ``InvalidConditionError``
  at construction, so evaluation never sees an unknown operator.
* Values are coerced once at construction (``Decimal`` for amounts,
  ``int`` for day counts, tuples for membership sets).
* Chaining: a condition's ``logical_operator`` joins it to the NEXT
  condition.  Evaluation is strictly left-to-right with short-circuit,
  no precedence: ``((c1 op1 c2) op2 c3) ...``.  The default join is AND.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Protocol, TypeVar

from recon_kernel.exceptions import InvalidConditionError


class LogicalOperator(str, Enum):
    """How a condition joins the condition that follows it."""

    AND = "and"
    OR = "or"


# =========================================================================
# Matching rule conditions
# =========================================================================


class MatchField(str, Enum):
    """Derived fields a matching rule condition can test."""

    AMOUNT = "amount"
    DATE = "date"
    VENDOR = "vendor"
    DESCRIPTION = "description"


class MatchOperator(str, Enum):
    WITHIN = "within"
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"


_TEXT_MATCH_OPERATORS = frozenset({
    MatchOperator.EQUALS,
    MatchOperator.CONTAINS,
    MatchOperator.STARTS_WITH,
    MatchOperator.ENDS_WITH,
    MatchOperator.REGEX,
})

MATCH_OPERATORS: dict[MatchField, frozenset[MatchOperator]] = {
    MatchField.AMOUNT: frozenset({MatchOperator.WITHIN}),
    MatchField.DATE: frozenset({MatchOperator.WITHIN}),
    MatchField.VENDOR: _TEXT_MATCH_OPERATORS,
    MatchField.DESCRIPTION: _TEXT_MATCH_OPERATORS,
}


# =========================================================================
# Approval policy conditions
# =========================================================================


class PolicyField(str, Enum):
    """Expense facts an approval policy condition can test."""

    AMOUNT = "amount"
    CATEGORY = "category"
    VENDOR = "vendor"
    SUBMITTER_ID = "submitter_id"


class PolicyOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"


_MEMBERSHIP_OPERATORS = frozenset({PolicyOperator.IN, PolicyOperator.NOT_IN})

_NUMERIC_POLICY_OPERATORS = frozenset({
    PolicyOperator.EQ,
    PolicyOperator.NE,
    PolicyOperator.GT,
    PolicyOperator.GTE,
    PolicyOperator.LT,
    PolicyOperator.LTE,
}) | _MEMBERSHIP_OPERATORS

_TEXT_POLICY_OPERATORS = frozenset({
    PolicyOperator.EQ,
    PolicyOperator.NE,
    PolicyOperator.CONTAINS,
}) | _MEMBERSHIP_OPERATORS

POLICY_OPERATORS: dict[PolicyField, frozenset[PolicyOperator]] = {
    PolicyField.AMOUNT: _NUMERIC_POLICY_OPERATORS,
    PolicyField.CATEGORY: _TEXT_POLICY_OPERATORS,
    PolicyField.VENDOR: _TEXT_POLICY_OPERATORS,
    PolicyField.SUBMITTER_ID: _TEXT_POLICY_OPERATORS,
}


# =========================================================================
# Coercion helpers
# =========================================================================

_E = TypeVar("_E", bound=Enum)


def _coerce_enum(enum_type: type[_E], raw: Any, field: str, operator: str) -> _E:
    try:
        return enum_type(raw)
    except ValueError as e:
        raise InvalidConditionError(
            field, operator, f"unknown {enum_type.__name__} {raw!r}",
        ) from e


def _coerce_decimal(raw: Any, field: str, operator: str) -> Decimal:
    if isinstance(raw, bool):
        raise InvalidConditionError(field, operator, f"not a number: {raw!r}")
    try:
        return raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (InvalidOperation, ValueError) as e:
        raise InvalidConditionError(field, operator, f"not a number: {raw!r}") from e


def _coerce_logical(raw: Any, field: str, operator: str) -> LogicalOperator | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.lower()
    return _coerce_enum(LogicalOperator, raw, field, operator)


@dataclass(frozen=True)
class MatchCondition:
    """A predicate over a (source, candidate) pair.

    ``amount``/``date`` conditions use ``within``; ``value`` overrides
    the rule's own tolerance when given.  Text conditions test the
    candidate's text against the literal ``value``.
    """

    field: MatchField
    operator: MatchOperator
    value: Decimal | int | str | None = None
    logical_operator: LogicalOperator | None = None
    case_sensitive: bool = False

    def __post_init__(self) -> None:
        raw_field, raw_op = str(getattr(self.field, "value", self.field)), str(
            getattr(self.operator, "value", self.operator)
        )
        field = _coerce_enum(MatchField, self.field, raw_field, raw_op)
        operator = _coerce_enum(MatchOperator, self.operator, raw_field, raw_op)
        if operator not in MATCH_OPERATORS[field]:
            raise InvalidConditionError(
                raw_field, raw_op, f"operator not allowed for field {field.value}",
            )
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "operator", operator)
        object.__setattr__(
            self, "logical_operator",
            _coerce_logical(self.logical_operator, raw_field, raw_op),
        )

        value = self.value
        if field is MatchField.AMOUNT:
            if value is not None:
                value = _coerce_decimal(value, raw_field, raw_op)
                if value < 0:
                    raise InvalidConditionError(raw_field, raw_op, "tolerance must be >= 0")
        elif field is MatchField.DATE:
            if value is not None:
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise InvalidConditionError(
                        raw_field, raw_op, f"day tolerance must be a non-negative int: {value!r}",
                    )
        else:
            if not isinstance(value, str) or not value:
                raise InvalidConditionError(raw_field, raw_op, "text value is required")
            if operator is MatchOperator.REGEX:
                try:
                    re.compile(value)
                except re.error as e:
                    raise InvalidConditionError(raw_field, raw_op, f"bad pattern: {e}") from e
        object.__setattr__(self, "value", value)


@dataclass(frozen=True)
class PolicyCondition:
    """A predicate over ``{amount, category, vendor, submitter_id}``."""

    field: PolicyField
    operator: PolicyOperator
    value: Any
    logical_operator: LogicalOperator | None = None

    def __post_init__(self) -> None:
        raw_field, raw_op = str(getattr(self.field, "value", self.field)), str(
            getattr(self.operator, "value", self.operator)
        )
        field = _coerce_enum(PolicyField, self.field, raw_field, raw_op)
        operator = _coerce_enum(PolicyOperator, self.operator, raw_field, raw_op)
        if operator not in POLICY_OPERATORS[field]:
            raise InvalidConditionError(
                raw_field, raw_op, f"operator not allowed for field {field.value}",
            )
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "operator", operator)
        object.__setattr__(
            self, "logical_operator",
            _coerce_logical(self.logical_operator, raw_field, raw_op),
        )

        if operator in _MEMBERSHIP_OPERATORS:
            if isinstance(self.value, (str, bytes)) or not isinstance(self.value, (list, tuple, set, frozenset)):
                raise InvalidConditionError(raw_field, raw_op, "membership needs a list of values")
            items = tuple(self.value)
            if field is PolicyField.AMOUNT:
                items = tuple(_coerce_decimal(v, raw_field, raw_op) for v in items)
            else:
                items = tuple(str(v) for v in items)
            object.__setattr__(self, "value", items)
        elif field is PolicyField.AMOUNT:
            object.__setattr__(self, "value", _coerce_decimal(self.value, raw_field, raw_op))
        else:
            if self.value is None:
                raise InvalidConditionError(raw_field, raw_op, "value is required")
            object.__setattr__(self, "value", str(self.value))


# =========================================================================
# Chaining
# =========================================================================


class _Chainable(Protocol):
    logical_operator: LogicalOperator | None


_C = TypeVar("_C", bound=_Chainable)


def chain_conditions(
    conditions: Sequence[_C],
    holds: Callable[[_C], bool],
) -> bool:
    """Evaluate conditions left-to-right with short-circuit.

    An empty condition list is vacuously true.
    """
    if not conditions:
        return True
    result = holds(conditions[0])
    for previous, condition in zip(conditions, conditions[1:]):
        joiner = previous.logical_operator or LogicalOperator.AND
        if joiner is LogicalOperator.AND and not result:
            continue
        if joiner is LogicalOperator.OR and result:
            continue
        result = holds(condition)
    return result
