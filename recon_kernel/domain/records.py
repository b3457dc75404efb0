"""
Matching domain types (``recon_kernel.domain.records``).

Responsibility
--------------
Pure value objects for record matching: the records being matched, the
rules that weight their fields, and the results the match engine emits.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import
only from ``domain/conditions`` and ``exceptions``.

Invariants enforced
-------------------
* ``FieldWeights`` always sum to exactly 1.0.
* Amounts are ``Decimal``; floats are coerced through ``str``.
* ``MatchResult`` is immutable.  A re-evaluation of the same pair is a
  new result with a higher ``version`` (see the match result store).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from recon_kernel.domain.conditions import MatchCondition
from recon_kernel.exceptions import InvalidRuleError, ValidationFailedError

DEFAULT_MATCH_THRESHOLD = 70
DEFAULT_AUTO_CONFIRM_THRESHOLD = 90
EXACT_MATCH_THRESHOLD = 95
DEFAULT_MINIMUM_SCORE = 90
DEFAULT_DATE_DECAY_PER_DAY = 10


class RecordStatus(str, Enum):
    """Whether a record may still be offered as a match candidate."""

    AVAILABLE = "available"
    MATCHED = "matched"
    IGNORED = "ignored"


class ToleranceKind(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class MatchMethod(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _to_decimal(value: Any, what: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationFailedError(f"Invalid {what}: {value!r}") from e


@dataclass(frozen=True)
class MatchableRecord:
    """A bank transaction, receipt or invoice normalized for matching.

    ``amount`` and ``date`` are optional at construction so that
    partially imported records can be held, but the match engine
    rejects records that lack either.
    """

    record_id: str
    date: date | None
    amount: Decimal | None
    currency: str = "USD"
    description_text: str = ""
    vendor_text: str = ""
    status: RecordStatus = RecordStatus.AVAILABLE

    def __post_init__(self) -> None:
        if self.amount is not None:
            object.__setattr__(self, "amount", _to_decimal(self.amount, "amount"))
        object.__setattr__(self, "currency", (self.currency or "").upper().strip())
        object.__setattr__(self, "description_text", self.description_text or "")
        object.__setattr__(self, "vendor_text", self.vendor_text or "")
        object.__setattr__(self, "status", RecordStatus(self.status))


@dataclass(frozen=True)
class FieldWeights:
    """Per-field weights; must sum to exactly 1.0."""

    amount: Decimal = Decimal("0.4")
    date: Decimal = Decimal("0.3")
    vendor: Decimal = Decimal("0.3")

    def __post_init__(self) -> None:
        for name in ("amount", "date", "vendor"):
            value = _to_decimal(getattr(self, name), f"{name} weight")
            if value < 0:
                raise ValidationFailedError(f"{name} weight must be >= 0, got {value}")
            object.__setattr__(self, name, value)
        total = self.amount + self.date + self.vendor
        if total != Decimal("1"):
            raise ValidationFailedError(f"Field weights must sum to 1.0, got {total}")


@dataclass(frozen=True)
class MatchingRule:
    """Tenant-scoped, prioritized weighting configuration.

    Higher ``priority`` is evaluated first; the first active rule whose
    conditions all hold for the pair wins.  ``minimum_score`` is the
    score floor for differences that fall inside the rule's tolerance.
    """

    rule_id: str
    priority: int = 0
    name: str = ""
    conditions: tuple[MatchCondition, ...] = ()
    amount_tolerance: Decimal = Decimal("0")
    amount_tolerance_kind: ToleranceKind = ToleranceKind.FIXED
    date_tolerance_days: int = 0
    date_decay_per_day: int = DEFAULT_DATE_DECAY_PER_DAY
    weights: FieldWeights = field(default_factory=FieldWeights)
    minimum_score: int = DEFAULT_MINIMUM_SCORE
    is_active: bool = True
    tenant_id: str | None = None

    def __post_init__(self) -> None:
        if not self.rule_id:
            raise InvalidRuleError("<unnamed>", "rule_id is required")
        try:
            tolerance = _to_decimal(self.amount_tolerance, "amount tolerance")
            kind = ToleranceKind(self.amount_tolerance_kind)
        except (ValidationFailedError, ValueError) as e:
            raise InvalidRuleError(self.rule_id, str(e)) from e
        if tolerance < 0:
            raise InvalidRuleError(self.rule_id, "amount_tolerance must be >= 0")
        if kind is ToleranceKind.PERCENTAGE and tolerance > 100:
            raise InvalidRuleError(self.rule_id, "percentage tolerance must be <= 100")
        if self.date_tolerance_days < 0:
            raise InvalidRuleError(self.rule_id, "date_tolerance_days must be >= 0")
        if self.date_decay_per_day <= 0:
            raise InvalidRuleError(self.rule_id, "date_decay_per_day must be > 0")
        if not 0 <= self.minimum_score <= 100:
            raise InvalidRuleError(self.rule_id, "minimum_score must be within 0..100")
        if not isinstance(self.weights, FieldWeights):
            raise InvalidRuleError(self.rule_id, "weights must be FieldWeights")
        object.__setattr__(self, "amount_tolerance", tolerance)
        object.__setattr__(self, "amount_tolerance_kind", kind)
        object.__setattr__(self, "conditions", tuple(self.conditions))


DEFAULT_MATCHING_RULE = MatchingRule(
    rule_id="default",
    priority=-1,
    name="Default 40/30/30 weighting",
)


@dataclass(frozen=True)
class FieldScores:
    amount: int
    date: int
    vendor: int


@dataclass(frozen=True)
class MatchDiscrepancy:
    """A recorded difference between the two sides of a match."""

    field: str
    source_value: str
    candidate_value: str
    difference: str
    severity: Severity


@dataclass(frozen=True)
class MatchResult:
    """Outcome of evaluating one (source, candidate) pair.

    ``vacuous_text`` marks results where neither record carried any text,
    so the text score of 100 carries no evidence.
    """

    source_id: str
    candidate_id: str
    overall_confidence: int
    field_scores: FieldScores
    method: MatchMethod
    rule_id: str
    candidate_date: date
    discrepancies: tuple[MatchDiscrepancy, ...] = ()
    vacuous_text: bool = False
    version: int = 1

    @property
    def has_high_severity(self) -> bool:
        return any(d.severity is Severity.HIGH for d in self.discrepancies)


@dataclass(frozen=True)
class MatchingStatistics:
    """Aggregate view over a batch of match results."""

    total_matches: int
    average_confidence: Decimal
    high_confidence_matches: int
    low_confidence_matches: int
    method_distribution: dict[str, int]
    discrepancy_rate: Decimal
