"""
recon_engines.matching -- Rule-weighted match engine.

Responsibility:
    Score one (source, candidate) pair: pick the applicable matching rule,
    compute per-field scores, combine them into an overall confidence and
    record every field where the two sides differ.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Imports ``recon_engines.scoring`` and kernel domain types only.

Invariants enforced:
    - Rule selection: active rules in descending priority (ties by
      rule_id); the first whose conditions hold wins, else the default
      40/30/30 rule with no tolerance.
    - overall_confidence == round(sum(weight_f * score_f)), clamped to
      [0, 100]; the winning rule's weights sum to 1.0.
    - method is EXACT iff overall_confidence > 95.
    - Discrepancies are emitted for every non-zero raw difference, even
      when the difference is inside tolerance.
    - Purity: inputs are never mutated; no clock access, no I/O.

Failure modes:
    - MissingRecordFieldError when either record lacks amount or date.
    - Malformed text never raises; it lowers the vendor score.

Audit relevance:
    Given the same rules and records, ``evaluate`` returns an identical
    result, so a stored MatchResult can be re-derived during review.
    Public calls are traced via ``@traced_engine``.

Usage:
    from recon_engines.matching import MatchEngine

    result = MatchEngine().evaluate(receipt, bank_txn, rules)
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from recon_engines.scoring import (
    amount_difference,
    amount_score,
    amount_within_tolerance,
    date_score,
    day_difference,
    normalize_text,
    text_score,
    tolerance_band,
)
from recon_engines.tracer import traced_engine
from recon_kernel.domain.conditions import (
    MatchCondition,
    MatchField,
    MatchOperator,
    chain_conditions,
)
from recon_kernel.domain.records import (
    DEFAULT_MATCHING_RULE,
    EXACT_MATCH_THRESHOLD,
    FieldScores,
    MatchableRecord,
    MatchDiscrepancy,
    MatchingRule,
    MatchMethod,
    MatchResult,
    Severity,
    ToleranceKind,
)
from recon_kernel.exceptions import MissingRecordFieldError
from recon_kernel.logging_config import get_logger

logger = get_logger("engines.matching")

HIGH_SEVERITY_AMOUNT_RATIO = Decimal("0.10")
HIGH_SEVERITY_DAYS = 7
HIGH_SEVERITY_TEXT_SCORE = 50
LOW_SEVERITY_TEXT_SCORE = 90


def require_matchable(record: MatchableRecord) -> None:
    """Raise unless the record carries the fields scoring depends on."""
    if record.amount is None:
        raise MissingRecordFieldError(record.record_id, "amount")
    if record.date is None:
        raise MissingRecordFieldError(record.record_id, "date")


def scoring_text(record: MatchableRecord) -> str:
    """Vendor text, falling back to the description when absent."""
    return record.vendor_text.strip() or record.description_text.strip()


def order_rules(rules: Sequence[MatchingRule]) -> list[MatchingRule]:
    return sorted(
        (r for r in rules if r.is_active),
        key=lambda r: (-r.priority, r.rule_id),
    )


class MatchEngine:
    """Evaluates matching rules against record pairs.

    Stateless: one instance may be shared across threads.
    """

    @traced_engine("match_engine", "1.0", fingerprint_fields=("source", "candidate", "rules"))
    def evaluate(
        self,
        source: MatchableRecord,
        candidate: MatchableRecord,
        rules: Sequence[MatchingRule] = (),
    ) -> MatchResult:
        """Score a single pair against the given rules."""
        require_matchable(source)
        require_matchable(candidate)
        return self.evaluate_ordered(source, candidate, order_rules(rules))

    def evaluate_ordered(
        self,
        source: MatchableRecord,
        candidate: MatchableRecord,
        ordered_rules: Sequence[MatchingRule],
    ) -> MatchResult:
        """Score a validated pair; ``ordered_rules`` comes from ``order_rules``."""
        rule = self.select_rule(source, candidate, ordered_rules)
        return self._score_pair(source, candidate, rule)

    def select_rule(
        self,
        source: MatchableRecord,
        candidate: MatchableRecord,
        ordered_rules: Sequence[MatchingRule],
    ) -> MatchingRule:
        for rule in ordered_rules:
            if chain_conditions(
                rule.conditions,
                lambda c: self._condition_holds(c, rule, source, candidate),
            ):
                return rule
        return DEFAULT_MATCHING_RULE

    # ---------------------------------------------------------------------
    # Conditions
    # ---------------------------------------------------------------------

    def _condition_holds(
        self,
        condition: MatchCondition,
        rule: MatchingRule,
        source: MatchableRecord,
        candidate: MatchableRecord,
    ) -> bool:
        if condition.field is MatchField.AMOUNT:
            if condition.value is not None:
                return amount_within_tolerance(
                    source.amount, candidate.amount, condition.value, ToleranceKind.FIXED,
                )
            return amount_within_tolerance(
                source.amount, candidate.amount,
                rule.amount_tolerance, rule.amount_tolerance_kind,
            )

        if condition.field is MatchField.DATE:
            limit = condition.value if condition.value is not None else rule.date_tolerance_days
            return day_difference(source.date, candidate.date) <= limit

        text = (
            candidate.vendor_text
            if condition.field is MatchField.VENDOR
            else candidate.description_text
        )
        return _text_predicate(condition, text)

    # ---------------------------------------------------------------------
    # Scoring
    # ---------------------------------------------------------------------

    def _score_pair(
        self,
        source: MatchableRecord,
        candidate: MatchableRecord,
        rule: MatchingRule,
    ) -> MatchResult:
        source_text = scoring_text(source)
        candidate_text = scoring_text(candidate)
        vacuous = not normalize_text(source_text) and not normalize_text(candidate_text)

        scores = FieldScores(
            amount=amount_score(
                source.amount, candidate.amount,
                rule.amount_tolerance, rule.amount_tolerance_kind, rule.minimum_score,
            ),
            date=date_score(
                source.date, candidate.date,
                rule.date_tolerance_days, rule.date_decay_per_day, rule.minimum_score,
            ),
            vendor=text_score(source_text, candidate_text),
        )

        weights = rule.weights
        weighted = (
            weights.amount * scores.amount
            + weights.date * scores.date
            + weights.vendor * scores.vendor
        )
        confidence = int(weighted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        confidence = max(0, min(100, confidence))
        method = MatchMethod.EXACT if confidence > EXACT_MATCH_THRESHOLD else MatchMethod.FUZZY

        discrepancies = self._discrepancies(
            source, candidate, rule, source_text, candidate_text, scores,
        )

        logger.debug("match_evaluated", extra={
            "source_id": source.record_id,
            "candidate_id": candidate.record_id,
            "rule_id": rule.rule_id,
            "overall_confidence": confidence,
            "amount_score": scores.amount,
            "date_score": scores.date,
            "vendor_score": scores.vendor,
            "discrepancy_count": len(discrepancies),
            "vacuous_text": vacuous,
        })

        return MatchResult(
            source_id=source.record_id,
            candidate_id=candidate.record_id,
            overall_confidence=confidence,
            field_scores=scores,
            method=method,
            rule_id=rule.rule_id,
            candidate_date=candidate.date,
            discrepancies=tuple(discrepancies),
            vacuous_text=vacuous,
        )

    def _discrepancies(
        self,
        source: MatchableRecord,
        candidate: MatchableRecord,
        rule: MatchingRule,
        source_text: str,
        candidate_text: str,
        scores: FieldScores,
    ) -> list[MatchDiscrepancy]:
        found: list[MatchDiscrepancy] = []

        diff = amount_difference(source.amount, candidate.amount)
        if diff != 0:
            band = tolerance_band(
                source.amount, candidate.amount,
                rule.amount_tolerance, rule.amount_tolerance_kind,
            )
            larger = max(abs(source.amount), abs(candidate.amount))
            if band > 0 and diff <= band:
                severity = Severity.LOW
            elif (diff - band) / larger > HIGH_SEVERITY_AMOUNT_RATIO:
                severity = Severity.HIGH
            else:
                severity = Severity.MEDIUM
            found.append(MatchDiscrepancy(
                field="amount",
                source_value=str(source.amount),
                candidate_value=str(candidate.amount),
                difference=str(diff),
                severity=severity,
            ))

        days = day_difference(source.date, candidate.date)
        if days != 0:
            if 0 < rule.date_tolerance_days and days <= rule.date_tolerance_days:
                severity = Severity.LOW
            elif days > HIGH_SEVERITY_DAYS:
                severity = Severity.HIGH
            else:
                severity = Severity.MEDIUM
            found.append(MatchDiscrepancy(
                field="date",
                source_value=source.date.isoformat(),
                candidate_value=candidate.date.isoformat(),
                difference=str(days),
                severity=severity,
            ))

        if normalize_text(source_text) != normalize_text(candidate_text):
            if scores.vendor < HIGH_SEVERITY_TEXT_SCORE:
                severity = Severity.HIGH
            elif scores.vendor >= LOW_SEVERITY_TEXT_SCORE:
                severity = Severity.LOW
            else:
                severity = Severity.MEDIUM
            found.append(MatchDiscrepancy(
                field="vendor",
                source_value=source_text,
                candidate_value=candidate_text,
                difference=str(100 - scores.vendor),
                severity=severity,
            ))

        return found


def _text_predicate(condition: MatchCondition, text: str) -> bool:
    value = condition.value
    if condition.operator is MatchOperator.REGEX:
        flags = 0 if condition.case_sensitive else re.IGNORECASE
        return re.search(value, text, flags) is not None

    if not condition.case_sensitive:
        text, value = text.lower(), value.lower()
    text = text.strip()

    if condition.operator is MatchOperator.EQUALS:
        return text == value.strip()
    if condition.operator is MatchOperator.CONTAINS:
        return value in text
    if condition.operator is MatchOperator.STARTS_WITH:
        return text.startswith(value)
    if condition.operator is MatchOperator.ENDS_WITH:
        return text.endswith(value)
    raise AssertionError(f"unhandled text operator {condition.operator}")
