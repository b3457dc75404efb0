"""
Configuration Validator (``recon_config.validator``).

Responsibility
--------------
Cross-object checks on a parsed ``ReconciliationConfig``.  Per-object
checks (operator sets, weight sums, approver level layout) already ran in
the domain constructors; this module checks what only the whole set can
show.

Invariants enforced
-------------------
* Matching rule ids and approval policy ids are unique.
* Escalation rule ids are unique within each policy and within the
  workflow defaults.
* ``0 <= match_threshold <= auto_confirm_threshold <= 100``.

Failure modes
-------------
* Errors  -> the configuration MUST NOT be used.
* Warnings  -> usable, but should be reviewed (for example, no active
  catch-all policy means some expenses can fail with
  NoMatchingPolicyError).
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from recon_config.schema import ReconciliationConfig


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: ReconciliationConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()
    _validate_thresholds(config, result)
    _validate_unique("matching rule", (r.rule_id for r in config.matching_rules), result)
    _validate_unique("approval policy", (p.policy_id for p in config.approval_policies), result)
    _validate_unique(
        "workflow escalation rule",
        (r.rule_id for r in config.workflow.escalation_rules),
        result,
    )
    for policy in config.approval_policies:
        _validate_unique(
            f"escalation rule in policy '{policy.policy_id}'",
            (r.rule_id for r in policy.escalation_rules),
            result,
        )
    _validate_policy_coverage(config, result)
    return result


def _validate_thresholds(config: ReconciliationConfig, result: ConfigValidationResult) -> None:
    t = config.thresholds
    if not 0 <= t.match_threshold <= 100:
        result.add_error(f"match_threshold must be within 0..100, got {t.match_threshold}")
    if not 0 <= t.auto_confirm_threshold <= 100:
        result.add_error(
            f"auto_confirm_threshold must be within 0..100, got {t.auto_confirm_threshold}"
        )
    if t.match_threshold > t.auto_confirm_threshold:
        result.add_error(
            f"match_threshold ({t.match_threshold}) exceeds "
            f"auto_confirm_threshold ({t.auto_confirm_threshold})"
        )
    if t.max_workers is not None and t.max_workers < 1:
        result.add_error(f"max_workers must be >= 1, got {t.max_workers}")
    if t.candidate_cache_ttl_seconds < 0:
        result.add_error("candidate_cache_ttl_seconds must be >= 0")
    if config.workflow.escalation_delay_hours <= 0:
        result.add_error("escalation_delay_hours must be > 0")


def _validate_unique(kind: str, ids: Iterable[str], result: ConfigValidationResult) -> None:
    for rule_id, count in sorted(Counter(ids).items()):
        if count > 1:
            result.add_error(f"Duplicate {kind} id '{rule_id}' ({count} times)")


def _validate_policy_coverage(config: ReconciliationConfig, result: ConfigValidationResult) -> None:
    active = [p for p in config.approval_policies if p.is_active]
    if not active:
        result.add_warning("No active approval policy; every submission will fail")
        return
    if not any(not p.conditions for p in active):
        result.add_warning(
            "No active catch-all approval policy; unmatched expenses raise "
            "NoMatchingPolicyError"
        )
