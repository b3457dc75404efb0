"""
Configuration Loader (``recon_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
dataclasses of ``recon_config.schema`` and ``recon_kernel.domain``.
Runtime callers go through ``recon_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass.  Conditions, rules and
  policies validate themselves on construction, so a malformed operator
  or weight fails here, at load time, and never during evaluation.
* ``compute_checksum`` is deterministic for identical documents.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid conditions, rules or policies  -> ``ValidationFailedError``
  subclasses from the domain constructors.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from recon_config.schema import ReconciliationConfig, ThresholdSettings
from recon_kernel.domain.approval import (
    DEFAULT_ESCALATION_DELAY_HOURS,
    ApprovalPolicy,
    ApproverLevel,
    EscalationRule,
    WorkflowSettings,
)
from recon_kernel.domain.conditions import MatchCondition, PolicyCondition
from recon_kernel.domain.records import (
    DEFAULT_DATE_DECAY_PER_DAY,
    DEFAULT_MINIMUM_SCORE,
    FieldWeights,
    MatchingRule,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_match_condition(data: dict[str, Any]) -> MatchCondition:
    return MatchCondition(
        field=data["field"],
        operator=data["operator"],
        value=data.get("value"),
        logical_operator=data.get("logical_operator"),
        case_sensitive=bool(data.get("case_sensitive", False)),
    )


def parse_policy_condition(data: dict[str, Any]) -> PolicyCondition:
    return PolicyCondition(
        field=data["field"],
        operator=data["operator"],
        value=data.get("value"),
        logical_operator=data.get("logical_operator"),
    )


def parse_matching_rule(data: dict[str, Any], tenant_id: str | None = None) -> MatchingRule:
    """Parse a ``MatchingRule``; omitted weights default to 40/30/30."""
    weights_data = data.get("weights")
    weights = FieldWeights(**weights_data) if weights_data else FieldWeights()
    tolerance = data.get("amount_tolerance", {}) or {}
    return MatchingRule(
        rule_id=data["id"],
        priority=data.get("priority", 0),
        name=data.get("name", ""),
        conditions=tuple(parse_match_condition(c) for c in data.get("conditions", [])),
        amount_tolerance=tolerance.get("value", 0),
        amount_tolerance_kind=tolerance.get("kind", "fixed"),
        date_tolerance_days=data.get("date_tolerance_days", 0),
        date_decay_per_day=data.get("date_decay_per_day", DEFAULT_DATE_DECAY_PER_DAY),
        weights=weights,
        minimum_score=data.get("minimum_score", DEFAULT_MINIMUM_SCORE),
        is_active=data.get("is_active", True),
        tenant_id=tenant_id,
    )


def parse_approver_level(data: dict[str, Any]) -> ApproverLevel:
    return ApproverLevel(
        approver_id=data["approver_id"],
        level=data["level"],
        is_required=data.get("is_required", True),
        can_delegate=data.get("can_delegate", False),
        max_amount=data.get("max_amount"),
    )


def parse_escalation_rule(data: dict[str, Any]) -> EscalationRule:
    return EscalationRule(
        rule_id=data["id"],
        trigger_after_hours=data["trigger_after_hours"],
        action=data["action"],
        escalate_to=tuple(data.get("escalate_to", [])),
        extend_hours=data.get("extend_hours", 24),
        conditions=tuple(parse_policy_condition(c) for c in data.get("conditions", [])),
        name=data.get("name", ""),
    )


def parse_approval_policy(data: dict[str, Any]) -> ApprovalPolicy:
    """
    Parse an ``ApprovalPolicy`` from a dict.

    Raises:
        KeyError: if ``id``, ``priority`` or ``action`` is missing.
        InvalidPolicyError: if the approver levels are malformed.
    """
    return ApprovalPolicy(
        policy_id=data["id"],
        priority=data["priority"],
        action=data["action"],
        conditions=tuple(parse_policy_condition(c) for c in data.get("conditions", [])),
        approver_levels=tuple(parse_approver_level(a) for a in data.get("approvers", [])),
        escalation_rules=tuple(parse_escalation_rule(r) for r in data.get("escalation_rules", [])),
        is_active=data.get("is_active", True),
        name=data.get("name", ""),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowSettings:
    return WorkflowSettings(
        is_active=data.get("is_active", True),
        escalation_delay_hours=data.get("escalation_delay_hours", DEFAULT_ESCALATION_DELAY_HOURS),
        escalation_rules=tuple(parse_escalation_rule(r) for r in data.get("escalation_rules", [])),
    )


def parse_thresholds(data: dict[str, Any]) -> ThresholdSettings:
    defaults = ThresholdSettings()
    return ThresholdSettings(
        match_threshold=data.get("match_threshold", defaults.match_threshold),
        auto_confirm_threshold=data.get("auto_confirm_threshold", defaults.auto_confirm_threshold),
        max_workers=data.get("max_workers"),
        candidate_cache_ttl_seconds=data.get(
            "candidate_cache_ttl_seconds", defaults.candidate_cache_ttl_seconds,
        ),
    )


def parse_config(data: dict[str, Any]) -> ReconciliationConfig:
    """Parse a whole configuration document."""
    tenant_id = data.get("tenant_id", "*")
    rule_tenant = None if tenant_id == "*" else tenant_id
    return ReconciliationConfig(
        config_id=data["config_id"],
        version=data.get("version", 1),
        tenant_id=tenant_id,
        thresholds=parse_thresholds(data.get("thresholds", {}) or {}),
        workflow=parse_workflow(data.get("workflow", {}) or {}),
        matching_rules=tuple(
            parse_matching_rule(r, rule_tenant) for r in data.get("matching_rules", [])
        ),
        approval_policies=tuple(
            parse_approval_policy(p) for p in data.get("approval_policies", [])
        ),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> ReconciliationConfig:
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
