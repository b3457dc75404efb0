"""
Configuration schema (``recon_config.schema``).

Frozen dataclasses describing one tenant's reconciliation configuration.
Matching rules, approval policies and workflow settings reuse the kernel
domain types directly; only the envelope and the thresholds live here.
"""

from __future__ import annotations

from dataclasses import dataclass

from recon_kernel.domain.approval import ApprovalPolicy, WorkflowSettings
from recon_kernel.domain.records import (
    DEFAULT_AUTO_CONFIRM_THRESHOLD,
    DEFAULT_MATCH_THRESHOLD,
    MatchingRule,
)


@dataclass(frozen=True)
class ThresholdSettings:
    """Confidence cut-offs for candidate search and auto-confirmation."""

    match_threshold: int = DEFAULT_MATCH_THRESHOLD
    auto_confirm_threshold: int = DEFAULT_AUTO_CONFIRM_THRESHOLD
    max_workers: int | None = None
    candidate_cache_ttl_seconds: int = 300


@dataclass(frozen=True)
class ReconciliationConfig:
    """A validated configuration set.

    ``tenant_id`` of ``"*"`` applies to any tenant without a set of its
    own.  ``checksum`` is the SHA-256 of the source document.
    """

    config_id: str
    version: int
    tenant_id: str
    thresholds: ThresholdSettings
    workflow: WorkflowSettings
    matching_rules: tuple[MatchingRule, ...] = ()
    approval_policies: tuple[ApprovalPolicy, ...] = ()
    checksum: str = ""
