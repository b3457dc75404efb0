"""
Module: recon_engines
Responsibility:
    Package entrypoint re-exporting the pure reconciliation engines:
    field scoring, the match engine, candidate search, approval policy
    selection and the approval workflow state machine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import recon_kernel.domain, recon_kernel.exceptions and
    recon_kernel.logging_config.  MUST NOT import recon_services.

Invariants enforced:
    - Purity: engines never read the clock.  ``now`` is passed in by the
      calling service.
    - Decimal-only arithmetic for amounts and weights.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine entrypoints are wrapped by ``@traced_engine`` and emit
    RECON_ENGINE_TRACE records with an input fingerprint.

Usage:
    from recon_engines import find_matches, select_policy, submit, decide
"""

from recon_engines.approval_rules import (
    evaluate_conditions,
    require_policy,
    select_policy,
)
from recon_engines.approval_workflow import (
    check_escalations,
    decide,
    escalate,
    level_complete,
    select_escalation_rule,
    submit,
    withdraw,
)
from recon_engines.candidate_search import find_matches, summarize_matches
from recon_engines.matching import MatchEngine
from recon_engines.scoring import (
    amount_score,
    date_score,
    levenshtein_distance,
    text_score,
)

__all__ = [
    "evaluate_conditions",
    "require_policy",
    "select_policy",
    "check_escalations",
    "decide",
    "escalate",
    "level_complete",
    "select_escalation_rule",
    "submit",
    "withdraw",
    "find_matches",
    "summarize_matches",
    "MatchEngine",
    "amount_score",
    "date_score",
    "levenshtein_distance",
    "text_score",
]
