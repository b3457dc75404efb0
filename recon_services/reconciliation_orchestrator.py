"""
recon_services.reconciliation_orchestrator -- Match first, approve second.

Responsibility:
    Reconcile one source record (a receipt, invoice or card transaction
    tied to an expense): rank candidate counterparts, persist every
    scored pair, auto-confirm a clean high-confidence match, and route
    everything else through the approval workflow.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes ``find_matches`` (pure engine) with the kernel's match result
    store, candidate cache and ApprovalService.

Invariants enforced:
    - A match auto-confirms only when its confidence reaches the
      configured auto-confirm threshold, it carries real text evidence
      (not ``vacuous_text``) and it has no high-severity discrepancy.
    - Every result returned by the search is recorded as a new version.
    - A candidate is consumed by at most one auto-confirmation.  The
      confirmation is stored through the match result store, the
      candidate repository is told via ``mark_matched``, and candidates
      already confirmed are excluded from every later search.
    - After an auto-confirmation the cached candidate pool for the
      currency is invalidated.

Failure modes:
    - MissingRecordFieldError when the source lacks amount or date.
    - NoMatchingPolicyError when the expense must be approved and no
      policy applies.
    - RequestAlreadyPendingError when the expense already awaits approval.
    - CandidateAlreadyMatchedError when another writer consumed the best
      candidate between the search and the confirmation.
    - RuntimeError when no pool is passed in and no candidate
      repository was configured.

Audit relevance:
    ``reconciliation_completed`` logs the outcome kind, the best
    confidence and the request id when one was raised.

Usage:
    with session_scope() as session:
        orchestrator = ReconciliationOrchestrator.from_session(
            session, get_active_config("acme"), candidates=bank_feed,
        )
        outcome = orchestrator.reconcile(receipt, expense, "emp-42")
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from recon_config.schema import ReconciliationConfig
from recon_engines.candidate_search import find_matches
from recon_kernel.domain.approval import (
    ApprovalRequest,
    AutoResult,
    Expense,
    ExpenseStatus,
)
from recon_kernel.domain.clock import Clock, SystemClock
from recon_kernel.domain.ports import (
    CacheBackend,
    CandidateRepository,
    ExpenseRepository,
    MatchResultStore,
    NotificationSink,
)
from recon_kernel.domain.records import MatchableRecord, MatchResult
from recon_kernel.logging_config import LogContext, get_logger
from recon_kernel.services.approval_service import ApprovalService, RequestLocks
from recon_kernel.services.cache import TTLCache
from recon_kernel.services.match_result_service import SqlMatchResultStore
from recon_services.notifications import LoggingNotificationSink

logger = get_logger("services.reconciliation_orchestrator")


class ReconciliationOutcomeKind(str, Enum):
    AUTO_CONFIRMED = "auto_confirmed"
    SUBMITTED = "submitted"
    AUTO_RESOLVED = "auto_resolved"


@dataclass(frozen=True)
class ReconciliationOutcome:
    kind: ReconciliationOutcomeKind
    source_id: str
    matches: tuple[MatchResult, ...] = ()
    best_match: MatchResult | None = None
    request: ApprovalRequest | None = None
    auto_result: AutoResult | None = None


def candidate_cache_key(currency: str) -> str:
    return f"candidates:{currency}"


class ReconciliationOrchestrator:
    """
    Runs candidate search and the approval workflow for one source record.

    Contract:
        ``reconcile`` either confirms a match or leaves the expense in the
        hands of ApprovalService.  It never mutates the source or the
        candidates.
    """

    def __init__(
        self,
        approval_service: ApprovalService,
        match_store: MatchResultStore,
        config: ReconciliationConfig,
        candidates: CandidateRepository | None = None,
        cache: CacheBackend | None = None,
        expenses: ExpenseRepository | None = None,
    ) -> None:
        self._approvals = approval_service
        self._store = match_store
        self._config = config
        self._candidates = candidates
        self._cache = cache
        self._expenses = expenses

    @classmethod
    def from_session(
        cls,
        session: Session,
        config: ReconciliationConfig,
        candidates: CandidateRepository | None = None,
        notifier: NotificationSink | None = None,
        expenses: ExpenseRepository | None = None,
        clock: Clock | None = None,
        cache: CacheBackend | None = None,
        locks: RequestLocks | None = None,
    ) -> ReconciliationOrchestrator:
        """Wire the SQLAlchemy-backed kernel services for one session."""
        clock = clock or SystemClock()
        approvals = ApprovalService(
            session,
            config.approval_policies,
            settings=config.workflow,
            notifier=notifier or LoggingNotificationSink(),
            expenses=expenses,
            clock=clock,
            locks=locks,
        )
        return cls(
            approvals,
            SqlMatchResultStore(session, clock),
            config,
            candidates=candidates,
            cache=cache if cache is not None else TTLCache(
                clock, config.thresholds.candidate_cache_ttl_seconds,
            ),
            expenses=expenses,
        )

    def reconcile(
        self,
        source: MatchableRecord,
        expense: Expense,
        submitter_id: str,
        candidate_pool: Sequence[MatchableRecord] | None = None,
    ) -> ReconciliationOutcome:
        with LogContext.bind(record_id=source.record_id, actor_id=submitter_id):
            thresholds = self._config.thresholds
            pool = candidate_pool if candidate_pool is not None else self._candidate_pool(source)
            consumed = self._store.confirmed_among(c.record_id for c in pool)

            ranked = find_matches(
                source,
                pool,
                rules=self._config.matching_rules,
                threshold=thresholds.match_threshold,
                max_workers=thresholds.max_workers,
                exclude_ids=consumed,
            )
            recorded = tuple(self._store.record(result) for result in ranked)
            best = recorded[0] if recorded else None

            if best is not None and self._confirmable(best):
                self._store.confirm(best)
                if self._candidates is not None:
                    self._candidates.mark_matched(best.candidate_id, source.record_id)
                if self._cache is not None:
                    self._cache.invalidate(candidate_cache_key(source.currency))
                if self._expenses is not None:
                    self._expenses.mark_status(expense.expense_id, ExpenseStatus.VERIFIED)
                outcome = ReconciliationOutcome(
                    kind=ReconciliationOutcomeKind.AUTO_CONFIRMED,
                    source_id=source.record_id,
                    matches=recorded,
                    best_match=best,
                )
            else:
                submitted = self._approvals.submit(expense, submitter_id)
                if isinstance(submitted, AutoResult):
                    outcome = ReconciliationOutcome(
                        kind=ReconciliationOutcomeKind.AUTO_RESOLVED,
                        source_id=source.record_id,
                        matches=recorded,
                        best_match=best,
                        auto_result=submitted,
                    )
                else:
                    outcome = ReconciliationOutcome(
                        kind=ReconciliationOutcomeKind.SUBMITTED,
                        source_id=source.record_id,
                        matches=recorded,
                        best_match=best,
                        request=submitted,
                    )

            logger.info("reconciliation_completed", extra={
                "source_id": source.record_id,
                "expense_id": expense.expense_id,
                "outcome": outcome.kind.value,
                "match_count": len(recorded),
                "excluded_count": len(consumed),
                "best_confidence": best.overall_confidence if best else None,
                "best_candidate_id": best.candidate_id if best else None,
                "request_id": str(outcome.request.request_id) if outcome.request else None,
            })
            return outcome

    def _confirmable(self, result: MatchResult) -> bool:
        return (
            result.overall_confidence >= self._config.thresholds.auto_confirm_threshold
            and not result.vacuous_text
            and not result.has_high_severity
        )

    def _candidate_pool(self, source: MatchableRecord) -> Sequence[MatchableRecord]:
        if self._candidates is None:
            raise RuntimeError(
                "No candidate pool given and no CandidateRepository configured"
            )
        key = candidate_cache_key(source.currency)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("candidate_pool_cache_hit", extra={"cache_key": key})
                return cached
        pool = tuple(self._candidates.list_available(source.currency))
        if self._cache is not None:
            self._cache.set(
                key, pool, ttl_seconds=self._config.thresholds.candidate_cache_ttl_seconds,
            )
        return pool
