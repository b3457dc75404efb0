"""
recon_engines.candidate_search -- Rank counterpart records for a source.

Responsibility:
    Given a source record and a pool of counterparts, drop candidates that
    cannot match, score the rest through ``MatchEngine`` and return those
    at or above a confidence threshold, best first.  Also summarizes a
    batch of results into ``MatchingStatistics``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Callers fetch the pool
    and decide what to do with the ranking (auto-confirm or review).

Invariants enforced:
    - Only AVAILABLE candidates in the source's currency are scored; the
      source itself is never its own candidate, and candidates the caller
      lists as already confirmed are never offered again.
    - Ordering: confidence descending, then earliest candidate date, then
      candidate id.  Sharded and sequential runs return the same list.
    - Neither the source nor any candidate is modified.

Failure modes:
    - MissingRecordFieldError when the SOURCE lacks amount or date.
    - Candidates lacking amount or date are skipped with a warning; a bad
      candidate never turns the whole search into an exception.

Audit relevance:
    ``match_search_completed`` logs pool size, filtered count and result
    count for every search.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Collection, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from decimal import ROUND_HALF_UP, Decimal

from recon_engines.matching import MatchEngine, order_rules, require_matchable
from recon_engines.tracer import traced_engine
from recon_kernel.domain.records import (
    DEFAULT_AUTO_CONFIRM_THRESHOLD,
    DEFAULT_MATCH_THRESHOLD,
    MatchableRecord,
    MatchingRule,
    MatchingStatistics,
    MatchResult,
    RecordStatus,
)
from recon_kernel.exceptions import MissingRecordFieldError
from recon_kernel.logging_config import get_logger

logger = get_logger("engines.candidate_search")

LOW_CONFIDENCE_THRESHOLD = 70
_MIN_SHARD_SIZE = 64

_engine = MatchEngine()


def ranking_key(result: MatchResult) -> tuple:
    return (-result.overall_confidence, result.candidate_date, result.candidate_id)


def prefilter_candidates(
    source: MatchableRecord,
    candidate_pool: Iterable[MatchableRecord],
    exclude_ids: Collection[str] = (),
) -> list[MatchableRecord]:
    """Drop candidates that can never match ``source``."""
    eligible: list[MatchableRecord] = []
    for candidate in candidate_pool:
        if candidate.status is not RecordStatus.AVAILABLE:
            continue
        if candidate.record_id in exclude_ids:
            continue
        if candidate.record_id == source.record_id:
            continue
        if candidate.currency != source.currency:
            continue
        try:
            require_matchable(candidate)
        except MissingRecordFieldError as exc:
            logger.warning("candidate_skipped_missing_field", extra={
                "source_id": source.record_id,
                "candidate_id": candidate.record_id,
                "missing_field": exc.field,
            })
            continue
        eligible.append(candidate)
    return eligible


def _score_shard(
    source: MatchableRecord,
    shard: Sequence[MatchableRecord],
    ordered_rules: Sequence[MatchingRule],
    threshold: int,
) -> list[MatchResult]:
    results = []
    for candidate in shard:
        result = _engine.evaluate_ordered(source, candidate, ordered_rules)
        if result.overall_confidence >= threshold:
            results.append(result)
    return results


@traced_engine("candidate_search", "1.0", fingerprint_fields=("source", "threshold"))
def find_matches(
    source: MatchableRecord,
    candidate_pool: Iterable[MatchableRecord],
    rules: Sequence[MatchingRule] = (),
    threshold: int = DEFAULT_MATCH_THRESHOLD,
    max_workers: int | None = None,
    exclude_ids: Collection[str] = (),
) -> list[MatchResult]:
    """Rank ``candidate_pool`` against ``source``.

    Args:
        source: The receipt, invoice or transaction being reconciled.
        candidate_pool: Counterpart records to consider.
        rules: Tenant matching rules; the default 40/30/30 rule applies
            when none match a pair.
        threshold: Minimum confidence for a result to be returned.
        max_workers: When > 1 and the pool is large, score shards of the
            pool on a thread pool.
        exclude_ids: Candidate ids already consumed by a confirmed match.

    Returns:
        Results with confidence >= threshold, best first.
    """
    t0 = time.monotonic()
    require_matchable(source)

    pool = list(candidate_pool)
    eligible = prefilter_candidates(source, pool, exclude_ids)
    ordered_rules = order_rules(rules)

    if max_workers and max_workers > 1 and len(eligible) >= 2 * _MIN_SHARD_SIZE:
        shard_size = max(_MIN_SHARD_SIZE, -(-len(eligible) // max_workers))
        shards = [
            eligible[i:i + shard_size] for i in range(0, len(eligible), shard_size)
        ]
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(_score_shard, source, shard, ordered_rules, threshold)
                for shard in shards
            ]
            results = [r for future in futures for r in future.result()]
    else:
        results = _score_shard(source, eligible, ordered_rules, threshold)

    results.sort(key=ranking_key)

    duration_ms = round((time.monotonic() - t0) * 1000, 2)
    logger.info("match_search_completed", extra={
        "source_id": source.record_id,
        "pool_size": len(pool),
        "eligible_count": len(eligible),
        "result_count": len(results),
        "best_confidence": results[0].overall_confidence if results else None,
        "threshold": threshold,
        "duration_ms": duration_ms,
    })
    return results


def summarize_matches(
    results: Sequence[MatchResult],
    high_confidence_threshold: int = DEFAULT_AUTO_CONFIRM_THRESHOLD,
) -> MatchingStatistics:
    """Aggregate counts and rates for a batch of match results."""
    total = len(results)
    if total == 0:
        return MatchingStatistics(
            total_matches=0,
            average_confidence=Decimal("0"),
            high_confidence_matches=0,
            low_confidence_matches=0,
            method_distribution={},
            discrepancy_rate=Decimal("0"),
        )

    average = Decimal(sum(r.overall_confidence for r in results)) / total
    with_discrepancies = sum(1 for r in results if r.discrepancies)
    methods = Counter(r.method.value for r in results)

    return MatchingStatistics(
        total_matches=total,
        average_confidence=average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        high_confidence_matches=sum(
            1 for r in results if r.overall_confidence >= high_confidence_threshold
        ),
        low_confidence_matches=sum(
            1 for r in results if r.overall_confidence < LOW_CONFIDENCE_THRESHOLD
        ),
        method_distribution=dict(sorted(methods.items())),
        discrepancy_rate=(
            Decimal(with_discrepancies) * 100 / total
        ).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
    )
