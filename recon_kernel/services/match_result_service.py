"""
Module: recon_kernel.services.match_result_service
Responsibility: SQLAlchemy implementation of MatchResultStore.  Records
    every evaluation of a (source, candidate) pair as a new version, and
    the confirmations that take a candidate out of the pool.
Architecture position: Kernel > Services.

Invariants enforced:
    - Stored rows are never rewritten; a re-evaluation is version n + 1.
    - result_hash covers the scored content of the result, excluding the
      version and the recording time.
    - A candidate is confirmed at most once.

Failure modes:
    - IntegrityError if two writers record the same pair concurrently
      (UNIQUE(source_id, candidate_id, version)).
    - CandidateAlreadyMatchedError when confirming a candidate that an
      earlier match already consumed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, replace

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recon_kernel.domain.clock import Clock, SystemClock
from recon_kernel.domain.records import MatchResult
from recon_kernel.exceptions import CandidateAlreadyMatchedError
from recon_kernel.logging_config import get_logger
from recon_kernel.models.match_result import MatchConfirmationModel, MatchResultModel
from recon_kernel.selectors.match_selector import MatchResultSelector
from recon_kernel.utils.hashing import hash_payload

logger = get_logger("services.match_result_service")


def compute_result_hash(result: MatchResult) -> str:
    payload = asdict(result)
    payload.pop("version")
    return hash_payload(payload)


class SqlMatchResultStore:
    """Append-only, versioned match result history."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._selector = MatchResultSelector(session)

    def record(self, result: MatchResult) -> MatchResult:
        version = self._selector.latest_version(result.source_id, result.candidate_id) + 1
        result = replace(result, version=version)
        result_hash = compute_result_hash(result)

        self._session.add(MatchResultModel.from_dto(
            result,
            recorded_at=self._clock.now(),
            result_hash=result_hash,
        ))
        self._session.flush()

        logger.info("match_result_recorded", extra={
            "source_id": result.source_id,
            "candidate_id": result.candidate_id,
            "version": version,
            "overall_confidence": result.overall_confidence,
            "result_hash": result_hash,
        })
        return result

    def history(self, source_id: str, candidate_id: str) -> list[MatchResult]:
        return self._selector.history(source_id, candidate_id)

    def latest(self, source_id: str, candidate_id: str) -> MatchResult | None:
        return self._selector.latest(source_id, candidate_id)

    def for_source(self, source_id: str) -> list[MatchResult]:
        """Latest version of every pair recorded for ``source_id``."""
        return self._selector.for_source(source_id)

    def confirm(self, result: MatchResult) -> None:
        """Consume ``result.candidate_id`` on behalf of ``result.source_id``."""
        existing = self._selector.confirmation_for(result.candidate_id)
        if existing is not None:
            raise CandidateAlreadyMatchedError(result.candidate_id, existing.source_id)

        self._session.add(MatchConfirmationModel(
            candidate_id=result.candidate_id,
            source_id=result.source_id,
            result_version=result.version,
            overall_confidence=result.overall_confidence,
            confirmed_at=self._clock.now(),
        ))
        try:
            self._session.flush()
        except IntegrityError as exc:
            logger.warning("match_confirmation_conflict", extra={
                "source_id": result.source_id,
                "candidate_id": result.candidate_id,
            })
            raise CandidateAlreadyMatchedError(result.candidate_id) from exc

        logger.info("match_confirmed", extra={
            "source_id": result.source_id,
            "candidate_id": result.candidate_id,
            "version": result.version,
            "overall_confidence": result.overall_confidence,
        })

    def confirmed_among(self, candidate_ids: Iterable[str]) -> set[str]:
        return self._selector.confirmed_among(candidate_ids)
