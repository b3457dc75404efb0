"""
Module: recon_kernel.selectors.match_selector
Responsibility: Read-only queries over stored match results.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select

from recon_kernel.domain.records import MatchResult
from recon_kernel.models.match_result import MatchConfirmationModel, MatchResultModel
from recon_kernel.selectors.base import BaseSelector


class MatchResultSelector(BaseSelector[MatchResultModel]):
    """Queries over the append-only match_results table."""

    def history(self, source_id: str, candidate_id: str) -> list[MatchResult]:
        """All versions for one pair, oldest first."""
        models = self.session.execute(
            select(MatchResultModel)
            .where(
                MatchResultModel.source_id == source_id,
                MatchResultModel.candidate_id == candidate_id,
            )
            .order_by(MatchResultModel.version)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def latest(self, source_id: str, candidate_id: str) -> MatchResult | None:
        model = self.session.execute(
            select(MatchResultModel)
            .where(
                MatchResultModel.source_id == source_id,
                MatchResultModel.candidate_id == candidate_id,
            )
            .order_by(MatchResultModel.version.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def latest_version(self, source_id: str, candidate_id: str) -> int:
        """Highest stored version for the pair, 0 when none exists."""
        value = self.session.execute(
            select(func.max(MatchResultModel.version)).where(
                MatchResultModel.source_id == source_id,
                MatchResultModel.candidate_id == candidate_id,
            )
        ).scalar_one()
        return value or 0

    def for_source(self, source_id: str) -> list[MatchResult]:
        """Latest version of every pair recorded for ``source_id``."""
        models = self.session.execute(
            select(MatchResultModel)
            .where(MatchResultModel.source_id == source_id)
            .order_by(MatchResultModel.candidate_id, MatchResultModel.version)
        ).scalars().all()
        latest: dict[str, MatchResult] = {}
        for model in models:
            latest[model.candidate_id] = model.to_dto()
        return list(latest.values())

    def confirmation_for(self, candidate_id: str) -> MatchConfirmationModel | None:
        return self.session.execute(
            select(MatchConfirmationModel).where(
                MatchConfirmationModel.candidate_id == candidate_id,
            )
        ).scalar_one_or_none()

    def confirmed_among(self, candidate_ids: Iterable[str]) -> set[str]:
        """The subset of ``candidate_ids`` already consumed by a confirmation."""
        ids = set(candidate_ids)
        if not ids:
            return set()
        return set(self.session.execute(
            select(MatchConfirmationModel.candidate_id).where(
                MatchConfirmationModel.candidate_id.in_(ids),
            )
        ).scalars().all())
