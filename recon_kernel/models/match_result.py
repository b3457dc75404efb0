"""
Module: recon_kernel.models.match_result
Responsibility: ORM persistence for match results and the confirmations
    that consume a candidate.

Architecture position: Kernel > Models.  May import from db/base.py only
    (domain types are imported lazily inside the DTO converters).

Invariants enforced:
    - Append-only: ORM listeners reject UPDATE and DELETE.
    - Versioning: UNIQUE(source_id, candidate_id, version).  A fresh
      evaluation of a pair is a new row with the next version.
    - A candidate is confirmed at most once: UNIQUE(candidate_id) on
      match_confirmations.

Failure modes:
    - IntegrityError when two writers race for the same version.
    - ImmutabilityViolationError on UPDATE/DELETE.

Audit relevance:
    ``result_hash`` fingerprints the scored content so a reviewer can
    confirm a stored row was not edited after the fact.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, Date, Index, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from recon_kernel.db.base import Base
from recon_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from recon_kernel.domain.records import MatchResult


class MatchResultModel(Base):
    """Persistent, versioned match result. Append-only."""

    __tablename__ = "match_results"

    __table_args__ = (
        UniqueConstraint(
            "source_id", "candidate_id", "version",
            name="uq_match_results_pair_version",
        ),
        Index("ix_match_results_source", "source_id", "recorded_at"),
    )

    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    candidate_id: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    overall_confidence: Mapped[int] = mapped_column(nullable=False)
    amount_score: Mapped[int] = mapped_column(nullable=False)
    date_score: Mapped[int] = mapped_column(nullable=False)
    vendor_score: Mapped[int] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    rule_id: Mapped[str] = mapped_column(String(100), nullable=False)
    candidate_date: Mapped[date] = mapped_column(Date, nullable=False)
    vacuous_text: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    discrepancies: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
    result_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<MatchResult {self.source_id}->{self.candidate_id} "
            f"v{self.version} confidence={self.overall_confidence}>"
        )

    def to_dto(self) -> MatchResult:
        from recon_kernel.domain.records import (
            FieldScores,
            MatchDiscrepancy,
            MatchMethod,
            MatchResult as MatchResultDTO,
            Severity,
        )

        return MatchResultDTO(
            source_id=self.source_id,
            candidate_id=self.candidate_id,
            overall_confidence=self.overall_confidence,
            field_scores=FieldScores(
                amount=self.amount_score,
                date=self.date_score,
                vendor=self.vendor_score,
            ),
            method=MatchMethod(self.method),
            rule_id=self.rule_id,
            candidate_date=self.candidate_date,
            discrepancies=tuple(
                MatchDiscrepancy(
                    field=d["field"],
                    source_value=d["source_value"],
                    candidate_value=d["candidate_value"],
                    difference=d["difference"],
                    severity=Severity(d["severity"]),
                )
                for d in self.discrepancies
            ),
            vacuous_text=self.vacuous_text,
            version=self.version,
        )

    @classmethod
    def from_dto(
        cls,
        dto: MatchResult,
        recorded_at: datetime,
        result_hash: str,
    ) -> MatchResultModel:
        return cls(
            source_id=dto.source_id,
            candidate_id=dto.candidate_id,
            version=dto.version,
            overall_confidence=dto.overall_confidence,
            amount_score=dto.field_scores.amount,
            date_score=dto.field_scores.date,
            vendor_score=dto.field_scores.vendor,
            method=dto.method.value,
            rule_id=dto.rule_id,
            candidate_date=dto.candidate_date,
            vacuous_text=dto.vacuous_text,
            discrepancies=[
                {
                    "field": d.field,
                    "source_value": d.source_value,
                    "candidate_value": d.candidate_value,
                    "difference": d.difference,
                    "severity": d.severity.value,
                }
                for d in dto.discrepancies
            ],
            recorded_at=recorded_at,
            result_hash=result_hash,
        )


@event.listens_for(MatchResultModel, "before_update")
def prevent_match_result_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="MatchResult",
        entity_id=f"{target.source_id}:{target.candidate_id}:v{target.version}",
        reason="Match results are append-only -- record a new version instead",
    )


@event.listens_for(MatchResultModel, "before_delete")
def prevent_match_result_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="MatchResult",
        entity_id=f"{target.source_id}:{target.candidate_id}:v{target.version}",
        reason="Match results are append-only -- cannot delete",
    )


class MatchConfirmationModel(Base):
    """A candidate consumed by an auto-confirmed match. Append-only."""

    __tablename__ = "match_confirmations"

    __table_args__ = (
        UniqueConstraint("candidate_id", name="uq_match_confirmations_candidate"),
        Index("ix_match_confirmations_source", "source_id"),
    )

    candidate_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    result_version: Mapped[int] = mapped_column(nullable=False)
    overall_confidence: Mapped[int] = mapped_column(nullable=False)
    confirmed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<MatchConfirmation {self.source_id}->{self.candidate_id}>"


@event.listens_for(MatchConfirmationModel, "before_update")
@event.listens_for(MatchConfirmationModel, "before_delete")
def prevent_confirmation_change(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="MatchConfirmation",
        entity_id=target.candidate_id,
        reason="Confirmations are permanent",
    )
