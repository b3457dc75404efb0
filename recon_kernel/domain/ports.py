"""
Collaborator contracts (``recon_kernel.domain.ports``).

The reconciliation core performs no I/O of its own.  Callers hand it
implementations of these protocols: SQLAlchemy-backed stores live in
``recon_kernel.services``; anything else (expense ledgers, candidate
feeds, notification delivery) belongs to the embedding application.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from recon_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalStatus,
    ExpenseStatus,
    WorkflowEvent,
)
from recon_kernel.domain.records import MatchableRecord, MatchResult


@runtime_checkable
class ApprovalRequestRepository(Protocol):
    def get(self, request_id: UUID) -> ApprovalRequest: ...

    def list(
        self,
        *,
        status: ApprovalStatus | None = None,
        expires_before: datetime | None = None,
    ) -> list[ApprovalRequest]: ...

    def save(
        self,
        request: ApprovalRequest,
        expected_version: int | None = None,
    ) -> ApprovalRequest: ...


@runtime_checkable
class MatchResultStore(Protocol):
    def record(self, result: MatchResult) -> MatchResult: ...

    def history(self, source_id: str, candidate_id: str) -> list[MatchResult]: ...

    def latest(self, source_id: str, candidate_id: str) -> MatchResult | None: ...

    def for_source(self, source_id: str) -> list[MatchResult]: ...

    def confirm(self, result: MatchResult) -> None: ...

    def confirmed_among(self, candidate_ids: Iterable[str]) -> set[str]: ...


@runtime_checkable
class CandidateRepository(Protocol):
    """Supplies the counterpart pool and learns which candidates were consumed."""

    def list_available(self, currency: str) -> Sequence[MatchableRecord]: ...

    def mark_matched(self, candidate_id: str, source_id: str) -> None: ...


@runtime_checkable
class ExpenseRepository(Protocol):
    def mark_status(self, expense_id: str, status: ExpenseStatus) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    """Receives workflow events; formatting and delivery are its concern."""

    def notify(self, request: ApprovalRequest, event: WorkflowEvent) -> None: ...


@runtime_checkable
class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None: ...

    def invalidate(self, key: str) -> None: ...
