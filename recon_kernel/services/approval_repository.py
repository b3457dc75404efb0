"""
Module: recon_kernel.services.approval_repository
Responsibility: SQLAlchemy implementation of ApprovalRequestRepository.
    Persists immutable ApprovalRequest values by inserting new rows and
    updating existing ones with a version compare-and-swap.
Architecture position: Kernel > Services.  May import from domain/,
    models/, selectors/ and db/.

Invariants enforced:
    - save(request, expected_version=None) inserts; a request_id that
      already exists is a conflict.
    - save(request, expected_version=n) updates only when the stored row
      is still at version n.  The UPDATE itself carries the version
      predicate, so a concurrent writer that slips in between load and
      flush is detected too.
    - Entries are matched positionally by entry_id.  Existing entries
      are only rewritten when their value changed; new entries are
      appended with the next sequence number.

Failure modes:
    - ApprovalRequestNotFoundError from get() or an update of a missing row.
    - OptimisticLockError on version mismatch or a lost flush race.
    - RequestAlreadyPendingError when an insert collides with another
      pending request for the same expense.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from recon_kernel.domain.approval import ApprovalRequest, ApprovalStatus
from recon_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    OptimisticLockError,
    RequestAlreadyPendingError,
)
from recon_kernel.logging_config import get_logger
from recon_kernel.models.approval import ApprovalEntryModel, ApprovalRequestModel
from recon_kernel.selectors.approval_selector import ApprovalSelector

logger = get_logger("services.approval_repository")


class SqlApprovalRequestRepository:
    """Approval request persistence on a caller-owned session."""

    def __init__(self, session: Session):
        self._session = session
        self._selector = ApprovalSelector(session)

    def get(self, request_id: UUID) -> ApprovalRequest:
        request = self._selector.get(request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return request

    def list(
        self,
        *,
        status: ApprovalStatus | None = None,
        expires_before: datetime | None = None,
    ) -> list[ApprovalRequest]:
        return self._selector.list(status=status, expires_before=expires_before)

    def save(
        self,
        request: ApprovalRequest,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        model = self._load(request.request_id)

        if expected_version is None:
            if model is not None:
                raise OptimisticLockError(
                    "ApprovalRequest", str(request.request_id),
                    expected_version=None, actual_version=model.version,
                )
            model = ApprovalRequestModel.from_dto(request)
            self._session.add(model)
        else:
            if model is None:
                raise ApprovalRequestNotFoundError(str(request.request_id))
            if model.version != expected_version:
                raise OptimisticLockError(
                    "ApprovalRequest", str(request.request_id),
                    expected_version=expected_version, actual_version=model.version,
                )
            self._apply(model, request)

        try:
            self._session.flush()
        except IntegrityError as exc:
            if expected_version is not None or request.status is not ApprovalStatus.PENDING:
                raise
            logger.warning("approval_request_duplicate_pending", extra={
                "request_id": str(request.request_id),
                "expense_id": request.expense_id,
            })
            raise RequestAlreadyPendingError(request.expense_id) from exc
        except StaleDataError as exc:
            logger.warning("approval_request_version_conflict", extra={
                "request_id": str(request.request_id),
                "expected_version": expected_version,
            })
            raise OptimisticLockError(
                "ApprovalRequest", str(request.request_id),
                expected_version=expected_version,
            ) from exc

        logger.debug("approval_request_saved", extra={
            "request_id": str(request.request_id),
            "status": request.status.value,
            "version": request.version,
        })
        return model.to_dto()

    def _load(self, request_id: UUID) -> ApprovalRequestModel | None:
        return self._session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.request_id == request_id,
            )
        ).scalar_one_or_none()

    def _apply(self, model: ApprovalRequestModel, request: ApprovalRequest) -> None:
        stored = list(model.entries)
        if len(request.approvers) < len(stored):
            raise OptimisticLockError(
                "ApprovalRequest", str(request.request_id),
                expected_version=request.version - 1, actual_version=model.version,
            )
        for sequence, entry in enumerate(request.approvers):
            if sequence < len(stored):
                existing = stored[sequence]
                if existing.entry_id != entry.entry_id:
                    raise OptimisticLockError(
                        "ApprovalEntry", str(entry.entry_id),
                        expected_version=request.version - 1, actual_version=model.version,
                    )
                if existing.to_dto() != entry:
                    existing.apply_dto(entry)
            else:
                model.entries.append(
                    ApprovalEntryModel.from_dto(entry, request.request_id, sequence)
                )
        model.apply_dto(request)
