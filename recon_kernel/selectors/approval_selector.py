"""
Module: recon_kernel.selectors.approval_selector
Responsibility: Read-only queries over approval requests: approver inboxes,
    per-expense history and status/deadline listings.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Results are ApprovalRequest DTOs with entries in creation order.
    - Inbox queries only return requests whose pending entry for the
      approver sits at the request's current level.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from recon_kernel.domain.approval import ApprovalRequest, ApprovalStatus, EntryStatus
from recon_kernel.models.approval import ApprovalEntryModel, ApprovalRequestModel
from recon_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector[ApprovalRequestModel]):
    """Queries over approval_requests and approval_entries."""

    def get(self, request_id: UUID) -> ApprovalRequest | None:
        model = self.session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.request_id == request_id,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def pending_for_approver(self, approver_id: str) -> list[ApprovalRequest]:
        """Requests awaiting a decision from ``approver_id`` right now."""
        awaiting = (
            select(ApprovalEntryModel.request_id)
            .where(
                ApprovalEntryModel.approver_id == approver_id,
                ApprovalEntryModel.status == EntryStatus.PENDING.value,
                ApprovalEntryModel.level == ApprovalRequestModel.current_level,
            )
            .correlate(ApprovalRequestModel)
        )
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
                ApprovalRequestModel.request_id.in_(awaiting),
            )
            .order_by(ApprovalRequestModel.submitted_at, ApprovalRequestModel.request_id)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def pending_for_expense(self, expense_id: str) -> ApprovalRequest | None:
        model = self.session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.expense_id == expense_id,
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def history_for_expense(self, expense_id: str) -> list[ApprovalRequest]:
        """Every request ever raised for ``expense_id``, oldest first."""
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.expense_id == expense_id)
            .order_by(ApprovalRequestModel.submitted_at)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list(
        self,
        *,
        status: ApprovalStatus | None = None,
        expires_before: datetime | None = None,
    ) -> list[ApprovalRequest]:
        query = select(ApprovalRequestModel)
        if status is not None:
            query = query.where(ApprovalRequestModel.status == status.value)
        if expires_before is not None:
            query = query.where(ApprovalRequestModel.expires_at <= expires_before)
        models = self.session.execute(
            query.order_by(ApprovalRequestModel.expires_at, ApprovalRequestModel.request_id)
        ).scalars().all()
        return [m.to_dto() for m in models]
