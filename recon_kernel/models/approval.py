"""
Module: recon_kernel.models.approval
Responsibility: ORM persistence for approval requests and their
    per-approver entries.

Architecture position: Kernel > Models.  May import from db/base.py only
    (domain types are imported lazily inside the DTO converters).

Invariants enforced:
    - Status values are limited by CHECK constraints.
    - At most one pending request per expense (partial unique index).
    - Optimistic concurrency: ``version`` is the mapper's version_id_col
      with application-assigned values.  Every UPDATE carries
      ``WHERE version = <loaded version>``; a lost race raises
      StaleDataError, which the service maps to OptimisticLockError.
    - Entries only leave ``pending``: an UPDATE of an entry whose stored
      status is already decided raises ImmutabilityViolationError, and
      entries are never deleted.

Failure modes:
    - StaleDataError on concurrent modification of a request.
    - IntegrityError on a second pending request for one expense.
    - ImmutabilityViolationError on entry mutation after decision.

Audit relevance:
    Entries form the chain of custody for every approval, rejection and
    delegation.  Comments are stored in submission order.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from recon_kernel.db.base import Base, UUIDString
from recon_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from recon_kernel.domain.approval import ApprovalEntry, ApprovalRequest


class ApprovalRequestModel(Base):
    """Persistent approval request."""

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'expired', 'withdrawn')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "current_level >= 1 AND current_level <= total_levels",
            name="ck_approval_requests_level_range",
        ),
        Index("ix_approval_requests_expense", "expense_id", "status"),
        Index(
            "uq_approval_requests_pending_expense",
            "expense_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_approval_requests_expiry", "status", "expires_at"),
    )

    request_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    expense_id: Mapped[str] = mapped_column(String(100), nullable=False)
    policy_id: Mapped[str] = mapped_column(String(100), nullable=False)
    submitter_id: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    category: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    vendor: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="low")
    current_level: Mapped[int] = mapped_column(nullable=False)
    total_levels: Mapped[int] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalations_applied: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    comments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    entries: Mapped[list["ApprovalEntryModel"]] = relationship(
        "ApprovalEntryModel",
        back_populates="request",
        primaryjoin="ApprovalRequestModel.request_id == ApprovalEntryModel.request_id",
        order_by="ApprovalEntryModel.sequence",
        lazy="selectin",
        cascade="save-update, merge",
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} expense={self.expense_id} "
            f"status={self.status} level={self.current_level}/{self.total_levels}>"
        )

    def to_dto(self) -> ApprovalRequest:
        from recon_kernel.domain.approval import (
            ApprovalComment,
            ApprovalPriority,
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalStatus,
        )

        return ApprovalRequestDTO(
            request_id=self.request_id,
            expense_id=self.expense_id,
            policy_id=self.policy_id,
            submitter_id=self.submitter_id,
            amount=self.amount,
            currency=self.currency,
            status=ApprovalStatus(self.status),
            current_level=self.current_level,
            total_levels=self.total_levels,
            submitted_at=self.submitted_at,
            expires_at=self.expires_at,
            approvers=tuple(e.to_dto() for e in self.entries),
            comments=tuple(
                ApprovalComment(
                    author_id=c["author_id"],
                    body=c["body"],
                    created_at=datetime.fromisoformat(c["created_at"]),
                )
                for c in self.comments
            ),
            completed_at=self.completed_at,
            priority=ApprovalPriority(self.priority),
            category=self.category,
            vendor=self.vendor,
            escalations_applied=tuple(self.escalations_applied),
            version=self.version,
        )

    def apply_dto(self, dto: ApprovalRequest) -> None:
        """Copy mutable request state from ``dto`` onto this row."""
        self.status = dto.status.value
        self.current_level = dto.current_level
        self.expires_at = dto.expires_at
        self.completed_at = dto.completed_at
        self.escalations_applied = list(dto.escalations_applied)
        self.comments = [
            {
                "author_id": c.author_id,
                "body": c.body,
                "created_at": c.created_at.isoformat(),
            }
            for c in dto.comments
        ]
        self.version = dto.version

    @classmethod
    def from_dto(cls, dto: ApprovalRequest) -> ApprovalRequestModel:
        model = cls(
            request_id=dto.request_id,
            expense_id=dto.expense_id,
            policy_id=dto.policy_id,
            submitter_id=dto.submitter_id,
            amount=dto.amount,
            currency=dto.currency,
            category=dto.category,
            vendor=dto.vendor,
            priority=dto.priority.value,
            total_levels=dto.total_levels,
            submitted_at=dto.submitted_at,
        )
        model.apply_dto(dto)
        model.entries = [
            ApprovalEntryModel.from_dto(entry, dto.request_id, sequence)
            for sequence, entry in enumerate(dto.approvers)
        ]
        return model


class ApprovalEntryModel(Base):
    """Persistent per-approver entry. Transitions once out of ``pending``."""

    __tablename__ = "approval_entries"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'delegated', 'expired')",
            name="ck_approval_entries_valid_status",
        ),
        Index("ix_approval_entries_request", "request_id", "sequence"),
        Index("ix_approval_entries_approver", "approver_id", "status"),
    )

    entry_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_delegate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delegated_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delegated_from: Mapped[str | None] = mapped_column(String(100), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel",
        back_populates="entries",
        foreign_keys=[request_id],
        primaryjoin="ApprovalEntryModel.request_id == ApprovalRequestModel.request_id",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalEntry {self.approver_id} level={self.level} "
            f"status={self.status}>"
        )

    def to_dto(self) -> ApprovalEntry:
        from recon_kernel.domain.approval import (
            ApprovalEntry as ApprovalEntryDTO,
            EntryStatus,
        )

        return ApprovalEntryDTO(
            entry_id=self.entry_id,
            approver_id=self.approver_id,
            level=self.level,
            status=EntryStatus(self.status),
            is_required=self.is_required,
            can_delegate=self.can_delegate,
            max_amount=self.max_amount,
            decided_at=self.decided_at,
            delegated_to=self.delegated_to,
            delegated_from=self.delegated_from,
            comments=self.comments,
        )

    def apply_dto(self, dto: ApprovalEntry) -> None:
        self.status = dto.status.value
        self.decided_at = dto.decided_at
        self.delegated_to = dto.delegated_to
        self.comments = dto.comments

    @classmethod
    def from_dto(
        cls,
        dto: ApprovalEntry,
        request_id: UUID,
        sequence: int,
    ) -> ApprovalEntryModel:
        model = cls(
            entry_id=dto.entry_id,
            request_id=request_id,
            sequence=sequence,
            approver_id=dto.approver_id,
            level=dto.level,
            is_required=dto.is_required,
            can_delegate=dto.can_delegate,
            max_amount=dto.max_amount,
            delegated_from=dto.delegated_from,
        )
        model.apply_dto(dto)
        return model


# =============================================================================
# ORM-level one-way transitions for entries
# =============================================================================


@event.listens_for(ApprovalEntryModel, "before_update")
def prevent_decided_entry_update(mapper, connection, target):
    """Only entries still stored as pending may change."""
    history = inspect(target).attrs.status.history
    stored_status = history.deleted[0] if history.deleted else target.status
    if stored_status != "pending":
        raise ImmutabilityViolationError(
            entity_type="ApprovalEntry",
            entity_id=str(target.entry_id),
            reason=f"Entry already {stored_status} -- cannot modify",
        )


@event.listens_for(ApprovalEntryModel, "before_delete")
def prevent_entry_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalEntry",
        entity_id=str(target.entry_id),
        reason="Approval entries are never deleted",
    )
