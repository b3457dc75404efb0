"""
recon_services.escalation_sweep -- Periodic escalation of overdue requests.

Responsibility:
    Find every pending approval request whose deadline has passed and
    apply its next escalation step through ``ApprovalService.escalate``.
    Intended to be called by a scheduler (cron, worker beat).

Invariants enforced:
    - Each due request is escalated at most once per run.
    - A request that a human resolved between the scan and the escalation
      raises StaleRequestError inside the service; the sweep logs it and
      moves on.
    - A version conflict with another writer (OptimisticLockError or any
      other ConcurrencyError) skips that request; the next run retries it.
    - Any other error propagates.

Audit relevance:
    ``escalation_sweep_completed`` records how many requests were due,
    escalated and skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from recon_kernel.exceptions import ConcurrencyError, StaleRequestError
from recon_kernel.logging_config import get_logger
from recon_kernel.services.approval_service import ApprovalService

logger = get_logger("services.escalation_sweep")


@dataclass(frozen=True)
class SweepReport:
    due: int
    escalated: tuple[UUID, ...] = ()
    skipped: tuple[UUID, ...] = ()
    outcomes: dict[UUID, str] = field(default_factory=dict)


class EscalationSweep:
    def __init__(self, approval_service: ApprovalService):
        self._service = approval_service

    def run(self) -> SweepReport:
        due = self._service.due_for_escalation()
        escalated: list[UUID] = []
        skipped: list[UUID] = []
        outcomes: dict[UUID, str] = {}

        for request in due:
            try:
                updated = self._service.escalate(request.request_id)
            except StaleRequestError as exc:
                logger.info("escalation_skipped_stale", extra={
                    "request_id": str(request.request_id),
                    "reason": exc.reason,
                })
                skipped.append(request.request_id)
                continue
            except ConcurrencyError as exc:
                logger.warning("escalation_skipped_conflict", extra={
                    "request_id": str(request.request_id),
                    "error_code": exc.code,
                    "error": str(exc),
                })
                skipped.append(request.request_id)
                continue
            escalated.append(request.request_id)
            outcomes[request.request_id] = updated.status.value

        logger.info("escalation_sweep_completed", extra={
            "due_count": len(due),
            "escalated_count": len(escalated),
            "skipped_count": len(skipped),
        })
        return SweepReport(
            due=len(due),
            escalated=tuple(escalated),
            skipped=tuple(skipped),
            outcomes=outcomes,
        )
