"""
recon_services.notifications -- Notification sink implementations.

The workflow engine decides who must hear about a transition; delivering
the message (email, chat, queue) belongs to whatever sink is plugged in.
``LoggingNotificationSink`` writes one structured log line per recipient
and is the default when nothing else is configured.
"""

from __future__ import annotations

from recon_kernel.domain.approval import ApprovalRequest, WorkflowEvent
from recon_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class LoggingNotificationSink:
    """Emit an ``approval_notification`` log record per recipient."""

    def notify(self, request: ApprovalRequest, event: WorkflowEvent) -> None:
        for recipient in event.recipients:
            logger.info("approval_notification", extra={
                "event_type": event.event_type.value,
                "request_id": str(request.request_id),
                "expense_id": request.expense_id,
                "recipient_id": recipient,
                "level": event.level,
                "status": request.status.value,
                "priority": request.priority.value,
            })
