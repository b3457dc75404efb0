"""
recon_services -- orchestration over the reconciliation engines and kernel.

Usage:
    from recon_services import EscalationSweep, ReconciliationOrchestrator
"""

from recon_services.escalation_sweep import EscalationSweep, SweepReport
from recon_services.notifications import LoggingNotificationSink
from recon_services.reconciliation_orchestrator import (
    ReconciliationOrchestrator,
    ReconciliationOutcome,
    ReconciliationOutcomeKind,
)

__all__ = [
    "EscalationSweep",
    "LoggingNotificationSink",
    "ReconciliationOrchestrator",
    "ReconciliationOutcome",
    "ReconciliationOutcomeKind",
    "SweepReport",
]
