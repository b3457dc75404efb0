"""
Reconciliation Kernel

Matches imported financial records against their counterparts and routes
the resulting expenses through multi-level approval:
- Weighted, rule-configurable match confidence
- Append-only, versioned match results
- Approval requests with delegation and escalation
- Deterministic time and structured audit logging
"""

__version__ = "0.1.0"
