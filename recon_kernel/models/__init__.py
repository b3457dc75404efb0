"""ORM models for the reconciliation kernel."""

from recon_kernel.models.approval import ApprovalEntryModel, ApprovalRequestModel
from recon_kernel.models.match_result import MatchConfirmationModel, MatchResultModel

__all__ = [
    "ApprovalEntryModel",
    "ApprovalRequestModel",
    "MatchConfirmationModel",
    "MatchResultModel",
]
