"""Read-only query selectors."""

from recon_kernel.selectors.approval_selector import ApprovalSelector
from recon_kernel.selectors.base import BaseSelector
from recon_kernel.selectors.match_selector import MatchResultSelector

__all__ = [
    "ApprovalSelector",
    "BaseSelector",
    "MatchResultSelector",
]
