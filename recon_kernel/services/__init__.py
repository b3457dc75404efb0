"""Kernel services: persistence-backed workflow and stores."""

from recon_kernel.services.approval_repository import SqlApprovalRequestRepository
from recon_kernel.services.approval_service import ApprovalService, RequestLocks
from recon_kernel.services.cache import TTLCache
from recon_kernel.services.match_result_service import SqlMatchResultStore

__all__ = [
    "ApprovalService",
    "RequestLocks",
    "SqlApprovalRequestRepository",
    "SqlMatchResultStore",
    "TTLCache",
]
