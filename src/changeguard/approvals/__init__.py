"""Approval requests and the workflow that resolves them."""

from changeguard.approvals.models import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalResponse,
    ApprovalStatus,
)
from changeguard.approvals.workflow import ApprovalWorkflow

__all__ = [
    "ApprovalDecision",
    "ApprovalRequest",
    "ApprovalResponse",
    "ApprovalStatus",
    "ApprovalWorkflow",
]
