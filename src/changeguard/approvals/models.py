"""
Approval request domain models.

Status machine:
    pending -> approved   (approvals >= required_approvals)
    pending -> rejected   (any rejection)
    pending -> expired    (now >= expires_at, applied lazily on read)
    pending -> cancelled  (explicit cancel)

Every non-pending status is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from changeguard.guardrails.models import (
    Approver,
    DryRunResult,
    Environment,
    ImpactAssessment,
)


class ApprovalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != ApprovalStatus.PENDING


class ApprovalDecision(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ApprovalResponse:
    """One approver's decision. Responses are append-only."""

    approver_id: str
    approver_name: str
    decision: ApprovalDecision
    timestamp: datetime
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "decision": self.decision.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ApprovalRequest:
    """A pending (or resolved) request for human sign-off on an operation."""

    id: str
    requester_id: str
    requester_name: str
    action: str
    service: str
    resource_ids: list[str]
    environment: Environment
    approvers: list[Approver]
    required_approvals: int
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    timeout_minutes: int
    status: ApprovalStatus = ApprovalStatus.PENDING
    reason: str | None = None
    resource_details: dict[str, Any] | None = None
    impact_assessment: ImpactAssessment | None = None
    dry_run_result: DryRunResult | None = None
    responses: list[ApprovalResponse] = field(default_factory=list)
    cancel_reason: str | None = None

    @property
    def approval_count(self) -> int:
        return sum(1 for r in self.responses if r.decision == ApprovalDecision.APPROVED)

    def is_approver(self, approver_id: str) -> bool:
        return any(a.id == approver_id for a in self.approvers)

    def has_responded(self, approver_id: str) -> bool:
        return any(r.approver_id == approver_id for r in self.responses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "requester_name": self.requester_name,
            "action": self.action,
            "service": self.service,
            "resource_ids": list(self.resource_ids),
            "environment": self.environment.value,
            "status": self.status.value,
            "reason": self.reason,
            "required_approvals": self.required_approvals,
            "approvals": self.approval_count,
            "approvers": [a.to_dict() for a in self.approvers],
            "responses": [r.to_dict() for r in self.responses],
            "impact_assessment": (
                self.impact_assessment.to_dict() if self.impact_assessment else None
            ),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "timeout_minutes": self.timeout_minutes,
            "cancel_reason": self.cancel_reason,
        }
