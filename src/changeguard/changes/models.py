"""
Change management domain models.

Pre-operation backups and change requests that wrap a planned sequence of
guarded operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from changeguard.guardrails.models import ImpactAssessment


class BackupType(StrEnum):
    SNAPSHOT = "snapshot"
    EXPORT = "export"
    AMI = "ami"
    CONFIGURATION = "configuration"


@dataclass
class PreOperationBackup:
    """Point-in-time recovery artifact taken before a destructive operation."""

    id: str
    resource_id: str
    resource_type: str
    backup_type: BackupType
    backup_reference: str
    created_at: datetime
    expires_at: datetime
    triggering_operation: str
    can_restore: bool
    restore_instructions: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "backup_type": self.backup_type.value,
            "backup_reference": self.backup_reference,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "triggering_operation": self.triggering_operation,
            "can_restore": self.can_restore,
            "restore_instructions": self.restore_instructions,
        }


class ChangeType(StrEnum):
    STANDARD = "standard"
    NORMAL = "normal"
    EMERGENCY = "emergency"


class ChangePriority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ChangeRequestStatus(StrEnum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Allowed status transitions; anything not listed is terminal
CHANGE_REQUEST_TRANSITIONS: dict[ChangeRequestStatus, frozenset[ChangeRequestStatus]] = {
    ChangeRequestStatus.DRAFT: frozenset(
        {
            ChangeRequestStatus.PENDING_REVIEW,
            ChangeRequestStatus.IN_PROGRESS,
            ChangeRequestStatus.CANCELLED,
        }
    ),
    ChangeRequestStatus.PENDING_REVIEW: frozenset(
        {
            ChangeRequestStatus.APPROVED,
            ChangeRequestStatus.DRAFT,
            ChangeRequestStatus.CANCELLED,
        }
    ),
    ChangeRequestStatus.APPROVED: frozenset(
        {ChangeRequestStatus.IN_PROGRESS, ChangeRequestStatus.CANCELLED}
    ),
    ChangeRequestStatus.IN_PROGRESS: frozenset(
        {
            ChangeRequestStatus.COMPLETED,
            ChangeRequestStatus.FAILED,
            ChangeRequestStatus.CANCELLED,
        }
    ),
}


@dataclass
class PlannedAction:
    """One step of a change request."""

    order: int
    description: str
    service: str
    action_type: str
    target_resources: list[str]
    expected_outcome: str
    parameters: dict[str, Any] = field(default_factory=dict)
    validation_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "description": self.description,
            "service": self.service,
            "action_type": self.action_type,
            "target_resources": list(self.target_resources),
            "parameters": dict(self.parameters),
            "expected_outcome": self.expected_outcome,
            "validation_steps": list(self.validation_steps),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlannedAction:
        return cls(
            order=int(data["order"]),
            description=data["description"],
            service=data["service"],
            action_type=data["action_type"],
            target_resources=list(data.get("target_resources", [])),
            expected_outcome=data.get("expected_outcome", ""),
            parameters=dict(data.get("parameters") or {}),
            validation_steps=list(data.get("validation_steps", [])),
        )


@dataclass
class ChangeRequest:
    """A reviewed, scheduled set of planned actions."""

    id: str
    title: str
    description: str
    change_type: ChangeType
    priority: ChangePriority
    requested_by: str
    status: ChangeRequestStatus
    planned_actions: list[PlannedAction]
    created_at: datetime
    updated_at: datetime
    impact_assessment: ImpactAssessment | None = None
    assigned_to: str | None = None
    rollback_plan: str | None = None
    test_plan: str | None = None
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    approval_request_id: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "change_type": self.change_type.value,
            "priority": self.priority.value,
            "requested_by": self.requested_by,
            "assigned_to": self.assigned_to,
            "status": self.status.value,
            "planned_actions": [a.to_dict() for a in self.planned_actions],
            "impact_assessment": (
                self.impact_assessment.to_dict() if self.impact_assessment else None
            ),
            "rollback_plan": self.rollback_plan,
            "test_plan": self.test_plan,
            "scheduled_start": _iso(self.scheduled_start),
            "scheduled_end": _iso(self.scheduled_end),
            "actual_start": _iso(self.actual_start),
            "actual_end": _iso(self.actual_end),
            "approval_request_id": self.approval_request_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
