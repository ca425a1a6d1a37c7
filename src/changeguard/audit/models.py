"""
Audit log domain models.

Append-only records of guardrails decisions and executed operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class AuditOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"
    PENDING_APPROVAL = "pending_approval"


@dataclass
class AuditLogEntry:
    """One audited operation."""

    id: str
    timestamp: datetime
    actor_id: str
    actor_name: str
    action: str
    service: str
    resource_ids: list[str]
    environment: str
    region: str
    outcome: AuditOutcome
    error_message: str | None = None
    block_reason: str | None = None
    approval_request_id: str | None = None
    dry_run: bool = False
    duration_ms: int | None = None
    request_params: dict[str, Any] | None = None
    context: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None
    account_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "action": self.action,
            "service": self.service,
            "resource_ids": list(self.resource_ids),
            "environment": self.environment,
            "region": self.region,
            "outcome": self.outcome.value,
            "error_message": self.error_message,
            "block_reason": self.block_reason,
            "approval_request_id": self.approval_request_id,
            "dry_run": self.dry_run,
            "duration_ms": self.duration_ms,
            "request_params": self.request_params,
            "context": self.context,
            "session_id": self.session_id,
            "account_id": self.account_id,
        }


@dataclass
class AuditLogQuery:
    """Conjunctive filter set. Unset fields do not filter."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    actor_id: str | None = None
    actions: list[str] | None = None
    services: list[str] | None = None
    outcomes: list[AuditOutcome] | None = None
    environments: list[str] | None = None
    resource_id: str | None = None
    max_results: int | None = None
    next_token: str | None = None

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.start_time is not None and entry.timestamp < self.start_time:
            return False
        if self.end_time is not None and entry.timestamp > self.end_time:
            return False
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        if self.actions and entry.action not in self.actions:
            return False
        if self.services and entry.service not in self.services:
            return False
        if self.outcomes and entry.outcome not in self.outcomes:
            return False
        if self.environments and entry.environment not in self.environments:
            return False
        if self.resource_id is not None and self.resource_id not in entry.resource_ids:
            return False
        return True


@dataclass
class AuditLogPage:
    entries: list[AuditLogEntry]
    total_count: int
    next_token: str | None = None


@dataclass
class AuditLogSummary:
    """Aggregated audit activity over a period."""

    period_start: datetime
    period_end: datetime
    total_actions: int = 0
    successful_actions: int = 0
    failed_actions: int = 0
    blocked_actions: int = 0
    pending_approvals: int = 0
    by_service: dict[str, int] = field(default_factory=dict)
    by_action: dict[str, int] = field(default_factory=dict)
    by_environment: dict[str, int] = field(default_factory=dict)
    by_actor: dict[str, int] = field(default_factory=dict)
    top_resources: list[tuple[str, int]] = field(default_factory=list)
    top_operations: list[tuple[str, int]] = field(default_factory=list)
    top_actors: list[tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": {
                "start": self.period_start.isoformat(),
                "end": self.period_end.isoformat(),
            },
            "total_actions": self.total_actions,
            "successful_actions": self.successful_actions,
            "failed_actions": self.failed_actions,
            "blocked_actions": self.blocked_actions,
            "pending_approvals": self.pending_approvals,
            "by_service": self.by_service,
            "by_action": self.by_action,
            "by_environment": self.by_environment,
            "by_actor": self.by_actor,
            "top_resources": [{"resource_id": r, "count": c} for r, c in self.top_resources],
            "top_operations": [{"operation": o, "count": c} for o, c in self.top_operations],
            "top_actors": [{"actor_id": a, "count": c} for a, c in self.top_actors],
        }
