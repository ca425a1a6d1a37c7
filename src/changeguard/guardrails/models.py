"""
Guardrails domain models.

Operation contexts, action classifications, environment protections,
safety-check and evaluation results, impact assessments and dry-run previews.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Mapping


class Environment(StrEnum):
    """Deployment environment of a resource."""

    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"
    SANDBOX = "sandbox"
    UNKNOWN = "unknown"


class ActionSeverity(StrEnum):
    """Severity of an action or risk level of an operation."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionType(StrEnum):
    """Well-known mutating (and read) actions."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    TERMINATE = "terminate"
    STOP = "stop"
    START = "start"
    REBOOT = "reboot"
    MODIFY = "modify"
    SCALE = "scale"
    DEPLOY = "deploy"


class ProtectionLevel(StrEnum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


@dataclass(frozen=True)
class OperationContext:
    """An intended operation, built once per call and never mutated."""

    actor_id: str
    actor_name: str
    action: str
    service: str
    resource_ids: tuple[str, ...]
    resource_type: str
    region: str
    environment: Environment | None = None
    resource_tags: Mapping[str, str] | None = None
    request_params: Mapping[str, Any] | None = None
    session_id: str | None = None
    account_id: str | None = None
    is_dry_run: bool = False
    has_confirmation: bool = False
    approval_request_id: str | None = None

    def __post_init__(self) -> None:
        # Accept any sequence at construction, store a tuple
        object.__setattr__(self, "resource_ids", tuple(self.resource_ids))
        if not self.resource_ids:
            raise ValueError("OperationContext requires at least one resource id")
        if self.environment is not None and not isinstance(self.environment, Environment):
            object.__setattr__(self, "environment", Environment(self.environment))
        if self.resource_tags is not None:
            object.__setattr__(self, "resource_tags", dict(self.resource_tags))
        if self.request_params is not None:
            object.__setattr__(self, "request_params", dict(self.request_params))

    @property
    def resource_count(self) -> int:
        return len(self.resource_ids)


@dataclass(frozen=True)
class ActionClassification:
    """Static risk metadata for an (action, service) pair."""

    action: str
    service: str
    severity: ActionSeverity
    is_destructive: bool
    is_reversible: bool
    requires_approval: bool
    requires_dry_run: bool
    can_affect_multiple: bool
    category: str | None = None


@dataclass
class TimeWindow:
    """A recurring window during which changes are allowed."""

    days: list[str]  # "mon" .. "sun"
    start_hour: int
    end_hour: int
    timezone: str = "UTC"

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": list(self.days),
            "start_hour": self.start_hour,
            "end_hour": self.end_hour,
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimeWindow:
        return cls(
            days=[str(d).lower()[:3] for d in data.get("days", [])],
            start_hour=int(data.get("start_hour", 0)),
            end_hour=int(data.get("end_hour", 24)),
            timezone=data.get("timezone", "UTC"),
        )


@dataclass
class RequiredTag:
    key: str
    allowed_values: list[str] = field(default_factory=list)
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "allowed_values": list(self.allowed_values), "required": self.required}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequiredTag:
        return cls(
            key=data["key"],
            allowed_values=list(data.get("allowed_values", [])),
            required=bool(data.get("required", True)),
        )


@dataclass(frozen=True)
class Approver:
    """Someone allowed to respond to approval requests."""

    id: str
    name: str
    email: str = ""
    channel: str | None = None  # email | slack | teams | pagerduty
    channel_id: str | None = None
    weight: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "channel": self.channel,
            "channel_id": self.channel_id,
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Approver:
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            email=data.get("email", ""),
            channel=data.get("channel"),
            channel_id=data.get("channel_id"),
            weight=int(data.get("weight", 1)),
        )


@dataclass
class EnvironmentProtection:
    """Rule set applied to every operation in one environment."""

    environment: Environment
    is_protected: bool
    protection_level: ProtectionLevel = ProtectionLevel.NONE
    approval_required_actions: set[str] = field(default_factory=set)
    blocked_actions: set[str] = field(default_factory=set)
    allowed_time_windows: list[TimeWindow] | None = None
    required_tags: list[RequiredTag] | None = None
    approvers: list[Approver] = field(default_factory=list)
    min_approvals: int | None = None

    def __post_init__(self) -> None:
        self.environment = Environment(self.environment)
        self.protection_level = ProtectionLevel(self.protection_level)
        self.approval_required_actions = set(self.approval_required_actions)
        self.blocked_actions = set(self.blocked_actions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment.value,
            "is_protected": self.is_protected,
            "protection_level": self.protection_level.value,
            "approval_required_actions": sorted(self.approval_required_actions),
            "blocked_actions": sorted(self.blocked_actions),
            "allowed_time_windows": (
                [w.to_dict() for w in self.allowed_time_windows]
                if self.allowed_time_windows is not None
                else None
            ),
            "required_tags": (
                [t.to_dict() for t in self.required_tags] if self.required_tags is not None else None
            ),
            "approvers": [a.to_dict() for a in self.approvers],
            "min_approvals": self.min_approvals,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnvironmentProtection:
        windows = data.get("allowed_time_windows")
        tags = data.get("required_tags")
        return cls(
            environment=Environment(data["environment"]),
            is_protected=bool(data.get("is_protected", False)),
            protection_level=ProtectionLevel(data.get("protection_level", "none")),
            approval_required_actions=set(data.get("approval_required_actions", [])),
            blocked_actions=set(data.get("blocked_actions", [])),
            allowed_time_windows=[TimeWindow.from_dict(w) for w in windows] if windows is not None else None,
            required_tags=[RequiredTag.from_dict(t) for t in tags] if tags is not None else None,
            approvers=[Approver.from_dict(a) for a in data.get("approvers", [])],
            min_approvals=data.get("min_approvals"),
        )


@dataclass
class RateLimitConfig:
    """Thresholds for the sliding-window rate limiter and bulk operations."""

    max_resources_per_operation: int = 50
    max_operations_per_minute: int = 30
    max_operations_per_hour: int = 500
    max_destructive_operations_per_day: int = 100
    bulk_operation_cooldown_seconds: int = 60
    confirmation_threshold: int = 10

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_resources_per_operation": self.max_resources_per_operation,
            "max_operations_per_minute": self.max_operations_per_minute,
            "max_operations_per_hour": self.max_operations_per_hour,
            "max_destructive_operations_per_day": self.max_destructive_operations_per_day,
            "bulk_operation_cooldown_seconds": self.bulk_operation_cooldown_seconds,
            "confirmation_threshold": self.confirmation_threshold,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RateLimitConfig:
        defaults = cls()
        return cls(**{key: int(data.get(key, value)) for key, value in defaults.to_dict().items()})


@dataclass
class SafetyCheckConfig:
    """Switches for the safety-check pipeline."""

    confirm_production_changes: bool = True
    create_backup_before_delete: bool = True
    check_dependencies_before_delete: bool = True
    prevent_changes_outside_window: bool = False
    require_approval_for_protected_envs: bool = True
    dry_run_by_default: bool = True
    block_on_protected_tags: list[str] = field(
        default_factory=lambda: ["DoNotDelete", "Protected", "Critical"]
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "confirm_production_changes": self.confirm_production_changes,
            "create_backup_before_delete": self.create_backup_before_delete,
            "check_dependencies_before_delete": self.check_dependencies_before_delete,
            "prevent_changes_outside_window": self.prevent_changes_outside_window,
            "require_approval_for_protected_envs": self.require_approval_for_protected_envs,
            "dry_run_by_default": self.dry_run_by_default,
            "block_on_protected_tags": list(self.block_on_protected_tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SafetyCheckConfig:
        defaults = cls()
        return cls(
            confirm_production_changes=bool(
                data.get("confirm_production_changes", defaults.confirm_production_changes)
            ),
            create_backup_before_delete=bool(
                data.get("create_backup_before_delete", defaults.create_backup_before_delete)
            ),
            check_dependencies_before_delete=bool(
                data.get("check_dependencies_before_delete", defaults.check_dependencies_before_delete)
            ),
            prevent_changes_outside_window=bool(
                data.get("prevent_changes_outside_window", defaults.prevent_changes_outside_window)
            ),
            require_approval_for_protected_envs=bool(
                data.get(
                    "require_approval_for_protected_envs",
                    defaults.require_approval_for_protected_envs,
                )
            ),
            dry_run_by_default=bool(data.get("dry_run_by_default", defaults.dry_run_by_default)),
            block_on_protected_tags=list(
                data.get("block_on_protected_tags", defaults.block_on_protected_tags)
            ),
        )


@dataclass
class SafetyCheck:
    """Outcome of one check in the safety pipeline."""

    name: str
    description: str
    passed: bool
    severity: ActionSeverity
    message: str
    is_blocking: bool


@dataclass
class SafetyCheckResult:
    """Aggregate of every safety check, in pipeline order."""

    passed: bool
    checks: list[SafetyCheck]
    risk_level: ActionSeverity
    blocking_issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    required_confirmations: list[str] = field(default_factory=list)
    approval_required: bool = False
    dry_run_recommended: bool = False

    def get(self, name: str) -> SafetyCheck | None:
        """Return the named check, if it ran."""
        for check in self.checks:
            if check.name == name:
                return check
        return None


@dataclass
class RateLimitStatus:
    """Snapshot of an actor's sliding-window counters."""

    operations_this_minute: int
    operations_this_hour: int
    destructive_operations_today: int
    is_rate_limited: bool
    remaining_this_minute: int
    remaining_this_hour: int
    rate_limit_reason: str | None = None
    reset_at: datetime | None = None


@dataclass
class ResourceDependency:
    """A resource that depends on one being changed."""

    resource_id: str
    resource_type: str
    dependency_type: str  # "hard" | "soft"
    impact: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "dependency_type": self.dependency_type,
            "impact": self.impact,
        }


@dataclass
class ImpactAssessment:
    """Blast radius of an operation."""

    severity: ActionSeverity
    affected_resource_count: int
    affected_resource_types: list[str]
    rollback_possible: bool
    estimated_downtime: str | None = None
    dependencies: list[ResourceDependency] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "affected_resource_count": self.affected_resource_count,
            "affected_resource_types": list(self.affected_resource_types),
            "rollback_possible": self.rollback_possible,
            "estimated_downtime": self.estimated_downtime,
            "dependencies": [d.to_dict() for d in self.dependencies],
            "risk_factors": list(self.risk_factors),
            "recommendations": list(self.recommendations),
        }


@dataclass
class AffectedResource:
    resource_id: str
    resource_type: str
    current_state: str
    proposed_state: str
    environment: Environment | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class PlannedChange:
    resource_id: str
    change_type: str  # "create" | "update" | "delete"
    is_destructive: bool
    is_reversible: bool


@dataclass
class DryRunResult:
    """No-mutation preview of an operation."""

    would_succeed: bool
    affected_resources: list[AffectedResource]
    planned_changes: list[PlannedChange]
    potential_errors: list[str]
    warnings: list[str]
    timestamp: datetime
    estimated_duration: str | None = None


@dataclass
class GuardrailsEvaluationResult:
    """Merged allow/deny decision for one operation."""

    allowed: bool
    requires_confirmation: bool
    requires_approval: bool
    requires_dry_run: bool
    is_rate_limited: bool
    risk_level: ActionSeverity
    safety_check_result: SafetyCheckResult
    requires_backup: bool = False
    within_allowed_hours: bool = True
    block_reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    applied_policies: list[str] = field(default_factory=list)
    policy_actions: list[str] = field(default_factory=list)
    impact_assessment: ImpactAssessment | None = None
    rate_limit_status: RateLimitStatus | None = None
    suggested_actions: list[str] = field(default_factory=list)
