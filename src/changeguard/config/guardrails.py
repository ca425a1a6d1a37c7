"""
Guardrails engine configuration.

The full configuration tree for one engine instance: rate limits, safety
checks, environment protections, approvers, notification channels and
policies. Scalar settings left out of a config file fall back to ``Settings``
(environment variables, then defaults).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from changeguard.config.settings import Settings, get_settings
from changeguard.guardrails.environments import default_protections
from changeguard.guardrails.models import (
    Approver,
    Environment,
    EnvironmentProtection,
    RateLimitConfig,
    SafetyCheckConfig,
)
from changeguard.guardrails.policies import PolicyDefinition
from changeguard.notifications.models import NotificationChannelConfig

# Top-level scalar keys shared with Settings
SCALAR_KEYS = (
    "default_region",
    "environment_tag_key",
    "default_approval_timeout_minutes",
    "audit_log_retention_days",
    "audit_all_operations",
    "audit_log_path",
    "unknown_condition_matches",
    "notification_timeout_seconds",
)


@dataclass
class GuardrailsConfig:
    """Configuration for a GuardrailsEngine."""

    default_region: str = "us-east-1"
    environment_tag_key: str = "Environment"
    default_environment: Environment = Environment.UNKNOWN
    default_approval_timeout_minutes: int = 30
    audit_log_retention_days: int = 90
    audit_all_operations: bool = True
    audit_log_path: str | None = None
    unknown_condition_matches: bool = True
    notification_timeout_seconds: float = 10.0
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    safety_checks: SafetyCheckConfig = field(default_factory=SafetyCheckConfig)
    environments: list[EnvironmentProtection] = field(default_factory=default_protections)
    default_approvers: list[Approver] = field(default_factory=list)
    notification_channels: list[NotificationChannelConfig] = field(default_factory=list)
    policies: list[PolicyDefinition] = field(default_factory=list)

    @classmethod
    def default(cls, settings: Settings | None = None) -> GuardrailsConfig:
        """Default configuration seeded from settings."""
        return cls.from_dict({}, settings=settings)

    @classmethod
    def from_dict(cls, data: dict[str, Any], settings: Settings | None = None) -> GuardrailsConfig:
        """
        Build a config from a parsed YAML/JSON mapping.

        Args:
            data: Parsed configuration document
            settings: Fallback for scalar keys missing from ``data``

        Raises:
            ValueError / KeyError: On malformed sections
        """
        settings = settings or get_settings()
        scalars = {key: data.get(key, getattr(settings, key)) for key in SCALAR_KEYS}

        environments = data.get("environments")
        return cls(
            default_environment=Environment(
                data.get("default_environment", settings.default_environment)
            ),
            rate_limits=RateLimitConfig.from_dict(data.get("rate_limits") or {}),
            safety_checks=SafetyCheckConfig.from_dict(data.get("safety_checks") or {}),
            environments=(
                [EnvironmentProtection.from_dict(e) for e in environments]
                if environments is not None
                else default_protections()
            ),
            default_approvers=[Approver.from_dict(a) for a in data.get("default_approvers", [])],
            notification_channels=[
                NotificationChannelConfig.from_dict(c)
                for c in data.get("notification_channels", [])
            ],
            policies=[PolicyDefinition.from_dict(p) for p in data.get("policies", [])],
            **scalars,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **{key: getattr(self, key) for key in SCALAR_KEYS},
            "default_environment": self.default_environment.value,
            "rate_limits": self.rate_limits.to_dict(),
            "safety_checks": self.safety_checks.to_dict(),
            "environments": [e.to_dict() for e in self.environments],
            "default_approvers": [a.to_dict() for a in self.default_approvers],
            "notification_channels": [c.to_dict() for c in self.notification_channels],
            "policies": [p.to_dict() for p in self.policies],
        }
