"""
Environment protection registry.

Holds one ``EnvironmentProtection`` per environment, evaluates allowed
change windows and detects a resource's environment from its tags.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Iterable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from changeguard.core.clock import Clock, utcnow
from changeguard.guardrails.models import (
    Approver,
    Environment,
    EnvironmentProtection,
    OperationContext,
    ProtectionLevel,
    TimeWindow,
)

logger = structlog.get_logger()

_DAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def default_protections() -> list[EnvironmentProtection]:
    """Protections applied when no configuration overrides them."""
    return [
        EnvironmentProtection(
            environment=Environment.PRODUCTION,
            is_protected=True,
            protection_level=ProtectionLevel.FULL,
            approval_required_actions={"terminate", "delete", "modify", "stop", "reboot", "scale"},
            min_approvals=2,
        ),
        EnvironmentProtection(
            environment=Environment.STAGING,
            is_protected=True,
            protection_level=ProtectionLevel.PARTIAL,
            approval_required_actions={"terminate", "delete"},
            min_approvals=1,
        ),
        EnvironmentProtection(
            environment=Environment.DEVELOPMENT,
            is_protected=False,
            protection_level=ProtectionLevel.NONE,
        ),
        EnvironmentProtection(
            environment=Environment.SANDBOX,
            is_protected=False,
            protection_level=ProtectionLevel.NONE,
        ),
    ]


def is_within_time_windows(windows: list[TimeWindow] | None, now: datetime) -> bool:
    """
    Check whether ``now`` falls inside any of the windows.

    Each window is evaluated in its own timezone: the local weekday must be in
    ``days`` and the local hour in ``[start_hour, end_hour)``. An empty or
    missing window list places no restriction.
    """
    if not windows:
        return True

    for window in windows:
        try:
            tz = ZoneInfo(window.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("unknown_time_window_timezone", timezone=window.timezone)
            tz = ZoneInfo("UTC")

        local = now.astimezone(tz)
        day = _DAY_NAMES[local.weekday()]
        if day not in window.days:
            continue
        if window.start_hour <= local.hour < window.end_hour:
            return True

    return False


class EnvironmentRegistry:
    """Per-environment rule sets owned by one engine instance."""

    def __init__(
        self,
        protections: Iterable[EnvironmentProtection] | None = None,
        default_approvers: Iterable[Approver] = (),
        environment_tag_key: str = "Environment",
        default_environment: Environment = Environment.UNKNOWN,
        clock: Clock | None = None,
    ) -> None:
        self._protections: dict[Environment, EnvironmentProtection] = {}
        self._lock = threading.Lock()
        self.default_approvers = list(default_approvers)
        self.environment_tag_key = environment_tag_key
        self.default_environment = Environment(default_environment)
        self._clock = clock or utcnow

        for protection in protections if protections is not None else default_protections():
            self._protections[protection.environment] = protection

    def get(self, environment: Environment | str) -> EnvironmentProtection | None:
        return self._protections.get(Environment(environment))

    def set(self, protection: EnvironmentProtection) -> None:
        """Register a protection; the last write for an environment wins."""
        with self._lock:
            self._protections[protection.environment] = protection
        logger.info(
            "environment_protection_set",
            environment=protection.environment.value,
            is_protected=protection.is_protected,
            blocked_actions=sorted(protection.blocked_actions),
        )

    def list(self) -> list[EnvironmentProtection]:
        return list(self._protections.values())

    def is_within_time_window(
        self,
        environment: Environment | str,
        now: datetime | None = None,
    ) -> bool:
        protection = self.get(environment)
        windows = protection.allowed_time_windows if protection else None
        return is_within_time_windows(windows, now or self._clock())

    def detect_environment(self, tags: Mapping[str, str] | None) -> Environment:
        """Infer an environment from the configured tag key."""
        value = (tags or {}).get(self.environment_tag_key)
        if not value:
            return self.default_environment

        value = value.lower()
        if "prod" in value:
            return Environment.PRODUCTION
        if "stag" in value:
            return Environment.STAGING
        if "dev" in value:
            return Environment.DEVELOPMENT
        if "sandbox" in value or "test" in value:
            return Environment.SANDBOX

        return self.default_environment

    def resolve_environment(self, context: OperationContext) -> Environment:
        """Declared environment, else the one detected from tags."""
        if context.environment is not None:
            return context.environment
        return self.detect_environment(context.resource_tags)

    def approvers_for(self, environment: Environment | str) -> list[Approver]:
        protection = self.get(environment)
        if protection and protection.approvers:
            return list(protection.approvers)
        return list(self.default_approvers)
