"""Tests for environment protections, time windows and detection."""

from datetime import datetime, timezone

import pytest
from changeguard.guardrails.environments import (
    EnvironmentRegistry,
    default_protections,
    is_within_time_windows,
)
from changeguard.guardrails.models import (
    Approver,
    Environment,
    EnvironmentProtection,
    ProtectionLevel,
    TimeWindow,
)

# Wednesday
WED_NOON = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
# Saturday
SAT_NOON = datetime(2024, 1, 13, 12, 0, tzinfo=timezone.utc)


class TestDefaultProtections:
    """Test the built-in protection set."""

    def test_production_is_fully_protected(self):
        registry = EnvironmentRegistry()
        prod = registry.get(Environment.PRODUCTION)

        assert prod.is_protected
        assert prod.protection_level == ProtectionLevel.FULL
        assert "delete" in prod.approval_required_actions
        assert prod.min_approvals == 2

    def test_staging_requires_approval_for_destructive_only(self):
        staging = EnvironmentRegistry().get("staging")
        assert staging.approval_required_actions == {"terminate", "delete"}

    def test_unknown_has_no_protection(self):
        assert EnvironmentRegistry().get(Environment.UNKNOWN) is None

    def test_four_environments(self):
        envs = {p.environment for p in default_protections()}
        assert envs == {
            Environment.PRODUCTION,
            Environment.STAGING,
            Environment.DEVELOPMENT,
            Environment.SANDBOX,
        }


class TestTimeWindows:
    """Test allowed change windows."""

    def test_no_windows_means_always_allowed(self):
        assert is_within_time_windows(None, SAT_NOON)
        assert is_within_time_windows([], SAT_NOON)

    def test_inside_window(self):
        window = TimeWindow(days=["mon", "tue", "wed", "thu", "fri"], start_hour=9, end_hour=17)
        assert is_within_time_windows([window], WED_NOON)

    def test_wrong_day(self):
        window = TimeWindow(days=["mon", "tue", "wed", "thu", "fri"], start_hour=9, end_hour=17)
        assert not is_within_time_windows([window], SAT_NOON)

    def test_end_hour_is_exclusive(self):
        window = TimeWindow(days=["wed"], start_hour=9, end_hour=12)
        assert not is_within_time_windows([window], WED_NOON)

    def test_window_timezone_is_applied(self):
        # 12:00 UTC is 07:00 in New York (EST)
        window = TimeWindow(days=["wed"], start_hour=9, end_hour=17, timezone="America/New_York")
        assert not is_within_time_windows([window], WED_NOON)

        early = TimeWindow(days=["wed"], start_hour=6, end_hour=8, timezone="America/New_York")
        assert is_within_time_windows([early], WED_NOON)

    def test_any_matching_window_is_enough(self):
        windows = [
            TimeWindow(days=["sat"], start_hour=0, end_hour=1),
            TimeWindow(days=["wed"], start_hour=10, end_hour=14),
        ]
        assert is_within_time_windows(windows, WED_NOON)

    def test_registry_uses_environment_windows(self, clock):
        registry = EnvironmentRegistry(clock=clock)
        registry.set(
            EnvironmentProtection(
                environment=Environment.PRODUCTION,
                is_protected=True,
                allowed_time_windows=[TimeWindow(days=["sat"], start_hour=0, end_hour=24)],
            )
        )

        assert not registry.is_within_time_window(Environment.PRODUCTION)
        assert registry.is_within_time_window(Environment.PRODUCTION, SAT_NOON)
        # Unregistered environments are unrestricted
        assert registry.is_within_time_window(Environment.UNKNOWN)


class TestDetectEnvironment:
    """Test tag-based environment detection."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("prod", Environment.PRODUCTION),
            ("Production", Environment.PRODUCTION),
            ("staging", Environment.STAGING),
            ("stage", Environment.STAGING),
            ("dev", Environment.DEVELOPMENT),
            ("sandbox", Environment.SANDBOX),
            ("test", Environment.SANDBOX),
            ("qa", Environment.UNKNOWN),
        ],
    )
    def test_tag_values(self, value, expected):
        registry = EnvironmentRegistry()
        assert registry.detect_environment({"Environment": value}) == expected

    def test_missing_tag_uses_default(self):
        registry = EnvironmentRegistry(default_environment=Environment.STAGING)
        assert registry.detect_environment({}) == Environment.STAGING
        assert registry.detect_environment(None) == Environment.STAGING

    def test_custom_tag_key(self):
        registry = EnvironmentRegistry(environment_tag_key="env")
        assert registry.detect_environment({"env": "prod"}) == Environment.PRODUCTION
        assert registry.detect_environment({"Environment": "prod"}) == Environment.UNKNOWN

    def test_declared_environment_wins(self, make_context):
        registry = EnvironmentRegistry()
        context = make_context(
            environment=Environment.DEVELOPMENT, resource_tags={"Environment": "prod"}
        )
        assert registry.resolve_environment(context) == Environment.DEVELOPMENT

    def test_resolve_falls_back_to_tags(self, make_context):
        registry = EnvironmentRegistry()
        context = make_context(resource_tags={"Environment": "prod"})
        assert registry.resolve_environment(context) == Environment.PRODUCTION


class TestApprovers:
    """Test approver resolution."""

    def test_environment_approvers_first(self):
        alice = Approver(id="a", name="Alice")
        bob = Approver(id="b", name="Bob")
        registry = EnvironmentRegistry(default_approvers=[bob])
        registry.set(
            EnvironmentProtection(
                environment=Environment.PRODUCTION, is_protected=True, approvers=[alice]
            )
        )

        assert registry.approvers_for(Environment.PRODUCTION) == [alice]
        assert registry.approvers_for(Environment.STAGING) == [bob]

    def test_set_replaces_protection(self):
        registry = EnvironmentRegistry()
        registry.set(
            EnvironmentProtection(
                environment=Environment.STAGING, is_protected=False, blocked_actions={"delete"}
            )
        )
        staging = registry.get(Environment.STAGING)
        assert not staging.is_protected
        assert staging.blocked_actions == {"delete"}
