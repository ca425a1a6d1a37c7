"""Tests for the GuardrailsEngine facade."""

from unittest.mock import MagicMock, patch

from changeguard.audit.models import AuditLogQuery, AuditOutcome
from changeguard.config.guardrails import GuardrailsConfig
from changeguard.core.errors import ErrorCode
from changeguard.engine import GuardrailsEngine
from changeguard.guardrails.models import (
    ActionClassification,
    ActionSeverity,
    Environment,
    EnvironmentProtection,
)
from changeguard.guardrails.policies import (
    PolicyAction,
    PolicyActionType,
    PolicyCondition,
    PolicyDefinition,
)
from changeguard.notifications.models import (
    ChannelType,
    NotificationChannelConfig,
    NotificationEvent,
)


def _notifying_engine(engine):
    sender = MagicMock()
    engine.notifications.register_sender(ChannelType.TEAMS, sender)
    engine.configure_notification_channel(
        NotificationChannelConfig(type=ChannelType.TEAMS, endpoint="ops-channel")
    )
    return sender


class TestInstances:
    """Test that engines own their state."""

    def test_engines_do_not_share_state(self, clock, make_context):
        first = GuardrailsEngine(clock=clock)
        second = GuardrailsEngine(clock=clock)

        first.add_policy({"name": "only-first", "actions": [{"type": "block"}]})
        first.record_operation("user-1", "update")

        assert len(second.list_policies()) == 0
        assert second.check_rate_limit("user-1", "update").operations_this_minute == 0
        assert not second.evaluate(make_context(environment="development")).applied_policies

    def test_custom_classifications(self, clock):
        custom = ActionClassification(
            action="snapshot",
            service="rds",
            severity=ActionSeverity.LOW,
            is_destructive=False,
            is_reversible=True,
            requires_approval=False,
            requires_dry_run=False,
            can_affect_multiple=True,
        )
        engine = GuardrailsEngine(classifications=[custom], clock=clock)

        assert engine.classify_action("snapshot", "rds") == custom
        assert engine.classify_action("snapshot", "ec2").severity == ActionSeverity.MEDIUM


class TestEvaluationFollowUps:
    """Test audit and notifications after evaluation."""

    def test_every_evaluation_is_audited(self, engine, clock, make_context):
        engine.evaluate(make_context(environment="development"))
        clock.advance(seconds=1)
        engine.evaluate(make_context(action="delete", environment="production"))

        entries = engine.query_audit_log().data.entries
        assert [e.outcome for e in entries] == [AuditOutcome.PENDING_APPROVAL, AuditOutcome.SUCCESS]
        assert entries[0].context["risk_level"] == "critical"
        assert entries[0].environment == "production"

    def test_blocked_evaluation_audit_reason(self, engine, make_context):
        engine.add_policy({"name": "freeze", "actions": [{"type": "block"}]})

        engine.evaluate(make_context(environment="development"))

        entry = engine.query_audit_log().data.entries[0]
        assert entry.outcome == AuditOutcome.BLOCKED
        assert entry.block_reason == "Blocked by guardrails policy: freeze"
        assert entry.context["applied_policies"] == ["freeze"]

    def test_audit_policy_when_audit_all_is_off(self, clock, make_context):
        engine = GuardrailsEngine(GuardrailsConfig(audit_all_operations=False), clock=clock)
        engine.evaluate(make_context(environment="development"))
        assert len(engine.audit) == 0

        engine.add_policy(
            {
                "name": "audit-deletes",
                "conditions": [{"type": "action", "operator": "equals", "value": "delete"}],
                "actions": [{"type": "audit"}],
            }
        )
        engine.evaluate(make_context(action="delete", environment="development"))
        engine.evaluate(make_context(environment="development"))

        assert len(engine.audit) == 1

    def test_notify_policy_sends_high_risk_notification(self, engine, make_context):
        sender = _notifying_engine(engine)
        engine.add_policy({"name": "page-ops", "actions": [{"type": "notify"}]})

        engine.evaluate(make_context(environment="development"))

        payload = sender.send.call_args.args[1]
        assert payload.event == NotificationEvent.HIGH_RISK_ACTION
        assert "page-ops" in payload.message

    def test_notify_policy_on_block(self, engine, make_context):
        sender = _notifying_engine(engine)
        engine.add_policy({"name": "stop", "actions": [{"type": "block"}, {"type": "notify"}]})

        engine.evaluate(make_context(environment="development"))

        payload = sender.send.call_args.args[1]
        assert payload.event == NotificationEvent.ACTION_BLOCKED
        assert payload.data["block_reasons"] == ["Blocked by guardrails policy: stop"]

    def test_notify_policy_on_rate_limit(self, engine, make_context):
        sender = _notifying_engine(engine)
        engine.add_policy({"name": "watch", "actions": [{"type": "notify"}]})
        engine.set_rate_limit_config(max_operations_per_minute=1)
        engine.record_operation("user-1", "update")

        engine.evaluate(make_context(environment="development"))

        payload = sender.send.call_args.args[1]
        assert payload.event == NotificationEvent.RATE_LIMIT_EXCEEDED

    def test_follow_up_failure_keeps_result(self, engine, make_context):
        with patch.object(engine.audit, "record", side_effect=RuntimeError("boom")):
            result = engine.evaluate(make_context(environment="development"))

        assert result.allowed


class TestEngineOperations:
    """Test the structured-result operations."""

    def test_run_safety_checks_message(self, engine, make_context):
        ok = engine.run_safety_checks(make_context(environment="development"))
        assert ok.message == "All safety checks passed"

        engine.get_environment_protection("development").blocked_actions.add("update")
        failed = engine.run_safety_checks(make_context(environment="development"))
        assert failed.success
        assert failed.message == (
            "Safety checks failed: Action update is blocked in development environment"
        )

    def test_blocked_action_in_production(self, engine, make_context):
        engine.get_environment_protection("production").blocked_actions.add("terminate")

        result = engine.evaluate(
            make_context(action="terminate", environment="production", has_confirmation=True)
        )

        assert not result.allowed
        assert "Action terminate is blocked in production environment" in result.block_reasons
        assert result.safety_check_result.get("environment_protection").is_blocking

    def test_assess_impact(self, engine, make_context):
        result = engine.assess_impact(make_context(action="terminate", environment="production"))

        assert result.message == "Impact assessment complete. Severity: critical"

    def test_perform_dry_run(self, engine, make_context):
        result = engine.perform_dry_run(make_context(resource_ids=("a", "b")))

        assert result.message == "Dry run complete. 2 change(s) planned"

    def test_policy_crud(self, engine):
        policy = engine.add_policy({"name": "p", "actions": [{"type": "warn"}]}).data

        assert engine.get_policy(policy.id).data.name == "p"
        assert engine.update_policy(policy.id, enabled=False).data.enabled is False
        assert engine.update_policy(policy.id, color="red").error == ErrorCode.INVALID_REQUEST
        assert engine.remove_policy(policy.id).success
        assert engine.get_policy(policy.id).error == ErrorCode.NOT_FOUND
        assert engine.remove_policy(policy.id).error == ErrorCode.NOT_FOUND
        assert engine.update_policy(policy.id, enabled=True).error == ErrorCode.NOT_FOUND

    def test_environment_protection_round_trip(self, engine):
        engine.set_environment_protection(
            EnvironmentProtection(environment="sandbox", is_protected=True, blocked_actions={"delete"})
        )

        assert engine.get_environment_protection(Environment.SANDBOX).blocked_actions == {"delete"}
        assert len(engine.list_environment_protections()) == 4
        assert engine.detect_environment({"Environment": "sandbox-1"}) == Environment.SANDBOX
        assert engine.is_within_time_window("sandbox")

    def test_acquire_rate_limit(self, engine):
        engine.set_rate_limit_config(max_operations_per_minute=1)

        assert not engine.acquire_rate_limit("user-1", "update").is_rate_limited
        assert engine.acquire_rate_limit("user-1", "update").is_rate_limited
        assert engine.get_rate_limit_config().max_operations_per_minute == 1

    def test_set_rate_limit_config_rejects_unknown(self, engine):
        result = engine.set_rate_limit_config(max_bananas=3)
        assert result.error == ErrorCode.INVALID_REQUEST

    def test_record_and_query_audit(self, engine, clock):
        recorded = engine.record_audit(
            actor_id="alice",
            actor_name="Alice",
            action="terminate",
            service="ec2",
            resource_ids=["i-9"],
            environment="production",
            region="us-east-1",
            outcome="failure",
            error_message="InsufficientPermissions",
        )
        assert recorded.message == "Action logged"

        page = engine.query_audit_log(AuditLogQuery(resource_id="i-9"))
        assert page.message == "Found 1 audit log entries"
        assert page.data.entries[0].error_message == "InsufficientPermissions"

        summary = engine.summarize_audit_log(clock.now, clock.now)
        assert summary.data.failed_actions == 1

    def test_record_audit_rejects_bad_outcome(self, engine):
        result = engine.record_audit(
            actor_id="a",
            actor_name="A",
            action="stop",
            service="ec2",
            resource_ids=["i-1"],
            environment="dev",
            region="us-east-1",
            outcome="exploded",
        )
        assert result.error == ErrorCode.INVALID_REQUEST

    def test_query_audit_log_bad_token(self, engine):
        result = engine.query_audit_log(AuditLogQuery(next_token="zzz"))
        assert result.error == ErrorCode.INVALID_REQUEST


class TestConfiguration:
    """Test runtime configuration changes."""

    def test_get_config_reflects_live_state(self, engine):
        engine.add_policy({"name": "p", "actions": [{"type": "audit"}]})
        engine.set_rate_limit_config(max_operations_per_hour=42)

        config = engine.get_config()

        assert [p.name for p in config.policies] == ["p"]
        assert config.rate_limits.max_operations_per_hour == 42

    def test_update_safety_checks_reaches_pipeline(self, engine, make_context):
        result = engine.update_config(safety_checks={"confirm_production_changes": False})

        assert result.success
        evaluation = engine.evaluate(make_context(environment="production"))
        assert not evaluation.requires_confirmation

    def test_update_scalars(self, engine):
        result = engine.update_config(
            default_approval_timeout_minutes=5,
            environment_tag_key="env",
            default_environment="staging",
        )

        assert result.success
        assert result.data.default_approval_timeout_minutes == 5
        assert engine.detect_environment({"env": "prod"}) == Environment.PRODUCTION
        assert engine.detect_environment({}) == Environment.STAGING
        assert engine.approvals.default_timeout_minutes == 5

    def test_update_rate_limits(self, engine):
        engine.update_config(rate_limits={"max_operations_per_minute": 2})
        assert engine.get_rate_limit_config().max_operations_per_minute == 2

    def test_unknown_keys_rejected(self, engine):
        result = engine.update_config(favourite_colour="blue", safety_checks={"nope": True})

        assert result.error == ErrorCode.INVALID_REQUEST
        assert result.message == (
            "Unknown configuration keys: favourite_colour, safety_checks.nope"
        )

    def test_bad_environment_rejected(self, engine):
        result = engine.update_config(default_environment="mars")
        assert result.error == ErrorCode.INVALID_REQUEST

    def test_bad_rate_limit_rejected(self, engine):
        result = engine.update_config(rate_limits={"max_widgets": 1})
        assert result.error == ErrorCode.INVALID_REQUEST

    def test_rejected_update_changes_nothing(self, engine):
        before = engine.get_config().default_environment

        result = engine.update_config(
            rate_limits={"max_operations_per_minute": 1},
            safety_checks={"confirm_production_changes": False},
            default_environment="bogus",
        )

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.get_rate_limit_config().max_operations_per_minute == 30
        assert engine.safety_config.confirm_production_changes is True
        assert engine.get_config().default_environment == before

    def test_bad_safety_check_types_rejected(self, engine):
        tags = engine.get_config().safety_checks.block_on_protected_tags

        bad_tags = engine.update_config(safety_checks={"block_on_protected_tags": "Protected"})
        bad_flag = engine.update_config(
            rate_limits={"max_operations_per_minute": 1},
            safety_checks={"dry_run_by_default": "no"},
        )

        assert bad_tags.error == ErrorCode.INVALID_REQUEST
        assert bad_flag.error == ErrorCode.INVALID_REQUEST
        assert engine.get_config().safety_checks.block_on_protected_tags == tags
        assert engine.safety_config.dry_run_by_default is True
        assert engine.get_rate_limit_config().max_operations_per_minute == 30

    def test_bad_rate_limit_value_rejected(self, engine):
        result = engine.update_config(rate_limits={"max_operations_per_minute": "lots"})

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.get_rate_limit_config().max_operations_per_minute == 30

    def test_bad_scalar_type_rejected(self, engine):
        result = engine.update_config(default_approval_timeout_minutes="soon")

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.approvals.default_timeout_minutes == 30


class TestPolicyValidation:
    """Test malformed policy input is rejected without touching stored policies."""

    def test_update_conditions_from_dicts(self, engine, make_context):
        policy = engine.add_policy({"name": "p", "actions": [{"type": "block"}]}).data

        result = engine.update_policy(
            policy.id, conditions=[{"type": "service", "operator": "equals", "value": "rds"}]
        )

        assert result.success
        assert result.data.conditions == [PolicyCondition("service", "equals", "rds")]
        evaluation = engine.evaluate(make_context(environment="development"))
        assert evaluation.allowed
        assert not any("evaluation failed" in r for r in evaluation.block_reasons)
        assert not engine.evaluate(make_context(service="rds", environment="development")).allowed

    def test_update_actions_from_dicts(self, engine):
        policy = engine.add_policy({"name": "p", "actions": [{"type": "audit"}]}).data

        result = engine.update_policy(policy.id, actions=[{"type": "warn"}])

        assert result.data.actions == [PolicyAction(PolicyActionType.WARN)]

    def test_update_numeric_string_priority(self, engine):
        first = engine.add_policy({"name": "first", "priority": 10}).data
        engine.add_policy({"name": "second", "priority": 20})

        result = engine.update_policy(first.id, priority="50")

        assert result.data.priority == 50
        assert engine.add_policy({"name": "third", "priority": 30}).success
        assert [p.name for p in engine.list_policies()] == ["second", "third", "first"]

    def test_update_bad_priority_leaves_policy_intact(self, engine):
        policy = engine.add_policy({"name": "p", "priority": 10}).data

        result = engine.update_policy(policy.id, priority="high")

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.get_policy(policy.id).data.priority == 10
        assert engine.add_policy({"name": "q", "priority": 5}).success
        assert [p.name for p in engine.list_policies()] == ["q", "p"]

    def test_update_bad_action_type(self, engine):
        policy = engine.add_policy({"name": "p", "actions": [{"type": "warn"}]}).data

        result = engine.update_policy(policy.id, actions=[{"type": "explode"}])

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.get_policy(policy.id).data.action_types == [PolicyActionType.WARN]

    def test_update_condition_missing_operator(self, engine):
        policy = engine.add_policy({"name": "p"}).data

        result = engine.update_policy(policy.id, conditions=[{"type": "service"}])

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.get_policy(policy.id).data.conditions == []

    def test_add_missing_name(self, engine):
        result = engine.add_policy({"actions": [{"type": "explode"}]})

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.list_policies() == []

    def test_add_bad_action_type(self, engine):
        result = engine.add_policy({"name": "x", "actions": [{"type": "explode"}]})

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.list_policies() == []

    def test_add_bad_priority(self, engine):
        result = engine.add_policy(PolicyDefinition(name="x", priority="high"))

        assert result.error == ErrorCode.INVALID_REQUEST
        assert engine.list_policies() == []
