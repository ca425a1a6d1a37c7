"""Tests for the guardrails policy engine."""

import pytest
from changeguard.guardrails.models import Environment
from changeguard.guardrails.policies import (
    PolicyAction,
    PolicyActionType,
    PolicyCondition,
    PolicyDefinition,
    PolicyEngine,
    evaluate_operator,
)


def _policy(name, conditions=(), actions=("warn",), priority=100, enabled=True):
    return PolicyDefinition(
        name=name,
        conditions=[PolicyCondition(*c) for c in conditions],
        actions=[PolicyAction(type=a) for a in actions],
        priority=priority,
        enabled=enabled,
    )


class TestOperators:
    """Test condition operators."""

    @pytest.mark.parametrize(
        "actual,operator,expected,result",
        [
            ("ec2", "equals", "ec2", True),
            ("ec2", "equals", "rds", False),
            ("ec2", "not_equals", "rds", True),
            ("prod-db", "contains", "prod", True),
            ("dev-db", "not_contains", "prod", True),
            (10, "greater_than", 5, True),
            (10, "greater_than", "5", True),
            (3, "less_than", 5, True),
            ("abc", "greater_than", 5, False),
            ("delete", "in", ["delete", "terminate"], True),
            ("modify", "in", ["delete", "terminate"], False),
            ("modify", "not_in", ["delete", "terminate"], True),
            ("delete", "in", "delete", False),
            ("ec2", "matches_regex", "ec.*", False),
        ],
    )
    def test_operator(self, actual, operator, expected, result):
        assert evaluate_operator(actual, operator, expected) is result


class TestPolicyStore:
    """Test policy CRUD."""

    def test_add_assigns_id_and_timestamps(self, clock):
        engine = PolicyEngine(clock=clock)
        policy = engine.add(_policy("p1"))

        assert policy.id
        assert policy.created_at == clock.now
        assert engine.get(policy.id) == policy

    def test_list_is_priority_ordered_and_stable(self):
        engine = PolicyEngine()
        engine.add(_policy("late", priority=200))
        engine.add(_policy("first", priority=10))
        engine.add(_policy("second", priority=10))

        assert [p.name for p in engine.list()] == ["first", "second", "late"]

    def test_update_keeps_id_and_resorts(self, clock):
        engine = PolicyEngine(clock=clock)
        a = engine.add(_policy("a", priority=1))
        engine.add(_policy("b", priority=2))

        clock.advance(minutes=5)
        updated = engine.update(a.id, priority=3, name="a2")

        assert updated.id == a.id
        assert updated.created_at == a.created_at
        assert updated.updated_at == clock.now
        assert [p.name for p in engine.list()] == ["b", "a2"]

    def test_update_rejects_immutable_fields(self):
        engine = PolicyEngine()
        policy = engine.add(_policy("a"))

        with pytest.raises(ValueError):
            engine.update(policy.id, id="other")

    def test_update_coerces_dicts_and_priority(self):
        engine = PolicyEngine()
        policy = engine.add(_policy("a"))

        updated = engine.update(
            policy.id,
            priority="7",
            conditions=[{"type": "service", "operator": "equals", "value": "rds"}],
            actions=[{"type": "block"}],
        )

        assert updated.priority == 7
        assert updated.conditions == [PolicyCondition("service", "equals", "rds")]
        assert updated.action_types == [PolicyActionType.BLOCK]

    @pytest.mark.parametrize(
        "changes",
        [
            {"priority": "high"},
            {"priority": None},
            {"actions": [{"type": "explode"}]},
            {"conditions": [{"type": "service"}]},
            {"conditions": ["service"]},
            {"name": 42},
        ],
    )
    def test_update_rejects_malformed_values(self, changes):
        engine = PolicyEngine()
        a = engine.add(_policy("a", priority=1))
        engine.add(_policy("b", priority=2))

        with pytest.raises(ValueError):
            engine.update(a.id, **changes)

        assert engine.get(a.id) == a
        engine.add(_policy("c", priority=3))
        assert [p.name for p in engine.list()] == ["a", "b", "c"]

    def test_update_missing_returns_none(self):
        assert PolicyEngine().update("missing", enabled=False) is None

    def test_remove(self):
        engine = PolicyEngine()
        policy = engine.add(_policy("a"))

        assert engine.remove(policy.id)
        assert not engine.remove(policy.id)
        assert engine.list() == []

    def test_definition_round_trip(self):
        definition = PolicyDefinition.from_dict(
            {
                "name": "block-prod-deletes",
                "priority": 5,
                "conditions": [
                    {"type": "environment", "operator": "equals", "value": "production"},
                    {"type": "action", "operator": "in", "value": ["delete", "terminate"]},
                ],
                "actions": [{"type": "block"}, {"type": "notify", "params": {"channel": "ops"}}],
            }
        )

        assert definition.actions[0].type == PolicyActionType.BLOCK
        assert definition.actions[1].params == {"channel": "ops"}
        assert PolicyDefinition.from_dict(definition.to_dict()) == definition


class TestPolicyEvaluation:
    """Test matching policies against contexts."""

    def test_all_conditions_must_match(self, make_context):
        engine = PolicyEngine()
        engine.add(
            _policy(
                "prod-deletes",
                conditions=[("environment", "equals", "production"), ("action", "equals", "delete")],
                actions=["block"],
            )
        )

        match = engine.evaluate(make_context(action="delete"), Environment.PRODUCTION)
        assert [p.name for p in match.matched_policies] == ["prod-deletes"]
        assert match.has(PolicyActionType.BLOCK)

        miss = engine.evaluate(make_context(action="delete"), Environment.STAGING)
        assert miss.matched_policies == []

    def test_all_matching_policies_contribute(self, make_context):
        engine = PolicyEngine()
        engine.add(_policy("warn-ec2", conditions=[("service", "equals", "ec2")], actions=["warn"]))
        engine.add(_policy("audit-all", actions=["audit", "notify"], priority=1))

        result = engine.evaluate(make_context(), Environment.DEVELOPMENT)

        assert [p.name for p in result.matched_policies] == ["audit-all", "warn-ec2"]
        assert result.action_types == {
            PolicyActionType.WARN,
            PolicyActionType.AUDIT,
            PolicyActionType.NOTIFY,
        }
        assert [p.name for p in result.policies_with(PolicyActionType.WARN)] == ["warn-ec2"]

    def test_disabled_policies_are_skipped(self, make_context):
        engine = PolicyEngine()
        engine.add(_policy("off", enabled=False))

        assert engine.evaluate(make_context()).matched_policies == []

    def test_tag_condition_matches_any_value(self, make_context):
        engine = PolicyEngine()
        engine.add(_policy("critical", conditions=[("tag", "equals", "critical")]))

        tagged = make_context(resource_tags={"Owner": "team-a", "Tier": "critical"})
        untagged = make_context()

        assert engine.evaluate(tagged).matched_policies
        assert not engine.evaluate(untagged).matched_policies

    def test_resource_count_condition(self, make_context):
        engine = PolicyEngine()
        engine.add(_policy("bulk", conditions=[("resource_count", "greater_than", 2)]))

        assert not engine.evaluate(make_context(resource_ids=("a", "b"))).matched_policies
        assert engine.evaluate(make_context(resource_ids=("a", "b", "c"))).matched_policies

    def test_user_condition(self, make_context):
        engine = PolicyEngine()
        engine.add(_policy("bots", conditions=[("user", "in", ["bot-1", "bot-2"])]))

        assert engine.evaluate(make_context(actor_id="bot-2")).matched_policies
        assert not engine.evaluate(make_context(actor_id="user-1")).matched_policies

    def test_environment_defaults_to_context(self, make_context):
        engine = PolicyEngine()
        engine.add(_policy("prod", conditions=[("environment", "equals", "production")]))

        context = make_context(environment=Environment.PRODUCTION)
        assert engine.evaluate(context).matched_policies

    def test_unknown_condition_type_matches_by_default(self, make_context):
        engine = PolicyEngine()
        engine.add(_policy("future", conditions=[("time", "equals", "weekend")]))

        assert engine.evaluate(make_context()).matched_policies

    def test_unknown_condition_type_can_fail_closed(self, make_context):
        engine = PolicyEngine(unknown_condition_matches=False)
        engine.add(_policy("future", conditions=[("moon_phase", "equals", "full")]))

        assert not engine.evaluate(make_context()).matched_policies
