"""
Guardrails policy engine.

Policies are priority-ordered, conjunctive rule sets evaluated against an
operation context. Every matching policy contributes its action types to one
aggregated set; there is no short-circuit on first match.

Condition types:
    environment     resolved environment of the operation
    service         service name (ec2, rds, ...)
    action          action name (terminate, modify, ...)
    tag             true if ANY resource tag value satisfies the operator
    resource_count  number of resource ids
    user            actor id

Operators:
    equals / not_equals     strict equality
    contains / not_contains substring match on the string form
    greater_than / less_than numeric comparison
    in / not_in             membership in a list of strings

Unrecognized condition types evaluate to ``unknown_condition_matches``
(True by default), so introducing a new condition type never breaks
unrelated evaluations.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable

import structlog

from changeguard.core.clock import Clock, utcnow
from changeguard.guardrails.models import Environment, OperationContext

logger = structlog.get_logger()


class ConditionType(StrEnum):
    ENVIRONMENT = "environment"
    SERVICE = "service"
    ACTION = "action"
    TAG = "tag"
    TIME = "time"
    USER = "user"
    RESOURCE_COUNT = "resource_count"


class PolicyActionType(StrEnum):
    BLOCK = "block"
    WARN = "warn"
    REQUIRE_APPROVAL = "require_approval"
    REQUIRE_DRY_RUN = "require_dry_run"
    AUDIT = "audit"
    NOTIFY = "notify"
    RATE_LIMIT = "rate_limit"


@dataclass(frozen=True)
class PolicyCondition:
    """One predicate over the operation context."""

    type: str
    operator: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "operator": self.operator, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyCondition:
        return cls(type=data["type"], operator=data["operator"], value=data.get("value"))


@dataclass(frozen=True)
class PolicyAction:
    """Supplementary guardrail action emitted when a policy matches."""

    type: PolicyActionType
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", PolicyActionType(self.type))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "params": dict(self.params)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyAction:
        return cls(type=PolicyActionType(data["type"]), params=dict(data.get("params") or {}))


@dataclass
class PolicyDefinition:
    """A policy as written in configuration, before the store assigns an id."""

    name: str
    conditions: list[PolicyCondition] = field(default_factory=list)
    actions: list[PolicyAction] = field(default_factory=list)
    priority: int = 100
    enabled: bool = True
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "priority": self.priority,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyDefinition:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            enabled=bool(data.get("enabled", True)),
            priority=int(data.get("priority", 100)),
            conditions=[PolicyCondition.from_dict(c) for c in data.get("conditions", [])],
            actions=[PolicyAction.from_dict(a) for a in data.get("actions", [])],
        )


@dataclass
class GuardrailsPolicy:
    """A stored policy. ``id`` is assigned once and never changes."""

    id: str
    name: str
    description: str
    enabled: bool
    priority: int
    conditions: list[PolicyCondition]
    actions: list[PolicyAction]
    created_at: datetime
    updated_at: datetime

    @property
    def action_types(self) -> list[PolicyActionType]:
        return [a.type for a in self.actions]

    def find_action(self, action_type: PolicyActionType) -> PolicyAction | None:
        for action in self.actions:
            if action.type == action_type:
                return action
        return None


@dataclass
class PolicyEvaluation:
    """Matched policies in priority order plus their aggregated action types."""

    matched_policies: list[GuardrailsPolicy] = field(default_factory=list)
    action_types: set[PolicyActionType] = field(default_factory=set)

    def has(self, action_type: PolicyActionType) -> bool:
        return action_type in self.action_types

    def policies_with(self, action_type: PolicyActionType) -> list[GuardrailsPolicy]:
        return [p for p in self.matched_policies if action_type in p.action_types]


def _to_number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _greater_than(actual: Any, expected: Any) -> bool:
    a, b = _to_number(actual), _to_number(expected)
    return a is not None and b is not None and a > b


def _less_than(actual: Any, expected: Any) -> bool:
    a, b = _to_number(actual), _to_number(expected)
    return a is not None and b is not None and a < b


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda a, b: a == b,
    "not_equals": lambda a, b: a != b,
    "contains": lambda a, b: str(b) in str(a),
    "not_contains": lambda a, b: str(b) not in str(a),
    "greater_than": _greater_than,
    "less_than": _less_than,
    "in": lambda a, b: isinstance(b, (list, tuple, set)) and str(a) in {str(v) for v in b},
    "not_in": lambda a, b: isinstance(b, (list, tuple, set)) and str(a) not in {str(v) for v in b},
}


_UPDATABLE_FIELDS = {"name", "description", "enabled", "priority", "conditions", "actions"}


def _coerce_policy_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """
    Validate and normalize policy field updates.

    Conditions and actions may be given as dicts or as model instances.

    Raises:
        ValueError: On unknown fields or values that cannot be coerced
    """
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update policy fields: {', '.join(sorted(unknown))}")

    coerced = dict(changes)
    try:
        if "priority" in coerced:
            coerced["priority"] = int(coerced["priority"])
        if "enabled" in coerced:
            coerced["enabled"] = bool(coerced["enabled"])
        for key in ("name", "description"):
            if key in coerced and not isinstance(coerced[key], str):
                raise ValueError(f"Policy {key} must be a string")
        if "conditions" in coerced:
            coerced["conditions"] = [
                c if isinstance(c, PolicyCondition) else PolicyCondition.from_dict(c)
                for c in coerced["conditions"]
            ]
        if "actions" in coerced:
            coerced["actions"] = [
                a if isinstance(a, PolicyAction) else PolicyAction.from_dict(a)
                for a in coerced["actions"]
            ]
    except (TypeError, KeyError, AttributeError) as e:
        raise ValueError(f"Invalid policy update: {e}") from e
    return coerced


def evaluate_operator(actual: Any, operator: str, expected: Any) -> bool:
    """Apply one operator; unknown operators never match."""
    func = OPERATORS.get(operator)
    if func is None:
        return False
    return func(actual, expected)


class PolicyEngine:
    """Stores policies and evaluates them against operation contexts."""

    def __init__(
        self,
        unknown_condition_matches: bool = True,
        clock: Clock | None = None,
    ) -> None:
        self.unknown_condition_matches = unknown_condition_matches
        self._clock = clock or utcnow
        self._policies: list[GuardrailsPolicy] = []
        self._lock = threading.Lock()

    # -- CRUD --

    def add(self, definition: PolicyDefinition) -> GuardrailsPolicy:
        """Store a new policy and keep the set priority-sorted."""
        now = self._clock()
        policy = GuardrailsPolicy(
            id=str(uuid.uuid4()),
            name=definition.name,
            description=definition.description,
            enabled=definition.enabled,
            priority=int(definition.priority),
            conditions=list(definition.conditions),
            actions=list(definition.actions),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._policies.append(policy)
            # sort() is stable, so equal priorities keep insertion order
            self._policies.sort(key=lambda p: p.priority)

        logger.info("policy_added", policy_id=policy.id, name=policy.name, priority=policy.priority)
        return policy

    def get(self, policy_id: str) -> GuardrailsPolicy | None:
        with self._lock:
            for policy in self._policies:
                if policy.id == policy_id:
                    return policy
        return None

    def list(self) -> list[GuardrailsPolicy]:
        with self._lock:
            return list(self._policies)

    def update(self, policy_id: str, **changes: Any) -> GuardrailsPolicy | None:
        """
        Update fields of a stored policy.

        ``id`` and ``created_at`` cannot change. Every change is validated
        before the stored policy is touched. Returns None when the policy does
        not exist.

        Raises:
            ValueError: On unknown fields or malformed values
        """
        changes = _coerce_policy_changes(changes)

        with self._lock:
            for index, policy in enumerate(self._policies):
                if policy.id != policy_id:
                    continue
                updated = replace(policy, **changes, updated_at=self._clock())
                self._policies[index] = updated
                if "priority" in changes:
                    self._policies.sort(key=lambda p: p.priority)
                break
            else:
                return None

        logger.info("policy_updated", policy_id=policy_id, fields=sorted(changes))
        return updated

    def remove(self, policy_id: str) -> bool:
        with self._lock:
            for index, policy in enumerate(self._policies):
                if policy.id == policy_id:
                    del self._policies[index]
                    logger.info("policy_removed", policy_id=policy_id)
                    return True
        return False

    # -- Evaluation --

    def evaluate(
        self,
        context: OperationContext,
        environment: Environment | None = None,
    ) -> PolicyEvaluation:
        """Match every enabled policy against the context in priority order."""
        env = environment or context.environment or Environment.UNKNOWN
        result = PolicyEvaluation()

        for policy in self.list():
            if not policy.enabled:
                continue
            if all(self.evaluate_condition(c, context, env) for c in policy.conditions):
                result.matched_policies.append(policy)
                result.action_types.update(policy.action_types)

        if result.matched_policies:
            logger.debug(
                "policies_matched",
                policies=[p.name for p in result.matched_policies],
                actions=sorted(a.value for a in result.action_types),
            )
        return result

    def evaluate_condition(
        self,
        condition: PolicyCondition,
        context: OperationContext,
        environment: Environment,
    ) -> bool:
        """Evaluate one condition against the context."""
        op, expected = condition.operator, condition.value

        if condition.type == ConditionType.ENVIRONMENT:
            return evaluate_operator(environment.value, op, expected)
        if condition.type == ConditionType.SERVICE:
            return evaluate_operator(context.service, op, expected)
        if condition.type == ConditionType.ACTION:
            return evaluate_operator(context.action, op, expected)
        if condition.type == ConditionType.TAG:
            if not context.resource_tags:
                return False
            return any(evaluate_operator(v, op, expected) for v in context.resource_tags.values())
        if condition.type == ConditionType.RESOURCE_COUNT:
            return evaluate_operator(context.resource_count, op, expected)
        if condition.type == ConditionType.USER:
            return evaluate_operator(context.actor_id, op, expected)

        logger.debug("unknown_policy_condition_type", type=condition.type)
        return self.unknown_condition_matches
