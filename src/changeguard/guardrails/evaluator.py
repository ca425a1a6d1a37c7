"""
Guardrails evaluator.

Top-level decision for one operation. Composes the safety pipeline, policy
engine, rate limiter and impact assessor into a single
``GuardrailsEvaluationResult``.

Merge rules:
    allowed           = safety passed AND not rate limited AND no policy block
    requires_approval = safety approval OR policy require_approval
    requires_dry_run  = safety dry-run recommendation OR policy require_dry_run

``evaluate`` is total. An unexpected fault anywhere in the pipeline is
logged and turned into an explicit ``allowed=False`` result; it never
propagates to the caller.
"""

from __future__ import annotations

import structlog

from changeguard.core.clock import Clock, utcnow
from changeguard.guardrails.classification import ClassificationTable
from changeguard.guardrails.environments import EnvironmentRegistry
from changeguard.guardrails.impact import ImpactAssessor
from changeguard.guardrails.models import (
    ActionSeverity,
    GuardrailsEvaluationResult,
    ImpactAssessment,
    OperationContext,
    SafetyCheckResult,
)
from changeguard.guardrails.policies import PolicyActionType, PolicyEngine, PolicyEvaluation
from changeguard.guardrails.ratelimit import RateLimiter
from changeguard.guardrails.safety import SafetyCheckPipeline

logger = structlog.get_logger()


def _append_unique(target: list[str], items: list[str]) -> None:
    for item in items:
        if item not in target:
            target.append(item)


def fail_closed_result(reason: str) -> GuardrailsEvaluationResult:
    """Deny result used when evaluation itself fails."""
    return GuardrailsEvaluationResult(
        allowed=False,
        requires_confirmation=False,
        requires_approval=False,
        requires_dry_run=False,
        is_rate_limited=False,
        risk_level=ActionSeverity.CRITICAL,
        safety_check_result=SafetyCheckResult(
            passed=False,
            checks=[],
            risk_level=ActionSeverity.CRITICAL,
            blocking_issues=[reason],
        ),
        block_reasons=[reason],
    )


class GuardrailsEvaluator:
    """Orchestrates every guardrail into one allow/deny decision."""

    def __init__(
        self,
        classifications: ClassificationTable,
        environments: EnvironmentRegistry,
        safety: SafetyCheckPipeline,
        policies: PolicyEngine,
        rate_limiter: RateLimiter,
        impact: ImpactAssessor,
        clock: Clock | None = None,
    ) -> None:
        self.classifications = classifications
        self.environments = environments
        self.safety = safety
        self.policies = policies
        self.rate_limiter = rate_limiter
        self.impact = impact
        self._clock = clock or utcnow

    def evaluate(self, context: OperationContext) -> GuardrailsEvaluationResult:
        """Evaluate an operation. Never raises."""
        try:
            return self._evaluate(context)
        except Exception as exc:
            logger.exception(
                "guardrails_evaluation_failed",
                action=context.action,
                service=context.service,
                actor_id=context.actor_id,
            )
            return fail_closed_result(f"Guardrails evaluation failed: {exc}")

    def _evaluate(self, context: OperationContext) -> GuardrailsEvaluationResult:
        now = self._clock()
        environment = self.environments.resolve_environment(context)
        classification = self.classifications.classify(context.action, context.service)

        safety = self.safety.run(context, now=now)
        policy_eval = self.policies.evaluate(context, environment)
        rate_status = self.rate_limiter.check(context.actor_id, context.action, context.service)

        # Dependency discovery is skipped for low-risk operations
        impact: ImpactAssessment | None = None
        if classification.is_destructive or classification.severity == ActionSeverity.HIGH:
            impact = self.impact.assess(context, environment)

        block_reasons: list[str] = []
        warnings: list[str] = []
        _append_unique(block_reasons, safety.blocking_issues)
        _append_unique(warnings, safety.warnings)

        if rate_status.is_rate_limited and rate_status.rate_limit_reason:
            _append_unique(block_reasons, [rate_status.rate_limit_reason])

        policy_blocked = self._apply_policy_actions(
            policy_eval, rate_status.operations_this_minute, block_reasons, warnings
        )

        requires_backup = (
            classification.is_destructive and self.safety.config.create_backup_before_delete
        )
        requires_approval = safety.approval_required or policy_eval.has(
            PolicyActionType.REQUIRE_APPROVAL
        )
        requires_dry_run = safety.dry_run_recommended or policy_eval.has(
            PolicyActionType.REQUIRE_DRY_RUN
        )

        suggested_actions: list[str] = []
        if requires_dry_run:
            suggested_actions.append("Run in dry-run mode first to preview changes")
        if requires_approval:
            suggested_actions.append("Submit an approval request before proceeding")
        if safety.required_confirmations:
            suggested_actions.append("Confirm the operation to proceed")
        if requires_backup:
            suggested_actions.append("Create a pre-operation backup")

        result = GuardrailsEvaluationResult(
            allowed=safety.passed and not rate_status.is_rate_limited and not policy_blocked,
            requires_confirmation=bool(safety.required_confirmations),
            requires_approval=requires_approval,
            requires_dry_run=requires_dry_run,
            requires_backup=requires_backup,
            is_rate_limited=rate_status.is_rate_limited,
            within_allowed_hours=self.environments.is_within_time_window(environment, now),
            risk_level=safety.risk_level,
            block_reasons=block_reasons,
            warnings=warnings,
            applied_policies=[p.name for p in policy_eval.matched_policies],
            policy_actions=sorted(a.value for a in policy_eval.action_types),
            safety_check_result=safety,
            impact_assessment=impact,
            rate_limit_status=rate_status,
            suggested_actions=suggested_actions,
        )

        logger.info(
            "guardrails_evaluated",
            actor_id=context.actor_id,
            action=context.action,
            service=context.service,
            environment=environment.value,
            allowed=result.allowed,
            requires_approval=result.requires_approval,
            applied_policies=result.applied_policies,
        )
        return result

    @staticmethod
    def _apply_policy_actions(
        policy_eval: PolicyEvaluation,
        operations_this_minute: int,
        block_reasons: list[str],
        warnings: list[str],
    ) -> bool:
        """Fold policy actions into block reasons and warnings. Returns True if blocked."""
        blocked = False

        for policy in policy_eval.policies_with(PolicyActionType.BLOCK):
            blocked = True
            _append_unique(block_reasons, [f"Blocked by guardrails policy: {policy.name}"])

        for policy in policy_eval.policies_with(PolicyActionType.WARN):
            _append_unique(warnings, [f"Operation flagged by guardrails policy: {policy.name}"])

        for policy in policy_eval.policies_with(PolicyActionType.RATE_LIMIT):
            action = policy.find_action(PolicyActionType.RATE_LIMIT)
            limit = action.params.get("max_operations_per_minute") if action else None
            if limit is None:
                _append_unique(warnings, [f"Operation is rate limited by policy: {policy.name}"])
                continue
            if operations_this_minute >= int(limit):
                blocked = True
                _append_unique(
                    block_reasons,
                    [
                        f"Policy {policy.name} allows {int(limit)} operations per minute "
                        f"({operations_this_minute} recorded)"
                    ],
                )

        return blocked
