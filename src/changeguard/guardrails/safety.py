"""
Safety check pipeline.

Runs a fixed sequence of checks against an operation and aggregates them.
Nothing short-circuits: every applicable check runs so the caller sees the
complete picture.

Order:
1. environment_protection   blocked / approval-required actions
2. time_window              allowed change windows
3. protected_tags           protection tags on the resources
4. bulk_operation           many resources, needs confirmation
5. production_confirmation  any production change, needs confirmation
6. dry_run_recommended      destructive action without dry run (advisory)
7. rate_limit               actor rate limits
8. resource_limit           hard cap on resources per operation
"""

from __future__ import annotations

from datetime import datetime

import structlog

from changeguard.core.clock import Clock, utcnow
from changeguard.guardrails.classification import ClassificationTable
from changeguard.guardrails.environments import EnvironmentRegistry, is_within_time_windows
from changeguard.guardrails.models import (
    ActionSeverity,
    Environment,
    OperationContext,
    RateLimitConfig,
    SafetyCheck,
    SafetyCheckConfig,
    SafetyCheckResult,
)
from changeguard.guardrails.ratelimit import RateLimiter

logger = structlog.get_logger()

RISK_RESOURCE_THRESHOLD = 10


class SafetyCheckPipeline:
    """Evaluates the built-in safety checks for an operation."""

    def __init__(
        self,
        classifications: ClassificationTable,
        environments: EnvironmentRegistry,
        rate_limiter: RateLimiter,
        config: SafetyCheckConfig,
        clock: Clock | None = None,
    ) -> None:
        self.classifications = classifications
        self.environments = environments
        self.rate_limiter = rate_limiter
        self.config = config
        self._clock = clock or utcnow

    @property
    def rate_limits(self) -> RateLimitConfig:
        return self.rate_limiter.get_config()

    def run(self, context: OperationContext, now: datetime | None = None) -> SafetyCheckResult:
        """Run every check and aggregate the outcome."""
        now = now or self._clock()
        config = self.config
        rate_limits = self.rate_limits
        classification = self.classifications.classify(context.action, context.service)
        environment = self.environments.resolve_environment(context)
        protection = self.environments.get(environment)
        is_production = environment == Environment.PRODUCTION

        checks: list[SafetyCheck] = []
        blocking_issues: list[str] = []
        warnings: list[str] = []
        required_confirmations: list[str] = []

        # Check 1: Environment protection
        if protection is not None:
            is_blocked = context.action in protection.blocked_actions
            needs_approval = (
                protection.is_protected and context.action in protection.approval_required_actions
            )
            if is_blocked:
                message = f"Action {context.action} is blocked in {environment} environment"
                severity = ActionSeverity.CRITICAL
            elif needs_approval:
                message = f"Action {context.action} requires approval in {environment} environment"
                severity = ActionSeverity.HIGH
            else:
                message = f"Action is allowed in {environment} environment"
                severity = ActionSeverity.LOW

            checks.append(
                SafetyCheck(
                    name="environment_protection",
                    description="Check if action is allowed in this environment",
                    passed=not is_blocked and not needs_approval,
                    severity=severity,
                    message=message,
                    is_blocking=is_blocked,
                )
            )
            if is_blocked:
                blocking_issues.append(message)

        # Check 2: Time window
        if config.prevent_changes_outside_window and protection and protection.allowed_time_windows:
            in_window = is_within_time_windows(protection.allowed_time_windows, now)
            blocking = not in_window and is_production
            checks.append(
                SafetyCheck(
                    name="time_window",
                    description="Check if current time is within allowed change window",
                    passed=in_window,
                    severity=ActionSeverity.HIGH,
                    message="Within allowed change window" if in_window else "Outside allowed change window",
                    is_blocking=blocking,
                )
            )
            if blocking:
                blocking_issues.append(
                    "Changes to production are not allowed outside the maintenance window"
                )
            elif not in_window:
                warnings.append("Outside recommended change window")

        # Check 3: Protected tags
        if context.resource_tags and config.block_on_protected_tags:
            present = [t for t in config.block_on_protected_tags if t in context.resource_tags]
            blocking = bool(present) and classification.is_destructive
            checks.append(
                SafetyCheck(
                    name="protected_tags",
                    description="Check for protection tags on resources",
                    passed=not present or context.action == "read",
                    severity=ActionSeverity.CRITICAL,
                    message=(
                        f"Resource has protection tag(s): {', '.join(present)}"
                        if present
                        else "No protection tags found"
                    ),
                    is_blocking=blocking,
                )
            )
            if blocking:
                blocking_issues.append(
                    "Cannot perform destructive action on resource with protection tag"
                )
            elif present and context.action != "read":
                warnings.append(f"Resource has protection tag(s): {', '.join(present)}")

        # Check 4: Bulk operation
        if context.resource_count > rate_limits.confirmation_threshold:
            checks.append(
                SafetyCheck(
                    name="bulk_operation",
                    description="Check if operation affects many resources",
                    passed=context.has_confirmation,
                    severity=ActionSeverity.MEDIUM,
                    message=(
                        f"Operation affects {context.resource_count} resources "
                        f"(threshold: {rate_limits.confirmation_threshold})"
                    ),
                    is_blocking=False,
                )
            )
            if not context.has_confirmation:
                required_confirmations.append(
                    f"This operation will affect {context.resource_count} resources. Please confirm."
                )

        # Check 5: Production confirmation
        if config.confirm_production_changes and is_production:
            checks.append(
                SafetyCheck(
                    name="production_confirmation",
                    description="Require confirmation for production changes",
                    passed=context.has_confirmation,
                    severity=ActionSeverity.HIGH,
                    message=(
                        "Production change confirmed"
                        if context.has_confirmation
                        else "Production change requires confirmation"
                    ),
                    is_blocking=False,
                )
            )
            if not context.has_confirmation:
                required_confirmations.append(
                    "This is a production environment. Please confirm the action."
                )

        # Check 6: Dry run recommendation, advisory only
        dry_run_recommended = classification.is_destructive and not context.is_dry_run
        if config.dry_run_by_default and dry_run_recommended:
            checks.append(
                SafetyCheck(
                    name="dry_run_recommended",
                    description="Recommend dry run for destructive operations",
                    passed=True,
                    severity=ActionSeverity.MEDIUM,
                    message="Dry run recommended before executing destructive operation",
                    is_blocking=False,
                )
            )
            warnings.append("Consider running in dry-run mode first to preview changes")

        # Check 7: Rate limiting
        rate_status = self.rate_limiter.check(context.actor_id, context.action, context.service)
        if rate_status.is_rate_limited:
            reason = rate_status.rate_limit_reason or "Rate limit exceeded"
            checks.append(
                SafetyCheck(
                    name="rate_limit",
                    description="Check rate limiting status",
                    passed=False,
                    severity=ActionSeverity.HIGH,
                    message=reason,
                    is_blocking=True,
                )
            )
            blocking_issues.append(reason)

        # Check 8: Resources per operation
        if context.resource_count > rate_limits.max_resources_per_operation:
            message = (
                f"Operation targets {context.resource_count} resources; the maximum per "
                f"operation is {rate_limits.max_resources_per_operation}"
            )
            checks.append(
                SafetyCheck(
                    name="resource_limit",
                    description="Check the number of resources per operation",
                    passed=False,
                    severity=ActionSeverity.HIGH,
                    message=message,
                    is_blocking=True,
                )
            )
            blocking_issues.append(message)

        passed = all(c.passed or not c.is_blocking for c in checks)
        approval_required = bool(
            protection is not None
            and protection.is_protected
            and config.require_approval_for_protected_envs
            and context.action in protection.approval_required_actions
        )

        if classification.is_destructive:
            risk_level = ActionSeverity.CRITICAL
        elif is_production:
            risk_level = ActionSeverity.HIGH
        elif context.resource_count > RISK_RESOURCE_THRESHOLD:
            risk_level = ActionSeverity.MEDIUM
        else:
            risk_level = ActionSeverity.LOW

        result = SafetyCheckResult(
            passed=passed,
            checks=checks,
            risk_level=risk_level,
            blocking_issues=blocking_issues,
            warnings=warnings,
            required_confirmations=required_confirmations,
            approval_required=approval_required,
            dry_run_recommended=dry_run_recommended,
        )

        logger.debug(
            "safety_checks_completed",
            action=context.action,
            environment=environment.value,
            passed=passed,
            risk_level=risk_level.value,
            blocking_issues=len(blocking_issues),
        )
        return result
