"""
Guardrails engine.

One ``GuardrailsEngine`` owns every store (environment protections, policies,
rate-limit counters, approval requests, audit entries, backups, change
requests) for a single instance. Nothing is module-global, so independent
engines (per tenant, per test) never share state.

``evaluate`` returns the decision directly and never raises. Every other
public operation returns an ``OperationResult`` carrying a machine-readable
error code instead of raising.
"""

from __future__ import annotations

from dataclasses import fields, replace
from datetime import datetime
from typing import Any, Iterable, Mapping

import structlog

from changeguard.approvals.models import ApprovalDecision, ApprovalRequest, ApprovalStatus
from changeguard.approvals.workflow import ApprovalWorkflow
from changeguard.audit.log import AuditLog, JsonlAuditSink
from changeguard.audit.models import (
    AuditLogEntry,
    AuditLogPage,
    AuditLogQuery,
    AuditLogSummary,
    AuditOutcome,
)
from changeguard.changes.backups import BackupManager
from changeguard.changes.models import ChangeRequest, ChangeRequestStatus, PreOperationBackup
from changeguard.changes.requests import ChangeRequestManager
from changeguard.collaborators import (
    AuditSink,
    BackupArtifactCreator,
    DependencyLookup,
    NotificationSender,
    ResourceTagLookup,
)
from changeguard.config.guardrails import GuardrailsConfig
from changeguard.core.clock import Clock, utcnow
from changeguard.core.errors import ChangeGuardError, ErrorCode
from changeguard.core.results import OperationResult
from changeguard.guardrails.classification import ClassificationTable
from changeguard.guardrails.dryrun import DryRunner
from changeguard.guardrails.environments import EnvironmentRegistry
from changeguard.guardrails.evaluator import GuardrailsEvaluator
from changeguard.guardrails.impact import ImpactAssessor
from changeguard.guardrails.models import (
    ActionClassification,
    DryRunResult,
    Environment,
    EnvironmentProtection,
    GuardrailsEvaluationResult,
    ImpactAssessment,
    OperationContext,
    RateLimitConfig,
    RateLimitStatus,
    SafetyCheckConfig,
    SafetyCheckResult,
)
from changeguard.guardrails.policies import (
    GuardrailsPolicy,
    PolicyActionType,
    PolicyDefinition,
    PolicyEngine,
)
from changeguard.guardrails.ratelimit import RateLimiter
from changeguard.guardrails.safety import SafetyCheckPipeline
from changeguard.notifications.dispatcher import NotificationDispatcher
from changeguard.notifications.models import (
    ChannelType,
    NotificationChannelConfig,
    NotificationEvent,
    NotificationPayload,
)

logger = structlog.get_logger()

# Scalar settings that update_config may change at runtime
_RUNTIME_SCALARS = {
    "default_approval_timeout_minutes",
    "audit_log_retention_days",
    "audit_all_operations",
    "unknown_condition_matches",
    "environment_tag_key",
    "default_environment",
}


def _validate_safety_changes(changes: Mapping[str, Any]) -> None:
    """Reject safety-check values of the wrong type."""
    for key, value in changes.items():
        if key == "block_on_protected_tags":
            if not isinstance(value, (list, tuple)) or not all(isinstance(tag, str) for tag in value):
                raise ValueError("safety_checks.block_on_protected_tags must be a list of strings")
        elif not isinstance(value, bool):
            raise ValueError(f"safety_checks.{key} must be a boolean")


def _coerce_runtime_scalars(scalars: dict[str, Any]) -> dict[str, Any]:
    """Type-check top-level settings; ``default_environment`` becomes an Environment."""
    coerced = dict(scalars)
    for key in ("default_approval_timeout_minutes", "audit_log_retention_days"):
        if key in coerced:
            value = coerced[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{key} must be a non-negative integer")
    for key in ("audit_all_operations", "unknown_condition_matches"):
        if key in coerced and not isinstance(coerced[key], bool):
            raise ValueError(f"{key} must be a boolean")
    if "environment_tag_key" in coerced and not isinstance(coerced["environment_tag_key"], str):
        raise ValueError("environment_tag_key must be a string")
    if "default_environment" in coerced:
        coerced["default_environment"] = Environment(coerced["default_environment"])
    return coerced


class GuardrailsEngine:
    """Production-safety guardrails for mutating infrastructure operations."""

    def __init__(
        self,
        config: GuardrailsConfig | None = None,
        *,
        tag_lookup: ResourceTagLookup | None = None,
        dependency_lookup: DependencyLookup | None = None,
        backup_creator: BackupArtifactCreator | None = None,
        notification_senders: Mapping[ChannelType | str, NotificationSender] | None = None,
        audit_sink: AuditSink | None = None,
        classifications: Iterable[ActionClassification] = (),
        clock: Clock | None = None,
    ) -> None:
        config = config or GuardrailsConfig.default()
        self._config = config
        self._clock = clock or utcnow

        self.classifications = ClassificationTable(extra=classifications)
        self.environments = EnvironmentRegistry(
            protections=config.environments,
            default_approvers=config.default_approvers,
            environment_tag_key=config.environment_tag_key,
            default_environment=config.default_environment,
            clock=self._clock,
        )
        # Shared by reference so update_config reaches every component
        self.safety_config: SafetyCheckConfig = replace(
            config.safety_checks,
            block_on_protected_tags=list(config.safety_checks.block_on_protected_tags),
        )
        self.rate_limiter = RateLimiter(
            self.classifications, config=replace(config.rate_limits), clock=self._clock
        )
        self.policies = PolicyEngine(
            unknown_condition_matches=config.unknown_condition_matches, clock=self._clock
        )
        for definition in config.policies:
            self.policies.add(definition)

        self.impact = ImpactAssessor(
            self.classifications, self.safety_config, dependency_lookup=dependency_lookup
        )
        self.safety = SafetyCheckPipeline(
            self.classifications,
            self.environments,
            self.rate_limiter,
            self.safety_config,
            clock=self._clock,
        )
        self.evaluator = GuardrailsEvaluator(
            self.classifications,
            self.environments,
            self.safety,
            self.policies,
            self.rate_limiter,
            self.impact,
            clock=self._clock,
        )
        self.dry_runner = DryRunner(
            self.classifications,
            self.environments,
            self.safety_config,
            tag_lookup=tag_lookup,
            dependency_lookup=dependency_lookup,
            clock=self._clock,
        )
        self.notifications = NotificationDispatcher(
            channels=config.notification_channels,
            senders={ChannelType(k): v for k, v in (notification_senders or {}).items()},
            timeout=config.notification_timeout_seconds,
        )
        self.approvals = ApprovalWorkflow(
            self.environments,
            self.classifications,
            self.impact,
            self.dry_runner,
            dispatcher=self.notifications,
            default_timeout_minutes=config.default_approval_timeout_minutes,
            clock=self._clock,
        )
        if audit_sink is None and config.audit_log_path:
            audit_sink = JsonlAuditSink(config.audit_log_path)
        self.audit = AuditLog(
            retention_days=config.audit_log_retention_days,
            sink=audit_sink,
            clock=self._clock,
        )
        self.backups = BackupManager(creator=backup_creator, clock=self._clock)
        self.change_requests = ChangeRequestManager(clock=self._clock)

    # -- Evaluation --

    def evaluate(self, context: OperationContext) -> GuardrailsEvaluationResult:
        """
        Decide whether an operation may proceed.

        Never raises. Policy ``notify`` and ``audit`` follow-ups run after the
        decision; a failure there is logged and does not change the result.
        """
        result = self.evaluator.evaluate(context)
        try:
            self._after_evaluation(context, result)
        except Exception:
            logger.exception("post_evaluation_failed", action=context.action)
        return result

    def _after_evaluation(
        self, context: OperationContext, result: GuardrailsEvaluationResult
    ) -> None:
        actions = set(result.policy_actions)
        environment = self.environments.resolve_environment(context)

        if PolicyActionType.NOTIFY.value in actions:
            if result.is_rate_limited:
                event = NotificationEvent.RATE_LIMIT_EXCEEDED
                title = f"Rate Limit Exceeded: {context.actor_name}"
            elif not result.allowed:
                event = NotificationEvent.ACTION_BLOCKED
                title = f"Action Blocked: {context.action} on {context.service}"
            else:
                event = NotificationEvent.HIGH_RISK_ACTION
                title = f"High Risk Action: {context.action} on {context.service}"
            self.notifications.send(
                NotificationPayload(
                    event=event,
                    timestamp=self._clock(),
                    title=title,
                    message=(
                        f"{context.actor_name} attempted to {context.action} "
                        f"{context.resource_count} {context.service} resource(s) in {environment}. "
                        f"Policies: {', '.join(result.applied_policies)}"
                    ),
                    severity=result.risk_level.value,
                    data={
                        "resource_ids": list(context.resource_ids),
                        "block_reasons": list(result.block_reasons),
                    },
                )
            )

        if self._config.audit_all_operations or PolicyActionType.AUDIT.value in actions:
            if not result.allowed:
                outcome = AuditOutcome.BLOCKED
            elif result.requires_approval:
                outcome = AuditOutcome.PENDING_APPROVAL
            else:
                outcome = AuditOutcome.SUCCESS
            self.audit.record(
                actor_id=context.actor_id,
                actor_name=context.actor_name,
                action=context.action,
                service=context.service,
                resource_ids=context.resource_ids,
                environment=environment.value,
                region=context.region,
                outcome=outcome,
                block_reason="; ".join(result.block_reasons) or None,
                approval_request_id=context.approval_request_id,
                dry_run=context.is_dry_run,
                request_params=dict(context.request_params) if context.request_params else None,
                context={
                    "risk_level": result.risk_level.value,
                    "applied_policies": list(result.applied_policies),
                    "warnings": list(result.warnings),
                },
                session_id=context.session_id,
                account_id=context.account_id,
            )

    def run_safety_checks(self, context: OperationContext) -> OperationResult[SafetyCheckResult]:
        result = self.safety.run(context)
        message = (
            "All safety checks passed"
            if result.passed
            else f"Safety checks failed: {'; '.join(result.blocking_issues)}"
        )
        return OperationResult.ok(data=result, message=message, warnings=list(result.warnings))

    def assess_impact(self, context: OperationContext) -> OperationResult[ImpactAssessment]:
        environment = self.environments.resolve_environment(context)
        assessment = self.impact.assess(context, environment)
        return OperationResult.ok(
            data=assessment,
            message=f"Impact assessment complete. Severity: {assessment.severity}",
        )

    def perform_dry_run(self, context: OperationContext) -> OperationResult[DryRunResult]:
        result = self.dry_runner.perform(context)
        message = (
            f"Dry run complete. {len(result.planned_changes)} change(s) planned"
            if result.would_succeed
            else f"Dry run found issues: {'; '.join(result.potential_errors)}"
        )
        return OperationResult.ok(data=result, message=message, warnings=list(result.warnings))

    def classify_action(self, action: str, service: str = "*") -> ActionClassification:
        return self.classifications.classify(action, service)

    # -- Approvals --

    def create_approval_request(
        self,
        context: OperationContext,
        reason: str | None = None,
        timeout_minutes: int | None = None,
    ) -> OperationResult[ApprovalRequest]:
        return self.approvals.create(context, reason=reason, timeout_minutes=timeout_minutes)

    def get_approval_request(self, request_id: str) -> OperationResult[ApprovalRequest]:
        return self.approvals.get(request_id)

    def list_approval_requests(
        self,
        status: ApprovalStatus | str | None = None,
        requester_id: str | None = None,
        max_results: int | None = None,
    ) -> OperationResult[list[ApprovalRequest]]:
        return self.approvals.list(status=status, requester_id=requester_id, max_results=max_results)

    def submit_approval_response(
        self,
        request_id: str,
        approver_id: str,
        approver_name: str,
        decision: ApprovalDecision | str,
        reason: str | None = None,
    ) -> OperationResult[ApprovalRequest]:
        try:
            decision = ApprovalDecision(decision)
        except ValueError:
            return OperationResult.fail(
                ErrorCode.INVALID_REQUEST, f"Unknown approval decision: {decision}"
            )
        return self.approvals.submit(request_id, approver_id, approver_name, decision, reason)

    def cancel_approval_request(
        self, request_id: str, reason: str | None = None
    ) -> OperationResult[ApprovalRequest]:
        return self.approvals.cancel(request_id, reason=reason)

    # -- Policies --

    def add_policy(
        self, definition: PolicyDefinition | dict[str, Any]
    ) -> OperationResult[GuardrailsPolicy]:
        try:
            if isinstance(definition, dict):
                definition = PolicyDefinition.from_dict(definition)
            policy = self.policies.add(definition)
        except (TypeError, KeyError, ValueError) as e:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, f"Invalid policy: {e}")
        return OperationResult.ok(data=policy, message=f"Policy added: {policy.name}")

    def get_policy(self, policy_id: str) -> OperationResult[GuardrailsPolicy]:
        policy = self.policies.get(policy_id)
        if policy is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, "Policy not found")
        return OperationResult.ok(data=policy)

    def list_policies(self) -> list[GuardrailsPolicy]:
        return self.policies.list()

    def update_policy(self, policy_id: str, **changes: Any) -> OperationResult[GuardrailsPolicy]:
        try:
            policy = self.policies.update(policy_id, **changes)
        except (TypeError, KeyError, ValueError) as e:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, str(e))
        if policy is None:
            return OperationResult.fail(ErrorCode.NOT_FOUND, "Policy not found")
        return OperationResult.ok(data=policy, message=f"Policy updated: {policy.name}")

    def remove_policy(self, policy_id: str) -> OperationResult[None]:
        if not self.policies.remove(policy_id):
            return OperationResult.fail(ErrorCode.NOT_FOUND, "Policy not found")
        return OperationResult.ok(message="Policy removed")

    # -- Environments --

    def get_environment_protection(
        self, environment: Environment | str
    ) -> EnvironmentProtection | None:
        return self.environments.get(environment)

    def set_environment_protection(self, protection: EnvironmentProtection) -> None:
        self.environments.set(protection)

    def list_environment_protections(self) -> list[EnvironmentProtection]:
        return self.environments.list()

    def detect_environment(self, tags: Mapping[str, str] | None) -> Environment:
        return self.environments.detect_environment(tags)

    def is_within_time_window(
        self, environment: Environment | str, now: datetime | None = None
    ) -> bool:
        return self.environments.is_within_time_window(environment, now)

    # -- Rate limiting --

    def check_rate_limit(self, actor_id: str, action: str, service: str = "*") -> RateLimitStatus:
        return self.rate_limiter.check(actor_id, action, service)

    def record_operation(self, actor_id: str, action: str, service: str = "*") -> None:
        self.rate_limiter.record(actor_id, action, service)

    def acquire_rate_limit(self, actor_id: str, action: str, service: str = "*") -> RateLimitStatus:
        return self.rate_limiter.acquire(actor_id, action, service)

    def get_rate_limit_config(self) -> RateLimitConfig:
        return self.rate_limiter.get_config()

    def set_rate_limit_config(self, **changes: Any) -> OperationResult[RateLimitConfig]:
        try:
            config = self.rate_limiter.set_config(**changes)
        except (TypeError, ValueError) as e:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, str(e))
        return OperationResult.ok(data=config, message="Rate limit configuration updated")

    # -- Audit --

    def record_audit(self, **entry: Any) -> OperationResult[AuditLogEntry]:
        """Append an audit entry; see ``AuditLog.record`` for the fields."""
        try:
            recorded = self.audit.record(**entry)
        except (TypeError, ValueError) as e:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, str(e))
        return OperationResult.ok(data=recorded, message="Action logged")

    def query_audit_log(self, query: AuditLogQuery | None = None) -> OperationResult[AuditLogPage]:
        try:
            page = self.audit.query(query)
        except ChangeGuardError as e:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, e.message)
        return OperationResult.ok(
            data=page, message=f"Found {page.total_count} audit log entries"
        )

    def summarize_audit_log(
        self, start: datetime, end: datetime, top_n: int = 10
    ) -> OperationResult[AuditLogSummary]:
        summary = self.audit.summarize(start, end, top_n=top_n)
        return OperationResult.ok(
            data=summary, message=f"Audit summary for {summary.total_actions} actions"
        )

    # -- Backups and change requests --

    def create_backup(
        self, resource_id: str, resource_type: str, operation: str
    ) -> OperationResult[PreOperationBackup]:
        return self.backups.create(resource_id, resource_type, operation)

    def list_backups(self, resource_id: str | None = None) -> OperationResult[list[PreOperationBackup]]:
        return self.backups.list(resource_id)

    def create_change_request(self, **fields_: Any) -> OperationResult[ChangeRequest]:
        """Create a draft change request; see ``ChangeRequestManager.create``."""
        try:
            return self.change_requests.create(**fields_)
        except (TypeError, ValueError) as e:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, str(e))

    def get_change_request(self, request_id: str) -> OperationResult[ChangeRequest]:
        return self.change_requests.get(request_id)

    def update_change_request_status(
        self,
        request_id: str,
        status: ChangeRequestStatus | str,
        notes: str | None = None,
    ) -> OperationResult[ChangeRequest]:
        try:
            status = ChangeRequestStatus(status)
        except ValueError:
            return OperationResult.fail(
                ErrorCode.INVALID_REQUEST, f"Unknown change request status: {status}"
            )
        return self.change_requests.update_status(request_id, status, notes)

    def list_change_requests(
        self,
        status: ChangeRequestStatus | str | None = None,
        max_results: int | None = None,
    ) -> OperationResult[list[ChangeRequest]]:
        return self.change_requests.list(status=status, max_results=max_results)

    # -- Notifications --

    def configure_notification_channel(self, config: NotificationChannelConfig) -> None:
        self.notifications.configure_channel(config)

    def send_notification(self, payload: NotificationPayload) -> OperationResult[dict[str, Any]]:
        return self.notifications.send(payload)

    # -- Configuration --

    def get_config(self) -> GuardrailsConfig:
        """Snapshot of the live configuration."""
        return replace(
            self._config,
            rate_limits=self.rate_limiter.get_config(),
            safety_checks=replace(
                self.safety_config,
                block_on_protected_tags=list(self.safety_config.block_on_protected_tags),
            ),
            environments=self.environments.list(),
            default_approvers=list(self.environments.default_approvers),
            notification_channels=self.notifications.channels(),
            policies=[
                PolicyDefinition(
                    name=p.name,
                    description=p.description,
                    enabled=p.enabled,
                    priority=p.priority,
                    conditions=list(p.conditions),
                    actions=list(p.actions),
                )
                for p in self.policies.list()
            ],
        )

    def update_config(
        self,
        *,
        rate_limits: dict[str, Any] | None = None,
        safety_checks: dict[str, Any] | None = None,
        **scalars: Any,
    ) -> OperationResult[GuardrailsConfig]:
        """
        Change configuration at runtime.

        ``rate_limits`` and ``safety_checks`` merge into the current values;
        other keyword arguments set top-level settings such as
        ``default_approval_timeout_minutes``. Every part is validated before
        anything is applied, so a rejected update leaves the config unchanged.
        """
        unknown = set(scalars) - _RUNTIME_SCALARS
        safety_fields = {f.name for f in fields(SafetyCheckConfig)}
        unknown |= {f"safety_checks.{k}" for k in (safety_checks or {}) if k not in safety_fields}
        if unknown:
            return OperationResult.fail(
                ErrorCode.INVALID_REQUEST,
                f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            )

        try:
            new_rate_limits = self.rate_limiter.merge_config(**(rate_limits or {}))
            _validate_safety_changes(safety_checks or {})
            scalars = _coerce_runtime_scalars(scalars)
        except ValueError as e:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, str(e))

        if rate_limits:
            self.rate_limiter.set_config(new_rate_limits)
        # Mutated in place: the pipeline, assessor and dry runner hold this object
        for key, value in (safety_checks or {}).items():
            setattr(self.safety_config, key, list(value) if key == "block_on_protected_tags" else value)

        self._config = replace(self._config, **scalars)
        self.approvals.default_timeout_minutes = self._config.default_approval_timeout_minutes
        self.audit.retention_days = self._config.audit_log_retention_days
        self.policies.unknown_condition_matches = self._config.unknown_condition_matches
        self.environments.environment_tag_key = self._config.environment_tag_key
        self.environments.default_environment = self._config.default_environment

        logger.info(
            "guardrails_config_updated",
            rate_limits=sorted(rate_limits or {}),
            safety_checks=sorted(safety_checks or {}),
            settings=sorted(scalars),
        )
        return OperationResult.ok(data=self.get_config(), message="Configuration updated")
