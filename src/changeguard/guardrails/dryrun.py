"""
Dry-run previews.

Describes what an operation would do to each resource without mutating
anything. Tag and dependency lookups go through the collaborators and degrade
to empty results on failure.
"""

from __future__ import annotations

import structlog

from changeguard.collaborators import (
    DependencyLookup,
    ResourceTagLookup,
    no_dependencies,
    no_tags,
)
from changeguard.core.clock import Clock, utcnow
from changeguard.guardrails.classification import ClassificationTable
from changeguard.guardrails.environments import EnvironmentRegistry
from changeguard.guardrails.impact import lookup_dependencies
from changeguard.guardrails.models import (
    AffectedResource,
    DryRunResult,
    Environment,
    OperationContext,
    PlannedChange,
    SafetyCheckConfig,
)

logger = structlog.get_logger()

# action -> (current state, proposed state)
STATE_TRANSITIONS: dict[str, tuple[str, str]] = {
    "terminate": ("running", "terminated/deleted"),
    "delete": ("running", "terminated/deleted"),
    "stop": ("running", "stopped"),
    "start": ("stopped", "running"),
    "modify": ("current configuration", "modified configuration"),
    "update": ("current configuration", "modified configuration"),
    "reboot": ("running", "running (rebooted)"),
}

PROTECTION_TAGS = ("DoNotDelete", "Protected")


def change_type_for(action: str) -> str:
    if action == "create":
        return "create"
    if action in ("delete", "terminate"):
        return "delete"
    return "update"


class DryRunner:
    """Produces DryRunResult previews."""

    def __init__(
        self,
        classifications: ClassificationTable,
        environments: EnvironmentRegistry,
        safety_config: SafetyCheckConfig,
        tag_lookup: ResourceTagLookup | None = None,
        dependency_lookup: DependencyLookup | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.classifications = classifications
        self.environments = environments
        self.safety_config = safety_config
        self.tag_lookup = tag_lookup or no_tags
        self.dependency_lookup = dependency_lookup or no_dependencies
        self._clock = clock or utcnow

    def _lookup_tags(self, resource_id: str, context: OperationContext) -> dict[str, str]:
        try:
            return dict(self.tag_lookup(resource_id, context.resource_type, context.region) or {})
        except Exception as exc:
            logger.warning(
                "collaborator_failure",
                collaborator="tag_lookup",
                resource_id=resource_id,
                error=str(exc),
            )
            return {}

    def perform(self, context: OperationContext) -> DryRunResult:
        """Preview the operation."""
        classification = self.classifications.classify(context.action, context.service)
        current_state, proposed_state = STATE_TRANSITIONS.get(context.action, ("unknown", "unknown"))

        affected: list[AffectedResource] = []
        changes: list[PlannedChange] = []
        warnings: list[str] = []
        potential_errors: list[str] = []

        for resource_id in context.resource_ids:
            tags = self._lookup_tags(resource_id, context)
            environment = self.environments.detect_environment(tags)

            affected.append(
                AffectedResource(
                    resource_id=resource_id,
                    resource_type=context.resource_type,
                    current_state=current_state,
                    proposed_state=proposed_state,
                    environment=environment,
                    tags=tags,
                )
            )
            changes.append(
                PlannedChange(
                    resource_id=resource_id,
                    change_type=change_type_for(context.action),
                    is_destructive=classification.is_destructive,
                    is_reversible=classification.is_reversible,
                )
            )

            if Environment.PRODUCTION in (environment, context.environment):
                warnings.append(f"Resource {resource_id} is in production environment")

            if any(tag in tags for tag in PROTECTION_TAGS):
                warnings.append(f"Resource {resource_id} has protection tag")

            if classification.is_destructive and self.safety_config.check_dependencies_before_delete:
                deps = lookup_dependencies(
                    self.dependency_lookup, resource_id, context.resource_type, context.region
                )
                if deps:
                    warnings.append(f"Resource {resource_id} has {len(deps)} dependent resource(s)")

        environment = self.environments.resolve_environment(context)
        protection = self.environments.get(environment)
        if protection and context.action in protection.blocked_actions:
            potential_errors.append(
                f"Action {context.action} is blocked in {environment} environment"
            )

        count = context.resource_count
        result = DryRunResult(
            would_succeed=not potential_errors,
            affected_resources=affected,
            planned_changes=changes,
            potential_errors=potential_errors,
            warnings=warnings,
            estimated_duration=f"{count * 5}-{count * 15} seconds",
            timestamp=self._clock(),
        )

        logger.debug(
            "dry_run_performed",
            action=context.action,
            resources=count,
            would_succeed=result.would_succeed,
        )
        return result
