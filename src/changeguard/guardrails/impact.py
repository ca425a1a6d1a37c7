"""
Impact assessment.

Computes the blast radius of an operation: affected resources, dependent
resources discovered through the dependency collaborator, risk factors and
recommendations. Dependency lookup failures are logged and treated as "no
dependencies"; they never abort the assessment.
"""

from __future__ import annotations

import structlog

from changeguard.collaborators import DependencyLookup, no_dependencies
from changeguard.guardrails.classification import ClassificationTable
from changeguard.guardrails.models import (
    Environment,
    ImpactAssessment,
    OperationContext,
    ResourceDependency,
    SafetyCheckConfig,
)

logger = structlog.get_logger()

LARGE_OPERATION_THRESHOLD = 10
BATCHING_THRESHOLD = 5

ESTIMATED_DOWNTIME: dict[str, str] = {
    "stop": "Immediate",
    "terminate": "Immediate",
    "reboot": "2-5 minutes per instance",
    "modify": "May require restart",
}


def lookup_dependencies(
    lookup: DependencyLookup,
    resource_id: str,
    resource_type: str,
    region: str,
) -> list[ResourceDependency]:
    """Call the dependency collaborator, degrading to an empty list on failure."""
    try:
        return list(lookup(resource_id, resource_type, region) or [])
    except Exception as exc:
        logger.warning(
            "collaborator_failure",
            collaborator="dependency_lookup",
            resource_id=resource_id,
            error=str(exc),
        )
        return []


class ImpactAssessor:
    """Builds ImpactAssessment records for operation contexts."""

    def __init__(
        self,
        classifications: ClassificationTable,
        safety_config: SafetyCheckConfig,
        dependency_lookup: DependencyLookup | None = None,
    ) -> None:
        self.classifications = classifications
        self.safety_config = safety_config
        self.dependency_lookup = dependency_lookup or no_dependencies

    def assess(self, context: OperationContext, environment: Environment) -> ImpactAssessment:
        """
        Assess the impact of an operation.

        Args:
            context: Operation being evaluated
            environment: Resolved environment of the targeted resources

        Returns:
            ImpactAssessment with dependencies, risk factors and recommendations
        """
        classification = self.classifications.classify(context.action, context.service)

        dependencies: list[ResourceDependency] = []
        for resource_id in context.resource_ids:
            dependencies.extend(
                lookup_dependencies(
                    self.dependency_lookup, resource_id, context.resource_type, context.region
                )
            )

        # Risk factors, in fixed order
        risk_factors: list[str] = []
        if environment == Environment.PRODUCTION:
            risk_factors.append("Production environment")
        if context.resource_count > LARGE_OPERATION_THRESHOLD:
            risk_factors.append("Large number of resources affected")
        if classification.is_destructive:
            risk_factors.append("Destructive operation")
        if not classification.is_reversible:
            risk_factors.append("Operation cannot be easily reversed")
        if dependencies:
            risk_factors.append(f"{len(dependencies)} dependent resource(s) may be affected")

        recommendations: list[str] = []
        if classification.is_destructive and self.safety_config.create_backup_before_delete:
            recommendations.append("Create backups before proceeding")
        if environment == Environment.PRODUCTION:
            recommendations.append("Consider testing in staging first")
            recommendations.append("Ensure rollback plan is in place")
        if context.resource_count > BATCHING_THRESHOLD:
            recommendations.append("Consider batching the operation")

        assessment = ImpactAssessment(
            severity=classification.severity,
            affected_resource_count=context.resource_count,
            affected_resource_types=[context.resource_type],
            estimated_downtime=ESTIMATED_DOWNTIME.get(context.action),
            dependencies=dependencies,
            rollback_possible=classification.is_reversible,
            risk_factors=risk_factors,
            recommendations=recommendations,
        )

        logger.debug(
            "impact_assessed",
            action=context.action,
            service=context.service,
            severity=assessment.severity.value,
            dependencies=len(dependencies),
        )
        return assessment
