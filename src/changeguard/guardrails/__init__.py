"""
Guardrails evaluation pipeline.

Classification table, environment protection registry, rate limiter, policy
engine, impact assessor, safety-check pipeline, dry run and the top-level
evaluator.
"""

from changeguard.guardrails.classification import (
    DEFAULT_ACTION_CLASSIFICATIONS,
    ClassificationTable,
    default_classification,
)
from changeguard.guardrails.dryrun import DryRunner
from changeguard.guardrails.environments import (
    EnvironmentRegistry,
    default_protections,
    is_within_time_windows,
)
from changeguard.guardrails.evaluator import GuardrailsEvaluator
from changeguard.guardrails.impact import ImpactAssessor
from changeguard.guardrails.models import (
    ActionClassification,
    ActionSeverity,
    ActionType,
    Approver,
    DryRunResult,
    Environment,
    EnvironmentProtection,
    GuardrailsEvaluationResult,
    ImpactAssessment,
    OperationContext,
    ProtectionLevel,
    RateLimitConfig,
    RateLimitStatus,
    ResourceDependency,
    SafetyCheck,
    SafetyCheckConfig,
    SafetyCheckResult,
    TimeWindow,
)
from changeguard.guardrails.policies import (
    GuardrailsPolicy,
    PolicyAction,
    PolicyActionType,
    PolicyCondition,
    PolicyDefinition,
    PolicyEngine,
    PolicyEvaluation,
)
from changeguard.guardrails.ratelimit import RateLimiter
from changeguard.guardrails.safety import SafetyCheckPipeline

__all__ = [
    "ActionClassification",
    "ActionSeverity",
    "ActionType",
    "Approver",
    "ClassificationTable",
    "DEFAULT_ACTION_CLASSIFICATIONS",
    "DryRunResult",
    "DryRunner",
    "Environment",
    "EnvironmentProtection",
    "EnvironmentRegistry",
    "GuardrailsEvaluationResult",
    "GuardrailsEvaluator",
    "GuardrailsPolicy",
    "ImpactAssessment",
    "ImpactAssessor",
    "OperationContext",
    "PolicyAction",
    "PolicyActionType",
    "PolicyCondition",
    "PolicyDefinition",
    "PolicyEngine",
    "PolicyEvaluation",
    "ProtectionLevel",
    "RateLimitConfig",
    "RateLimitStatus",
    "RateLimiter",
    "ResourceDependency",
    "SafetyCheck",
    "SafetyCheckConfig",
    "SafetyCheckPipeline",
    "TimeWindow",
    "default_classification",
    "default_protections",
    "is_within_time_windows",
]
