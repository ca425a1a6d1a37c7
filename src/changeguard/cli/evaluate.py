"""
Guardrail evaluation CLI commands.

Exit codes for ``evaluate``: 0 = Allowed, 1 = Needs approval or
confirmation, 2 = Blocked.
"""

from __future__ import annotations

import json
from dataclasses import asdict

from changeguard.cli.ux import console, error, header, print_key_value, print_list, risk, success, warning
from changeguard.config.loader import load_config
from changeguard.core.errors import ExitCode, ValidationError
from changeguard.engine import GuardrailsEngine
from changeguard.guardrails.models import GuardrailsEvaluationResult, OperationContext


def parse_tags(pairs: list[str] | None) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings into a tag mapping."""
    tags: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValidationError(f"Invalid tag '{pair}', expected KEY=VALUE", details={"tag": pair})
        tags[key] = value
    return tags


def exit_code_for(result: GuardrailsEvaluationResult) -> int:
    if not result.allowed:
        return ExitCode.BLOCKED
    if result.requires_approval or result.requires_confirmation:
        return ExitCode.WARNING
    return ExitCode.SUCCESS


def evaluate_command(
    action: str,
    service: str,
    resource_ids: list[str],
    resource_type: str = "resource",
    environment: str | None = None,
    actor_id: str = "cli",
    actor_name: str | None = None,
    region: str | None = None,
    tags: list[str] | None = None,
    confirm: bool = False,
    dry_run: bool = False,
    config_path: str | None = None,
    output_json: bool = False,
) -> int:
    """Evaluate an intended operation against the configured guardrails.

    Args:
        action: Action name (delete, modify, ...)
        service: Service the resources belong to
        resource_ids: Target resource identifiers
        environment: Explicit environment; detected from tags when omitted
        tags: ``KEY=VALUE`` resource tags
        confirm: The operator has already confirmed the operation
        dry_run: Evaluate as a dry run
        config_path: Optional explicit config file
        output_json: Print the raw result as JSON

    Returns:
        Exit code (0 allowed, 1 approval/confirmation needed, 2 blocked)
    """
    config = load_config(config_path)
    engine = GuardrailsEngine(config)

    try:
        context = OperationContext(
            actor_id=actor_id,
            actor_name=actor_name or actor_id,
            action=action,
            service=service,
            resource_ids=tuple(resource_ids),
            resource_type=resource_type,
            region=region or config.default_region,
            environment=environment,
            resource_tags=parse_tags(tags) or None,
            is_dry_run=dry_run,
            has_confirmation=confirm,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e

    result = engine.evaluate(context)
    code = exit_code_for(result)

    if output_json:
        console.print_json(json.dumps(asdict(result), default=str))
        return code

    header(f"Guardrails: {action} on {service}")
    print_key_value(
        {
            "Environment": engine.environments.resolve_environment(context).value,
            "Resources": str(context.resource_count),
            "Risk": risk(result.risk_level.value),
            "Applied policies": ", ".join(result.applied_policies) or "none",
        }
    )
    print_list("Block reasons", result.block_reasons, style="error")
    print_list("Warnings", result.warnings, style="warning")
    print_list("Required confirmations", result.safety_check_result.required_confirmations)
    print_list("Suggested actions", result.suggested_actions, style="info")
    console.print()

    if code == ExitCode.BLOCKED:
        error("Operation blocked")
    elif result.requires_approval:
        warning("Operation requires approval")
    elif result.requires_confirmation:
        warning("Operation requires confirmation (re-run with --confirm)")
    else:
        success("Operation allowed")
    return code


def classify_command(action: str, service: str = "*", output_json: bool = False) -> int:
    """Show the risk classification for an action."""
    engine = GuardrailsEngine()
    classification = engine.classify_action(action, service)

    if output_json:
        console.print_json(json.dumps(asdict(classification)))
        return ExitCode.SUCCESS

    header(f"Classification: {action}")
    print_key_value(
        {
            "Service": classification.service,
            "Severity": risk(classification.severity.value),
            "Destructive": str(classification.is_destructive),
            "Reversible": str(classification.is_reversible),
            "Requires approval": str(classification.requires_approval),
            "Requires dry run": str(classification.requires_dry_run),
            "Affects multiple": str(classification.can_affect_multiple),
        }
    )
    return ExitCode.SUCCESS
