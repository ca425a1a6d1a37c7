"""Guardrails policy CLI commands."""

from __future__ import annotations

from changeguard.cli.ux import header, info, print_table
from changeguard.config.loader import load_config
from changeguard.core.errors import ExitCode
from changeguard.guardrails.policies import PolicyCondition


def _format_condition(condition: PolicyCondition) -> str:
    return f"{condition.type} {condition.operator} {condition.value}"


def list_policies_command(config_path: str | None = None) -> int:
    """List configured policies in evaluation order."""
    header("ChangeGuard: Policies")

    config = load_config(config_path)
    if not config.policies:
        info("No policies configured")
        return ExitCode.SUCCESS

    policies = sorted(config.policies, key=lambda p: p.priority)
    rows = [
        [
            p.name,
            str(p.priority),
            "yes" if p.enabled else "no",
            "; ".join(_format_condition(c) for c in p.conditions) or "always",
            ", ".join(a.type.value for a in p.actions) or "-",
        ]
        for p in policies
    ]
    print_table("Policies", ["Name", "Priority", "Enabled", "Conditions", "Actions"], rows)
    return ExitCode.SUCCESS
