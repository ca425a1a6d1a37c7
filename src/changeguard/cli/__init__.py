"""CLI commands for ChangeGuard."""

from changeguard.cli.environments import list_environments_command
from changeguard.cli.evaluate import classify_command, evaluate_command
from changeguard.cli.policies import list_policies_command

__all__ = [
    "classify_command",
    "evaluate_command",
    "list_environments_command",
    "list_policies_command",
]
