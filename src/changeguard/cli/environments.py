"""Environment protection CLI commands."""

from __future__ import annotations

from changeguard.cli.ux import console, header, print_table, warning
from changeguard.config.loader import load_config
from changeguard.core.errors import ExitCode
from changeguard.guardrails.models import TimeWindow


def _format_windows(windows: list[TimeWindow] | None) -> str:
    if not windows:
        return "any time"
    return "; ".join(
        f"{','.join(w.days)} {w.start_hour:02d}-{w.end_hour:02d} {w.timezone}" for w in windows
    )


def list_environments_command(config_path: str | None = None) -> int:
    """List environment protections from the active configuration.

    Returns:
        Exit code (0 for success)
    """
    header("ChangeGuard: Environment Protections")

    config = load_config(config_path)
    if not config.environments:
        warning("No environment protections configured")
        return ExitCode.SUCCESS

    rows = [
        [
            p.environment.value,
            "yes" if p.is_protected else "no",
            p.protection_level.value,
            ", ".join(sorted(p.blocked_actions)) or "-",
            ", ".join(sorted(p.approval_required_actions)) or "-",
            ", ".join(a.name for a in p.approvers) or "-",
            _format_windows(p.allowed_time_windows),
        ]
        for p in config.environments
    ]
    print_table(
        "Environments",
        ["Environment", "Protected", "Level", "Blocked", "Approval", "Approvers", "Windows"],
        rows,
    )

    if config.default_approvers:
        console.print(
            f"\n[muted]Default approvers: {', '.join(a.name for a in config.default_approvers)}[/muted]"
        )
    return ExitCode.SUCCESS
