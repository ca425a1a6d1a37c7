"""
ChangeGuard command line.

    changeguard evaluate --action delete --service ec2 --resource i-123 --environment production
    changeguard classify terminate --service ec2
    changeguard environments
    changeguard policies
"""

from __future__ import annotations

import argparse
from typing import Sequence

from changeguard.config.settings import get_settings
from changeguard.core.errors import ExitCode, main_with_error_handling
from changeguard.guardrails.models import Environment
from changeguard.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="changeguard",
        description="Production-safety guardrails for infrastructure changes",
    )
    parser.add_argument("--log-level", help="Log level (default: CHANGEGUARD_LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    evaluate_parser = subparsers.add_parser(
        "evaluate",
        help="Evaluate an operation (exit 0 allowed, 1 needs approval/confirmation, 2 blocked)",
    )
    evaluate_parser.add_argument("--action", required=True, help="Action name (delete, modify, ...)")
    evaluate_parser.add_argument("--service", required=True, help="Service of the target resources")
    evaluate_parser.add_argument(
        "--resource", dest="resources", action="append", required=True,
        help="Target resource id (repeatable)",
    )
    evaluate_parser.add_argument("--resource-type", default="resource", help="Resource type")
    evaluate_parser.add_argument(
        "--environment", "--env", dest="environment",
        choices=[e.value for e in Environment],
        help="Environment (detected from tags when omitted)",
    )
    evaluate_parser.add_argument("--actor-id", default="cli", help="Identity performing the operation")
    evaluate_parser.add_argument("--actor-name", help="Display name of the actor")
    evaluate_parser.add_argument("--region", help="Region (default from configuration)")
    evaluate_parser.add_argument(
        "--tag", dest="tags", action="append", metavar="KEY=VALUE", help="Resource tag (repeatable)"
    )
    evaluate_parser.add_argument("--confirm", action="store_true", help="Operation is confirmed")
    evaluate_parser.add_argument("--dry-run", action="store_true", help="Evaluate as a dry run")
    evaluate_parser.add_argument("--config", help="Path to config file")
    evaluate_parser.add_argument("--json", action="store_true", help="Output the result as JSON")

    classify_parser = subparsers.add_parser("classify", help="Show the risk classification of an action")
    classify_parser.add_argument("action", help="Action name")
    classify_parser.add_argument("--service", default="*", help="Service (default: any)")
    classify_parser.add_argument("--json", action="store_true", help="Output as JSON")

    environments_parser = subparsers.add_parser("environments", help="List environment protections")
    environments_parser.add_argument("--config", help="Path to config file")

    policies_parser = subparsers.add_parser("policies", help="List configured policies")
    policies_parser.add_argument("--config", help="Path to config file")

    return parser


@main_with_error_handling()
def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level or get_settings().log_level, json_output=False)

    if args.command == "evaluate":
        from changeguard.cli.evaluate import evaluate_command

        return evaluate_command(
            action=args.action,
            service=args.service,
            resource_ids=args.resources,
            resource_type=args.resource_type,
            environment=args.environment,
            actor_id=args.actor_id,
            actor_name=args.actor_name,
            region=args.region,
            tags=args.tags,
            confirm=args.confirm,
            dry_run=args.dry_run,
            config_path=args.config,
            output_json=args.json,
        )

    if args.command == "classify":
        from changeguard.cli.evaluate import classify_command

        return classify_command(args.action, service=args.service, output_json=args.json)

    if args.command == "environments":
        from changeguard.cli.environments import list_environments_command

        return list_environments_command(config_path=args.config)

    if args.command == "policies":
        from changeguard.cli.policies import list_policies_command

        return list_policies_command(config_path=args.config)

    parser.print_help()
    return ExitCode.SUCCESS


if __name__ == "__main__":
    raise SystemExit(main())
