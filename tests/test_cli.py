"""Tests for the changeguard command line."""

from unittest.mock import patch

import pytest
from changeguard.cli.evaluate import exit_code_for, parse_tags
from changeguard.cli.main import build_parser, main
from changeguard.core.errors import ExitCode, ValidationError
from changeguard.guardrails.evaluator import fail_closed_result

BLOCKING_CONFIG = """
environments:
  - environment: production
    is_protected: true
    protection_level: full
    blocked_actions: [terminate]
policies:
  - name: no-rds-deletes
    priority: 5
    conditions:
      - {type: service, operator: equals, value: rds}
      - {type: action, operator: equals, value: delete}
    actions:
      - {type: block}
"""


@pytest.fixture(autouse=True)
def quiet_cli(tmp_path, monkeypatch):
    """Isolate config discovery and leave structlog configuration alone."""
    work = tmp_path / "work"
    home = tmp_path / "home"
    work.mkdir()
    home.mkdir()
    monkeypatch.chdir(work)
    monkeypatch.setenv("HOME", str(home))
    with patch("changeguard.cli.main.configure_logging"):
        yield


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "guardrails.yaml"
    path.write_text(BLOCKING_CONFIG)
    return str(path)


class TestParseTags:
    """Test KEY=VALUE tag parsing."""

    def test_parses_pairs(self):
        assert parse_tags(["Environment=prod", "Owner=team=a"]) == {
            "Environment": "prod",
            "Owner": "team=a",
        }

    def test_none(self):
        assert parse_tags(None) == {}

    @pytest.mark.parametrize("pair", ["novalue", "=value"])
    def test_invalid_pair(self, pair):
        with pytest.raises(ValidationError):
            parse_tags([pair])


class TestExitCodeFor:
    """Test mapping evaluation results to exit codes."""

    def test_blocked(self):
        assert exit_code_for(fail_closed_result("boom")) == ExitCode.BLOCKED

    def test_approval_and_confirmation(self):
        result = fail_closed_result("boom")
        result.allowed = True
        result.requires_approval = True
        assert exit_code_for(result) == ExitCode.WARNING

        result.requires_approval = False
        result.requires_confirmation = True
        assert exit_code_for(result) == ExitCode.WARNING

        result.requires_confirmation = False
        assert exit_code_for(result) == ExitCode.SUCCESS


class TestEvaluateCommand:
    """Test `changeguard evaluate`."""

    def test_allowed(self, capsys):
        code = main(
            ["evaluate", "--action", "update", "--service", "ec2", "--resource", "i-1", "--env", "development"]
        )

        assert code == ExitCode.SUCCESS
        assert "Operation allowed" in capsys.readouterr().out

    def test_needs_approval(self, capsys):
        code = main(
            ["evaluate", "--action", "delete", "--service", "ec2", "--resource", "i-1", "--env", "production"]
        )

        assert code == ExitCode.WARNING
        assert "requires approval" in capsys.readouterr().out

    def test_needs_confirmation(self):
        code = main(
            ["evaluate", "--action", "update", "--service", "ec2", "--resource", "i-1", "--env", "production"]
        )
        assert code == ExitCode.WARNING

        confirmed = main(
            [
                "evaluate", "--action", "update", "--service", "ec2",
                "--resource", "i-1", "--env", "production", "--confirm",
            ]
        )
        assert confirmed == ExitCode.SUCCESS

    def test_blocked_by_environment(self, config_file, capsys):
        code = main(
            [
                "evaluate", "--action", "terminate", "--service", "ec2",
                "--resource", "i-1", "--env", "production", "--config", config_file,
            ]
        )

        assert code == ExitCode.BLOCKED
        out = capsys.readouterr().out
        assert "Operation blocked" in out

    def test_blocked_by_policy(self, config_file):
        code = main(
            [
                "evaluate", "--action", "delete", "--service", "rds",
                "--resource", "db-1", "--env", "development", "--config", config_file,
            ]
        )
        assert code == ExitCode.BLOCKED

    def test_environment_detected_from_tags(self):
        code = main(
            [
                "evaluate", "--action", "update", "--service", "ec2",
                "--resource", "i-1", "--tag", "Environment=prod-eu",
            ]
        )
        assert code == ExitCode.WARNING

    def test_json_output(self, capsys):
        code = main(
            [
                "evaluate", "--action", "update", "--service", "ec2",
                "--resource", "i-1", "--env", "development", "--json",
            ]
        )

        assert code == ExitCode.SUCCESS
        assert '"allowed"' in capsys.readouterr().out

    def test_invalid_tag(self):
        code = main(
            ["evaluate", "--action", "update", "--service", "ec2", "--resource", "i-1", "--tag", "oops"]
        )
        assert code == ExitCode.VALIDATION_ERROR

    def test_missing_config(self, tmp_path):
        code = main(
            [
                "evaluate", "--action", "update", "--service", "ec2",
                "--resource", "i-1", "--config", str(tmp_path / "missing.yaml"),
            ]
        )
        assert code == ExitCode.CONFIG_ERROR

    def test_unknown_environment_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["evaluate", "--action", "a", "--service", "s", "--resource", "r", "--env", "moon"]
            )


class TestOtherCommands:
    """Test classify, environments and policies."""

    def test_classify(self, capsys):
        assert main(["classify", "terminate"]) == ExitCode.SUCCESS
        assert "CRITICAL" in capsys.readouterr().out

    def test_classify_json(self, capsys):
        assert main(["classify", "read", "--json"]) == ExitCode.SUCCESS
        assert '"low"' in capsys.readouterr().out

    def test_environments(self):
        with patch("changeguard.cli.environments.print_table") as print_table:
            assert main(["environments"]) == ExitCode.SUCCESS

        rows = print_table.call_args.args[2]
        assert [r[0] for r in rows] == ["production", "staging", "development", "sandbox"]
        assert rows[0][-1] == "any time"

    def test_policies_empty(self, capsys):
        assert main(["policies"]) == ExitCode.SUCCESS
        assert "No policies configured" in capsys.readouterr().out

    def test_policies_from_config(self, config_file):
        with patch("changeguard.cli.policies.print_table") as print_table:
            assert main(["policies", "--config", config_file]) == ExitCode.SUCCESS

        rows = print_table.call_args.args[2]
        assert rows == [
            ["no-rds-deletes", "5", "yes", "service equals rds; action equals delete", "block"]
        ]

    def test_no_command_prints_help(self, capsys):
        assert main([]) == ExitCode.SUCCESS
        assert "usage" in capsys.readouterr().out
