"""Tests for CLI in chainplan/deploy/cli.py.

Tests cover:
- plan command
- deploy command (success, resume, failures, declaration errors)
- status command
- networks command
"""

from pathlib import Path
from unittest.mock import Mock

import pytest
import yaml
from typer.testing import CliRunner

from chainplan.deploy.cli import app

runner = CliRunner()

MISSING = "0x" + "12" * 20

TOKEN_MODULE = {
    "modules": [
        {
            "name": "TokenModule",
            "actions": [
                {"deploy": "Token"},
                {"call": "mint", "target": "@Token", "args": [1000]},
            ],
            "exports": {"token": "@Token"},
        }
    ]
}


def write_yaml(path: Path, data: dict) -> Path:
    """Helper to write YAML files."""
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


@pytest.fixture(autouse=True)
def logging_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict]:
    """Keep the deploy command from reconfiguring the root logger."""
    calls: list[dict] = []
    monkeypatch.setattr(
        "chainplan.deploy.cli.setup_logging", lambda **kwargs: calls.append(kwargs)
    )
    return calls


@pytest.fixture
def project(tmp_path: Path) -> dict[str, Path]:
    """Token module, project file and journal directory in a temp dir."""
    return {
        "module": write_yaml(tmp_path / "token.yaml", TOKEN_MODULE),
        "config": write_yaml(
            tmp_path / "chainplan.yaml", {"artifacts": str(tmp_path / "artifacts")}
        ),
        "journals": tmp_path / "deployments",
    }


def deploy_args(project: dict[str, Path], *extra: str) -> list[str]:
    return [
        "deploy",
        str(project["module"]),
        "--network",
        "local",
        "--config",
        str(project["config"]),
        "--journal-dir",
        str(project["journals"]),
        *extra,
    ]


class TestPlanCommand:
    """Test plan command."""

    def test_plan_table(self, project: dict[str, Path]) -> None:
        result = runner.invoke(app, ["plan", str(project["module"])])

        assert result.exit_code == 0
        assert "Plan resolved: 2 actions in 2 stages" in result.output

    def test_plan_json(self, project: dict[str, Path]) -> None:
        result = runner.invoke(app, ["plan", str(project["module"]), "--format", "json"])

        assert result.exit_code == 0
        assert '"TokenModule#Token"' in result.output
        assert '"TokenModule#Token.mint"' in result.output

    def test_plan_cycle(self, tmp_path: Path) -> None:
        module_file = write_yaml(
            tmp_path / "cycle.yaml",
            {
                "modules": [
                    {
                        "name": "M",
                        "actions": [
                            {"deploy": "A", "after": ["@B"]},
                            {"deploy": "B", "after": ["@A"]},
                        ],
                    }
                ]
            },
        )

        result = runner.invoke(app, ["plan", str(module_file)])

        assert result.exit_code == 2
        assert "Resolution failed" in result.output

    def test_plan_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["plan", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 2
        assert "not found" in result.output


class TestDeployCommand:
    """Test deploy command."""

    def test_deploy_to_local(self, project: dict[str, Path]) -> None:
        result = runner.invoke(app, deploy_args(project))

        assert result.exit_code == 0, result.output
        assert "All 2 actions confirmed" in result.output
        assert "Submissions this run: 2" in result.output
        assert (project["journals"] / "local.jsonl").exists()

    def test_rerun_submits_nothing(self, project: dict[str, Path]) -> None:
        runner.invoke(app, deploy_args(project))

        result = runner.invoke(app, deploy_args(project))

        assert result.exit_code == 0, result.output
        assert "Submissions this run: 0" in result.output

    def test_failed_action_exits_1(self, tmp_path: Path, project: dict[str, Path]) -> None:
        project["module"] = write_yaml(
            tmp_path / "poke.yaml",
            {"modules": [{"name": "Poke", "actions": [{"call": "poke", "target": MISSING}]}]},
        )

        result = runner.invoke(app, deploy_args(project))

        assert result.exit_code == 1
        assert "1 action(s) not confirmed" in result.output

    def test_unknown_network(self, project: dict[str, Path]) -> None:
        args = deploy_args(project)
        args[args.index("local")] = "mainnet"

        result = runner.invoke(app, args)

        assert result.exit_code == 2
        assert "Unknown network 'mainnet'" in result.output
        assert not project["journals"].exists()

    def test_invalid_failure_policy(self, project: dict[str, Path]) -> None:
        result = runner.invoke(app, deploy_args(project, "--failure-policy", "ignore"))

        assert result.exit_code == 2
        assert "Unknown failure policy" in result.output

    def test_abort_policy_and_concurrency_accepted(self, project: dict[str, Path]) -> None:
        result = runner.invoke(
            app, deploy_args(project, "--failure-policy", "abort", "--concurrency", "2")
        )

        assert result.exit_code == 0, result.output

    def test_extended_module_resumes_on_local(
        self, tmp_path: Path, project: dict[str, Path]
    ) -> None:
        """The simulated chain outlives the process, so mint finds Token."""
        full_module = project["module"]
        project["module"] = write_yaml(
            tmp_path / "token-only.yaml",
            {"modules": [{"name": "TokenModule", "actions": [{"deploy": "Token"}]}]},
        )
        first = runner.invoke(app, deploy_args(project))
        assert first.exit_code == 0, first.output

        project["module"] = full_module
        result = runner.invoke(app, deploy_args(project))

        assert result.exit_code == 0, result.output
        assert "All 2 actions confirmed" in result.output
        assert "Submissions this run: 1" in result.output
        assert (project["journals"] / "local.chain.json").exists()

    def test_abort_policy_reports_abort(self, tmp_path: Path, project: dict[str, Path]) -> None:
        project["module"] = write_yaml(
            tmp_path / "poke.yaml",
            {"modules": [{"name": "Poke", "actions": [{"call": "poke", "target": MISSING}]}]},
        )

        result = runner.invoke(app, deploy_args(project, "--failure-policy", "abort"))

        assert result.exit_code == 1
        assert "aborted after a failure" in result.output

    def test_log_file_option(
        self, tmp_path: Path, project: dict[str, Path], logging_calls: list[dict]
    ) -> None:
        log_file = tmp_path / "deploy.log"

        result = runner.invoke(app, deploy_args(project, "--log-file", str(log_file)))

        assert result.exit_code == 0, result.output
        assert logging_calls[-1]["log_file"] == log_file


DECLARATION_ERRORS = {
    "cycle": {
        "name": "M",
        "actions": [
            {"deploy": "A", "after": ["@B"]},
            {"deploy": "B", "after": ["@A"]},
        ],
    },
    "missing-parameter": {
        "name": "M",
        "actions": [{"deploy": "Token", "args": [{"param": "supply"}]}],
    },
    "unresolved-reference": {
        "name": "M",
        "actions": [{"deploy": "Token"}, {"call": "mint", "target": "@Nope"}],
    },
}


class TestDeclarationErrors:
    """Broken declarations stop deploy before any journal or network I/O."""

    @pytest.mark.parametrize("case", sorted(DECLARATION_ERRORS))
    def test_exits_2_without_side_effects(
        self,
        case: str,
        tmp_path: Path,
        project: dict[str, Path],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        create_transport = Mock(side_effect=AssertionError("transport created"))
        monkeypatch.setattr("chainplan.deploy.cli.create_transport", create_transport)
        project["module"] = write_yaml(
            tmp_path / f"{case}.yaml", {"modules": [DECLARATION_ERRORS[case]]}
        )

        result = runner.invoke(app, deploy_args(project))

        assert result.exit_code == 2
        assert "Resolution failed" in result.output
        assert not (project["journals"] / "local.jsonl").exists()
        assert not project["journals"].exists()
        create_transport.assert_not_called()


class TestUnavailableNetwork:
    """A network with unset variables blocks only itself."""

    @pytest.fixture
    def config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
        monkeypatch.delenv("CHAINPLAN_TEST_KEY", raising=False)
        return write_yaml(
            tmp_path / "chainplan.yaml",
            {
                "artifacts": str(tmp_path / "artifacts"),
                "networks": {
                    "calib": {
                        "url": "http://localhost:1234/rpc/v1",
                        "accounts": ["${CHAINPLAN_TEST_KEY}"],
                    }
                },
            },
        )

    def test_other_networks_still_deploy(self, project: dict[str, Path], config: Path) -> None:
        project["config"] = config

        result = runner.invoke(app, deploy_args(project))

        assert result.exit_code == 0, result.output

    def test_selected_network_fails(self, project: dict[str, Path], config: Path) -> None:
        project["config"] = config
        args = deploy_args(project)
        args[args.index("local")] = "calib"

        result = runner.invoke(app, args)

        assert result.exit_code == 2
        assert "CHAINPLAN_TEST_KEY" in result.output
        assert not project["journals"].exists()

    def test_listed_as_unavailable(self, config: Path) -> None:
        result = runner.invoke(app, ["networks", "--config", str(config)])

        assert result.exit_code == 0
        assert "calib" in result.output
        assert "unavailable" in result.output


class TestStatusCommand:
    """Test status command."""

    def test_status_before_deploy(self, project: dict[str, Path]) -> None:
        result = runner.invoke(
            app,
            [
                "status",
                str(project["module"]),
                "--network",
                "local",
                "--journal-dir",
                str(project["journals"]),
            ],
        )

        assert result.exit_code == 0
        assert "0/2 actions confirmed" in result.output

    def test_status_after_deploy(self, project: dict[str, Path]) -> None:
        runner.invoke(app, deploy_args(project))

        result = runner.invoke(
            app,
            [
                "status",
                str(project["module"]),
                "--network",
                "local",
                "--journal-dir",
                str(project["journals"]),
            ],
        )

        assert result.exit_code == 0
        assert "2/2 actions confirmed" in result.output


class TestNetworksCommand:
    """Test networks command."""

    def test_lists_networks(self, tmp_path: Path) -> None:
        config = write_yaml(
            tmp_path / "chainplan.yaml",
            {"networks": {"subnet": {"url": "http://localhost:8545", "chain_id": 31337}}},
        )

        result = runner.invoke(app, ["networks", "--config", str(config)])

        assert result.exit_code == 0
        assert "local" in result.output
        assert "subnet" in result.output
        assert "31337" in result.output

    def test_invalid_config(self, tmp_path: Path) -> None:
        config = tmp_path / "chainplan.yaml"
        config.write_text("networks: [")

        result = runner.invoke(app, ["networks", "--config", str(config)])

        assert result.exit_code == 2
