"""Integration tests for the click CLI."""

import json
import logging
import re

import pytest
import yaml
from click.testing import CliRunner

from evalgate import __version__
from evalgate.cli import cli

LINEAR_TASK = "tests.fixtures.tasks:linear_trial"
FLAT_TASK = "tests.fixtures.tasks:flat_trial"


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch):
    """The CLI reconfigures the root logger; put pytest's handlers back afterwards."""
    for name in ("EVALGATE_CONFIG", "EVALGATE_STATE_DB", "EVALGATE_MODE", "EVALGATE_TASK"):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("evalgate.sampling").setLevel(logging.NOTSET)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def write_config(tmp_path, **extra) -> str:
    data = {"state_db": str(tmp_path / "state.sqlite"), "sampling": {"scenario_count": 60}}
    data.update(extra)
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


@pytest.fixture
def config_path(tmp_path) -> str:
    return write_config(tmp_path)


@pytest.fixture
def approval_config_path(tmp_path) -> str:
    return write_config(tmp_path, approval={"enabled": True, "impact_threshold": 0.5})


def invoke(runner, config_path, *args):
    return runner.invoke(cli, ["--config", config_path, *args])


def proposal_id_of(output: str) -> str:
    return re.search(r"Proposal:\s+(prop_[0-9a-f]+)", output).group(1)


def register_agent(runner, config_path, agent_id="agent-1"):
    result = invoke(runner, config_path, "register", agent_id, "--param", "x=1", "--param", "y=2.5")
    assert result.exit_code == 0, result.output
    return result


class TestRegister:
    """Test the register command."""

    def test_register_and_history(self, runner, config_path):
        result = register_agent(runner, config_path)
        assert "Registered 'agent-1' at v1" in result.output

        history = invoke(runner, config_path, "history", "agent-1")

        assert history.exit_code == 0
        assert "agent-1 v1" in history.output
        assert "x = 1.0" in history.output
        assert "No proposals" in history.output

    def test_register_from_file(self, runner, config_path, tmp_path):
        params_file = tmp_path / "params.json"
        params_file.write_text(json.dumps({"temperature": 0.7, "top_k": 40}))

        result = invoke(
            runner, config_path, "register", "agent-1", "--params-file", str(params_file)
        )

        assert result.exit_code == 0
        assert "top_k = 40.0" in result.output

    def test_register_twice_fails(self, runner, config_path):
        register_agent(runner, config_path)

        result = invoke(runner, config_path, "register", "agent-1", "--param", "x=3")

        assert result.exit_code == 1
        assert "already registered" in result.output

    def test_register_requires_parameters(self, runner, config_path):
        result = invoke(runner, config_path, "register", "agent-1")
        assert result.exit_code == 2

    def test_malformed_parameter(self, runner, config_path):
        result = invoke(runner, config_path, "register", "agent-1", "--param", "x=abc")
        assert result.exit_code == 2
        assert "not a number" in result.output


class TestPropose:
    """Test the propose command against an importable trial function."""

    def test_improvement_commits(self, runner, config_path):
        register_agent(runner, config_path)

        result = invoke(
            runner, config_path, "propose", "agent-1", "--delta", "x=1", "--task", LINEAR_TASK
        )

        assert result.exit_code == 0, result.output
        assert "committed" in result.output
        assert "Committed: v2" in result.output

        history = invoke(runner, config_path, "history", "agent-1")
        assert "agent-1 v2" in history.output
        assert "x = 2.0" in history.output

    def test_no_effect_rolls_back(self, runner, config_path):
        register_agent(runner, config_path)

        result = invoke(
            runner, config_path, "propose", "agent-1", "--delta", "x=1", "--task", FLAT_TASK
        )

        assert result.exit_code == 0, result.output
        assert "rolled_back" in result.output
        assert "statistical_rejection" in result.output

    def test_unknown_agent_exits_nonzero(self, runner, config_path):
        result = invoke(
            runner, config_path, "propose", "ghost", "--delta", "x=1", "--task", LINEAR_TASK
        )

        assert result.exit_code == 1
        assert "unknown_agent" in result.output

    def test_agent_id_with_slash_is_refused(self, runner, config_path):
        """A nested-looking ID must not leave records in another agent's history."""
        register_agent(runner, config_path)

        result = invoke(
            runner, config_path, "propose", "agent-1/x", "--delta", "x=1", "--task", LINEAR_TASK
        )
        history = invoke(runner, config_path, "history", "agent-1")

        assert result.exit_code == 1
        assert "must not contain" in result.output
        assert "No proposals" in history.output

    @pytest.mark.parametrize(
        "task",
        ["no_colon", "tests.fixtures.missing_module:fn", "tests.fixtures.tasks:NOT_CALLABLE"],
    )
    def test_bad_task_reference(self, runner, config_path, task):
        register_agent(runner, config_path)

        result = invoke(runner, config_path, "propose", "agent-1", "--delta", "x=1", "--task", task)

        assert result.exit_code == 2

    def test_task_is_required(self, runner, config_path):
        result = invoke(runner, config_path, "propose", "agent-1", "--delta", "x=1")
        assert result.exit_code == 2

    def test_status(self, runner, config_path):
        register_agent(runner, config_path)
        proposed = invoke(
            runner, config_path, "propose", "agent-1", "--delta", "x=1", "--task", LINEAR_TASK
        )
        proposal_id = proposal_id_of(proposed.output)

        verbose = invoke(runner, config_path, "status", proposal_id, "-v")
        as_json = invoke(runner, config_path, "status", proposal_id, "--json")

        assert "Transitions:" in verbose.output
        assert "baselining" in verbose.output
        assert "Baseline:  n=60 success=100%" in verbose.output
        assert "Candidate: n=60" in verbose.output
        record = json.loads(as_json.output)
        assert record["proposal"]["state"] == "committed"
        assert record["committed_version"] == 2

    def test_status_unknown(self, runner, config_path):
        result = invoke(runner, config_path, "status", "prop_missing")
        assert result.exit_code == 1


class TestApprovalCommands:
    """Test pending/decide/cancel across separate CLI invocations."""

    def propose(self, runner, config_path) -> str:
        register_agent(runner, config_path)
        result = invoke(
            runner, config_path, "propose", "agent-1", "--delta", "x=1", "--task", LINEAR_TASK
        )
        assert result.exit_code == 0, result.output
        assert "awaiting_approval" in result.output
        return proposal_id_of(result.output)

    def test_pending_then_approve(self, runner, approval_config_path):
        proposal_id = self.propose(runner, approval_config_path)

        pending = invoke(runner, approval_config_path, "pending")
        assert f"apr_{proposal_id}" in pending.output
        assert "1 approval request(s) pending" in pending.output

        decided = invoke(runner, approval_config_path, "decide", f"apr_{proposal_id}", "approved")

        assert decided.exit_code == 0, decided.output
        assert "committed" in decided.output
        history = invoke(runner, approval_config_path, "history", "agent-1")
        assert "agent-1 v2" in history.output

    def test_reject(self, runner, approval_config_path):
        proposal_id = self.propose(runner, approval_config_path)

        decided = invoke(runner, approval_config_path, "decide", f"apr_{proposal_id}", "rejected")

        assert "approval_rejected" in decided.output
        assert "No approval requests pending" in invoke(runner, approval_config_path, "pending").output

    def test_conflicting_decision(self, runner, approval_config_path):
        proposal_id = self.propose(runner, approval_config_path)
        invoke(runner, approval_config_path, "decide", f"apr_{proposal_id}", "rejected")

        result = invoke(runner, approval_config_path, "decide", f"apr_{proposal_id}", "approved")

        assert result.exit_code == 1
        assert "Decision failed" in result.output

    def test_decide_without_approval_enabled(self, runner, config_path):
        result = invoke(runner, config_path, "decide", "apr_prop_x", "approved")
        assert result.exit_code == 1

    def test_cancel_awaiting(self, runner, approval_config_path):
        proposal_id = self.propose(runner, approval_config_path)

        result = invoke(runner, approval_config_path, "cancel", proposal_id)

        assert result.exit_code == 0
        assert "cancelled" in result.output
        assert "No unfinished proposals" in invoke(runner, approval_config_path, "pending").output

    def test_recover_reattaches_awaiting(self, runner, approval_config_path):
        proposal_id = self.propose(runner, approval_config_path)

        result = invoke(runner, approval_config_path, "recover")

        assert result.exit_code == 0, result.output
        assert proposal_id in result.output
        assert "awaiting_approval" in result.output


class TestMisc:
    """Test recover, demo and global options."""

    def test_recover_nothing(self, runner, config_path):
        result = invoke(runner, config_path, "recover")
        assert "Nothing to recover" in result.output

    def test_demo(self, runner, config_path, tmp_path):
        result = invoke(
            runner,
            config_path,
            "demo",
            "--agents",
            "2",
            "--rounds",
            "2",
            "--scenarios",
            "40",
            "--state-db",
            str(tmp_path / "demo.sqlite"),
        )

        assert result.exit_code == 0, result.output
        assert "Fleet summary" in result.output
        assert "Proposals:        4" in result.output
        assert "demo-agent-01" in result.output

    def test_invalid_config(self, runner, tmp_path):
        path = write_config(tmp_path, fleet={"max_concurrency": 0})
        result = invoke(runner, path, "pending")
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert __version__ in result.output
