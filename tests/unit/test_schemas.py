"""Unit tests for Pydantic schemas and engine configuration loading."""

import json

import pytest
import yaml
from pydantic import ValidationError

from evalgate.schemas.agent_config import AgentConfigurationV1
from evalgate.schemas.engine_config import (
    ApprovalConfigV1,
    BusyPolicy,
    EngineConfigV1,
    FleetConfigV1,
    GateThresholdsV1,
    Mode,
    SamplingConfigV1,
    load_engine_config,
)
from evalgate.schemas.lifecycle_record import FailureReason, LifecycleRecordV1
from evalgate.schemas.proposal import EnhancementProposalV1, ProposalRequestV1, ProposalState
from evalgate.schemas.trial import PerformanceSummaryV1, TrialResultV1


class TestAgentConfiguration:
    """Test AgentConfigurationV1 schema."""

    def test_valid_configuration(self):
        """Test valid configuration creation."""
        config = AgentConfigurationV1(agent_id="agent-1", parameters={"x": 1.0})
        assert config.version == 1
        assert config.committed_at is not None

    def test_agent_id_validation(self):
        """Test empty and path-like agent IDs are rejected."""
        with pytest.raises(ValidationError):
            AgentConfigurationV1(agent_id="  ", parameters={})
        with pytest.raises(ValidationError):
            AgentConfigurationV1(agent_id="a/b", parameters={})

    def test_version_must_be_positive(self):
        """Test version 0 is rejected."""
        with pytest.raises(ValidationError):
            AgentConfigurationV1(agent_id="agent-1", parameters={}, version=0)


class TestTrialSchemas:
    """Test TrialResultV1 and PerformanceSummaryV1."""

    def test_trial_is_frozen(self):
        """Test trial results are immutable."""
        trial = TrialResultV1(round=0, success=True, metric_value=1.0)
        with pytest.raises(ValidationError):
            trial.metric_value = 2.0

    def test_summary_bounds(self):
        """Test summary field bounds."""
        with pytest.raises(ValidationError):
            PerformanceSummaryV1(n=-1, success_rate=1.0, mean=0.0, stddev=0.0)
        with pytest.raises(ValidationError):
            PerformanceSummaryV1(n=10, success_rate=1.5, mean=0.0, stddev=0.0)
        with pytest.raises(ValidationError):
            PerformanceSummaryV1(n=10, success_rate=1.0, mean=0.0, stddev=-1.0)

    def test_successful_count(self):
        """Test successful_count derives from n and success_rate."""
        summary = PerformanceSummaryV1(n=150, success_rate=0.9, mean=1.0, stddev=0.1)
        assert summary.successful_count == 135


class TestProposalSchemas:
    """Test proposal and lifecycle record schemas."""

    def test_terminal_states(self):
        """Test only committed, rolled_back and failed are terminal."""
        terminal = {s for s in ProposalState if s.is_terminal}
        assert terminal == {ProposalState.COMMITTED, ProposalState.ROLLED_BACK, ProposalState.FAILED}

    def test_request_scenario_count_must_be_positive(self):
        """Test scenario_count override validation."""
        with pytest.raises(ValidationError):
            ProposalRequestV1(agent_id="agent-1", scenario_count=0)

    def test_request_agent_id_validation(self):
        """Test requests use the same agent ID rules as registration."""
        with pytest.raises(ValidationError):
            ProposalRequestV1(agent_id="agent-1/x")
        with pytest.raises(ValidationError):
            ProposalRequestV1(agent_id="")

    def test_record_serialization(self, baseline_summary):
        """Test lifecycle record round trip through JSON."""
        record = LifecycleRecordV1(
            proposal=EnhancementProposalV1(
                proposal_id="prop_1",
                agent_id="agent-1",
                baseline_config={"x": 1.0},
                delta={"x": 0.5},
                state=ProposalState.FAILED,
            ),
            base_version=1,
            scenario_count=150,
            scenario_seed=42,
            baseline_summary=baseline_summary,
            failure_reason=FailureReason.SAMPLER_FATAL,
        )

        parsed = LifecycleRecordV1.model_validate_json(record.model_dump_json())

        assert parsed.proposal_id == "prop_1"
        assert parsed.is_terminal
        assert parsed.reason == "sampler_fatal"
        assert parsed.baseline_summary == baseline_summary


class TestEngineConfig:
    """Test EngineConfigV1 validation."""

    def test_defaults(self):
        """Test default thresholds and fleet settings."""
        config = EngineConfigV1()
        assert config.gate.alpha == 0.05
        assert config.gate.min_improvement_pct == 0.05
        assert config.gate.min_effect_size == 0.3
        assert config.gate.min_sample_size == 30
        assert config.sampling.scenario_count == 150
        assert config.fleet.mode == Mode.ACTIVE
        assert config.fleet.busy_policy == BusyPolicy.REJECT
        assert config.approval.enabled is False

    def test_scenario_count_below_floor(self):
        """Test a batch size below the sample floor is rejected."""
        with pytest.raises(ValidationError, match="min_sample_size"):
            EngineConfigV1(sampling=SamplingConfigV1(scenario_count=10))

    def test_invalid_thresholds(self):
        """Test out-of-range gate thresholds."""
        with pytest.raises(ValidationError):
            GateThresholdsV1(alpha=1.5)
        with pytest.raises(ValidationError):
            GateThresholdsV1(confidence_level=0.0)
        with pytest.raises(ValidationError):
            GateThresholdsV1(min_sample_size=1)

    def test_approval_requires_threshold(self):
        """Test enabled approval needs an impact threshold."""
        with pytest.raises(ValidationError):
            ApprovalConfigV1(enabled=True)
        with pytest.raises(ValidationError):
            ApprovalConfigV1(enabled=True, impact_threshold=-0.1)

    def test_fleet_validation(self):
        """Test fleet concurrency and enum parsing."""
        with pytest.raises(ValidationError):
            FleetConfigV1(max_concurrency=0)
        assert FleetConfigV1(busy_policy="queue").busy_policy == BusyPolicy.QUEUE

    def test_commit_retries_positive(self):
        """Test commit_retries must be positive."""
        with pytest.raises(ValidationError):
            EngineConfigV1(commit_retries=0)


class TestLoadEngineConfig:
    """Test load_engine_config."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        monkeypatch.delenv("EVALGATE_STATE_DB", raising=False)
        monkeypatch.delenv("EVALGATE_MODE", raising=False)

    def test_defaults_without_file(self):
        """Test loading without a file returns defaults."""
        assert load_engine_config() == EngineConfigV1()

    def test_load_yaml(self, tmp_path):
        """Test loading a YAML config file."""
        path = tmp_path / "engine.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "state_db": str(tmp_path / "state.sqlite"),
                    "gate": {"min_effect_size": 0.5},
                    "approval": {"enabled": True, "impact_threshold": 0.25},
                    "fleet": {"max_concurrency": 8, "busy_policy": "queue"},
                }
            )
        )

        config = load_engine_config(path)

        assert config.gate.min_effect_size == 0.5
        assert config.approval.impact_threshold == 0.25
        assert config.fleet.max_concurrency == 8
        assert config.fleet.busy_policy == BusyPolicy.QUEUE

    def test_load_json(self, tmp_path):
        """Test loading a JSON config file."""
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"sampling": {"scenario_count": 200}}))

        assert load_engine_config(path).sampling.scenario_count == 200

    def test_empty_yaml(self, tmp_path):
        """Test an empty YAML file yields defaults."""
        path = tmp_path / "engine.yml"
        path.write_text("")

        assert load_engine_config(path) == EngineConfigV1()

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Test environment variables override file values."""
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump({"state_db": "from-file.sqlite", "fleet": {"mode": "active"}}))
        monkeypatch.setenv("EVALGATE_STATE_DB", "from-env.sqlite")
        monkeypatch.setenv("EVALGATE_MODE", "observe")

        config = load_engine_config(path)

        assert config.state_db == "from-env.sqlite"
        assert config.fleet.mode == Mode.OBSERVE

    def test_invalid_file_contents(self, tmp_path):
        """Test invalid values in the file raise ValidationError."""
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump({"fleet": {"mode": "sleeping"}}))

        with pytest.raises(ValidationError):
            load_engine_config(path)
