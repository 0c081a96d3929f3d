"""Engine configuration schema with validation and file loading."""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class Mode(str, Enum):
    """Engine operating mode."""

    ACTIVE = "active"  # Full lifecycle, commits allowed
    OBSERVE = "observe"  # Measure and compare, never commit
    PAUSED = "paused"  # Refuse new proposals


class BusyPolicy(str, Enum):
    """What to do with a request for an agent that already has a proposal in flight."""

    REJECT = "reject"  # Resolve immediately as failed(lock_contention)
    QUEUE = "queue"  # Hold until the agent's current proposal terminates


class GateThresholdsV1(BaseModel):
    """Significance gate thresholds.

    A candidate is significant only if ALL three accept checks pass.
    """

    alpha: float = Field(default=0.05, description="Maximum p-value (exclusive)")
    min_improvement_pct: float = Field(
        default=0.05, description="Minimum relative mean improvement (exclusive)"
    )
    min_effect_size: float = Field(default=0.3, description="Minimum Cohen's d (exclusive)")
    confidence_level: float = Field(default=0.95, description="Confidence level for the CI")
    min_sample_size: int = Field(default=30, description="Minimum trials per summary")

    @field_validator("alpha")
    @classmethod
    def alpha_must_be_probability(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError("alpha must be in (0, 1)")
        return v

    @field_validator("confidence_level")
    @classmethod
    def confidence_level_must_be_probability(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError("confidence_level must be in (0, 1)")
        return v

    @field_validator("min_sample_size")
    @classmethod
    def min_sample_size_must_allow_variance(cls, v: int) -> int:
        if v < 2:
            raise ValueError("min_sample_size must be >= 2")
        return v


class SamplingConfigV1(BaseModel):
    """Trial sampling configuration."""

    scenario_count: int = Field(default=150, description="Trials per batch")
    max_workers: int = Field(default=4, description="Concurrent trials inside one batch")

    @field_validator("scenario_count", "max_workers")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class ApprovalConfigV1(BaseModel):
    """Human approval escalation configuration."""

    enabled: bool = False
    impact_threshold: Optional[float] = Field(
        default=None,
        description="Largest relative parameter change that still commits without review",
    )

    @model_validator(mode="after")
    def threshold_required_when_enabled(self) -> "ApprovalConfigV1":
        if self.enabled and self.impact_threshold is None:
            raise ValueError("impact_threshold is required when approval is enabled")
        if self.impact_threshold is not None and self.impact_threshold < 0:
            raise ValueError("impact_threshold must be non-negative")
        return self


class FleetConfigV1(BaseModel):
    """Fleet coordinator configuration."""

    mode: Mode = Mode.ACTIVE
    max_concurrency: int = Field(default=4, description="Global cap on running lifecycles")
    busy_policy: BusyPolicy = BusyPolicy.REJECT

    @field_validator("max_concurrency")
    @classmethod
    def max_concurrency_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_concurrency must be > 0")
        return v


class EngineConfigV1(BaseModel):
    """Top-level engine configuration."""

    state_db: str = Field(
        default="artifacts/evalgate/state.sqlite", description="SQLite state database"
    )
    gate: GateThresholdsV1 = Field(default_factory=GateThresholdsV1)
    sampling: SamplingConfigV1 = Field(default_factory=SamplingConfigV1)
    approval: ApprovalConfigV1 = Field(default_factory=ApprovalConfigV1)
    fleet: FleetConfigV1 = Field(default_factory=FleetConfigV1)

    commit_retries: int = Field(default=3, description="Commit attempts before failing")

    # Default delta proposer step (relative)
    proposer_step_scale: float = 0.1

    log_file: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("commit_retries")
    @classmethod
    def commit_retries_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("commit_retries must be > 0")
        return v

    @model_validator(mode="after")
    def scenario_count_must_meet_floor(self) -> "EngineConfigV1":
        if self.sampling.scenario_count < self.gate.min_sample_size:
            raise ValueError(
                f"sampling.scenario_count ({self.sampling.scenario_count}) must be >= "
                f"gate.min_sample_size ({self.gate.min_sample_size})"
            )
        return self


def load_engine_config(config_path: Optional[str | Path] = None) -> EngineConfigV1:
    """Load engine configuration from YAML or JSON, then apply env overrides.

    ``EVALGATE_STATE_DB`` overrides ``state_db`` and ``EVALGATE_MODE``
    overrides ``fleet.mode``.

    Args:
        config_path: Path to a .yaml/.yml/.json file, or None for defaults

    Returns:
        Validated engine configuration
    """
    data: dict = {}
    if config_path is not None:
        config_file = Path(config_path)
        with open(config_file, "r") as f:
            if config_file.suffix.lower() in [".yaml", ".yml"]:
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

    state_db = os.getenv("EVALGATE_STATE_DB")
    if state_db:
        data["state_db"] = state_db

    mode = os.getenv("EVALGATE_MODE")
    if mode:
        data.setdefault("fleet", {})["mode"] = mode

    return EngineConfigV1(**data)
