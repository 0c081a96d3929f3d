"""Pytest configuration and shared fixtures for evalgate tests."""

import tempfile
from pathlib import Path
from typing import Any, Dict

import numpy as np
import pytest

from evalgate.approval.gate import HumanApprovalGate
from evalgate.evaluation.comparator import StatisticalComparator
from evalgate.lifecycle.locks import AgentLockRegistry
from evalgate.lifecycle.orchestrator import EnhancementOrchestrator
from evalgate.monitoring.events import EventBus, EventRecorder
from evalgate.sampling.synthetic import SyntheticSampler, make_linear_objective
from evalgate.schemas.engine_config import (
    ApprovalConfigV1,
    EngineConfigV1,
    GateThresholdsV1,
    SamplingConfigV1,
)
from evalgate.schemas.trial import PerformanceSummaryV1
from evalgate.storage.config_store import ConfigurationStore
from evalgate.storage.kv_store import KeyValueStoreSQLite
from evalgate.storage.lifecycle_store import LifecycleStore
from evalgate.storage.pattern_history import PatternHistory


# ============================================================================
# Basic Data Fixtures
# ============================================================================


@pytest.fixture
def sample_parameters() -> Dict[str, float]:
    """Committed parameters of a typical agent."""
    return {"temperature": 0.7, "top_k": 40.0, "x": 1.0}


@pytest.fixture
def baseline_summary() -> PerformanceSummaryV1:
    """Baseline batch: n=150, mean 0.70, sd 0.10."""
    return PerformanceSummaryV1(n=150, success_rate=1.0, mean=0.70, stddev=0.10)


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def temp_db_path() -> str:
    """Create temporary database path (without opening connection)."""
    with tempfile.NamedTemporaryFile(suffix=".sqlite", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    for suffix in ("", "-wal", "-shm"):
        Path(db_path + suffix).unlink(missing_ok=True)


@pytest.fixture
def kv_store(temp_db_path: str) -> KeyValueStoreSQLite:
    """SQLite key-value store on a temporary file."""
    store = KeyValueStoreSQLite(temp_db_path)
    yield store
    store.close()


@pytest.fixture
def config_store(kv_store: KeyValueStoreSQLite) -> ConfigurationStore:
    return ConfigurationStore(kv_store)


@pytest.fixture
def lifecycle_store(kv_store: KeyValueStoreSQLite) -> LifecycleStore:
    return LifecycleStore(kv_store)


@pytest.fixture
def pattern_history(kv_store: KeyValueStoreSQLite) -> PatternHistory:
    return PatternHistory(kv_store)


@pytest.fixture
def lock_registry(kv_store: KeyValueStoreSQLite, lifecycle_store: LifecycleStore) -> AgentLockRegistry:
    return AgentLockRegistry(kv_store, lifecycle_store)


# ============================================================================
# Sampler Fixtures
# ============================================================================


@pytest.fixture
def improving_sampler() -> SyntheticSampler:
    """Metric rises 20 per unit of ``x`` with noise sd 10 (mean ~120 at x=1)."""
    return SyntheticSampler(objective=make_linear_objective({"x": 20.0}), noise_std=10.0)


@pytest.fixture
def flat_sampler() -> SyntheticSampler:
    """Metric does not depend on the parameters."""
    return SyntheticSampler(noise_std=10.0)


# ============================================================================
# Orchestrator Fixtures
# ============================================================================


@pytest.fixture
def thresholds() -> GateThresholdsV1:
    return GateThresholdsV1()


@pytest.fixture
def event_recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def event_bus(event_recorder: EventRecorder) -> EventBus:
    bus = EventBus()
    bus.subscribe(event_recorder)
    return bus


@pytest.fixture
def registered_agent(config_store: ConfigurationStore, sample_parameters: Dict[str, float]) -> str:
    """Register ``agent-1`` at v1 and return its ID."""
    config_store.register("agent-1", sample_parameters)
    return "agent-1"


@pytest.fixture
def make_orchestrator(
    config_store: ConfigurationStore,
    lifecycle_store: LifecycleStore,
    lock_registry: AgentLockRegistry,
    event_bus: EventBus,
    pattern_history: PatternHistory,
    kv_store: KeyValueStoreSQLite,
    thresholds: GateThresholdsV1,
):
    """Factory building an orchestrator over the shared temporary store."""

    def _make(sampler, **kwargs: Any) -> EnhancementOrchestrator:
        approval = kwargs.pop("approval", False)
        gate = HumanApprovalGate(kv_store) if approval else None
        kwargs.setdefault("scenario_count", 60)
        return EnhancementOrchestrator(
            config_store=config_store,
            lifecycle_store=lifecycle_store,
            sampler=sampler,
            comparator=StatisticalComparator(thresholds),
            locks=lock_registry,
            events=event_bus,
            pattern_history=pattern_history,
            approval_gate=gate,
            **kwargs,
        )

    return _make


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def engine_config(temp_db_path: str) -> EngineConfigV1:
    """Small, fast engine configuration."""
    return EngineConfigV1(
        state_db=temp_db_path,
        sampling=SamplingConfigV1(scenario_count=60),
    )


@pytest.fixture
def approval_engine_config(temp_db_path: str) -> EngineConfigV1:
    """Engine configuration with approval required for any change >= 50%."""
    return EngineConfigV1(
        state_db=temp_db_path,
        sampling=SamplingConfigV1(scenario_count=60),
        approval=ApprovalConfigV1(enabled=True, impact_threshold=0.5),
    )


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: Any) -> None:
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "property: marks property-based tests")


# Set random seed for reproducibility in tests
np.random.seed(42)
