"""Trial sampling: the engine's only view of how an agent performs its task."""

from evalgate.sampling.base import Sampler
from evalgate.sampling.executor import TaskExecutorSampler, TaskFn
from evalgate.sampling.scenarios import Scenario, ScenarioSet, derive_scenario_seed
from evalgate.sampling.synthetic import (
    SyntheticSampler,
    make_linear_objective,
    make_quadratic_objective,
)

__all__ = [
    "Sampler",
    "TaskExecutorSampler",
    "TaskFn",
    "SyntheticSampler",
    "make_linear_objective",
    "make_quadratic_objective",
    "Scenario",
    "ScenarioSet",
    "derive_scenario_seed",
]
