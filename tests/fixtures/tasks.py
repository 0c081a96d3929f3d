"""Trial functions importable as ``--task`` references in CLI tests."""

from typing import Dict

import numpy as np

from evalgate.sampling.scenarios import Scenario


def linear_trial(agent_id: str, parameters: Dict[str, float], scenario: Scenario) -> float:
    """100 + 20·x plus scenario-seeded noise (sd 10)."""
    noise = np.random.default_rng(scenario.seed).normal(0.0, 10.0)
    return 100.0 + 20.0 * parameters.get("x", 0.0) + float(noise)


def flat_trial(agent_id: str, parameters: Dict[str, float], scenario: Scenario) -> float:
    """Ignores the parameters entirely."""
    return 100.0 + float(np.random.default_rng(scenario.seed).normal(0.0, 10.0))


NOT_CALLABLE = 42
