"""Deterministic synthetic sampler for tests, demos and dry runs.

Stands in for real task execution: the metric of each trial is an objective
function of the parameters plus noise drawn from the scenario's own seed, so
the baseline and candidate batches of one proposal see identical noise.
"""

import math
import threading
import time
from typing import Callable, Dict, List, Optional

import numpy as np

from evalgate.errors import ProposalCancelledError, SamplerFatalError
from evalgate.sampling.base import Sampler
from evalgate.sampling.scenarios import Scenario
from evalgate.schemas.trial import TrialResultV1

ObjectiveFn = Callable[[Dict[str, float]], float]


def make_quadratic_objective(
    optimum: Dict[str, float],
    peak: float = 100.0,
    curvature: float = 10.0,
) -> ObjectiveFn:
    """Objective peaking at ``optimum``: peak - curvature * sum((p - opt)^2)."""

    def objective(parameters: Dict[str, float]) -> float:
        distance = sum(
            (parameters.get(name, 0.0) - target) ** 2 for name, target in optimum.items()
        )
        return peak - curvature * distance

    return objective


def make_linear_objective(
    weights: Dict[str, float],
    intercept: float = 100.0,
) -> ObjectiveFn:
    """Objective intercept + sum(weight * parameter)."""

    def objective(parameters: Dict[str, float]) -> float:
        return intercept + sum(w * parameters.get(name, 0.0) for name, w in weights.items())

    return objective


class SyntheticSampler(Sampler):
    """
    Synthetic sampler with deterministic, seed-driven trials.

    Can be configured with:
    - An objective function of the parameters
    - Gaussian noise and a per-trial failure rate
    - Contract violations (short batches) or fatal errors for error-path tests

    Example:
        >>> sampler = SyntheticSampler(
        ...     objective=make_linear_objective({"x": 20.0}),
        ...     noise_std=10.0,
        ... )
        >>> trials = sampler.run("agent-1", {"x": 1.0}, 150, scenario_seed=1)
    """

    def __init__(
        self,
        objective: Optional[ObjectiveFn] = None,
        noise_std: float = 1.0,
        failure_rate: float = 0.0,
        short_by: int = 0,
        fatal_error: Optional[str] = None,
        latency_ms: float = 0.0,
    ):
        """
        Initialize synthetic sampler.

        Args:
            objective: Metric as a function of parameters (default: constant 100)
            noise_std: Standard deviation of per-trial Gaussian noise
            failure_rate: Probability that a trial fails (0.0 to 1.0)
            short_by: Drop this many results to simulate a contract violation
            fatal_error: If set, every batch raises SamplerFatalError with this message
            latency_ms: Simulated latency per trial in milliseconds
        """
        if noise_std < 0:
            raise ValueError("noise_std must be non-negative")
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be in [0, 1]")

        self.objective = objective or (lambda parameters: 100.0)
        self.noise_std = noise_std
        self.failure_rate = failure_rate
        self.short_by = short_by
        self.fatal_error = fatal_error
        self.latency_ms = latency_ms

        # Tracking
        self._lock = threading.Lock()
        self.call_count = 0
        self.calls: List[Dict[str, float]] = []

    def _execute(
        self,
        agent_id: str,
        parameters: Dict[str, float],
        scenarios: List[Scenario],
        cancel_event: Optional[threading.Event],
    ) -> List[TrialResultV1]:
        with self._lock:
            self.call_count += 1
            self.calls.append(dict(parameters))

        if self.fatal_error:
            raise SamplerFatalError(self.fatal_error)

        expected = float(self.objective(parameters))
        trials = []
        for scenario in scenarios:
            if cancel_event is not None and cancel_event.is_set():
                raise ProposalCancelledError("Proposal cancelled during sampling")
            if self.latency_ms > 0:
                time.sleep(self.latency_ms / 1000.0)

            # Draw order is fixed so every batch sees the same noise per scenario
            rng = np.random.default_rng(scenario.seed)
            failed = rng.random() < self.failure_rate
            noise = rng.normal(0.0, self.noise_std) if self.noise_std > 0 else 0.0
            metric = expected + noise

            if failed or not math.isfinite(metric):
                trials.append(
                    TrialResultV1(
                        round=scenario.index,
                        success=False,
                        duration_ms=self.latency_ms,
                        error="synthetic trial failure",
                    )
                )
            else:
                trials.append(
                    TrialResultV1(
                        round=scenario.index,
                        success=True,
                        metric_value=float(metric),
                        duration_ms=self.latency_ms,
                    )
                )

        if self.short_by > 0:
            trials = trials[: max(len(trials) - self.short_by, 0)]
        return trials
