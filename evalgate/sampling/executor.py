"""Production sampler backed by a real task executor."""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple, Union

from evalgate.errors import ProposalCancelledError
from evalgate.sampling.base import Sampler
from evalgate.sampling.scenarios import Scenario
from evalgate.schemas.trial import TrialResultV1

logger = logging.getLogger(__name__)

# task_fn(agent_id, parameters, scenario) -> metric, or (success, metric)
TaskOutcome = Union[float, Tuple[bool, float]]
TaskFn = Callable[[str, Dict[str, float], Scenario], TaskOutcome]


class TaskExecutorSampler(Sampler):
    """
    Runs the agent's real task once per scenario on a thread pool.

    A trial that raises (SamplerTrialError or anything else) or returns a
    non-finite metric is recorded as a failed TrialResult; it never aborts
    the batch.

    Example:
        >>> def task(agent_id, parameters, scenario):
        ...     return run_agent(agent_id, parameters, seed=scenario.seed)
        >>> sampler = TaskExecutorSampler(task, max_workers=8)
        >>> trials = sampler.run("agent-1", {"temperature": 0.7}, 150, scenario_seed=42)
    """

    def __init__(self, task_fn: TaskFn, max_workers: int = 4):
        """
        Initialize task executor sampler.

        Args:
            task_fn: Callable executing one trial
            max_workers: Concurrent trials within one batch
        """
        if max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self.task_fn = task_fn
        self.max_workers = max_workers

    def _execute(
        self,
        agent_id: str,
        parameters: Dict[str, float],
        scenarios: List[Scenario],
        cancel_event: Optional[threading.Event],
    ) -> List[TrialResultV1]:
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix=f"trials-{agent_id}"
        ) as pool:
            futures = [
                pool.submit(self._run_trial, agent_id, parameters, scenario, cancel_event)
                for scenario in scenarios
            ]
            return [future.result() for future in futures]

    def _run_trial(
        self,
        agent_id: str,
        parameters: Dict[str, float],
        scenario: Scenario,
        cancel_event: Optional[threading.Event],
    ) -> TrialResultV1:
        if cancel_event is not None and cancel_event.is_set():
            raise ProposalCancelledError("Proposal cancelled during sampling")

        start = time.perf_counter()
        try:
            success, metric = self._unpack(self.task_fn(agent_id, dict(parameters), scenario))
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000.0
            logger.debug(f"Trial {scenario.index} for '{agent_id}' failed: {e}")
            return TrialResultV1(
                round=scenario.index,
                success=False,
                duration_ms=duration_ms,
                error=f"{type(e).__name__}: {e}",
            )
        duration_ms = (time.perf_counter() - start) * 1000.0

        if not math.isfinite(metric):
            return TrialResultV1(
                round=scenario.index,
                success=False,
                duration_ms=duration_ms,
                error=f"non-finite metric {metric}",
            )

        return TrialResultV1(
            round=scenario.index,
            success=success,
            metric_value=metric if success else 0.0,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _unpack(outcome: TaskOutcome) -> Tuple[bool, float]:
        """Normalize a task outcome to (success, metric).

        Raises:
            TypeError: If the outcome is neither a number nor a (success, metric) pair
        """
        if isinstance(outcome, tuple):
            if len(outcome) != 2:
                raise TypeError(f"expected (success, metric), got a {len(outcome)}-tuple")
            return bool(outcome[0]), float(outcome[1])
        if outcome is None or isinstance(outcome, bool):
            raise TypeError(f"task returned {outcome!r} instead of a metric")
        return True, float(outcome)
