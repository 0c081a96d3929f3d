"""Sampler interface.

A sampler executes N independent trials of an agent's task under a fixed
parameter set. It is the only place the engine touches "how the agent actually
performs its task".
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from evalgate.errors import ProposalCancelledError, SamplerFatalError
from evalgate.sampling.scenarios import Scenario, ScenarioSet
from evalgate.schemas.trial import TrialResultV1

logger = logging.getLogger(__name__)


class Sampler(ABC):
    """Base class for samplers.

    ``run`` is all-or-nothing: it returns exactly ``scenario_count`` results
    (one per scenario, successful or failed) or raises SamplerFatalError.
    Summaries of different sample sizes are never compared silently.
    """

    def run(
        self,
        agent_id: str,
        parameters: Dict[str, float],
        scenario_count: int,
        scenario_seed: int = 0,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[TrialResultV1]:
        """Execute a batch of trials.

        Args:
            agent_id: Agent identifier
            parameters: Parameter set to run under
            scenario_count: Number of trials
            scenario_seed: Seed shared by the baseline and candidate batches
            cancel_event: Set when the owning proposal is cancelled

        Returns:
            Trial results ordered by round

        Raises:
            SamplerFatalError: Contract violation or batch-level failure
            ProposalCancelledError: cancel_event was set during the batch
        """
        if scenario_count <= 0:
            raise SamplerFatalError(f"scenario_count must be > 0, got {scenario_count}")

        scenarios = ScenarioSet(scenario_seed, scenario_count)
        self._check_cancelled(cancel_event)

        try:
            trials = self._execute(agent_id, dict(parameters), scenarios.scenarios, cancel_event)
        except (SamplerFatalError, ProposalCancelledError):
            raise
        except Exception as e:
            raise SamplerFatalError(f"Sampler failed for '{agent_id}': {e}") from e

        self._check_cancelled(cancel_event)

        if len(trials) != scenario_count:
            raise SamplerFatalError(
                f"Sampler returned {len(trials)} results for '{agent_id}', "
                f"expected {scenario_count}"
            )
        rounds = sorted(t.round for t in trials)
        if rounds != list(range(scenario_count)):
            raise SamplerFatalError(
                f"Sampler returned duplicate or out-of-range rounds for '{agent_id}'"
            )

        failed = sum(1 for t in trials if not t.success)
        logger.debug(
            f"Sampled {scenario_count} trials for '{agent_id}' "
            f"({failed} failed, seed={scenario_seed})"
        )
        return sorted(trials, key=lambda t: t.round)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ProposalCancelledError("Proposal cancelled during sampling")

    @abstractmethod
    def _execute(
        self,
        agent_id: str,
        parameters: Dict[str, float],
        scenarios: List[Scenario],
        cancel_event: Optional[threading.Event],
    ) -> List[TrialResultV1]:
        """Run one trial per scenario. Per-trial failures become failed results."""
        pass
