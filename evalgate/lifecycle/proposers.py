"""Delta proposers: generate a candidate change when a request carries none."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

import numpy as np

from evalgate.schemas.proposal import ProposalState
from evalgate.storage.pattern_history import PatternHistory

logger = logging.getLogger(__name__)


class DeltaProposer(ABC):
    """Proposes an additive parameter delta for an agent."""

    @abstractmethod
    def propose(self, agent_id: str, parameters: Dict[str, float]) -> Dict[str, float]:
        """Return a delta over (a subset of) ``parameters``."""
        pass


class GaussianDeltaProposer(DeltaProposer):
    """Random relative perturbation of every parameter.

    Each parameter moves by N(0, step_scale * max(|value|, 1)).
    """

    def __init__(self, step_scale: float = 0.1, seed: Optional[int] = None):
        if step_scale <= 0:
            raise ValueError("step_scale must be positive")
        self.step_scale = step_scale
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def propose(self, agent_id: str, parameters: Dict[str, float]) -> Dict[str, float]:
        delta = {}
        with self._lock:
            for name in sorted(parameters):
                scale = self.step_scale * max(abs(parameters[name]), 1.0)
                delta[name] = float(self._rng.normal(0.0, scale))
        return delta


class PatternGuidedProposer(DeltaProposer):
    """Keeps moving in the direction of the agent's last committed change.

    If the agent's most recent finished proposal committed, its delta is
    repeated scaled by ``momentum``; otherwise the fallback proposer explores.
    """

    def __init__(
        self,
        history: PatternHistory,
        fallback: Optional[DeltaProposer] = None,
        momentum: float = 0.5,
    ):
        if momentum <= 0:
            raise ValueError("momentum must be positive")
        self.history = history
        self.fallback = fallback or GaussianDeltaProposer()
        self.momentum = momentum

    def propose(self, agent_id: str, parameters: Dict[str, float]) -> Dict[str, float]:
        patterns = self.history.for_agent(agent_id)
        if patterns and patterns[-1].outcome == ProposalState.COMMITTED:
            last = patterns[-1]
            delta = {
                name: change * self.momentum
                for name, change in last.delta.items()
                if name in parameters and change != 0.0
            }
            if delta:
                logger.info(
                    f"Proposing momentum step for '{agent_id}' from {last.proposal_id}"
                )
                return delta

        return self.fallback.propose(agent_id, parameters)
