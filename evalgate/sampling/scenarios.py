"""Seeded scenario generation.

Baseline and candidate batches of one proposal run over the same scenario set,
so both are derived from a single seed fixed when the proposal is created.
"""

import hashlib
from dataclasses import dataclass
from typing import Iterator, List

import numpy as np


@dataclass(frozen=True)
class Scenario:
    """One logical trial input: its index in the batch and its own seed."""

    index: int
    seed: int


def derive_scenario_seed(proposal_id: str) -> int:
    """Stable 63-bit seed derived from a proposal ID."""
    digest = hashlib.sha256(proposal_id.encode("utf-8")).hexdigest()
    return int(digest[:16], 16) & 0x7FFFFFFFFFFFFFFF


class ScenarioSet:
    """Deterministic list of scenarios for a (seed, count) pair.

    Example:
        >>> a = ScenarioSet(seed=7, count=3)
        >>> b = ScenarioSet(seed=7, count=3)
        >>> [s.seed for s in a] == [s.seed for s in b]
        True
    """

    def __init__(self, seed: int, count: int):
        if count <= 0:
            raise ValueError("count must be > 0")
        self.seed = seed
        self.count = count

        children = np.random.SeedSequence(seed).spawn(count)
        self.scenarios: List[Scenario] = [
            Scenario(index=i, seed=int(child.generate_state(1, dtype=np.uint64)[0]) >> 1)
            for i, child in enumerate(children)
        ]

    def __iter__(self) -> Iterator[Scenario]:
        return iter(self.scenarios)

    def __len__(self) -> int:
        return self.count
