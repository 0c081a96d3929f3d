"""Learned-pattern history: what each proposal tried and how it went."""

import logging
from typing import List, Optional

from evalgate.schemas.pattern import PatternRecordV1
from evalgate.schemas.proposal import ProposalState
from evalgate.storage.interface import KeyValueStoreInterface

logger = logging.getLogger(__name__)

PATTERN_PREFIX = "patterns/"


class PatternHistory:
    """Durable per-agent history of proposal outcomes."""

    def __init__(self, store: KeyValueStoreInterface):
        self.store = store

    def record(self, pattern: PatternRecordV1) -> None:
        """Store a pattern. Re-recording the same proposal replaces it."""
        key = f"{PATTERN_PREFIX}{pattern.agent_id}/{pattern.proposal_id}"
        self.store.put(key, pattern.model_dump_json())
        logger.debug(
            f"Recorded pattern for '{pattern.agent_id}' ({pattern.proposal_id}): "
            f"{pattern.outcome.value}"
        )

    def for_agent(self, agent_id: str) -> List[PatternRecordV1]:
        """All patterns for an agent, oldest first."""
        patterns = []
        for key in self.store.keys(f"{PATTERN_PREFIX}{agent_id}/"):
            raw = self.store.get(key)
            if raw is not None:
                patterns.append(PatternRecordV1.model_validate_json(raw))
        patterns.sort(key=lambda p: p.recorded_at)
        return patterns

    def best(self, agent_id: str) -> Optional[PatternRecordV1]:
        """The committed pattern with the largest measured improvement."""
        committed = [
            p
            for p in self.for_agent(agent_id)
            if p.outcome == ProposalState.COMMITTED and p.improvement_pct is not None
        ]
        if not committed:
            return None
        return max(committed, key=lambda p: p.improvement_pct)

    def success_rate(self, agent_id: str) -> float:
        """Fraction of finished proposals for the agent that committed."""
        patterns = self.for_agent(agent_id)
        if not patterns:
            return 0.0
        committed = sum(1 for p in patterns if p.outcome == ProposalState.COMMITTED)
        return committed / len(patterns)
