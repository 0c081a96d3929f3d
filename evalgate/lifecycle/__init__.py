"""Enhancement lifecycle: state machine, locks, deltas, proposers and recovery."""

from evalgate.lifecycle.delta import apply_delta, impact_score, validate_delta
from evalgate.lifecycle.locks import AgentLockRegistry
from evalgate.lifecycle.orchestrator import EnhancementOrchestrator
from evalgate.lifecycle.proposers import (
    DeltaProposer,
    GaussianDeltaProposer,
    PatternGuidedProposer,
)
from evalgate.lifecycle.recovery import RecoveryManager
from evalgate.lifecycle.states import ALLOWED_TRANSITIONS, can_transition, check_transition

__all__ = [
    "EnhancementOrchestrator",
    "RecoveryManager",
    "AgentLockRegistry",
    "DeltaProposer",
    "GaussianDeltaProposer",
    "PatternGuidedProposer",
    "apply_delta",
    "impact_score",
    "validate_delta",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "check_transition",
]
