"""Allowed lifecycle transitions."""

from typing import Dict, FrozenSet, Optional

from evalgate.errors import InvalidTransitionError
from evalgate.schemas.proposal import ProposalState

S = ProposalState

ALLOWED_TRANSITIONS: Dict[ProposalState, FrozenSet[ProposalState]] = {
    S.CREATED: frozenset({S.BASELINING, S.FAILED, S.ROLLED_BACK}),
    S.BASELINING: frozenset({S.BASELINED, S.FAILED, S.ROLLED_BACK}),
    S.BASELINED: frozenset({S.EVALUATING, S.FAILED, S.ROLLED_BACK}),
    S.EVALUATING: frozenset({S.EVALUATED, S.FAILED, S.ROLLED_BACK}),
    S.EVALUATED: frozenset({S.COMMITTED, S.AWAITING_APPROVAL, S.ROLLED_BACK, S.FAILED}),
    S.AWAITING_APPROVAL: frozenset({S.COMMITTED, S.ROLLED_BACK, S.FAILED}),
    S.COMMITTED: frozenset(),
    S.ROLLED_BACK: frozenset(),
    S.FAILED: frozenset(),
}


def can_transition(from_state: Optional[ProposalState], to_state: ProposalState) -> bool:
    if from_state is None:
        return to_state == S.CREATED
    return to_state in ALLOWED_TRANSITIONS[from_state]


def check_transition(from_state: Optional[ProposalState], to_state: ProposalState) -> None:
    """Raise InvalidTransitionError unless from_state → to_state is allowed."""
    if not can_transition(from_state, to_state):
        source = from_state.value if from_state else "<new>"
        raise InvalidTransitionError(f"Invalid transition {source} → {to_state.value}")
