"""Exception taxonomy for the enhancement validation engine."""

from typing import Optional


class EvalGateError(Exception):
    """Base class for all evalgate errors."""


class LockContentionError(EvalGateError):
    """Another proposal is already in flight for the agent."""

    def __init__(self, agent_id: str, holder: Optional[str] = None):
        self.agent_id = agent_id
        self.holder = holder
        msg = f"Agent '{agent_id}' already has a proposal in flight"
        if holder:
            msg += f" ({holder})"
        super().__init__(msg)


class SamplerTrialError(EvalGateError):
    """A single trial failed. Absorbed into a failed TrialResult."""


class SamplerFatalError(EvalGateError):
    """The sampler violated its contract or could not run the batch."""


class InsufficientSampleError(EvalGateError):
    """A summary has too few successful trials; no verdict may be given.

    ``baseline_n`` and ``candidate_n`` count successful trials, the ones the
    statistics are computed from.
    """

    def __init__(self, baseline_n: int, candidate_n: int, minimum: int):
        self.baseline_n = baseline_n
        self.candidate_n = candidate_n
        self.minimum = minimum
        super().__init__(
            f"Insufficient sample: {baseline_n} successful baseline trials, "
            f"{candidate_n} successful candidate trials "
            f"(minimum {minimum})"
        )


class PersistenceError(EvalGateError):
    """A durable write or read did not complete."""


class StaleConfigurationError(EvalGateError):
    """The committed configuration changed since the proposal read it."""

    def __init__(self, agent_id: str, expected_version: int, actual_version: Optional[int]):
        self.agent_id = agent_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Configuration for '{agent_id}' is at version {actual_version}, "
            f"expected {expected_version}"
        )


class InvalidTransitionError(EvalGateError):
    """A lifecycle transition is not allowed from the current state."""


class InvalidDeltaError(EvalGateError):
    """A parameter delta references unknown parameters or is empty."""


class UnknownAgentError(EvalGateError):
    """No committed configuration exists for the agent."""


class UnknownProposalError(EvalGateError):
    """No lifecycle record exists for the proposal."""


class ApprovalConflictError(EvalGateError):
    """A different decision was already recorded for an approval request."""


class EngineModeError(EvalGateError):
    """The engine's mode does not accept the requested operation."""


class ProposalCancelledError(EvalGateError):
    """Raised inside a running stage when its proposal has been cancelled."""
