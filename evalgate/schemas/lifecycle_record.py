"""Durable lifecycle record schema.

The lifecycle record is what recovery reads back after a restart. It is a
projection of the proposal plus everything measured for it, and its
``transitions`` list is the durable audit trail of the proposal.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from evalgate.schemas.comparison import StatisticalComparisonV1
from evalgate.schemas.proposal import EnhancementProposalV1, ProposalState
from evalgate.schemas.trial import PerformanceSummaryV1


class FailureReason(str, Enum):
    """Structured reason for a ``failed`` proposal."""

    LOCK_CONTENTION = "lock_contention"
    SAMPLER_FATAL = "sampler_fatal"
    INSUFFICIENT_SAMPLE = "insufficient_sample"
    PERSISTENCE_FAILURE = "persistence_failure"
    STALE_CONFIGURATION = "stale_configuration"
    INVALID_DELTA = "invalid_delta"
    UNKNOWN_AGENT = "unknown_agent"
    INTERNAL_ERROR = "internal_error"


class RollbackReason(str, Enum):
    """Structured reason for a ``rolled_back`` proposal."""

    STATISTICAL_REJECTION = "statistical_rejection"
    APPROVAL_REJECTED = "approval_rejected"
    CANCELLED = "cancelled"
    OBSERVE_MODE = "observe_mode"


class TransitionV1(BaseModel):
    """One recorded state change."""

    from_state: Optional[ProposalState] = None
    to_state: ProposalState
    at: datetime = Field(default_factory=datetime.now)
    note: str = ""


class LifecycleRecordV1(BaseModel):
    """Durable projection of a proposal, its summaries and its comparison."""

    model_config = ConfigDict(ser_json_inf_nan="constants")

    proposal: EnhancementProposalV1

    # Read at creation time; the commit is checked against it
    base_version: int

    scenario_count: int
    scenario_seed: int

    baseline_summary: Optional[PerformanceSummaryV1] = None
    candidate_summary: Optional[PerformanceSummaryV1] = None
    comparison: Optional[StatisticalComparisonV1] = None
    impact_score: Optional[float] = None

    approval_request_id: Optional[str] = None
    failure_reason: Optional[FailureReason] = None
    failure_detail: Optional[str] = None
    rollback_reason: Optional[RollbackReason] = None
    committed_version: Optional[int] = None
    commit_attempts: int = 0

    transitions: List[TransitionV1] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def proposal_id(self) -> str:
        return self.proposal.proposal_id

    @property
    def agent_id(self) -> str:
        return self.proposal.agent_id

    @property
    def state(self) -> ProposalState:
        return self.proposal.state

    @property
    def is_terminal(self) -> bool:
        return self.proposal.state.is_terminal

    @property
    def reason(self) -> Optional[str]:
        """Terminal reason as a plain string (failure or rollback)."""
        if self.failure_reason is not None:
            return self.failure_reason.value
        if self.rollback_reason is not None:
            return self.rollback_reason.value
        return None
