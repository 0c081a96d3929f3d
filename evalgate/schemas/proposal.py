"""Enhancement proposal schemas and lifecycle states."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from evalgate.schemas.agent_config import check_agent_id


class ProposalState(str, Enum):
    """Lifecycle states of an enhancement proposal."""

    CREATED = "created"
    BASELINING = "baselining"
    BASELINED = "baselined"
    EVALUATING = "evaluating"
    EVALUATED = "evaluated"
    AWAITING_APPROVAL = "awaiting_approval"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {ProposalState.COMMITTED, ProposalState.ROLLED_BACK, ProposalState.FAILED}
)


class ProposalRequestV1(BaseModel):
    """Request to run one enhancement proposal for an agent.

    When ``delta`` is omitted the engine's delta proposer generates one.
    """

    agent_id: str
    delta: Optional[Dict[str, float]] = Field(
        None, description="Additive change per existing parameter"
    )
    scenario_count: Optional[int] = Field(None, description="Override trial count")
    description: str = ""

    @field_validator("agent_id")
    @classmethod
    def agent_id_must_be_key_safe(cls, v: str) -> str:
        return check_agent_id(v)

    @field_validator("scenario_count")
    @classmethod
    def scenario_count_must_be_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("scenario_count must be > 0")
        return v


class EnhancementProposalV1(BaseModel):
    """A candidate parameter change for one agent."""

    proposal_id: str
    agent_id: str
    baseline_config: Dict[str, float]
    candidate_config: Optional[Dict[str, float]] = None  # Tentative until committed
    delta: Dict[str, float] = Field(default_factory=dict)
    state: ProposalState = ProposalState.CREATED
    created_at: datetime = Field(default_factory=datetime.now)
    description: str = ""
