"""Learned-pattern history schema."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from evalgate.schemas.proposal import ProposalState


class PatternRecordV1(BaseModel):
    """What a proposal tried and how it turned out."""

    model_config = ConfigDict(ser_json_inf_nan="constants")

    agent_id: str
    proposal_id: str
    delta: Dict[str, float]
    outcome: ProposalState
    improvement_pct: Optional[float] = None
    effect_size: Optional[float] = None
    p_value: Optional[float] = None
    recorded_at: datetime = Field(default_factory=datetime.now)
