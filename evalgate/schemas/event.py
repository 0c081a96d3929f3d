"""Lifecycle event schema."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from evalgate.schemas.comparison import StatisticalComparisonV1


class EventType(str, Enum):
    """Externally visible lifecycle outcomes."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    AWAITING_APPROVAL = "awaiting_approval"


class LifecycleEventV1(BaseModel):
    """Event emitted for subscribers (dashboards, notifications, audit)."""

    model_config = ConfigDict(ser_json_inf_nan="constants")

    event_type: EventType
    proposal_id: str
    agent_id: str
    comparison: Optional[StatisticalComparisonV1] = None
    reason: Optional[str] = None
    committed_version: Optional[int] = None
    emitted_at: datetime = Field(default_factory=datetime.now)


TERMINAL_EVENT_TYPES = frozenset(
    {EventType.COMMITTED, EventType.ROLLED_BACK, EventType.FAILED}
)
