"""Human approval request schema."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Decision(str, Enum):
    """Human reviewer decision."""

    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalRequestV1(BaseModel):
    """A pending or decided approval request, persisted across restarts."""

    request_id: str
    proposal_id: str
    agent_id: str
    summary: Dict[str, Any] = Field(default_factory=dict)
    submitted_at: datetime = Field(default_factory=datetime.now)

    decision: Optional[Decision] = None
    decided_at: Optional[datetime] = None
    applied: bool = False  # Set once the proposal no longer needs this request

    @property
    def is_pending(self) -> bool:
        """Waiting for a decision and not withdrawn."""
        return self.decision is None and not self.applied
