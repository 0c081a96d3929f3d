"""Committed agent configuration schema."""

from datetime import datetime
from typing import Dict

from pydantic import BaseModel, Field, field_validator


def check_agent_id(agent_id: str) -> str:
    """Validate an agent ID for use as a storage key segment.

    Agent IDs prefix per-agent keys (``lifecycle/{agent_id}/...``), so a
    ``/`` would let one agent's listing pick up another's records.
    """
    if not agent_id.strip():
        raise ValueError("agent_id must not be empty")
    if "/" in agent_id:
        raise ValueError("agent_id must not contain '/'")
    return agent_id


class AgentConfigurationV1(BaseModel):
    """The single committed parameter set for one agent.

    Created once at registration (version 1) and replaced only by commits,
    each of which increments ``version`` by exactly one.
    """

    agent_id: str = Field(..., description="Agent identifier")
    parameters: Dict[str, float] = Field(..., description="Tunable parameters")
    version: int = Field(default=1, description="Monotonic commit version")
    committed_at: datetime = Field(default_factory=datetime.now)

    @field_validator("agent_id")
    @classmethod
    def agent_id_must_be_key_safe(cls, v: str) -> str:
        return check_agent_id(v)

    @field_validator("version")
    @classmethod
    def version_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("version must be >= 1")
        return v
