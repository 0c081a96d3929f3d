"""Pydantic schemas for all evalgate records and configuration."""

from evalgate.schemas.agent_config import AgentConfigurationV1
from evalgate.schemas.approval import ApprovalRequestV1, Decision
from evalgate.schemas.comparison import StatisticalComparisonV1
from evalgate.schemas.engine_config import (
    ApprovalConfigV1,
    BusyPolicy,
    EngineConfigV1,
    FleetConfigV1,
    GateThresholdsV1,
    Mode,
    SamplingConfigV1,
    load_engine_config,
)
from evalgate.schemas.event import TERMINAL_EVENT_TYPES, EventType, LifecycleEventV1
from evalgate.schemas.lifecycle_record import (
    FailureReason,
    LifecycleRecordV1,
    RollbackReason,
    TransitionV1,
)
from evalgate.schemas.pattern import PatternRecordV1
from evalgate.schemas.proposal import (
    TERMINAL_STATES,
    EnhancementProposalV1,
    ProposalRequestV1,
    ProposalState,
)
from evalgate.schemas.trial import PerformanceSummaryV1, TrialResultV1

__all__ = [
    # Agent configuration
    "AgentConfigurationV1",
    # Proposal
    "EnhancementProposalV1",
    "ProposalRequestV1",
    "ProposalState",
    "TERMINAL_STATES",
    # Trials
    "TrialResultV1",
    "PerformanceSummaryV1",
    # Comparison
    "StatisticalComparisonV1",
    # Lifecycle record
    "LifecycleRecordV1",
    "TransitionV1",
    "FailureReason",
    "RollbackReason",
    # Approval
    "ApprovalRequestV1",
    "Decision",
    # Events
    "EventType",
    "TERMINAL_EVENT_TYPES",
    "LifecycleEventV1",
    # Patterns
    "PatternRecordV1",
    # Engine config
    "EngineConfigV1",
    "GateThresholdsV1",
    "SamplingConfigV1",
    "ApprovalConfigV1",
    "FleetConfigV1",
    "Mode",
    "BusyPolicy",
    "load_engine_config",
]
