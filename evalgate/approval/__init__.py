"""Human approval escalation."""

from evalgate.approval.gate import (
    ApprovalChannel,
    DecisionHandler,
    HumanApprovalGate,
    LoggingApprovalChannel,
)

__all__ = [
    "ApprovalChannel",
    "DecisionHandler",
    "HumanApprovalGate",
    "LoggingApprovalChannel",
]
