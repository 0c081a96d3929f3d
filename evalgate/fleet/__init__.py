"""Fleet coordination across many agents."""

from evalgate.fleet.coordinator import FleetCoordinator, ProposalHandle
from evalgate.fleet.metrics import FleetMetrics

__all__ = ["FleetCoordinator", "ProposalHandle", "FleetMetrics"]
