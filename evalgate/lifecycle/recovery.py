"""Restart recovery for in-flight proposals.

After a crash every non-terminal lifecycle record is resumed from its last
persisted state. Only the stage that was in progress is re-run; stages that
already reached a durable state are not repeated.
"""

import logging
from typing import List, Optional

from evalgate.approval.gate import HumanApprovalGate
from evalgate.lifecycle.orchestrator import EnhancementOrchestrator
from evalgate.schemas.lifecycle_record import LifecycleRecordV1
from evalgate.schemas.proposal import ProposalState
from evalgate.storage.lifecycle_store import LifecycleStore

logger = logging.getLogger(__name__)


class RecoveryManager:
    """Finds unfinished proposals and hands them back to the orchestrator."""

    def __init__(
        self,
        orchestrator: EnhancementOrchestrator,
        lifecycle_store: LifecycleStore,
        approval_gate: Optional[HumanApprovalGate] = None,
    ):
        self.orchestrator = orchestrator
        self.lifecycle_store = lifecycle_store
        self.approval_gate = approval_gate

    def pending_records(self) -> List[LifecycleRecordV1]:
        """Non-terminal records, oldest first."""
        return self.lifecycle_store.list(non_terminal_only=True)

    def resume(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        """Resume one record from its persisted state."""
        logger.info(
            f"Resuming {record.proposal_id} for '{record.agent_id}' from {record.state.value}"
        )
        if record.state == ProposalState.AWAITING_APPROVAL:
            return self.orchestrator.resume_awaiting(record)
        return self.orchestrator.drive(record)

    def recover(self) -> List[LifecycleRecordV1]:
        """Resume every unfinished proposal.

        Returns:
            The resumed records in their post-recovery state
        """
        records = self.pending_records()
        if not records:
            logger.info("Recovery: no unfinished proposals")
            self.close_orphaned_decisions()
            return []

        logger.info(f"Recovery: resuming {len(records)} unfinished proposal(s)")
        resumed = [self.resume(record) for record in records]
        self.close_orphaned_decisions()

        finished = sum(1 for r in resumed if r.is_terminal)
        logger.info(
            f"Recovery complete: {finished} finished, {len(resumed) - finished} still waiting"
        )
        return resumed

    def close_orphaned_decisions(self) -> None:
        """Mark decisions whose proposal already finished as applied."""
        if self.approval_gate is None:
            return
        for request in self.approval_gate.decided_unapplied():
            record = self.lifecycle_store.get(request.proposal_id)
            if record is None or record.is_terminal:
                self.approval_gate.mark_applied(request.request_id)
