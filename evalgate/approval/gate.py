"""Human approval gate for high-impact proposals.

Requests and decisions are persisted, so a decision that arrives after a
restart still resolves the right proposal.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from evalgate.errors import ApprovalConflictError, UnknownProposalError
from evalgate.schemas.approval import ApprovalRequestV1, Decision
from evalgate.storage.interface import KeyValueStoreInterface

logger = logging.getLogger(__name__)

APPROVAL_PREFIX = "approval/"

DecisionHandler = Callable[[ApprovalRequestV1], None]


class ApprovalChannel(ABC):
    """Delivers approval requests to humans (chat, email, ticket queue...)."""

    @abstractmethod
    def notify(self, request: ApprovalRequestV1) -> None:
        """Announce a new approval request. Decisions come back via on_decision."""
        pass


class LoggingApprovalChannel(ApprovalChannel):
    """Channel that only logs requests; decisions are entered via the CLI."""

    def notify(self, request: ApprovalRequestV1) -> None:
        summary = request.summary
        logger.warning(
            f"Approval required for proposal {request.proposal_id} "
            f"(agent '{request.agent_id}', request {request.request_id}): "
            f"improvement={summary.get('improvement_pct', 0.0):.1%}, "
            f"impact={summary.get('impact_score', 0.0):.3f}"
        )


class HumanApprovalGate:
    """Durable approval requests with an asynchronous decision callback."""

    def __init__(
        self,
        store: KeyValueStoreInterface,
        channel: Optional[ApprovalChannel] = None,
    ):
        """Initialize approval gate.

        Args:
            store: Durable key-value store
            channel: Optional notification channel
        """
        self.store = store
        self.channel = channel
        self._handler: Optional[DecisionHandler] = None
        self._lock = threading.RLock()

    @staticmethod
    def _key(request_id: str) -> str:
        return f"{APPROVAL_PREFIX}{request_id}"

    def set_decision_handler(self, handler: Optional[DecisionHandler]) -> None:
        """Register the callback invoked when a decision is recorded."""
        self._handler = handler

    def submit(self, proposal_summary: Dict[str, Any], request_id: Optional[str] = None) -> str:
        """Submit a proposal for review.

        Idempotent by ``request_id``: re-submitting an existing request (e.g.
        during recovery) keeps its stored state and re-notifies only if it is
        still pending.

        Args:
            proposal_summary: Must contain ``proposal_id`` and ``agent_id``
            request_id: Optional caller-chosen ID

        Returns:
            The request ID
        """
        request_id = request_id or f"apr_{uuid.uuid4().hex[:12]}"

        with self._lock:
            existing = self.get(request_id)
            if existing is None:
                request = ApprovalRequestV1(
                    request_id=request_id,
                    proposal_id=proposal_summary["proposal_id"],
                    agent_id=proposal_summary["agent_id"],
                    summary=dict(proposal_summary),
                )
                self.store.put(self._key(request_id), request.model_dump_json())
                logger.info(
                    f"Approval request {request_id} submitted for proposal "
                    f"{request.proposal_id}"
                )
            else:
                request = existing

        if request.is_pending and self.channel is not None:
            self.channel.notify(request)
        return request_id

    def on_decision(self, request_id: str, decision: Decision | str) -> ApprovalRequestV1:
        """Record a decision and hand it to the decision handler.

        Repeating the same decision is a no-op; a different decision for an
        already-decided request raises ApprovalConflictError.

        Raises:
            UnknownProposalError: If the request ID is unknown
            ApprovalConflictError: If a different decision was already recorded
        """
        decision = Decision(decision)

        with self._lock:
            request = self.get(request_id)
            if request is None:
                raise UnknownProposalError(f"Unknown approval request '{request_id}'")

            if request.decision is not None:
                if request.decision != decision:
                    raise ApprovalConflictError(
                        f"Request {request_id} already {request.decision.value}, "
                        f"cannot record {decision.value}"
                    )
                if request.applied:
                    logger.info(f"Decision for {request_id} already applied")
                    return request
            else:
                request.decision = decision
                request.decided_at = datetime.now()
                self.store.put(self._key(request_id), request.model_dump_json())
                logger.info(f"Approval request {request_id}: {decision.value}")

        handler = self._handler
        if handler is None:
            logger.warning(
                f"No decision handler registered; decision for {request_id} "
                f"stays pending until recovery"
            )
        else:
            handler(request)
        return request

    def mark_applied(self, request_id: str) -> None:
        """Mark a decision as acted upon by the orchestrator."""
        with self._lock:
            request = self.get(request_id)
            if request is None or request.applied:
                return
            request.applied = True
            self.store.put(self._key(request_id), request.model_dump_json())

    def get(self, request_id: str) -> Optional[ApprovalRequestV1]:
        raw = self.store.get(self._key(request_id))
        if raw is None:
            return None
        return ApprovalRequestV1.model_validate_json(raw)

    def list_requests(self) -> List[ApprovalRequestV1]:
        requests = []
        for key in self.store.keys(APPROVAL_PREFIX):
            raw = self.store.get(key)
            if raw is not None:
                requests.append(ApprovalRequestV1.model_validate_json(raw))
        requests.sort(key=lambda r: r.submitted_at)
        return requests

    def pending(self) -> List[ApprovalRequestV1]:
        """Requests still waiting for a human decision."""
        return [r for r in self.list_requests() if r.is_pending]

    def decided_unapplied(self) -> List[ApprovalRequestV1]:
        """Decisions recorded but not yet acted upon (e.g. arrived while down)."""
        return [r for r in self.list_requests() if r.decision is not None and not r.applied]
