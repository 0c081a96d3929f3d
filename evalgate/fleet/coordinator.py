"""Fleet coordinator: runs many agents' lifecycles concurrently.

At most ``max_concurrency`` lifecycles run at once (a bounded thread pool),
and at most one proposal per agent is in flight (the agent lock). A proposal
suspended awaiting approval gives its worker back but keeps its agent busy.
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from evalgate.approval.gate import HumanApprovalGate
from evalgate.errors import EngineModeError
from evalgate.lifecycle.orchestrator import EnhancementOrchestrator
from evalgate.lifecycle.recovery import RecoveryManager
from evalgate.monitoring.events import EventBus
from evalgate.schemas.approval import ApprovalRequestV1, Decision
from evalgate.schemas.engine_config import BusyPolicy, Mode
from evalgate.schemas.event import TERMINAL_EVENT_TYPES, LifecycleEventV1
from evalgate.schemas.lifecycle_record import LifecycleRecordV1
from evalgate.schemas.proposal import ProposalRequestV1

logger = logging.getLogger(__name__)


@dataclass
class ProposalHandle:
    """Future-like handle for a submitted proposal.

    ``result()`` returns the lifecycle record at its next suspension point
    (``awaiting_approval``) or terminal state.
    """

    proposal_id: str
    agent_id: str
    future: "Future[LifecycleRecordV1]" = field(repr=False)

    def result(self, timeout: Optional[float] = None) -> LifecycleRecordV1:
        return self.future.result(timeout=timeout)

    def done(self) -> bool:
        return self.future.done()


def _completed(record: LifecycleRecordV1) -> "Future[LifecycleRecordV1]":
    future: Future = Future()
    future.set_result(record)
    return future


def _chain(source: Future, target: Future) -> None:
    """Copy the outcome of ``source`` into ``target`` once it finishes."""

    def _copy(done: Future) -> None:
        if done.cancelled():
            target.cancel()
        elif done.exception() is not None:
            target.set_exception(done.exception())
        else:
            target.set_result(done.result())

    source.add_done_callback(_copy)


class FleetCoordinator:
    """Schedules lifecycles across a fleet under a global concurrency cap."""

    def __init__(
        self,
        orchestrator: EnhancementOrchestrator,
        events: EventBus,
        recovery: RecoveryManager,
        approval_gate: Optional[HumanApprovalGate] = None,
        max_concurrency: int = 4,
        busy_policy: BusyPolicy = BusyPolicy.REJECT,
        mode: Mode = Mode.ACTIVE,
    ):
        """Initialize coordinator.

        Args:
            orchestrator: Lifecycle orchestrator shared by all agents
            events: Event bus (used to learn when an agent frees up)
            recovery: Recovery manager for restart handling
            approval_gate: Optional approval gate whose decisions run on the pool
            max_concurrency: Global cap K on concurrently running lifecycles
            busy_policy: Reject or queue requests for busy agents
            mode: Engine mode
        """
        self.orchestrator = orchestrator
        self.events = events
        self.recovery = recovery
        self.approval_gate = approval_gate
        self.max_concurrency = max_concurrency
        self.busy_policy = busy_policy
        self.mode = mode

        self._pool = ThreadPoolExecutor(
            max_workers=max_concurrency, thread_name_prefix="evalgate-lifecycle"
        )
        self._lock = threading.RLock()
        self._active: Dict[str, str] = {}
        self._queues: Dict[str, Deque[Tuple[LifecycleRecordV1, Future]]] = {}
        self._decision_futures: Dict[str, Future] = {}
        self._closed = False

        events.subscribe(self._on_event)
        if approval_gate is not None:
            approval_gate.set_decision_handler(self._dispatch_decision)

        logger.info(
            f"Fleet coordinator ready (K={max_concurrency}, busy_policy={busy_policy.value}, "
            f"mode={mode.value})"
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, request: ProposalRequestV1) -> ProposalHandle:
        """Submit one proposal request.

        Raises:
            EngineModeError: If the engine is paused or shut down
        """
        self._check_accepting()

        record = self.orchestrator.create(request)
        if record.is_terminal:
            return ProposalHandle(record.proposal_id, record.agent_id, _completed(record))

        agent_id = record.agent_id
        with self._lock:
            holder = self._active.get(agent_id) or self.orchestrator.locks.holder(agent_id)
            if holder is None:
                self._active[agent_id] = record.proposal_id
                future = self._pool.submit(self.orchestrator.drive, record)
                return ProposalHandle(record.proposal_id, agent_id, future)

            if self.busy_policy == BusyPolicy.QUEUE:
                future = Future()
                self._queues.setdefault(agent_id, deque()).append((record, future))
                logger.info(
                    f"Queued {record.proposal_id} for '{agent_id}' behind {holder} "
                    f"({len(self._queues[agent_id])} waiting)"
                )
                return ProposalHandle(record.proposal_id, agent_id, future)

        rejected = self.orchestrator.reject_contended(record, holder)
        return ProposalHandle(rejected.proposal_id, agent_id, _completed(rejected))

    def submit_many(self, requests: Iterable[ProposalRequestV1]) -> List[ProposalHandle]:
        """Submit several requests; they run subject to the concurrency cap."""
        return [self.submit(request) for request in requests]

    def resolve_approval(self, request_id: str, decision: Decision | str) -> ProposalHandle:
        """Record a human decision; the resulting commit or rollback runs on the pool.

        Raises:
            EngineModeError: If no approval gate is configured
            UnknownProposalError: If the request ID is unknown
            ApprovalConflictError: If a different decision was already recorded
        """
        if self.approval_gate is None:
            raise EngineModeError("Human approval is not enabled")

        request = self.approval_gate.on_decision(request_id, decision)
        with self._lock:
            future = self._decision_futures.pop(request_id, None)
        if future is None:
            future = _completed(self.orchestrator.lifecycle_store.require(request.proposal_id))
        return ProposalHandle(request.proposal_id, request.agent_id, future)

    def cancel(self, proposal_id: str) -> LifecycleRecordV1:
        """Cancel a proposal (queued, running or awaiting approval)."""
        queued = self._remove_queued(proposal_id)
        record = self.orchestrator.cancel(proposal_id)
        if queued is not None:
            queued.set_result(record)
        return record

    def recover(self) -> List[ProposalHandle]:
        """Resume every unfinished proposal on the pool."""
        self._check_accepting(allow_paused=True)
        self.recovery.close_orphaned_decisions()

        handles = []
        for record in self.recovery.pending_records():
            agent_id = record.agent_id
            with self._lock:
                if agent_id in self._active:
                    # Later proposals for the same agent wait for the first one
                    future = Future()
                    self._queues.setdefault(agent_id, deque()).append((record, future))
                else:
                    self._active[agent_id] = record.proposal_id
                    future = self._pool.submit(self.recovery.resume, record)
            handles.append(ProposalHandle(record.proposal_id, agent_id, future))

        if handles:
            logger.info(f"Recovery dispatched {len(handles)} proposal(s)")
        return handles

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and shut the pool down.

        Queued proposals stay durable in ``created`` and are picked up by the
        next ``recover()``.
        """
        with self._lock:
            self._closed = True
            waiting = sum(len(q) for q in self._queues.values())
            for queue in self._queues.values():
                for record, future in queue:
                    future.set_result(record)
            self._queues.clear()

        if waiting:
            logger.warning(f"Shutting down with {waiting} queued proposal(s) left for recovery")
        self._pool.shutdown(wait=wait)
        self.events.unsubscribe(self._on_event)
        logger.info("Fleet coordinator shut down")

    def active_agents(self) -> Dict[str, str]:
        """Agents with a proposal in flight, mapped to that proposal."""
        with self._lock:
            return dict(self._active)

    def queued(self, agent_id: str) -> List[str]:
        """Proposal IDs waiting behind the agent's current proposal."""
        with self._lock:
            return [record.proposal_id for record, _ in self._queues.get(agent_id, ())]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_accepting(self, allow_paused: bool = False) -> None:
        if self._closed:
            raise EngineModeError("Fleet coordinator is shut down")
        if self.mode == Mode.PAUSED and not allow_paused:
            raise EngineModeError("Engine is paused; not accepting proposals")

    def _dispatch_decision(self, request: ApprovalRequestV1) -> None:
        request_id = request.request_id
        with self._lock:
            future = self._pool.submit(self.orchestrator.handle_approval, request)
            self._decision_futures[request_id] = future
        # Decisions that arrive through the gate directly are never collected
        future.add_done_callback(lambda done: self._forget_decision(request_id, done))

    def _forget_decision(self, request_id: str, future: Future) -> None:
        with self._lock:
            if self._decision_futures.get(request_id) is future:
                del self._decision_futures[request_id]

    def _on_event(self, event: LifecycleEventV1) -> None:
        if event.event_type not in TERMINAL_EVENT_TYPES:
            return

        with self._lock:
            if self._active.get(event.agent_id) != event.proposal_id:
                return
            del self._active[event.agent_id]
            self._dispatch_next(event.agent_id)

    def _dispatch_next(self, agent_id: str) -> None:
        queue = self._queues.get(agent_id)
        while queue:
            record, target = queue.popleft()
            if target.done():
                continue
            self._active[agent_id] = record.proposal_id
            try:
                source = self._pool.submit(self.orchestrator.drive, record)
            except RuntimeError:
                # Pool already shut down; the record stays durable for recovery
                del self._active[agent_id]
                target.set_result(record)
                continue
            _chain(source, target)
            logger.info(f"Dispatched queued {record.proposal_id} for '{agent_id}'")
            break
        if queue is not None and not queue:
            self._queues.pop(agent_id, None)

    def _remove_queued(self, proposal_id: str) -> Optional[Future]:
        with self._lock:
            for agent_id, queue in self._queues.items():
                for item in list(queue):
                    record, future = item
                    if record.proposal_id == proposal_id:
                        queue.remove(item)
                        return future
        return None
