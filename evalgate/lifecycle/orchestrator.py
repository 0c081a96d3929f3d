"""Enhancement lifecycle orchestrator.

Drives one proposal for one agent through

    created → baselining → baselined → evaluating → evaluated
        → committed | awaiting_approval → committed|rolled_back | rolled_back
    (any non-terminal state) → failed | rolled_back (cancel)

Every transition is persisted before the next stage begins, so a restart
resumes from the last durable state instead of re-entering a half-done step.
The candidate configuration lives only on the lifecycle record until commit.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from evalgate.approval.gate import HumanApprovalGate
from evalgate.errors import (
    InsufficientSampleError,
    InvalidDeltaError,
    InvalidTransitionError,
    LockContentionError,
    PersistenceError,
    ProposalCancelledError,
    SamplerFatalError,
    StaleConfigurationError,
    UnknownAgentError,
)
from evalgate.evaluation.aggregator import summarize
from evalgate.evaluation.comparator import StatisticalComparator
from evalgate.lifecycle.delta import apply_delta, impact_score, validate_delta
from evalgate.lifecycle.locks import AgentLockRegistry
from evalgate.lifecycle.proposers import DeltaProposer
from evalgate.lifecycle.states import check_transition
from evalgate.monitoring.events import EventBus
from evalgate.sampling.base import Sampler
from evalgate.sampling.scenarios import derive_scenario_seed
from evalgate.schemas.approval import ApprovalRequestV1, Decision
from evalgate.schemas.engine_config import Mode
from evalgate.schemas.event import EventType, LifecycleEventV1
from evalgate.schemas.lifecycle_record import (
    FailureReason,
    LifecycleRecordV1,
    RollbackReason,
    TransitionV1,
)
from evalgate.schemas.pattern import PatternRecordV1
from evalgate.schemas.proposal import EnhancementProposalV1, ProposalRequestV1, ProposalState
from evalgate.storage.config_store import ConfigurationStore
from evalgate.storage.lifecycle_store import LifecycleStore
from evalgate.storage.pattern_history import PatternHistory

logger = logging.getLogger(__name__)

S = ProposalState


def new_proposal_id() -> str:
    return f"prop_{uuid.uuid4().hex[:12]}"


class EnhancementOrchestrator:
    """State machine for enhancement proposals.

    Single-threaded per proposal (a per-proposal re-entrant guard), while
    different proposals may be driven concurrently from different threads.
    Lifecycle-level errors never escape ``start``/``drive``: they end the
    proposal in ``failed`` with a structured reason.
    """

    def __init__(
        self,
        config_store: ConfigurationStore,
        lifecycle_store: LifecycleStore,
        sampler: Optional[Sampler],
        comparator: StatisticalComparator,
        locks: AgentLockRegistry,
        events: EventBus,
        pattern_history: Optional[PatternHistory] = None,
        proposer: Optional[DeltaProposer] = None,
        approval_gate: Optional[HumanApprovalGate] = None,
        mode: Mode = Mode.ACTIVE,
        scenario_count: int = 150,
        impact_threshold: Optional[float] = None,
        commit_retries: int = 3,
    ):
        """Initialize orchestrator.

        Args:
            config_store: Committed configurations
            lifecycle_store: Durable lifecycle records
            sampler: Trial sampler (None for engines that only resolve approvals)
            comparator: Statistical comparator (holds the gate thresholds)
            locks: Per-agent lock registry
            events: Event bus for lifecycle outcomes
            pattern_history: Optional learned-pattern history
            proposer: Optional proposer for requests without a delta
            approval_gate: Optional human approval gate
            mode: Engine mode (observe never commits)
            scenario_count: Default trials per batch
            impact_threshold: Impact at or above which approval is required
            commit_retries: Commit attempts before failing
        """
        self.config_store = config_store
        self.lifecycle_store = lifecycle_store
        self.sampler = sampler
        self.comparator = comparator
        self.locks = locks
        self.events = events
        self.pattern_history = pattern_history
        self.proposer = proposer
        self.approval_gate = approval_gate
        self.mode = mode
        self.scenario_count = scenario_count
        self.impact_threshold = impact_threshold
        self.commit_retries = commit_retries

        # proposal_id -> (guard, number of threads holding or waiting on it)
        self._guards: Dict[str, Tuple[threading.RLock, int]] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._registry_lock = threading.Lock()

        self._steps: Dict[ProposalState, Callable[[LifecycleRecordV1], LifecycleRecordV1]] = {
            S.CREATED: self._begin_baselining,
            S.BASELINING: self._run_baseline,
            S.BASELINED: self._build_candidate,
            S.EVALUATING: self._run_candidate,
            S.EVALUATED: self._decide,
        }

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start(self, request: ProposalRequestV1) -> LifecycleRecordV1:
        """Create a proposal and drive it to its next suspension point or terminal state."""
        record = self.create(request)
        if record.is_terminal:
            return record
        return self.drive(record)

    def create(self, request: ProposalRequestV1) -> LifecycleRecordV1:
        """Create and persist a proposal in ``created`` state.

        Unknown agents and unusable deltas resolve immediately to ``failed``.
        """
        proposal_id = new_proposal_id()
        committed = self.config_store.get(request.agent_id)

        proposal = EnhancementProposalV1(
            proposal_id=proposal_id,
            agent_id=request.agent_id,
            baseline_config=dict(committed.parameters) if committed else {},
            delta=dict(request.delta or {}),
            description=request.description,
        )
        record = LifecycleRecordV1(
            proposal=proposal,
            base_version=committed.version if committed else 0,
            scenario_count=request.scenario_count or self.scenario_count,
            scenario_seed=derive_scenario_seed(proposal_id),
            transitions=[TransitionV1(to_state=S.CREATED, note=request.description)],
        )

        if committed is None:
            return self._fail(
                record,
                FailureReason.UNKNOWN_AGENT,
                f"Agent '{request.agent_id}' is not registered",
            )

        try:
            if request.delta is None:
                if self.proposer is None:
                    raise InvalidDeltaError("request has no delta and no proposer is configured")
                record.proposal.delta = self.proposer.propose(
                    request.agent_id, dict(committed.parameters)
                )
            validate_delta(committed.parameters, record.proposal.delta)
        except InvalidDeltaError as e:
            return self._fail(record, FailureReason.INVALID_DELTA, str(e))

        try:
            self.lifecycle_store.save(record)
        except PersistenceError as e:
            return self._fail(record, FailureReason.PERSISTENCE_FAILURE, str(e))

        logger.info(
            f"Created proposal {proposal_id} for '{request.agent_id}' "
            f"(base v{record.base_version}, {record.scenario_count} scenarios, "
            f"delta={record.proposal.delta})"
        )
        return record

    def drive(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        """Run a proposal from its current state until it suspends or terminates."""
        pid = record.proposal_id
        with self._guard(pid):
            record = self._reload(record)

            if not record.is_terminal and record.state != S.CREATED:
                record = self._advance(record, self._reacquire_lock)

            while not record.is_terminal and record.state != S.AWAITING_APPROVAL:
                if self._cancel_event(pid).is_set():
                    record = self._finish_rollback(record, RollbackReason.CANCELLED, "cancelled")
                    break
                record = self._advance(record, self._steps[record.state])

        return record

    def resolve_approval(self, proposal_id: str, decision: Decision | str) -> LifecycleRecordV1:
        """Apply a human decision to a proposal awaiting approval.

        Idempotent: resolving an already terminal proposal returns it unchanged.

        Raises:
            UnknownProposalError: If the proposal does not exist
            InvalidTransitionError: If the proposal is not awaiting approval
        """
        decision = Decision(decision)
        with self._guard(proposal_id):
            record = self.lifecycle_store.require(proposal_id)

            if record.is_terminal:
                self._withdraw_approval(record)
                return record
            if record.state != S.AWAITING_APPROVAL:
                raise InvalidTransitionError(
                    f"Proposal {proposal_id} is {record.state.value}, not awaiting approval"
                )

            logger.info(f"Applying {decision.value} decision to {proposal_id}")
            if decision == Decision.APPROVED:
                return self._advance(record, self._commit_after_approval)
            return self._finish_rollback(
                record, RollbackReason.APPROVAL_REJECTED, "rejected by reviewer"
            )

    def handle_approval(self, request: ApprovalRequestV1) -> Optional[LifecycleRecordV1]:
        """Decision handler for the approval gate."""
        if request.decision is None:
            return self.lifecycle_store.get(request.proposal_id)
        return self.resolve_approval(request.proposal_id, request.decision)

    def resume_awaiting(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        """Re-attach a recovered ``awaiting_approval`` proposal to the approval gate.

        Re-submits the (idempotent) request and applies a decision that was
        recorded while the process was down.
        """
        pid = record.proposal_id
        with self._guard(pid):
            record = self._reload(record)
            if record.state != S.AWAITING_APPROVAL:
                return record

            record = self._advance(record, self._reacquire_lock)
            if record.is_terminal:
                return record

            if self.approval_gate is None:
                logger.warning(
                    f"Proposal {pid} awaits approval but no approval gate is configured"
                )
                return record

            request_id = record.approval_request_id or f"apr_{pid}"
            self.approval_gate.submit(self._approval_summary(record), request_id=request_id)
            request = self.approval_gate.get(request_id)
            if request is not None and request.decision is not None:
                return self.resolve_approval(pid, request.decision)
            return record

    def rollback(
        self,
        proposal_id: str,
        reason: RollbackReason = RollbackReason.CANCELLED,
    ) -> LifecycleRecordV1:
        """Roll a proposal back. Idempotent.

        Raises:
            InvalidTransitionError: If the proposal is already committed
        """
        with self._guard(proposal_id):
            record = self.lifecycle_store.require(proposal_id)
            if record.state == S.COMMITTED:
                raise InvalidTransitionError(
                    f"Proposal {proposal_id} is committed; revert it with a new proposal "
                    f"targeting the previous configuration"
                )
            if record.is_terminal:
                return record
            return self._finish_rollback(record, reason, reason.value)

    def cancel(self, proposal_id: str) -> LifecycleRecordV1:
        """Cancel a proposal before commit.

        A running stage notices the cancellation between trials; this call
        waits for it to stop, then the proposal ends ``rolled_back(cancelled)``.
        """
        self._cancel_event(proposal_id).set()
        try:
            return self.rollback(proposal_id, RollbackReason.CANCELLED)
        finally:
            with self._registry_lock:
                self._cancel_events.pop(proposal_id, None)

    def reject_contended(self, record: LifecycleRecordV1, holder: Optional[str]) -> LifecycleRecordV1:
        """Fail a freshly created proposal because its agent is busy."""
        with self._guard(record.proposal_id):
            return self._fail(
                record,
                FailureReason.LOCK_CONTENTION,
                str(LockContentionError(record.agent_id, holder)),
            )

    def get(self, proposal_id: str) -> Optional[LifecycleRecordV1]:
        return self.lifecycle_store.get(proposal_id)

    def history(self, agent_id: str) -> List[LifecycleRecordV1]:
        return self.lifecycle_store.list(agent_id=agent_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _begin_baselining(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        self.locks.acquire(record.agent_id, record.proposal_id)

        note = "agent lock acquired"
        # Nothing has been measured yet, so a proposal that waited behind
        # another one starts from the configuration committed meanwhile
        committed = self.config_store.require(record.agent_id)
        if committed.version != record.base_version:
            validate_delta(committed.parameters, record.proposal.delta)
            note += f"; rebased v{record.base_version} → v{committed.version}"
            record.proposal.baseline_config = dict(committed.parameters)
            record.base_version = committed.version

        self._transition(record, S.BASELINING, note)
        self.lifecycle_store.save(record)
        return record

    def _run_baseline(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        trials = self._sample(record, record.proposal.baseline_config)
        record.baseline_summary = summarize(trials)
        self._transition(
            record,
            S.BASELINED,
            f"baseline n={record.baseline_summary.n} mean={record.baseline_summary.mean:.4g}",
        )
        self.lifecycle_store.save(record)
        return record

    def _build_candidate(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        baseline = record.proposal.baseline_config
        candidate = apply_delta(baseline, record.proposal.delta)
        record.proposal.candidate_config = candidate
        record.impact_score = impact_score(baseline, candidate)
        self._transition(record, S.EVALUATING, f"candidate built (impact={record.impact_score:.3f})")
        self.lifecycle_store.save(record)
        return record

    def _run_candidate(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        trials = self._sample(record, record.proposal.candidate_config)
        record.candidate_summary = summarize(trials)
        record.comparison = self.comparator.compare(
            record.baseline_summary, record.candidate_summary
        )
        comparison = record.comparison
        self._transition(
            record,
            S.EVALUATED,
            f"p={comparison.p_value:.4g} improvement={comparison.improvement_pct:.1%} "
            f"d={comparison.effect_size:.3f} significant={comparison.significant}",
        )
        self.lifecycle_store.save(record)
        return record

    def _decide(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        comparison = record.comparison
        if comparison is None:
            raise InvalidTransitionError(f"Proposal {record.proposal_id} has no comparison")

        if self.mode == Mode.OBSERVE:
            return self._finish_rollback(
                record,
                RollbackReason.OBSERVE_MODE,
                f"observe mode (significant={comparison.significant})",
            )

        if not comparison.significant:
            failed = [name for name, passed in comparison.checks.items() if not passed]
            return self._finish_rollback(
                record,
                RollbackReason.STATISTICAL_REJECTION,
                f"gate failed: {', '.join(failed)}",
            )

        if self._requires_approval(record):
            return self._await_approval(record)

        return self._commit(record)

    def _await_approval(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        request_id = record.approval_request_id or f"apr_{record.proposal_id}"
        record.approval_request_id = request_id
        self._transition(
            record,
            S.AWAITING_APPROVAL,
            f"impact {record.impact_score:.3f} >= threshold {self.impact_threshold:.3f}",
        )
        # Durable before the request goes out, so a late decision finds the proposal
        self.lifecycle_store.save(record)
        self._emit(record, EventType.AWAITING_APPROVAL)

        self.approval_gate.submit(self._approval_summary(record), request_id=request_id)
        logger.info(f"Proposal {record.proposal_id} suspended awaiting approval ({request_id})")
        return record

    def _commit_after_approval(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        self.locks.acquire(record.agent_id, record.proposal_id)
        return self._commit(record)

    def _commit(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        agent_id = record.agent_id
        candidate = record.proposal.candidate_config

        committed = None
        if self._commit_landed(record):
            committed = self.config_store.require(agent_id)
            logger.info(f"Commit for {record.proposal_id} already landed as v{committed.version}")
        else:
            last_error: Optional[PersistenceError] = None
            for attempt in range(1, self.commit_retries + 1):
                record.commit_attempts += 1
                try:
                    committed = self.config_store.commit(
                        agent_id, candidate, expected_version=record.base_version
                    )
                    break
                except PersistenceError as e:
                    last_error = e
                    logger.warning(
                        f"Commit attempt {attempt}/{self.commit_retries} for "
                        f"{record.proposal_id} failed: {e}"
                    )
                    if self._commit_landed(record):
                        committed = self.config_store.require(agent_id)
                        break

            if committed is None:
                raise PersistenceError(
                    f"Commit failed after {self.commit_retries} attempts: {last_error}"
                )

        record.committed_version = committed.version
        self._transition(
            record, S.COMMITTED, f"v{record.base_version} → v{committed.version}"
        )
        try:
            self.lifecycle_store.save(record)
        except PersistenceError as e:
            # Configuration is live; recovery finalizes the record from it
            logger.error(
                f"Proposal {record.proposal_id} committed but its record was not saved: {e}"
            )

        logger.info(
            f"✅ Committed {record.proposal_id} for '{agent_id}' "
            f"(v{committed.version}, improvement={record.comparison.improvement_pct:.1%})"
        )
        self._finalize(record, EventType.COMMITTED)
        return record

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _finish_rollback(
        self, record: LifecycleRecordV1, reason: RollbackReason, note: str
    ) -> LifecycleRecordV1:
        if record.state == S.ROLLED_BACK:
            return record

        # Nothing was ever written to the configuration store; the baseline
        # read at creation is still the committed configuration.
        self._transition(
            record, S.ROLLED_BACK, f"{note}; baseline v{record.base_version} retained"
        )
        record.rollback_reason = reason
        try:
            self.lifecycle_store.save(record)
        except PersistenceError as e:
            logger.error(f"Rolled back {record.proposal_id} but could not persist it: {e}")

        logger.info(f"↩️  Rolled back {record.proposal_id} for '{record.agent_id}': {reason.value}")
        self._finalize(record, EventType.ROLLED_BACK, reason.value)
        return record

    def _fail(
        self, record: LifecycleRecordV1, reason: FailureReason, detail: str
    ) -> LifecycleRecordV1:
        if record.is_terminal:
            return record

        self._transition(record, S.FAILED, detail)
        record.failure_reason = reason
        record.failure_detail = detail

        if reason == FailureReason.LOCK_CONTENTION:
            logger.warning(f"Proposal {record.proposal_id} rejected: {detail}")
        else:
            logger.error(f"❌ Proposal {record.proposal_id} failed ({reason.value}): {detail}")

        try:
            self.lifecycle_store.save(record)
        except PersistenceError as e:
            logger.error(f"Could not persist failure of {record.proposal_id}: {e}")

        self._finalize(record, EventType.FAILED, reason.value)
        return record

    def _finalize(
        self, record: LifecycleRecordV1, event_type: EventType, reason: Optional[str] = None
    ) -> None:
        self.locks.release(record.agent_id, record.proposal_id)
        self._withdraw_approval(record)
        self._record_pattern(record)
        self._emit(record, event_type, reason)

        with self._registry_lock:
            self._cancel_events.pop(record.proposal_id, None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _advance(
        self,
        record: LifecycleRecordV1,
        step: Callable[[LifecycleRecordV1], LifecycleRecordV1],
    ) -> LifecycleRecordV1:
        """Run one step, mapping lifecycle errors to terminal states."""
        try:
            return step(record)
        except ProposalCancelledError:
            return self._finish_rollback(
                record, RollbackReason.CANCELLED, "cancelled during sampling"
            )
        except LockContentionError as e:
            return self._fail(record, FailureReason.LOCK_CONTENTION, str(e))
        except InvalidDeltaError as e:
            return self._fail(record, FailureReason.INVALID_DELTA, str(e))
        except SamplerFatalError as e:
            return self._fail(record, FailureReason.SAMPLER_FATAL, str(e))
        except InsufficientSampleError as e:
            return self._fail(record, FailureReason.INSUFFICIENT_SAMPLE, str(e))
        except StaleConfigurationError as e:
            return self._fail(record, FailureReason.STALE_CONFIGURATION, str(e))
        except UnknownAgentError as e:
            return self._fail(record, FailureReason.UNKNOWN_AGENT, str(e))
        except PersistenceError as e:
            return self._fail(record, FailureReason.PERSISTENCE_FAILURE, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error in proposal {record.proposal_id}")
            return self._fail(record, FailureReason.INTERNAL_ERROR, f"{type(e).__name__}: {e}")

    def _sample(self, record: LifecycleRecordV1, parameters: Dict[str, float]):
        if self.sampler is None:
            raise SamplerFatalError("No sampler configured for this engine")
        return self.sampler.run(
            record.agent_id,
            parameters,
            record.scenario_count,
            scenario_seed=record.scenario_seed,
            cancel_event=self._cancel_event(record.proposal_id),
        )

    def _reacquire_lock(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        self.locks.acquire(record.agent_id, record.proposal_id)
        return record

    def _transition(self, record: LifecycleRecordV1, to_state: ProposalState, note: str = "") -> None:
        check_transition(record.state, to_state)
        record.transitions.append(
            TransitionV1(from_state=record.state, to_state=to_state, note=note)
        )
        record.proposal.state = to_state

    def _reload(self, record: LifecycleRecordV1) -> LifecycleRecordV1:
        """Latest durable version of a record (another caller may have moved it)."""
        try:
            latest = self.lifecycle_store.get(record.proposal_id)
        except PersistenceError as e:
            logger.warning(f"Could not reload {record.proposal_id}, using in-memory copy: {e}")
            return record
        return latest if latest is not None else record

    def _commit_landed(self, record: LifecycleRecordV1) -> bool:
        """True if this proposal's commit is already the live configuration."""
        try:
            current = self.config_store.get(record.agent_id)
        except PersistenceError:
            return False
        return (
            current is not None
            and current.version == record.base_version + 1
            and current.parameters == record.proposal.candidate_config
        )

    def _requires_approval(self, record: LifecycleRecordV1) -> bool:
        return (
            self.approval_gate is not None
            and self.impact_threshold is not None
            and record.impact_score is not None
            and record.impact_score >= self.impact_threshold
        )

    def _approval_summary(self, record: LifecycleRecordV1) -> Dict[str, Any]:
        comparison = record.comparison
        return {
            "proposal_id": record.proposal_id,
            "agent_id": record.agent_id,
            "base_version": record.base_version,
            "baseline_config": record.proposal.baseline_config,
            "candidate_config": record.proposal.candidate_config,
            "delta": record.proposal.delta,
            "impact_score": record.impact_score,
            "improvement_pct": comparison.improvement_pct if comparison else None,
            "effect_size": comparison.effect_size if comparison else None,
            "p_value": comparison.p_value if comparison else None,
            "confidence_interval": list(comparison.confidence_interval) if comparison else None,
        }

    def _withdraw_approval(self, record: LifecycleRecordV1) -> None:
        if record.approval_request_id is None or self.approval_gate is None:
            return
        try:
            self.approval_gate.mark_applied(record.approval_request_id)
        except PersistenceError as e:
            logger.warning(f"Could not close approval request {record.approval_request_id}: {e}")

    def _record_pattern(self, record: LifecycleRecordV1) -> None:
        if self.pattern_history is None or record.comparison is None:
            return
        comparison = record.comparison
        pattern = PatternRecordV1(
            agent_id=record.agent_id,
            proposal_id=record.proposal_id,
            delta=record.proposal.delta,
            outcome=record.state,
            improvement_pct=comparison.improvement_pct,
            effect_size=comparison.effect_size,
            p_value=comparison.p_value,
        )
        try:
            self.pattern_history.record(pattern)
        except PersistenceError as e:
            logger.warning(f"Could not record pattern for {record.proposal_id}: {e}")

    def _emit(
        self, record: LifecycleRecordV1, event_type: EventType, reason: Optional[str] = None
    ) -> None:
        self.events.publish(
            LifecycleEventV1(
                event_type=event_type,
                proposal_id=record.proposal_id,
                agent_id=record.agent_id,
                comparison=record.comparison,
                reason=reason,
                committed_version=record.committed_version,
            )
        )

    @contextmanager
    def _guard(self, proposal_id: str) -> Iterator[None]:
        """Serialize work on one proposal. The entry is dropped once unused."""
        with self._registry_lock:
            guard, users = self._guards.get(proposal_id, (None, 0))
            if guard is None:
                guard = threading.RLock()
            self._guards[proposal_id] = (guard, users + 1)
        try:
            with guard:
                yield
        finally:
            with self._registry_lock:
                _, users = self._guards[proposal_id]
                if users == 1:
                    del self._guards[proposal_id]
                else:
                    self._guards[proposal_id] = (guard, users - 1)

    def _cancel_event(self, proposal_id: str) -> threading.Event:
        with self._registry_lock:
            event = self._cancel_events.get(proposal_id)
            if event is None:
                event = self._cancel_events[proposal_id] = threading.Event()
            return event
