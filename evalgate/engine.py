"""Engine wiring: builds every component from a config and its providers."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from evalgate.approval.gate import (
    ApprovalChannel,
    HumanApprovalGate,
    LoggingApprovalChannel,
)
from evalgate.evaluation.comparator import StatisticalComparator
from evalgate.fleet.coordinator import FleetCoordinator
from evalgate.fleet.metrics import FleetMetrics
from evalgate.lifecycle.locks import AgentLockRegistry
from evalgate.lifecycle.orchestrator import EnhancementOrchestrator
from evalgate.lifecycle.proposers import (
    DeltaProposer,
    GaussianDeltaProposer,
    PatternGuidedProposer,
)
from evalgate.lifecycle.recovery import RecoveryManager
from evalgate.monitoring.events import AuditLogSubscriber, EventBus, Subscriber
from evalgate.sampling.base import Sampler
from evalgate.schemas.engine_config import EngineConfigV1
from evalgate.storage.config_store import ConfigurationStore
from evalgate.storage.interface import KeyValueStoreInterface
from evalgate.storage.kv_store import KeyValueStoreSQLite
from evalgate.storage.lifecycle_store import LifecycleStore
from evalgate.storage.pattern_history import PatternHistory

logger = logging.getLogger(__name__)


@dataclass
class EngineDependencies:
    """Externally supplied providers.

    Optional capabilities are either present or ``None``.
    """

    store: KeyValueStoreInterface
    sampler: Optional[Sampler] = None
    approval_channel: Optional[ApprovalChannel] = None
    proposer: Optional[DeltaProposer] = None
    subscribers: List[Subscriber] = field(default_factory=list)


@dataclass
class Engine:
    """A fully wired engine."""

    config: EngineConfigV1
    store: KeyValueStoreInterface
    config_store: ConfigurationStore
    lifecycle_store: LifecycleStore
    pattern_history: PatternHistory
    events: EventBus
    audit: AuditLogSubscriber
    metrics: FleetMetrics
    locks: AgentLockRegistry
    orchestrator: EnhancementOrchestrator
    recovery: RecoveryManager
    fleet: FleetCoordinator
    approval_gate: Optional[HumanApprovalGate] = None

    def close(self, wait: bool = True) -> None:
        """Shut the fleet down and close the store."""
        self.fleet.shutdown(wait=wait)
        self.store.close()


def build_engine(config: EngineConfigV1, deps: EngineDependencies) -> Engine:
    """Assemble an engine from a validated config and its providers.

    Args:
        config: Engine configuration
        deps: Store, sampler and optional providers

    Returns:
        Wired engine (nothing is started until a proposal is submitted)
    """
    store = deps.store
    config_store = ConfigurationStore(store)
    lifecycle_store = LifecycleStore(store)
    pattern_history = PatternHistory(store)

    events = EventBus()
    audit = AuditLogSubscriber(store)
    metrics = FleetMetrics()
    events.subscribe(audit)
    events.subscribe(metrics)
    for subscriber in deps.subscribers:
        events.subscribe(subscriber)

    approval_gate = None
    if config.approval.enabled:
        approval_gate = HumanApprovalGate(
            store, deps.approval_channel or LoggingApprovalChannel()
        )

    proposer = deps.proposer or PatternGuidedProposer(
        pattern_history, fallback=GaussianDeltaProposer(step_scale=config.proposer_step_scale)
    )

    locks = AgentLockRegistry(store, lifecycle_store)
    orchestrator = EnhancementOrchestrator(
        config_store=config_store,
        lifecycle_store=lifecycle_store,
        sampler=deps.sampler,
        comparator=StatisticalComparator(config.gate),
        locks=locks,
        events=events,
        pattern_history=pattern_history,
        proposer=proposer,
        approval_gate=approval_gate,
        mode=config.fleet.mode,
        scenario_count=config.sampling.scenario_count,
        impact_threshold=config.approval.impact_threshold,
        commit_retries=config.commit_retries,
    )
    recovery = RecoveryManager(orchestrator, lifecycle_store, approval_gate)
    fleet = FleetCoordinator(
        orchestrator,
        events,
        recovery,
        approval_gate=approval_gate,
        max_concurrency=config.fleet.max_concurrency,
        busy_policy=config.fleet.busy_policy,
        mode=config.fleet.mode,
    )

    logger.info(
        f"Engine built (mode={config.fleet.mode.value}, "
        f"approval={'on' if approval_gate else 'off'}, "
        f"scenarios={config.sampling.scenario_count})"
    )
    return Engine(
        config=config,
        store=store,
        config_store=config_store,
        lifecycle_store=lifecycle_store,
        pattern_history=pattern_history,
        events=events,
        audit=audit,
        metrics=metrics,
        locks=locks,
        orchestrator=orchestrator,
        recovery=recovery,
        fleet=fleet,
        approval_gate=approval_gate,
    )


def open_engine(
    config: EngineConfigV1,
    sampler: Optional[Sampler] = None,
    approval_channel: Optional[ApprovalChannel] = None,
    proposer: Optional[DeltaProposer] = None,
    subscribers: Optional[List[Subscriber]] = None,
) -> Engine:
    """Build an engine on the SQLite state database named in the config."""
    deps = EngineDependencies(
        store=KeyValueStoreSQLite(config.state_db),
        sampler=sampler,
        approval_channel=approval_channel,
        proposer=proposer,
        subscribers=list(subscribers or []),
    )
    return build_engine(config, deps)
