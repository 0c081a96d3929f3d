"""Lifecycle event bus and durable audit subscriber."""

import logging
import threading
from typing import Callable, List

from evalgate.schemas.event import LifecycleEventV1
from evalgate.storage.interface import KeyValueStoreInterface

logger = logging.getLogger(__name__)

Subscriber = Callable[[LifecycleEventV1], None]

AUDIT_PREFIX = "audit/"


class EventBus:
    """Synchronous fan-out of lifecycle events to subscribers.

    A failing subscriber is logged and skipped; it never affects the
    lifecycle that emitted the event or the other subscribers.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def publish(self, event: LifecycleEventV1) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        logger.info(
            f"Event {event.event_type.value}: proposal={event.proposal_id} "
            f"agent={event.agent_id}" + (f" reason={event.reason}" if event.reason else "")
        )
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error(
                    f"Event subscriber {subscriber!r} failed on "
                    f"{event.event_type.value} for {event.proposal_id}: {e}"
                )


class AuditLogSubscriber:
    """Persists every event under ``audit/{proposal_id}/{seq}-{event_type}``."""

    def __init__(self, store: KeyValueStoreInterface):
        self.store = store
        self._lock = threading.Lock()

    def __call__(self, event: LifecycleEventV1) -> None:
        prefix = f"{AUDIT_PREFIX}{event.proposal_id}/"
        with self._lock:
            seq = len(self.store.keys(prefix))
            self.store.put(
                f"{prefix}{seq:04d}-{event.event_type.value}", event.model_dump_json()
            )

    def events_for(self, proposal_id: str) -> List[LifecycleEventV1]:
        """All audited events of a proposal, in emission order."""
        events = []
        for key in self.store.keys(f"{AUDIT_PREFIX}{proposal_id}/"):
            raw = self.store.get(key)
            if raw is not None:
                events.append(LifecycleEventV1.model_validate_json(raw))
        return events


class EventRecorder:
    """In-memory subscriber collecting events (tests, CLI summaries)."""

    def __init__(self):
        self.events: List[LifecycleEventV1] = []
        self._lock = threading.Lock()

    def __call__(self, event: LifecycleEventV1) -> None:
        with self._lock:
            self.events.append(event)

    def for_proposal(self, proposal_id: str) -> List[LifecycleEventV1]:
        with self._lock:
            return [e for e in self.events if e.proposal_id == proposal_id]
