"""Lifecycle events and audit trail."""

from evalgate.monitoring.events import AuditLogSubscriber, EventBus, EventRecorder, Subscriber

__all__ = ["EventBus", "AuditLogSubscriber", "EventRecorder", "Subscriber"]
