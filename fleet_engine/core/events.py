"""Audit sinks for fleet events."""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List

from fleet_engine.core.events_model import AuditEvent

logger = logging.getLogger(__name__)


ALLOWED_EVENTS = {
    "job.queued",
    "job.assigned",
    "job.completed",
    "node.registered",
    "node.heartbeat",
    "node.disk_protection_changed",
    "node.disk_settings_updated",
    "node.disk_override_updated",
    "node.agent_update_queued",
    "node.deleted",
    "port_pool.created",
    "port_block.allocated",
    "port_block.assigned",
    "port_block.released",
    "instance.provisioned",
    "instance.deprovisioned",
}


class AuditSink(ABC):
    """Abstract audit sink."""

    @abstractmethod
    def emit(self, events: Iterable[AuditEvent]) -> None:
        """Emit one or more events."""
        pass


def _check(event: AuditEvent) -> None:
    if event.event_type not in ALLOWED_EVENTS:
        raise ValueError(f"Invalid event type: {event.event_type}")
    if not event.subject_id:
        raise ValueError("Event must have subject_id")


class LoggingAuditSink(AuditSink):
    """Writes events to the application log."""

    def emit(self, events: Iterable[AuditEvent]) -> None:
        for event in events:
            _check(event)
            logger.info(f"[audit] {event.event_type} | subject={event.subject_id} | {event.metadata}")


class MemoryAuditSink(AuditSink):
    """Keeps events in memory (tests, dashboards)."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def emit(self, events: Iterable[AuditEvent]) -> None:
        for event in events:
            _check(event)
            self.events.append(event)

    def of_type(self, event_type: str) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


class MultiAuditSink(AuditSink):
    """Fan-out to multiple sinks."""

    def __init__(self, sinks: Iterable[AuditSink]):
        self._sinks = list(sinks)

    def emit(self, events: Iterable[AuditEvent]) -> None:
        events = list(events)
        for sink in self._sinks:
            sink.emit(events)


class NullAuditSink(AuditSink):
    """No-op sink."""

    def emit(self, events: Iterable[AuditEvent]) -> None:
        pass
