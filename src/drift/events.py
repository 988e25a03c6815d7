"""Structured domain events emitted by the engine for any subscriber."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Protocol

from drift.types import DriftEvent, NotificationRecord, utc_now

logger = logging.getLogger(__name__)


class DomainEventType(str, Enum):
    """Kinds of events published on the bus."""

    DRIFT_DETECTED = "DRIFT_DETECTED"
    NOTIFICATION_RECORDED = "NOTIFICATION_RECORDED"
    NOTIFICATION_ACKNOWLEDGED = "NOTIFICATION_ACKNOWLEDGED"
    CHANGE_RESOLVED = "CHANGE_RESOLVED"
    ESCALATION_SCHEDULED = "ESCALATION_SCHEDULED"
    ESCALATION_FIRED = "ESCALATION_FIRED"
    ESCALATION_CANCELLED = "ESCALATION_CANCELLED"


@dataclass(frozen=True)
class DomainEvent:
    """A single engine occurrence with the objects it concerns."""

    event_type: DomainEventType
    drift_event: DriftEvent | None = None
    notification: NotificationRecord | None = None
    detail: Mapping[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)


class EventSink(Protocol):
    """Subscriber interface for domain events."""

    def handle(self, event: DomainEvent) -> None:
        """Consume a published event."""


class EventBus:
    """Fan domain events out to subscribed sinks with failure isolation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sinks: list[EventSink] = []

    def subscribe(self, sink: EventSink) -> None:
        """Register a sink for every subsequently published event."""
        with self._lock:
            self._sinks.append(sink)

    def unsubscribe(self, sink: EventSink) -> None:
        """Remove a previously registered sink."""
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def publish(self, event: DomainEvent) -> None:
        """Deliver an event to each sink; a failing sink is logged and skipped."""
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink.handle(event)
            except Exception:
                logger.exception(
                    "Event sink %s failed for event_type=%s.",
                    type(sink).__name__,
                    event.event_type.value,
                )


class LoggingEventSink:
    """Write every domain event to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def handle(self, event: DomainEvent) -> None:
        drift_event = event.drift_event
        notification = event.notification
        logger.log(
            self._level,
            "event=%s source=%s severity=%s channel=%s recipient=%s status=%s",
            event.event_type.value,
            drift_event.source_identifier if drift_event else None,
            drift_event.severity.name if drift_event else None,
            notification.channel if notification else None,
            notification.recipient if notification else None,
            notification.status.value if notification else None,
        )


class CollectingEventSink:
    """Keep published events in memory, in publication order."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def handle(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: DomainEventType) -> list[DomainEvent]:
        """Return collected events of one type."""
        return [event for event in self.events if event.event_type == event_type]
