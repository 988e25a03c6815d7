"""Append-only audit trail of drift events and notification attempts."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from drift.events import DomainEvent, DomainEventType, EventBus
from drift.types import DriftEvent, NotificationRecord, NotificationStatus

logger = logging.getLogger(__name__)

DEFAULT_COMPLIANCE_INFO: dict[str, Any] = {
    "healthcareCompliance": "HIPAA",
    "dataGovernanceFramework": "Enterprise Data Management",
    "auditRetentionPeriod": "7 years",
    "regulatoryRequirements": ["HIPAA", "CMS", "FDA 21 CFR Part 11"],
}

REPORT_NOTES = (
    "Column renames are not inferred; a rename is reported as one REMOVED and one "
    "ADDED change.",
)


@dataclass(frozen=True)
class AuditSummary:
    """Headline counters for an audit report."""

    total_notifications: int
    stakeholders_notified: int
    systems_affected: int
    drift_events_detected: int


@dataclass(frozen=True)
class AuditReport:
    """Point-in-time snapshot of the audit trail over a time range."""

    summary: AuditSummary
    notifications: tuple[dict[str, Any], ...]
    drift_events: tuple[dict[str, Any], ...]
    compliance_info: Mapping[str, Any]
    range_start: datetime | None = None
    range_end: datetime | None = None
    notes: tuple[str, ...] = REPORT_NOTES

    def to_document(self) -> dict[str, Any]:
        """Return the report as a single structured document."""
        return {
            "summary": {
                "totalNotifications": self.summary.total_notifications,
                "stakeholdersNotified": self.summary.stakeholders_notified,
                "systemsAffected": self.summary.systems_affected,
                "driftEventsDetected": self.summary.drift_events_detected,
            },
            "notifications": [dict(item) for item in self.notifications],
            "driftEvents": [dict(item) for item in self.drift_events],
            "complianceInfo": dict(self.compliance_info),
            "range": {
                "start": _isoformat(self.range_start),
                "end": _isoformat(self.range_end),
            },
            "notes": list(self.notes),
        }

    def to_json(self) -> str:
        """Serialize the report deterministically."""
        return json.dumps(self.to_document(), sort_keys=True, indent=2, default=str)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _normalize_timestamp(value: datetime, label: str) -> datetime:
    """Ensure timestamps are timezone-aware, defaulting to UTC if naive."""
    if value.tzinfo is None:
        logger.warning("Naive timestamp provided for %s; assuming UTC.", label)
        return value.replace(tzinfo=timezone.utc)
    return value


def _in_range(value: datetime, start: datetime | None, end: datetime | None) -> bool:
    value = _normalize_timestamp(value, "record timestamp")
    if start is not None and value < start:
        return False
    if end is not None and value >= end:
        return False
    return True


class AuditTrailRecorder:
    """Owned, thread-safe history of drift events and notifications."""

    def __init__(
        self,
        events: EventBus | None = None,
        compliance_info: Mapping[str, Any] | None = None,
    ) -> None:
        """Initialize an empty history."""
        self._lock = threading.Lock()
        self._events = events
        self._compliance_info = dict(compliance_info or DEFAULT_COMPLIANCE_INFO)
        self._drift_events: list[DriftEvent] = []
        self._drift_index: dict[str, DriftEvent] = {}
        self._notifications: list[NotificationRecord] = []
        self._notification_index: dict[str, int] = {}
        self._skipped_systems: dict[str, list[dict[str, str]]] = {}

    def record_event(self, event: DriftEvent) -> None:
        """Append a drift event; recording the same event twice is rejected."""
        with self._lock:
            if event.event_id in self._drift_index:
                raise ValueError(f"Drift event already recorded: {event.event_id}")
            self._drift_events.append(event)
            self._drift_index[event.event_id] = event
        self._publish(DomainEvent(DomainEventType.DRIFT_DETECTED, drift_event=event))

    def record_notification(self, record: NotificationRecord) -> None:
        """Append a notification record for a previously recorded drift event."""
        with self._lock:
            event = self._drift_index.get(record.drift_event_id)
            if event is None:
                raise ValueError(f"Unknown drift event for notification: {record.drift_event_id}")
            if record.notification_id in self._notification_index:
                raise ValueError(f"Notification already recorded: {record.notification_id}")
            self._notification_index[record.notification_id] = len(self._notifications)
            self._notifications.append(record)
        self._publish(
            DomainEvent(
                DomainEventType.NOTIFICATION_RECORDED, drift_event=event, notification=record
            )
        )

    def record_skipped_system(self, drift_event_id: str, system_name: str, reason: str) -> None:
        """Note an affected system that could not be sent any notification."""
        with self._lock:
            if drift_event_id not in self._drift_index:
                raise ValueError(f"Unknown drift event: {drift_event_id}")
            self._skipped_systems.setdefault(drift_event_id, []).append(
                {"system": system_name, "reason": reason}
            )

    def acknowledge(self, notification_id: str) -> NotificationRecord:
        """Mark a notification as acknowledged by its recipient."""
        with self._lock:
            index = self._notification_index.get(notification_id)
            if index is None:
                raise ValueError(f"Unknown notification: {notification_id}")
            record = self._notifications[index]
            if record.status == NotificationStatus.FAILED:
                raise ValueError(f"Cannot acknowledge failed notification: {notification_id}")
            updated = dataclasses.replace(
                record,
                status=NotificationStatus.ACKNOWLEDGED,
                acknowledged=True,
            )
            self._notifications[index] = updated
            event = self._drift_index.get(record.drift_event_id)
        self._publish(
            DomainEvent(
                DomainEventType.NOTIFICATION_ACKNOWLEDGED,
                drift_event=event,
                notification=updated,
            )
        )
        return updated

    def get_event(self, drift_event_id: str) -> DriftEvent | None:
        """Return a recorded drift event by id."""
        with self._lock:
            return self._drift_index.get(drift_event_id)

    def drift_events(self) -> list[DriftEvent]:
        """Return recorded drift events in recording order."""
        with self._lock:
            return list(self._drift_events)

    def notifications(self) -> list[NotificationRecord]:
        """Return notification records in recording order."""
        with self._lock:
            return list(self._notifications)

    def notification_count(self, source_identifier: str) -> int:
        """Return how many notifications were recorded for a source."""
        with self._lock:
            return sum(
                1 for record in self._notifications if record.source_identifier == source_identifier
            )

    def build_report(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> AuditReport:
        """Build a report over ``[start, end)`` without touching stored records."""
        if start is not None:
            start = _normalize_timestamp(start, "start")
        if end is not None:
            end = _normalize_timestamp(end, "end")
        if start is not None and end is not None and start >= end:
            logger.error("Invalid report window: start must be before end.")
            raise ValueError("start must be before end.")

        with self._lock:
            notifications = [
                _notification_entry(record)
                for record in self._notifications
                if _in_range(record.timestamp, start, end)
            ]
            drift_events = [
                _drift_event_entry(event, self._skipped_systems.get(event.event_id, ()))
                for event in self._drift_events
                if _in_range(event.detected_at, start, end)
            ]

        summary = AuditSummary(
            total_notifications=len(notifications),
            stakeholders_notified=len({entry["recipient"] for entry in notifications}),
            systems_affected=len({entry["system"] for entry in notifications}),
            drift_events_detected=len(drift_events),
        )
        return AuditReport(
            summary=summary,
            notifications=tuple(notifications),
            drift_events=tuple(drift_events),
            compliance_info=self._compliance_info,
            range_start=start,
            range_end=end,
        )

    def clear(self) -> None:
        """Drop all history; an explicit administrative operation."""
        with self._lock:
            dropped = (len(self._drift_events), len(self._notifications))
            self._drift_events.clear()
            self._drift_index.clear()
            self._notifications.clear()
            self._notification_index.clear()
            self._skipped_systems.clear()
        logger.warning(
            "Audit trail cleared drift_events=%d notifications=%d.", dropped[0], dropped[1]
        )

    def _publish(self, event: DomainEvent) -> None:
        if self._events is not None:
            self._events.publish(event)


def _notification_entry(record: NotificationRecord) -> dict[str, Any]:
    """Render a notification record for the audit report."""
    return {
        "id": record.notification_id,
        "type": "SCHEMA_DRIFT_ESCALATION" if record.escalation else "SCHEMA_DRIFT",
        "driftEventId": record.drift_event_id,
        "channel": record.channel,
        "recipient": record.recipient,
        "system": record.system_name,
        "sourceIdentifier": record.source_identifier,
        "timestamp": record.timestamp.isoformat(),
        "deliveryStatus": record.status.value,
        "acknowledged": record.acknowledged,
        "reason": record.reason,
        "attempts": record.attempts,
    }


def _drift_event_entry(
    event: DriftEvent, skipped_systems: Iterable[Mapping[str, str]]
) -> dict[str, Any]:
    """Render a drift event, capturing current resolution statuses."""
    return {
        "id": event.event_id,
        "sourceIdentifier": event.source_identifier,
        "sourceType": event.source_type,
        "baselineVersion": event.baseline_version,
        "severity": event.severity.name,
        "changesCount": len(event.changes),
        "detectedAt": event.detected_at.isoformat(),
        "changes": [
            {
                "type": change.kind.value,
                "column": change.column,
                "severity": change.severity.name,
                "recommendation": change.recommendation,
                "businessJustification": change.business_justification,
                "resolutionStatus": change.resolution_status.value,
            }
            for change in event.changes
        ],
        "skippedSystems": [dict(item) for item in skipped_systems],
    }
