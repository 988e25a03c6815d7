"""Domain types for schema drift detection and stakeholder notification."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Mapping
from uuid import uuid4

from drift.errors import UnknownSeverity


class Severity(IntEnum):
    """Ordered severity tiers for a column change."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: "Severity | str") -> "Severity":
        """Parse a severity name, failing closed on unknown values."""
        if isinstance(value, Severity):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise UnknownSeverity(f"Unknown severity: {value!r}")


class ChangeKind(str, Enum):
    """Structural change kinds detected against a baseline."""

    ADDED = "ADDED"
    REMOVED = "REMOVED"


class ResolutionStatus(str, Enum):
    """Reviewer decision on a single column change."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    UNDER_REVIEW = "UNDER_REVIEW"
    REJECTED = "REJECTED"


RESOLVED_STATUSES = frozenset({ResolutionStatus.APPROVED, ResolutionStatus.REJECTED})


class NotificationStatus(str, Enum):
    """Delivery status of a notification record."""

    SENT = "SENT"
    FAILED = "FAILED"
    ACKNOWLEDGED = "ACKNOWLEDGED"


class SystemKind(str, Enum):
    """Kinds of downstream stakeholder systems."""

    BI_REPORT = "BI_REPORT"
    APPLICATION = "APPLICATION"
    ML_PIPELINE = "ML_PIPELINE"
    COMPLIANCE = "COMPLIANCE"


EMAIL = "email"
TEAMS = "teams"
SLACK = "slack"
SUPPORTED_CHANNELS = frozenset({EMAIL, TEAMS, SLACK})


def utc_now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ColumnDefinition:
    """Published definition of a single baseline column."""

    name: str
    data_type: str
    nullable: bool = True
    constraints: tuple[str, ...] = ()
    length: int | None = None
    precision: int | None = None
    scale: int | None = None


@dataclass(frozen=True)
class SchemaBaseline:
    """Last approved schema for a source type."""

    source_type: str
    version: str
    columns: Mapping[str, ColumnDefinition]
    business_rules: Mapping[str, str] = field(default_factory=dict)
    last_updated: str | None = None

    def column_names(self) -> frozenset[str]:
        """Return the baseline column names as a set."""
        return frozenset(self.columns)


@dataclass(frozen=True)
class ObservedSchema:
    """Columns currently present in a discovered data source."""

    source_identifier: str
    source_type: str
    columns: tuple[str, ...]


@dataclass
class ColumnChange:
    """A classified column addition or removal.

    Everything but ``resolution_status`` is fixed at detection time; a human
    reviewer moves the status through ``ChangeReview``.
    """

    kind: ChangeKind
    column: str
    severity: Severity
    impacts: tuple[str, ...]
    recommendation: str
    business_justification: str
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING


@dataclass
class DriftEvent:
    """Drift detected for one source in one discovery cycle."""

    source_identifier: str
    source_type: str
    baseline_version: str
    changes: tuple[ColumnChange, ...] = ()
    detected_at: datetime = field(default_factory=utc_now)
    event_id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def severity(self) -> Severity:
        """Return the highest change severity, LOW when there are no changes."""
        if not self.changes:
            return Severity.LOW
        return max(change.severity for change in self.changes)

    @property
    def has_drift(self) -> bool:
        """Return True when at least one column changed."""
        return bool(self.changes)

    @property
    def is_resolved(self) -> bool:
        """Return True when every change was approved or rejected."""
        return bool(self.changes) and all(
            change.resolution_status in RESOLVED_STATUSES for change in self.changes
        )

    def change_for(self, column: str) -> ColumnChange | None:
        """Return the change recorded for a column, if any."""
        for change in self.changes:
            if change.column == column:
                return change
        return None


@dataclass(frozen=True)
class StakeholderSystem:
    """Downstream consumer whose owners are told about drift."""

    name: str
    owners: tuple[str, ...]
    kind: SystemKind
    urgency: Severity
    preferred_channels: tuple[str, ...]
    dependencies: frozenset[str]
    channel_targets: Mapping[str, str] = field(default_factory=dict)

    def recipients_for(self, channel: str) -> tuple[str, ...]:
        """Return the recipients addressed on a channel."""
        if channel == EMAIL:
            return self.owners
        target = self.channel_targets.get(channel)
        return (target,) if target else ()


@dataclass(frozen=True)
class EscalationRule:
    """Immediate channels and delayed escalation for one severity tier."""

    severity: Severity
    immediate_channels: tuple[str, ...]
    escalate_after_minutes: int
    escalation_contacts: tuple[str, ...] = ()


@dataclass(frozen=True)
class NotificationRecord:
    """One send attempt to one recipient on one channel."""

    drift_event_id: str
    channel: str
    recipient: str
    system_name: str
    source_identifier: str
    status: NotificationStatus
    timestamp: datetime = field(default_factory=utc_now)
    acknowledged: bool = False
    reason: str | None = None
    attempts: int = 1
    escalation: bool = False
    notification_id: str = field(default_factory=lambda: uuid4().hex)
