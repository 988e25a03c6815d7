"""Persistence models for the drift audit trail."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()

SeverityEnum = Enum(
    "LOW",
    "MEDIUM",
    "HIGH",
    "CRITICAL",
    name="drift_severity",
    native_enum=False,
)
ChangeKindEnum = Enum(
    "ADDED",
    "REMOVED",
    name="column_change_kind",
    native_enum=False,
)
ResolutionStatusEnum = Enum(
    "PENDING",
    "APPROVED",
    "REJECTED",
    "UNDER_REVIEW",
    name="resolution_status",
    native_enum=False,
)
NotificationStatusEnum = Enum(
    "SENT",
    "FAILED",
    "ACKNOWLEDGED",
    name="notification_status",
    native_enum=False,
)


class DriftEventLog(Base):
    """Drift detected for one source in one discovery cycle."""

    __tablename__ = "drift_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(64), nullable=False, unique=True)
    source_identifier = Column(String(500), nullable=False, index=True)
    source_type = Column(String(100), nullable=False)
    baseline_version = Column(String(50), nullable=False)
    severity = Column(SeverityEnum, nullable=False)
    changes_count = Column(Integer, nullable=False, default=0)
    detected_at = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class ColumnChangeLog(Base):
    """One classified column change belonging to a drift event."""

    __tablename__ = "column_changes"
    __table_args__ = (UniqueConstraint("drift_event_id", "column_name"),)

    id = Column(Integer, primary_key=True)
    drift_event_id = Column(String(64), ForeignKey("drift_events.event_id"), nullable=False)
    column_name = Column(String(200), nullable=False)
    kind = Column(ChangeKindEnum, nullable=False)
    severity = Column(SeverityEnum, nullable=False)
    recommendation = Column(Text, nullable=False)
    business_justification = Column(Text, nullable=False)
    resolution_status = Column(ResolutionStatusEnum, nullable=False, default="PENDING")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class NotificationLog(Base):
    """One notification record, mirrored from the in-memory audit trail."""

    __tablename__ = "notification_records"

    id = Column(Integer, primary_key=True)
    notification_id = Column(String(64), nullable=False, unique=True)
    drift_event_id = Column(String(64), ForeignKey("drift_events.event_id"), nullable=False)
    channel = Column(String(20), nullable=False)
    recipient = Column(String(500), nullable=False)
    system_name = Column(String(200), nullable=False)
    source_identifier = Column(String(500), nullable=False, index=True)
    status = Column(NotificationStatusEnum, nullable=False)
    acknowledged = Column(Boolean, nullable=False, default=False)
    reason = Column(String(100), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    escalation = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime(timezone=True), nullable=False)
