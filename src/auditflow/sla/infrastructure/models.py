"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from auditflow.config import Severity
from auditflow.infrastructure.database import Base, UTCDateTime


class MonitoredSubjectModel(Base):
    """
    Database model for MonitoredSubject entity.

    Maps to the 'monitored_subjects' table.
    """
    __tablename__ = "monitored_subjects"

    # Business identifier supplied by the caller (incident id, approval request id)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    subject_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    severity: Mapped[str] = mapped_column(String(50), nullable=False, default=Severity.MEDIUM)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    responded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class SLAMonitoringModel(Base):
    """
    Database model for SLAMonitoring entity.

    Maps to the 'sla_monitoring' table. One row per subject.
    """
    __tablename__ = "sla_monitoring"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    sla_policy_id: Mapped[str] = mapped_column(String(255), nullable=False)
    subject_created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Deadlines
    response_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resolution_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Actuals and frozen outcomes
    actual_response_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    actual_resolution_time: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    response_sla_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_sla_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Escalation
    current_escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_escalation_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    alerts_sent: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class SLAAlertModel(Base):
    """
    Database model for SLA Alert entity.

    Maps to the 'sla_alerts' table.
    """
    __tablename__ = "sla_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Alert details
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    escalation_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Acknowledgement
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_sla_alerts_subject_type_sent", "subject_id", "alert_type", "sent_at"),
    )
