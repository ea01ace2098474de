"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Set

from auditflow.config import AlertType, Severity
from auditflow.core import InvalidTransitionException, ValidationException


@dataclass
class MonitoredSubject:
    """
    Anything an SLA is tracked against: an incident, an approval
    request, a finding.

    Holds the actual response/resolution timestamps until a monitoring
    record exists to copy them into.
    """

    id: str
    subject_type: str
    title: str
    severity: str
    created_at: datetime
    responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate subject on initialization."""
        if self.responded_at and self.responded_at < self.created_at:
            raise ValueError("responded_at cannot be before created_at")

        if self.resolved_at and self.resolved_at < self.created_at:
            raise ValueError("resolved_at cannot be before created_at")

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def mark_responded(self, timestamp: datetime) -> None:
        """Record first response; later calls keep the original time."""
        if self.responded_at is not None:
            return
        self._check_not_before_creation("responded_at", timestamp)
        self.responded_at = timestamp

    def mark_resolved(self, timestamp: datetime) -> None:
        """Record resolution. A resolution also counts as the first response."""
        if self.resolved_at is not None:
            return
        self._check_not_before_creation("resolved_at", timestamp)
        self.mark_responded(timestamp)
        self.resolved_at = timestamp

    def _check_not_before_creation(self, field_name: str, timestamp: datetime) -> None:
        if timestamp < self.created_at:
            raise ValidationException(
                f"{field_name} cannot be before created_at",
                [f"{field_name} {timestamp.isoformat()} is before created_at {self.created_at.isoformat()}"],
            )


@dataclass
class SLAMonitoring:
    """
    Per-subject SLA tracking record.

    `version` increases on every committed change and backs the
    optimistic compare-and-set used by the evaluator.
    """

    id: str
    subject_id: str
    sla_policy_id: str
    subject_created_at: datetime
    response_deadline: datetime
    resolution_deadline: datetime

    actual_response_time: Optional[datetime] = None
    actual_resolution_time: Optional[datetime] = None
    response_sla_met: bool = False
    resolution_sla_met: bool = False

    current_escalation_level: int = 0
    last_escalation_at: Optional[datetime] = None
    alerts_sent: Set[str] = field(default_factory=set)

    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        """Both actuals recorded; no further tick may change this record."""
        return self.actual_response_time is not None and self.actual_resolution_time is not None

    def copy(self) -> "SLAMonitoring":
        return replace(self, alerts_sent=set(self.alerts_sent))

    def record_response(self, timestamp: datetime) -> bool:
        """Freeze the response outcome. Returns True if the record changed."""
        if self.actual_response_time is not None:
            return False
        self.actual_response_time = timestamp
        self.response_sla_met = timestamp <= self.response_deadline
        return True

    def record_resolution(self, timestamp: datetime) -> bool:
        """Freeze the resolution outcome. Returns True if the record changed."""
        if self.actual_resolution_time is not None:
            return False
        self.actual_resolution_time = timestamp
        self.resolution_sla_met = timestamp <= self.resolution_deadline
        return True

    def escalate_to(self, level: int, timestamp: datetime) -> None:
        """Raise the escalation level. Levels never go down."""
        if level <= self.current_escalation_level:
            raise InvalidTransitionException(
                "sla_monitoring", self.subject_id,
                f"level {self.current_escalation_level}", f"escalate to level {level}"
            )
        self.current_escalation_level = level
        self.last_escalation_at = timestamp


_ALERT_SEVERITY = {
    AlertType.RESPONSE_BREACH: Severity.CRITICAL,
    AlertType.RESOLUTION_BREACH: Severity.CRITICAL,
    AlertType.RESPONSE_WARNING: Severity.HIGH,
    AlertType.RESOLUTION_WARNING: Severity.HIGH,
    AlertType.ESCALATION: Severity.HIGH,
}


@dataclass
class SLAAlert:
    """
    SLA alert entity.

    Created by the evaluator; afterwards only acknowledgement mutates it.
    """

    id: str
    subject_id: str
    alert_type: str
    severity: str
    message: str
    sent_at: datetime

    # Set on escalation alerts only
    escalation_level: Optional[int] = None

    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None

    @staticmethod
    def severity_for(alert_type: str) -> str:
        return _ALERT_SEVERITY[alert_type]

    def acknowledge(self, user_id: str, timestamp: datetime) -> None:
        """Mark alert as acknowledged by a user."""
        if self.acknowledged:
            raise InvalidTransitionException("sla_alert", self.id, "acknowledged", "acknowledge")
        self.acknowledged = True
        self.acknowledged_by = user_id
        self.acknowledged_at = timestamp


@dataclass(frozen=True)
class NotificationIntent:
    """What the dispatcher should deliver, and to whom."""
    subject_id: str
    alert_id: str
    alert_type: str
    severity: str
    message: str
    notify_roles: List[str]
    escalation_level: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for webhook payloads."""
        return {
            "subject_id": self.subject_id,
            "alert_id": self.alert_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "message": self.message,
            "notify_roles": list(self.notify_roles),
            "escalation_level": self.escalation_level,
        }
