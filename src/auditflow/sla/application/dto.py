"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import AwareDatetime, BaseModel, Field

from auditflow.sla.application.services import TickOutcome
from auditflow.sla.domain import MonitoredSubject, SLAAlert, SLAMonitoring, SLAStatus


# ========== Type Aliases for Literals ==========
SeverityStr = Literal["critical", "high", "medium", "low"]
SLAStateStr = Literal["pending", "warning", "breached", "met"]
AlertTypeStr = Literal[
    "response_warning", "response_breach",
    "resolution_warning", "resolution_breach", "escalation",
]


# ========== Request DTOs ==========

class SubjectCreateDTO(BaseModel):
    """DTO for registering a subject to be monitored."""
    id: str = Field(..., min_length=1, description="Unique subject ID")
    subject_type: str = Field(default="incident", min_length=1, description="Kind of subject")
    title: str = Field(..., min_length=1, description="Human-readable label used in alerts")
    severity: SeverityStr = Field(..., description="Severity selecting the SLA policy")
    created_at: Optional[AwareDatetime] = Field(None, description="Creation time with timezone, defaults to now")

    def to_domain(self, now: datetime) -> MonitoredSubject:
        return MonitoredSubject(
            id=self.id,
            subject_type=self.subject_type,
            title=self.title,
            severity=self.severity,
            created_at=self.created_at or now,
        )


class SubjectEventDTO(BaseModel):
    """Body for response/resolution recording."""
    at: Optional[AwareDatetime] = Field(None, description="Event time with timezone, defaults to now")


class AlertAcknowledgeDTO(BaseModel):
    user_id: str = Field(..., min_length=1, description="User acknowledging the alert")


class SweepRequestDTO(BaseModel):
    """On-demand sweep; `now` lets operators replay a point in time."""
    now: Optional[AwareDatetime] = None


# ========== Response DTOs ==========

class SubjectResponse(BaseModel):
    id: str
    subject_type: str
    title: str
    severity: SeverityStr
    created_at: datetime
    responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, subject: MonitoredSubject) -> "SubjectResponse":
        return cls(
            id=subject.id,
            subject_type=subject.subject_type,
            title=subject.title,
            severity=subject.severity,
            created_at=subject.created_at,
            responded_at=subject.responded_at,
            resolved_at=subject.resolved_at,
        )


class SLAStatusResponse(BaseModel):
    """Current SLA badge for a subject."""
    state: SLAStateStr = Field(..., description="Current SLA state")
    response_remaining_seconds: float = Field(..., description="Time to response deadline (0 if passed or met)")
    resolution_remaining_seconds: float = Field(..., description="Time to resolution deadline (0 if passed or met)")
    is_breached: bool

    @classmethod
    def from_domain(cls, status: SLAStatus) -> "SLAStatusResponse":
        return cls(
            state=status.state,
            response_remaining_seconds=status.response_remaining_seconds,
            resolution_remaining_seconds=status.resolution_remaining_seconds,
            is_breached=status.is_breached,
        )


class SLAMonitoringResponse(BaseModel):
    """Response model for a subject's SLA monitoring record."""
    subject_id: str
    sla_policy_id: str
    response_deadline: datetime
    resolution_deadline: datetime
    actual_response_time: Optional[datetime] = None
    actual_resolution_time: Optional[datetime] = None
    response_sla_met: bool
    resolution_sla_met: bool
    current_escalation_level: int
    last_escalation_at: Optional[datetime] = None
    alerts_sent: List[str] = Field(default_factory=list)
    status: SLAStatusResponse

    @classmethod
    def from_domain(cls, record: SLAMonitoring, status: SLAStatus) -> "SLAMonitoringResponse":
        return cls(
            subject_id=record.subject_id,
            sla_policy_id=record.sla_policy_id,
            response_deadline=record.response_deadline,
            resolution_deadline=record.resolution_deadline,
            actual_response_time=record.actual_response_time,
            actual_resolution_time=record.actual_resolution_time,
            response_sla_met=record.response_sla_met,
            resolution_sla_met=record.resolution_sla_met,
            current_escalation_level=record.current_escalation_level,
            last_escalation_at=record.last_escalation_at,
            alerts_sent=sorted(record.alerts_sent),
            status=SLAStatusResponse.from_domain(status),
        )


class SubjectSLAResponse(BaseModel):
    subject: SubjectResponse
    monitoring: Optional[SLAMonitoringResponse] = Field(
        None,
        description="Absent until the first evaluation, or when no policy covers the severity"
    )


class AlertResponse(BaseModel):
    """Response model for SLA alert."""
    id: str = Field(..., description="Alert ID")
    subject_id: str
    alert_type: AlertTypeStr
    severity: SeverityStr
    message: str
    sent_at: datetime
    escalation_level: Optional[int] = None
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, alert: SLAAlert) -> "AlertResponse":
        return cls(
            id=alert.id,
            subject_id=alert.subject_id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            message=alert.message,
            sent_at=alert.sent_at,
            escalation_level=alert.escalation_level,
            acknowledged=alert.acknowledged,
            acknowledged_by=alert.acknowledged_by,
            acknowledged_at=alert.acknowledged_at,
        )


class SweepResponse(BaseModel):
    """Response model for an evaluation sweep."""
    subjects_evaluated: int = Field(..., description="Number of subjects ticked")
    alerts_created: int = Field(..., description="Alerts inserted across all subjects")
    escalations: int = Field(..., description="Subjects whose escalation level moved")
    outcomes: Dict[str, int] = Field(default_factory=dict, description="Subjects per tick outcome")

    @classmethod
    def from_summary(cls, summary: Dict[str, int]) -> "SweepResponse":
        totals = ("subjects_evaluated", "alerts_created", "escalations")
        return cls(
            subjects_evaluated=summary["subjects_evaluated"],
            alerts_created=summary["alerts_created"],
            escalations=summary["escalations"],
            outcomes={k: v for k, v in summary.items() if k not in totals},
        )


class TickOutcomeResponse(BaseModel):
    """Result of evaluating a single subject."""
    subject_id: str
    status: str = Field(..., description="applied, unchanged, deferred, discarded, terminal, ...")
    escalated_to: Optional[int] = None
    alerts: List[AlertResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, outcome: TickOutcome) -> "TickOutcomeResponse":
        return cls(
            subject_id=outcome.subject_id,
            status=outcome.status,
            escalated_to=outcome.escalated_to,
            alerts=[AlertResponse.from_domain(a) for a in outcome.alerts],
        )
