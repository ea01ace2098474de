"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auditflow.config import Severity, SLAState, VALID_SEVERITIES


class EscalationLevel(BaseModel):
    """A time threshold past which additional roles must be notified."""
    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1, description="Escalation level (1-based)")
    time_hours: float = Field(ge=0, description="Hours after creation that trigger this level")
    notify_roles: List[str] = Field(default_factory=list, description="Roles notified on escalation")
    auto_escalate: bool = Field(default=True, description="Escalate without manual confirmation")


class SLAPolicy(BaseModel):
    """
    Severity-keyed SLA targets and escalation ladder.

    Escalation levels must be ordered by strictly increasing `time_hours`
    and strictly increasing `level`, so the last crossed threshold is
    always the highest level.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(default="")
    description: str = Field(default="")
    severity: str
    response_time_hours: float = Field(ge=0)
    resolution_time_hours: float = Field(ge=0)
    response_warning_lead_hours: float = Field(default=2, ge=0)
    resolution_warning_lead_hours: float = Field(default=4, ge=0)
    escalation_levels: List[EscalationLevel] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("severity")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        if v not in VALID_SEVERITIES:
            raise ValueError(f"severity must be one of {VALID_SEVERITIES}")
        return v

    @field_validator("escalation_levels")
    @classmethod
    def validate_escalation_ladder(cls, v: List[EscalationLevel]) -> List[EscalationLevel]:
        for previous, current in zip(v, v[1:]):
            if current.time_hours <= previous.time_hours:
                raise ValueError("escalation_levels must have strictly increasing time_hours")
            if current.level <= previous.level:
                raise ValueError("escalation_levels must have strictly increasing level numbers")
        return v

    def level_reached(self, elapsed_hours: float) -> Optional[EscalationLevel]:
        """Highest escalation level whose threshold has been crossed."""
        reached = None
        for level in self.escalation_levels:
            if level.time_hours <= elapsed_hours:
                reached = level
        return reached


# Defaults mirror the console's severity table (response / resolution hours)
DEFAULT_SEVERITY_TARGETS: Dict[str, tuple] = {
    Severity.CRITICAL: (1, 4),
    Severity.HIGH: (4, 12),
    Severity.MEDIUM: (8, 24),
    Severity.LOW: (24, 72),
}

DEFAULT_ALERT_NOTIFY_ROLES = ["admin", "incident_manager", "supervisor"]


def _default_policies() -> List[SLAPolicy]:
    return [
        SLAPolicy(
            id=f"default-{severity}",
            name=f"Default {severity} policy",
            severity=severity,
            response_time_hours=response,
            resolution_time_hours=resolution,
        )
        for severity, (response, resolution) in DEFAULT_SEVERITY_TARGETS.items()
    ]


class SLAConfig(BaseModel):
    """
    SLA configuration loaded from YAML.

    This is a value object - immutable and defined by its attributes.
    """
    policies: List[SLAPolicy] = Field(
        default_factory=_default_policies,
        description="SLA policies, one active policy per severity"
    )
    alert_notify_roles: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALERT_NOTIFY_ROLES),
        description="Roles notified of warnings and breaches"
    )

    @model_validator(mode="after")
    def validate_single_active_policy(self) -> "SLAConfig":
        seen_ids = set()
        active_severities = set()
        for policy in self.policies:
            if policy.id in seen_ids:
                raise ValueError(f"duplicate policy id '{policy.id}'")
            seen_ids.add(policy.id)
            if not policy.is_active:
                continue
            if policy.severity in active_severities:
                raise ValueError(f"more than one active policy for severity '{policy.severity}'")
            active_severities.add(policy.severity)
        return self

    def get_active_policy(self, severity: str) -> Optional[SLAPolicy]:
        for policy in self.policies:
            if policy.severity == severity and policy.is_active:
                return policy
        return None

    def get_policy(self, policy_id: str) -> Optional[SLAPolicy]:
        for policy in self.policies:
            if policy.id == policy_id:
                return policy
        return None


@dataclass(frozen=True)
class Deadlines:
    """Response and resolution deadlines stamped on a monitored subject."""
    response_deadline: datetime
    resolution_deadline: datetime


class DeadlineCalculator:
    """
    Pure functions for SLA deadline calculations.

    Stateless utility class - all deadline arithmetic in one place.
    """

    @staticmethod
    def compute_deadlines(created_at: datetime, policy: SLAPolicy) -> Deadlines:
        """
        Calculate response and resolution deadlines.

        Args:
            created_at: When the subject was created
            policy: Active SLA policy for the subject's severity

        Returns:
            Deadlines offset from `created_at` by the policy's hour targets
        """
        return Deadlines(
            response_deadline=created_at + timedelta(hours=policy.response_time_hours),
            resolution_deadline=created_at + timedelta(hours=policy.resolution_time_hours),
        )

    @staticmethod
    def warning_threshold(deadline: datetime, lead_hours: float) -> datetime:
        """Point in time after which a pre-breach warning is due."""
        return deadline - timedelta(hours=lead_hours)

    @staticmethod
    def elapsed_hours(start: datetime, now: datetime) -> float:
        return (now - start).total_seconds() / 3600


@dataclass(frozen=True)
class SLAStatus:
    """Display status of a monitored subject at a point in time."""
    state: str
    response_remaining_seconds: float
    resolution_remaining_seconds: float

    @property
    def is_breached(self) -> bool:
        return self.state == SLAState.BREACHED


class SLAStatusCalculator:
    """Computes the met / breached / warning / pending badge for a record."""

    @staticmethod
    def status(record, policy: Optional[SLAPolicy], now: datetime) -> SLAStatus:
        """
        Calculate current SLA state.

        Args:
            record: SLAMonitoring record
            policy: Policy providing warning leads (defaults used if None)
            now: Current time for evaluation

        Returns:
            SLAStatus with state and seconds remaining per deadline
        """
        response_lead = policy.response_warning_lead_hours if policy else 2
        resolution_lead = policy.resolution_warning_lead_hours if policy else 4

        response_remaining = max(0.0, (record.response_deadline - now).total_seconds())
        resolution_remaining = max(0.0, (record.resolution_deadline - now).total_seconds())
        if record.actual_response_time is not None:
            response_remaining = 0.0
        if record.actual_resolution_time is not None:
            resolution_remaining = 0.0

        if record.is_terminal:
            met = record.response_sla_met and record.resolution_sla_met
            state = SLAState.MET if met else SLAState.BREACHED
        elif (
            (record.actual_response_time is None and now > record.response_deadline)
            or now > record.resolution_deadline
        ):
            state = SLAState.BREACHED
        elif (
            (record.actual_response_time is None and now > DeadlineCalculator.warning_threshold(
                record.response_deadline, response_lead))
            or now > DeadlineCalculator.warning_threshold(record.resolution_deadline, resolution_lead)
        ):
            state = SLAState.WARNING
        else:
            state = SLAState.PENDING

        return SLAStatus(
            state=state,
            response_remaining_seconds=response_remaining,
            resolution_remaining_seconds=resolution_remaining,
        )
