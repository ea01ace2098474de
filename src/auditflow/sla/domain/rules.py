"""
SLA Evaluation Rules
====================

Pure decision logic for a single evaluator tick.

Given a monitoring record, its policy and the current time, decide which
alerts are due and whether the escalation level moves. No I/O here: the
application layer persists the resulting plan atomically.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from uuid import uuid4

from auditflow.config import AlertType
from auditflow.sla.domain.entities import SLAAlert, SLAMonitoring
from auditflow.sla.domain.value_objects import (
    DeadlineCalculator, EscalationLevel, SLAPolicy
)


@dataclass
class TickPlan:
    """Alerts and escalation a tick wants to apply."""
    alerts: List[SLAAlert] = field(default_factory=list)
    escalation: Optional[EscalationLevel] = None

    @property
    def is_empty(self) -> bool:
        return not self.alerts and self.escalation is None


class SLARuleEngine:
    """
    Evaluates one monitoring record, in fixed order:

    1. response breach, else response warning
    2. resolution breach, else resolution warning
    3. escalation to the highest crossed level above the current one

    Terminal records always yield an empty plan.
    """

    @staticmethod
    def plan(
        record: SLAMonitoring,
        policy: SLAPolicy,
        now: datetime,
        subject_label: Optional[str] = None,
    ) -> TickPlan:
        plan = TickPlan()
        if record.is_terminal:
            return plan

        label = subject_label or record.subject_id

        if record.actual_response_time is None:
            threshold = DeadlineCalculator.warning_threshold(
                record.response_deadline, policy.response_warning_lead_hours
            )
            if now > record.response_deadline:
                plan.alerts.append(_new_alert(
                    record, AlertType.RESPONSE_BREACH, now,
                    f"Response time SLA breached for {label}"
                ))
            elif now > threshold:
                plan.alerts.append(_new_alert(
                    record, AlertType.RESPONSE_WARNING, now,
                    f"Response time SLA warning for {label}"
                ))

        if record.actual_resolution_time is None:
            threshold = DeadlineCalculator.warning_threshold(
                record.resolution_deadline, policy.resolution_warning_lead_hours
            )
            if now > record.resolution_deadline:
                plan.alerts.append(_new_alert(
                    record, AlertType.RESOLUTION_BREACH, now,
                    f"Resolution time SLA breached for {label}"
                ))
            elif now > threshold:
                plan.alerts.append(_new_alert(
                    record, AlertType.RESOLUTION_WARNING, now,
                    f"Resolution time SLA warning for {label}"
                ))

        elapsed = DeadlineCalculator.elapsed_hours(record.subject_created_at, now)
        reached = policy.level_reached(elapsed)
        if reached is not None and reached.level > record.current_escalation_level:
            plan.escalation = reached
            plan.alerts.append(_new_alert(
                record, AlertType.ESCALATION, now,
                f"{label} escalated to level {reached.level}",
                escalation_level=reached.level,
            ))

        return plan


def _new_alert(
    record: SLAMonitoring,
    alert_type: str,
    now: datetime,
    message: str,
    escalation_level: Optional[int] = None,
) -> SLAAlert:
    return SLAAlert(
        id=str(uuid4()),
        subject_id=record.subject_id,
        alert_type=alert_type,
        severity=SLAAlert.severity_for(alert_type),
        message=message,
        sent_at=now,
        escalation_level=escalation_level,
    )


class AlertDeduplicationRule:
    """
    Decides whether a candidate alert repeats one already sent.

    Warning and breach alerts repeat when one of the same type was sent
    within the window. Escalation alerts are unique per level for the
    lifetime of the subject; the escalation level itself only moves up.
    """

    def __init__(self, window: timedelta):
        self.window = window

    def is_duplicate(self, candidate: SLAAlert, existing: Iterable[SLAAlert]) -> bool:
        for alert in existing:
            if alert.subject_id != candidate.subject_id or alert.alert_type != candidate.alert_type:
                continue
            if candidate.alert_type == AlertType.ESCALATION:
                if alert.escalation_level == candidate.escalation_level:
                    return True
                continue
            if candidate.sent_at - alert.sent_at <= self.window:
                return True
        return False
