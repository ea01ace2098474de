from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from auditflow.core import InvalidTransitionException, ValidationException
from auditflow.sla.application import new_monitoring_record
from auditflow.sla.domain import (
    AlertDeduplicationRule,
    DeadlineCalculator,
    EscalationLevel,
    MonitoredSubject,
    SLAAlert,
    SLAConfig,
    SLAPolicy,
    SLARuleEngine,
    SLAStatusCalculator,
)

from conftest import T0, at, critical_policy


def _record(policy: SLAPolicy = None):
    policy = policy or critical_policy()
    subject = MonitoredSubject(
        id="INC-1", subject_type="incident", title="Outage", severity=policy.severity, created_at=T0
    )
    return new_monitoring_record(subject, policy, T0)


def _alert(alert_type: str, sent_at, level=None) -> SLAAlert:
    return SLAAlert(
        id=f"{alert_type}-{sent_at.isoformat()}",
        subject_id="INC-1",
        alert_type=alert_type,
        severity=SLAAlert.severity_for(alert_type),
        message="",
        sent_at=sent_at,
        escalation_level=level,
    )


# ========== Deadline Calculator ==========

def test_deadlines_offset_from_creation() -> None:
    deadlines = DeadlineCalculator.compute_deadlines(T0, critical_policy())

    assert deadlines.response_deadline == at(1)
    assert deadlines.resolution_deadline == at(4)


def test_zero_hour_targets_put_deadline_at_creation() -> None:
    policy = SLAPolicy(id="p", severity="low", response_time_hours=0, resolution_time_hours=0)

    deadlines = DeadlineCalculator.compute_deadlines(T0, policy)

    assert deadlines.response_deadline == T0
    assert deadlines.resolution_deadline == T0


def test_default_config_has_one_policy_per_severity() -> None:
    config = SLAConfig()

    critical = config.get_active_policy("critical")
    assert critical.response_time_hours == 1
    assert critical.resolution_time_hours == 4
    assert config.get_active_policy("low").resolution_time_hours == 72
    assert config.get_policy("default-high") is not None
    assert config.alert_notify_roles == ["admin", "incident_manager", "supervisor"]


def test_inactive_policy_is_not_selected() -> None:
    policy = SLAPolicy(id="old", severity="high", response_time_hours=1, resolution_time_hours=2, is_active=False)

    config = SLAConfig(policies=[policy])

    assert config.get_active_policy("high") is None
    assert config.get_policy("old").id == "old"


def test_two_active_policies_for_one_severity_rejected() -> None:
    with pytest.raises(ValidationError):
        SLAConfig(policies=[
            SLAPolicy(id="a", severity="high", response_time_hours=1, resolution_time_hours=2),
            SLAPolicy(id="b", severity="high", response_time_hours=2, resolution_time_hours=4),
        ])


def test_escalation_ladder_must_increase() -> None:
    with pytest.raises(ValidationError):
        SLAPolicy(
            id="p",
            severity="high",
            response_time_hours=1,
            resolution_time_hours=2,
            escalation_levels=[
                EscalationLevel(level=1, time_hours=3),
                EscalationLevel(level=2, time_hours=2),
            ],
        )


def test_unknown_severity_rejected() -> None:
    with pytest.raises(ValidationError):
        SLAPolicy(id="p", severity="urgent", response_time_hours=1, resolution_time_hours=2)


def test_level_reached_picks_highest_crossed_threshold() -> None:
    policy = critical_policy()

    assert policy.level_reached(1.9) is None
    assert policy.level_reached(2).level == 1
    assert policy.level_reached(10).level == 2


# ========== Rule Engine ==========

def test_nothing_due_early_in_the_window() -> None:
    policy = critical_policy().model_copy(update={
        "response_warning_lead_hours": 0.25,
        "resolution_warning_lead_hours": 1,
    })

    plan = SLARuleEngine.plan(_record(policy), policy, at(0.5))

    assert plan.is_empty


def test_response_warning_before_breach() -> None:
    policy = critical_policy().model_copy(update={
        "response_warning_lead_hours": 0.25,
        "resolution_warning_lead_hours": 1,
    })

    plan = SLARuleEngine.plan(_record(policy), policy, at(0.9))

    assert [a.alert_type for a in plan.alerts] == ["response_warning"]
    assert plan.escalation is None


def test_breach_replaces_warning_and_escalation_comes_last() -> None:
    policy = critical_policy()

    plan = SLARuleEngine.plan(_record(policy), policy, at(2.5), "Outage")

    types = [a.alert_type for a in plan.alerts]
    assert types == ["response_breach", "resolution_warning", "escalation"]
    assert plan.escalation.level == 1
    assert plan.alerts[-1].escalation_level == 1
    assert plan.alerts[-1].message == "Outage escalated to level 1"


def test_deadline_instant_itself_is_not_a_breach() -> None:
    policy = critical_policy().model_copy(update={"response_warning_lead_hours": 0})

    plan = SLARuleEngine.plan(_record(policy), policy, at(1))

    assert "response_breach" not in [a.alert_type for a in plan.alerts]


def test_responded_subject_gets_no_response_alerts() -> None:
    record = _record()
    record.record_response(at(0.5))

    plan = SLARuleEngine.plan(record, critical_policy(), at(1.5))

    assert all(not a.alert_type.startswith("response") for a in plan.alerts)


def test_terminal_record_yields_empty_plan() -> None:
    record = _record()
    record.record_response(at(0.5))
    record.record_resolution(at(5))

    plan = SLARuleEngine.plan(record, critical_policy(), at(10))

    assert plan.is_empty


def test_escalation_jumps_to_highest_crossed_level() -> None:
    plan = SLARuleEngine.plan(_record(), critical_policy(), at(3.5))

    assert plan.escalation.level == 2


def test_no_escalation_at_or_below_current_level() -> None:
    record = _record()
    record.escalate_to(2, at(3))

    plan = SLARuleEngine.plan(record, critical_policy(), at(3.5))

    assert plan.escalation is None
    assert "escalation" not in [a.alert_type for a in plan.alerts]


def test_escalation_level_never_decreases() -> None:
    record = _record()
    record.escalate_to(2, at(3))

    with pytest.raises(InvalidTransitionException):
        record.escalate_to(1, at(4))
    assert record.current_escalation_level == 2


# ========== Monitoring record ==========

def test_actuals_are_frozen_once_recorded() -> None:
    record = _record()

    assert record.record_response(at(0.5)) is True
    assert record.record_response(at(3)) is False
    assert record.actual_response_time == at(0.5)
    assert record.response_sla_met is True


def test_late_resolution_is_not_met() -> None:
    record = _record()
    record.record_response(at(2))
    record.record_resolution(at(5))

    assert record.response_sla_met is False
    assert record.resolution_sla_met is False
    assert record.is_terminal


def test_resolution_counts_as_response() -> None:
    subject = MonitoredSubject(id="S", subject_type="incident", title="t", severity="high", created_at=T0)

    subject.mark_resolved(at(1))

    assert subject.responded_at == at(1)
    assert subject.resolved_at == at(1)


def test_subject_rejects_response_before_creation() -> None:
    with pytest.raises(ValueError):
        MonitoredSubject(
            id="S", subject_type="incident", title="t", severity="high",
            created_at=T0, responded_at=T0 - timedelta(minutes=1),
        )


# ========== Status ==========

def test_status_states() -> None:
    policy = critical_policy().model_copy(update={
        "response_warning_lead_hours": 0.25,
        "resolution_warning_lead_hours": 1,
    })
    record = _record(policy)

    assert SLAStatusCalculator.status(record, policy, at(0.5)).state == "pending"
    assert SLAStatusCalculator.status(record, policy, at(0.9)).state == "warning"
    breached = SLAStatusCalculator.status(record, policy, at(1.5))
    assert breached.state == "breached"
    assert breached.is_breached
    assert breached.response_remaining_seconds == 0


def test_status_met_when_both_actuals_on_time() -> None:
    record = _record()
    record.record_response(at(0.5))
    record.record_resolution(at(3))

    status = SLAStatusCalculator.status(record, critical_policy(), at(10))

    assert status.state == "met"


# ========== Deduplication ==========

def test_same_type_within_window_is_duplicate() -> None:
    rule = AlertDeduplicationRule(timedelta(hours=1))
    sent = [_alert("response_breach", at(1.5))]

    assert rule.is_duplicate(_alert("response_breach", at(2.5)), sent)
    assert not rule.is_duplicate(_alert("response_breach", at(2.6)), sent)
    assert not rule.is_duplicate(_alert("resolution_breach", at(2)), sent)


def test_escalation_alerts_dedupe_per_level() -> None:
    rule = AlertDeduplicationRule(timedelta(hours=1))
    sent = [_alert("escalation", at(2), level=1)]

    assert rule.is_duplicate(_alert("escalation", at(30), level=1), sent)
    assert not rule.is_duplicate(_alert("escalation", at(3), level=2), sent)


def test_acknowledge_twice_is_rejected() -> None:
    alert = _alert("response_breach", at(1.5))
    alert.acknowledge("alice", at(2))

    with pytest.raises(InvalidTransitionException):
        alert.acknowledge("bob", at(3))
    assert alert.acknowledged_by == "alice"


def test_subject_events_cannot_precede_creation() -> None:
    subject = MonitoredSubject(
        id="INC-1", subject_type="incident", title="Outage", severity="critical", created_at=T0
    )

    with pytest.raises(ValidationException) as exc_info:
        subject.mark_responded(at(-1))
    with pytest.raises(ValidationException):
        subject.mark_resolved(at(-0.25))

    assert exc_info.value.errors
    assert subject.responded_at is None and subject.resolved_at is None
    subject.mark_resolved(T0)
    assert subject.responded_at == T0 and subject.resolved_at == T0
