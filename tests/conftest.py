from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from auditflow.core import NotificationDispatchException
from auditflow.shared.infrastructure.locks import KeyedLock
from auditflow.sla.application import INotificationDispatcher, SLAEvaluationService, SLAMonitoringService
from auditflow.sla.domain import EscalationLevel, MonitoredSubject, NotificationIntent, SLAConfig, SLAPolicy
from auditflow.sla.infrastructure import ConfigPolicyStore, InMemorySLAStore
from auditflow.workflow.infrastructure import InMemoryWorkflowStore

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def at(hours: float) -> datetime:
    return T0 + timedelta(hours=hours)


class RecordingDispatcher(INotificationDispatcher):
    """Keeps every delivered intent for assertions."""

    def __init__(self) -> None:
        self.alerts: List[NotificationIntent] = []
        self.escalations: List[dict] = []

    async def on_alert(self, intent: NotificationIntent) -> None:
        self.alerts.append(intent)

    async def on_escalation(self, subject_id, level, notify_roles, message) -> None:
        self.escalations.append({
            "subject_id": subject_id,
            "level": level,
            "notify_roles": list(notify_roles),
            "message": message,
        })


class FailingDispatcher(INotificationDispatcher):
    def __init__(self) -> None:
        self.calls = 0

    async def on_alert(self, intent: NotificationIntent) -> None:
        self.calls += 1
        raise NotificationDispatchException("webhook down")

    async def on_escalation(self, subject_id, level, notify_roles, message) -> None:
        self.calls += 1
        raise NotificationDispatchException("webhook down")


def critical_policy() -> SLAPolicy:
    return SLAPolicy(
        id="critical-test",
        severity="critical",
        response_time_hours=1,
        resolution_time_hours=4,
        escalation_levels=[
            EscalationLevel(level=1, time_hours=2, notify_roles=["supervisor"]),
            EscalationLevel(level=2, time_hours=3, notify_roles=["director"]),
        ],
    )


@pytest.fixture
def sla_config() -> SLAConfig:
    defaults = [p for p in SLAConfig().policies if p.severity != "critical"]
    return SLAConfig(policies=[critical_policy(), *defaults])


@pytest.fixture
def policy_store(sla_config: SLAConfig) -> ConfigPolicyStore:
    return ConfigPolicyStore(lambda: sla_config)


@pytest.fixture
def sla_store() -> InMemorySLAStore:
    return InMemorySLAStore()


@pytest.fixture
def workflow_store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture
def subject_locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def evaluator(sla_store, policy_store, dispatcher, subject_locks) -> SLAEvaluationService:
    return SLAEvaluationService(
        sla_store.repositories(), policy_store, dispatcher, subject_locks, timedelta(hours=1)
    )


@pytest.fixture
def monitoring(sla_store, policy_store, subject_locks) -> SLAMonitoringService:
    return SLAMonitoringService(sla_store.repositories(), policy_store, subject_locks)


@pytest.fixture
async def critical_subject(monitoring: SLAMonitoringService) -> MonitoredSubject:
    return await monitoring.register_subject(MonitoredSubject(
        id="INC-1",
        subject_type="incident",
        title="Payment gateway timeouts",
        severity="critical",
        created_at=T0,
    ))
