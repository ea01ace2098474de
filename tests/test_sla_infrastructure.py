from __future__ import annotations

import json

import httpx
import pytest

from auditflow.core import ConfigurationException, NotificationDispatchException
from auditflow.sla.domain import NotificationIntent
from auditflow.sla.infrastructure import (
    CircuitBreaker,
    CircuitState,
    LoggingNotificationDispatcher,
    SLAConfigManager,
    SLAScheduler,
    WebhookNotificationDispatcher,
)

VALID_CONFIG = """
alert_notify_roles: [oncall]
policies:
  - id: critical-fast
    severity: critical
    response_time_hours: 0.5
    resolution_time_hours: 2
    escalation_levels:
      - level: 1
        time_hours: 1
        notify_roles: [team_lead]
  - id: low-slow
    severity: low
    response_time_hours: 48
    resolution_time_hours: 120
"""


def _intent() -> NotificationIntent:
    return NotificationIntent(
        subject_id="INC-1",
        alert_id="alert-1",
        alert_type="response_breach",
        severity="critical",
        message="Response time SLA breached for INC-1",
        notify_roles=["admin"],
    )


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ========== Config manager ==========

def test_load_config_from_yaml(tmp_path) -> None:
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_CONFIG)
    manager = SLAConfigManager()

    config = manager.load(path)

    assert manager.config is config
    assert config.alert_notify_roles == ["oncall"]
    critical = config.get_active_policy("critical")
    assert critical.id == "critical-fast"
    assert critical.escalation_levels[0].notify_roles == ["team_lead"]
    assert config.get_active_policy("high") is None


def test_missing_file_falls_back_to_defaults(tmp_path) -> None:
    manager = SLAConfigManager()

    config = manager.load(tmp_path / "missing.yaml")

    assert config.get_active_policy("critical").response_time_hours == 1
    manager.start_watching()
    assert not manager.is_watching


def test_invalid_file_raises_configuration_error(tmp_path) -> None:
    path = tmp_path / "sla_config.yaml"
    path.write_text("policies:\n  - id: x\n    severity: urgent\n    response_time_hours: 1\n    resolution_time_hours: 2\n")

    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)


def test_reload_picks_up_changes(tmp_path) -> None:
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_CONFIG)
    manager = SLAConfigManager()
    manager.load(path)

    path.write_text(VALID_CONFIG.replace("response_time_hours: 0.5", "response_time_hours: 0.25"))

    assert manager.reload() is True
    assert manager.config.get_active_policy("critical").response_time_hours == 0.25


def test_failed_reload_keeps_previous_config(tmp_path) -> None:
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_CONFIG)
    manager = SLAConfigManager()
    previous = manager.load(path)

    path.write_text("policies: [unclosed")

    assert manager.reload() is False
    assert manager.config is previous


def test_reload_before_load_is_noop() -> None:
    manager = SLAConfigManager()

    assert manager.reload() is False
    with pytest.raises(RuntimeError):
        manager.config


def test_watch_and_stop(tmp_path) -> None:
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_CONFIG)
    manager = SLAConfigManager()
    manager.load(path)

    manager.start_watching()
    try:
        assert manager.is_watching
    finally:
        manager.stop_watching()
    assert not manager.is_watching


# ========== Circuit breaker ==========

def test_circuit_opens_after_threshold_and_recovers() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=clock)

    breaker.record_failure()
    assert breaker.state == CircuitState.CLOSED
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert not breaker.allow_request()

    clock.now = 30
    assert breaker.state == CircuitState.HALF_OPEN
    assert breaker.allow_request()

    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED


def test_failure_while_half_open_reopens() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=10, clock=clock)
    for _ in range(3):
        breaker.record_failure()
    clock.now = 10
    assert breaker.state == CircuitState.HALF_OPEN

    breaker.record_failure()

    assert breaker.state == CircuitState.OPEN


# ========== Webhook dispatcher ==========

@pytest.mark.asyncio
async def test_webhook_posts_alert_payload() -> None:
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(202)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher(
        "https://hooks.example.com/sla", backoff_base_seconds=0, http_client=client
    )

    await dispatcher.on_alert(_intent())
    await dispatcher.on_escalation("INC-1", 2, ["director"], "INC-1 escalated to level 2")
    await dispatcher.close()

    assert received[0]["event"] == "sla_alert"
    assert received[0]["alert_type"] == "response_breach"
    assert received[0]["notify_roles"] == ["admin"]
    assert received[1] == {
        "event": "sla_escalation",
        "subject_id": "INC-1",
        "escalation_level": 2,
        "notify_roles": ["director"],
        "message": "INC-1 escalated to level 2",
    }


@pytest.mark.asyncio
async def test_webhook_retries_then_succeeds() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(503 if len(attempts) < 3 else 200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher(
        "https://hooks.example.com/sla", max_retries=3, backoff_base_seconds=0, http_client=client
    )

    await dispatcher.on_alert(_intent())

    assert len(attempts) == 3
    assert dispatcher.circuit_breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_webhook_gives_up_after_max_retries() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher(
        "https://hooks.example.com/sla", max_retries=2, backoff_base_seconds=0, http_client=client
    )

    with pytest.raises(NotificationDispatchException) as exc_info:
        await dispatcher.on_alert(_intent())

    assert len(attempts) == 2
    assert exc_info.value.details["subject_id"] == "INC-1"


@pytest.mark.asyncio
async def test_open_circuit_short_circuits_delivery() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(500)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher(
        "https://hooks.example.com/sla",
        max_retries=1,
        backoff_base_seconds=0,
        circuit_breaker=CircuitBreaker(failure_threshold=1, recovery_timeout=60, clock=_Clock()),
        http_client=client,
    )

    with pytest.raises(NotificationDispatchException):
        await dispatcher.on_alert(_intent())
    with pytest.raises(NotificationDispatchException):
        await dispatcher.on_alert(_intent())

    assert len(attempts) == 1
    assert dispatcher.circuit_breaker.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_logging_dispatcher_accepts_intents() -> None:
    dispatcher = LoggingNotificationDispatcher()

    await dispatcher.on_alert(_intent())
    await dispatcher.on_escalation("INC-1", 1, ["team_lead"], "INC-1 escalated to level 1")
    await dispatcher.close()


# ========== Scheduler ==========

@pytest.mark.asyncio
async def test_scheduler_start_and_stop() -> None:
    async def job() -> None:
        return None

    scheduler = SLAScheduler(interval_seconds=3600)

    await scheduler.start(job)
    assert scheduler.is_running
    await scheduler.start(job)

    await scheduler.stop()
    assert not scheduler.is_running
