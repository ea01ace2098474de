from __future__ import annotations

import httpx
import pytest

from auditflow.bootstrap import ServiceContainer
from auditflow.config import Settings
from auditflow.main import create_app

from conftest import RecordingDispatcher

WORKFLOW = {
    "id": "wf-vendor",
    "name": "Vendor onboarding",
    "entity_type": "vendor",
    "steps": [
        {"step_order": 1, "step_name": "Security review", "assignee_role": "security"},
        {"step_order": 2, "step_name": "Finance review", "assignee_role": "finance"},
        {"step_order": 3, "step_name": "Legal FYI", "assignee_role": "legal", "required": False},
    ],
}

APPROVAL = {
    "workflow_id": "wf-vendor",
    "entity_type": "vendor",
    "entity_id": "VND-7",
    "requester_id": "bob",
    "title": "Onboard Acme Corp",
    "priority": "high",
}


@pytest.fixture
async def container(tmp_path):
    settings = Settings(
        storage_backend="memory",
        sla_evaluation_interval=0,
        sla_config_path=tmp_path / "missing.yaml",
        environment="test",
    )
    container = ServiceContainer(settings, dispatcher=RecordingDispatcher())
    await container.startup(start_scheduler=False)
    yield container
    await container.shutdown()


@pytest.fixture
async def client(container):
    app = create_app(container.settings, container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ========== Health ==========

@pytest.mark.asyncio
async def test_health(client) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["storage"] == "memory"
    assert body["checks"]["sla_config"] == "loaded"
    assert body["checks"]["sla_scheduler"] == "stopped"
    assert body["checks"]["notifications"] == "RecordingDispatcher"


@pytest.mark.asyncio
async def test_correlation_id_round_trip(client) -> None:
    response = await client.get("/", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"
    assert "X-Response-Time" in response.headers


# ========== Workflows and approvals ==========

@pytest.mark.asyncio
async def test_create_and_fetch_workflow(client) -> None:
    created = await client.post("/workflows", json=WORKFLOW)

    assert created.status_code == 201
    assert [s["step_order"] for s in created.json()["steps"]] == [1, 2, 3]

    fetched = await client.get("/workflows/wf-vendor")
    assert fetched.json()["name"] == "Vendor onboarding"
    listed = await client.get("/workflows", params={"entity_type": "vendor"})
    assert [w["id"] for w in listed.json()] == ["wf-vendor"]


@pytest.mark.asyncio
async def test_invalid_workflow_returns_422(client) -> None:
    payload = {**WORKFLOW, "steps": [{"step_order": 1, "step_name": "Optional", "assignee_role": "x", "required": False}]}

    response = await client.post("/workflows", json=payload)

    assert response.status_code == 422
    body = response.json()
    assert body["error_type"] == "ValidationException"
    assert "Workflow must have at least one required step" in body["details"]["errors"]


@pytest.mark.asyncio
async def test_unknown_workflow_returns_404(client) -> None:
    response = await client.get("/workflows/nope")

    assert response.status_code == 404
    assert response.json()["error_type"] == "ResourceNotFoundException"


@pytest.mark.asyncio
async def test_approval_flow_over_http(client, container) -> None:
    await client.post("/workflows", json=WORKFLOW)
    started = await client.post("/approvals", json=APPROVAL)

    assert started.status_code == 201
    request_id = started.json()["id"]
    assert started.json()["status"] == "pending"
    assert started.json()["steps_total"] == 3

    pending = await client.get("/approvals/pending", params={"role": "security"})
    assert [p["request_id"] for p in pending.json()] == [request_id]

    first = await client.post(
        f"/approvals/{request_id}/steps/1/decision",
        json={"decision": "approve", "actor_id": "alice", "comments": "ok"},
    )
    assert first.status_code == 200
    assert first.json()["request_status"] == "in_progress"

    second = await client.post(
        f"/approvals/{request_id}/steps/2/decision",
        json={"decision": "approve", "actor_id": "carol"},
    )
    assert second.json()["request_status"] == "approved"
    assert second.json()["terminal"] is True

    again = await client.post(
        f"/approvals/{request_id}/steps/1/decision",
        json={"decision": "approve", "actor_id": "alice"},
    )
    assert again.status_code == 409
    assert again.json()["error_type"] == "InvalidTransitionException"

    fetched = await client.get(f"/approvals/{request_id}")
    assert fetched.json()["status"] == "approved"
    assert fetched.json()["steps_completed"] == 2

    actions = await client.get(f"/approvals/{request_id}/actions")
    assert [a["performer_id"] for a in actions.json()] == ["alice", "carol"]

    approved = await client.get("/approvals", params={"status": "approved"})
    assert [r["id"] for r in approved.json()] == [request_id]

    subject = container.sla_store.subjects[request_id]
    assert subject.severity == "high"
    assert subject.resolved_at is not None


@pytest.mark.asyncio
async def test_skip_required_step_returns_409(client) -> None:
    await client.post("/workflows", json=WORKFLOW)
    request_id = (await client.post("/approvals", json=APPROVAL)).json()["id"]

    response = await client.post(
        f"/approvals/{request_id}/steps/1/decision",
        json={"decision": "skip", "actor_id": "alice"},
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_invalid_decision_payload_returns_422(client) -> None:
    await client.post("/workflows", json=WORKFLOW)
    request_id = (await client.post("/approvals", json=APPROVAL)).json()["id"]

    response = await client.post(
        f"/approvals/{request_id}/steps/1/decision",
        json={"decision": "maybe", "actor_id": "alice"},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cancel_over_http(client) -> None:
    await client.post("/workflows", json=WORKFLOW)
    request_id = (await client.post("/approvals", json=APPROVAL)).json()["id"]

    cancelled = await client.post(f"/approvals/{request_id}/cancel", json={"actor_id": "bob", "reason": "dup"})
    again = await client.post(f"/approvals/{request_id}/cancel", json={"actor_id": "bob"})

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_unknown_approval_returns_404(client) -> None:
    response = await client.get("/approvals/does-not-exist")

    assert response.status_code == 404


# ========== SLA ==========

@pytest.mark.asyncio
async def test_subject_lifecycle_over_http(client, container) -> None:
    created = await client.post("/sla/subjects", json={
        "id": "INC-1042",
        "title": "Payment gateway timeouts",
        "severity": "critical",
        "created_at": "2024-01-15T10:00:00Z",
    })
    assert created.status_code == 201

    before = await client.get("/sla/subjects/INC-1042")
    assert before.json()["monitoring"] is None

    outcome = await client.post("/sla/subjects/INC-1042/evaluate")
    assert outcome.status_code == 200
    assert outcome.json()["status"] == "applied"
    assert sorted(a["alert_type"] for a in outcome.json()["alerts"]) == [
        "resolution_breach", "response_breach",
    ]

    detail = await client.get("/sla/subjects/INC-1042")
    monitoring = detail.json()["monitoring"]
    assert monitoring["sla_policy_id"] == "default-critical"
    assert monitoring["status"]["state"] == "breached"

    alerts = await client.get("/sla/subjects/INC-1042/alerts")
    alert_id = alerts.json()[0]["id"]
    acked = await client.post(f"/sla/alerts/{alert_id}/acknowledge", json={"user_id": "alice"})
    assert acked.status_code == 200
    assert acked.json()["acknowledged_by"] == "alice"
    again = await client.post(f"/sla/alerts/{alert_id}/acknowledge", json={"user_id": "bob"})
    assert again.status_code == 409

    resolved = await client.post("/sla/subjects/INC-1042/resolution", json={})
    assert resolved.json()["resolved_at"] is not None
    assert container.sla_store.monitoring["INC-1042"].is_terminal


@pytest.mark.asyncio
async def test_duplicate_subject_returns_422(client) -> None:
    payload = {"id": "INC-1", "title": "Outage", "severity": "high"}
    await client.post("/sla/subjects", json=payload)

    response = await client.post("/sla/subjects", json=payload)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_subject_returns_404(client) -> None:
    response = await client.get("/sla/subjects/missing")

    assert response.status_code == 404
    assert response.json()["detail"] == "Subject with id 'missing' not found"


@pytest.mark.asyncio
async def test_sweep_endpoint(client) -> None:
    await client.post("/sla/subjects", json={
        "id": "INC-1", "title": "Outage", "severity": "critical", "created_at": "2024-01-15T10:00:00Z",
    })
    await client.post("/sla/subjects", json={
        "id": "INC-2", "title": "Slow search", "severity": "low", "created_at": "2024-01-15T10:00:00Z",
    })

    first = await client.post("/sla/evaluate", json={"now": "2024-01-15T11:30:00Z"})
    second = await client.post("/sla/evaluate", json={"now": "2024-01-15T11:30:00Z"})

    assert first.status_code == 200
    assert first.json()["subjects_evaluated"] == 2
    assert first.json()["outcomes"]["applied"] == 1
    assert first.json()["outcomes"]["unchanged"] == 1
    assert second.json()["alerts_created"] == 0


@pytest.mark.asyncio
async def test_timestamps_without_timezone_return_422(client) -> None:
    created = await client.post("/sla/subjects", json={
        "id": "INC-N", "title": "Outage", "severity": "critical", "created_at": "2024-01-15T10:00:00",
    })
    assert created.status_code == 422
    missing = await client.get("/sla/subjects/INC-N")
    assert missing.status_code == 404

    await client.post("/sla/subjects", json={
        "id": "INC-1", "title": "Outage", "severity": "critical", "created_at": "2024-01-15T10:00:00Z",
    })
    sweep = await client.post("/sla/evaluate", json={"now": "2024-01-15T11:30:00"})
    response = await client.post("/sla/subjects/INC-1/response", json={"at": "2024-01-15T10:30:00"})

    assert sweep.status_code == 422
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_response_before_creation_returns_422(client) -> None:
    await client.post("/sla/subjects", json={
        "id": "INC-1", "title": "Outage", "severity": "critical", "created_at": "2024-01-15T10:00:00Z",
    })

    early = await client.post("/sla/subjects/INC-1/response", json={"at": "2024-01-15T09:00:00Z"})

    assert early.status_code == 422
    assert early.json()["error_type"] == "ValidationException"
    detail = await client.get("/sla/subjects/INC-1")
    assert detail.status_code == 200
    assert detail.json()["subject"]["responded_at"] is None
    evaluated = await client.post("/sla/subjects/INC-1/evaluate")
    assert evaluated.status_code == 200
