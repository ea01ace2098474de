from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

from auditflow.core import (
    ConcurrentModificationException,
    InvalidTransitionException,
    ResourceNotFoundException,
    StepNotReadyException,
    ValidationException,
)
from auditflow.shared.infrastructure.locks import KeyedLock
from auditflow.sla.application.listeners import APPROVAL_SUBJECT_TYPE, ApprovalSLAListener
from auditflow.workflow.application import ApprovalService
from auditflow.workflow.application.services import IApprovalEventListener
from auditflow.workflow.domain import (
    ApprovalActionLog,
    ApprovalStepSequencer,
    WorkflowDefinition,
    WorkflowStepDefinition,
)

from conftest import T0, at


class _BrokenListener(IApprovalEventListener):
    def __init__(self):
        self.calls = 0

    async def on_request_created(self, request) -> None:
        self.calls += 1
        raise RuntimeError("listener down")

    async def on_request_terminal(self, request_id, final_status, completed_at=None) -> None:
        self.calls += 1
        raise RuntimeError("listener down")


def _workflow(workflow_id: str = "wf-expense", is_active: bool = True) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=workflow_id,
        name="Expense approval",
        entity_type="expense",
        steps=(
            WorkflowStepDefinition(1, "Manager review", "manager"),
            WorkflowStepDefinition(2, "Finance review", "finance", assignee_id="carol"),
            WorkflowStepDefinition(3, "Peer review", "engineer", required=False),
        ),
        is_active=is_active,
        created_by="admin",
        created_at=T0,
    )


@pytest.fixture
def sla_scope(sla_store):
    @asynccontextmanager
    async def scope():
        yield sla_store.repositories()
    return scope


@pytest.fixture
def listener(sla_scope, policy_store, subject_locks) -> ApprovalSLAListener:
    return ApprovalSLAListener(sla_scope, policy_store, subject_locks)


@pytest.fixture
async def service(workflow_store, listener) -> ApprovalService:
    service = ApprovalService(
        workflow_store.repositories(), ApprovalStepSequencer(), KeyedLock(), [listener]
    )
    await service.create_workflow(_workflow())
    return service


async def _start(service: ApprovalService, priority: str = "high"):
    return await service.start_request(
        "wf-expense", "expense", "EXP-42", "bob", "Conference travel", priority, now=T0
    )


# ========== Workflows ==========

@pytest.mark.asyncio
async def test_create_and_get_workflow(service) -> None:
    workflow = await service.get_workflow("wf-expense")

    assert [s.step_order for s in workflow.ordered_steps] == [1, 2, 3]
    assert [w.id for w in await service.list_workflows(entity_type="expense")] == ["wf-expense"]
    assert await service.list_workflows(entity_type="invoice") == []


@pytest.mark.asyncio
async def test_duplicate_workflow_rejected(service) -> None:
    with pytest.raises(ValidationException):
        await service.create_workflow(_workflow())


@pytest.mark.asyncio
async def test_unknown_workflow(service) -> None:
    with pytest.raises(ResourceNotFoundException):
        await service.get_workflow("missing")


@pytest.mark.asyncio
async def test_list_active_workflows_only(service) -> None:
    await service.create_workflow(_workflow("wf-old", is_active=False))

    active = await service.list_workflows(active_only=True)

    assert [w.id for w in active] == ["wf-expense"]


# ========== Requests ==========

@pytest.mark.asyncio
async def test_start_request_instantiates_pending_steps(service) -> None:
    aggregate = await _start(service)

    assert aggregate.request.status == "pending"
    assert aggregate.request.priority == "high"
    assert [s.status for s in aggregate.steps] == ["pending"] * 3
    loaded = await service.get_request(aggregate.request.id)
    assert [s.step_name for s in loaded.steps] == ["Manager review", "Finance review", "Peer review"]


@pytest.mark.asyncio
async def test_start_request_on_inactive_workflow(service) -> None:
    await service.create_workflow(_workflow("wf-old", is_active=False))

    with pytest.raises(ValidationException):
        await service.start_request("wf-old", "expense", "EXP-1", "bob", "Laptop", "low")


@pytest.mark.asyncio
async def test_start_request_for_other_entity_type(service) -> None:
    with pytest.raises(ValidationException):
        await service.start_request("wf-expense", "invoice", "INV-1", "bob", "Invoice", "low")


@pytest.mark.asyncio
async def test_full_approval_flow(service) -> None:
    request_id = (await _start(service)).request.id

    first = await service.approve_step(request_id, 1, "alice", "ok", now=at(1))
    second = await service.approve_step(request_id, 2, "carol", now=at(2))

    assert first.request_status == "in_progress"
    assert second.request_status == "approved"
    stored = (await service.get_request(request_id)).request
    assert stored.status == "approved"
    assert stored.completed_at == at(2)
    assert stored.version == 2

    with pytest.raises(InvalidTransitionException):
        await service.approve_step(request_id, 1, "alice", now=at(3))


@pytest.mark.asyncio
async def test_reject_closes_request(service) -> None:
    request_id = (await _start(service)).request.id

    result = await service.reject_step(request_id, 2, "carol", "no receipts", now=at(1))

    assert result.terminal
    assert (await service.get_request(request_id)).request.status == "rejected"
    assert [r.id for r in await service.list_requests(status="rejected")] == [request_id]
    assert await service.list_requests(status="pending") == []


@pytest.mark.asyncio
async def test_skip_optional_and_required_steps(service) -> None:
    request_id = (await _start(service)).request.id

    skipped = await service.skip_step(request_id, 3, "dave", now=at(1))

    assert skipped.step.status == "skipped"
    with pytest.raises(InvalidTransitionException):
        await service.skip_step(request_id, 1, "alice", now=at(2))


@pytest.mark.asyncio
async def test_strict_sequential_service(workflow_store) -> None:
    service = ApprovalService(
        workflow_store.repositories(), ApprovalStepSequencer(strict_sequential=True), KeyedLock()
    )
    await service.create_workflow(_workflow())
    request_id = (await _start(service)).request.id

    with pytest.raises(StepNotReadyException):
        await service.approve_step(request_id, 2, "carol", now=at(1))

    pending = await service.list_pending_steps()
    assert [p.step.step_order for p in pending] == [1]


@pytest.mark.asyncio
async def test_cancel_request(service) -> None:
    request_id = (await _start(service)).request.id

    cancelled = await service.cancel_request(request_id, "bob", "trip called off", now=at(1))

    assert cancelled.status == "cancelled"
    aggregate = await service.get_request(request_id)
    assert [s.status for s in aggregate.steps] == ["pending"] * 3
    with pytest.raises(InvalidTransitionException):
        await service.cancel_request(request_id, "bob", now=at(2))
    with pytest.raises(InvalidTransitionException):
        await service.approve_step(request_id, 1, "alice", now=at(2))


@pytest.mark.asyncio
async def test_pending_steps_by_role_and_assignee(service) -> None:
    await _start(service)
    request_id = (await _start(service)).request.id
    await service.approve_step(request_id, 1, "alice", now=at(1))

    managers = await service.list_pending_steps(role="manager")
    carol = await service.list_pending_steps(assignee_id="carol")

    assert len(managers) == 1
    assert managers[0].request.id != request_id
    assert len(carol) == 2
    assert all(p.step.step_name == "Finance review" for p in carol)


@pytest.mark.asyncio
async def test_action_log_records_every_change(service) -> None:
    request_id = (await _start(service)).request.id
    await service.approve_step(request_id, 1, "alice", "fine", now=at(1))
    await service.skip_step(request_id, 3, "dave", now=at(2))
    await service.cancel_request(request_id, "bob", "duplicate", now=at(3))

    actions = await service.list_actions(request_id)

    assert [(a.action, a.performer_id) for a in actions] == [
        ("approve", "alice"), ("skip", "dave"), ("cancel", "bob"),
    ]
    assert actions[0].comments == "fine"
    assert actions[2].step_id is None


@pytest.mark.asyncio
async def test_actions_of_unknown_request(service) -> None:
    with pytest.raises(ResourceNotFoundException):
        await service.list_actions("missing")


@pytest.mark.asyncio
async def test_stale_decision_rejected(service, workflow_store) -> None:
    request_id = (await _start(service)).request.id
    repos = workflow_store.repositories()
    request = await repos.requests.get(request_id)
    steps = await repos.requests.load_steps(request_id)
    result = ApprovalStepSequencer().apply_decision(request, steps, 1, "approve", "alice", None, at(1))
    await service.approve_step(request_id, 3, "dave", now=at(1))

    with pytest.raises(ConcurrentModificationException):
        await repos.requests.save_decision(
            request,
            result.changed_steps,
            ApprovalActionLog(id="a", request_id=request_id, performer_id="alice", action="approve", created_at=at(1)),
            expected_version=0,
        )


# ========== SLA tracking of requests ==========

@pytest.mark.asyncio
async def test_request_registered_as_sla_subject(service, sla_store) -> None:
    request = (await _start(service)).request

    subject = sla_store.subjects[request.id]
    assert subject.subject_type == APPROVAL_SUBJECT_TYPE
    assert subject.severity == "high"
    assert subject.created_at == T0
    assert subject.title == "Conference travel"


@pytest.mark.asyncio
async def test_first_decision_is_response_and_close_is_resolution(service, sla_store) -> None:
    request_id = (await _start(service)).request.id

    await service.approve_step(request_id, 1, "alice", now=at(1))
    await service.approve_step(request_id, 2, "carol", now=at(3))

    subject = sla_store.subjects[request_id]
    assert subject.responded_at == at(1)
    assert subject.resolved_at == at(3)


@pytest.mark.asyncio
async def test_cancel_resolves_sla_subject(service, sla_store) -> None:
    request_id = (await _start(service)).request.id

    await service.cancel_request(request_id, "bob", now=at(2))

    assert sla_store.subjects[request_id].resolved_at == at(2)


@pytest.mark.asyncio
async def test_listener_failure_does_not_undo_change(workflow_store) -> None:
    broken = _BrokenListener()
    service = ApprovalService(
        workflow_store.repositories(), ApprovalStepSequencer(), KeyedLock(), [broken]
    )
    await service.create_workflow(_workflow())

    request_id = (await _start(service)).request.id
    cancelled = await service.cancel_request(request_id, "bob", now=at(1))

    assert broken.calls == 2
    assert cancelled.status == "cancelled"
    assert workflow_store.requests[request_id].status == "cancelled"
