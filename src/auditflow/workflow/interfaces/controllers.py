"""
Workflow Controllers (API Routes)
==================================

FastAPI routes for workflow definitions and approval requests.

Controllers are thin - they delegate to ApprovalService.
"""

from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from auditflow.bootstrap import ServiceContainer
from auditflow.shared.api.dependencies import get_container
from auditflow.workflow.application import (
    ActionLogResponse,
    ApprovalRequestCreateDTO,
    ApprovalRequestResponse,
    ApprovalRequestSummary,
    ApprovalService,
    CancelRequestDTO,
    PendingApprovalResponse,
    StepDecisionDTO,
    StepDecisionResponse,
    WorkflowCreateDTO,
    WorkflowResponse,
)

workflow_router = APIRouter(prefix="/workflows", tags=["Workflows"])
approval_router = APIRouter(prefix="/approvals", tags=["Approvals"])


# ========== Example payloads for Swagger ==========

WORKFLOW_CREATE_EXAMPLE = {
    "name": "Vendor onboarding",
    "entity_type": "vendor",
    "description": "Security then finance sign-off",
    "steps": [
        {"step_order": 1, "step_name": "Security review", "assignee_role": "security"},
        {"step_order": 2, "step_name": "Finance review", "assignee_role": "finance"},
        {"step_order": 3, "step_name": "Legal FYI", "assignee_role": "legal", "required": False}
    ]
}

DECISION_EXAMPLE = {
    "decision": "approve",
    "actor_id": "alice",
    "comments": "Looks good"
}


# ========== Dependencies ==========

async def get_approval_service(
    container: ServiceContainer = Depends(get_container)
) -> AsyncIterator[ApprovalService]:
    """Approval service bound to one unit of work."""
    async with container.approval_scope() as repositories:
        yield container.approval_service(repositories)


# ========== Workflow definitions ==========

@workflow_router.post(
    "",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow definition",
    description="""
    Define an ordered list of approval steps for an entity type.

    Step orders must be unique and at least one step must be required.
    Optional steps (`required: false`) may be skipped.
    """,
    responses={422: {"description": "Invalid definition"}}
)
async def create_workflow(
    payload: WorkflowCreateDTO = Body(..., examples=[WORKFLOW_CREATE_EXAMPLE]),
    service: ApprovalService = Depends(get_approval_service)
):
    workflow = await service.create_workflow(payload.to_domain(datetime.now(timezone.utc)))
    return WorkflowResponse.from_domain(workflow)


@workflow_router.get(
    "",
    response_model=List[WorkflowResponse],
    summary="List workflow definitions"
)
async def list_workflows(
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    active_only: bool = Query(False),
    service: ApprovalService = Depends(get_approval_service)
):
    workflows = await service.list_workflows(entity_type, active_only)
    return [WorkflowResponse.from_domain(w) for w in workflows]


@workflow_router.get(
    "/{workflow_id}",
    response_model=WorkflowResponse,
    summary="Get a workflow definition",
    responses={404: {"description": "Workflow not found"}}
)
async def get_workflow(
    workflow_id: str,
    service: ApprovalService = Depends(get_approval_service)
):
    return WorkflowResponse.from_domain(await service.get_workflow(workflow_id))


# ========== Approval requests ==========

@approval_router.post(
    "",
    response_model=ApprovalRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an approval request",
    description="""
    Instantiate the workflow's steps for an entity. The request's
    `priority` also selects the SLA policy it is monitored under.
    """,
    responses={
        404: {"description": "Workflow not found"},
        422: {"description": "Workflow inactive or for a different entity type"}
    }
)
async def start_request(
    payload: ApprovalRequestCreateDTO,
    service: ApprovalService = Depends(get_approval_service)
):
    aggregate = await service.start_request(
        workflow_id=payload.workflow_id,
        entity_type=payload.entity_type,
        entity_id=payload.entity_id,
        requester_id=payload.requester_id,
        title=payload.title,
        priority=payload.priority,
        description=payload.description,
    )
    return ApprovalRequestResponse.from_domain(aggregate)


@approval_router.get(
    "",
    response_model=List[ApprovalRequestSummary],
    summary="List approval requests"
)
async def list_requests(
    request_status: Optional[str] = Query(None, alias="status", description="Filter by request status"),
    service: ApprovalService = Depends(get_approval_service)
):
    requests = await service.list_requests(request_status)
    return [ApprovalRequestSummary.from_domain(r) for r in requests]


@approval_router.get(
    "/pending",
    response_model=List[PendingApprovalResponse],
    summary="Steps awaiting a decision",
    description="""
    Pending steps on open requests, filtered by assignee role and/or
    assignee ID. In strict sequential mode, steps still blocked by an
    earlier required step are not listed.
    """
)
async def list_pending(
    role: Optional[str] = Query(None),
    assignee_id: Optional[str] = Query(None),
    service: ApprovalService = Depends(get_approval_service)
):
    pending = await service.list_pending_steps(role, assignee_id)
    return [PendingApprovalResponse.from_domain(p) for p in pending]


@approval_router.get(
    "/{request_id}",
    response_model=ApprovalRequestResponse,
    summary="Get an approval request",
    responses={404: {"description": "Approval request not found"}}
)
async def get_request(
    request_id: str,
    service: ApprovalService = Depends(get_approval_service)
):
    return ApprovalRequestResponse.from_domain(await service.get_request(request_id))


@approval_router.post(
    "/{request_id}/steps/{step_order}/decision",
    response_model=StepDecisionResponse,
    summary="Decide a step",
    description="""
    Approve, reject or skip one step.

    - Rejecting a required step rejects the request
    - Approving the last required step approves the request
    - Only optional steps may be skipped
    """,
    responses={
        404: {"description": "Request or step not found"},
        409: {"description": "Step already decided, request closed, or step blocked"}
    }
)
async def decide_step(
    request_id: str,
    step_order: int,
    payload: StepDecisionDTO = Body(..., examples=[DECISION_EXAMPLE]),
    service: ApprovalService = Depends(get_approval_service)
):
    result = await service.decide_step(
        request_id, step_order, payload.decision, payload.actor_id, payload.comments
    )
    return StepDecisionResponse.from_domain(result)


@approval_router.post(
    "/{request_id}/cancel",
    response_model=ApprovalRequestResponse,
    summary="Cancel an approval request",
    responses={
        404: {"description": "Approval request not found"},
        409: {"description": "Request already closed"}
    }
)
async def cancel_request(
    request_id: str,
    payload: CancelRequestDTO,
    service: ApprovalService = Depends(get_approval_service)
):
    await service.cancel_request(request_id, payload.actor_id, payload.reason)
    return ApprovalRequestResponse.from_domain(await service.get_request(request_id))


@approval_router.get(
    "/{request_id}/actions",
    response_model=List[ActionLogResponse],
    summary="Audit trail of a request",
    responses={404: {"description": "Approval request not found"}}
)
async def list_actions(
    request_id: str,
    service: ApprovalService = Depends(get_approval_service)
):
    actions = await service.list_actions(request_id)
    return [ActionLogResponse.from_domain(a) for a in actions]
