"""
Workflow Application DTOs
==========================

Data Transfer Objects for the workflow API layer.
"""

from datetime import datetime
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from auditflow.workflow.application.services import step_summary
from auditflow.workflow.domain import (
    ApprovalActionLog,
    ApprovalRequest,
    ApprovalRequestAggregate,
    ApprovalRequestStep,
    PendingApproval,
    StepResult,
    WorkflowDefinition,
    WorkflowStepDefinition,
)


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["critical", "high", "medium", "low"]
RequestStatusStr = Literal["pending", "in_progress", "approved", "rejected", "cancelled"]
StepStatusStr = Literal["pending", "approved", "rejected", "skipped"]
DecisionStr = Literal["approve", "reject", "skip"]


# ========== Request DTOs ==========

class WorkflowStepCreateDTO(BaseModel):
    step_order: int = Field(..., description="Position of the step, unique within the workflow")
    step_name: str = Field(..., description="Step label")
    assignee_role: str = Field(..., description="Role expected to decide the step")
    assignee_id: Optional[str] = Field(None, description="Specific approver, if any")
    required: bool = Field(default=True, description="Optional steps may be skipped")


class WorkflowCreateDTO(BaseModel):
    """DTO for creating a workflow definition."""
    id: Optional[str] = Field(None, description="Workflow ID, generated if omitted")
    name: str = Field(..., description="Workflow name")
    entity_type: str = Field(..., description="Kind of entity the workflow approves")
    description: str = Field(default="")
    is_active: bool = True
    created_by: Optional[str] = None
    steps: List[WorkflowStepCreateDTO] = Field(default_factory=list)

    def to_domain(self, now: datetime) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=self.id or str(uuid4()),
            name=self.name,
            entity_type=self.entity_type,
            description=self.description,
            is_active=self.is_active,
            created_by=self.created_by,
            created_at=now,
            steps=tuple(
                WorkflowStepDefinition(
                    step_order=s.step_order,
                    step_name=s.step_name,
                    assignee_role=s.assignee_role,
                    assignee_id=s.assignee_id,
                    required=s.required,
                )
                for s in self.steps
            ),
        )


class ApprovalRequestCreateDTO(BaseModel):
    """DTO for starting an approval request."""
    workflow_id: str = Field(..., min_length=1)
    entity_type: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    requester_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    priority: PriorityStr = Field(default="medium", description="Also selects the SLA policy")
    description: Optional[str] = None


class StepDecisionDTO(BaseModel):
    decision: DecisionStr
    actor_id: str = Field(..., min_length=1, description="User making the decision")
    comments: Optional[str] = None


class CancelRequestDTO(BaseModel):
    actor_id: str = Field(..., min_length=1)
    reason: Optional[str] = None


# ========== Response DTOs ==========

class WorkflowStepResponse(BaseModel):
    step_order: int
    step_name: str
    assignee_role: str
    assignee_id: Optional[str] = None
    required: bool


class WorkflowResponse(BaseModel):
    id: str
    name: str
    entity_type: str
    description: str
    is_active: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    steps: List[WorkflowStepResponse]

    @classmethod
    def from_domain(cls, workflow: WorkflowDefinition) -> "WorkflowResponse":
        return cls(
            id=workflow.id,
            name=workflow.name,
            entity_type=workflow.entity_type,
            description=workflow.description,
            is_active=workflow.is_active,
            created_by=workflow.created_by,
            created_at=workflow.created_at,
            steps=[
                WorkflowStepResponse(
                    step_order=s.step_order,
                    step_name=s.step_name,
                    assignee_role=s.assignee_role,
                    assignee_id=s.assignee_id,
                    required=s.required,
                )
                for s in workflow.ordered_steps
            ],
        )


class ApprovalStepResponse(BaseModel):
    id: str
    step_order: int
    step_name: str
    assignee_role: str
    assignee_id: Optional[str] = None
    required: bool
    status: StepStatusStr
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    comments: Optional[str] = None

    @classmethod
    def from_domain(cls, step: ApprovalRequestStep) -> "ApprovalStepResponse":
        return cls(
            id=step.id,
            step_order=step.step_order,
            step_name=step.step_name,
            assignee_role=step.assignee_role,
            assignee_id=step.assignee_id,
            required=step.required,
            status=step.status,
            completed_by=step.completed_by,
            completed_at=step.completed_at,
            comments=step.comments,
        )


class ApprovalRequestResponse(BaseModel):
    """Response model for an approval request with its steps."""
    id: str
    entity_type: str
    entity_id: str
    workflow_id: str
    requester_id: str
    title: str
    description: Optional[str] = None
    priority: PriorityStr
    status: RequestStatusStr
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    steps_completed: int = Field(..., description="Steps no longer pending")
    steps_total: int
    steps: List[ApprovalStepResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, aggregate: ApprovalRequestAggregate) -> "ApprovalRequestResponse":
        request = aggregate.request
        completed, total = step_summary(aggregate.steps)
        return cls(
            id=request.id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            workflow_id=request.workflow_id,
            requester_id=request.requester_id,
            title=request.title,
            description=request.description,
            priority=request.priority,
            status=request.status,
            created_at=request.created_at,
            updated_at=request.updated_at,
            completed_at=request.completed_at,
            steps_completed=completed,
            steps_total=total,
            steps=[ApprovalStepResponse.from_domain(s) for s in aggregate.steps],
        )


class ApprovalRequestSummary(BaseModel):
    """List item; steps are fetched per request."""
    id: str
    workflow_id: str
    entity_type: str
    entity_id: str
    requester_id: str
    title: str
    priority: PriorityStr
    status: RequestStatusStr
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, request: ApprovalRequest) -> "ApprovalRequestSummary":
        return cls(
            id=request.id,
            workflow_id=request.workflow_id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            requester_id=request.requester_id,
            title=request.title,
            priority=request.priority,
            status=request.status,
            created_at=request.created_at,
            completed_at=request.completed_at,
        )


class StepDecisionResponse(BaseModel):
    step: ApprovalStepResponse
    request_status: RequestStatusStr
    terminal: bool
    skipped_steps: List[int] = Field(default_factory=list, description="Step orders skipped by the decision")

    @classmethod
    def from_domain(cls, result: StepResult) -> "StepDecisionResponse":
        return cls(
            step=ApprovalStepResponse.from_domain(result.step),
            request_status=result.request_status,
            terminal=result.terminal,
            skipped_steps=[s.step_order for s in result.skipped_steps],
        )


class PendingApprovalResponse(BaseModel):
    """A step awaiting a decision, with request context."""
    request_id: str
    request_title: str
    priority: PriorityStr
    requester_id: str
    entity_type: str
    entity_id: str
    request_created_at: datetime
    step: ApprovalStepResponse

    @classmethod
    def from_domain(cls, pending: PendingApproval) -> "PendingApprovalResponse":
        return cls(
            request_id=pending.request.id,
            request_title=pending.request.title,
            priority=pending.request.priority,
            requester_id=pending.request.requester_id,
            entity_type=pending.request.entity_type,
            entity_id=pending.request.entity_id,
            request_created_at=pending.request.created_at,
            step=ApprovalStepResponse.from_domain(pending.step),
        )


class ActionLogResponse(BaseModel):
    id: str
    request_id: str
    step_id: Optional[str] = None
    performer_id: str
    action: str
    comments: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, action: ApprovalActionLog) -> "ActionLogResponse":
        return cls(
            id=action.id,
            request_id=action.request_id,
            step_id=action.step_id,
            performer_id=action.performer_id,
            action=action.action,
            comments=action.comments,
            created_at=action.created_at,
        )

