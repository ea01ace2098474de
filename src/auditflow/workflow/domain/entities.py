"""
Workflow Domain Entities
=========================

Pure Python domain entities for approval workflows.

A WorkflowDefinition is an immutable template; an ApprovalRequest is
one run of it, with one ApprovalRequestStep per template step.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from auditflow.config import (
    RequestStatus,
    Severity,
    StepStatus,
    TERMINAL_REQUEST_STATUSES,
)


@dataclass(frozen=True)
class WorkflowStepDefinition:
    step_order: int
    step_name: str
    assignee_role: str
    assignee_id: Optional[str] = None
    required: bool = True


@dataclass(frozen=True)
class WorkflowDefinition:
    """Approval template, referenced by requests at creation time."""
    id: str
    name: str
    entity_type: str
    steps: Tuple[WorkflowStepDefinition, ...]
    description: str = ""
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def ordered_steps(self) -> List[WorkflowStepDefinition]:
        return sorted(self.steps, key=lambda s: s.step_order)


@dataclass
class ApprovalRequest:
    """
    One approval run against an entity.

    Status is derived from the steps by the sequencer; `version` backs
    the optimistic check when a decision is saved.
    """

    id: str
    entity_type: str
    entity_id: str
    workflow_id: str
    requester_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    priority: str = Severity.MEDIUM
    description: Optional[str] = None
    status: str = RequestStatus.PENDING
    completed_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES


@dataclass
class ApprovalRequestStep:
    """A step of a request. Leaves `pending` exactly once."""

    id: str
    approval_request_id: str
    step_order: int
    step_name: str
    assignee_role: str
    assignee_id: Optional[str] = None
    required: bool = True
    status: str = StepStatus.PENDING
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    comments: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING


@dataclass(frozen=True)
class StepResult:
    """Outcome of one decision."""
    step: ApprovalRequestStep
    request_status: str
    terminal: bool
    # Steps marked skipped by a cascading rejection
    skipped_steps: Tuple[ApprovalRequestStep, ...] = ()

    @property
    def changed_steps(self) -> List[ApprovalRequestStep]:
        return [self.step, *self.skipped_steps]


@dataclass(frozen=True)
class ApprovalActionLog:
    """Append-only audit entry for every decision and cancellation."""
    id: str
    request_id: str
    performer_id: str
    action: str
    created_at: datetime
    step_id: Optional[str] = None
    comments: Optional[str] = None


@dataclass(frozen=True)
class PendingApproval:
    """A step waiting on an approver, with its request for context."""
    request: ApprovalRequest
    step: ApprovalRequestStep


@dataclass
class ApprovalRequestAggregate:
    """Request plus its steps, as loaded by the repository."""
    request: ApprovalRequest
    steps: List[ApprovalRequestStep] = field(default_factory=list)
