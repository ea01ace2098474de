"""
Workflow Application Layer
===========================

Contains:
- Services: ApprovalService and the repository/listener interfaces it depends on
- DTOs: Data transfer objects for API serialization
"""

from auditflow.workflow.application.dto import (
    ActionLogResponse,
    ApprovalRequestCreateDTO,
    ApprovalRequestResponse,
    ApprovalRequestSummary,
    ApprovalStepResponse,
    CancelRequestDTO,
    PendingApprovalResponse,
    StepDecisionDTO,
    StepDecisionResponse,
    WorkflowCreateDTO,
    WorkflowResponse,
)
from auditflow.workflow.application.services import (
    ApprovalService,
    IApprovalEventListener,
    IApprovalRequestRepository,
    IWorkflowRepository,
    WorkflowRepositories,
)

__all__ = [
    # DTOs
    "ActionLogResponse",
    "ApprovalRequestCreateDTO",
    "ApprovalRequestResponse",
    "ApprovalRequestSummary",
    "ApprovalStepResponse",
    "CancelRequestDTO",
    "PendingApprovalResponse",
    "StepDecisionDTO",
    "StepDecisionResponse",
    "WorkflowCreateDTO",
    "WorkflowResponse",
    # Services
    "ApprovalService",
    # Interfaces
    "IApprovalEventListener",
    "IApprovalRequestRepository",
    "IWorkflowRepository",
    "WorkflowRepositories",
]
