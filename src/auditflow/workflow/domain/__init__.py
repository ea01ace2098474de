"""
Workflow Domain Layer
=====================

Domain layer for approval workflows.

Contains:
- Entities: WorkflowDefinition, ApprovalRequest, ApprovalRequestStep, ApprovalActionLog
- Domain Services: ApprovalStepSequencer (decisions and status aggregation)
"""

from auditflow.workflow.domain.entities import (
    ApprovalActionLog,
    ApprovalRequest,
    ApprovalRequestAggregate,
    ApprovalRequestStep,
    PendingApproval,
    StepResult,
    WorkflowDefinition,
    WorkflowStepDefinition,
)
from auditflow.workflow.domain.sequencer import ApprovalStepSequencer

__all__ = [
    "ApprovalActionLog",
    "ApprovalRequest",
    "ApprovalRequestAggregate",
    "ApprovalRequestStep",
    "PendingApproval",
    "StepResult",
    "WorkflowDefinition",
    "WorkflowStepDefinition",
    "ApprovalStepSequencer",
]
