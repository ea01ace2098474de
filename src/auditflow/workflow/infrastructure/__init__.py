"""
Workflow Infrastructure Layer
==============================

- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy and in-memory data access
"""

from auditflow.workflow.infrastructure.models import (
    ApprovalActionLogModel,
    ApprovalRequestModel,
    ApprovalRequestStepModel,
    WorkflowModel,
    WorkflowStepModel,
)
from auditflow.workflow.infrastructure.repositories import (
    InMemoryApprovalRequestRepository,
    InMemoryWorkflowRepository,
    InMemoryWorkflowStore,
    SQLAlchemyApprovalRequestRepository,
    SQLAlchemyWorkflowRepository,
    sqlalchemy_workflow_repositories,
)

__all__ = [
    "ApprovalActionLogModel",
    "ApprovalRequestModel",
    "ApprovalRequestStepModel",
    "WorkflowModel",
    "WorkflowStepModel",
    "InMemoryApprovalRequestRepository",
    "InMemoryWorkflowRepository",
    "InMemoryWorkflowStore",
    "SQLAlchemyApprovalRequestRepository",
    "SQLAlchemyWorkflowRepository",
    "sqlalchemy_workflow_repositories",
]
