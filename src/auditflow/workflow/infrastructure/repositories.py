"""
Workflow Infrastructure Repositories
=====================================

Concrete implementations of the workflow repository interfaces:
SQLAlchemy (one AsyncSession per unit of work) and in-memory.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auditflow.config import OPEN_REQUEST_STATUSES, StepStatus
from auditflow.core import ConcurrentModificationException, RepositoryException
from auditflow.workflow.application.services import (
    IApprovalRequestRepository,
    IWorkflowRepository,
    WorkflowRepositories,
)
from auditflow.workflow.domain import (
    ApprovalActionLog,
    ApprovalRequest,
    ApprovalRequestStep,
    PendingApproval,
    WorkflowDefinition,
    WorkflowStepDefinition,
)
from auditflow.workflow.infrastructure.models import (
    ApprovalActionLogModel,
    ApprovalRequestModel,
    ApprovalRequestStepModel,
    WorkflowModel,
    WorkflowStepModel,
)


# ========== Model <-> Entity mapping ==========

def _workflow_to_domain(model: WorkflowModel) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=model.id,
        name=model.name,
        entity_type=model.entity_type,
        description=model.description,
        is_active=model.is_active,
        created_by=model.created_by,
        created_at=model.created_at,
        steps=tuple(
            WorkflowStepDefinition(
                step_order=s.step_order,
                step_name=s.step_name,
                assignee_role=s.assignee_role,
                assignee_id=s.assignee_id,
                required=s.required,
            )
            for s in model.steps
        ),
    )


def _request_to_domain(model: ApprovalRequestModel) -> ApprovalRequest:
    return ApprovalRequest(
        id=model.id,
        entity_type=model.entity_type,
        entity_id=model.entity_id,
        workflow_id=model.workflow_id,
        requester_id=model.requester_id,
        title=model.title,
        description=model.description,
        priority=model.priority,
        status=model.status,
        created_at=model.created_at,
        updated_at=model.updated_at,
        completed_at=model.completed_at,
        version=model.version,
    )


def _step_to_domain(model: ApprovalRequestStepModel) -> ApprovalRequestStep:
    return ApprovalRequestStep(
        id=model.id,
        approval_request_id=model.approval_request_id,
        step_order=model.step_order,
        step_name=model.step_name,
        assignee_role=model.assignee_role,
        assignee_id=model.assignee_id,
        required=model.required,
        status=model.status,
        completed_by=model.completed_by,
        completed_at=model.completed_at,
        comments=model.comments,
    )


def _action_to_domain(model: ApprovalActionLogModel) -> ApprovalActionLog:
    return ApprovalActionLog(
        id=model.id,
        request_id=model.request_id,
        step_id=model.step_id,
        performer_id=model.performer_id,
        action=model.action,
        comments=model.comments,
        created_at=model.created_at,
    )


# ========== SQLAlchemy implementations ==========

class SQLAlchemyWorkflowRepository(IWorkflowRepository):
    """SQLAlchemy implementation of workflow definition repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        model = await self._session.get(WorkflowModel, workflow_id)
        return _workflow_to_domain(model) if model else None

    async def create(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        model = WorkflowModel(
            id=definition.id,
            name=definition.name,
            entity_type=definition.entity_type,
            description=definition.description,
            is_active=definition.is_active,
            created_by=definition.created_by,
            created_at=definition.created_at or datetime.now(timezone.utc),
            steps=[
                WorkflowStepModel(
                    step_order=s.step_order,
                    step_name=s.step_name,
                    assignee_role=s.assignee_role,
                    assignee_id=s.assignee_id,
                    required=s.required,
                )
                for s in definition.ordered_steps
            ],
        )
        self._session.add(model)
        await self._session.flush()
        return definition

    async def list(self, entity_type: Optional[str] = None, active_only: bool = False) -> List[WorkflowDefinition]:
        stmt = select(WorkflowModel)
        if entity_type:
            stmt = stmt.where(WorkflowModel.entity_type == entity_type)
        if active_only:
            stmt = stmt.where(WorkflowModel.is_active.is_(True))
        stmt = stmt.order_by(WorkflowModel.created_at.desc())

        result = await self._session.execute(stmt)
        return [_workflow_to_domain(m) for m in result.scalars().all()]


class SQLAlchemyApprovalRequestRepository(IApprovalRequestRepository):
    """
    SQLAlchemy implementation of approval request repository.

    `save_decision` locks the request row, checks its version and commits
    before returning, so listeners only ever see stored decisions.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, request_id: str) -> Optional[ApprovalRequest]:
        model = await self._session.get(ApprovalRequestModel, request_id, populate_existing=True)
        return _request_to_domain(model) if model else None

    async def load_steps(self, request_id: str) -> List[ApprovalRequestStep]:
        stmt = (
            select(ApprovalRequestStepModel)
            .where(ApprovalRequestStepModel.approval_request_id == request_id)
            .order_by(ApprovalRequestStepModel.step_order.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_step_to_domain(m) for m in result.scalars().all()]

    async def create(self, request: ApprovalRequest, steps: List[ApprovalRequestStep]) -> ApprovalRequest:
        self._session.add(ApprovalRequestModel(
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
            version=request.version,
        ))
        # Parent row first so the step foreign keys resolve
        await self._session.flush()
        self._session.add_all([
            ApprovalRequestStepModel(
                id=s.id,
                approval_request_id=s.approval_request_id,
                step_order=s.step_order,
                step_name=s.step_name,
                assignee_role=s.assignee_role,
                assignee_id=s.assignee_id,
                required=s.required,
                status=s.status,
            )
            for s in steps
        ])
        await self._session.flush()
        return request

    async def save_decision(
        self,
        request: ApprovalRequest,
        steps: List[ApprovalRequestStep],
        action: ApprovalActionLog,
        expected_version: int,
    ) -> ApprovalRequest:
        try:
            stmt = (
                select(ApprovalRequestModel)
                .where(ApprovalRequestModel.id == request.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()
            if not model:
                raise RepositoryException(f"Approval request {request.id} not found")
            if model.version != expected_version:
                raise ConcurrentModificationException("approval_request", request.id, expected_version)

            model.status = request.status
            model.updated_at = request.updated_at
            model.completed_at = request.completed_at
            model.version = expected_version + 1

            for step in steps:
                step_model = await self._session.get(ApprovalRequestStepModel, step.id)
                if not step_model:
                    raise RepositoryException(f"Approval step {step.id} not found")
                step_model.status = step.status
                step_model.completed_by = step.completed_by
                step_model.completed_at = step.completed_at
                step_model.comments = step.comments

            self._session.add(ApprovalActionLogModel(
                id=action.id,
                request_id=action.request_id,
                step_id=action.step_id,
                performer_id=action.performer_id,
                action=action.action,
                comments=action.comments,
                created_at=action.created_at,
            ))
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        request.version = expected_version + 1
        return request

    async def list_actions(self, request_id: str) -> List[ApprovalActionLog]:
        stmt = (
            select(ApprovalActionLogModel)
            .where(ApprovalActionLogModel.request_id == request_id)
            .order_by(ApprovalActionLogModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_action_to_domain(m) for m in result.scalars().all()]

    async def list_requests(self, status: Optional[str] = None) -> List[ApprovalRequest]:
        stmt = select(ApprovalRequestModel)
        if status:
            stmt = stmt.where(ApprovalRequestModel.status == status)
        stmt = stmt.order_by(ApprovalRequestModel.created_at.desc())

        result = await self._session.execute(stmt)
        return [_request_to_domain(m) for m in result.scalars().all()]

    async def list_pending_steps(
        self,
        role: Optional[str] = None,
        assignee_id: Optional[str] = None,
    ) -> List[PendingApproval]:
        stmt = (
            select(ApprovalRequestStepModel, ApprovalRequestModel)
            .join(ApprovalRequestModel, ApprovalRequestModel.id == ApprovalRequestStepModel.approval_request_id)
            .where(ApprovalRequestStepModel.status == StepStatus.PENDING)
            .where(ApprovalRequestModel.status.in_(OPEN_REQUEST_STATUSES))
        )
        if role:
            stmt = stmt.where(ApprovalRequestStepModel.assignee_role == role)
        if assignee_id:
            stmt = stmt.where(ApprovalRequestStepModel.assignee_id == assignee_id)
        stmt = stmt.order_by(ApprovalRequestModel.created_at.asc(), ApprovalRequestStepModel.step_order.asc())

        result = await self._session.execute(stmt)
        return [
            PendingApproval(request=_request_to_domain(request), step=_step_to_domain(step))
            for step, request in result.all()
        ]


def sqlalchemy_workflow_repositories(session: AsyncSession) -> WorkflowRepositories:
    return WorkflowRepositories(
        workflows=SQLAlchemyWorkflowRepository(session),
        requests=SQLAlchemyApprovalRequestRepository(session),
    )


# ========== In-memory implementations ==========

class InMemoryWorkflowStore:
    """Process-local storage shared by the in-memory workflow repositories."""

    def __init__(self):
        self.workflows: Dict[str, WorkflowDefinition] = {}
        self.requests: Dict[str, ApprovalRequest] = {}
        self.steps: Dict[str, List[ApprovalRequestStep]] = {}
        self.actions: Dict[str, List[ApprovalActionLog]] = {}
        self.lock = asyncio.Lock()

    def repositories(self) -> WorkflowRepositories:
        return WorkflowRepositories(
            workflows=InMemoryWorkflowRepository(self),
            requests=InMemoryApprovalRequestRepository(self),
        )


class InMemoryWorkflowRepository(IWorkflowRepository):

    def __init__(self, store: InMemoryWorkflowStore):
        self._store = store

    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._store.workflows.get(workflow_id)

    async def create(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        if definition.id in self._store.workflows:
            raise RepositoryException(f"Workflow {definition.id} already exists")
        self._store.workflows[definition.id] = definition
        return definition

    async def list(self, entity_type: Optional[str] = None, active_only: bool = False) -> List[WorkflowDefinition]:
        return [
            w for w in self._store.workflows.values()
            if (not entity_type or w.entity_type == entity_type) and (not active_only or w.is_active)
        ]


class InMemoryApprovalRequestRepository(IApprovalRequestRepository):

    def __init__(self, store: InMemoryWorkflowStore):
        self._store = store

    async def get(self, request_id: str) -> Optional[ApprovalRequest]:
        request = self._store.requests.get(request_id)
        return copy.deepcopy(request) if request else None

    async def load_steps(self, request_id: str) -> List[ApprovalRequestStep]:
        steps = self._store.steps.get(request_id, [])
        return sorted((copy.deepcopy(s) for s in steps), key=lambda s: s.step_order)

    async def create(self, request: ApprovalRequest, steps: List[ApprovalRequestStep]) -> ApprovalRequest:
        async with self._store.lock:
            if request.id in self._store.requests:
                raise RepositoryException(f"Approval request {request.id} already exists")
            self._store.requests[request.id] = copy.deepcopy(request)
            self._store.steps[request.id] = [copy.deepcopy(s) for s in steps]
            self._store.actions[request.id] = []
        return request

    async def save_decision(
        self,
        request: ApprovalRequest,
        steps: List[ApprovalRequestStep],
        action: ApprovalActionLog,
        expected_version: int,
    ) -> ApprovalRequest:
        async with self._store.lock:
            stored = self._store.requests.get(request.id)
            if stored is None:
                raise RepositoryException(f"Approval request {request.id} not found")
            if stored.version != expected_version:
                raise ConcurrentModificationException("approval_request", request.id, expected_version)

            changed = {s.id: s for s in steps}
            self._store.steps[request.id] = [
                copy.deepcopy(changed.get(s.id, s)) for s in self._store.steps[request.id]
            ]
            request.version = expected_version + 1
            self._store.requests[request.id] = copy.deepcopy(request)
            self._store.actions[request.id].append(action)
        return request

    async def list_actions(self, request_id: str) -> List[ApprovalActionLog]:
        return list(self._store.actions.get(request_id, []))

    async def list_requests(self, status: Optional[str] = None) -> List[ApprovalRequest]:
        requests = [
            copy.deepcopy(r) for r in self._store.requests.values()
            if not status or r.status == status
        ]
        return sorted(requests, key=lambda r: r.created_at, reverse=True)

    async def list_pending_steps(
        self,
        role: Optional[str] = None,
        assignee_id: Optional[str] = None,
    ) -> List[PendingApproval]:
        pending = []
        for request in sorted(self._store.requests.values(), key=lambda r: r.created_at):
            if request.status not in OPEN_REQUEST_STATUSES:
                continue
            for step in sorted(self._store.steps[request.id], key=lambda s: s.step_order):
                if not step.is_pending:
                    continue
                if role and step.assignee_role != role:
                    continue
                if assignee_id and step.assignee_id != assignee_id:
                    continue
                pending.append(PendingApproval(request=copy.deepcopy(request), step=copy.deepcopy(step)))
        return pending
