"""
Workflow Application Services
==============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

ApprovalService owns the approval request lifecycle: starting a request
from a workflow definition, recording decisions and cancellations, and
notifying listeners once a change is stored.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple
from uuid import uuid4

from auditflow.config import ApprovalAction, StepDecision
from auditflow.core import ResourceNotFoundException, ValidationException
from auditflow.shared.infrastructure.locks import KeyedLock
from auditflow.shared.infrastructure.logging import get_logger
from auditflow.workflow.domain import (
    ApprovalActionLog,
    ApprovalRequest,
    ApprovalRequestAggregate,
    ApprovalRequestStep,
    ApprovalStepSequencer,
    PendingApproval,
    StepResult,
    WorkflowDefinition,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IWorkflowRepository(ABC):
    """Interface for workflow definition data access."""

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Get workflow definition by ID."""

    @abstractmethod
    async def create(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Store a new workflow definition with its steps."""

    @abstractmethod
    async def list(self, entity_type: Optional[str] = None, active_only: bool = False) -> List[WorkflowDefinition]:
        """List workflow definitions."""


class IApprovalRequestRepository(ABC):
    """Interface for approval request data access."""

    @abstractmethod
    async def get(self, request_id: str) -> Optional[ApprovalRequest]:
        """Get approval request by ID."""

    @abstractmethod
    async def load_steps(self, request_id: str) -> List[ApprovalRequestStep]:
        """Steps of a request, ordered by step_order."""

    @abstractmethod
    async def create(self, request: ApprovalRequest, steps: List[ApprovalRequestStep]) -> ApprovalRequest:
        """Store a new request and all of its steps."""

    @abstractmethod
    async def save_decision(
        self,
        request: ApprovalRequest,
        steps: List[ApprovalRequestStep],
        action: ApprovalActionLog,
        expected_version: int,
    ) -> ApprovalRequest:
        """
        Atomically store the request, changed steps and the action log entry.

        Raises:
            ConcurrentModificationException: stored version differs
        """

    @abstractmethod
    async def list_actions(self, request_id: str) -> List[ApprovalActionLog]:
        """Action log of a request, oldest first."""

    @abstractmethod
    async def list_requests(self, status: Optional[str] = None) -> List[ApprovalRequest]:
        """List requests, newest first."""

    @abstractmethod
    async def list_pending_steps(
        self,
        role: Optional[str] = None,
        assignee_id: Optional[str] = None,
    ) -> List[PendingApproval]:
        """Pending steps of open requests, optionally filtered by assignee."""


class IApprovalEventListener(ABC):
    """Collaborator notified after approval changes are stored."""

    async def on_request_created(self, request: ApprovalRequest) -> None:
        return None

    async def on_step_decided(self, request: ApprovalRequest, result: StepResult) -> None:
        return None

    @abstractmethod
    async def on_request_terminal(
        self,
        request_id: str,
        final_status: str,
        completed_at: Optional[datetime] = None,
    ) -> None:
        """Called once when a request becomes approved, rejected or cancelled."""


@dataclass
class WorkflowRepositories:
    """Repositories bound to one unit of work."""
    workflows: IWorkflowRepository
    requests: IApprovalRequestRepository


# ========== Application Services ==========

class ApprovalService:
    """
    Approval request lifecycle.

    Decisions on one request are serialized by the keyed lock and by the
    repository's version check.
    """

    def __init__(
        self,
        repositories: WorkflowRepositories,
        sequencer: ApprovalStepSequencer,
        locks: KeyedLock,
        listeners: Sequence[IApprovalEventListener] = (),
    ):
        self._repos = repositories
        self._sequencer = sequencer
        self._locks = locks
        self._listeners = list(listeners)

    # ----- Workflow definitions -----

    async def create_workflow(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        self._sequencer.validate_definition(definition)
        if await self._repos.workflows.get(definition.id) is not None:
            raise ValidationException(f"Workflow {definition.id} already exists")

        created = await self._repos.workflows.create(definition)
        logger.info(
            "Workflow created",
            extra={"workflow_id": created.id, "steps": len(created.steps)}
        )
        return created

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await self._repos.workflows.get(workflow_id)
        if workflow is None:
            raise ResourceNotFoundException("Workflow", workflow_id)
        return workflow

    async def list_workflows(
        self,
        entity_type: Optional[str] = None,
        active_only: bool = False,
    ) -> List[WorkflowDefinition]:
        return await self._repos.workflows.list(entity_type, active_only)

    # ----- Approval requests -----

    async def start_request(
        self,
        workflow_id: str,
        entity_type: str,
        entity_id: str,
        requester_id: str,
        title: str,
        priority: str,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalRequestAggregate:
        """
        Create a request and instantiate its steps from the workflow.

        Raises:
            ResourceNotFoundException: unknown workflow
            ValidationException: workflow inactive or for another entity type
        """
        now = now or datetime.now(timezone.utc)
        workflow = await self.get_workflow(workflow_id)
        if not workflow.is_active:
            raise ValidationException(f"Workflow {workflow_id} is not active")
        if workflow.entity_type != entity_type:
            raise ValidationException(
                f"Workflow {workflow_id} applies to '{workflow.entity_type}', not '{entity_type}'"
            )

        request = ApprovalRequest(
            id=str(uuid4()),
            entity_type=entity_type,
            entity_id=entity_id,
            workflow_id=workflow_id,
            requester_id=requester_id,
            title=title,
            priority=priority,
            description=description,
            created_at=now,
            updated_at=now,
        )
        steps = self._sequencer.instantiate_steps(workflow, request.id)
        await self._repos.requests.create(request, steps)

        logger.info(
            "Approval request started",
            extra={"request_id": request.id, "workflow_id": workflow_id, "steps": len(steps)}
        )
        for listener in self._listeners:
            await self._notify(listener.on_request_created(request), request.id)

        return ApprovalRequestAggregate(request=request, steps=steps)

    async def get_request(self, request_id: str) -> ApprovalRequestAggregate:
        request = await self._repos.requests.get(request_id)
        if request is None:
            raise ResourceNotFoundException("Approval request", request_id)
        steps = await self._repos.requests.load_steps(request_id)
        return ApprovalRequestAggregate(request=request, steps=steps)

    async def list_requests(self, status: Optional[str] = None) -> List[ApprovalRequest]:
        return await self._repos.requests.list_requests(status)

    async def decide_step(
        self,
        request_id: str,
        step_order: int,
        decision: str,
        actor: str,
        comment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StepResult:
        now = now or datetime.now(timezone.utc)

        async with self._locks.hold(request_id):
            aggregate = await self.get_request(request_id)
            request, steps = aggregate.request, aggregate.steps
            expected_version = request.version

            result = self._sequencer.apply_decision(
                request, steps, step_order, decision, actor, comment, now
            )
            action = ApprovalActionLog(
                id=str(uuid4()),
                request_id=request_id,
                step_id=result.step.id,
                performer_id=actor,
                action=decision,
                comments=comment,
                created_at=now,
            )
            await self._repos.requests.save_decision(
                request, result.changed_steps, action, expected_version
            )

        logger.info(
            "Approval step decided",
            extra={
                "request_id": request_id,
                "step_order": step_order,
                "decision": decision,
                "request_status": result.request_status,
            }
        )

        for listener in self._listeners:
            await self._notify(listener.on_step_decided(request, result), request_id)
            if result.terminal:
                await self._notify(
                    listener.on_request_terminal(request_id, result.request_status, now),
                    request_id,
                )
        return result

    async def approve_step(self, request_id: str, step_order: int, actor: str,
                           comment: Optional[str] = None, now: Optional[datetime] = None) -> StepResult:
        return await self.decide_step(request_id, step_order, StepDecision.APPROVE, actor, comment, now)

    async def reject_step(self, request_id: str, step_order: int, actor: str,
                          comment: Optional[str] = None, now: Optional[datetime] = None) -> StepResult:
        return await self.decide_step(request_id, step_order, StepDecision.REJECT, actor, comment, now)

    async def skip_step(self, request_id: str, step_order: int, actor: str,
                        comment: Optional[str] = None, now: Optional[datetime] = None) -> StepResult:
        return await self.decide_step(request_id, step_order, StepDecision.SKIP, actor, comment, now)

    async def cancel_request(
        self,
        request_id: str,
        actor: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalRequest:
        now = now or datetime.now(timezone.utc)

        async with self._locks.hold(request_id):
            aggregate = await self.get_request(request_id)
            request = aggregate.request
            expected_version = request.version

            self._sequencer.cancel(request, now)
            action = ApprovalActionLog(
                id=str(uuid4()),
                request_id=request_id,
                performer_id=actor,
                action=ApprovalAction.CANCEL,
                comments=reason,
                created_at=now,
            )
            await self._repos.requests.save_decision(request, [], action, expected_version)

        logger.info("Approval request cancelled", extra={"request_id": request_id, "actor": actor})
        for listener in self._listeners:
            await self._notify(
                listener.on_request_terminal(request_id, request.status, now), request_id
            )
        return request

    async def list_pending_steps(
        self,
        role: Optional[str] = None,
        assignee_id: Optional[str] = None,
    ) -> List[PendingApproval]:
        """
        Steps an approver can act on now.

        In strict sequential mode, steps still blocked by earlier
        required steps are left out.
        """
        pending = await self._repos.requests.list_pending_steps(role, assignee_id)
        if not self._sequencer.strict_sequential:
            return pending

        actionable = []
        steps_by_request = {}
        for item in pending:
            if item.request.id not in steps_by_request:
                steps_by_request[item.request.id] = await self._repos.requests.load_steps(item.request.id)
            if not self._sequencer.blocking_steps(steps_by_request[item.request.id], item.step.step_order):
                actionable.append(item)
        return actionable

    async def list_actions(self, request_id: str) -> List[ApprovalActionLog]:
        await self.get_request(request_id)
        return await self._repos.requests.list_actions(request_id)

    async def _notify(self, call, request_id: str) -> None:
        """Run a listener callback; the change is already stored, so failures are only logged."""
        try:
            await call
        except Exception as e:
            logger.error(
                "Approval listener failed",
                extra={"request_id": request_id, "error": str(e), "error_type": type(e).__name__}
            )


def step_summary(steps: List[ApprovalRequestStep]) -> Tuple[int, int]:
    """(decided, total) step counts for progress displays."""
    decided = sum(1 for s in steps if not s.is_pending)
    return decided, len(steps)
