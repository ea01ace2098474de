"""
Approval Step Sequencer
========================

Pure business logic for approval requests: instantiating steps from a
definition, applying decisions, and deriving the request status.

Request status is a monotone function of the steps:
- `rejected` as soon as any required step is rejected (terminal)
- `approved` only when every required step is approved (terminal)
- `in_progress` once any step has been decided
- `pending` otherwise
"""

from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from auditflow.config import RequestStatus, StepDecision, StepStatus
from auditflow.core import (
    InvalidTransitionException,
    ResourceNotFoundException,
    StepNotReadyException,
    ValidationException,
)
from auditflow.workflow.domain.entities import (
    ApprovalRequest,
    ApprovalRequestStep,
    StepResult,
    WorkflowDefinition,
)

_DECISION_STATUS = {
    StepDecision.APPROVE: StepStatus.APPROVED,
    StepDecision.REJECT: StepStatus.REJECTED,
    StepDecision.SKIP: StepStatus.SKIPPED,
}


class ApprovalStepSequencer:
    """
    Applies approver decisions to a request and its steps.

    Args:
        strict_sequential: a step may only be decided once every
            lower-order required step is approved
        cascade_skip_on_reject: on terminal rejection, mark the remaining
            pending steps as skipped
    """

    def __init__(self, strict_sequential: bool = False, cascade_skip_on_reject: bool = False):
        self.strict_sequential = strict_sequential
        self.cascade_skip_on_reject = cascade_skip_on_reject

    @staticmethod
    def validate_definition(definition: WorkflowDefinition) -> None:
        """
        Check a workflow definition before it is stored.

        Raises:
            ValidationException: listing every problem found
        """
        errors = []
        if not definition.name.strip():
            errors.append("Workflow name is required")
        if not definition.entity_type.strip():
            errors.append("Workflow entity_type is required")
        if not definition.steps:
            errors.append("Workflow must have at least one step")

        seen_orders = set()
        for step in definition.steps:
            if step.step_order < 1:
                errors.append(f"Step '{step.step_name}' has invalid step_order {step.step_order}")
            if step.step_order in seen_orders:
                errors.append(f"Duplicate step_order {step.step_order}")
            seen_orders.add(step.step_order)
            if not step.step_name.strip():
                errors.append(f"Step {step.step_order} is missing a name")
            if not step.assignee_role.strip():
                errors.append(f"Step {step.step_order} is missing an assignee_role")

        if definition.steps and not any(step.required for step in definition.steps):
            errors.append("Workflow must have at least one required step")

        if errors:
            raise ValidationException("Invalid workflow definition", errors)

    @staticmethod
    def instantiate_steps(definition: WorkflowDefinition, request_id: str) -> List[ApprovalRequestStep]:
        """All steps `pending`, ordered by step_order."""
        return [
            ApprovalRequestStep(
                id=str(uuid4()),
                approval_request_id=request_id,
                step_order=step.step_order,
                step_name=step.step_name,
                assignee_role=step.assignee_role,
                assignee_id=step.assignee_id,
                required=step.required,
            )
            for step in definition.ordered_steps
        ]

    @staticmethod
    def aggregate_status(steps: List[ApprovalRequestStep]) -> str:
        required = [s for s in steps if s.required]
        if any(s.status == StepStatus.REJECTED for s in required):
            return RequestStatus.REJECTED
        if all(s.status == StepStatus.APPROVED for s in required):
            return RequestStatus.APPROVED
        if any(not s.is_pending for s in steps):
            return RequestStatus.IN_PROGRESS
        return RequestStatus.PENDING

    def blocking_steps(self, steps: List[ApprovalRequestStep], step_order: int) -> List[int]:
        """Lower-order required steps not yet approved (strict mode only)."""
        if not self.strict_sequential:
            return []
        return [
            s.step_order for s in sorted(steps, key=lambda s: s.step_order)
            if s.required and s.step_order < step_order and s.status != StepStatus.APPROVED
        ]

    def apply_decision(
        self,
        request: ApprovalRequest,
        steps: List[ApprovalRequestStep],
        step_order: int,
        decision: str,
        actor: str,
        comment: Optional[str],
        now: datetime,
    ) -> StepResult:
        """
        Apply one decision, mutating `request` and `steps` in place.

        Raises:
            InvalidTransitionException: request terminal, step not pending,
                or skip of a required step
            StepNotReadyException: strict mode and earlier required steps open
            ResourceNotFoundException: no step with that order
        """
        if decision not in _DECISION_STATUS:
            raise ValidationException(f"Unknown decision '{decision}'")

        if request.is_terminal:
            raise InvalidTransitionException("approval_request", request.id, request.status, decision)

        step = next((s for s in steps if s.step_order == step_order), None)
        if step is None:
            raise ResourceNotFoundException("Approval step", f"{request.id}/{step_order}")

        if not step.is_pending:
            raise InvalidTransitionException("approval_step", step.id, step.status, decision)

        if decision == StepDecision.SKIP and step.required:
            raise InvalidTransitionException("approval_step", step.id, "required", decision)

        blocking = self.blocking_steps(steps, step_order)
        if blocking:
            raise StepNotReadyException(step_order, blocking)

        step.status = _DECISION_STATUS[decision]
        step.completed_by = actor
        step.completed_at = now
        step.comments = comment

        status = self.aggregate_status(steps)

        skipped = []
        if status == RequestStatus.REJECTED and self.cascade_skip_on_reject:
            for other in steps:
                if other.is_pending:
                    other.status = StepStatus.SKIPPED
                    other.completed_at = now
                    skipped.append(other)

        request.status = status
        request.updated_at = now
        if request.is_terminal:
            request.completed_at = now

        return StepResult(
            step=step,
            request_status=status,
            terminal=request.is_terminal,
            skipped_steps=tuple(skipped),
        )

    @staticmethod
    def cancel(request: ApprovalRequest, now: datetime) -> None:
        """
        Cancel an open request. Steps are left as they are.

        Raises:
            InvalidTransitionException: request already terminal
        """
        if request.is_terminal:
            raise InvalidTransitionException("approval_request", request.id, request.status, "cancel")
        request.status = RequestStatus.CANCELLED
        request.updated_at = now
        request.completed_at = now
