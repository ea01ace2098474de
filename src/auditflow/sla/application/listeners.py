"""
Approval SLA Listener
=====================

Tracks approval requests as SLA subjects: a new request is registered
with its priority as severity, the first decision counts as the
response, and reaching a terminal status counts as the resolution.
"""

from datetime import datetime, timezone
from typing import Optional

from auditflow.shared.infrastructure.locks import KeyedLock
from auditflow.shared.infrastructure.logging import get_logger
from auditflow.sla.application.services import (
    ISLAPolicyStore,
    SLAMonitoringService,
    SLAScopeFactory,
)
from auditflow.sla.domain import MonitoredSubject
from auditflow.workflow.application.services import IApprovalEventListener
from auditflow.workflow.domain import ApprovalRequest, StepResult

logger = get_logger(__name__)

APPROVAL_SUBJECT_TYPE = "approval_request"


class ApprovalSLAListener(IApprovalEventListener):

    def __init__(self, scope_factory: SLAScopeFactory, policy_store: ISLAPolicyStore, locks: KeyedLock):
        self._scope_factory = scope_factory
        self._policy_store = policy_store
        self._locks = locks

    async def on_request_created(self, request: ApprovalRequest) -> None:
        async with self._scope_factory() as repos:
            service = SLAMonitoringService(repos, self._policy_store, self._locks)
            await service.register_subject(MonitoredSubject(
                id=request.id,
                subject_type=APPROVAL_SUBJECT_TYPE,
                title=request.title,
                severity=request.priority,
                created_at=request.created_at,
            ))

    async def on_step_decided(self, request: ApprovalRequest, result: StepResult) -> None:
        async with self._scope_factory() as repos:
            if await repos.subjects.get(request.id) is None:
                logger.debug("Approval request is not an SLA subject", extra={"request_id": request.id})
                return
            service = SLAMonitoringService(repos, self._policy_store, self._locks)
            await service.record_response(request.id, result.step.completed_at)

    async def on_request_terminal(
        self,
        request_id: str,
        final_status: str,
        completed_at: Optional[datetime] = None,
    ) -> None:
        async with self._scope_factory() as repos:
            if await repos.subjects.get(request_id) is None:
                logger.debug("Approval request is not an SLA subject", extra={"request_id": request_id})
                return
            service = SLAMonitoringService(repos, self._policy_store, self._locks)
            await service.record_resolution(request_id, completed_at or datetime.now(timezone.utc))
        logger.info(
            "Approval SLA resolved",
            extra={"request_id": request_id, "final_status": final_status}
        )
