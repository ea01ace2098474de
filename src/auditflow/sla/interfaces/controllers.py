"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring endpoints.

Controllers are thin - they delegate to application services.
"""

from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Body, Depends, status

from auditflow.bootstrap import ServiceContainer
from auditflow.shared.api.dependencies import get_container
from auditflow.shared.infrastructure.logging import get_logger
from auditflow.sla.application import (
    AlertAcknowledgeDTO,
    AlertResponse,
    SLAEvaluationService,
    SLAMonitoringResponse,
    SLAMonitoringService,
    SubjectCreateDTO,
    SubjectEventDTO,
    SubjectResponse,
    SubjectSLAResponse,
    SweepRequestDTO,
    SweepResponse,
    TickOutcomeResponse,
)

logger = get_logger(__name__)
sla_router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Example payloads for Swagger ==========

SUBJECT_CREATE_EXAMPLE = {
    "id": "INC-1042",
    "subject_type": "incident",
    "title": "Payment gateway timeouts",
    "severity": "critical",
    "created_at": "2024-01-15T10:00:00Z"
}

SWEEP_RESPONSE_EXAMPLE = {
    "subjects_evaluated": 3,
    "alerts_created": 2,
    "escalations": 1,
    "outcomes": {"applied": 2, "unchanged": 1}
}


# ========== Dependencies ==========

async def get_monitoring_service(
    container: ServiceContainer = Depends(get_container)
) -> AsyncIterator[SLAMonitoringService]:
    """Monitoring service bound to one unit of work."""
    async with container.sla_scope() as repositories:
        yield container.monitoring_service(repositories)


async def get_evaluation_service(
    container: ServiceContainer = Depends(get_container)
) -> AsyncIterator[SLAEvaluationService]:
    async with container.sla_scope() as repositories:
        yield container.evaluation_service(repositories)


# ========== Route Handlers ==========

@sla_router.post(
    "/subjects",
    response_model=SubjectResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a subject for SLA monitoring",
    description="""
    Register an incident (or any other subject) for SLA tracking.

    **Severity Levels**: `critical`, `high`, `medium`, `low`

    Deadlines are computed from `created_at` on the first evaluation
    tick using the policy active for the severity.
    """,
    responses={
        422: {"description": "Invalid payload or subject already registered"}
    }
)
async def register_subject(
    payload: SubjectCreateDTO = Body(..., examples=[SUBJECT_CREATE_EXAMPLE]),
    service: SLAMonitoringService = Depends(get_monitoring_service)
):
    subject = await service.register_subject(payload.to_domain(datetime.now(timezone.utc)))
    logger.info(
        "Subject registered",
        extra={"subject_id": subject.id, "severity": subject.severity}
    )
    return SubjectResponse.from_domain(subject)


@sla_router.get(
    "/subjects/{subject_id}",
    response_model=SubjectSLAResponse,
    summary="Get subject SLA status",
    description="""
    Get the subject with its monitoring record and current SLA state
    (pending, warning, breached, met).
    """,
    responses={404: {"description": "Subject not found"}}
)
async def get_subject_sla(
    subject_id: str,
    service: SLAMonitoringService = Depends(get_monitoring_service)
):
    now = datetime.now(timezone.utc)
    subject = await service.get_subject(subject_id)
    record = await service.get_monitoring(subject_id)

    monitoring = None
    if record is not None:
        sla_status = await service.get_status(subject_id, now)
        monitoring = SLAMonitoringResponse.from_domain(record, sla_status)

    return SubjectSLAResponse(subject=SubjectResponse.from_domain(subject), monitoring=monitoring)


@sla_router.post(
    "/subjects/{subject_id}/response",
    response_model=SubjectResponse,
    summary="Record first response",
    responses={404: {"description": "Subject not found"}}
)
async def record_response(
    subject_id: str,
    payload: Optional[SubjectEventDTO] = None,
    service: SLAMonitoringService = Depends(get_monitoring_service)
):
    at = payload.at if payload else None
    subject = await service.record_response(subject_id, at)
    return SubjectResponse.from_domain(subject)


@sla_router.post(
    "/subjects/{subject_id}/resolution",
    response_model=SubjectResponse,
    summary="Record resolution",
    description="Resolution also counts as the first response if none was recorded.",
    responses={404: {"description": "Subject not found"}}
)
async def record_resolution(
    subject_id: str,
    payload: Optional[SubjectEventDTO] = None,
    service: SLAMonitoringService = Depends(get_monitoring_service)
):
    at = payload.at if payload else None
    subject = await service.record_resolution(subject_id, at)
    return SubjectResponse.from_domain(subject)


@sla_router.post(
    "/subjects/{subject_id}/evaluate",
    response_model=TickOutcomeResponse,
    summary="Evaluate one subject now",
    description="Runs a single evaluation tick for the subject and reports what changed."
)
async def evaluate_subject(
    subject_id: str,
    service: SLAEvaluationService = Depends(get_evaluation_service)
):
    outcome = await service.evaluate_subject(subject_id)
    return TickOutcomeResponse.from_domain(outcome)


@sla_router.get(
    "/subjects/{subject_id}/alerts",
    response_model=List[AlertResponse],
    summary="List alerts for a subject",
    description="Newest first.",
    responses={404: {"description": "Subject not found"}}
)
async def list_alerts(
    subject_id: str,
    service: SLAMonitoringService = Depends(get_monitoring_service)
):
    alerts = await service.list_alerts(subject_id)
    return [AlertResponse.from_domain(a) for a in alerts]


@sla_router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=AlertResponse,
    summary="Acknowledge an alert",
    responses={
        404: {"description": "Alert not found"},
        409: {"description": "Alert already acknowledged"}
    }
)
async def acknowledge_alert(
    alert_id: str,
    payload: AlertAcknowledgeDTO,
    service: SLAMonitoringService = Depends(get_monitoring_service)
):
    alert = await service.acknowledge_alert(alert_id, payload.user_id)
    return AlertResponse.from_domain(alert)


@sla_router.post(
    "/evaluate",
    response_model=SweepResponse,
    summary="Run an evaluation sweep",
    description="""
    Evaluate every open subject once, the same job the background
    scheduler runs on its interval. Subjects are isolated: one failing
    subject is counted under `failed` and does not stop the sweep.
    """,
    responses={
        200: {
            "description": "Sweep summary",
            "content": {"application/json": {"example": SWEEP_RESPONSE_EXAMPLE}}
        }
    }
)
async def run_sweep(
    payload: Optional[SweepRequestDTO] = None,
    container: ServiceContainer = Depends(get_container)
):
    now = payload.now if payload else None
    summary = await container.sweep_service().sweep(now)
    return SweepResponse.from_summary(summary)
