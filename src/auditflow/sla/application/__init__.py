"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from auditflow.sla.application.dto import (
    AlertAcknowledgeDTO,
    AlertResponse,
    SLAMonitoringResponse,
    SLAStatusResponse,
    SubjectCreateDTO,
    SubjectEventDTO,
    SubjectResponse,
    SubjectSLAResponse,
    SweepRequestDTO,
    SweepResponse,
    TickOutcomeResponse,
)
from auditflow.sla.application.services import (
    AlertDeduplicator,
    INotificationDispatcher,
    ISLAAlertRepository,
    ISLAMonitoringRepository,
    ISLAPolicyStore,
    ISubjectRepository,
    SLAEvaluationService,
    SLAMonitoringService,
    SLARepositories,
    SLAScopeFactory,
    SLASweepService,
    TickCommit,
    TickOutcome,
    TickStatus,
    new_monitoring_record,
)

__all__ = [
    # DTOs
    "AlertAcknowledgeDTO",
    "AlertResponse",
    "SLAMonitoringResponse",
    "SLAStatusResponse",
    "SubjectCreateDTO",
    "SubjectEventDTO",
    "SubjectResponse",
    "SubjectSLAResponse",
    "SweepRequestDTO",
    "SweepResponse",
    "TickOutcomeResponse",
    # Services
    "AlertDeduplicator",
    "SLAEvaluationService",
    "SLAMonitoringService",
    "SLASweepService",
    "TickCommit",
    "TickOutcome",
    "TickStatus",
    "new_monitoring_record",
    # Repository Interfaces
    "INotificationDispatcher",
    "ISLAAlertRepository",
    "ISLAMonitoringRepository",
    "ISLAPolicyStore",
    "ISubjectRepository",
    "SLARepositories",
    "SLAScopeFactory",
]
