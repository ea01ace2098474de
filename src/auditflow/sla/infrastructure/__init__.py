"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy and in-memory data access, config-backed policy store
- External: Notification dispatch, config watcher, scheduler
"""

from auditflow.sla.infrastructure.models import (
    MonitoredSubjectModel,
    SLAAlertModel,
    SLAMonitoringModel,
)
from auditflow.sla.infrastructure.repositories import (
    ConfigPolicyStore,
    InMemoryAlertRepository,
    InMemoryMonitoringRepository,
    InMemorySLAStore,
    InMemorySubjectRepository,
    SQLAlchemyAlertRepository,
    SQLAlchemyMonitoringRepository,
    SQLAlchemySubjectRepository,
    sqlalchemy_repositories,
)
from auditflow.sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    LoggingNotificationDispatcher,
    SLAConfigManager,
    SLAScheduler,
    WebhookNotificationDispatcher,
)

__all__ = [
    "MonitoredSubjectModel",
    "SLAAlertModel",
    "SLAMonitoringModel",
    "ConfigPolicyStore",
    "InMemoryAlertRepository",
    "InMemoryMonitoringRepository",
    "InMemorySLAStore",
    "InMemorySubjectRepository",
    "SQLAlchemyAlertRepository",
    "SQLAlchemyMonitoringRepository",
    "SQLAlchemySubjectRepository",
    "sqlalchemy_repositories",
    "CircuitBreaker",
    "CircuitState",
    "LoggingNotificationDispatcher",
    "SLAConfigManager",
    "SLAScheduler",
    "WebhookNotificationDispatcher",
]
