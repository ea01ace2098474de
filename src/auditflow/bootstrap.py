"""
Service Container
=================

Builds and owns every long-lived collaborator of the application:
database engine or in-memory stores, SLA config manager, notification
dispatcher, keyed locks, step sequencer and the sweep scheduler.

Constructed in the FastAPI lifespan (or directly in tests) and torn
down at shutdown; request handlers reach it via `app.state.container`.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Dict, List, Optional

from auditflow.config import Settings
from auditflow.infrastructure.database import Database
from auditflow.shared.infrastructure.locks import KeyedLock
from auditflow.shared.infrastructure.logging import get_logger
from auditflow.sla.application.listeners import ApprovalSLAListener
from auditflow.sla.application.services import (
    INotificationDispatcher,
    SLAEvaluationService,
    SLAMonitoringService,
    SLARepositories,
    SLASweepService,
)
from auditflow.sla.infrastructure.external import (
    LoggingNotificationDispatcher,
    SLAConfigManager,
    SLAScheduler,
    WebhookNotificationDispatcher,
)
from auditflow.sla.infrastructure.repositories import (
    ConfigPolicyStore,
    InMemorySLAStore,
    sqlalchemy_repositories,
)
from auditflow.workflow.application.services import (
    ApprovalService,
    IApprovalEventListener,
    WorkflowRepositories,
)
from auditflow.workflow.domain import ApprovalStepSequencer
from auditflow.workflow.infrastructure.repositories import (
    InMemoryWorkflowStore,
    sqlalchemy_workflow_repositories,
)

logger = get_logger(__name__)


class ServiceContainer:
    """
    Composition root.

    With `storage_backend == "memory"` the repositories share process-local
    stores; otherwise each scope opens its own SQLAlchemy session.
    """

    def __init__(
        self,
        settings: Settings,
        dispatcher: Optional[INotificationDispatcher] = None,
        config_manager: Optional[SLAConfigManager] = None,
    ):
        self.settings = settings

        self.database: Optional[Database] = None
        self.sla_store: Optional[InMemorySLAStore] = None
        self.workflow_store: Optional[InMemoryWorkflowStore] = None
        if settings.storage_backend == "memory":
            self.sla_store = InMemorySLAStore()
            self.workflow_store = InMemoryWorkflowStore()
        else:
            self.database = Database(
                settings.database_url,
                echo=settings.debug,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
            )

        self.config_manager = config_manager or SLAConfigManager()
        self.policy_store = ConfigPolicyStore(lambda: self.config_manager.config)

        if dispatcher is None:
            if settings.notification_webhook_url:
                dispatcher = WebhookNotificationDispatcher(
                    settings.notification_webhook_url,
                    timeout_seconds=settings.notification_timeout_seconds,
                    max_retries=settings.notification_max_retries,
                )
            else:
                dispatcher = LoggingNotificationDispatcher()
        self.dispatcher = dispatcher

        self.sequencer = ApprovalStepSequencer(
            strict_sequential=settings.workflow_strict_sequential,
            cascade_skip_on_reject=settings.workflow_cascade_skip_on_reject,
        )
        self.subject_locks = KeyedLock()
        self.request_locks = KeyedLock()
        self.dedup_window = timedelta(minutes=settings.sla_alert_dedup_window_minutes)

        self.approval_listeners: List[IApprovalEventListener] = [
            ApprovalSLAListener(self.sla_scope, self.policy_store, self.subject_locks)
        ]
        self.scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)

    # ========== Lifecycle ==========

    async def startup(self, start_scheduler: bool = True) -> None:
        """
        STARTUP:
        1. Load SLA configuration and watch it for changes
        2. Initialize database (and create tables outside production)
        3. Start the sweep scheduler
        """
        logger.info("Loading SLA configuration", extra={"path": str(self.settings.sla_config_path)})
        self.config_manager.load(self.settings.sla_config_path)
        self.config_manager.start_watching()

        if self.database is not None:
            logger.info("Initializing database")
            self.database.init()
            if self.settings.environment != "production":
                # Use migrations in production
                await self.database.create_tables()

        if start_scheduler and self.settings.sla_evaluation_interval > 0:
            await self.scheduler.start(self.run_sweep)

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        self.config_manager.stop_watching()
        close = getattr(self.dispatcher, "close", None)
        if close is not None:
            await close()
        if self.database is not None:
            await self.database.close()

    # ========== Units of work ==========

    @asynccontextmanager
    async def sla_scope(self) -> AsyncIterator[SLARepositories]:
        if self.sla_store is not None:
            yield self.sla_store.repositories()
            return
        async with self.database.session_context() as session:
            yield sqlalchemy_repositories(session)

    @asynccontextmanager
    async def approval_scope(self) -> AsyncIterator[WorkflowRepositories]:
        if self.workflow_store is not None:
            yield self.workflow_store.repositories()
            return
        async with self.database.session_context() as session:
            yield sqlalchemy_workflow_repositories(session)

    # ========== Services ==========

    def evaluation_service(self, repositories: SLARepositories) -> SLAEvaluationService:
        return SLAEvaluationService(
            repositories, self.policy_store, self.dispatcher,
            self.subject_locks, self.dedup_window
        )

    def monitoring_service(self, repositories: SLARepositories) -> SLAMonitoringService:
        return SLAMonitoringService(repositories, self.policy_store, self.subject_locks)

    def sweep_service(self) -> SLASweepService:
        return SLASweepService(
            self.sla_scope, self.policy_store, self.dispatcher, self.subject_locks,
            dedup_window=self.dedup_window,
            concurrency=self.settings.sla_sweep_concurrency,
        )

    def approval_service(self, repositories: WorkflowRepositories) -> ApprovalService:
        return ApprovalService(
            repositories, self.sequencer, self.request_locks, self.approval_listeners
        )

    async def run_sweep(self) -> Dict[str, int]:
        """Scheduler job: one sweep over all open subjects."""
        summary = await self.sweep_service().sweep()
        logger.info("SLA sweep finished", extra=summary)
        return summary

    def health(self) -> Dict[str, str]:
        return {
            "storage": self.settings.storage_backend,
            "sla_config": "loaded" if self._config_loaded() else "not_loaded",
            "sla_config_watch": "watching" if self.config_manager.is_watching else "static",
            "sla_scheduler": "running" if self.scheduler.is_running else "stopped",
            "notifications": type(self.dispatcher).__name__,
        }

    def _config_loaded(self) -> bool:
        try:
            self.config_manager.config
        except RuntimeError:
            return False
        return True
