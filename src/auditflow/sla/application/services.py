"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncContextManager, Callable, Dict, List, Optional
from uuid import uuid4

from auditflow.config import AlertType
from auditflow.core import (
    ConcurrentModificationException,
    NotificationDispatchException,
    ResourceNotFoundException,
    ValidationException,
)
from auditflow.shared.infrastructure.locks import KeyedLock
from auditflow.shared.infrastructure.logging import get_logger, log_latency
from auditflow.sla.domain import (
    AlertDeduplicationRule,
    DeadlineCalculator,
    MonitoredSubject,
    NotificationIntent,
    SLAAlert,
    SLAMonitoring,
    SLAPolicy,
    SLARuleEngine,
    SLAStatus,
    SLAStatusCalculator,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLAPolicyStore(ABC):
    """Read-only lookup of SLA policies."""

    @abstractmethod
    def load_policy(self, severity: str) -> Optional[SLAPolicy]:
        """Get the active policy for a severity, if any."""

    @abstractmethod
    def get_policy(self, policy_id: str) -> Optional[SLAPolicy]:
        """Get a policy by ID, active or not."""

    @abstractmethod
    def alert_notify_roles(self) -> List[str]:
        """Roles notified of warning and breach alerts."""


class ISubjectRepository(ABC):
    """Interface for monitored subject data access."""

    @abstractmethod
    async def get(self, subject_id: str) -> Optional[MonitoredSubject]:
        """Get subject by ID."""

    @abstractmethod
    async def create(self, subject: MonitoredSubject) -> MonitoredSubject:
        """Create new subject."""

    @abstractmethod
    async def save(self, subject: MonitoredSubject) -> MonitoredSubject:
        """Persist changes to an existing subject."""

    @abstractmethod
    async def list_unmonitored_ids(self) -> List[str]:
        """IDs of unresolved subjects that have no monitoring record yet."""


@dataclass
class TickCommit:
    """Result of an atomic tick commit."""
    inserted_alerts: List[SLAAlert] = field(default_factory=list)
    discarded: bool = False


class ISLAMonitoringRepository(ABC):
    """Interface for SLA monitoring data access."""

    @abstractmethod
    async def get(self, subject_id: str) -> Optional[SLAMonitoring]:
        """Get the monitoring record for a subject."""

    @abstractmethod
    async def list_open_subject_ids(self) -> List[str]:
        """Subject IDs whose monitoring record is not terminal."""

    @abstractmethod
    async def upsert(self, record: SLAMonitoring) -> SLAMonitoring:
        """Insert the record unless one exists for the subject; return the stored one."""

    @abstractmethod
    async def save(self, record: SLAMonitoring, expected_version: int) -> SLAMonitoring:
        """
        Compare-and-set update.

        Raises:
            ConcurrentModificationException: stored version differs
        """

    @abstractmethod
    async def commit_tick(
        self,
        record: SLAMonitoring,
        expected_version: int,
        alerts: List[SLAAlert],
        dedup: AlertDeduplicationRule,
        record_changed: bool,
    ) -> TickCommit:
        """
        Atomically apply one tick: version check, terminal re-check,
        deduplicated alert inserts and the monitoring update.

        Nothing is written when the stored record is already terminal
        (returns discarded) or when the version check fails.

        Raises:
            ConcurrentModificationException: stored version differs
        """


class ISLAAlertRepository(ABC):
    """Interface for SLA alert data access."""

    @abstractmethod
    async def get(self, alert_id: str) -> Optional[SLAAlert]:
        """Get alert by ID."""

    @abstractmethod
    async def list_for_subject(self, subject_id: str) -> List[SLAAlert]:
        """All alerts of a subject, newest first."""

    @abstractmethod
    async def insert_alert_if_absent(self, alert: SLAAlert, dedup: AlertDeduplicationRule) -> bool:
        """Atomic dedup check and insert. Returns True if inserted."""

    @abstractmethod
    async def acknowledge(self, alert_id: str, user_id: str, at: datetime) -> SLAAlert:
        """
        Acknowledge an alert.

        Raises:
            ResourceNotFoundException: unknown alert
            InvalidTransitionException: already acknowledged
        """


class INotificationDispatcher(ABC):
    """Delivers alert and escalation intents to people."""

    @abstractmethod
    async def on_alert(self, intent: NotificationIntent) -> None:
        """
        Deliver a warning or breach alert.

        Raises:
            NotificationDispatchException: delivery failed after retries
        """

    @abstractmethod
    async def on_escalation(
        self,
        subject_id: str,
        level: int,
        notify_roles: List[str],
        message: str,
    ) -> None:
        """
        Deliver an escalation to the roles of the new level.

        Raises:
            NotificationDispatchException: delivery failed after retries
        """


@dataclass
class SLARepositories:
    """Repositories bound to one unit of work."""
    subjects: ISubjectRepository
    monitoring: ISLAMonitoringRepository
    alerts: ISLAAlertRepository


SLAScopeFactory = Callable[[], AsyncContextManager[SLARepositories]]


# ========== Application Services ==========

class TickStatus(str):
    """Outcome of evaluating one subject."""
    NOT_FOUND = "not_found"
    UNMONITORED = "unmonitored"
    TERMINAL = "terminal"
    UNCHANGED = "unchanged"
    APPLIED = "applied"
    DEFERRED = "deferred"
    DISCARDED = "discarded"
    FAILED = "failed"


@dataclass
class TickOutcome:
    subject_id: str
    status: str
    alerts: List[SLAAlert] = field(default_factory=list)
    escalated_to: Optional[int] = None


class AlertDeduplicator:
    """
    Suppresses repeat alerts within a sliding window.

    Read-only check for callers that want to ask before building an
    alert; the evaluator relies on the store's atomic check-and-insert.
    """

    def __init__(self, alert_repository: ISLAAlertRepository, window: timedelta):
        self._alert_repo = alert_repository
        self._rule = AlertDeduplicationRule(window)

    @property
    def rule(self) -> AlertDeduplicationRule:
        return self._rule

    async def should_emit(
        self,
        subject_id: str,
        alert_type: str,
        now: datetime,
        escalation_level: Optional[int] = None,
    ) -> bool:
        probe = SLAAlert(
            id="probe",
            subject_id=subject_id,
            alert_type=alert_type,
            severity=SLAAlert.severity_for(alert_type),
            message="",
            sent_at=now,
            escalation_level=escalation_level,
        )
        existing = await self._alert_repo.list_for_subject(subject_id)
        return not self._rule.is_duplicate(probe, existing)


class SLAEvaluationService:
    """
    Evaluates one subject per call ("tick").

    Evaluation of a subject is serialized by the shared keyed lock and by
    the store's version check, so concurrent ticks never apply the same
    escalation twice.
    """

    def __init__(
        self,
        repositories: SLARepositories,
        policy_store: ISLAPolicyStore,
        dispatcher: INotificationDispatcher,
        locks: KeyedLock,
        dedup_window: timedelta = timedelta(hours=1),
    ):
        self._repos = repositories
        self._policy_store = policy_store
        self._dispatcher = dispatcher
        self._locks = locks
        self._dedup = AlertDeduplicationRule(dedup_window)

    async def evaluate_subject(self, subject_id: str, now: Optional[datetime] = None) -> TickOutcome:
        now = now or datetime.now(timezone.utc)

        async with self._locks.hold(subject_id):
            outcome, policy, notify = await self._evaluate_locked(subject_id, now)

        if notify:
            await self._dispatch(outcome, policy)
        return outcome

    async def _evaluate_locked(self, subject_id: str, now: datetime):
        subject = await self._repos.subjects.get(subject_id)
        if subject is None:
            return TickOutcome(subject_id, TickStatus.NOT_FOUND), None, False

        record = await self._repos.monitoring.get(subject_id)
        if record is None:
            policy = self._policy_store.load_policy(subject.severity)
            if policy is None:
                logger.debug(
                    "No active SLA policy, subject not monitored",
                    extra={"subject_id": subject_id, "severity": subject.severity}
                )
                return TickOutcome(subject_id, TickStatus.UNMONITORED), None, False
            record = await self._repos.monitoring.upsert(new_monitoring_record(subject, policy, now))

        if record.is_terminal:
            return TickOutcome(subject_id, TickStatus.TERMINAL), None, False

        policy = (
            self._policy_store.get_policy(record.sla_policy_id)
            or self._policy_store.load_policy(subject.severity)
        )
        if policy is None:
            return TickOutcome(subject_id, TickStatus.UNMONITORED), None, False

        expected_version = record.version
        updated = record.copy()
        changed = False
        if subject.responded_at is not None:
            changed = updated.record_response(subject.responded_at) or changed
        if subject.resolved_at is not None:
            changed = updated.record_resolution(subject.resolved_at) or changed

        plan = SLARuleEngine.plan(updated, policy, now, subject.title)
        if plan.escalation is not None:
            updated.escalate_to(plan.escalation.level, now)
            changed = True

        if plan.is_empty and not changed:
            return TickOutcome(subject_id, TickStatus.UNCHANGED), policy, False

        # Re-check terminal status before committing
        fresh = await self._repos.subjects.get(subject_id)
        if fresh is not None and fresh.resolved_at is not None and subject.resolved_at is None:
            logger.info("Subject resolved mid-tick, discarding tick", extra={"subject_id": subject_id})
            return TickOutcome(subject_id, TickStatus.DISCARDED), policy, False

        try:
            commit = await self._repos.monitoring.commit_tick(
                updated, expected_version, plan.alerts, self._dedup, changed
            )
        except ConcurrentModificationException:
            logger.info(
                "Concurrent modification, deferring tick to next cycle",
                extra={"subject_id": subject_id, "expected_version": expected_version}
            )
            return TickOutcome(subject_id, TickStatus.DEFERRED), policy, False

        if commit.discarded:
            return TickOutcome(subject_id, TickStatus.DISCARDED), policy, False

        escalated_to = plan.escalation.level if plan.escalation else None
        if escalated_to is not None:
            logger.info(
                "Subject escalated",
                extra={"subject_id": subject_id, "level": escalated_to}
            )
        for alert in commit.inserted_alerts:
            logger.info(
                "SLA alert created",
                extra={"subject_id": subject_id, "alert_type": alert.alert_type, "alert_id": alert.id}
            )

        outcome = TickOutcome(
            subject_id, TickStatus.APPLIED,
            alerts=commit.inserted_alerts, escalated_to=escalated_to
        )
        return outcome, policy, bool(commit.inserted_alerts)

    async def _dispatch(self, outcome: TickOutcome, policy: SLAPolicy) -> None:
        """Best-effort delivery after commit; failures never touch engine state."""
        for alert in outcome.alerts:
            try:
                if alert.alert_type == AlertType.ESCALATION:
                    level = next(
                        (lvl for lvl in policy.escalation_levels if lvl.level == alert.escalation_level),
                        None
                    )
                    roles = level.notify_roles if level else []
                    await self._dispatcher.on_escalation(
                        alert.subject_id, alert.escalation_level, roles, alert.message
                    )
                else:
                    await self._dispatcher.on_alert(NotificationIntent(
                        subject_id=alert.subject_id,
                        alert_id=alert.id,
                        alert_type=alert.alert_type,
                        severity=alert.severity,
                        message=alert.message,
                        notify_roles=self._policy_store.alert_notify_roles(),
                    ))
            except NotificationDispatchException as e:
                logger.warning(
                    "Notification dispatch failed",
                    extra={
                        "subject_id": alert.subject_id,
                        "alert_id": alert.id,
                        "alert_type": alert.alert_type,
                        "error": e.message,
                    }
                )


def new_monitoring_record(subject: MonitoredSubject, policy: SLAPolicy, now: datetime) -> SLAMonitoring:
    deadlines = DeadlineCalculator.compute_deadlines(subject.created_at, policy)
    return SLAMonitoring(
        id=str(uuid4()),
        subject_id=subject.id,
        sla_policy_id=policy.id,
        subject_created_at=subject.created_at,
        response_deadline=deadlines.response_deadline,
        resolution_deadline=deadlines.resolution_deadline,
        created_at=now,
        updated_at=now,
    )


class SLASweepService:
    """
    Periodic sweep over every open subject.

    Each subject runs in its own unit of work so one failing subject
    cannot abort or roll back the others.
    """

    def __init__(
        self,
        scope_factory: SLAScopeFactory,
        policy_store: ISLAPolicyStore,
        dispatcher: INotificationDispatcher,
        locks: KeyedLock,
        dedup_window: timedelta = timedelta(hours=1),
        concurrency: int = 8,
    ):
        self._scope_factory = scope_factory
        self._policy_store = policy_store
        self._dispatcher = dispatcher
        self._locks = locks
        self._dedup_window = dedup_window
        self._concurrency = concurrency

    async def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Evaluate all open subjects.

        Returns:
            Count of subjects per tick status, plus totals
        """
        now = now or datetime.now(timezone.utc)

        async with self._scope_factory() as repos:
            subject_ids = list(await repos.monitoring.list_open_subject_ids())
            subject_ids += await repos.subjects.list_unmonitored_ids()

        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(subject_id: str) -> TickOutcome:
            async with semaphore:
                try:
                    async with self._scope_factory() as repos:
                        service = SLAEvaluationService(
                            repos, self._policy_store, self._dispatcher,
                            self._locks, self._dedup_window
                        )
                        return await service.evaluate_subject(subject_id, now)
                except Exception as e:
                    logger.error(
                        "SLA tick failed",
                        extra={"subject_id": subject_id, "error": str(e), "error_type": type(e).__name__}
                    )
                    return TickOutcome(subject_id, TickStatus.FAILED)

        with log_latency(logger, "sla_sweep", subjects=len(subject_ids)):
            outcomes = await asyncio.gather(*(run(subject_id) for subject_id in subject_ids))

        summary: Dict[str, int] = {
            "subjects_evaluated": len(outcomes),
            "alerts_created": sum(len(o.alerts) for o in outcomes),
            "escalations": sum(1 for o in outcomes if o.escalated_to is not None),
        }
        for outcome in outcomes:
            summary[outcome.status] = summary.get(outcome.status, 0) + 1
        return summary


class SLAMonitoringService:
    """
    Subject lifecycle and read side: registration, response/resolution
    recording, status and alert acknowledgement.
    """

    def __init__(
        self,
        repositories: SLARepositories,
        policy_store: ISLAPolicyStore,
        locks: KeyedLock,
    ):
        self._repos = repositories
        self._policy_store = policy_store
        self._locks = locks

    async def register_subject(self, subject: MonitoredSubject) -> MonitoredSubject:
        existing = await self._repos.subjects.get(subject.id)
        if existing is not None:
            raise ValidationException(f"Subject {subject.id} already registered")
        return await self._repos.subjects.create(subject)

    async def get_subject(self, subject_id: str) -> MonitoredSubject:
        subject = await self._repos.subjects.get(subject_id)
        if subject is None:
            raise ResourceNotFoundException("Subject", subject_id)
        return subject

    async def record_response(self, subject_id: str, at: Optional[datetime] = None) -> MonitoredSubject:
        at = at or datetime.now(timezone.utc)
        async with self._locks.hold(subject_id):
            subject = await self.get_subject(subject_id)
            subject.mark_responded(at)
            subject = await self._repos.subjects.save(subject)
            await self._sync_monitoring(subject)
        return subject

    async def record_resolution(self, subject_id: str, at: Optional[datetime] = None) -> MonitoredSubject:
        at = at or datetime.now(timezone.utc)
        async with self._locks.hold(subject_id):
            subject = await self.get_subject(subject_id)
            subject.mark_resolved(at)
            subject = await self._repos.subjects.save(subject)
            await self._sync_monitoring(subject)
        return subject

    async def _sync_monitoring(self, subject: MonitoredSubject) -> None:
        record = await self._repos.monitoring.get(subject.id)
        if record is None:
            if subject.is_resolved:
                await self._record_closed_before_first_tick(subject)
            return
        if record.is_terminal:
            return
        expected_version = record.version
        changed = False
        if subject.responded_at is not None:
            changed = record.record_response(subject.responded_at) or changed
        if subject.resolved_at is not None:
            changed = record.record_resolution(subject.resolved_at) or changed
        if changed:
            await self._repos.monitoring.save(record, expected_version)

    async def _record_closed_before_first_tick(self, subject: MonitoredSubject) -> None:
        # Resolved subjects leave the sweep, so the outcome is frozen here.
        if self._policy_store is None:
            return
        policy = self._policy_store.load_policy(subject.severity)
        if policy is None:
            return
        record = new_monitoring_record(subject, policy, subject.resolved_at)
        record.record_response(subject.responded_at)
        record.record_resolution(subject.resolved_at)
        await self._repos.monitoring.upsert(record)

    async def get_monitoring(self, subject_id: str) -> Optional[SLAMonitoring]:
        await self.get_subject(subject_id)
        return await self._repos.monitoring.get(subject_id)

    async def get_status(self, subject_id: str, now: Optional[datetime] = None) -> Optional[SLAStatus]:
        now = now or datetime.now(timezone.utc)
        record = await self.get_monitoring(subject_id)
        if record is None:
            return None
        policy = self._policy_store.get_policy(record.sla_policy_id)
        return SLAStatusCalculator.status(record, policy, now)

    async def list_alerts(self, subject_id: str) -> List[SLAAlert]:
        await self.get_subject(subject_id)
        return await self._repos.alerts.list_for_subject(subject_id)

    async def acknowledge_alert(
        self,
        alert_id: str,
        user_id: str,
        at: Optional[datetime] = None,
    ) -> SLAAlert:
        at = at or datetime.now(timezone.utc)
        alert = await self._repos.alerts.acknowledge(alert_id, user_id, at)
        logger.info("SLA alert acknowledged", extra={"alert_id": alert_id, "user_id": user_id})
        return alert
