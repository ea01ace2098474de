"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces.

- SQLAlchemy repositories: one AsyncSession per unit of work
- In-memory repositories: share an InMemorySLAStore, for development and tests
- ConfigPolicyStore: policies from the hot-reloaded YAML configuration
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from auditflow.core import (
    ConcurrentModificationException,
    RepositoryException,
    ResourceNotFoundException,
)
from auditflow.sla.application.services import (
    ISLAAlertRepository,
    ISLAMonitoringRepository,
    ISLAPolicyStore,
    ISubjectRepository,
    SLARepositories,
    TickCommit,
)
from auditflow.sla.domain import (
    AlertDeduplicationRule,
    MonitoredSubject,
    SLAAlert,
    SLAConfig,
    SLAMonitoring,
    SLAPolicy,
)
from auditflow.sla.infrastructure.models import (
    MonitoredSubjectModel,
    SLAAlertModel,
    SLAMonitoringModel,
)


# ========== Model <-> Entity mapping ==========

def _subject_to_domain(model: MonitoredSubjectModel) -> MonitoredSubject:
    return MonitoredSubject(
        id=model.id,
        subject_type=model.subject_type,
        title=model.title,
        severity=model.severity,
        created_at=model.created_at,
        responded_at=model.responded_at,
        resolved_at=model.resolved_at,
    )


def _monitoring_to_domain(model: SLAMonitoringModel) -> SLAMonitoring:
    return SLAMonitoring(
        id=model.id,
        subject_id=model.subject_id,
        sla_policy_id=model.sla_policy_id,
        subject_created_at=model.subject_created_at,
        response_deadline=model.response_deadline,
        resolution_deadline=model.resolution_deadline,
        actual_response_time=model.actual_response_time,
        actual_resolution_time=model.actual_resolution_time,
        response_sla_met=model.response_sla_met,
        resolution_sla_met=model.resolution_sla_met,
        current_escalation_level=model.current_escalation_level,
        last_escalation_at=model.last_escalation_at,
        alerts_sent=set(model.alerts_sent or []),
        version=model.version,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _apply_monitoring(model: SLAMonitoringModel, record: SLAMonitoring) -> None:
    model.actual_response_time = record.actual_response_time
    model.actual_resolution_time = record.actual_resolution_time
    model.response_sla_met = record.response_sla_met
    model.resolution_sla_met = record.resolution_sla_met
    model.current_escalation_level = record.current_escalation_level
    model.last_escalation_at = record.last_escalation_at
    model.alerts_sent = sorted(record.alerts_sent)
    model.version = record.version
    model.updated_at = record.updated_at


def _alert_to_domain(model: SLAAlertModel) -> SLAAlert:
    return SLAAlert(
        id=model.id,
        subject_id=model.subject_id,
        alert_type=model.alert_type,
        severity=model.severity,
        message=model.message,
        sent_at=model.sent_at,
        escalation_level=model.escalation_level,
        acknowledged=model.acknowledged,
        acknowledged_by=model.acknowledged_by,
        acknowledged_at=model.acknowledged_at,
    )


def _bump(record: SLAMonitoring, expected_version: int) -> None:
    record.version = expected_version + 1
    record.updated_at = datetime.now(timezone.utc)


# ========== SQLAlchemy implementations ==========

class SQLAlchemySubjectRepository(ISubjectRepository):
    """
    SQLAlchemy implementation of subject repository.

    Handles persistence of MonitoredSubject entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, subject_id: str) -> Optional[MonitoredSubject]:
        model = await self._session.get(MonitoredSubjectModel, subject_id, populate_existing=True)
        return _subject_to_domain(model) if model else None

    async def create(self, subject: MonitoredSubject) -> MonitoredSubject:
        model = MonitoredSubjectModel(
            id=subject.id,
            subject_type=subject.subject_type,
            title=subject.title,
            severity=subject.severity,
            created_at=subject.created_at,
            responded_at=subject.responded_at,
            resolved_at=subject.resolved_at,
        )
        self._session.add(model)
        await self._session.flush()
        return subject

    async def save(self, subject: MonitoredSubject) -> MonitoredSubject:
        model = await self._session.get(MonitoredSubjectModel, subject.id)
        if not model:
            raise RepositoryException(f"Subject {subject.id} not found")

        model.responded_at = subject.responded_at
        model.resolved_at = subject.resolved_at
        await self._session.flush()
        return subject

    async def list_unmonitored_ids(self) -> List[str]:
        stmt = (
            select(MonitoredSubjectModel.id)
            .outerjoin(SLAMonitoringModel, SLAMonitoringModel.subject_id == MonitoredSubjectModel.id)
            .where(SLAMonitoringModel.id.is_(None))
            .where(MonitoredSubjectModel.resolved_at.is_(None))
            .order_by(MonitoredSubjectModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class SQLAlchemyAlertRepository(ISLAAlertRepository):
    """
    SQLAlchemy implementation of SLA alert repository.

    Handles persistence of SLAAlert entities.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, alert_id: str) -> Optional[SLAAlert]:
        model = await self._session.get(SLAAlertModel, alert_id)
        return _alert_to_domain(model) if model else None

    async def list_for_subject(self, subject_id: str) -> List[SLAAlert]:
        stmt = (
            select(SLAAlertModel)
            .where(SLAAlertModel.subject_id == subject_id)
            .order_by(SLAAlertModel.sent_at.desc())
        )
        result = await self._session.execute(stmt)
        return [_alert_to_domain(m) for m in result.scalars().all()]

    async def insert_alert_if_absent(self, alert: SLAAlert, dedup: AlertDeduplicationRule) -> bool:
        # Row locks serialize concurrent inserts of the same type on PostgreSQL
        stmt = (
            select(SLAAlertModel)
            .where(and_(
                SLAAlertModel.subject_id == alert.subject_id,
                SLAAlertModel.alert_type == alert.alert_type,
            ))
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        existing = [_alert_to_domain(m) for m in result.scalars().all()]
        if dedup.is_duplicate(alert, existing):
            return False

        self._session.add(SLAAlertModel(
            id=alert.id,
            subject_id=alert.subject_id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            message=alert.message,
            sent_at=alert.sent_at,
            escalation_level=alert.escalation_level,
            acknowledged=alert.acknowledged,
            acknowledged_by=alert.acknowledged_by,
            acknowledged_at=alert.acknowledged_at,
        ))
        await self._session.flush()
        return True

    async def acknowledge(self, alert_id: str, user_id: str, at: datetime) -> SLAAlert:
        stmt = select(SLAAlertModel).where(SLAAlertModel.id == alert_id).with_for_update()
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if not model:
            raise ResourceNotFoundException("SLA alert", alert_id)

        alert = _alert_to_domain(model)
        alert.acknowledge(user_id, at)
        model.acknowledged = True
        model.acknowledged_by = alert.acknowledged_by
        model.acknowledged_at = alert.acknowledged_at
        await self._session.flush()
        return alert


class SQLAlchemyMonitoringRepository(ISLAMonitoringRepository):
    """
    SQLAlchemy implementation of SLA monitoring repository.

    `commit_tick` locks the monitoring row (SELECT ... FOR UPDATE), applies
    the tick and commits the session before returning, so notification
    dispatch always runs after the state is durable.
    """

    def __init__(self, session: AsyncSession):
        self._session = session
        self._alerts = SQLAlchemyAlertRepository(session)

    async def _get_model(self, subject_id: str, for_update: bool = False) -> Optional[SLAMonitoringModel]:
        stmt = select(SLAMonitoringModel).where(SLAMonitoringModel.subject_id == subject_id)
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, subject_id: str) -> Optional[SLAMonitoring]:
        model = await self._get_model(subject_id)
        return _monitoring_to_domain(model) if model else None

    async def list_open_subject_ids(self) -> List[str]:
        stmt = (
            select(SLAMonitoringModel.subject_id)
            .where(
                (SLAMonitoringModel.actual_response_time.is_(None))
                | (SLAMonitoringModel.actual_resolution_time.is_(None))
            )
            .order_by(SLAMonitoringModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert(self, record: SLAMonitoring) -> SLAMonitoring:
        existing = await self._get_model(record.subject_id)
        if existing:
            return _monitoring_to_domain(existing)

        model = SLAMonitoringModel(
            id=record.id,
            subject_id=record.subject_id,
            sla_policy_id=record.sla_policy_id,
            subject_created_at=record.subject_created_at,
            response_deadline=record.response_deadline,
            resolution_deadline=record.resolution_deadline,
            created_at=record.created_at or datetime.now(timezone.utc),
        )
        _apply_monitoring(model, record)
        model.updated_at = record.updated_at or model.created_at
        self._session.add(model)
        await self._session.flush()
        return _monitoring_to_domain(model)

    async def save(self, record: SLAMonitoring, expected_version: int) -> SLAMonitoring:
        model = await self._get_model(record.subject_id, for_update=True)
        if not model:
            raise RepositoryException(f"SLA monitoring for subject {record.subject_id} not found")
        if model.version != expected_version:
            raise ConcurrentModificationException("sla_monitoring", record.subject_id, expected_version)

        _bump(record, expected_version)
        _apply_monitoring(model, record)
        await self._session.flush()
        return record

    async def commit_tick(
        self,
        record: SLAMonitoring,
        expected_version: int,
        alerts: List[SLAAlert],
        dedup: AlertDeduplicationRule,
        record_changed: bool,
    ) -> TickCommit:
        try:
            model = await self._get_model(record.subject_id, for_update=True)
            if not model:
                raise RepositoryException(f"SLA monitoring for subject {record.subject_id} not found")
            if model.version != expected_version:
                raise ConcurrentModificationException("sla_monitoring", record.subject_id, expected_version)
            if model.actual_response_time is not None and model.actual_resolution_time is not None:
                await self._session.commit()
                return TickCommit(discarded=True)

            inserted = []
            for alert in alerts:
                if await self._alerts.insert_alert_if_absent(alert, dedup):
                    inserted.append(alert)

            if not inserted and not record_changed:
                await self._session.commit()
                return TickCommit()

            record.alerts_sent.update(a.id for a in inserted)
            _bump(record, expected_version)
            _apply_monitoring(model, record)
            await self._session.commit()
            return TickCommit(inserted_alerts=inserted)
        except Exception:
            await self._session.rollback()
            raise


def sqlalchemy_repositories(session: AsyncSession) -> SLARepositories:
    return SLARepositories(
        subjects=SQLAlchemySubjectRepository(session),
        monitoring=SQLAlchemyMonitoringRepository(session),
        alerts=SQLAlchemyAlertRepository(session),
    )


# ========== In-memory implementations ==========

class InMemorySLAStore:
    """
    Process-local storage shared by the in-memory repositories.

    Every read returns a copy and every write stores one, so callers
    never mutate stored state by accident. `lock` makes commit_tick and
    the dedup check-and-insert atomic.
    """

    def __init__(self):
        self.subjects: Dict[str, MonitoredSubject] = {}
        self.monitoring: Dict[str, SLAMonitoring] = {}
        self.alerts: Dict[str, SLAAlert] = {}
        self.lock = asyncio.Lock()

    def repositories(self) -> SLARepositories:
        return SLARepositories(
            subjects=InMemorySubjectRepository(self),
            monitoring=InMemoryMonitoringRepository(self),
            alerts=InMemoryAlertRepository(self),
        )


class InMemorySubjectRepository(ISubjectRepository):

    def __init__(self, store: InMemorySLAStore):
        self._store = store

    async def get(self, subject_id: str) -> Optional[MonitoredSubject]:
        subject = self._store.subjects.get(subject_id)
        return copy.deepcopy(subject) if subject else None

    async def create(self, subject: MonitoredSubject) -> MonitoredSubject:
        if subject.id in self._store.subjects:
            raise RepositoryException(f"Subject {subject.id} already exists")
        self._store.subjects[subject.id] = copy.deepcopy(subject)
        return subject

    async def save(self, subject: MonitoredSubject) -> MonitoredSubject:
        if subject.id not in self._store.subjects:
            raise RepositoryException(f"Subject {subject.id} not found")
        self._store.subjects[subject.id] = copy.deepcopy(subject)
        return subject

    async def list_unmonitored_ids(self) -> List[str]:
        return [
            subject_id for subject_id in self._store.subjects
            if subject_id not in self._store.monitoring
            and self._store.subjects[subject_id].resolved_at is None
        ]


class InMemoryAlertRepository(ISLAAlertRepository):

    def __init__(self, store: InMemorySLAStore):
        self._store = store

    async def get(self, alert_id: str) -> Optional[SLAAlert]:
        alert = self._store.alerts.get(alert_id)
        return copy.deepcopy(alert) if alert else None

    async def list_for_subject(self, subject_id: str) -> List[SLAAlert]:
        alerts = [copy.deepcopy(a) for a in self._store.alerts.values() if a.subject_id == subject_id]
        return sorted(alerts, key=lambda a: a.sent_at, reverse=True)

    def insert_unlocked(self, alert: SLAAlert, dedup: AlertDeduplicationRule) -> bool:
        existing = [a for a in self._store.alerts.values() if a.subject_id == alert.subject_id]
        if dedup.is_duplicate(alert, existing):
            return False
        self._store.alerts[alert.id] = copy.deepcopy(alert)
        return True

    async def insert_alert_if_absent(self, alert: SLAAlert, dedup: AlertDeduplicationRule) -> bool:
        async with self._store.lock:
            return self.insert_unlocked(alert, dedup)

    async def acknowledge(self, alert_id: str, user_id: str, at: datetime) -> SLAAlert:
        async with self._store.lock:
            alert = self._store.alerts.get(alert_id)
            if alert is None:
                raise ResourceNotFoundException("SLA alert", alert_id)
            alert.acknowledge(user_id, at)
            return copy.deepcopy(alert)


class InMemoryMonitoringRepository(ISLAMonitoringRepository):

    def __init__(self, store: InMemorySLAStore):
        self._store = store
        self._alerts = InMemoryAlertRepository(store)

    async def get(self, subject_id: str) -> Optional[SLAMonitoring]:
        record = self._store.monitoring.get(subject_id)
        return record.copy() if record else None

    async def list_open_subject_ids(self) -> List[str]:
        return [
            subject_id for subject_id, record in self._store.monitoring.items()
            if not record.is_terminal
        ]

    async def upsert(self, record: SLAMonitoring) -> SLAMonitoring:
        async with self._store.lock:
            existing = self._store.monitoring.get(record.subject_id)
            if existing is None:
                existing = record.copy()
                self._store.monitoring[record.subject_id] = existing
            return existing.copy()

    async def save(self, record: SLAMonitoring, expected_version: int) -> SLAMonitoring:
        async with self._store.lock:
            stored = self._store.monitoring.get(record.subject_id)
            if stored is None:
                raise RepositoryException(f"SLA monitoring for subject {record.subject_id} not found")
            if stored.version != expected_version:
                raise ConcurrentModificationException("sla_monitoring", record.subject_id, expected_version)
            _bump(record, expected_version)
            self._store.monitoring[record.subject_id] = record.copy()
            return record

    async def commit_tick(
        self,
        record: SLAMonitoring,
        expected_version: int,
        alerts: List[SLAAlert],
        dedup: AlertDeduplicationRule,
        record_changed: bool,
    ) -> TickCommit:
        async with self._store.lock:
            stored = self._store.monitoring.get(record.subject_id)
            if stored is None:
                raise RepositoryException(f"SLA monitoring for subject {record.subject_id} not found")
            if stored.version != expected_version:
                raise ConcurrentModificationException("sla_monitoring", record.subject_id, expected_version)
            if stored.is_terminal:
                return TickCommit(discarded=True)

            inserted = [alert for alert in alerts if self._alerts.insert_unlocked(alert, dedup)]
            if not inserted and not record_changed:
                return TickCommit()

            record.alerts_sent.update(a.id for a in inserted)
            _bump(record, expected_version)
            self._store.monitoring[record.subject_id] = record.copy()
            return TickCommit(inserted_alerts=inserted)


# ========== Policy store ==========

class ConfigPolicyStore(ISLAPolicyStore):
    """
    SLA policies read from the current configuration.

    Takes a zero-argument callable returning the live SLAConfig, so hot
    reloads are picked up on the next lookup.
    """

    def __init__(self, config_source):
        self._config_source = config_source

    @property
    def config(self) -> SLAConfig:
        return self._config_source()

    def load_policy(self, severity: str) -> Optional[SLAPolicy]:
        return self.config.get_active_policy(severity)

    def get_policy(self, policy_id: str) -> Optional[SLAPolicy]:
        return self.config.get_policy(policy_id)

    def alert_notify_roles(self) -> List[str]:
        return list(self.config.alert_notify_roles)
