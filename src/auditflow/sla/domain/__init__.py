"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: Core business objects with identity (MonitoredSubject, SLAMonitoring, SLAAlert)
- Value Objects: Immutable objects defined by attributes (SLAPolicy, SLAConfig, Deadlines)
- Domain Services: Stateless business logic (DeadlineCalculator, SLARuleEngine)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from auditflow.sla.domain.entities import (
    MonitoredSubject,
    SLAMonitoring,
    SLAAlert,
    NotificationIntent,
)
from auditflow.sla.domain.value_objects import (
    DeadlineCalculator,
    Deadlines,
    EscalationLevel,
    SLAConfig,
    SLAPolicy,
    SLAStatus,
    SLAStatusCalculator,
)
from auditflow.sla.domain.rules import (
    AlertDeduplicationRule,
    SLARuleEngine,
    TickPlan,
)

__all__ = [
    # Entities
    "MonitoredSubject",
    "SLAMonitoring",
    "SLAAlert",
    "NotificationIntent",
    # Value Objects & Services
    "DeadlineCalculator",
    "Deadlines",
    "EscalationLevel",
    "SLAConfig",
    "SLAPolicy",
    "SLAStatus",
    "SLAStatusCalculator",
    "AlertDeduplicationRule",
    "SLARuleEngine",
    "TickPlan",
]
