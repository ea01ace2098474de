"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="auditflow", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Storage ==========
    storage_backend: str = Field(
        default="database",
        description="Repository backend: 'database' (SQLAlchemy) or 'memory'"
    )
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/auditflow",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA policy YAML file"
    )
    sla_evaluation_interval: int = Field(
        default=60,
        description="Seconds between SLA sweeps (0 disables the scheduler)",
        ge=0
    )
    sla_sweep_concurrency: int = Field(
        default=8,
        description="Subjects evaluated in parallel during a sweep",
        ge=1
    )
    sla_alert_dedup_window_minutes: int = Field(
        default=60,
        description="Suppress repeat alerts of the same type within this window",
        ge=0
    )

    # ========== Approval Workflows ==========
    workflow_strict_sequential: bool = Field(
        default=False,
        description="Require lower-order required steps to be approved first"
    )
    workflow_cascade_skip_on_reject: bool = Field(
        default=False,
        description="Mark remaining pending steps skipped when a request is rejected"
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL receiving alert and escalation intents"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    notification_max_retries: int = Field(
        default=3,
        description="Delivery attempts per notification intent",
        ge=1,
        le=10
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        allowed = {"database", "memory"}
        if v not in allowed:
            raise ValueError(f"storage_backend must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class Severity(str):
    """Severity levels keying SLA policies."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RequestStatus(str):
    """Approval request lifecycle statuses."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class StepStatus(str):
    """Approval step statuses."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class StepDecision(str):
    """Actions a user can take on an approval step."""
    APPROVE = "approve"
    REJECT = "reject"
    SKIP = "skip"


class ApprovalAction(str):
    """Actions recorded in the approval action log."""
    APPROVE = "approve"
    REJECT = "reject"
    SKIP = "skip"
    CANCEL = "cancel"


class AlertType(str):
    """SLA alert types."""
    RESPONSE_WARNING = "response_warning"
    RESPONSE_BREACH = "response_breach"
    RESOLUTION_WARNING = "resolution_warning"
    RESOLUTION_BREACH = "resolution_breach"
    ESCALATION = "escalation"


class SLAState(str):
    """Display state of a monitored subject."""
    PENDING = "pending"
    WARNING = "warning"
    BREACHED = "breached"
    MET = "met"


# ========== Lists for validation ==========

VALID_SEVERITIES = [
    Severity.CRITICAL, Severity.HIGH,
    Severity.MEDIUM, Severity.LOW
]
TERMINAL_REQUEST_STATUSES = [
    RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED
]
OPEN_REQUEST_STATUSES = [RequestStatus.PENDING, RequestStatus.IN_PROGRESS]
VALID_ALERT_TYPES = [
    AlertType.RESPONSE_WARNING, AlertType.RESPONSE_BREACH,
    AlertType.RESOLUTION_WARNING, AlertType.RESOLUTION_BREACH,
    AlertType.ESCALATION
]
