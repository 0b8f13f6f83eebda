"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="grievance-desk", description="Application name")
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
        description="Where complaints are stored: 'database' (SQLAlchemy) or 'memory'"
    )
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/grievances",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    store_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for a single store round-trip",
        gt=0
    )
    lock_timeout_seconds: float = Field(
        default=5.0,
        description="How long a mutation waits for the per-ticket lock",
        gt=0
    )

    # ========== SLA Configuration ==========
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
        description="Maximum tickets evaluated concurrently during a sweep",
        ge=1,
        le=256
    )

    # ========== Workflow ==========
    reopen_grace_days: int = Field(
        default=7,
        description="Days after closure during which a ticket may be reopened",
        ge=0
    )
    survey_expiry_days: int = Field(
        default=7,
        description="Days a satisfaction survey stays open",
        ge=1
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL for outbound notifications (Slack-compatible)"
    )
    notification_channel: str = Field(
        default="#grievance-desk",
        description="Channel for webhook notifications"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
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
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        """Ensure storage backend is supported."""
        allowed = {"database", "memory"}
        if v not in allowed:
            raise ValueError(f"storage_backend must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ComplaintCategory(str, Enum):
    """Complaint categories."""
    ACADEMIC = "academic"
    ADMINISTRATIVE = "administrative"
    FACILITIES = "facilities"
    TRANSPORT = "transport"
    CAFETERIA = "cafeteria"
    SAFETY = "safety"
    BULLYING = "bullying"
    FEES = "fees"
    STAFF_BEHAVIOR = "staff_behavior"
    COMMUNICATION = "communication"
    OTHER = "other"


class ComplaintPriority(str, Enum):
    """Complaint priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ComplaintStatus(str, Enum):
    """Complaint lifecycle statuses."""
    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    PENDING_INFO = "pending_info"
    RESOLVED = "resolved"
    VERIFIED = "verified"
    CLOSED = "closed"
    REOPENED = "reopened"
    WITHDRAWN = "withdrawn"


class SubmitterType(str, Enum):
    """Who raised the complaint."""
    STUDENT = "student"
    PARENT = "parent"
    STAFF = "staff"


class ComplaintSource(str, Enum):
    """Channel the complaint arrived through."""
    WEB = "web"
    MOBILE = "mobile"
    EMAIL = "email"
    PHONE = "phone"
    IN_PERSON = "in_person"


class ActorRole(str, Enum):
    """Roles trusted from the identity collaborator."""
    STUDENT = "student"
    PARENT = "parent"
    STAFF = "staff"
    COORDINATOR = "coordinator"
    ADMIN = "admin"
    SYSTEM = "system"


class SLAType(str, Enum):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class BreachStatus(str, Enum):
    """SLA breach record states."""
    OPEN = "open"
    ADDRESSED = "addressed"
    EXCUSED = "excused"


class VerificationStatus(str, Enum):
    """Resolution verification states."""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class EscalationTrigger(str, Enum):
    """What caused an escalation."""
    MANUAL = "manual"
    SLA_BREACH = "sla_breach"


class ChangeKind(str, Enum):
    """Kinds of audit records in a ticket's status history."""
    TRANSITION = "transition"
    ESCALATION = "escalation"
    SLA_RECOMPUTE = "sla_recompute"
    ASSIGNMENT = "assignment"


class NotificationKind(str, Enum):
    """Templates the notification collaborator understands."""
    SLA_BREACH = "sla_breach"
    ESCALATION = "escalation"
    RESOLUTION_SUBMITTED = "resolution_submitted"
    SURVEY_INVITE = "survey_invite"


class SurveyStatus(str, Enum):
    """Satisfaction survey states."""
    SENT = "sent"
    COMPLETED = "completed"
    EXPIRED = "expired"


class FeedbackStatus(str, Enum):
    """Anonymous feedback handling states."""
    RECEIVED = "received"
    UNDER_REVIEW = "under_review"
    RESPONDED = "responded"
    CLOSED = "closed"


# ========== Lists for validation ==========

TERMINAL_STATUSES = frozenset({ComplaintStatus.CLOSED, ComplaintStatus.WITHDRAWN})
RESOLVED_STATUSES = frozenset({
    ComplaintStatus.RESOLVED, ComplaintStatus.VERIFIED, ComplaintStatus.CLOSED
})
ELEVATED_ROLES = frozenset({ActorRole.COORDINATOR, ActorRole.ADMIN, ActorRole.SYSTEM})
STAFF_ROLES = frozenset({
    ActorRole.STAFF, ActorRole.COORDINATOR, ActorRole.ADMIN, ActorRole.SYSTEM
})

# System default SLA targets in minutes, used when no SLAConfig and no
# policy file entry covers a priority.
DEFAULT_SLA_TARGETS = {
    ComplaintPriority.URGENT.value: {"response": 240, "resolution": 1440},
    ComplaintPriority.HIGH.value: {"response": 480, "resolution": 2880},
    ComplaintPriority.MEDIUM.value: {"response": 1440, "resolution": 4320},
    ComplaintPriority.LOW.value: {"response": 2880, "resolution": 7200},
}

DEFAULT_ASSIGNEE = "complaints-desk"
ESCALATION_TAG = "escalated"
