"""
Complaint Infrastructure Models
===============================

SQLAlchemy ORM models for the complaint module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean, DateTime, Integer, JSON, String, Text, TypeDecorator, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp.

    Backends without native timezone support (SQLite) hand back naive
    values; those are read as UTC.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class ComplaintModel(Base):
    """
    Database model for Complaint entity.

    Maps to the 'complaints' table. ``version`` backs the optimistic
    concurrency check on save.
    """
    __tablename__ = "complaints"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)

    # Content
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    is_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # People
    submitter_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    submitter_type: Mapped[str] = mapped_column(String(50), nullable=False)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    student_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    reopened_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    withdrawn_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # SLA tracking
    due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resolution_due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Escalation
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalated_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    survey_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class StatusChangeModel(Base):
    """
    Append-only status history.

    ``seq`` preserves insertion order for records sharing a timestamp.
    """
    __tablename__ = "complaint_status_changes"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)


class CommentModel(Base):
    __tablename__ = "complaint_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    author_id: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class ResolutionModel(Base):
    __tablename__ = "complaint_resolutions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    resolved_by: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    actions_taken: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    root_cause: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preventive_measures: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    verification: Mapped[str] = mapped_column(String(50), nullable=False)
    verified_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)


class SLAConfigModel(Base):
    """SLA targets per (category, priority); NULL category is the wildcard."""
    __tablename__ = "sla_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    response_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class SLABreachModel(Base):
    """
    Database model for SLA breach records.

    Maps to the 'sla_breaches' table; one row per missed deadline.
    """
    __tablename__ = "sla_breaches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    breach_type: Mapped[str] = mapped_column(String(50), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("ticket_id", "breach_type", "due_at", name="uq_sla_breach_deadline"),
    )


class AssignmentRuleModel(Base):
    __tablename__ = "assignment_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    priority_order: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    assignee_id: Mapped[str] = mapped_column(String(255), nullable=False)
    escalate_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    categories: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    priorities: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    auto_acknowledge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
