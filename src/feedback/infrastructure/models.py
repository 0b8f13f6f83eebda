"""
Feedback Infrastructure Models
==============================

SQLAlchemy ORM models for surveys and anonymous feedback.

The anonymous feedback table has no submitter column; the lookup token is
stored only as its digest.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.complaints.infrastructure.models import UTCDateTime


class SurveyModel(Base):
    __tablename__ = "satisfaction_surveys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    reminders_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminder_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class SurveyResponseModel(Base):
    __tablename__ = "survey_responses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    survey_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    overall: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_quality: Mapped[int] = mapped_column(Integer, nullable=False)
    response_time: Mapped[int] = mapped_column(Integer, nullable=False)
    staff_professionalism: Mapped[int] = mapped_column(Integer, nullable=False)
    communication_clarity: Mapped[int] = mapped_column(Integer, nullable=False)
    would_recommend: Mapped[bool] = mapped_column(Boolean, nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class AnonymousFeedbackModel(Base):
    __tablename__ = "anonymous_feedback"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    token_digest: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    public_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    purged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
