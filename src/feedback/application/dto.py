"""
Feedback Application DTOs
=========================

Request and response models for surveys and anonymous feedback.

The anonymous lookup response deliberately omits the record id and every
staff-only field.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from src.config import ComplaintCategory, ComplaintPriority, FeedbackStatus, SurveyStatus


# ========== Survey DTOs ==========

class SurveyResponseSubmitRequest(BaseModel):
    """Ratings are 1 (worst) to 5 (best)."""
    overall: int = Field(..., ge=1, le=5)
    resolution_quality: int = Field(..., ge=1, le=5)
    response_time: int = Field(..., ge=1, le=5)
    staff_professionalism: int = Field(..., ge=1, le=5)
    communication_clarity: int = Field(..., ge=1, le=5)
    would_recommend: bool
    comments: Optional[str] = Field(None, max_length=5000)


class SatisfactionSurveyResponse(BaseModel):
    id: str
    ticket_id: str
    recipient_id: str
    status: SurveyStatus
    sent_at: datetime
    expires_at: datetime
    reminders_sent: int
    last_reminder_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, survey: Any) -> "SatisfactionSurveyResponse":
        return cls(
            id=survey.id,
            ticket_id=survey.ticket_id,
            recipient_id=survey.recipient_id,
            status=survey.status,
            sent_at=survey.sent_at,
            expires_at=survey.expires_at,
            reminders_sent=survey.reminders_sent,
            last_reminder_at=survey.last_reminder_at,
            completed_at=survey.completed_at,
        )


class SurveyResponseResponse(BaseModel):
    id: str
    survey_id: str
    ticket_id: str
    overall: int
    resolution_quality: int
    response_time: int
    staff_professionalism: int
    communication_clarity: int
    would_recommend: bool
    comments: Optional[str] = None
    responded_at: datetime

    @classmethod
    def from_domain(cls, response: Any) -> "SurveyResponseResponse":
        ratings = response.ratings
        return cls(
            id=response.id,
            survey_id=response.survey_id,
            ticket_id=response.ticket_id,
            overall=ratings.overall,
            resolution_quality=ratings.resolution_quality,
            response_time=ratings.response_time,
            staff_professionalism=ratings.staff_professionalism,
            communication_clarity=ratings.communication_clarity,
            would_recommend=response.would_recommend,
            comments=response.comments,
            responded_at=response.responded_at,
        )


class CategorySatisfaction(BaseModel):
    category: ComplaintCategory
    average_satisfaction: float
    response_count: int


class SurveyAnalytics(BaseModel):
    total_surveys_sent: int
    total_responses: int
    response_rate: float = Field(..., description="Percentage of surveys answered")
    average_overall: float
    average_resolution_quality: float
    average_response_time: float
    average_staff_professionalism: float
    average_communication_clarity: float
    recommendation_rate: float = Field(..., description="Percentage of responses that would recommend")
    category_breakdown: List[CategorySatisfaction] = Field(default_factory=list)


# ========== Anonymous Feedback DTOs ==========

class AnonymousFeedbackCreateRequest(BaseModel):
    category: ComplaintCategory
    subject: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, max_length=5000)
    priority: ComplaintPriority = ComplaintPriority.MEDIUM

    @field_validator("subject", "body")
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class AnonymousFeedbackCreatedResponse(BaseModel):
    """Returned once; the token cannot be recovered later."""
    lookup_token: str
    status: FeedbackStatus
    submitted_at: datetime


class AnonymousFeedbackLookupRequest(BaseModel):
    lookup_token: str = Field(..., min_length=1, max_length=200)


class AnonymousFeedbackLookupResponse(BaseModel):
    status: FeedbackStatus
    category: ComplaintCategory
    subject: str
    submitted_at: datetime
    public_response: Optional[str] = None
    responded_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, feedback: Any) -> "AnonymousFeedbackLookupResponse":
        return cls(
            status=feedback.status,
            category=feedback.category,
            subject=feedback.subject,
            submitted_at=feedback.submitted_at,
            public_response=feedback.public_response,
            responded_at=feedback.responded_at,
        )


class AnonymousFeedbackUpdateRequest(BaseModel):
    status: Optional[FeedbackStatus] = None
    internal_notes: Optional[str] = Field(None, max_length=5000)
    verified: Optional[bool] = None
    priority: Optional[ComplaintPriority] = None


class AnonymousFeedbackRespondRequest(BaseModel):
    response: str = Field(..., min_length=1, max_length=5000)


class AnonymousFeedbackResponse(BaseModel):
    """Staff view of anonymous feedback. Never includes the token digest."""
    id: str
    category: ComplaintCategory
    subject: str
    body: str
    priority: ComplaintPriority
    status: FeedbackStatus
    submitted_at: datetime
    public_response: Optional[str] = None
    responded_at: Optional[datetime] = None
    internal_notes: Optional[str] = None
    verified: bool
    purged: bool

    @classmethod
    def from_domain(cls, feedback: Any) -> "AnonymousFeedbackResponse":
        return cls(
            id=feedback.id,
            category=feedback.category,
            subject=feedback.subject,
            body=feedback.body,
            priority=feedback.priority,
            status=feedback.status,
            submitted_at=feedback.submitted_at,
            public_response=feedback.public_response,
            responded_at=feedback.responded_at,
            internal_notes=feedback.internal_notes,
            verified=feedback.verified,
            purged=feedback.purged,
        )
