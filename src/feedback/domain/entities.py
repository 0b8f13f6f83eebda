"""
Feedback Domain Entities
========================

Surveys and anonymous feedback.

Anonymous feedback deliberately carries no submitter identity: the lookup
token is returned once and only its digest is stored.
"""

import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from src.config import (
    ComplaintCategory, ComplaintPriority, FeedbackStatus, SurveyStatus,
)
from src.complaints.domain.entities import new_id

TOKEN_PREFIX = "FB-"
RATING_MIN = 1
RATING_MAX = 5


def generate_lookup_token() -> str:
    return TOKEN_PREFIX + secrets.token_urlsafe(24)


def digest_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class SatisfactionSurvey:
    """One survey per closed ticket."""
    ticket_id: str
    recipient_id: str
    sent_at: datetime
    expires_at: datetime
    status: SurveyStatus = SurveyStatus.SENT
    reminders_sent: int = 0
    last_reminder_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    def is_expired(self, at: datetime) -> bool:
        return self.status == SurveyStatus.EXPIRED or (
            self.status == SurveyStatus.SENT and at > self.expires_at
        )

    def record_reminder(self, at: datetime) -> None:
        self.reminders_sent += 1
        self.last_reminder_at = at

    def complete(self, at: datetime) -> None:
        self.status = SurveyStatus.COMPLETED
        self.completed_at = at

    def expire(self) -> None:
        self.status = SurveyStatus.EXPIRED


@dataclass(frozen=True)
class SurveyRatings:
    """Five 1-5 ratings collected by the satisfaction survey."""
    overall: int
    resolution_quality: int
    response_time: int
    staff_professionalism: int
    communication_clarity: int

    def __post_init__(self):
        for name in (
            "overall", "resolution_quality", "response_time",
            "staff_professionalism", "communication_clarity",
        ):
            value = getattr(self, name)
            if not RATING_MIN <= value <= RATING_MAX:
                raise ValueError(f"{name} must be between {RATING_MIN} and {RATING_MAX}")


@dataclass
class SurveyResponse:
    survey_id: str
    ticket_id: str
    ratings: SurveyRatings
    would_recommend: bool
    responded_at: datetime
    comments: Optional[str] = None
    id: str = field(default_factory=new_id)


@dataclass
class AnonymousFeedback:
    """
    Feedback submitted without identity.

    Purging wipes the content and makes the token unresolvable while the
    record itself stays for counting.
    """
    token_digest: str
    category: ComplaintCategory
    subject: str
    body: str
    submitted_at: datetime
    priority: ComplaintPriority = ComplaintPriority.MEDIUM
    status: FeedbackStatus = FeedbackStatus.RECEIVED
    public_response: Optional[str] = None
    responded_at: Optional[datetime] = None
    internal_notes: Optional[str] = None
    verified: bool = False
    purged: bool = False
    id: str = field(default_factory=new_id)

    def respond(self, response: str, at: datetime) -> None:
        self.public_response = response
        self.responded_at = at
        self.status = FeedbackStatus.RESPONDED

    def purge(self) -> None:
        self.subject = ""
        self.body = ""
        self.internal_notes = None
        self.public_response = None
        self.purged = True
