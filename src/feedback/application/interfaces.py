"""
Feedback Repository Interfaces
==============================

Data access abstractions for the feedback module. Implementations live in
``src.feedback.infrastructure``; the unit of work that exposes them is
defined alongside the complaint repositories.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from src.config import ComplaintCategory, FeedbackStatus, SurveyStatus
from src.feedback.domain import AnonymousFeedback, SatisfactionSurvey, SurveyResponse


class ISurveyRepository(ABC):
    """Interface for satisfaction survey data access."""

    @abstractmethod
    async def add(self, survey: SatisfactionSurvey) -> None:
        """Persist a new survey."""

    @abstractmethod
    async def get(self, survey_id: str) -> Optional[SatisfactionSurvey]:
        """Get survey by ID."""

    @abstractmethod
    async def get_by_ticket(self, ticket_id: str) -> Optional[SatisfactionSurvey]:
        """Get the survey sent for a ticket, if any."""

    @abstractmethod
    async def save(self, survey: SatisfactionSurvey) -> None:
        """Persist changes to an existing survey."""

    @abstractmethod
    async def list(self, status: Optional[SurveyStatus] = None) -> List[SatisfactionSurvey]:
        """List surveys, optionally by status."""


class ISurveyResponseRepository(ABC):
    """Interface for survey response data access."""

    @abstractmethod
    async def add(self, response: SurveyResponse) -> None:
        """Persist a response. At most one per survey."""

    @abstractmethod
    async def get_by_survey(self, survey_id: str) -> Optional[SurveyResponse]:
        """Get the response to a survey, if any."""

    @abstractmethod
    async def list(self) -> List[SurveyResponse]:
        """List all responses."""


class IAnonymousFeedbackRepository(ABC):
    """Interface for anonymous feedback data access."""

    @abstractmethod
    async def add(self, feedback: AnonymousFeedback) -> None:
        """Persist new feedback."""

    @abstractmethod
    async def get(self, feedback_id: str) -> Optional[AnonymousFeedback]:
        """Get feedback by ID."""

    @abstractmethod
    async def get_by_digest(self, token_digest: str) -> Optional[AnonymousFeedback]:
        """Get feedback by the digest of its lookup token."""

    @abstractmethod
    async def save(self, feedback: AnonymousFeedback) -> None:
        """Persist changes to existing feedback."""

    @abstractmethod
    async def list(
        self,
        status: Optional[FeedbackStatus] = None,
        category: Optional[ComplaintCategory] = None,
        include_purged: bool = False,
    ) -> List[AnonymousFeedback]:
        """List feedback, newest first."""
