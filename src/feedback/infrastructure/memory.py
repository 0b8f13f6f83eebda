"""
In-Memory Feedback Repositories
===============================

Dictionary-backed implementations of the feedback repository interfaces.
"""

from typing import List, Optional

from src.config import ComplaintCategory, FeedbackStatus, SurveyStatus
from src.core import ConflictException
from src.feedback.application.interfaces import (
    IAnonymousFeedbackRepository, ISurveyRepository, ISurveyResponseRepository,
)
from src.feedback.domain import AnonymousFeedback, SatisfactionSurvey, SurveyResponse
from src.shared.infrastructure.memory import MemoryTable


class InMemorySurveyRepository(ISurveyRepository):

    def __init__(self, table: MemoryTable[SatisfactionSurvey]):
        self._table = table

    async def add(self, survey: SatisfactionSurvey) -> None:
        if any(s.ticket_id == survey.ticket_id for s in self._table.stored()):
            raise ConflictException("SatisfactionSurvey", survey.ticket_id, {"reason": "duplicate_ticket"})
        self._table.put(survey.id, survey)

    async def get(self, survey_id: str) -> Optional[SatisfactionSurvey]:
        return self._table.get(survey_id)

    async def get_by_ticket(self, ticket_id: str) -> Optional[SatisfactionSurvey]:
        matches = self._table.select(lambda s: s.ticket_id == ticket_id)
        return matches[0] if matches else None

    async def save(self, survey: SatisfactionSurvey) -> None:
        self._table.put(survey.id, survey)

    async def list(self, status: Optional[SurveyStatus] = None) -> List[SatisfactionSurvey]:
        surveys = self._table.select(lambda s: status is None or s.status == status)
        return sorted(surveys, key=lambda s: s.sent_at)


class InMemorySurveyResponseRepository(ISurveyResponseRepository):

    def __init__(self, table: MemoryTable[SurveyResponse]):
        self._table = table

    async def add(self, response: SurveyResponse) -> None:
        if any(r.survey_id == response.survey_id for r in self._table.stored()):
            raise ConflictException("SurveyResponse", response.survey_id, {"reason": "duplicate_response"})
        self._table.put(response.id, response)

    async def get_by_survey(self, survey_id: str) -> Optional[SurveyResponse]:
        matches = self._table.select(lambda r: r.survey_id == survey_id)
        return matches[0] if matches else None

    async def list(self) -> List[SurveyResponse]:
        return sorted(self._table.select(lambda r: True), key=lambda r: r.responded_at)


class InMemoryAnonymousFeedbackRepository(IAnonymousFeedbackRepository):

    def __init__(self, table: MemoryTable[AnonymousFeedback]):
        self._table = table

    async def add(self, feedback: AnonymousFeedback) -> None:
        self._table.put(feedback.id, feedback)

    async def get(self, feedback_id: str) -> Optional[AnonymousFeedback]:
        return self._table.get(feedback_id)

    async def get_by_digest(self, token_digest: str) -> Optional[AnonymousFeedback]:
        matches = self._table.select(lambda f: f.token_digest == token_digest)
        return matches[0] if matches else None

    async def save(self, feedback: AnonymousFeedback) -> None:
        self._table.put(feedback.id, feedback)

    async def list(
        self,
        status: Optional[FeedbackStatus] = None,
        category: Optional[ComplaintCategory] = None,
        include_purged: bool = False,
    ) -> List[AnonymousFeedback]:
        items = self._table.select(
            lambda f: (status is None or f.status == status)
            and (category is None or f.category == category)
            and (include_purged or not f.purged)
        )
        return sorted(items, key=lambda f: f.submitted_at, reverse=True)
