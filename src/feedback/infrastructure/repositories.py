"""
Feedback Infrastructure Repositories
====================================

SQLAlchemy implementations of the survey and anonymous feedback
repositories. Sessions are owned by ``SQLAlchemyUnitOfWork``.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import (
    ComplaintCategory, ComplaintPriority, FeedbackStatus, SurveyStatus,
)
from src.core import ConflictException
from src.feedback.application.interfaces import (
    IAnonymousFeedbackRepository, ISurveyRepository, ISurveyResponseRepository,
)
from src.feedback.domain import (
    AnonymousFeedback, SatisfactionSurvey, SurveyRatings, SurveyResponse,
)
from src.feedback.infrastructure.models import (
    AnonymousFeedbackModel, SurveyModel, SurveyResponseModel,
)


def _survey_values(survey: SatisfactionSurvey) -> Dict[str, Any]:
    return {
        "ticket_id": survey.ticket_id,
        "recipient_id": survey.recipient_id,
        "sent_at": survey.sent_at,
        "expires_at": survey.expires_at,
        "status": survey.status.value,
        "reminders_sent": survey.reminders_sent,
        "last_reminder_at": survey.last_reminder_at,
        "completed_at": survey.completed_at,
    }


def _survey_to_domain(model: SurveyModel) -> SatisfactionSurvey:
    return SatisfactionSurvey(
        id=model.id,
        ticket_id=model.ticket_id,
        recipient_id=model.recipient_id,
        sent_at=model.sent_at,
        expires_at=model.expires_at,
        status=SurveyStatus(model.status),
        reminders_sent=model.reminders_sent,
        last_reminder_at=model.last_reminder_at,
        completed_at=model.completed_at,
    )


class SQLAlchemySurveyRepository(ISurveyRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, survey: SatisfactionSurvey) -> None:
        if await self.get_by_ticket(survey.ticket_id) is not None:
            raise ConflictException("SatisfactionSurvey", survey.ticket_id, {"reason": "duplicate_ticket"})
        self._session.add(SurveyModel(id=survey.id, **_survey_values(survey)))
        await self._session.flush()

    async def get(self, survey_id: str) -> Optional[SatisfactionSurvey]:
        model = await self._session.get(SurveyModel, survey_id)
        return _survey_to_domain(model) if model else None

    async def get_by_ticket(self, ticket_id: str) -> Optional[SatisfactionSurvey]:
        result = await self._session.execute(
            select(SurveyModel).where(SurveyModel.ticket_id == ticket_id)
        )
        model = result.scalar_one_or_none()
        return _survey_to_domain(model) if model else None

    async def save(self, survey: SatisfactionSurvey) -> None:
        model = await self._session.get(SurveyModel, survey.id)
        for key, value in _survey_values(survey).items():
            setattr(model, key, value)
        await self._session.flush()

    async def list(self, status: Optional[SurveyStatus] = None) -> List[SatisfactionSurvey]:
        stmt = select(SurveyModel)
        if status is not None:
            stmt = stmt.where(SurveyModel.status == status.value)
        stmt = stmt.order_by(SurveyModel.sent_at.asc())
        result = await self._session.execute(stmt)
        return [_survey_to_domain(m) for m in result.scalars().all()]


def _response_to_domain(model: SurveyResponseModel) -> SurveyResponse:
    return SurveyResponse(
        id=model.id,
        survey_id=model.survey_id,
        ticket_id=model.ticket_id,
        ratings=SurveyRatings(
            overall=model.overall,
            resolution_quality=model.resolution_quality,
            response_time=model.response_time,
            staff_professionalism=model.staff_professionalism,
            communication_clarity=model.communication_clarity,
        ),
        would_recommend=model.would_recommend,
        comments=model.comments,
        responded_at=model.responded_at,
    )


class SQLAlchemySurveyResponseRepository(ISurveyResponseRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, response: SurveyResponse) -> None:
        if await self.get_by_survey(response.survey_id) is not None:
            raise ConflictException("SurveyResponse", response.survey_id, {"reason": "duplicate_response"})
        ratings = response.ratings
        self._session.add(SurveyResponseModel(
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
        ))
        await self._session.flush()

    async def get_by_survey(self, survey_id: str) -> Optional[SurveyResponse]:
        result = await self._session.execute(
            select(SurveyResponseModel).where(SurveyResponseModel.survey_id == survey_id)
        )
        model = result.scalar_one_or_none()
        return _response_to_domain(model) if model else None

    async def list(self) -> List[SurveyResponse]:
        result = await self._session.execute(
            select(SurveyResponseModel).order_by(SurveyResponseModel.responded_at.asc())
        )
        return [_response_to_domain(m) for m in result.scalars().all()]


def _feedback_values(feedback: AnonymousFeedback) -> Dict[str, Any]:
    return {
        "token_digest": feedback.token_digest,
        "category": feedback.category.value,
        "priority": feedback.priority.value,
        "subject": feedback.subject,
        "body": feedback.body,
        "status": feedback.status.value,
        "submitted_at": feedback.submitted_at,
        "public_response": feedback.public_response,
        "responded_at": feedback.responded_at,
        "internal_notes": feedback.internal_notes,
        "verified": feedback.verified,
        "purged": feedback.purged,
    }


def _feedback_to_domain(model: AnonymousFeedbackModel) -> AnonymousFeedback:
    return AnonymousFeedback(
        id=model.id,
        token_digest=model.token_digest,
        category=ComplaintCategory(model.category),
        priority=ComplaintPriority(model.priority),
        subject=model.subject,
        body=model.body,
        status=FeedbackStatus(model.status),
        submitted_at=model.submitted_at,
        public_response=model.public_response,
        responded_at=model.responded_at,
        internal_notes=model.internal_notes,
        verified=model.verified,
        purged=model.purged,
    )


class SQLAlchemyAnonymousFeedbackRepository(IAnonymousFeedbackRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, feedback: AnonymousFeedback) -> None:
        self._session.add(AnonymousFeedbackModel(id=feedback.id, **_feedback_values(feedback)))
        await self._session.flush()

    async def get(self, feedback_id: str) -> Optional[AnonymousFeedback]:
        model = await self._session.get(AnonymousFeedbackModel, feedback_id)
        return _feedback_to_domain(model) if model else None

    async def get_by_digest(self, token_digest: str) -> Optional[AnonymousFeedback]:
        result = await self._session.execute(
            select(AnonymousFeedbackModel).where(AnonymousFeedbackModel.token_digest == token_digest)
        )
        model = result.scalar_one_or_none()
        return _feedback_to_domain(model) if model else None

    async def save(self, feedback: AnonymousFeedback) -> None:
        model = await self._session.get(AnonymousFeedbackModel, feedback.id)
        for key, value in _feedback_values(feedback).items():
            setattr(model, key, value)
        await self._session.flush()

    async def list(
        self,
        status: Optional[FeedbackStatus] = None,
        category: Optional[ComplaintCategory] = None,
        include_purged: bool = False,
    ) -> List[AnonymousFeedback]:
        stmt = select(AnonymousFeedbackModel)
        if status is not None:
            stmt = stmt.where(AnonymousFeedbackModel.status == status.value)
        if category is not None:
            stmt = stmt.where(AnonymousFeedbackModel.category == category.value)
        if not include_purged:
            stmt = stmt.where(AnonymousFeedbackModel.purged.is_(False))
        stmt = stmt.order_by(AnonymousFeedbackModel.submitted_at.desc())
        result = await self._session.execute(stmt)
        return [_feedback_to_domain(m) for m in result.scalars().all()]
