"""
Feedback Application Services
=============================

Satisfaction surveys for closed tickets and anonymous feedback.

Anonymous feedback is only reachable by its lookup token. The token is
generated with ``secrets``, returned once, and only its SHA-256 digest is
stored; an unknown token and a purged one produce the same not-found error.
"""

from collections import defaultdict
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from src.config import (
    ComplaintCategory, ComplaintStatus, FeedbackStatus, NotificationKind, SurveyStatus,
)
from src.core import (
    AlreadySubmittedException, InvalidTransitionException, PermissionDeniedException,
    ResourceNotFoundException,
)
from src.complaints.application.dto import validate_payload
from src.complaints.application.interfaces import IUnitOfWork, UnitOfWorkFactory
from src.complaints.application.notifications import NotificationDispatcher
from src.complaints.application.permissions import require_elevated, require_staff
from src.complaints.domain import Actor
from src.feedback.application.dto import (
    AnonymousFeedbackCreateRequest, AnonymousFeedbackRespondRequest,
    AnonymousFeedbackUpdateRequest, CategorySatisfaction, SurveyAnalytics,
    SurveyResponseSubmitRequest,
)
from src.feedback.domain import (
    AnonymousFeedback, SatisfactionSurvey, SurveyRatings, SurveyResponse,
    digest_token, generate_lookup_token,
)
from src.shared.infrastructure.clock import Clock
from src.shared.infrastructure.locks import KeyedLocks
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class SurveyService:
    """One satisfaction survey per closed ticket, answered at most once."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: Clock,
        dispatcher: NotificationDispatcher,
        expiry_days: int = 7,
        lock_timeout_seconds: float = 5.0
    ):
        self._uow_factory = uow_factory
        self._clock = clock
        self._dispatcher = dispatcher
        self._expiry = timedelta(days=expiry_days)
        self._locks = KeyedLocks("SatisfactionSurvey", lock_timeout_seconds)

    async def send_survey(self, actor: Actor, ticket_id: str) -> SatisfactionSurvey:
        """
        Send the survey for a closed ticket.

        Calling it again for the same ticket sends a reminder instead of a
        second survey.

        Raises:
            InvalidTransitionException: if the ticket is not closed
        """
        require_staff(actor, "send satisfaction surveys")
        reminder = False

        async with self._locks.hold(f"ticket:{ticket_id}"):
            async with self._uow_factory() as uow:
                complaint = await uow.complaints.get(ticket_id)
                if complaint is None:
                    raise ResourceNotFoundException("Complaint", ticket_id)
                existing = await uow.surveys.get_by_ticket(ticket_id)
                now = self._clock.now()

                if existing is not None:
                    survey = self._remind(existing, now)
                    await uow.surveys.save(survey)
                    reminder = True
                else:
                    if complaint.status != ComplaintStatus.CLOSED:
                        raise InvalidTransitionException(
                            "Surveys are only sent for closed complaints",
                            from_status=complaint.status.value
                        )
                    survey = SatisfactionSurvey(
                        ticket_id=ticket_id,
                        recipient_id=complaint.submitter.id,
                        sent_at=now,
                        expires_at=now + self._expiry,
                    )
                    await uow.surveys.add(survey)
                ticket_number = complaint.ticket_number

        logger.info(
            "Survey reminder sent" if reminder else "Survey sent",
            extra={"ticket_id": ticket_id, "survey_id": survey.id}
        )
        await self._invite(survey, ticket_number, reminder)
        return survey

    async def send_survey_reminder(self, actor: Actor, survey_id: str) -> SatisfactionSurvey:
        require_staff(actor, "send satisfaction surveys")
        async with self._uow_factory() as uow:
            survey = await self._load(uow, survey_id)
        async with self._locks.hold(f"ticket:{survey.ticket_id}"):
            async with self._uow_factory() as uow:
                survey = self._remind(await self._load(uow, survey_id), self._clock.now())
                await uow.surveys.save(survey)
                complaint = await uow.complaints.get(survey.ticket_id)
        await self._invite(survey, complaint.ticket_number if complaint else "", True)
        return survey

    def _remind(self, survey: SatisfactionSurvey, now) -> SatisfactionSurvey:
        if survey.status == SurveyStatus.COMPLETED:
            raise AlreadySubmittedException(
                "Survey has already been answered",
                {"survey_id": survey.id}
            )
        if survey.is_expired(now):
            raise InvalidTransitionException(
                "Survey has expired",
                from_status=SurveyStatus.EXPIRED.value
            )
        survey.record_reminder(now)
        return survey

    async def _invite(self, survey: SatisfactionSurvey, ticket_number: str, reminder: bool) -> None:
        await self._dispatcher.send(
            survey.recipient_id,
            NotificationKind.SURVEY_INVITE,
            {
                "survey_id": survey.id,
                "ticket_id": survey.ticket_id,
                "ticket_number": ticket_number,
                "expires_at": survey.expires_at.isoformat(),
                "reminder": reminder,
            }
        )

    async def submit_survey_response(self, actor: Actor, survey_id: str, request) -> SurveyResponse:
        """
        Record the single response to a survey.

        Raises:
            AlreadySubmittedException: on a second response
            InvalidTransitionException: if the survey has expired
            PermissionDeniedException: if the actor is not the recipient
        """
        request = validate_payload(SurveyResponseSubmitRequest, request)
        async with self._uow_factory() as uow:
            survey = await self._load(uow, survey_id)

        async with self._locks.hold(f"ticket:{survey.ticket_id}"):
            async with self._uow_factory() as uow:
                survey = await self._load(uow, survey_id)
                if actor.id != survey.recipient_id and not actor.is_admin:
                    raise PermissionDeniedException(
                        "Only the survey recipient may respond",
                        {"survey_id": survey_id}
                    )
                if survey.status == SurveyStatus.COMPLETED or await uow.survey_responses.get_by_survey(survey_id):
                    raise AlreadySubmittedException(
                        "Survey has already been answered",
                        {"survey_id": survey_id}
                    )
                now = self._clock.now()
                if survey.is_expired(now):
                    raise InvalidTransitionException(
                        "Survey has expired",
                        from_status=SurveyStatus.EXPIRED.value
                    )

                response = SurveyResponse(
                    survey_id=survey_id,
                    ticket_id=survey.ticket_id,
                    ratings=SurveyRatings(
                        overall=request.overall,
                        resolution_quality=request.resolution_quality,
                        response_time=request.response_time,
                        staff_professionalism=request.staff_professionalism,
                        communication_clarity=request.communication_clarity,
                    ),
                    would_recommend=request.would_recommend,
                    comments=request.comments,
                    responded_at=now,
                )
                survey.complete(now)
                await uow.survey_responses.add(response)
                await uow.surveys.save(survey)

        logger.info("Survey answered", extra={"survey_id": survey_id, "overall": request.overall})
        return response

    async def expire_overdue(self) -> int:
        """Mark sent surveys past their expiry as expired. Returns how many."""
        now = self._clock.now()
        async with self._uow_factory() as uow:
            expired = 0
            for survey in await uow.surveys.list(SurveyStatus.SENT):
                if survey.is_expired(now):
                    survey.expire()
                    await uow.surveys.save(survey)
                    expired += 1
        if expired:
            logger.info("Surveys expired", extra={"count": expired})
        return expired

    async def get_survey(self, actor: Actor, survey_id: str) -> SatisfactionSurvey:
        async with self._uow_factory() as uow:
            survey = await self._load(uow, survey_id)
        if actor.id != survey.recipient_id and not actor.is_staff:
            raise PermissionDeniedException("Not allowed to view this survey", {"survey_id": survey_id})
        return survey

    async def get_survey_for_ticket(self, actor: Actor, ticket_id: str) -> SatisfactionSurvey:
        async with self._uow_factory() as uow:
            survey = await uow.surveys.get_by_ticket(ticket_id)
        if survey is None:
            raise ResourceNotFoundException("SatisfactionSurvey", ticket_id)
        if actor.id != survey.recipient_id and not actor.is_staff:
            raise PermissionDeniedException("Not allowed to view this survey", {"ticket_id": ticket_id})
        return survey

    async def list_surveys(
        self,
        actor: Actor,
        status: Optional[SurveyStatus] = None
    ) -> List[SatisfactionSurvey]:
        require_staff(actor, "list surveys")
        async with self._uow_factory() as uow:
            return await uow.surveys.list(status)

    async def survey_analytics(self, actor: Actor) -> SurveyAnalytics:
        require_staff(actor, "view survey analytics")
        async with self._uow_factory() as uow:
            surveys = await uow.surveys.list()
            responses = await uow.survey_responses.list()
            categories: Dict[str, ComplaintCategory] = {}
            for response in responses:
                complaint = await uow.complaints.get(response.ticket_id)
                if complaint is not None:
                    categories[response.ticket_id] = complaint.category

        def average(values: List[int]) -> float:
            return round(sum(values) / len(values), 2) if values else 0.0

        by_category: Dict[ComplaintCategory, List[int]] = defaultdict(list)
        for response in responses:
            category = categories.get(response.ticket_id)
            if category is not None:
                by_category[category].append(response.ratings.overall)

        total = len(responses)
        return SurveyAnalytics(
            total_surveys_sent=len(surveys),
            total_responses=total,
            response_rate=round(total * 100.0 / len(surveys), 2) if surveys else 0.0,
            average_overall=average([r.ratings.overall for r in responses]),
            average_resolution_quality=average([r.ratings.resolution_quality for r in responses]),
            average_response_time=average([r.ratings.response_time for r in responses]),
            average_staff_professionalism=average([r.ratings.staff_professionalism for r in responses]),
            average_communication_clarity=average([r.ratings.communication_clarity for r in responses]),
            recommendation_rate=(
                round(sum(1 for r in responses if r.would_recommend) * 100.0 / total, 2) if total else 0.0
            ),
            category_breakdown=[
                CategorySatisfaction(
                    category=category,
                    average_satisfaction=average(scores),
                    response_count=len(scores),
                )
                for category, scores in sorted(by_category.items(), key=lambda item: item[0].value)
            ],
        )

    async def _load(self, uow: IUnitOfWork, survey_id: str) -> SatisfactionSurvey:
        survey = await uow.surveys.get(survey_id)
        if survey is None:
            raise ResourceNotFoundException("SatisfactionSurvey", survey_id)
        return survey


class AnonymousFeedbackService:
    """Token-based anonymous feedback plus the staff handling of it."""

    def __init__(self, uow_factory: UnitOfWorkFactory, clock: Clock):
        self._uow_factory = uow_factory
        self._clock = clock

    async def create_anonymous_feedback(self, request) -> Tuple[AnonymousFeedback, str]:
        """
        Store anonymous feedback.

        Returns:
            (feedback, lookup_token). The token is not stored and cannot be
            recovered.
        """
        request = validate_payload(AnonymousFeedbackCreateRequest, request)
        token = generate_lookup_token()
        feedback = AnonymousFeedback(
            token_digest=digest_token(token),
            category=request.category,
            subject=request.subject,
            body=request.body,
            priority=request.priority,
            submitted_at=self._clock.now(),
        )
        async with self._uow_factory() as uow:
            await uow.anonymous_feedback.add(feedback)

        logger.info(
            "Anonymous feedback received",
            extra={"feedback_id": feedback.id, "category": feedback.category.value}
        )
        return feedback, token

    async def lookup_anonymous_feedback(self, token: str) -> AnonymousFeedback:
        """
        Resolve a lookup token.

        Raises:
            ResourceNotFoundException: identical for unknown, malformed and
                purged tokens
        """
        async with self._uow_factory() as uow:
            feedback = await uow.anonymous_feedback.get_by_digest(digest_token(token or ""))
        if feedback is None or feedback.purged:
            raise ResourceNotFoundException("AnonymousFeedback")
        return feedback

    async def list_feedback(
        self,
        actor: Actor,
        status: Optional[FeedbackStatus] = None,
        category: Optional[ComplaintCategory] = None
    ) -> List[AnonymousFeedback]:
        require_staff(actor, "review anonymous feedback")
        async with self._uow_factory() as uow:
            return await uow.anonymous_feedback.list(status=status, category=category)

    async def get_feedback(self, actor: Actor, feedback_id: str) -> AnonymousFeedback:
        require_staff(actor, "review anonymous feedback")
        async with self._uow_factory() as uow:
            return await self._load(uow, feedback_id)

    async def update_feedback(self, actor: Actor, feedback_id: str, request) -> AnonymousFeedback:
        require_staff(actor, "review anonymous feedback")
        request = validate_payload(AnonymousFeedbackUpdateRequest, request)
        async with self._uow_factory() as uow:
            feedback = await self._load(uow, feedback_id)
            if request.status is not None:
                feedback.status = request.status
            if request.internal_notes is not None:
                feedback.internal_notes = request.internal_notes
            if request.verified is not None:
                feedback.verified = request.verified
            if request.priority is not None:
                feedback.priority = request.priority
            await uow.anonymous_feedback.save(feedback)
        return feedback

    async def respond(self, actor: Actor, feedback_id: str, request) -> AnonymousFeedback:
        """Post a response visible through the lookup token."""
        require_staff(actor, "respond to anonymous feedback")
        request = validate_payload(AnonymousFeedbackRespondRequest, request)
        async with self._uow_factory() as uow:
            feedback = await self._load(uow, feedback_id)
            feedback.respond(request.response, self._clock.now())
            await uow.anonymous_feedback.save(feedback)
        logger.info("Anonymous feedback answered", extra={"feedback_id": feedback_id})
        return feedback

    async def purge(self, actor: Actor, feedback_id: str) -> AnonymousFeedback:
        """Wipe the content and make the token unresolvable."""
        require_elevated(actor, "purge anonymous feedback")
        async with self._uow_factory() as uow:
            feedback = await self._load(uow, feedback_id)
            feedback.purge()
            await uow.anonymous_feedback.save(feedback)
        logger.info("Anonymous feedback purged", extra={"feedback_id": feedback_id})
        return feedback

    async def _load(self, uow: IUnitOfWork, feedback_id: str) -> AnonymousFeedback:
        feedback = await uow.anonymous_feedback.get(feedback_id)
        if feedback is None or feedback.purged:
            raise ResourceNotFoundException("AnonymousFeedback", feedback_id)
        return feedback
