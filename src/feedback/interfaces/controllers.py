"""
Feedback Controllers (API Routes)
=================================

Satisfaction surveys on resolved complaints and the anonymous feedback
channel.

The two anonymous endpoints take no identity headers: whoever holds the
lookup token is the only link back to a submission.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from src.config import ComplaintCategory, FeedbackStatus, SurveyStatus
from src.complaints.domain import Actor
from src.feedback.application.dto import (
    AnonymousFeedbackCreateRequest, AnonymousFeedbackCreatedResponse,
    AnonymousFeedbackLookupRequest, AnonymousFeedbackLookupResponse,
    AnonymousFeedbackRespondRequest, AnonymousFeedbackResponse,
    AnonymousFeedbackUpdateRequest, SatisfactionSurveyResponse, SurveyAnalytics,
    SurveyResponseResponse, SurveyResponseSubmitRequest,
)
from src.shared.api.dependencies import get_actor, get_container

router = APIRouter(prefix="/complaints", tags=["Feedback"])


# ========== Surveys ==========

@router.get("/surveys", response_model=List[SatisfactionSurveyResponse], summary="List surveys")
async def list_surveys(
    status_: Optional[SurveyStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    surveys = await container.surveys.list_surveys(actor, status_)
    return [SatisfactionSurveyResponse.from_domain(s) for s in surveys]


@router.get("/surveys/analytics", response_model=SurveyAnalytics, summary="Satisfaction analytics")
async def survey_analytics(actor: Actor = Depends(get_actor), container=Depends(get_container)):
    return await container.surveys.survey_analytics(actor)


@router.get("/surveys/{survey_id}", response_model=SatisfactionSurveyResponse)
async def get_survey(survey_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    return SatisfactionSurveyResponse.from_domain(await container.surveys.get_survey(actor, survey_id))


@router.post("/surveys/{survey_id}/reminder", response_model=SatisfactionSurveyResponse)
async def send_survey_reminder(
    survey_id: str,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    survey = await container.surveys.send_survey_reminder(actor, survey_id)
    return SatisfactionSurveyResponse.from_domain(survey)


@router.post(
    "/surveys/{survey_id}/responses",
    response_model=SurveyResponseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Answer a survey (once)"
)
async def submit_survey_response(
    survey_id: str,
    request: SurveyResponseSubmitRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    response = await container.surveys.submit_survey_response(actor, survey_id, request)
    return SurveyResponseResponse.from_domain(response)


# ========== Anonymous Feedback ==========

@router.post(
    "/feedback/anonymous",
    response_model=AnonymousFeedbackCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit feedback without identifying yourself",
    description="The lookup token is shown once and cannot be recovered."
)
async def create_anonymous_feedback(request: AnonymousFeedbackCreateRequest, container=Depends(get_container)):
    feedback, token = await container.anonymous_feedback.create_anonymous_feedback(request)
    return AnonymousFeedbackCreatedResponse(
        lookup_token=token,
        status=feedback.status,
        submitted_at=feedback.submitted_at,
    )


@router.post(
    "/feedback/anonymous/lookup",
    response_model=AnonymousFeedbackLookupResponse,
    summary="Check anonymous feedback by token"
)
async def lookup_anonymous_feedback(request: AnonymousFeedbackLookupRequest, container=Depends(get_container)):
    feedback = await container.anonymous_feedback.lookup_anonymous_feedback(request.lookup_token)
    return AnonymousFeedbackLookupResponse.from_domain(feedback)


@router.get("/feedback", response_model=List[AnonymousFeedbackResponse], summary="Review anonymous feedback")
async def list_feedback(
    status_: Optional[FeedbackStatus] = Query(None, alias="status"),
    category: Optional[ComplaintCategory] = Query(None),
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    items = await container.anonymous_feedback.list_feedback(actor, status_, category)
    return [AnonymousFeedbackResponse.from_domain(f) for f in items]


@router.get("/feedback/{feedback_id}", response_model=AnonymousFeedbackResponse)
async def get_feedback(feedback_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    feedback = await container.anonymous_feedback.get_feedback(actor, feedback_id)
    return AnonymousFeedbackResponse.from_domain(feedback)


@router.patch("/feedback/{feedback_id}", response_model=AnonymousFeedbackResponse)
async def update_feedback(
    feedback_id: str,
    request: AnonymousFeedbackUpdateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    feedback = await container.anonymous_feedback.update_feedback(actor, feedback_id, request)
    return AnonymousFeedbackResponse.from_domain(feedback)


@router.post("/feedback/{feedback_id}/respond", response_model=AnonymousFeedbackResponse)
async def respond_to_feedback(
    feedback_id: str,
    request: AnonymousFeedbackRespondRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    feedback = await container.anonymous_feedback.respond(actor, feedback_id, request)
    return AnonymousFeedbackResponse.from_domain(feedback)


@router.post("/feedback/{feedback_id}/purge", response_model=AnonymousFeedbackResponse)
async def purge_feedback(feedback_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    feedback = await container.anonymous_feedback.purge(actor, feedback_id)
    return AnonymousFeedbackResponse.from_domain(feedback)


# ========== Ticket surveys ==========

@router.post(
    "/{ticket_id}/survey",
    response_model=SatisfactionSurveyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send the satisfaction survey for a resolved ticket"
)
async def send_survey(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    survey = await container.surveys.send_survey(actor, ticket_id)
    return SatisfactionSurveyResponse.from_domain(survey)


@router.get("/{ticket_id}/survey", response_model=SatisfactionSurveyResponse)
async def get_ticket_survey(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    survey = await container.surveys.get_survey_for_ticket(actor, ticket_id)
    return SatisfactionSurveyResponse.from_domain(survey)
