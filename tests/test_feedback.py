"""Satisfaction surveys and anonymous feedback."""

import pytest

from src.config import ComplaintCategory, FeedbackStatus, NotificationKind, SurveyStatus
from src.core import (
    AlreadySubmittedException, InvalidTransitionException, PermissionDeniedException,
    ResourceNotFoundException, ValidationException,
)
from src.feedback.domain import TOKEN_PREFIX, digest_token
from src.feedback.infrastructure.memory import InMemoryAnonymousFeedbackRepository

from conftest import (
    COORDINATOR, OTHER_STUDENT, STAFF, STUDENT, file_complaint, resolve,
)

RATINGS = {
    "overall": 4,
    "resolution_quality": 5,
    "response_time": 3,
    "staff_professionalism": 5,
    "communication_clarity": 4,
    "would_recommend": True,
}


async def closed_ticket(container, **overrides):
    complaint = await file_complaint(container, **overrides)
    await resolve(container, complaint.id)
    return await container.resolutions.verify_resolution(STUDENT, complaint.id)


# ========== Surveys ==========

async def test_survey_requires_closed_ticket(container):
    complaint = await file_complaint(container)
    with pytest.raises(InvalidTransitionException):
        await container.surveys.send_survey(STAFF, complaint.id)


async def test_send_survey_invites_submitter(container, gateway, clock):
    ticket = await closed_ticket(container)

    survey = await container.surveys.send_survey(STAFF, ticket.id)

    assert survey.recipient_id == STUDENT.id
    assert survey.status == SurveyStatus.SENT
    assert (survey.expires_at - survey.sent_at).days == 7
    [(recipient, _, payload)] = gateway.of_kind(NotificationKind.SURVEY_INVITE)
    assert recipient == STUDENT.id
    assert payload["reminder"] is False


async def test_second_send_is_a_reminder(container, gateway):
    ticket = await closed_ticket(container)
    first = await container.surveys.send_survey(STAFF, ticket.id)

    second = await container.surveys.send_survey(STAFF, ticket.id)

    assert second.id == first.id
    assert second.reminders_sent == 1
    assert [p["reminder"] for _, _, p in gateway.of_kind(NotificationKind.SURVEY_INVITE)] == [False, True]
    assert len(await container.surveys.list_surveys(STAFF)) == 1


async def test_survey_answered_once(container):
    ticket = await closed_ticket(container)
    survey = await container.surveys.send_survey(STAFF, ticket.id)

    response = await container.surveys.submit_survey_response(STUDENT, survey.id, RATINGS)
    assert response.ratings.overall == 4

    with pytest.raises(AlreadySubmittedException):
        await container.surveys.submit_survey_response(STUDENT, survey.id, RATINGS)
    with pytest.raises(AlreadySubmittedException):
        await container.surveys.send_survey_reminder(STAFF, survey.id)
    assert (await container.surveys.get_survey(STUDENT, survey.id)).status == SurveyStatus.COMPLETED


async def test_only_recipient_answers(container):
    ticket = await closed_ticket(container)
    survey = await container.surveys.send_survey(STAFF, ticket.id)

    with pytest.raises(PermissionDeniedException):
        await container.surveys.submit_survey_response(OTHER_STUDENT, survey.id, RATINGS)
    with pytest.raises(PermissionDeniedException):
        await container.surveys.get_survey(OTHER_STUDENT, survey.id)


@pytest.mark.parametrize("rating", [0, 6])
async def test_ratings_out_of_range(container, rating):
    ticket = await closed_ticket(container)
    survey = await container.surveys.send_survey(STAFF, ticket.id)

    with pytest.raises(ValidationException):
        await container.surveys.submit_survey_response(STUDENT, survey.id, {**RATINGS, "overall": rating})


async def test_expired_survey(container, clock):
    ticket = await closed_ticket(container)
    survey = await container.surveys.send_survey(STAFF, ticket.id)
    clock.advance(days=8)

    with pytest.raises(InvalidTransitionException):
        await container.surveys.submit_survey_response(STUDENT, survey.id, RATINGS)

    assert await container.surveys.expire_overdue() == 1
    assert await container.surveys.expire_overdue() == 0
    assert (await container.surveys.get_survey_for_ticket(STUDENT, ticket.id)).status == SurveyStatus.EXPIRED
    assert await container.surveys.list_surveys(STAFF, SurveyStatus.SENT) == []


async def test_survey_analytics(container):
    transport = await closed_ticket(container, category=ComplaintCategory.TRANSPORT)
    facilities = await closed_ticket(container)
    unanswered = await closed_ticket(container)
    for ticket, overall, recommend in ((transport, 2, False), (facilities, 5, True)):
        survey = await container.surveys.send_survey(STAFF, ticket.id)
        await container.surveys.submit_survey_response(
            STUDENT, survey.id, {**RATINGS, "overall": overall, "would_recommend": recommend}
        )
    await container.surveys.send_survey(STAFF, unanswered.id)

    analytics = await container.surveys.survey_analytics(COORDINATOR)

    assert analytics.total_surveys_sent == 3
    assert analytics.total_responses == 2
    assert analytics.response_rate == pytest.approx(66.67)
    assert analytics.average_overall == 3.5
    assert analytics.recommendation_rate == 50.0
    assert [(c.category, c.average_satisfaction) for c in analytics.category_breakdown] == [
        (ComplaintCategory.FACILITIES, 5.0),
        (ComplaintCategory.TRANSPORT, 2.0),
    ]
    with pytest.raises(PermissionDeniedException):
        await container.surveys.survey_analytics(STUDENT)


async def test_survey_analytics_empty(container):
    analytics = await container.surveys.survey_analytics(STAFF)
    assert (analytics.total_surveys_sent, analytics.response_rate, analytics.average_overall) == (0, 0.0, 0.0)


# ========== Anonymous feedback ==========

FEEDBACK = {
    "category": "bullying",
    "subject": "Lunch break",
    "body": "Some older students take food from younger ones.",
}


async def test_anonymous_feedback_stores_only_digest(container):
    feedback, token = await container.anonymous_feedback.create_anonymous_feedback(FEEDBACK)

    assert token.startswith(TOKEN_PREFIX)
    async with container.uow_factory() as uow:
        stored = await uow.anonymous_feedback.get(feedback.id)
    assert stored.token_digest == digest_token(token)
    assert token not in vars(stored).values()
    assert not hasattr(stored, "submitter")
    assert stored.status == FeedbackStatus.RECEIVED


async def test_tokens_are_unique(container):
    _, first = await container.anonymous_feedback.create_anonymous_feedback(FEEDBACK)
    _, second = await container.anonymous_feedback.create_anonymous_feedback(FEEDBACK)
    assert first != second


async def test_lookup_shows_staff_response(container, clock):
    feedback, token = await container.anonymous_feedback.create_anonymous_feedback(FEEDBACK)
    clock.advance(hours=3)

    await container.anonymous_feedback.respond(STAFF, feedback.id, {"response": "Duty staff added at lunch."})
    found = await container.anonymous_feedback.lookup_anonymous_feedback(token)

    assert found.status == FeedbackStatus.RESPONDED
    assert found.public_response == "Duty staff added at lunch."
    assert found.responded_at == clock.now()


@pytest.mark.parametrize("token", ["", "FB-unknown", "not-a-token"])
async def test_lookup_unknown_token(container, token, monkeypatch):
    looked_up = []
    real_get_by_digest = InMemoryAnonymousFeedbackRepository.get_by_digest

    async def recording(self, token_digest):
        looked_up.append(token_digest)
        return await real_get_by_digest(self, token_digest)

    monkeypatch.setattr(InMemoryAnonymousFeedbackRepository, "get_by_digest", recording)

    with pytest.raises(ResourceNotFoundException) as exc_info:
        await container.anonymous_feedback.lookup_anonymous_feedback(token)
    assert exc_info.value.resource_id is None
    # Malformed tokens take the same store round-trip as well-formed ones
    assert looked_up == [digest_token(token)]


async def test_purged_feedback_looks_unknown(container):
    feedback, token = await container.anonymous_feedback.create_anonymous_feedback(FEEDBACK)

    with pytest.raises(PermissionDeniedException):
        await container.anonymous_feedback.purge(STAFF, feedback.id)
    await container.anonymous_feedback.purge(COORDINATOR, feedback.id)

    with pytest.raises(ResourceNotFoundException) as purged:
        await container.anonymous_feedback.lookup_anonymous_feedback(token)
    with pytest.raises(ResourceNotFoundException) as unknown:
        await container.anonymous_feedback.lookup_anonymous_feedback("FB-never-issued")
    assert purged.value.message == unknown.value.message
    assert purged.value.details == unknown.value.details
    with pytest.raises(ResourceNotFoundException):
        await container.anonymous_feedback.get_feedback(STAFF, feedback.id)
    assert await container.anonymous_feedback.list_feedback(STAFF) == []


async def test_staff_triage_of_feedback(container):
    feedback, _ = await container.anonymous_feedback.create_anonymous_feedback(FEEDBACK)

    updated = await container.anonymous_feedback.update_feedback(
        STAFF, feedback.id, {"status": "under_review", "internal_notes": "Check rota", "verified": True}
    )
    assert updated.status == FeedbackStatus.UNDER_REVIEW
    assert updated.verified is True

    listed = await container.anonymous_feedback.list_feedback(STAFF, status=FeedbackStatus.UNDER_REVIEW)
    assert [f.id for f in listed] == [feedback.id]
    assert await container.anonymous_feedback.list_feedback(
        STAFF, category=ComplaintCategory.FEES
    ) == []
    with pytest.raises(PermissionDeniedException):
        await container.anonymous_feedback.list_feedback(STUDENT)


async def test_blank_feedback_rejected(container):
    with pytest.raises(ValidationException):
        await container.anonymous_feedback.create_anonymous_feedback({**FEEDBACK, "body": "  "})
