"""Service container over the SQLAlchemy repositories (SQLite via aiosqlite)."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from src.config import BreachStatus, ComplaintStatus, SLAType
from src.container import build_container
from src.core import ConflictException
from src.complaints.domain import SLABreach
from src.complaints.infrastructure.repositories import sqlalchemy_uow_factory
from src.infrastructure.database import create_session_maker, create_tables

from conftest import COORDINATOR, STAFF, STUDENT, complaint_payload, resolve


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/complaints.db")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_uow_factory(engine):
    return sqlalchemy_uow_factory(create_session_maker(engine))


@pytest.fixture
def sql_container(sql_uow_factory, policy_provider, gateway, clock, test_settings):
    return build_container(sql_uow_factory, policy_provider, gateway, clock=clock, settings=test_settings)


async def test_ticket_round_trip(sql_container, clock):
    created = await sql_container.tickets.create(STUDENT, complaint_payload(tags=["room-12"]))

    loaded = await sql_container.tickets.get(STAFF, created.id)

    assert loaded.ticket_number == "CMP-2025-00001"
    assert loaded.tags == ["room-12"]
    assert loaded.created_at == clock.now()
    assert loaded.due_at == clock.now() + timedelta(minutes=1440)
    assert loaded.submitter == created.submitter
    assert loaded.version == created.version


async def test_numbering_continues_in_database(sql_container):
    numbers = [
        (await sql_container.tickets.create(STUDENT, complaint_payload())).ticket_number
        for _ in range(3)
    ]
    assert numbers == ["CMP-2025-00001", "CMP-2025-00002", "CMP-2025-00003"]


async def test_full_workflow_persists_history(sql_container):
    created = await sql_container.tickets.create(STUDENT, complaint_payload())
    await resolve(sql_container, created.id)
    closed = await sql_container.resolutions.verify_resolution(STUDENT, created.id)

    assert closed.status == ComplaintStatus.CLOSED
    statuses = [c.to_status for c in await sql_container.tickets.status_changes(STAFF, created.id)]
    assert statuses == [
        ComplaintStatus.SUBMITTED, ComplaintStatus.ACKNOWLEDGED, ComplaintStatus.IN_PROGRESS,
        ComplaintStatus.RESOLVED, ComplaintStatus.VERIFIED, ComplaintStatus.CLOSED,
    ]
    assert (await sql_container.resolutions.get_resolution(STUDENT, created.id)).verified_by == STUDENT.id


async def test_stale_version_conflicts(sql_container, sql_uow_factory):
    created = await sql_container.tickets.create(STUDENT, complaint_payload())

    async with sql_uow_factory() as uow:
        stale = await uow.complaints.get(created.id)
    await sql_container.tickets.acknowledge(STAFF, created.id)

    with pytest.raises(ConflictException):
        async with sql_uow_factory() as uow:
            await uow.complaints.save(stale)

    assert (await sql_container.tickets.get(STAFF, created.id)).status == ComplaintStatus.ACKNOWLEDGED


async def test_rollback_discards_writes(sql_container, sql_uow_factory):
    created = await sql_container.tickets.create(STUDENT, complaint_payload())

    with pytest.raises(RuntimeError):
        async with sql_uow_factory() as uow:
            complaint = await uow.complaints.get(created.id)
            complaint.subject = "Changed"
            await uow.complaints.save(complaint)
            raise RuntimeError("abort")

    assert (await sql_container.tickets.get(STAFF, created.id)).subject == complaint_payload()["subject"]


async def test_breach_is_unique_per_deadline(sql_container, sql_uow_factory, clock):
    created = await sql_container.tickets.create(STUDENT, complaint_payload())
    clock.advance(hours=25)

    report = await sql_container.monitor.sweep()
    again = await sql_container.monitor.sweep()

    assert (report.breaches_created, report.escalations_applied) == (1, 1)
    assert (again.breaches_created, again.escalations_applied) == (0, 0)
    [breach] = await sql_container.escalation.list_breaches(ticket_id=created.id)
    assert breach.escalated is True
    assert breach.due_at == created.due_at

    with pytest.raises(ConflictException):
        async with sql_uow_factory() as uow:
            await uow.breaches.add(SLABreach(created.id, SLAType.RESPONSE, clock.now(), created.due_at))


async def test_breach_filters(sql_container, clock):
    created = await sql_container.tickets.create(STUDENT, complaint_payload())
    clock.advance(hours=80)
    await sql_container.monitor.sweep()
    resolution, response = sorted(
        await sql_container.escalation.list_breaches(ticket_id=created.id),
        key=lambda b: b.breach_type.value,
    )
    await sql_container.escalation.excuse_breach(COORDINATOR, resolution.id)

    open_breaches = await sql_container.escalation.list_breaches(status=BreachStatus.OPEN)
    assert [b.id for b in open_breaches] == [response.id]
    typed = await sql_container.escalation.list_breaches(breach_type=SLAType.RESOLUTION)
    assert [b.status for b in typed] == [BreachStatus.EXCUSED]


async def test_student_filter_in_database(sql_container):
    about = await sql_container.tickets.create(STAFF, complaint_payload(student_id="stu-1"))
    await sql_container.tickets.create(STAFF, complaint_payload(student_id="stu-2"))
    await sql_container.tickets.create(STUDENT, complaint_payload())

    items, total = await sql_container.tickets.list_for_student(STAFF, "stu-1")
    assert total == 1
    assert [c.id for c in items] == [about.id]


async def test_sla_config_and_rules_persist(sql_container):
    config = await sql_container.sla_policy.create_config(COORDINATOR, {
        "category": "safety", "priority": "urgent",
        "response_minutes": 30, "resolution_minutes": 240,
    })
    rule = await sql_container.rule_engine.create_rule(COORDINATOR, {
        "name": "safety desk",
        "conditions": {"categories": ["safety"]},
        "assignee_id": "safety-officer",
    })

    created = await sql_container.tickets.create(
        STUDENT, complaint_payload(category="safety", priority="urgent")
    )

    assert created.assignee_id == "safety-officer"
    assert created.due_at == created.created_at + timedelta(minutes=30)
    assert (await sql_container.sla_policy.get_config(config.id)).response_minutes == 30
    assert [r.id for r in await sql_container.rule_engine.list_rules()] == [rule.id]


async def test_purged_feedback_is_hidden(sql_container):
    feedback, token = await sql_container.anonymous_feedback.create_anonymous_feedback({
        "category": "fees", "subject": "Trip costs", "body": "Trip fees doubled without notice.",
    })
    assert (await sql_container.anonymous_feedback.lookup_anonymous_feedback(token)).id == feedback.id

    await sql_container.anonymous_feedback.purge(COORDINATOR, feedback.id)

    assert await sql_container.anonymous_feedback.list_feedback(STAFF) == []


async def test_surveys_persist(sql_container):
    created = await sql_container.tickets.create(STUDENT, complaint_payload())
    await resolve(sql_container, created.id)
    await sql_container.resolutions.verify_resolution(STUDENT, created.id)

    survey = await sql_container.surveys.send_survey(STAFF, created.id)
    await sql_container.surveys.submit_survey_response(STUDENT, survey.id, {
        "overall": 5, "resolution_quality": 5, "response_time": 4,
        "staff_professionalism": 5, "communication_clarity": 4, "would_recommend": True,
    })

    analytics = await sql_container.surveys.survey_analytics(STAFF)
    assert (analytics.total_surveys_sent, analytics.total_responses, analytics.average_overall) == (1, 1, 5.0)
