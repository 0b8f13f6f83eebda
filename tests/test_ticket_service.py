"""Ticket intake, transitions, edits, comments and reads."""

import asyncio
from datetime import timedelta

import pydantic
import pytest

from src.config import ChangeKind, ComplaintPriority, ComplaintStatus, SubmitterType
from src.core import (
    InvalidTransitionException, PermissionDeniedException, ResourceNotFoundException,
    ValidationException,
)
from src.complaints.application.dto import ComplaintFilters
from src.complaints.domain import ComplaintComment, StatusChange

from conftest import (
    ADMIN, OTHER_STUDENT, PARENT, STAFF, START, STUDENT, file_complaint,
    move_to_in_progress,
)


# ========== Intake ==========

async def test_create_assigns_number_deadlines_and_default_owner(container):
    complaint = await file_complaint(container)

    assert complaint.ticket_number == "CMP-2025-00001"
    assert complaint.status == ComplaintStatus.SUBMITTED
    assert complaint.assignee_id == "complaints-desk"
    assert complaint.submitter.id == STUDENT.id
    assert complaint.submitter.type == SubmitterType.STUDENT
    assert complaint.due_at == START + timedelta(minutes=1440)
    assert complaint.resolution_due_at == START + timedelta(minutes=4320)

    second = await file_complaint(container, PARENT)
    assert second.ticket_number == "CMP-2025-00002"
    assert second.submitter.type == SubmitterType.PARENT


async def test_create_records_initial_history(container):
    complaint = await file_complaint(container)
    changes = await container.tickets.status_changes(STUDENT, complaint.id)

    assert len(changes) == 1
    assert changes[0].from_status is None
    assert changes[0].to_status == ComplaintStatus.SUBMITTED
    assert changes[0].actor_id == STUDENT.id


async def test_create_rejects_blank_subject(container):
    with pytest.raises(ValidationException) as exc_info:
        await file_complaint(container, subject="   ")
    assert "subject" in exc_info.value.fields


async def test_create_rejects_unknown_category(container):
    with pytest.raises(ValidationException) as exc_info:
        await file_complaint(container, category="weather")
    assert "category" in exc_info.value.fields


async def test_only_staff_can_file_on_behalf_of_someone(container):
    with pytest.raises(PermissionDeniedException):
        await file_complaint(container, STUDENT, submitter_id=OTHER_STUDENT.id)

    complaint = await file_complaint(
        container, STAFF, submitter_id=PARENT.id, submitter_type="parent"
    )
    assert complaint.submitter.id == PARENT.id
    assert complaint.submitter.type == SubmitterType.PARENT


# ========== Transitions ==========

async def test_acknowledge_then_work_through_pending_info(container, clock):
    complaint = await file_complaint(container)
    clock.advance(minutes=5)

    acknowledged = await container.tickets.acknowledge(STAFF, complaint.id, "On it")
    assert acknowledged.status == ComplaintStatus.ACKNOWLEDGED
    assert acknowledged.acknowledged_at == clock.now()

    await container.tickets.update_status(STAFF, complaint.id, {"status": "in_progress"})
    waiting = await container.tickets.update_status(
        STAFF, complaint.id, {"status": "pending_info", "note": "Which room?"}
    )
    assert waiting.status == ComplaintStatus.PENDING_INFO
    resumed = await container.tickets.update_status(STAFF, complaint.id, {"status": "in_progress"})
    assert resumed.status == ComplaintStatus.IN_PROGRESS

    history = await container.tickets.status_changes(STAFF, complaint.id)
    assert [c.to_status for c in history] == [
        ComplaintStatus.SUBMITTED,
        ComplaintStatus.ACKNOWLEDGED,
        ComplaintStatus.IN_PROGRESS,
        ComplaintStatus.PENDING_INFO,
        ComplaintStatus.IN_PROGRESS,
    ]


async def test_acknowledge_twice_is_invalid(container):
    complaint = await file_complaint(container)
    await container.tickets.acknowledge(STAFF, complaint.id)

    with pytest.raises(InvalidTransitionException):
        await container.tickets.acknowledge(STAFF, complaint.id)


async def test_students_cannot_change_status(container):
    complaint = await file_complaint(container)
    with pytest.raises(PermissionDeniedException):
        await container.tickets.acknowledge(STUDENT, complaint.id)


async def test_skipping_states_is_invalid_and_leaves_no_trace(container):
    complaint = await file_complaint(container)

    with pytest.raises(InvalidTransitionException):
        await container.tickets.update_status(STAFF, complaint.id, {"status": "closed"})

    reloaded = await container.tickets.get(STAFF, complaint.id)
    assert reloaded.status == ComplaintStatus.SUBMITTED
    assert reloaded.version == complaint.version
    assert len(await container.tickets.status_changes(STAFF, complaint.id)) == 1


@pytest.mark.parametrize("target", ["resolved", "verified", "reopened"])
async def test_workflow_targets_are_refused_by_update_status(container, target):
    complaint = await file_complaint(container)
    await move_to_in_progress(container, complaint.id)

    with pytest.raises(InvalidTransitionException):
        await container.tickets.update_status(STAFF, complaint.id, {"status": target})


async def test_concurrent_acknowledge_applies_once(container):
    complaint = await file_complaint(container)

    results = await asyncio.gather(
        container.tickets.acknowledge(STAFF, complaint.id),
        container.tickets.acknowledge(ADMIN, complaint.id),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidTransitionException)
    changes = await container.tickets.status_changes(STAFF, complaint.id)
    assert [c.to_status for c in changes].count(ComplaintStatus.ACKNOWLEDGED) == 1


# ========== Withdraw ==========

async def test_submitter_can_withdraw(container):
    complaint = await file_complaint(container)
    withdrawn = await container.tickets.withdraw(STUDENT, complaint.id, {"reason": "Fixed itself"})

    assert withdrawn.status == ComplaintStatus.WITHDRAWN
    assert withdrawn.withdrawn_at is not None
    with pytest.raises(InvalidTransitionException):
        await container.tickets.update_status(STAFF, complaint.id, {"status": "in_progress"})
    with pytest.raises(InvalidTransitionException):
        await container.tickets.comment(STUDENT, complaint.id, {"body": "Hello?"})


async def test_withdraw_requires_submitter_or_admin(container):
    complaint = await file_complaint(container)

    with pytest.raises(PermissionDeniedException):
        await container.tickets.withdraw(STAFF, complaint.id)
    withdrawn = await container.tickets.update_status(ADMIN, complaint.id, {"status": "withdrawn"})
    assert withdrawn.status == ComplaintStatus.WITHDRAWN


async def test_withdrawn_is_terminal(container):
    complaint = await file_complaint(container)
    await container.tickets.withdraw(STUDENT, complaint.id)

    with pytest.raises(InvalidTransitionException):
        await container.tickets.withdraw(STUDENT, complaint.id)


# ========== Edits ==========

async def test_reassignment_restarts_sla_clock(container, clock):
    complaint = await file_complaint(container)
    later = clock.advance(hours=3)

    reassigned = await container.tickets.assign(STAFF, complaint.id, {"assignee_id": "staff-9"})

    assert reassigned.assignee_id == "staff-9"
    assert reassigned.due_at == later + timedelta(minutes=1440)
    assert reassigned.resolution_due_at == later + timedelta(minutes=4320)
    kinds = [c.kind for c in await container.tickets.status_changes(STAFF, complaint.id)]
    assert ChangeKind.ASSIGNMENT in kinds
    assert ChangeKind.SLA_RECOMPUTE in kinds


async def test_assigning_same_owner_changes_nothing(container):
    complaint = await file_complaint(container)
    same = await container.tickets.assign(STAFF, complaint.id, {"assignee_id": complaint.assignee_id})
    assert same.version == complaint.version


async def test_priority_change_recomputes_from_creation(container, clock):
    complaint = await file_complaint(container)
    clock.advance(hours=1)

    updated = await container.tickets.update_details(
        STAFF, complaint.id, {"priority": ComplaintPriority.URGENT}
    )

    assert updated.priority == ComplaintPriority.URGENT
    assert updated.due_at == START + timedelta(minutes=240)
    assert updated.resolution_due_at == START + timedelta(minutes=1440)


async def test_submitter_may_only_edit_text(container):
    complaint = await file_complaint(container)

    edited = await container.tickets.update_details(STUDENT, complaint.id, {"subject": "Projector room 14"})
    assert edited.subject == "Projector room 14"

    with pytest.raises(PermissionDeniedException):
        await container.tickets.update_details(STUDENT, complaint.id, {"priority": "urgent"})
    with pytest.raises(PermissionDeniedException):
        await container.tickets.update_details(OTHER_STUDENT, complaint.id, {"subject": "Mine now"})


async def test_edit_rejects_blank_subject(container):
    complaint = await file_complaint(container)

    with pytest.raises(ValidationException) as exc_info:
        await container.tickets.update_details(STUDENT, complaint.id, {"subject": "   "})
    assert "subject" in exc_info.value.fields
    assert isinstance(exc_info.value.__cause__, pydantic.ValidationError)

    edited = await container.tickets.update_details(STUDENT, complaint.id, {"description": "  Still broken.  "})
    assert edited.description == "Still broken."
    assert edited.subject == complaint.subject


# ========== Comments and history ==========

async def test_internal_comments_are_hidden_from_submitter(container):
    complaint = await file_complaint(container)
    await container.tickets.comment(STUDENT, complaint.id, {"body": "Still broken"})
    await container.tickets.comment(STAFF, complaint.id, {"body": "Vendor called", "internal": True})

    assert len(await container.tickets.comments(STAFF, complaint.id)) == 2
    visible = await container.tickets.comments(STUDENT, complaint.id)
    assert [c.body for c in visible] == ["Still broken"]

    with pytest.raises(PermissionDeniedException):
        await container.tickets.comment(STUDENT, complaint.id, {"body": "x", "internal": True})


async def test_only_author_or_admin_may_change_a_comment(container):
    complaint = await file_complaint(container)
    comment = await container.tickets.comment(STUDENT, complaint.id, {"body": "First"})

    with pytest.raises(PermissionDeniedException):
        await container.tickets.edit_comment(STAFF, comment.id, {"body": "Edited"})
    edited = await container.tickets.edit_comment(STUDENT, comment.id, {"body": "Edited"})
    assert edited.body == "Edited"
    assert edited.updated_at is not None

    await container.tickets.delete_comment(ADMIN, comment.id)
    assert await container.tickets.comments(STAFF, complaint.id) == []
    with pytest.raises(ResourceNotFoundException):
        await container.tickets.delete_comment(ADMIN, comment.id)


async def test_history_merges_changes_and_comments_by_time(container, clock):
    complaint = await file_complaint(container)
    clock.advance(minutes=1)
    await container.tickets.comment(STUDENT, complaint.id, {"body": "Any news?"})
    clock.advance(minutes=1)
    await container.tickets.acknowledge(STAFF, complaint.id)
    await container.tickets.comment(STAFF, complaint.id, {"body": "Looking", "internal": True})

    staff_view = (await container.tickets.history(STAFF, complaint.id)).entries()
    assert [type(e) for e in staff_view] == [StatusChange, ComplaintComment, StatusChange, ComplaintComment]

    student_view = (await container.tickets.history(STUDENT, complaint.id)).entries()
    assert [type(e) for e in student_view] == [StatusChange, ComplaintComment, StatusChange]


# ========== Reads ==========

async def test_students_only_see_their_own_complaints(container):
    mine = await file_complaint(container, STUDENT)
    await file_complaint(container, OTHER_STUDENT)

    items, total = await container.tickets.list(STUDENT)
    assert total == 1
    assert [c.id for c in items] == [mine.id]

    with pytest.raises(PermissionDeniedException):
        await container.tickets.get(OTHER_STUDENT, mine.id)

    _, staff_total = await container.tickets.list(STAFF)
    assert staff_total == 2


async def test_list_filters_search_and_paging(container, clock):
    first = await file_complaint(container, subject="Cafeteria food is cold", category="cafeteria")
    clock.advance(minutes=1)
    await file_complaint(container, subject="Bus late", category="transport")
    clock.advance(minutes=1)
    third = await file_complaint(container, subject="Bus skipped stop", category="transport")

    items, total = await container.tickets.list(STAFF, ComplaintFilters(search="bus", limit=1))
    assert total == 2
    assert [c.id for c in items] == [third.id]

    items, _ = await container.tickets.list(STAFF, ComplaintFilters(search=first.ticket_number.lower()))
    assert [c.id for c in items] == [first.id]

    items, total = await container.tickets.list(STAFF, ComplaintFilters(category="transport", offset=1))
    assert total == 2
    assert len(items) == 1


async def test_list_for_student(container):
    filed_by_parent = await file_complaint(container, PARENT, student_id="stu-1")
    await file_complaint(container, PARENT, student_id="stu-9")
    about_self = await file_complaint(container, STUDENT, student_id="stu-1")
    by_staff = await file_complaint(container, STAFF, student_id="stu-1")

    items, total = await container.tickets.list_for_student(PARENT, "stu-1")
    assert total == 1
    assert [c.id for c in items] == [filed_by_parent.id]

    items, _ = await container.tickets.list_for_student(STUDENT, "stu-1")
    assert [c.id for c in items] == [about_self.id]

    items, total = await container.tickets.list_for_student(STAFF, "stu-1")
    assert total == 3
    assert {c.id for c in items} == {filed_by_parent.id, about_self.id, by_staff.id}

    _, none = await container.tickets.list_for_student(STAFF, "stu-404")
    assert none == 0


async def test_unknown_ticket_is_not_found(container):
    with pytest.raises(ResourceNotFoundException):
        await container.tickets.get(STAFF, "missing")
