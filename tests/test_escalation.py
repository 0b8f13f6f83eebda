"""Manual and SLA-triggered escalation, the escalation cap, and breach handling."""

import pytest

from src.config import BreachStatus, ChangeKind, ComplaintStatus, NotificationKind
from src.core import (
    InvalidTransitionException, PermissionDeniedException, ResourceNotFoundException,
)
from src.complaints.domain import SLAPolicy

from conftest import ADMIN, COORDINATOR, STAFF, STUDENT, file_complaint

LEVELS = [
    {"level": 1, "notify": ["coordinator"]},
    {"level": 2, "notify": ["coordinator", "vice-principal"]},
    {"level": 3, "notify": ["principal"]},
]


@pytest.fixture
def policy(policy_provider):
    policy = SLAPolicy(escalation_levels=LEVELS, max_escalation_level=3)
    policy_provider.set_policy(policy)
    return policy


def use_cap_action(policy_provider, action, cap=2):
    policy_provider.set_policy(SLAPolicy(
        escalation_levels=LEVELS, max_escalation_level=cap, escalation_cap_action=action
    ))


async def test_manual_escalation_raises_level_not_status(container, gateway, policy):
    complaint = await file_complaint(container)

    escalated = await container.escalation.escalate(STAFF, complaint.id, {"reason": "Parent called twice"})

    assert escalated.escalation_level == 1
    assert escalated.status == ComplaintStatus.SUBMITTED
    assert escalated.escalated_at is not None
    last = (await container.tickets.status_changes(STAFF, complaint.id))[-1]
    assert last.kind == ChangeKind.ESCALATION
    assert last.from_status == last.to_status == ComplaintStatus.SUBMITTED
    recipients = [r for r, _, _ in gateway.of_kind(NotificationKind.ESCALATION)]
    assert recipients == ["coordinator", "complaints-desk"]


async def test_students_cannot_escalate(container, policy):
    complaint = await file_complaint(container)
    with pytest.raises(PermissionDeniedException):
        await container.escalation.escalate(STUDENT, complaint.id, {"reason": "Please"})


async def test_target_level_jumps_and_is_capped(container, gateway, policy):
    complaint = await file_complaint(container)

    escalated = await container.escalation.escalate(
        COORDINATOR, complaint.id, {"reason": "Safety issue", "target_level": 7}
    )
    assert escalated.escalation_level == 3
    assert [r for r, _, _ in gateway.of_kind(NotificationKind.ESCALATION)] == ["principal", "complaints-desk"]


async def test_target_level_must_be_above_current(container, policy):
    complaint = await file_complaint(container)
    await container.escalation.escalate(STAFF, complaint.id, {"reason": "x", "target_level": 2})

    with pytest.raises(InvalidTransitionException):
        await container.escalation.escalate(STAFF, complaint.id, {"reason": "y", "target_level": 2})


async def test_escalation_rule_picks_new_owner(container, policy):
    await container.rule_engine.create_rule(COORDINATOR, {
        "name": "escalated transport",
        "conditions": {"categories": ["transport"], "tags": ["escalated"]},
        "assignee_id": "transport-lead",
        "escalate_to": "vice-principal",
    })
    complaint = await file_complaint(container, category="transport")
    assert complaint.assignee_id == "complaints-desk"

    escalated = await container.escalation.escalate(STAFF, complaint.id, {"reason": "Late again"})
    assert escalated.escalated_to == "vice-principal"
    assert escalated.assignee_id == "vice-principal"


async def test_explicit_target_overrides_rules(container, policy):
    complaint = await file_complaint(container)
    escalated = await container.escalation.escalate(
        STAFF, complaint.id, {"reason": "x", "escalated_to": "head-of-year"}
    )
    assert escalated.assignee_id == "head-of-year"


async def test_cap_notify_only_keeps_level_and_notifies(container, gateway, policy_provider):
    use_cap_action(policy_provider, "notify_only")
    complaint = await file_complaint(container)
    await container.escalation.escalate(STAFF, complaint.id, {"reason": "a", "target_level": 2})
    gateway.sent.clear()

    again = await container.escalation.escalate(STAFF, complaint.id, {"reason": "b"})

    assert again.escalation_level == 2
    assert [r for r, _, p in gateway.of_kind(NotificationKind.ESCALATION) if p["capped"]] == [
        "coordinator", "vice-principal"
    ]
    last = (await container.tickets.status_changes(STAFF, complaint.id))[-1]
    assert "cap" in last.note


async def test_cap_reject_refuses_escalation(container, policy_provider):
    use_cap_action(policy_provider, "reject")
    complaint = await file_complaint(container)
    await container.escalation.escalate(STAFF, complaint.id, {"reason": "a", "target_level": 2})
    history_before = await container.tickets.status_changes(STAFF, complaint.id)

    with pytest.raises(InvalidTransitionException):
        await container.escalation.escalate(STAFF, complaint.id, {"reason": "b"})
    assert await container.tickets.status_changes(STAFF, complaint.id) == history_before


async def test_breach_at_cap_is_marked_without_escalating(container, clock, policy_provider):
    use_cap_action(policy_provider, "reject")
    complaint = await file_complaint(container)
    await container.escalation.escalate(STAFF, complaint.id, {"reason": "a", "target_level": 2})
    clock.advance(hours=25)

    report = await container.monitor.sweep()

    assert (report.breaches_created, report.escalations_applied, report.errors) == (1, 0, [])
    [breach] = await container.escalation.list_breaches(ticket_id=complaint.id)
    assert breach.escalated is True
    assert (await container.monitor.sweep()).escalations_applied == 0


async def test_terminal_tickets_cannot_be_escalated(container, policy):
    complaint = await file_complaint(container)
    await container.tickets.withdraw(STUDENT, complaint.id)

    with pytest.raises(InvalidTransitionException):
        await container.escalation.escalate(STAFF, complaint.id, {"reason": "late"})


async def test_unknown_ticket(container, policy):
    with pytest.raises(ResourceNotFoundException):
        await container.escalation.escalate(STAFF, "nope", {"reason": "x"})


# ========== Breaches ==========

async def _breach(container, clock):
    complaint = await file_complaint(container)
    clock.advance(hours=25)
    await container.monitor.sweep()
    [breach] = await container.escalation.list_breaches(ticket_id=complaint.id)
    return breach


async def test_address_breach(container, clock):
    breach = await _breach(container, clock)

    addressed = await container.escalation.address_breach(STAFF, breach.id, {"note": "Called the parent"})
    assert addressed.status == BreachStatus.ADDRESSED
    assert addressed.note == "Called the parent"
    assert addressed.closed_at == clock.now()

    with pytest.raises(InvalidTransitionException):
        await container.escalation.excuse_breach(ADMIN, breach.id)


async def test_excuse_requires_elevated_role(container, clock):
    breach = await _breach(container, clock)

    with pytest.raises(PermissionDeniedException):
        await container.escalation.excuse_breach(STAFF, breach.id)
    excused = await container.escalation.excuse_breach(COORDINATOR, breach.id, {"note": "Snow day"})
    assert excused.status == BreachStatus.EXCUSED

    open_breaches = await container.escalation.list_breaches(status=BreachStatus.OPEN)
    assert open_breaches == []


async def test_unknown_breach(container):
    with pytest.raises(ResourceNotFoundException):
        await container.escalation.get_breach("missing")
