"""SLA sweep: breach detection, idempotence and error isolation."""

import asyncio

import pytest

from src.config import BreachStatus, ChangeKind, NotificationKind, SLAType, Settings
from src.container import build_container

from conftest import STAFF, STUDENT, file_complaint, resolve


async def test_no_breach_before_deadline(container, clock):
    await file_complaint(container)
    clock.advance(hours=23, minutes=59)

    report = await container.monitor.sweep()
    assert report.tickets_evaluated == 1
    assert report.breaches_created == 0
    assert await container.escalation.list_breaches() == []


async def test_response_breach_is_recorded_and_escalated(container, clock, gateway):
    complaint = await file_complaint(container)
    clock.advance(hours=25)

    report = await container.monitor.sweep()

    assert (report.breaches_created, report.escalations_applied, report.errors) == (1, 1, [])
    [breach] = await container.escalation.list_breaches(ticket_id=complaint.id)
    assert breach.breach_type == SLAType.RESPONSE
    assert breach.due_at == complaint.due_at
    assert breach.escalated is True
    assert breach.overdue_minutes == 60

    ticket = await container.tickets.get(STAFF, complaint.id)
    assert ticket.escalation_level == 1
    assert ticket.status == complaint.status

    breach_recipients = [r for r, _, _ in gateway.of_kind(NotificationKind.SLA_BREACH)]
    assert breach_recipients == ["complaints-desk", "complaints-coordinator"]
    assert gateway.of_kind(NotificationKind.ESCALATION)


async def test_sweep_is_idempotent(container, clock):
    await file_complaint(container)
    clock.advance(hours=25)
    await container.monitor.sweep()

    again = await container.monitor.sweep()
    assert (again.breaches_created, again.escalations_applied) == (0, 0)
    assert len(await container.escalation.list_breaches()) == 1


async def test_resolution_breach_after_response_breach(container, clock):
    complaint = await file_complaint(container)
    clock.advance(hours=25)
    await container.monitor.sweep()
    clock.advance(hours=48)

    report = await container.monitor.sweep()

    assert report.breaches_created == 1
    types = [b.breach_type for b in await container.escalation.list_breaches(ticket_id=complaint.id)]
    assert types == [SLAType.RESPONSE, SLAType.RESOLUTION]
    assert (await container.tickets.get(STAFF, complaint.id)).escalation_level == 2


async def test_breaches_match_passed_unmet_deadlines(container, clock):
    urgent = await file_complaint(container, priority="urgent")
    high = await file_complaint(container, priority="high")
    await file_complaint(container, priority="medium")
    await file_complaint(container, priority="low")
    await container.tickets.acknowledge(STAFF, high.id)
    clock.advance(minutes=600)

    report = await container.monitor.sweep()

    assert report.tickets_evaluated == 4
    breaches = await container.escalation.list_breaches()
    assert [(b.ticket_id, b.breach_type) for b in breaches] == [(urgent.id, SLAType.RESPONSE)]


async def test_terminal_and_resolved_tickets_do_not_breach(container, clock):
    withdrawn = await file_complaint(container)
    await container.tickets.withdraw(STUDENT, withdrawn.id)
    resolved = await file_complaint(container)
    await resolve(container, resolved.id)
    clock.advance(days=10)

    report = await container.monitor.sweep()

    assert report.tickets_evaluated == 1
    assert report.breaches_created == 0


async def test_acknowledging_addresses_open_response_breach(container, clock):
    complaint = await file_complaint(container)
    clock.advance(hours=25)
    await container.monitor.sweep()

    await container.tickets.acknowledge(STAFF, complaint.id)

    [breach] = await container.escalation.list_breaches(ticket_id=complaint.id)
    assert breach.status == BreachStatus.ADDRESSED
    assert breach.closed_by == STAFF.id


async def test_one_failing_ticket_does_not_stop_the_sweep(container, clock, monkeypatch):
    failing = await file_complaint(container)
    healthy = await file_complaint(container)
    clock.advance(hours=25)

    real_escalate = container.escalation.escalate_for_breach
    failing_breaches = set()

    async def flaky(breach_id):
        breach = await container.escalation.get_breach(breach_id)
        if breach.ticket_id == failing.id:
            failing_breaches.add(breach_id)
            raise RuntimeError("store hiccup")
        return await real_escalate(breach_id)

    monkeypatch.setattr(container.escalation, "escalate_for_breach", flaky)
    report = await container.monitor.sweep()

    assert report.breaches_created == 2
    assert report.escalations_applied == 1
    assert [ticket_id for ticket_id, _ in report.errors] == [failing.id]
    assert (await container.tickets.get(STAFF, healthy.id)).escalation_level == 1
    assert (await container.tickets.get(STAFF, failing.id)).escalation_level == 0

    monkeypatch.undo()
    retry = await container.monitor.sweep()
    assert (retry.breaches_created, retry.escalations_applied, retry.errors) == (0, 1, [])
    assert (await container.tickets.get(STAFF, failing.id)).escalation_level == 1


async def test_notification_failures_do_not_fail_the_sweep(container, clock, gateway):
    complaint = await file_complaint(container)
    gateway.fail = True
    clock.advance(hours=25)

    report = await container.monitor.sweep()

    assert (report.breaches_created, report.escalations_applied, report.errors) == (1, 1, [])
    changes = await container.tickets.status_changes(STAFF, complaint.id)
    assert changes[-1].kind == ChangeKind.ESCALATION


async def test_empty_store_sweep(container):
    report = await container.monitor.sweep()
    assert report.tickets_evaluated == 0
    assert report.finished_at is not None


async def test_hung_escalation_is_bounded(uow_factory, policy_provider, gateway, clock, monkeypatch):
    settings = Settings(
        storage_backend="memory", sla_evaluation_interval=0,
        lock_timeout_seconds=1.0, store_timeout_seconds=0.05
    )
    container = build_container(uow_factory, policy_provider, gateway, clock=clock, settings=settings)
    complaint = await file_complaint(container)
    clock.advance(hours=25)

    async def hangs(breach_id):
        await asyncio.sleep(5)

    monkeypatch.setattr(container.escalation, "escalate_for_breach", hangs)
    report = await asyncio.wait_for(container.monitor.sweep(), timeout=2)

    assert report.breaches_created == 1
    assert report.escalations_applied == 0
    assert report.errors == [(complaint.id, "escalation timed out")]

    monkeypatch.undo()
    retry = await container.monitor.sweep()
    assert (retry.breaches_created, retry.escalations_applied, retry.errors) == (0, 1, [])
