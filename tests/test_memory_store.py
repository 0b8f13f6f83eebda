"""In-memory unit of work, optimistic versioning and keyed locks."""

import asyncio
from datetime import timedelta

import pytest

from src.config import ComplaintCategory, ComplaintPriority, SLAType, SubmitterType
from src.core import ConflictException
from src.complaints.domain import Complaint, SLABreach, StatusChange, Submitter
from src.complaints.infrastructure.memory import InMemoryStore, in_memory_uow_factory
from src.shared.infrastructure.locks import KeyedLocks
from src.shared.infrastructure.memory import MemoryTable, UndoJournal

from conftest import START


def make_complaint(complaint_id: str = "c-1") -> Complaint:
    return Complaint(
        id=complaint_id,
        ticket_number="CMP-2025-00001",
        subject="Leaking roof",
        description="Water drips in the library.",
        category=ComplaintCategory.FACILITIES,
        priority=ComplaintPriority.HIGH,
        submitter=Submitter(id="stu-1", type=SubmitterType.STUDENT),
        created_at=START,
        updated_at=START,
        due_at=START + timedelta(hours=8),
        resolution_due_at=START + timedelta(hours=48),
    )


class Boom(Exception):
    pass


async def test_commit_keeps_writes():
    factory = in_memory_uow_factory()
    async with factory() as uow:
        await uow.complaints.add(make_complaint())

    async with factory() as uow:
        assert (await uow.complaints.get("c-1")).subject == "Leaking roof"


async def test_exception_rolls_back_every_table():
    factory = in_memory_uow_factory()
    async with factory() as uow:
        await uow.complaints.add(make_complaint())

    with pytest.raises(Boom):
        async with factory() as uow:
            complaint = await uow.complaints.get("c-1")
            complaint.subject = "Changed"
            await uow.complaints.save(complaint)
            await uow.complaints.add(make_complaint("c-2"))
            await uow.status_changes.add(StatusChange(
                ticket_id="c-1", from_status=None, to_status=complaint.status,
                actor_id="stu-1", timestamp=START,
            ))
            raise Boom()

    async with factory() as uow:
        stored = await uow.complaints.get("c-1")
        assert stored.subject == "Leaking roof"
        assert stored.version == 1
        assert await uow.complaints.get("c-2") is None
        assert await uow.status_changes.list_for_ticket("c-1") == []


async def test_reads_are_copies():
    factory = in_memory_uow_factory()
    async with factory() as uow:
        complaint = make_complaint()
        await uow.complaints.add(complaint)
        complaint.subject = "Mutated after add"
        fetched = await uow.complaints.get("c-1")
        fetched.tags.append("urgent")

    async with factory() as uow:
        stored = await uow.complaints.get("c-1")
    assert stored.subject == "Leaking roof"
    assert stored.tags == []


async def test_stale_save_conflicts():
    factory = in_memory_uow_factory()
    async with factory() as uow:
        await uow.complaints.add(make_complaint())

    async with factory() as uow:
        first = await uow.complaints.get("c-1")
        second = await uow.complaints.get("c-1")
        await uow.complaints.save(first)
        assert first.version == 2
        with pytest.raises(ConflictException) as exc_info:
            await uow.complaints.save(second)
    assert exc_info.value.code == "conflict"
    assert exc_info.value.status_code == 409


async def test_duplicate_breach_conflicts():
    factory = in_memory_uow_factory()
    due = START + timedelta(hours=8)
    async with factory() as uow:
        await uow.breaches.add(SLABreach("c-1", SLAType.RESPONSE, START + timedelta(hours=9), due))
        with pytest.raises(ConflictException):
            await uow.breaches.add(SLABreach("c-1", SLAType.RESPONSE, START + timedelta(hours=10), due))
        await uow.breaches.add(SLABreach("c-1", SLAType.RESOLUTION, START + timedelta(hours=9), due))
        assert len(await uow.breaches.list(ticket_id="c-1")) == 2


async def test_factories_share_an_explicit_store():
    store = InMemoryStore()
    async with in_memory_uow_factory(store)() as uow:
        await uow.complaints.add(make_complaint())
    assert "c-1" in store.complaints
    async with in_memory_uow_factory(store)() as uow:
        assert await uow.complaints.list_active_ids() == ["c-1"]


def test_undo_journal_restores_previous_values():
    data = {"a": 1}
    journal = UndoJournal()
    table = MemoryTable(data, journal)
    table.put("a", 2)
    table.put("b", 3)
    table.remove("a")
    assert len(journal) == 3

    journal.undo()

    assert data == {"a": 1}
    assert len(journal) == 0


async def test_lock_timeout_raises_conflict():
    locks = KeyedLocks("Complaint", timeout_seconds=0.05)
    async with locks.hold("c-1"):
        assert locks.is_locked("c-1")
        with pytest.raises(ConflictException) as exc_info:
            async with locks.hold("c-1"):
                pass
    assert exc_info.value.details == {"reason": "lock_timeout"}
    assert len(locks) == 0


async def test_locks_serialize_per_key_only():
    locks = KeyedLocks("Complaint", timeout_seconds=1.0)
    order = []

    async def worker(key, name, delay):
        async with locks.hold(key):
            order.append(f"{name}-in")
            await asyncio.sleep(delay)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a", "first", 0.02), worker("a", "second", 0), worker("b", "other", 0))

    assert order.index("first-out") < order.index("second-in")
    assert order.index("other-in") < order.index("first-out")
    assert len(locks) == 0
