"""
Shared fixtures: a manually driven clock, a recording notification
gateway and a service container over the in-memory store.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

import pytest

from src.config import ActorRole, ComplaintCategory, ComplaintPriority, NotificationKind, Settings
from src.container import build_container
from src.core import DependencyFailureException
from src.complaints.application.interfaces import INotificationGateway
from src.complaints.domain import Actor, SLAPolicy
from src.complaints.infrastructure.external import StaticSLAPolicyProvider
from src.complaints.infrastructure.memory import in_memory_uow_factory
from src.shared.infrastructure.clock import Clock

START = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


class ManualClock(Clock):
    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingGateway(INotificationGateway):
    def __init__(self):
        self.sent: List[Tuple[str, NotificationKind, Dict[str, Any]]] = []
        self.fail = False
        self.closed = False

    async def notify(self, recipient: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise DependencyFailureException("notifications", "gateway down")
        self.sent.append((recipient, kind, payload))

    async def close(self) -> None:
        self.closed = True

    def of_kind(self, kind: NotificationKind) -> List[Tuple[str, NotificationKind, Dict[str, Any]]]:
        return [n for n in self.sent if n[1] == kind]


STUDENT = Actor(id="stu-1", role=ActorRole.STUDENT)
OTHER_STUDENT = Actor(id="stu-2", role=ActorRole.STUDENT)
PARENT = Actor(id="par-1", role=ActorRole.PARENT)
STAFF = Actor(id="staff-1", role=ActorRole.STAFF)
COORDINATOR = Actor(id="coord-1", role=ActorRole.COORDINATOR)
ADMIN = Actor(id="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def policy_provider():
    return StaticSLAPolicyProvider(SLAPolicy())


@pytest.fixture
def test_settings():
    return Settings(storage_backend="memory", sla_evaluation_interval=0, lock_timeout_seconds=1.0)


@pytest.fixture
def uow_factory():
    return in_memory_uow_factory()


@pytest.fixture
def container(uow_factory, policy_provider, gateway, clock, test_settings):
    return build_container(uow_factory, policy_provider, gateway, clock=clock, settings=test_settings)


def complaint_payload(**overrides) -> Dict[str, Any]:
    payload = {
        "subject": "Broken projector in room 12",
        "description": "The projector has not worked for a week.",
        "category": ComplaintCategory.FACILITIES,
        "priority": ComplaintPriority.MEDIUM,
    }
    payload.update(overrides)
    return payload


async def file_complaint(container, actor: Actor = STUDENT, **overrides):
    return await container.tickets.create(actor, complaint_payload(**overrides))


async def move_to_in_progress(container, ticket_id: str):
    await container.tickets.acknowledge(STAFF, ticket_id)
    return await container.tickets.update_status(STAFF, ticket_id, {"status": "in_progress"})


async def resolve(container, ticket_id: str, summary: str = "Projector replaced"):
    await move_to_in_progress(container, ticket_id)
    return await container.resolutions.submit_resolution(STAFF, ticket_id, {"summary": summary})
