"""SLA target resolution and SLA config management."""

from datetime import timedelta

import pytest

from src.config import ComplaintCategory, ComplaintPriority
from src.core import (
    ConflictException, PermissionDeniedException, ResourceNotFoundException, ValidationException,
)
from src.complaints.domain import SLACalculator, SLAPolicy, SLATargets

from conftest import ADMIN, COORDINATOR, STAFF, START, file_complaint


async def test_falls_back_to_policy_defaults(container):
    targets = await container.sla_policy.resolve_config(
        ComplaintCategory.SAFETY, ComplaintPriority.URGENT
    )
    assert targets == SLATargets(response_minutes=240, resolution_minutes=1440, source="system_default")


async def test_category_config_beats_wildcard(container):
    wildcard = await container.sla_policy.create_config(COORDINATOR, {
        "priority": "high", "response_minutes": 60, "resolution_minutes": 600,
    })
    specific = await container.sla_policy.create_config(COORDINATOR, {
        "category": "bullying", "priority": "high", "response_minutes": 30, "resolution_minutes": 240,
    })

    bullying = await container.sla_policy.resolve_config(ComplaintCategory.BULLYING, ComplaintPriority.HIGH)
    assert (bullying.source, bullying.config_id, bullying.response_minutes) == ("category", specific.id, 30)

    fees = await container.sla_policy.resolve_config(ComplaintCategory.FEES, ComplaintPriority.HIGH)
    assert (fees.source, fees.config_id, fees.resolution_minutes) == ("priority", wildcard.id, 600)


async def test_disabled_config_is_ignored(container):
    config = await container.sla_policy.create_config(COORDINATOR, {
        "category": "fees", "priority": "low", "response_minutes": 10, "resolution_minutes": 20,
    })
    await container.sla_policy.toggle_config(ADMIN, config.id, False)

    targets = await container.sla_policy.resolve_config(ComplaintCategory.FEES, ComplaintPriority.LOW)
    assert targets.source == "system_default"


async def test_new_tickets_use_configured_targets(container):
    await container.sla_policy.create_config(COORDINATOR, {
        "category": "safety", "priority": "urgent", "response_minutes": 15, "resolution_minutes": 120,
    })
    complaint = await file_complaint(container, category="safety", priority="urgent")

    assert complaint.due_at == START + timedelta(minutes=15)
    assert complaint.resolution_due_at == START + timedelta(minutes=120)


async def test_one_enabled_config_per_pair(container):
    payload = {"category": "transport", "priority": "medium", "response_minutes": 60, "resolution_minutes": 120}
    first = await container.sla_policy.create_config(COORDINATOR, payload)

    with pytest.raises(ConflictException):
        await container.sla_policy.create_config(COORDINATOR, payload)

    disabled = await container.sla_policy.create_config(COORDINATOR, {**payload, "enabled": False})
    with pytest.raises(ConflictException):
        await container.sla_policy.toggle_config(COORDINATOR, disabled.id, True)

    await container.sla_policy.delete_config(COORDINATOR, first.id)
    enabled = await container.sla_policy.toggle_config(COORDINATOR, disabled.id, True)
    assert enabled.enabled is True


async def test_invalid_targets_are_rejected(container):
    with pytest.raises(ValidationException):
        await container.sla_policy.create_config(COORDINATOR, {
            "priority": "low", "response_minutes": 500, "resolution_minutes": 100,
        })
    with pytest.raises(ValidationException):
        await container.sla_policy.create_config(COORDINATOR, {
            "priority": "low", "response_minutes": 0, "resolution_minutes": 100,
        })

    config = await container.sla_policy.create_config(COORDINATOR, {
        "priority": "low", "response_minutes": 50, "resolution_minutes": 100,
    })
    with pytest.raises(ValidationException):
        await container.sla_policy.update_config(COORDINATOR, config.id, {"response_minutes": 200})


async def test_config_management_requires_elevated_role(container):
    with pytest.raises(PermissionDeniedException):
        await container.sla_policy.create_config(STAFF, {
            "priority": "low", "response_minutes": 50, "resolution_minutes": 100,
        })


async def test_deleted_config_is_gone(container):
    config = await container.sla_policy.create_config(COORDINATOR, {
        "priority": "low", "response_minutes": 50, "resolution_minutes": 100,
    })
    await container.sla_policy.delete_config(ADMIN, config.id)

    with pytest.raises(ResourceNotFoundException):
        await container.sla_policy.get_config(config.id)
    assert await container.sla_policy.list_configs() == []


# ========== Deadline computation ==========

@pytest.mark.parametrize("response,resolution", [(1, 1), (15, 120), (240, 1440), (2880, 7200)])
def test_deadlines_follow_targets(response, resolution):
    deadlines = SLACalculator.calculate_deadlines(
        START, SLATargets(response, resolution, "category")
    )
    assert deadlines.due_at == START + timedelta(minutes=response)
    assert deadlines.resolution_due_at == START + timedelta(minutes=resolution)
    assert deadlines.resolution_due_at >= deadlines.due_at


def test_policy_fills_missing_defaults():
    policy = SLAPolicy(default_targets={"urgent": {"response": 60}})
    assert policy.get_default_targets(ComplaintPriority.URGENT).response_minutes == 60
    assert policy.get_default_targets(ComplaintPriority.URGENT).resolution_minutes == 1440
    assert policy.get_default_targets(ComplaintPriority.LOW).response_minutes == 2880


def test_policy_rejects_inverted_targets():
    with pytest.raises(ValueError):
        SLAPolicy(default_targets={"low": {"response": 100, "resolution": 10}})


def test_recipients_use_highest_configured_level_below():
    policy = SLAPolicy(escalation_levels=[
        {"level": 1, "notify": ["coord"]},
        {"level": 3, "notify": ["principal"]},
    ])
    assert policy.get_recipients_for_level(2) == ["coord"]
    assert policy.get_recipients_for_level(5) == ["principal"]
