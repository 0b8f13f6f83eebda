"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from src.config import (
    ComplaintPriority, DEFAULT_ASSIGNEE, DEFAULT_SLA_TARGETS, SLAType,
)


@dataclass(frozen=True)
class SLATargets:
    """Response and resolution targets in minutes, plus where they came from."""
    response_minutes: int
    resolution_minutes: int
    source: str  # "category", "priority" or "system_default"
    config_id: Optional[str] = None


@dataclass(frozen=True)
class SLADeadlines:
    """Deadlines computed for a ticket."""
    due_at: datetime
    resolution_due_at: datetime
    targets: SLATargets


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA calculation logic in one place.
    """

    @staticmethod
    def calculate_deadline(base: datetime, minutes: int) -> datetime:
        """
        Calculate an SLA deadline.

        Args:
            base: Start of the clock (creation or reassignment time)
            minutes: Target in minutes

        Returns:
            The SLA deadline
        """
        return base + timedelta(minutes=minutes)

    @staticmethod
    def calculate_deadlines(base: datetime, targets: SLATargets) -> SLADeadlines:
        """
        Compute both deadlines; the resolution deadline never precedes the
        response deadline.
        """
        due_at = SLACalculator.calculate_deadline(base, targets.response_minutes)
        resolution_due_at = SLACalculator.calculate_deadline(base, targets.resolution_minutes)
        return SLADeadlines(
            due_at=due_at,
            resolution_due_at=max(due_at, resolution_due_at),
            targets=targets,
        )

    @staticmethod
    def is_breached(deadline: datetime, current_time: datetime) -> bool:
        return current_time > deadline

    @staticmethod
    def minutes_between(start: datetime, end: datetime) -> float:
        return (end - start).total_seconds() / 60


class EscalationLevelConfig(BaseModel):
    """Configuration for a single escalation level."""
    level: int = Field(ge=1, description="Escalation level (1-based)")
    notify: List[str] = Field(default_factory=list, description="Recipients to notify")


class SLAPolicy(BaseModel):
    """
    SLA policy loaded from YAML.

    Holds the system default targets used when no SLAConfig record matches,
    the escalation policy, and the default assignee queue.
    """
    default_targets: Dict[str, Dict[str, int]] = Field(
        default_factory=dict,
        validate_default=True,
        description="Fallback SLA targets in minutes by priority"
    )
    default_assignee: str = Field(
        default=DEFAULT_ASSIGNEE,
        description="Owner when no assignment rule matches"
    )
    max_escalation_level: int = Field(
        default=3,
        ge=1,
        description="Highest escalation level a ticket can reach"
    )
    escalation_cap_action: Literal["reject", "notify_only"] = Field(
        default="notify_only",
        description="What happens when escalating a ticket already at the cap"
    )
    escalation_levels: List[EscalationLevelConfig] = Field(
        default_factory=lambda: [EscalationLevelConfig(level=1, notify=["complaints-coordinator"])],
        description="Notification recipients per escalation level"
    )
    breach_recipients: List[str] = Field(
        default_factory=lambda: ["complaints-coordinator"],
        description="Recipients of SLA breach notifications besides the assignee"
    )

    @field_validator("default_targets")
    @classmethod
    def validate_default_targets(cls, v: Dict[str, Dict[str, int]]) -> Dict[str, Dict[str, int]]:
        """Fill missing priorities / clock types from the system constants."""
        filled = {}
        for priority in ComplaintPriority:
            fallback = DEFAULT_SLA_TARGETS[priority.value]
            entry = dict(v.get(priority.value, {}))
            for sla_type in SLAType:
                entry.setdefault(sla_type.value, fallback[sla_type.value])
            if entry["response"] <= 0 or entry["resolution"] <= 0:
                raise ValueError(f"SLA targets for '{priority.value}' must be positive")
            if entry["response"] > entry["resolution"]:
                raise ValueError(
                    f"response target exceeds resolution target for '{priority.value}'"
                )
            filled[priority.value] = entry
        return filled

    def get_default_targets(self, priority: ComplaintPriority) -> SLATargets:
        entry = self.default_targets.get(
            priority.value, DEFAULT_SLA_TARGETS[priority.value]
        )
        return SLATargets(
            response_minutes=entry["response"],
            resolution_minutes=entry["resolution"],
            source="system_default",
        )

    def get_recipients_for_level(self, level: int) -> List[str]:
        """Recipients for the given escalation level, or the highest configured below it."""
        candidates = [esc for esc in self.escalation_levels if esc.level <= level]
        if not candidates:
            return []
        return max(candidates, key=lambda esc: esc.level).notify
