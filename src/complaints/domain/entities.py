"""
Complaint Domain Entities
=========================

Pure Python domain entities for the complaint lifecycle.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from src.config import (
    ActorRole, BreachStatus, ChangeKind, ComplaintCategory, ComplaintPriority,
    ComplaintSource, ComplaintStatus, ELEVATED_ROLES, EscalationTrigger,
    RESOLVED_STATUSES, SLAType, STAFF_ROLES, SubmitterType, VerificationStatus,
)
from src.complaints.domain.lifecycle import ensure_transition, is_terminal


def new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class Actor:
    """Pre-resolved caller identity. Authentication happens upstream."""
    id: str
    role: ActorRole

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)


SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM)


@dataclass(frozen=True)
class Submitter:
    """Who raised the complaint."""
    id: str
    type: SubmitterType


@dataclass(frozen=True)
class StatusChange:
    """
    Immutable audit record of a ticket's status history.

    ``from_status`` is None only for the creation record. Non-transition
    kinds (escalation, SLA recompute, assignment) keep the status unchanged.
    """
    ticket_id: str
    from_status: Optional[ComplaintStatus]
    to_status: ComplaintStatus
    actor_id: str
    timestamp: datetime
    note: str = ""
    kind: ChangeKind = ChangeKind.TRANSITION
    id: str = field(default_factory=new_id)


@dataclass
class Complaint:
    """
    Complaint aggregate root.

    Status only changes through ``transition``; deadlines only through
    ``apply_deadlines``.
    """

    # Core attributes
    id: str
    ticket_number: str
    subject: str
    description: str
    category: ComplaintCategory
    priority: ComplaintPriority
    submitter: Submitter
    created_at: datetime
    updated_at: datetime
    due_at: datetime
    resolution_due_at: datetime

    status: ComplaintStatus = ComplaintStatus.SUBMITTED
    assignee_id: Optional[str] = None
    student_id: Optional[str] = None
    source: ComplaintSource = ComplaintSource.WEB
    is_sensitive: bool = False
    tags: List[str] = field(default_factory=list)

    # Lifecycle timestamps
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    reopened_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None

    # Escalation
    escalation_level: int = 0
    escalated_to: Optional[str] = None
    escalated_at: Optional[datetime] = None

    reopen_count: int = 0
    survey_eligible: bool = False
    version: int = 1

    def __post_init__(self):
        if self.resolution_due_at < self.due_at:
            raise ValueError("resolution_due_at cannot be before due_at")
        if self.escalation_level < 0:
            raise ValueError("escalation_level cannot be negative")

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def is_escalated(self) -> bool:
        return self.escalation_level > 0

    @property
    def response_recorded(self) -> bool:
        return self.acknowledged_at is not None

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def transition(
        self,
        to_status: ComplaintStatus,
        actor_id: str,
        at: datetime,
        note: str = "",
    ) -> StatusChange:
        """Move along a state-machine edge and return the audit record."""
        ensure_transition(self.status, to_status)
        from_status = self.status
        self.status = to_status
        self.updated_at = at

        if to_status == ComplaintStatus.ACKNOWLEDGED:
            self.acknowledged_at = at
        elif to_status == ComplaintStatus.RESOLVED:
            self.resolved_at = at
        elif to_status == ComplaintStatus.CLOSED:
            self.closed_at = at
        elif to_status == ComplaintStatus.REOPENED:
            self.reopened_at = at
            self.resolved_at = None
            self.closed_at = None
            self.survey_eligible = False
        elif to_status == ComplaintStatus.WITHDRAWN:
            self.withdrawn_at = at

        return StatusChange(
            ticket_id=self.id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            timestamp=at,
            note=note,
        )

    def annotate(self, kind: ChangeKind, actor_id: str, at: datetime, note: str) -> StatusChange:
        """Audit record for a change that leaves the status as is."""
        self.updated_at = at
        return StatusChange(
            ticket_id=self.id,
            from_status=self.status,
            to_status=self.status,
            actor_id=actor_id,
            timestamp=at,
            note=note,
            kind=kind,
        )

    def apply_deadlines(self, due_at: datetime, resolution_due_at: datetime) -> None:
        if resolution_due_at < due_at:
            raise ValueError("resolution_due_at cannot be before due_at")
        self.due_at = due_at
        self.resolution_due_at = resolution_due_at

    def raise_escalation(
        self,
        escalated_to: Optional[str],
        at: datetime,
        level: Optional[int] = None,
    ) -> None:
        """Raise to ``level`` (default: one above the current level)."""
        new_level = self.escalation_level + 1 if level is None else level
        if new_level <= self.escalation_level:
            raise ValueError("escalation level can only increase")
        self.escalation_level = new_level
        self.escalated_at = at
        if escalated_to:
            self.escalated_to = escalated_to
            self.assignee_id = escalated_to
        self.updated_at = at


@dataclass
class ComplaintComment:
    """Comment on a ticket. Internal comments are hidden from the submitter."""
    ticket_id: str
    author_id: str
    body: str
    created_at: datetime
    internal: bool = False
    updated_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    def can_be_changed_by(self, actor: Actor) -> bool:
        return actor.id == self.author_id or actor.is_admin


@dataclass
class Resolution:
    """
    Recorded outcome of a ticket, subject to verification.

    A rejected resolution stays on record but is no longer active.
    """
    ticket_id: str
    resolved_by: str
    summary: str
    submitted_at: datetime
    actions_taken: List[str] = field(default_factory=list)
    root_cause: Optional[str] = None
    preventive_measures: List[str] = field(default_factory=list)
    verification: VerificationStatus = VerificationStatus.PENDING
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    active: bool = True
    id: str = field(default_factory=new_id)

    def verify(self, verifier_id: str, at: datetime) -> None:
        self.verification = VerificationStatus.VERIFIED
        self.verified_by = verifier_id
        self.verified_at = at

    def reject(self, reason: str) -> None:
        self.verification = VerificationStatus.REJECTED
        self.rejection_reason = reason
        self.active = False

    def supersede(self) -> None:
        """Keep the verdict on record but stop treating it as the current outcome."""
        self.active = False


@dataclass
class SLAConfig:
    """
    SLA targets for a (category, priority) pair.

    ``category`` None is the wildcard used as a priority-only default.
    """
    priority: ComplaintPriority
    response_minutes: int
    resolution_minutes: int
    created_at: datetime
    updated_at: datetime
    category: Optional[ComplaintCategory] = None
    enabled: bool = True
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if self.response_minutes <= 0 or self.resolution_minutes <= 0:
            raise ValueError("SLA targets must be positive")
        if self.response_minutes > self.resolution_minutes:
            raise ValueError("response_minutes cannot exceed resolution_minutes")

    @property
    def is_wildcard(self) -> bool:
        return self.category is None


@dataclass
class SLABreach:
    """
    Detected violation of an SLA deadline.

    Unique per (ticket, breach type, deadline). Addressed and excused are
    terminal for the record.
    """
    ticket_id: str
    breach_type: SLAType
    detected_at: datetime
    due_at: datetime
    status: BreachStatus = BreachStatus.OPEN
    note: Optional[str] = None
    escalated: bool = False
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def is_open(self) -> bool:
        return self.status == BreachStatus.OPEN

    @property
    def overdue_minutes(self) -> int:
        return int((self.detected_at - self.due_at).total_seconds() // 60)

    def close(self, status: BreachStatus, actor_id: str, note: Optional[str], at: datetime) -> None:
        self.status = status
        self.note = note
        self.closed_by = actor_id
        self.closed_at = at


@dataclass(frozen=True)
class RuleConditions:
    """
    Predicates of an assignment rule, AND-ed together.

    An empty list matches anything.
    """
    categories: tuple = ()
    priorities: tuple = ()
    tags: tuple = ()

    def matches(self, category: ComplaintCategory, priority: ComplaintPriority, tags) -> bool:
        if self.categories and category not in self.categories:
            return False
        if self.priorities and priority not in self.priorities:
            return False
        if self.tags and not set(self.tags).issubset(set(tags)):
            return False
        return True


@dataclass
class AssignmentRule:
    """Ordered predicate-to-assignee mapping."""
    name: str
    priority_order: int
    assignee_id: str
    created_at: datetime
    updated_at: datetime
    conditions: RuleConditions = field(default_factory=RuleConditions)
    escalate_to: Optional[str] = None
    auto_acknowledge: bool = False
    enabled: bool = True
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class EscalationRequest:
    """Manual or SLA-triggered escalation of a ticket."""
    ticket_id: str
    reason: str
    triggered_by: EscalationTrigger
    timestamp: datetime
    target_level: Optional[int] = None
    escalated_to: Optional[str] = None
    breach_id: Optional[str] = None
