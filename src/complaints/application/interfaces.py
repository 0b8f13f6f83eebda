"""
Complaint Repository Interfaces
===============================

Abstractions the application services depend on (Dependency Inversion).

Every mutation runs inside an ``IUnitOfWork``: leaving the ``async with``
block normally commits, leaving it through an exception rolls back every
write made through the unit's repositories.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from src.config import (
    BreachStatus, ChangeKind, ComplaintCategory, ComplaintPriority,
    NotificationKind, SLAType,
)
from src.complaints.domain import (
    AssignmentRule, Complaint, ComplaintComment, Resolution, SLABreach,
    SLAConfig, SLAPolicy, StatusChange,
)
from src.complaints.application.dto import ComplaintFilters
from src.feedback.application.interfaces import (
    IAnonymousFeedbackRepository, ISurveyRepository, ISurveyResponseRepository,
)


# ========== Repository Interfaces ==========

class IComplaintRepository(ABC):
    """Interface for complaint data access."""

    @abstractmethod
    async def add(self, complaint: Complaint) -> None:
        """Persist a new complaint."""

    @abstractmethod
    async def get(self, complaint_id: str) -> Optional[Complaint]:
        """Get complaint by internal ID."""

    @abstractmethod
    async def save(self, complaint: Complaint) -> None:
        """
        Persist changes with an optimistic version check.

        The stored version must equal ``complaint.version``; on success the
        version is incremented on both sides.

        Raises:
            ConflictException: if another writer saved first
        """

    @abstractmethod
    async def list(self, filters: ComplaintFilters) -> List[Complaint]:
        """List complaints matching filters, newest first."""

    @abstractmethod
    async def count(self, filters: ComplaintFilters) -> int:
        """Count complaints matching filters (ignores limit/offset)."""

    @abstractmethod
    async def list_active_ids(self) -> List[str]:
        """IDs of every complaint not in a terminal status."""

    @abstractmethod
    async def count_created_in_year(self, year: int) -> int:
        """Number of complaints created in a calendar year (ticket numbering)."""


class IStatusChangeRepository(ABC):
    """Append-only status history."""

    @abstractmethod
    async def add(self, change: StatusChange) -> None:
        """Append a record."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[StatusChange]:
        """History of a ticket, oldest first."""

    @abstractmethod
    async def list_by_kind(
        self,
        kind: ChangeKind,
        since: Optional[datetime] = None
    ) -> List[StatusChange]:
        """All records of a kind, optionally since a timestamp."""


class ICommentRepository(ABC):
    """Interface for comment data access."""

    @abstractmethod
    async def add(self, comment: ComplaintComment) -> None:
        """Persist a new comment."""

    @abstractmethod
    async def get(self, comment_id: str) -> Optional[ComplaintComment]:
        """Get comment by ID."""

    @abstractmethod
    async def save(self, comment: ComplaintComment) -> None:
        """Persist an edited comment."""

    @abstractmethod
    async def delete(self, comment_id: str) -> None:
        """Remove a comment."""

    @abstractmethod
    async def list_for_ticket(
        self,
        ticket_id: str,
        include_internal: bool = True
    ) -> List[ComplaintComment]:
        """Comments on a ticket, oldest first."""


class IResolutionRepository(ABC):
    """Interface for resolution data access."""

    @abstractmethod
    async def add(self, resolution: Resolution) -> None:
        """Persist a new resolution."""

    @abstractmethod
    async def save(self, resolution: Resolution) -> None:
        """Persist changes to a resolution."""

    @abstractmethod
    async def get_active(self, ticket_id: str) -> Optional[Resolution]:
        """The single active resolution of a ticket, if any."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[Resolution]:
        """All resolutions of a ticket including rejected ones, oldest first."""

    @abstractmethod
    async def list_verified(self) -> List[Resolution]:
        """Every verified resolution."""


class ISLAConfigRepository(ABC):
    """Interface for SLA config data access."""

    @abstractmethod
    async def add(self, config: SLAConfig) -> None:
        """Persist a new config."""

    @abstractmethod
    async def get(self, config_id: str) -> Optional[SLAConfig]:
        """Get config by ID."""

    @abstractmethod
    async def save(self, config: SLAConfig) -> None:
        """Persist changes to a config."""

    @abstractmethod
    async def delete(self, config_id: str) -> None:
        """Remove a config."""

    @abstractmethod
    async def list(self) -> List[SLAConfig]:
        """All configs."""

    @abstractmethod
    async def find_enabled(
        self,
        category: Optional[ComplaintCategory],
        priority: ComplaintPriority
    ) -> Optional[SLAConfig]:
        """The enabled config for an exact (category, priority) pair; None category is the wildcard."""


class ISLABreachRepository(ABC):
    """Interface for SLA breach data access."""

    @abstractmethod
    async def add(self, breach: SLABreach) -> None:
        """
        Persist a new breach.

        Raises:
            ConflictException: if a breach for the same
                (ticket, breach type, deadline) already exists
        """

    @abstractmethod
    async def get(self, breach_id: str) -> Optional[SLABreach]:
        """Get breach by ID."""

    @abstractmethod
    async def save(self, breach: SLABreach) -> None:
        """Persist changes to a breach."""

    @abstractmethod
    async def find(
        self,
        ticket_id: str,
        breach_type: SLAType,
        due_at: datetime
    ) -> Optional[SLABreach]:
        """The breach recorded for a specific deadline, if any."""

    @abstractmethod
    async def list(
        self,
        ticket_id: Optional[str] = None,
        status: Optional[BreachStatus] = None,
        breach_type: Optional[SLAType] = None
    ) -> List[SLABreach]:
        """List breaches, oldest detection first."""


class IAssignmentRuleRepository(ABC):
    """Interface for assignment rule data access."""

    @abstractmethod
    async def add(self, rule: AssignmentRule) -> None:
        """Persist a new rule."""

    @abstractmethod
    async def get(self, rule_id: str) -> Optional[AssignmentRule]:
        """Get rule by ID."""

    @abstractmethod
    async def save(self, rule: AssignmentRule) -> None:
        """Persist changes to a rule."""

    @abstractmethod
    async def delete(self, rule_id: str) -> None:
        """Remove a rule."""

    @abstractmethod
    async def list(self) -> List[AssignmentRule]:
        """All rules in ascending ``priority_order``."""


# ========== Unit of Work ==========

class IUnitOfWork(ABC):
    """
    Transaction boundary over every repository.

    Usage::

        async with uow_factory() as uow:
            complaint = await uow.complaints.get(ticket_id)
            ...
    """

    complaints: IComplaintRepository
    status_changes: IStatusChangeRepository
    comments: ICommentRepository
    resolutions: IResolutionRepository
    sla_configs: ISLAConfigRepository
    breaches: ISLABreachRepository
    rules: IAssignmentRuleRepository
    surveys: ISurveyRepository
    survey_responses: ISurveyResponseRepository
    anonymous_feedback: IAnonymousFeedbackRepository

    async def __aenter__(self) -> "IUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    @abstractmethod
    async def commit(self) -> None:
        """Make every write of this unit durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard every write of this unit."""


UnitOfWorkFactory = Callable[[], IUnitOfWork]


# ========== Collaborators ==========

class ISLAPolicyProvider(ABC):
    """Interface for SLA policy access."""

    @abstractmethod
    def get_policy(self) -> SLAPolicy:
        """Get current SLA policy."""


class INotificationGateway(ABC):
    """Outbound notification channel."""

    @abstractmethod
    async def notify(
        self,
        recipient: str,
        kind: NotificationKind,
        payload: Dict[str, Any]
    ) -> None:
        """
        Deliver one notification.

        Raises:
            DependencyFailureException: if the channel could not deliver
        """

    async def close(self) -> None:
        """Release transport resources."""
