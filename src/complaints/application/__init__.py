"""
Complaints Application Layer
============================

Application layer for the complaints module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization
- Interfaces: Repository, unit of work and collaborator abstractions

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.complaints.application.interfaces import (
    IUnitOfWork,
    UnitOfWorkFactory,
    ISLAPolicyProvider,
    INotificationGateway,
)
from src.complaints.application.notifications import NotificationDispatcher
from src.complaints.application.sla import SLAPolicyService
from src.complaints.application.rules import AssignmentRuleEngine, evaluate_rules
from src.complaints.application.services import TicketService, TicketHistory
from src.complaints.application.escalation import EscalationCoordinator
from src.complaints.application.monitor import SLAMonitor, SweepReport
from src.complaints.application.resolution import ResolutionWorkflow
from src.complaints.application.analytics import AnalyticsService

__all__ = [
    # Interfaces
    "IUnitOfWork",
    "UnitOfWorkFactory",
    "ISLAPolicyProvider",
    "INotificationGateway",
    # Services
    "NotificationDispatcher",
    "SLAPolicyService",
    "AssignmentRuleEngine",
    "evaluate_rules",
    "TicketService",
    "TicketHistory",
    "EscalationCoordinator",
    "SLAMonitor",
    "SweepReport",
    "ResolutionWorkflow",
    "AnalyticsService",
]
