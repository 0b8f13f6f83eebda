"""
Service Container
=================

Wires the application services to one storage backend, policy provider,
notification gateway and clock. The FastAPI app and the test suite build
their services through ``build_container``.
"""

from dataclasses import dataclass
from typing import Optional

from src.config import Settings, settings as default_settings
from src.complaints.application.analytics import AnalyticsService
from src.complaints.application.escalation import EscalationCoordinator
from src.complaints.application.interfaces import (
    INotificationGateway, ISLAPolicyProvider, UnitOfWorkFactory,
)
from src.complaints.application.monitor import SLAMonitor
from src.complaints.application.notifications import NotificationDispatcher
from src.complaints.application.resolution import ResolutionWorkflow
from src.complaints.application.rules import AssignmentRuleEngine
from src.complaints.application.services import TicketService
from src.complaints.application.sla import SLAPolicyService
from src.feedback.application.services import AnonymousFeedbackService, SurveyService
from src.shared.infrastructure.clock import Clock, SystemClock
from src.shared.infrastructure.locks import KeyedLocks


@dataclass
class Container:
    """Every service of one running instance, sharing one set of ticket locks."""
    uow_factory: UnitOfWorkFactory
    clock: Clock
    policy_provider: ISLAPolicyProvider
    dispatcher: NotificationDispatcher
    sla_policy: SLAPolicyService
    rule_engine: AssignmentRuleEngine
    tickets: TicketService
    escalation: EscalationCoordinator
    monitor: SLAMonitor
    resolutions: ResolutionWorkflow
    analytics: AnalyticsService
    surveys: SurveyService
    anonymous_feedback: AnonymousFeedbackService

    async def close(self) -> None:
        await self.dispatcher.gateway.close()


def build_container(
    uow_factory: UnitOfWorkFactory,
    policy_provider: ISLAPolicyProvider,
    gateway: INotificationGateway,
    clock: Optional[Clock] = None,
    settings: Optional[Settings] = None
) -> Container:
    """
    Build the service graph.

    Args:
        uow_factory: Storage backend (SQLAlchemy or in-memory)
        policy_provider: Source of the SLA policy
        gateway: Outbound notification channel
        clock: Time source, SystemClock by default
        settings: Tunables, the global settings by default
    """
    settings = settings or default_settings
    clock = clock or SystemClock()

    locks = KeyedLocks("Complaint", settings.lock_timeout_seconds)
    dispatcher = NotificationDispatcher(gateway)
    sla_policy = SLAPolicyService(uow_factory, policy_provider, clock)
    rule_engine = AssignmentRuleEngine(
        uow_factory, policy_provider, clock, settings.lock_timeout_seconds
    )
    escalation = EscalationCoordinator(
        uow_factory, clock, locks, rule_engine, policy_provider, dispatcher
    )

    return Container(
        uow_factory=uow_factory,
        clock=clock,
        policy_provider=policy_provider,
        dispatcher=dispatcher,
        sla_policy=sla_policy,
        rule_engine=rule_engine,
        tickets=TicketService(
            uow_factory, clock, locks, sla_policy, rule_engine,
            reopen_grace_days=settings.reopen_grace_days
        ),
        escalation=escalation,
        monitor=SLAMonitor(
            uow_factory, clock, locks, escalation, dispatcher, policy_provider,
            concurrency=settings.sla_sweep_concurrency,
            store_timeout_seconds=settings.store_timeout_seconds
        ),
        resolutions=ResolutionWorkflow(uow_factory, clock, locks, dispatcher),
        analytics=AnalyticsService(uow_factory, clock),
        surveys=SurveyService(
            uow_factory, clock, dispatcher,
            expiry_days=settings.survey_expiry_days,
            lock_timeout_seconds=settings.lock_timeout_seconds
        ),
        anonymous_feedback=AnonymousFeedbackService(uow_factory, clock),
    )
