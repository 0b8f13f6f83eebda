"""
Escalation Coordinator
======================

Raises a ticket's escalation level, manually or because an SLA deadline
was breached, and manages the lifecycle of breach records.

Escalation never changes the ticket status. Notifications are sent after
the unit of work commits and never fail the escalation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.config import BreachStatus, ChangeKind, EscalationTrigger, NotificationKind, SLAType
from src.core import InvalidTransitionException, ResourceNotFoundException
from src.complaints.application.dto import NoteRequest, EscalateRequest, validate_payload
from src.complaints.application.interfaces import (
    ISLAPolicyProvider, IUnitOfWork, UnitOfWorkFactory,
)
from src.complaints.application.notifications import NotificationDispatcher
from src.complaints.application.permissions import require_elevated, require_staff
from src.complaints.application.rules import AssignmentRuleEngine
from src.complaints.domain import Actor, Complaint, EscalationRequest, SLABreach, SYSTEM_ACTOR
from src.shared.infrastructure.clock import Clock
from src.shared.infrastructure.locks import KeyedLocks
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class EscalationOutcome:
    """What an escalation did, and who to tell about it."""
    complaint: Complaint
    level: int
    capped: bool
    escalated_to: Optional[str] = None
    recipients: List[str] = field(default_factory=list)

    def payload(self, request: EscalationRequest) -> Dict[str, Any]:
        return {
            "ticket_id": self.complaint.id,
            "ticket_number": self.complaint.ticket_number,
            "subject": self.complaint.subject,
            "priority": self.complaint.priority.value,
            "escalation_level": self.level,
            "escalated_to": self.escalated_to,
            "capped": self.capped,
            "reason": request.reason,
            "triggered_by": request.triggered_by.value,
        }


class EscalationCoordinator:
    """Manual and SLA-triggered escalation plus breach address/excuse."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: Clock,
        locks: KeyedLocks,
        rule_engine: AssignmentRuleEngine,
        policy_provider: ISLAPolicyProvider,
        dispatcher: NotificationDispatcher
    ):
        self._uow_factory = uow_factory
        self._clock = clock
        self._locks = locks
        self._rule_engine = rule_engine
        self._policy_provider = policy_provider
        self._dispatcher = dispatcher

    # ========== Escalation ==========

    async def escalate(self, actor: Actor, ticket_id: str, request) -> Complaint:
        """
        Manually escalate a ticket.

        Args:
            actor: Staff member escalating
            ticket_id: Ticket to escalate
            request: EscalateRequest or raw dict

        Returns:
            The updated Complaint

        Raises:
            InvalidTransitionException: for terminal tickets, for a target level
                not above the current one, and at the cap when the policy
                rejects further escalation
        """
        require_staff(actor, "escalate complaints")
        request = validate_payload(EscalateRequest, request)
        escalation = EscalationRequest(
            ticket_id=ticket_id,
            reason=request.reason,
            triggered_by=EscalationTrigger.MANUAL,
            timestamp=self._clock.now(),
            target_level=request.target_level,
            escalated_to=request.escalated_to,
        )

        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                outcome = await self._apply(uow, complaint, escalation, actor.id)

        await self._notify(outcome, escalation)
        return outcome.complaint

    async def escalate_for_breach(self, breach_id: str) -> bool:
        """
        Escalate the ticket of an open breach, at most once per breach.

        Returns:
            True if an escalation was applied, False if the breach was
            already escalated, closed, or its ticket is terminal
        """
        async with self._uow_factory() as uow:
            breach = await self._load_breach(uow, breach_id)
        ticket_id = breach.ticket_id

        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                breach = await self._load_breach(uow, breach_id)
                if breach.escalated or not breach.is_open:
                    return False
                complaint = await self._load(uow, ticket_id)
                if complaint.is_terminal:
                    return False

                policy = self._policy_provider.get_policy()
                if (complaint.escalation_level >= policy.max_escalation_level
                        and policy.escalation_cap_action == "reject"):
                    breach.escalated = True
                    await uow.breaches.save(breach)
                    logger.info(
                        "Breach not escalated: ticket at maximum escalation level",
                        extra={"ticket_id": ticket_id, "breach_id": breach_id}
                    )
                    return False

                escalation = EscalationRequest(
                    ticket_id=ticket_id,
                    reason=f"{breach.breach_type.value.title()} SLA breached "
                           f"(due {breach.due_at.isoformat()})",
                    triggered_by=EscalationTrigger.SLA_BREACH,
                    timestamp=self._clock.now(),
                    breach_id=breach.id,
                )
                outcome = await self._apply(uow, complaint, escalation, SYSTEM_ACTOR.id)
                breach.escalated = True
                await uow.breaches.save(breach)

        await self._notify(outcome, escalation)
        return not outcome.capped

    async def _apply(
        self,
        uow: IUnitOfWork,
        complaint: Complaint,
        request: EscalationRequest,
        actor_id: str
    ) -> EscalationOutcome:
        if complaint.is_terminal:
            raise InvalidTransitionException(
                f"Cannot escalate a {complaint.status.value} complaint",
                from_status=complaint.status.value
            )

        policy = self._policy_provider.get_policy()
        current = complaint.escalation_level
        cap = policy.max_escalation_level
        now = request.timestamp

        if current >= cap:
            if policy.escalation_cap_action == "reject":
                raise InvalidTransitionException(
                    f"Complaint is already at the maximum escalation level ({cap})",
                    details={"escalation_level": current}
                )
            change = complaint.annotate(
                ChangeKind.ESCALATION, actor_id, now,
                f"Escalation cap ({cap}) reached; notified level {cap} recipients: {request.reason}"
            )
            await uow.complaints.save(complaint)
            await uow.status_changes.add(change)
            logger.warning(
                "Escalation cap reached",
                extra={"ticket_id": complaint.id, "escalation_level": current}
            )
            return EscalationOutcome(
                complaint=complaint,
                level=current,
                capped=True,
                escalated_to=complaint.escalated_to,
                recipients=list(policy.get_recipients_for_level(cap)),
            )

        level = current + 1
        if request.target_level is not None:
            if request.target_level <= current:
                raise InvalidTransitionException(
                    f"Target level {request.target_level} is not above the current level {current}",
                    details={"escalation_level": current}
                )
            level = min(request.target_level, cap)

        target = request.escalated_to or await self._rule_engine.escalation_target(uow, complaint)
        complaint.raise_escalation(target, now, level)
        change = complaint.annotate(
            ChangeKind.ESCALATION, actor_id, now,
            f"Escalated to level {level} ({request.triggered_by.value}): {request.reason}"
        )
        await uow.complaints.save(complaint)
        await uow.status_changes.add(change)

        logger.info(
            "Complaint escalated",
            extra={
                "ticket_id": complaint.id,
                "escalation_level": level,
                "escalated_to": target,
                "triggered_by": request.triggered_by.value
            }
        )
        recipients = list(policy.get_recipients_for_level(level))
        if complaint.assignee_id:
            recipients.append(complaint.assignee_id)
        return EscalationOutcome(
            complaint=complaint,
            level=level,
            capped=False,
            escalated_to=complaint.escalated_to,
            recipients=recipients,
        )

    async def _notify(self, outcome: EscalationOutcome, request: EscalationRequest) -> None:
        await self._dispatcher.dispatch(
            outcome.recipients, NotificationKind.ESCALATION, outcome.payload(request)
        )

    # ========== Breaches ==========

    async def address_breach(self, actor: Actor, breach_id: str, request=None) -> SLABreach:
        """Mark an open breach as addressed."""
        require_staff(actor, "address SLA breaches")
        request = validate_payload(NoteRequest, request or {})
        return await self._close_breach(actor, breach_id, BreachStatus.ADDRESSED, request.note)

    async def excuse_breach(self, actor: Actor, breach_id: str, request=None) -> SLABreach:
        """Excuse an open breach (e.g. the delay was outside the school's control)."""
        require_elevated(actor, "excuse SLA breaches")
        request = validate_payload(NoteRequest, request or {})
        return await self._close_breach(actor, breach_id, BreachStatus.EXCUSED, request.note)

    async def _close_breach(
        self,
        actor: Actor,
        breach_id: str,
        status: BreachStatus,
        note: str
    ) -> SLABreach:
        async with self._uow_factory() as uow:
            ticket_id = (await self._load_breach(uow, breach_id)).ticket_id

        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                breach = await self._load_breach(uow, breach_id)
                if not breach.is_open:
                    raise InvalidTransitionException(
                        f"Breach is already {breach.status.value}",
                        from_status=breach.status.value,
                        to_status=status.value
                    )
                breach.close(status, actor.id, note or None, self._clock.now())
                await uow.breaches.save(breach)

        logger.info(
            "SLA breach closed",
            extra={"breach_id": breach_id, "ticket_id": ticket_id, "status": status.value}
        )
        return breach

    async def get_breach(self, breach_id: str) -> SLABreach:
        async with self._uow_factory() as uow:
            return await self._load_breach(uow, breach_id)

    async def list_breaches(
        self,
        ticket_id: Optional[str] = None,
        status: Optional[BreachStatus] = None,
        breach_type: Optional[SLAType] = None
    ) -> List[SLABreach]:
        async with self._uow_factory() as uow:
            return await uow.breaches.list(ticket_id=ticket_id, status=status, breach_type=breach_type)

    # ========== Helpers ==========

    async def _load(self, uow: IUnitOfWork, ticket_id: str) -> Complaint:
        complaint = await uow.complaints.get(ticket_id)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", ticket_id)
        return complaint

    async def _load_breach(self, uow: IUnitOfWork, breach_id: str) -> SLABreach:
        breach = await uow.breaches.get(breach_id)
        if breach is None:
            raise ResourceNotFoundException("SLABreach", breach_id)
        return breach
