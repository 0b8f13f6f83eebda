"""
SLA Monitor
===========

Periodic sweep that turns passed deadlines into breach records and
escalations.

For every non-terminal ticket, under its lock:
- response breach: past ``due_at`` and not acknowledged
- resolution breach: past ``resolution_due_at`` and not resolved/verified/closed

Breaches are unique per deadline, so running the sweep twice in a row
creates nothing new. Each breach is committed before its escalation is
attempted; a failed escalation is retried by the next sweep.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from src.config import NotificationKind, RESOLVED_STATUSES, SLAType
from src.core import ApplicationException
from src.complaints.application.escalation import EscalationCoordinator
from src.complaints.application.interfaces import ISLAPolicyProvider, UnitOfWorkFactory
from src.complaints.application.notifications import NotificationDispatcher
from src.complaints.domain import Complaint, SLABreach
from src.shared.infrastructure.clock import Clock
from src.shared.infrastructure.locks import KeyedLocks
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep. Per-ticket failures are collected, never raised."""
    started_at: datetime
    tickets_evaluated: int = 0
    breaches_created: int = 0
    escalations_applied: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    def record_error(self, ticket_id: str, message: str) -> None:
        self.errors.append((ticket_id, message))


class SLAMonitor:
    """Detects SLA breaches and hands them to the escalation coordinator."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: Clock,
        locks: KeyedLocks,
        escalation: EscalationCoordinator,
        dispatcher: NotificationDispatcher,
        policy_provider: ISLAPolicyProvider,
        concurrency: int = 8,
        store_timeout_seconds: float = 10.0
    ):
        self._uow_factory = uow_factory
        self._clock = clock
        self._locks = locks
        self._escalation = escalation
        self._dispatcher = dispatcher
        self._policy_provider = policy_provider
        self._concurrency = concurrency
        self._store_timeout = store_timeout_seconds

    async def sweep(self) -> SweepReport:
        """
        Evaluate every non-terminal ticket once.

        Returns:
            SweepReport with counts and per-ticket errors
        """
        report = SweepReport(started_at=self._clock.now())

        with log_latency(logger, "sla_sweep"):
            async with self._uow_factory() as uow:
                ticket_ids = await uow.complaints.list_active_ids()

            semaphore = asyncio.Semaphore(self._concurrency)

            async def run(ticket_id: str) -> None:
                async with semaphore:
                    await self._sweep_ticket(ticket_id, report)

            await asyncio.gather(*(run(ticket_id) for ticket_id in ticket_ids))

        report.finished_at = self._clock.now()
        logger.info(
            "SLA sweep finished",
            extra={
                "tickets_evaluated": report.tickets_evaluated,
                "breaches_created": report.breaches_created,
                "escalations_applied": report.escalations_applied,
                "error_count": len(report.errors)
            }
        )
        return report

    async def _sweep_ticket(self, ticket_id: str, report: SweepReport) -> None:
        try:
            detected = await asyncio.wait_for(
                self._detect(ticket_id), timeout=self._store_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("SLA evaluation timed out", extra={"ticket_id": ticket_id})
            report.record_error(ticket_id, "evaluation timed out")
            return
        except ApplicationException as e:
            report.record_error(ticket_id, e.message)
            return
        except Exception as e:
            logger.error(
                "SLA evaluation failed",
                extra={"ticket_id": ticket_id, "error": str(e)},
                exc_info=True
            )
            report.record_error(ticket_id, str(e))
            return

        report.tickets_evaluated += 1
        if detected is None:
            return
        complaint, new_breaches, pending = detected
        report.breaches_created += len(new_breaches)

        try:
            await asyncio.wait_for(
                self._follow_up(complaint, new_breaches, pending, report),
                timeout=self._store_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "SLA escalation timed out; will retry next sweep",
                extra={"ticket_id": ticket_id}
            )
            report.record_error(ticket_id, "escalation timed out")

    async def _follow_up(
        self,
        complaint: Complaint,
        new_breaches: List[SLABreach],
        pending: List[SLABreach],
        report: SweepReport
    ) -> None:
        ticket_id = complaint.id
        for breach in new_breaches:
            await self._notify_breach(complaint, breach)

        for breach in pending:
            try:
                if await self._escalation.escalate_for_breach(breach.id):
                    report.escalations_applied += 1
            except ApplicationException as e:
                logger.warning(
                    "SLA escalation failed; will retry next sweep",
                    extra={"ticket_id": ticket_id, "breach_id": breach.id, "error": e.message}
                )
                report.record_error(ticket_id, e.message)
            except Exception as e:
                logger.error(
                    "SLA escalation error",
                    extra={"ticket_id": ticket_id, "breach_id": breach.id, "error": str(e)},
                    exc_info=True
                )
                report.record_error(ticket_id, str(e))

    async def _detect(
        self,
        ticket_id: str
    ) -> Optional[Tuple[Complaint, List[SLABreach], List[SLABreach]]]:
        """Record new breaches for one ticket. Returns (ticket, new, awaiting escalation)."""
        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await uow.complaints.get(ticket_id)
                if complaint is None or complaint.is_terminal:
                    return None
                now = self._clock.now()
                new_breaches: List[SLABreach] = []

                if not complaint.response_recorded and now > complaint.due_at:
                    breach = await self._record(uow, complaint, SLAType.RESPONSE, complaint.due_at, now)
                    if breach is not None:
                        new_breaches.append(breach)

                if complaint.status not in RESOLVED_STATUSES and now > complaint.resolution_due_at:
                    breach = await self._record(
                        uow, complaint, SLAType.RESOLUTION, complaint.resolution_due_at, now
                    )
                    if breach is not None:
                        new_breaches.append(breach)

                open_breaches = await uow.breaches.list(ticket_id=ticket_id)
                pending = [b for b in open_breaches if b.is_open and not b.escalated]

        return complaint, new_breaches, pending

    async def _record(self, uow, complaint: Complaint, breach_type: SLAType, due_at, now) -> Optional[SLABreach]:
        if await uow.breaches.find(complaint.id, breach_type, due_at) is not None:
            return None
        breach = SLABreach(
            ticket_id=complaint.id,
            breach_type=breach_type,
            detected_at=now,
            due_at=due_at,
        )
        await uow.breaches.add(breach)
        logger.warning(
            "SLA breach detected",
            extra={
                "ticket_id": complaint.id,
                "breach_type": breach_type.value,
                "due_at": due_at.isoformat(),
                "overdue_minutes": breach.overdue_minutes
            }
        )
        return breach

    async def _notify_breach(self, complaint: Complaint, breach: SLABreach) -> None:
        policy = self._policy_provider.get_policy()
        recipients = [complaint.assignee_id] + list(policy.breach_recipients)
        await self._dispatcher.dispatch(
            recipients,
            NotificationKind.SLA_BREACH,
            {
                "ticket_id": complaint.id,
                "ticket_number": complaint.ticket_number,
                "subject": complaint.subject,
                "priority": complaint.priority.value,
                "breach_type": breach.breach_type.value,
                "due_at": breach.due_at.isoformat(),
                "overdue_minutes": breach.overdue_minutes,
                "escalation_level": complaint.escalation_level,
            }
        )
