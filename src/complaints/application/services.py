"""
Complaint Application Services
==============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Every mutation follows the same shape: take the per-ticket lock, open a
unit of work, reload the aggregate, apply domain methods, save. Leaving the
unit of work through an exception rolls every write back.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Tuple, Union

from src.config import (
    ActorRole, BreachStatus, ChangeKind, ComplaintStatus, SLAType, SubmitterType,
)
from src.core import (
    InvalidTransitionException, PermissionDeniedException, ResourceNotFoundException,
)
from src.complaints.application.dto import (
    AssignRequest, CommentCreateRequest, CommentUpdateRequest, ComplaintCreateRequest,
    ComplaintFilters, ComplaintUpdateRequest, ReopenRequest, StatusUpdateRequest,
    WithdrawRequest, validate_payload,
)
from src.complaints.application.interfaces import IUnitOfWork, UnitOfWorkFactory
from src.complaints.application.permissions import (
    is_submitter, require_staff, require_submitter_or_admin, require_submitter_or_staff,
)
from src.complaints.application.rules import AssignmentRuleEngine
from src.complaints.application.sla import SLAPolicyService
from src.complaints.domain import (
    Actor, Complaint, ComplaintComment, SLACalculator, SYSTEM_ACTOR, StatusChange,
    Submitter, WORKFLOW_TARGETS, new_id,
)
from src.shared.infrastructure.clock import Clock
from src.shared.infrastructure.locks import KeyedLocks
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

HistoryEntry = Union[StatusChange, ComplaintComment]

_SUBMITTER_TYPES = {
    ActorRole.STUDENT: SubmitterType.STUDENT,
    ActorRole.PARENT: SubmitterType.PARENT,
}


@dataclass
class TicketHistory:
    """Status changes and comments of one ticket."""
    ticket_id: str
    status_changes: List[StatusChange] = field(default_factory=list)
    comments: List[ComplaintComment] = field(default_factory=list)

    def entries(self) -> List[HistoryEntry]:
        """Both streams merged by time; status changes first on ties."""
        merged: List[Tuple[tuple, HistoryEntry]] = []
        for index, change in enumerate(self.status_changes):
            merged.append(((change.timestamp, 0, index), change))
        for index, comment in enumerate(self.comments):
            merged.append(((comment.created_at, 1, index), comment))
        return [entry for _, entry in sorted(merged, key=lambda item: item[0])]


def format_ticket_number(year: int, sequence: int) -> str:
    return f"CMP-{year}-{sequence:05d}"


class TicketService:
    """
    Ticket intake, transitions, edits, comments and reads.

    Moves into resolved, verified and reopened belong to the resolution
    workflow and are refused here.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: Clock,
        locks: KeyedLocks,
        sla_policy: SLAPolicyService,
        rule_engine: AssignmentRuleEngine,
        reopen_grace_days: int = 7
    ):
        self._uow_factory = uow_factory
        self._clock = clock
        self._locks = locks
        self._sla_policy = sla_policy
        self._rule_engine = rule_engine
        self._reopen_grace = timedelta(days=reopen_grace_days)
        # Ticket numbers are sequential per year
        self._intake_lock = asyncio.Lock()

    # ========== Intake ==========

    async def create(self, actor: Actor, request) -> Complaint:
        """
        Raise a new complaint.

        Assigns the ticket through the rule engine, computes both SLA
        deadlines and records the creation in the status history. A winning
        rule with ``auto_acknowledge`` acknowledges the ticket immediately.

        Args:
            actor: Who is filing the complaint
            request: ComplaintCreateRequest or raw dict

        Returns:
            The persisted Complaint

        Raises:
            ValidationException: on missing or invalid fields
            PermissionDeniedException: when a non-staff actor files for someone else
        """
        request = validate_payload(ComplaintCreateRequest, request)
        submitter = self._resolve_submitter(actor, request)

        async with self._intake_lock:
            async with self._uow_factory() as uow:
                now = self._clock.now()
                sequence = await uow.complaints.count_created_in_year(now.year) + 1
                deadlines = await self._sla_policy.compute_deadlines(
                    uow, request.category, request.priority, now
                )
                rule = await self._rule_engine.match(
                    uow, request.category, request.priority, request.tags
                )
                if rule is not None:
                    assignee = rule.assignee_id
                else:
                    assignee = self._rule_engine.default_assignee

                complaint = Complaint(
                    id=new_id(),
                    ticket_number=format_ticket_number(now.year, sequence),
                    subject=request.subject,
                    description=request.description,
                    category=request.category,
                    priority=request.priority,
                    submitter=submitter,
                    student_id=request.student_id,
                    assignee_id=assignee,
                    source=request.source,
                    is_sensitive=request.is_sensitive,
                    tags=list(request.tags),
                    created_at=now,
                    updated_at=now,
                    due_at=deadlines.due_at,
                    resolution_due_at=deadlines.resolution_due_at,
                )
                changes = [StatusChange(
                    ticket_id=complaint.id,
                    from_status=None,
                    to_status=ComplaintStatus.SUBMITTED,
                    actor_id=actor.id,
                    timestamp=now,
                    note=f"Assigned to {assignee}",
                )]
                if rule is not None and rule.auto_acknowledge:
                    changes.append(complaint.transition(
                        ComplaintStatus.ACKNOWLEDGED,
                        SYSTEM_ACTOR.id,
                        now,
                        note=f"Auto-acknowledged by rule '{rule.name}'",
                    ))

                await uow.complaints.add(complaint)
                for change in changes:
                    await uow.status_changes.add(change)

        logger.info(
            "Complaint created",
            extra={
                "ticket_id": complaint.id,
                "ticket_number": complaint.ticket_number,
                "category": complaint.category.value,
                "priority": complaint.priority.value,
                "assignee_id": complaint.assignee_id,
                "sla_source": deadlines.targets.source
            }
        )
        return complaint

    def _resolve_submitter(self, actor: Actor, request: ComplaintCreateRequest) -> Submitter:
        submitter_id = request.submitter_id or actor.id
        if submitter_id != actor.id and not actor.is_staff:
            raise PermissionDeniedException(
                "Only staff may file a complaint on someone else's behalf",
                {"actor_id": actor.id}
            )
        submitter_type = request.submitter_type
        if submitter_type is None:
            submitter_type = _SUBMITTER_TYPES.get(actor.role, SubmitterType.STAFF)
        return Submitter(id=submitter_id, type=submitter_type)

    # ========== Transitions ==========

    async def acknowledge(self, actor: Actor, ticket_id: str, note: str = "") -> Complaint:
        """
        Record the first response to a ticket.

        Only valid from ``submitted``. An open response breach is marked
        addressed in the same unit of work.
        """
        require_staff(actor, "acknowledge complaints")
        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                now = self._clock.now()
                change = complaint.transition(
                    ComplaintStatus.ACKNOWLEDGED, actor.id, now, note or "Acknowledged"
                )
                open_breaches = await uow.breaches.list(
                    ticket_id=ticket_id,
                    status=BreachStatus.OPEN,
                    breach_type=SLAType.RESPONSE,
                )
                for breach in open_breaches:
                    breach.close(BreachStatus.ADDRESSED, actor.id, "Response recorded", now)
                    await uow.breaches.save(breach)

                await uow.complaints.save(complaint)
                await uow.status_changes.add(change)

        logger.info("Complaint acknowledged", extra={"ticket_id": ticket_id, "actor_id": actor.id})
        return complaint

    async def update_status(self, actor: Actor, ticket_id: str, request) -> Complaint:
        """
        Move a ticket along the state machine.

        Raises:
            InvalidTransitionException: for edges not in the state machine and
                for targets owned by the resolution workflow
            PermissionDeniedException: when the actor may not make the move
        """
        request = validate_payload(StatusUpdateRequest, request)
        target = request.status

        if target in WORKFLOW_TARGETS:
            raise InvalidTransitionException(
                f"Status '{target.value}' is set through {WORKFLOW_TARGETS[target]}",
                to_status=target.value
            )
        if target == ComplaintStatus.ACKNOWLEDGED:
            return await self.acknowledge(actor, ticket_id, request.note)
        if target == ComplaintStatus.WITHDRAWN:
            return await self.withdraw(actor, ticket_id, WithdrawRequest(reason=request.note))

        require_staff(actor, "change complaint status")
        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                change = complaint.transition(target, actor.id, self._clock.now(), request.note)
                await uow.complaints.save(complaint)
                await uow.status_changes.add(change)

        logger.info(
            "Complaint status changed",
            extra={
                "ticket_id": ticket_id,
                "from_status": change.from_status.value,
                "to_status": target.value
            }
        )
        return complaint

    async def withdraw(self, actor: Actor, ticket_id: str, request=None) -> Complaint:
        """Withdraw a ticket. Only its submitter or an admin may do this."""
        request = validate_payload(WithdrawRequest, request or {})
        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                require_submitter_or_admin(actor, complaint, "withdraw a complaint")
                change = complaint.transition(
                    ComplaintStatus.WITHDRAWN,
                    actor.id,
                    self._clock.now(),
                    request.reason or "Withdrawn",
                )
                await uow.complaints.save(complaint)
                await uow.status_changes.add(change)

        logger.info("Complaint withdrawn", extra={"ticket_id": ticket_id, "actor_id": actor.id})
        return complaint

    async def reopen(self, actor: Actor, ticket_id: str, request) -> Complaint:
        """
        Reopen a resolved ticket, or a closed one within the grace period.

        Reopening a resolved ticket supersedes its pending resolution.
        """
        request = validate_payload(ReopenRequest, request)
        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                require_submitter_or_staff(actor, complaint, "reopen a complaint")
                now = self._clock.now()

                if complaint.status == ComplaintStatus.CLOSED:
                    closed_at = complaint.closed_at or complaint.updated_at
                    if now - closed_at > self._reopen_grace:
                        raise InvalidTransitionException(
                            "Reopen window has passed",
                            from_status=complaint.status.value,
                            to_status=ComplaintStatus.REOPENED.value,
                            details={"grace_days": self._reopen_grace.days}
                        )
                previous = complaint.status
                change = complaint.transition(ComplaintStatus.REOPENED, actor.id, now, request.reason)
                resolution = await uow.resolutions.get_active(ticket_id)
                if resolution is not None:
                    if previous == ComplaintStatus.RESOLVED:
                        resolution.reject(f"Superseded by reopen: {request.reason}")
                    else:
                        resolution.supersede()
                    await uow.resolutions.save(resolution)
                complaint.reopen_count += 1
                await uow.complaints.save(complaint)
                await uow.status_changes.add(change)

        logger.info(
            "Complaint reopened",
            extra={"ticket_id": ticket_id, "reopen_count": complaint.reopen_count}
        )
        return complaint

    # ========== Edits ==========

    async def update_details(self, actor: Actor, ticket_id: str, request) -> Complaint:
        """
        Edit a ticket.

        Submitters may edit subject and description of their own ticket.
        Priority changes recompute deadlines from creation time;
        reassignment recomputes them from the reassignment time.
        """
        request = validate_payload(ComplaintUpdateRequest, request)
        staff_fields = {"priority", "assignee_id", "is_sensitive", "tags"}

        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                if not actor.is_staff:
                    if not is_submitter(actor, complaint) or staff_fields & request.model_fields_set:
                        raise PermissionDeniedException(
                            "Only staff may change priority, assignment, tags or sensitivity",
                            {"actor_id": actor.id, "ticket_id": ticket_id}
                        )
                if complaint.is_terminal:
                    raise InvalidTransitionException(
                        f"Cannot edit a {complaint.status.value} complaint",
                        from_status=complaint.status.value
                    )

                now = self._clock.now()
                changes: List[StatusChange] = []
                if request.subject is not None:
                    complaint.subject = request.subject
                if request.description is not None:
                    complaint.description = request.description
                if request.tags is not None:
                    complaint.tags = list(request.tags)
                if request.is_sensitive is not None:
                    complaint.is_sensitive = request.is_sensitive

                if request.priority is not None and request.priority != complaint.priority:
                    old_priority = complaint.priority
                    complaint.priority = request.priority
                    changes.append(await self._recompute_deadlines(
                        uow, complaint, complaint.created_at, actor.id, now,
                        f"Priority changed from {old_priority.value} to {request.priority.value}"
                    ))

                if request.assignee_id is not None and request.assignee_id != complaint.assignee_id:
                    changes.extend(await self._reassign(uow, complaint, request.assignee_id, actor.id, now, ""))

                complaint.updated_at = now
                await uow.complaints.save(complaint)
                for change in changes:
                    await uow.status_changes.add(change)

        return complaint

    async def assign(self, actor: Actor, ticket_id: str, request) -> Complaint:
        """Reassign a ticket; its SLA clock restarts at the reassignment time."""
        request = validate_payload(AssignRequest, request)
        require_staff(actor, "assign complaints")

        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                if complaint.is_terminal:
                    raise InvalidTransitionException(
                        f"Cannot assign a {complaint.status.value} complaint",
                        from_status=complaint.status.value
                    )
                if request.assignee_id == complaint.assignee_id:
                    return complaint
                changes = await self._reassign(
                    uow, complaint, request.assignee_id, actor.id, self._clock.now(), request.note
                )
                await uow.complaints.save(complaint)
                for change in changes:
                    await uow.status_changes.add(change)

        logger.info(
            "Complaint reassigned",
            extra={"ticket_id": ticket_id, "assignee_id": request.assignee_id}
        )
        return complaint

    async def _reassign(
        self,
        uow: IUnitOfWork,
        complaint: Complaint,
        assignee_id: str,
        actor_id: str,
        now,
        note: str
    ) -> List[StatusChange]:
        previous = complaint.assignee_id
        complaint.assignee_id = assignee_id
        assignment = complaint.annotate(
            ChangeKind.ASSIGNMENT, actor_id, now,
            note or f"Reassigned from {previous} to {assignee_id}"
        )
        recompute = await self._recompute_deadlines(
            uow, complaint, now, actor_id, now, f"Reassigned to {assignee_id}"
        )
        return [assignment, recompute]

    async def _recompute_deadlines(
        self,
        uow: IUnitOfWork,
        complaint: Complaint,
        base,
        actor_id: str,
        now,
        reason: str
    ) -> StatusChange:
        targets = await self._sla_policy.resolve_config(complaint.category, complaint.priority, uow)
        deadlines = SLACalculator.calculate_deadlines(base, targets)
        complaint.apply_deadlines(deadlines.due_at, deadlines.resolution_due_at)
        return complaint.annotate(
            ChangeKind.SLA_RECOMPUTE,
            actor_id,
            now,
            f"{reason}; due {deadlines.due_at.isoformat()}, "
            f"resolution due {deadlines.resolution_due_at.isoformat()}"
        )

    # ========== Comments ==========

    async def comment(self, actor: Actor, ticket_id: str, request) -> ComplaintComment:
        """Add a comment. Allowed in every status except withdrawn."""
        request = validate_payload(CommentCreateRequest, request)
        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                require_submitter_or_staff(actor, complaint, "comment on a complaint")
                if request.internal and not actor.is_staff:
                    raise PermissionDeniedException(
                        "Only staff may add internal comments",
                        {"actor_id": actor.id}
                    )
                if complaint.status == ComplaintStatus.WITHDRAWN:
                    raise InvalidTransitionException(
                        "Cannot comment on a withdrawn complaint",
                        from_status=complaint.status.value
                    )
                comment = ComplaintComment(
                    ticket_id=ticket_id,
                    author_id=actor.id,
                    body=request.body,
                    internal=request.internal,
                    created_at=self._clock.now(),
                )
                await uow.comments.add(comment)
        return comment

    async def edit_comment(self, actor: Actor, comment_id: str, request) -> ComplaintComment:
        request = validate_payload(CommentUpdateRequest, request)
        async with self._uow_factory() as uow:
            comment = await self._load_comment(uow, comment_id, actor)
            comment.body = request.body
            comment.updated_at = self._clock.now()
            await uow.comments.save(comment)
        return comment

    async def delete_comment(self, actor: Actor, comment_id: str) -> None:
        async with self._uow_factory() as uow:
            await self._load_comment(uow, comment_id, actor)
            await uow.comments.delete(comment_id)
        logger.info("Comment deleted", extra={"comment_id": comment_id, "actor_id": actor.id})

    async def _load_comment(self, uow: IUnitOfWork, comment_id: str, actor: Actor) -> ComplaintComment:
        comment = await uow.comments.get(comment_id)
        if comment is None:
            raise ResourceNotFoundException("ComplaintComment", comment_id)
        if not comment.can_be_changed_by(actor):
            raise PermissionDeniedException(
                "Only the author or an admin may change a comment",
                {"actor_id": actor.id, "comment_id": comment_id}
            )
        return comment

    # ========== Reads ==========

    async def get(self, actor: Actor, ticket_id: str) -> Complaint:
        async with self._uow_factory() as uow:
            complaint = await self._load(uow, ticket_id)
        require_submitter_or_staff(actor, complaint, "view this complaint")
        return complaint

    async def list(self, actor: Actor, filters: Optional[ComplaintFilters] = None) -> Tuple[List[Complaint], int]:
        """List complaints; non-staff actors only see their own."""
        filters = filters or ComplaintFilters()
        if not actor.is_staff:
            filters = filters.model_copy(update={"submitter_id": actor.id})
        async with self._uow_factory() as uow:
            items = await uow.complaints.list(filters)
            total = await uow.complaints.count(filters)
        return items, total

    async def list_for_student(
        self,
        actor: Actor,
        student_id: str,
        filters: Optional[ComplaintFilters] = None
    ) -> Tuple[List[Complaint], int]:
        """
        List complaints concerning one student.

        Staff see every complaint about the student. Parents and students
        see the ones they filed themselves.
        """
        filters = (filters or ComplaintFilters()).model_copy(update={"student_id": student_id})
        return await self.list(actor, filters)

    async def status_changes(self, actor: Actor, ticket_id: str) -> List[StatusChange]:
        async with self._uow_factory() as uow:
            complaint = await self._load(uow, ticket_id)
            require_submitter_or_staff(actor, complaint, "view this complaint")
            return await uow.status_changes.list_for_ticket(ticket_id)

    async def comments(
        self,
        actor: Actor,
        ticket_id: str,
        include_internal: bool = True
    ) -> List[ComplaintComment]:
        async with self._uow_factory() as uow:
            complaint = await self._load(uow, ticket_id)
            require_submitter_or_staff(actor, complaint, "view this complaint")
            return await uow.comments.list_for_ticket(
                ticket_id, include_internal=include_internal and actor.is_staff
            )

    async def history(self, actor: Actor, ticket_id: str) -> TicketHistory:
        """Status changes and comments of a ticket; internal comments only for staff."""
        async with self._uow_factory() as uow:
            complaint = await self._load(uow, ticket_id)
            require_submitter_or_staff(actor, complaint, "view this complaint")
            return TicketHistory(
                ticket_id=ticket_id,
                status_changes=await uow.status_changes.list_for_ticket(ticket_id),
                comments=await uow.comments.list_for_ticket(
                    ticket_id, include_internal=actor.is_staff
                ),
            )

    async def _load(self, uow: IUnitOfWork, ticket_id: str) -> Complaint:
        complaint = await uow.complaints.get(ticket_id)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", ticket_id)
        return complaint
