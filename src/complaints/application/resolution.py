"""
Resolution Workflow
===================

Submit, edit, verify and reject resolutions.

- submit: in_progress -> resolved, creates the single active resolution
- update: edits the active resolution until it is verified or rejected
- verify: resolved -> verified -> closed, ticket becomes survey eligible
- reject: resolved -> reopened -> in_progress, resolution kept inactive
"""

from typing import List

from src.config import ComplaintStatus, NotificationKind, RESOLVED_STATUSES
from src.core import (
    AlreadySubmittedException, InvalidTransitionException, ResourceNotFoundException,
)
from src.complaints.application.dto import (
    ResolutionRejectRequest, ResolutionSubmitRequest, ResolutionUpdateRequest, validate_payload,
)
from src.complaints.application.interfaces import IUnitOfWork, UnitOfWorkFactory
from src.complaints.application.notifications import NotificationDispatcher
from src.complaints.application.permissions import (
    require_staff, require_submitter_or_elevated, require_submitter_or_staff,
)
from src.complaints.domain import Actor, Complaint, Resolution
from src.shared.infrastructure.clock import Clock
from src.shared.infrastructure.locks import KeyedLocks
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ResolutionWorkflow:
    """Owns every move into resolved, verified and reopened-by-rejection."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: Clock,
        locks: KeyedLocks,
        dispatcher: NotificationDispatcher
    ):
        self._uow_factory = uow_factory
        self._clock = clock
        self._locks = locks
        self._dispatcher = dispatcher

    async def submit_resolution(self, actor: Actor, ticket_id: str, request) -> Resolution:
        """
        Record a resolution and move the ticket to ``resolved``.

        Raises:
            AlreadySubmittedException: if the ticket already has an active resolution
            InvalidTransitionException: if the ticket is not in progress
        """
        require_staff(actor, "resolve complaints")
        request = validate_payload(ResolutionSubmitRequest, request)

        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                if complaint.status in RESOLVED_STATUSES or await uow.resolutions.get_active(ticket_id):
                    raise AlreadySubmittedException(
                        "A resolution has already been submitted for this complaint",
                        {"ticket_id": ticket_id, "status": complaint.status.value}
                    )
                if complaint.status != ComplaintStatus.IN_PROGRESS:
                    raise InvalidTransitionException(
                        "Only in-progress complaints can be resolved",
                        from_status=complaint.status.value,
                        to_status=ComplaintStatus.RESOLVED.value
                    )

                now = self._clock.now()
                resolution = Resolution(
                    ticket_id=ticket_id,
                    resolved_by=actor.id,
                    summary=request.summary,
                    actions_taken=list(request.actions_taken),
                    root_cause=request.root_cause,
                    preventive_measures=list(request.preventive_measures),
                    submitted_at=now,
                )
                change = complaint.transition(
                    ComplaintStatus.RESOLVED, actor.id, now, "Resolution submitted"
                )
                await uow.resolutions.add(resolution)
                await uow.complaints.save(complaint)
                await uow.status_changes.add(change)

        logger.info(
            "Resolution submitted",
            extra={"ticket_id": ticket_id, "resolution_id": resolution.id}
        )
        await self._dispatcher.send(
            complaint.submitter.id,
            NotificationKind.RESOLUTION_SUBMITTED,
            {
                "ticket_id": complaint.id,
                "ticket_number": complaint.ticket_number,
                "subject": complaint.subject,
                "summary": resolution.summary,
            }
        )
        return resolution

    async def update_resolution(self, actor: Actor, ticket_id: str, request) -> Resolution:
        """
        Edit the resolution while it still awaits verification.

        Raises:
            InvalidTransitionException: once the resolution was verified or rejected
        """
        require_staff(actor, "edit resolutions")
        request = validate_payload(ResolutionUpdateRequest, request)

        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                resolution = await self._pending_resolution(uow, complaint)

                if request.summary is not None:
                    resolution.summary = request.summary
                if request.actions_taken is not None:
                    resolution.actions_taken = list(request.actions_taken)
                if request.root_cause is not None:
                    resolution.root_cause = request.root_cause
                if request.preventive_measures is not None:
                    resolution.preventive_measures = list(request.preventive_measures)
                await uow.resolutions.save(resolution)

        logger.info(
            "Resolution updated",
            extra={"ticket_id": ticket_id, "resolution_id": resolution.id, "updated_by": actor.id}
        )
        return resolution

    async def verify_resolution(self, actor: Actor, ticket_id: str, note: str = "") -> Complaint:
        """Accept the resolution: resolved -> verified -> closed."""
        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                require_submitter_or_elevated(actor, complaint, "verify a resolution")
                resolution = await self._pending_resolution(uow, complaint)

                now = self._clock.now()
                resolution.verify(actor.id, now)
                verified = complaint.transition(
                    ComplaintStatus.VERIFIED, actor.id, now, note or "Resolution verified"
                )
                closed = complaint.transition(ComplaintStatus.CLOSED, actor.id, now, "Closed after verification")
                complaint.survey_eligible = True

                await uow.resolutions.save(resolution)
                await uow.complaints.save(complaint)
                await uow.status_changes.add(verified)
                await uow.status_changes.add(closed)

        logger.info("Resolution verified", extra={"ticket_id": ticket_id, "verified_by": actor.id})
        return complaint

    async def reject_resolution(self, actor: Actor, ticket_id: str, request) -> Complaint:
        """Reject the resolution: resolved -> reopened -> in_progress."""
        request = validate_payload(ResolutionRejectRequest, request)

        async with self._locks.hold(ticket_id):
            async with self._uow_factory() as uow:
                complaint = await self._load(uow, ticket_id)
                require_submitter_or_elevated(actor, complaint, "reject a resolution")
                resolution = await self._pending_resolution(uow, complaint)

                now = self._clock.now()
                resolution.reject(request.reason)
                reopened = complaint.transition(
                    ComplaintStatus.REOPENED, actor.id, now, f"Resolution rejected: {request.reason}"
                )
                resumed = complaint.transition(
                    ComplaintStatus.IN_PROGRESS, actor.id, now, "Work resumed after rejection"
                )
                complaint.reopen_count += 1

                await uow.resolutions.save(resolution)
                await uow.complaints.save(complaint)
                await uow.status_changes.add(reopened)
                await uow.status_changes.add(resumed)

        logger.info(
            "Resolution rejected",
            extra={"ticket_id": ticket_id, "reopen_count": complaint.reopen_count}
        )
        return complaint

    async def get_resolution(self, actor: Actor, ticket_id: str) -> Resolution:
        async with self._uow_factory() as uow:
            complaint = await self._load(uow, ticket_id)
            require_submitter_or_staff(actor, complaint, "view this complaint")
            resolution = await uow.resolutions.get_active(ticket_id)
        if resolution is None:
            raise ResourceNotFoundException("Resolution", ticket_id)
        return resolution

    async def list_resolutions(self, actor: Actor, ticket_id: str) -> List[Resolution]:
        """Every resolution of a ticket, rejected ones included."""
        async with self._uow_factory() as uow:
            complaint = await self._load(uow, ticket_id)
            require_submitter_or_staff(actor, complaint, "view this complaint")
            return await uow.resolutions.list_for_ticket(ticket_id)

    async def _pending_resolution(self, uow: IUnitOfWork, complaint: Complaint) -> Resolution:
        if complaint.status != ComplaintStatus.RESOLVED:
            raise InvalidTransitionException(
                "Complaint has no resolution awaiting verification",
                from_status=complaint.status.value
            )
        resolution = await uow.resolutions.get_active(complaint.id)
        if resolution is None:
            raise ResourceNotFoundException("Resolution", complaint.id)
        return resolution

    async def _load(self, uow: IUnitOfWork, ticket_id: str) -> Complaint:
        complaint = await uow.complaints.get(ticket_id)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", ticket_id)
        return complaint
