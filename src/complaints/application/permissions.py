"""
Permission Checks
=================

Role and ownership checks on a pre-resolved ``Actor``.
"""

from src.core import PermissionDeniedException
from src.complaints.domain import Actor, Complaint


def require_staff(actor: Actor, action: str) -> None:
    if not actor.is_staff:
        raise PermissionDeniedException(
            f"Only staff may {action}",
            {"actor_id": actor.id, "role": actor.role.value}
        )


def require_elevated(actor: Actor, action: str) -> None:
    if not actor.is_elevated:
        raise PermissionDeniedException(
            f"Only coordinators or admins may {action}",
            {"actor_id": actor.id, "role": actor.role.value}
        )


def is_submitter(actor: Actor, complaint: Complaint) -> bool:
    return actor.id == complaint.submitter.id


def require_submitter_or_staff(actor: Actor, complaint: Complaint, action: str) -> None:
    if not (actor.is_staff or is_submitter(actor, complaint)):
        raise PermissionDeniedException(
            f"Only the submitter or staff may {action}",
            {"actor_id": actor.id, "ticket_id": complaint.id}
        )


def require_submitter_or_elevated(actor: Actor, complaint: Complaint, action: str) -> None:
    if not (actor.is_elevated or is_submitter(actor, complaint)):
        raise PermissionDeniedException(
            f"Only the submitter or a coordinator may {action}",
            {"actor_id": actor.id, "ticket_id": complaint.id}
        )


def require_submitter_or_admin(actor: Actor, complaint: Complaint, action: str) -> None:
    if not (actor.is_admin or is_submitter(actor, complaint)):
        raise PermissionDeniedException(
            f"Only the submitter or an admin may {action}",
            {"actor_id": actor.id, "ticket_id": complaint.id}
        )
