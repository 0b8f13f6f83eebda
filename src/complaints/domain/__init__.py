"""
Complaints Domain Layer
=======================

Domain layer for the complaints module.

Contains:
- Lifecycle: The ticket state machine
- Entities: Core business objects with identity (Complaint, SLABreach, ...)
- Value Objects: Immutable objects defined by attributes (SLATargets, SLAPolicy)
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.complaints.domain.lifecycle import (
    TRANSITIONS,
    WORKFLOW_TARGETS,
    can_transition,
    ensure_transition,
    is_terminal,
)
from src.complaints.domain.entities import (
    Actor,
    SYSTEM_ACTOR,
    Submitter,
    StatusChange,
    Complaint,
    ComplaintComment,
    Resolution,
    SLAConfig,
    SLABreach,
    RuleConditions,
    AssignmentRule,
    EscalationRequest,
    new_id,
)
from src.complaints.domain.value_objects import (
    SLATargets,
    SLADeadlines,
    SLACalculator,
    EscalationLevelConfig,
    SLAPolicy,
)

__all__ = [
    # Lifecycle
    "TRANSITIONS",
    "WORKFLOW_TARGETS",
    "can_transition",
    "ensure_transition",
    "is_terminal",
    # Entities
    "Actor",
    "SYSTEM_ACTOR",
    "Submitter",
    "StatusChange",
    "Complaint",
    "ComplaintComment",
    "Resolution",
    "SLAConfig",
    "SLABreach",
    "RuleConditions",
    "AssignmentRule",
    "EscalationRequest",
    "new_id",
    # Value Objects & Services
    "SLATargets",
    "SLADeadlines",
    "SLACalculator",
    "EscalationLevelConfig",
    "SLAPolicy",
]
