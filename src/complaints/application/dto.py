"""
Complaint Application DTOs
==========================

Data Transfer Objects for the complaints API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from src.config import (
    BreachStatus, ChangeKind, ComplaintCategory, ComplaintPriority,
    ComplaintSource, ComplaintStatus, SLAType, SubmitterType, VerificationStatus,
)
from src.core import ValidationException, field_errors

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_payload(model: Type[ModelT], data: Any) -> ModelT:
    """
    Validate raw input into a request DTO.

    Raises:
        ValidationException: with a field -> message map
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationException(
            f"Invalid {model.__name__}",
            fields=field_errors(e.errors())
        ) from e


def _strip_required(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


def _normalize_tags(tags: List[str]) -> List[str]:
    seen = []
    for tag in tags:
        tag = tag.strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


# ========== Filters ==========

class ComplaintFilters(BaseModel):
    """Query filters for listing complaints. Unset fields match anything."""
    model_config = ConfigDict(frozen=True)

    search: Optional[str] = Field(None, description="Case-insensitive match on subject, description or ticket number")
    status: Optional[ComplaintStatus] = None
    priority: Optional[ComplaintPriority] = None
    category: Optional[ComplaintCategory] = None
    assignee_id: Optional[str] = None
    submitter_id: Optional[str] = None
    submitter_type: Optional[SubmitterType] = None
    student_id: Optional[str] = None
    is_sensitive: Optional[bool] = None
    escalated: Optional[bool] = None
    sla_breached: Optional[bool] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    limit: Optional[int] = Field(None, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


# ========== Ticket Request DTOs ==========

class ComplaintCreateRequest(BaseModel):
    """Request model for raising a complaint."""
    subject: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    category: ComplaintCategory
    priority: ComplaintPriority = ComplaintPriority.MEDIUM
    submitter_id: Optional[str] = Field(
        None,
        description="Filing on behalf of someone else (staff only); defaults to the actor"
    )
    submitter_type: Optional[SubmitterType] = None
    student_id: Optional[str] = None
    source: ComplaintSource = ComplaintSource.WEB
    is_sensitive: bool = False
    tags: List[str] = Field(default_factory=list)

    @field_validator("subject", "description")
    @classmethod
    def validate_text(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        return _normalize_tags(v)


class ComplaintUpdateRequest(BaseModel):
    """Partial edit of complaint details."""
    subject: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    priority: Optional[ComplaintPriority] = None
    assignee_id: Optional[str] = Field(None, min_length=1)
    is_sensitive: Optional[bool] = None
    tags: Optional[List[str]] = None

    @field_validator("subject", "description")
    @classmethod
    def validate_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _strip_required(v)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return _normalize_tags(v)


class StatusUpdateRequest(BaseModel):
    status: ComplaintStatus
    note: str = Field(default="", max_length=2000)


class AssignRequest(BaseModel):
    assignee_id: str = Field(..., min_length=1)
    note: str = Field(default="", max_length=2000)


class WithdrawRequest(BaseModel):
    reason: str = Field(default="", max_length=2000)


class ReopenRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class CommentCreateRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)
    internal: bool = False

    @field_validator("body")
    @classmethod
    def validate_body(cls, v: str) -> str:
        return _strip_required(v)


class CommentUpdateRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)

    @field_validator("body")
    @classmethod
    def validate_body(cls, v: str) -> str:
        return _strip_required(v)


# ========== Resolution Request DTOs ==========

class ResolutionSubmitRequest(BaseModel):
    summary: str = Field(..., min_length=1, max_length=2000)
    actions_taken: List[str] = Field(default_factory=list)
    root_cause: Optional[str] = Field(None, max_length=2000)
    preventive_measures: List[str] = Field(default_factory=list)

    @field_validator("summary")
    @classmethod
    def validate_summary(cls, v: str) -> str:
        return _strip_required(v)


class ResolutionUpdateRequest(BaseModel):
    """Edit a resolution while it awaits verification. Unset fields are kept."""
    summary: Optional[str] = Field(None, min_length=1, max_length=2000)
    actions_taken: Optional[List[str]] = None
    root_cause: Optional[str] = Field(None, max_length=2000)
    preventive_measures: Optional[List[str]] = None

    @field_validator("summary")
    @classmethod
    def validate_summary(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _strip_required(v)


class ResolutionRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


# ========== SLA Request DTOs ==========

class SLAConfigCreateRequest(BaseModel):
    """Create SLA targets for a (category, priority) pair; no category = wildcard."""
    category: Optional[ComplaintCategory] = None
    priority: ComplaintPriority
    response_minutes: int = Field(..., gt=0)
    resolution_minutes: int = Field(..., gt=0)
    enabled: bool = True

    @model_validator(mode="after")
    def validate_targets(self) -> "SLAConfigCreateRequest":
        if self.response_minutes > self.resolution_minutes:
            raise ValueError("response_minutes cannot exceed resolution_minutes")
        return self


class SLAConfigUpdateRequest(BaseModel):
    response_minutes: Optional[int] = Field(None, gt=0)
    resolution_minutes: Optional[int] = Field(None, gt=0)
    enabled: Optional[bool] = None


class NoteRequest(BaseModel):
    """Optional free-text note attached to an action."""
    note: str = Field(default="", max_length=2000)


class EscalateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    target_level: Optional[int] = Field(None, ge=1)
    escalated_to: Optional[str] = Field(None, min_length=1)


# ========== Assignment Rule Request DTOs ==========

class RuleConditionsDTO(BaseModel):
    categories: List[ComplaintCategory] = Field(default_factory=list)
    priorities: List[ComplaintPriority] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class AssignmentRuleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    conditions: RuleConditionsDTO = Field(default_factory=RuleConditionsDTO)
    assignee_id: str = Field(..., min_length=1)
    escalate_to: Optional[str] = None
    auto_acknowledge: bool = False
    enabled: bool = True


class AssignmentRuleUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    conditions: Optional[RuleConditionsDTO] = None
    assignee_id: Optional[str] = Field(None, min_length=1)
    escalate_to: Optional[str] = None
    auto_acknowledge: Optional[bool] = None


class RuleReorderRequest(BaseModel):
    rule_ids: List[str] = Field(..., description="Every rule id, in the new order")


class ToggleRequest(BaseModel):
    enabled: bool


# ========== Response DTOs ==========

class ComplaintResponse(BaseModel):
    """Response model for a complaint."""
    id: str
    ticket_number: str
    subject: str
    description: str
    category: ComplaintCategory
    priority: ComplaintPriority
    status: ComplaintStatus
    submitter_id: str
    submitter_type: SubmitterType
    student_id: Optional[str] = None
    assignee_id: Optional[str] = None
    source: ComplaintSource
    is_sensitive: bool
    tags: List[str]
    created_at: datetime
    updated_at: datetime
    due_at: datetime
    resolution_due_at: datetime
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    reopened_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    escalation_level: int
    is_escalated: bool
    escalated_to: Optional[str] = None
    escalated_at: Optional[datetime] = None
    reopen_count: int
    survey_eligible: bool
    version: int

    @classmethod
    def from_domain(cls, complaint: Any) -> "ComplaintResponse":
        return cls(
            id=complaint.id,
            ticket_number=complaint.ticket_number,
            subject=complaint.subject,
            description=complaint.description,
            category=complaint.category,
            priority=complaint.priority,
            status=complaint.status,
            submitter_id=complaint.submitter.id,
            submitter_type=complaint.submitter.type,
            student_id=complaint.student_id,
            assignee_id=complaint.assignee_id,
            source=complaint.source,
            is_sensitive=complaint.is_sensitive,
            tags=list(complaint.tags),
            created_at=complaint.created_at,
            updated_at=complaint.updated_at,
            due_at=complaint.due_at,
            resolution_due_at=complaint.resolution_due_at,
            acknowledged_at=complaint.acknowledged_at,
            resolved_at=complaint.resolved_at,
            closed_at=complaint.closed_at,
            reopened_at=complaint.reopened_at,
            withdrawn_at=complaint.withdrawn_at,
            escalation_level=complaint.escalation_level,
            is_escalated=complaint.is_escalated,
            escalated_to=complaint.escalated_to,
            escalated_at=complaint.escalated_at,
            reopen_count=complaint.reopen_count,
            survey_eligible=complaint.survey_eligible,
            version=complaint.version,
        )


class ComplaintListResponse(BaseModel):
    items: List[ComplaintResponse]
    total: int = Field(..., description="Total number of complaints matching filter")
    limit: Optional[int] = None
    offset: int = 0


class StatusChangeResponse(BaseModel):
    id: str
    ticket_id: str
    from_status: Optional[ComplaintStatus] = None
    to_status: ComplaintStatus
    actor_id: str
    timestamp: datetime
    note: str
    kind: ChangeKind

    @classmethod
    def from_domain(cls, change: Any) -> "StatusChangeResponse":
        return cls(
            id=change.id,
            ticket_id=change.ticket_id,
            from_status=change.from_status,
            to_status=change.to_status,
            actor_id=change.actor_id,
            timestamp=change.timestamp,
            note=change.note,
            kind=change.kind,
        )


class CommentResponse(BaseModel):
    id: str
    ticket_id: str
    author_id: str
    body: str
    internal: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, comment: Any) -> "CommentResponse":
        return cls(
            id=comment.id,
            ticket_id=comment.ticket_id,
            author_id=comment.author_id,
            body=comment.body,
            internal=comment.internal,
            created_at=comment.created_at,
            updated_at=comment.updated_at,
        )


class HistoryEntryResponse(BaseModel):
    """One entry of a ticket's merged timeline."""
    entry_type: str = Field(..., description="'status_change' or 'comment'")
    timestamp: datetime
    status_change: Optional[StatusChangeResponse] = None
    comment: Optional[CommentResponse] = None


class ResolutionResponse(BaseModel):
    id: str
    ticket_id: str
    resolved_by: str
    summary: str
    actions_taken: List[str]
    root_cause: Optional[str] = None
    preventive_measures: List[str]
    submitted_at: datetime
    verification: VerificationStatus
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    active: bool

    @classmethod
    def from_domain(cls, resolution: Any) -> "ResolutionResponse":
        return cls(
            id=resolution.id,
            ticket_id=resolution.ticket_id,
            resolved_by=resolution.resolved_by,
            summary=resolution.summary,
            actions_taken=list(resolution.actions_taken),
            root_cause=resolution.root_cause,
            preventive_measures=list(resolution.preventive_measures),
            submitted_at=resolution.submitted_at,
            verification=resolution.verification,
            verified_by=resolution.verified_by,
            verified_at=resolution.verified_at,
            rejection_reason=resolution.rejection_reason,
            active=resolution.active,
        )


class SLAConfigResponse(BaseModel):
    id: str
    category: Optional[ComplaintCategory] = None
    priority: ComplaintPriority
    response_minutes: int
    resolution_minutes: int
    enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, config: Any) -> "SLAConfigResponse":
        return cls(
            id=config.id,
            category=config.category,
            priority=config.priority,
            response_minutes=config.response_minutes,
            resolution_minutes=config.resolution_minutes,
            enabled=config.enabled,
            created_at=config.created_at,
            updated_at=config.updated_at,
        )


class SLATargetsResponse(BaseModel):
    response_minutes: int
    resolution_minutes: int
    source: str
    config_id: Optional[str] = None


class SLABreachResponse(BaseModel):
    id: str
    ticket_id: str
    breach_type: SLAType
    detected_at: datetime
    due_at: datetime
    overdue_minutes: int
    status: BreachStatus
    note: Optional[str] = None
    escalated: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @classmethod
    def from_domain(cls, breach: Any) -> "SLABreachResponse":
        return cls(
            id=breach.id,
            ticket_id=breach.ticket_id,
            breach_type=breach.breach_type,
            detected_at=breach.detected_at,
            due_at=breach.due_at,
            overdue_minutes=breach.overdue_minutes,
            status=breach.status,
            note=breach.note,
            escalated=breach.escalated,
            resolved_at=breach.closed_at,
            resolved_by=breach.closed_by,
        )


class AssignmentRuleResponse(BaseModel):
    id: str
    name: str
    priority_order: int
    conditions: RuleConditionsDTO
    assignee_id: str
    escalate_to: Optional[str] = None
    auto_acknowledge: bool
    enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, rule: Any) -> "AssignmentRuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            priority_order=rule.priority_order,
            conditions=RuleConditionsDTO(
                categories=list(rule.conditions.categories),
                priorities=list(rule.conditions.priorities),
                tags=list(rule.conditions.tags),
            ),
            assignee_id=rule.assignee_id,
            escalate_to=rule.escalate_to,
            auto_acknowledge=rule.auto_acknowledge,
            enabled=rule.enabled,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class SweepErrorResponse(BaseModel):
    ticket_id: str
    error: str


class SweepReportResponse(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    tickets_evaluated: int
    breaches_created: int
    escalations_applied: int
    errors: List[SweepErrorResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, report: Any) -> "SweepReportResponse":
        return cls(
            started_at=report.started_at,
            finished_at=report.finished_at,
            tickets_evaluated=report.tickets_evaluated,
            breaches_created=report.breaches_created,
            escalations_applied=report.escalations_applied,
            errors=[SweepErrorResponse(ticket_id=tid, error=msg) for tid, msg in report.errors],
        )


# ========== Analytics DTOs ==========

class ComplaintStats(BaseModel):
    """Headline numbers across all complaints."""
    total: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    by_category: Dict[str, int]
    open_tickets: int
    escalated_tickets: int
    resolved_this_month: int
    average_resolution_minutes: float
    sla_breach_count: int
    sla_compliance_rate: float = Field(..., description="Percentage of tickets without any breach")
    satisfaction_score: float = Field(..., description="Average overall survey rating, 0 when none")


class TrendPoint(BaseModel):
    bucket: str = Field(..., description="ISO date of the bucket start")
    submitted: int
    resolved: int
    escalated: int


class ComplaintTrend(BaseModel):
    granularity: str
    points: List[TrendPoint]


class CategoryAnalytics(BaseModel):
    category: ComplaintCategory
    total: int
    resolved: int
    pending: int
    average_resolution_minutes: float
    breach_rate: float = Field(..., description="Percentage of tickets with at least one breach")
    satisfaction_score: float
