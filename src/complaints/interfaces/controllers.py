"""
Complaint Controllers (API Routes)
==================================

FastAPI routes for tickets, comments, resolutions, SLA configuration,
breaches, assignment rules, escalation and analytics.

Controllers are thin - they delegate to application services. Static
paths are registered before ``/{ticket_id}`` so they are matched first.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from src.config import (
    BreachStatus, ComplaintCategory, ComplaintPriority, ComplaintStatus,
    SLAType, SubmitterType,
)
from src.complaints.application.dto import (
    AssignRequest, AssignmentRuleCreateRequest, AssignmentRuleResponse,
    AssignmentRuleUpdateRequest, CategoryAnalytics, CommentCreateRequest,
    CommentResponse, CommentUpdateRequest, ComplaintCreateRequest, ComplaintFilters,
    ComplaintListResponse, ComplaintResponse, ComplaintStats, ComplaintTrend,
    ComplaintUpdateRequest, EscalateRequest, HistoryEntryResponse, NoteRequest,
    ReopenRequest, ResolutionRejectRequest, ResolutionResponse, ResolutionSubmitRequest,
    ResolutionUpdateRequest,
    RuleReorderRequest, SLABreachResponse, SLAConfigCreateRequest, SLAConfigResponse,
    SLAConfigUpdateRequest, SLATargetsResponse, StatusChangeResponse, StatusUpdateRequest,
    SweepReportResponse, ToggleRequest, WithdrawRequest, validate_payload,
)
from src.complaints.application.permissions import require_elevated, require_staff
from src.complaints.domain import Actor, StatusChange
from src.shared.api.dependencies import get_actor, get_container
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/complaints", tags=["Complaints"])


# ========== Example payloads for Swagger ==========

COMPLAINT_CREATE_EXAMPLE = {
    "subject": "Bus arrives 30 minutes late every morning",
    "description": "Route 12 has been late every day this week; students miss first period.",
    "category": "transport",
    "priority": "high",
    "tags": ["route-12"]
}


# ========== Dependencies ==========

def get_filters(
    search: Optional[str] = Query(None),
    status_: Optional[ComplaintStatus] = Query(None, alias="status"),
    priority: Optional[ComplaintPriority] = Query(None),
    category: Optional[ComplaintCategory] = Query(None),
    assignee_id: Optional[str] = Query(None),
    submitter_id: Optional[str] = Query(None),
    submitter_type: Optional[SubmitterType] = Query(None),
    student_id: Optional[str] = Query(None),
    is_sensitive: Optional[bool] = Query(None),
    escalated: Optional[bool] = Query(None),
    sla_breached: Optional[bool] = Query(None),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(50),
    offset: int = Query(0),
) -> ComplaintFilters:
    """Query-string filters; out-of-range paging raises ValidationException."""
    return validate_payload(ComplaintFilters, {
        "search": search,
        "status": status_,
        "priority": priority,
        "category": category,
        "assignee_id": assignee_id,
        "submitter_id": submitter_id,
        "submitter_type": submitter_type,
        "student_id": student_id,
        "is_sensitive": is_sensitive,
        "escalated": escalated,
        "sla_breached": sla_breached,
        "created_from": created_from,
        "created_to": created_to,
        "limit": limit,
        "offset": offset,
    })


# ========== Analytics ==========

@router.get("/analytics/stats", response_model=ComplaintStats, summary="Headline complaint numbers")
async def complaint_stats(actor: Actor = Depends(get_actor), container=Depends(get_container)):
    return await container.analytics.stats(actor)


@router.get("/analytics/trend", response_model=ComplaintTrend, summary="Submitted/resolved/escalated per period")
async def complaint_trend(
    granularity: str = Query("day", description="day, week or month"),
    periods: Optional[int] = Query(None, description="Number of buckets ending now"),
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    return await container.analytics.trend(actor, granularity, periods)


@router.get("/analytics/categories", response_model=List[CategoryAnalytics], summary="Per-category analytics")
async def category_analytics(actor: Actor = Depends(get_actor), container=Depends(get_container)):
    return await container.analytics.category_analytics(actor)


# ========== SLA Configuration ==========

@router.get("/sla-configs", response_model=List[SLAConfigResponse], summary="List SLA configs")
async def list_sla_configs(actor: Actor = Depends(get_actor), container=Depends(get_container)):
    require_staff(actor, "view SLA configuration")
    configs = await container.sla_policy.list_configs()
    return [SLAConfigResponse.from_domain(c) for c in configs]


@router.post(
    "/sla-configs",
    response_model=SLAConfigResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create SLA targets for a (category, priority) pair"
)
async def create_sla_config(
    request: SLAConfigCreateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    config = await container.sla_policy.create_config(actor, request)
    return SLAConfigResponse.from_domain(config)


@router.get("/sla-configs/resolve", response_model=SLATargetsResponse, summary="Targets that apply to a pair")
async def resolve_sla_targets(
    category: ComplaintCategory = Query(...),
    priority: ComplaintPriority = Query(...),
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    require_staff(actor, "view SLA configuration")
    targets = await container.sla_policy.resolve_config(category, priority)
    return SLATargetsResponse(
        response_minutes=targets.response_minutes,
        resolution_minutes=targets.resolution_minutes,
        source=targets.source,
        config_id=targets.config_id,
    )


@router.get("/sla-configs/{config_id}", response_model=SLAConfigResponse)
async def get_sla_config(config_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    require_staff(actor, "view SLA configuration")
    return SLAConfigResponse.from_domain(await container.sla_policy.get_config(config_id))


@router.patch("/sla-configs/{config_id}", response_model=SLAConfigResponse)
async def update_sla_config(
    config_id: str,
    request: SLAConfigUpdateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    config = await container.sla_policy.update_config(actor, config_id, request)
    return SLAConfigResponse.from_domain(config)


@router.post("/sla-configs/{config_id}/toggle", response_model=SLAConfigResponse)
async def toggle_sla_config(
    config_id: str,
    request: ToggleRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    config = await container.sla_policy.toggle_config(actor, config_id, request.enabled)
    return SLAConfigResponse.from_domain(config)


@router.delete("/sla-configs/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sla_config(config_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    await container.sla_policy.delete_config(actor, config_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sla/sweep", response_model=SweepReportResponse, summary="Run one SLA sweep now")
async def trigger_sweep(actor: Actor = Depends(get_actor), container=Depends(get_container)):
    require_elevated(actor, "trigger an SLA sweep")
    report = await container.monitor.sweep()
    return SweepReportResponse.from_domain(report)


# ========== Breaches ==========

@router.get("/breaches", response_model=List[SLABreachResponse], summary="List SLA breaches")
async def list_breaches(
    ticket_id: Optional[str] = Query(None),
    status_: Optional[BreachStatus] = Query(None, alias="status"),
    breach_type: Optional[SLAType] = Query(None),
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    require_staff(actor, "view SLA breaches")
    breaches = await container.escalation.list_breaches(ticket_id, status_, breach_type)
    return [SLABreachResponse.from_domain(b) for b in breaches]


@router.get("/breaches/{breach_id}", response_model=SLABreachResponse)
async def get_breach(breach_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    require_staff(actor, "view SLA breaches")
    return SLABreachResponse.from_domain(await container.escalation.get_breach(breach_id))


@router.post("/breaches/{breach_id}/address", response_model=SLABreachResponse)
async def address_breach(
    breach_id: str,
    request: Optional[NoteRequest] = None,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    breach = await container.escalation.address_breach(actor, breach_id, request)
    return SLABreachResponse.from_domain(breach)


@router.post("/breaches/{breach_id}/excuse", response_model=SLABreachResponse)
async def excuse_breach(
    breach_id: str,
    request: Optional[NoteRequest] = None,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    breach = await container.escalation.excuse_breach(actor, breach_id, request)
    return SLABreachResponse.from_domain(breach)


# ========== Assignment Rules ==========

@router.get("/rules", response_model=List[AssignmentRuleResponse], summary="List assignment rules in order")
async def list_rules(actor: Actor = Depends(get_actor), container=Depends(get_container)):
    require_staff(actor, "view assignment rules")
    rules = await container.rule_engine.list_rules()
    return [AssignmentRuleResponse.from_domain(r) for r in rules]


@router.post("/rules", response_model=AssignmentRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: AssignmentRuleCreateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    rule = await container.rule_engine.create_rule(actor, request)
    return AssignmentRuleResponse.from_domain(rule)


@router.put("/rules/reorder", response_model=List[AssignmentRuleResponse], summary="Replace the rule order")
async def reorder_rules(
    request: RuleReorderRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    rules = await container.rule_engine.reorder_rules(actor, request.rule_ids)
    return [AssignmentRuleResponse.from_domain(r) for r in rules]


@router.get("/rules/{rule_id}", response_model=AssignmentRuleResponse)
async def get_rule(rule_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    require_staff(actor, "view assignment rules")
    return AssignmentRuleResponse.from_domain(await container.rule_engine.get_rule(rule_id))


@router.patch("/rules/{rule_id}", response_model=AssignmentRuleResponse)
async def update_rule(
    rule_id: str,
    request: AssignmentRuleUpdateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    rule = await container.rule_engine.update_rule(actor, rule_id, request)
    return AssignmentRuleResponse.from_domain(rule)


@router.post("/rules/{rule_id}/toggle", response_model=AssignmentRuleResponse)
async def toggle_rule(
    rule_id: str,
    request: ToggleRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    rule = await container.rule_engine.toggle_rule(actor, rule_id, request.enabled)
    return AssignmentRuleResponse.from_domain(rule)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(rule_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    await container.rule_engine.delete_rule(actor, rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Comments ==========

@router.patch("/comments/{comment_id}", response_model=CommentResponse)
async def edit_comment(
    comment_id: str,
    request: CommentUpdateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    comment = await container.tickets.edit_comment(actor, comment_id, request)
    return CommentResponse.from_domain(comment)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(comment_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    await container.tickets.delete_comment(actor, comment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Students ==========

@router.get(
    "/students/{student_id}",
    response_model=ComplaintListResponse,
    summary="Complaints concerning one student"
)
async def list_student_complaints(
    student_id: str,
    filters: ComplaintFilters = Depends(get_filters),
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    items, total = await container.tickets.list_for_student(actor, student_id, filters)
    return ComplaintListResponse(
        items=[ComplaintResponse.from_domain(c) for c in items],
        total=total,
        limit=filters.limit,
        offset=filters.offset,
    )


# ========== Tickets ==========

@router.post(
    "",
    response_model=ComplaintResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Raise a complaint",
    responses={201: {"description": "Complaint created with SLA deadlines and an assignee"}},
    openapi_extra={"requestBody": {"content": {"application/json": {"example": COMPLAINT_CREATE_EXAMPLE}}}}
)
async def create_complaint(
    request: ComplaintCreateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    complaint = await container.tickets.create(actor, request)
    return ComplaintResponse.from_domain(complaint)


@router.get("", response_model=ComplaintListResponse, summary="List complaints")
async def list_complaints(
    filters: ComplaintFilters = Depends(get_filters),
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    items, total = await container.tickets.list(actor, filters)
    return ComplaintListResponse(
        items=[ComplaintResponse.from_domain(c) for c in items],
        total=total,
        limit=filters.limit,
        offset=filters.offset,
    )


@router.get("/{ticket_id}", response_model=ComplaintResponse)
async def get_complaint(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    return ComplaintResponse.from_domain(await container.tickets.get(actor, ticket_id))


@router.patch("/{ticket_id}", response_model=ComplaintResponse, summary="Edit complaint details")
async def update_complaint(
    ticket_id: str,
    request: ComplaintUpdateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    complaint = await container.tickets.update_details(actor, ticket_id, request)
    return ComplaintResponse.from_domain(complaint)


@router.delete(
    "/{ticket_id}",
    response_model=ComplaintResponse,
    summary="Withdraw a complaint",
    description="Complaints are never physically deleted; deleting withdraws the ticket."
)
async def delete_complaint(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    complaint = await container.tickets.withdraw(actor, ticket_id)
    return ComplaintResponse.from_domain(complaint)


@router.post("/{ticket_id}/acknowledge", response_model=ComplaintResponse)
async def acknowledge_complaint(
    ticket_id: str,
    request: Optional[NoteRequest] = None,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    note = request.note if request else ""
    complaint = await container.tickets.acknowledge(actor, ticket_id, note)
    return ComplaintResponse.from_domain(complaint)


@router.post("/{ticket_id}/status", response_model=ComplaintResponse, summary="Move along the lifecycle")
async def update_status(
    ticket_id: str,
    request: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    complaint = await container.tickets.update_status(actor, ticket_id, request)
    return ComplaintResponse.from_domain(complaint)


@router.post("/{ticket_id}/assign", response_model=ComplaintResponse)
async def assign_complaint(
    ticket_id: str,
    request: AssignRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    complaint = await container.tickets.assign(actor, ticket_id, request)
    return ComplaintResponse.from_domain(complaint)


@router.post("/{ticket_id}/withdraw", response_model=ComplaintResponse)
async def withdraw_complaint(
    ticket_id: str,
    request: Optional[WithdrawRequest] = None,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    complaint = await container.tickets.withdraw(actor, ticket_id, request)
    return ComplaintResponse.from_domain(complaint)


@router.post("/{ticket_id}/reopen", response_model=ComplaintResponse)
async def reopen_complaint(
    ticket_id: str,
    request: ReopenRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    complaint = await container.tickets.reopen(actor, ticket_id, request)
    return ComplaintResponse.from_domain(complaint)


@router.post("/{ticket_id}/escalate", response_model=ComplaintResponse)
async def escalate_complaint(
    ticket_id: str,
    request: EscalateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    complaint = await container.escalation.escalate(actor, ticket_id, request)
    return ComplaintResponse.from_domain(complaint)


@router.get("/{ticket_id}/breaches", response_model=List[SLABreachResponse])
async def list_ticket_breaches(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    require_staff(actor, "view SLA breaches")
    breaches = await container.escalation.list_breaches(ticket_id=ticket_id)
    return [SLABreachResponse.from_domain(b) for b in breaches]


# ========== Ticket comments and history ==========

@router.get("/{ticket_id}/comments", response_model=List[CommentResponse])
async def list_comments(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    comments = await container.tickets.comments(actor, ticket_id)
    return [CommentResponse.from_domain(c) for c in comments]


@router.post("/{ticket_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    request: CommentCreateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    comment = await container.tickets.comment(actor, ticket_id, request)
    return CommentResponse.from_domain(comment)


@router.get("/{ticket_id}/status-changes", response_model=List[StatusChangeResponse])
async def list_status_changes(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    changes = await container.tickets.status_changes(actor, ticket_id)
    return [StatusChangeResponse.from_domain(c) for c in changes]


@router.get("/{ticket_id}/history", response_model=List[HistoryEntryResponse], summary="Merged timeline")
async def ticket_history(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    history = await container.tickets.history(actor, ticket_id)
    entries = []
    for entry in history.entries():
        if isinstance(entry, StatusChange):
            entries.append(HistoryEntryResponse(
                entry_type="status_change",
                timestamp=entry.timestamp,
                status_change=StatusChangeResponse.from_domain(entry),
            ))
        else:
            entries.append(HistoryEntryResponse(
                entry_type="comment",
                timestamp=entry.created_at,
                comment=CommentResponse.from_domain(entry),
            ))
    return entries


# ========== Resolution ==========

@router.post(
    "/{ticket_id}/resolution",
    response_model=ResolutionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a resolution"
)
async def submit_resolution(
    ticket_id: str,
    request: ResolutionSubmitRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    resolution = await container.resolutions.submit_resolution(actor, ticket_id, request)
    return ResolutionResponse.from_domain(resolution)


@router.get("/{ticket_id}/resolution", response_model=ResolutionResponse, summary="Active resolution")
async def get_resolution(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    return ResolutionResponse.from_domain(await container.resolutions.get_resolution(actor, ticket_id))


@router.put("/{ticket_id}/resolution", response_model=ResolutionResponse, summary="Edit a pending resolution")
async def update_resolution(
    ticket_id: str,
    request: ResolutionUpdateRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    resolution = await container.resolutions.update_resolution(actor, ticket_id, request)
    return ResolutionResponse.from_domain(resolution)


@router.get("/{ticket_id}/resolutions", response_model=List[ResolutionResponse], summary="All resolutions")
async def list_resolutions(ticket_id: str, actor: Actor = Depends(get_actor), container=Depends(get_container)):
    resolutions = await container.resolutions.list_resolutions(actor, ticket_id)
    return [ResolutionResponse.from_domain(r) for r in resolutions]


@router.post("/{ticket_id}/resolution/verify", response_model=ComplaintResponse)
async def verify_resolution(
    ticket_id: str,
    request: Optional[NoteRequest] = None,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    note = request.note if request else ""
    complaint = await container.resolutions.verify_resolution(actor, ticket_id, note)
    return ComplaintResponse.from_domain(complaint)


@router.post("/{ticket_id}/resolution/reject", response_model=ComplaintResponse)
async def reject_resolution(
    ticket_id: str,
    request: ResolutionRejectRequest,
    actor: Actor = Depends(get_actor),
    container=Depends(get_container)
):
    complaint = await container.resolutions.reject_resolution(actor, ticket_id, request)
    return ComplaintResponse.from_domain(complaint)
