"""
In-Memory Complaint Repositories
================================

Dictionary-backed implementations of the repository interfaces plus a unit
of work that rolls back through an undo journal.

Used by the test suite and by ``STORAGE_BACKEND=memory`` deployments
(single process, nothing survives a restart).
"""

import copy
from datetime import datetime
from typing import Dict, List, Optional

from src.config import (
    BreachStatus, ChangeKind, ComplaintCategory, ComplaintPriority, SLAType,
    TERMINAL_STATUSES,
)
from src.core import ConflictException
from src.complaints.application.dto import ComplaintFilters
from src.complaints.application.interfaces import (
    IAssignmentRuleRepository, ICommentRepository, IComplaintRepository,
    IResolutionRepository, ISLABreachRepository, ISLAConfigRepository,
    IStatusChangeRepository, IUnitOfWork,
)
from src.complaints.domain import (
    AssignmentRule, Complaint, ComplaintComment, Resolution, SLABreach, SLAConfig,
    StatusChange,
)
from src.feedback.domain import AnonymousFeedback, SatisfactionSurvey, SurveyResponse
from src.feedback.infrastructure.memory import (
    InMemoryAnonymousFeedbackRepository, InMemorySurveyRepository,
    InMemorySurveyResponseRepository,
)
from src.shared.infrastructure.memory import MemoryTable, UndoJournal


class InMemoryStore:
    """Process-wide tables shared by every in-memory unit of work."""

    def __init__(self) -> None:
        self.complaints: Dict[str, Complaint] = {}
        self.status_changes: List[StatusChange] = []
        self.comments: Dict[str, ComplaintComment] = {}
        self.resolutions: Dict[str, Resolution] = {}
        self.sla_configs: Dict[str, SLAConfig] = {}
        self.breaches: Dict[str, SLABreach] = {}
        self.rules: Dict[str, AssignmentRule] = {}
        self.surveys: Dict[str, SatisfactionSurvey] = {}
        self.survey_responses: Dict[str, SurveyResponse] = {}
        self.anonymous_feedback: Dict[str, AnonymousFeedback] = {}


def complaint_matches(complaint: Complaint, filters: ComplaintFilters, breached: set) -> bool:
    """Apply every set filter field to one complaint."""
    if filters.status is not None and complaint.status != filters.status:
        return False
    if filters.priority is not None and complaint.priority != filters.priority:
        return False
    if filters.category is not None and complaint.category != filters.category:
        return False
    if filters.assignee_id is not None and complaint.assignee_id != filters.assignee_id:
        return False
    if filters.submitter_id is not None and complaint.submitter.id != filters.submitter_id:
        return False
    if filters.submitter_type is not None and complaint.submitter.type != filters.submitter_type:
        return False
    if filters.student_id is not None and complaint.student_id != filters.student_id:
        return False
    if filters.is_sensitive is not None and complaint.is_sensitive != filters.is_sensitive:
        return False
    if filters.escalated is not None and complaint.is_escalated != filters.escalated:
        return False
    if filters.sla_breached is not None and (complaint.id in breached) != filters.sla_breached:
        return False
    if filters.created_from is not None and complaint.created_at < filters.created_from:
        return False
    if filters.created_to is not None and complaint.created_at > filters.created_to:
        return False
    if filters.search:
        needle = filters.search.lower()
        haystack = " ".join((complaint.subject, complaint.description, complaint.ticket_number)).lower()
        if needle not in haystack:
            return False
    return True


class InMemoryComplaintRepository(IComplaintRepository):

    def __init__(self, table: MemoryTable[Complaint], breaches: MemoryTable[SLABreach]):
        self._table = table
        self._breaches = breaches

    async def add(self, complaint: Complaint) -> None:
        if complaint.id in self._table:
            raise ConflictException("Complaint", complaint.id, {"reason": "duplicate_id"})
        self._table.put(complaint.id, complaint)

    async def get(self, complaint_id: str) -> Optional[Complaint]:
        return self._table.get(complaint_id)

    async def save(self, complaint: Complaint) -> None:
        stored = self._table.peek(complaint.id)
        if stored is None or stored.version != complaint.version:
            raise ConflictException(
                "Complaint", complaint.id,
                {"expected_version": complaint.version}
            )
        complaint.version += 1
        self._table.put(complaint.id, complaint)

    def _filtered(self, filters: ComplaintFilters) -> List[Complaint]:
        breached = {b.ticket_id for b in self._breaches.stored()}
        items = [c for c in self._table.stored() if complaint_matches(c, filters, breached)]
        return sorted(items, key=lambda c: (c.created_at, c.ticket_number), reverse=True)

    async def list(self, filters: ComplaintFilters) -> List[Complaint]:
        items = self._filtered(filters)[filters.offset:]
        if filters.limit is not None:
            items = items[:filters.limit]
        return [copy.deepcopy(c) for c in items]

    async def count(self, filters: ComplaintFilters) -> int:
        return len(self._filtered(filters))

    async def list_active_ids(self) -> List[str]:
        return [c.id for c in self._table.stored() if c.status not in TERMINAL_STATUSES]

    async def count_created_in_year(self, year: int) -> int:
        return sum(1 for c in self._table.stored() if c.created_at.year == year)


class InMemoryStatusChangeRepository(IStatusChangeRepository):

    def __init__(self, data: List[StatusChange], journal: UndoJournal):
        self._data = data
        self._journal = journal

    async def add(self, change: StatusChange) -> None:
        self._journal.remember_append(self._data)
        self._data.append(change)

    async def list_for_ticket(self, ticket_id: str) -> List[StatusChange]:
        changes = [c for c in self._data if c.ticket_id == ticket_id]
        return sorted(changes, key=lambda c: c.timestamp)

    async def list_by_kind(self, kind: ChangeKind, since: Optional[datetime] = None) -> List[StatusChange]:
        return [
            c for c in self._data
            if c.kind == kind and (since is None or c.timestamp >= since)
        ]


class InMemoryCommentRepository(ICommentRepository):

    def __init__(self, table: MemoryTable[ComplaintComment]):
        self._table = table

    async def add(self, comment: ComplaintComment) -> None:
        self._table.put(comment.id, comment)

    async def get(self, comment_id: str) -> Optional[ComplaintComment]:
        return self._table.get(comment_id)

    async def save(self, comment: ComplaintComment) -> None:
        self._table.put(comment.id, comment)

    async def delete(self, comment_id: str) -> None:
        self._table.remove(comment_id)

    async def list_for_ticket(self, ticket_id: str, include_internal: bool = True) -> List[ComplaintComment]:
        comments = self._table.select(
            lambda c: c.ticket_id == ticket_id and (include_internal or not c.internal)
        )
        return sorted(comments, key=lambda c: c.created_at)


class InMemoryResolutionRepository(IResolutionRepository):

    def __init__(self, table: MemoryTable[Resolution]):
        self._table = table

    async def add(self, resolution: Resolution) -> None:
        self._table.put(resolution.id, resolution)

    async def save(self, resolution: Resolution) -> None:
        self._table.put(resolution.id, resolution)

    async def get_active(self, ticket_id: str) -> Optional[Resolution]:
        matches = self._table.select(lambda r: r.ticket_id == ticket_id and r.active)
        return matches[0] if matches else None

    async def list_for_ticket(self, ticket_id: str) -> List[Resolution]:
        return sorted(
            self._table.select(lambda r: r.ticket_id == ticket_id),
            key=lambda r: r.submitted_at
        )

    async def list_verified(self) -> List[Resolution]:
        return self._table.select(lambda r: r.verified_at is not None)


class InMemorySLAConfigRepository(ISLAConfigRepository):

    def __init__(self, table: MemoryTable[SLAConfig]):
        self._table = table

    async def add(self, config: SLAConfig) -> None:
        self._table.put(config.id, config)

    async def get(self, config_id: str) -> Optional[SLAConfig]:
        return self._table.get(config_id)

    async def save(self, config: SLAConfig) -> None:
        self._table.put(config.id, config)

    async def delete(self, config_id: str) -> None:
        self._table.remove(config_id)

    async def list(self) -> List[SLAConfig]:
        return sorted(self._table.select(lambda c: True), key=lambda c: c.created_at)

    async def find_enabled(
        self,
        category: Optional[ComplaintCategory],
        priority: ComplaintPriority
    ) -> Optional[SLAConfig]:
        matches = self._table.select(
            lambda c: c.enabled and c.category == category and c.priority == priority
        )
        return matches[0] if matches else None


class InMemorySLABreachRepository(ISLABreachRepository):

    def __init__(self, table: MemoryTable[SLABreach]):
        self._table = table

    async def add(self, breach: SLABreach) -> None:
        for existing in self._table.stored():
            if (existing.ticket_id, existing.breach_type, existing.due_at) == (
                breach.ticket_id, breach.breach_type, breach.due_at
            ):
                raise ConflictException("SLABreach", existing.id, {"reason": "duplicate_breach"})
        self._table.put(breach.id, breach)

    async def get(self, breach_id: str) -> Optional[SLABreach]:
        return self._table.get(breach_id)

    async def save(self, breach: SLABreach) -> None:
        self._table.put(breach.id, breach)

    async def find(self, ticket_id: str, breach_type: SLAType, due_at: datetime) -> Optional[SLABreach]:
        matches = self._table.select(
            lambda b: b.ticket_id == ticket_id and b.breach_type == breach_type and b.due_at == due_at
        )
        return matches[0] if matches else None

    async def list(
        self,
        ticket_id: Optional[str] = None,
        status: Optional[BreachStatus] = None,
        breach_type: Optional[SLAType] = None
    ) -> List[SLABreach]:
        breaches = self._table.select(
            lambda b: (ticket_id is None or b.ticket_id == ticket_id)
            and (status is None or b.status == status)
            and (breach_type is None or b.breach_type == breach_type)
        )
        return sorted(breaches, key=lambda b: b.detected_at)


class InMemoryAssignmentRuleRepository(IAssignmentRuleRepository):

    def __init__(self, table: MemoryTable[AssignmentRule]):
        self._table = table

    async def add(self, rule: AssignmentRule) -> None:
        self._table.put(rule.id, rule)

    async def get(self, rule_id: str) -> Optional[AssignmentRule]:
        return self._table.get(rule_id)

    async def save(self, rule: AssignmentRule) -> None:
        self._table.put(rule.id, rule)

    async def delete(self, rule_id: str) -> None:
        self._table.remove(rule_id)

    async def list(self) -> List[AssignmentRule]:
        return sorted(self._table.select(lambda r: True), key=lambda r: r.priority_order)


class InMemoryUnitOfWork(IUnitOfWork):
    """
    Unit of work over an ``InMemoryStore``.

    Writes are applied immediately and journaled; rollback replays the
    journal backwards.
    """

    def __init__(self, store: InMemoryStore):
        self._store = store
        self._journal = UndoJournal()
        breaches = MemoryTable(store.breaches, self._journal)
        self.complaints = InMemoryComplaintRepository(
            MemoryTable(store.complaints, self._journal), breaches
        )
        self.status_changes = InMemoryStatusChangeRepository(store.status_changes, self._journal)
        self.comments = InMemoryCommentRepository(MemoryTable(store.comments, self._journal))
        self.resolutions = InMemoryResolutionRepository(MemoryTable(store.resolutions, self._journal))
        self.sla_configs = InMemorySLAConfigRepository(MemoryTable(store.sla_configs, self._journal))
        self.breaches = InMemorySLABreachRepository(breaches)
        self.rules = InMemoryAssignmentRuleRepository(MemoryTable(store.rules, self._journal))
        self.surveys = InMemorySurveyRepository(MemoryTable(store.surveys, self._journal))
        self.survey_responses = InMemorySurveyResponseRepository(
            MemoryTable(store.survey_responses, self._journal)
        )
        self.anonymous_feedback = InMemoryAnonymousFeedbackRepository(
            MemoryTable(store.anonymous_feedback, self._journal)
        )

    async def commit(self) -> None:
        self._journal.clear()

    async def rollback(self) -> None:
        self._journal.undo()


def in_memory_uow_factory(store: Optional[InMemoryStore] = None):
    """Factory producing units of work over one shared store."""
    store = store or InMemoryStore()

    def factory() -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store)

    factory.store = store
    return factory
