"""
Complaint Infrastructure Repositories
=====================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. ``SQLAlchemyUnitOfWork`` opens one session per
unit and commits or rolls it back on exit.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import (
    BreachStatus, ChangeKind, ComplaintCategory, ComplaintPriority, ComplaintSource,
    ComplaintStatus, SLAType, SubmitterType, TERMINAL_STATUSES, VerificationStatus,
)
from src.core import ConflictException, DependencyFailureException
from src.complaints.application.dto import ComplaintFilters
from src.complaints.application.interfaces import (
    IAssignmentRuleRepository, ICommentRepository, IComplaintRepository,
    IResolutionRepository, ISLABreachRepository, ISLAConfigRepository,
    IStatusChangeRepository, IUnitOfWork,
)
from src.complaints.domain import (
    AssignmentRule, Complaint, ComplaintComment, Resolution, RuleConditions,
    SLABreach, SLAConfig, StatusChange, Submitter,
)
from src.complaints.infrastructure.models import (
    AssignmentRuleModel, CommentModel, ComplaintModel, ResolutionModel,
    SLABreachModel, SLAConfigModel, StatusChangeModel,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


async def _update_row(session: AsyncSession, model_cls, entity_id: str, values: Dict[str, Any]) -> None:
    """Copy ``values`` onto the stored row of ``entity_id``."""
    model = await session.get(model_cls, entity_id)
    if model is None:
        session.add(model_cls(id=entity_id, **values))
    else:
        for key, value in values.items():
            setattr(model, key, value)
    await session.flush()


# ========== Complaints ==========

def _complaint_values(complaint: Complaint) -> Dict[str, Any]:
    return {
        "ticket_number": complaint.ticket_number,
        "subject": complaint.subject,
        "description": complaint.description,
        "category": complaint.category.value,
        "priority": complaint.priority.value,
        "status": complaint.status.value,
        "source": complaint.source.value,
        "is_sensitive": complaint.is_sensitive,
        "tags": list(complaint.tags),
        "submitter_id": complaint.submitter.id,
        "submitter_type": complaint.submitter.type.value,
        "assignee_id": complaint.assignee_id,
        "student_id": complaint.student_id,
        "created_at": complaint.created_at,
        "updated_at": complaint.updated_at,
        "acknowledged_at": complaint.acknowledged_at,
        "resolved_at": complaint.resolved_at,
        "closed_at": complaint.closed_at,
        "reopened_at": complaint.reopened_at,
        "withdrawn_at": complaint.withdrawn_at,
        "due_at": complaint.due_at,
        "resolution_due_at": complaint.resolution_due_at,
        "escalation_level": complaint.escalation_level,
        "escalated_to": complaint.escalated_to,
        "escalated_at": complaint.escalated_at,
        "reopen_count": complaint.reopen_count,
        "survey_eligible": complaint.survey_eligible,
    }


def _complaint_to_domain(model: ComplaintModel) -> Complaint:
    return Complaint(
        id=model.id,
        ticket_number=model.ticket_number,
        subject=model.subject,
        description=model.description,
        category=ComplaintCategory(model.category),
        priority=ComplaintPriority(model.priority),
        submitter=Submitter(id=model.submitter_id, type=SubmitterType(model.submitter_type)),
        created_at=model.created_at,
        updated_at=model.updated_at,
        due_at=model.due_at,
        resolution_due_at=model.resolution_due_at,
        status=ComplaintStatus(model.status),
        assignee_id=model.assignee_id,
        student_id=model.student_id,
        source=ComplaintSource(model.source),
        is_sensitive=model.is_sensitive,
        tags=list(model.tags or []),
        acknowledged_at=model.acknowledged_at,
        resolved_at=model.resolved_at,
        closed_at=model.closed_at,
        reopened_at=model.reopened_at,
        withdrawn_at=model.withdrawn_at,
        escalation_level=model.escalation_level,
        escalated_to=model.escalated_to,
        escalated_at=model.escalated_at,
        reopen_count=model.reopen_count,
        survey_eligible=model.survey_eligible,
        version=model.version,
    )


class SQLAlchemyComplaintRepository(IComplaintRepository):
    """
    SQLAlchemy implementation of the complaint repository.

    Saves are conditional updates on ``version``; zero affected rows means
    another writer got there first.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, complaint: Complaint) -> None:
        self._session.add(ComplaintModel(id=complaint.id, version=complaint.version, **_complaint_values(complaint)))
        await self._session.flush()

    async def get(self, complaint_id: str) -> Optional[Complaint]:
        stmt = (
            select(ComplaintModel)
            .where(ComplaintModel.id == complaint_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _complaint_to_domain(model) if model else None

    async def save(self, complaint: Complaint) -> None:
        stmt = (
            update(ComplaintModel)
            .where(
                ComplaintModel.id == complaint.id,
                ComplaintModel.version == complaint.version
            )
            .values(version=complaint.version + 1, **_complaint_values(complaint))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ConflictException(
                "Complaint", complaint.id,
                {"expected_version": complaint.version}
            )
        complaint.version += 1

    def _conditions(self, filters: ComplaintFilters) -> List[Any]:
        conditions = []
        if filters.status is not None:
            conditions.append(ComplaintModel.status == filters.status.value)
        if filters.priority is not None:
            conditions.append(ComplaintModel.priority == filters.priority.value)
        if filters.category is not None:
            conditions.append(ComplaintModel.category == filters.category.value)
        if filters.assignee_id is not None:
            conditions.append(ComplaintModel.assignee_id == filters.assignee_id)
        if filters.submitter_id is not None:
            conditions.append(ComplaintModel.submitter_id == filters.submitter_id)
        if filters.submitter_type is not None:
            conditions.append(ComplaintModel.submitter_type == filters.submitter_type.value)
        if filters.student_id is not None:
            conditions.append(ComplaintModel.student_id == filters.student_id)
        if filters.is_sensitive is not None:
            conditions.append(ComplaintModel.is_sensitive == filters.is_sensitive)
        if filters.escalated is True:
            conditions.append(ComplaintModel.escalation_level > 0)
        elif filters.escalated is False:
            conditions.append(ComplaintModel.escalation_level == 0)
        if filters.sla_breached is not None:
            breached = select(SLABreachModel.ticket_id)
            if filters.sla_breached:
                conditions.append(ComplaintModel.id.in_(breached))
            else:
                conditions.append(ComplaintModel.id.not_in(breached))
        if filters.created_from is not None:
            conditions.append(ComplaintModel.created_at >= filters.created_from)
        if filters.created_to is not None:
            conditions.append(ComplaintModel.created_at <= filters.created_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(or_(
                ComplaintModel.subject.ilike(pattern),
                ComplaintModel.description.ilike(pattern),
                ComplaintModel.ticket_number.ilike(pattern),
            ))
        return conditions

    async def list(self, filters: ComplaintFilters) -> List[Complaint]:
        stmt = select(ComplaintModel)
        conditions = self._conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        # Order by created_at descending
        stmt = stmt.order_by(ComplaintModel.created_at.desc(), ComplaintModel.ticket_number.desc())
        stmt = stmt.offset(filters.offset)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        stmt = stmt.execution_options(populate_existing=True)

        result = await self._session.execute(stmt)
        return [_complaint_to_domain(m) for m in result.scalars().all()]

    async def count(self, filters: ComplaintFilters) -> int:
        stmt = select(func.count()).select_from(ComplaintModel)
        conditions = self._conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def list_active_ids(self) -> List[str]:
        terminal = [s.value for s in TERMINAL_STATUSES]
        stmt = select(ComplaintModel.id).where(ComplaintModel.status.not_in(terminal))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_created_in_year(self, year: int) -> int:
        start = datetime(year, 1, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        stmt = select(func.count()).select_from(ComplaintModel).where(
            ComplaintModel.created_at >= start,
            ComplaintModel.created_at < end
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()


# ========== Status history ==========

def _status_change_to_domain(model: StatusChangeModel) -> StatusChange:
    return StatusChange(
        id=model.id,
        ticket_id=model.ticket_id,
        from_status=ComplaintStatus(model.from_status) if model.from_status else None,
        to_status=ComplaintStatus(model.to_status),
        actor_id=model.actor_id,
        timestamp=model.timestamp,
        note=model.note,
        kind=ChangeKind(model.kind),
    )


class SQLAlchemyStatusChangeRepository(IStatusChangeRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, change: StatusChange) -> None:
        self._session.add(StatusChangeModel(
            id=change.id,
            ticket_id=change.ticket_id,
            from_status=change.from_status.value if change.from_status else None,
            to_status=change.to_status.value,
            actor_id=change.actor_id,
            timestamp=change.timestamp,
            note=change.note,
            kind=change.kind.value,
        ))
        await self._session.flush()

    async def list_for_ticket(self, ticket_id: str) -> List[StatusChange]:
        stmt = (
            select(StatusChangeModel)
            .where(StatusChangeModel.ticket_id == ticket_id)
            .order_by(StatusChangeModel.timestamp.asc(), StatusChangeModel.seq.asc())
        )
        result = await self._session.execute(stmt)
        return [_status_change_to_domain(m) for m in result.scalars().all()]

    async def list_by_kind(self, kind: ChangeKind, since: Optional[datetime] = None) -> List[StatusChange]:
        stmt = select(StatusChangeModel).where(StatusChangeModel.kind == kind.value)
        if since is not None:
            stmt = stmt.where(StatusChangeModel.timestamp >= since)
        stmt = stmt.order_by(StatusChangeModel.seq.asc())
        result = await self._session.execute(stmt)
        return [_status_change_to_domain(m) for m in result.scalars().all()]


# ========== Comments ==========

def _comment_values(comment: ComplaintComment) -> Dict[str, Any]:
    return {
        "ticket_id": comment.ticket_id,
        "author_id": comment.author_id,
        "body": comment.body,
        "internal": comment.internal,
        "created_at": comment.created_at,
        "updated_at": comment.updated_at,
    }


def _comment_to_domain(model: CommentModel) -> ComplaintComment:
    return ComplaintComment(
        id=model.id,
        ticket_id=model.ticket_id,
        author_id=model.author_id,
        body=model.body,
        internal=model.internal,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SQLAlchemyCommentRepository(ICommentRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, comment: ComplaintComment) -> None:
        self._session.add(CommentModel(id=comment.id, **_comment_values(comment)))
        await self._session.flush()

    async def get(self, comment_id: str) -> Optional[ComplaintComment]:
        model = await self._session.get(CommentModel, comment_id)
        return _comment_to_domain(model) if model else None

    async def save(self, comment: ComplaintComment) -> None:
        await _update_row(self._session, CommentModel, comment.id, _comment_values(comment))

    async def delete(self, comment_id: str) -> None:
        model = await self._session.get(CommentModel, comment_id)
        if model is not None:
            await self._session.delete(model)
            await self._session.flush()

    async def list_for_ticket(self, ticket_id: str, include_internal: bool = True) -> List[ComplaintComment]:
        stmt = select(CommentModel).where(CommentModel.ticket_id == ticket_id)
        if not include_internal:
            stmt = stmt.where(CommentModel.internal.is_(False))
        stmt = stmt.order_by(CommentModel.created_at.asc())
        result = await self._session.execute(stmt)
        return [_comment_to_domain(m) for m in result.scalars().all()]


# ========== Resolutions ==========

def _resolution_values(resolution: Resolution) -> Dict[str, Any]:
    return {
        "ticket_id": resolution.ticket_id,
        "resolved_by": resolution.resolved_by,
        "summary": resolution.summary,
        "actions_taken": list(resolution.actions_taken),
        "root_cause": resolution.root_cause,
        "preventive_measures": list(resolution.preventive_measures),
        "submitted_at": resolution.submitted_at,
        "verification": resolution.verification.value,
        "verified_by": resolution.verified_by,
        "verified_at": resolution.verified_at,
        "rejection_reason": resolution.rejection_reason,
        "active": resolution.active,
    }


def _resolution_to_domain(model: ResolutionModel) -> Resolution:
    return Resolution(
        id=model.id,
        ticket_id=model.ticket_id,
        resolved_by=model.resolved_by,
        summary=model.summary,
        submitted_at=model.submitted_at,
        actions_taken=list(model.actions_taken or []),
        root_cause=model.root_cause,
        preventive_measures=list(model.preventive_measures or []),
        verification=VerificationStatus(model.verification),
        verified_by=model.verified_by,
        verified_at=model.verified_at,
        rejection_reason=model.rejection_reason,
        active=model.active,
    )


class SQLAlchemyResolutionRepository(IResolutionRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, resolution: Resolution) -> None:
        self._session.add(ResolutionModel(id=resolution.id, **_resolution_values(resolution)))
        await self._session.flush()

    async def save(self, resolution: Resolution) -> None:
        await _update_row(self._session, ResolutionModel, resolution.id, _resolution_values(resolution))

    async def get_active(self, ticket_id: str) -> Optional[Resolution]:
        stmt = select(ResolutionModel).where(
            ResolutionModel.ticket_id == ticket_id,
            ResolutionModel.active.is_(True)
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return _resolution_to_domain(model) if model else None

    async def list_for_ticket(self, ticket_id: str) -> List[Resolution]:
        stmt = (
            select(ResolutionModel)
            .where(ResolutionModel.ticket_id == ticket_id)
            .order_by(ResolutionModel.submitted_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_resolution_to_domain(m) for m in result.scalars().all()]

    async def list_verified(self) -> List[Resolution]:
        stmt = select(ResolutionModel).where(ResolutionModel.verified_at.is_not(None))
        result = await self._session.execute(stmt)
        return [_resolution_to_domain(m) for m in result.scalars().all()]


# ========== SLA configs ==========

def _sla_config_values(config: SLAConfig) -> Dict[str, Any]:
    return {
        "category": config.category.value if config.category else None,
        "priority": config.priority.value,
        "response_minutes": config.response_minutes,
        "resolution_minutes": config.resolution_minutes,
        "enabled": config.enabled,
        "created_at": config.created_at,
        "updated_at": config.updated_at,
    }


def _sla_config_to_domain(model: SLAConfigModel) -> SLAConfig:
    return SLAConfig(
        id=model.id,
        category=ComplaintCategory(model.category) if model.category else None,
        priority=ComplaintPriority(model.priority),
        response_minutes=model.response_minutes,
        resolution_minutes=model.resolution_minutes,
        enabled=model.enabled,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SQLAlchemySLAConfigRepository(ISLAConfigRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, config: SLAConfig) -> None:
        self._session.add(SLAConfigModel(id=config.id, **_sla_config_values(config)))
        await self._session.flush()

    async def get(self, config_id: str) -> Optional[SLAConfig]:
        model = await self._session.get(SLAConfigModel, config_id)
        return _sla_config_to_domain(model) if model else None

    async def save(self, config: SLAConfig) -> None:
        await _update_row(self._session, SLAConfigModel, config.id, _sla_config_values(config))

    async def delete(self, config_id: str) -> None:
        model = await self._session.get(SLAConfigModel, config_id)
        if model is not None:
            await self._session.delete(model)
            await self._session.flush()

    async def list(self) -> List[SLAConfig]:
        result = await self._session.execute(select(SLAConfigModel).order_by(SLAConfigModel.created_at.asc()))
        return [_sla_config_to_domain(m) for m in result.scalars().all()]

    async def find_enabled(
        self,
        category: Optional[ComplaintCategory],
        priority: ComplaintPriority
    ) -> Optional[SLAConfig]:
        stmt = select(SLAConfigModel).where(
            SLAConfigModel.enabled.is_(True),
            SLAConfigModel.priority == priority.value,
        )
        if category is None:
            stmt = stmt.where(SLAConfigModel.category.is_(None))
        else:
            stmt = stmt.where(SLAConfigModel.category == category.value)
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return _sla_config_to_domain(model) if model else None


# ========== SLA breaches ==========

def _breach_values(breach: SLABreach) -> Dict[str, Any]:
    return {
        "ticket_id": breach.ticket_id,
        "breach_type": breach.breach_type.value,
        "detected_at": breach.detected_at,
        "due_at": breach.due_at,
        "status": breach.status.value,
        "note": breach.note,
        "escalated": breach.escalated,
        "closed_at": breach.closed_at,
        "closed_by": breach.closed_by,
    }


def _breach_to_domain(model: SLABreachModel) -> SLABreach:
    return SLABreach(
        id=model.id,
        ticket_id=model.ticket_id,
        breach_type=SLAType(model.breach_type),
        detected_at=model.detected_at,
        due_at=model.due_at,
        status=BreachStatus(model.status),
        note=model.note,
        escalated=model.escalated,
        closed_at=model.closed_at,
        closed_by=model.closed_by,
    )


class SQLAlchemySLABreachRepository(ISLABreachRepository):
    """
    SQLAlchemy implementation of the SLA breach repository.

    The unique constraint on (ticket, breach type, deadline) is the final
    guard against duplicate breach records.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, breach: SLABreach) -> None:
        existing = await self.find(breach.ticket_id, breach.breach_type, breach.due_at)
        if existing is not None:
            raise ConflictException("SLABreach", existing.id, {"reason": "duplicate_breach"})
        self._session.add(SLABreachModel(id=breach.id, **_breach_values(breach)))
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise ConflictException("SLABreach", breach.id, {"reason": "duplicate_breach"}) from e

    async def get(self, breach_id: str) -> Optional[SLABreach]:
        model = await self._session.get(SLABreachModel, breach_id, populate_existing=True)
        return _breach_to_domain(model) if model else None

    async def save(self, breach: SLABreach) -> None:
        await _update_row(self._session, SLABreachModel, breach.id, _breach_values(breach))

    async def find(self, ticket_id: str, breach_type: SLAType, due_at: datetime) -> Optional[SLABreach]:
        stmt = select(SLABreachModel).where(
            SLABreachModel.ticket_id == ticket_id,
            SLABreachModel.breach_type == breach_type.value,
            SLABreachModel.due_at == due_at,
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return _breach_to_domain(model) if model else None

    async def list(
        self,
        ticket_id: Optional[str] = None,
        status: Optional[BreachStatus] = None,
        breach_type: Optional[SLAType] = None
    ) -> List[SLABreach]:
        stmt = select(SLABreachModel)
        if ticket_id is not None:
            stmt = stmt.where(SLABreachModel.ticket_id == ticket_id)
        if status is not None:
            stmt = stmt.where(SLABreachModel.status == status.value)
        if breach_type is not None:
            stmt = stmt.where(SLABreachModel.breach_type == breach_type.value)
        stmt = stmt.order_by(SLABreachModel.detected_at.asc())
        result = await self._session.execute(stmt)
        return [_breach_to_domain(m) for m in result.scalars().all()]


# ========== Assignment rules ==========

def _rule_values(rule: AssignmentRule) -> Dict[str, Any]:
    return {
        "name": rule.name,
        "priority_order": rule.priority_order,
        "assignee_id": rule.assignee_id,
        "escalate_to": rule.escalate_to,
        "categories": [c.value for c in rule.conditions.categories],
        "priorities": [p.value for p in rule.conditions.priorities],
        "tags": list(rule.conditions.tags),
        "auto_acknowledge": rule.auto_acknowledge,
        "enabled": rule.enabled,
        "created_at": rule.created_at,
        "updated_at": rule.updated_at,
    }


def _rule_to_domain(model: AssignmentRuleModel) -> AssignmentRule:
    return AssignmentRule(
        id=model.id,
        name=model.name,
        priority_order=model.priority_order,
        assignee_id=model.assignee_id,
        escalate_to=model.escalate_to,
        conditions=RuleConditions(
            categories=tuple(ComplaintCategory(c) for c in model.categories or []),
            priorities=tuple(ComplaintPriority(p) for p in model.priorities or []),
            tags=tuple(model.tags or []),
        ),
        auto_acknowledge=model.auto_acknowledge,
        enabled=model.enabled,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SQLAlchemyAssignmentRuleRepository(IAssignmentRuleRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, rule: AssignmentRule) -> None:
        self._session.add(AssignmentRuleModel(id=rule.id, **_rule_values(rule)))
        await self._session.flush()

    async def get(self, rule_id: str) -> Optional[AssignmentRule]:
        model = await self._session.get(AssignmentRuleModel, rule_id)
        return _rule_to_domain(model) if model else None

    async def save(self, rule: AssignmentRule) -> None:
        await _update_row(self._session, AssignmentRuleModel, rule.id, _rule_values(rule))

    async def delete(self, rule_id: str) -> None:
        model = await self._session.get(AssignmentRuleModel, rule_id)
        if model is not None:
            await self._session.delete(model)
            await self._session.flush()

    async def list(self) -> List[AssignmentRule]:
        stmt = select(AssignmentRuleModel).order_by(AssignmentRuleModel.priority_order.asc())
        result = await self._session.execute(stmt)
        return [_rule_to_domain(m) for m in result.scalars().all()]


# ========== Unit of Work ==========

class SQLAlchemyUnitOfWork(IUnitOfWork):
    """
    One database session and transaction per unit of work.

    Store failures surface as ``DependencyFailureException``; constraint
    violations at commit time as ``ConflictException``.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        # Imported here: the feedback repositories import this package's models
        from src.feedback.infrastructure.repositories import (
            SQLAlchemyAnonymousFeedbackRepository, SQLAlchemySurveyRepository,
            SQLAlchemySurveyResponseRepository,
        )

        session = self._session_factory()
        self._session = session
        self.complaints = SQLAlchemyComplaintRepository(session)
        self.status_changes = SQLAlchemyStatusChangeRepository(session)
        self.comments = SQLAlchemyCommentRepository(session)
        self.resolutions = SQLAlchemyResolutionRepository(session)
        self.sla_configs = SQLAlchemySLAConfigRepository(session)
        self.breaches = SQLAlchemySLABreachRepository(session)
        self.rules = SQLAlchemyAssignmentRuleRepository(session)
        self.surveys = SQLAlchemySurveyRepository(session)
        self.survey_responses = SQLAlchemySurveyResponseRepository(session)
        self.anonymous_feedback = SQLAlchemyAnonymousFeedbackRepository(session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None and isinstance(exc, SQLAlchemyError):
                await self.rollback()
                logger.error("Database operation failed", extra={"error": str(exc)})
                raise DependencyFailureException("database", "storage unavailable") from exc
            await super().__aexit__(exc_type, exc, tb)
        finally:
            await self._session.close()
            self._session = None

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            raise ConflictException("transaction", "commit", {"reason": "constraint_violation"}) from e
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error("Database commit failed", extra={"error": str(e)})
            raise DependencyFailureException("database", "storage unavailable") from e

    async def rollback(self) -> None:
        await self._session.rollback()


def sqlalchemy_uow_factory(session_factory: Callable[[], AsyncSession]) -> Callable[[], SQLAlchemyUnitOfWork]:
    """Factory producing a fresh unit of work per call."""

    def factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory)

    return factory
