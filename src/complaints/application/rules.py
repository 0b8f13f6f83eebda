"""
Assignment Rule Engine
======================

Chooses the owner of a ticket from an ordered list of rules.

Enabled rules are evaluated in ascending ``priority_order``; the first rule
whose conditions all hold wins. When none matches, the policy's default
assignee owns the ticket.
"""

from typing import Iterable, List, Optional, Sequence

from src.config import ComplaintCategory, ComplaintPriority, ESCALATION_TAG
from src.core import InvalidTransitionException, ResourceNotFoundException
from src.complaints.application.dto import (
    AssignmentRuleCreateRequest, AssignmentRuleUpdateRequest, RuleConditionsDTO,
    validate_payload,
)
from src.complaints.application.interfaces import (
    ISLAPolicyProvider, IUnitOfWork, UnitOfWorkFactory,
)
from src.complaints.application.permissions import require_elevated
from src.complaints.domain import Actor, AssignmentRule, Complaint, RuleConditions
from src.shared.infrastructure.clock import Clock
from src.shared.infrastructure.locks import KeyedLocks
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

RULE_SET_KEY = "assignment-rules"


def evaluate_rules(
    rules: Iterable[AssignmentRule],
    category: ComplaintCategory,
    priority: ComplaintPriority,
    tags: Sequence[str]
) -> Optional[AssignmentRule]:
    """First enabled rule, by ascending order, whose conditions match."""
    for rule in sorted(rules, key=lambda r: r.priority_order):
        if rule.enabled and rule.conditions.matches(category, priority, tags):
            return rule
    return None


def _conditions_from_dto(dto: RuleConditionsDTO) -> RuleConditions:
    return RuleConditions(
        categories=tuple(dto.categories),
        priorities=tuple(dto.priorities),
        tags=tuple(tag.strip().lower() for tag in dto.tags if tag.strip()),
    )


class AssignmentRuleEngine:
    """Rule evaluation plus rule CRUD, toggling and reordering."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy_provider: ISLAPolicyProvider,
        clock: Clock,
        lock_timeout_seconds: float = 5.0
    ):
        self._uow_factory = uow_factory
        self._policy_provider = policy_provider
        self._clock = clock
        self._locks = KeyedLocks("AssignmentRule", lock_timeout_seconds)

    # ========== Evaluation ==========

    @property
    def default_assignee(self) -> str:
        return self._policy_provider.get_policy().default_assignee

    async def match(
        self,
        uow: IUnitOfWork,
        category: ComplaintCategory,
        priority: ComplaintPriority,
        tags: Sequence[str]
    ) -> Optional[AssignmentRule]:
        return evaluate_rules(await uow.rules.list(), category, priority, tags)

    async def select_assignee(self, uow: IUnitOfWork, complaint: Complaint) -> str:
        """Assignee for a ticket: the winning rule's, or the default queue."""
        rule = await self.match(uow, complaint.category, complaint.priority, complaint.tags)
        if rule is not None:
            return rule.assignee_id
        return self.default_assignee

    async def escalation_target(self, uow: IUnitOfWork, complaint: Complaint) -> Optional[str]:
        """
        Who an escalated ticket goes to.

        Rules are evaluated with the extra ``escalated`` tag so escalation
        specific rules can take precedence. None keeps the current assignee.
        """
        tags = list(complaint.tags) + [ESCALATION_TAG]
        rule = await self.match(uow, complaint.category, complaint.priority, tags)
        if rule is None:
            return None
        return rule.escalate_to or rule.assignee_id

    # ========== CRUD ==========

    async def list_rules(self) -> List[AssignmentRule]:
        async with self._uow_factory() as uow:
            return await uow.rules.list()

    async def get_rule(self, rule_id: str) -> AssignmentRule:
        async with self._uow_factory() as uow:
            return await self._load(uow, rule_id)

    async def create_rule(self, actor: Actor, request) -> AssignmentRule:
        """Create a rule at the end of the evaluation order."""
        require_elevated(actor, "manage assignment rules")
        request = validate_payload(AssignmentRuleCreateRequest, request)

        async with self._locks.hold(RULE_SET_KEY):
            async with self._uow_factory() as uow:
                existing = await uow.rules.list()
                now = self._clock.now()
                rule = AssignmentRule(
                    name=request.name,
                    priority_order=len(existing) + 1,
                    assignee_id=request.assignee_id,
                    conditions=_conditions_from_dto(request.conditions),
                    escalate_to=request.escalate_to,
                    auto_acknowledge=request.auto_acknowledge,
                    enabled=request.enabled,
                    created_at=now,
                    updated_at=now,
                )
                await uow.rules.add(rule)

        logger.info(
            "Assignment rule created",
            extra={"rule_id": rule.id, "priority_order": rule.priority_order}
        )
        return rule

    async def update_rule(self, actor: Actor, rule_id: str, request) -> AssignmentRule:
        require_elevated(actor, "manage assignment rules")
        request = validate_payload(AssignmentRuleUpdateRequest, request)

        async with self._locks.hold(RULE_SET_KEY):
            async with self._uow_factory() as uow:
                rule = await self._load(uow, rule_id)
                if request.name is not None:
                    rule.name = request.name
                if request.conditions is not None:
                    rule.conditions = _conditions_from_dto(request.conditions)
                if request.assignee_id is not None:
                    rule.assignee_id = request.assignee_id
                if "escalate_to" in request.model_fields_set:
                    rule.escalate_to = request.escalate_to
                if request.auto_acknowledge is not None:
                    rule.auto_acknowledge = request.auto_acknowledge
                rule.updated_at = self._clock.now()
                await uow.rules.save(rule)
        return rule

    async def toggle_rule(self, actor: Actor, rule_id: str, enabled: bool) -> AssignmentRule:
        """Enable or disable a rule without removing it from the order."""
        require_elevated(actor, "manage assignment rules")
        async with self._locks.hold(RULE_SET_KEY):
            async with self._uow_factory() as uow:
                rule = await self._load(uow, rule_id)
                rule.enabled = enabled
                rule.updated_at = self._clock.now()
                await uow.rules.save(rule)
        logger.info("Assignment rule toggled", extra={"rule_id": rule_id, "enabled": enabled})
        return rule

    async def delete_rule(self, actor: Actor, rule_id: str) -> None:
        """Delete a rule and close the gap in the numbering."""
        require_elevated(actor, "manage assignment rules")
        async with self._locks.hold(RULE_SET_KEY):
            async with self._uow_factory() as uow:
                await self._load(uow, rule_id)
                await uow.rules.delete(rule_id)
                now = self._clock.now()
                for position, rule in enumerate(await uow.rules.list(), start=1):
                    if rule.priority_order != position:
                        rule.priority_order = position
                        rule.updated_at = now
                        await uow.rules.save(rule)

    async def reorder_rules(self, actor: Actor, rule_ids: List[str]) -> List[AssignmentRule]:
        """
        Renumber rules 1..N in the given order.

        Raises:
            InvalidTransitionException: unless ``rule_ids`` is exactly the
                current rule set with no duplicates
        """
        require_elevated(actor, "reorder assignment rules")

        async with self._locks.hold(RULE_SET_KEY):
            async with self._uow_factory() as uow:
                rules = {rule.id: rule for rule in await uow.rules.list()}
                if len(set(rule_ids)) != len(rule_ids):
                    raise InvalidTransitionException(
                        "Rule order contains duplicates",
                        details={"rule_ids": rule_ids}
                    )
                if set(rule_ids) != set(rules):
                    raise InvalidTransitionException(
                        "Rule order must list every rule exactly once",
                        details={
                            "missing": sorted(set(rules) - set(rule_ids)),
                            "unknown": sorted(set(rule_ids) - set(rules)),
                        }
                    )

                now = self._clock.now()
                ordered = []
                for position, rule_id in enumerate(rule_ids, start=1):
                    rule = rules[rule_id]
                    if rule.priority_order != position:
                        rule.priority_order = position
                        rule.updated_at = now
                        await uow.rules.save(rule)
                    ordered.append(rule)

        logger.info("Assignment rules reordered", extra={"rule_count": len(ordered)})
        return ordered

    async def _load(self, uow: IUnitOfWork, rule_id: str) -> AssignmentRule:
        rule = await uow.rules.get(rule_id)
        if rule is None:
            raise ResourceNotFoundException("AssignmentRule", rule_id)
        return rule
