"""
SLA Policy Service
==================

Resolves SLA targets for a (category, priority) pair and manages the
``SLAConfig`` records they come from.

Resolution order:
1. Enabled config for the exact (category, priority)
2. Enabled wildcard config (no category) for the priority
3. The policy file's default targets for the priority
"""

import asyncio
from datetime import datetime
from typing import List, Optional

from src.config import ComplaintCategory, ComplaintPriority
from src.core import ConflictException, ResourceNotFoundException, ValidationException
from src.complaints.application.dto import (
    SLAConfigCreateRequest, SLAConfigUpdateRequest, validate_payload,
)
from src.complaints.application.interfaces import (
    ISLAPolicyProvider, IUnitOfWork, UnitOfWorkFactory,
)
from src.complaints.application.permissions import require_elevated
from src.complaints.domain import (
    Actor, SLACalculator, SLAConfig, SLADeadlines, SLATargets,
)
from src.shared.infrastructure.clock import Clock
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class SLAPolicyService:
    """SLA target lookup and SLA config CRUD."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy_provider: ISLAPolicyProvider,
        clock: Clock
    ):
        self._uow_factory = uow_factory
        self._policy_provider = policy_provider
        self._clock = clock
        # Serializes config writes so the one-enabled-per-pair check holds
        self._write_lock = asyncio.Lock()

    # ========== Target Resolution ==========

    async def resolve_config(
        self,
        category: ComplaintCategory,
        priority: ComplaintPriority,
        uow: Optional[IUnitOfWork] = None
    ) -> SLATargets:
        """
        Resolve the SLA targets that apply to a ticket.

        Args:
            category: Ticket category
            priority: Ticket priority
            uow: Unit of work to read through; a fresh one is opened when omitted

        Returns:
            SLATargets tagged with where they came from
        """
        if uow is None:
            async with self._uow_factory() as own_uow:
                return await self._resolve(own_uow, category, priority)
        return await self._resolve(uow, category, priority)

    async def _resolve(
        self,
        uow: IUnitOfWork,
        category: ComplaintCategory,
        priority: ComplaintPriority
    ) -> SLATargets:
        config = await uow.sla_configs.find_enabled(category, priority)
        if config is not None:
            return SLATargets(
                response_minutes=config.response_minutes,
                resolution_minutes=config.resolution_minutes,
                source="category",
                config_id=config.id,
            )

        config = await uow.sla_configs.find_enabled(None, priority)
        if config is not None:
            return SLATargets(
                response_minutes=config.response_minutes,
                resolution_minutes=config.resolution_minutes,
                source="priority",
                config_id=config.id,
            )

        return self._policy_provider.get_policy().get_default_targets(priority)

    async def compute_deadlines(
        self,
        uow: IUnitOfWork,
        category: ComplaintCategory,
        priority: ComplaintPriority,
        base: datetime
    ) -> SLADeadlines:
        """Deadlines for a ticket whose SLA clock starts at ``base``."""
        targets = await self._resolve(uow, category, priority)
        return SLACalculator.calculate_deadlines(base, targets)

    # ========== Config CRUD ==========

    async def list_configs(self) -> List[SLAConfig]:
        async with self._uow_factory() as uow:
            return await uow.sla_configs.list()

    async def get_config(self, config_id: str) -> SLAConfig:
        async with self._uow_factory() as uow:
            return await self._load(uow, config_id)

    async def create_config(self, actor: Actor, request) -> SLAConfig:
        """
        Create an SLA config.

        Raises:
            PermissionDeniedException: unless the actor is a coordinator or admin
            ValidationException: on invalid targets
            ConflictException: if another enabled config covers the same pair
        """
        require_elevated(actor, "manage SLA configs")
        request = validate_payload(SLAConfigCreateRequest, request)

        async with self._write_lock:
            async with self._uow_factory() as uow:
                if request.enabled:
                    await self._ensure_pair_free(uow, request.category, request.priority)
                now = self._clock.now()
                config = SLAConfig(
                    priority=request.priority,
                    category=request.category,
                    response_minutes=request.response_minutes,
                    resolution_minutes=request.resolution_minutes,
                    enabled=request.enabled,
                    created_at=now,
                    updated_at=now,
                )
                await uow.sla_configs.add(config)

        logger.info(
            "SLA config created",
            extra={
                "config_id": config.id,
                "category": config.category.value if config.category else None,
                "priority": config.priority.value
            }
        )
        return config

    async def update_config(self, actor: Actor, config_id: str, request) -> SLAConfig:
        require_elevated(actor, "manage SLA configs")
        request = validate_payload(SLAConfigUpdateRequest, request)

        async with self._write_lock:
            async with self._uow_factory() as uow:
                config = await self._load(uow, config_id)
                response = request.response_minutes or config.response_minutes
                resolution = request.resolution_minutes or config.resolution_minutes
                if response > resolution:
                    raise ValidationException(
                        "response_minutes cannot exceed resolution_minutes",
                        fields={"response_minutes": "exceeds resolution_minutes"}
                    )
                if request.enabled and not config.enabled:
                    await self._ensure_pair_free(uow, config.category, config.priority)

                config.response_minutes = response
                config.resolution_minutes = resolution
                if request.enabled is not None:
                    config.enabled = request.enabled
                config.updated_at = self._clock.now()
                await uow.sla_configs.save(config)
        return config

    async def toggle_config(self, actor: Actor, config_id: str, enabled: bool) -> SLAConfig:
        return await self.update_config(actor, config_id, SLAConfigUpdateRequest(enabled=enabled))

    async def delete_config(self, actor: Actor, config_id: str) -> None:
        require_elevated(actor, "manage SLA configs")
        async with self._write_lock:
            async with self._uow_factory() as uow:
                await self._load(uow, config_id)
                await uow.sla_configs.delete(config_id)
        logger.info("SLA config deleted", extra={"config_id": config_id})

    # ========== Helpers ==========

    async def _load(self, uow: IUnitOfWork, config_id: str) -> SLAConfig:
        config = await uow.sla_configs.get(config_id)
        if config is None:
            raise ResourceNotFoundException("SLAConfig", config_id)
        return config

    async def _ensure_pair_free(
        self,
        uow: IUnitOfWork,
        category: Optional[ComplaintCategory],
        priority: ComplaintPriority
    ) -> None:
        existing = await uow.sla_configs.find_enabled(category, priority)
        if existing is not None:
            raise ConflictException(
                "SLAConfig",
                existing.id,
                {"reason": "an enabled config already covers this category and priority"}
            )
