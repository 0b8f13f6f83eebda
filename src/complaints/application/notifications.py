"""
Notification Dispatcher
=======================

Best-effort delivery on top of an ``INotificationGateway``.

Notifications never decide the outcome of a business operation: failures
are logged and reported as ``False``.
"""

from typing import Any, Dict, Iterable

from src.config import NotificationKind
from src.core import DependencyFailureException
from src.complaints.application.interfaces import INotificationGateway
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class NotificationDispatcher:
    """Fan out one notification to several recipients."""

    def __init__(self, gateway: INotificationGateway):
        self._gateway = gateway

    @property
    def gateway(self) -> INotificationGateway:
        return self._gateway

    async def send(
        self,
        recipient: str,
        kind: NotificationKind,
        payload: Dict[str, Any]
    ) -> bool:
        """
        Deliver one notification.

        Returns:
            True if delivered, False otherwise
        """
        try:
            await self._gateway.notify(recipient, kind, payload)
            return True
        except DependencyFailureException as e:
            logger.warning(
                "Notification not delivered",
                extra={"recipient": recipient, "kind": kind.value, "error": e.message}
            )
        except Exception as e:
            logger.error(
                "Notification gateway error",
                extra={"recipient": recipient, "kind": kind.value, "error": str(e)},
                exc_info=True
            )
        return False

    async def dispatch(
        self,
        recipients: Iterable[str],
        kind: NotificationKind,
        payload: Dict[str, Any]
    ) -> int:
        """Send to each distinct recipient in order. Returns the number delivered."""
        delivered = 0
        seen = set()
        for recipient in recipients:
            if not recipient or recipient in seen:
                continue
            seen.add(recipient)
            if await self.send(recipient, kind, payload):
                delivered += 1
        return delivered
