"""
Keyed Locks
===========

Single-writer-per-key discipline for async code.

Each key (a ticket id, or a fixed name for global resources such as the
assignment rule set) gets its own ``asyncio.Lock``. Locks are reference
counted and dropped once nobody holds or waits on them.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from src.core import ConflictException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLocks:
    """Registry of per-key asyncio locks with acquisition timeout."""

    def __init__(self, resource_type: str, timeout_seconds: float = 5.0):
        self._resource_type = resource_type
        self._timeout = timeout_seconds
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for ``key``.

        Raises:
            ConflictException: if the lock is not acquired within the timeout
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry()
            self._entries[key] = entry
        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self._timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Lock acquisition timed out",
                    extra={"resource_type": self._resource_type, "key": key}
                )
                raise ConflictException(self._resource_type, key, {"reason": "lock_timeout"})
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
