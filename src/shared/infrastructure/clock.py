"""
Clock
=====

Time source for the domain. Services never call ``datetime.now`` directly so
deadlines and sweeps can be driven deterministically.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone


class Clock(ABC):
    """Interface for reading the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware UTC time."""


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
