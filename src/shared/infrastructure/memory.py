"""
In-Memory Storage Primitives
============================

Building blocks for the in-memory repositories.

Records are deep-copied on the way in and on the way out so callers never
share mutable state with the store. Every write is remembered in an
``UndoJournal`` so a unit of work can roll back.
"""

import copy
from typing import Callable, Dict, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")

_MISSING = object()


class UndoJournal:
    """Reverse log of writes made during one unit of work."""

    def __init__(self) -> None:
        self._undo: List[Callable[[], None]] = []

    def remember_key(self, data: Dict[str, object], key: str) -> None:
        previous = data.get(key, _MISSING)

        def undo() -> None:
            if previous is _MISSING:
                data.pop(key, None)
            else:
                data[key] = previous

        self._undo.append(undo)

    def remember_append(self, data: List[object]) -> None:
        length = len(data)

        def undo() -> None:
            del data[length:]

        self._undo.append(undo)

    def undo(self) -> None:
        while self._undo:
            self._undo.pop()()

    def clear(self) -> None:
        self._undo.clear()

    def __len__(self) -> int:
        return len(self._undo)


class MemoryTable(Generic[T]):
    """Keyed records with copy-on-read/write and journaled writes."""

    def __init__(self, data: Dict[str, T], journal: UndoJournal):
        self._data = data
        self._journal = journal

    def get(self, key: str) -> Optional[T]:
        record = self._data.get(key)
        return copy.deepcopy(record) if record is not None else None

    def peek(self, key: str) -> Optional[T]:
        """Stored record without copying. Never mutate the result."""
        return self._data.get(key)

    def put(self, key: str, record: T) -> None:
        self._journal.remember_key(self._data, key)
        self._data[key] = copy.deepcopy(record)

    def remove(self, key: str) -> None:
        if key in self._data:
            self._journal.remember_key(self._data, key)
            del self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def stored(self) -> Iterator[T]:
        """Stored records without copying. Never mutate the results."""
        return iter(list(self._data.values()))

    def select(self, predicate: Callable[[T], bool]) -> List[T]:
        return [copy.deepcopy(r) for r in self._data.values() if predicate(r)]
