"""
Per-key mutual exclusion for report mutations
Serializes concurrent writers that touch the same report or location cell
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLock:
    """
    Registry of reference-counted locks, one per key.

    Entries are dropped as soon as nobody holds or waits on them, so the
    registry only grows with the number of keys in use at the same time.
    Multiple keys are always acquired in sorted order to rule out deadlocks
    between callers locking overlapping key sets.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.holders += 1
            return entry

    def _checkin(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """
        Hold the locks for all given keys for the duration of the block.

        Args:
            *keys: Keys to lock; duplicates are ignored

        Yields:
            None once every lock is held
        """
        ordered: List[Hashable] = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                entry.lock.acquire()
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
