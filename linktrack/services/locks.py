"""
Keyed in-process locks.

Writers to the same tracking link queue on one lock; different links never
contend. Entries are reference counted and dropped once nobody holds or
waits on them, so the registry does not grow with the number of links.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class _Entry:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class KeyedLockRegistry:
    """Registry of mutexes keyed by an arbitrary hashable value."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Usage:
            with registry.hold('LINK-AB12CD34-xyz'):
                ...
        """
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def active_keys(self) -> List[Hashable]:
        """Keys currently held or waited on."""
        with self._guard:
            return list(self._entries)
