"""Per-entity mutual exclusion for job execution.

WHY
───
Two jobs racing on the same logical ID (a create still running while a
delete starts) interleave provider calls in ways neither saga tolerates.
The worker therefore serializes jobs that target the same entity key,
while jobs on different entities still run concurrently.

ARCHITECTURE
────────────
::

    EntityLocks()
      ├── .hold(key)         ─ context manager, blocks until the key (or every
      │                        key of a sequence) is free
      ├── .is_locked(key)    ─ check without acquiring
      └── .active()          ─ keys currently held

    Lock key convention: "<entity_type>:<entity_id>"
      e.g. "environment:prod1a2b3c4d"

Locks live in this process only. Entries are reference counted and
dropped when no thread holds or waits on them.

Example::

    locks = EntityLocks()
    with locks.hold("environment:prod1a2b3c4d"):
        manager.delete("prod1a2b3c4d")
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import ExitStack, contextmanager


class EntityLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    @contextmanager
    def hold(self, key: str | Sequence[str] | None) -> Iterator[None]:
        """Hold the lock for *key*; ``None`` means no locking.

        A sequence of keys is acquired in sorted order, so two jobs that
        share several entities cannot deadlock each other.
        """
        if key is None:
            yield
            return

        keys = [key] if isinstance(key, str) else sorted(set(key))
        with ExitStack() as stack:
            for k in keys:
                stack.enter_context(self._hold_one(k))
            yield

    @contextmanager
    def _hold_one(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def is_locked(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
            return lock is not None and lock.locked()

    def active(self) -> list[str]:
        with self._guard:
            return sorted(k for k, lock in self._locks.items() if lock.locked())
