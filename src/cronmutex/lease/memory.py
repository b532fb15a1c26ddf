"""In-memory lease client.

Same contract as ``RedisLeaseClient`` for a single process: useful for
tests and for trying schedules locally without a Redis instance. Entries
expire lazily, checked on every access against an injectable monotonic
clock.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from uuid import uuid4

from .protocol import Lease


class InMemoryLeaseClient:
    """Process-local lease store.

    Example:
        >>> client = InMemoryLeaseClient()
        >>> lease = await client.acquire("backup", ttl=10)
        >>> await client.acquire("backup", ttl=10) is None
        True
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}  # name -> (token, expires_at)
        self._lock = threading.Lock()

    def _current(self, name: str) -> str | None:
        entry = self._entries.get(name)
        if entry is None:
            return None
        token, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[name]
            return None
        return token

    async def acquire(self, name: str, ttl: float) -> Lease | None:
        with self._lock:
            if self._current(name) is not None:
                return None
            lease = Lease(name=name, token=uuid4().hex, ttl=ttl)
            self._entries[name] = (lease.token, self._clock() + ttl)
            return lease

    async def extend(self, lease: Lease) -> bool:
        with self._lock:
            if self._current(lease.name) != lease.token:
                return False
            self._entries[lease.name] = (lease.token, self._clock() + lease.ttl)
            return True

    async def release(self, lease: Lease) -> bool:
        with self._lock:
            if self._current(lease.name) != lease.token:
                return False
            del self._entries[lease.name]
            return True

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()

    def holder(self, name: str) -> str | None:
        """Token currently holding *name*, or None if free."""
        with self._lock:
            return self._current(name)

    def active(self) -> list[str]:
        """Names of all unexpired mutexes."""
        with self._lock:
            return sorted(n for n in list(self._entries) if self._current(n) is not None)
