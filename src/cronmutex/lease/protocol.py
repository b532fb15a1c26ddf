"""Lease client protocol.

A lease client is the only thing the execution engine knows about the lock
store. It needs three operations, each a single atomic step on the store:

    acquire(name, ttl)  →  SET name token NX PX ttl_ms
    extend(lease)       →  if GET name == token: PEXPIRE name ttl_ms
    release(lease)      →  if GET name == token: DEL name

Check-then-act from the client side is never acceptable: the store is the
only arbiter, and a lease that expired and was taken over by another host
must make ``extend`` and ``release`` fail.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Lease:
    """One successful acquisition of a named mutex.

    Attributes:
        name: Full mutex name as stored (prefix included)
        token: Opaque value unique to this acquisition
        ttl: Expiry in seconds, reset by every extend
    """

    name: str
    token: str
    ttl: float

    @property
    def ttl_ms(self) -> int:
        return max(1, int(self.ttl * 1000))


@runtime_checkable
class LeaseClient(Protocol):
    """Protocol for lock store clients.

    Implementations:
        - RedisLeaseClient: shared Redis instance (production)
        - InMemoryLeaseClient: single process (tests, local dry runs)

    Store communication failures raise ``LeaseStoreError``; ownership
    failures are reported through the return values.
    """

    async def acquire(self, name: str, ttl: float) -> Lease | None:
        """Create the mutex if absent. Returns None when it is already held."""
        ...

    async def extend(self, lease: Lease) -> bool:
        """Reset the mutex expiry. Returns False when the token no longer matches."""
        ...

    async def release(self, lease: Lease) -> bool:
        """Delete the mutex. Returns False when the token no longer matches."""
        ...

    async def close(self) -> None:
        """Release connections held by the client."""
        ...
