"""Redis-backed lease client.

One ``RedisLeaseClient`` (and so one connection pool) is shared by every
execution in the process. Calls for unrelated mutex names never wait on
each other beyond the pool size; calls for the same name are serialized by
Redis itself.

Atomicity:
    - acquire: ``SET key token NX PX ttl`` is a single command
    - extend/release: Lua scripts compare the token and act in one step,
      so a lease that expired and was re-acquired elsewhere can never be
      extended or deleted by its former holder

Example::

    client = RedisLeaseClient("redis://127.0.0.1:6379", password=None)
    lease = await client.acquire("cron:nightly-backup", ttl=300)
    if lease is None:
        ...  # another host is running it
    await client.extend(lease)
    await client.release(lease)
    await client.close()

Requires: ``pip install redis``
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from cronmutex.core.errors import LeaseStoreError
from cronmutex.core.logging import get_logger

from .protocol import Lease

logger = get_logger(__name__)

EXTEND_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("PEXPIRE", KEYS[1], ARGV[2])
end
return 0
"""

RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisLeaseClient:
    """Lease client for a single Redis instance.

    Args:
        uri: Redis connection URL (``redis://host:port/db``)
        password: Optional password; a password in the URL takes precedence
        connect_timeout: Seconds to wait for a TCP connection
        socket_timeout: Seconds to wait for a reply
        max_connections: Pool size limit (None = unbounded)
        client: Pre-built ``redis.asyncio.Redis`` client (tests)
    """

    def __init__(
        self,
        uri: str = "redis://127.0.0.1:6379",
        *,
        password: str | None = None,
        connect_timeout: float = 5.0,
        socket_timeout: float = 2.0,
        max_connections: int | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            pool_kwargs: dict[str, Any] = {
                "socket_connect_timeout": connect_timeout,
                "socket_timeout": socket_timeout,
            }
            if password:
                pool_kwargs["password"] = password
            if max_connections is not None:
                pool_kwargs["max_connections"] = max_connections
            pool = aioredis.ConnectionPool.from_url(uri, **pool_kwargs)
            client = aioredis.Redis.from_pool(pool)

        self._client = client
        self._extend = client.register_script(EXTEND_SCRIPT)
        self._release = client.register_script(RELEASE_SCRIPT)

    async def acquire(self, name: str, ttl: float) -> Lease | None:
        """Create the mutex if absent. Returns None when it is already held."""
        lease = Lease(name=name, token=uuid4().hex, ttl=ttl)
        try:
            created = await self._client.set(name, lease.token, nx=True, px=lease.ttl_ms)
        except RedisError as e:
            raise LeaseStoreError(f"Acquiring {name} failed: {e}", cause=e).with_context(
                mutex=name
            ) from e

        if not created:
            logger.debug("mutex_busy", mutex=name)
            return None

        logger.debug("mutex_acquired", mutex=name, ttl_ms=lease.ttl_ms)
        return lease

    async def extend(self, lease: Lease) -> bool:
        """Reset the mutex expiry if the token still matches."""
        try:
            result = await self._extend(keys=[lease.name], args=[lease.token, lease.ttl_ms])
        except RedisError as e:
            raise LeaseStoreError(f"Extending {lease.name} failed: {e}", cause=e).with_context(
                mutex=lease.name
            ) from e
        return bool(result)

    async def release(self, lease: Lease) -> bool:
        """Delete the mutex if the token still matches."""
        try:
            result = await self._release(keys=[lease.name], args=[lease.token])
        except RedisError as e:
            raise LeaseStoreError(f"Releasing {lease.name} failed: {e}", cause=e).with_context(
                mutex=lease.name
            ) from e
        return bool(result)

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["RedisLeaseClient", "EXTEND_SCRIPT", "RELEASE_SCRIPT"]
