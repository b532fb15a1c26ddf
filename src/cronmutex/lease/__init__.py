"""Lease clients: the lock store as seen by the execution engine."""

from __future__ import annotations

from cronmutex.core.settings import CronmutexSettings

from .memory import InMemoryLeaseClient
from .protocol import Lease, LeaseClient
from .redis_client import RedisLeaseClient


def create_lease_client(settings: CronmutexSettings) -> LeaseClient:
    """Build the shared Redis lease client from settings."""
    return RedisLeaseClient(settings.redis.uri, password=settings.redis.password)


__all__ = [
    "Lease",
    "LeaseClient",
    "InMemoryLeaseClient",
    "RedisLeaseClient",
    "create_lease_client",
]
