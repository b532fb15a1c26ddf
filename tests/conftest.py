"""
Shared pytest fixtures for cronmutex tests.

This module provides:
- Isolation from CM_* environment variables and config files on the host
- Settings with scaled-down timings
- An in-memory lease client that records calls and can inject failures
- A helper to run small Python snippets as child commands
"""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable

import pytest
import structlog

from cronmutex.core.errors import LeaseStoreError
from cronmutex.core.settings import CronmutexSettings
from cronmutex.lease import InMemoryLeaseClient, Lease


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """No CM_* variables and no config file discovery from the host."""
    for key in list(os.environ):
        if key.startswith("CM_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("cronmutex.core.settings.CONFIG_SEARCH_PATHS", (tmp_path,))


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Each test starts from structlog's defaults, whatever the last one configured."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class RecordingLeaseClient(InMemoryLeaseClient):
    """InMemoryLeaseClient that records calls and can be told to fail.

    Attributes:
        calls: ``(operation, name)`` tuples in call order
        acquire_error / extend_error / release_error: raised when set
        extend_result: forced return value of extend (None = real result)
        extend_times: ``time.monotonic()`` of every extend call
    """

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str]] = []
        self.acquire_error: Exception | None = None
        self.extend_error: Exception | None = None
        self.release_error: Exception | None = None
        self.extend_result: bool | None = None
        self.extend_times: list[float] = []
        self.closed = False

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    async def acquire(self, name: str, ttl: float) -> Lease | None:
        self.calls.append(("acquire", name))
        if self.acquire_error is not None:
            raise self.acquire_error
        return await super().acquire(name, ttl)

    async def extend(self, lease: Lease) -> bool:
        self.calls.append(("extend", lease.name))
        self.extend_times.append(time.monotonic())
        if self.extend_error is not None:
            raise self.extend_error
        if self.extend_result is not None:
            return self.extend_result
        return await super().extend(lease)

    async def release(self, lease: Lease) -> bool:
        self.calls.append(("release", lease.name))
        if self.release_error is not None:
            raise self.release_error
        return await super().release(lease)

    async def close(self) -> None:
        self.closed = True
        await super().close()


@pytest.fixture
def lease_client() -> RecordingLeaseClient:
    return RecordingLeaseClient()


@pytest.fixture
def store_error() -> LeaseStoreError:
    return LeaseStoreError("connection refused", cause=ConnectionError("connection refused"))


@pytest.fixture
def settings() -> CronmutexSettings:
    """Settings with a short default TTL and renewal margin."""
    return CronmutexSettings(
        mutex={"prefix": "test:", "default_ttl": 10, "renew_margin": 0.2},
        daemon={"drain_timeout": 2.0, "retry_seconds": 0.1},
    )


@pytest.fixture
def py() -> Callable[[str], list[str]]:
    """Build an argv that runs *code* with the current interpreter."""

    def build(code: str) -> list[str]:
        return [sys.executable, "-c", code]

    return build
