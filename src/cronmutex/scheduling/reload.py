"""Reload controller: owns the running scheduler across reloads.

┌──────────────────────────────────────────────────────────────────────┐
│  ReloadController.run()                                              │
│                                                                      │
│   start()  ── read file ──┬── unreadable: retry every retry_seconds  │
│                           ├── invalid:    DefinitionsParseError      │
│                           └── ok:         ScheduleState v1, start    │
│                                                                      │
│   request queue (fed by signal handlers)                             │
│     RELOAD    → reload(): parse new file                             │
│                   failure: log, keep the current scheduler           │
│                   success: stop old, start new (version + 1)         │
│     TERMINATE → terminate(): stop scheduler, cancel + drain runs     │
└──────────────────────────────────────────────────────────────────────┘

The controller holds exactly one scheduler reference and replaces it as a
whole; executions started by an old scheduler are owned by the launcher
and finish undisturbed.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path
from typing import IO

from cronmutex.core.errors import DefinitionsParseError
from cronmutex.core.logging import get_logger
from cronmutex.core.settings import CronmutexSettings
from cronmutex.execution.launcher import ExecutionLauncher
from cronmutex.lease.protocol import LeaseClient

from .definitions import ScheduleState, load_definitions
from .scheduler import CronScheduler

logger = get_logger(__name__)


class ControlRequest(str, Enum):
    RELOAD = "reload"
    TERMINATE = "terminate"


class ReloadController:
    """Loads definitions, runs a scheduler and swaps it on request.

    Example:
        >>> controller = ReloadController("/etc/cron.yml", settings, client, ExecutionLauncher())
        >>> loop.add_signal_handler(signal.SIGHUP, controller.request_reload)
        >>> loop.add_signal_handler(signal.SIGTERM, controller.request_terminate)
        >>> await controller.run()
    """

    def __init__(
        self,
        path: str | Path,
        settings: CronmutexSettings,
        lease_client: LeaseClient,
        launcher: ExecutionLauncher,
        *,
        stdout: IO[bytes] | None = None,
        stderr: IO[bytes] | None = None,
    ) -> None:
        self.path = Path(path)
        self._settings = settings
        self._lease_client = lease_client
        self._launcher = launcher
        self._stdout = stdout
        self._stderr = stderr

        self._requests: asyncio.Queue[ControlRequest] = asyncio.Queue()
        self._state: ScheduleState | None = None
        self._scheduler: CronScheduler | None = None
        self._terminated = False

    @property
    def state(self) -> ScheduleState | None:
        return self._state

    @property
    def scheduler(self) -> CronScheduler | None:
        return self._scheduler

    @property
    def terminated(self) -> bool:
        return self._terminated

    # ------------------------------------------------------------------
    # Requests (signal handlers)
    # ------------------------------------------------------------------

    def request_reload(self) -> None:
        self._requests.put_nowait(ControlRequest.RELOAD)

    def request_terminate(self) -> None:
        self._requests.put_nowait(ControlRequest.TERMINATE)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Initial load, retried while the file cannot be read.

        Returns False if termination was requested before a schedule
        could be loaded.

        Raises:
            DefinitionsParseError: The document is invalid.
        """
        retry_seconds = self._settings.daemon.retry_seconds
        while True:
            try:
                entries = load_definitions(self.path)
                break
            except OSError as e:
                logger.error("Failed loading config", path=str(self.path), error=str(e), retry_in=retry_seconds)

            try:
                request = await asyncio.wait_for(self._requests.get(), timeout=retry_seconds)
            except TimeoutError:
                continue
            if request is ControlRequest.TERMINATE:
                logger.info("Terminating")
                self._terminated = True
                return False

        self._swap(ScheduleState(version=1, entries=entries, source=str(self.path)))
        return True

    async def reload(self) -> bool:
        """Re-read the definitions and swap schedulers.

        On failure the current scheduler keeps running. Returns whether a
        new generation was installed.
        """
        if self._state is None:
            raise RuntimeError("reload() called before start()")

        logger.info("Reloading config", path=str(self.path), generation=self._state.version)
        try:
            entries = load_definitions(self.path)
        except (OSError, DefinitionsParseError) as e:
            logger.error(
                "reload_failed",
                path=str(self.path),
                error=str(e),
                generation=self._state.version,
            )
            return False

        if self._scheduler is not None:
            await self._scheduler.stop()
        self._swap(self._state.next_version(entries))
        return True

    async def terminate(self) -> None:
        """Stop scheduling, cancel in-flight runs and wait for them a bit."""
        logger.info("Terminating")
        self._terminated = True
        if self._scheduler is not None:
            await self._scheduler.stop()

        drain_timeout = self._settings.daemon.drain_timeout
        if self._launcher.active_count:
            self._launcher.cancel_all()
            await self._launcher.drain(drain_timeout)

    async def run(self) -> None:
        """Start, then serve reload/terminate requests until terminated."""
        if not await self.start():
            return

        while True:
            request = await self._requests.get()
            if request is ControlRequest.RELOAD:
                await self.reload()
            else:
                await self.terminate()
                return

    def _swap(self, state: ScheduleState) -> None:
        scheduler = CronScheduler(
            state,
            self._settings,
            self._lease_client,
            self._launcher,
            stdout=self._stdout,
            stderr=self._stderr,
        )
        scheduler.start()
        self._state = state
        self._scheduler = scheduler


__all__ = ["ControlRequest", "ReloadController"]
