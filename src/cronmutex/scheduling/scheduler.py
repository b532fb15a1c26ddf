"""Cron scheduler: fires leased executions from schedule entries.

ARCHITECTURE
────────────
::

    CronScheduler(state, settings, lease_client, launcher)
      ├── .start()   ─ one trigger task per entry
      │      └── loop: sleep until next_fire ─▶ build_execution ─▶ launcher.launch
      └── .stop()    ─ cancel trigger tasks (in-flight runs keep going)

A firing never waits for the previous run of the same entry: if that run
is still going, the new one simply finds the mutex busy. The scheduler
does not see, track or wait for the executions it starts; that is the
launcher's job.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import IO

from cronmutex.core.logging import LogContext, get_logger
from cronmutex.core.settings import CronmutexSettings
from cronmutex.execution.launcher import ExecutionLauncher
from cronmutex.execution.runner import LeasedExecution
from cronmutex.lease.protocol import LeaseClient

from .definitions import ScheduleEntry, ScheduleState
from .triggers import Trigger

logger = get_logger(__name__)


class CronScheduler:
    """Runs the entries of one ``ScheduleState``.

    Args:
        state: The definitions generation to run
        settings: Defaults for mutex TTL, prefix and lease-loss policy
        lease_client: Shared lease client
        launcher: Where fired executions are handed off
        stdout: Binary sink for the commands' stdout
        stderr: Binary sink for the commands' stderr
    """

    def __init__(
        self,
        state: ScheduleState,
        settings: CronmutexSettings,
        lease_client: LeaseClient,
        launcher: ExecutionLauncher,
        *,
        stdout: IO[bytes] | None = None,
        stderr: IO[bytes] | None = None,
    ) -> None:
        self.state = state
        self._settings = settings
        self._lease_client = lease_client
        self._launcher = launcher
        self._stdout = stdout
        self._stderr = stderr
        self._tasks: list[asyncio.Task] = []
        self._fired = 0

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    @property
    def fired_count(self) -> int:
        return self._fired

    def start(self) -> None:
        """Arm one trigger task per entry."""
        if self._tasks:
            logger.warning("scheduler_already_running", generation=self.state.version)
            return

        for entry in self.state.entries:
            logger.info(
                f"Adding {entry.name} @ {entry.cron} {entry.command}",
                entry=entry.name,
                generation=self.state.version,
            )
            task = asyncio.create_task(
                self._trigger_loop(entry, entry.trigger()),
                name=f"cronmutex-trigger:{entry.name}",
            )
            self._tasks.append(task)

        logger.info(
            "scheduler_started",
            generation=self.state.version,
            entries=len(self.state.entries),
            source=self.state.source,
        )

    async def stop(self) -> None:
        """Cancel the trigger tasks. Spawned executions are not affected."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("scheduler_stopped", generation=self.state.version)

    def build_execution(self, entry: ScheduleEntry) -> LeasedExecution:
        """Execution for one firing of *entry*."""
        return LeasedExecution(
            self._lease_client,
            entry.name,
            entry.command,
            entry.execution_options(self._settings),
            prefix=self._settings.mutex.prefix,
            stdout=self._stdout,
            stderr=self._stderr,
            entry=entry.name,
        )

    def fire(self, entry: ScheduleEntry) -> asyncio.Task | None:
        """Start one execution of *entry* without waiting for it."""
        log = logger.bind(entry=entry.name, generation=self.state.version)
        try:
            execution = self.build_execution(entry)
        except ValueError as e:
            log.error("execution_setup_failed", error=str(e))
            return None

        self._fired += 1
        log.debug("trigger_fired")
        return self._launcher.launch(execution, entry.name)

    async def _trigger_loop(self, entry: ScheduleEntry, trigger: Trigger) -> None:
        log = logger.bind(entry=entry.name, generation=self.state.version)
        last_fire: datetime | None = None

        # Executions fired from here inherit entry/generation in their logs
        with LogContext(entry=entry.name, generation=self.state.version):
            while True:
                now = datetime.now()
                after = now if last_fire is None or now > last_fire else last_fire
                try:
                    fire_at = trigger.next_fire(after)
                except ValueError as e:
                    log.error("trigger_stopped", error=str(e))
                    return

                delay = (fire_at - datetime.now()).total_seconds()
                if delay > 0:
                    await asyncio.sleep(delay)
                last_fire = fire_at

                try:
                    self.fire(entry)
                except Exception as e:
                    log.exception("trigger_fire_failed", error=str(e))


__all__ = ["CronScheduler"]
