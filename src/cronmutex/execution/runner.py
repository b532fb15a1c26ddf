"""Leased execution: run one command while holding a mutex.

Architecture:

    .. code-block:: text

        LeasedExecution.run()
        ┌──────────────────────────────────────────────────────────────┐
        │  IDLE ──▶ WAITING ──▶ ACQUIRING ──▶ RUNNING ──▶ FINISHING    │
        │  (random wait)   (SET NX PX)   (supervise)   (release)       │
        │                      │              │                        │
        │                      ▼              ▼                        │
        │                 LOCK_BUSY      SPAWN_FAILED                  │
        │                                                              │
        │  RUNNING: one loop, asyncio.wait(FIRST_COMPLETED) over       │
        │    process.wait()   → returncode, leave the loop             │
        │    renewal sleep    → extend (or abandon: fire-and-forget)   │
        │    task-ttl sleep   → SIGKILL the child, once                │
        │    cancel event     → leave the loop, child left running     │
        └──────────────────────────────────────────────────────────────┘

The loop is the only place that changes state, arms timers or talks to
the lease store while the command runs. Output forwarding runs in its own
tasks and never looks at the lease.

Example:
    >>> client = InMemoryLeaseClient()
    >>> options = ExecutionOptions(mutex_ttl=10)
    >>> execution = LeasedExecution(client, "backup", ["rsync", "-a", "/src", "/dst"], options)
    >>> result = await execution.run()
    >>> result.outcome
    <ExecutionOutcome.SUCCEEDED: 'succeeded'>
"""

from __future__ import annotations

import asyncio
import random
import shlex
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import IO, Any

from cronmutex.core.errors import (
    CronmutexError,
    ExtendError,
    LeaseLostError,
    LeaseStoreError,
    LockBusyError,
    ProcessFailedError,
    ReleaseError,
    SpawnError,
    TaskTimedOutError,
)
from cronmutex.core.logging import get_logger
from cronmutex.core.settings import LeaseLostPolicy
from cronmutex.lease.protocol import Lease, LeaseClient

from .models import ExecutionOptions, ExecutionOutcome, ExecutionResult, ExecutionState

logger = get_logger(__name__)

# How long to keep draining the child's pipes after it exited
OUTPUT_DRAIN_TIMEOUT = 1.0

_CHUNK_SIZE = 64 * 1024


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _write_chunk(sink: IO[bytes], chunk: bytes) -> None:
    sink.write(chunk)
    sink.flush()


class LeasedExecution:
    """One guarded run of a command.

    Args:
        lease_client: Shared lease client
        name: Mutex name without prefix (the entry name in daemon mode)
        command: argv of the command, first element is the program
        options: Timing and policy knobs
        prefix: Prepended to ``name`` to form the stored mutex key
        stdout: Binary sink for the child's stdout (None = discard)
        stderr: Binary sink for the child's stderr (None = discard)
        entry: Schedule entry name, for log context

    A LeasedExecution is single-use: ``run()`` may be awaited once.
    """

    def __init__(
        self,
        lease_client: LeaseClient,
        name: str,
        command: Sequence[str],
        options: ExecutionOptions,
        *,
        prefix: str = "",
        stdout: IO[bytes] | None = None,
        stderr: IO[bytes] | None = None,
        entry: str | None = None,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")

        self.name = name
        self.entry = entry
        self.mutex_name = prefix + name
        self.command = list(command)
        self.options = options

        self._lease_client = lease_client
        self._stdout = stdout
        self._stderr = stderr

        self._state = ExecutionState.IDLE
        self._cancel_event = asyncio.Event()
        self._started = False

        self._lease: Lease | None = None
        self._abandoned = False
        self._extensions = 0
        self._pid: int | None = None

        context: dict[str, Any] = {"mutex": self.mutex_name}
        if entry is not None:
            context["entry"] = entry
        self._log = logger.bind(**context)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)

    def cancel(self) -> None:
        """Stop supervising the command.

        The run ends as a successful completion with ``cancelled=True``.
        The child process itself is not signalled; the lease is released
        unless it was already abandoned.
        """
        if not self._cancel_event.is_set():
            self._log.info("cancel_requested", state=self._state.value)
            self._cancel_event.set()

    async def run(self) -> ExecutionResult:
        """Execute the full lifecycle and return the single result."""
        if self._started:
            raise RuntimeError(f"execution {self.mutex_name} already ran")
        self._started = True

        result = await self._execute(_utcnow())
        self._state = result.outcome.state
        self._log.info(
            "execution_finished",
            outcome=result.outcome.value,
            returncode=result.returncode,
            cancelled=result.cancelled,
        )
        return result

    async def _execute(self, started_at: datetime) -> ExecutionResult:
        # WAITING
        if self.options.random_wait > 0:
            self._state = ExecutionState.WAITING
            wait_ms = random.randrange(self.options.random_wait * 1000)
            self._log.info("random_wait", wait_ms=wait_ms)
            if await self._sleep_unless_cancelled(wait_ms / 1000):
                return self._result(ExecutionOutcome.SUCCEEDED, started_at, cancelled=True)

        self._log.info(
            "using_mutex",
            mutex_ttl=self.options.mutex_ttl,
            task_ttl=self.options.task_ttl,
        )

        # ACQUIRING
        self._state = ExecutionState.ACQUIRING
        try:
            lease = await self._lease_client.acquire(self.mutex_name, self.options.mutex_ttl)
        except LeaseStoreError as e:
            self._log.error("acquire_failed", error=str(e))
            e.with_context(mutex=self.mutex_name, entry=self.entry)
            return self._result(ExecutionOutcome.FAILED, started_at, error=e)

        if lease is None:
            self._log.info("mutex_busy")
            return self._result(
                ExecutionOutcome.LOCK_BUSY,
                started_at,
                error=LockBusyError(self.mutex_name).with_context(entry=self.entry),
            )
        self._lease = lease

        try:
            if self._cancel_event.is_set():
                result = self._result(ExecutionOutcome.SUCCEEDED, started_at, cancelled=True)
            else:
                result = await self._run_locked(lease, started_at)
        finally:
            self._state = ExecutionState.FINISHING
            await self._release()
        return result

    # ------------------------------------------------------------------
    # RUNNING
    # ------------------------------------------------------------------

    async def _run_locked(self, lease: Lease, started_at: datetime) -> ExecutionResult:
        self._log.info("running_command", command=self.command_line)

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if self._stdout is not None else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE if self._stderr is not None else asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            self._log.error("spawn_failed", command=self.command_line, error=str(e))
            error = SpawnError(f"Could not start {self.command[0]}: {e}", cause=e).with_context(
                mutex=self.mutex_name, entry=self.entry, command=self.command_line
            )
            return self._result(ExecutionOutcome.SPAWN_FAILED, started_at, error=error)

        self._pid = process.pid
        self._state = ExecutionState.RUNNING

        forwarders = []
        if process.stdout is not None:
            forwarders.append(asyncio.create_task(self._forward(process.stdout, self._stdout, "stdout")))
        if process.stderr is not None:
            forwarders.append(asyncio.create_task(self._forward(process.stderr, self._stderr, "stderr")))

        try:
            timed_out, lease_lost, cancelled = await self._supervise(process, lease)
        finally:
            await self._drain(forwarders, wait=process.returncode is not None)

        self._state = ExecutionState.FINISHING
        returncode = process.returncode

        if cancelled:
            self._log.info("execution_cancelled", pid=process.pid)
            return self._result(ExecutionOutcome.SUCCEEDED, started_at, cancelled=True)

        if returncode == 0:
            return self._result(ExecutionOutcome.SUCCEEDED, started_at, returncode=0)

        error: CronmutexError
        if timed_out:
            outcome = ExecutionOutcome.TIMED_OUT
            error = TaskTimedOutError(self.options.task_ttl or 0)
        elif lease_lost:
            outcome = ExecutionOutcome.FAILED
            error = LeaseLostError(f"Lost mutex {self.mutex_name}, command killed")
        else:
            outcome = ExecutionOutcome.FAILED
            error = ProcessFailedError(returncode if returncode is not None else -1)
        error.with_context(
            mutex=self.mutex_name, entry=self.entry, command=self.command_line, returncode=returncode
        )

        self._log.warning("command_failed", outcome=outcome.value, returncode=returncode)
        return self._result(outcome, started_at, returncode=returncode, error=error)

    async def _supervise(
        self, process: asyncio.subprocess.Process, lease: Lease
    ) -> tuple[bool, bool, bool]:
        """Coordinating loop. Returns ``(timed_out, lease_lost, cancelled)``."""
        exited = asyncio.create_task(process.wait())
        cancel = asyncio.create_task(self._cancel_event.wait())
        renewal: asyncio.Task | None = self._arm(self.options.renewal_interval)
        timeout: asyncio.Task | None = None
        if self.options.task_ttl:
            self._log.info("task_ttl_armed", task_ttl=self.options.task_ttl)
            timeout = self._arm(self.options.task_ttl)

        timed_out = lease_lost = cancelled = False

        try:
            while True:
                sources = {t for t in (exited, cancel, renewal, timeout) if t is not None}
                await asyncio.wait(sources, return_when=asyncio.FIRST_COMPLETED)

                if exited.done():
                    break

                if cancel.done():
                    cancelled = True
                    break

                if timeout is not None and timeout.done():
                    timeout = None
                    timed_out = True
                    self._log.warning("timeout_reached", task_ttl=self.options.task_ttl)
                    self._kill(process)

                if renewal is not None and renewal.done():
                    renewal = None
                    if self.options.fire_and_forget:
                        self._log.info("mutex_expiring_not_renewing")
                        self._abandoned = True
                    elif await self._extend(lease):
                        renewal = self._arm(self.options.renewal_interval)
                    elif self.options.on_lease_lost is LeaseLostPolicy.KILL:
                        self._log.error("lease_lost_killing_command", pid=process.pid)
                        lease_lost = True
                        self._kill(process)
                    else:
                        renewal = self._arm(self.options.renewal_interval)
        finally:
            # Disarm every timer before anything talks to the store again
            for task in (exited, cancel, renewal, timeout):
                if task is not None and not task.done():
                    task.cancel()

        return timed_out, lease_lost, cancelled

    def _arm(self, delay: float) -> asyncio.Task:
        return asyncio.create_task(asyncio.sleep(delay))

    async def _extend(self, lease: Lease) -> bool:
        self._log.info("extending_ttl", mutex_ttl=self.options.mutex_ttl)
        try:
            extended = await self._lease_client.extend(lease)
        except LeaseStoreError as e:
            error = ExtendError(f"Extending {self.mutex_name} failed: {e}", cause=e)
            self._log.warning("extend_failed", error=str(error), policy=self.options.on_lease_lost.value)
            return False

        if not extended:
            error = ExtendError(f"Mutex {self.mutex_name} is no longer held by us")
            self._log.warning("extend_failed", error=str(error), policy=self.options.on_lease_lost.value)
            return False

        self._extensions += 1
        return True

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            pass  # Already exited

    # ------------------------------------------------------------------
    # Output forwarding
    # ------------------------------------------------------------------

    async def _forward(
        self, stream: asyncio.StreamReader, sink: IO[bytes] | None, label: str
    ) -> None:
        """Copy *stream* to *sink* chunk by chunk until EOF.

        Sink writes run in the default executor, so a stalled consumer of
        our stdout never blocks the event loop.
        """
        loop = asyncio.get_running_loop()
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                return
            if sink is None:
                continue
            try:
                await loop.run_in_executor(None, _write_chunk, sink, chunk)
            except (OSError, ValueError) as e:
                # Keep reading so the child never blocks on a full pipe
                self._log.warning("output_sink_failed", stream=label, error=str(e))
                sink = None

    async def _drain(self, forwarders: list[asyncio.Task], *, wait: bool) -> None:
        if not forwarders:
            return
        if wait:
            _, pending = await asyncio.wait(forwarders, timeout=OUTPUT_DRAIN_TIMEOUT)
        else:
            pending = set(forwarders)
        for task in pending:
            task.cancel()
        await asyncio.gather(*forwarders, return_exceptions=True)

    # ------------------------------------------------------------------
    # WAITING / FINISHING helpers
    # ------------------------------------------------------------------

    async def _sleep_unless_cancelled(self, delay: float) -> bool:
        """Sleep for *delay* seconds. Returns True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def _release(self) -> None:
        lease, self._lease = self._lease, None
        if lease is None:
            return
        if self._abandoned:
            self._log.info("mutex_abandoned", mutex_ttl=self.options.mutex_ttl)
            return

        self._log.info("removing_mutex")
        try:
            released = await self._lease_client.release(lease)
        except LeaseStoreError as e:
            error = ReleaseError(f"Releasing {self.mutex_name} failed: {e}", cause=e)
            self._log.warning("release_failed", error=str(error))
            return

        if not released:
            error = ReleaseError(f"Mutex {self.mutex_name} was not held by us anymore")
            self._log.warning("release_failed", error=str(error))

    def _result(
        self,
        outcome: ExecutionOutcome,
        started_at: datetime,
        *,
        returncode: int | None = None,
        error: CronmutexError | None = None,
        cancelled: bool = False,
    ) -> ExecutionResult:
        return ExecutionResult(
            mutex=self.mutex_name,
            outcome=outcome,
            returncode=returncode,
            error=error,
            cancelled=cancelled,
            lease_abandoned=self._abandoned,
            extensions=self._extensions,
            pid=self._pid,
            started_at=started_at,
            finished_at=_utcnow(),
        )


__all__ = ["LeasedExecution", "OUTPUT_DRAIN_TIMEOUT"]
