"""Execution launcher: detached tasks for scheduled runs.

The scheduler fires and forgets: each firing becomes one independent
asyncio task that nobody awaits. The launcher keeps a reference to every
such task (so the event loop cannot garbage-collect it), logs the outcome
when it finishes, and lets the daemon cancel and drain whatever is still
in flight at shutdown.

ARCHITECTURE
────────────
::

    ExecutionLauncher()
      ├── .launch(execution, entry)  ─ start a detached task
      ├── .cancel_all()              ─ cooperative cancel of every run
      ├── .drain(timeout)            ─ wait for in-flight runs to finish
      └── .active_count              ─ runs not yet finished

Example::

    launcher = ExecutionLauncher()
    launcher.launch(execution, entry="nightly-backup")
    ...
    launcher.cancel_all()
    await launcher.drain(timeout=5.0)
"""

from __future__ import annotations

import asyncio

from cronmutex.core.errors import categorize_error
from cronmutex.core.logging import get_logger

from .models import ExecutionResult
from .runner import LeasedExecution

logger = get_logger(__name__)


class ExecutionLauncher:
    """Tracks detached ``LeasedExecution`` tasks."""

    def __init__(self) -> None:
        self._running: dict[asyncio.Task[ExecutionResult], LeasedExecution] = {}
        self._launched = 0

    def launch(self, execution: LeasedExecution, entry: str | None = None) -> asyncio.Task[ExecutionResult]:
        """Start *execution* as an independent task and return it."""
        entry = entry or execution.name
        task = asyncio.create_task(execution.run(), name=f"cronmutex:{entry}")
        self._running[task] = execution
        self._launched += 1
        task.add_done_callback(lambda t: self._finished(t, entry))
        logger.debug("execution_launched", entry=entry, mutex=execution.mutex_name)
        return task

    def _finished(self, task: asyncio.Task[ExecutionResult], entry: str) -> None:
        self._running.pop(task, None)

        if task.cancelled():
            logger.warning("execution_task_cancelled", entry=entry)
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "execution_crashed",
                entry=entry,
                category=categorize_error(error).value,
                error=str(error),
                exc_info=error,
            )
            return

        result = task.result()
        if result.error is not None:
            logger.warning(
                "execution_error",
                entry=entry,
                outcome=result.outcome.value,
                category=categorize_error(result.error).value,
                error=str(result.error),
            )
        logger.info(
            f"finished running {entry}, exit code {result.exit_code}",
            entry=entry,
            outcome=result.outcome.value,
            exit_code=result.exit_code,
        )

    def cancel_all(self) -> int:
        """Ask every in-flight execution to stop. Returns how many were asked."""
        executions = list(self._running.values())
        for execution in executions:
            execution.cancel()
        if executions:
            logger.info("executions_cancelled", count=len(executions))
        return len(executions)

    async def drain(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds for in-flight executions.

        Returns True when nothing is left running. A timeout of 0 returns
        immediately.
        """
        pending = set(self._running)
        if not pending:
            return True
        if timeout <= 0:
            logger.warning("drain_skipped", in_flight=len(pending))
            return False

        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            logger.warning("drain_timed_out", in_flight=len(still_pending), timeout=timeout)
            return False
        return True

    @property
    def active_count(self) -> int:
        """Number of executions not yet finished."""
        return len(self._running)

    @property
    def launched_count(self) -> int:
        return self._launched


__all__ = ["ExecutionLauncher"]
