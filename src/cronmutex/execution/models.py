"""Execution models: options, states, outcomes and results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cronmutex.core.errors import CronmutexError
from cronmutex.core.settings import CronmutexSettings, LeaseLostPolicy


class ExecutionState(str, Enum):
    """Lifecycle of one guarded run."""

    IDLE = "idle"
    WAITING = "waiting"
    ACQUIRING = "acquiring"
    RUNNING = "running"
    FINISHING = "finishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    LOCK_BUSY = "lock_busy"
    SPAWN_FAILED = "spawn_failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


class ExecutionOutcome(str, Enum):
    """Terminal state of a run; exactly one per execution."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    LOCK_BUSY = "lock_busy"
    SPAWN_FAILED = "spawn_failed"

    @property
    def state(self) -> ExecutionState:
        return ExecutionState(self.value)


_TERMINAL = frozenset(outcome.state for outcome in ExecutionOutcome)


class ExecutionOptions(BaseModel):
    """Per-run knobs, resolved from settings and flag/entry overrides."""

    model_config = ConfigDict(frozen=True)

    mutex_ttl: float = Field(gt=0, description="Mutex TTL in seconds")
    task_ttl: float | None = Field(
        default=None, description="Kill the command after this many seconds"
    )
    random_wait: int = Field(
        default=0, ge=0, description="Wait up to this many seconds before acquiring"
    )
    fire_and_forget: bool = False
    on_lease_lost: LeaseLostPolicy = LeaseLostPolicy.CONTINUE
    renew_margin: float = Field(default=0.25, ge=0)

    @field_validator("task_ttl")
    @classmethod
    def _unset_non_positive(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @model_validator(mode="after")
    def _check_timing(self) -> ExecutionOptions:
        if self.renew_margin >= self.mutex_ttl:
            raise ValueError(
                f"mutex TTL ({self.mutex_ttl:g}s) must be longer than the "
                f"renewal margin ({self.renew_margin:g}s)"
            )
        return self

    @property
    def renewal_interval(self) -> float:
        """Seconds between an acquire/extend and the next extend."""
        return self.mutex_ttl - self.renew_margin

    @classmethod
    def from_settings(
        cls,
        settings: CronmutexSettings,
        *,
        mutex_ttl: float | None = None,
        task_ttl: float | None = None,
        random_wait: int | None = None,
        fire_and_forget: bool | None = None,
        on_lease_lost: LeaseLostPolicy | None = None,
    ) -> ExecutionOptions:
        """Layer overrides over the configured defaults.

        ``None`` and non-positive numbers mean "not set" and fall back to
        the settings.
        """
        return cls(
            mutex_ttl=mutex_ttl if mutex_ttl and mutex_ttl > 0 else settings.mutex.default_ttl,
            task_ttl=task_ttl if task_ttl and task_ttl > 0 else None,
            random_wait=random_wait if random_wait and random_wait > 0 else 0,
            fire_and_forget=bool(fire_and_forget),
            on_lease_lost=on_lease_lost or settings.mutex.on_lease_lost,
            renew_margin=settings.mutex.renew_margin,
        )


@dataclass(frozen=True)
class ExecutionResult:
    """What a finished execution reports back to its caller.

    ``outcome`` tells a busy mutex apart from a failing command;
    ``error`` carries the typed error for every outcome but SUCCEEDED.
    """

    mutex: str
    outcome: ExecutionOutcome
    returncode: int | None = None
    error: CronmutexError | None = None
    cancelled: bool = False
    lease_abandoned: bool = False
    extensions: int = 0
    pid: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is ExecutionOutcome.SUCCEEDED

    @property
    def exit_code(self) -> int:
        """Process exit status for the CLI: 0 on success, 1 otherwise."""
        return 0 if self.succeeded else 1

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


__all__ = [
    "ExecutionState",
    "ExecutionOutcome",
    "ExecutionOptions",
    "ExecutionResult",
]
