"""
Structured error types for cronmutex.

Every failure a guarded run can hit has its own type, so callers can tell
"another host already holds the mutex" apart from "the command itself
failed" without parsing messages or relying on exit codes alone.

Each CronmutexError carries:
- **Category:** What kind of error (lease, store, execution, config, schedule)
- **Retryable:** Whether trying again later can reasonably succeed
- **Context:** Mutex name, schedule entry, command and return code
- **Cause:** Chained underlying exception for root cause analysis

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      CronmutexError                              │
        │            (category, retryable, context, cause)                 │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  LeaseError         LeaseStoreError     ExecutionError           │
        │  (LEASE)            (STORE, retryable)  (EXECUTION)              │
        │     │                                      │                     │
        │  LockBusyError                          SpawnError               │
        │  ExtendError                            ProcessFailedError       │
        │  ReleaseError                           TaskTimedOutError        │
        │  LeaseLostError                                                  │
        │                                                                  │
        │  ConfigError        ScheduleError                                │
        │  (CONFIG)           (SCHEDULE)                                   │
        │     │                  │                                         │
        │  InvalidConfigError DefinitionsParseError                        │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    Errors raised inside one execution never leave that execution; they are
    attached to its ``ExecutionResult`` and logged with the mutex name.
    ``ExtendError`` and ``ReleaseError`` are logged only. A
    ``DefinitionsParseError`` is fatal at daemon startup and retryable on
    reload.

Examples:
    >>> error = LockBusyError("nightly-backup")
    >>> error.category
    <ErrorCategory.LEASE: 'LEASE'>
    >>> error.context.mutex
    'nightly-backup'

    >>> error = ProcessFailedError(returncode=3).with_context(mutex="backup")
    >>> error.to_dict()["context"]
    {'mutex': 'backup', 'returncode': 3}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and log routing."""

    LEASE = "LEASE"              # Mutex busy, lost, not owned
    STORE = "STORE"              # Redis unreachable, protocol errors
    EXECUTION = "EXECUTION"      # Spawn, exit status, timeout
    CONFIG = "CONFIG"            # Settings file, invalid values
    SCHEDULE = "SCHEDULE"        # Definitions document, cron syntax
    INTERNAL = "INTERNAL"        # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        mutex: Full (prefixed) mutex name
        entry: Schedule entry name, for daemon-triggered runs
        command: Command line that was run
        returncode: Process return code, when one exists
        metadata: Additional key-value pairs
    """

    mutex: str | None = None
    entry: str | None = None
    command: str | None = None
    returncode: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["mutex", "entry", "command", "returncode"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CronmutexError(Exception):
    """
    Base exception for all cronmutex errors.

    Subclasses set ``default_category`` and ``default_retryable`` so the
    common case needs nothing but a message.

    Examples:
        >>> error = CronmutexError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> try:
        ...     raise ConnectionError("connection refused")
        ... except ConnectionError as e:
        ...     error = LeaseStoreError("Redis unreachable", cause=e)
        >>> error.retryable
        True
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CronmutexError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SpawnError("not found").with_context(mutex="backup", command="rsync")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# LEASE ERRORS
# =============================================================================


class LeaseError(CronmutexError):
    """Mutex ownership error."""

    default_category = ErrorCategory.LEASE
    default_retryable = False


class LockBusyError(LeaseError):
    """
    The mutex is held by someone else.

    Expected contention, not a bug: another host is already running the
    command. Never retried within the same run.
    """

    def __init__(self, mutex: str, message: str | None = None):
        super().__init__(
            message or f"Mutex {mutex} is already held",
            context=ErrorContext(mutex=mutex),
        )


class ExtendError(LeaseError):
    """Extending the mutex failed (not owner, or store unreachable)."""

    pass


class ReleaseError(LeaseError):
    """Releasing the mutex failed (not owner, or store unreachable)."""

    pass


class LeaseLostError(LeaseError):
    """The command was killed because the mutex could no longer be held."""

    pass


class LeaseStoreError(CronmutexError):
    """
    Communication with the lock store failed.

    Retryable in principle; cronmutex itself never retries an acquisition.
    """

    default_category = ErrorCategory.STORE
    default_retryable = True


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class ExecutionError(CronmutexError):
    """Guarded command failed."""

    default_category = ErrorCategory.EXECUTION
    default_retryable = False


class SpawnError(ExecutionError):
    """The command could not be started (not found, not executable, ...)."""

    pass


class ProcessFailedError(ExecutionError):
    """The command exited with a nonzero status."""

    def __init__(self, returncode: int, message: str | None = None, **kwargs: Any):
        self.returncode = returncode
        super().__init__(
            message or f"Command exited with status {returncode}",
            context=ErrorContext(returncode=returncode),
            **kwargs,
        )


class TaskTimedOutError(ExecutionError):
    """The command was killed after exceeding its task TTL."""

    def __init__(self, timeout: float, message: str | None = None, **kwargs: Any):
        self.timeout = timeout
        super().__init__(
            message or f"Command killed after {timeout:g}s",
            **kwargs,
        )


# =============================================================================
# CONFIGURATION / SCHEDULE ERRORS
# =============================================================================


class ConfigError(CronmutexError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None, **kwargs: Any):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}", **kwargs)


class ScheduleError(CronmutexError):
    """Schedule definitions or trigger error."""

    default_category = ErrorCategory.SCHEDULE
    default_retryable = False


class DefinitionsParseError(ScheduleError):
    """The schedule definitions document could not be loaded."""

    def __init__(self, source: str, message: str, **kwargs: Any):
        self.source = source
        super().__init__(f"{source}: {message}", **kwargs)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, CronmutexError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.STORE
    if isinstance(error, OSError):
        return ErrorCategory.EXECUTION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CronmutexError",
    # Lease
    "LeaseError",
    "LockBusyError",
    "ExtendError",
    "ReleaseError",
    "LeaseLostError",
    "LeaseStoreError",
    # Execution
    "ExecutionError",
    "SpawnError",
    "ProcessFailedError",
    "TaskTimedOutError",
    # Config / schedule
    "ConfigError",
    "InvalidConfigError",
    "ScheduleError",
    "DefinitionsParseError",
    # Utilities
    "categorize_error",
]
