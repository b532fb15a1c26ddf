"""
Core primitives shared by every cronmutex component.

- errors:   typed error hierarchy (LockBusyError, SpawnError, ...)
- logging:  structlog configuration and logger factory
- settings: pydantic-settings configuration (redis, mutex, daemon)
"""

from cronmutex.core.errors import (
    ConfigError,
    CronmutexError,
    DefinitionsParseError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    ExtendError,
    LeaseError,
    LeaseLostError,
    LeaseStoreError,
    LockBusyError,
    ProcessFailedError,
    ReleaseError,
    ScheduleError,
    SpawnError,
    TaskTimedOutError,
)
from cronmutex.core.logging import LogContext, configure_logging, get_logger
from cronmutex.core.settings import CronmutexSettings, LeaseLostPolicy, load_settings

__all__ = [
    "ConfigError",
    "CronmutexError",
    "DefinitionsParseError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionError",
    "ExtendError",
    "LeaseError",
    "LeaseLostError",
    "LeaseStoreError",
    "LockBusyError",
    "ProcessFailedError",
    "ReleaseError",
    "ScheduleError",
    "SpawnError",
    "TaskTimedOutError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "CronmutexSettings",
    "LeaseLostPolicy",
    "load_settings",
]
