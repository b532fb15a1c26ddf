"""Tests for cronmutex.core.errors module."""

import pytest

from cronmutex.core.errors import (
    ConfigError,
    CronmutexError,
    DefinitionsParseError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    ExtendError,
    InvalidConfigError,
    LeaseError,
    LeaseLostError,
    LeaseStoreError,
    LockBusyError,
    ProcessFailedError,
    ReleaseError,
    ScheduleError,
    SpawnError,
    TaskTimedOutError,
    categorize_error,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        ctx = ErrorContext()
        assert ctx.mutex is None
        assert ctx.returncode is None
        assert ctx.metadata == {}

    def test_to_dict_includes_set_fields(self):
        """to_dict includes only non-None fields."""
        ctx = ErrorContext(mutex="cron:backup", returncode=0, metadata={"host": "a"})
        d = ctx.to_dict()
        assert d == {"mutex": "cron:backup", "returncode": 0, "host": "a"}
        assert "command" not in d


class TestCronmutexError:
    """Test the base error."""

    def test_defaults(self):
        error = CronmutexError("boom")
        assert error.message == "boom"
        assert str(error) == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.cause is None

    def test_cause_is_chained(self):
        cause = ConnectionError("refused")
        error = LeaseStoreError("store down", cause=cause)
        assert error.cause is cause
        assert error.__cause__ is cause

    def test_with_context_sets_known_fields_and_metadata(self):
        error = SpawnError("not found").with_context(mutex="backup", command="rsync", attempt=2)
        assert error.context.mutex == "backup"
        assert error.context.command == "rsync"
        assert error.context.metadata == {"attempt": 2}

    def test_with_context_returns_same_instance(self):
        error = ExtendError("lost")
        assert error.with_context(mutex="x") is error

    def test_to_dict(self):
        error = ProcessFailedError(returncode=3).with_context(mutex="backup")
        d = error.to_dict()
        assert d["error_type"] == "ProcessFailedError"
        assert d["category"] == "EXECUTION"
        assert d["retryable"] is False
        assert d["context"] == {"mutex": "backup", "returncode": 3}
        assert "cause" not in d

    def test_to_dict_includes_cause(self):
        error = LeaseStoreError("down", cause=TimeoutError("timed out"))
        assert error.to_dict()["cause"] == "timed out"

    def test_repr(self):
        assert repr(LockBusyError("x")) == "LockBusyError('Mutex x is already held', category=LEASE)"


class TestHierarchy:
    """Each failure has its own type and category."""

    @pytest.mark.parametrize(
        "error, parent, category",
        [
            (LockBusyError("m"), LeaseError, ErrorCategory.LEASE),
            (ExtendError("e"), LeaseError, ErrorCategory.LEASE),
            (ReleaseError("r"), LeaseError, ErrorCategory.LEASE),
            (LeaseLostError("l"), LeaseError, ErrorCategory.LEASE),
            (SpawnError("s"), ExecutionError, ErrorCategory.EXECUTION),
            (ProcessFailedError(1), ExecutionError, ErrorCategory.EXECUTION),
            (TaskTimedOutError(5), ExecutionError, ErrorCategory.EXECUTION),
            (InvalidConfigError("k", 1), ConfigError, ErrorCategory.CONFIG),
            (DefinitionsParseError("f.yml", "bad"), ScheduleError, ErrorCategory.SCHEDULE),
        ],
    )
    def test_parent_and_category(self, error, parent, category):
        assert isinstance(error, parent)
        assert isinstance(error, CronmutexError)
        assert error.category == category

    def test_lock_busy_carries_mutex(self):
        error = LockBusyError("cron:backup")
        assert error.context.mutex == "cron:backup"
        assert "cron:backup" in error.message

    def test_process_failed_carries_returncode(self):
        error = ProcessFailedError(returncode=7)
        assert error.returncode == 7
        assert error.context.returncode == 7
        assert error.message == "Command exited with status 7"

    def test_task_timed_out_message(self):
        assert TaskTimedOutError(2.5).message == "Command killed after 2.5s"

    def test_definitions_parse_error_prefixes_source(self):
        error = DefinitionsParseError("/etc/cron.yml", "expected a list")
        assert error.source == "/etc/cron.yml"
        assert error.message == "/etc/cron.yml: expected a list"

    def test_invalid_config_error(self):
        error = InvalidConfigError("mutex.default_ttl", -1)
        assert error.key == "mutex.default_ttl"
        assert "-1" in error.message


class TestUtilities:
    def test_categorize(self):
        assert categorize_error(SpawnError("x")) == ErrorCategory.EXECUTION
        assert categorize_error(TimeoutError()) == ErrorCategory.STORE
        assert categorize_error(FileNotFoundError()) == ErrorCategory.EXECUTION
        assert categorize_error(KeyError()) == ErrorCategory.UNKNOWN
