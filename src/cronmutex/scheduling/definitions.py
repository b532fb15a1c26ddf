"""Schedule definitions: the YAML document the daemon runs from.

Document format::

    - name: nightly-backup
      cron: "0 3 * * *"
      command: ["/usr/local/bin/backup", "--full"]
      options:
        mutexttl: 600       # mutex TTL in seconds
        ttl: 7200           # kill the command after this many seconds
        randomwait: 30      # wait 0..30s before acquiring
        fireandforget: false
        onleaselost: kill   # continue | kill

Entries are validated eagerly, cron expressions included, so a broken
document is rejected as a whole before any scheduler is touched. Unknown
option keys are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cronmutex.core.errors import DefinitionsParseError
from cronmutex.core.settings import CronmutexSettings, LeaseLostPolicy
from cronmutex.execution.models import ExecutionOptions

from .triggers import Trigger, parse_trigger


class EntryOptions(BaseModel):
    """Per-entry overrides; anything unset falls back to the settings."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    mutexttl: int | None = Field(default=None, description="Mutex TTL in seconds")
    ttl: int | None = Field(default=None, description="Task TTL in seconds")
    randomwait: int | None = Field(default=None, ge=0)
    fireandforget: bool | None = None
    onleaselost: LeaseLostPolicy | None = None


class ScheduleEntry(BaseModel):
    """One named job of the definitions document."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    cron: str
    command: list[str] = Field(min_length=1)
    options: EntryOptions = Field(default_factory=EntryOptions)

    @field_validator("options", mode="before")
    @classmethod
    def _null_options(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("cron")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        parse_trigger(value)
        return value

    def trigger(self) -> Trigger:
        return parse_trigger(self.cron)

    def execution_options(self, settings: CronmutexSettings) -> ExecutionOptions:
        """Entry overrides layered over the configured defaults."""
        return ExecutionOptions.from_settings(
            settings,
            mutex_ttl=self.options.mutexttl,
            task_ttl=self.options.ttl,
            random_wait=self.options.randomwait,
            fire_and_forget=self.options.fireandforget,
            on_lease_lost=self.options.onleaselost,
        )


@dataclass(frozen=True)
class ScheduleState:
    """One generation of loaded definitions. Replaced wholesale on reload."""

    version: int
    entries: tuple[ScheduleEntry, ...]
    source: str
    loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def next_version(self, entries: tuple[ScheduleEntry, ...]) -> ScheduleState:
        return ScheduleState(version=self.version + 1, entries=entries, source=self.source)


def parse_definitions(text: str | bytes, source: str = "<string>") -> tuple[ScheduleEntry, ...]:
    """Parse and validate a definitions document.

    An empty document is an empty schedule.

    Raises:
        DefinitionsParseError: Invalid YAML, wrong structure, or an
            invalid entry (including its cron expression).
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DefinitionsParseError(source, f"invalid YAML: {e}", cause=e) from e

    if data is None:
        return ()
    if not isinstance(data, list):
        raise DefinitionsParseError(source, "expected a list of entries")

    entries = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise DefinitionsParseError(source, f"entry #{index + 1} is not a mapping")
        try:
            entries.append(ScheduleEntry.model_validate(item))
        except ValidationError as e:
            label = item.get("name") or f"#{index + 1}"
            raise DefinitionsParseError(source, f"entry {label}: {e}", cause=e) from e

    return tuple(entries)


def load_definitions(path: str | Path) -> tuple[ScheduleEntry, ...]:
    """Read and parse the definitions file.

    Raises:
        OSError: The file cannot be read.
        DefinitionsParseError: The content is invalid.
    """
    path = Path(path)
    return parse_definitions(path.read_bytes(), source=str(path))


__all__ = [
    "EntryOptions",
    "ScheduleEntry",
    "ScheduleState",
    "parse_definitions",
    "load_definitions",
]
