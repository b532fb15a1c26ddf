"""Cron triggers: when does an entry fire next.

Accepted expressions:

- standard 5-field cron: ``*/5 * * * *``
- 6-field cron with a leading seconds field: ``30 */5 * * * *``
- descriptors: ``@yearly``, ``@annually``, ``@monthly``, ``@weekly``,
  ``@daily``, ``@midnight``, ``@hourly``
- fixed intervals: ``@every 90s``, ``@every 1h30m``

Cron expressions are evaluated with croniter in local time. Intervals
count from the previous firing and are truncated to whole seconds, at
least one.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta
from typing import Protocol

from croniter import croniter

DESCRIPTORS: dict[str, str] = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_EVERY_PREFIX = "@every "

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class Trigger(Protocol):
    """Computes the next firing time strictly after a given moment."""

    expression: str

    def next_fire(self, after: datetime) -> datetime: ...


class CronTrigger:
    """Trigger backed by a croniter expression."""

    def __init__(self, expression: str) -> None:
        self.expression = expression
        try:
            self._cron = _to_croniter_syntax(expression)
            # Also rejects dates that never occur, such as 30 February
            croniter(self._cron, datetime.now()).get_next(datetime)
        except (ValueError, KeyError) as e:
            raise ValueError(f"invalid cron expression {expression!r}: {e}") from e

    def next_fire(self, after: datetime) -> datetime:
        return croniter(self._cron, after).get_next(datetime)

    def __repr__(self) -> str:
        return f"CronTrigger({self.expression!r})"


class IntervalTrigger:
    """Trigger firing every fixed interval (``@every <duration>``)."""

    def __init__(self, interval: timedelta, expression: str | None = None) -> None:
        seconds = max(1, math.floor(interval.total_seconds()))
        self.interval = timedelta(seconds=seconds)
        self.expression = expression or f"{_EVERY_PREFIX}{seconds}s"

    def next_fire(self, after: datetime) -> datetime:
        return after.replace(microsecond=0) + self.interval

    def __repr__(self) -> str:
        return f"IntervalTrigger({self.interval})"


def parse_duration(text: str) -> timedelta:
    """Parse a Go-style duration such as ``1h30m``, ``90s`` or ``500ms``.

    Raises:
        ValueError: The text is not a valid, positive duration.
    """
    text = text.strip()
    if not text:
        raise ValueError("empty duration")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"invalid duration {text!r}")
    if total <= 0:
        raise ValueError(f"duration must be positive: {text!r}")
    return timedelta(seconds=total)


def parse_trigger(expression: str) -> Trigger:
    """Build the trigger for a cron expression.

    Raises:
        ValueError: The expression is not valid.
    """
    expression = expression.strip()
    if expression.startswith(_EVERY_PREFIX):
        return IntervalTrigger(parse_duration(expression[len(_EVERY_PREFIX):]), expression)
    return CronTrigger(expression)


def _to_croniter_syntax(expression: str) -> str:
    if expression.startswith("@"):
        try:
            return DESCRIPTORS[expression.lower()]
        except KeyError:
            raise ValueError(f"unknown descriptor {expression!r}") from None

    fields = expression.split()
    if len(fields) == 5:
        return " ".join(fields)
    if len(fields) == 6:
        # croniter expects the seconds field last
        return " ".join(fields[1:] + fields[:1])
    raise ValueError(f"expected 5 or 6 fields, got {len(fields)} in {expression!r}")


__all__ = [
    "DESCRIPTORS",
    "Trigger",
    "CronTrigger",
    "IntervalTrigger",
    "parse_duration",
    "parse_trigger",
]
