"""Cron daemon: definitions, triggers, scheduler and reload controller."""

from .definitions import (
    EntryOptions,
    ScheduleEntry,
    ScheduleState,
    load_definitions,
    parse_definitions,
)
from .reload import ControlRequest, ReloadController
from .scheduler import CronScheduler
from .triggers import CronTrigger, IntervalTrigger, parse_duration, parse_trigger

__all__ = [
    "EntryOptions",
    "ScheduleEntry",
    "ScheduleState",
    "load_definitions",
    "parse_definitions",
    "ControlRequest",
    "ReloadController",
    "CronScheduler",
    "CronTrigger",
    "IntervalTrigger",
    "parse_duration",
    "parse_trigger",
]
