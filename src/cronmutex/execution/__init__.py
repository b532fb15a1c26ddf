"""Leased-mutex execution engine.

- models:   ExecutionOptions, ExecutionState/Outcome, ExecutionResult
- runner:   LeasedExecution, the single-run state machine
- launcher: ExecutionLauncher, detached tasks for the daemon
"""

from .launcher import ExecutionLauncher
from .models import ExecutionOptions, ExecutionOutcome, ExecutionResult, ExecutionState
from .runner import LeasedExecution

__all__ = [
    "ExecutionLauncher",
    "ExecutionOptions",
    "ExecutionOutcome",
    "ExecutionResult",
    "ExecutionState",
    "LeasedExecution",
]
