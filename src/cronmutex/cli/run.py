"""
CLI: ``cronmutex run`` - run one command under a mutex.

Example::

    cronmutex run -m 60 -t 3600 nightly-backup /usr/local/bin/backup --full
    cronmutex run -w 30 -n report-mailer ./send-reports.sh
"""

from __future__ import annotations

import asyncio
import signal
from typing import IO

import typer
from pydantic import ValidationError

from cronmutex.cli.utils import err_console, load_cli_settings, stdio_sinks
from cronmutex.core.logging import configure_logging
from cronmutex.core.settings import CronmutexSettings, LeaseLostPolicy
from cronmutex.execution import ExecutionOptions, ExecutionResult, LeasedExecution
from cronmutex.lease import create_lease_client

# Everything after the command name belongs to the command
CONTEXT_SETTINGS = {"allow_interspersed_args": False, "ignore_unknown_options": True}


def run(
    ctx: typer.Context,
    mutex_name: str = typer.Argument(..., help="Name of the mutex"),
    command: list[str] = typer.Argument(..., help="Command to run, with its arguments"),
    fire_n_forget: bool = typer.Option(
        False, "--fire-n-forget", "-f", help="Don't hold (extend) the lock while the command is running"
    ),
    mutex_ttl: int = typer.Option(0, "--mutex-ttl", "-m", help="The TTL of the lock in X seconds"),
    noout: bool = typer.Option(False, "--noout", "-n", help="Don't dump STDOUT and STDERR from command"),
    random_wait: int = typer.Option(
        0,
        "--random-wait",
        "-w",
        help="Wait for a random duration between 0 and X seconds before acquiring the lock",
    ),
    ttl: int = typer.Option(
        0, "--ttl", "-t", help="Kill command after X seconds. Default is to wait until it finishes"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Tell what's happening with cronmutex"),
    kill_on_lease_loss: bool = typer.Option(
        False, "--kill-on-lease-loss", help="Kill the command if the lock can no longer be extended"
    ),
) -> None:
    """Run COMMAND while holding MUTEX_NAME.

    Exits 0 when the command succeeded, 1 when the lock was busy or the
    command failed, timed out or could not be started.
    """
    settings = load_cli_settings(ctx)
    # Quiet unless asked: only failures of cronmutex itself (store, spawn) are shown
    configure_logging(level="DEBUG" if verbose else "ERROR")

    try:
        options = ExecutionOptions.from_settings(
            settings,
            mutex_ttl=mutex_ttl,
            task_ttl=ttl,
            random_wait=random_wait,
            fire_and_forget=fire_n_forget,
            on_lease_lost=LeaseLostPolicy.KILL if kill_on_lease_loss else None,
        )
    except ValidationError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e}")
        raise typer.Exit(code=1) from e

    stdout, stderr = (None, None) if noout else stdio_sinks()
    result = asyncio.run(_run(settings, mutex_name, command, options, stdout, stderr))

    if verbose and result.error is not None:
        err_console.print(f"[yellow]{result.outcome.value}[/yellow]: {result.error.message}")
    raise typer.Exit(code=result.exit_code)


async def _run(
    settings: CronmutexSettings,
    mutex_name: str,
    command: list[str],
    options: ExecutionOptions,
    stdout: IO[bytes] | None,
    stderr: IO[bytes] | None,
) -> ExecutionResult:
    lease_client = create_lease_client(settings)
    execution = LeasedExecution(
        lease_client,
        mutex_name,
        command,
        options,
        prefix=settings.mutex.prefix,
        stdout=stdout,
        stderr=stderr,
    )

    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, execution.cancel)
    try:
        return await execution.run()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        await lease_client.close()
