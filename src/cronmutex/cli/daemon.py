"""
CLI: ``cronmutex daemon`` - cron daemon mode.

Signals:
    SIGHUP           reload the definitions file
    SIGINT, SIGTERM  stop scheduling, cancel and drain running commands

Example::

    cronmutex -c /etc/cronmutex.yml daemon /etc/cronmutex/cron.yml
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import typer

from cronmutex.cli.utils import err_console, load_cli_settings, stdio_sinks
from cronmutex.core.errors import DefinitionsParseError
from cronmutex.core.logging import configure_logging, get_logger
from cronmutex.core.settings import CronmutexSettings
from cronmutex.execution import ExecutionLauncher
from cronmutex.lease import create_lease_client
from cronmutex.scheduling import ReloadController

logger = get_logger(__name__)


def daemon(
    ctx: typer.Context,
    cron_yml: Path = typer.Argument(..., help="Schedule definitions (YAML)"),
) -> None:
    """Run the cron daemon on CRON_YML."""
    settings = load_cli_settings(ctx)
    configure_logging(level="INFO")

    try:
        asyncio.run(_daemon(settings, cron_yml))
    except DefinitionsParseError as e:
        err_console.print(f"[bold red]Error[/bold red] (definitions): {e.message}")
        raise typer.Exit(code=1) from e


async def _daemon(settings: CronmutexSettings, cron_yml: Path) -> None:
    lease_client = create_lease_client(settings)
    stdout, stderr = stdio_sinks()
    controller = ReloadController(
        cron_yml,
        settings,
        lease_client,
        ExecutionLauncher(),
        stdout=stdout,
        stderr=stderr,
    )

    loop = asyncio.get_running_loop()
    handlers = {
        signal.SIGHUP: controller.request_reload,
        signal.SIGINT: controller.request_terminate,
        signal.SIGTERM: controller.request_terminate,
    }
    for sig, handler in handlers.items():
        loop.add_signal_handler(sig, handler)

    logger.info("daemon_started", definitions=str(cron_yml), redis=settings.redis.uri)
    try:
        await controller.run()
    finally:
        for sig in handlers:
            loop.remove_signal_handler(sig)
        await lease_client.close()
