"""
CLI utility helpers: consoles, settings loading, output sinks.
"""

from __future__ import annotations

import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import IO

import typer
from rich.console import Console

from cronmutex import __commit__, __version__
from cronmutex.core.errors import ConfigError
from cronmutex.core.settings import CronmutexSettings, load_settings

err_console = Console(stderr=True)


def version_string() -> str:
    try:
        v = pkg_version("cronmutex")
    except PackageNotFoundError:
        v = __version__
    return f"cronmutex {v} -- {__commit__}"


def load_cli_settings(ctx: typer.Context) -> CronmutexSettings:
    """Load settings from the global ``--config`` option; exit 1 on error."""
    config: Path | None = (ctx.obj or {}).get("config")
    try:
        return load_settings(config)
    except ConfigError as e:
        err_console.print(f"[bold red]Error[/bold red] (config): {e.message}")
        raise typer.Exit(code=1) from e


def stdio_sinks() -> tuple[IO[bytes], IO[bytes]]:
    """Our own stdout/stderr as binary sinks for a child's output."""
    return sys.stdout.buffer, sys.stderr.buffer
