"""
Root Typer application for the cronmutex CLI.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from cronmutex.cli.utils import version_string

app = Typer(
    name="cronmutex",
    help="cronmutex: run commands under a Redis mutex, from cron or as a daemon.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(version_string())
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(  # noqa: UP007
        None,
        "--config",
        "-c",
        help="Config file (default: /etc/cronmutex.yml, ~/.config/cronmutex.yml, ./cronmutex.yml)",
    ),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cronmutex CLI: guarded runs and the cron daemon."""
    ctx.obj = {"config": config}


@app.command("version")
def version() -> None:
    """Print the version number of cronmutex."""
    typer.echo(version_string())


# ── Command registration ─────────────────────────────────────────────────

from cronmutex.cli.daemon import daemon  # noqa: E402
from cronmutex.cli.run import CONTEXT_SETTINGS, run  # noqa: E402

app.command("run", context_settings=CONTEXT_SETTINGS)(run)
app.command("daemon")(daemon)
