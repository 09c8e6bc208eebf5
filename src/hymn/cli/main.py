"""
Main CLI application using Typer.

Operator commands over the shared broadcast session. Output is human
readable by default and JSON with ``--json``.
"""

from __future__ import annotations

import typer

from ..infra.logging import configure_logging
from .commands import broadcast

app = typer.Typer(help="Hymn broadcast operator CLI")


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Override LOG_LEVEL for this run"),
):
    """Hymn: a calendar-aware AI radio broadcast."""
    configure_logging(log_level)


app.command("schedule")(broadcast.schedule)
app.command("now")(broadcast.now)
app.command("upcoming")(broadcast.upcoming)
app.command("regenerate")(broadcast.regenerate)
app.command("evaluate")(broadcast.evaluate)
app.command("shuffle")(broadcast.shuffle)
app.command("clear")(broadcast.clear)


def cli():
    """Entry point for the ``hymn`` console script."""
    app()


if __name__ == "__main__":
    cli()
