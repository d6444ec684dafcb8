"""snapmerge CLI — merge incremental backups into the live store.

Entry point registered in pyproject.toml:
    snapmerge = "snapmerge.cli:app"

Commands:
    snapmerge analyze   — compare an artifact with the store (read only)
    snapmerge merge     — merge an artifact into the store
    snapmerge snapshot  — write the current store out as a new artifact

Usage:
    snapmerge --help
    SNAPMERGE_DATABASE_URL=sqlite:///app.db snapmerge analyze backup.json
"""

import logging
from typing import Optional

import typer

from snapmerge.cli.commands import analyze, merge, snapshot
from snapmerge.config import settings

app = typer.Typer(
    name="snapmerge",
    help="snapmerge — incremental backup merge engine",
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: SNAPMERGE_LOG_LEVEL)."
    ),
) -> None:
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


app.command()(analyze)
app.command()(merge)
app.command()(snapshot)
