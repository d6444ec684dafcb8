"""CLI commands for the merge engine: analyze, merge and snapshot.

These commands are a thin caller of MergeService; everything they print comes
from AnalysisResult / MergeResult.

Usage:
    snapmerge analyze backups/incremental-backup-2024-05-01.json
    snapmerge merge backup.json --policy merge_fields --preserve-newer
    snapmerge merge backup.json --interactive     # decide each conflict
    snapmerge snapshot --compress

Interactive mode analyzes under the manual policy, asks what to do with
each conflicting row and then merges with the collected overrides.  Conflicts
left undecided are skipped and reported as unresolved.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import questionary
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from snapmerge.db.session import get_session
from snapmerge.errors import MergeEngineError
from snapmerge.merge.analyzer import override_key
from snapmerge.merge.models import (
    AnalysisResult,
    ConflictOverride,
    ConflictRecord,
    ConflictResolution,
    MergeOptions,
    MergeResult,
    OverrideAction,
)
from snapmerge.merge.service import MergeService

# Module-level console used by every command
console = Console()

_TAKE_INCOMING = "Take incoming row"
_KEEP_CURRENT = "Keep current row"
_LEAVE = "Leave unresolved"


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def _fail(exc: MergeEngineError) -> None:
    console.print(Panel(f"[red]{exc}[/red]", title=type(exc).__name__, border_style="red"))
    raise typer.Exit(code=1)


def _analysis_table(analysis: AnalysisResult) -> Table:
    table = Table(title="Analysis")
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    table.add_column("New", justify="right", style="green")
    table.add_column("Identical", justify="right", style="dim")
    table.add_column("Conflicting", justify="right", style="yellow")
    table.add_column("Error", style="red")
    for name, stats in analysis.tables.items():
        table.add_row(
            name,
            str(stats.rows),
            str(stats.new),
            str(stats.identical),
            str(stats.conflicting),
            stats.error or "",
        )
    return table


def _result_table(result: MergeResult) -> Table:
    title = "Merge result (dry run)" if result.simulated else "Merge result"
    table = Table(title=title)
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    table.add_column("Imported", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Unresolved", justify="right", style="yellow")
    table.add_column("Errors", justify="right", style="red")
    for name, stats in result.per_table.items():
        table.add_row(
            name,
            str(stats.rows),
            str(stats.imported),
            str(stats.skipped),
            str(stats.skipped_unresolved),
            str(stats.errors),
        )
    return table


def _conflict_panel(conflict: ConflictRecord, idx: int, total: int) -> Panel:
    body = Table(show_header=True, box=None)
    body.add_column("Field", style="bold")
    body.add_column("Current")
    body.add_column("Incoming")
    for field in conflict.conflict_fields:
        body.add_row(
            field,
            repr(conflict.current_value.get(field)),
            repr(conflict.incoming_value.get(field)),
        )
    return Panel(
        body,
        title=f"Conflict {idx + 1}/{total}: {conflict.table}[{conflict.record_id}]",
        border_style="yellow",
    )


def _build_options(
    policy: ConflictResolution,
    preserve_newer: bool,
    skip: list[str],
    only: list[str],
    dry_run: bool = False,
) -> MergeOptions:
    return MergeOptions(
        conflict_resolution=policy,
        preserve_newer=preserve_newer,
        skip_tables=set(skip),
        only_tables=set(only) if only else None,
        dry_run=dry_run,
    )


def _ask_overrides(conflicts: list[ConflictRecord]) -> dict[str, ConflictOverride]:
    """Walk through manual conflicts and collect the caller's decisions."""
    overrides: dict[str, ConflictOverride] = {}
    for idx, conflict in enumerate(conflicts):
        console.print(_conflict_panel(conflict, idx, len(conflicts)))
        choice = questionary.select(
            "What should happen to this row?",
            choices=[_TAKE_INCOMING, _KEEP_CURRENT, _LEAVE],
        ).ask()

        # Ctrl+C or EOF
        if choice is None:
            console.print("\n[yellow]Stopped; remaining conflicts stay unresolved.[/yellow]")
            break

        key = override_key(conflict.table, conflict.record_id)
        if choice == _TAKE_INCOMING:
            overrides[key] = ConflictOverride(action=OverrideAction.USE_CUSTOM)
        elif choice == _KEEP_CURRENT:
            overrides[key] = ConflictOverride(action=OverrideAction.SKIP)
    return overrides


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def analyze(
    artifact: Path = typer.Argument(..., exists=True, dir_okay=False, help="Artifact file (.json or .json.gz)."),
    policy: ConflictResolution = typer.Option(
        ConflictResolution.INCOMING_WINS, "--policy", help="Conflict resolution policy."
    ),
    preserve_newer: bool = typer.Option(False, "--preserve-newer", help="Keep newer current values under merge_fields."),
    skip: List[str] = typer.Option([], "--skip", help="Table to leave out (repeatable)."),
    only: List[str] = typer.Option([], "--only", help="Restrict to this table (repeatable)."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw AnalysisResult as JSON."),
) -> None:
    """Compare an artifact with the live store without changing anything."""
    options = _build_options(policy, preserve_newer, skip, only)
    try:
        with get_session() as session:
            analysis = MergeService(session).analyze(artifact, options)
    except MergeEngineError as exc:
        _fail(exc)
        return

    if as_json:
        console.print_json(analysis.model_dump_json(by_alias=True))
        return

    console.print(_analysis_table(analysis))
    if analysis.skipped_tables:
        console.print(f"[dim]Filtered out: {', '.join(analysis.skipped_tables)}[/dim]")
    console.print(
        f"\n[bold]{analysis.total_new}[/bold] new · "
        f"[bold]{analysis.total_identical}[/bold] identical · "
        f"[bold]{analysis.total_conflicting}[/bold] conflicting"
    )


def merge(
    artifact: Path = typer.Argument(..., exists=True, dir_okay=False, help="Artifact file (.json or .json.gz)."),
    policy: ConflictResolution = typer.Option(
        ConflictResolution.INCOMING_WINS, "--policy", help="Conflict resolution policy."
    ),
    preserve_newer: bool = typer.Option(False, "--preserve-newer", help="Keep newer current values under merge_fields."),
    skip: List[str] = typer.Option([], "--skip", help="Table to leave out (repeatable)."),
    only: List[str] = typer.Option([], "--only", help="Restrict to this table (repeatable)."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would happen; write nothing."),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Decide each conflict by hand."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw MergeResult as JSON."),
) -> None:
    """Merge an artifact into the live store.

    \b
    Policies:
    - incoming_wins — conflicting rows take the artifact's values
    - current_wins  — conflicting rows keep the store's values
    - merge_fields  — field-by-field union (see --preserve-newer)
    - manual        — each conflict needs a decision (--interactive)
    """
    if interactive:
        policy = ConflictResolution.MANUAL
    options = _build_options(policy, preserve_newer, skip, only, dry_run)

    try:
        with get_session() as session:
            service = MergeService(session)
            loaded = service.load(artifact)
            overrides: dict[str, ConflictOverride] = {}
            if interactive:
                analysis = service.analyze(loaded, options)
                if analysis.conflicts:
                    console.print(
                        f"\n[bold]{len(analysis.conflicts)} conflict(s) need a decision[/bold]\n"
                    )
                    overrides = _ask_overrides(analysis.conflicts)
            result = service.merge(loaded, options, conflict_overrides=overrides)
    except MergeEngineError as exc:
        _fail(exc)
        return

    if as_json:
        console.print_json(result.model_dump_json(by_alias=True))
    else:
        console.print(_result_table(result))
        for error in result.errors:
            where = f"{error.table}[{error.record_id}]" if error.table else "merge"
            console.print(f"[red]✗ {where}: {error.message}[/red]")

    if not result.success:
        console.print(Panel(
            "[red]Merge failed and was rolled back. Nothing was changed.[/red]",
            title="Failed",
            border_style="red",
        ))
        raise typer.Exit(code=1)

    if not as_json:
        color = "yellow" if result.status == "partial" else "green"
        console.print(Panel(
            f"[bold {color}]Merge {result.status}[/bold {color}]\n\n"
            f"Imported: {result.total_imported}\n"
            f"Skipped:  {result.total_skipped}\n"
            f"Errors:   {result.total_errors}",
            title="Dry run" if result.simulated else "Summary",
            border_style=color,
        ))


def snapshot(
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", help="Directory to write into (default: SNAPMERGE_BACKUP_DIR)."
    ),
    filename: Optional[str] = typer.Option(None, "--filename", help="File name (default: timestamped)."),
    compress: bool = typer.Option(False, "--compress", help="Write a gzipped .json.gz artifact."),
    exported_by: Optional[str] = typer.Option(None, "--exported-by", help="Recorded in the artifact metadata."),
) -> None:
    """Capture the current store as an incremental backup artifact."""
    try:
        with get_session() as session:
            path = MergeService(session).save_incremental_snapshot(
                filename=filename,
                exported_by=exported_by,
                compress=compress,
                directory=output_dir,
            )
    except MergeEngineError as exc:
        _fail(exc)
        return

    console.print(Panel(
        f"[green]Snapshot written to[/green] {path}",
        title="snapmerge",
        border_style="green",
    ))
