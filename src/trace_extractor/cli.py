"""
Trace Extractor CLI - export editor AI conversations to Markdown or JSON.

Reads the editor's local state database, rebuilds conversations from their
stored message fragments and writes readable transcripts.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from trace_extractor.logging_config import setup_logging

app = typer.Typer(
    name="trace-extractor",
    help="Trace Extractor - Export editor AI conversations to Markdown or JSON",
    no_args_is_help=True,
)

console = Console()

SOURCE_LABELS = {"cursor": "Cursor", "cline": "Cline"}


def _init_logging() -> None:
    # Fall back to console logging if file logging is not permitted
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.WARNING)


def _resolve_db_path(db_path: Optional[str]) -> Path:
    from trace_extractor.config import settings
    from trace_extractor.exceptions import UnsupportedPlatformError
    from trace_extractor.storage.extractor import default_db_path

    if db_path:
        return Path(db_path).expanduser()
    if settings.database_path is not None:
        return settings.database_path

    try:
        return default_db_path()
    except UnsupportedPlatformError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        console.print("  Use --db-path or CURSOR_DB_PATH to point at state.vscdb")
        raise typer.Exit(1)


def _resolve_cline_dir(cline_dir: Optional[str]) -> Optional[Path]:
    from trace_extractor.config import settings

    if cline_dir:
        return Path(cline_dir).expanduser()
    return settings.cline_tasks_path


def _load_recent(db_path: Optional[str], limit: int, cline_dir: Optional[str] = None):
    from trace_extractor.services.conversations import get_recent_conversations
    from trace_extractor.storage.extractor import extract_snapshot

    path = _resolve_db_path(db_path)
    snapshot = extract_snapshot(path)
    summaries = get_recent_conversations(
        snapshot, limit=limit, cline_tasks_dir=_resolve_cline_dir(cline_dir)
    )

    if not summaries:
        console.print(f"[yellow]No conversations found in {path}[/yellow]")
        raise typer.Exit(0)

    return summaries


@app.command("list")
def list_conversations(
    limit: int = typer.Option(None, "--limit", "-n", help="Number of conversations to show"),
    db_path: str = typer.Option(None, "--db-path", help="Path to state.vscdb"),
    cline_dir: str = typer.Option(None, "--cline-dir", help="Cline tasks directory to include"),
) -> None:
    """
    List the most recent conversations.

    Conversations are sorted by their last message time, newest first.
    Times marked with ~ are estimates for conversations with no usable
    timestamps.
    """
    from trace_extractor.config import settings
    from trace_extractor.summary import time_ago

    _init_logging()
    summaries = _load_recent(db_path, limit or settings.recent_limit, cline_dir)

    table = Table(title="Recent conversations")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Source")
    table.add_column("Model")
    table.add_column("Updated")
    table.add_column("Messages", justify="right")
    table.add_column("ID")

    for index, summary in enumerate(summaries, start=1):
        updated = time_ago(summary.last_message_time)
        if summary.last_message_time_estimated:
            updated = f"~{updated}"
        table.add_row(
            str(index),
            summary.title,
            SOURCE_LABELS.get(summary.source, summary.source),
            summary.model or "-",
            updated,
            str(summary.message_count),
            summary.id,
        )

    console.print(table)


@app.command()
def export(
    selector: str = typer.Argument(
        None, help="List index (1 = most recent) or conversation id/prefix"
    ),
    fmt: str = typer.Option(None, "--format", "-f", help="Output format: markdown or json"),
    output_dir: str = typer.Option(None, "--output-dir", "-o", help="Output directory"),
    limit: int = typer.Option(None, "--limit", "-n", help="Number of recent conversations to consider"),
    export_all: bool = typer.Option(False, "--all", help="Export every listed conversation"),
    db_path: str = typer.Option(None, "--db-path", help="Path to state.vscdb"),
    cline_dir: str = typer.Option(None, "--cline-dir", help="Cline tasks directory to include"),
) -> None:
    """
    Export conversations to Markdown or JSON files.

    Without a selector the most recent conversation is exported.
    """
    from trace_extractor.config import settings
    from trace_extractor.exceptions import ExportError
    from trace_extractor.services.conversations import (
        EXPORT_FORMATS,
        export_conversation,
        select_conversation,
    )

    _init_logging()

    fmt = (fmt or settings.default_format).lower()
    if fmt not in EXPORT_FORMATS:
        console.print(
            f"[bold red]Error:[/bold red] Unknown format '{fmt}' "
            f"(choose from: {', '.join(EXPORT_FORMATS)})"
        )
        raise typer.Exit(1)

    summaries = _load_recent(db_path, limit or settings.recent_limit, cline_dir)

    if export_all:
        selected = summaries
    elif selector:
        summary = select_conversation(summaries, selector)
        if summary is None:
            console.print(
                f"[bold red]Error:[/bold red] No conversation matches '{selector}'"
            )
            raise typer.Exit(1)
        selected = [summary]
    else:
        selected = summaries[:1]

    target_dir = Path(output_dir or settings.output_dir)
    console.print(f"[bold blue]Exporting to:[/bold blue] {target_dir}")
    console.print(f"  Format: {fmt}")
    console.print()

    exported = 0
    failed = 0

    for summary in selected:
        try:
            path = export_conversation(summary.conversation, target_dir, fmt)
            console.print(f"[green]✓ Exported:[/green] {summary.title} -> {path.name}")
            exported += 1
        except ExportError as e:
            console.print(f"[red]✗[/red] {e}")
            failed += 1

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Exported: {exported}")
    console.print(f"  Failed: {failed}")

    if failed > 0:
        raise typer.Exit(1)


@app.command()
def stats(
    db_path: str = typer.Option(None, "--db-path", help="Path to state.vscdb"),
    cline_dir: str = typer.Option(None, "--cline-dir", help="Cline tasks directory to count"),
) -> None:
    """
    Show row counts for the conversation data in the database.
    """
    from trace_extractor.storage.cline import list_task_dirs
    from trace_extractor.storage.extractor import extract_snapshot

    _init_logging()

    path = _resolve_db_path(db_path)
    snapshot = extract_snapshot(path)
    counters = snapshot.stats

    console.print(f"[bold blue]Database:[/bold blue] {path}")
    console.print(f"  Composers: {counters.total_composers}")
    console.print(f"  Bubbles: {counters.total_bubbles}")
    console.print(f"  Checkpoints: {counters.total_checkpoints}")
    console.print(f"  Code diffs: {counters.total_code_diffs}")
    console.print(f"  Skipped rows: {counters.skipped_rows}")

    cline_tasks = 0
    tasks_dir = _resolve_cline_dir(cline_dir)
    if tasks_dir is not None:
        cline_tasks = len(list_task_dirs(tasks_dir))
        console.print(f"[bold blue]Cline tasks:[/bold blue] {tasks_dir}")
        console.print(f"  Tasks: {cline_tasks}")

    if snapshot.is_empty and not cline_tasks:
        console.print("[yellow]No conversation data found[/yellow]")


if __name__ == "__main__":
    app()
