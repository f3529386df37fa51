"""Command-line entry point for the AI batch renamer."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from typing_extensions import Annotated

from renamer.batch_processor import BatchHandle
from renamer.errors import RenamerError
from renamer.logging_utils import configure_logging
from renamer.pipeline import RenamePipeline
from renamer.processor import ItemStage
from renamer.schema import (
    BatchSummary,
    CategoryEffectiveness,
    FeedbackAction,
    ProgressEvent,
    TimeRange,
)

LOGGER_NAME = "renamer.cli"
logger = logging.getLogger(LOGGER_NAME)

app = typer.Typer(help="Categorize and rename files with local AI models.")
console = Console()
error_console = Console(stderr=True)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config.yaml (default ./config.yaml)"),
]
DebugOption = Annotated[bool, typer.Option(help="Enable debug logging.")]


@dataclass
class DashboardState:
    """Progress shared between worker callbacks and the live panel."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    active: dict[str, str] = field(default_factory=dict)
    recent: list[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def reset(self) -> None:
        with self.lock:
            self.total = self.completed = self.failed = 0
            self.active.clear()
            self.recent.clear()

    def on_progress(self, event: ProgressEvent) -> None:
        with self.lock:
            self.total = event.total
            self.completed = event.completed
            self.failed = event.failed

    def on_stage(self, file_path: str, stage: ItemStage) -> None:
        with self.lock:
            if stage in (ItemStage.DONE, ItemStage.ERROR):
                self.active.pop(file_path, None)
            else:
                self.active[file_path] = stage.value

    def on_item_complete(self, file_path: str, result) -> None:
        with self.lock:
            name = escape(Path(file_path).name)
            suggestion = escape(result.ai_suggested_name)
            self.recent.append(f"[green]✓[/green] {name} -> {suggestion}")
            del self.recent[:-8]

    def on_item_failed(self, file_path: str, error: str) -> None:
        with self.lock:
            name = escape(Path(file_path).name)
            self.recent.append(f"[red]✗[/red] {name}: {escape(error)}")
            del self.recent[:-8]


def _render_dashboard(state: DashboardState, batch_id: str) -> Panel:
    with state.lock:
        total = state.total
        processed = state.completed
        failed = state.failed
        active = dict(state.active)
        recent = list(state.recent)

    percent = (processed / total * 100) if total else 0.0
    bar_width = 40
    filled = int(round(bar_width * processed / total)) if total else 0
    bar = Text("█" * filled + "░" * (bar_width - filled), style="magenta")
    header = Text.assemble(
        (f"{processed}/{total} processed", "bold"),
        f"  ({percent:.1f}%)  ",
        (f"{failed} failed", "red" if failed else "dim"),
    )

    table = Table(expand=True, show_header=True, header_style="bold cyan")
    table.add_column("File", overflow="fold")
    table.add_column("Stage", no_wrap=True)
    if active:
        for file_path, stage in list(active.items())[:8]:
            table.add_row(Path(file_path).name, stage)
    else:
        table.add_row("Waiting for next group", "")

    body = Group(header, bar, table, Text.from_markup("\n".join(recent) or ""))
    return Panel(body, title=f"Batch {batch_id}", border_style="blue")


def _render_summary(summary: BatchSummary) -> Table:
    table = Table(title="Batch summary", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Batch", summary.batch_id)
    table.add_row("Status", summary.status.value)
    table.add_row("Files in batch", str(summary.total))
    table.add_row("Dispatched", str(summary.dispatched))
    table.add_row("Succeeded", f"[green]{summary.succeeded}[/green]")
    table.add_row("Failed", f"[red]{summary.failed}[/red]")
    if summary.bookkeeping_errors:
        table.add_row(
            "Bookkeeping errors", f"[yellow]{summary.bookkeeping_errors}[/yellow]"
        )
    if summary.cancelled:
        table.add_row("Cancelled", "yes, resume with `resume`")
    return table


def _setup(debug: bool) -> None:
    configure_logging("DEBUG" if debug else None, console=False, force=True)


def _build_pipeline(
    config: Path | None, state: DashboardState | None = None
) -> RenamePipeline:
    callbacks = {}
    if state is not None:
        callbacks = {
            "on_progress": state.on_progress,
            "on_item_stage": state.on_stage,
            "on_item_complete": state.on_item_complete,
            "on_item_failed": state.on_item_failed,
        }
    try:
        return RenamePipeline.from_config(config, **callbacks)
    except RenamerError as exc:
        _exit_on_error(exc)


def _collect_files(paths: list[Path], recursive: bool) -> list[str]:
    files: list[str] = []
    for path in paths:
        if path.is_dir():
            pattern = "**/*" if recursive else "*"
            files.extend(
                str(child)
                for child in sorted(path.glob(pattern))
                if child.is_file() and not child.name.startswith(".")
            )
        elif path.is_file():
            files.append(str(path))
        else:
            error_console.print(f"[yellow]Skipping missing path {path}[/yellow]")
    return files


def _watch(handle: BatchHandle, state: DashboardState) -> BatchSummary:
    """Show live progress until ``handle`` finishes; Ctrl+C cancels the batch."""
    with state.lock:
        state.total = handle.total
    try:
        with Live(
            _render_dashboard(state, handle.batch_id),
            console=console,
            refresh_per_second=4,
        ) as live:
            while handle.is_running:
                live.update(_render_dashboard(state, handle.batch_id))
                time.sleep(0.25)
            live.update(_render_dashboard(state, handle.batch_id))
    except KeyboardInterrupt:
        console.print(
            "[yellow]Cancelling; files already in progress will finish…[/yellow]"
        )
        handle.cancel()
    summary = handle.wait()
    console.print(_render_summary(summary))
    return summary


def _exit_on_error(exc: RenamerError) -> NoReturn:
    logger.error("%s", exc)
    error_console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(code=1)


@app.command()
def process(
    paths: Annotated[
        list[Path], typer.Argument(help="Files or directories to rename.")
    ],
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", "-n", min=1, help="Files processed per group."),
    ] = None,
    recursive: Annotated[
        bool, typer.Option("--recursive", "-r", help="Descend into subdirectories.")
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Resume an interrupted batch without asking."),
    ] = False,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Categorize and suggest new names for PATHS."""
    _setup(debug)
    state = DashboardState()
    pipeline = _build_pipeline(config, state)
    try:
        interrupted = pipeline.check_for_interrupted_batch()
        if interrupted is not None:
            console.print(
                f"Batch [bold]{interrupted.batch_id}[/bold] was interrupted with "
                f"{interrupted.remaining} of {interrupted.total} files remaining."
            )
            if yes or typer.confirm("Resume it first?", default=True):
                _watch(pipeline.resume_batch(interrupted, concurrency), state)
                state.reset()
            else:
                console.print("Leaving it for later. Use `dismiss` to discard it.")

        files = _collect_files(paths, recursive)
        if not files:
            console.print("No files to process.")
            return
        directory = str(paths[0]) if len(paths) == 1 and paths[0].is_dir() else None
        handle = pipeline.start_batch(files, concurrency, directory=directory)
        _watch(handle, state)
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def resume(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask first.")] = False,
    concurrency: Annotated[
        Optional[int], typer.Option("--concurrency", "-n", min=1)
    ] = None,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Resume the most recent interrupted batch."""
    _setup(debug)
    state = DashboardState()
    pipeline = _build_pipeline(config, state)
    try:
        interrupted = pipeline.check_for_interrupted_batch()
        if interrupted is None:
            console.print("No interrupted batch found.")
            return
        console.print(
            f"Batch [bold]{interrupted.batch_id}[/bold]: "
            f"{interrupted.remaining} remaining of {interrupted.total} "
            f"({interrupted.completed} complete, {interrupted.failed} failed)."
        )
        if not yes and not typer.confirm("Resume this batch?", default=True):
            console.print("Nothing resumed.")
            return
        _watch(pipeline.resume_batch(interrupted, concurrency), state)
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def dismiss(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask first.")] = False,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Discard the most recent interrupted batch."""
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        interrupted = pipeline.check_for_interrupted_batch()
        if interrupted is None:
            console.print("No interrupted batch found.")
            return
        if not yes and not typer.confirm(
            f"Dismiss batch {interrupted.batch_id} "
            f"({interrupted.remaining} files never processed)?",
            default=False,
        ):
            return
        pipeline.dismiss_batch(interrupted)
        console.print(f"Dismissed batch {interrupted.batch_id}.")
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def status(
    limit: Annotated[int, typer.Option(help="Number of batches to list.")] = 10,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """List recent batches and their item counts."""
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        table = Table(title="Recent batches")
        table.add_column("Batch")
        table.add_column("Status")
        table.add_column("Complete", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Remaining", justify="right")
        table.add_column("Started")
        for batch in pipeline.queue_store.list_batches(limit):
            stats = pipeline.queue_store.get_stats(batch.batch_id)
            table.add_row(
                batch.batch_id,
                batch.status.value,
                str(stats.complete),
                str(stats.failed),
                f"{stats.remaining}/{stats.total}",
                batch.started_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def regenerate(
    file: Annotated[Path, typer.Argument(help="File whose suggestion to replace.")],
    feedback: Annotated[
        Optional[str],
        typer.Option("--feedback", "-f", help="What was wrong with the last name."),
    ] = None,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Reject the current suggestion for FILE and ask for a new one."""
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        result = pipeline.regenerate(str(file), feedback)
        console.print(f"New suggestion: [bold]{escape(result.suggested_name)}[/bold]")
        if result.validation_passed is False:
            console.print("[yellow]The name did not pass validation.[/yellow]")
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def edit(
    file: Annotated[Path, typer.Argument(help="File whose suggestion to change.")],
    name: Annotated[str, typer.Argument(help="The name to propose instead.")],
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Replace the suggested name for FILE without renaming it yet."""
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        result = pipeline.edit_suggestion(str(file), name)
        console.print(f"Suggestion is now [bold]{escape(result.suggested_name)}[/bold]")
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def apply(
    file: Annotated[Path, typer.Argument(help="File to rename.")],
    name: Annotated[
        Optional[str],
        typer.Option("--name", help="Use this name instead of the suggestion."),
    ] = None,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Rename FILE using its suggestion (or --name)."""
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        outcome = pipeline.apply(str(file), name)
        console.print(f"Renamed to {outcome.new_path}")
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


def _record(
    file: Path, action: FeedbackAction, config: Path | None, debug: bool
) -> None:
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        record = pipeline.record_feedback(str(file), action)
        console.print(f"Recorded {record.action.value} for {file.name}")
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def reject(
    file: Annotated[Path, typer.Argument(help="File whose suggestion is wrong.")],
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Mark the suggestion for FILE as rejected."""
    _record(file, FeedbackAction.REJECTED, config, debug)


@app.command()
def skip(
    file: Annotated[Path, typer.Argument(help="File to leave unchanged.")],
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Mark the suggestion for FILE as skipped."""
    _record(file, FeedbackAction.SKIPPED, config, debug)


def _effectiveness_table(title: str, rows: list[CategoryEffectiveness]) -> Table:
    table = Table(title=title)
    table.add_column("Category", style="cyan")
    columns = ("Total", "Accepted", "Edited", "Rejected", "Skipped", "Rate", "Avg edit")
    for column in columns:
        table.add_column(column, justify="right")
    for row in rows:
        rate = "-" if row.acceptance_rate is None else f"{row.acceptance_rate:.1f}%"
        avg = "-" if row.avg_edit_distance is None else f"{row.avg_edit_distance:.1f}"
        table.add_row(
            row.category,
            str(row.total),
            str(row.accepted),
            str(row.edited),
            str(row.rejected),
            str(row.skipped),
            rate,
            avg,
        )
    return table


@app.command()
def effectiveness(
    time_range: Annotated[
        TimeRange, typer.Option("--range", help="Time window to report on.")
    ] = TimeRange.ALL,
    threshold: Annotated[
        float,
        typer.Option(help="Acceptance rate (%) below which a category is flagged."),
    ] = 50.0,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Show acceptance rates per category."""
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        rows = pipeline.get_effectiveness(time_range)
        if not rows:
            console.print("No feedback recorded yet.")
            return
        console.print(_effectiveness_table("Suggestion effectiveness", rows))
        low = pipeline.get_low_performing(threshold, time_range)
        if low:
            names = ", ".join(row.category for row in low)
            console.print(f"[yellow]Below {threshold:g}%:[/yellow] {names}")
        overall, _ = pipeline.get_regeneration_stats(time_range)
        if overall.total:
            console.print(
                f"Regenerations: {overall.total} "
                f"({overall.with_feedback} with feedback, "
                f"{overall.accepted} accepted afterwards)"
            )
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def rejections(
    limit: Annotated[int, typer.Option(help="Number of entries to show.")] = 10,
    time_range: Annotated[TimeRange, typer.Option("--range")] = TimeRange.ALL,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Show recently rejected or edited suggestions."""
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        table = Table(title="Recent rejections and edits")
        table.add_column("File", overflow="fold")
        table.add_column("Category")
        table.add_column("Suggested", overflow="fold")
        table.add_column("Action")
        table.add_column("Final / feedback", overflow="fold")
        for entry in pipeline.get_recent_rejections(limit, time_range):
            detail = entry.final_name or entry.regeneration_feedback or ""
            table.add_row(
                entry.original_name,
                entry.category or "",
                entry.ai_suggested_name or "",
                entry.action.value if entry.action else "regenerated",
                detail,
            )
        console.print(table)
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


@app.command()
def cleanup(
    days: Annotated[
        Optional[int],
        typer.Option(min=1, help="Retention in days (default from config)."),
    ] = None,
    config: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Delete old ledger rows and finished batches."""
    _setup(debug)
    pipeline = _build_pipeline(config)
    try:
        ledger_rows, batches = pipeline.cleanup(days)
        console.print(f"Removed {ledger_rows} ledger rows and {batches} batches.")
    except RenamerError as exc:
        _exit_on_error(exc)
    finally:
        pipeline.close()


if __name__ == "__main__":
    app()
