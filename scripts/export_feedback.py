#!/usr/bin/env python
# scripts/export_feedback.py
"""A script to export the suggestion ledger and effectiveness report to CSV."""

import sys
from pathlib import Path
from typing import Optional

import pandas as pd
import typer
from rich.console import Console

# Add project root to path to allow importing from renamer
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from renamer.config_utils import load_settings  # noqa: E402
from renamer.database_manager import initialize_db  # noqa: E402
from renamer.errors import RenamerError  # noqa: E402
from renamer.feedback import FeedbackTracker  # noqa: E402
from renamer.queue_store import QueueStore  # noqa: E402
from renamer.schema import TimeRange  # noqa: E402

app = typer.Typer()
console = Console()
error_console = Console(stderr=True)

LEDGER_COLUMNS = [
    "created_at",
    "file_name",
    "category",
    "ai_suggested_name",
    "final_name",
    "action",
    "edit_distance",
    "model",
    "is_regeneration",
    "regeneration_feedback",
    "validation_passed",
    "total_ms",
    "batch_id",
    "file_path",
]


@app.command()
def export(
    output_dir: Path = typer.Option(
        "data/exports",
        "--output-dir",
        "-o",
        help="Directory the CSV files are written to.",
        file_okay=False,
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config.yaml."
    ),
    time_range: TimeRange = typer.Option(
        TimeRange.ALL, "--range", help="Time window for the effectiveness report."
    ),
):
    """
    Export the suggestion ledger and per-category effectiveness as CSV.
    """
    try:
        settings = load_settings(config)
        db = initialize_db(settings.storage.database_path)
    except RenamerError as e:
        error_console.print(f"[bold red]Could not open the database: {e}[/bold red]")
        raise typer.Exit(code=1)

    try:
        tracker = FeedbackTracker(db, QueueStore(db))
        rows = tracker.export_rows()
        effectiveness = tracker.get_effectiveness(time_range)
    except RenamerError as e:
        error_console.print(f"[bold red]Failed to read the ledger: {e}[/bold red]")
        raise typer.Exit(code=1)
    finally:
        db.close()

    output_dir.mkdir(parents=True, exist_ok=True)

    ledger = pd.DataFrame(rows)
    if ledger.empty:
        ledger = pd.DataFrame(columns=LEDGER_COLUMNS)
    else:
        ledger = ledger[[column for column in LEDGER_COLUMNS if column in ledger]]
    ledger_path = output_dir / "suggestions.csv"
    ledger.to_csv(ledger_path, index=False)

    report = pd.DataFrame([row.model_dump() for row in effectiveness])
    report_path = output_dir / "effectiveness.csv"
    report.to_csv(report_path, index=False)

    console.print(f"Wrote {len(ledger)} ledger rows to {ledger_path}")
    console.print(f"Wrote {len(report)} categories to {report_path}")


if __name__ == "__main__":
    app()
