from unittest.mock import patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from main import app
from renamer.database_manager import Database
from renamer.queue_store import QueueStore

from fakes import FakeProvider

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("RENAMER_LOG_FILE", str(tmp_path / "logs" / "cli.log"))
    # Wide enough that table cells are never truncated.
    monkeypatch.setattr("main.console", Console(width=200))
    config_path = tmp_path / "config.yaml"
    db_path = tmp_path / "cli.db"
    config_path.write_text(
        f"storage:\n  database_path: {db_path}\n"
        "processing:\n  enable_validation: false\n  parallel_files: 2\n",
        encoding="utf-8",
    )
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    for name in ("scan1.txt", "scan2.txt", ".hidden"):
        (inbox / name).write_text("Invoice total 12.00")

    provider = FakeProvider()
    with patch("renamer.pipeline.OllamaProvider", return_value=provider):
        yield {
            "config": str(config_path),
            "db_path": db_path,
            "inbox": inbox,
            "provider": provider,
        }


def test_process_command_runs_a_batch(cli_env):
    result = runner.invoke(
        app, ["process", str(cli_env["inbox"]), "--config", cli_env["config"]]
    )

    assert result.exit_code == 0, result.stdout
    assert "Batch summary" in result.stdout
    assert "completed" in result.stdout
    assert cli_env["provider"].calls["categorize"] == 2


def test_process_offers_interrupted_batch_first(cli_env):
    leftover = str(cli_env["inbox"] / "scan1.txt")
    db = Database(cli_env["db_path"])
    QueueStore(db).create("batch_left", [leftover])
    db.close()

    result = runner.invoke(
        app,
        ["process", str(cli_env["inbox"] / "scan2.txt"), "--config", cli_env["config"]],
        input="y\n",
    )

    assert result.exit_code == 0, result.stdout
    assert "batch_left" in result.stdout
    assert cli_env["provider"].categorized_paths[0] == leftover
    assert cli_env["provider"].calls["categorize"] == 2


def test_status_lists_batches(cli_env):
    runner.invoke(app, ["process", str(cli_env["inbox"]), "-c", cli_env["config"]])

    result = runner.invoke(app, ["status", "--config", cli_env["config"]])

    assert result.exit_code == 0, result.stdout
    assert "Recent batches" in result.stdout
    assert "completed" in result.stdout


def test_apply_renames_and_effectiveness_reports(cli_env):
    runner.invoke(app, ["process", str(cli_env["inbox"]), "-c", cli_env["config"]])
    target = cli_env["inbox"] / "scan1.txt"

    result = runner.invoke(app, ["apply", str(target), "-c", cli_env["config"]])

    assert result.exit_code == 0, result.stdout
    assert not target.exists()
    assert (cli_env["inbox"] / "invoice_scan1_renamed.txt").exists()

    report = runner.invoke(app, ["effectiveness", "-c", cli_env["config"]])
    assert report.exit_code == 0, report.stdout
    assert "Suggestion effectiveness" in report.stdout
    assert "invoice" in report.stdout


def test_edit_then_apply_uses_edited_name(cli_env):
    runner.invoke(app, ["process", str(cli_env["inbox"]), "-c", cli_env["config"]])
    target = cli_env["inbox"] / "scan2.txt"

    edited = runner.invoke(
        app, ["edit", str(target), "march invoice", "-c", cli_env["config"]]
    )
    assert edited.exit_code == 0, edited.stdout
    assert "march_invoice.txt" in edited.stdout

    result = runner.invoke(app, ["apply", str(target), "-c", cli_env["config"]])

    assert result.exit_code == 0, result.stdout
    assert (cli_env["inbox"] / "march_invoice.txt").exists()


def test_reject_unknown_file_exits_with_error(cli_env):
    result = runner.invoke(
        app, ["reject", str(cli_env["inbox"] / "scan1.txt"), "-c", cli_env["config"]]
    )

    assert result.exit_code == 1


def test_resume_and_dismiss_without_batches(cli_env):
    resume = runner.invoke(app, ["resume", "--yes", "-c", cli_env["config"]])
    dismiss = runner.invoke(app, ["dismiss", "--yes", "-c", cli_env["config"]])

    assert resume.exit_code == 0
    assert "No interrupted batch found." in resume.stdout
    assert "No interrupted batch found." in dismiss.stdout


def test_dismiss_interrupted_batch(cli_env):
    db = Database(cli_env["db_path"])
    QueueStore(db).create("batch_left", [str(cli_env["inbox"] / "scan1.txt")])
    db.close()

    result = runner.invoke(app, ["dismiss", "--yes", "-c", cli_env["config"]])

    assert result.exit_code == 0, result.stdout
    assert "Dismissed batch batch_left." in result.stdout
    again = runner.invoke(app, ["resume", "--yes", "-c", cli_env["config"]])
    assert "No interrupted batch found." in again.stdout


def test_effectiveness_without_feedback(cli_env):
    result = runner.invoke(
        app, ["effectiveness", "--range", "7d", "-c", cli_env["config"]]
    )

    assert result.exit_code == 0, result.stdout
    assert "No feedback recorded yet." in result.stdout
