import logging

import pytest

from renamer import logging_utils


def test_configure_logging_creates_file_handler(tmp_path):
    log_path = tmp_path / "logs" / "run.log"
    logging_utils._CONFIGURED = False  # reset between tests

    logging_utils.configure_logging(
        level="warning",
        log_file=log_path,
        console=False,
        force=True,
    )

    logger = logging.getLogger("renamer.tests")
    logger.warning("coverage-check")

    contents = log_path.read_text(encoding="utf-8")
    assert "coverage-check" in contents
    assert "renamer.tests" in contents


def test_configure_logging_requires_handler():
    logging_utils._CONFIGURED = False

    with pytest.raises(ValueError):
        logging_utils.configure_logging(
            level="info",
            log_file="",
            console=False,
            force=True,
        )


def test_configure_logging_reads_level_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("RENAMER_LOG_LEVEL", "debug")
    monkeypatch.setenv("RENAMER_LOG_FILE", str(tmp_path / "env.log"))
    logging_utils._CONFIGURED = False

    logging_utils.configure_logging(console=False, force=True)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    assert (tmp_path / "env.log").exists()
