"""Logging setup shared by the CLI and the batch workers."""

from __future__ import annotations

import logging
import os
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(message)s"
DEFAULT_LOG_FILE = "renamer.log"
_CONFIGURED = False


def _resolve_level(level: int | str | None) -> int:
    """Turn an int, a level name or the RENAMER_LOG_LEVEL env var into a level."""
    if isinstance(level, int):
        return level
    candidates = [level] if isinstance(level, str) else []
    candidates.append(os.getenv("RENAMER_LOG_LEVEL", "INFO"))
    for candidate in candidates:
        resolved = logging.getLevelName(candidate.upper())
        if isinstance(resolved, int):
            return resolved
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    log_file: str | os.PathLike[str] | None = None,
    console: bool = True,
    force: bool = False,
) -> None:
    """Configure root logging for the renamer.

    Parameters
    ----------
    level:
        Level override. Without one, RENAMER_LOG_LEVEL is used (default INFO).
    log_file:
        Path for the file handler. ``None`` reads RENAMER_LOG_FILE and falls
        back to ``renamer.log``; an empty string disables file logging.
    console:
        Attach a stream handler. The CLI turns this off while a live progress
        panel owns the terminal.
    force:
        Replace handlers installed by an earlier call.
    """
    global _CONFIGURED

    resolved_level = _resolve_level(level)
    format_string = os.getenv("RENAMER_LOG_FORMAT", DEFAULT_FORMAT)

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())

    if log_file is None:
        log_file = os.getenv("RENAMER_LOG_FILE", DEFAULT_LOG_FILE)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    if not handlers:
        raise ValueError("configure_logging requires at least one handler")

    if force or not _CONFIGURED:
        logging.basicConfig(
            level=resolved_level,
            format=format_string,
            handlers=handlers,
            force=True,
        )
        _CONFIGURED = True
    else:
        logging.getLogger().setLevel(resolved_level)

    # The ollama client logs every request through httpx at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


__all__ = ["configure_logging"]
