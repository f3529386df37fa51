"""Apply accepted names on disk, optionally filing files by category."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from renamer.config_utils import FolderSettings
from renamer.errors import ExecutorError
from renamer.filename_utils import DANGEROUS_CHARS, unique_path

logger = logging.getLogger(__name__)


@dataclass
class ApplyOutcome:
    old_path: str
    new_path: str
    moved: bool


class RenameExecutor(Protocol):
    def apply(
        self, old_path: str, new_name: str, *, category: str | None = None
    ) -> ApplyOutcome: ...


class LocalRenameExecutor:
    """Renames files on the local filesystem.

    When folder rules are enabled, a file whose category has a rule is moved
    into that folder; relative rule paths are resolved against the file's
    current directory. Name collisions get a ``_N`` suffix.
    """

    def __init__(self, folders: FolderSettings | None = None) -> None:
        self.folders = folders or FolderSettings()

    def _destination_dir(self, source: Path, category: str | None) -> Path:
        if not self.folders.enabled or not category:
            return source.parent
        rule = self.folders.rules.get(category)
        if not rule:
            return source.parent

        folder = Path(rule).expanduser()
        if not folder.is_absolute():
            folder = source.parent / folder
        if not folder.exists():
            if not self.folders.create_if_missing:
                raise ExecutorError(f"Destination folder {folder} does not exist")
            folder.mkdir(parents=True, exist_ok=True)
            logger.info("Created destination folder %s", folder)
        return folder

    def apply(
        self, old_path: str, new_name: str, *, category: str | None = None
    ) -> ApplyOutcome:
        source = Path(old_path)
        if not source.is_file():
            raise ExecutorError(f"{old_path} does not exist or is not a file")
        if not new_name or DANGEROUS_CHARS.search(new_name) or new_name in {".", ".."}:
            raise ExecutorError(f"{new_name!r} is not a valid file name")

        try:
            folder = self._destination_dir(source, category)
            target = folder / new_name
            if target != source:
                target = unique_path(target)
                shutil.move(str(source), str(target))
        except OSError as exc:
            raise ExecutorError(f"Could not rename {old_path}: {exc}") from exc

        moved = target.parent.resolve() != source.parent.resolve()
        logger.info("Renamed %s -> %s%s", source, target, " (moved)" if moved else "")
        return ApplyOutcome(old_path=str(source), new_path=str(target), moved=moved)
