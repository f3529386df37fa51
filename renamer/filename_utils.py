"""Filename helpers: sanitizing AI suggestions and reading hints from names."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

MAX_NAME_LENGTH = 200
DEFAULT_EXTENSION = "txt"

DANGEROUS_CHARS = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')
WHITESPACE_RUN = re.compile(r"[\s_]+")
EDGE_JUNK = re.compile(r"^[\s._]+|[\s._]+$")

RESERVED_NAMES = frozenset(
    {"con", "prn", "aux", "nul"}
    | {f"com{index}" for index in range(1, 10)}
    | {f"lpt{index}" for index in range(1, 10)}
)

_ISO_DATE = re.compile(r"(\d{4}-\d{2}-\d{2})")
_COMPACT_DATE = re.compile(r"(?<!\d)((?:19|20)\d{2})(\d{2})(\d{2})(?!\d)")
_MONTH_YEAR = re.compile(
    r"(january|february|march|april|may|june|july|august|september|october|"
    r"november|december|jan|feb|mar|apr|jun|jul|aug|sep|oct|nov|dec)"
    r"[-_\s]?((?:19|20)\d{2})",
    re.IGNORECASE,
)
_YEAR = re.compile(r"(?<!\d)((?:19|20)\d{2})(?!\d)")
_HEX_HASH = re.compile(r"^[0-9a-f]{8,}$", re.IGNORECASE)
_DIMENSIONS = re.compile(r"^\d+x\d+$", re.IGNORECASE)
_VERSION = re.compile(r"^v?\d+$", re.IGNORECASE)
_LONG_TOKEN = re.compile(r"^[A-Za-z0-9]{20,}$")
_WORD = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")


class UnusableNameError(ValueError):
    """Raised when an AI suggestion cannot be turned into a filename."""


def get_extension(file_name: str) -> str:
    """Return the lower-cased extension of ``file_name`` without the dot."""
    return Path(file_name).suffix.lstrip(".").lower()


def _normalized(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def sanitize_suggested_name(suggested: str | None, original_name: str) -> str:
    """Turn a raw AI suggestion into a safe filename.

    The suggestion's own extension is dropped; the original file's extension is
    always used (lower-cased), so ``photo.PNG`` with a suggestion of
    ``beach-sunset.jpg`` becomes ``beach-sunset.png``.
    """
    if not suggested or not suggested.strip():
        raise UnusableNameError("Empty filename")

    if _normalized(suggested) == _normalized(original_name):
        raise UnusableNameError("Suggestion is the original filename unchanged")

    safe = DANGEROUS_CHARS.sub("", suggested)
    safe = WHITESPACE_RUN.sub("_", safe)
    safe = EDGE_JUNK.sub("", safe)

    stem, _, _ = safe.rpartition(".")
    name = stem if stem else safe
    name = EDGE_JUNK.sub("", name)

    if name.lower() in RESERVED_NAMES:
        name = f"file_{name}"
    if len(name) > MAX_NAME_LENGTH:
        name = name[:MAX_NAME_LENGTH]
    if not name:
        raise UnusableNameError("Empty filename after sanitization")

    extension = get_extension(original_name) or DEFAULT_EXTENSION
    return f"{name}.{extension}"


@dataclass
class NameHints:
    """Details from the original filename worth keeping in the new one."""

    date: str | None = None
    identifiers: list[str] = field(default_factory=list)


def extract_name_hints(file_name: str) -> NameHints:
    """Find a date and meaningful words in an existing filename."""
    stem = Path(file_name).stem
    hints = NameHints()

    iso = _ISO_DATE.search(file_name)
    compact = _COMPACT_DATE.search(file_name)
    month_year = _MONTH_YEAR.search(file_name)
    year = _YEAR.search(file_name)
    if iso:
        hints.date = iso.group(1)
    elif compact:
        hints.date = "-".join(compact.groups())
    elif month_year:
        hints.date = f"{month_year.group(1).lower()}-{month_year.group(2)}"
    elif year:
        hints.date = year.group(1)

    for part in re.split(r"[\s_\-.]+", stem):
        if len(part) < 3:
            continue
        if (
            _HEX_HASH.match(part)
            or _DIMENSIONS.match(part)
            or _VERSION.match(part)
            or _LONG_TOKEN.match(part)
        ):
            continue
        if _WORD.match(part):
            hints.identifiers.append(part)
    return hints


def unique_path(target: Path) -> Path:
    """Return ``target`` or the first free ``name_N.ext`` sibling."""
    if not target.exists():
        return target
    counter = 1
    while True:
        candidate = target.with_name(f"{target.stem}_{counter}{target.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1
