"""Build the lightweight file description sent to the AI provider."""

from __future__ import annotations

import base64
import logging
import mimetypes
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {
    "txt", "md", "markdown", "rst", "log", "json", "yaml", "yml", "toml", "ini",
    "xml", "html", "htm", "py", "js", "ts", "tsx", "jsx", "java", "go", "rs",
    "c", "h", "cpp", "sh", "sql", "css",
}
TABULAR_EXTENSIONS = {"csv": ",", "tsv": "\t"}
IMAGE_EXTENSIONS = {
    "png", "jpg", "jpeg", "gif", "bmp", "webp", "tiff", "tif", "heic", "heif",
    "avif",
}
TEXT_ENCODINGS = ("utf-8", "utf-8-sig", "cp1252", "latin-1")
TABULAR_PREVIEW_ROWS = 25


@dataclass
class FileRef:
    """What the provider sees of a file: name, type, preview and metadata."""

    path: str
    name: str
    extension: str
    mime_type: str
    content: str = ""
    image_base64: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_image(self) -> bool:
        return self.image_base64 is not None


def read_text_best_effort(file_path: Path, max_chars: int) -> str:
    """Read the start of a text file, trying a few common encodings."""
    for encoding in TEXT_ENCODINGS:
        try:
            with file_path.open("r", encoding=encoding) as handle:
                text = handle.read(max_chars) if max_chars > 0 else handle.read()
        except UnicodeDecodeError as exc:
            logger.debug("Failed to decode %s as %s: %s", file_path, encoding, exc)
            continue
        if encoding != "utf-8":
            logger.debug("Loaded %s using fallback encoding %s", file_path, encoding)
        return text
    return ""


def extract_tabular_preview(file_path: Path, separator: str, max_chars: int) -> str:
    """Return the header and first rows of a CSV or TSV file."""
    try:
        frame = pd.read_csv(file_path, sep=separator, nrows=TABULAR_PREVIEW_ROWS)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        logger.debug("pandas could not parse %s (%s); reading as text", file_path, exc)
        return read_text_best_effort(file_path, max_chars)

    lines = [f"Columns: {' | '.join(str(column) for column in frame.columns)}"]
    for row in frame.itertuples(index=False, name=None):
        row_text = " | ".join(str(value) for value in row if pd.notna(value))
        if row_text.strip():
            lines.append(row_text)
    preview = "\n".join(lines)
    return preview[:max_chars] if max_chars > 0 else preview


def extract_text_from_svg(file_path: Path, max_chars: int) -> str:
    """Collect the visible text of an SVG drawing."""
    svg = read_text_best_effort(file_path, 0)
    fragments = re.findall(
        r"<(?:text|tspan)[^>]*>(.*?)</(?:text|tspan)>", svg, re.DOTALL | re.IGNORECASE
    )
    cleaned = []
    for fragment in fragments:
        text = " ".join(re.sub(r"<[^>]+>", "", fragment).split())
        if text:
            cleaned.append(text)
    result = "\n".join(cleaned)
    return result[:max_chars] if max_chars > 0 else result


def extract_preview(file_path: Path, extension: str, max_chars: int) -> str:
    if extension in TABULAR_EXTENSIONS:
        separator = TABULAR_EXTENSIONS[extension]
        return extract_tabular_preview(file_path, separator, max_chars)
    if extension == "svg":
        return extract_text_from_svg(file_path, max_chars)
    if extension in TEXT_EXTENSIONS:
        return read_text_best_effort(file_path, max_chars)
    return ""


def describe_file(file_path: str | Path, *, max_chars: int = 3000) -> FileRef:
    """Build a :class:`FileRef` for ``file_path``.

    Raises ``OSError`` when the file cannot be read; the caller reports it as a
    per-item failure.
    """
    path = Path(file_path)
    stat = path.stat()
    extension = path.suffix.lstrip(".").lower()
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

    image_base64 = None
    content = ""
    if extension in IMAGE_EXTENSIONS:
        image_base64 = base64.b64encode(path.read_bytes()).decode("ascii")
    else:
        content = extract_preview(path, extension, max_chars)

    metadata = {
        "size_bytes": stat.st_size,
        "modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
    }
    logger.debug(
        "Described %s (mime=%s, preview=%d chars, image=%s)",
        path,
        mime_type,
        len(content),
        image_base64 is not None,
    )
    return FileRef(
        path=str(path),
        name=path.name,
        extension=extension,
        mime_type=mime_type,
        content=content,
        image_base64=image_base64,
        metadata=metadata,
    )
