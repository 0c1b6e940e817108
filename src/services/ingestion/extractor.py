"""Text extraction from uploaded document bytes.

Turns an upload into plain text before it is stored as a document's raw
content.  The format is chosen from the MIME type, falling back to the file
extension when the client sends a generic type.  PDF pages are joined with
form feeds (``\\f``) so the cleansing stage can detect repeated page headers.
"""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path
from typing import Callable

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
from bs4 import BeautifulSoup

from src.utils.errors import ConfigError

logger = structlog.get_logger(logger_name=__name__)

_EXTENSION_TYPES: dict[str, str] = {
    ".txt": "text/plain",
    ".text": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".csv": "text/csv",
    ".json": "application/json",
    ".html": "text/html",
    ".htm": "text/html",
    ".pdf": "application/pdf",
}

_GENERIC_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})


def _decode(data: bytes) -> str:
    """Decode *data* as UTF-8 (BOM tolerated), falling back to Latin-1."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _extract_plain(data: bytes) -> str:
    return _decode(data)


def _extract_csv(data: bytes) -> str:
    reader = csv.reader(io.StringIO(_decode(data)))
    return "\n".join(", ".join(cell.strip() for cell in row) for row in reader if row)


def _extract_json(data: bytes) -> str:
    try:
        parsed = json.loads(_decode(data))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON document: {exc}") from exc
    return json.dumps(parsed, indent=2, ensure_ascii=False)


def _extract_html(data: bytes) -> str:
    soup = BeautifulSoup(_decode(data), "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def _extract_pdf(data: bytes) -> str:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ConfigError(f"Cannot open PDF: {exc}") from exc

    pages: list[str] = []
    try:
        for page in doc:
            pages.append(page.get_text("text").strip())
    finally:
        doc.close()
    return "\f".join(pages)


_EXTRACTORS: dict[str, Callable[[bytes], str]] = {
    "text/plain": _extract_plain,
    "text/markdown": _extract_plain,
    "text/x-markdown": _extract_plain,
    "text/csv": _extract_csv,
    "application/json": _extract_json,
    "text/html": _extract_html,
    "application/pdf": _extract_pdf,
}


def resolve_content_type(filename: str, content_type: str | None) -> str:
    """Return the normalised MIME type for an upload.

    Parameters are stripped (``text/plain; charset=utf-8`` -> ``text/plain``)
    and a generic or missing type is replaced by the extension's type.
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime in _GENERIC_TYPES or mime not in _EXTRACTORS:
        by_extension = _EXTENSION_TYPES.get(Path(filename).suffix.lower())
        if by_extension:
            return by_extension
    return mime or "application/octet-stream"


def extract_text(data: bytes, filename: str, content_type: str | None = None) -> tuple[str, str]:
    """Extract plain text from an uploaded file.

    Returns
    -------
    tuple[str, str]
        ``(text, resolved_content_type)``.

    Raises
    ------
    ConfigError
        If the format is unsupported or the file cannot be parsed.
    """
    mime = resolve_content_type(filename, content_type)
    extractor = _EXTRACTORS.get(mime)
    if extractor is None:
        supported = ", ".join(sorted(_EXTRACTORS))
        raise ConfigError(f"Unsupported content type {mime!r} for {filename!r} (supported: {supported})")

    text = extractor(data)
    logger.info(
        "text_extracted",
        filename=filename,
        content_type=mime,
        bytes=len(data),
        chars=len(text),
    )
    return text, mime
