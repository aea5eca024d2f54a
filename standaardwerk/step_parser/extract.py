"""Local text extraction for Word, HTML and plain-text step programs."""
from __future__ import annotations

import html
import logging
from collections.abc import Iterator
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Protocol

from bs4 import BeautifulSoup
from docx import Document

from .errors import ExtractionError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {
    ".txt",
    ".md",
    ".html",
    ".htm",
    ".docx",
}

BULLET = "- "
LIST_TAGS = {"ul", "ol"}
BLOCK_TAGS = ["p", "li", "h1", "h2", "h3", "h4", "div"]


@dataclass(frozen=True)
class ExtractedDocument:
    source: str
    raw_text: str
    normalized_text: str
    html: str = ""
    indent_source: str = "manual"

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


class TextExtractor(Protocol):
    def extract(self, path: Path) -> ExtractedDocument: ...


def _clean_extracted(text: str) -> str:
    return text.lstrip("\ufeff").replace("\r\n", "\n").replace("\x0b", "\n")


def iter_supported_files(root: Path) -> Iterator[Path]:
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS:
            yield path


def extract_plain_text(path: Path) -> ExtractedDocument:
    text = path.read_text(encoding="utf-8", errors="replace")
    return ExtractedDocument(
        source=str(path),
        raw_text=text,
        normalized_text=_clean_extracted(text),
        indent_source="manual",
    )


def _list_depth(tag: Any) -> int:
    return sum(1 for parent in tag.parents if getattr(parent, "name", None) in LIST_TAGS)


def _own_text(tag: Any) -> str:
    parts: list[str] = []
    for child in tag.children:
        name = getattr(child, "name", None)
        if name in LIST_TAGS or name in BLOCK_TAGS:
            continue
        parts.append(child.get_text(" ", strip=True) if name else str(child).strip())
    return " ".join(part for part in parts if part)


def extract_html(text: str, source: str = "<html>") -> ExtractedDocument:
    soup = BeautifulSoup(text, "lxml")
    lines: list[str] = []
    for tag in soup.find_all(BLOCK_TAGS):
        content = _own_text(tag)
        if not content:
            continue
        if tag.name == "li":
            depth = _list_depth(tag)
            lines.append("\t" * max(depth - 1, 0) + BULLET + content)
        else:
            lines.append(content)
    plain = "\n".join(lines)
    return ExtractedDocument(
        source=source,
        raw_text=soup.get_text("\n"),
        normalized_text=_clean_extracted(plain),
        html=text,
        indent_source="word",
    )


def _paragraph_level(paragraph: Any) -> int | None:
    properties = paragraph._p.pPr
    if properties is None or properties.numPr is None:
        style = getattr(paragraph.style, "name", "") or ""
        if style.startswith("List"):
            suffix = style.rsplit(" ", 1)[-1]
            return int(suffix) - 1 if suffix.isdigit() else 0
        return None
    level = properties.numPr.ilvl
    return int(level.val) if level is not None else 0


def extract_docx(path: Path) -> ExtractedDocument:
    try:
        document = Document(str(path))
    except Exception as exc:
        raise ExtractionError(f"Failed to read DOCX {path}: {exc}") from exc
    lines: list[str] = []
    fragments: list[str] = []
    for paragraph in document.paragraphs:
        text = paragraph.text
        if not text.strip():
            lines.append("")
            continue
        level = _paragraph_level(paragraph)
        if level is None:
            lines.append(text)
            fragments.append(f"<p>{html.escape(text)}</p>")
        else:
            lines.append("\t" * level + BULLET + text.strip())
            fragments.append(f'<li data-level="{level}">{html.escape(text)}</li>')
    raw = "\n".join(lines)
    return ExtractedDocument(
        source=str(path),
        raw_text=raw,
        normalized_text=_clean_extracted(raw),
        html="\n".join(fragments),
        indent_source="word",
    )


def extract_document(path: str | Path) -> ExtractedDocument:
    """Extract text from a supported file, choosing the reader by suffix."""
    file_path = Path(path)
    suffix = file_path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ExtractionError(f"Unsupported file type: {file_path}")
    if suffix == ".docx":
        return extract_docx(file_path)
    try:
        if suffix in {".html", ".htm"}:
            return extract_html(
                file_path.read_text(encoding="utf-8", errors="replace"), str(file_path)
            )
        return extract_plain_text(file_path)
    except OSError as exc:
        raise ExtractionError(f"Failed to read {file_path}: {exc}") from exc


class LocalExtractor:
    """Default extractor backed by :func:`extract_document`."""

    def extract(self, path: Path) -> ExtractedDocument:
        logger.debug("Extracting %s", path)
        return extract_document(path)
