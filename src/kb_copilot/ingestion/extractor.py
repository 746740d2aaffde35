"""Text extraction — turn an uploaded file payload into plain text.

The extractor is a pure transform: bytes plus a declared content type in,
a string out.  Office and PDF containers are parsed with their dedicated
libraries; anything else (or anything we cannot classify) is decoded as
text on a best-effort basis.

Supported formats
-----------------
=========  ==============================================  ====================
Kind       Content types / extensions                      Parser
=========  ==============================================  ====================
pdf        ``application/pdf`` / ``.pdf``                  ``PyPDFParser``
docx       ``…wordprocessingml.document`` / ``.docx``      python-docx
xlsx       ``…spreadsheetml.sheet`` / ``.xlsx``            openpyxl
pptx       ``…presentationml.presentation`` / ``.pptx``    python-pptx
html       ``text/html`` / ``.html``, ``.htm``             BeautifulSoup
text       ``text/*``, JSON, CSV, Markdown, unknown        byte decode
=========  ==============================================  ====================
"""

from __future__ import annotations

import csv
import io
import logging
import re
import unicodedata
from collections.abc import Callable
from pathlib import PurePath

from kb_copilot.errors import UnsupportedFormat

logger = logging.getLogger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"

_EXTENSION_KINDS = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".xlsx": "xlsx",
    ".pptx": "pptx",
    ".html": "html",
    ".htm": "html",
    ".txt": "text",
    ".md": "text",
    ".mdx": "text",
    ".csv": "text",
    ".json": "text",
}

_TEXTUAL_TYPES = ("json", "csv", "markdown", "xml", "yaml")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def detect_kind(content_type: str | None, filename: str | None = None) -> str | None:
    """Classify a payload as one of the supported kinds.

    The declared MIME type wins; generic or missing types fall back to the
    file extension.  Returns ``None`` when nothing matches.
    """
    ctype = (content_type or "").split(";", 1)[0].strip().lower()

    if ctype == PDF or "pdf" in ctype:
        return "pdf"
    if ctype == DOCX or "wordprocessingml" in ctype or ctype.endswith("docx"):
        return "docx"
    if ctype == XLSX or "spreadsheetml" in ctype or ctype.endswith("xlsx"):
        return "xlsx"
    if ctype == PPTX or "presentationml" in ctype or ctype.endswith("pptx"):
        return "pptx"
    if "html" in ctype:
        return "html"
    if ctype.startswith("text/") or any(t in ctype for t in _TEXTUAL_TYPES):
        return "text"

    if filename:
        return _EXTENSION_KINDS.get(PurePath(filename).suffix.lower())
    return None


def extract_text(data: bytes, content_type: str | None, *, filename: str | None = None) -> str:
    """Convert a raw file payload into plain text.

    Parameters
    ----------
    data:
        File contents as uploaded.
    content_type:
        Declared MIME type (may be empty or generic).
    filename:
        Original file name, used only for extension-based detection.

    Returns
    -------
    str
        The extracted text (not yet normalised, see :func:`normalize_text`).

    Raises
    ------
    UnsupportedFormat
        When no strategy produces non-whitespace text.  Callers on the
        upload path should treat this as "indexing skipped".
    """
    kind = detect_kind(content_type, filename)
    declared = content_type or "unknown"

    parser = _PARSERS.get(kind) if kind else None
    if parser is not None:
        try:
            text = parser(data)
        except Exception as exc:
            logger.warning("Failed to parse %s payload (%s), falling back to byte decode: %s", kind, declared, exc)
        else:
            if text.strip():
                logger.debug("Extracted %d chars from %s payload", len(text), kind)
                return text
            logger.warning("%s parser found no text in %s payload, falling back to byte decode", kind, declared)

    text = decode_bytes(data)
    if not text.strip():
        raise UnsupportedFormat(declared, "no extraction strategy produced text")
    if kind is None:
        logger.info("Unrecognised content type %r, used best-effort decode", declared)
    return text


def decode_bytes(data: bytes) -> str:
    """Best-effort bytes → text: UTF-8, UTF-16 (with BOM), then Latin-1."""
    if data.startswith((b"\xff\xfe", b"\xfe\xff")):
        try:
            return _CONTROL_CHARS.sub("", data.decode("utf-16"))
        except UnicodeDecodeError:
            pass
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    return _CONTROL_CHARS.sub("", text)


def normalize_text(text: str) -> str:
    """Unicode NFC, unify newlines, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[^\S\n]+", " ", text)  # collapse spaces (keep \n)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)  # max two consecutive newlines
    text = _CONTROL_CHARS.sub("", text)
    return text.strip()


# ── format parsers ─────────────────────────────────────────────────────


def _parse_pdf(data: bytes) -> str:
    from langchain_community.document_loaders.parsers import PyPDFParser
    from langchain_core.documents.base import Blob

    blob = Blob.from_data(data, mime_type=PDF)
    pages = [doc.page_content for doc in PyPDFParser().lazy_parse(blob)]
    return "\n\n".join(p for p in pages if p.strip())


def _parse_docx(data: bytes) -> str:
    from docx import Document

    doc = Document(io.BytesIO(data))
    parts = [para.text for para in doc.paragraphs if para.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                parts.append(" | ".join(cells))
    return "\n\n".join(parts)


def _parse_xlsx(data: bytes) -> str:
    from openpyxl import load_workbook

    workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    sections: list[str] = []
    try:
        for sheet in workbook.worksheets:
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            for row in sheet.iter_rows(values_only=True):
                if any(cell is not None for cell in row):
                    writer.writerow(["" if cell is None else cell for cell in row])
            sections.append(f"## {sheet.title}\n\n{buffer.getvalue()}")
    finally:
        workbook.close()
    return "\n\n".join(sections)


def _parse_pptx(data: bytes) -> str:
    from pptx import Presentation

    presentation = Presentation(io.BytesIO(data))
    slides: list[str] = []
    for number, slide in enumerate(presentation.slides, 1):
        texts = [
            shape.text_frame.text
            for shape in slide.shapes
            if shape.has_text_frame and shape.text_frame.text.strip()
        ]
        slides.append(f"## Slide {number}\n\n" + "\n".join(texts))
    return "\n\n".join(slides)


def _parse_html(data: bytes) -> str:
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(decode_bytes(data), "html.parser")
    # Strip boiler-plate tags
    for tag in soup(["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]):
        tag.decompose()
    return soup.get_text(separator="\n", strip=True)


_PARSERS: dict[str, Callable[[bytes], str]] = {
    "pdf": _parse_pdf,
    "docx": _parse_docx,
    "xlsx": _parse_xlsx,
    "pptx": _parse_pptx,
    "html": _parse_html,
}
