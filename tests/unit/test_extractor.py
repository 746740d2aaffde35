"""Unit tests for text extraction and normalisation."""

from __future__ import annotations

import io

import pytest

from kb_copilot.errors import UnsupportedFormat
from kb_copilot.ingestion.extractor import (
    DOCX,
    PDF,
    PPTX,
    XLSX,
    decode_bytes,
    detect_kind,
    extract_text,
    normalize_text,
)


class TestDetectKind:
    @pytest.mark.parametrize(
        ("content_type", "filename", "expected"),
        [
            (PDF, None, "pdf"),
            (DOCX, None, "docx"),
            (XLSX, None, "xlsx"),
            (PPTX, None, "pptx"),
            ("text/html; charset=utf-8", None, "html"),
            ("text/markdown", None, "text"),
            ("application/json", None, "text"),
            ("text/csv", None, "text"),
            ("application/octet-stream", "deck.PPTX", "pptx"),
            ("", "report.pdf", "pdf"),
            (None, "notes.md", "text"),
            ("application/octet-stream", "archive.zip", None),
            (None, None, None),
        ],
    )
    def test_detection(self, content_type: str | None, filename: str | None, expected: str | None) -> None:
        assert detect_kind(content_type, filename) == expected


class TestExtractText:
    def test_plain_text(self) -> None:
        assert extract_text(b"Runway is 18 months.", "text/plain") == "Runway is 18 months."

    def test_html_strips_markup_and_boilerplate(self) -> None:
        html = (
            b"<html><head><style>p {color: red}</style></head><body>"
            b"<nav>Home | About</nav><p>Revenue doubled.</p>"
            b"<script>track()</script></body></html>"
        )
        text = extract_text(html, "text/html")
        assert "Revenue doubled." in text
        assert "Home" not in text
        assert "track()" not in text
        assert "color" not in text

    def test_unknown_type_falls_back_to_decode(self) -> None:
        assert extract_text(b"plain words", "application/x-unknown") == "plain words"

    def test_broken_pdf_falls_back_to_decode(self) -> None:
        assert extract_text(b"definitely not a pdf", PDF) == "definitely not a pdf"

    def test_whitespace_only_is_unsupported(self) -> None:
        with pytest.raises(UnsupportedFormat) as exc_info:
            extract_text(b"  \n\t  ", "text/plain")
        assert exc_info.value.content_type == "text/plain"

    def test_empty_payload_is_unsupported(self) -> None:
        with pytest.raises(UnsupportedFormat):
            extract_text(b"", None)

    def test_docx(self) -> None:
        from docx import Document

        doc = Document()
        doc.add_paragraph("Quarterly revenue grew.")
        table = doc.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "MRR"
        table.rows[0].cells[1].text = "$40k"
        buffer = io.BytesIO()
        doc.save(buffer)

        text = extract_text(buffer.getvalue(), DOCX)

        assert "Quarterly revenue grew." in text
        assert "MRR | $40k" in text

    def test_xlsx_sections_per_sheet(self) -> None:
        from openpyxl import Workbook

        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Metrics"
        sheet.append(["month", "mrr"])
        sheet.append(["Jan", 100])
        buffer = io.BytesIO()
        workbook.save(buffer)

        text = extract_text(buffer.getvalue(), "application/octet-stream", filename="metrics.xlsx")

        assert "## Metrics" in text
        assert "month,mrr" in text
        assert "Jan,100" in text

    def test_pptx_sections_per_slide(self) -> None:
        from pptx import Presentation

        presentation = Presentation()
        slide = presentation.slides.add_slide(presentation.slide_layouts[1])
        slide.shapes.title.text = "Roadmap"
        slide.placeholders[1].text = "Ship the second release"
        buffer = io.BytesIO()
        presentation.save(buffer)

        text = extract_text(buffer.getvalue(), PPTX)

        assert text.startswith("## Slide 1")
        assert "Roadmap" in text
        assert "Ship the second release" in text


class TestDecodeBytes:
    def test_utf16_with_bom(self) -> None:
        assert decode_bytes("héllo".encode("utf-16")) == "héllo"

    def test_utf8_bom_is_dropped(self) -> None:
        assert decode_bytes(b"\xef\xbb\xbfhello") == "hello"

    def test_latin1_fallback(self) -> None:
        assert decode_bytes(b"caf\xe9") == "café"

    def test_control_characters_removed(self) -> None:
        assert decode_bytes(b"a\x00b\x07c\nd") == "abc\nd"


class TestNormalizeText:
    def test_newlines_and_spaces(self) -> None:
        assert normalize_text("a\r\nb\r\n\r\n\r\n\r\nc   d  \n  e") == "a\nb\n\nc d\ne"

    def test_tabs_and_spaces_around_newlines(self) -> None:
        assert normalize_text("q1\t\trevenue \t up \n\t next line") == "q1 revenue up\nnext line"

    def test_nfc(self) -> None:
        assert normalize_text("cafe\u0301") == "caf\u00e9"

    def test_strips_outer_whitespace(self) -> None:
        assert normalize_text("\n\n  body  \n") == "body"
