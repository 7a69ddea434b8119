"""Tests for uploaded document text extraction."""

import io

import fitz
import pytest
from docx import Document

from agents import document_text
from agents.document_text import UnsupportedDocumentError, extract_text

NOTE = "45 year old male presents with low back pain for two weeks, no radiation."


def _pdf_bytes(text):
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def test_plain_text_normalised():
    data = b"Chief complaint:  \r\nLow back pain\r\n\r\n\r\n\r\nPlan: PT"
    assert extract_text("note.TXT", data) == "Chief complaint:\nLow back pain\n\nPlan: PT"


def test_plain_text_latin1_fallback():
    assert extract_text("note.txt", "Café au lait spots".encode("latin-1")) == "Café au lait spots"


def test_unsupported_type():
    with pytest.raises(UnsupportedDocumentError, match=r"\.png"):
        extract_text("scan.png", b"\x89PNG")


def test_missing_extension():
    with pytest.raises(UnsupportedDocumentError, match="none"):
        extract_text("notes", b"text")


def test_empty_upload():
    assert extract_text("note.pdf", b"") == ""


def test_docx():
    doc = Document()
    doc.add_paragraph("Assessment: lumbago")
    doc.add_paragraph("")
    doc.add_paragraph("Plan: NSAIDs")
    buf = io.BytesIO()
    doc.save(buf)

    assert extract_text("visit.docx", buf.getvalue()) == "Assessment: lumbago\nPlan: NSAIDs"


def test_pdf_text_layer(monkeypatch):
    monkeypatch.setattr(document_text, "_extract_text_pdf_ocr", lambda data: pytest.fail("OCR not expected"))
    assert extract_text("visit.pdf", _pdf_bytes(NOTE)) == NOTE


def test_scanned_pdf_uses_ocr(monkeypatch):
    monkeypatch.setattr(document_text, "_extract_text_pdf_ocr", lambda data: "OCR: low back pain")
    assert extract_text("scan.pdf", _pdf_bytes("x")) == "OCR: low back pain"


def test_ocr_failure_keeps_text_layer(monkeypatch):
    def broken(data):
        raise RuntimeError("tesseract is not installed")

    monkeypatch.setattr(document_text, "_extract_text_pdf_ocr", broken)
    assert extract_text("scan.pdf", _pdf_bytes("Short note")) == "Short note"
