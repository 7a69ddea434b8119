"""
Clinical document text extraction for uploads.

Supports .pdf (text layer via PyMuPDF, OCR via pdf2image + pytesseract for scanned
pages), .docx (python-docx) and .txt (utf-8, latin-1 fallback).
"""

from __future__ import annotations

import io
import logging
import re
from pathlib import Path

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".pdf", ".docx", ".txt")

# A text layer shorter than this is treated as a scanned document.
_MIN_TEXT_LAYER_CHARS = 50


class UnsupportedDocumentError(ValueError):
    pass


def extract_text(filename: str, data: bytes) -> str:
    """
    Return cleaned text for an uploaded document, or "" when nothing could be read.

    Raises UnsupportedDocumentError for file types other than SUPPORTED_SUFFIXES.
    """
    suffix = Path(filename or "").suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise UnsupportedDocumentError(
            f"Unsupported file type {suffix or '(none)'}; expected one of {', '.join(SUPPORTED_SUFFIXES)}"
        )
    if not data:
        return ""

    if suffix == ".pdf":
        return _extract_text_pdf(data)
    if suffix == ".docx":
        return _extract_text_docx(data)
    return _extract_text_plain(data)


def _extract_text_pdf(data: bytes) -> str:
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            text = "\n".join(page.get_text() for page in doc).strip()
    except Exception as e:
        logger.exception("PDF extraction failed: %s", e)
        text = ""

    if len(text) < _MIN_TEXT_LAYER_CHARS:
        try:
            text = _extract_text_pdf_ocr(data) or text
        except Exception as e:
            logger.exception("PDF OCR fallback failed: %s", e)
    return _normalize_text(text)


def _extract_text_pdf_ocr(data: bytes) -> str:
    """Scanned PDF: render pages to images and OCR them."""
    import pdf2image
    import pytesseract

    images = pdf2image.convert_from_bytes(data)
    return "\n".join(pytesseract.image_to_string(img) for img in images)


def _extract_text_docx(data: bytes) -> str:
    try:
        from docx import Document

        doc = Document(io.BytesIO(data))
        return _normalize_text("\n".join(p.text for p in doc.paragraphs if p.text.strip()))
    except Exception as e:
        logger.exception("DOCX extraction failed: %s", e)
        return ""


def _extract_text_plain(data: bytes) -> str:
    try:
        return _normalize_text(data.decode("utf-8"))
    except UnicodeDecodeError:
        return _normalize_text(data.decode("latin-1"))


def _normalize_text(text: str) -> str:
    if not text:
        return ""
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
