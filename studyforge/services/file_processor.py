"""
File processor service for extracting text from uploaded documents.
Supports: PDF, Word (.docx) and plain text.
"""

import math
import re
from pathlib import Path
from typing import Callable

# Document processing
import pdfplumber
import PyPDF2
from docx import Document as WordDocument

from studyforge.core.config import settings
from studyforge.core.logging_config import get_logger

logger = get_logger(__name__)

# Constants
MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_TEXT = "text/plain"

ALLOWED_MIME_TYPES = frozenset({MIME_PDF, MIME_DOCX, MIME_TEXT})
EXTENSIONS_BY_MIME = {MIME_PDF: ".pdf", MIME_DOCX: ".docx", MIME_TEXT: ".txt"}

# Below this many characters a PDF is assumed to be scanned images, not text
MIN_PDF_TEXT_LENGTH = 20
WORDS_PER_MINUTE = 200

# Non-whitespace C0/C1 controls and U+FFFD. Tab, LF, VT, FF and CR are left for
# the whitespace pass so that "a\nb" becomes "a b" rather than "ab".
_STRIP_CHARS = re.compile(r"[\x00-\x08\x0e-\x1f\x7f-\x9f\ufffd]")
_WHITESPACE_RUN = re.compile(r"\s+")


class FileProcessingError(Exception):
    """Custom exception for file processing errors."""
    pass


def sanitize_text(text: str) -> str:
    """Strip control and replacement characters, collapse whitespace, trim."""
    text = _STRIP_CHARS.sub("", text)
    return _WHITESPACE_RUN.sub(" ", text).strip()


def validate_file_type(mime_type: str) -> bool:
    return mime_type in ALLOWED_MIME_TYPES


def get_file_extension(filename: str) -> str:
    """Lower-cased extension without the dot, or "" when there is none."""
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def estimate_reading_time(text: str) -> int:
    """Minutes needed to read ``text`` at 200 words per minute."""
    word_count = len(text.split())
    return math.ceil(word_count / WORDS_PER_MINUTE)


# ============================================
# Format-specific extractors (raw, unsanitized text)
# ============================================


def extract_text_from_txt(file_path: str) -> str:
    """Read a plain text file as UTF-8.

    Invalid byte sequences decode to U+FFFD, which the sanitizer drops.
    """
    try:
        return Path(file_path).read_bytes().decode("utf-8", errors="replace")
    except OSError as e:
        raise FileProcessingError(f"Failed to read text file: {e}")


def extract_text_from_docx(file_path: str) -> str:
    """Extract text from Word document (.docx)."""
    try:
        doc = WordDocument(file_path)
        text_parts = [p.text for p in doc.paragraphs if p.text.strip()]
        # Also extract from tables
        for table in doc.tables:
            for row in table.rows:
                row_text = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if row_text:
                    text_parts.append(" | ".join(row_text))
        return "\n".join(text_parts)
    except Exception as e:
        raise FileProcessingError(f"Failed to extract text from Word document: {e}")


def _require_real_text(raw: str, strategy: str) -> str:
    if len(sanitize_text(raw)) < MIN_PDF_TEXT_LENGTH:
        raise FileProcessingError(
            f"{strategy} found too little text (scanned or image-only PDF?)"
        )
    return raw


def extract_text_from_pdf_document(file_path: str) -> str:
    """Whole-document extraction with PyPDF2, page by page."""
    try:
        pdf_reader = PyPDF2.PdfReader(file_path)
        logger.debug(f"Processing PDF with {len(pdf_reader.pages)} pages")
        text_parts = []
        for page in pdf_reader.pages:
            text = page.extract_text()
            if text:
                text_parts.append(text)
    except Exception as e:
        raise FileProcessingError(f"PyPDF2 could not read the PDF: {e}")
    return _require_real_text("\n\n".join(text_parts), "PyPDF2")


def join_positioned_fragments(fragments) -> str:
    """Join ``(text, y)`` fragments: a space between fragments, a newline
    whenever the vertical position moves to a new line."""
    out = []
    last_y = None
    for text, y in fragments:
        if not text:
            continue
        if last_y is not None and y != last_y:
            out.append("\n")
        out.append(text + " ")
        last_y = y
    return "".join(out)


def extract_text_from_pdf_items(file_path: str) -> str:
    """Word-stream extraction with pdfplumber, rebuilding lines from positions."""
    try:
        with pdfplumber.open(file_path) as pdf:
            parts = []
            for page in pdf.pages:
                words = page.extract_words()
                parts.append(join_positioned_fragments(
                    (w["text"], round(w["top"], 1)) for w in words
                ))
    except Exception as e:
        raise FileProcessingError(f"pdfplumber could not read the PDF: {e}")
    return _require_real_text("\n".join(parts), "pdfplumber")


def extract_text_from_pdf(file_path: str) -> str:
    """PyPDF2 first, pdfplumber word stream as fallback."""
    try:
        return extract_text_from_pdf_document(file_path)
    except FileProcessingError as primary_error:
        logger.warning(f"Primary PDF extraction failed, trying fallback: {primary_error}")
        try:
            return extract_text_from_pdf_items(file_path)
        except FileProcessingError as fallback_error:
            raise FileProcessingError(
                f"PDF extraction failed: {primary_error}; fallback: {fallback_error}"
            )


# One extractor per supported MIME type; anything else is rejected
EXTRACTORS: dict[str, Callable[[str], str]] = {
    MIME_PDF: extract_text_from_pdf,
    MIME_DOCX: extract_text_from_docx,
    MIME_TEXT: extract_text_from_txt,
}


def extract_text_from_file(file_path: str, mime_type: str) -> str:
    """
    Extract and sanitize the text of a stored upload.

    Args:
        file_path: Path of the file on disk
        mime_type: Declared MIME type, used to pick the extractor

    Returns:
        Sanitized text

    Raises:
        FileProcessingError: Unsupported type, or the extractor failed
    """
    extractor = EXTRACTORS.get(mime_type)
    if extractor is None:
        logger.warning(f"Unsupported file type: {mime_type}")
        raise FileProcessingError(f"Unsupported file type: {mime_type}")

    logger.info(f"Extracting text | type={mime_type} | path={file_path}")
    try:
        raw_text = extractor(file_path)
    except Exception as e:
        logger.error(f"Extraction failed | type={mime_type} | path={file_path} | error={e}")
        raise FileProcessingError(f"Failed to extract text from {mime_type} file: {e}") from e

    text = sanitize_text(raw_text)
    logger.debug(f"Extracted {len(text)} chars from {file_path}")
    return text


def get_supported_formats() -> dict:
    """Return information about supported file formats."""
    return {
        "mime_types": sorted(ALLOWED_MIME_TYPES),
        "extensions": sorted(EXTENSIONS_BY_MIME.values()),
        "max_file_size_mb": settings.max_upload_size_mb,
    }
