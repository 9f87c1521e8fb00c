import os
import logging
from typing import Optional

import pdfplumber
from docx import Document

logger = logging.getLogger(__name__)

PDF = 'pdf'
DOCX = 'docx'
HTML = 'html'
TEXT = 'text'
IMAGE = 'image'
UNKNOWN = 'unknown'

# Source kinds that can carry outline text
TEXT_SOURCE_KINDS = {PDF, DOCX, HTML, TEXT}

_EXTENSION_KINDS = {
    '.pdf': PDF,
    '.docx': DOCX,
    '.doc': DOCX,
    '.html': HTML,
    '.htm': HTML,
    '.txt': TEXT,
    '.md': TEXT,
    '.png': IMAGE,
    '.jpg': IMAGE,
    '.jpeg': IMAGE,
    '.gif': IMAGE,
    '.webp': IMAGE,
}


class UnsupportedSourceKind(Exception):
    """The uploaded document has no text we are able to read."""

    def __init__(self, source_kind: str, message: Optional[str] = None):
        self.source_kind = source_kind
        self.message = message or (
            f"Cannot read text from a '{source_kind}' file. Please provide a PDF or HTML file."
        )
        super().__init__(self.message)


def detect_source_kind(filename: str, mimetype: Optional[str] = None) -> str:
    """Classify an upload by its mimetype, falling back to the file extension."""
    if mimetype:
        mimetype = mimetype.lower()
        if mimetype == 'application/pdf':
            return PDF
        if mimetype.startswith('text/html'):
            return HTML
        if mimetype.startswith('image/'):
            return IMAGE
        if mimetype == 'application/vnd.openxmlformats-officedocument.wordprocessingml.document':
            return DOCX
        if mimetype.startswith('text/'):
            return TEXT

    _, file_extension = os.path.splitext(filename or '')
    return _EXTENSION_KINDS.get(file_extension.lower(), UNKNOWN)


def extract_text_from_pdf(file_path: str) -> str:
    """Extract text content from a PDF file."""
    text = ""
    try:
        with pdfplumber.open(file_path) as pdf:
            for page in pdf.pages:
                text += (page.extract_text() or "") + "\n"
    except Exception as e:
        logger.error(f"Error extracting text from PDF: {str(e)}")
        raise ValueError(f"Unable to extract text from PDF: {str(e)}")

    return text


def extract_text_from_docx(file_path: str) -> str:
    """Extract text content from a DOCX file."""
    try:
        doc = Document(file_path)
        return "\n".join([paragraph.text for paragraph in doc.paragraphs])
    except Exception as e:
        logger.error(f"Error extracting text from DOCX: {str(e)}")
        raise ValueError(f"Unable to extract text from DOCX: {str(e)}")


def extract_text(file_path: str, source_kind: Optional[str] = None) -> str:
    """
    Extract text from an uploaded outline.

    Raises UnsupportedSourceKind for images and unrecognised files, and
    ValueError when a PDF or DOCX cannot be read.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")

    source_kind = source_kind or detect_source_kind(file_path)

    if source_kind == PDF:
        return extract_text_from_pdf(file_path)
    elif source_kind == DOCX:
        return extract_text_from_docx(file_path)
    elif source_kind in (HTML, TEXT):
        with open(file_path, 'r', encoding='utf-8', errors='ignore') as file:
            return file.read()
    else:
        raise UnsupportedSourceKind(source_kind)
