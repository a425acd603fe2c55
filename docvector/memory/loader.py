# docvector/memory/loader.py

"""
Document extraction for the ingestion pipeline.

Architecture contract preserved:
loader → chunker → embedder → vector_store

Supports:
- PDF files (text + page count + document info)
- Plain text and markdown files

Any failure to read or parse a source is raised as ExtractionFailed, so the
retrieval service never chunks a broken extraction.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict

from pypdf import PdfReader

from docvector.errors import ExtractionFailed

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = (".txt", ".md")


@dataclass(frozen=True)
class ExtractedDocument:
    text: str
    page_count: int
    info: Dict[str, str] = field(default_factory=dict)


# ============================================================
# PDF LOADER
# ============================================================

def _document_info(reader: PdfReader) -> Dict[str, str]:

    metadata = reader.metadata

    if not metadata:
        return {}

    info = {}

    for key, value in metadata.items():

        if value is None:
            continue

        info[str(key).lstrip("/")] = str(value)

    return info


def extract_pdf(file_path: str) -> ExtractedDocument:

    if not os.path.exists(file_path):
        raise ExtractionFailed(f"File not found: {file_path}")

    try:

        reader = PdfReader(file_path)

        parts = []

        for page in reader.pages:

            text = page.extract_text()

            if text:
                parts.append(text)

        document = ExtractedDocument(
            text="\n".join(parts),
            page_count=len(reader.pages),
            info=_document_info(reader),
        )

    except Exception as e:

        logger.error(
            "PDF text extraction failed",
            extra={"file_path": file_path, "error": str(e)},
        )

        raise ExtractionFailed(f"PDF text extraction failed: {e}") from e

    logger.info(
        "Extracted text from PDF",
        extra={
            "file_path": file_path,
            "pages": document.page_count,
            "characters": len(document.text),
        },
    )

    return document


# ============================================================
# PLAIN TEXT LOADER
# ============================================================

def extract_text_file(file_path: str) -> ExtractedDocument:

    try:

        with open(file_path, "r", encoding="utf-8") as f:
            text = f.read()

    except (OSError, UnicodeDecodeError) as e:
        raise ExtractionFailed(f"Text extraction failed: {e}") from e

    return ExtractedDocument(text=text, page_count=1)


# ============================================================
# MAIN ENTRY POINT (ARCHITECTURE CONTRACT)
# ============================================================

def extract(file_path: str) -> ExtractedDocument:

    lower = file_path.lower()

    if lower.endswith(".pdf"):
        return extract_pdf(file_path)

    if lower.endswith(TEXT_EXTENSIONS):
        return extract_text_file(file_path)

    raise ExtractionFailed(f"Unsupported source: {file_path}")


def load_text(file_path: str) -> str:
    return extract(file_path).text
