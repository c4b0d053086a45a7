"""Register uploaded PDFs as documents."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Optional

import fitz
from pydantic import BaseModel

from regextract.config import settings
from regextract.errors import DuplicateDocumentError, InvalidUploadError
from regextract.models.document import Document
from regextract.storage.base import Store

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class Registration(BaseModel):
    document: Document
    duplicate: bool = False


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def count_pages(content: bytes) -> Optional[int]:
    """Page count read locally; ``None`` when PyMuPDF cannot open the file."""
    try:
        with fitz.open(stream=content, filetype="pdf") as doc:
            return doc.page_count
    except (RuntimeError, ValueError) as exc:
        logger.warning("Could not read page count: %s", exc)
        return None


def validate_upload(filename: str, content: bytes, max_bytes: Optional[int] = None) -> None:
    limit = max_bytes or settings.max_upload_bytes
    if not filename or Path(filename).suffix.lower() != ".pdf":
        raise InvalidUploadError("Only PDF files are allowed")
    if not content:
        raise InvalidUploadError("Uploaded file is empty")
    if len(content) > limit:
        raise InvalidUploadError(f"File too large (max {limit // (1024 * 1024)}MB)")
    if not content.startswith(PDF_MAGIC):
        raise InvalidUploadError("File is not a PDF")


async def register_document(
    store: Store,
    filename: str,
    content: bytes,
    title: Optional[str] = None,
    source: str = "AEMO",
    document_type: str = "Procedure",
    max_bytes: Optional[int] = None,
) -> Registration:
    """Create a pending Document, or return the existing one for identical bytes."""
    validate_upload(filename, content, max_bytes)
    file_hash = content_hash(content)
    existing = await store.find_document_by_hash(file_hash)
    if existing is not None:
        logger.info("Duplicate upload of %s matches document %s", filename, existing.id)
        return Registration(document=existing, duplicate=True)

    document = Document(
        title=title or Path(filename).stem,
        source=source,
        document_type=document_type,
        file_hash=file_hash,
        page_count=count_pages(content),
    )
    try:
        stored = await store.insert_document(document)
    except DuplicateDocumentError:
        # a concurrent upload of the same bytes won the insert
        existing = await store.find_document_by_hash(file_hash)
        if existing is None:
            raise
        return Registration(document=existing, duplicate=True)
    logger.info("Registered %s as document %s (%s pages)", filename, stored.id, stored.page_count)
    return Registration(document=stored, duplicate=False)
