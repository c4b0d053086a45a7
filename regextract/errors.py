"""Exceptions raised by the extraction pipeline."""

from __future__ import annotations

from typing import Optional


class RegExtractError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(RegExtractError):
    """Raised when a required setting is missing."""


class CompletionError(RegExtractError):
    """The completion service failed and the call will not be retried."""

    def __init__(self, message: str, *, rate_limited: bool = False) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited


class MalformedOutputError(RegExtractError):
    """Model output could not be repaired into the expected JSON shape."""

    def __init__(self, message: str, raw_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text

    @property
    def preview(self) -> str:
        return (self.raw_text or "")[:500]


class StructuringError(MalformedOutputError):
    """No usable section list could be produced for a document."""


class DocumentNotFoundError(RegExtractError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class DuplicateDocumentError(RegExtractError):
    """Raised by stores when a second document is inserted with a known hash."""


class InvalidUploadError(RegExtractError):
    """The uploaded file is not an acceptable PDF."""


class PipelineCancelled(RegExtractError):
    """Processing was cancelled at a stage boundary."""


class NoObligationsError(RegExtractError):
    """A deliverable was requested for a document without obligations."""
