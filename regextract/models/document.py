"""Document-level data models."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExtractionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CommencementDate(BaseModel):
    """A date on which (part of) a document starts to apply."""

    date: date
    description: str = ""


class Document(BaseModel):
    """A regulatory document tracked through the pipeline."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    source: str = "AEMO"
    document_type: str = "Procedure"
    file_hash: str
    section_count: int = 0
    page_count: Optional[int] = None
    effective_date: Optional[str] = None
    version: Optional[str] = None
    commencement_dates: List[CommencementDate] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    jurisdictions: List[str] = Field(default_factory=list)
    impacted_systems: List[str] = Field(default_factory=list)
    extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    processing_cost: float = Field(default=0.0, ge=0.0)
    obligation_count: int = 0
    is_archived: bool = False
    uploaded_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None


class Section(BaseModel):
    """One structural unit of a parsed document."""

    section_number: str = Field(..., min_length=1)
    title: str = ""
    content: str = ""
    page_start: Optional[int] = None
    page_end: Optional[int] = None
    has_obligations: bool = False

    @field_validator("section_number", mode="before")
    @classmethod
    def _coerce_number(cls, value):
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("title", "content", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class StructuredDocument(BaseModel):
    """Metadata plus ordered section list produced by the structuring stage."""

    title: Optional[str] = None
    doc_type: Optional[str] = None
    effective_date: Optional[str] = None
    version: Optional[str] = None
    total_pages: Optional[int] = None
    sections: List[Section] = Field(default_factory=list)

    @property
    def obligation_sections(self) -> List[Section]:
        return [section for section in self.sections if section.has_obligations]
