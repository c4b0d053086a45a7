"""Cache entries and cost log records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .document import utcnow


class CacheOperation(str, Enum):
    PARSE = "parse"
    EXTRACT = "extract"
    TOPICS = "topics"
    DATES = "dates"
    RTM = "rtm"
    FUNCSPEC = "funcspec"


WHOLE_DOCUMENT_OPERATIONS = (
    CacheOperation.PARSE,
    CacheOperation.TOPICS,
    CacheOperation.DATES,
    CacheOperation.RTM,
    CacheOperation.FUNCSPEC,
)


class CacheEntry(BaseModel):
    """A memoized stage output."""

    cache_key: str
    operation: CacheOperation
    input_hash: Optional[str] = None
    output: Any = None
    model: Optional[str] = None
    tokens_used: int = 0
    cost: float = 0.0
    hit_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class UsageRecord(BaseModel):
    """One completion call (or cache hit) charged to a document."""

    document_id: Optional[str] = None
    operation: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = Field(default=0.0, ge=0.0)
    cache_hit: bool = False
    duration_ms: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)
