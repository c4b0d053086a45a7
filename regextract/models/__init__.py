"""Typed models shared across the application."""

from .document import (
    CommencementDate,
    Document,
    ExtractionStatus,
    Section,
    StructuredDocument,
)
from .obligation import (
    BatchClassification,
    ClassificationResult,
    DateConfidence,
    DateResult,
    EffortEstimate,
    ExtractedObligation,
    ImplementationResult,
    ImplementationType,
    Obligation,
    ObligationType,
    StakeholderResult,
)
from .usage import CacheEntry, CacheOperation, UsageRecord

__all__ = [
    "BatchClassification",
    "CacheEntry",
    "CacheOperation",
    "ClassificationResult",
    "CommencementDate",
    "DateConfidence",
    "DateResult",
    "Document",
    "EffortEstimate",
    "ExtractedObligation",
    "ExtractionStatus",
    "ImplementationResult",
    "ImplementationType",
    "Obligation",
    "ObligationType",
    "Section",
    "StakeholderResult",
    "StructuredDocument",
    "UsageRecord",
]
