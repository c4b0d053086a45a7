"""Document processing stages and the orchestrator that runs them."""

from .classification import ClassificationSummary, ObligationClassifier
from .dates import extract_commencement_date, reconcile_commencement_date
from .dedup import deduplicate
from .extraction import ExtractionResult, ObligationExtractor
from .orchestrator import ClearResult, Pipeline, ProcessingOutcome
from .structuring import DocumentStructurer, StructuringResult

__all__ = [
    "ClassificationSummary",
    "ClearResult",
    "DocumentStructurer",
    "ExtractionResult",
    "ObligationClassifier",
    "ObligationExtractor",
    "Pipeline",
    "ProcessingOutcome",
    "StructuringResult",
    "deduplicate",
    "extract_commencement_date",
    "reconcile_commencement_date",
]
