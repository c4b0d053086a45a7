"""Obligation records and the per-dimension classification results.

Model output is loosely typed: enum values arrive in odd casing, confidences
as strings or percentages, lists as ``null``. The annotated field types below
apply the defaulting rules at validation time so business logic only ever
sees clean values.
"""

from __future__ import annotations

import uuid
from datetime import date
from enum import Enum
from typing import Annotated, Any, List, Optional, Tuple, Type, TypeVar

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field

E = TypeVar("E", bound=Enum)


class ObligationType(str, Enum):
    BINDING = "binding"
    GUIDANCE = "guidance"
    DEFINITION = "definition"
    EXAMPLE = "example"


class ImplementationType(str, Enum):
    SYSTEM_CHANGE = "system_change"
    PROCESS_CHANGE = "process_change"
    BOTH = "both"
    NO_CHANGE = "no_change"


class EffortEstimate(str, Enum):
    TRIVIAL = "trivial"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class DateConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


DEFAULT_OBLIGATION_TYPE = ObligationType.GUIDANCE
DEFAULT_CONFIDENCE = 0.5
DEFAULT_IMPLEMENTATION_TYPE = ImplementationType.NO_CHANGE
DEFAULT_EFFORT = EffortEstimate.MEDIUM


def coerce_enum(value: Any, enum_cls: Type[E], default: Optional[E]) -> Optional[E]:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        token = value.strip().lower().replace("-", "_").replace(" ", "_")
        for member in enum_cls:
            if member.value == token:
                return member
    return default


def coerce_confidence(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return DEFAULT_CONFIDENCE
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return DEFAULT_CONFIDENCE
    if not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    score = float(value)
    if 1.0 < score <= 100.0:
        score = score / 100.0
    return min(max(score, 0.0), 1.0)


def coerce_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


def coerce_iso_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def coerce_text(value: Any) -> str:
    return "" if value is None else str(value)


def coerce_optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value if value and value.lower() != "null" else None


def coerce_page(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


ObligationTypeField = Annotated[
    ObligationType,
    BeforeValidator(lambda v: coerce_enum(v, ObligationType, DEFAULT_OBLIGATION_TYPE)),
]
ImplementationTypeField = Annotated[
    ImplementationType,
    BeforeValidator(lambda v: coerce_enum(v, ImplementationType, DEFAULT_IMPLEMENTATION_TYPE)),
]
EffortField = Annotated[
    EffortEstimate,
    BeforeValidator(lambda v: coerce_enum(v, EffortEstimate, DEFAULT_EFFORT)),
]
DateConfidenceField = Annotated[
    Optional[DateConfidence],
    BeforeValidator(lambda v: coerce_enum(v, DateConfidence, None)),
]
Confidence = Annotated[float, BeforeValidator(coerce_confidence)]
StrList = Annotated[List[str], BeforeValidator(coerce_str_list)]
Text = Annotated[str, BeforeValidator(coerce_text)]
OptionalText = Annotated[Optional[str], BeforeValidator(coerce_optional_text)]
IsoDate = Annotated[Optional[date], BeforeValidator(coerce_iso_date)]
PageNumber = Annotated[Optional[int], BeforeValidator(coerce_page)]
SectionNumber = Annotated[
    Optional[str], BeforeValidator(lambda v: None if v is None else str(v).strip() or None)
]


class ExtractedObligation(BaseModel):
    """A candidate obligation as returned by the extraction stage."""

    extracted_text: Annotated[
        str, BeforeValidator(lambda v: v.strip() if isinstance(v, str) else v)
    ] = Field(..., min_length=1)
    context: Text = ""
    section_number: SectionNumber = None
    page_number: PageNumber = None
    keywords: StrList = Field(default_factory=list)
    obligation_type: ObligationTypeField = DEFAULT_OBLIGATION_TYPE
    confidence: Confidence = DEFAULT_CONFIDENCE


class Obligation(ExtractedObligation):
    """A persisted obligation, enriched in place by classification."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    document_id: str
    stakeholders: StrList = Field(default_factory=list)
    impacted_systems: StrList = Field(default_factory=list)
    implementation_type: Optional[ImplementationType] = None
    estimated_effort: Optional[EffortEstimate] = None
    commencement_date: Optional[date] = None
    commencement_date_text: Optional[str] = None
    date_confidence: Optional[DateConfidence] = None
    classification_reasoning: Optional[str] = None
    stakeholder_reasoning: Optional[str] = None
    implementation_reasoning: Optional[str] = None
    classified: bool = False

    @classmethod
    def from_extracted(cls, document_id: str, extracted: ExtractedObligation) -> "Obligation":
        """Persistable obligation whose id is stable across re-runs of a document."""
        identity = f"{document_id}:{extracted.section_number or ''}:{extracted.extracted_text}"
        return cls(
            id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"regextract:obligation:{identity}")),
            document_id=document_id,
            **extracted.model_dump(),
        )


class ClassificationResult(BaseModel):
    """Bindingness of one obligation."""

    obligation_type: ObligationTypeField = Field(
        default=DEFAULT_OBLIGATION_TYPE,
        validation_alias=AliasChoices("obligation_type", "obligationType"),
    )
    confidence: Confidence = DEFAULT_CONFIDENCE
    reasoning: Text = ""


class StakeholderResult(BaseModel):
    """Who an obligation affects and which systems it touches."""

    stakeholders: StrList = Field(default_factory=list)
    impacted_systems: StrList = Field(
        default_factory=list,
        validation_alias=AliasChoices("impacted_systems", "impactedSystems"),
    )
    reasoning: Text = ""


class DateResult(BaseModel):
    """Commencement date proposed for an obligation."""

    commencement_date: IsoDate = Field(
        default=None,
        validation_alias=AliasChoices("commencement_date", "commencementDate", "deadline"),
    )
    commencement_date_text: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("commencement_date_text", "commencementDateText"),
    )
    date_confidence: DateConfidenceField = Field(
        default=None,
        validation_alias=AliasChoices("date_confidence", "dateConfidence"),
    )


class ImplementationResult(DateResult):
    """What delivering an obligation takes."""

    implementation_type: ImplementationTypeField = Field(
        default=DEFAULT_IMPLEMENTATION_TYPE,
        validation_alias=AliasChoices("implementation_type", "implementationType"),
    )
    estimated_effort: EffortField = Field(
        default=DEFAULT_EFFORT,
        validation_alias=AliasChoices("estimated_effort", "estimatedEffort"),
    )
    reasoning: Text = ""


class BatchClassification(ImplementationResult):
    """One entry of a multi-obligation classification response."""

    id: Annotated[str, BeforeValidator(lambda v: coerce_text(v).strip())]
    obligation_type: ObligationTypeField = Field(
        default=DEFAULT_OBLIGATION_TYPE,
        validation_alias=AliasChoices("obligation_type", "obligationType"),
    )
    confidence: Confidence = DEFAULT_CONFIDENCE
    stakeholders: StrList = Field(default_factory=list)
    impacted_systems: StrList = Field(
        default_factory=list,
        validation_alias=AliasChoices("impacted_systems", "impactedSystems"),
    )

    def as_results(self) -> Tuple[ClassificationResult, StakeholderResult, ImplementationResult]:
        return (
            ClassificationResult(
                obligation_type=self.obligation_type,
                confidence=self.confidence,
                reasoning=self.reasoning,
            ),
            StakeholderResult(
                stakeholders=self.stakeholders,
                impacted_systems=self.impacted_systems,
            ),
            ImplementationResult(
                implementation_type=self.implementation_type,
                estimated_effort=self.estimated_effort,
                commencement_date=self.commencement_date,
                commencement_date_text=self.commencement_date_text,
                date_confidence=self.date_confidence,
            ),
        )
