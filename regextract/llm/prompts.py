"""Prompt templates for every model-backed stage."""

from __future__ import annotations

import json
from typing import Iterable, Optional, Sequence

from regextract.models.document import Document, Section
from regextract.models.obligation import Obligation

DEONTIC_KEYWORDS = ("must", "shall", "required", "should", "may", "means", "refers to")

STRUCTURE_PROMPT = """You are analyzing an Australian energy market regulatory document. Parse the attached PDF into its metadata and an ordered list of sections.

Return ONLY a JSON object:
{
  "title": "document title",
  "doc_type": "Procedure | Rulebook | Market_Notice | Consultation",
  "effective_date": "YYYY-MM-DD or null",
  "version": "version string or null",
  "total_pages": 0,
  "sections": [
    {
      "section_number": "4.2.1",
      "title": "section heading",
      "content": "full verbatim text, ONLY when has_obligations is true, otherwise an empty string",
      "page_start": 1,
      "page_end": 2,
      "has_obligations": true
    }
  ]
}

Set has_obligations to true when the section contains any of: must, shall, required, should, may, means, refers to.
Include schedules and appendices. Never copy the text of sections without obligations.
Return ONLY valid JSON, no explanation or markdown."""

EXTRACTION_RULES = """CLASSIFICATION RULES:
- "binding": contains "must", "shall", "is required to", "is obligated to"
- "guidance": contains "should", "may", "is recommended"
- "definition": defines a term ("means", "refers to", "is defined as")
- "example": illustrative content

CONFIDENCE: 0.9-1.0 for clear "must/shall", 0.7-0.89 for likely, 0.5-0.69 for ambiguous.

If NO obligations are found, return: []
RESPOND WITH ONLY THE JSON ARRAY."""

COMMENCEMENT_RULES = """DATE RULES - only extract COMMENCEMENT dates, i.e. when a NEW obligation starts to apply.
Extract: "takes effect", "comes into force", "commences", "applies from", "effective from", "must comply by", "required by", "implementation date".
Do NOT extract: publication or determination dates ("published on", "made on"), revocation or ending dates ("revocation takes effect", "revoked on"),
dates inside examples ("contracts entered into before 1 July 2020"), historical context ("before", "prior to"), reporting periods, consultation dates.
For phased rollouts use the EARLIEST commencement date and keep the original sentence in commencementDateText.
dateConfidence: "high" for an explicit day, month and year; "medium" for a month or quarter only; null when there is no date.
If you are not certain a date is a commencement date, return null. A missed date is better than a wrong one."""

STAKEHOLDERS = (
    "Retailer, DNSP, TNSP, AEMO, AEMC, AER, Metering Provider, Metering Data Provider, "
    "Metering Coordinator, Customer, Generator"
)
SYSTEMS = (
    "Billing, MSATS, B2B, CRM, Metering, MDM, Market Systems, Settlements, Customer Portal, CATS"
)


def build_extraction_prompt(section: Section, chunk: str, part: int = 1, parts: int = 1) -> str:
    part_note = f" (part {part} of {parts})" if parts > 1 else ""
    page = section.page_start if section.page_start is not None else "null"
    return f"""You are an Australian energy regulation expert. Extract ALL obligations from this document section{part_note}.

SECTION {section.section_number}: {section.title}
---
{chunk}
---

RESPOND WITH ONLY VALID JSON - an array of obligations:
[
  {{
    "extracted_text": "the exact obligation text",
    "context": "1-2 surrounding sentences",
    "section_number": "{section.section_number}",
    "page_number": {page},
    "keywords": ["must", "shall"],
    "obligation_type": "binding | guidance | definition | example",
    "confidence": 0.0
  }}
]

{EXTRACTION_RULES}"""


def format_obligation(index: int, obligation: Obligation) -> str:
    context = f"\nContext: {obligation.context.strip()}" if obligation.context.strip() else ""
    return (
        f"[{index}] ID: {obligation.id}\n"
        f"Section: {obligation.section_number or 'unknown'}\n"
        f"Text: {obligation.extracted_text.strip()}{context}"
    )


def build_batch_classification_prompt(
    obligations: Sequence[Obligation], document_title: Optional[str]
) -> str:
    listing = "\n\n".join(
        format_obligation(idx, obligation) for idx, obligation in enumerate(obligations, start=1)
    )
    return f"""You are analyzing regulatory obligations from an Australian energy market document titled "{document_title or 'Unknown'}".

Classify each obligation below and extract key information.

Obligations:
{listing}

Return ONLY valid JSON:
{{
  "classifications": [
    {{
      "id": "obligation id copied exactly",
      "obligationType": "binding | guidance | definition | example",
      "confidence": 0.0,
      "stakeholders": ["Retailer"],
      "impactedSystems": ["Billing"],
      "implementationType": "system_change | process_change | both | no_change",
      "estimatedEffort": "trivial | small | medium | large",
      "commencementDate": "YYYY-MM-DD or null",
      "commencementDateText": "original sentence or null",
      "dateConfidence": "high | medium | low | null",
      "reasoning": "brief explanation"
    }}
  ]
}}

Known stakeholders: {STAKEHOLDERS}.
Known systems: {SYSTEMS}.
system_change=IT modifications, process_change=business process updates, both=both, no_change=informational.
trivial=<1 day, small=1-5 days, medium=1-4 weeks, large=1+ months.

{COMMENCEMENT_RULES}"""


def build_classification_agent_prompt(text: str, context: str) -> str:
    return f"""Classify this Australian energy regulatory obligation.

OBLIGATION: {json.dumps(text)}
CONTEXT: {json.dumps(context)}

RESPOND WITH ONLY VALID JSON:
{{"obligation_type":"binding|guidance|definition|example","confidence":0.0,"reasoning":"brief explanation"}}

Rules: "binding"=must/shall/required to, "guidance"=should/may/recommended, "definition"=means/refers to, "example"=illustrative.
Confidence: 0.95-1.0=clear must/shall, 0.85-0.94=strong, 0.70-0.84=probable, 0.50-0.69=ambiguous."""


def build_stakeholder_agent_prompt(text: str, context: str) -> str:
    return f"""Identify stakeholders and impacted systems for this Australian energy obligation.

OBLIGATION: {json.dumps(text)}
CONTEXT: {json.dumps(context)}

RESPOND WITH ONLY VALID JSON:
{{"stakeholders":["list"],"impacted_systems":["list"],"reasoning":"brief explanation"}}

Known stakeholders: {STAKEHOLDERS}.
Known systems: {SYSTEMS}."""


def build_implementation_agent_prompt(text: str, context: str) -> str:
    return f"""Assess implementation requirements for this Australian energy obligation.

OBLIGATION: {json.dumps(text)}
CONTEXT: {json.dumps(context)}

RESPOND WITH ONLY VALID JSON:
{{"implementation_type":"system_change|process_change|both|no_change","estimated_effort":"trivial|small|medium|large","commencement_date":null,"commencement_date_text":null,"date_confidence":null,"reasoning":"brief explanation"}}

system_change=IT modifications, process_change=business process updates, both=both, no_change=informational.
trivial=<1 day, small=1-5 days, medium=1-4 weeks, large=1+ months.

{COMMENCEMENT_RULES}"""


def build_topics_prompt(title: str, opening_text: str) -> str:
    return f"""Analyze this Australian energy regulatory document and extract metadata.

Document Title: {title}
Opening Content: {opening_text[:2000]}

Return ONLY valid JSON:
{{
  "topics": ["settlement", "metering"],
  "jurisdictions": ["NSW", "VIC", "QLD", "SA", "TAS", "NT", "WA", "ACT", "National"],
  "impactedSystems": ["CRM", "Billing", "Settlement", "Market Operations", "Metering", "Network", "Trading"]
}}

Only include jurisdictions explicitly mentioned in the document and systems the document impacts."""


def build_document_dates_prompt(title: str) -> str:
    return f"""You are analyzing a regulatory document titled "{title}".

Extract ALL commencement dates (when rules or obligations START to apply) from the attached document.

{COMMENCEMENT_RULES}

Return ONLY valid JSON:
{{"dates": [{{"date": "YYYY-MM-DD", "description": "what commences on this date"}}]}}

If NO commencement dates are found, return: {{"dates": []}}"""


def format_obligation_line(index: int, obligation: Obligation) -> str:
    kind = obligation.obligation_type.value if obligation.obligation_type else "unknown"
    return (
        f"[{index}] Section {obligation.section_number or '?'} (Page {obligation.page_number or '?'}): "
        f"{obligation.extracted_text.strip()} (Type: {kind}, Confidence: {obligation.confidence:.2f})"
    )


def _deliverable_header(document: Document, obligations: Sequence[Obligation]) -> str:
    binding = sum(1 for ob in obligations if ob.obligation_type and ob.obligation_type.value == "binding")
    listing = "\n".join(format_obligation_line(idx, ob) for idx, ob in enumerate(obligations, start=1))
    return f"""SOURCE DOCUMENT: {document.title}
EFFECTIVE DATE: {document.effective_date or 'Not specified'}
DOCUMENT TYPE: {document.document_type}
TOTAL OBLIGATIONS: {len(obligations)} ({binding} binding)

EXTRACTED OBLIGATIONS:
{listing}"""


def build_rtm_prompt(document: Document, obligations: Sequence[Obligation]) -> str:
    effective = document.effective_date or "TBD"
    return f"""You are generating a Requirement Traceability Matrix (RTM) for Australian energy market compliance.

{_deliverable_header(document, obligations)}

Derive everything from the obligations; flag each statement as [VERBATIM], [DERIVED] or [ASSUMED]; always cite section numbers.
Return ONLY valid JSON:
{{
  "tab1_documentControl": {{"initiativeName": "", "primaryDriver": "Regulatory", "primaryObjective": "", "scopeArea": "", "impactedParties": [], "targetJurisdiction": "", "commencementDate": "{effective}", "version": "v1"}},
  "tab2_interpretation": [{{"reqId": "REQ-001", "regDocument": "{document.title}", "regEffectiveDate": "{effective}", "regClause": "", "verbatim": "", "summary": "", "appliesTo": "", "appliesWhen": "", "inScope": true, "outOfScope": "", "interpretationNotes": ""}}],
  "tab3_requirements": [{{"busReqId": "BR-001", "linkedReqId": "REQ-001", "regEffectiveDate": "{effective}", "businessRequirement": "", "systemRequirement": "", "defaultBehaviour": "", "intendedOutcome": "", "chargeableCapability": false}}],
  "tab4_assumptions": [{{"radId": "RAD-001", "type": "ASSUMPTION | DEPENDENCY | RISK", "detail": "", "impact": "", "mitigation": "", "owner": "Product Manager", "dueDate": "TBD", "status": "Open"}}]
}}
Map every binding obligation to at least one requirement."""


def build_funcspec_prompt(document: Document, obligations: Sequence[Obligation]) -> str:
    return f"""You are generating a Functional Specification for Australian energy market regulatory compliance.

{_deliverable_header(document, obligations)}

Return ONLY valid JSON:
{{
  "initiativeOverview": {{"regulatoryDriver": "{document.title}", "effectiveDate": "{document.effective_date or '[ASSUMED - pending confirmation]'}", "impactedParticipants": [], "complianceRisk": ""}},
  "regulatorySourceRegister": [{{"source": "", "clause": "", "obligationSummary": "", "confidence": "High | Medium | Low"}}],
  "problemStatement": {{"currentState": "", "futureState": "", "gap": ""}},
  "functionalRequirements": [{{"id": "FR-001", "requirement": "", "sourceClause": "", "priority": "Must | Should | Could"}}],
  "businessRules": [{{"id": "BR-001", "rule": "", "sourceClause": ""}}],
  "risks": [{{"id": "RISK-001", "risk": "", "likelihood": "", "impact": "", "mitigation": ""}}],
  "assumptions": []
}}"""


def opening_text(sections: Iterable[Section], limit: int = 3) -> str:
    texts = []
    for section in sections:
        if len(texts) >= limit:
            break
        texts.append(f"{section.section_number} {section.title}\n{section.content}".strip())
    return "\n".join(texts)
