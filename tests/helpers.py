"""Shared fakes: a scripted completion service and canned model responses."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from regextract.llm.completion import Completion, CompletionOutcome, Fatal, Ok, RateLimited
from regextract.models.document import Document

PDF_BYTES = b"%PDF-1.4\n% fake test document\n"

Reply = Union[str, CompletionOutcome, BaseException]


@dataclass
class Call:
    prompt: str
    attachment: Optional[bytes]
    max_output_tokens: int
    model: str


class ScriptedService:
    """Completion service returning queued replies, or whatever ``handler`` says.

    A ``str`` reply becomes an ``Ok`` completion billed at 1000 input and 500
    output tokens; outcome objects are returned as-is; exceptions are raised.
    """

    def __init__(self, *replies: Reply, handler: Optional[Callable[[str], Reply]] = None):
        self.replies: List[Reply] = list(replies)
        self.handler = handler
        self.calls: List[Call] = []

    async def invoke(self, prompt, attachment, max_output_tokens, model) -> CompletionOutcome:
        self.calls.append(Call(prompt, attachment, max_output_tokens, model))
        reply = self.handler(prompt) if self.handler else self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, str):
            return Ok(Completion(text=reply, input_tokens=1000, output_tokens=500, model=model))
        return reply

    def prompts_containing(self, marker: str) -> List[str]:
        return [call.prompt for call in self.calls if marker in call.prompt]


async def no_sleep(delay: float) -> None:
    return None


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


STRUCTURE_MARKER = "Parse the attached PDF"
EXTRACTION_MARKER = "Extract ALL obligations"
TOPICS_MARKER = "extract metadata"
BATCH_MARKER = "Classify each obligation below"
CLASSIFY_AGENT_MARKER = "Classify this Australian energy regulatory obligation"
STAKEHOLDER_AGENT_MARKER = "Identify stakeholders"
IMPLEMENTATION_AGENT_MARKER = "Assess implementation requirements"

STRUCTURE_RESPONSE = json.dumps(
    {
        "title": "Retail Market Procedures",
        "doc_type": "Procedure",
        "effective_date": "2026-02-01",
        "version": "2.1",
        "total_pages": 12,
        "sections": [
            {
                "section_number": "1",
                "title": "Introduction",
                "content": "",
                "page_start": 1,
                "page_end": 1,
                "has_obligations": False,
            },
            {
                "section_number": "4.2",
                "title": "Notifications",
                "content": "Retailers must notify AEMO within 5 business days.\n\n"
                "This code was published on 12 September 2025 and will commence on 1 February 2026.",
                "page_start": 4,
                "page_end": 5,
                "has_obligations": True,
            },
            {
                "section_number": "4.3",
                "title": "Meter data",
                "content": "Metering Providers shall deliver meter data daily.",
                "page_start": 6,
                "page_end": 6,
                "has_obligations": True,
            },
        ],
    }
)

SECTION_OBLIGATIONS = {
    "4.2": [
        {
            "extracted_text": "Retailers must notify AEMO within 5 business days",
            "context": "This code was published on 12 September 2025 and will commence on 1 February 2026.",
            "section_number": "4.2",
            "page_number": 4,
            "keywords": ["must"],
            "obligation_type": "binding",
            "confidence": 0.95,
        },
        {
            "extracted_text": "retailers MUST notify AEMO within  5 business days",
            "context": "",
            "section_number": "4.2",
            "page_number": 4,
            "keywords": ["must"],
            "obligation_type": "binding",
            "confidence": 0.9,
        },
    ],
    "4.3": [
        {
            "extracted_text": "Metering Providers shall deliver meter data daily",
            "context": "",
            "section_number": "4.3",
            "page_number": 6,
            "keywords": ["shall"],
            "obligation_type": "binding",
            "confidence": 0.97,
        }
    ],
}

TOPICS_RESPONSE = json.dumps(
    {"topics": ["notifications"], "jurisdictions": ["National"], "impactedSystems": ["MSATS"]}
)

ID_PATTERN = re.compile(r"ID: (\S+)")
SECTION_PATTERN = re.compile(r"SECTION (\S+):")


def batch_response(prompt: str) -> str:
    entries = [
        {
            "id": obligation_id,
            "obligationType": "binding",
            "confidence": 0.92,
            "stakeholders": ["Retailer"],
            "impactedSystems": ["CRM"],
            "implementationType": "process_change",
            "estimatedEffort": "small",
            "commencementDate": None,
            "dateConfidence": None,
            "reasoning": "uses must",
        }
        for obligation_id in ID_PATTERN.findall(prompt)
    ]
    return json.dumps({"classifications": entries})


def pipeline_handler(prompt: str) -> Reply:
    """Answers every stage of a full run against ``STRUCTURE_RESPONSE``."""
    if STRUCTURE_MARKER in prompt:
        return STRUCTURE_RESPONSE
    if EXTRACTION_MARKER in prompt:
        section = SECTION_PATTERN.search(prompt).group(1)
        return "```json\n" + json.dumps(SECTION_OBLIGATIONS.get(section, [])) + "\n```"
    if TOPICS_MARKER in prompt:
        return TOPICS_RESPONSE
    if BATCH_MARKER in prompt:
        return batch_response(prompt)
    raise AssertionError(f"Unexpected prompt: {prompt[:80]}")


def fatal(message: str = "boom") -> Fatal:
    return Fatal(RuntimeError(message))


def rate_limited(retry_after: Optional[float] = None) -> RateLimited:
    return RateLimited(retry_after=retry_after)


async def add_document(store, title: str = "Retail Market Procedures", **fields) -> Document:
    document = Document(title=title, file_hash=uuid.uuid4().hex, **fields)
    return await store.insert_document(document)
