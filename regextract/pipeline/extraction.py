"""Per-section obligation extraction."""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError

from regextract.config import settings
from regextract.errors import MalformedOutputError
from regextract.llm.accounting import UsageLogger
from regextract.llm.prompts import DEONTIC_KEYWORDS, build_extraction_prompt
from regextract.llm.retry import RetryPolicy
from regextract.models.document import Section
from regextract.models.obligation import ExtractedObligation
from regextract.models.usage import CacheOperation
from regextract.pipeline.chunking import chunk_text
from regextract.pipeline.dedup import deduplicate
from regextract.storage.cache import CacheLayer, cache_key
from regextract.utils.json_repair import parse_json_array

logger = logging.getLogger(__name__)

STAGE = "extraction"
KEYWORD_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(word) for word in DEONTIC_KEYWORDS) + r")\b", re.I
)


class ExtractionResult(BaseModel):
    obligations: List[ExtractedObligation] = Field(default_factory=list)
    cost: float = 0.0
    sections_processed: int = 0
    cache_hits: int = 0
    skipped_chunks: int = 0


class _SectionOutcome(BaseModel):
    obligations: List[ExtractedObligation] = Field(default_factory=list)
    cost: float = 0.0
    tokens: int = 0
    model: Optional[str] = None
    skipped_chunks: int = 0


def has_deontic_language(text: str) -> bool:
    return KEYWORD_PATTERN.search(text or "") is not None


def section_units(sections: Sequence[Section]) -> List[Tuple[str, Section]]:
    """Pair each section with a cache sub-unit unique within the document.

    Repeated section numbers (schedules restarting at 1) get an occurrence
    suffix so they never share a cache entry.
    """
    seen: Counter = Counter()
    units = []
    for section in sections:
        seen[section.section_number] += 1
        occurrence = seen[section.section_number]
        unit = section.section_number if occurrence == 1 else f"{section.section_number}#{occurrence}"
        units.append((unit, section))
    return units


def parse_extraction(text: str, section: Section) -> List[ExtractedObligation]:
    """Validate one chunk response; invalid items are dropped, not fatal."""
    items = parse_json_array(text, key="obligations")
    obligations = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if not item.get("section_number"):
            item["section_number"] = section.section_number
        if item.get("page_number") is None:
            item["page_number"] = section.page_start
        try:
            obligations.append(ExtractedObligation.model_validate(item))
        except ValidationError as exc:
            logger.debug("Dropping invalid obligation in section %s: %s", section.section_number, exc)
    return obligations


class ObligationExtractor:
    def __init__(
        self,
        completion: RetryPolicy,
        cache: CacheLayer,
        usage: UsageLogger,
        model: Optional[str] = None,
        max_chars: Optional[int] = None,
        section_filter: Optional[str] = None,
        min_chars: Optional[int] = None,
        dedup_threshold: Optional[float] = None,
        dedup_containment: Optional[bool] = None,
        max_output_tokens: Optional[int] = None,
    ) -> None:
        self.completion = completion
        self.cache = cache
        self.usage = usage
        self.model = model or settings.model_fast
        self.max_chars = max_chars or settings.extraction_max_chars
        self.section_filter = section_filter or settings.section_filter
        self.min_chars = settings.section_min_chars if min_chars is None else min_chars
        self.dedup_threshold = (
            settings.dedup_threshold if dedup_threshold is None else dedup_threshold
        )
        self.dedup_containment = (
            settings.dedup_containment if dedup_containment is None else dedup_containment
        )
        self.max_output_tokens = max_output_tokens or settings.extraction_max_output_tokens

    def select_sections(self, sections: Sequence[Section]) -> List[Section]:
        if self.section_filter == "keywords":
            return [
                section
                for section in sections
                if len(section.content.strip()) >= self.min_chars
                and has_deontic_language(section.content)
            ]
        return [section for section in sections if section.has_obligations]

    async def extract(self, document_id: str, sections: Sequence[Section]) -> ExtractionResult:
        selected = self.select_sections(sections)
        logger.info(
            "Extracting obligations from %s of %s sections of %s",
            len(selected),
            len(sections),
            document_id,
        )
        result = ExtractionResult()
        candidates: List[ExtractedObligation] = []
        for unit, section in section_units(selected):
            started = time.perf_counter()
            key = cache_key(CacheOperation.EXTRACT, document_id, unit)
            entry = await self.cache.lookup(key)
            if entry is not None:
                await self.usage.log_cache_hit(document_id, STAGE, started)
                candidates.extend(ExtractedObligation.model_validate(item) for item in entry.output or [])
                result.cache_hits += 1
                result.sections_processed += 1
                continue

            outcome = await self._extract_section(document_id, section)
            result.cost += outcome.cost
            result.skipped_chunks += outcome.skipped_chunks
            result.sections_processed += 1
            candidates.extend(outcome.obligations)
            if outcome.skipped_chunks:
                logger.warning(
                    "Section %s of %s left uncached: %s chunk(s) unparseable",
                    unit,
                    document_id,
                    outcome.skipped_chunks,
                )
                continue
            await self.cache.put(
                key,
                CacheOperation.EXTRACT,
                [obligation.model_dump(mode="json") for obligation in outcome.obligations],
                cost=outcome.cost,
                input_hash=f"{document_id}:{unit}",
                model=outcome.model,
                tokens_used=outcome.tokens,
            )

        result.obligations = deduplicate(candidates, self.dedup_threshold, self.dedup_containment)
        logger.info(
            "Extracted %s obligations (%s candidates) from %s",
            len(result.obligations),
            len(candidates),
            document_id,
        )
        return result

    async def _extract_section(self, document_id: str, section: Section) -> _SectionOutcome:
        outcome = _SectionOutcome()
        chunks = chunk_text(section.content, self.max_chars) if section.content.strip() else []
        if not chunks:
            logger.debug("Section %s has no text to extract from", section.section_number)
        for part, chunk in enumerate(chunks, start=1):
            started = time.perf_counter()
            prompt = build_extraction_prompt(section, chunk, part, len(chunks))
            completion = await self.completion.complete(
                prompt, max_output_tokens=self.max_output_tokens, model=self.model
            )
            outcome.cost += await self.usage.log_completion(document_id, STAGE, completion, started)
            outcome.tokens += completion.total_tokens
            outcome.model = completion.model
            try:
                outcome.obligations.extend(parse_extraction(completion.text, section))
            except MalformedOutputError as exc:
                outcome.skipped_chunks += 1
                logger.warning(
                    "Skipping chunk %s/%s of section %s: %s. Preview: %s",
                    part,
                    len(chunks),
                    section.section_number,
                    exc,
                    exc.preview,
                )
        return outcome
