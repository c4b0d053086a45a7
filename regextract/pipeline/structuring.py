"""Turn a PDF into document metadata and an ordered section list."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from regextract.config import settings
from regextract.errors import MalformedOutputError, StructuringError
from regextract.llm.accounting import UsageLogger
from regextract.llm.prompts import STRUCTURE_PROMPT
from regextract.llm.retry import RetryPolicy
from regextract.models.document import Section, StructuredDocument
from regextract.models.obligation import coerce_page
from regextract.models.usage import CacheOperation
from regextract.storage.base import Store
from regextract.storage.cache import CacheLayer, cache_key
from regextract.utils.json_repair import parse_json

logger = logging.getLogger(__name__)

STAGE = "parsing"
METADATA_FIELDS = ("title", "doc_type", "effective_date", "version")


class StructuringResult(BaseModel):
    document: StructuredDocument
    cost: float = 0.0
    cache_hit: bool = False


def _section_payload(data: Any) -> Optional[Dict[str, Any]]:
    """Find the ``{..., "sections": [...]}`` object in a decoded response."""
    if isinstance(data, dict):
        return data
    if isinstance(data, list):
        # salvage mode returns a list of complete objects
        for item in data:
            if isinstance(item, dict) and isinstance(item.get("sections"), list):
                return item
        if all(isinstance(item, dict) for item in data):
            return {"sections": data}
    return None


def parse_structure(text: str) -> StructuredDocument:
    """Decode a structuring response, keeping every section that validates."""
    try:
        data = parse_json(text, shape="object")
    except MalformedOutputError as exc:
        raise StructuringError(str(exc), raw_text=text) from exc

    payload = _section_payload(data)
    raw_sections = payload.get("sections") if payload else None
    if not isinstance(raw_sections, list):
        raise StructuringError("Response has no section list", raw_text=text)

    sections: List[Section] = []
    for raw in raw_sections:
        if not isinstance(raw, dict):
            continue
        try:
            section = Section.model_validate(raw)
        except ValidationError as exc:
            logger.debug("Dropping invalid section %r: %s", raw.get("section_number"), exc)
            continue
        if section.page_end is None:
            section.page_end = section.page_start
        sections.append(section)
    if not sections:
        raise StructuringError("Response contained no valid sections", raw_text=text)

    metadata = {}
    for name in METADATA_FIELDS:
        value = payload.get(name)
        metadata[name] = str(value).strip() if value not in (None, "") else None
    return StructuredDocument(
        total_pages=coerce_page(payload.get("total_pages")), sections=sections, **metadata
    )


class DocumentStructurer:
    """Single-call structuring with the result memoized under ``parse:{id}``.

    Only sections flagged as obligation-bearing carry their full text in the
    response, which keeps the output of long procedures under the token cap.
    """

    def __init__(
        self,
        completion: RetryPolicy,
        cache: CacheLayer,
        usage: UsageLogger,
        store: Store,
        model: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
    ) -> None:
        self.completion = completion
        self.cache = cache
        self.usage = usage
        self.store = store
        self.model = model or settings.model_fast
        self.max_output_tokens = max_output_tokens or settings.structure_max_output_tokens

    async def structure(self, document_id: str, content: bytes) -> StructuringResult:
        started = time.perf_counter()
        key = cache_key(CacheOperation.PARSE, document_id)
        entry = await self.cache.lookup(key)
        if entry is not None:
            structured = StructuredDocument.model_validate(entry.output)
            await self.usage.log_cache_hit(document_id, STAGE, started)
            await self._persist(document_id, structured)
            return StructuringResult(document=structured, cost=0.0, cache_hit=True)

        logger.info("Structuring document %s (%s bytes)", document_id, len(content))
        completion = await self.completion.complete(
            STRUCTURE_PROMPT,
            attachment=content,
            max_output_tokens=self.max_output_tokens,
            model=self.model,
        )
        call_cost = await self.usage.log_completion(document_id, STAGE, completion, started)
        if completion.truncated:
            logger.warning("Structuring output for %s hit the token cap", document_id)
        try:
            structured = parse_structure(completion.text)
        except StructuringError as exc:
            logger.error("Structuring failed for %s. Preview: %s", document_id, exc.preview)
            raise

        await self.cache.put(
            key,
            CacheOperation.PARSE,
            structured.model_dump(mode="json"),
            completion,
            cost=call_cost,
            input_hash=document_id,
        )
        await self._persist(document_id, structured)
        logger.info(
            "Structured %s: %s sections, %s with obligations",
            document_id,
            len(structured.sections),
            len(structured.obligation_sections),
        )
        return StructuringResult(document=structured, cost=call_cost, cache_hit=False)

    async def _persist(self, document_id: str, structured: StructuredDocument) -> None:
        current = await self.store.get_document(document_id)
        if current is None:
            return
        fields: Dict[str, Any] = {"section_count": len(structured.sections)}
        if structured.total_pages:
            fields["page_count"] = structured.total_pages
        if structured.effective_date and not current.effective_date:
            fields["effective_date"] = structured.effective_date
        if structured.version and not current.version:
            fields["version"] = structured.version
        await self.store.update_document(document_id, **fields)
