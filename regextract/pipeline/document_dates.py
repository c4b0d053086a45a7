"""Document-level commencement dates and user metadata edits."""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from regextract.config import settings
from regextract.errors import DocumentNotFoundError
from regextract.llm.accounting import UsageLogger
from regextract.llm.prompts import build_document_dates_prompt
from regextract.llm.retry import RetryPolicy
from regextract.models.document import CommencementDate, Document
from regextract.models.usage import CacheOperation
from regextract.pipeline.dates import PUBLICATION_CUES, REVOCATION_CUES
from regextract.storage.base import Store
from regextract.storage.cache import CacheLayer, cache_key
from regextract.utils.json_repair import parse_json_array

logger = logging.getLogger(__name__)

STAGE = "dates"
EDITABLE_FIELDS = ("title", "document_type", "effective_date", "version", "topics", "jurisdictions", "impacted_systems")


def _describes_commencement(description: str) -> bool:
    return not any(
        pattern.search(description) for pattern in (*REVOCATION_CUES, *PUBLICATION_CUES)
    )


def normalize_dates(items: Iterable[Any]) -> List[CommencementDate]:
    """Validate, drop non-commencement entries, de-duplicate and sort by date."""
    by_date: Dict[date, CommencementDate] = {}
    for item in items:
        if isinstance(item, CommencementDate):
            candidate = item
        elif isinstance(item, dict):
            try:
                candidate = CommencementDate.model_validate(
                    {"date": item.get("date"), "description": item.get("description") or ""}
                )
            except ValidationError:
                logger.debug("Ignoring invalid commencement date %r", item)
                continue
        else:
            continue
        if not _describes_commencement(candidate.description):
            logger.info("Ignoring non-commencement date %s (%s)", candidate.date, candidate.description)
            continue
        by_date.setdefault(candidate.date, candidate)
    return [by_date[key] for key in sorted(by_date)]


class DocumentDateExtractor:
    def __init__(
        self,
        completion: RetryPolicy,
        cache: CacheLayer,
        usage: UsageLogger,
        store: Store,
        model: Optional[str] = None,
    ) -> None:
        self.completion = completion
        self.cache = cache
        self.usage = usage
        self.store = store
        self.model = model or settings.model_fast

    async def extract(self, document_id: str, content: bytes, force: bool = False) -> List[CommencementDate]:
        """Commencement dates of the whole document.

        Dates already on the document (extracted earlier or entered by a
        user) are returned without a model call unless ``force`` is set.
        """
        document = await self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if document.commencement_dates and not force:
            return document.commencement_dates

        started = time.perf_counter()
        key = cache_key(CacheOperation.DATES, document_id)
        if force:
            await self.cache.invalidate(key)
        entry = await self.cache.lookup(key)
        if entry is not None:
            await self.usage.log_cache_hit(document_id, STAGE, started)
            dates = normalize_dates(entry.output or [])
        else:
            completion = await self.completion.complete(
                build_document_dates_prompt(document.title),
                attachment=content,
                max_output_tokens=settings.topics_max_output_tokens,
                model=self.model,
            )
            call_cost = await self.usage.log_completion(document_id, STAGE, completion, started)
            dates = normalize_dates(parse_json_array(completion.text, key="dates"))
            await self.cache.put(
                key,
                CacheOperation.DATES,
                [item.model_dump(mode="json") for item in dates],
                completion,
                cost=call_cost,
                input_hash=document_id,
            )
        logger.info("Found %s commencement dates for %s", len(dates), document_id)
        await self.store.update_document(document_id, commencement_dates=dates)
        return dates


async def update_document_metadata(
    store: Store,
    document_id: str,
    commencement_dates: Optional[Iterable[Any]] = None,
    **fields: Any,
) -> Document:
    """Apply user edits to a document; unknown fields are rejected."""
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
    if await store.get_document(document_id) is None:
        raise DocumentNotFoundError(document_id)
    updates = {name: value for name, value in fields.items() if value is not None}
    if commencement_dates is not None:
        updates["commencement_dates"] = [
            item if isinstance(item, CommencementDate) else CommencementDate.model_validate(item)
            for item in commencement_dates
        ]
    return await store.update_document(document_id, **updates)
