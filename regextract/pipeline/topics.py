"""Best-effort tagging of a document with topics, jurisdictions and systems."""

from __future__ import annotations

import logging
import time
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from regextract.config import settings
from regextract.errors import RegExtractError
from regextract.llm.accounting import UsageLogger
from regextract.llm.prompts import build_topics_prompt, opening_text
from regextract.llm.retry import RetryPolicy
from regextract.models.document import StructuredDocument
from regextract.models.obligation import StrList
from regextract.models.usage import CacheOperation
from regextract.storage.base import Store
from regextract.storage.cache import CacheLayer, cache_key
from regextract.utils.json_repair import parse_json

logger = logging.getLogger(__name__)

STAGE = "topics"


class DocumentTopics(BaseModel):
    topics: StrList = Field(default_factory=list)
    jurisdictions: StrList = Field(default_factory=list)
    impacted_systems: StrList = Field(
        default_factory=list,
        validation_alias=AliasChoices("impacted_systems", "impactedSystems"),
    )


class TopicExtractor:
    """Fills ``topics``/``jurisdictions``/``impacted_systems`` on a Document.

    Failures are logged and swallowed: tags are nice to have and must never
    fail a processing run.
    """

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

    async def tag(self, document_id: str, structured: StructuredDocument) -> Optional[DocumentTopics]:
        try:
            topics = await self._tag(document_id, structured)
        except RegExtractError as exc:
            logger.warning("Topic extraction failed for %s: %s", document_id, exc)
            return None
        await self.store.update_document(document_id, **topics.model_dump())
        return topics

    async def _tag(self, document_id: str, structured: StructuredDocument) -> DocumentTopics:
        started = time.perf_counter()
        key = cache_key(CacheOperation.TOPICS, document_id)
        entry = await self.cache.lookup(key)
        if entry is not None:
            await self.usage.log_cache_hit(document_id, STAGE, started)
            return DocumentTopics.model_validate(entry.output)

        document = await self.store.get_document(document_id)
        title = structured.title or (document.title if document else "Unknown")
        completion = await self.completion.complete(
            build_topics_prompt(title, opening_text(structured.sections)),
            max_output_tokens=settings.topics_max_output_tokens,
            model=self.model,
        )
        call_cost = await self.usage.log_completion(document_id, STAGE, completion, started)
        data = parse_json(completion.text, shape="object")
        if not isinstance(data, dict):
            data = {}
        try:
            topics = DocumentTopics.model_validate(data)
        except ValidationError as exc:
            logger.warning("Discarding topic output for %s: %s", document_id, exc)
            topics = DocumentTopics()
        await self.cache.put(
            key, CacheOperation.TOPICS, topics.model_dump(), completion, cost=call_cost, input_hash=document_id
        )
        logger.info(
            "Tagged %s with %s topics, %s jurisdictions",
            document_id,
            len(topics.topics),
            len(topics.jurisdictions),
        )
        return topics
