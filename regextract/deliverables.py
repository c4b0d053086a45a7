"""Requirement traceability matrices and functional specifications.

Both deliverables are JSON trees generated by the quality model from the
persisted obligations of a document and cached per document. Turning a
tree into a file format is left to a ``DocumentRenderer``.
"""

from __future__ import annotations

import json
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from regextract.config import settings
from regextract.errors import DocumentNotFoundError, MalformedOutputError, NoObligationsError
from regextract.llm.accounting import UsageLogger
from regextract.llm.prompts import build_funcspec_prompt, build_rtm_prompt
from regextract.llm.retry import RetryPolicy
from regextract.models.document import Document
from regextract.models.obligation import Obligation
from regextract.models.usage import CacheOperation
from regextract.storage.base import Store
from regextract.storage.cache import CacheLayer, cache_key
from regextract.utils.json_repair import parse_json

logger = logging.getLogger(__name__)


class DeliverableKind(str, Enum):
    RTM = "rtm"
    FUNCSPEC = "funcspec"


PROMPT_BUILDERS: Dict[DeliverableKind, Callable[[Document, Sequence[Obligation]], str]] = {
    DeliverableKind.RTM: build_rtm_prompt,
    DeliverableKind.FUNCSPEC: build_funcspec_prompt,
}


class Deliverable(BaseModel):
    document_id: str
    kind: DeliverableKind
    content: Dict[str, Any] = Field(default_factory=dict)
    cost: float = 0.0
    cache_hit: bool = False


class DocumentRenderer(Protocol):
    media_type: str
    extension: str

    def render(self, deliverable: Deliverable, document: Document) -> bytes: ...


class JsonRenderer:
    media_type = "application/json"
    extension = "json"

    def render(self, deliverable: Deliverable, document: Document) -> bytes:
        payload = {"document": document.title, "kind": deliverable.kind.value, **deliverable.content}
        return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def _sort_key(obligation: Obligation):
    parts = []
    for token in (obligation.section_number or "").replace("#", ".").split("."):
        parts.append((0, int(token), "") if token.isdigit() else (1, 0, token))
    return parts


class DeliverableGenerator:
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
        self.model = model or settings.model_quality

    async def generate(
        self, document_id: str, kind: DeliverableKind, force: bool = False
    ) -> Deliverable:
        """Build (or fetch the cached) deliverable; ``force`` discards the cache first."""
        kind = DeliverableKind(kind)
        document = await self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        obligations = sorted(await self.store.list_obligations(document_id), key=_sort_key)
        if not obligations:
            raise NoObligationsError(f"Document {document_id} has no obligations; process it first")

        started = time.perf_counter()
        key = cache_key(CacheOperation(kind.value), document_id)
        if force:
            await self.cache.invalidate(key)
        entry = await self.cache.lookup(key)
        if entry is not None:
            await self.usage.log_cache_hit(document_id, kind.value, started)
            return Deliverable(document_id=document_id, kind=kind, content=entry.output, cache_hit=True)

        logger.info("Generating %s for %s from %s obligations", kind.value, document_id, len(obligations))
        completion = await self.completion.complete(
            PROMPT_BUILDERS[kind](document, obligations),
            max_output_tokens=settings.deliverable_max_output_tokens,
            model=self.model,
        )
        call_cost = await self.usage.log_completion(document_id, kind.value, completion, started)
        content = parse_json(completion.text, shape="object")
        if not isinstance(content, dict):
            raise MalformedOutputError(f"{kind.value} output is not a JSON object", raw_text=completion.text)
        await self.cache.put(
            key, CacheOperation(kind.value), content, completion, cost=call_cost, input_hash=document_id
        )
        return Deliverable(document_id=document_id, kind=kind, content=content, cost=call_cost)

    async def render(
        self,
        document_id: str,
        kind: DeliverableKind,
        renderer: Optional[DocumentRenderer] = None,
        force: bool = False,
    ) -> bytes:
        renderer = renderer or JsonRenderer()
        deliverable = await self.generate(document_id, kind, force=force)
        document = await self.store.get_document(document_id)
        return renderer.render(deliverable, document)
