"""Memoization of expensive, non-deterministic stage outputs.

Keys are ``{operation}:{document_id}`` for whole-document work and
``{operation}:{document_id}:{section_number}`` for per-section extraction,
so a rerun after a partial failure only pays for the sections that never
completed.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from regextract.llm.completion import Completion
from regextract.models.usage import WHOLE_DOCUMENT_OPERATIONS, CacheEntry, CacheOperation
from regextract.storage.base import Store

logger = logging.getLogger(__name__)

KEY_SEPARATOR = ":"


def cache_key(
    operation: Union[CacheOperation, str],
    document_id: str,
    sub_unit: Optional[str] = None,
) -> str:
    op = CacheOperation(operation).value
    parts = [op, document_id]
    if sub_unit is not None:
        parts.append(str(sub_unit))
    return KEY_SEPARATOR.join(parts)


def section_prefix(operation: Union[CacheOperation, str], document_id: str) -> str:
    """Prefix matching every per-section key of one document (and no other)."""
    return cache_key(operation, document_id) + KEY_SEPARATOR


class CacheLayer:
    """Read-through helpers over the store's cache table."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def get(self, key: str) -> Optional[CacheEntry]:
        return await self.store.get_cache(key)

    async def increment_hit(self, key: str) -> int:
        return await self.store.increment_cache_hit(key)

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        """Return the entry and count the hit, or ``None`` on a miss."""
        entry = await self.get(key)
        if entry is None:
            return None
        entry.hit_count = await self.increment_hit(key)
        logger.info("Cache hit for %s (hits=%s)", key, entry.hit_count)
        return entry

    async def put(
        self,
        key: str,
        operation: Union[CacheOperation, str],
        output: Any,
        completion: Optional[Completion] = None,
        cost: float = 0.0,
        input_hash: Optional[str] = None,
        model: Optional[str] = None,
        tokens_used: Optional[int] = None,
    ) -> CacheEntry:
        if completion is not None:
            model = model or completion.model
            if tokens_used is None:
                tokens_used = completion.total_tokens
        entry = CacheEntry(
            cache_key=key,
            operation=CacheOperation(operation),
            input_hash=input_hash,
            output=output,
            model=model,
            tokens_used=tokens_used or 0,
            cost=cost,
        )
        await self.store.put_cache(entry)
        return entry

    async def invalidate(self, key: str) -> int:
        return await self.store.delete_cache(key)

    async def invalidate_prefix(self, prefix: str) -> int:
        return await self.store.delete_cache_prefix(prefix)

    async def invalidate_document(self, document_id: str) -> int:
        """Drop every cached artifact of a document."""
        removed = 0
        for operation in WHOLE_DOCUMENT_OPERATIONS:
            removed += await self.invalidate(cache_key(operation, document_id))
        removed += await self.invalidate_prefix(section_prefix(CacheOperation.EXTRACT, document_id))
        logger.info("Cleared %s cache entries for document %s", removed, document_id)
        return removed
