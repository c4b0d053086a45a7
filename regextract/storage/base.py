"""Persistent store contract used by the pipeline."""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Sequence

from regextract.models.document import Document
from regextract.models.obligation import Obligation
from regextract.models.usage import CacheEntry, UsageRecord


class Store(Protocol):
    """Minimal async key/value + relational store.

    Writes are keyed by document, obligation or cache key so concurrent
    pipelines for different documents never touch the same record.
    """

    # documents
    async def insert_document(self, document: Document) -> Document: ...

    async def get_document(self, document_id: str) -> Optional[Document]: ...

    async def find_document_by_hash(self, file_hash: str) -> Optional[Document]: ...

    async def update_document(self, document_id: str, **fields: Any) -> Document: ...

    async def list_documents(self) -> List[Document]: ...

    # obligations
    async def insert_obligations(self, obligations: Sequence[Obligation]) -> List[Obligation]: ...

    async def list_obligations(self, document_id: str) -> List[Obligation]: ...

    async def update_obligation(self, obligation_id: str, **fields: Any) -> Obligation: ...

    async def delete_obligations(self, document_id: str) -> int: ...

    async def count_obligations(self, document_id: str) -> int: ...

    # cache
    async def get_cache(self, cache_key: str) -> Optional[CacheEntry]: ...

    async def put_cache(self, entry: CacheEntry) -> None: ...

    async def increment_cache_hit(self, cache_key: str) -> int: ...

    async def delete_cache(self, cache_key: str) -> int: ...

    async def delete_cache_prefix(self, prefix: str) -> int: ...

    # usage log
    async def append_usage(self, record: UsageRecord) -> None: ...

    async def list_usage(self, document_id: str) -> List[UsageRecord]: ...

    async def sum_cost(self, document_id: str) -> float: ...
