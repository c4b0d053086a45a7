"""Process-local store implementation.

Records are copied on the way in and out, so callers observe the same
isolation a database would give them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from regextract.errors import DocumentNotFoundError, DuplicateDocumentError, RegExtractError
from regextract.models.document import Document
from regextract.models.obligation import Obligation
from regextract.models.usage import CacheEntry, UsageRecord

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Dictionary-backed ``Store``."""

    def __init__(self) -> None:
        self.documents: Dict[str, Document] = {}
        self.obligations: Dict[str, Obligation] = {}
        self.cache: Dict[str, CacheEntry] = {}
        self.usage: List[UsageRecord] = []

    async def insert_document(self, document: Document) -> Document:
        if document.id in self.documents:
            raise RegExtractError(f"Document {document.id} already exists")
        if any(doc.file_hash == document.file_hash for doc in self.documents.values()):
            raise DuplicateDocumentError(f"A document with hash {document.file_hash} exists")
        self.documents[document.id] = document.model_copy(deep=True)
        return document.model_copy(deep=True)

    async def get_document(self, document_id: str) -> Optional[Document]:
        document = self.documents.get(document_id)
        return document.model_copy(deep=True) if document else None

    async def find_document_by_hash(self, file_hash: str) -> Optional[Document]:
        for document in self.documents.values():
            if document.file_hash == file_hash:
                return document.model_copy(deep=True)
        return None

    async def update_document(self, document_id: str, **fields: Any) -> Document:
        current = self.documents.get(document_id)
        if current is None:
            raise DocumentNotFoundError(document_id)
        updated = Document.model_validate({**current.model_dump(), **fields})
        self.documents[document_id] = updated
        return updated.model_copy(deep=True)

    async def list_documents(self) -> List[Document]:
        return [document.model_copy(deep=True) for document in self.documents.values()]

    async def insert_obligations(self, obligations: Sequence[Obligation]) -> List[Obligation]:
        stored: List[Obligation] = []
        for obligation in obligations:
            self.obligations[obligation.id] = obligation.model_copy(deep=True)
            stored.append(obligation.model_copy(deep=True))
        logger.debug("Inserted %s obligations", len(stored))
        return stored

    async def list_obligations(self, document_id: str) -> List[Obligation]:
        return [
            obligation.model_copy(deep=True)
            for obligation in self.obligations.values()
            if obligation.document_id == document_id
        ]

    async def update_obligation(self, obligation_id: str, **fields: Any) -> Obligation:
        current = self.obligations.get(obligation_id)
        if current is None:
            raise RegExtractError(f"Obligation {obligation_id} not found")
        updated = Obligation.model_validate({**current.model_dump(), **fields})
        self.obligations[obligation_id] = updated
        return updated.model_copy(deep=True)

    async def delete_obligations(self, document_id: str) -> int:
        doomed = [key for key, ob in self.obligations.items() if ob.document_id == document_id]
        for key in doomed:
            del self.obligations[key]
        return len(doomed)

    async def count_obligations(self, document_id: str) -> int:
        return sum(1 for ob in self.obligations.values() if ob.document_id == document_id)

    async def get_cache(self, cache_key: str) -> Optional[CacheEntry]:
        entry = self.cache.get(cache_key)
        return entry.model_copy(deep=True) if entry else None

    async def put_cache(self, entry: CacheEntry) -> None:
        self.cache[entry.cache_key] = entry.model_copy(deep=True)

    async def increment_cache_hit(self, cache_key: str) -> int:
        entry = self.cache.get(cache_key)
        if entry is None:
            return 0
        entry.hit_count += 1
        return entry.hit_count

    async def delete_cache(self, cache_key: str) -> int:
        return 1 if self.cache.pop(cache_key, None) is not None else 0

    async def delete_cache_prefix(self, prefix: str) -> int:
        doomed = [key for key in self.cache if key.startswith(prefix)]
        for key in doomed:
            del self.cache[key]
        return len(doomed)

    async def append_usage(self, record: UsageRecord) -> None:
        self.usage.append(record)

    async def list_usage(self, document_id: str) -> List[UsageRecord]:
        return [record for record in self.usage if record.document_id == document_id]

    async def sum_cost(self, document_id: str) -> float:
        return sum(
            record.cost
            for record in self.usage
            if record.document_id == document_id and not record.cache_hit
        )
