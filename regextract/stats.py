"""Archive listing and platform-wide savings figures."""

from __future__ import annotations

import logging
import math
from typing import List, Literal, Optional

from pydantic import BaseModel

from regextract.models.document import Document
from regextract.storage.base import Store

logger = logging.getLogger(__name__)

# documents processed before page counts were recorded average ~25 obligations a page
OBLIGATIONS_PER_PAGE = 25
# manual review of a regulatory document runs at about 15 minutes a page
PAGES_PER_HOUR = 4

SortOrder = Literal["recent", "complex", "alphabetical"]


class PlatformStats(BaseModel):
    document_count: int = 0
    total_obligations: int = 0
    page_count: int = 0
    hours_saved: int = 0
    total_cost: float = 0.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimated_pages(document: Document) -> int:
    if document.page_count and document.page_count > 0:
        return document.page_count
    return round_half_up(document.obligation_count / OBLIGATIONS_PER_PAGE)


async def archived_documents(
    store: Store, search: Optional[str] = None, sort_by: SortOrder = "recent"
) -> List[Document]:
    documents = [doc for doc in await store.list_documents() if doc.is_archived]
    if search:
        needle = search.lower()
        documents = [
            doc
            for doc in documents
            if needle in doc.title.lower()
            or needle in doc.source.lower()
            or needle in doc.document_type.lower()
        ]
    if sort_by == "complex":
        documents.sort(key=lambda doc: doc.obligation_count, reverse=True)
    elif sort_by == "alphabetical":
        documents.sort(key=lambda doc: doc.title.lower())
    else:
        documents.sort(key=lambda doc: doc.processed_at or doc.uploaded_at, reverse=True)
    return documents


async def platform_stats(store: Store) -> PlatformStats:
    documents = [doc for doc in await archived_documents(store) if doc.obligation_count > 0]
    pages = sum(estimated_pages(doc) for doc in documents)
    stats = PlatformStats(
        document_count=len(documents),
        total_obligations=sum(doc.obligation_count for doc in documents),
        page_count=pages,
        hours_saved=round_half_up(pages / PAGES_PER_HOUR),
        total_cost=sum(doc.processing_cost for doc in documents),
    )
    logger.debug("Platform stats: %s", stats)
    return stats
