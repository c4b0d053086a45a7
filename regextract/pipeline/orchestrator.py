"""End-to-end processing of one document."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel

from regextract.config import settings
from regextract.deliverables import DeliverableGenerator
from regextract.errors import DocumentNotFoundError, PipelineCancelled
from regextract.ingestion.upload import register_document
from regextract.llm.accounting import UsageLogger
from regextract.llm.openai_client import OpenAICompletionService
from regextract.llm.retry import RetryPolicy
from regextract.models.document import CommencementDate, Document, ExtractionStatus, utcnow
from regextract.models.obligation import Obligation
from regextract.pipeline.classification import ObligationClassifier
from regextract.pipeline.document_dates import DocumentDateExtractor
from regextract.pipeline.extraction import ObligationExtractor
from regextract.pipeline.structuring import DocumentStructurer
from regextract.pipeline.topics import TopicExtractor
from regextract.storage.base import Store
from regextract.storage.cache import CacheLayer
from regextract.storage.memory import InMemoryStore

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ProcessingOutcome(BaseModel):
    document_id: str
    status: ExtractionStatus
    obligation_count: int = 0
    total_cost: float = 0.0
    section_count: int = 0


class ClearResult(BaseModel):
    document_id: str
    cache_entries: int = 0
    obligations: int = 0


def _check_cancelled(cancel_event: Optional[asyncio.Event], next_stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise PipelineCancelled(f"Cancelled before {next_stage}")


class Pipeline:
    """Structuring, extraction and classification with status bookkeeping.

    Whatever happens, a run ends with a final status on the document:
    ``completed`` when at least one obligation was persisted (even if a later
    stage failed), ``failed`` otherwise. The original exception is re-raised.
    """

    def __init__(
        self,
        store: Store,
        completion: RetryPolicy,
        classification_mode: Optional[str] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.completion = completion
        self.cache = CacheLayer(store)
        self.usage = UsageLogger(store)
        self.structurer = DocumentStructurer(completion, self.cache, self.usage, store)
        self.topics = TopicExtractor(completion, self.cache, self.usage, store)
        self.extractor = ObligationExtractor(completion, self.cache, self.usage)
        self.classifier = ObligationClassifier(
            completion, self.usage, store, mode=classification_mode, sleep=sleep
        )
        self.dates = DocumentDateExtractor(completion, self.cache, self.usage, store)
        self.deliverables = DeliverableGenerator(completion, self.cache, self.usage, store)

    @classmethod
    def from_settings(cls, store: Store) -> "Pipeline":
        return cls(store, RetryPolicy(OpenAICompletionService()))

    async def _get_document(self, document_id: str) -> Document:
        document = await self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def process(
        self,
        document_id: str,
        content: bytes,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProcessingOutcome:
        document = await self._get_document(document_id)
        await self.store.update_document(document_id, extraction_status=ExtractionStatus.PROCESSING)
        logger.info("Processing document %s (%s)", document_id, document.title)
        try:
            _check_cancelled(cancel_event, "structuring")
            structured = (await self.structurer.structure(document_id, content)).document

            _check_cancelled(cancel_event, "topic tagging")
            await self.topics.tag(document_id, structured)

            _check_cancelled(cancel_event, "extraction")
            extraction = await self.extractor.extract(document_id, structured.sections)
            known = {ob.id for ob in await self.store.list_obligations(document_id)}
            fresh = [
                ob
                for ob in (Obligation.from_extracted(document_id, item) for item in extraction.obligations)
                if ob.id not in known
            ]
            await self.store.insert_obligations(fresh)
            logger.info("Persisted %s new obligations for %s", len(fresh), document_id)

            _check_cancelled(cancel_event, "classification")
            pending = [ob for ob in await self.store.list_obligations(document_id) if not ob.classified]
            await self.classifier.classify(
                document_id, pending, structured.title or document.title
            )
        except (Exception, asyncio.CancelledError) as exc:
            try:
                await self._settle(document_id, exc)
            except Exception:
                logger.exception("Could not record final status for %s", document_id)
            raise

        count = await self.store.count_obligations(document_id)
        total_cost = await self.usage.document_cost(document_id)
        await self.store.update_document(
            document_id,
            extraction_status=ExtractionStatus.COMPLETED,
            obligation_count=count,
            is_archived=count > 0,
            processing_cost=total_cost,
            processed_at=utcnow(),
        )
        logger.info(
            "Completed %s: %s obligations, $%.4f", document_id, count, total_cost
        )
        return ProcessingOutcome(
            document_id=document_id,
            status=ExtractionStatus.COMPLETED,
            obligation_count=count,
            total_cost=total_cost,
            section_count=len(structured.sections),
        )

    async def _settle(self, document_id: str, exc: BaseException) -> None:
        count = await self.store.count_obligations(document_id)
        total_cost = await self.usage.document_cost(document_id)
        status = ExtractionStatus.COMPLETED if count > 0 else ExtractionStatus.FAILED
        await self.store.update_document(
            document_id,
            extraction_status=status,
            obligation_count=count,
            is_archived=count > 0,
            processing_cost=total_cost,
            processed_at=utcnow(),
        )
        if isinstance(exc, (PipelineCancelled, asyncio.CancelledError)):
            logger.warning("Processing of %s cancelled; %s obligations kept", document_id, count)
        else:
            logger.error(
                "Processing of %s failed (%s: %s); status %s with %s obligations",
                document_id,
                type(exc).__name__,
                exc,
                status.value,
                count,
            )

    async def clear_document(self, document_id: str) -> ClearResult:
        """Drop cached artifacts and obligations so the next run starts fresh."""
        await self._get_document(document_id)
        removed = await self.cache.invalidate_document(document_id)
        deleted = await self.store.delete_obligations(document_id)
        await self.store.update_document(
            document_id,
            extraction_status=ExtractionStatus.PENDING,
            obligation_count=0,
            is_archived=False,
            processed_at=None,
        )
        logger.info("Cleared %s: %s cache entries, %s obligations", document_id, removed, deleted)
        return ClearResult(document_id=document_id, cache_entries=removed, obligations=deleted)

    async def reprocess(
        self,
        document_id: str,
        content: bytes,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProcessingOutcome:
        await self.clear_document(document_id)
        return await self.process(document_id, content, cancel_event)

    async def extract_document_dates(
        self, document_id: str, content: bytes, force: bool = False
    ) -> List[CommencementDate]:
        return await self.dates.extract(document_id, content, force=force)


async def run_file(path: Path, title: Optional[str] = None) -> List[Obligation]:
    """Register and process a local PDF against a throwaway in-memory store."""
    store = InMemoryStore()
    content = path.read_bytes()
    registration = await register_document(store, path.name, content, title=title)
    pipeline = Pipeline.from_settings(store)
    outcome = await pipeline.process(registration.document.id, content)
    logger.info("Finished with status %s", outcome.status.value)
    return await store.list_obligations(registration.document.id)


def main() -> None:
    parser = argparse.ArgumentParser(description="Extract obligations from a regulatory PDF.")
    parser.add_argument("pdf", type=Path, help="Path to the PDF to process")
    parser.add_argument("--title", help="Document title (defaults to the file name)")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level)
    obligations = asyncio.run(run_file(args.pdf, args.title))
    print(json.dumps([ob.model_dump(mode="json") for ob in obligations], indent=2))


if __name__ == "__main__":
    main()
