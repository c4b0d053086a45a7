import asyncio
from datetime import date

import pytest

from helpers import (
    BATCH_MARKER,
    EXTRACTION_MARKER,
    PDF_BYTES,
    STRUCTURE_MARKER,
    ScriptedService,
    add_document,
    fatal,
    no_sleep,
    pipeline_handler,
)
from regextract.errors import CompletionError, PipelineCancelled
from regextract.llm.retry import RetryPolicy
from regextract.models.document import ExtractionStatus
from regextract.pipeline.orchestrator import Pipeline
from regextract.storage.memory import InMemoryStore


def _pipeline(store, service):
    return Pipeline(store, RetryPolicy(service, sleep=no_sleep), sleep=no_sleep)


def test_full_run_completes_and_archives():
    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        service = ScriptedService(handler=pipeline_handler)
        outcome = await _pipeline(store, service).process(document.id, PDF_BYTES)
        return service, outcome, await store.get_document(document.id), await store.list_obligations(document.id)

    service, outcome, document, obligations = asyncio.run(scenario())

    assert len(service.calls) == 5
    assert outcome.status == ExtractionStatus.COMPLETED
    assert outcome.obligation_count == 2
    assert outcome.section_count == 3
    assert outcome.total_cost == pytest.approx(0.0108)
    assert document.extraction_status == ExtractionStatus.COMPLETED
    assert document.obligation_count == 2
    assert document.is_archived
    assert document.processing_cost == pytest.approx(0.0108)
    assert document.processed_at is not None
    assert document.topics == ["notifications"]
    assert document.impacted_systems == ["MSATS"]
    assert all(ob.classified for ob in obligations)
    notify = next(ob for ob in obligations if ob.section_number == "4.2")
    assert notify.commencement_date == date(2026, 2, 1)


def test_second_run_reuses_everything():
    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        service = ScriptedService(handler=pipeline_handler)
        pipeline = _pipeline(store, service)
        await pipeline.process(document.id, PDF_BYTES)
        again = await pipeline.process(document.id, PDF_BYTES)
        return service, again, await store.list_obligations(document.id)

    service, again, obligations = asyncio.run(scenario())
    assert len(service.calls) == 5
    assert again.obligation_count == 2
    assert len(obligations) == 2
    assert again.total_cost == pytest.approx(0.0108)


def test_classification_failure_keeps_extracted_obligations():
    def handler(prompt):
        if BATCH_MARKER in prompt:
            return fatal("classification down")
        return pipeline_handler(prompt)

    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        with pytest.raises(CompletionError):
            await _pipeline(store, ScriptedService(handler=handler)).process(document.id, PDF_BYTES)
        return await store.get_document(document.id), await store.list_obligations(document.id)

    document, obligations = asyncio.run(scenario())
    assert document.extraction_status == ExtractionStatus.COMPLETED
    assert document.obligation_count == 2
    assert document.is_archived
    assert not any(ob.classified for ob in obligations)


def test_resume_classifies_only_what_is_left():
    failing = {"batch": True}

    def handler(prompt):
        if BATCH_MARKER in prompt and failing["batch"]:
            return fatal()
        return pipeline_handler(prompt)

    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        service = ScriptedService(handler=handler)
        pipeline = _pipeline(store, service)
        with pytest.raises(CompletionError):
            await pipeline.process(document.id, PDF_BYTES)
        failing["batch"] = False
        outcome = await pipeline.process(document.id, PDF_BYTES)
        return service, outcome, await store.list_obligations(document.id)

    service, outcome, obligations = asyncio.run(scenario())
    assert outcome.obligation_count == 2
    assert len(service.prompts_containing(STRUCTURE_MARKER)) == 1
    assert len(service.prompts_containing(EXTRACTION_MARKER)) == 2
    assert len(service.prompts_containing(BATCH_MARKER)) == 2
    assert all(ob.classified for ob in obligations)


def test_structuring_failure_marks_document_failed():
    def handler(prompt):
        if STRUCTURE_MARKER in prompt:
            return fatal("bad pdf")
        return pipeline_handler(prompt)

    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        with pytest.raises(CompletionError):
            await _pipeline(store, ScriptedService(handler=handler)).process(document.id, PDF_BYTES)
        return await store.get_document(document.id)

    document = asyncio.run(scenario())
    assert document.extraction_status == ExtractionStatus.FAILED
    assert document.obligation_count == 0
    assert not document.is_archived


class FailingSettleStore(InMemoryStore):
    async def update_document(self, document_id, **changes):
        if changes.get("extraction_status") in (ExtractionStatus.FAILED, ExtractionStatus.COMPLETED):
            raise RuntimeError("database unavailable")
        return await super().update_document(document_id, **changes)


def test_failure_to_record_status_keeps_the_original_error():
    def handler(prompt):
        if STRUCTURE_MARKER in prompt:
            return fatal("bad pdf")
        return pipeline_handler(prompt)

    async def scenario():
        store = FailingSettleStore()
        document = await add_document(store)
        with pytest.raises(CompletionError, match="bad pdf"):
            await _pipeline(store, ScriptedService(handler=handler)).process(document.id, PDF_BYTES)
        return await store.get_document(document.id)

    document = asyncio.run(scenario())
    assert document.extraction_status == ExtractionStatus.PROCESSING


def test_cancel_before_start_fails_without_calls():
    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        service = ScriptedService(handler=pipeline_handler)
        event = asyncio.Event()
        event.set()
        with pytest.raises(PipelineCancelled):
            await _pipeline(store, service).process(document.id, PDF_BYTES, cancel_event=event)
        return service, await store.get_document(document.id)

    service, document = asyncio.run(scenario())
    assert service.calls == []
    assert document.extraction_status == ExtractionStatus.FAILED


def test_cancel_during_extraction_keeps_obligations_unclassified():
    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        event = asyncio.Event()

        def handler(prompt):
            if EXTRACTION_MARKER in prompt:
                event.set()
            return pipeline_handler(prompt)

        service = ScriptedService(handler=handler)
        with pytest.raises(PipelineCancelled):
            await _pipeline(store, service).process(document.id, PDF_BYTES, cancel_event=event)
        return service, await store.get_document(document.id), await store.list_obligations(document.id)

    service, document, obligations = asyncio.run(scenario())
    assert not service.prompts_containing(BATCH_MARKER)
    assert document.extraction_status == ExtractionStatus.COMPLETED
    assert document.obligation_count == 2
    assert not any(ob.classified for ob in obligations)


class BlockingService(ScriptedService):
    """Hangs on the classification call until the task is cancelled."""

    def __init__(self):
        super().__init__(handler=pipeline_handler)
        self.blocked = asyncio.Event()

    async def invoke(self, prompt, attachment, max_output_tokens, model):
        if BATCH_MARKER in prompt:
            self.blocked.set()
            await asyncio.Event().wait()
        return await super().invoke(prompt, attachment, max_output_tokens, model)


def test_task_cancellation_still_settles_status():
    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        service = BlockingService()
        task = asyncio.create_task(_pipeline(store, service).process(document.id, PDF_BYTES))
        await service.blocked.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return await store.get_document(document.id)

    document = asyncio.run(scenario())
    assert document.extraction_status == ExtractionStatus.COMPLETED
    assert document.obligation_count == 2


def test_clear_and_reprocess():
    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        service = ScriptedService(handler=pipeline_handler)
        pipeline = _pipeline(store, service)
        await pipeline.process(document.id, PDF_BYTES)
        cleared = await pipeline.clear_document(document.id)
        after_clear = await store.get_document(document.id)
        outcome = await pipeline.reprocess(document.id, PDF_BYTES)
        return service, cleared, after_clear, outcome

    service, cleared, after_clear, outcome = asyncio.run(scenario())
    assert cleared.obligations == 2
    assert cleared.cache_entries == 4
    assert after_clear.extraction_status == ExtractionStatus.PENDING
    assert after_clear.obligation_count == 0
    assert not after_clear.is_archived
    assert outcome.obligation_count == 2
    assert len(service.calls) == 10
