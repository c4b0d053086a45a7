import asyncio
import json
from datetime import date

from helpers import (
    BATCH_MARKER,
    CLASSIFY_AGENT_MARKER,
    IMPLEMENTATION_AGENT_MARKER,
    STAKEHOLDER_AGENT_MARKER,
    RecordingSleep,
    ScriptedService,
    add_document,
    batch_response,
    fatal,
    no_sleep,
)
from regextract.llm.accounting import UsageLogger
from regextract.llm.retry import RetryPolicy
from regextract.models.obligation import (
    EffortEstimate,
    ExtractedObligation,
    ImplementationType,
    Obligation,
    ObligationType,
)
from regextract.pipeline.classification import ObligationClassifier, parse_batch_response
from regextract.storage.memory import InMemoryStore

TEXTS = [
    "Retailers must notify AEMO within 5 business days",
    "Metering Providers shall deliver meter data daily",
    "DNSPs should publish outage schedules",
    "Generators must register with AEMO",
]


async def _seed(store, texts=TEXTS, context=""):
    document = await add_document(store)
    obligations = [
        Obligation.from_extracted(
            document.id, ExtractedObligation(extracted_text=text, context=context, section_number="4")
        )
        for text in texts
    ]
    await store.insert_obligations(obligations)
    return document, obligations


def _classifier(store, service, **kwargs):
    kwargs.setdefault("sleep", no_sleep)
    return ObligationClassifier(RetryPolicy(service, sleep=no_sleep), UsageLogger(store), store, **kwargs)


def test_batched_mode_merges_by_id_and_defaults_missing_entries():
    def handler(prompt):
        data = json.loads(batch_response(prompt))
        data["classifications"] = data["classifications"][1:]
        return json.dumps(data)

    async def scenario():
        store = InMemoryStore()
        document, obligations = await _seed(store, TEXTS[:3])
        service = ScriptedService(handler=handler)
        summary = await _classifier(store, service, mode="batched", batch_size=5).classify(
            document.id, obligations, document.title
        )
        stored = {ob.id: ob for ob in await store.list_obligations(document.id)}
        return service, summary, obligations, stored

    service, summary, obligations, stored = asyncio.run(scenario())

    assert len(service.calls) == 1
    assert service.calls[0].model == "gpt-4.1"
    assert summary.classified == 3 and summary.defaulted == 1
    missing = stored[obligations[0].id]
    assert missing.classified
    assert missing.obligation_type == ObligationType.GUIDANCE
    assert missing.confidence == 0.5
    assert missing.implementation_type == ImplementationType.NO_CHANGE
    assert missing.estimated_effort == EffortEstimate.MEDIUM
    answered = stored[obligations[1].id]
    assert answered.obligation_type == ObligationType.BINDING
    assert answered.stakeholders == ["Retailer"]
    assert answered.impacted_systems == ["CRM"]
    assert answered.implementation_type == ImplementationType.PROCESS_CHANGE


def test_malformed_batch_leaves_obligations_untouched():
    replies = ["Unable to classify.", batch_response]

    def handler(prompt):
        reply = replies.pop(0)
        return reply(prompt) if callable(reply) else reply

    async def scenario():
        store = InMemoryStore()
        document, obligations = await _seed(store)
        sleep = RecordingSleep()
        service = ScriptedService(handler=handler)
        summary = await _classifier(store, service, mode="batched", batch_size=2, sleep=sleep).classify(
            document.id, obligations
        )
        stored = {ob.id: ob for ob in await store.list_obligations(document.id)}
        return summary, obligations, stored, sleep

    summary, obligations, stored, sleep = asyncio.run(scenario())
    assert summary.skipped == 2 and summary.classified == 2
    assert not stored[obligations[0].id].classified
    assert stored[obligations[2].id].classified
    assert sleep.delays == [0.5]


def test_fan_out_defaults_only_the_failed_dimension():
    def handler(prompt):
        if CLASSIFY_AGENT_MARKER in prompt:
            return '{"obligation_type": "binding", "confidence": 0.97, "reasoning": "must"}'
        if STAKEHOLDER_AGENT_MARKER in prompt:
            return fatal("stakeholder agent down")
        if IMPLEMENTATION_AGENT_MARKER in prompt:
            return '```json\n{"implementation_type": "system_change", "estimated_effort": "large"}\n```'
        raise AssertionError(prompt[:60])

    async def scenario():
        store = InMemoryStore()
        document, obligations = await _seed(store)
        sleep = RecordingSleep()
        service = ScriptedService(handler=handler)
        classifier = _classifier(store, service, mode="fan_out", fan_out_batch_size=3, sleep=sleep)
        summary = await classifier.classify(document.id, obligations)
        stored = await store.list_obligations(document.id)
        return service, summary, stored, sleep

    service, summary, stored, sleep = asyncio.run(scenario())

    assert len(service.calls) == 12
    assert all(call.model == "gpt-4.1-mini" for call in service.calls)
    assert not service.prompts_containing(BATCH_MARKER)
    assert summary.classified == 4 and summary.defaulted == 4
    assert sleep.delays == [0.5]
    for obligation in stored:
        assert obligation.obligation_type == ObligationType.BINDING
        assert obligation.confidence == 0.97
        assert obligation.stakeholders == []
        assert obligation.implementation_type == ImplementationType.SYSTEM_CHANGE
        assert obligation.estimated_effort == EffortEstimate.LARGE


def test_model_dates_are_checked_against_the_obligation_text():
    context = "This code was published on 12 September 2025 and will commence on 1 February 2026."

    def handler(prompt):
        data = json.loads(batch_response(prompt))
        for entry in data["classifications"]:
            entry["commencementDate"] = "2025-09-12"
            entry["dateConfidence"] = "high"
        return json.dumps(data)

    async def scenario():
        store = InMemoryStore()
        document, obligations = await _seed(store, TEXTS[:1], context=context)
        await _classifier(store, ScriptedService(handler=handler), mode="batched").classify(
            document.id, obligations
        )
        return (await store.list_obligations(document.id))[0]

    obligation = asyncio.run(scenario())
    assert obligation.commencement_date == date(2026, 2, 1)
    assert "commence on 1 February 2026" in obligation.commencement_date_text


def test_parse_batch_response_accepts_bare_lists_and_skips_bad_entries():
    entries = parse_batch_response('[{"id": "a", "obligationType": "binding"}, {"no": "id"}, 5]')
    assert list(entries) == ["a"]
    assert entries["a"].obligation_type == ObligationType.BINDING
