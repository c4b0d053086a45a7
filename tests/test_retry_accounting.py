import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from helpers import RecordingSleep, ScriptedService, add_document, fatal, rate_limited
from regextract.config import Settings, settings
from regextract.errors import CompletionError
from regextract.llm.accounting import UsageLogger, cost
from regextract.llm.retry import RetryPolicy, parse_retry_after
from regextract.models.usage import CacheOperation
from regextract.storage.cache import CacheLayer, cache_key, section_prefix
from regextract.storage.memory import InMemoryStore

PRICING = {"fast": (0.40, 1.60), "quality": (2.00, 8.00)}


def test_rate_limits_back_off_linearly_then_succeed():
    sleep = RecordingSleep()
    service = ScriptedService(rate_limited(), rate_limited(), "done")
    policy = RetryPolicy(service, max_retries=3, base_delay=65, sleep=sleep)

    completion = asyncio.run(policy.complete("prompt", model="fast"))

    assert completion.text == "done"
    assert sleep.delays == [65, 130]
    assert len(service.calls) == 3


def test_retry_after_hint_extends_the_delay():
    sleep = RecordingSleep()
    policy = RetryPolicy(ScriptedService(rate_limited(200), "ok"), base_delay=65, sleep=sleep)
    asyncio.run(policy.complete("prompt"))
    assert sleep.delays == [200]


def test_retries_are_bounded():
    sleep = RecordingSleep()
    service = ScriptedService(*[rate_limited()] * 4)
    policy = RetryPolicy(service, max_retries=3, base_delay=1, sleep=sleep)

    with pytest.raises(CompletionError) as info:
        asyncio.run(policy.complete("prompt"))

    assert info.value.rate_limited
    assert len(service.calls) == 4
    assert sleep.delays == [1, 2, 3]


def test_fatal_errors_are_not_retried():
    sleep = RecordingSleep()
    service = ScriptedService(fatal("bad request"), "never")
    policy = RetryPolicy(service, sleep=sleep)

    with pytest.raises(CompletionError) as info:
        asyncio.run(policy.complete("prompt"))

    assert not info.value.rate_limited
    assert len(service.calls) == 1
    assert sleep.delays == []


def test_service_exceptions_propagate_without_retry():
    sleep = RecordingSleep()
    service = ScriptedService(ConnectionError("socket closed"), "never")
    policy = RetryPolicy(service, sleep=sleep)

    with pytest.raises(ConnectionError):
        asyncio.run(policy.complete("prompt"))

    assert len(service.calls) == 1
    assert sleep.delays == []


def test_retry_after_header_accepts_seconds_and_http_dates():
    soon = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=120), usegmt=True)
    assert parse_retry_after("30") == 30.0
    assert 100 < parse_retry_after(soon) <= 120
    assert parse_retry_after("Mon, 01 Jan 2001 00:00:00 GMT") == 0.0
    assert parse_retry_after("soon") is None
    assert parse_retry_after(None) is None


def test_cost_uses_per_million_rates():
    assert cost("fast", 1_000_000, 1_000_000, PRICING) == pytest.approx(2.0)
    assert cost("quality", 1000, 500, PRICING) == pytest.approx(0.006)


def test_unknown_model_is_billed_at_highest_rate():
    assert cost("mystery", 1_000_000, 0, PRICING) == pytest.approx(2.0)


def test_default_pricing_comes_from_settings():
    fast_in, fast_out = settings.model_pricing[settings.model_fast]
    assert cost(settings.model_fast, 1_000_000, 1_000_000) == pytest.approx(fast_in + fast_out)
    assert not hasattr(Settings, "price_for")


def test_document_cost_excludes_cache_hits():
    async def scenario():
        store = InMemoryStore()
        usage = UsageLogger(store, PRICING)
        await usage.log("doc-1", "extraction", "fast", 1000, 500, cost=0.0012)
        await usage.log("doc-1", "classification", "quality", 1000, 500, cost=0.006)
        await usage.log("doc-1", "parsing", "cache", cache_hit=True)
        await usage.log("doc-2", "parsing", "fast", 10, 10, cost=1.0)
        return await usage.document_cost("doc-1"), await store.list_usage("doc-1")

    total, records = asyncio.run(scenario())
    assert total == pytest.approx(0.0072)
    assert total == pytest.approx(sum(r.cost for r in records if not r.cache_hit))
    assert len(records) == 3


def test_cache_keys_and_prefixes():
    assert cache_key(CacheOperation.PARSE, "doc1") == "parse:doc1"
    assert cache_key("extract", "doc1", "4.2.1") == "extract:doc1:4.2.1"
    assert section_prefix(CacheOperation.EXTRACT, "doc1") == "extract:doc1:"


def test_invalidate_document_leaves_similar_ids_alone():
    async def scenario():
        store = InMemoryStore()
        cache = CacheLayer(store)
        for doc in ("doc1", "doc10"):
            await cache.put(cache_key("parse", doc), "parse", {"sections": []})
            await cache.put(cache_key("extract", doc, "1"), "extract", [])
            await cache.put(cache_key("rtm", doc), "rtm", {})
        removed = await cache.invalidate_document("doc1")
        return removed, sorted(store.cache)

    removed, remaining = asyncio.run(scenario())
    assert removed == 3
    assert remaining == ["extract:doc10:1", "parse:doc10", "rtm:doc10"]


def test_lookup_counts_hits():
    async def scenario():
        store = InMemoryStore()
        document = await add_document(store)
        cache = CacheLayer(store)
        key = cache_key("topics", document.id)
        miss = await cache.lookup(key)
        await cache.put(key, "topics", {"topics": []})
        await cache.lookup(key)
        hit = await cache.lookup(key)
        return miss, hit

    miss, hit = asyncio.run(scenario())
    assert miss is None
    assert hit.hit_count == 2
