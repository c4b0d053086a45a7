"""Token pricing and the append-only usage log."""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Tuple

from regextract.config import settings
from regextract.llm.completion import Completion
from regextract.models.usage import UsageRecord
from regextract.storage.base import Store

logger = logging.getLogger(__name__)

CACHE_MODEL = "cache"


def cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    pricing: Optional[Dict[str, Tuple[float, float]]] = None,
) -> float:
    """Price a call in USD from per-million-token input/output rates.

    Unknown models are billed at the most expensive configured rate so spend
    is never under-reported.
    """
    table = pricing if pricing is not None else settings.model_pricing
    rates = table.get(model)
    if rates is None:
        if not table:
            return 0.0
        rates = max(table.values(), key=lambda pair: pair[0] + pair[1])
        logger.warning("No pricing for model %s; using the highest configured rate", model)
    input_rate, output_rate = rates
    return (max(input_tokens, 0) / 1_000_000) * input_rate + (
        max(output_tokens, 0) / 1_000_000
    ) * output_rate


def elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class UsageLogger:
    """Appends one ``UsageRecord`` per completion call or cache hit."""

    def __init__(self, store: Store, pricing: Optional[Dict[str, Tuple[float, float]]] = None):
        self.store = store
        self.pricing = pricing

    async def log(
        self,
        document_id: Optional[str],
        operation: str,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost: float = 0.0,
        cache_hit: bool = False,
        duration_ms: int = 0,
    ) -> UsageRecord:
        record = UsageRecord(
            document_id=document_id,
            operation=operation,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            cache_hit=cache_hit,
            duration_ms=duration_ms,
        )
        await self.store.append_usage(record)
        return record

    async def log_completion(
        self,
        document_id: Optional[str],
        operation: str,
        completion: Completion,
        started: float,
    ) -> float:
        """Log a billed call and return its cost."""
        call_cost = cost(
            completion.model, completion.input_tokens, completion.output_tokens, self.pricing
        )
        await self.log(
            document_id,
            operation,
            completion.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            cost=call_cost,
            duration_ms=elapsed_ms(started),
        )
        return call_cost

    async def log_cache_hit(self, document_id: str, operation: str, started: float) -> None:
        await self.log(
            document_id, operation, CACHE_MODEL, cache_hit=True, duration_ms=elapsed_ms(started)
        )

    async def document_cost(self, document_id: str) -> float:
        return max(await self.store.sum_cost(document_id), 0.0)
