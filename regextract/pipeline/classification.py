"""Obligation enrichment: bindingness, stakeholders, implementation and dates.

Two strategies share one merge step:

``batched``
    one quality-model call per ``classification_batch_size`` obligations,
    answers matched back by obligation id.
``fan_out``
    three fast-model agents per obligation run concurrently; a dimension
    whose agent fails falls back to its defaults without affecting the
    other two.

Each batch is written back to the store as soon as it finishes, so a crash
halfway through keeps everything classified up to that point.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from regextract.config import settings
from regextract.errors import CompletionError, MalformedOutputError
from regextract.llm.accounting import UsageLogger
from regextract.llm.prompts import (
    build_batch_classification_prompt,
    build_classification_agent_prompt,
    build_implementation_agent_prompt,
    build_stakeholder_agent_prompt,
)
from regextract.llm.retry import RetryPolicy
from regextract.models.obligation import (
    BatchClassification,
    ClassificationResult,
    ImplementationResult,
    Obligation,
    StakeholderResult,
)
from regextract.pipeline.dates import reconcile_commencement_date
from regextract.storage.base import Store
from regextract.utils.json_repair import parse_json

logger = logging.getLogger(__name__)

STAGE = "classification"
R = TypeVar("R", bound=BaseModel)
Sleep = Callable[[float], Awaitable[None]]


class ClassificationSummary(BaseModel):
    obligations: List[Obligation] = Field(default_factory=list)
    classified: int = 0
    defaulted: int = 0
    skipped: int = 0
    cost: float = 0.0


def merge_results(
    obligation: Obligation,
    classification: ClassificationResult,
    stakeholders: StakeholderResult,
    implementation: ImplementationResult,
) -> Dict[str, Any]:
    """Fields to write back onto ``obligation`` for one set of results."""
    text = f"{obligation.extracted_text}\n{obligation.context}".strip()
    dates = reconcile_commencement_date(implementation, text)
    return {
        "obligation_type": classification.obligation_type,
        "confidence": classification.confidence,
        "stakeholders": stakeholders.stakeholders,
        "impacted_systems": stakeholders.impacted_systems,
        "implementation_type": implementation.implementation_type,
        "estimated_effort": implementation.estimated_effort,
        "commencement_date": dates.commencement_date,
        "commencement_date_text": dates.commencement_date_text,
        "date_confidence": dates.date_confidence,
        "classification_reasoning": classification.reasoning or None,
        "stakeholder_reasoning": stakeholders.reasoning or None,
        "implementation_reasoning": implementation.reasoning or None,
        "classified": True,
    }


def parse_batch_response(text: str) -> Dict[str, BatchClassification]:
    """Map obligation id to its entry; entries without a usable id are dropped."""
    data = parse_json(text, shape="object")
    items: Any = None
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        items = data.get("classifications")
        if not isinstance(items, list):
            if "id" in data:
                items = [data]
            else:
                items = next((value for value in data.values() if isinstance(value, list)), None)
    if not isinstance(items, list):
        raise MalformedOutputError("No classification list in response", raw_text=text)

    entries: Dict[str, BatchClassification] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            entry = BatchClassification.model_validate(item)
        except ValidationError as exc:
            logger.debug("Dropping classification entry: %s", exc)
            continue
        if entry.id:
            entries[entry.id] = entry
    return entries


def parse_agent_response(text: str, result_type: Type[R]) -> R:
    data = parse_json(text, shape="object")
    if isinstance(data, list):
        data = next((item for item in data if isinstance(item, dict)), None)
    if not isinstance(data, dict):
        raise MalformedOutputError("Expected a JSON object", raw_text=text)
    return result_type.model_validate(data)


class ObligationClassifier:
    def __init__(
        self,
        completion: RetryPolicy,
        usage: UsageLogger,
        store: Store,
        mode: Optional[str] = None,
        batch_size: Optional[int] = None,
        fan_out_batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        fast_model: Optional[str] = None,
        quality_model: Optional[str] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.completion = completion
        self.usage = usage
        self.store = store
        self.mode = mode or settings.classification_mode
        self.batch_size = batch_size or settings.classification_batch_size
        self.fan_out_batch_size = fan_out_batch_size or settings.fan_out_batch_size
        self.batch_delay = settings.batch_delay_seconds if batch_delay is None else batch_delay
        self.fast_model = fast_model or settings.model_fast
        self.quality_model = quality_model or settings.model_quality
        self.sleep = sleep

    async def classify(
        self,
        document_id: str,
        obligations: Sequence[Obligation],
        document_title: Optional[str] = None,
    ) -> ClassificationSummary:
        if self.mode not in ("batched", "fan_out"):
            raise ValueError(f"Unknown classification mode: {self.mode}")
        summary = ClassificationSummary()
        size = self.batch_size if self.mode == "batched" else self.fan_out_batch_size
        batches = [obligations[i : i + size] for i in range(0, len(obligations), size)]
        logger.info(
            "Classifying %s obligations of %s in %s %s batches",
            len(obligations),
            document_id,
            len(batches),
            self.mode,
        )
        for index, batch in enumerate(batches):
            if index:
                await self.sleep(self.batch_delay)
            if self.mode == "batched":
                await self._classify_batch(document_id, batch, document_title, summary)
            else:
                await self._fan_out_batch(document_id, batch, summary)
        logger.info(
            "Classified %s obligations of %s (%s defaulted, %s skipped)",
            summary.classified,
            document_id,
            summary.defaulted,
            summary.skipped,
        )
        return summary

    async def _persist(self, obligation: Obligation, fields: Dict[str, Any], summary: ClassificationSummary) -> None:
        updated = await self.store.update_obligation(obligation.id, **fields)
        summary.obligations.append(updated)
        summary.classified += 1

    async def _classify_batch(
        self,
        document_id: str,
        batch: Sequence[Obligation],
        document_title: Optional[str],
        summary: ClassificationSummary,
    ) -> None:
        started = time.perf_counter()
        completion = await self.completion.complete(
            build_batch_classification_prompt(batch, document_title),
            max_output_tokens=settings.classification_max_output_tokens,
            model=self.quality_model,
        )
        summary.cost += await self.usage.log_completion(document_id, STAGE, completion, started)
        try:
            entries = parse_batch_response(completion.text)
        except MalformedOutputError as exc:
            logger.warning(
                "Skipping classification batch of %s obligations: %s. Preview: %s",
                len(batch),
                exc,
                exc.preview,
            )
            summary.skipped += len(batch)
            return

        for obligation in batch:
            entry = entries.get(obligation.id)
            if entry is None:
                logger.info("No classification returned for %s; applying defaults", obligation.id)
                summary.defaulted += 1
                results = (ClassificationResult(), StakeholderResult(), ImplementationResult())
            else:
                results = entry.as_results()
            await self._persist(obligation, merge_results(obligation, *results), summary)

    async def _fan_out_batch(
        self, document_id: str, batch: Sequence[Obligation], summary: ClassificationSummary
    ) -> None:
        outcomes = await asyncio.gather(
            *(self._classify_one(document_id, obligation) for obligation in batch)
        )
        for obligation, (results, cost, defaulted) in zip(batch, outcomes):
            summary.cost += cost
            if defaulted:
                summary.defaulted += 1
            await self._persist(obligation, merge_results(obligation, *results), summary)

    async def _classify_one(
        self, document_id: str, obligation: Obligation
    ) -> Tuple[Tuple[ClassificationResult, StakeholderResult, ImplementationResult], float, bool]:
        text, context = obligation.extracted_text, obligation.context
        agents = (
            (build_classification_agent_prompt(text, context), ClassificationResult),
            (build_stakeholder_agent_prompt(text, context), StakeholderResult),
            (build_implementation_agent_prompt(text, context), ImplementationResult),
        )
        outcomes = await asyncio.gather(
            *(self._run_agent(document_id, prompt, result_type) for prompt, result_type in agents),
            return_exceptions=True,
        )
        results: List[BaseModel] = []
        total_cost = 0.0
        defaulted = False
        for (_, result_type), outcome in zip(agents, outcomes):
            if isinstance(outcome, CompletionError):
                logger.warning(
                    "%s agent failed for %s: %s", result_type.__name__, obligation.id, outcome
                )
                results.append(result_type())
                defaulted = True
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result, cost, parsed = outcome
                total_cost += cost
                defaulted = defaulted or not parsed
                results.append(result)
        return tuple(results), total_cost, defaulted  # type: ignore[return-value]

    async def _run_agent(
        self, document_id: str, prompt: str, result_type: Type[R]
    ) -> Tuple[R, float, bool]:
        started = time.perf_counter()
        completion = await self.completion.complete(
            prompt, max_output_tokens=settings.agent_max_output_tokens, model=self.fast_model
        )
        cost = await self.usage.log_completion(document_id, STAGE, completion, started)
        try:
            return parse_agent_response(completion.text, result_type), cost, True
        except (MalformedOutputError, ValidationError) as exc:
            logger.warning("Unparseable %s output: %s", result_type.__name__, exc)
            return result_type(), cost, False
