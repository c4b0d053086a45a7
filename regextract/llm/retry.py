"""Retry policy for rate-limited completion calls."""

from __future__ import annotations

import asyncio
import email.utils
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt
from tenacity.wait import wait_base

from regextract.config import settings
from regextract.errors import CompletionError
from regextract.llm.completion import Completion, CompletionOutcome, CompletionService, Fatal, Ok, RateLimited

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Convert a Retry-After header (seconds or HTTP date) into a delay in seconds."""
    if not value:
        return None
    try:
        delay = float(value)
    except ValueError:
        try:
            when = email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        delay = (when - datetime.now(timezone.utc)).total_seconds()
    return max(0.0, delay)


def _is_rate_limited(outcome: CompletionOutcome) -> bool:
    return isinstance(outcome, RateLimited)


class _LinearOrRetryAfter(wait_base):
    """``base * attempt``, stretched to the server's Retry-After hint when longer."""

    def __init__(self, base_delay: float) -> None:
        self.base_delay = base_delay

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.base_delay * retry_state.attempt_number
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            retry_after = getattr(outcome.result(), "retry_after", None)
            if retry_after is not None:
                delay = max(delay, retry_after)
        return delay


class RetryPolicy:
    """Re-invokes the completion service while it reports rate limiting.

    Upstream quotas reset on a per-minute timescale, so the delay grows
    linearly from a large base (``base_delay * attempt``). Any other failure
    is raised immediately as ``CompletionError``.
    """

    def __init__(
        self,
        service: CompletionService,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.service = service
        self.max_retries = settings.retry_max_attempts if max_retries is None else max_retries
        self.base_delay = settings.retry_base_delay_seconds if base_delay is None else base_delay
        self.sleep = sleep

    def _log_wait(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Rate limited. Waiting %.0fs (attempt %s/%s)",
            delay,
            retry_state.attempt_number,
            self.max_retries,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            sleep=self.sleep,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=_LinearOrRetryAfter(self.base_delay),
            retry=retry_if_result(_is_rate_limited),
            before_sleep=self._log_wait,
            # hand the last RateLimited back instead of raising RetryError
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )

    async def complete(
        self,
        prompt: str,
        attachment: Optional[bytes] = None,
        max_output_tokens: int = 16000,
        model: Optional[str] = None,
    ) -> Completion:
        model = model or settings.model_fast
        outcome = await self._retrying()(self.service.invoke, prompt, attachment, max_output_tokens, model)
        if isinstance(outcome, Ok):
            return outcome.completion
        if isinstance(outcome, Fatal):
            raise CompletionError(f"Completion failed: {outcome.error}") from outcome.error
        if isinstance(outcome, RateLimited):
            logger.error("Rate limit persisted after %s retries", self.max_retries)
            raise CompletionError(f"Rate limited after {self.max_retries} retries", rate_limited=True)
        raise CompletionError(f"Unexpected completion outcome: {outcome!r}")
