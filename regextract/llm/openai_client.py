"""Thin wrapper around the OpenAI Responses API."""

from __future__ import annotations

import base64
import logging
from typing import Any, Optional

from openai import APIError, AsyncOpenAI, RateLimitError

from regextract.config import settings
from regextract.errors import ConfigurationError
from regextract.llm.completion import Completion, CompletionOutcome, Fatal, Ok, RateLimited
from regextract.llm.retry import parse_retry_after

logger = logging.getLogger(__name__)


class OpenAICompletionService:
    """Completion service backed by the async OpenAI SDK.

    SDK-level retries are disabled; rate limits are reported as
    ``RateLimited`` outcomes and handled by ``RetryPolicy``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: float = 0.1,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.temperature = temperature
        if client is not None:
            self.client = client
            return
        api_key = api_key or settings.openai_api_key
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured in the environment.")
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or settings.openai_base_url,
            timeout=timeout or settings.openai_timeout_seconds,
            max_retries=0,
        )

    @staticmethod
    def build_content(prompt: str, attachment: Optional[bytes]) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = []
        if attachment:
            encoded = base64.b64encode(attachment).decode("ascii")
            content.append(
                {
                    "type": "input_file",
                    "filename": "document.pdf",
                    "file_data": f"data:application/pdf;base64,{encoded}",
                }
            )
        content.append({"type": "input_text", "text": prompt})
        return content

    async def invoke(
        self,
        prompt: str,
        attachment: Optional[bytes],
        max_output_tokens: int,
        model: str,
    ) -> CompletionOutcome:
        try:
            response = await self.client.responses.create(
                model=model,
                temperature=self.temperature,
                max_output_tokens=max_output_tokens,
                input=[{"role": "user", "content": self.build_content(prompt, attachment)}],
            )
        except RateLimitError as exc:
            return RateLimited(retry_after=_retry_after(exc), message=str(exc))
        except APIError as exc:
            logger.error("Completion request failed: %s", exc)
            return Fatal(exc)

        usage = getattr(response, "usage", None)
        truncated = getattr(response, "status", None) == "incomplete"
        if truncated:
            logger.warning("Completion from %s hit the output limit; output is truncated", model)
        return Ok(
            Completion(
                text=self._extract_text(response),
                input_tokens=int(getattr(usage, "input_tokens", 0) or 0),
                output_tokens=int(getattr(usage, "output_tokens", 0) or 0),
                model=model,
                truncated=truncated,
            )
        )

    @staticmethod
    def _extract_text(response) -> str:
        chunks: list[str] = []
        for item in response.output or []:
            for content in getattr(item, "content", None) or []:
                content_type = getattr(content, "type", None)
                content_text = getattr(content, "text", None)
                if isinstance(content, dict):
                    content_type = content.get("type", content_type)
                    content_text = content.get("text", content_text)
                if content_type in {"output_text", "text"} and content_text:
                    chunks.append(str(content_text))
        return "".join(chunks).strip()


def _retry_after(exc: RateLimitError) -> Optional[float]:
    headers = getattr(getattr(exc, "response", None), "headers", None)
    if not headers:
        return None
    return parse_retry_after(headers.get("retry-after"))
