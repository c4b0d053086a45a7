"""Completion service contract and its explicit outcome types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Union


@dataclass(frozen=True)
class Completion:
    """Generated text plus the token counts it was billed for."""

    text: str
    input_tokens: int
    output_tokens: int
    model: str
    truncated: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class Ok:
    completion: Completion


@dataclass(frozen=True)
class RateLimited:
    retry_after: Optional[float] = None
    message: str = "rate limited"


@dataclass(frozen=True)
class Fatal:
    error: Exception


CompletionOutcome = Union[Ok, RateLimited, Fatal]


class CompletionService(Protocol):
    """Anything that can turn a prompt (and optional PDF) into text."""

    async def invoke(
        self,
        prompt: str,
        attachment: Optional[bytes],
        max_output_tokens: int,
        model: str,
    ) -> CompletionOutcome:
        ...
