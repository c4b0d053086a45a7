"""LLM integration helpers."""

from .accounting import UsageLogger, cost
from .completion import Completion, CompletionService, Fatal, Ok, RateLimited
from .openai_client import OpenAICompletionService
from .retry import RetryPolicy

__all__ = [
    "Completion",
    "CompletionService",
    "Fatal",
    "Ok",
    "OpenAICompletionService",
    "RateLimited",
    "RetryPolicy",
    "UsageLogger",
    "cost",
]
