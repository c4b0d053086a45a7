"""Persistence and caching."""

from .base import Store
from .cache import CacheLayer, cache_key, section_prefix
from .memory import InMemoryStore

__all__ = ["CacheLayer", "InMemoryStore", "Store", "cache_key", "section_prefix"]
