"""Result caching with single-flight de-duplication."""

from .query_cache import CacheEntry, CacheKey, CacheLookup, QueryCache
from .single_flight import SingleFlight

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheLookup",
    "QueryCache",
    "SingleFlight",
]
