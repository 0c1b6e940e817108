"""Cache providers.

MemoryCacheProvider is an in-process TTL cache used by the search service to
keep recent query embeddings.  For multi-worker deployments, swap in a
network-backed adapter implementing ICacheProvider.
"""

from src.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
