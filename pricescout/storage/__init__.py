"""Cache and source configuration storage."""

from .cache import InMemoryCache, KeyValueCache, RedisCache, create_cache
from .source_store import InMemorySourceStore, SourceStore, YamlSourceStore

__all__ = [
    "InMemoryCache",
    "InMemorySourceStore",
    "KeyValueCache",
    "RedisCache",
    "SourceStore",
    "YamlSourceStore",
    "create_cache",
]
