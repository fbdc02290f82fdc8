"""
Caching for schema metadata.

Introspection results (`get_table_schema`, `get_indexes`) are cached per
adapter in cachetools TTL caches. Entries expire on their own; adapters also
clear them after DDL they issue themselves and drop their caches when they
disconnect. Keys are table names exactly as given: on engines with
case-sensitive names `users` and `Users` are different tables.
"""
import functools
import logging
import threading

import cachetools

logger = logging.getLogger(__name__)


class Cache:
    """Cache manager for the polydb package.

    Thread-safe singleton that manages all TTL caches by name.
    """

    _instance = None
    _caches: dict[str, cachetools.TTLCache] = {}
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'Cache':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def get_cache(self, name: str, maxsize: int = 100, ttl: int = 300) -> cachetools.TTLCache:
        """Get or create a TTL cache with the given name.

        The size and ttl only apply when the cache is first created.
        """
        if name not in self._caches:
            with self._lock:
                if name not in self._caches:
                    self._caches[name] = cachetools.TTLCache(maxsize=maxsize, ttl=ttl)
        return self._caches[name]

    def clear_all(self) -> None:
        """Clear all managed caches."""
        with self._lock:
            for cache in self._caches.values():
                cache.clear()

    def clear_namespace(self, namespace: str) -> None:
        """Clear every cache that belongs to one adapter."""
        suffix = f'_{namespace}'
        with self._lock:
            for name, cache in self._caches.items():
                if name.endswith(suffix):
                    cache.clear()

    def drop_namespace(self, namespace: str) -> None:
        """Remove every cache that belongs to one adapter from the registry."""
        suffix = f'_{namespace}'
        with self._lock:
            for name in [n for n in self._caches if n.endswith(suffix)]:
                del self._caches[name]
                logger.debug(f'Dropped cache {name}')

    def clear_for_table(self, table_name: str, namespace: str | None = None) -> None:
        """Clear cache entries related to a specific table.

        Args:
            table_name: Name of the table to clear cache entries for
            namespace: Limit clearing to one adapter's caches
        """
        with self._lock:
            for name, cache in self._caches.items():
                if namespace is not None and not name.endswith(f'_{namespace}'):
                    continue
                if cache.pop(table_name, None) is not None:
                    logger.debug(f'Cleared cache entry {table_name} in {name}')


def cacheable_introspection(cache_name: str, maxsize: int = 100):
    """Decorator for caching async adapter introspection results.

    The wrapped coroutine takes the table name as its first argument. The
    cache is keyed by table name and lives in a namespace owned by the
    adapter (`self.cache_namespace`); its ttl comes from the adapter
    settings. `bypass_cache=True` skips the lookup and refreshes the entry.
    """
    def decorator(method):
        @functools.wraps(method)
        async def wrapper(self, table, *args, bypass_cache=False, **kwargs):
            ttl = self.settings.schema_cache_ttl
            if ttl <= 0:
                return await method(self, table, *args, **kwargs)

            cache = Cache.get_instance().get_cache(
                f'{cache_name}_{self.cache_namespace}', maxsize=maxsize, ttl=ttl)
            if not bypass_cache and table in cache:
                logger.debug(f'Cache hit for {method.__name__}({table})')
                return cache[table]

            if bypass_cache:
                logger.debug(f'Bypassing cache for {method.__name__}({table})')
            else:
                logger.debug(f'Cache miss for {method.__name__}({table})')
            result = await method(self, table, *args, **kwargs)
            cache[table] = result
            return result

        return wrapper
    return decorator
