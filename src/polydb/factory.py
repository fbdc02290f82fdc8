"""
Adapter factory: creation, caching, health checks and eviction.

The factory is an ordinary object owned by whoever builds it (one per
process in production, one per test in the test suite); nothing here is
module-global. It caches at most one adapter per key, where the key is
`'<engine type>:<connection id>'`.

Each cache entry holds the adapter together with its `ConnectionMetrics`,
so metrics are created and dropped in lockstep with the adapter. Creation
and eviction for a key run under that key's `asyncio.Lock`: a second
`get_adapter` for a key that is being built waits for the first one and
then finds it cached. A key's lock is forgotten once nothing holds or
awaits it, so the lock table only grows with concurrent traffic.

Evicting only removes the cache entry and disconnects the adapter; callers
that already hold a reference finish their in-flight call and then see
`ConnectionFailure` on the next one.
"""
import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any, Self

from polydb.adapters import ADAPTER_CONSTRUCTORS, DatabaseAdapter
from polydb.exceptions import ConfigurationError
from polydb.options import DEFAULT_PORTS, DOCUMENT_DRIVERS, RELATIONAL_DRIVERS
from polydb.options import AdapterSettings, ConnectionConfig, EngineType
from polydb.options import parse_connection_string_driver
from polydb.types import ConnectionMetrics, PoolStatistics

logger = logging.getLogger(__name__)

AdapterConstructor = Callable[[ConnectionConfig, AdapterSettings], DatabaseAdapter]

_ENGINE_DRIVERS = {
    EngineType.RELATIONAL: RELATIONAL_DRIVERS,
    EngineType.DOCUMENT: DOCUMENT_DRIVERS,
}

_ENGINE_DEFAULT_PORTS = {
    EngineType.RELATIONAL: DEFAULT_PORTS['postgresql'],
    EngineType.DOCUMENT: DEFAULT_PORTS['mongodb'],
}


@dataclass
class _Entry:
    adapter: DatabaseAdapter
    metrics: ConnectionMetrics


def adapter_key(connection_id: str, engine_type: EngineType | str) -> str:
    """Return the cache key for a connection id and engine type."""
    return f'{EngineType(engine_type).value}:{connection_id}'


class AdapterFactory:
    """Creates, caches and evicts adapters.

    Usage:
        async with AdapterFactory() as factory:
            adapter = await factory.get_adapter(config)
            result = await adapter.execute_query('select 1')
    """

    def __init__(self, settings: AdapterSettings | None = None,
                 constructors: dict[EngineType, AdapterConstructor] | None = None,
                 clock: Callable[[], float] = time.time) -> None:
        self.settings = settings or AdapterSettings()
        self.constructors = dict(constructors or ADAPTER_CONSTRUCTORS)
        self.clock = clock
        self._entries: dict[str, _Entry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None,
                        exc_tb: Any | None) -> None:
        await self.remove_all_adapters()

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for one key, creating it on first use."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _in_flight(self, key: str) -> bool:
        return self._lock_users.get(key, 0) > 0

    def _build(self, config: ConnectionConfig) -> DatabaseAdapter:
        constructor = self.constructors.get(config.engine_type)
        if constructor is None:
            raise ConfigurationError(f'No adapter for engine type: {config.engine_type}')
        return constructor(config, self.settings)

    async def _evict(self, key: str) -> None:
        """Drop a cache entry and disconnect its adapter. Caller holds the key lock."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        try:
            await entry.adapter.disconnect()
        except Exception as exc:
            logger.warning(f'Error disconnecting evicted adapter {key}: {exc}')
        logger.info(f'Evicted adapter {key}')

    # adapters

    async def get_adapter(self, config: ConnectionConfig) -> DatabaseAdapter:
        """Return a live adapter for `config`, building it if needed.

        A cached adapter is health-checked first; if the check fails, or the config
        differs from the one it was built from, it is evicted and rebuilt.

        Raises
            ConfigurationError: The config is invalid (no network attempt)
            ConnectionFailure: The engine could not be reached
        """
        errors = self.validate_connection_config(config)
        if errors:
            raise ConfigurationError('; '.join(errors))

        key = config.key
        async with self._key_lock(key):
            entry = self._entries.get(key)
            if entry is not None:
                entry.metrics.last_used = self.clock()
                if entry.adapter.config != config:
                    logger.info(f'Connection config changed for {key}; rebuilding adapter')
                    await self._evict(key)
                elif await entry.adapter.test_connection():
                    return entry.adapter
                else:
                    logger.warning(f'Cached adapter {key} failed health check; rebuilding')
                    await self._evict(key)

            adapter = self._build(config)
            try:
                await adapter.connect()
            except Exception as exc:
                logger.error(f'Failed to create adapter {key}: {exc}')
                raise

            now = self.clock()
            self._entries[key] = _Entry(adapter, ConnectionMetrics(created_at=now, last_used=now))
            logger.info(f'Cached new adapter {key}')
            return adapter

    async def test_connection(self, config: ConnectionConfig) -> bool:
        """Connect a temporary adapter, check it and close it. Never raises."""
        if self.validate_connection_config(config):
            return False
        adapter = None
        try:
            adapter = self._build(config)
            await adapter.connect()
            return await adapter.test_connection()
        except Exception as exc:
            logger.warning(f'Connection test failed for {config.key}: {exc}')
            return False
        finally:
            if adapter is not None:
                await adapter.disconnect()

    async def remove_adapter(self, connection_id: str) -> int:
        """Evict every cached adapter for a connection id; return the count."""
        suffix = f':{connection_id}'
        keys = [key for key in self._entries if key.endswith(suffix)]
        for key in keys:
            async with self._key_lock(key):
                await self._evict(key)
        return len(keys)

    async def remove_all_adapters(self) -> None:
        """Evict every cached adapter."""
        for key in list(self._entries):
            async with self._key_lock(key):
                await self._evict(key)

    async def cleanup_idle_connections(self, idle_timeout_ms: float | None = None) -> int:
        """Evict adapters not used for longer than `idle_timeout_ms`.

        Defaults to `settings.idle_timeout`. Keys that are being created or
        health checked right now are left alone.

        Returns
            Number of adapters evicted
        """
        if idle_timeout_ms is None:
            idle_timeout_ms = self.settings.idle_timeout * 1000
        now = self.clock()

        def is_idle(entry: _Entry) -> bool:
            return (now - entry.metrics.last_used) * 1000 > idle_timeout_ms

        stale = [key for key, entry in self._entries.items() if is_idle(entry)]
        evicted = 0
        for key in stale:
            if self._in_flight(key):
                logger.debug(f'Skipping idle cleanup of {key}: request in flight')
                continue
            async with self._key_lock(key):
                entry = self._entries.get(key)
                if entry is not None and is_idle(entry):
                    await self._evict(key)
                    evicted += 1
        if evicted:
            logger.info(f'Cleaned up {evicted} idle adapter(s)')
        return evicted

    # metrics

    def record_query(self, connection_id: str, engine_type: EngineType | str) -> None:
        """Count a successful query against a cached adapter."""
        entry = self._entries.get(adapter_key(connection_id, engine_type))
        if entry is None:
            logger.debug(f'No cached adapter to record query for {connection_id}')
            return
        entry.metrics.query_count += 1
        entry.metrics.last_used = self.clock()

    def record_error(self, connection_id: str, engine_type: EngineType | str) -> None:
        """Count a failed call against a cached adapter."""
        entry = self._entries.get(adapter_key(connection_id, engine_type))
        if entry is None:
            logger.debug(f'No cached adapter to record error for {connection_id}')
            return
        entry.metrics.error_count += 1
        entry.metrics.last_used = self.clock()

    def get_metrics(self, key: str) -> ConnectionMetrics | None:
        """Return a copy of the metrics for a cache key."""
        entry = self._entries.get(key)
        return replace(entry.metrics) if entry else None

    def get_pool_statistics(self) -> PoolStatistics:
        by_type: dict[str, int] = {t.value: 0 for t in self.constructors}
        for entry in self._entries.values():
            engine = entry.adapter.engine_type.value
            by_type[engine] = by_type.get(engine, 0) + 1
        return PoolStatistics(
            total_connections=len(self._entries),
            active_connections=sum(1 for e in self._entries.values() if e.adapter.is_live),
            connections_by_type=by_type,
            total_queries=sum(e.metrics.query_count for e in self._entries.values()),
            total_errors=sum(e.metrics.error_count for e in self._entries.values()),
        )

    def get_active_connections(self) -> list[str]:
        """Return the keys of cached, live adapters."""
        return [key for key, entry in self._entries.items() if entry.adapter.is_live]

    def get_connection_status(self, connection_id: str) -> dict[str, dict[str, Any]]:
        """Return state and metrics for every cached adapter of a connection id."""
        suffix = f':{connection_id}'
        return {
            key: {
                'state': entry.adapter.state.value,
                'created_at': entry.metrics.created_at,
                'last_used': entry.metrics.last_used,
                'query_count': entry.metrics.query_count,
                'error_count': entry.metrics.error_count,
            }
            for key, entry in self._entries.items() if key.endswith(suffix)
        }

    # configuration helpers

    def get_supported_engine_types(self) -> list[EngineType]:
        return [t for t in EngineType if t in self.constructors]

    def get_supported_drivers(self) -> list[str]:
        return [d for t in self.get_supported_engine_types() for d in _ENGINE_DRIVERS[t]]

    def get_default_port(self, engine: EngineType | str) -> int:
        """Default port for a driver name or an engine type."""
        if isinstance(engine, str) and engine.lower() in DEFAULT_PORTS:
            return DEFAULT_PORTS[engine.lower()]
        try:
            return _ENGINE_DEFAULT_PORTS[EngineType(engine)]
        except ValueError:
            raise ConfigurationError(f'Unsupported engine type: {engine}') from None

    def validate_connection_config(self, config: ConnectionConfig) -> list[str]:
        """Return validation errors for a config; empty when valid. Never raises."""
        errors = []
        if not config.id:
            errors.append('Connection id is required')
        if not config.name or not str(config.name).strip():
            errors.append('Connection name is required')

        engine_type = config.engine_type
        if not engine_type:
            errors.append('Engine type is required')
            return errors
        if not isinstance(engine_type, EngineType) or engine_type not in self.constructors:
            errors.append(f'Unsupported engine type: {engine_type}')
            return errors

        driver = config.drivername
        if driver not in _ENGINE_DRIVERS[engine_type]:
            if driver in RELATIONAL_DRIVERS + DOCUMENT_DRIVERS:
                errors.append(f'Driver {driver} is not a {engine_type.value} engine')
            else:
                errors.append(f'Unsupported driver: {driver}')
            return errors

        if config.connection_string:
            try:
                target = parse_connection_string_driver(config.connection_string)
            except ConfigurationError as exc:
                errors.append(str(exc))
            else:
                if target != driver:
                    errors.append(f'Connection string is for {target}, not {driver}')
            return errors

        if driver != 'sqlite':
            if not config.host:
                errors.append('Host is required')
            if not isinstance(config.port, int) or not 1 <= config.port <= 65535:
                errors.append('Port must be between 1 and 65535')
            if not config.username:
                errors.append('Username is required')
        if not config.database:
            if driver == 'sqlite':
                errors.append('Database file path is required')
            else:
                errors.append('Database name is required')
        return errors
