"""
Service layer between callers (e.g. an HTTP API) and the adapter factory.

Looks connection configs up in a registry, obtains adapters from the factory
and records query and error metrics for every call, so the adapters
themselves never touch metrics.
"""
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Protocol, TypeVar

from polydb.adapters import DatabaseAdapter
from polydb.exceptions import ConfigurationError
from polydb.factory import AdapterFactory
from polydb.options import ConnectionConfig
from polydb.types import ColumnDefinition, ColumnInfo, DataStatistics, IndexInfo
from polydb.types import PoolStatistics, QueryResult, TableInfo

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ConnectionRegistry(Protocol):
    """Read access to stored connection configs."""

    def get(self, connection_id: str) -> ConnectionConfig | None:
        ...


class InMemoryConnectionRegistry:
    """Connection registry backed by a dict.
    """

    def __init__(self, configs: Sequence[ConnectionConfig] = ()) -> None:
        self._configs: dict[str, ConnectionConfig] = {c.id: c for c in configs}

    def get(self, connection_id: str) -> ConnectionConfig | None:
        return self._configs.get(str(connection_id))

    def add(self, config: ConnectionConfig) -> None:
        self._configs[config.id] = config

    def remove(self, connection_id: str) -> ConnectionConfig | None:
        return self._configs.pop(str(connection_id), None)

    def list(self) -> list[ConnectionConfig]:
        return list(self._configs.values())


class DatabaseService:
    """Data access by connection id.
    """

    def __init__(self, factory: AdapterFactory, registry: ConnectionRegistry) -> None:
        self.factory = factory
        self.registry = registry

    def _config(self, connection_id: str) -> ConnectionConfig:
        config = self.registry.get(connection_id)
        if config is None:
            raise ConfigurationError(f'Unknown connection: {connection_id}')
        return config

    async def _call(self, connection_id: str,
                    func: Callable[[DatabaseAdapter], Awaitable[T]]) -> T:
        """Run `func` on the connection's adapter and record the outcome."""
        config = self._config(connection_id)
        adapter = await self.factory.get_adapter(config)
        try:
            result = await func(adapter)
        except Exception:
            self.factory.record_error(config.id, config.engine_type)
            raise
        self.factory.record_query(config.id, config.engine_type)
        return result

    async def create_connection(self, config: ConnectionConfig) -> ConnectionConfig:
        """Validate and test a config, then register it.

        Raises
            ConfigurationError: Invalid config, or the connection test failed
        """
        errors = self.factory.validate_connection_config(config)
        if errors:
            raise ConfigurationError('; '.join(errors))
        if not await self.factory.test_connection(config):
            raise ConfigurationError(f'Cannot connect to {config.name}')
        if not hasattr(self.registry, 'add'):
            raise ConfigurationError('Connection registry is read-only')
        self.registry.add(config)
        logger.info(f'Registered connection {config.key}')
        return config

    async def remove_connection(self, connection_id: str) -> None:
        await self.factory.remove_adapter(connection_id)
        if hasattr(self.registry, 'remove'):
            self.registry.remove(connection_id)

    async def test_connection(self, connection_id: str) -> bool:
        return await self.factory.test_connection(self._config(connection_id))

    async def execute_query(self, connection_id: str, text: str,
                            params: Any = None) -> QueryResult:
        return await self._call(connection_id, lambda a: a.execute_query(text, params))

    async def execute_transaction(self, connection_id: str,
                                  statements: Sequence[Any]) -> list[QueryResult]:
        return await self._call(connection_id, lambda a: a.execute_transaction(statements))

    async def explain_query(self, connection_id: str, text: str,
                            params: Any = None) -> QueryResult:
        return await self._call(connection_id, lambda a: a.explain_query(text, params))

    async def get_databases(self, connection_id: str) -> list[str]:
        return await self._call(connection_id, lambda a: a.get_databases())

    async def get_tables(self, connection_id: str, database: str | None = None) -> list[TableInfo]:
        return await self._call(connection_id, lambda a: a.get_tables(database))

    async def get_table_schema(self, connection_id: str, table: str) -> list[ColumnInfo]:
        return await self._call(connection_id, lambda a: a.get_table_schema(table))

    async def get_indexes(self, connection_id: str, table: str) -> list[IndexInfo]:
        return await self._call(connection_id, lambda a: a.get_indexes(table))

    async def insert(self, connection_id: str, table: str,
                     data: Mapping[str, Any]) -> QueryResult:
        return await self._call(connection_id, lambda a: a.insert(table, data))

    async def update(self, connection_id: str, table: str, data: Mapping[str, Any],
                     where: Mapping[str, Any] | None = None) -> QueryResult:
        return await self._call(connection_id, lambda a: a.update(table, data, where))

    async def delete(self, connection_id: str, table: str,
                     where: Mapping[str, Any]) -> QueryResult:
        return await self._call(connection_id, lambda a: a.delete(table, where))

    async def create_table(self, connection_id: str, table: str,
                           columns: Sequence[ColumnDefinition]) -> QueryResult:
        return await self._call(connection_id, lambda a: a.create_table(table, columns))

    async def get_data_statistics(self, connection_id: str, table: str,
                                  columns: Sequence[str] | None = None) -> DataStatistics:
        return await self._call(connection_id, lambda a: a.get_data_statistics(table, columns))

    async def full_text_search(self, connection_id: str, table: str, text: str,
                               columns: Sequence[str] | None = None,
                               language: str = 'english') -> QueryResult:
        return await self._call(
            connection_id, lambda a: a.full_text_search(table, text, columns, language))

    async def create_full_text_index(self, connection_id: str, table: str,
                                     columns: Sequence[str],
                                     language: str = 'english') -> QueryResult:
        return await self._call(
            connection_id, lambda a: a.create_full_text_index(table, columns, language))

    def get_pool_statistics(self) -> PoolStatistics:
        return self.factory.get_pool_statistics()
