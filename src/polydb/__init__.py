"""
Async database adapters with one data-access contract for PostgreSQL, MySQL,
SQLite and MongoDB.

Adapters are usually obtained from an `AdapterFactory`, which caches one
live adapter per connection:

    async with AdapterFactory() as factory:
        adapter = await factory.get_adapter(config)
        result = await adapter.execute_query('select * from users where id = %s', (1,))

`connect()` builds and connects a standalone adapter that the caller owns.
"""
__version__ = '0.1.0'

from collections.abc import Mapping
from typing import Any

from polydb.adapters import ADAPTER_CONSTRUCTORS, AdapterState, DatabaseAdapter
from polydb.adapters import MongoAdapter, SQLAlchemyAdapter
from polydb.dialect import SQLDialect, get_available_dialects, get_dialect
from polydb.exceptions import ConfigurationError, ConnectionFailure, DatabaseError
from polydb.exceptions import DbConnectionError, StatementError
from polydb.exceptions import TransactionAbortError, UnsupportedQueryError
from polydb.factory import AdapterFactory
from polydb.options import AdapterSettings, ConnectionConfig, EngineType
from polydb.service import ConnectionRegistry, DatabaseService
from polydb.service import InMemoryConnectionRegistry
from polydb.translator import MongoOperation, translate
from polydb.types import ColumnDefinition, ColumnInfo, ConnectionMetrics, FieldInfo
from polydb.types import ColumnStatistics, DataStatistics, IndexInfo, PoolStatistics
from polydb.types import QueryResult, Statement, TableInfo


async def connect(config: ConnectionConfig | Mapping[str, Any],
                  settings: AdapterSettings | None = None) -> DatabaseAdapter:
    """Build and connect an adapter outside any factory.

    The caller owns the adapter and must `disconnect()` it (or use it as an
    async context manager).
    """
    if not isinstance(config, ConnectionConfig):
        config = ConnectionConfig.from_dict(dict(config))
    constructor = ADAPTER_CONSTRUCTORS.get(config.engine_type)
    if constructor is None:
        raise ConfigurationError(f'Unsupported engine type: {config.engine_type}')
    adapter = constructor(config, settings)
    await adapter.connect()
    return adapter


__all__ = [
    'connect',
    'AdapterFactory',
    'AdapterSettings',
    'AdapterState',
    'ConnectionConfig',
    'EngineType',
    'DatabaseAdapter',
    'SQLAlchemyAdapter',
    'MongoAdapter',
    'SQLDialect',
    'get_dialect',
    'get_available_dialects',
    'DatabaseService',
    'ConnectionRegistry',
    'InMemoryConnectionRegistry',
    'MongoOperation',
    'translate',
    'QueryResult',
    'FieldInfo',
    'TableInfo',
    'ColumnInfo',
    'IndexInfo',
    'ColumnDefinition',
    'Statement',
    'ConnectionMetrics',
    'PoolStatistics',
    'ColumnStatistics',
    'DataStatistics',
    'DatabaseError',
    'ConfigurationError',
    'ConnectionFailure',
    'StatementError',
    'UnsupportedQueryError',
    'TransactionAbortError',
    'DbConnectionError',
]
