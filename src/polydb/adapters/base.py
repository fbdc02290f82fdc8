"""
Adapter contract shared by the relational and document engines.

An adapter owns exactly one native handle (an engine with its pool, or a
client) built from one `ConnectionConfig`. Its lifecycle is

    unconnected --connect()--> live --disconnect()--> closed

`connect()` either leaves the adapter live after a successful ping or
raises and leaves it unconnected with nothing retained. A closed adapter is
never reused; the factory builds a new one.

Concrete adapters implement the `_open`, `_ping` and `_release` hooks plus
the data operations. Every data operation starts with `_ensure_live()`.
"""
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Self

from polydb.cache import Cache
from polydb.dialect import SQLDialect, get_dialect
from polydb.exceptions import ConfigurationError, ConnectionFailure
from polydb.options import AdapterSettings, ConnectionConfig, EngineType
from polydb.types import ColumnDefinition, ColumnInfo, DataStatistics, IndexInfo
from polydb.types import QueryResult, TableInfo

logger = logging.getLogger(__name__)

#: number of `(value, count)` pairs reported per column by `get_data_statistics`
TOP_VALUE_COUNT = 5


class AdapterState(str, Enum):
    """Lifecycle state of an adapter."""
    UNCONNECTED = 'unconnected'
    LIVE = 'live'
    CLOSED = 'closed'


def elapsed_ms(start: float) -> float:
    """Milliseconds since a `time.perf_counter()` reading."""
    return (time.perf_counter() - start) * 1000


class DatabaseAdapter(ABC):
    """Uniform async data-access contract over one database connection.
    """

    engine_type: EngineType

    def __init__(self, config: ConnectionConfig, settings: AdapterSettings | None = None,
                 dialect: SQLDialect | None = None) -> None:
        self.config = config
        self.settings = settings or AdapterSettings()
        self.dialect = dialect or get_dialect(config.drivername)
        if self.dialect.engine_type is not self.engine_type:
            raise ConfigurationError(
                f'Driver {config.drivername} is not a {self.engine_type.value} engine')
        self.state = AdapterState.UNCONNECTED
        self.calls = 0
        self.time = 0.0

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.config.key}, state={self.state.value})'

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None,
                        exc_tb: Any | None) -> None:
        await self.disconnect()

    @property
    def is_live(self) -> bool:
        return self.state is AdapterState.LIVE

    @property
    def cache_namespace(self) -> str:
        """Name of this adapter's schema caches; unique per instance."""
        return f'{self.config.key}@{id(self):x}'

    def _ensure_live(self) -> None:
        if self.state is not AdapterState.LIVE:
            raise ConnectionFailure(
                f'Adapter for connection {self.config.key} is {self.state.value}')

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics (elapsed in milliseconds)
        """
        self.time += elapsed
        self.calls += 1

    def get_query_stats(self) -> dict[str, Any]:
        """Return execution counters for this adapter."""
        return {
            'query_count': self.calls,
            'total_time': self.time,
            'average_time': self.time / self.calls if self.calls else 0.0,
        }

    # lifecycle

    async def connect(self, config: ConnectionConfig | None = None) -> None:
        """Open the native handle and ping it once.

        Raises
            ConnectionFailure: The engine is unreachable, refused the
                credentials or timed out; or the adapter is closed.
        """
        if self.state is AdapterState.LIVE:
            return
        if self.state is AdapterState.CLOSED:
            raise ConnectionFailure(f'Adapter for connection {self.config.key} is closed')
        if config is not None:
            self.config = config

        try:
            await self._open()
            await self._ping()
        except Exception as exc:
            await self._discard()
            if isinstance(exc, (ConfigurationError, ConnectionFailure)):
                raise
            logger.error(f'Failed to connect {self.config.key}: {exc}')
            raise ConnectionFailure(str(exc)) from exc

        self.state = AdapterState.LIVE
        logger.info(f'Connected {self.config.key} ({self.dialect.dialect_name})')

    async def disconnect(self) -> None:
        """Release all native resources; calling it again is a no-op."""
        if self.state is AdapterState.CLOSED:
            return
        was_live = self.state is AdapterState.LIVE
        self.state = AdapterState.CLOSED
        Cache.get_instance().drop_namespace(self.cache_namespace)
        if was_live:
            await self._release()
            logger.info(f'Disconnected {self.config.key}: {self.calls} queries in '
                        f'{self.time:.1f}ms')

    async def test_connection(self) -> bool:
        """Ping the live handle. Never raises and never changes state."""
        if self.state is not AdapterState.LIVE:
            return False
        try:
            await self._ping()
        except Exception as exc:
            logger.warning(f'Health check failed for {self.config.key}: {exc}')
            return False
        return True

    async def _discard(self) -> None:
        """Release a handle left over by a failed connect."""
        try:
            await self._release()
        except Exception as exc:
            logger.debug(f'Error releasing handle after failed connect: {exc}')

    @abstractmethod
    async def _open(self) -> None:
        """Create the native handle."""

    @abstractmethod
    async def _ping(self) -> None:
        """Run a trivial round trip; raise on failure."""

    @abstractmethod
    async def _release(self) -> None:
        """Close the native handle; must tolerate a handle that was never opened."""

    # queries

    @abstractmethod
    async def execute_query(self, text: str, params: Any = None) -> QueryResult:
        """Execute one statement and return a normalized result."""

    @abstractmethod
    async def execute_transaction(self, statements: Sequence[Any]) -> list[QueryResult]:
        """Execute statements in order, atomically.

        Raises
            TransactionAbortError: A statement failed; nothing was applied.
        """

    @abstractmethod
    async def explain_query(self, text: str, params: Any = None) -> QueryResult:
        """Return the engine's plan for a statement."""

    # introspection

    @abstractmethod
    async def get_databases(self) -> list[str]:
        """List database names visible to this connection."""

    @abstractmethod
    async def get_tables(self, database: str | None = None) -> list[TableInfo]:
        """List tables (or collections)."""

    @abstractmethod
    async def get_table_schema(self, table: str) -> list[ColumnInfo]:
        """Describe the columns of a table."""

    @abstractmethod
    async def get_indexes(self, table: str) -> list[IndexInfo]:
        """Describe the indexes of a table."""

    # row helpers

    @abstractmethod
    async def insert(self, table: str, data: Mapping[str, Any]) -> QueryResult:
        """Insert one row."""

    @abstractmethod
    async def update(self, table: str, data: Mapping[str, Any],
                     where: Mapping[str, Any] | None = None) -> QueryResult:
        """Update the rows matching `where` (column equality); all rows without it."""

    @abstractmethod
    async def delete(self, table: str, where: Mapping[str, Any]) -> QueryResult:
        """Delete the rows matching `where` (column equality).

        An empty `where` is rejected; there is no delete-everything shortcut.
        """

    @abstractmethod
    async def create_table(self, table: str, columns: Sequence[ColumnDefinition]) -> QueryResult:
        """Create a table (or collection) from column definitions."""

    # statistics and search

    @abstractmethod
    async def get_data_statistics(self, table: str,
                                  columns: Sequence[str] | None = None) -> DataStatistics:
        """Profile a table: total rows plus counts, range and top values per column.

        `columns` limits the profile to the named columns; all columns when
        omitted. Unknown names raise ValueError.
        """

    @abstractmethod
    async def full_text_search(self, table: str, text: str,
                               columns: Sequence[str] | None = None,
                               language: str = 'english') -> QueryResult:
        """Return the rows whose text columns match `text`."""

    @abstractmethod
    async def create_full_text_index(self, table: str, columns: Sequence[str],
                                     language: str = 'english') -> QueryResult:
        """Create the engine's full-text index over `columns`."""


def require_data(table: str, data: Mapping[str, Any], what: str = 'data') -> None:
    """Reject empty mutation payloads before anything reaches the engine."""
    if not table:
        raise ValueError('Table name must not be empty')
    if not data:
        raise ValueError(f'{what} must not be empty')


def pick_columns(table: str, available: Sequence[ColumnInfo],
                 names: Sequence[str] | None) -> list[ColumnInfo]:
    """Select columns by name, in the order asked for; all of them without names."""
    if not names:
        return list(available)
    by_name = {c.name: c for c in available}
    missing = [name for name in names if name not in by_name]
    if missing:
        raise ValueError(f'Unknown column(s) for {table}: {", ".join(missing)}')
    return [by_name[name] for name in names]


__all__ = [
    'AdapterState',
    'DatabaseAdapter',
    'elapsed_ms',
    'require_data',
    'pick_columns',
    'TOP_VALUE_COUNT',
]
