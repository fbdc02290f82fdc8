"""
Base dialect interface.

A dialect turns generic type names, pagination, string functions and table
definitions into one engine's syntax. The syntax methods are pure: no state,
no I/O and no validation of caller input beyond composition. Identifiers
coming from untrusted input must be checked by the caller.

Relational dialects also carry the connection plumbing the SQLAlchemy adapter
needs (URL, engine arguments, paramstyle), the way each engine's quirks are
kept in one place.
"""
import re
import ssl as ssl_module
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from polydb.exceptions import ConfigurationError, UnsupportedQueryError
from polydb.options import EngineType
from polydb.sql import quote_identifier as sql_quote_identifier
from polydb.sql import standardize_placeholders
from polydb.types import ColumnDefinition

if TYPE_CHECKING:
    from polydb.options import AdapterSettings, ConnectionConfig

# Registry of dialect name -> dialect class
# Defined here to avoid circular imports (concrete dialects import from base)
_DIALECT_REGISTRY: dict[str, type['SQLDialect']] = {}

_LANGUAGE = re.compile(r'^[A-Za-z_]+$')


def check_language(language: str) -> str:
    """Return a text search language name, rejecting anything but letters and underscores."""
    if not _LANGUAGE.match(language or ''):
        raise ValueError(f'Invalid text search language: {language!r}')
    return language


def escape_like(text: str, escape: str = '!') -> str:
    """Escape LIKE wildcards so `text` matches literally."""
    return (text.replace(escape, escape * 2)
            .replace('%', f'{escape}%')
            .replace('_', f'{escape}_'))


def register_dialect(name: str):
    """Decorator to register a dialect class under a driver name.

    Usage:
        @register_dialect('postgresql')
        class PostgresDialect(RelationalDialect):
            ...
    """
    def decorator(cls: type['SQLDialect']) -> type['SQLDialect']:
        _DIALECT_REGISTRY[name] = cls
        return cls
    return decorator


class SQLDialect(ABC):
    """Syntax generation for one engine.
    """

    engine_type: EngineType = EngineType.RELATIONAL

    # generic name -> native type; subclasses fill this in
    type_map: dict[str, str] = {}

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'mongodb')."""

    def map_data_type(self, generic_type: str) -> str:
        """Map a generic type name to the native type.

        Unknown names are returned unchanged so native types pass through.
        """
        return self.type_map.get(generic_type.lower(), generic_type)

    @abstractmethod
    def limit_clause(self, limit: int, offset: int | None = None) -> str:
        """Return the pagination fragment."""

    @abstractmethod
    def date_format(self, fmt: str, expression: str = '?') -> Any:
        """Return an expression formatting `expression` as text using `fmt`."""

    def quote_identifier(self, identifier: str) -> str:
        """Quote a database identifier.

        Default implementation uses standard SQL double-quote escaping.
        Override in subclasses if the engine requires different quoting.
        """
        return sql_quote_identifier(identifier)

    @abstractmethod
    def concat(self, *columns: str) -> Any:
        """Return a string concatenation expression."""

    @abstractmethod
    def substring(self, column: str, start: int, length: int | None = None) -> Any:
        """Return a substring expression (1-based start)."""

    @abstractmethod
    def current_timestamp(self) -> str:
        """Return the expression for the current timestamp."""

    @abstractmethod
    def auto_increment(self) -> str:
        """Return the auto increment keyword."""

    @abstractmethod
    def create_table_syntax(self, table: str, columns: list[ColumnDefinition]) -> Any:
        """Render a table (or collection) definition."""


class RelationalDialect(SQLDialect):
    """SQL dialect used by the SQLAlchemy adapter.
    """

    engine_type = EngineType.RELATIONAL

    #: SQLAlchemy async driver name, e.g. `postgresql+psycopg`
    async_driver: str = ''

    #: paramstyle family understood by the driver: `format` or `qmark`
    placeholder_style: str = 'format'

    supports_returning: bool = False

    explain_prefix: str = 'EXPLAIN '

    default_port: int = 0

    def standardize_sql(self, sql: str, has_params: bool = True) -> str:
        """Convert placeholders to this dialect's paramstyle.

        Percent signs in literals are escaped only when parameters are
        bound; without parameters the statement is sent verbatim.
        """
        return standardize_placeholders(sql, self.placeholder_style,
                                        escape_percent=has_params)

    def build_connection_url(self, config: 'ConnectionConfig',
                             settings: 'AdapterSettings') -> sa.URL:
        """Build the SQLAlchemy async URL for a connection.

        A raw connection string wins over the discrete fields; its driver
        part is replaced with the async driver.
        """
        if config.connection_string:
            try:
                url = sa.make_url(config.connection_string)
            except (sa.exc.ArgumentError, ValueError) as exc:
                raise ConfigurationError(f'Malformed connection string: {exc}') from exc
            return url.set(drivername=self.async_driver)
        return sa.URL.create(
            drivername=self.async_driver,
            username=config.username,
            password=config.password,
            host=config.host,
            port=config.port or self.default_port,
            database=config.database,
            query=self.get_url_query(config, settings),
        )

    def get_url_query(self, config: 'ConnectionConfig',
                      settings: 'AdapterSettings') -> dict[str, str]:
        """Return extra URL query arguments."""
        return {}

    def get_engine_kwargs(self, config: 'ConnectionConfig',
                          settings: 'AdapterSettings') -> dict[str, Any]:
        """Return `create_async_engine` kwargs for this dialect.

        Default is a bounded pool with pre-ping.
        """
        return {
            'pool_size': settings.pool_size,
            'max_overflow': settings.max_overflow,
            'pool_recycle': settings.pool_recycle,
            'pool_timeout': settings.pool_timeout,
            'pool_pre_ping': True,
        }

    #: emit BEGIN ourselves from the engine's `begin` event
    explicit_begin: bool = False

    #: driver fills `cursor.lastrowid` after an INSERT
    reports_lastrowid: bool = True

    def configure_connection(self, dbapi_connection: Any, config: 'ConnectionConfig',
                             settings: 'AdapterSettings') -> None:
        """Configure a freshly opened DBAPI connection.

        Default is a no-op.
        """

    def begin_transaction(self, sync_connection: Any) -> None:
        """Start a transaction on a sync connection when `explicit_begin` is set."""
        sync_connection.exec_driver_sql('BEGIN')

    def list_databases_sql(self) -> str | None:
        """Return SQL listing databases (one `name` column), or None."""
        return None

    def table_stats_sql(self) -> str | None:
        """Return SQL reporting per-table statistics for one schema.

        The query takes the schema as its single positional parameter and
        returns `name`, `row_count`, `size`, `engine`, `collation` and
        `comment` columns (missing columns are allowed).
        """
        return None

    def default_schema(self, config: 'ConnectionConfig') -> str | None:
        """Return the schema `get_tables` lists when none is given."""
        return None

    def database_name(self, config: 'ConnectionConfig') -> str:
        """Name reported by `get_databases` when there is no listing query."""
        return config.database

    def ssl_context(self) -> ssl_module.SSLContext:
        return ssl_module.create_default_context()

    # full-text search

    def full_text_index_name(self, table: str, columns: list[str]) -> str:
        return f'idx_{table}_{"_".join(columns)}_fts'

    def full_text_search_sql(self, table: str, columns: list[str], text: str,
                             language: str = 'english') -> tuple[str, tuple]:
        """Return a search statement over `columns` and its parameters.

        Default is a case-insensitive substring match on any column, for
        engines without a full-text index the adapter can rely on.
        """
        pattern = f'%{escape_like(text.lower())}%'
        conditions = ' OR '.join(f"LOWER({self.quote_identifier(c)}) LIKE %s ESCAPE '!'"
                                 for c in columns)
        sql = f'SELECT * FROM {self.quote_identifier(table)} WHERE {conditions}'
        return sql, (pattern,) * len(columns)

    def full_text_index_sql(self, table: str, columns: list[str],
                            language: str = 'english') -> str:
        """Return DDL creating a full-text index over `columns`."""
        raise UnsupportedQueryError(f'{self.dialect_name} has no full-text index')

    # create table helpers

    def column_type(self, col: ColumnDefinition) -> str:
        """Return the native type for a column definition.

        Generic names are mapped; `max_length`, `precision` and `scale`
        refine string and decimal types. Native names pass through.
        """
        generic = col.type.lower()
        if generic not in self.type_map:
            return col.type
        if generic == 'string' and col.max_length:
            return f'VARCHAR({col.max_length})'
        if generic == 'decimal' and col.precision:
            return f'{self.type_map["decimal"].split("(")[0]}({col.precision},{col.scale or 0})'
        return self.map_data_type(generic)

    def render_default(self, value: Any) -> str:
        """Render a column default as SQL."""
        if isinstance(value, bool):
            return 'TRUE' if value else 'FALSE'
        if isinstance(value, (int, float)):
            return str(value)
        text = str(value)
        if text.upper() in {'CURRENT_TIMESTAMP', 'NULL', self.current_timestamp().upper()}:
            return text
        return "'" + text.replace("'", "''") + "'"
