"""
SQLite dialect.

Uses aiosqlite through SQLAlchemy (`sqlite+aiosqlite`). `database` is the
file path; `:memory:` databases share one connection through a StaticPool,
otherwise every pooled connection would see its own empty database.
"""
import logging
import os
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from polydb.dialect.base import RelationalDialect, register_dialect
from polydb.types import ColumnDefinition
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

if TYPE_CHECKING:
    from polydb.options import AdapterSettings, ConnectionConfig

logger = logging.getLogger(__name__)


@register_dialect('sqlite')
class SQLiteDialect(RelationalDialect):
    """SQLite syntax and connection settings.
    """

    async_driver = 'sqlite+aiosqlite'
    placeholder_style = 'qmark'
    explicit_begin = True
    explain_prefix = 'EXPLAIN QUERY PLAN '
    default_port = 0

    type_map = {
        'string': 'TEXT',
        'text': 'TEXT',
        'integer': 'INTEGER',
        'bigint': 'INTEGER',
        'decimal': 'REAL',
        'float': 'REAL',
        'double': 'REAL',
        'boolean': 'INTEGER',
        'date': 'TEXT',
        'datetime': 'TEXT',
        'timestamp': 'TEXT',
        'json': 'TEXT',
        'blob': 'BLOB',
        'uuid': 'TEXT',
    }

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def map_data_type(self, generic_type: str) -> str:
        """SQLite stores anything it does not recognize as TEXT."""
        return self.type_map.get(generic_type.lower(), 'TEXT')

    def column_type(self, col: ColumnDefinition) -> str:
        # type affinity makes length and precision meaningless
        if col.type.lower() in self.type_map:
            return self.type_map[col.type.lower()]
        return col.type

    def build_connection_url(self, config: 'ConnectionConfig',
                             settings: 'AdapterSettings') -> sa.URL:
        if config.connection_string:
            return super().build_connection_url(config, settings)
        return sa.URL.create(drivername=self.async_driver,
                             database=config.database or ':memory:')

    def get_engine_kwargs(self, config: 'ConnectionConfig',
                          settings: 'AdapterSettings') -> dict[str, Any]:
        if config.is_memory:
            return {'poolclass': StaticPool}
        kwargs = super().get_engine_kwargs(config, settings)
        kwargs['poolclass'] = AsyncAdaptedQueuePool
        kwargs['connect_args'] = {'timeout': settings.connect_timeout}
        return kwargs

    def configure_connection(self, dbapi_connection: Any, config: 'ConnectionConfig',
                             settings: 'AdapterSettings') -> None:
        """Enable foreign keys, and WAL journaling for file databases.

        The driver's implicit transaction handling is switched off so that
        BEGIN is issued by `begin_transaction` and DDL stays transactional.
        """
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute('PRAGMA foreign_keys=ON')
            if settings.sqlite_wal and not config.is_memory:
                cursor.execute('PRAGMA journal_mode=WAL')
        finally:
            cursor.close()
        logger.debug(f'Configured SQLite connection for {config.sqlite_path}')

    def database_name(self, config: 'ConnectionConfig') -> str:
        """SQLite has one database per file; report the file name."""
        if config.is_memory:
            return ':memory:'
        return os.path.basename(config.sqlite_path)

    def limit_clause(self, limit: int, offset: int | None = None) -> str:
        if offset:
            return f'LIMIT {int(limit)} OFFSET {int(offset)}'
        return f'LIMIT {int(limit)}'

    def date_format(self, fmt: str, expression: str = '?') -> str:
        return f"strftime('{fmt}', {expression})"

    def concat(self, *columns: str) -> str:
        return f'({" || ".join(columns)})'

    def substring(self, column: str, start: int, length: int | None = None) -> str:
        if length:
            return f'substr({column}, {start}, {length})'
        return f'substr({column}, {start})'

    def current_timestamp(self) -> str:
        return "datetime('now')"

    def auto_increment(self) -> str:
        return 'AUTOINCREMENT'

    def render_default(self, value: Any) -> str:
        if isinstance(value, bool):
            return '1' if value else '0'
        if str(value) == self.current_timestamp():
            return f'({value})'
        return super().render_default(value)

    def create_table_syntax(self, table: str, columns: list[ColumnDefinition]) -> str:
        """Render CREATE TABLE.

        A single primary key column is declared inline (so AUTOINCREMENT
        can follow it); a composite key becomes a table constraint.
        """
        primary_keys = [c for c in columns if c.is_primary_key]
        inline_pk = len(primary_keys) == 1

        defs = []
        for col in columns:
            definition = f'{self.quote_identifier(col.name)} {self.column_type(col)}'
            if col.is_primary_key and inline_pk:
                definition += ' PRIMARY KEY'
                if col.is_auto_increment:
                    definition += f' {self.auto_increment()}'
            if not col.nullable and not (col.is_primary_key and inline_pk):
                definition += ' NOT NULL'
            if col.default_value is not None and not col.is_auto_increment:
                definition += f' DEFAULT {self.render_default(col.default_value)}'
            defs.append(definition)

        if primary_keys and not inline_pk:
            names = ', '.join(self.quote_identifier(c.name) for c in primary_keys)
            defs.append(f'PRIMARY KEY ({names})')

        body = ',\n  '.join(defs)
        return f'CREATE TABLE {self.quote_identifier(table)} (\n  {body}\n)'
