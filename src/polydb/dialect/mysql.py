"""
MySQL dialect.

Uses aiomysql through SQLAlchemy (`mysql+aiomysql`).
"""
from typing import TYPE_CHECKING, Any

from polydb.dialect.base import RelationalDialect, register_dialect
from polydb.sql import quote_identifier as sql_quote_identifier
from polydb.types import ColumnDefinition

if TYPE_CHECKING:
    from polydb.options import AdapterSettings, ConnectionConfig


@register_dialect('mysql')
class MySQLDialect(RelationalDialect):
    """MySQL syntax and connection settings.
    """

    async_driver = 'mysql+aiomysql'
    placeholder_style = 'format'
    explain_prefix = 'EXPLAIN FORMAT=JSON '
    default_port = 3306

    type_map = {
        'string': 'VARCHAR(255)',
        'text': 'TEXT',
        'integer': 'INT',
        'bigint': 'BIGINT',
        'decimal': 'DECIMAL(10,2)',
        'float': 'FLOAT',
        'double': 'DOUBLE',
        'boolean': 'BOOLEAN',
        'date': 'DATE',
        'datetime': 'DATETIME',
        'timestamp': 'TIMESTAMP',
        'json': 'JSON',
        'blob': 'BLOB',
        'uuid': 'CHAR(36)',
    }

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for MySQL."""
        return 'mysql'

    def get_url_query(self, config: 'ConnectionConfig',
                      settings: 'AdapterSettings') -> dict[str, str]:
        return {'charset': 'utf8mb4'}

    def get_engine_kwargs(self, config: 'ConnectionConfig',
                          settings: 'AdapterSettings') -> dict[str, Any]:
        kwargs = super().get_engine_kwargs(config, settings)
        connect_args: dict[str, Any] = {'connect_timeout': settings.connect_timeout}
        if config.ssl:
            connect_args['ssl'] = self.ssl_context()
        kwargs['connect_args'] = connect_args
        return kwargs

    def quote_identifier(self, identifier: str) -> str:
        return sql_quote_identifier(identifier, '`')

    def limit_clause(self, limit: int, offset: int | None = None) -> str:
        if offset:
            return f'LIMIT {int(offset)}, {int(limit)}'
        return f'LIMIT {int(limit)}'

    def date_format(self, fmt: str, expression: str = '?') -> str:
        return f"DATE_FORMAT({expression}, '{fmt}')"

    def concat(self, *columns: str) -> str:
        return f'CONCAT({", ".join(columns)})'

    def substring(self, column: str, start: int, length: int | None = None) -> str:
        if length:
            return f'SUBSTRING({column}, {start}, {length})'
        return f'SUBSTRING({column}, {start})'

    def current_timestamp(self) -> str:
        return 'NOW()'

    def auto_increment(self) -> str:
        return 'AUTO_INCREMENT'

    def create_table_syntax(self, table: str, columns: list[ColumnDefinition]) -> str:
        defs = []
        for col in columns:
            definition = f'{self.quote_identifier(col.name)} {self.column_type(col)}'
            if not col.nullable:
                definition += ' NOT NULL'
            if col.is_auto_increment:
                definition += f' {self.auto_increment()}'
            if col.default_value is not None:
                definition += f' DEFAULT {self.render_default(col.default_value)}'
            if col.comment:
                definition += f' COMMENT {self.render_default(col.comment)}'
            defs.append(definition)

        primary_keys = [self.quote_identifier(c.name) for c in columns if c.is_primary_key]
        if primary_keys:
            defs.append(f'PRIMARY KEY ({", ".join(primary_keys)})')

        body = ',\n  '.join(defs)
        return f'CREATE TABLE {self.quote_identifier(table)} (\n  {body}\n)'

    def list_databases_sql(self) -> str:
        return ('SELECT SCHEMA_NAME AS name FROM information_schema.SCHEMATA '
                'ORDER BY SCHEMA_NAME')

    def table_stats_sql(self) -> str:
        return """
SELECT TABLE_NAME AS name,
       TABLE_ROWS AS row_count,
       DATA_LENGTH + INDEX_LENGTH AS size,
       ENGINE AS engine,
       TABLE_COLLATION AS collation,
       TABLE_COMMENT AS comment
FROM information_schema.TABLES
WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'
"""

    def default_schema(self, config: 'ConnectionConfig') -> str | None:
        return config.database

    # full-text search

    def _match(self, columns: list[str]) -> str:
        quoted = ', '.join(self.quote_identifier(c) for c in columns)
        return f'MATCH({quoted}) AGAINST (%s IN NATURAL LANGUAGE MODE)'

    def full_text_search_sql(self, table: str, columns: list[str], text: str,
                             language: str = 'english') -> tuple[str, tuple]:
        """Natural language MATCH ... AGAINST; needs a FULLTEXT index on exactly `columns`.

        The language comes from the index's parser, so `language` is unused.
        """
        match = self._match(columns)
        sql = (f'SELECT *, {match} AS relevance_score FROM {self.quote_identifier(table)} '
               f'WHERE {match} ORDER BY relevance_score DESC')
        return sql, (text, text)

    def full_text_index_sql(self, table: str, columns: list[str],
                            language: str = 'english') -> str:
        name = self.quote_identifier(self.full_text_index_name(table, columns))
        quoted = ', '.join(self.quote_identifier(c) for c in columns)
        return f'CREATE FULLTEXT INDEX {name} ON {self.quote_identifier(table)} ({quoted})'
