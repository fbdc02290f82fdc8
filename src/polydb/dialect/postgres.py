"""
PostgreSQL dialect.

Uses psycopg 3 in async mode through SQLAlchemy (`postgresql+psycopg`).
"""
from typing import TYPE_CHECKING

from polydb.dialect.base import RelationalDialect, check_language, register_dialect
from polydb.types import ColumnDefinition

if TYPE_CHECKING:
    from polydb.options import AdapterSettings, ConnectionConfig


@register_dialect('postgresql')
class PostgresDialect(RelationalDialect):
    """PostgreSQL syntax and connection settings.
    """

    async_driver = 'postgresql+psycopg'
    placeholder_style = 'format'
    supports_returning = True
    reports_lastrowid = False
    explain_prefix = 'EXPLAIN (FORMAT JSON) '
    default_port = 5432

    type_map = {
        'string': 'VARCHAR(255)',
        'text': 'TEXT',
        'integer': 'INTEGER',
        'bigint': 'BIGINT',
        'decimal': 'NUMERIC(10,2)',
        'float': 'REAL',
        'double': 'DOUBLE PRECISION',
        'boolean': 'BOOLEAN',
        'date': 'DATE',
        'datetime': 'TIMESTAMP',
        'timestamp': 'TIMESTAMP WITH TIME ZONE',
        'json': 'JSONB',
        'blob': 'BYTEA',
        'uuid': 'UUID',
    }

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def get_url_query(self, config: 'ConnectionConfig',
                      settings: 'AdapterSettings') -> dict[str, str]:
        query = {'connect_timeout': str(settings.connect_timeout)}
        if config.ssl:
            query['sslmode'] = 'require'
        return query

    def limit_clause(self, limit: int, offset: int | None = None) -> str:
        if offset:
            return f'LIMIT {int(limit)} OFFSET {int(offset)}'
        return f'LIMIT {int(limit)}'

    def date_format(self, fmt: str, expression: str = '?') -> str:
        return f"TO_CHAR({expression}, '{fmt}')"

    def concat(self, *columns: str) -> str:
        return ' || '.join(columns)

    def substring(self, column: str, start: int, length: int | None = None) -> str:
        if length:
            return f'SUBSTRING({column} FROM {start} FOR {length})'
        return f'SUBSTRING({column} FROM {start})'

    def current_timestamp(self) -> str:
        return 'CURRENT_TIMESTAMP'

    def auto_increment(self) -> str:
        return 'SERIAL'

    def create_table_syntax(self, table: str, columns: list[ColumnDefinition]) -> str:
        """Render CREATE TABLE.

        Auto increment integer columns become SERIAL or BIGSERIAL and the
        primary key is declared as a table constraint.
        """
        defs = []
        for col in columns:
            native = self.column_type(col)
            if col.is_auto_increment and 'INT' in native.upper():
                native = 'BIGSERIAL' if 'BIGINT' in native.upper() else 'SERIAL'
            definition = f'{self.quote_identifier(col.name)} {native}'
            if not col.nullable:
                definition += ' NOT NULL'
            if col.default_value is not None and not col.is_auto_increment:
                definition += f' DEFAULT {self.render_default(col.default_value)}'
            defs.append(definition)

        primary_keys = [self.quote_identifier(c.name) for c in columns if c.is_primary_key]
        if primary_keys:
            defs.append(f'PRIMARY KEY ({", ".join(primary_keys)})')

        body = ',\n  '.join(defs)
        return f'CREATE TABLE {self.quote_identifier(table)} (\n  {body}\n)'

    def list_databases_sql(self) -> str:
        return ('SELECT datname AS name FROM pg_database '
                'WHERE datistemplate = false ORDER BY datname')

    def table_stats_sql(self) -> str:
        return """
SELECT c.relname AS name,
       c.reltuples::bigint AS row_count,
       pg_total_relation_size(c.oid) AS size,
       obj_description(c.oid, 'pg_class') AS comment
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE n.nspname = %s AND c.relkind IN ('r', 'p')
"""

    def default_schema(self, config: 'ConnectionConfig') -> str:
        return 'public'

    # full-text search

    def _tsvector(self, columns: list[str], language: str) -> str:
        # index and search must render the same expression for the GIN index to apply
        lang = check_language(language)
        parts = [f"to_tsvector('{lang}', COALESCE({self.quote_identifier(c)}, ''))"
                 for c in columns]
        return f'({" || ".join(parts)})'

    def full_text_search_sql(self, table: str, columns: list[str], text: str,
                             language: str = 'english') -> tuple[str, tuple]:
        """Match with `plainto_tsquery` and rank by `ts_rank` as `relevance_score`."""
        vector = self._tsvector(columns, language)
        query = f"plainto_tsquery('{check_language(language)}', %s)"
        sql = (f'SELECT *, ts_rank({vector}, {query}) AS relevance_score '
               f'FROM {self.quote_identifier(table)} WHERE {vector} @@ {query} '
               f'ORDER BY relevance_score DESC')
        return sql, (text, text)

    def full_text_index_sql(self, table: str, columns: list[str],
                            language: str = 'english') -> str:
        name = self.quote_identifier(self.full_text_index_name(table, columns))
        return (f'CREATE INDEX IF NOT EXISTS {name} ON {self.quote_identifier(table)} '
                f'USING GIN ({self._tsvector(columns, language)})')
