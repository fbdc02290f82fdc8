"""
Relational adapter on SQLAlchemy's asyncio extension.

One `AsyncEngine` per adapter holds a bounded pool (`pool_size`, default 10)
with pre-ping. Statements are sent as driver SQL (`exec_driver_sql`) after
their placeholders are rewritten into the driver's paramstyle, so callers
can write `%s`, `?`, `%(name)s` or `:name` against any engine. Values are
always bound, never interpolated.

Errors are classified by where they happen: failing to get a connection
from the pool is a `ConnectionFailure`; an engine rejecting a statement is a
`StatementError` carrying the driver's message verbatim, unless the driver
reports the connection as gone.
"""
import logging
import re
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import sqlalchemy as sa
from polydb.adapters.base import TOP_VALUE_COUNT, DatabaseAdapter, elapsed_ms
from polydb.adapters.base import pick_columns, require_data
from polydb.cache import Cache, cacheable_introspection
from polydb.dialect import RelationalDialect
from polydb.exceptions import ConnectionFailure, DatabaseError, StatementError
from polydb.exceptions import TransactionAbortError, native_message
from polydb.options import AdapterSettings, ConnectionConfig, EngineType
from polydb.sql import MUTATION_KEYWORDS, statement_keyword
from polydb.types import ColumnDefinition, ColumnInfo, ColumnStatistics, DataStatistics
from polydb.types import IndexInfo, QueryResult, TableInfo, as_statement, infer_fields
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

_DDL_KEYWORDS = frozenset({'create', 'alter', 'drop', 'rename', 'truncate'})

_NUMERIC_TYPE = re.compile(r'^(?:(?:TINY|SMALL|MEDIUM|BIG)?INT(?:EGER)?|NUMERIC|DECIMAL|REAL|FLOAT|DOUBLE)\b',
                           re.IGNORECASE)
_TEXT_TYPE = re.compile(r'CHAR|TEXT|CLOB|STRING', re.IGNORECASE)


class SQLAlchemyAdapter(DatabaseAdapter):
    """Adapter for PostgreSQL, MySQL and SQLite.
    """

    engine_type = EngineType.RELATIONAL
    dialect: RelationalDialect

    def __init__(self, config: ConnectionConfig, settings: AdapterSettings | None = None,
                 dialect: RelationalDialect | None = None,
                 engine_factory: Callable[..., AsyncEngine] = create_async_engine) -> None:
        super().__init__(config, settings, dialect)
        self.engine_factory = engine_factory
        self.engine: AsyncEngine | None = None

    # lifecycle hooks

    async def _open(self) -> None:
        url = self.dialect.build_connection_url(self.config, self.settings)
        engine_kwargs = self.dialect.get_engine_kwargs(self.config, self.settings)
        self.engine = self.engine_factory(url, **engine_kwargs)
        event.listen(self.engine.sync_engine, 'connect', self._on_connect)
        if self.dialect.explicit_begin:
            event.listen(self.engine.sync_engine, 'begin', self.dialect.begin_transaction)
        logger.debug(f'Created engine for {self.config.key} ({url.drivername})')

    def _on_connect(self, dbapi_connection: Any, connection_record: Any) -> None:
        self.dialect.configure_connection(dbapi_connection, self.config, self.settings)

    async def _ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.exec_driver_sql('SELECT 1')

    async def _release(self) -> None:
        if self.engine is not None:
            engine, self.engine = self.engine, None
            await engine.dispose()
            logger.debug(f'Disposed engine for {self.config.key}')

    async def _acquire(self) -> AsyncConnection:
        """Check a connection out of the pool."""
        self._ensure_live()
        try:
            return await self.engine.connect()
        except Exception as exc:
            raise ConnectionFailure(native_message(exc)) from exc

    # statement execution

    def _prepare(self, text: str, params: Any) -> tuple[str, tuple | dict | None]:
        """Return driver SQL and driver parameters.

        Without parameters the text is sent exactly as written.
        """
        if params is None:
            return text, None
        if isinstance(params, Mapping):
            args: tuple | dict = dict(params)
        elif isinstance(params, (list, tuple)):
            args = tuple(params)
        else:
            args = (params,)
        if not args:
            return text, None
        return self.dialect.standardize_sql(text, has_params=True), args

    async def _run(self, conn: AsyncConnection, text: str, params: Any) -> QueryResult:
        """Execute one statement on a checked-out connection."""
        sql, args = self._prepare(text, params)
        keyword = statement_keyword(text)

        start = time.perf_counter()
        try:
            if args is None:
                result = await conn.exec_driver_sql(
                    sql, execution_options={'no_parameters': True})
            else:
                result = await conn.exec_driver_sql(sql, args)
            columns = list(result.keys()) if result.returns_rows else []
            rows = [dict(zip(columns, row)) for row in result.all()] if columns else []
        except sa.exc.DBAPIError as exc:
            if exc.connection_invalidated:
                raise ConnectionFailure(native_message(exc)) from exc
            raise StatementError(native_message(exc), exc.orig) from exc
        except sa.exc.SQLAlchemyError as exc:
            raise StatementError(str(exc), exc) from exc
        elapsed = elapsed_ms(start)
        self.addcall(elapsed)
        logger.debug(f'Executed {keyword or "statement"} on {self.config.key} '
                     f'in {elapsed:.1f}ms')

        if keyword in _DDL_KEYWORDS:
            Cache.get_instance().clear_namespace(self.cache_namespace)

        if keyword in MUTATION_KEYWORDS:
            insert_id = None
            if keyword in {'insert', 'replace'}:
                insert_id = self._insert_id(result, rows)
            return QueryResult.for_mutation(result.rowcount, elapsed, insert_id=insert_id,
                                            rows=rows)
        if columns:
            return QueryResult.for_rows(rows, elapsed, fields=infer_fields(rows, columns))
        return QueryResult.for_mutation(result.rowcount, elapsed)

    def _insert_id(self, result: Any, rows: list[dict[str, Any]]) -> Any:
        if rows and 'id' in rows[0]:
            return rows[0]['id']
        if not self.dialect.reports_lastrowid:
            return None
        lastrowid = result.lastrowid
        return lastrowid or None

    async def execute_query(self, text: str, params: Any = None) -> QueryResult:
        """Execute one statement in its own transaction.

        Parameters
            text: SQL text with `%s`, `?`, `%(name)s` or `:name` placeholders
            params: Positional sequence, mapping or a single scalar
        """
        conn = await self._acquire()
        try:
            async with conn.begin():
                return await self._run(conn, text, params)
        finally:
            await conn.close()

    async def execute_transaction(self, statements: Sequence[Any]) -> list[QueryResult]:
        """Execute statements in order inside one transaction.

        On failure every earlier statement is rolled back and
        `TransactionAbortError` is raised with the failing statement's
        native message. A lost connection is raised as `ConnectionFailure`.
        """
        batch = [as_statement(s) for s in statements]
        conn = await self._acquire()
        try:
            trans = await conn.begin()
            results = []
            for index, stmt in enumerate(batch):
                try:
                    results.append(await self._run(conn, stmt.text, stmt.params))
                except DatabaseError as exc:
                    await self._rollback(conn, index)
                    if isinstance(exc, ConnectionFailure):
                        raise
                    raise TransactionAbortError(str(exc), index,
                                                getattr(exc, 'native', None)) from exc
            try:
                await trans.commit()
            except sa.exc.DBAPIError as exc:
                await self._rollback(conn, len(batch))
                raise TransactionAbortError(native_message(exc), len(batch), exc.orig) from exc
            logger.debug(f'Committed {len(batch)} statements on {self.config.key}')
            return results
        finally:
            await conn.close()

    async def _rollback(self, conn: AsyncConnection, index: int) -> None:
        """Roll back after statement `index` failed; a failed rollback is logged."""
        try:
            await conn.rollback()
            logger.info(f'Rolled back transaction on {self.config.key} '
                        f'after statement {index} failed')
        except Exception as exc:
            logger.error(f'Rollback failed on {self.config.key}: {exc}')

    async def explain_query(self, text: str, params: Any = None) -> QueryResult:
        return await self.execute_query(self.dialect.explain_prefix + text, params)

    # introspection

    async def _inspect(self, func: Callable[[sa.Inspector], Any]) -> Any:
        """Run `func` against a SQLAlchemy Inspector on a pooled connection."""
        conn = await self._acquire()
        try:
            return await conn.run_sync(lambda sync_conn: func(sa.inspect(sync_conn)))
        except sa.exc.DBAPIError as exc:
            if exc.connection_invalidated:
                raise ConnectionFailure(native_message(exc)) from exc
            raise StatementError(native_message(exc), exc.orig) from exc
        except sa.exc.NoSuchTableError as exc:
            raise StatementError(f'Table not found: {exc}', exc) from exc
        finally:
            await conn.close()

    async def get_databases(self) -> list[str]:
        sql = self.dialect.list_databases_sql()
        if sql is None:
            self._ensure_live()
            return [self.dialect.database_name(self.config)]
        result = await self.execute_query(sql)
        return [row['name'] for row in result.rows]

    async def get_tables(self, database: str | None = None) -> list[TableInfo]:
        """List tables and views.

        `database` names the schema to list (PostgreSQL defaults to
        `public`, MySQL to the connected database). Row counts and sizes
        are engine estimates where the engine keeps them.
        """
        schema = database or self.dialect.default_schema(self.config)

        def collect(inspector: sa.Inspector) -> tuple[list[str], list[str]]:
            return (inspector.get_table_names(schema=schema),
                    inspector.get_view_names(schema=schema))

        tables, views = await self._inspect(collect)

        stats: dict[str, dict[str, Any]] = {}
        stats_sql = self.dialect.table_stats_sql()
        if stats_sql and schema:
            result = await self.execute_query(stats_sql, (schema,))
            stats = {row['name']: row for row in result.rows}

        infos = []
        for name in tables:
            row = stats.get(name, {})
            infos.append(TableInfo(
                name=name,
                type='table',
                row_count=_as_int(row.get('row_count')),
                size=_as_int(row.get('size')),
                engine=row.get('engine'),
                collation=row.get('collation'),
                comment=row.get('comment') or None,
                schema=schema,
            ))
        infos.extend(TableInfo(name=name, type='view', schema=schema) for name in views)
        return infos

    @cacheable_introspection('table_schema')
    async def get_table_schema(self, table: str) -> list[ColumnInfo]:
        """Describe the columns of a table from the engine catalog.

        Pass `bypass_cache=True` to skip the schema cache.
        """
        is_sqlite = self.dialect.dialect_name == 'sqlite'

        def collect(inspector: sa.Inspector) -> list[ColumnInfo]:
            columns = inspector.get_columns(table)
            primary_keys = inspector.get_pk_constraint(table).get('constrained_columns') or []
            infos = []
            for col in columns:
                col_type = col['type']
                is_pk = col['name'] in primary_keys
                default = col.get('default')
                auto = (col.get('autoincrement') is True
                        or bool(col.get('identity'))
                        or str(default or '').startswith('nextval(')
                        or (is_sqlite and is_pk and len(primary_keys) == 1
                            and str(col_type).upper() == 'INTEGER'))
                infos.append(ColumnInfo(
                    name=col['name'],
                    type=str(col_type),
                    nullable=bool(col.get('nullable', True)) and not is_pk,
                    default_value=default,
                    is_primary_key=is_pk,
                    is_auto_increment=auto,
                    max_length=getattr(col_type, 'length', None),
                    precision=getattr(col_type, 'precision', None),
                    scale=getattr(col_type, 'scale', None),
                    comment=col.get('comment'),
                ))
            return infos

        return await self._inspect(collect)

    @cacheable_introspection('table_indexes')
    async def get_indexes(self, table: str) -> list[IndexInfo]:
        """Describe the primary key, indexes and unique constraints of a table.

        Pass `bypass_cache=True` to skip the schema cache.
        """
        def collect(inspector: sa.Inspector) -> list[IndexInfo]:
            infos: dict[str, IndexInfo] = {}
            pk = inspector.get_pk_constraint(table)
            if pk.get('constrained_columns'):
                name = pk.get('name') or 'PRIMARY'
                infos[name] = IndexInfo(name=name, columns=list(pk['constrained_columns']),
                                        is_unique=True, is_primary=True, type='primary')
            for idx in inspector.get_indexes(table):
                columns = [c for c in idx.get('column_names', []) if c is not None]
                columns = columns or [e for e in idx.get('expressions', []) if e]
                kind = (idx.get('dialect_options') or {}).get('postgresql_using') \
                    or idx.get('type') or 'index'
                infos.setdefault(idx['name'], IndexInfo(
                    name=idx['name'], columns=columns, is_unique=bool(idx.get('unique')),
                    is_primary=False, type=str(kind).lower()))
            for uc in inspector.get_unique_constraints(table):
                name = uc.get('name') or f'uq_{table}_{"_".join(uc["column_names"])}'
                infos.setdefault(name, IndexInfo(name=name, columns=list(uc['column_names']),
                                                 is_unique=True, is_primary=False, type='unique'))
            return list(infos.values())

        return await self._inspect(collect)

    # row helpers

    def _where_clause(self, where: Mapping[str, Any]) -> tuple[str, list[Any]]:
        parts, args = [], []
        for column, value in where.items():
            quoted = self.dialect.quote_identifier(column)
            if value is None:
                parts.append(f'{quoted} IS NULL')
            else:
                parts.append(f'{quoted} = %s')
                args.append(value)
        return ' AND '.join(parts), args

    async def insert(self, table: str, data: Mapping[str, Any]) -> QueryResult:
        """Insert one row; `insert_id` carries the generated key where known."""
        require_data(table, data)
        columns = ', '.join(self.dialect.quote_identifier(c) for c in data)
        placeholders = ', '.join(['%s'] * len(data))
        sql = f'INSERT INTO {self.dialect.quote_identifier(table)} ({columns}) VALUES ({placeholders})'
        if self.dialect.supports_returning:
            sql += ' RETURNING *'
        result = await self.execute_query(sql, tuple(data.values()))
        if result.insert_id is None and result.rows:
            schema = await self.get_table_schema(table)
            keys = [c.name for c in schema if c.is_primary_key]
            if len(keys) == 1:
                result.insert_id = result.rows[0].get(keys[0])
        return result

    async def update(self, table: str, data: Mapping[str, Any],
                     where: Mapping[str, Any] | None = None) -> QueryResult:
        require_data(table, data)
        assignments = ', '.join(f'{self.dialect.quote_identifier(c)} = %s' for c in data)
        sql = f'UPDATE {self.dialect.quote_identifier(table)} SET {assignments}'
        args = list(data.values())
        if where:
            clause, where_args = self._where_clause(where)
            sql += f' WHERE {clause}'
            args.extend(where_args)
        return await self.execute_query(sql, tuple(args))

    async def delete(self, table: str, where: Mapping[str, Any]) -> QueryResult:
        require_data(table, where, 'where')
        clause, args = self._where_clause(where)
        sql = f'DELETE FROM {self.dialect.quote_identifier(table)} WHERE {clause}'
        return await self.execute_query(sql, tuple(args) or None)

    async def create_table(self, table: str, columns: Sequence[ColumnDefinition]) -> QueryResult:
        if not columns:
            raise ValueError('columns must not be empty')
        ddl = self.dialect.create_table_syntax(table, list(columns))
        logger.info(f'Creating table {table} on {self.config.key}')
        return await self.execute_query(ddl)

    # statistics and search

    async def get_data_statistics(self, table: str,
                                  columns: Sequence[str] | None = None) -> DataStatistics:
        """Profile a table with plain aggregate queries, one pair per column.

        Averages are only computed for numeric columns. Most common values
        are ordered by frequency, ties by value.
        """
        schema = await self.get_table_schema(table)
        selected = pick_columns(table, schema, columns)
        quoted_table = self.dialect.quote_identifier(table)
        total = await self.execute_query(f'SELECT COUNT(*) AS total_rows FROM {quoted_table}')

        profiles = []
        for column in selected:
            col = self.dialect.quote_identifier(column.name)
            numeric = bool(_NUMERIC_TYPE.match(column.type))
            aggregates = [f'COUNT({col}) AS non_null_count',
                          f'COUNT(DISTINCT {col}) AS unique_count',
                          f'MIN({col}) AS min_value',
                          f'MAX({col}) AS max_value']
            if numeric:
                aggregates.append(f'AVG({col}) AS avg_value')
            summary = await self.execute_query(
                f'SELECT {", ".join(aggregates)} FROM {quoted_table}')
            common = await self.execute_query(
                f'SELECT {col} AS value, COUNT(*) AS frequency FROM {quoted_table} '
                f'WHERE {col} IS NOT NULL GROUP BY {col} ORDER BY COUNT(*) DESC, {col} '
                f'{self.dialect.limit_clause(TOP_VALUE_COUNT)}')
            row = summary.rows[0]
            average = row.get('avg_value')
            profiles.append(ColumnStatistics(
                name=column.name,
                type=column.type,
                non_null_count=int(row['non_null_count']),
                unique_count=int(row['unique_count']),
                min_value=row['min_value'],
                max_value=row['max_value'],
                avg_value=float(average) if average is not None else None,
                most_common_values=[(r['value'], int(r['frequency'])) for r in common.rows],
            ))
        return DataStatistics(table_name=table, total_rows=int(total.rows[0]['total_rows']),
                              columns=profiles)

    async def full_text_search(self, table: str, text: str,
                               columns: Sequence[str] | None = None,
                               language: str = 'english') -> QueryResult:
        """Search text columns; without `columns` every character column is searched.

        PostgreSQL ranks with `ts_rank` and MySQL with MATCH ... AGAINST,
        both reported as `relevance_score`. SQLite falls back to a
        case-insensitive substring match.
        """
        if not text:
            raise ValueError('Search text must not be empty')
        schema = await self.get_table_schema(table)
        if columns:
            targets = [c.name for c in pick_columns(table, schema, columns)]
        else:
            targets = [c.name for c in schema if _TEXT_TYPE.search(c.type)]
        if not targets:
            raise ValueError(f'Table {table} has no text columns to search')
        sql, args = self.dialect.full_text_search_sql(table, targets, text, language)
        return await self.execute_query(sql, args)

    async def create_full_text_index(self, table: str, columns: Sequence[str],
                                     language: str = 'english') -> QueryResult:
        """Create a GIN (PostgreSQL) or FULLTEXT (MySQL) index.

        Raises
            UnsupportedQueryError: The engine has no full-text index (SQLite)
        """
        require_data(table, columns, 'columns')
        ddl = self.dialect.full_text_index_sql(table, list(columns), language)
        logger.info(f'Creating full-text index on {table}({", ".join(columns)}) '
                    f'for {self.config.key}')
        return await self.execute_query(ddl)


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
