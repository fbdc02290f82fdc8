"""
Document adapter on pymongo's asyncio client.

SQL-shaped statements go through `polydb.translator` and run as native
`find`, `insert_one`, `update_many` or `delete_many` calls. Results are
normalized into `QueryResult`: `ObjectId` values become strings so that rows
look the same whichever engine produced them.

Transactions use a client session (`start_transaction` / `commit_transaction`
/ `abort_transaction`). That gives multi-document atomicity on replica sets
and sharded clusters, not general SQL semantics; a standalone server rejects
them with the server's own error.
"""
import logging
import re
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import pymongo
import pymongo.errors
from bson import Decimal128, ObjectId
from polydb.adapters.base import TOP_VALUE_COUNT, DatabaseAdapter, elapsed_ms
from polydb.adapters.base import pick_columns, require_data
from polydb.cache import Cache, cacheable_introspection
from polydb.dialect import MongoDialect
from polydb.dialect.base import check_language
from polydb.exceptions import ConnectionFailure, DatabaseError, StatementError
from polydb.exceptions import TransactionAbortError, UnsupportedQueryError
from polydb.options import DEFAULT_PORTS, AdapterSettings, ConnectionConfig
from polydb.options import EngineType
from polydb.translator import MongoOperation, infer_schema, translate
from polydb.types import ColumnDefinition, ColumnInfo, ColumnStatistics, DataStatistics
from polydb.types import IndexInfo, QueryResult, TableInfo, as_statement
from pymongo import AsyncMongoClient

logger = logging.getLogger(__name__)

_NUMERIC_TYPES = frozenset({'Number', 'Long', 'Double', 'Decimal128'})


def normalize_value(value: Any) -> Any:
    """Convert BSON-only values into plain Python values, recursively."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, Mapping):
        return {k: normalize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_value(v) for v in value]
    return value


class MongoAdapter(DatabaseAdapter):
    """Adapter for MongoDB.
    """

    engine_type = EngineType.DOCUMENT
    dialect: MongoDialect

    def __init__(self, config: ConnectionConfig, settings: AdapterSettings | None = None,
                 dialect: MongoDialect | None = None,
                 client_factory: Callable[..., Any] = AsyncMongoClient) -> None:
        super().__init__(config, settings, dialect)
        self.client_factory = client_factory
        self.client = None
        self.db = None

    # lifecycle hooks

    def _client_kwargs(self) -> dict[str, Any]:
        s = self.settings
        kwargs: dict[str, Any] = {
            'maxPoolSize': s.pool_size,
            'minPoolSize': s.min_pool_size,
            'maxIdleTimeMS': s.max_idle_time * 1000,
            'serverSelectionTimeoutMS': s.connect_timeout * 1000,
            'connectTimeoutMS': s.connect_timeout * 1000,
            'socketTimeoutMS': s.socket_timeout * 1000,
        }
        if self.config.ssl:
            kwargs['tls'] = True
        if auth_source := self.config.metadata.get('auth_source'):
            kwargs['authSource'] = auth_source
        return kwargs

    async def _open(self) -> None:
        kwargs = self._client_kwargs()
        if self.config.connection_string:
            self.client = self.client_factory(self.config.connection_string, **kwargs)
        else:
            if self.config.username:
                kwargs['username'] = self.config.username
                kwargs['password'] = self.config.password
            self.client = self.client_factory(
                host=self.config.host or 'localhost',
                port=self.config.port or DEFAULT_PORTS['mongodb'],
                **kwargs)
        name = self.config.database or self.client.get_default_database().name
        self.db = self.client[name]
        logger.debug(f'Created client for {self.config.key} (database {name})')

    async def _ping(self) -> None:
        await self.client.admin.command('ping')

    async def _release(self) -> None:
        if self.client is not None:
            client, self.client, self.db = self.client, None, None
            await client.close()
            logger.debug(f'Closed client for {self.config.key}')

    # execution

    async def _execute_operation(self, op: MongoOperation, session: Any = None) -> QueryResult:
        """Run one translated operation and normalize its result."""
        collection = self.db[op.collection]
        start = time.perf_counter()
        try:
            if op.kind == 'find' and op.limit == 0:
                # a zero cursor limit means no limit to the server
                docs = []
                elapsed = elapsed_ms(start)
                result = QueryResult.for_rows(docs, elapsed, warnings=op.warnings)
            elif op.kind == 'find':
                cursor = collection.find(op.filter, op.projection, session=session)
                if op.sort:
                    cursor = cursor.sort(op.sort)
                if op.skip:
                    cursor = cursor.skip(op.skip)
                if op.limit is not None:
                    cursor = cursor.limit(op.limit)
                docs = await cursor.to_list(None)
                elapsed = elapsed_ms(start)
                result = QueryResult.for_rows([normalize_value(d) for d in docs], elapsed,
                                              warnings=op.warnings)
            elif op.kind == 'insert_one':
                inserted = await collection.insert_one(op.document, session=session)
                elapsed = elapsed_ms(start)
                result = QueryResult.for_mutation(1, elapsed,
                                                  insert_id=normalize_value(inserted.inserted_id))
            elif op.kind == 'update_many':
                updated = await collection.update_many(op.filter, op.update, session=session)
                elapsed = elapsed_ms(start)
                result = QueryResult.for_mutation(updated.modified_count, elapsed)
            elif op.kind == 'delete_many':
                deleted = await collection.delete_many(op.filter, session=session)
                elapsed = elapsed_ms(start)
                result = QueryResult.for_mutation(deleted.deleted_count, elapsed)
            else:
                raise UnsupportedQueryError(f'Unknown operation: {op.kind}')
        except pymongo.errors.ConnectionFailure as exc:
            raise ConnectionFailure(str(exc)) from exc
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc

        self.addcall(elapsed)
        logger.debug(f'Executed {op.kind} on {op.collection} in {elapsed:.1f}ms')
        return result

    async def execute_query(self, text: str, params: Any = None) -> QueryResult:
        """Translate and execute one SQL-shaped statement.

        A SELECT with a WHERE clause and no filter mapping returns every
        document; the result's `warnings` say so.

        Raises
            UnsupportedQueryError: The statement has no native equivalent
        """
        self._ensure_live()
        return await self._execute_operation(translate(text, params))

    async def execute_transaction(self, statements: Sequence[Any]) -> list[QueryResult]:
        """Execute statements in one session transaction.

        Every statement is translated before anything runs, so an
        untranslatable statement raises `UnsupportedQueryError` with no side
        effects.
        """
        self._ensure_live()
        operations = [translate(s.text, s.params) for s in map(as_statement, statements)]
        if not operations:
            return []

        async with self.client.start_session() as session:
            await session.start_transaction()
            results = []
            for index, op in enumerate(operations):
                try:
                    results.append(await self._execute_operation(op, session))
                except DatabaseError as exc:
                    await self._abort(session, index)
                    if isinstance(exc, ConnectionFailure):
                        raise
                    raise TransactionAbortError(str(exc), index,
                                                getattr(exc, 'native', None)) from exc
            try:
                await session.commit_transaction()
            except pymongo.errors.PyMongoError as exc:
                await self._abort(session, len(operations))
                raise TransactionAbortError(str(exc), len(operations), exc) from exc
        logger.debug(f'Committed {len(operations)} operations on {self.config.key}')
        return results

    async def _abort(self, session: Any, index: int) -> None:
        try:
            await session.abort_transaction()
            logger.info(f'Aborted transaction on {self.config.key} '
                        f'after operation {index} failed')
        except Exception as exc:
            logger.error(f'Abort failed on {self.config.key}: {exc}')

    async def explain_query(self, text: str, params: Any = None) -> QueryResult:
        """Return the query planner output for a find, update or delete."""
        self._ensure_live()
        op = translate(text, params)
        if op.kind == 'find':
            command = {'find': op.collection, 'filter': op.filter}
        elif op.kind == 'update_many':
            command = {'update': op.collection,
                       'updates': [{'q': op.filter, 'u': op.update, 'multi': True}]}
        elif op.kind == 'delete_many':
            command = {'delete': op.collection, 'deletes': [{'q': op.filter, 'limit': 0}]}
        else:
            raise UnsupportedQueryError(f'Cannot explain {op.kind}')
        start = time.perf_counter()
        try:
            plan = await self.db.command({'explain': command, 'verbosity': 'queryPlanner'})
        except pymongo.errors.ConnectionFailure as exc:
            raise ConnectionFailure(str(exc)) from exc
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc
        return QueryResult.for_rows([normalize_value(plan)], elapsed_ms(start),
                                    warnings=op.warnings)

    # introspection

    async def get_databases(self) -> list[str]:
        self._ensure_live()
        try:
            return await self.client.list_database_names()
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc

    async def get_tables(self, database: str | None = None) -> list[TableInfo]:
        """List collections and views with estimated document counts."""
        self._ensure_live()
        db = self.client[database] if database else self.db
        try:
            cursor = await db.list_collections()
            specs = await cursor.to_list(None)
            infos = []
            for spec in sorted(specs, key=lambda s: s['name']):
                if spec.get('type', 'collection') == 'view':
                    infos.append(TableInfo(name=spec['name'], type='view', schema=db.name))
                    continue
                count = await db[spec['name']].estimated_document_count()
                infos.append(TableInfo(name=spec['name'], type='collection',
                                       row_count=count, engine='mongodb', schema=db.name))
            return infos
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc

    @cacheable_introspection('table_schema')
    async def get_table_schema(self, table: str) -> list[ColumnInfo]:
        """Infer columns from up to `schema_sample_size` documents.

        This is schema inference, not a declared schema: keys missing from
        the sample are not reported and types may differ in documents that
        were not sampled. Pass `bypass_cache=True` to resample.
        """
        self._ensure_live()
        try:
            docs = await self.db[table].find({}).limit(self.settings.schema_sample_size).to_list(None)
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc
        return infer_schema(docs)

    @cacheable_introspection('table_indexes')
    async def get_indexes(self, table: str) -> list[IndexInfo]:
        self._ensure_live()
        try:
            information = await self.db[table].index_information()
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc
        infos = []
        for name, spec in information.items():
            keys = spec.get('key', [])
            kinds = [direction for _, direction in keys if isinstance(direction, str)]
            infos.append(IndexInfo(
                name=name,
                columns=[field for field, _ in keys],
                is_unique=bool(spec.get('unique')) or name == '_id_',
                is_primary=name == '_id_',
                type=kinds[0] if kinds else 'btree',
            ))
        return infos

    # row helpers

    async def insert(self, table: str, data: Mapping[str, Any]) -> QueryResult:
        require_data(table, data)
        self._ensure_live()
        return await self._execute_operation(
            MongoOperation(kind='insert_one', collection=table, document=dict(data)))

    async def update(self, table: str, data: Mapping[str, Any],
                     where: Mapping[str, Any] | None = None) -> QueryResult:
        require_data(table, data)
        self._ensure_live()
        return await self._execute_operation(
            MongoOperation(kind='update_many', collection=table, filter=dict(where or {}),
                           update={'$set': dict(data)}))

    async def delete(self, table: str, where: Mapping[str, Any]) -> QueryResult:
        require_data(table, where, 'where')
        self._ensure_live()
        return await self._execute_operation(
            MongoOperation(kind='delete_many', collection=table, filter=dict(where)))

    async def create_table(self, table: str, columns: Sequence[ColumnDefinition]) -> QueryResult:
        """Create a collection with a `$jsonSchema` validator."""
        self._ensure_live()
        command = self.dialect.create_table_syntax(table, list(columns))
        start = time.perf_counter()
        try:
            await self.db.command(command)
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc
        Cache.get_instance().clear_for_table(table, self.cache_namespace)
        logger.info(f'Created collection {table} on {self.config.key}')
        return QueryResult.for_mutation(0, elapsed_ms(start))

    # statistics and search

    async def _aggregate(self, table: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        cursor = await self.db[table].aggregate(pipeline)
        return await cursor.to_list(None)

    async def _field_statistics(self, table: str, column: ColumnInfo) -> ColumnStatistics:
        path = f'${column.name}'
        present = {'$match': {column.name: {'$ne': None}}}
        group: dict[str, Any] = {
            '_id': None,
            'non_null_count': {'$sum': 1},
            'min_value': {'$min': path},
            'max_value': {'$max': path},
        }
        if column.type in _NUMERIC_TYPES:
            group['avg_value'] = {'$avg': path}
        summary = await self._aggregate(table, [present, {'$group': group}])
        unique = await self._aggregate(table, [
            present, {'$group': {'_id': path}}, {'$count': 'unique_count'}])
        common = await self._aggregate(table, [
            present,
            {'$group': {'_id': path, 'count': {'$sum': 1}}},
            {'$sort': {'count': -1, '_id': 1}},
            {'$limit': TOP_VALUE_COUNT},
        ])
        row = summary[0] if summary else {}
        average = normalize_value(row.get('avg_value'))
        return ColumnStatistics(
            name=column.name,
            type=column.type,
            non_null_count=row.get('non_null_count', 0),
            unique_count=unique[0]['unique_count'] if unique else 0,
            min_value=normalize_value(row.get('min_value')),
            max_value=normalize_value(row.get('max_value')),
            avg_value=float(average) if average is not None else None,
            most_common_values=[(normalize_value(r['_id']), r['count']) for r in common],
        )

    async def get_data_statistics(self, table: str,
                                  columns: Sequence[str] | None = None) -> DataStatistics:
        """Profile a collection with aggregation pipelines.

        Fields come from up to `statistics_sample_size` documents, as with
        schema inference; the counts themselves cover the whole collection.
        """
        self._ensure_live()
        try:
            total = await self.db[table].count_documents({})
            sample = await self.db[table].find({}).limit(
                self.settings.statistics_sample_size).to_list(None)
            selected = pick_columns(table, infer_schema(sample), columns)
            profiles = [await self._field_statistics(table, c) for c in selected]
        except pymongo.errors.ConnectionFailure as exc:
            raise ConnectionFailure(str(exc)) from exc
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc
        return DataStatistics(table_name=table, total_rows=total, columns=profiles)

    async def full_text_search(self, table: str, text: str,
                               columns: Sequence[str] | None = None,
                               language: str = 'english') -> QueryResult:
        """Search a collection.

        With `columns` each one is matched with a case-insensitive regex of
        the literal text. Without them the collection's text index answers
        a `$text` query, sorted by `relevance_score`.
        """
        if not text:
            raise ValueError('Search text must not be empty')
        self._ensure_live()
        if columns:
            pattern = re.escape(text)
            op = MongoOperation(kind='find', collection=table, filter={
                '$or': [{c: {'$regex': pattern, '$options': 'i'}} for c in columns]})
        else:
            score = {'$meta': 'textScore'}
            op = MongoOperation(
                kind='find', collection=table,
                filter={'$text': {'$search': text, '$language': check_language(language)}},
                projection={'relevance_score': score},
                sort=[('relevance_score', score)])
        return await self._execute_operation(op)

    async def create_full_text_index(self, table: str, columns: Sequence[str],
                                     language: str = 'english') -> QueryResult:
        """Create the collection's text index; MongoDB allows one per collection."""
        require_data(table, columns, 'columns')
        self._ensure_live()
        keys = [(c, pymongo.TEXT) for c in columns]
        name = f'{table}_{"_".join(columns)}_text'
        start = time.perf_counter()
        try:
            await self.db[table].create_index(keys, name=name,
                                              default_language=check_language(language))
        except pymongo.errors.PyMongoError as exc:
            raise StatementError(str(exc), exc) from exc
        Cache.get_instance().clear_for_table(table, self.cache_namespace)
        logger.info(f'Created text index {name} on {self.config.key}')
        return QueryResult.for_mutation(0, elapsed_ms(start))
