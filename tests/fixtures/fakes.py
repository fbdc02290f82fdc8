"""
In-process adapters for factory and service tests.

`FakeAdapter` implements the adapter contract without any engine: connect
can be delayed or made to fail, the health check can be switched off and
`execute_query` fails for the statement text `'fail'`.

Usage:
    def test_factory(recorder):
        factory = AdapterFactory(constructors=recorder.constructors)
        ...
        assert len(recorder.built) == 1
"""
import asyncio

import pytest
from polydb.adapters import DatabaseAdapter
from polydb.exceptions import StatementError
from polydb.options import EngineType
from polydb.types import DataStatistics, QueryResult, TableInfo


class FakeAdapter(DatabaseAdapter):
    """Adapter double that counts lifecycle calls."""

    engine_type = EngineType.RELATIONAL

    def __init__(self, config, settings=None, connect_delay=0.0, fail_connect=False):
        super().__init__(config, settings)
        self.connect_delay = connect_delay
        self.fail_connect = fail_connect
        self.healthy = True
        self.opened = 0
        self.released = 0

    async def _open(self):
        self.opened += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.fail_connect:
            raise OSError('connection refused')

    async def _ping(self):
        if not self.healthy:
            raise OSError('server closed the connection unexpectedly')

    async def _release(self):
        self.released += 1

    async def execute_query(self, text, params=None):
        self._ensure_live()
        if text == 'fail':
            raise StatementError('syntax error at or near "fail"')
        self.addcall(0.5)
        return QueryResult.for_rows([{'answer': 42}], 0.5)

    async def execute_transaction(self, statements):
        return [await self.execute_query(s) for s in statements]

    async def explain_query(self, text, params=None):
        return await self.execute_query(text, params)

    async def get_databases(self):
        self._ensure_live()
        return [self.config.database]

    async def get_tables(self, database=None):
        self._ensure_live()
        return [TableInfo(name='users')]

    async def get_table_schema(self, table):
        self._ensure_live()
        return []

    async def get_indexes(self, table):
        self._ensure_live()
        return []

    async def insert(self, table, data):
        self._ensure_live()
        return QueryResult.for_mutation(1, 0.1, insert_id=1)

    async def update(self, table, data, where=None):
        self._ensure_live()
        return QueryResult.for_mutation(2, 0.1)

    async def delete(self, table, where):
        self._ensure_live()
        return QueryResult.for_mutation(1, 0.1)

    async def create_table(self, table, columns):
        self._ensure_live()
        return QueryResult.for_mutation(0, 0.1)

    async def get_data_statistics(self, table, columns=None):
        self._ensure_live()
        return DataStatistics(table_name=table, total_rows=0)

    async def full_text_search(self, table, text, columns=None, language='english'):
        self._ensure_live()
        return QueryResult.for_rows([{'answer': text}], 0.5)

    async def create_full_text_index(self, table, columns, language='english'):
        self._ensure_live()
        return QueryResult.for_mutation(0, 0.1)


class FakeDocumentAdapter(FakeAdapter):
    engine_type = EngineType.DOCUMENT


class AdapterRecorder:
    """Constructor table for `AdapterFactory` that remembers what it built.

    Keyword arguments set on `options` are passed to every new adapter.
    """

    def __init__(self):
        self.built = []
        self.options = {}

    def _make(self, cls):
        def construct(config, settings):
            adapter = cls(config, settings, **self.options)
            self.built.append(adapter)
            return adapter
        return construct

    @property
    def constructors(self):
        return {
            EngineType.RELATIONAL: self._make(FakeAdapter),
            EngineType.DOCUMENT: self._make(FakeDocumentAdapter),
        }


@pytest.fixture
def recorder():
    return AdapterRecorder()
