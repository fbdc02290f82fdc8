"""
Statement execution against a SQLite file database.
"""
import pytest
from polydb.adapters import SQLAlchemyAdapter
from polydb.exceptions import ConnectionFailure, StatementError
from polydb.options import ConnectionConfig
from polydb.types import FieldInfo


async def test_select_rows(sqlite_adapter):
    """Test that reads return dict rows with inferred fields"""
    result = await sqlite_adapter.execute_query('SELECT id, name, value FROM users ORDER BY id')
    assert result.rows == [
        {'id': 1, 'name': 'Alice', 'value': 10},
        {'id': 2, 'name': 'Bob', 'value': 20},
        {'id': 3, 'name': 'Charlie', 'value': 30},
    ]
    assert result.row_count == len(result.rows) == 3
    assert result.affected_rows is None
    assert result.fields == [FieldInfo('id', 'integer'), FieldInfo('name', 'string'),
                             FieldInfo('value', 'integer')]
    assert result.execution_time >= 0


@pytest.mark.parametrize(('sql', 'params'), [
    ('SELECT name FROM users WHERE value > ? ORDER BY value', (15,)),
    ('SELECT name FROM users WHERE value > %s ORDER BY value', (15,)),
    ('SELECT name FROM users WHERE value > %s ORDER BY value', [15]),
    ('SELECT name FROM users WHERE value > :min ORDER BY value', {'min': 15}),
    ('SELECT name FROM users WHERE value > %(min)s ORDER BY value', {'min': 15}),
    ('SELECT name FROM users WHERE value > ? ORDER BY value', 15),
])
async def test_placeholder_styles(sqlite_adapter, sql, params):
    """Test that every placeholder style is accepted on SQLite"""
    result = await sqlite_adapter.execute_query(sql, params)
    assert [r['name'] for r in result.rows] == ['Bob', 'Charlie']


async def test_empty_result_keeps_columns(sqlite_adapter):
    result = await sqlite_adapter.execute_query('SELECT id, name FROM users WHERE value > ?', (99,))
    assert result.rows == []
    assert result.row_count == 0
    assert [f.name for f in result.fields] == ['id', 'name']
    assert list(result.to_dataframe().columns) == ['id', 'name']


async def test_like_literal_with_parameters(sqlite_adapter):
    result = await sqlite_adapter.execute_query(
        "SELECT name FROM users WHERE name LIKE 'A%' AND value < ?", (100,))
    assert result.rows == [{'name': 'Alice'}]


async def test_insert_reports_affected_rows_and_id(sqlite_adapter):
    """Test that writes report row_count == affected_rows"""
    result = await sqlite_adapter.execute_query(
        'INSERT INTO users (name, value) VALUES (?, ?)', ('David', 40))
    assert result.affected_rows == 1
    assert result.row_count == 1
    assert result.rows == []
    assert result.insert_id == 4


async def test_update_and_delete_counts(sqlite_adapter):
    updated = await sqlite_adapter.execute_query('UPDATE users SET value = value + 1 WHERE value >= ?', (20,))
    assert updated.affected_rows == updated.row_count == 2
    deleted = await sqlite_adapter.execute_query('DELETE FROM users WHERE name = ?', ('Nobody',))
    assert deleted.affected_rows == deleted.row_count == 0


async def test_native_error_message_is_kept(sqlite_adapter):
    """Test that the engine's message reaches the caller unchanged"""
    with pytest.raises(StatementError) as exc_info:
        await sqlite_adapter.execute_query('SELECT * FROM missing_table')
    assert str(exc_info.value) == 'no such table: missing_table'
    assert exc_info.value.native is not None


async def test_constraint_violation(sqlite_adapter):
    with pytest.raises(StatementError, match='UNIQUE constraint failed: users.name'):
        await sqlite_adapter.execute_query(
            'INSERT INTO users (name, value) VALUES (?, ?)', ('Alice', 1))


async def test_writes_persist_across_adapters(sqlite_adapter, sqlite_config, settings):
    """Test that committed writes are visible to a second adapter on the same file"""
    await sqlite_adapter.execute_query('INSERT INTO users (name, value) VALUES (?, ?)', ('Eve', 50))
    async with SQLAlchemyAdapter(sqlite_config, settings) as other:
        result = await other.execute_query('SELECT COUNT(*) AS n FROM users')
    assert result.rows == [{'n': 4}]


async def test_pragmas_are_applied(sqlite_adapter):
    foreign_keys = await sqlite_adapter.execute_query('PRAGMA foreign_keys')
    assert foreign_keys.rows == [{'foreign_keys': 1}]
    journal = await sqlite_adapter.execute_query('PRAGMA journal_mode')
    assert journal.rows == [{'journal_mode': 'wal'}]


async def test_explain_query(sqlite_adapter):
    result = await sqlite_adapter.execute_query('SELECT 1')
    assert result.rows == [{'1': 1}]
    plan = await sqlite_adapter.explain_query('SELECT * FROM users WHERE value = ?', (10,))
    assert plan.row_count >= 1
    assert 'detail' in plan.rows[0]


async def test_query_stats(sqlite_adapter):
    before = sqlite_adapter.get_query_stats()['query_count']
    await sqlite_adapter.execute_query('SELECT 1')
    stats = sqlite_adapter.get_query_stats()
    assert stats['query_count'] == before + 1
    assert stats['total_time'] > 0


async def test_operations_after_disconnect(sqlite_adapter):
    """Test that a disconnected adapter refuses work and disconnect stays idempotent"""
    await sqlite_adapter.disconnect()
    await sqlite_adapter.disconnect()
    assert await sqlite_adapter.test_connection() is False
    with pytest.raises(ConnectionFailure):
        await sqlite_adapter.execute_query('SELECT 1')
    with pytest.raises(ConnectionFailure):
        await sqlite_adapter.get_table_schema('users')


async def test_memory_database(settings):
    config = ConnectionConfig(id='mem', name='memory', drivername='sqlite', database=':memory:')
    async with SQLAlchemyAdapter(config, settings) as adapter:
        await adapter.execute_query('CREATE TABLE t (a INTEGER)')
        await adapter.execute_query('INSERT INTO t (a) VALUES (?)', (1,))
        result = await adapter.execute_query('SELECT a FROM t')
        assert result.rows == [{'a': 1}]
        assert await adapter.get_databases() == [':memory:']


async def test_connect_to_unwritable_path(settings):
    config = ConnectionConfig(id='bad', name='bad', drivername='sqlite',
                              database='/nonexistent-dir/sub/db.sqlite')
    adapter = SQLAlchemyAdapter(config, settings)
    with pytest.raises(ConnectionFailure, match='unable to open database file'):
        await adapter.connect()
    assert adapter.engine is None


if __name__ == '__main__':
    __import__('pytest').main([__file__])
