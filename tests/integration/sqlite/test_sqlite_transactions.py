"""
Transaction batches against a SQLite file database.
"""
import pytest
from polydb.exceptions import StatementError, TransactionAbortError
from polydb.types import Statement


async def _names(adapter):
    result = await adapter.execute_query('SELECT name FROM users ORDER BY id')
    return [row['name'] for row in result.rows]


async def test_transaction_commits_all(sqlite_adapter):
    """Test that a successful batch returns one result per statement"""
    results = await sqlite_adapter.execute_transaction([
        Statement('INSERT INTO users (name, value) VALUES (?, ?)', ('David', 40)),
        ('UPDATE users SET value = ? WHERE name = ?', (11, 'Alice')),
        {'sql': 'SELECT value FROM users WHERE name = :name', 'params': {'name': 'Alice'}},
    ])
    assert len(results) == 3
    assert results[0].affected_rows == 1
    assert results[0].insert_id == 4
    assert results[1].affected_rows == 1
    assert results[2].rows == [{'value': 11}]
    assert await _names(sqlite_adapter) == ['Alice', 'Bob', 'Charlie', 'David']


async def test_transaction_rolls_back_on_failure(sqlite_adapter):
    """Test that no statement of a failed batch is applied"""
    statements = [
        Statement('INSERT INTO users (name, value) VALUES (?, ?)', ('David', 40)),
        Statement('INSERT INTO users (name, value) VALUES (?, ?)', ('Alice', 99)),
        Statement('INSERT INTO users (name, value) VALUES (?, ?)', ('Eve', 50)),
    ]
    with pytest.raises(TransactionAbortError) as exc_info:
        await sqlite_adapter.execute_transaction(statements)

    error = exc_info.value
    assert error.index == 1
    assert str(error) == 'UNIQUE constraint failed: users.name'
    assert isinstance(error, StatementError)
    assert isinstance(error.__cause__, StatementError)
    assert await _names(sqlite_adapter) == ['Alice', 'Bob', 'Charlie']


async def test_rollback_undoes_ddl(sqlite_adapter):
    with pytest.raises(TransactionAbortError) as exc_info:
        await sqlite_adapter.execute_transaction([
            'CREATE TABLE audit (id INTEGER PRIMARY KEY)',
            'INSERT INTO audit (id) VALUES (1)',
            'SELECT * FROM no_such_table',
        ])
    assert exc_info.value.index == 2
    tables = [t.name for t in await sqlite_adapter.get_tables()]
    assert 'audit' not in tables


async def test_empty_batch(sqlite_adapter):
    assert await sqlite_adapter.execute_transaction([]) == []


async def test_adapter_usable_after_failed_transaction(sqlite_adapter):
    with pytest.raises(TransactionAbortError):
        await sqlite_adapter.execute_transaction(['SELECT * FROM no_such_table'])
    result = await sqlite_adapter.execute_query('SELECT COUNT(*) AS n FROM users')
    assert result.rows == [{'n': 3}]


if __name__ == '__main__':
    __import__('pytest').main([__file__])
