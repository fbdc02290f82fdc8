import sqlite3

import pymongo.errors
import pytest
from polydb.exceptions import ConfigurationError, ConnectionFailure, DatabaseError
from polydb.exceptions import DbConnectionError, StatementError
from polydb.exceptions import TransactionAbortError, UnsupportedQueryError
from polydb.exceptions import native_message


@pytest.mark.parametrize('error_class', [
    ConfigurationError, ConnectionFailure, StatementError, UnsupportedQueryError,
])
def test_errors_share_base(error_class):
    assert issubclass(error_class, DatabaseError)


def test_transaction_abort_is_statement_error():
    """Test that the failing index and native error travel with the abort"""
    native = sqlite3.IntegrityError('UNIQUE constraint failed: users.name')
    error = TransactionAbortError(str(native), 2, native)
    assert isinstance(error, StatementError)
    assert error.index == 2
    assert error.native is native
    assert str(error) == 'UNIQUE constraint failed: users.name'


def test_native_message_prefers_wrapped_error():
    class Wrapped(Exception):
        def __init__(self, orig):
            super().__init__(f'({type(orig).__name__}) {orig}\n[SQL: SELECT 1]')
            self.orig = orig

    assert native_message(Wrapped(ValueError('bad value'))) == 'bad value'
    assert native_message(ValueError('plain')) == 'plain'


@pytest.mark.parametrize('error', [
    sqlite3.OperationalError('unable to open database file'),
    pymongo.errors.ServerSelectionTimeoutError('timed out'),
    ConnectionRefusedError('connection refused'),
    ConnectionFailure('gone'),
])
def test_connection_error_group(error):
    with pytest.raises(DbConnectionError):
        raise error


def test_statement_errors_are_not_connection_errors():
    with pytest.raises(StatementError):
        try:
            raise StatementError('syntax error')
        except DbConnectionError:
            pytest.fail('statement error caught as connection error')


if __name__ == '__main__':
    __import__('pytest').main([__file__])
