"""
Connection configs and settings shared by unit and integration tests.

Usage:
    def test_something(pg_config, settings):
        adapter = SQLAlchemyAdapter(pg_config, settings)
"""
import pytest
from polydb.options import AdapterSettings, ConnectionConfig, EngineType


class FakeClock:
    """Manually advanced clock for factory metrics and idle cleanup."""

    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def settings():
    """Default settings, isolated from POLYDB_* variables and .env files."""
    return AdapterSettings(_env_file=None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pg_config():
    return ConnectionConfig(
        id='pg-1',
        name='Reporting',
        engine_type=EngineType.RELATIONAL,
        drivername='postgresql',
        host='db.internal',
        port=5432,
        database='reporting',
        username='report',
        password='s3cret',
    )


@pytest.fixture
def mysql_config():
    return ConnectionConfig(
        id='my-1',
        name='Shop',
        engine_type='relational',
        drivername='mysql',
        host='mysql.internal',
        port=3306,
        database='shop',
        username='shop',
        password='s3cret',
    )


@pytest.fixture
def mongo_config():
    return ConnectionConfig(
        id='mongo-1',
        name='Events',
        engine_type=EngineType.DOCUMENT,
        drivername='mongodb',
        host='mongo.internal',
        port=27017,
        database='events',
        username='events',
        password='s3cret',
    )


@pytest.fixture
def sqlite_config(tmp_path):
    return ConnectionConfig(
        id='sqlite-1',
        name='Local file',
        engine_type=EngineType.RELATIONAL,
        drivername='sqlite',
        database=str(tmp_path / 'polydb-test.db'),
    )
