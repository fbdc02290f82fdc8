"""
Unit tests for connection configs and adapter settings.
"""
from dataclasses import FrozenInstanceError

import pytest
from polydb.exceptions import ConfigurationError
from polydb.options import AdapterSettings, ConnectionConfig, EngineType
from polydb.options import parse_connection_string_driver


def test_engine_type_coercion():
    """Test that engine types given as strings become the enum"""
    config = ConnectionConfig(id=7, name='x', engine_type='Document')
    assert config.engine_type is EngineType.DOCUMENT
    assert config.id == '7'
    assert config.key == 'document:7'


def test_default_drivers():
    assert ConnectionConfig(id='1', name='x').drivername == 'postgresql'
    assert ConnectionConfig(id='1', name='x', engine_type='document').drivername == 'mongodb'
    assert ConnectionConfig(id='1', name='x', drivername='SQLite').drivername == 'sqlite'


def test_driver_from_connection_string():
    config = ConnectionConfig(id='1', name='x',
                              connection_string='mysql+aiomysql://u:p@h/db')
    assert config.drivername == 'mysql'
    srv = ConnectionConfig(id='1', name='x', engine_type='document',
                           connection_string='mongodb+srv://u:p@cluster0.example.net/db')
    assert srv.drivername == 'mongodb'


def test_unknown_engine_type_is_kept_for_validation():
    config = ConnectionConfig(id='1', name='x', engine_type='graph')
    assert config.engine_type == 'graph'
    assert config.key == 'graph:1'


def test_port_coercion():
    assert ConnectionConfig(id='1', name='x', port='5433').port == 5433
    assert ConnectionConfig(id='1', name='x', port=None).port == 0


def test_config_is_immutable(pg_config):
    with pytest.raises(FrozenInstanceError):
        pg_config.host = 'elsewhere'


def test_repr_hides_password(pg_config):
    assert 's3cret' not in repr(pg_config)
    assert 's3cret' not in str(pg_config)
    assert "id='pg-1'" in repr(pg_config)
    assert "engine_type='relational'" in repr(pg_config)


def test_from_dict_aliases():
    """Test that camelCase keys from the HTTP layer are accepted"""
    config = ConnectionConfig.from_dict({
        'id': 'c1',
        'name': 'Events',
        'engineType': 'document',
        'type': 'mongodb',
        'hostname': 'mongo',
        'port': 27017,
        'database': 'events',
        'user': 'app',
        'connectionString': None,
        'createdAt': '2024-01-01',
    })
    assert config.engine_type is EngineType.DOCUMENT
    assert config.drivername == 'mongodb'
    assert config.host == 'mongo'
    assert config.username == 'app'


def test_is_memory():
    assert ConnectionConfig(id='1', name='x', drivername='sqlite', database=':memory:').is_memory
    assert ConnectionConfig(id='1', name='x', drivername='sqlite').is_memory
    assert not ConnectionConfig(id='1', name='x', drivername='sqlite', database='a.db').is_memory
    assert not ConnectionConfig(id='1', name='x', database=':memory:').is_memory


@pytest.mark.parametrize(('connection_string', 'path', 'is_memory'), [
    ('sqlite:///file.db', 'file.db', False),
    ('sqlite:////var/data/app.db', '/var/data/app.db', False),
    ('sqlite:///file.db?mode=ro', 'file.db', False),
    ('sqlite:///:memory:', ':memory:', True),
    ('sqlite://', None, True),
])
def test_sqlite_path_from_connection_string(connection_string, path, is_memory):
    """Test that a SQLite file named only by the connection string is not in-memory"""
    config = ConnectionConfig(id='1', name='x', engine_type='relational',
                              connection_string=connection_string)
    assert config.drivername == 'sqlite'
    assert config.sqlite_path == path
    assert config.is_memory is is_memory


@pytest.mark.parametrize(('connection_string', 'expected'), [
    ('postgresql://u:p@h:5432/db', 'postgresql'),
    ('postgres://u:p@h/db', 'postgresql'),
    ('postgresql+psycopg://u:p@h/db', 'postgresql'),
    ('mysql://u:p@h/db', 'mysql'),
    ('sqlite:///tmp/a.db', 'sqlite'),
    ('mongodb://h:27017/db', 'mongodb'),
    ('mongodb+srv://cluster0.example.net/db', 'mongodb'),
])
def test_parse_connection_string_driver(connection_string, expected):
    assert parse_connection_string_driver(connection_string) == expected


def test_parse_connection_string_errors():
    with pytest.raises(ConfigurationError, match='missing scheme'):
        parse_connection_string_driver('localhost:5432/db')
    with pytest.raises(ConfigurationError, match='Unsupported connection string scheme: oracle'):
        parse_connection_string_driver('oracle://h/db')


def test_settings_defaults(settings):
    assert settings.pool_size == 10
    assert settings.max_overflow == 0
    assert settings.connect_timeout == 5
    assert settings.min_pool_size == 2
    assert settings.max_idle_time == 30
    assert settings.socket_timeout == 45
    assert settings.schema_sample_size == 100
    assert settings.statistics_sample_size == 1000
    assert settings.idle_timeout == 1800
    assert settings.schema_cache_ttl == 300
    assert settings.sqlite_wal is True


def test_settings_from_environment(monkeypatch):
    """Test that POLYDB_* variables override the defaults"""
    monkeypatch.setenv('POLYDB_POOL_SIZE', '3')
    monkeypatch.setenv('POLYDB_CONNECT_TIMEOUT', '12')
    monkeypatch.setenv('POLYDB_SQLITE_WAL', 'false')
    settings = AdapterSettings(_env_file=None)
    assert settings.pool_size == 3
    assert settings.connect_timeout == 12
    assert settings.sqlite_wal is False


def test_settings_are_validated():
    with pytest.raises(ValueError):
        AdapterSettings(_env_file=None, pool_size=0)


if __name__ == '__main__':
    __import__('pytest').main([__file__])
