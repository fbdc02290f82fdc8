"""
Connection configuration and process-wide adapter settings.

`ConnectionConfig` describes one connection record handed over by the connection
registry. `AdapterSettings` collects pool and timeout tunables that apply to
every adapter a factory builds; they are read from `POLYDB_*` environment
variables.
"""
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from polydb.exceptions import ConfigurationError
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    'EngineType',
    'ConnectionConfig',
    'AdapterSettings',
    'RELATIONAL_DRIVERS',
    'DOCUMENT_DRIVERS',
    'DEFAULT_PORTS',
    'CONNECTION_STRING_SCHEMES',
    'parse_connection_string_driver',
]


class EngineType(str, Enum):
    """Engine family an adapter talks to."""
    RELATIONAL = 'relational'
    DOCUMENT = 'document'


RELATIONAL_DRIVERS = ('postgresql', 'mysql', 'sqlite')
DOCUMENT_DRIVERS = ('mongodb',)

DEFAULT_PORTS = {
    'postgresql': 5432,
    'mysql': 3306,
    'sqlite': 0,
    'mongodb': 27017,
}

CONNECTION_STRING_SCHEMES = {
    'postgresql': 'postgresql',
    'postgres': 'postgresql',
    'mysql': 'mysql',
    'sqlite': 'sqlite',
    'mongodb': 'mongodb',
    'mongodb+srv': 'mongodb',
}


def _default_driver(engine_type: EngineType) -> str:
    return 'mongodb' if engine_type is EngineType.DOCUMENT else 'postgresql'


@dataclass(frozen=True)
class ConnectionConfig:
    """Connection record.

    supported driver names: `postgresql`, `mysql`, `sqlite` (relational) and
    `mongodb` (document). For SQLite `database` is the file path or `:memory:`.

    The record is immutable; a changed connection needs a new record and a
    rebuilt adapter.
    """
    id: str
    name: str = None
    engine_type: EngineType = EngineType.RELATIONAL
    drivername: str = None
    host: str = None
    port: int = 0
    database: str = None
    username: str = None
    password: str = None
    ssl: bool = False
    connection_string: str = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Coercion only, validation is non-throwing and lives on the factory
        if self.id is not None and not isinstance(self.id, str):
            object.__setattr__(self, 'id', str(self.id))
        if isinstance(self.engine_type, str) and not isinstance(self.engine_type, EngineType):
            try:
                object.__setattr__(self, 'engine_type', EngineType(self.engine_type.lower()))
            except ValueError:
                pass
        if self.drivername is None and isinstance(self.engine_type, EngineType):
            driver = _driver_from_connection_string(self.connection_string)
            object.__setattr__(self, 'drivername', driver or _default_driver(self.engine_type))
        elif self.drivername:
            object.__setattr__(self, 'drivername', self.drivername.lower())
        if self.port is None:
            object.__setattr__(self, 'port', 0)
        if isinstance(self.port, str) and self.port.isdigit():
            object.__setattr__(self, 'port', int(self.port))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'ConnectionConfig':
        """Build a config from a mapping, ignoring unknown keys.

        Accepts the camelCase spelling the HTTP layer uses for `engineType`
        and `connectionString`.
        """
        aliases = {'engineType': 'engine_type', 'connectionString': 'connection_string',
                   'type': 'drivername', 'hostname': 'host', 'user': 'username'}
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            key = aliases.get(key, key)
            if key in known:
                kwargs[key] = value
        return cls(**kwargs)

    @property
    def key(self) -> str:
        """Factory cache key for this connection."""
        engine = self.engine_type.value if isinstance(self.engine_type, EngineType) else self.engine_type
        return f'{engine}:{self.id}'

    @property
    def sqlite_path(self) -> str | None:
        """Database file of a SQLite config.

        The connection string wins over `database`, matching how the engine
        URL is built; `sqlite:///app.db` names `app.db`.
        """
        if self.connection_string:
            return urlsplit(self.connection_string).path[1:] or None
        return self.database or None

    @property
    def is_memory(self) -> bool:
        return self.drivername == 'sqlite' and self.sqlite_path in {None, ':memory:'}

    def __repr__(self) -> str:
        return (f'ConnectionConfig(id={self.id!r}, name={self.name!r}, '
                f'engine_type={self.key.partition(":")[0]!r}, drivername={self.drivername!r}, '
                f'host={self.host!r}, port={self.port!r}, database={self.database!r}, '
                f'username={self.username!r})')

    __str__ = __repr__


def _driver_from_connection_string(connection_string: str | None) -> str | None:
    if not connection_string:
        return None
    scheme = urlsplit(connection_string).scheme.split('+')[0].lower()
    return CONNECTION_STRING_SCHEMES.get(scheme)


def parse_connection_string_driver(connection_string: str) -> str:
    """Return the driver name a connection string points at.

    Raises
        ConfigurationError: If the string has no known `scheme://` prefix.
    """
    if '://' not in connection_string:
        raise ConfigurationError('Malformed connection string: missing scheme')
    driver = _driver_from_connection_string(connection_string)
    if driver is None:
        scheme = connection_string.split('://', 1)[0]
        raise ConfigurationError(f'Unsupported connection string scheme: {scheme}')
    return driver


class AdapterSettings(BaseSettings):
    """Pool and timeout settings shared by all adapters of a factory.
    """
    model_config = SettingsConfigDict(
        env_prefix='POLYDB_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
    )

    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=0, ge=0)
    pool_recycle: int = Field(default=300, description='Seconds before a pooled connection is recycled')
    pool_timeout: int = Field(default=30, description='Seconds to wait for a pooled connection')
    connect_timeout: int = Field(default=5, ge=1, description='Connect and server selection timeout in seconds')
    socket_timeout: int = Field(default=45, ge=1)
    min_pool_size: int = Field(default=2, ge=0)
    max_idle_time: int = Field(default=30, ge=1, description='Document engine socket idle time in seconds')
    schema_sample_size: int = Field(default=100, ge=1)
    statistics_sample_size: int = Field(default=1000, ge=1, description='Documents sampled to find fields for statistics')
    schema_cache_ttl: int = Field(default=300, ge=0)
    idle_timeout: int = Field(default=1800, ge=0, description='Default idle cutoff in seconds for cleanup')
    sqlite_wal: bool = True
