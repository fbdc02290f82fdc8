"""
Dialect registry.

Dialects register themselves by driver name when their module is imported;
the imports below populate the registry.
"""
from functools import lru_cache

from polydb.dialect.base import _DIALECT_REGISTRY
from polydb.dialect.base import RelationalDialect as RelationalDialect
from polydb.dialect.base import SQLDialect as SQLDialect
from polydb.dialect.base import register_dialect as register_dialect
from polydb.dialect.mongodb import MongoDialect as MongoDialect
from polydb.dialect.mysql import MySQLDialect as MySQLDialect
from polydb.dialect.postgres import PostgresDialect as PostgresDialect
from polydb.dialect.sqlite import SQLiteDialect as SQLiteDialect
from polydb.exceptions import ConfigurationError


def _validate_dialect(name: str) -> None:
    """Raise ConfigurationError if the dialect is not registered."""
    if name not in _DIALECT_REGISTRY:
        available = list(_DIALECT_REGISTRY.keys())
        raise ConfigurationError(f'Unsupported dialect: {name}. Available: {available}')


@lru_cache(maxsize=8)
def get_dialect(name: str) -> SQLDialect:
    """Get cached dialect instance for a driver name."""
    _validate_dialect(name)
    return _DIALECT_REGISTRY[name]()


def get_available_dialects() -> list[str]:
    """Return list of registered dialect names."""
    return list(_DIALECT_REGISTRY.keys())


def is_supported_dialect(name: str) -> bool:
    """Check if a dialect is supported."""
    return name in _DIALECT_REGISTRY


def get_dialect_class(name: str) -> type[SQLDialect]:
    """Get the dialect class for a driver name without instantiating."""
    _validate_dialect(name)
    return _DIALECT_REGISTRY[name]
