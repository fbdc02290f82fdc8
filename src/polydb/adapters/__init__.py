"""
Adapters for each engine type.

The factory picks the constructor by the config's `engine_type` tag.
"""
from polydb.adapters.base import AdapterState as AdapterState
from polydb.adapters.base import DatabaseAdapter as DatabaseAdapter
from polydb.adapters.document import MongoAdapter as MongoAdapter
from polydb.adapters.relational import SQLAlchemyAdapter as SQLAlchemyAdapter
from polydb.options import EngineType

ADAPTER_CONSTRUCTORS: dict[EngineType, type[DatabaseAdapter]] = {
    EngineType.RELATIONAL: SQLAlchemyAdapter,
    EngineType.DOCUMENT: MongoAdapter,
}
