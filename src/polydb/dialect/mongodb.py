"""
MongoDB dialect.

MongoDB has no SQL; this dialect renders the equivalent aggregation
expressions and collection definitions as Python structures that can be
handed to pymongo directly. Type names are advisory since collections are
schema-less.
"""
from typing import Any

from polydb.dialect.base import SQLDialect, register_dialect
from polydb.options import EngineType
from polydb.types import ColumnDefinition

_BSON_TYPES = {
    'String': 'string',
    'Number': 'number',
    'Long': 'long',
    'Double': 'double',
    'Decimal128': 'decimal',
    'Boolean': 'bool',
    'Date': 'date',
    'Timestamp': 'timestamp',
    'Object': 'object',
    'Array': 'array',
    'BinData': 'binData',
    'ObjectId': 'objectId',
}


def _field_path(name: str) -> str:
    return name if name.startswith('$') else f'${name}'


@register_dialect('mongodb')
class MongoDialect(SQLDialect):
    """MongoDB expressions and collection validators.
    """

    engine_type = EngineType.DOCUMENT

    type_map = {
        'string': 'String',
        'text': 'String',
        'integer': 'Number',
        'bigint': 'Long',
        'decimal': 'Decimal128',
        'float': 'Double',
        'double': 'Double',
        'boolean': 'Boolean',
        'date': 'Date',
        'datetime': 'Date',
        'timestamp': 'Timestamp',
        'json': 'Object',
        'blob': 'BinData',
        'uuid': 'String',
    }

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for MongoDB."""
        return 'mongodb'

    def map_data_type(self, generic_type: str) -> str:
        """Unknown names map to `Mixed`."""
        return self.type_map.get(generic_type.lower(), 'Mixed')

    def limit_clause(self, limit: int, offset: int | None = None) -> str:
        if offset:
            return f'.skip({int(offset)}).limit({int(limit)})'
        return f'.limit({int(limit)})'

    def date_format(self, fmt: str, expression: str = '$date') -> dict[str, Any]:
        return {'$dateToString': {'format': fmt, 'date': _field_path(expression)}}

    def quote_identifier(self, identifier: str) -> str:
        """Field names only need quoting when they contain spaces or dots."""
        if ' ' in identifier or '.' in identifier:
            return f'"{identifier}"'
        return identifier

    def concat(self, *columns: str) -> dict[str, Any]:
        return {'$concat': [_field_path(c) for c in columns]}

    def substring(self, column: str, start: int, length: int | None = None) -> dict[str, Any]:
        """Return a `$substrCP` expression.

        `start` is 1-based like SQL; MongoDB counts from 0.
        """
        return {'$substrCP': [_field_path(column), max(start - 1, 0),
                              length if length else {'$strLenCP': _field_path(column)}]}

    def current_timestamp(self) -> str:
        return '$$NOW'

    def auto_increment(self) -> str:
        return 'ObjectId'

    def bson_type(self, native_type: str) -> str | None:
        """Return the `$jsonSchema` bsonType for a native type, None for Mixed."""
        if native_type == 'Mixed':
            return None
        return _BSON_TYPES.get(native_type, 'string')

    def create_table_syntax(self, table: str, columns: list[ColumnDefinition]) -> dict[str, Any]:
        """Render a `create` command with a `$jsonSchema` validator.

        The result can be passed to `Database.command()` as is.
        """
        properties = {}
        for col in columns:
            native = self.map_data_type(col.type) if col.type.lower() in self.type_map else col.type
            prop: dict[str, Any] = {'description': col.comment or f'{col.name} field'}
            bson = self.bson_type(native)
            if bson is not None:
                prop['bsonType'] = [bson, 'null'] if col.nullable else bson
            properties[col.name] = prop

        schema: dict[str, Any] = {'bsonType': 'object', 'properties': properties}
        required = [c.name for c in columns if not c.nullable]
        if required:
            schema['required'] = required
        return {'create': table, 'validator': {'$jsonSchema': schema}}
