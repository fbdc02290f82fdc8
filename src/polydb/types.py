"""
Result and metadata types shared by every adapter.

Both engine variants return these shapes so that callers never see a native
cursor, row proxy or BSON document.
"""
import datetime
import decimal
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, NamedTuple

import pandas as pd

__all__ = [
    'FieldInfo',
    'QueryResult',
    'TableInfo',
    'ColumnInfo',
    'IndexInfo',
    'ColumnDefinition',
    'Statement',
    'ConnectionMetrics',
    'PoolStatistics',
    'ColumnStatistics',
    'DataStatistics',
    'infer_value_type',
    'infer_fields',
    'as_statement',
]


@dataclass(frozen=True)
class FieldInfo:
    """Result column name with its declared or inferred type."""
    name: str
    type: str
    length: int | None = None


@dataclass
class QueryResult:
    """Normalized result of one executed statement.

    For reads `row_count == len(rows)` and `affected_rows` is None. For
    writes `row_count == affected_rows` and `rows` holds whatever the
    engine returned (usually nothing). `execution_time` is in milliseconds.
    """
    rows: list[dict[str, Any]]
    row_count: int
    fields: list[FieldInfo]
    execution_time: float
    affected_rows: int | None = None
    insert_id: Any = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def for_rows(cls, rows: list[dict[str, Any]], execution_time: float,
                 fields: list[FieldInfo] | None = None,
                 warnings: list[str] | None = None) -> 'QueryResult':
        """Build a read result."""
        if fields is None:
            fields = infer_fields(rows)
        return cls(rows=rows, row_count=len(rows), fields=fields,
                   execution_time=execution_time, warnings=list(warnings or []))

    @classmethod
    def for_mutation(cls, affected_rows: int, execution_time: float,
                     insert_id: Any = None, rows: list[dict[str, Any]] | None = None,
                     warnings: list[str] | None = None) -> 'QueryResult':
        """Build a write result.

        Engines report -1 when the count is unknown; that is normalized to 0.
        """
        affected_rows = max(affected_rows or 0, 0)
        rows = rows or []
        return cls(rows=rows, row_count=affected_rows, fields=infer_fields(rows),
                   execution_time=execution_time, affected_rows=affected_rows,
                   insert_id=insert_id, warnings=list(warnings or []))

    @property
    def is_mutation(self) -> bool:
        return self.affected_rows is not None

    def to_dataframe(self) -> pd.DataFrame:
        """Return the rows as a DataFrame.

        Column order follows `fields`; the field types are kept in
        `DataFrame.attrs['column_types']`. Empty results keep their columns.
        """
        columns = [f.name for f in self.fields]
        if not self.rows:
            df = pd.DataFrame(columns=columns)
        else:
            df = pd.DataFrame.from_records(self.rows, columns=columns or None)
        df.attrs['column_types'] = {f.name: f.type for f in self.fields}
        return df


@dataclass(frozen=True)
class TableInfo:
    """Table, view or collection returned by `get_tables`."""
    name: str
    type: str = 'table'
    row_count: int | None = None
    size: int | None = None
    engine: str | None = None
    collation: str | None = None
    comment: str | None = None
    schema: str | None = None


@dataclass(frozen=True)
class ColumnInfo:
    """Column description returned by `get_table_schema`."""
    name: str
    type: str
    nullable: bool = True
    default_value: Any = None
    is_primary_key: bool = False
    is_auto_increment: bool = False
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    comment: str | None = None


@dataclass(frozen=True)
class IndexInfo:
    """Index description returned by `get_indexes`."""
    name: str
    columns: list[str]
    is_unique: bool = False
    is_primary: bool = False
    type: str | None = None


@dataclass(frozen=True)
class ColumnDefinition:
    """Column specification accepted by `create_table_syntax`.

    `type` is a generic type name (string, integer, ...) that the dialect
    maps to its native spelling.
    """
    name: str
    type: str
    nullable: bool = True
    default_value: Any = None
    is_primary_key: bool = False
    is_auto_increment: bool = False
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    comment: str | None = None


class Statement(NamedTuple):
    """One element of a transaction batch."""
    text: str
    params: Any = None


@dataclass
class ConnectionMetrics:
    """Usage counters for one cached adapter.

    Timestamps are seconds since the epoch as returned by the factory clock.
    """
    created_at: float
    last_used: float
    query_count: int = 0
    error_count: int = 0


@dataclass(frozen=True)
class PoolStatistics:
    """Snapshot of a factory's cache."""
    total_connections: int
    active_connections: int
    connections_by_type: dict[str, int]
    total_queries: int
    total_errors: int


@dataclass(frozen=True)
class ColumnStatistics:
    """Profile of one column returned by `get_data_statistics`.

    `most_common_values` holds up to five `(value, count)` pairs, most
    frequent first. `avg_value` is only set for numeric columns.
    """
    name: str
    type: str
    non_null_count: int
    unique_count: int
    min_value: Any = None
    max_value: Any = None
    avg_value: float | None = None
    most_common_values: list[tuple[Any, int]] = field(default_factory=list)


@dataclass(frozen=True)
class DataStatistics:
    """Row count and column profiles of one table or collection."""
    table_name: str
    total_rows: int
    columns: list[ColumnStatistics] = field(default_factory=list)


def as_statement(item: Any) -> Statement:
    """Coerce a batch element into a `Statement`.

    Accepts a `Statement`, a bare SQL string, a `(text, params)` pair or a
    mapping with `text`/`sql` and `params` keys.
    """
    if isinstance(item, Statement):
        return item
    if isinstance(item, str):
        return Statement(item)
    if isinstance(item, Mapping):
        text = item.get('text', item.get('sql'))
        if text is None:
            raise ValueError('Statement mapping needs a text or sql key')
        return Statement(text, item.get('params'))
    if isinstance(item, Sequence) and len(item) == 2:
        return Statement(item[0], item[1])
    raise ValueError(f'Cannot build a statement from {item!r}')


_TYPE_NAMES: tuple[tuple[type, str], ...] = (
    (bool, 'boolean'),
    (int, 'integer'),
    (float, 'float'),
    (decimal.Decimal, 'decimal'),
    (str, 'string'),
    (datetime.datetime, 'datetime'),
    (datetime.date, 'date'),
    (datetime.time, 'time'),
    (datetime.timedelta, 'interval'),
    (uuid.UUID, 'uuid'),
    (bytes, 'binary'),
    (bytearray, 'binary'),
    (memoryview, 'binary'),
    (Mapping, 'object'),
    (list, 'array'),
    (tuple, 'array'),
)


def infer_value_type(value: Any) -> str:
    """Return a generic type name for a Python value.

    bool is tested before int and datetime before date because of
    subclassing.
    """
    if value is None:
        return 'null'
    for typ, name in _TYPE_NAMES:
        if isinstance(value, typ):
            return name
    return type(value).__name__.lower()


def infer_fields(rows: Iterable[Mapping[str, Any]],
                 columns: Sequence[str] | None = None) -> list[FieldInfo]:
    """Describe result fields from the values present in `rows`.

    The type of a field is taken from its first non-null value; a column
    with only nulls is reported as `null`. `columns` fixes the order and
    keeps columns of empty results.
    """
    names: list[str] = list(columns or [])
    types: dict[str, str] = {}
    for row in rows:
        for name, value in row.items():
            if name not in types or types[name] == 'null':
                if name not in names:
                    names.append(name)
                types[name] = infer_value_type(value)
    return [FieldInfo(name=name, type=types.get(name, 'null')) for name in names]
