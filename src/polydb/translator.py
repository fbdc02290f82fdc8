"""
Translation of SQL-shaped text into MongoDB operations.

Only four statement shapes are understood:

    SELECT * FROM t [WHERE ...] [LIMIT n [OFFSET m]]    → find
    INSERT INTO t [(cols)] VALUES (...)                 → insert_one
    UPDATE t SET ... [WHERE ...]                        → update_many ($set)
    DELETE FROM t [WHERE ...]                           → delete_many

Values always come from the bound parameters, never from the SQL text.
WHERE clauses are not parsed. A SELECT with a WHERE clause and no filter
parameter runs unfiltered and says so in the operation's warnings; UPDATE
and DELETE refuse to run in that case, since dropping the predicate would
touch every document. Column lists, DISTINCT, GROUP BY, HAVING and ORDER BY
are not translated either; a SELECT carrying them still runs and lists each
dropped clause in its warnings. Joins, subqueries, common table expressions
and everything else raise `UnsupportedQueryError`.

`infer_schema` is the companion for introspection: a collection has no
declared schema, so columns are inferred from a sample of documents. The
result is approximate and only describes the documents that were sampled.
"""
import datetime
import decimal
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from bson import Binary, Decimal128, Int64, ObjectId, Regex, Timestamp
from polydb.exceptions import UnsupportedQueryError
from polydb.sql import TokenType, leading_keyword, statement_keyword, strip_comments
from polydb.sql import tokenize_sql
from polydb.types import ColumnInfo

__all__ = [
    'MongoOperation',
    'translate',
    'infer_schema',
    'mongo_type_name',
    'UNFILTERED_WARNING',
    'COLUMNS_WARNING',
    'DISTINCT_WARNING',
    'GROUP_BY_WARNING',
    'HAVING_WARNING',
    'ORDER_BY_WARNING',
]

logger = logging.getLogger(__name__)

UNFILTERED_WARNING = 'WHERE clause is not translated for the document engine; results are unfiltered'
COLUMNS_WARNING = 'Column list is not translated for the document engine; every field is returned'
DISTINCT_WARNING = 'DISTINCT is not translated for the document engine; duplicates are returned'
GROUP_BY_WARNING = 'GROUP BY clause is not translated for the document engine; rows are not grouped'
HAVING_WARNING = 'HAVING clause is not translated for the document engine; groups are not filtered'
ORDER_BY_WARNING = 'ORDER BY clause is not translated for the document engine; rows are in natural order'

_IDENT = r'[`"\[]?(\w+)[`"\]]?'

_SELECT_FROM = re.compile(rf'\bfrom\s+{_IDENT}', re.IGNORECASE)
_INSERT_INTO = re.compile(rf'^\s*insert\s+into\s+{_IDENT}', re.IGNORECASE)
_UPDATE = re.compile(rf'^\s*update\s+{_IDENT}\s+set\b', re.IGNORECASE)
_DELETE_FROM = re.compile(rf'^\s*delete\s+from\s+{_IDENT}', re.IGNORECASE)

_INSERT_COLUMNS = re.compile(r'^\s*insert\s+into\s+[`"\[]?\w+[`"\]]?\s*\(([^)]*)\)\s*values\b',
                             re.IGNORECASE)
_SELECT_LIST = re.compile(r'^\s*\(?\s*select\s+(.*?)\s+from\b', re.IGNORECASE | re.DOTALL)
_DISTINCT = re.compile(r'^distinct\b', re.IGNORECASE)
_WHERE = re.compile(r'\bwhere\b', re.IGNORECASE)
_JOIN = re.compile(r'\bjoin\b', re.IGNORECASE)
_FROM_LIST = re.compile(rf'\bfrom\s+{_IDENT}(?:\s+(?:as\s+)?\w+)?\s*,', re.IGNORECASE)
_SELECT_WORD = re.compile(r'\bselect\b', re.IGNORECASE)
_SET_OPERATOR = re.compile(r'\b(?:union|intersect|except)\b', re.IGNORECASE)
_CLAUSE_WARNINGS = [
    (re.compile(r'\bgroup\s+by\b', re.IGNORECASE), GROUP_BY_WARNING),
    (re.compile(r'\bhaving\b', re.IGNORECASE), HAVING_WARNING),
    (re.compile(r'\border\s+by\b', re.IGNORECASE), ORDER_BY_WARNING),
]
_LIMIT = re.compile(r'\blimit\s+(\d+)(?:\s*(?:offset\s+(\d+)|,\s*(\d+)))?\s*;?\s*$', re.IGNORECASE)


@dataclass
class MongoOperation:
    """A native operation produced from SQL text."""
    kind: str
    collection: str
    filter: dict[str, Any] = field(default_factory=dict)
    document: dict[str, Any] | None = None
    update: dict[str, Any] | None = None
    projection: dict[str, Any] | None = None
    sort: list[tuple[str, Any]] | None = None
    limit: int | None = None
    skip: int | None = None
    warnings: list[str] = field(default_factory=list)


def _masked(sql: str) -> str:
    """Return SQL without comments and with string literals blanked.

    Keywords inside literals (`'where'`) must not count as clauses. Quoted
    identifiers (`"users"`, `` `users` ``) are kept.
    """
    return ''.join("''" if t.type is TokenType.STRING_LITERAL and t.text.startswith("'")
                   else t.text for t in tokenize_sql(strip_comments(sql)))


def _param_list(params: Any) -> list[Any]:
    if params is None:
        return []
    if isinstance(params, Mapping):
        return [params]
    if isinstance(params, (str, bytes)):
        return [params]
    if isinstance(params, Sequence):
        return list(params)
    return [params]


def _mapping_at(params: list[Any], index: int) -> dict[str, Any] | None:
    if len(params) > index and isinstance(params[index], Mapping):
        return dict(params[index])
    return None


def _collection(pattern: re.Pattern, masked: str, sql: str) -> str:
    match = pattern.search(masked)
    if not match:
        raise UnsupportedQueryError(f'Cannot determine collection for query: {sql}')
    return match.group(1)


def _warn(op: MongoOperation, message: str, sql: str) -> None:
    op.warnings.append(message)
    logger.warning(f'{message}: {sql}')


def _translate_select(sql: str, masked: str, params: list[Any]) -> MongoOperation:
    if _JOIN.search(masked) or _FROM_LIST.search(masked):
        raise UnsupportedQueryError(f'Joins are not supported for the document engine: {sql}')
    if len(_SELECT_WORD.findall(masked)) > 1 or _SET_OPERATOR.search(masked):
        raise UnsupportedQueryError(
            f'Subqueries and set operations are not supported for the document engine: {sql}')
    op = MongoOperation(kind='find', collection=_collection(_SELECT_FROM, masked, sql))

    explicit_filter = _mapping_at(params, 0)
    if explicit_filter is not None:
        op.filter = explicit_filter
    elif _WHERE.search(masked):
        _warn(op, UNFILTERED_WARNING, sql)

    if match := _SELECT_LIST.search(masked):
        columns = match.group(1).strip()
        if _DISTINCT.match(columns):
            _warn(op, DISTINCT_WARNING, sql)
            columns = columns[len('distinct'):].strip()
        if columns != '*':
            _warn(op, COLUMNS_WARNING, sql)
    for pattern, message in _CLAUSE_WARNINGS:
        if pattern.search(masked):
            _warn(op, message, sql)

    if match := _LIMIT.search(masked):
        if match.group(3) is not None:
            op.skip, op.limit = int(match.group(1)), int(match.group(3))
        else:
            op.limit = int(match.group(1))
            op.skip = int(match.group(2)) if match.group(2) else None
    return op


def _translate_insert(sql: str, masked: str, params: list[Any]) -> MongoOperation:
    collection = _collection(_INSERT_INTO, masked, sql)
    document = _mapping_at(params, 0)
    if document is None:
        match = _INSERT_COLUMNS.search(masked)
        columns = [c.strip().strip('`"[]') for c in match.group(1).split(',')] if match else []
        if not columns or len(columns) != len(params):
            raise UnsupportedQueryError(
                'INSERT for the document engine needs a document parameter or '
                'a column list matching the positional parameters')
        document = dict(zip(columns, params))
    return MongoOperation(kind='insert_one', collection=collection, document=document)


def _translate_update(sql: str, masked: str, params: list[Any]) -> MongoOperation:
    collection = _collection(_UPDATE, masked, sql)
    values = _mapping_at(params, 0)
    if not values:
        raise UnsupportedQueryError(
            'UPDATE for the document engine needs the new values as a mapping parameter')
    query = _mapping_at(params, 1)
    if query is None:
        if _WHERE.search(masked):
            raise UnsupportedQueryError(
                'UPDATE with a WHERE clause needs the filter as a second mapping parameter')
        query = {}
    return MongoOperation(kind='update_many', collection=collection, filter=query,
                          update={'$set': values})


def _translate_delete(sql: str, masked: str, params: list[Any]) -> MongoOperation:
    collection = _collection(_DELETE_FROM, masked, sql)
    query = _mapping_at(params, 0)
    if query is None:
        if _WHERE.search(masked):
            raise UnsupportedQueryError(
                'DELETE with a WHERE clause needs the filter as a mapping parameter')
        query = {}
    return MongoOperation(kind='delete_many', collection=collection, filter=query)


_TRANSLATORS = {
    'select': _translate_select,
    'insert': _translate_insert,
    'update': _translate_update,
    'delete': _translate_delete,
}


def translate(sql: str, params: Any = None) -> MongoOperation:
    """Translate one SQL-shaped statement into a MongoOperation.

    Parameters
        sql: Statement text
        params: Bound parameters; mappings carry documents and filters

    Raises
        UnsupportedQueryError: The statement shape has no native equivalent
    """
    if leading_keyword(sql) == 'with':
        raise UnsupportedQueryError(
            f'Common table expressions are not supported for the document engine: {sql}')
    keyword = statement_keyword(sql)
    translator = _TRANSLATORS.get(keyword)
    if translator is None:
        raise UnsupportedQueryError(
            f'Unsupported statement for the document engine: {keyword.upper() or sql!r}')
    return translator(sql, _masked(sql), _param_list(params))


def mongo_type_name(value: Any) -> str:
    """Return the MongoDB type name of a Python/BSON value.

    bool is tested before int because of subclassing.
    """
    if value is None:
        return 'Null'
    if isinstance(value, ObjectId):
        return 'ObjectId'
    if isinstance(value, bool):
        return 'Boolean'
    if isinstance(value, Int64):
        return 'Long'
    if isinstance(value, int):
        return 'Number'
    if isinstance(value, float):
        return 'Double'
    if isinstance(value, (Decimal128, decimal.Decimal)):
        return 'Decimal128'
    if isinstance(value, str):
        return 'String'
    if isinstance(value, Timestamp):
        return 'Timestamp'
    if isinstance(value, (datetime.datetime, datetime.date)):
        return 'Date'
    if isinstance(value, (Binary, bytes)):
        return 'BinData'
    if isinstance(value, Regex):
        return 'Regex'
    if isinstance(value, (list, tuple)):
        return 'Array'
    if isinstance(value, Mapping):
        return 'Object'
    return 'Mixed'


def infer_schema(documents: Sequence[Mapping[str, Any]]) -> list[ColumnInfo]:
    """Infer columns from a sample of documents.

    For every key the set of value types is collected in the order seen.
    The first type is reported; when more than one was seen the comment
    lists them all. A key is nullable when any sampled document holds null
    for it or lacks it. `_id` is the primary key, auto generated when it is
    an ObjectId.
    """
    seen: dict[str, dict[str, Any]] = {}
    for doc in documents:
        for key, value in doc.items():
            info = seen.setdefault(key, {'types': [], 'has_null': False, 'count': 0})
            info['count'] += 1
            if value is None:
                info['has_null'] = True
                continue
            type_name = mongo_type_name(value)
            if type_name not in info['types']:
                info['types'].append(type_name)

    total = len(documents)
    columns = []
    for key, info in seen.items():
        types = info['types']
        representative = types[0] if types else 'Null'
        is_id = key == '_id'
        columns.append(ColumnInfo(
            name=key,
            type=representative,
            nullable=not is_id and (info['has_null'] or info['count'] < total),
            is_primary_key=is_id,
            is_auto_increment=is_id and representative == 'ObjectId',
            comment=f'Mixed types: {", ".join(types)}' if len(types) > 1 else None,
        ))
    return columns
