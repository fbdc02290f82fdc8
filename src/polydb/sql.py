"""
SQL text helpers.

Callers may write positional placeholders as `%s` or `?` and named ones as
`%(name)s` or `:name`, whatever the engine. Before execution the statement is
rewritten once into the paramstyle of the driver behind the dialect:

    SQL → Tokenize (string literals kept intact) → Rewrite placeholders → Output

Main entry points:
- `standardize_placeholders()` - Convert placeholders to `format` or `qmark` style
- `escape_percent_signs_in_literals()` - Escape % inside string literals
- `has_placeholders()` - Check if SQL has placeholders
- `quote_identifier()` - Quote table/column names
- `statement_keyword()` / `is_mutation()` - Cheap statement classification
"""
import re
from dataclasses import dataclass
from enum import Enum, auto

__all__ = [
    'TokenType',
    'Token',
    'tokenize_sql',
    'standardize_placeholders',
    'escape_percent_signs_in_literals',
    'has_placeholders',
    'quote_identifier',
    'make_placeholders',
    'strip_comments',
    'leading_keyword',
    'statement_keyword',
    'is_mutation',
    'MUTATION_KEYWORDS',
]


class TokenType(Enum):
    """Token types identified during SQL scanning."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    POSITIONAL_PH = auto()      # %s or ?
    NAMED_PH = auto()           # %(name)s or :name


@dataclass(slots=True)
class Token:
    """Token from SQL scanning."""
    type: TokenType
    text: str
    name: str | None = None


# `::` is a PostgreSQL cast and must not read as a named placeholder
_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*"|`(?:[^`]|``)*`)
    |(?P<named>%\((?P<pname>[^)]+)\)s)
    |(?P<cast>::)
    |(?P<colon_named>(?<![:\w]):(?P<cname>[A-Za-z_]\w*))
    |(?P<percent_s>%s)
    |(?P<qmark>\?)
""", re.VERBOSE)

# Find unescaped percent signs in string content
_UNESCAPED_PERCENT = re.compile(r'(?<!%)%(?![%s(])')

_COMMENTS = re.compile(r'--[^\n]*|/\*.*?\*/', re.DOTALL)

_FIRST_WORD = re.compile(r'\s*\(?\s*([A-Za-z]+)')

MUTATION_KEYWORDS = frozenset({'insert', 'update', 'delete', 'replace', 'merge', 'upsert'})


def tokenize_sql(sql: str) -> list[Token]:
    """Split SQL into text, literal and placeholder tokens in a single pass.
    """
    tokens = []
    last_end = 0
    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()
        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:start]))
        if match.group('string'):
            tokens.append(Token(TokenType.STRING_LITERAL, match.group(0)))
        elif match.group('named'):
            tokens.append(Token(TokenType.NAMED_PH, match.group(0), match.group('pname')))
        elif match.group('colon_named'):
            tokens.append(Token(TokenType.NAMED_PH, match.group(0), match.group('cname')))
        elif match.group('percent_s') or match.group('qmark'):
            tokens.append(Token(TokenType.POSITIONAL_PH, match.group(0)))
        else:
            tokens.append(Token(TokenType.SQL_TEXT, match.group(0)))
        last_end = end
    if last_end < len(sql):
        tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:]))
    return tokens


def has_placeholders(sql: str | None) -> bool:
    """Check if SQL has any placeholder outside string literals."""
    if not sql:
        return False
    return any(t.type in {TokenType.POSITIONAL_PH, TokenType.NAMED_PH}
               for t in tokenize_sql(sql))


def escape_percent_signs_in_literals(sql: str) -> str:
    """Double the bare `%` signs inside string literals.

    Needed for `format` paramstyle drivers whenever parameters are passed,
    otherwise `LIKE 'a%'` is read as a placeholder.
    """
    parts = []
    for token in tokenize_sql(sql):
        if token.type is TokenType.STRING_LITERAL and token.text.startswith("'"):
            parts.append(_UNESCAPED_PERCENT.sub('%%', token.text))
        else:
            parts.append(token.text)
    return ''.join(parts)


def standardize_placeholders(sql: str, style: str, escape_percent: bool = False) -> str:
    """Rewrite placeholders into the driver's paramstyle.

    Parameters
        sql: SQL query string
        style: `format` (`%s`, `%(name)s`) or `qmark` (`?`, `:name`)
        escape_percent: Escape `%` in literals (format style only)

    Returns
        SQL string with placeholders in the requested style
    """
    if style not in {'format', 'qmark'}:
        raise ValueError(f'Unknown placeholder style: {style}')
    parts = []
    for token in tokenize_sql(sql):
        if token.type is TokenType.POSITIONAL_PH:
            parts.append('%s' if style == 'format' else '?')
        elif token.type is TokenType.NAMED_PH:
            parts.append(f'%({token.name})s' if style == 'format' else f':{token.name}')
        elif (token.type is TokenType.STRING_LITERAL and escape_percent
              and style == 'format' and token.text.startswith("'")):
            parts.append(_UNESCAPED_PERCENT.sub('%%', token.text))
        else:
            parts.append(token.text)
    return ''.join(parts)


def quote_identifier(identifier: str, quote_char: str = '"') -> str:
    """Quote a table or column name, doubling embedded quote characters.

    A dotted name is quoted per part, so `public.users` becomes
    `"public"."users"`.
    """
    if not identifier:
        raise ValueError('Identifier must not be empty')
    closing = ']' if quote_char == '[' else quote_char
    parts = identifier.split('.')
    return '.'.join(
        f'{quote_char}{part.replace(closing, closing * 2)}{closing}'
        for part in parts
    )


def make_placeholders(count: int, style: str = 'format') -> str:
    """Return `count` comma separated positional placeholders."""
    marker = '%s' if style == 'format' else '?'
    return ', '.join([marker] * count)


def strip_comments(sql: str) -> str:
    """Remove `--` and `/* */` comments outside string literals."""
    parts = []
    for token in tokenize_sql(sql):
        if token.type is TokenType.SQL_TEXT:
            parts.append(_COMMENTS.sub(' ', token.text))
        else:
            parts.append(token.text)
    return ''.join(parts)


def leading_keyword(sql: str) -> str:
    """Return the lowercased first word of a statement, comments skipped."""
    match = _FIRST_WORD.match(strip_comments(sql))
    return match.group(1).lower() if match else ''


def statement_keyword(sql: str) -> str:
    """Return the lowercased leading keyword of a statement.

    A leading `WITH` clause is skipped so `WITH x AS (...) DELETE ...`
    reports `delete`. Use `leading_keyword` for the literal first word.
    """
    text = strip_comments(sql)
    match = _FIRST_WORD.match(text)
    if not match:
        return ''
    keyword = match.group(1).lower()
    if keyword == 'with':
        depth = 0
        for token in tokenize_sql(text[match.end():]):
            if token.type is not TokenType.SQL_TEXT:
                continue
            for word in re.finditer(r'\(|\)|[A-Za-z]+', token.text):
                value = word.group(0)
                if value == '(':
                    depth += 1
                elif value == ')':
                    depth -= 1
                elif depth == 0 and value.lower() in MUTATION_KEYWORDS | {'select'}:
                    return value.lower()
    return keyword


def is_mutation(sql: str) -> bool:
    """True for INSERT, UPDATE, DELETE and friends."""
    return statement_keyword(sql) in MUTATION_KEYWORDS
