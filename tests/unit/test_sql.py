"""
Unit tests for SQL text helpers.
"""
import pytest
from polydb.sql import TokenType, escape_percent_signs_in_literals, has_placeholders
from polydb.sql import is_mutation, make_placeholders, quote_identifier
from polydb.sql import standardize_placeholders, statement_keyword, strip_comments
from polydb.sql import tokenize_sql


@pytest.mark.parametrize(('sql', 'style', 'expected'), [
    ('SELECT * FROM users WHERE id = ?', 'format', 'SELECT * FROM users WHERE id = %s'),
    ('SELECT * FROM users WHERE id = %s', 'qmark', 'SELECT * FROM users WHERE id = ?'),
    ('SELECT * FROM users WHERE id = %s', 'format', 'SELECT * FROM users WHERE id = %s'),
    ('SELECT * FROM users WHERE id = :id', 'format', 'SELECT * FROM users WHERE id = %(id)s'),
    ('SELECT * FROM users WHERE id = %(id)s', 'qmark', 'SELECT * FROM users WHERE id = :id'),
    ('INSERT INTO t (a, b) VALUES (?, ?)', 'format', 'INSERT INTO t (a, b) VALUES (%s, %s)'),
])
def test_standardize_placeholders(sql, style, expected):
    """Test placeholder conversion between paramstyles"""
    assert standardize_placeholders(sql, style) == expected


def test_placeholders_inside_literals_are_kept():
    """Test that ? and :name inside string literals are not rewritten"""
    sql = "SELECT * FROM t WHERE note = 'why? :because' AND id = ?"
    assert standardize_placeholders(sql, 'format') == \
        "SELECT * FROM t WHERE note = 'why? :because' AND id = %s"


def test_postgres_cast_is_not_a_named_placeholder():
    """Test that :: casts survive standardization"""
    sql = 'SELECT created_at::date FROM events WHERE id = %s'
    assert standardize_placeholders(sql, 'format') == sql
    assert not any(t.type is TokenType.NAMED_PH for t in tokenize_sql(sql))


def test_standardize_escapes_percent_only_when_asked():
    """Test that LIKE patterns are escaped for format style with parameters"""
    sql = "SELECT * FROM users WHERE name LIKE 'A%' AND value > %s"
    assert standardize_placeholders(sql, 'format') == sql
    assert standardize_placeholders(sql, 'format', escape_percent=True) == \
        "SELECT * FROM users WHERE name LIKE 'A%%' AND value > %s"
    assert standardize_placeholders(sql, 'qmark', escape_percent=True) == \
        "SELECT * FROM users WHERE name LIKE 'A%' AND value > ?"


def test_standardize_rejects_unknown_style():
    with pytest.raises(ValueError, match='Unknown placeholder style'):
        standardize_placeholders('SELECT 1', 'numeric')


def test_escape_percent_signs_in_literals():
    """Test string literal percent sign escaping"""
    sql = "SELECT * FROM users WHERE name LIKE 'test%' OR email LIKE 'example%'"
    assert escape_percent_signs_in_literals(sql) == \
        "SELECT * FROM users WHERE name LIKE 'test%%' OR email LIKE 'example%%'"

    already = "SELECT * FROM users WHERE name LIKE 'test%%'"
    assert escape_percent_signs_in_literals(already) == already


@pytest.mark.parametrize(('sql', 'expected'), [
    ('SELECT * FROM users WHERE id = %s', True),
    ('SELECT * FROM users WHERE id = ?', True),
    ('SELECT * FROM users WHERE id = :id', True),
    ('SELECT * FROM users WHERE id = %(id)s', True),
    ("SELECT * FROM users WHERE name = 'a?'", False),
    ('SELECT * FROM users', False),
    ('', False),
    (None, False),
])
def test_has_placeholders(sql, expected):
    assert has_placeholders(sql) is expected


@pytest.mark.parametrize(('identifier', 'quote_char', 'expected'), [
    ('users', '"', '"users"'),
    ('public.users', '"', '"public"."users"'),
    ('my"table', '"', '"my""table"'),
    ('users', '`', '`users`'),
    ('weird`name', '`', '`weird``name`'),
    ('users', '[', '[users]'),
])
def test_quote_identifier(identifier, quote_char, expected):
    assert quote_identifier(identifier, quote_char) == expected


def test_quote_identifier_rejects_empty():
    with pytest.raises(ValueError):
        quote_identifier('')


def test_make_placeholders():
    assert make_placeholders(3) == '%s, %s, %s'
    assert make_placeholders(2, 'qmark') == '?, ?'


def test_strip_comments_keeps_literals():
    sql = "SELECT 1 -- trailing\n/* block */ FROM t WHERE a = '--not a comment'"
    stripped = strip_comments(sql)
    assert 'trailing' not in stripped
    assert 'block' not in stripped
    assert "'--not a comment'" in stripped


@pytest.mark.parametrize(('sql', 'expected'), [
    ('select * from users', 'select'),
    ('  INSERT INTO users VALUES (1)', 'insert'),
    ('-- note\nUPDATE users SET a = 1', 'update'),
    ('(SELECT 1)', 'select'),
    ('WITH old AS (SELECT id FROM users) DELETE FROM users WHERE id IN (SELECT id FROM old)', 'delete'),
    ('WITH x AS (SELECT 1) SELECT * FROM x', 'select'),
    ('MERGE INTO users USING src ON 1 = 1', 'merge'),
    ('', ''),
])
def test_statement_keyword(sql, expected):
    assert statement_keyword(sql) == expected


def test_is_mutation():
    assert is_mutation('insert into t values (1)')
    assert is_mutation('DELETE FROM t')
    assert not is_mutation('SELECT * FROM t')
    assert not is_mutation('CREATE TABLE t (a int)')


if __name__ == '__main__':
    __import__('pytest').main([__file__])
