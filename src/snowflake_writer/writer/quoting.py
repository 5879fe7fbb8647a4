"""
SQL quoting helpers shared by the query builder, the write strategies and the connection.
"""

from typing import Callable, Iterable, List, Optional

# addslashes-compatible escaping for string literals
_LITERAL_ESCAPES = {
    '\\': '\\\\',
    "'": "\\'",
    '"': '\\"',
    '\x00': '\\0',
}


def quote(value: str) -> str:
    """Quote a string literal"""
    return "'" + ''.join(_LITERAL_ESCAPES.get(char, char) for char in value) + "'"


def quote_identifier(value: str) -> str:
    """Quote an identifier. Always quotes, Snowflake folds unquoted names to upper case."""
    return '"' + value.replace('"', '""') + '"'


def quote_many_identifiers(items: Iterable, mapper: Optional[Callable] = None) -> List[str]:
    return [quote_identifier(mapper(item) if mapper else item) for item in items]
