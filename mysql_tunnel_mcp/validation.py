"""Read-only enforcement and identifier sanitization for tool input."""

import re

from mysql_tunnel_mcp.errors import ValidationError

READ_ONLY_VERBS = frozenset({"select", "show", "describe"})

_LEADING_KEYWORD = re.compile(r"\w+")
_IDENTIFIER_STRIP = re.compile(r"[^A-Za-z0-9_]")


def leading_keyword(sql: str) -> str:
    match = _LEADING_KEYWORD.match(sql.strip())
    return match.group(0).lower() if match else ""


def is_read_only_query(sql: str) -> bool:
    return leading_keyword(sql) in READ_ONLY_VERBS


def require_read_only(sql: object) -> str:
    """Return the statement unchanged, or raise ValidationError before any I/O."""
    if not isinstance(sql, str) or not sql.strip():
        raise ValidationError("Provide a SQL statement to execute")
    if not is_read_only_query(sql):
        raise ValidationError("Only SELECT, SHOW, and DESCRIBE queries are allowed")
    return sql


def sanitize_identifier(name: str) -> str:
    # Identifiers cannot be bound as parameters, so anything outside
    # [A-Za-z0-9_] is dropped before the name is spliced into SQL.
    return _IDENTIFIER_STRIP.sub("", name)


def require_identifier(name: object) -> str:
    if not isinstance(name, str):
        raise ValidationError("Table name must be a string")
    cleaned = sanitize_identifier(name)
    if not cleaned:
        raise ValidationError(f"Invalid table name: {name!r}")
    return cleaned
