"""
Checks for identifiers that reach a file name or a SQL statement.

Batch ids and template owners/names end up in checkpoint and template
mirror paths; the result table name is interpolated into DDL and DML.
"""

import re

BATCH_ID = re.compile(r"^[A-Za-z0-9_\-.]+$")
TEMPLATE_IDENTIFIER = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-. ]*$")
SQL_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# PostgreSQL truncates identifiers beyond this length
POSTGRES_IDENTIFIER_LENGTH = 63

RESERVED_SQL_WORDS = frozenset({
    "select", "insert", "update", "delete", "drop", "create", "alter",
    "table", "database", "index", "view", "user", "grant", "revoke",
})


class InputValidationError(ValueError):
    """An identifier or query parameter was rejected."""


def _checked(value, field_name: str, pattern: re.Pattern, max_length: int, allowed: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"{field_name} must be a non-empty string")
    value = value.strip()
    if not pattern.match(value):
        raise InputValidationError(f"{field_name} '{value}' may only contain {allowed}")
    if len(value) > max_length:
        raise InputValidationError(f"{field_name} is longer than {max_length} characters")
    return value


def validate_batch_id(batch_id: str, field_name: str = "batch_id") -> str:
    """
    Returns the batch id without surrounding whitespace.

    Raises:
        InputValidationError: If empty, too long, or not made of letters,
                              digits, hyphens, underscores and dots
    """
    return _checked(
        batch_id, field_name, BATCH_ID, 255, "letters, digits, hyphens, underscores and dots"
    )


def validate_identifier(identifier: str, field_name: str = "identifier") -> str:
    """
    Validate a template owner or name: no path separators and no "..",
    so the value is safe inside a file name.

    >>> validate_identifier("regional-lab")
    'regional-lab'
    """
    identifier = _checked(
        identifier, field_name, TEMPLATE_IDENTIFIER, 128,
        "letters, digits, hyphens, underscores, dots and spaces",
    )
    if ".." in identifier:
        raise InputValidationError(f"{field_name} '{identifier}' may not contain '..'")
    return identifier


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 10000) -> int:
    """Row limit for ledger queries: an int in [1, max_limit]."""
    if not isinstance(limit, int) or isinstance(limit, bool):
        raise InputValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")
    if not 1 <= limit <= max_limit:
        raise InputValidationError(f"{field_name} must be between 1 and {max_limit}, got {limit}")
    return limit


def sanitize_sql_identifier(identifier: str, field_name: str = "identifier") -> str:
    """
    Validate a configurable table name before it is interpolated into SQL.

    >>> sanitize_sql_identifier("ast_result")
    'ast_result'
    """
    identifier = _checked(
        identifier, field_name, SQL_IDENTIFIER, POSTGRES_IDENTIFIER_LENGTH,
        "letters, digits and underscores, starting with a letter or underscore",
    )
    if identifier.lower() in RESERVED_SQL_WORDS:
        raise InputValidationError(f"{field_name} '{identifier}' is a reserved SQL word")
    return identifier
