import logging
import re
from typing import Iterable

from sqlalchemy import inspect, quoted_name
from sqlalchemy.engine import Connection

from .config import LOOKUP_SUFFIXES, SYSTEM_TABLES
from .errors import InvalidColumnName, InvalidTableName, NotALookupTable

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_]+")


# Validate SQL identifiers
def validate_identifier(name: str) -> bool:
    """
    Validate that a database identifier (table/column) is safe:
    - Non-empty
    - Max 63 chars
    - Contains only letters, digits, underscores
    """
    if not isinstance(name, str) or len(name) == 0 or len(name) > 63:
        return False
    return bool(_IDENTIFIER_RE.fullmatch(name))


def is_lookup_table_name(name: str) -> bool:
    """Naming convention only; says nothing about whether the table exists."""
    return (
        validate_identifier(name)
        and name.endswith(LOOKUP_SUFFIXES)
        and name not in SYSTEM_TABLES
    )


def require_table_name(name: str) -> str:
    if not isinstance(name, str) or not name.endswith(LOOKUP_SUFFIXES):
        raise InvalidTableName(
            "table_name must end with " + ", ".join(LOOKUP_SUFFIXES)
        )
    if not validate_identifier(name):
        raise InvalidTableName(
            "table_name must contain only letters, numbers, and underscores"
        )
    if name in SYSTEM_TABLES:
        raise InvalidTableName(f"'{name}' is reserved for registry bookkeeping")
    return name


def require_column_name(name: str) -> str:
    if not validate_identifier(name):
        logger.warning(f"Blocked invalid column identifier: {name!r}")
        raise InvalidColumnName(
            f"column name {name!r} must contain only letters, numbers, and underscores"
        )
    return name


def require_column_names(names: Iterable[str]) -> None:
    for name in names:
        require_column_name(name)


def quote_identifier(conn: Connection, name: str) -> str:
    """Quote an identifier for interpolation into statement text.

    Callers must have validated ``name`` first; this is the only place
    identifiers get turned into SQL text.
    """
    if not validate_identifier(name):
        raise InvalidColumnName(f"refusing to quote unsafe identifier {name!r}")
    return conn.dialect.identifier_preparer.quote(quoted_name(name, quote=True))


def ensure_lookup_table(conn: Connection, table: str) -> str:
    """Check ``table`` against the naming rule AND the live catalog.

    A fresh inspector is created on each call so schema changes made by
    other requests are always visible.
    """
    if not is_lookup_table_name(table):
        logger.warning(f"Blocked access to non-lookup table: {table!r}")
        raise NotALookupTable(f"invalid or non-existent lookup table: {table}")
    if not inspect(conn).has_table(table):
        raise NotALookupTable(f"invalid or non-existent lookup table: {table}")
    return table
