import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from .config import REQUIRED_FIELDS
from .database import transaction, utc_timestamp
from .errors import DuplicateCode, EntryNotFound, MissingRequiredField, NoFieldsProvided
from .validation import ensure_lookup_table, quote_identifier, require_column_names

logger = logging.getLogger(__name__)

Value = Union[str, int, float, bool, None]
# Insertion order is column order; it drives statement text and CSV headers
Row = Dict[str, Value]

IMMUTABLE_COLUMNS = ("code", "created_at")


def missing_required_field(row: Mapping[str, Any]) -> Optional[str]:
    """Return the first required field that is missing or empty, else None."""
    for field in REQUIRED_FIELDS:
        value = row.get(field)
        if not isinstance(value, str) or value == "":
            return field
    return None


def fetch_entry(conn: Connection, table: str, code: str) -> Optional[Row]:
    row = conn.execute(
        text(
            f"SELECT * FROM {quote_identifier(conn, table)} "
            f"WHERE {quote_identifier(conn, 'code')} = :code"
        ),
        {"code": code},
    ).mappings().first()
    return dict(row) if row is not None else None


def _columns_and_params(conn: Connection, entry: Row):
    columns = [quote_identifier(conn, col) for col in entry]
    params = {f"p{i}": value for i, value in enumerate(entry.values())}
    return columns, params


def insert_entry(conn: Connection, table: str, entry: Row) -> None:
    columns, params = _columns_and_params(conn, entry)
    conn.execute(
        text(
            f"INSERT INTO {quote_identifier(conn, table)} ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + name for name in params)})"
        ),
        params,
    )


def upsert_entry(conn: Connection, table: str, entry: Row) -> None:
    """
    Insert ``entry`` or, when its code already exists, overwrite only the
    columns present in ``entry``. Unlisted columns and the stored
    created_at are preserved.
    """
    columns, params = _columns_and_params(conn, entry)
    updates = [
        f"{quoted} = excluded.{quoted}"
        for name, quoted in zip(entry, columns)
        if name not in IMMUTABLE_COLUMNS
    ]
    conflict = "DO NOTHING" if not updates else "DO UPDATE SET " + ", ".join(updates)
    conn.execute(
        text(
            f"INSERT INTO {quote_identifier(conn, table)} ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + name for name in params)}) "
            f"ON CONFLICT ({quote_identifier(conn, 'code')}) {conflict}"
        ),
        params,
    )


class RowStore:
    """
    Generic CRUD over the rows of a lookup table.

    Values are passed through untyped; the store enforces whatever column
    types the registry declared and its errors surface as StorageError.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def list(self, table: str) -> List[Row]:
        """All rows ordered by code. Empty list when the table has none."""
        with transaction(self.engine, f"list entries of {table}") as conn:
            ensure_lookup_table(conn, table)
            result = conn.execute(
                text(
                    f"SELECT * FROM {quote_identifier(conn, table)} "
                    f"ORDER BY {quote_identifier(conn, 'code')}"
                )
            )
            return [dict(row) for row in result.mappings()]

    def get(self, table: str, code: str) -> Row:
        with transaction(self.engine, f"get {table}/{code}") as conn:
            ensure_lookup_table(conn, table)
            entry = fetch_entry(conn, table, code)
        if entry is None:
            raise EntryNotFound(f"entry not found: {table}/{code}")
        return entry

    def create(self, table: str, row: Mapping[str, Value]) -> Row:
        """
        Insert a new row.

        Only the keys present in ``row`` are written. created_at is always
        stamped here, whatever the caller sent.

        Raises:
            MissingRequiredField: code or full_name missing or empty
            InvalidColumnName: A key is not a safe identifier
            DuplicateCode: The code already exists
            StorageError: Unknown column, type mismatch, constraint failure
        """
        entry: Row = dict(row)
        if missing_required_field(entry):
            raise MissingRequiredField("code and full_name are required")
        entry["created_at"] = utc_timestamp()
        require_column_names(entry)

        with transaction(self.engine, f"create entry in {table}") as conn:
            ensure_lookup_table(conn, table)
            if fetch_entry(conn, table, entry["code"]) is not None:
                raise DuplicateCode(f"code already exists in {table}: {entry['code']}")
            insert_entry(conn, table, entry)

        logger.info(f"Created {table}/{entry['code']}")
        return entry

    def update(self, table: str, code: str, row: Mapping[str, Value]) -> Row:
        """
        Partially update the row identified by ``code``.

        A code or created_at in the body is ignored; the path code always
        selects the row.
        """
        changes: Row = {
            key: value for key, value in row.items() if key not in IMMUTABLE_COLUMNS
        }
        if not changes:
            raise NoFieldsProvided("no fields to update")
        require_column_names(changes)

        with transaction(self.engine, f"update {table}/{code}") as conn:
            ensure_lookup_table(conn, table)
            columns, params = _columns_and_params(conn, changes)
            assignments = ", ".join(
                f"{column} = :{name}" for column, name in zip(columns, params)
            )
            params["where_code"] = code
            result = conn.execute(
                text(
                    f"UPDATE {quote_identifier(conn, table)} SET {assignments} "
                    f"WHERE {quote_identifier(conn, 'code')} = :where_code"
                ),
                params,
            )
            if result.rowcount == 0:
                raise EntryNotFound(f"entry not found: {table}/{code}")
            entry = fetch_entry(conn, table, code)

        logger.info(f"Updated {table}/{code}: {list(changes)}")
        return entry

    def delete(self, table: str, code: str) -> None:
        """Delete a row. Deleting a code that does not exist still succeeds."""
        with transaction(self.engine, f"delete {table}/{code}") as conn:
            ensure_lookup_table(conn, table)
            deleted = conn.execute(
                text(
                    f"DELETE FROM {quote_identifier(conn, table)} "
                    f"WHERE {quote_identifier(conn, 'code')} = :code"
                ),
                {"code": code},
            ).rowcount
        logger.info(f"Deleted {table}/{code} ({deleted} row)")
