"""
CSV import/export for lookup tables.

Each call is a single stateless pass over one payload for one table.
Imports never fail because of individual rows: problems are counted as
skipped and described in ImportResult.errors, one message per row.
"""

import csv
import io
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Iterable, List, Mapping, Sequence

from sqlalchemy import exc, text
from sqlalchemy.engine import Engine

from .config import REQUIRED_FIELDS, SKIP_SENTINEL
from .database import store_message, transaction, utc_timestamp
from .errors import EmptyFile, MalformedCSV, MappingIncomplete, PartialBatchError
from .row_store import missing_required_field, upsert_entry
from .schema_registry import column_names
from .validation import ensure_lookup_table, quote_identifier, require_column_names

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def skip(self, row_number: int, message: str) -> None:
        self.skipped += 1
        self.errors.append(f"Row {row_number}: {message}")

    def raise_for_errors(self) -> "ImportResult":
        """Escalate skipped rows into a PartialBatchError for callers that want it."""
        if self.skipped:
            raise PartialBatchError(self)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"imported": self.imported, "skipped": self.skipped, "errors": self.errors}


def parse_csv(data: bytes) -> List[List[str]]:
    """Parse the whole payload. Blank lines are ignored."""
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise MalformedCSV(f"failed to parse CSV: {e}") from e
    try:
        records = [
            record
            for record in csv.reader(io.StringIO(data, newline=""), strict=True)
            if record
        ]
    except csv.Error as e:
        raise MalformedCSV(f"failed to parse CSV: {e}") from e
    if not records:
        raise EmptyFile("CSV must have headers")
    return records


def format_line(values: Iterable[Any]) -> str:
    """One CSV line with minimal quoting. None renders as an empty field."""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(values)
    return buffer.getvalue()


def _lines(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> Generator[str, None, None]:
    for record in itertools.chain([header], rows):
        yield format_line(record)


class CSVEngine:
    """Bulk translation between lookup-table rows and CSV payloads."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _check_table(self, table: str) -> None:
        with transaction(self.engine, f"check table {table}") as conn:
            ensure_lookup_table(conn, table)

    def preview(self, table: str, data: bytes) -> Dict[str, Any]:
        """
        Parse a CSV payload without importing it.

        Returns:
            {"headers": [...], "row_count": <data rows, header excluded>}

        Raises:
            EmptyFile: No rows at all
            MalformedCSV: Undecodable bytes or broken quoting
        """
        self._check_table(table)
        records = parse_csv(data)
        return {"headers": records[0], "row_count": len(records) - 1}

    def import_csv(self, table: str, data: bytes, mapping: Mapping[str, str]) -> ImportResult:
        """
        Import CSV rows through a target-column -> CSV-header mapping.

        Rows are numbered from 2 (the header is row 1). Each row is written
        in its own transaction as an upsert keyed by code, so a failing row
        never affects the others.

        Args:
            table: Lookup table name
            data: Raw CSV bytes, UTF-8 with optional BOM
            mapping: {"code": "Code", "full_name": "Name", "notes": "(skip)"}

        Returns:
            ImportResult with imported/skipped counts and row diagnostics

        Raises:
            MappingIncomplete: No mapping entry for code or full_name
            InvalidColumnName: A target column is not a safe identifier
        """
        self._check_table(table)

        mapping = mapping or {}
        for required in REQUIRED_FIELDS:
            if required not in mapping:
                raise MappingIncomplete(f"{required} column must be mapped")
        active = {
            target: source
            for target, source in mapping.items()
            if source and source != SKIP_SENTINEL
        }
        require_column_names(active)

        records = parse_csv(data)
        headers, data_rows = records[0], records[1:]

        header_index: Dict[str, int] = {}
        for position, header in enumerate(headers):
            header_index.setdefault(header, position)
        # Targets whose source header is absent resolve to nothing on every row
        unknown = [source for source in active.values() if source not in header_index]
        if unknown:
            logger.warning(f"CSV column(s) not found in header: {', '.join(unknown)}")
        positions = [
            (target, header_index[source])
            for target, source in active.items()
            if source in header_index
        ]

        result = ImportResult()
        logger.info(f"Importing {len(data_rows)} CSV row(s) into {table}")

        for row_number, record in enumerate(data_rows, start=2):
            if len(record) != len(headers):
                result.skip(row_number, "column count mismatch")
                continue

            entry = {target: record[position] for target, position in positions if record[position] != ""}

            missing = missing_required_field(entry)
            if missing:
                result.skip(row_number, f"missing {missing}")
                continue

            entry["created_at"] = utc_timestamp()
            try:
                with self.engine.begin() as conn:
                    upsert_entry(conn, table, entry)
            except exc.SQLAlchemyError as e:
                logger.debug(f"Import row {row_number} into {table} failed: {store_message(e)}")
                result.skip(row_number, store_message(e))
                continue
            result.imported += 1

        logger.info(
            f"Import into {table} complete: {result.imported} imported, "
            f"{result.skipped} skipped"
        )
        return result

    def iter_export(self, table: str) -> Generator[str, None, None]:
        """
        Snapshot ``table`` and return a generator of CSV lines.

        The table check and the read happen before this returns, so errors
        surface to the caller rather than midway through a stream.
        """
        with transaction(self.engine, f"export {table}") as conn:
            ensure_lookup_table(conn, table)
            header = [name for name in column_names(conn, table) if name != "created_at"]
            rows = conn.execute(
                text(
                    f"SELECT {', '.join(quote_identifier(conn, name) for name in header)} "
                    f"FROM {quote_identifier(conn, table)} "
                    f"ORDER BY {quote_identifier(conn, 'code')}"
                )
            ).all()
        logger.info(f"Exporting {len(rows)} row(s) from {table}")
        return _lines(header, rows)

    def export(self, table: str) -> str:
        return "".join(self.iter_export(table))
