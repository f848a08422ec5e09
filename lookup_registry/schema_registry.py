"""
Schema Registry

Creates and mutates lookup tables whose column sets are only known at
runtime. Table and column names cannot be bound as statement parameters, so
every identifier goes through the allow-list in ``validation`` and is quoted
before it is interpolated into DDL text. The registry's own state (config
flags, display names, artifact-type associations) lives in the bookkeeping
tables declared in ``database``.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, inspect, select, text
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Connection, Engine

from .config import (
    COLUMN_TYPES,
    CREATED_AT_COLUMN,
    DEFAULT_COLUMN_TYPE,
    DEFAULT_TEMPLATE,
    PROTECTED_COLUMNS,
    TEMPLATE_REGISTRY,
)
from .database import (
    lookup_table_artifact_types,
    lookup_table_config,
    lookup_table_metadata,
    transaction,
)
from .errors import (
    AlreadyExists,
    ColumnNotFound,
    NoFieldsProvided,
    ProtectedColumn,
    UnknownColumnType,
    UnknownTemplate,
)
from .validation import (
    ensure_lookup_table,
    is_lookup_table_name,
    quote_identifier,
    require_column_name,
    require_table_name,
)

logger = logging.getLogger(__name__)


def table_columns(conn: Connection, table: str) -> List[Dict[str, Any]]:
    """Live catalog columns of ``table`` in declaration order."""
    inspector = inspect(conn)
    primary_keys = set(inspector.get_pk_constraint(table).get("constrained_columns") or [])
    return [
        {
            "name": col["name"],
            "type": str(col["type"]),
            "nullable": bool(col["nullable"]),
            "primary_key": col["name"] in primary_keys,
        }
        for col in inspector.get_columns(table)
    ]


def column_names(conn: Connection, table: str) -> List[str]:
    return [col["name"] for col in table_columns(conn, table)]


def _read_config(conn: Connection, table: str) -> Dict[str, bool]:
    row = conn.execute(
        select(
            lookup_table_config.c.is_multi_select,
            lookup_table_config.c.use_for_image_processing,
        ).where(lookup_table_config.c.table_name == table)
    ).first()
    # No config row (e.g. creation interrupted after the DDL) means all flags off
    if row is None:
        return {"is_multi_select": False, "use_for_image_processing": False}
    return {
        "is_multi_select": bool(row.is_multi_select),
        "use_for_image_processing": bool(row.use_for_image_processing),
    }


class SchemaRegistry:
    """Schema operations for the lookup tables of one project store."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def list_tables(self, artifact_type: Optional[str] = None) -> List[str]:
        """
        List lookup tables, sorted case-insensitively.

        Args:
            artifact_type: Only return tables associated with this code

        Returns:
            Table names; bookkeeping tables are never included
        """
        with transaction(self.engine, "list lookup tables") as conn:
            names = [
                name for name in inspect(conn).get_table_names()
                if is_lookup_table_name(name)
            ]
            if artifact_type:
                associated = set(
                    conn.execute(
                        select(lookup_table_artifact_types.c.table_name).where(
                            lookup_table_artifact_types.c.artifact_type_code == artifact_type
                        )
                    ).scalars()
                )
                names = [name for name in names if name in associated]
        return sorted(names, key=str.lower)

    def create_table(
        self,
        name: str,
        template: str = DEFAULT_TEMPLATE,
        is_multi_select: bool = False,
    ) -> Dict[str, Any]:
        """
        Create a lookup table from a template and record its config row.

        The table DDL and the config insert run as two separate transactions.

        Raises:
            InvalidTableName: Bad suffix or characters, or a reserved name
            UnknownTemplate: Template not in TEMPLATE_REGISTRY
            AlreadyExists: A table with that name is already in the catalog
            StorageError: The store rejected either statement
        """
        require_table_name(name)
        template = template or DEFAULT_TEMPLATE
        if template not in TEMPLATE_REGISTRY:
            raise UnknownTemplate(
                f"template must be one of: {', '.join(TEMPLATE_REGISTRY)}"
            )

        columns = TEMPLATE_REGISTRY[template] + [CREATED_AT_COLUMN]

        with transaction(self.engine, f"create table {name}") as conn:
            if inspect(conn).has_table(name):
                raise AlreadyExists(f"table already exists: {name}")
            column_sql = ",\n    ".join(
                f"{quote_identifier(conn, col)} {ddl}" for col, ddl in columns
            )
            conn.execute(
                text(f"CREATE TABLE {quote_identifier(conn, name)} (\n    {column_sql}\n)")
            )

        with transaction(self.engine, f"create config for {name}") as conn:
            stmt = insert(lookup_table_config).values(
                table_name=name,
                is_multi_select=bool(is_multi_select),
                use_for_image_processing=False,
            )
            conn.execute(
                stmt.on_conflict_do_update(
                    index_elements=[lookup_table_config.c.table_name],
                    set_={
                        "is_multi_select": stmt.excluded.is_multi_select,
                        "use_for_image_processing": stmt.excluded.use_for_image_processing,
                        "updated_at": func.current_timestamp(),
                    },
                )
            )

        logger.info(f"Created lookup table {name} (template={template})")
        return {
            "table_name": name,
            "template": template,
            "is_multi_select": bool(is_multi_select),
            "created": True,
        }

    def delete_table(self, table: str) -> None:
        """Drop a lookup table and every bookkeeping row that refers to it."""
        with transaction(self.engine, f"delete table {table}") as conn:
            ensure_lookup_table(conn, table)
            conn.execute(text(f"DROP TABLE {quote_identifier(conn, table)}"))
            for bookkeeping_table in (
                lookup_table_artifact_types,
                lookup_table_config,
                lookup_table_metadata,
            ):
                conn.execute(
                    delete(bookkeeping_table).where(bookkeeping_table.c.table_name == table)
                )
        logger.info(f"Deleted lookup table {table}")

    def clear_table(self, table: str) -> int:
        """Delete all rows, keeping the structure. Returns the row count removed."""
        with transaction(self.engine, f"clear table {table}") as conn:
            ensure_lookup_table(conn, table)
            deleted = conn.execute(text(f"DELETE FROM {quote_identifier(conn, table)}")).rowcount
        logger.info(f"Cleared {deleted} row(s) from {table}")
        return deleted

    def add_column(
        self, table: str, name: str, column_type: str = DEFAULT_COLUMN_TYPE
    ) -> Dict[str, Any]:
        with transaction(self.engine, f"add column {name} to {table}") as conn:
            ensure_lookup_table(conn, table)
            require_column_name(name)
            column_type = column_type or DEFAULT_COLUMN_TYPE
            if column_type not in COLUMN_TYPES:
                raise UnknownColumnType(
                    f"column_type must be one of: {', '.join(COLUMN_TYPES)}"
                )
            conn.execute(
                text(
                    f"ALTER TABLE {quote_identifier(conn, table)} "
                    f"ADD COLUMN {quote_identifier(conn, name)} {COLUMN_TYPES[column_type]}"
                )
            )
        logger.info(f"Added column {table}.{name} ({column_type})")
        return {"column_name": name, "column_type": column_type, "added": True}

    def drop_column(self, table: str, name: str) -> None:
        """Drop a column and its display-name metadata. Cell data is lost."""
        with transaction(self.engine, f"drop column {name} from {table}") as conn:
            ensure_lookup_table(conn, table)
            if name in PROTECTED_COLUMNS:
                raise ProtectedColumn(
                    "cannot delete required columns: " + ", ".join(sorted(PROTECTED_COLUMNS))
                )
            require_column_name(name)
            if name not in column_names(conn, table):
                raise ColumnNotFound(f"column not found: {table}.{name}")
            conn.execute(
                text(
                    f"ALTER TABLE {quote_identifier(conn, table)} "
                    f"DROP COLUMN {quote_identifier(conn, name)}"
                )
            )
            conn.execute(
                delete(lookup_table_metadata).where(
                    lookup_table_metadata.c.table_name == table,
                    lookup_table_metadata.c.column_name == name,
                )
            )
        logger.info(f"Dropped column {table}.{name}")

    def get_schema(self, table: str) -> Dict[str, Any]:
        """
        Describe a lookup table.

        Returns:
            {
                "table_name": "widget_types",
                "columns": [{"name", "type", "nullable", "primary_key", "display_name"}, ...],
                "artifact_types": ["SW", ...],
                "is_multi_select": False,
                "use_for_image_processing": False
            }
        """
        with transaction(self.engine, f"read schema of {table}") as conn:
            ensure_lookup_table(conn, table)
            columns = table_columns(conn, table)
            display_names = dict(
                conn.execute(
                    select(
                        lookup_table_metadata.c.column_name,
                        lookup_table_metadata.c.display_name,
                    ).where(lookup_table_metadata.c.table_name == table)
                ).all()
            )
            artifact_types = list(
                conn.execute(
                    select(lookup_table_artifact_types.c.artifact_type_code)
                    .where(lookup_table_artifact_types.c.table_name == table)
                    .order_by(lookup_table_artifact_types.c.artifact_type_code)
                ).scalars()
            )
            config = _read_config(conn, table)

        for col in columns:
            col["display_name"] = display_names.get(col["name"]) or col["name"]

        return {
            "table_name": table,
            "columns": columns,
            "artifact_types": artifact_types,
            **config,
        }

    def update_artifact_types(self, table: str, codes: Iterable[str]) -> List[str]:
        """Replace the table's artifact-type associations with ``codes``."""
        unique_codes = list(dict.fromkeys(code for code in codes or [] if code))

        with transaction(self.engine, f"update artifact types of {table}") as conn:
            ensure_lookup_table(conn, table)
            conn.execute(
                delete(lookup_table_artifact_types).where(
                    lookup_table_artifact_types.c.table_name == table
                )
            )
            if unique_codes:
                conn.execute(
                    insert(lookup_table_artifact_types),
                    [
                        {"table_name": table, "artifact_type_code": code}
                        for code in unique_codes
                    ],
                )
        logger.info(f"Set artifact types of {table} to {unique_codes}")
        return unique_codes

    def update_config(
        self,
        table: str,
        is_multi_select: Optional[bool] = None,
        use_for_image_processing: Optional[bool] = None,
    ) -> Dict[str, bool]:
        """
        Partially upsert the config flags.

        Flags left as None keep their stored value; on first insert they
        default to False.
        """
        provided = {
            key: bool(value)
            for key, value in (
                ("is_multi_select", is_multi_select),
                ("use_for_image_processing", use_for_image_processing),
            )
            if value is not None
        }
        if not provided:
            raise NoFieldsProvided("no fields to update")

        with transaction(self.engine, f"update config of {table}") as conn:
            ensure_lookup_table(conn, table)
            stmt = insert(lookup_table_config).values(
                table_name=table,
                is_multi_select=provided.get("is_multi_select", False),
                use_for_image_processing=provided.get("use_for_image_processing", False),
            )
            set_ = {key: stmt.excluded[key] for key in provided}
            set_["updated_at"] = func.current_timestamp()
            conn.execute(
                stmt.on_conflict_do_update(
                    index_elements=[lookup_table_config.c.table_name], set_=set_
                )
            )
            config = _read_config(conn, table)

        logger.info(f"Updated config of {table}: {provided}")
        return config

    def set_column_display_name(self, table: str, column: str, display_name: str) -> Dict[str, str]:
        with transaction(self.engine, f"set display name of {table}.{column}") as conn:
            ensure_lookup_table(conn, table)
            if column not in column_names(conn, table):
                raise ColumnNotFound(f"column not found: {table}.{column}")
            stmt = insert(lookup_table_metadata).values(
                table_name=table, column_name=column, display_name=display_name
            )
            conn.execute(
                stmt.on_conflict_do_update(
                    index_elements=[
                        lookup_table_metadata.c.table_name,
                        lookup_table_metadata.c.column_name,
                    ],
                    set_={"display_name": stmt.excluded.display_name},
                )
            )
        return {"column_name": column, "display_name": display_name}
