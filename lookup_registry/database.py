import logging
import shutil
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import sqlalchemy
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    exc,
    false,
    func,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from .config import (
    ARTIFACT_TYPES_TABLE,
    CONFIG_TABLE,
    METADATA_TABLE,
    PROJECTS_PATH,
    TIMESTAMP_FORMAT,
)
from .errors import AlreadyExists, InvalidProjectName, ProjectNotFound, StorageError

logger = logging.getLogger(__name__)

# ============================================================================
# BOOKKEEPING TABLES
# ============================================================================

bookkeeping = MetaData()

lookup_table_config = Table(
    CONFIG_TABLE,
    bookkeeping,
    Column("table_name", String(100), primary_key=True),
    Column("is_multi_select", Boolean, server_default=false(), default=False),
    Column("use_for_image_processing", Boolean, server_default=false(), default=False),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, server_default=func.current_timestamp()),
)

lookup_table_metadata = Table(
    METADATA_TABLE,
    bookkeeping,
    Column("table_name", String(100), primary_key=True),
    Column("column_name", String(100), primary_key=True),
    Column("display_name", String(100)),
)

lookup_table_artifact_types = Table(
    ARTIFACT_TYPES_TABLE,
    bookkeeping,
    Column("table_name", String(100), primary_key=True),
    Column("artifact_type_code", String(20), primary_key=True),
)


def ensure_bookkeeping_tables(engine: Engine) -> None:
    """Create the registry's own tables if an older project lacks them."""
    try:
        bookkeeping.create_all(engine)
    except exc.SQLAlchemyError as e:
        logger.critical(f"Failed to create bookkeeping tables: {str(e)}")
        raise StorageError(f"Could not prepare registry tables: {store_message(e)}") from e


def build_engine(url: str) -> Engine:
    """Build a SQLite engine usable from the request threads."""
    options = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every checkout sees an empty db
        options["poolclass"] = StaticPool
    engine = sqlalchemy.create_engine(url, **options)
    ensure_bookkeeping_tables(engine)
    return engine


# ============================================================================
# STATEMENT HELPERS
# ============================================================================

def store_message(error: exc.SQLAlchemyError) -> str:
    """The store's own error text, without SQLAlchemy's statement dump."""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


@contextmanager
def transaction(engine: Engine, operation: str) -> Iterator[Connection]:
    """Run a block in one transaction, wrapping store failures with context."""
    try:
        with engine.begin() as conn:
            yield conn
    except exc.SQLAlchemyError as e:
        logger.error(f"{operation} failed: {store_message(e)}")
        raise StorageError(f"{operation} failed: {store_message(e)}") from e


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


# ============================================================================
# PROJECT STORE
# ============================================================================

class ProjectStore:
    """
    Hands out one SQLite engine per project.

    Engines are opened lazily on first use and cached until ``close`` or
    ``close_all``. The cache is guarded by a lock so concurrent requests for
    the same project share a single engine.

    Layout per project::

        <projects_path>/<name>/data/<name>.db
        <projects_path>/<name>/images/raw
        <projects_path>/<name>/images/training
        <projects_path>/<name>/exports
    """

    SUBDIRECTORIES = ("data", "images/raw", "images/training", "exports")

    def __init__(self, projects_path: Optional[str] = None):
        self.projects_path = Path(projects_path or PROJECTS_PATH)
        self._engines: Dict[str, Engine] = {}
        self._lock = threading.Lock()

    def database_path(self, project: str) -> Path:
        return self.projects_path / project / "data" / f"{project}.db"

    def _check_name(self, project: str) -> str:
        if not isinstance(project, str) or not project or not all(
            c.isalnum() or c in "_-" for c in project
        ):
            raise InvalidProjectName(
                "project name must contain only letters, numbers, hyphens, and underscores"
            )
        return project

    def project_exists(self, project: str) -> bool:
        return self.database_path(project).is_file()

    def list_projects(self) -> List[str]:
        if not self.projects_path.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.projects_path.iterdir()
            if entry.is_dir() and self.project_exists(entry.name)
        )

    def create_project(self, project: str) -> Path:
        self._check_name(project)
        if self.project_exists(project):
            raise AlreadyExists(f"project already exists: {project}")

        project_dir = self.projects_path / project
        for sub in self.SUBDIRECTORIES:
            (project_dir / sub).mkdir(parents=True, exist_ok=True)

        # Creating the engine creates the database file and bookkeeping tables
        self.open(project, create=True)
        logger.info(f"Created project '{project}' at {project_dir}")
        return project_dir

    def open(self, project: str, create: bool = False) -> Engine:
        """Return the cached engine for ``project``, opening it if needed."""
        self._check_name(project)
        with self._lock:
            engine = self._engines.get(project)
            if engine is not None:
                return engine

            db_path = self.database_path(project)
            if not create and not db_path.is_file():
                raise ProjectNotFound(f"project database does not exist: {project}")

            logger.info(f"Opening project database {db_path}")
            engine = build_engine(f"sqlite:///{db_path}")
            self._engines[project] = engine
            return engine

    def close(self, project: str) -> None:
        with self._lock:
            engine = self._engines.pop(project, None)
        if engine is not None:
            engine.dispose()
            logger.info(f"Closed project database for '{project}'")

    def close_all(self) -> None:
        with self._lock:
            engines = list(self._engines.items())
            self._engines.clear()
        for project, engine in engines:
            engine.dispose()
        logger.info(f"Closed {len(engines)} project database(s)")

    def delete_project(self, project: str) -> None:
        self._check_name(project)
        if not self.project_exists(project):
            raise ProjectNotFound(f"project does not exist: {project}")
        self.close(project)
        shutil.rmtree(self.projects_path / project)
        logger.info(f"Deleted project '{project}'")
