import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.engine import Engine

from .config import (
    CORS_ORIGINS,
    DEFAULT_COLUMN_TYPE,
    DEFAULT_TEMPLATE,
    LOG_LEVEL,
    MAX_UPLOAD_MB,
    RATE_LIMIT,
    RATE_LIMIT_ENABLED,
)
from .csv_engine import CSVEngine
from .database import ProjectStore
from .errors import (
    ConflictError,
    NotFoundError,
    RegistryError,
    StorageError,
    ValidationError,
)
from .row_store import RowStore
from .schema_registry import SchemaRegistry

# Initialize the API App
app = FastAPI(
    title="Lookup Registry",
    description="Runtime-defined lookup tables for per-project artifact datasets",
    version="1.0.0",
)
logger = logging.getLogger("uvicorn")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate Limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[RATE_LIMIT],
    enabled=RATE_LIMIT_ENABLED,
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

project_store = ProjectStore()


# Lifecycle Events
@app.on_event("startup")
async def startup_event():
    """Prepare the projects directory before serving requests."""
    logging.getLogger("lookup_registry").setLevel(LOG_LEVEL)
    Path(project_store.projects_path).mkdir(parents=True, exist_ok=True)
    logger.info(f"Projects directory: {project_store.projects_path}")


@app.on_event("shutdown")
async def shutdown_event():
    """Dispose every open project engine."""
    project_store.close_all()
    logger.info("Clean shutdown complete")


# Error Mapping
_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StorageError, 500),
)


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, error: RegistryError):
    status_code = next(
        (status for error_type, status in _STATUS_BY_ERROR if isinstance(error, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {error}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {error}")
    return JSONResponse(status_code=status_code, content={"error": str(error)})


# Dependencies
def get_project_store() -> ProjectStore:
    return project_store


def get_engine(project: str, store: ProjectStore = Depends(get_project_store)) -> Engine:
    return store.open(project)


def get_registry(engine: Engine = Depends(get_engine)) -> SchemaRegistry:
    return SchemaRegistry(engine)


def get_rows(engine: Engine = Depends(get_engine)) -> RowStore:
    return RowStore(engine)


def get_csv(engine: Engine = Depends(get_engine)) -> CSVEngine:
    return CSVEngine(engine)


async def read_upload(file: UploadFile) -> bytes:
    data = await file.read()
    if len(data) > MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"file exceeds {MAX_UPLOAD_MB} MB")
    return data


# Request models
class CreateProjectRequest(BaseModel):
    project_name: str = Field(..., description="Letters, numbers, hyphens, underscores")


class CreateTableRequest(BaseModel):
    table_name: str = Field(..., description="Must end with _types, _codes, _states or _roles")
    template: str = Field(default=DEFAULT_TEMPLATE)
    is_multi_select: bool = False


class AddColumnRequest(BaseModel):
    column_name: str
    column_type: str = Field(default=DEFAULT_COLUMN_TYPE)


class DisplayNameRequest(BaseModel):
    display_name: str


class ArtifactTypesRequest(BaseModel):
    artifact_types: List[str] = Field(default_factory=list)


class ConfigRequest(BaseModel):
    is_multi_select: Optional[bool] = None
    use_for_image_processing: Optional[bool] = None


# Health Check Endpoint
@app.get("/")
async def health_check():
    return {"status": "healthy", "service": "lookup-registry", "version": "1.0.0"}


# Projects
@app.get("/api/projects")
def list_projects(store: ProjectStore = Depends(get_project_store)):
    return {"projects": store.list_projects()}


@app.post("/api/projects", status_code=201)
def create_project(request: CreateProjectRequest, store: ProjectStore = Depends(get_project_store)):
    store.create_project(request.project_name)
    return {"project_name": request.project_name, "created": True}


@app.delete("/api/projects/{project}")
def delete_project(project: str, store: ProjectStore = Depends(get_project_store)):
    store.delete_project(project)
    return {"deleted": True}


# Lookup tables
@app.get("/api/projects/{project}/lookup-tables")
def list_lookup_tables(
    artifact_type: Optional[str] = Query(None, description="Only tables associated with this artifact type"),
    registry: SchemaRegistry = Depends(get_registry),
):
    return {"tables": registry.list_tables(artifact_type)}


@app.post("/api/projects/{project}/lookup-tables", status_code=201)
def create_lookup_table(request: CreateTableRequest, registry: SchemaRegistry = Depends(get_registry)):
    return registry.create_table(request.table_name, request.template, request.is_multi_select)


@app.delete("/api/projects/{project}/lookup-tables/{table}")
def delete_lookup_table(table: str, registry: SchemaRegistry = Depends(get_registry)):
    registry.delete_table(table)
    return {"deleted": True}


@app.post("/api/projects/{project}/lookup-tables/{table}/clear")
def clear_lookup_table(table: str, registry: SchemaRegistry = Depends(get_registry)):
    return {"cleared": True, "rows_deleted": registry.clear_table(table)}


# Schema
@app.get("/api/projects/{project}/lookups/{table}/schema")
def get_lookup_schema(table: str, registry: SchemaRegistry = Depends(get_registry)):
    return registry.get_schema(table)


@app.put("/api/projects/{project}/lookups/{table}/artifact-types")
def update_artifact_types(
    table: str, request: ArtifactTypesRequest, registry: SchemaRegistry = Depends(get_registry)
):
    codes = registry.update_artifact_types(table, request.artifact_types)
    return {"table_name": table, "artifact_types": codes, "updated": True}


@app.put("/api/projects/{project}/lookups/{table}/config")
def update_lookup_config(table: str, request: ConfigRequest, registry: SchemaRegistry = Depends(get_registry)):
    config = registry.update_config(
        table,
        is_multi_select=request.is_multi_select,
        use_for_image_processing=request.use_for_image_processing,
    )
    return {"table_name": table, **config, "updated": True}


@app.post("/api/projects/{project}/lookups/{table}/columns", status_code=201)
def add_lookup_column(table: str, request: AddColumnRequest, registry: SchemaRegistry = Depends(get_registry)):
    return registry.add_column(table, request.column_name, request.column_type)


@app.delete("/api/projects/{project}/lookups/{table}/columns/{column}")
def drop_lookup_column(table: str, column: str, registry: SchemaRegistry = Depends(get_registry)):
    registry.drop_column(table, column)
    return {"deleted": True}


@app.put("/api/projects/{project}/lookups/{table}/columns/{column}/display-name")
def set_display_name(
    table: str, column: str, request: DisplayNameRequest, registry: SchemaRegistry = Depends(get_registry)
):
    result = registry.set_column_display_name(table, column, request.display_name)
    return {**result, "updated": True}


# CSV
@app.post("/api/projects/{project}/lookups/{table}/import/parse")
async def parse_lookup_csv(table: str, file: UploadFile = File(...), csv_engine: CSVEngine = Depends(get_csv)):
    return csv_engine.preview(table, await read_upload(file))


@app.post("/api/projects/{project}/lookups/{table}/import")
async def import_lookup_csv(
    table: str,
    file: UploadFile = File(...),
    mapping: str = Form(..., description='JSON object: {"code": "Code", "notes": "(skip)"}'),
    csv_engine: CSVEngine = Depends(get_csv),
):
    try:
        parsed_mapping = json.loads(mapping)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="invalid mapping JSON")
    if not isinstance(parsed_mapping, dict):
        raise HTTPException(status_code=400, detail="mapping must be a JSON object")

    result = csv_engine.import_csv(table, await read_upload(file), parsed_mapping)
    logger.info(f"CSV import into {table}: {result.imported} imported, {result.skipped} skipped")
    return result.to_dict()


@app.get("/api/projects/{project}/lookups/{table}/export")
def export_lookup_csv(table: str, csv_engine: CSVEngine = Depends(get_csv)):
    return StreamingResponse(
        csv_engine.iter_export(table),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={table}.csv"},
    )


# Entries
@app.get("/api/projects/{project}/lookups/{table}")
def list_entries(table: str, rows: RowStore = Depends(get_rows)):
    return {"entries": rows.list(table)}


@app.post("/api/projects/{project}/lookups/{table}", status_code=201)
def create_entry(table: str, entry: Dict[str, Any] = Body(...), rows: RowStore = Depends(get_rows)):
    return rows.create(table, entry)


@app.get("/api/projects/{project}/lookups/{table}/{code}")
def get_entry(table: str, code: str, rows: RowStore = Depends(get_rows)):
    return rows.get(table, code)


@app.put("/api/projects/{project}/lookups/{table}/{code}")
def update_entry(table: str, code: str, entry: Dict[str, Any] = Body(...), rows: RowStore = Depends(get_rows)):
    return rows.update(table, code, entry)


@app.delete("/api/projects/{project}/lookups/{table}/{code}")
def delete_entry(table: str, code: str, rows: RowStore = Depends(get_rows)):
    rows.delete(table, code)
    return {"deleted": True}
