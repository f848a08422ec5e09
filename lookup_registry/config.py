import os

from dotenv import load_dotenv

load_dotenv()

# Suffixes that mark a table as a lookup table
LOOKUP_SUFFIXES = ("_types", "_codes", "_states", "_roles")

# Registry bookkeeping tables. Some of them match the suffix rule above,
# so they are excluded explicitly.
CONFIG_TABLE = "lookup_table_config"
METADATA_TABLE = "lookup_table_metadata"
ARTIFACT_TYPES_TABLE = "lookup_table_artifact_types"
SYSTEM_TABLES = frozenset({CONFIG_TABLE, METADATA_TABLE, ARTIFACT_TYPES_TABLE})

# User-facing column types -> storage types
COLUMN_TYPES = {
    "text_20": "VARCHAR(20)",
    "text_50": "VARCHAR(50)",
    "text_100": "VARCHAR(100)",
    "text_1000": "TEXT",
    "number": "REAL",
}
DEFAULT_COLUMN_TYPE = "text_100"

# Starter column layouts. created_at is appended to every template.
TEMPLATE_REGISTRY = {
    "basic": [
        ("code", "VARCHAR(20) PRIMARY KEY"),
        ("full_name", "VARCHAR(100) NOT NULL"),
        ("description", "TEXT"),
    ],
    "with_category": [
        ("code", "VARCHAR(20) PRIMARY KEY"),
        ("full_name", "VARCHAR(100) NOT NULL"),
        ("category", "VARCHAR(50)"),
        ("description", "TEXT"),
    ],
    "with_sort_order": [
        ("code", "VARCHAR(20) PRIMARY KEY"),
        ("full_name", "VARCHAR(100) NOT NULL"),
        ("description", "TEXT"),
        ("sort_order", "INTEGER"),
    ],
    "with_universe": [
        ("code", "VARCHAR(3) PRIMARY KEY"),
        ("full_name", "VARCHAR(100) NOT NULL"),
        ("universe", "VARCHAR(100) NOT NULL"),
        ("description", "TEXT"),
        ("founded_year", "INTEGER"),
    ],
}
DEFAULT_TEMPLATE = "basic"
CREATED_AT_COLUMN = ("created_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP")

PROTECTED_COLUMNS = frozenset({"code", "full_name", "created_at"})
REQUIRED_FIELDS = ("code", "full_name")

# Import mapping value meaning "do not import this column"
SKIP_SENTINEL = "(skip)"

# created_at stamp format, matches SQLite CURRENT_TIMESTAMP
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

##ENVIRONMENT
PROJECTS_PATH = os.environ.get("PROJECTS_PATH", "./projects")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
RATE_LIMIT = os.environ.get("RATE_LIMIT", "100/minute")
RATE_LIMIT_ENABLED = os.environ.get("RATE_LIMIT_ENABLED", "true").lower() not in ("0", "false", "no")
MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", 10))
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]
