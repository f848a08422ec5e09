"""Test configuration and fixtures."""

import os

# Set environment variables before importing application code
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest

from lookup_registry.csv_engine import CSVEngine
from lookup_registry.database import build_engine
from lookup_registry.row_store import RowStore
from lookup_registry.schema_registry import SchemaRegistry


@pytest.fixture
def engine():
    """Fresh in-memory project database for each test."""
    engine = build_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def registry(engine) -> SchemaRegistry:
    return SchemaRegistry(engine)


@pytest.fixture
def rows(engine) -> RowStore:
    return RowStore(engine)


@pytest.fixture
def csv_engine(engine) -> CSVEngine:
    return CSVEngine(engine)


@pytest.fixture
def widget_types(registry) -> str:
    """A basic lookup table named widget_types."""
    registry.create_table("widget_types", "basic")
    return "widget_types"
