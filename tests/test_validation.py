"""Tests for identifier allow-listing and lookup-table membership checks."""

import pytest

from lookup_registry.errors import InvalidColumnName, InvalidTableName, NotALookupTable
from lookup_registry.validation import (
    ensure_lookup_table,
    is_lookup_table_name,
    quote_identifier,
    require_column_name,
    require_table_name,
    validate_identifier,
)


class TestValidateIdentifier:
    @pytest.mark.parametrize("name", ["code", "full_name", "Sort_Order2", "_x", "2024_codes"])
    def test_accepts_safe_identifiers(self, name):
        assert validate_identifier(name)

    @pytest.mark.parametrize(
        "name",
        ["", "a b", "name;drop", 'x"y', "tab-le", "a" * 64, None, 12],
    )
    def test_rejects_unsafe_identifiers(self, name):
        assert not validate_identifier(name)


class TestLookupTableNames:
    @pytest.mark.parametrize(
        "name", ["widget_types", "color_codes", "order_states", "crew_roles"]
    )
    def test_suffixes_accepted(self, name):
        assert is_lookup_table_name(name)
        assert require_table_name(name) == name

    def test_wrong_suffix_rejected(self):
        assert not is_lookup_table_name("widgets")
        with pytest.raises(InvalidTableName):
            require_table_name("widgets")

    def test_bad_charset_rejected(self):
        with pytest.raises(InvalidTableName):
            require_table_name("bad-name_types")

    @pytest.mark.parametrize(
        "name",
        ["lookup_table_artifact_types", "lookup_table_config", "lookup_table_metadata"],
    )
    def test_bookkeeping_tables_are_not_lookup_tables(self, name):
        assert not is_lookup_table_name(name)

    def test_reserved_suffixed_name_rejected_for_creation(self):
        with pytest.raises(InvalidTableName):
            require_table_name("lookup_table_artifact_types")


class TestColumnNames:
    def test_valid_column(self):
        assert require_column_name("sort_order") == "sort_order"

    def test_injection_attempt_rejected(self):
        with pytest.raises(InvalidColumnName):
            require_column_name("x) VALUES (1); DROP TABLE widget_types; --")


class TestCatalogChecks:
    def test_quote_identifier_wraps_in_quotes(self, engine):
        with engine.connect() as conn:
            assert quote_identifier(conn, "full_name") == '"full_name"'

    def test_quote_identifier_refuses_unsafe_names(self, engine):
        with engine.connect() as conn:
            with pytest.raises(InvalidColumnName):
                quote_identifier(conn, 'a"; --')

    def test_existing_lookup_table(self, engine, widget_types):
        with engine.connect() as conn:
            assert ensure_lookup_table(conn, widget_types) == widget_types

    def test_missing_table(self, engine):
        with engine.connect() as conn:
            with pytest.raises(NotALookupTable):
                ensure_lookup_table(conn, "ghost_types")

    def test_bookkeeping_table_is_refused(self, engine):
        with engine.connect() as conn:
            with pytest.raises(NotALookupTable):
                ensure_lookup_table(conn, "lookup_table_artifact_types")
