"""Tests for the generic RowStore over lookup-table rows."""

import pytest

from lookup_registry.errors import (
    DuplicateCode,
    EntryNotFound,
    InvalidColumnName,
    MissingRequiredField,
    NoFieldsProvided,
    NotALookupTable,
    StorageError,
)


class TestListAndGet:
    def test_empty_table_lists_empty(self, rows, widget_types):
        assert rows.list(widget_types) == []

    def test_list_returns_created_row(self, rows, widget_types):
        rows.create(widget_types, {"code": "A", "full_name": "Alpha"})
        listed = rows.list(widget_types)
        assert len(listed) == 1
        assert listed[0]["code"] == "A"
        assert listed[0]["full_name"] == "Alpha"
        assert listed[0]["description"] is None

    def test_ordered_by_code(self, rows, widget_types):
        for code in ("C", "A", "B"):
            rows.create(widget_types, {"code": code, "full_name": code.lower()})
        assert [row["code"] for row in rows.list(widget_types)] == ["A", "B", "C"]

    def test_rows_keep_column_order(self, rows, widget_types):
        rows.create(widget_types, {"full_name": "Alpha", "code": "A"})
        assert list(rows.get(widget_types, "A")) == ["code", "full_name", "description", "created_at"]

    def test_get_missing(self, rows, widget_types):
        with pytest.raises(EntryNotFound):
            rows.get(widget_types, "NOPE")

    def test_non_lookup_table_refused(self, engine, rows):
        with engine.begin() as conn:
            conn.exec_driver_sql("CREATE TABLE artifacts (code TEXT PRIMARY KEY)")
        with pytest.raises(NotALookupTable):
            rows.list("artifacts")


class TestCreate:
    def test_create_returns_written_row(self, rows, widget_types):
        entry = rows.create(widget_types, {"code": "W1", "full_name": "Widget"})
        assert entry["code"] == "W1"
        assert entry["full_name"] == "Widget"
        assert entry["created_at"]
        assert rows.get(widget_types, "W1")["created_at"] == entry["created_at"]

    def test_client_created_at_is_overridden(self, rows, widget_types):
        entry = rows.create(
            widget_types,
            {"code": "W1", "full_name": "Widget", "created_at": "1999-01-01 00:00:00"},
        )
        assert entry["created_at"] != "1999-01-01 00:00:00"
        assert rows.get(widget_types, "W1")["created_at"] == entry["created_at"]

    @pytest.mark.parametrize(
        "row",
        [
            {"full_name": "Widget"},
            {"code": "", "full_name": "Widget"},
            {"code": "W1"},
            {"code": "W1", "full_name": ""},
            {"code": None, "full_name": "Widget"},
        ],
    )
    def test_required_fields(self, rows, widget_types, row):
        with pytest.raises(MissingRequiredField):
            rows.create(widget_types, row)

    def test_duplicate_code(self, rows, widget_types):
        rows.create(widget_types, {"code": "W1", "full_name": "Widget"})
        with pytest.raises(DuplicateCode):
            rows.create(widget_types, {"code": "W1", "full_name": "Other"})

    def test_extra_declared_columns_pass_through(self, registry, rows, widget_types):
        registry.add_column(widget_types, "weight", "number")
        rows.create(widget_types, {"code": "W1", "full_name": "Widget", "weight": 2.5})
        assert rows.get(widget_types, "W1")["weight"] == 2.5

    def test_unknown_column_is_storage_error(self, rows, widget_types):
        with pytest.raises(StorageError) as info:
            rows.create(widget_types, {"code": "W1", "full_name": "Widget", "colour": "red"})
        assert "colour" in str(info.value)

    def test_unsafe_key_rejected(self, rows, widget_types):
        with pytest.raises(InvalidColumnName):
            rows.create(widget_types, {"code": "W1", "full_name": "Widget", "x=1; --": "y"})

    def test_not_null_violation_is_storage_error(self, registry, rows):
        registry.create_table("faction_codes", "with_universe")
        with pytest.raises(StorageError):
            rows.create("faction_codes", {"code": "REB", "full_name": "Rebels"})


class TestUpdate:
    def test_partial_update(self, rows, widget_types):
        rows.create(widget_types, {"code": "W1", "full_name": "Widget", "description": "keep"})
        updated = rows.update(widget_types, "W1", {"full_name": "Gadget"})
        assert updated["full_name"] == "Gadget"
        assert updated["description"] == "keep"

    def test_path_code_wins(self, rows, widget_types):
        rows.create(widget_types, {"code": "W1", "full_name": "Widget"})
        rows.create(widget_types, {"code": "W2", "full_name": "Other"})
        rows.update(widget_types, "W1", {"code": "W2", "full_name": "Hijack"})

        assert rows.get(widget_types, "W1")["full_name"] == "Hijack"
        assert rows.get(widget_types, "W2")["full_name"] == "Other"

    def test_created_at_is_immutable(self, rows, widget_types):
        created = rows.create(widget_types, {"code": "W1", "full_name": "Widget"})
        updated = rows.update(
            widget_types, "W1", {"full_name": "Gadget", "created_at": "1999-01-01 00:00:00"}
        )
        assert updated["created_at"] == created["created_at"]

    def test_nothing_to_set(self, rows, widget_types):
        rows.create(widget_types, {"code": "W1", "full_name": "Widget"})
        with pytest.raises(NoFieldsProvided):
            rows.update(widget_types, "W1", {"code": "W1", "created_at": "now"})

    def test_missing_code(self, rows, widget_types):
        with pytest.raises(EntryNotFound):
            rows.update(widget_types, "NOPE", {"full_name": "Ghost"})


class TestDelete:
    def test_delete(self, rows, widget_types):
        rows.create(widget_types, {"code": "W1", "full_name": "Widget"})
        rows.delete(widget_types, "W1")
        assert rows.list(widget_types) == []

    def test_delete_missing_code_succeeds(self, rows, widget_types):
        assert rows.delete(widget_types, "DOES-NOT-EXIST") is None

    def test_delete_twice(self, rows, widget_types):
        rows.create(widget_types, {"code": "W1", "full_name": "Widget"})
        rows.delete(widget_types, "W1")
        rows.delete(widget_types, "W1")
