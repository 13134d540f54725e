"""Tests for table declarations and column types."""

import sqlite3
from datetime import date, datetime, timezone

import pytest

from clinisync.store import (
    Column,
    ColumnType,
    Destination,
    SchemaError,
    TableSchema,
)


class TestDestination:
    """Tests for the Destination enum."""

    def test_dirty_column(self):
        assert Destination.DEBUG.dirty_column == "to_sync_debug"
        assert Destination.INSIGHT.dirty_column == "to_sync_insight"


class TestColumnType:
    """Tests for value conversion to and from SQLite."""

    def test_boolean(self):
        assert ColumnType.BOOLEAN.to_sql(True) == 1
        assert ColumnType.BOOLEAN.to_sql(False) == 0
        assert ColumnType.BOOLEAN.from_sql(1) is True

    def test_timestamp_keeps_microseconds(self):
        value = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        stored = ColumnType.TIMESTAMP.to_sql(value)

        assert stored == "2026-03-01T12:00:00.000000+00:00"
        assert ColumnType.TIMESTAMP.from_sql(stored) == value

    def test_date_accepts_strings_and_datetimes(self):
        assert ColumnType.DATE.to_sql("1990-05-17") == "1990-05-17"
        assert ColumnType.DATE.to_sql(datetime(1990, 5, 17, 8, 30)) == "1990-05-17"
        assert ColumnType.DATE.from_sql("1990-05-17") == date(1990, 5, 17)

    def test_none_passes_through(self):
        for column_type in ColumnType:
            assert column_type.to_sql(None) is None
            assert column_type.from_sql(None) is None

    def test_sql_types(self):
        assert ColumnType.BOOLEAN.sql_type == "INTEGER"
        assert ColumnType.REAL.sql_type == "REAL"
        assert ColumnType.DATE.sql_type == "TEXT"


class TestColumn:
    def test_ddl_with_text_default(self):
        column = Column("status", ColumnType.TEXT, not_null=True, default="it's ok")
        assert column.ddl() == "status TEXT NOT NULL DEFAULT 'it''s ok'"

    def test_ddl_with_boolean_default(self):
        column = Column("flag", ColumnType.BOOLEAN, default=True)
        assert column.ddl() == "flag INTEGER DEFAULT 1"


class TestTableSchema:
    """Tests for schema validation and DDL generation."""

    def test_bookkeeping_columns_attached(self):
        schema = TableSchema("notes", [Column("body", ColumnType.TEXT)])
        names = [c.name for c in schema.columns]

        assert names == [
            "id",
            "sync_id",
            "created",
            "updated",
            "synced",
            "to_sync_debug",
            "to_sync_insight",
            "can_delete",
            "body",
        ]
        assert schema.entity_names == ["body"]

    def test_single_destination(self):
        schema = TableSchema(
            "notes", [Column("body", ColumnType.TEXT)], destinations=[Destination.DEBUG]
        )
        names = [c.name for c in schema.columns]

        assert "to_sync_debug" in names
        assert "to_sync_insight" not in names

    def test_duplicate_column_rejected(self):
        with pytest.raises(SchemaError, match="Duplicate column"):
            TableSchema(
                "notes",
                [Column("body", ColumnType.TEXT), Column("body", ColumnType.TEXT)],
            )

    def test_entity_column_shadowing_bookkeeping_rejected(self):
        with pytest.raises(SchemaError, match="Duplicate column 'updated'"):
            TableSchema("notes", [Column("updated", ColumnType.TEXT)])

    def test_entity_primary_key_rejected(self):
        with pytest.raises(SchemaError, match="primary key"):
            TableSchema("notes", [Column("code", ColumnType.TEXT, primary_key=True)])

    def test_invalid_names_rejected(self):
        with pytest.raises(SchemaError, match="Invalid table name"):
            TableSchema("bad name", [Column("body", ColumnType.TEXT)])
        with pytest.raises(SchemaError, match="Invalid column name"):
            TableSchema("notes", [Column("body; DROP", ColumnType.TEXT)])

    def test_destinations_validated(self):
        with pytest.raises(SchemaError, match="no destinations"):
            TableSchema("notes", [Column("body", ColumnType.TEXT)], destinations=[])
        with pytest.raises(SchemaError, match="destination twice"):
            TableSchema(
                "notes",
                [Column("body", ColumnType.TEXT)],
                destinations=[Destination.DEBUG, Destination.DEBUG],
            )

    def test_schema_error_is_value_error(self):
        with pytest.raises(ValueError):
            TableSchema("", [])

    def test_equality(self):
        a = TableSchema("notes", [Column("body", ColumnType.TEXT)])
        b = TableSchema("notes", [Column("body", ColumnType.TEXT)])
        c = TableSchema("notes", [Column("body", ColumnType.INTEGER)])

        assert a == b
        assert hash(a) == hash(b)
        assert a != c

    def test_column_lookup(self):
        schema = TableSchema("notes", [Column("body", ColumnType.TEXT)])

        assert schema.column("body").type is ColumnType.TEXT
        with pytest.raises(KeyError):
            schema.column("missing")

    def test_create_sql_is_valid(self):
        schema = TableSchema(
            "notes",
            [
                Column("body", ColumnType.TEXT),
                Column("status", ColumnType.TEXT, default="ok"),
            ],
        )
        conn = sqlite3.connect(":memory:")
        conn.executescript(schema.create_sql())
        # Running twice is harmless
        conn.executescript(schema.create_sql())

        conn.execute(
            "INSERT INTO notes (sync_id, created, updated) VALUES ('a', 'x', 'x')"
        )
        row = conn.execute(
            "SELECT to_sync_debug, to_sync_insight, can_delete, status FROM notes"
        ).fetchone()
        assert row == (1, 1, 0, "ok")

        indexes = {
            r[0]
            for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'notes'"
            )
        }
        assert "idx_notes_sync_id" in indexes
        assert "idx_notes_to_sync_debug" in indexes
        assert "idx_notes_to_sync_insight" in indexes
        conn.close()
