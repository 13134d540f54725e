"""Declarative column schema shared by every synced table.

A table is described once as a list of entity-specific columns. The
bookkeeping columns (local id, sync id, timestamps, one dirty flag per
destination, delete marker) are attached automatically.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any


class SchemaError(ValueError):
    """Raised when a table declaration is invalid."""


class Destination(Enum):
    """Remote systems a record must converge with."""

    DEBUG = "debug"
    INSIGHT = "insight"

    @property
    def dirty_column(self) -> str:
        """Name of this destination's dirty-flag column."""
        return f"to_sync_{self.value}"


ALL_DESTINATIONS: tuple[Destination, ...] = tuple(Destination)


class ColumnType(Enum):
    """Storage types understood by the record store."""

    INTEGER = "INTEGER"
    REAL = "REAL"
    TEXT = "TEXT"
    BOOLEAN = "BOOLEAN"
    TIMESTAMP = "TIMESTAMP"
    DATE = "DATE"

    @property
    def sql_type(self) -> str:
        if self in (ColumnType.INTEGER, ColumnType.BOOLEAN):
            return "INTEGER"
        if self is ColumnType.REAL:
            return "REAL"
        return "TEXT"

    def to_sql(self, value: Any) -> Any:
        """Convert a Python value to its SQLite storage form."""
        if value is None:
            return None
        if self is ColumnType.BOOLEAN:
            return 1 if value else 0
        if self is ColumnType.TIMESTAMP:
            if isinstance(value, datetime):
                return value.isoformat(timespec="microseconds")
            return datetime.fromisoformat(value).isoformat(timespec="microseconds")
        if self is ColumnType.DATE:
            if isinstance(value, datetime):
                return value.date().isoformat()
            if isinstance(value, date):
                return value.isoformat()
            return date.fromisoformat(value).isoformat()
        if self is ColumnType.INTEGER:
            return int(value)
        if self is ColumnType.REAL:
            return float(value)
        return str(value)

    def from_sql(self, value: Any) -> Any:
        """Convert a stored SQLite value back to Python."""
        if value is None:
            return None
        if self is ColumnType.BOOLEAN:
            return bool(value)
        if self is ColumnType.TIMESTAMP:
            return datetime.fromisoformat(value)
        if self is ColumnType.DATE:
            return date.fromisoformat(value)
        return value


@dataclass(frozen=True)
class Column:
    """A single column declaration."""

    name: str
    type: ColumnType
    primary_key: bool = False
    auto_increment: bool = False
    not_null: bool = False
    default: Any = None

    def ddl(self) -> str:
        parts = [self.name, self.type.sql_type]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        if self.auto_increment:
            parts.append("AUTOINCREMENT")
        if self.not_null:
            parts.append("NOT NULL")
        if self.default is not None:
            stored = self.type.to_sql(self.default)
            if isinstance(stored, str):
                stored = "'" + stored.replace("'", "''") + "'"
            parts.append(f"DEFAULT {stored}")
        return " ".join(parts)


# Bookkeeping column names
ID = "id"
SYNC_ID = "sync_id"
CREATED = "created"
UPDATED = "updated"
SYNCED = "synced"
CAN_DELETE = "can_delete"


def bookkeeping_columns(destinations: tuple[Destination, ...]) -> list[Column]:
    """Columns every synced table carries, in declaration order."""
    columns = [
        Column(ID, ColumnType.INTEGER, primary_key=True, auto_increment=True, not_null=True),
        Column(SYNC_ID, ColumnType.TEXT),
        Column(CREATED, ColumnType.TIMESTAMP, not_null=True),
        Column(UPDATED, ColumnType.TIMESTAMP, not_null=True),
        Column(SYNCED, ColumnType.TIMESTAMP),
    ]
    for destination in destinations:
        columns.append(
            Column(destination.dirty_column, ColumnType.BOOLEAN, not_null=True, default=True)
        )
    columns.append(Column(CAN_DELETE, ColumnType.BOOLEAN, not_null=True, default=False))
    return columns


class TableSchema:
    """A table declaration: name plus its entity-specific columns."""

    def __init__(
        self,
        name: str,
        columns: list[Column] | tuple[Column, ...],
        destinations: tuple[Destination, ...] | list[Destination] = ALL_DESTINATIONS,
    ):
        self.name = name
        self.entity_columns: tuple[Column, ...] = tuple(columns)
        self.destinations: tuple[Destination, ...] = tuple(destinations)
        self.columns: tuple[Column, ...] = (
            tuple(bookkeeping_columns(self.destinations)) + self.entity_columns
        )
        self._validate()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableSchema):
            return NotImplemented
        return self.name == other.name and self.columns == other.columns

    def __hash__(self) -> int:
        return hash((self.name, self.columns))

    def __repr__(self) -> str:
        return f"TableSchema({self.name!r}, {len(self.entity_columns)} columns)"

    def _validate(self) -> None:
        if not self.name or not self.name.isidentifier():
            raise SchemaError(f"Invalid table name: {self.name!r}")

        if not self.destinations:
            raise SchemaError(f"Table '{self.name}' has no destinations")
        if len(set(self.destinations)) != len(self.destinations):
            raise SchemaError(f"Table '{self.name}' lists a destination twice")

        seen: set[str] = set()
        for column in self.columns:
            if not column.name.isidentifier():
                raise SchemaError(
                    f"Invalid column name {column.name!r} in table '{self.name}'"
                )
            if column.name in seen:
                raise SchemaError(
                    f"Duplicate column '{column.name}' in table '{self.name}'"
                )
            seen.add(column.name)

        for column in self.entity_columns:
            if column.primary_key or column.auto_increment:
                raise SchemaError(
                    f"Column '{column.name}' in table '{self.name}' cannot be a "
                    f"primary key; '{ID}' is assigned by the store"
                )

    @property
    def entity_names(self) -> list[str]:
        return [c.name for c in self.entity_columns]

    def column(self, name: str) -> Column:
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(name)

    def create_sql(self) -> str:
        """DDL for the table and its dirty-flag indexes."""
        body = ",\n    ".join(c.ddl() for c in self.columns)
        statements = [
            f"CREATE TABLE IF NOT EXISTS {self.name} (\n    {body}\n);",
            f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{self.name}_sync_id "
            f"ON {self.name}({SYNC_ID});",
        ]
        for destination in self.destinations:
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{self.name}_{destination.dirty_column} "
                f"ON {self.name}({destination.dirty_column});"
            )
        return "\n".join(statements)
