"""Local-first record store.

Every table is declared as a list of entity columns; the store attaches the
bookkeeping columns that track creation, modification, per-destination
dirty state and soft deletion.
"""

from .entities import CUSTOMERS, DEBUG_EXAMS, ENTITY_SCHEMAS
from .record import Record, RecordState
from .record_store import AckOutcome, NotFoundError, RecordStore, Table
from .schema import (
    ALL_DESTINATIONS,
    Column,
    ColumnType,
    Destination,
    SchemaError,
    TableSchema,
)

__all__ = [
    "ALL_DESTINATIONS",
    "AckOutcome",
    "CUSTOMERS",
    "Column",
    "ColumnType",
    "DEBUG_EXAMS",
    "Destination",
    "ENTITY_SCHEMAS",
    "NotFoundError",
    "Record",
    "RecordState",
    "RecordStore",
    "SchemaError",
    "Table",
    "TableSchema",
]
