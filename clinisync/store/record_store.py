"""SQLite-backed record store with per-destination sync bookkeeping."""

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator

from .record import Record
from .schema import (
    ALL_DESTINATIONS,
    CAN_DELETE,
    CREATED,
    ID,
    SYNC_ID,
    SYNCED,
    UPDATED,
    ColumnType,
    Destination,
    SchemaError,
    TableSchema,
)

logger = logging.getLogger(__name__)

_TIMESTAMP = ColumnType.TIMESTAMP


class NotFoundError(LookupError):
    """Raised when a mutation targets a local id that does not exist."""

    def __init__(self, table: str, local_id: int):
        super().__init__(f"No record with id {local_id} in table '{table}'")
        self.table = table
        self.local_id = local_id


class AckOutcome(Enum):
    """Result of reconciling one acknowledgement."""

    APPLIED = "applied"
    RETIRED = "retired"  # applied, and the tombstone was removed
    STALE = "stale"  # record changed since the pushed snapshot
    MISSING = "missing"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore:
    """Owns the SQLite connection and the tables registered on it.

    Every mutation runs inside one immediate transaction while holding the
    store lock, so bookkeeping and entity columns are never observed
    half-applied.
    """

    def __init__(
        self,
        db_path: str | Path,
        destinations: tuple[Destination, ...] = ALL_DESTINATIONS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the record store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            destinations: Destinations every record is tracked against.
            clock: Source of "now"; injectable for tests.
        """
        self.db_path = Path(db_path).expanduser()
        self.destinations = tuple(destinations)
        self._clock = clock
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._tables: dict[str, Table] = {}

    def connect(self) -> None:
        """Open the database connection and (re)create registered tables."""
        with self._lock:
            if self._conn is not None:
                return
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self._conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            if str(self.db_path) != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")

            for table in self._tables.values():
                self._conn.executescript(table.schema.create_sql())

        logger.info(f"RecordStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("RecordStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Immediate transaction: commits on success, rolls back on error."""
        with self._lock:
            conn = self._ensure_connected()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            yield self._ensure_connected()

    def now(self) -> datetime:
        return self._clock()

    # ==================== Tables ====================

    def register(self, schema: TableSchema) -> "Table":
        """Create the table for a schema and return its handle.

        Registering the same schema twice returns the existing table.

        Raises:
            SchemaError: If a different schema already uses the name, or the
                schema tracks destinations this store does not know.
        """
        unknown = set(schema.destinations) - set(self.destinations)
        if unknown:
            names = ", ".join(sorted(d.value for d in unknown))
            raise SchemaError(
                f"Table '{schema.name}' uses unknown destinations: {names}"
            )

        with self._lock:
            existing = self._tables.get(schema.name)
            if existing is not None:
                if existing.schema != schema:
                    raise SchemaError(
                        f"Table '{schema.name}' is already registered with different columns"
                    )
                return existing

            conn = self._ensure_connected()
            conn.executescript(schema.create_sql())

            table = Table(self, schema)
            self._tables[schema.name] = table

        logger.debug(f"Registered table {schema.name}")
        return table

    def table(self, name: str) -> "Table":
        try:
            return self._tables[name]
        except KeyError:
            raise KeyError(f"Table '{name}' is not registered") from None

    @property
    def tables(self) -> list["Table"]:
        return list(self._tables.values())

    def stats(self) -> dict[str, Any]:
        """Per-table totals and pending counts."""
        stats: dict[str, Any] = {}
        for table in self.tables:
            stats[table.name] = table.stats()
        return stats


class Table:
    """CRUD and acknowledgement operations on one registered table."""

    def __init__(self, store: RecordStore, schema: TableSchema):
        self._store = store
        self.schema = schema
        self.name = schema.name

    def __repr__(self) -> str:
        return f"Table({self.name!r})"

    # ==================== Helpers ====================

    def _check_destination(self, destination: Destination) -> None:
        if destination not in self.schema.destinations:
            raise ValueError(
                f"Table '{self.name}' is not synced to {destination.value}"
            )

    def _check_fields(self, fields: dict[str, Any]) -> None:
        unknown = set(fields) - set(self.schema.entity_names)
        if unknown:
            raise ValueError(
                f"Unknown fields for table '{self.name}': {', '.join(sorted(unknown))}"
            )

    def _encode_fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        return {
            name: self.schema.column(name).type.to_sql(value)
            for name, value in fields.items()
        }

    def _from_row(self, row: sqlite3.Row) -> Record:
        return Record(
            table=self.name,
            local_id=row[ID],
            sync_id=row[SYNC_ID],
            created=_TIMESTAMP.from_sql(row[CREATED]),
            updated=_TIMESTAMP.from_sql(row[UPDATED]),
            synced=_TIMESTAMP.from_sql(row[SYNCED]),
            dirty={
                d: bool(row[d.dirty_column]) for d in self.schema.destinations
            },
            deletable=bool(row[CAN_DELETE]),
            fields={
                c.name: c.type.from_sql(row[c.name])
                for c in self.schema.entity_columns
            },
        )

    def _select(self, conn: sqlite3.Connection, local_id: int) -> sqlite3.Row | None:
        return conn.execute(
            f"SELECT * FROM {self.name} WHERE {ID} = ?", (local_id,)
        ).fetchone()

    def _next_updated(self, previous: datetime) -> datetime:
        """A modification time strictly after ``previous``."""
        now = self._store.now()
        if now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def _mutate(
        self, local_id: int, assignments: dict[str, Any]
    ) -> Record:
        """Apply a local change: bump ``updated`` and dirty every destination."""
        with self._store.transaction() as conn:
            row = self._select(conn, local_id)
            if row is None:
                raise NotFoundError(self.name, local_id)

            updated = self._next_updated(_TIMESTAMP.from_sql(row[UPDATED]))
            values = dict(assignments)
            values[UPDATED] = _TIMESTAMP.to_sql(updated)
            for destination in self.schema.destinations:
                values[destination.dirty_column] = 1

            set_clause = ", ".join(f"{name} = ?" for name in values)
            conn.execute(
                f"UPDATE {self.name} SET {set_clause} WHERE {ID} = ?",
                (*values.values(), local_id),
            )
            return self._from_row(self._select(conn, local_id))

    # ==================== Mutations ====================

    def insert(self, fields: dict[str, Any], sync_id: str | None = None) -> Record:
        """Insert a new record, dirty for every destination.

        Args:
            fields: Entity field values; omitted fields take column defaults.
            sync_id: Optional caller-supplied global id. Inserting again with
                an id that already exists returns the existing record.

        Returns:
            The persisted Record including its assigned local id.
        """
        self._check_fields(fields)

        with self._store.transaction() as conn:
            if sync_id is not None:
                existing = conn.execute(
                    f"SELECT * FROM {self.name} WHERE {SYNC_ID} = ?", (sync_id,)
                ).fetchone()
                if existing is not None:
                    logger.debug(f"Insert retry for {self.name} sync_id={sync_id}")
                    return self._from_row(existing)

            now = _TIMESTAMP.to_sql(self._store.now())
            values: dict[str, Any] = {
                SYNC_ID: sync_id or str(uuid.uuid4()),
                CREATED: now,
                UPDATED: now,
                SYNCED: None,
                CAN_DELETE: 0,
            }
            for destination in self.schema.destinations:
                values[destination.dirty_column] = 1
            values.update(self._encode_fields(fields))

            columns = ", ".join(values)
            placeholders = ", ".join("?" * len(values))
            cursor = conn.execute(
                f"INSERT INTO {self.name} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            record = self._from_row(self._select(conn, cursor.lastrowid))

        logger.debug(f"Inserted {self.name} id={record.local_id}")
        return record

    def update(self, local_id: int, fields: dict[str, Any]) -> Record:
        """Update entity fields; every destination becomes dirty.

        Raises:
            NotFoundError: If no record has this local id.
        """
        self._check_fields(fields)
        record = self._mutate(local_id, self._encode_fields(fields))
        logger.debug(f"Updated {self.name} id={local_id}")
        return record

    def update_record(self, record: Record) -> Record:
        """Persist the entity fields of an in-memory record."""
        return self.update(record.local_id, record.fields)

    def soft_delete(self, local_id: int) -> Record:
        """Mark a record for deletion once every destination acknowledges it.

        Raises:
            NotFoundError: If no record has this local id.
        """
        record = self._mutate(local_id, {CAN_DELETE: 1})
        logger.debug(f"Soft-deleted {self.name} id={local_id}")
        return record

    def apply_ack(
        self,
        destination: Destination,
        local_id: int,
        observed_updated: datetime,
        remote_sync_id: str | None = None,
    ) -> AckOutcome:
        """Reconcile one destination's acknowledgement.

        The dirty flag is cleared only if the record's ``updated`` still
        equals the value read when the pushed snapshot was taken. A record
        that is deletable and clear for every destination afterwards is
        removed in the same transaction.

        Args:
            destination: Destination that acknowledged the push.
            local_id: Local id of the pushed record.
            observed_updated: ``updated`` of the pushed snapshot.
            remote_sync_id: Global id returned by the destination, if any.

        Returns:
            The AckOutcome.
        """
        self._check_destination(destination)
        column = destination.dirty_column

        with self._store.transaction() as conn:
            row = self._select(conn, local_id)
            if row is None:
                logger.debug(f"Ack for missing {self.name} id={local_id}")
                return AckOutcome.MISSING

            now = _TIMESTAMP.to_sql(self._store.now())
            cursor = conn.execute(
                f"""
                UPDATE {self.name}
                SET {column} = 0,
                    {SYNCED} = CASE
                        WHEN {SYNCED} IS NULL OR {SYNCED} < ? THEN ?
                        ELSE {SYNCED}
                    END
                WHERE {ID} = ? AND {UPDATED} = ?
                """,
                (now, now, local_id, _TIMESTAMP.to_sql(observed_updated)),
            )
            if cursor.rowcount == 0:
                logger.debug(
                    f"Discarded stale {destination.value} ack for {self.name} id={local_id}"
                )
                return AckOutcome.STALE

            if remote_sync_id:
                if row[SYNC_ID] is None:
                    conn.execute(
                        f"UPDATE {self.name} SET {SYNC_ID} = ? WHERE {ID} = ?",
                        (remote_sync_id, local_id),
                    )
                elif row[SYNC_ID] != remote_sync_id:
                    logger.warning(
                        f"{destination.value} returned sync_id {remote_sync_id} for "
                        f"{self.name} id={local_id}, keeping {row[SYNC_ID]}"
                    )

            record = self._from_row(self._select(conn, local_id))
            if record.deletable and record.fully_synced:
                conn.execute(
                    f"DELETE FROM {self.name} WHERE {ID} = ?", (local_id,)
                )
                logger.info(f"Retired {self.name} id={local_id}")
                return AckOutcome.RETIRED

        return AckOutcome.APPLIED

    def retire_converged(self) -> int:
        """Remove tombstones that every destination has already acknowledged.

        Returns:
            Number of records removed.
        """
        clear = " AND ".join(f"{d.dirty_column} = 0" for d in self.schema.destinations)
        with self._store.transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM {self.name} WHERE {CAN_DELETE} = 1 AND {clear}"
            )
        if cursor.rowcount > 0:
            logger.info(f"Retired {cursor.rowcount} converged {self.name} records")
        return cursor.rowcount

    # ==================== Queries ====================

    def get(self, local_id: int) -> Record | None:
        with self._store.reading() as conn:
            row = self._select(conn, local_id)
        return self._from_row(row) if row is not None else None

    def get_by_sync_id(self, sync_id: str) -> Record | None:
        with self._store.reading() as conn:
            row = conn.execute(
                f"SELECT * FROM {self.name} WHERE {SYNC_ID} = ?", (sync_id,)
            ).fetchone()
        return self._from_row(row) if row is not None else None

    def find_dirty(self, destination: Destination, limit: int) -> list[Record]:
        """Snapshot of records with unpushed changes, newest local id first."""
        self._check_destination(destination)
        if limit <= 0:
            return []

        with self._store.reading() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {self.name}
                WHERE {destination.dirty_column} = 1
                ORDER BY {ID} DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def find_by(
        self, column: str, value: Any, include_deleted: bool = False
    ) -> list[Record]:
        """Records whose entity column equals ``value``, newest first."""
        if column not in self.schema.entity_names:
            raise ValueError(f"Unknown column for table '{self.name}': {column}")

        query = f"SELECT * FROM {self.name} WHERE {column} = ?"
        if not include_deleted:
            query += f" AND {CAN_DELETE} = 0"
        query += f" ORDER BY {ID} DESC"

        stored = self.schema.column(column).type.to_sql(value)
        with self._store.reading() as conn:
            rows = conn.execute(query, (stored,)).fetchall()
        return [self._from_row(row) for row in rows]

    def count(self) -> int:
        with self._store.reading() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {self.name}").fetchone()[0]

    def count_dirty(self, destination: Destination) -> int:
        self._check_destination(destination)
        with self._store.reading() as conn:
            return conn.execute(
                f"SELECT COUNT(*) FROM {self.name} WHERE {destination.dirty_column} = 1"
            ).fetchone()[0]

    def stats(self) -> dict[str, Any]:
        with self._store.reading() as conn:
            pending_delete = conn.execute(
                f"SELECT COUNT(*) FROM {self.name} WHERE {CAN_DELETE} = 1"
            ).fetchone()[0]
        return {
            "total": self.count(),
            "pending": {
                d.value: self.count_dirty(d) for d in self.schema.destinations
            },
            "pending_delete": pending_delete,
        }
