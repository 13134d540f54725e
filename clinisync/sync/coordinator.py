"""Coordinator that owns the sync workers and the write path to the store."""

import asyncio
import logging
from typing import Any

from ..config import SyncConfig
from ..store import Destination, Record, RecordStore, Table, TableSchema
from .transport import RemoteDestination
from .worker import SyncResult, SyncWorker

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Schedules one SyncWorker per destination and fronts the record store.

    Application code mutates records only through the coordinator; workers
    run as independent background tasks and never block each other or the
    caller.
    """

    def __init__(
        self,
        store: RecordStore,
        remotes: dict[Destination, RemoteDestination],
        config: SyncConfig | None = None,
    ):
        """Initialize the coordinator.

        Args:
            store: Record store holding every synced table.
            remotes: Transport per destination; destinations without one
                are tracked but never pushed.
            config: Scheduling configuration.
        """
        self.store = store
        self.config = config or SyncConfig()
        self._remotes = remotes
        self._workers: dict[Destination, SyncWorker] = {}
        self._triggers: dict[Destination, asyncio.Event] = {}
        self._tasks: dict[Destination, asyncio.Task] = {}
        self._stop_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

        for destination, remote in remotes.items():
            if destination not in store.destinations:
                raise ValueError(
                    f"Store does not track destination {destination.value}"
                )
            self._workers[destination] = SyncWorker(
                destination=destination,
                tables=store.tables,
                remote=remote,
                batch_size=self.config.batch_size,
                push_timeout=self.config.push_timeout_seconds,
            )

    # ==================== Tables & write path ====================

    def register(self, schema: TableSchema) -> Table:
        """Register a table and make it visible to every worker."""
        table = self.store.register(schema)
        for worker in self._workers.values():
            if table not in worker.tables:
                worker.tables.append(table)
        return table

    def insert(self, table: str, fields: dict[str, Any]) -> Record:
        return self.store.table(table).insert(fields)

    def update(self, table: str, local_id: int, fields: dict[str, Any]) -> Record:
        return self.store.table(table).update(local_id, fields)

    def soft_delete(self, table: str, local_id: int) -> Record:
        return self.store.table(table).soft_delete(local_id)

    def get(self, table: str, local_id: int) -> Record | None:
        return self.store.table(table).get(local_id)

    def get_by_sync_id(self, table: str, sync_id: str) -> Record | None:
        return self.store.table(table).get_by_sync_id(sync_id)

    def find_by(self, table: str, column: str, value: Any) -> list[Record]:
        return self.store.table(table).find_by(column, value)

    # ==================== Scheduling ====================

    @property
    def workers(self) -> dict[Destination, SyncWorker]:
        return dict(self._workers)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Start one background sync loop per destination."""
        if self._tasks:
            return

        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()

        for table in self.store.tables:
            table.retire_converged()

        for destination, worker in self._workers.items():
            settings = self.config.destination(destination)
            if not settings.enabled:
                logger.info(f"Sync to {destination.value} disabled")
                continue

            trigger = asyncio.Event()
            self._triggers[destination] = trigger
            self._tasks[destination] = asyncio.create_task(
                worker.run_forever(
                    stop_event=self._stop_event,
                    trigger_event=trigger,
                    interval_seconds=settings.interval_seconds,
                    max_backoff_seconds=self.config.max_backoff_seconds,
                ),
                name=f"sync-{destination.value}",
            )

        logger.info(
            f"Sync coordinator started for "
            f"{', '.join(d.value for d in self._tasks) or 'no destinations'}"
        )

    def trigger(self, destination: Destination | None = None) -> None:
        """Wake one or all workers now (e.g., connectivity regained).

        Safe to call from threads other than the coordinator's event loop.
        """
        targets = [destination] if destination is not None else list(self._triggers)
        for target in targets:
            event = self._triggers.get(target)
            if event is None:
                continue
            if self._loop is not None and not _in_loop(self._loop):
                self._loop.call_soon_threadsafe(event.set)
            else:
                event.set()

    async def sync_now(self, destination: Destination | None = None) -> list[SyncResult]:
        """Run one cycle for the selected workers concurrently."""
        if destination is not None:
            if destination not in self._workers:
                raise ValueError(f"No remote configured for {destination.value}")
            workers = [self._workers[destination]]
        else:
            workers = list(self._workers.values())

        return list(await asyncio.gather(*(w.run_cycle() for w in workers)))

    async def stop(self) -> None:
        """Stop all loops, letting in-flight pushes finish or fail first."""
        if self._stop_event is not None:
            self._stop_event.set()

        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

        self._tasks.clear()
        self._triggers.clear()
        self._stop_event = None
        logger.info("Sync coordinator stopped")

    async def close(self) -> None:
        """Stop syncing and release transports."""
        await self.stop()
        for remote in self._remotes.values():
            await remote.close()

    # ==================== Status ====================

    def pending_counts(self) -> dict[str, int]:
        """Records awaiting each destination, across all tables."""
        counts: dict[str, int] = {}
        for destination in self.store.destinations:
            counts[destination.value] = sum(
                table.count_dirty(destination)
                for table in self.store.tables
                if destination in table.schema.destinations
            )
        return counts

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pending": self.pending_counts(),
            "workers": {
                d.value: worker.get_status() for d, worker in self._workers.items()
            },
        }


def _in_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
