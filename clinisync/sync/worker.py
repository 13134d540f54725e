"""Per-destination sync worker.

Each worker drives one destination's dirty records to convergence. Workers
never look at each other's dirty flags, so a slow destination never holds
back a fast one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..store import AckOutcome, Destination, Table
from ..store.record_store import utcnow
from .transport import PushError, RemoteDestination

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Status of a sync cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"  # some pushes failed
    FAILED = "failed"
    IDLE = "idle"  # nothing to push


@dataclass
class SyncResult:
    """Result of one sync cycle for one destination."""

    destination: Destination
    status: SyncStatus
    pushed: int = 0
    acked: int = 0
    retired: int = 0
    stale: int = 0
    failed: int = 0
    error: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "destination": self.destination.value,
            "status": self.status.value,
            "pushed": self.pushed,
            "acked": self.acked,
            "retired": self.retired,
            "stale": self.stale,
            "failed": self.failed,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class SyncWorker:
    """Pushes dirty records of every table to a single destination."""

    def __init__(
        self,
        destination: Destination,
        tables: list[Table],
        remote: RemoteDestination,
        batch_size: int = 100,
        push_timeout: float = 60.0,
    ):
        """Initialize the sync worker.

        Args:
            destination: Destination this worker serves.
            tables: Tables to sync; tables not tracking the destination are skipped.
            remote: Transport for this destination.
            batch_size: Maximum records read per table per cycle.
            push_timeout: Seconds before a single push counts as failed.
        """
        self.destination = destination
        self.tables = tables
        self.remote = remote
        self.batch_size = batch_size
        self.push_timeout = push_timeout
        self._last_sync: datetime | None = None
        self._last_result: SyncResult | None = None
        self._consecutive_failures = 0
        # Manual and scheduled cycles for one destination never overlap
        self._cycle_lock = asyncio.Lock()

    async def run_cycle(self, stop_event: asyncio.Event | None = None) -> SyncResult:
        """Push one batch of dirty records and reconcile acknowledgements.

        Args:
            stop_event: When set, the cycle ends after the in-flight push.

        Returns:
            SyncResult with cycle statistics.
        """
        async with self._cycle_lock:
            result = SyncResult(destination=self.destination, status=SyncStatus.IDLE)

            for table in self.tables:
                if stop_event is not None and stop_event.is_set():
                    break
                if self.destination not in table.schema.destinations:
                    continue

                for record in table.find_dirty(self.destination, self.batch_size):
                    if stop_event is not None and stop_event.is_set():
                        break

                    result.pushed += 1
                    try:
                        ack = await asyncio.wait_for(
                            self.remote.push(table.name, record.to_payload()),
                            timeout=self.push_timeout,
                        )
                    except PushError as e:
                        result.failed += 1
                        result.error = str(e)
                        logger.warning(
                            f"Push of {table.name} id={record.local_id} to "
                            f"{self.destination.value} failed: {e}"
                        )
                        continue
                    except asyncio.TimeoutError:
                        result.failed += 1
                        result.error = f"Push timed out after {self.push_timeout}s"
                        logger.warning(
                            f"Push of {table.name} id={record.local_id} to "
                            f"{self.destination.value} timed out"
                        )
                        continue
                    except Exception as e:
                        result.failed += 1
                        result.error = f"{type(e).__name__}: {e}"
                        logger.error(
                            f"Unexpected error pushing {table.name} id={record.local_id} "
                            f"to {self.destination.value}: {e}",
                            exc_info=True,
                        )
                        continue

                    outcome = table.apply_ack(
                        self.destination, record.local_id, record.updated, ack.sync_id
                    )
                    if outcome is AckOutcome.APPLIED:
                        result.acked += 1
                    elif outcome is AckOutcome.RETIRED:
                        result.acked += 1
                        result.retired += 1
                    elif outcome is AckOutcome.STALE:
                        result.stale += 1

            result.status = self._status_for(result)
            result.timestamp = utcnow()
            self._record(result)
            return result

    @staticmethod
    def _status_for(result: SyncResult) -> SyncStatus:
        if result.pushed == 0:
            return SyncStatus.IDLE
        if result.failed == 0:
            return SyncStatus.SUCCESS
        if result.failed < result.pushed:
            return SyncStatus.PARTIAL
        return SyncStatus.FAILED

    def _record(self, result: SyncResult) -> None:
        self._last_result = result
        if result.status in (SyncStatus.SUCCESS, SyncStatus.IDLE):
            self._consecutive_failures = 0
        elif result.status is SyncStatus.FAILED:
            self._consecutive_failures += 1
        else:
            # Partial progress still resets the backoff
            self._consecutive_failures = 0

        if result.acked > 0 or result.status is SyncStatus.IDLE:
            self._last_sync = result.timestamp

    def next_delay(self, interval_seconds: float, max_backoff_seconds: float) -> float:
        """Seconds to wait before the next cycle, backing off on failures."""
        if self._consecutive_failures == 0:
            return interval_seconds
        return min(
            interval_seconds * (2 ** self._consecutive_failures),
            max_backoff_seconds,
        )

    async def run_forever(
        self,
        stop_event: asyncio.Event,
        trigger_event: asyncio.Event | None = None,
        interval_seconds: float = 300,
        max_backoff_seconds: float = 3600,
    ) -> None:
        """Run sync cycles until ``stop_event`` is set.

        Args:
            stop_event: Ends the loop after the in-flight cycle.
            trigger_event: Wakes the loop early (e.g., connectivity regained).
            interval_seconds: Seconds between cycles.
            max_backoff_seconds: Upper bound on the failure backoff.
        """
        logger.info(
            f"Starting {self.destination.value} sync loop with {interval_seconds}s interval"
        )

        while not stop_event.is_set():
            try:
                result = await self.run_cycle(stop_event)
                if result.status is not SyncStatus.IDLE:
                    logger.info(
                        f"Sync {self.destination.value}: {result.status.value}, "
                        f"pushed={result.pushed}, acked={result.acked}, "
                        f"stale={result.stale}, failed={result.failed}"
                    )
            except Exception as e:
                self._consecutive_failures += 1
                logger.error(
                    f"{self.destination.value} sync cycle error: {e}", exc_info=True
                )

            wait_time = self.next_delay(interval_seconds, max_backoff_seconds)
            if self._consecutive_failures > 0:
                logger.debug(f"Backing off {self.destination.value} sync for {wait_time}s")

            await self._wait(stop_event, trigger_event, wait_time)

        logger.info(f"{self.destination.value} sync loop stopped")

    @staticmethod
    async def _wait(
        stop_event: asyncio.Event,
        trigger_event: asyncio.Event | None,
        timeout: float,
    ) -> None:
        """Sleep until timeout, stop, or trigger, whichever comes first."""
        waiters = [asyncio.create_task(stop_event.wait())]
        if trigger_event is not None:
            waiters.append(asyncio.create_task(trigger_event.wait()))

        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            if trigger_event is not None:
                trigger_event.clear()

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last cycle that made progress or found nothing to do."""
        return self._last_sync

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def pending(self) -> int:
        """Records still dirty for this destination across all tables."""
        return sum(
            table.count_dirty(self.destination)
            for table in self.tables
            if self.destination in table.schema.destinations
        )

    def get_status(self) -> dict[str, Any]:
        return {
            "destination": self.destination.value,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "pending_records": self.pending(),
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }
