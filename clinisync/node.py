"""Wiring of store, transports and coordinator from configuration."""

import asyncio
import logging

from .config import Config
from .store import ENTITY_SCHEMAS, Destination, RecordStore
from .sync import HttpDestination, RemoteDestination, SyncCoordinator

logger = logging.getLogger(__name__)


def build_remotes(config: Config) -> dict[Destination, RemoteDestination]:
    """HTTP transports for every enabled destination with a URL."""
    remotes: dict[Destination, RemoteDestination] = {}
    for destination in Destination:
        settings = config.sync.destination(destination)
        if not settings.enabled:
            continue
        if not settings.url:
            logger.warning(f"No URL configured for {destination.value}, not syncing it")
            continue
        remotes[destination] = HttpDestination(
            base_url=settings.url,
            timeout=settings.timeout_seconds,
            max_retries=settings.max_retries,
            token=settings.token,
        )
    return remotes


def build_coordinator(
    config: Config,
    remotes: dict[Destination, RemoteDestination] | None = None,
) -> SyncCoordinator:
    """Open the record store, register entity tables and create the coordinator.

    Args:
        config: Loaded configuration.
        remotes: Transports to use instead of the configured HTTP ones.

    Returns:
        A SyncCoordinator that has not been started yet.
    """
    store = RecordStore(config.store.db_path)
    store.connect()

    coordinator = SyncCoordinator(
        store,
        remotes if remotes is not None else build_remotes(config),
        config.sync,
    )
    for schema in ENTITY_SCHEMAS:
        coordinator.register(schema)
    return coordinator


async def run_node(config: Config, stop_event: asyncio.Event | None = None) -> None:
    """Run sync loops until interrupted or ``stop_event`` is set.

    Args:
        config: Configuration for the device.
        stop_event: Optional event that ends the run.
    """
    coordinator = build_coordinator(config)
    stop_event = stop_event or asyncio.Event()

    try:
        if config.sync.enabled:
            await coordinator.start()
        else:
            logger.info("Sync disabled by configuration")
        await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await coordinator.close()
        coordinator.store.close()
