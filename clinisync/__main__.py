"""CLI entry point for clinisync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import load_config
from .node import build_coordinator, run_node
from .store import Destination
from .store.record_store import utcnow
from .sync import SyncStatus


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the sync loops until interrupted."""
    config = load_config(args.config)

    print(f"Starting clinisync device: {config.device.name}")
    print(f"Store: {config.store.db_path}")
    for destination in Destination:
        settings = config.sync.destination(destination)
        state = settings.url if settings.enabled and settings.url else "disabled"
        print(f"  {destination.value}: {state}")

    try:
        await run_node(config)
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show record counts and pending work per destination."""
    config = load_config(args.config)
    coordinator = build_coordinator(config, remotes={})

    try:
        status_data = {
            "timestamp": utcnow().isoformat(),
            "device": {"name": config.device.name},
            "store": str(coordinator.store.db_path),
            "tables": coordinator.store.stats(),
            "pending": coordinator.pending_counts(),
        }
    finally:
        coordinator.store.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    print("clinisync Status")
    print("================")
    print(f"Device: {status_data['device']['name']}")
    print(f"Store: {status_data['store']}")
    print()

    for name, table in status_data["tables"].items():
        print(f"{name}:")
        print(f"  Records: {table['total']}")
        print(f"  Pending delete: {table['pending_delete']}")
        for destination, count in table["pending"].items():
            print(f"  Pending {destination}: {count}")
        print()

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync cycle now and report the results."""
    config = load_config(args.config)
    coordinator = build_coordinator(config)
    destination = Destination(args.destination) if args.destination else None

    try:
        results = await coordinator.sync_now(destination)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await coordinator.close()
        coordinator.store.close()

    if not results:
        print("No destinations configured")
        return 1

    for result in results:
        print(
            f"{result.destination.value}: {result.status.value} "
            f"(pushed={result.pushed}, acked={result.acked}, retired={result.retired}, "
            f"stale={result.stale}, failed={result.failed})"
        )
        if result.error:
            print(f"  Last error: {result.error}")

    return 1 if any(r.status is SyncStatus.FAILED for r in results) else 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="clinisync",
        description="Offline-first multi-destination record sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Run the background sync loops")
    run_parser.set_defaults(func=cmd_run)

    status_parser = subparsers.add_parser("status", help="Show pending records")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    sync_parser = subparsers.add_parser("sync", help="Run one sync cycle now")
    sync_parser.add_argument(
        "--destination",
        choices=[d.value for d in Destination],
        default=None,
        help="Only sync this destination",
    )
    sync_parser.set_defaults(func=cmd_sync)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if asyncio.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
