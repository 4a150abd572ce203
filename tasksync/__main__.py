"""CLI entry point for tasksync."""

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .config import Config, load_config
from .errors import ConfigError, ValidationError
from .models import to_iso
from .store import Database, TaskStore
from .sync import HttpTransport, MutationQueue, SyncEngine


# Record attributes passed through ``extra=`` that JSON logs carry as fields
LOG_CONTEXT_FIELDS = ("task_id", "operation", "attempt")


class JSONFormatter(logging.Formatter):
    """One JSON object per log line, timestamps in UTC."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": to_iso(datetime.fromtimestamp(record.created, timezone.utc)),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        for name in LOG_CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level = getattr(logging, log_level.upper())
    else:
        level = logging.DEBUG if verbose else logging.WARNING

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
    # httpx logs every request at INFO; keep that to debug runs
    logging.getLogger("httpx").setLevel(level if level <= logging.DEBUG else logging.WARNING)


@dataclass
class Components:
    """Wired-up store, queue and engine for one database."""

    db: Database
    queue: MutationQueue
    store: TaskStore
    engine: SyncEngine


def build_components(config: Config) -> Components:
    """Open the database and wire the sync engine from configuration."""
    db = Database(config.store.db_path)
    db.connect()
    queue = MutationQueue(db)
    store = TaskStore(db, queue)
    transport = HttpTransport(
        base_url=config.sync.api_base_url,
        request_timeout=config.sync.request_timeout_seconds,
        connectivity_timeout=config.sync.connectivity_timeout_seconds,
    )
    engine = SyncEngine(store, queue, transport, config=config.sync)
    return Components(db=db, queue=queue, store=store, engine=engine)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def cmd_add(args: argparse.Namespace) -> int:
    """Create a task offline."""
    components = build_components(load_config(args.config))
    try:
        task = components.store.create_task(args.title, args.description)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        components.db.close()

    print(f"Created task {task.id} (pending sync)")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List tasks."""
    components = build_components(load_config(args.config))
    try:
        tasks = components.store.list_tasks(exclude_deleted=not args.all)
    finally:
        components.db.close()

    if args.output_json:
        _print_json([t.to_dict() for t in tasks])
        return 0

    if not tasks:
        print("No tasks")
        return 0

    for task in tasks:
        mark = "x" if task.completed else " "
        deleted = " (deleted)" if task.is_deleted else ""
        print(f"[{mark}] {task.id}  {task.title}  <{task.sync_status.value}>{deleted}")
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one synchronization pass."""
    components = build_components(load_config(args.config))
    try:
        summary = await components.engine.run_pass()
    finally:
        components.db.close()

    _print_json(summary.to_dict())
    if summary.offline:
        print("Authority unreachable, nothing sent", file=sys.stderr)
    return 0 if summary.success else 1


async def cmd_status(args: argparse.Namespace) -> int:
    """Show sync status."""
    components = build_components(load_config(args.config))
    try:
        report = await components.engine.get_status()
    finally:
        components.db.close()

    if args.output_json:
        _print_json(report.to_dict())
        return 0

    data = report.to_dict()
    print(f"Online:         {data['is_online']}")
    print(f"Pending tasks:  {data['pending_sync_count']}")
    print(f"Failed tasks:   {data['failed_count']}")
    print(f"Queue size:     {data['sync_queue_size']}")
    print(f"Dead letters:   {data['dead_letter_count']}")
    print(f"Last sync:      {data['last_sync_timestamp'] or 'never'}")
    return 0


def cmd_retry_failed(args: argparse.Namespace) -> int:
    """Requeue dead-lettered items."""
    components = build_components(load_config(args.config))
    try:
        count = components.engine.retry_failed(args.task_ids or None)
    finally:
        components.db.close()

    print(f"Requeued {count} task(s)")
    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Sync continuously until interrupted."""
    config = load_config(args.config)
    interval = args.interval or config.sync.sync_interval_seconds or 60
    components = build_components(config)

    try:
        await components.engine.sync_loop(interval)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        components.db.close()

    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP API."""
    config = load_config(args.config)

    try:
        from .api import create_app

        import uvicorn
    except ImportError as e:
        print(f"Server dependencies not installed: {e}", file=sys.stderr)
        print("Install with: pip install tasksync[server]", file=sys.stderr)
        return 1

    host = args.host or config.server.host
    port = args.port or config.server.port
    components = build_components(config)
    app = create_app(config, store=components.store, engine=components.engine)

    print(f"Starting tasksync API on http://{host}:{port}")
    print(f"Authority: {config.sync.api_base_url}")

    stop_event = asyncio.Event()
    loop_task = None
    if config.sync.sync_interval_seconds > 0:
        loop_task = asyncio.create_task(
            components.engine.sync_loop(config.sync.sync_interval_seconds, stop_event)
        )

    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        stop_event.set()
        if loop_task:
            await loop_task
        components.db.close()

    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="tasksync",
        description="Offline-first tasks with batched sync to a remote authority",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
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

    add_parser = subparsers.add_parser("add", help="Create a task")
    add_parser.add_argument("title", help="Task title")
    add_parser.add_argument("-d", "--description", default=None, help="Task description")
    add_parser.set_defaults(func=cmd_add)

    list_parser = subparsers.add_parser("list", help="List tasks")
    list_parser.add_argument(
        "--all", action="store_true", help="Include soft-deleted tasks"
    )
    list_parser.add_argument(
        "--json", dest="output_json", action="store_true", help="Output as JSON"
    )
    list_parser.set_defaults(func=cmd_list)

    sync_parser = subparsers.add_parser("sync", help="Run one sync pass")
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument(
        "--json", dest="output_json", action="store_true", help="Output as JSON"
    )
    status_parser.set_defaults(func=cmd_status)

    retry_parser = subparsers.add_parser(
        "retry-failed", help="Requeue items that exhausted their retries"
    )
    retry_parser.add_argument(
        "task_ids", nargs="*", help="Only these tasks (default: all)"
    )
    retry_parser.set_defaults(func=cmd_retry_failed)

    watch_parser = subparsers.add_parser("watch", help="Sync continuously")
    watch_parser.add_argument(
        "-i", "--interval",
        type=int,
        default=None,
        help="Seconds between passes (default: sync.sync_interval_seconds or 60)",
    )
    watch_parser.set_defaults(func=cmd_watch)

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to bind")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind")
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    try:
        if asyncio.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except sqlite3.Error as e:
        print(f"Storage error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
