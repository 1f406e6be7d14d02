"""CLI entry point for Honeybee."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

from .app import CalendarApp, run_app
from .config import Config, load_config
from .exceptions import HoneybeeError, NetworkError
from .models import Event, EventIdentity
from .sync import LoadState, SyncStatus


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

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            # Fallback for non-serializable objects
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
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
        level = logging.DEBUG if verbose else logging.WARNING

    # Configure handler with appropriate formatter
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def format_event(event: Event) -> str:
    """Format an event as a single line for terminal output."""
    if event.start_time is None:
        when = "all day" if event.end_time is None else f"-{event.end_time:%H:%M}"
    elif event.end_time and event.end_time != event.start_time:
        when = f"{event.start_time:%H:%M}-{event.end_time:%H:%M}"
    else:
        when = f"{event.start_time:%H:%M}"

    line = f"{event.identity.view_key:<12} {event.date.isoformat()} {when:<11} {event.title}"
    if event.location:
        line += f" @ {event.location}"
    if event.created_by_name:
        line += f" ({event.created_by_name})"
    return f"{line} [{event.status.value}]"


def _event_key(args: argparse.Namespace) -> EventIdentity:
    if args.remote:
        return EventIdentity.remote(args.id)
    return EventIdentity.local(args.id)


def _event_fields(args: argparse.Namespace) -> dict[str, Any]:
    """Collect event fields given on the command line."""
    fields: dict[str, Any] = {}
    for name in ("title", "date", "description", "location", "start_time", "end_time"):
        value = getattr(args, name, None)
        if value is not None:
            fields[name] = value
    if getattr(args, "time", None) is not None:
        fields["time"] = args.time
    if getattr(args, "all_day", False):
        fields["start_time"] = None
        fields["end_time"] = None
    return fields


async def _with_app(
    config: Config,
    action: Callable[[CalendarApp], Awaitable[int]],
) -> int:
    """Run a one-shot command against the store and remote service."""
    config.realtime.enabled = False
    app = CalendarApp(config)
    app.store.connect()
    try:
        return await action(app)
    except HoneybeeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await app.remote.close()
        app.store.close()


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the calendar client."""
    config = load_config(args.config)

    print("Starting Honeybee calendar client")
    print(f"Server: {config.server.api_url}")
    print(f"Store: {config.store.db_path}")
    if config.realtime.enabled:
        print(f"Realtime: {config.realtime.broker}:{config.realtime.port}")

    try:
        await run_app(config)
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


async def cmd_list(args: argparse.Namespace) -> int:
    """Show the calendar."""
    config = load_config(args.config)

    async def action(app: CalendarApp) -> int:
        if args.offline:
            events = app.store.list()
        else:
            await app.engine.load_events()
            events = list(app.view.events)
            if app.view.state == LoadState.OFFLINE_FALLBACK:
                print("(offline: showing local events only)", file=sys.stderr)

        if args.json:
            print(json.dumps([e.to_dict() for e in events], indent=2))
        elif not events:
            print("No events.")
        else:
            for event in events:
                print(format_event(event))
        return 0

    return await _with_app(config, action)


async def cmd_add(args: argparse.Namespace) -> int:
    """Create an event."""
    config = load_config(args.config)

    async def action(app: CalendarApp) -> int:
        event = await app.engine.create_event(_event_fields(args))
        print(format_event(event))
        if not event.is_synced:
            print("Saved locally, will sync when online.")
        return 0

    return await _with_app(config, action)


async def cmd_edit(args: argparse.Namespace) -> int:
    """Update an event."""
    config = load_config(args.config)
    fields = _event_fields(args)
    if not fields:
        print("Nothing to change.", file=sys.stderr)
        return 1

    async def action(app: CalendarApp) -> int:
        # Remote-only events are addressed through the merged view
        if args.remote:
            await app.engine.load_events()
        event = await app.engine.update_event(_event_key(args), fields)
        print(format_event(event))
        return 0

    return await _with_app(config, action)


async def cmd_delete(args: argparse.Namespace) -> int:
    """Delete an event."""
    config = load_config(args.config)

    async def action(app: CalendarApp) -> int:
        await app.engine.delete_event(_event_key(args))
        print("Deleted.")
        return 0

    return await _with_app(config, action)


async def cmd_sync(args: argparse.Namespace) -> int:
    """Push pending events and reconcile."""
    config = load_config(args.config)

    async def action(app: CalendarApp) -> int:
        result = await app.engine.sync_events()
        print(
            f"Sync: {result.status.value}, pushed={result.entries_pushed}, "
            f"pending={result.entries_pending}"
        )
        if result.error:
            print(f"Error: {result.error}", file=sys.stderr)
        return 0 if result.status in (SyncStatus.SUCCESS, SyncStatus.PARTIAL) else 1

    return await _with_app(config, action)


async def cmd_status(args: argparse.Namespace) -> int:
    """Check store and server status."""
    config = load_config(args.config)

    async def action(app: CalendarApp) -> int:
        status_data: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "session": {
                "user_id": config.session.user_id,
                "partner_id": config.session.partner_id,
                "authenticated": app.session.is_authenticated,
            },
            "store": app.store.get_stats(),
        }

        server_status: dict[str, Any] = {"api_url": config.server.api_url}
        try:
            remote_events = await app.remote.list()
            server_status.update({"reachable": True, "events": len(remote_events)})
        except NetworkError as e:
            server_status.update({"reachable": False, "error": str(e)})
        except HoneybeeError as e:
            server_status.update({"reachable": True, "error": str(e)})
        status_data["server"] = server_status

        status_data["realtime"] = {
            "broker": config.realtime.broker,
            "port": config.realtime.port,
            "topic_prefix": config.realtime.topic_prefix,
        }

        if args.json:
            print(json.dumps(status_data, indent=2))
            return 0

        store = status_data["store"]
        print(f"Store: {store['db_path']} (schema v{store['schema_version']})")
        print(
            f"  events={store['total_events']} synced={store['synced_events']} "
            f"pending={store['pending_events']}"
        )
        reachable = "reachable" if server_status.get("reachable") else "unreachable"
        print(f"Server: {server_status['api_url']} ({reachable})")
        if server_status.get("error"):
            print(f"  {server_status['error']}")
        print(f"Realtime: {config.realtime.broker}:{config.realtime.port}")
        return 0

    return await _with_app(config, action)


def _add_event_arguments(parser: argparse.ArgumentParser, required: bool) -> None:
    parser.add_argument("--title", required=required, help="Event title")
    parser.add_argument("--date", required=required, help="Date (YYYY-MM-DD)")
    parser.add_argument("--start", dest="start_time", help="Start time (HH:MM)")
    parser.add_argument("--end", dest="end_time", help="End time (HH:MM)")
    parser.add_argument("--time", help="Single time, used as start and end (HH:MM)")
    parser.add_argument("--location", help="Location")
    parser.add_argument("--description", help="Description")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="honeybee",
        description="Offline-first shared calendar for paired partners",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML config file",
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

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the sync client")
    run_parser.set_defaults(func=cmd_run)

    # List command
    list_parser = subparsers.add_parser("list", help="Show calendar events")
    list_parser.add_argument(
        "--offline",
        action="store_true",
        help="Only show the local store, do not contact the server",
    )
    list_parser.add_argument("--json", action="store_true", help="Output events as JSON")
    list_parser.set_defaults(func=cmd_list)

    # Add command
    add_parser = subparsers.add_parser("add", help="Create an event")
    _add_event_arguments(add_parser, required=True)
    add_parser.set_defaults(func=cmd_add)

    # Edit command
    edit_parser = subparsers.add_parser("edit", help="Update an event")
    edit_parser.add_argument("id", type=int, help="Local event id")
    edit_parser.add_argument(
        "--remote", action="store_true", help="Treat id as a remote event id"
    )
    edit_parser.add_argument("--all-day", action="store_true", help="Clear start and end")
    _add_event_arguments(edit_parser, required=False)
    edit_parser.set_defaults(func=cmd_edit)

    # Delete command
    delete_parser = subparsers.add_parser("delete", help="Delete an event")
    delete_parser.add_argument("id", type=int, help="Local event id")
    delete_parser.add_argument(
        "--remote", action="store_true", help="Treat id as a remote event id"
    )
    delete_parser.set_defaults(func=cmd_delete)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Push pending events and reconcile")
    sync_parser.set_defaults(func=cmd_sync)

    # Status command
    status_parser = subparsers.add_parser("status", help="Check store and server status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except HoneybeeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
