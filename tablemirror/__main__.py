"""CLI entry point for tablemirror."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from .backend import MockBackend, MQTTChangeChannel, RemoteBackend, RestBackend
from .config import Config, TableEntryConfig, load_config
from .rows import TableRow
from .sync import TableSync


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging on stderr, leaving stdout to command output.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level = LOG_LEVELS[log_level]
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])

    # httpx logs every request at INFO
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_backend(config: Config, args: argparse.Namespace) -> RemoteBackend:
    """Create the backend selected on the command line."""
    if args.mock:
        keys = {t.name: t.primary_keys for t in config.tables}
        backend = MockBackend(primary_keys=keys)
        if args.seed:
            with open(args.seed) as f:
                seed = json.load(f)
            for table, rows in seed.items():
                backend.seed(table, rows)
        return backend

    return RestBackend(config.rest, channel=MQTTChangeChannel(config.mqtt))


def _find_table(config: Config, name: str) -> TableEntryConfig | None:
    entry = config.get_table(name)
    if entry is None:
        print(f"Unknown table: {name}", file=sys.stderr)
        print(f"Configured tables: {', '.join(t.name for t in config.tables) or '(none)'}", file=sys.stderr)
    return entry


def _row_json(row: TableRow) -> str:
    return json.dumps(row.to_dict(), default=str)


def cmd_tables(args: argparse.Namespace) -> int:
    """List configured tables."""
    config = load_config(args.config)

    if not config.tables:
        print("No tables configured")
        return 0

    for table in config.tables:
        mode = "optimistic" if table.optimistic else "pessimistic"
        print(f"{table.schema}.{table.name}")
        print(f"  keys: {', '.join(table.primary_keys)}")
        print(f"  writes: {mode}, page size {table.page_size}")
        if table.prefilter:
            print(f"  prefilter: {table.prefilter.key} = {table.prefilter.value}")
        for cond in table.conditions:
            print(f"  where {cond.column} {cond.op} {cond.value!r}")
    return 0


async def cmd_snapshot(args: argparse.Namespace) -> int:
    """Load a table once and print its rows as JSON lines."""
    config = load_config(args.config)
    entry = _find_table(config, args.table)
    if entry is None:
        return 1

    try:
        table_config = entry.to_table_config()
    except ValueError as e:
        print(f"Invalid table config: {e}", file=sys.stderr)
        return 1

    backend = _build_backend(config, args)
    table = TableSync(backend, table_config)
    try:
        await table.load()
        for row in table.rows:
            print(_row_json(row))
    finally:
        await table.close()
        await backend.close()

    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Mirror a table and report every change until interrupted."""
    config = load_config(args.config)
    entry = _find_table(config, args.table)
    if entry is None:
        return 1

    try:
        table_config = entry.to_table_config()
    except ValueError as e:
        print(f"Invalid table config: {e}", file=sys.stderr)
        return 1

    backend = _build_backend(config, args)

    def on_snapshot(rows: list[TableRow]) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        print(f"[{stamp}] {table_config.schema.full_name}: {len(rows)} rows")
        if args.rows:
            for row in rows:
                print(f"  {_row_json(row)}")

    try:
        async with TableSync(backend, table_config) as table:
            table.subscribe(on_snapshot)
            await asyncio.Event().wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await backend.close()

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tablemirror",
        description="Client-side mirror of a remote table",
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
        choices=list(LOG_LEVELS),
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the in-memory mock backend instead of REST + MQTT",
    )
    parser.add_argument(
        "--seed",
        type=Path,
        default=None,
        help="JSON file of {table: [rows]} to load into the mock backend",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Tables command
    tables_parser = subparsers.add_parser("tables", help="List configured tables")
    tables_parser.set_defaults(func=cmd_tables)

    # Snapshot command
    snapshot_parser = subparsers.add_parser("snapshot", help="Print a table's rows once")
    snapshot_parser.add_argument("table", help="Configured table name")
    snapshot_parser.set_defaults(func=cmd_snapshot)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Mirror a table and report changes")
    watch_parser.add_argument("table", help="Configured table name")
    watch_parser.add_argument(
        "--rows",
        action="store_true",
        help="Print every row on each change, not just the count",
    )
    watch_parser.set_defaults(func=cmd_watch)

    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_level, getattr(args, "json", False))

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        try:
            return asyncio.run(func(args))
        except KeyboardInterrupt:
            return 0
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
