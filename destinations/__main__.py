"""CLI entry point for destination syncs.

Usage:
    python -m destinations sync catalog.yaml --database warehouse.duckdb
    python -m destinations sync catalog.yaml --stream public.users --allow-recreate
    python -m destinations sql catalog.yaml public.users update
    python -m destinations validate catalog.yaml
    python -m destinations show public users --database warehouse.duckdb

Deployment settings (database path, raw namespace, retries) default to the
DESTINATION_* environment variables, which may also come from a .env file.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

from destinations.lib.config import (
    DestinationSettings,
    load_catalog,
    load_env_file,
    validate_catalog,
)
from destinations.lib.destination import DuckDBDestinationHandler
from destinations.lib.errors import DestinationError
from destinations.lib.observability import setup_logging
from destinations.lib.schema_diff import ExtraColumnPolicy
from destinations.lib.sql_generator import SHADOW_SUFFIX, DuckDBSqlGenerator
from destinations.lib.stream import StreamConfig
from destinations.lib.sync import sync_catalog

logger = logging.getLogger(__name__)

# Statements the `sql` command can print, keyed by operation name
SQL_OPERATIONS: Dict[str, Callable[[DuckDBSqlGenerator, StreamConfig], str]] = {
    "create": lambda g, s: g.create_table(s),
    "create-shadow": lambda g, s: g.create_table(s, SHADOW_SUFFIX, force_recreate=True),
    "create-raw": lambda g, s: g.create_raw_table(s.id),
    "type-dedupe": lambda g, s: g.type_and_dedupe(s),
    "mark-loaded": lambda g, s: g.mark_raw_records_loaded(s.id),
    "update": lambda g, s: g.update_table(s),
    "overwrite": lambda g, s: g.overwrite_final_table(s.id, SHADOW_SUFFIX),
    "migrate": lambda g, s: g.migrate_from_legacy(s.id),
    "purge-tombstones": lambda g, s: g.purge_cdc_tombstones(s),
}


def select_streams(streams: List[StreamConfig], names: Optional[List[str]]) -> List[StreamConfig]:
    """Filter catalog streams by "namespace.name"; all streams when names is empty."""
    if not names:
        return streams
    by_name = {s.id.qualified_name: s for s in streams}
    unknown = [n for n in names if n not in by_name]
    if unknown:
        print(f"Error: unknown stream(s): {', '.join(unknown)}")
        print(f"Catalog streams: {', '.join(sorted(by_name))}")
        sys.exit(1)
    return [by_name[n] for n in names]


def print_results(results: List[Dict[str, Any]]) -> None:
    print()
    print("Sync completed:")
    for result in results:
        migrated = " (migrated legacy raw table)" if result["migrated"] else ""
        print(
            f"  {result['stream']}: {result['action']}, "
            f"{result['rows_loaded']:,} raw records typed "
            f"in {result['elapsed_seconds']:.2f}s{migrated}"
        )


def sync_command(args: argparse.Namespace, settings: DestinationSettings) -> None:
    streams = select_streams(
        load_catalog(args.catalog, raw_namespace=settings.raw_namespace),
        args.stream,
    )
    extra_columns = (
        ExtraColumnPolicy.DROP if args.drop_extra_columns else ExtraColumnPolicy.RETAIN
    )

    with DuckDBDestinationHandler(
        args.database or settings.database,
        max_attempts=settings.max_attempts,
        backoff_seconds=settings.backoff_seconds,
    ) as handler:
        results = sync_catalog(
            handler,
            DuckDBSqlGenerator(),
            streams,
            allow_recreate=args.allow_recreate,
            extra_columns=extra_columns,
            purge_tombstones=args.purge_tombstones,
        )
    print_results(results)


def sql_command(args: argparse.Namespace, settings: DestinationSettings) -> None:
    streams = load_catalog(args.catalog, raw_namespace=settings.raw_namespace)
    (stream,) = select_streams(streams, [args.stream])
    statement = SQL_OPERATIONS[args.operation](DuckDBSqlGenerator(), stream)
    if not statement:
        print(f"-- {args.operation}: nothing to do for {args.stream}")
        return
    print(statement)


def validate_command(args: argparse.Namespace, settings: DestinationSettings) -> None:
    errors = validate_catalog(args.catalog)
    if errors:
        print(f"Catalog {args.catalog} is invalid:")
        for error in errors:
            print(error)
        sys.exit(1)
    streams = load_catalog(args.catalog, raw_namespace=settings.raw_namespace)
    print(f"Catalog {args.catalog} is valid ({len(streams)} stream(s)):")
    for stream in streams:
        key = ", ".join(stream.primary_key) or "-"
        print(
            f"  {stream.id.qualified_name}: {stream.sync_mode.value}, "
            f"primary key [{key}], cursor {stream.cursor or '-'}, "
            f"raw table {stream.id.raw_table_id()}"
        )


def show_command(args: argparse.Namespace, settings: DestinationSettings) -> None:
    with DuckDBDestinationHandler(args.database or settings.database) as handler:
        if handler.describe_table(args.namespace, args.name) is None:
            print(f"Error: table {args.namespace}.{args.name} does not exist")
            sys.exit(1)
        frame = handler.table_frame(args.namespace, args.name)
    print(frame.head(args.limit).to_string(index=False))
    print(f"\n({len(frame):,} rows)")


COMMANDS = {
    "sync": sync_command,
    "sql": sql_command,
    "validate": validate_command,
    "show": show_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="destinations",
        description="Type and dedupe raw records into warehouse tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Sync every stream of a catalog
    python -m destinations sync catalog.yaml --database warehouse.duckdb

    # Rebuild a final table whose column types changed
    python -m destinations sync catalog.yaml --stream public.users --allow-recreate

    # Print the statement an operation would run
    python -m destinations sql catalog.yaml public.users update

    # Check a catalog without touching the warehouse
    python -m destinations validate catalog.yaml
        """,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (includes generated SQL)",
    )
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to a file in addition to the console",
    )
    parser.add_argument(
        "--env-file",
        help="Load environment variables from this file instead of ./.env",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Sync streams from a catalog")
    sync.add_argument("catalog", help="Path to the YAML catalog")
    sync.add_argument("--database", help="DuckDB database path (default: DESTINATION_DATABASE)")
    sync.add_argument(
        "--stream",
        action="append",
        help="Only sync this stream (namespace.name); may be repeated",
    )
    sync.add_argument(
        "--allow-recreate",
        action="store_true",
        help="Rebuild final tables from raw when a column type changed incompatibly",
    )
    sync.add_argument(
        "--drop-extra-columns",
        action="store_true",
        help="Drop final-table columns that are no longer declared",
    )
    sync.add_argument(
        "--purge-tombstones",
        action="store_true",
        help="Delete CDC-deleted rows after deduping",
    )

    sql = subparsers.add_parser("sql", help="Print the SQL for one operation on a stream")
    sql.add_argument("catalog", help="Path to the YAML catalog")
    sql.add_argument("stream", help="Stream as namespace.name")
    sql.add_argument("operation", choices=sorted(SQL_OPERATIONS), help="Operation to render")

    validate = subparsers.add_parser("validate", help="Validate a catalog")
    validate.add_argument("catalog", help="Path to the YAML catalog")

    show = subparsers.add_parser("show", help="Print the rows of a table")
    show.add_argument("namespace", help="Table namespace")
    show.add_argument("name", help="Table name")
    show.add_argument("--database", help="DuckDB database path (default: DESTINATION_DATABASE)")
    show.add_argument("--limit", type=int, default=20, help="Rows to print (default: 20)")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    load_env_file(args.env_file)
    settings = DestinationSettings()

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_log or settings.log_format == "json",
        log_file=args.log_file or settings.log_file,
    )

    try:
        COMMANDS[args.command](args, settings)

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)

    except (DestinationError, FileNotFoundError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
