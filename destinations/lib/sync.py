"""Sync orchestration: drive one stream from raw records to its final table.

A sync runs, in order:

1. migrate a legacy raw table (first sync only) and make sure the raw table
   exists
2. bring the final table's schema in line with the declared one: create it,
   alter it in place, or rebuild it in a shadow table
3. type, dedupe and mark loaded in one transaction, or, for a shadow
   table, type and dedupe it then mark loaded and swap it in together

Every step is a statement from the SqlGenerator run by a DestinationHandler.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List

from destinations.lib.destination import DestinationHandler
from destinations.lib.errors import SchemaConflictError
from destinations.lib.migration import migrate_if_necessary
from destinations.lib.observability import get_structlog_logger
from destinations.lib.schema_diff import ExtraColumnPolicy, diff_schemas
from destinations.lib.sql_generator import SHADOW_SUFFIX, SqlGenerator
from destinations.lib.stream import StreamConfig

logger = get_structlog_logger(__name__)

__all__ = ["sync_catalog", "sync_stream"]


def _pending_records(
    handler: DestinationHandler,
    generator: SqlGenerator,
    stream: StreamConfig,
    *,
    backfill: bool = False,
) -> int:
    if backfill:
        sql = generator.count_raw_records(stream.id)
    else:
        sql = generator.count_unloaded_records(stream.id)
    rows = handler.query(sql)
    return int(rows[0]["pending"]) if rows else 0


def _rebuild_in_shadow(
    handler: DestinationHandler,
    generator: SqlGenerator,
    stream: StreamConfig,
    *,
    backfill: bool,
    purge_tombstones: bool,
) -> None:
    handler.execute(generator.create_table(stream, SHADOW_SUFFIX, force_recreate=True))
    handler.execute(generator.type_and_dedupe(stream, SHADOW_SUFFIX, backfill=backfill))
    if purge_tombstones:
        handler.execute(generator.purge_cdc_tombstones(stream, SHADOW_SUFFIX))
    # Last statement of the sync; raw records stay pending until it commits
    handler.execute(
        generator.overwrite_final_table(stream.id, SHADOW_SUFFIX, mark_loaded=True)
    )


def _prepare_final_table(
    handler: DestinationHandler,
    generator: SqlGenerator,
    stream: StreamConfig,
    *,
    allow_recreate: bool,
    extra_columns: ExtraColumnPolicy,
) -> str:
    """Create or alter the live final table. Returns the action taken."""
    physical = handler.describe_table(stream.id.final_namespace, stream.id.final_name)
    if physical is None:
        handler.execute(generator.create_table(stream))
        return "created"

    diff = diff_schemas(
        generator.declared_schema(stream),
        physical,
        extra_columns=extra_columns,
    )
    if diff.requires_recreate:
        if not allow_recreate:
            raise SchemaConflictError(
                "Declared schema is incompatible with the final table",
                conflicts=diff.conflicts,
                stream_id=stream.id,
            )
        return "recreate"

    if diff.is_noop:
        return "unchanged"

    logger.info(
        "schema_altered",
        stream=stream.id.qualified_name,
        changes=diff.summary(),
    )
    handler.execute(generator.alter_table(stream, diff))
    return "altered"


def sync_stream(
    handler: DestinationHandler,
    generator: SqlGenerator,
    stream: StreamConfig,
    *,
    allow_recreate: bool = False,
    extra_columns: ExtraColumnPolicy = ExtraColumnPolicy.RETAIN,
    purge_tombstones: bool = False,
) -> Dict[str, Any]:
    """Type and dedupe a stream's unloaded raw records into its final table.

    Safe to re-run after a failure: raw records are marked loaded in the
    same transaction that types them into the live table, or that swaps a
    shadow table in, and typing skips raw ids already in the target table.

    rows_loaded counts the raw records typed by this sync. A recreate
    counts every raw record, since the backfill retypes them all.

    Args:
        handler: Connection to the warehouse
        generator: Statement generator for the warehouse dialect
        stream: Declared stream configuration
        allow_recreate: Rebuild the final table from the whole raw table when
            a column type changed incompatibly, instead of failing
        extra_columns: What to do with physical columns no longer declared
        purge_tombstones: Delete CDC-deleted rows after deduping

    Returns:
        Dictionary with stream, sync_mode, action, migrated, rows_loaded,
        final_table and elapsed_seconds

    Raises:
        SchemaConflictError: On an incompatible schema change without
            allow_recreate
        SqlExecutionError: If a statement fails
        MigrationError: If the raw table has an unrecognized shape
    """
    name = stream.id.qualified_name
    start = time.time()
    logger.info("sync_started", stream=name, sync_mode=stream.sync_mode.value)

    try:
        migrated = migrate_if_necessary(handler, generator, stream.id)
        handler.execute(generator.create_raw_table(stream.id))
        pending = _pending_records(handler, generator, stream)

        if stream.sync_mode.overwrites:
            _rebuild_in_shadow(
                handler,
                generator,
                stream,
                backfill=False,
                purge_tombstones=purge_tombstones,
            )
            action = "overwritten"
        else:
            action = _prepare_final_table(
                handler,
                generator,
                stream,
                allow_recreate=allow_recreate,
                extra_columns=extra_columns,
            )
            if action == "recreate":
                # Backfill retypes every raw record, loaded or not
                pending = _pending_records(handler, generator, stream, backfill=True)
                _rebuild_in_shadow(
                    handler,
                    generator,
                    stream,
                    backfill=True,
                    purge_tombstones=purge_tombstones,
                )
                action = "recreated"
            else:
                handler.execute(generator.update_table(stream))
                if purge_tombstones:
                    handler.execute(generator.purge_cdc_tombstones(stream))

    except Exception as e:
        elapsed = time.time() - start
        error = e.to_dict() if hasattr(e, "to_dict") else {"message": str(e)}
        logger.error(
            "sync_failed",
            stream=name,
            elapsed_seconds=round(elapsed, 2),
            error=error,
        )
        raise

    elapsed = time.time() - start
    logger.info(
        "sync_completed",
        stream=name,
        action=action,
        rows_loaded=pending,
        elapsed_seconds=round(elapsed, 2),
    )

    return {
        "stream": name,
        "sync_mode": stream.sync_mode.value,
        "action": action,
        "migrated": migrated,
        "rows_loaded": pending,
        "final_table": stream.id.final_table_id(),
        "elapsed_seconds": elapsed,
    }


def sync_catalog(
    handler: DestinationHandler,
    generator: SqlGenerator,
    streams: Iterable[StreamConfig],
    **options: Any,
) -> List[Dict[str, Any]]:
    """Sync streams one after another, stopping at the first failure.

    Keyword options are passed through to sync_stream.
    """
    return [sync_stream(handler, generator, stream, **options) for stream in streams]
