"""SQL generation for typing and deduping raw records into final tables.

The generator only produces statement text. Running it is the job of a
DestinationHandler, which keeps connection handling and credentials out of
this module entirely.

Sync lifecycle for one stream:

    create_raw_table / migrate_from_legacy   (once)
    create_table                             (final table, or a shadow)
    update_table                             (type + dedupe + mark loaded)
    overwrite_final_table                    (swap the shadow in, last)

A shadow table is filled with type_and_dedupe alone. Raw records are only
marked loaded by the transaction that swaps the shadow in, so a sync that
fails before the swap leaves them pending for the retry.

Dedup keeps one row per primary key. The winner has the highest cursor
(NULL cursors lose), then the latest extraction time, then the greatest
raw id. Rows with a NULL key column are never merged.
"""

from __future__ import annotations

import logging
from textwrap import indent
from typing import List, Optional, Protocol, runtime_checkable

from destinations.lib.errors import SchemaConflictError
from destinations.lib.schema_diff import ColumnAction, SchemaDiff
from destinations.lib.stream import (
    CDC_DELETED_AT,
    EXTRACTED_AT,
    LEGACY_DATA,
    LEGACY_EMITTED_AT,
    LEGACY_ID,
    LOADED_AT,
    META,
    RAW_DATA,
    RAW_ID,
    StreamConfig,
    StreamId,
    quote_identifier as q,
)
from destinations.lib.type_mapper import ColumnType, TableSchema, TypeMapper

logger = logging.getLogger(__name__)

__all__ = ["DuckDBSqlGenerator", "SqlGenerator", "SHADOW_SUFFIX"]

# Suffix of the shadow table built during overwrite syncs and recreates
SHADOW_SUFFIX = "_tmp"

META_TYPES = {
    RAW_ID: ColumnType("VARCHAR"),
    EXTRACTED_AT: ColumnType("TIMESTAMP WITH TIME ZONE"),
    META: ColumnType("JSON"),
}


@runtime_checkable
class SqlGenerator(Protocol):
    """Statements any destination must be able to generate.

    The conformance tests drive implementations through this protocol, so a
    new warehouse only has to provide these methods.
    """

    def create_table(self, stream: StreamConfig, suffix: str = "", force_recreate: bool = False) -> str: ...

    def type_and_dedupe(self, stream: StreamConfig, suffix: str = "", backfill: bool = False) -> str: ...

    def mark_raw_records_loaded(self, stream_id: StreamId) -> str: ...

    def update_table(self, stream: StreamConfig, suffix: str = "", backfill: bool = False) -> str: ...

    def overwrite_final_table(self, stream_id: StreamId, suffix: str, mark_loaded: bool = False) -> str: ...

    def migrate_from_legacy(self, stream_id: StreamId) -> str: ...

    def declared_schema(self, stream: StreamConfig) -> TableSchema: ...

    def create_raw_table(self, stream_id: StreamId) -> str: ...

    def alter_table(self, stream: StreamConfig, diff: SchemaDiff, suffix: str = "") -> str: ...

    def purge_cdc_tombstones(self, stream: StreamConfig, suffix: str = "") -> str: ...

    def count_unloaded_records(self, stream_id: StreamId) -> str: ...

    def count_raw_records(self, stream_id: StreamId) -> str: ...


def _join(*statements: Optional[str]) -> str:
    """Join statements into one script, dropping empty parts."""
    parts = [s.strip().rstrip(";") for s in statements if s and s.strip()]
    if not parts:
        return ""
    return ";\n\n".join(parts) + ";"


def _transaction(*statements: Optional[str]) -> str:
    body = _join(*statements)
    if not body:
        return ""
    return _join("BEGIN TRANSACTION", body, "COMMIT")


def _columns_block(definitions: List[str]) -> str:
    return indent(",\n".join(definitions), "  ")


class DuckDBSqlGenerator:
    """Generates DuckDB-dialect statements for the typing/deduping engine."""

    def __init__(self, type_mapper: Optional[TypeMapper] = None) -> None:
        self.type_mapper = type_mapper or TypeMapper(data_column=q(RAW_DATA))

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def declared_schema(self, stream: StreamConfig) -> TableSchema:
        """Final-table schema for a stream, metadata columns first."""
        columns = dict(META_TYPES)
        for column in stream.ordered_columns():
            columns[column] = self.type_mapper.column_type(stream.columns[column])
        return TableSchema(columns)

    def create_table(
        self,
        stream: StreamConfig,
        suffix: str = "",
        force_recreate: bool = False,
    ) -> str:
        """DDL for the final table (or a shadow table when suffix is set)."""
        definitions = [
            f"{q(RAW_ID)} {META_TYPES[RAW_ID].sql()} NOT NULL",
            f"{q(EXTRACTED_AT)} {META_TYPES[EXTRACTED_AT].sql()} NOT NULL",
            f"{q(META)} {META_TYPES[META].sql()}",
        ]
        for column in stream.ordered_columns():
            column_type = self.type_mapper.column_type(stream.columns[column])
            definitions.append(f"{q(column)} {column_type.sql()}")

        create = "CREATE OR REPLACE TABLE" if force_recreate else "CREATE TABLE"
        return _join(
            f"CREATE SCHEMA IF NOT EXISTS {q(stream.id.final_namespace)}",
            f"{create} {stream.id.final_table_id(suffix)} (\n"
            f"{_columns_block(definitions)}\n"
            f")",
        )

    def create_raw_table(self, stream_id: StreamId) -> str:
        """Idempotent DDL for the current-shape raw table."""
        return _join(
            f"CREATE SCHEMA IF NOT EXISTS {q(stream_id.raw_namespace)}",
            f"CREATE TABLE IF NOT EXISTS {stream_id.raw_table_id()} (\n"
            + _columns_block([
                f"{q(RAW_ID)} VARCHAR NOT NULL",
                f"{q(RAW_DATA)} JSON NOT NULL",
                f"{q(EXTRACTED_AT)} TIMESTAMP WITH TIME ZONE NOT NULL",
                f"{q(LOADED_AT)} TIMESTAMP WITH TIME ZONE",
            ])
            + "\n)",
        )

    def alter_table(self, stream: StreamConfig, diff: SchemaDiff, suffix: str = "") -> str:
        """Apply an additive schema diff in place.

        Raises:
            SchemaConflictError: If the diff contains incompatible type changes
        """
        if diff.requires_recreate:
            raise SchemaConflictError(
                "Schema change cannot be applied in place",
                conflicts=diff.conflicts,
                stream_id=stream.id,
            )

        table = stream.id.final_table_id(suffix)
        statements = []
        for change in diff.alterations:
            if change.action is ColumnAction.ADD:
                statements.append(
                    f"ALTER TABLE {table} ADD COLUMN {q(change.column)} {change.declared.sql()}"
                )
            elif change.action is ColumnAction.WIDEN:
                statements.append(
                    f"ALTER TABLE {table} ALTER COLUMN {q(change.column)} "
                    f"SET DATA TYPE {change.declared.sql()}"
                )
            elif change.action is ColumnAction.DROP:
                statements.append(f"ALTER TABLE {table} DROP COLUMN {q(change.column)}")
        return _transaction(*statements)

    # ------------------------------------------------------------------
    # Typing and deduping
    # ------------------------------------------------------------------

    def _meta_expression(self, stream: StreamConfig) -> str:
        failures = []
        for column in stream.ordered_columns():
            cast = self.type_mapper.cast(column, stream.columns[column])
            if cast.failure_sql:
                failures.append(cast.failure_sql)
        if not failures:
            return """CAST('{"errors":[]}' AS JSON)"""
        # list_distinct drops the NULLs left by successful casts
        failure_list = ",\n".join(failures)
        return (
            "json_object('errors', list_sort(list_distinct(list_value(\n"
            f"{indent(failure_list, '  ')}\n"
            "))))"
        )

    def _insert_new_records(self, stream: StreamConfig, suffix: str, backfill: bool) -> str:
        table = stream.id.final_table_id(suffix)
        user_columns = stream.ordered_columns()
        all_columns = [RAW_ID, EXTRACTED_AT, META] + user_columns
        column_list = ", ".join(q(c) for c in all_columns)

        typed = [
            f"{self.type_mapper.cast(c, stream.columns[c]).value_sql} AS {q(c)}"
            for c in user_columns
        ]
        typed.append(f"{self._meta_expression(stream)} AS {q(META)}")
        typed.extend([q(RAW_ID), q(EXTRACTED_AT)])

        where = "" if backfill else f"\n  WHERE {q(LOADED_AT)} IS NULL"
        select_list = indent(",\n".join(typed), "    ")

        return (
            f"INSERT INTO {table} ({column_list})\n"
            f"SELECT {column_list}\n"
            f"FROM (\n"
            f"  SELECT\n"
            f"{select_list}\n"
            f"  FROM {stream.id.raw_table_id()}{where}\n"
            f") AS intermediate_data\n"
            f"WHERE NOT EXISTS (\n"
            f"  SELECT 1 FROM {table} AS existing\n"
            f"  WHERE existing.{q(RAW_ID)} = intermediate_data.{q(RAW_ID)}\n"
            f")"
        )

    def _dedup_order(self, stream: StreamConfig) -> str:
        order = []
        if stream.cursor:
            order.append(f"{q(stream.cursor)} DESC NULLS LAST")
        order.append(f"{q(EXTRACTED_AT)} DESC")
        order.append(f"{q(RAW_ID)} DESC")
        return ", ".join(order)

    def _dedup_final_table(self, stream: StreamConfig, suffix: str) -> str:
        table = stream.id.final_table_id(suffix)
        partition = ", ".join(q(c) for c in stream.primary_key)
        # PARTITION BY groups NULLs together; keyless rows are kept as-is
        has_key = " AND ".join(f"{q(c)} IS NOT NULL" for c in stream.primary_key)
        return (
            f"DELETE FROM {table}\n"
            f"WHERE {q(RAW_ID)} IN (\n"
            f"  SELECT {q(RAW_ID)} FROM (\n"
            f"    SELECT {q(RAW_ID)}, row_number() OVER (\n"
            f"      PARTITION BY {partition}\n"
            f"      ORDER BY {self._dedup_order(stream)}\n"
            f"    ) AS {q('_row_number')}\n"
            f"    FROM {table}\n"
            f"    WHERE {has_key}\n"
            f"  ) AS ranked\n"
            f"  WHERE {q('_row_number')} <> 1\n"
            f")"
        )

    def type_and_dedupe(
        self,
        stream: StreamConfig,
        suffix: str = "",
        backfill: bool = False,
    ) -> str:
        """Type unloaded raw records into the final table, then dedupe it.

        Raw ids already present in the target are skipped, so re-running
        after a failed mark step doesn't duplicate rows.

        Args:
            stream: Stream to type
            suffix: Target a shadow table instead of the live one
            backfill: Read every raw record, not just unloaded ones
        """
        dedup = self._dedup_final_table(stream, suffix) if stream.sync_mode.dedupes else None
        return _join(self._insert_new_records(stream, suffix, backfill), dedup)

    def mark_raw_records_loaded(self, stream_id: StreamId) -> str:
        return (
            f"UPDATE {stream_id.raw_table_id()}\n"
            f"SET {q(LOADED_AT)} = current_timestamp\n"
            f"WHERE {q(LOADED_AT)} IS NULL"
        )

    def count_unloaded_records(self, stream_id: StreamId) -> str:
        """Query returning the number of raw records the next pass will type."""
        return (
            f"SELECT COUNT(*) AS {q('pending')}\n"
            f"FROM {stream_id.raw_table_id()}\n"
            f"WHERE {q(LOADED_AT)} IS NULL"
        )

    def count_raw_records(self, stream_id: StreamId) -> str:
        """Query returning the number of raw records a backfill will type."""
        return f"SELECT COUNT(*) AS {q('pending')}\nFROM {stream_id.raw_table_id()}"

    def update_table(
        self,
        stream: StreamConfig,
        suffix: str = "",
        backfill: bool = False,
    ) -> str:
        """Type, dedupe and mark loaded as one transaction."""
        return _transaction(
            self.type_and_dedupe(stream, suffix, backfill),
            self.mark_raw_records_loaded(stream.id),
        )

    def purge_cdc_tombstones(self, stream: StreamConfig, suffix: str = "") -> str:
        """Delete rows whose source record was deleted.

        Tombstones are kept by default; purging is the caller's decision.
        """
        if not stream.cdc_enabled:
            return ""
        return (
            f"DELETE FROM {stream.id.final_table_id(suffix)}\n"
            f"WHERE {q(CDC_DELETED_AT)} IS NOT NULL"
        )

    # ------------------------------------------------------------------
    # Swaps and migration
    # ------------------------------------------------------------------

    def overwrite_final_table(
        self,
        stream_id: StreamId,
        suffix: str,
        mark_loaded: bool = False,
    ) -> str:
        """Replace the live final table with its shadow in one transaction.

        With mark_loaded, the raw records typed into the shadow are marked
        loaded in the same transaction, so they stay pending if the swap
        fails.
        """
        if not suffix:
            raise ValueError("overwrite_final_table needs the suffix of a shadow table")
        return _transaction(
            self.mark_raw_records_loaded(stream_id) if mark_loaded else None,
            f"DROP TABLE IF EXISTS {stream_id.final_table_id()}",
            f"ALTER TABLE {stream_id.final_table_id(suffix)} RENAME TO {q(stream_id.final_name)}",
        )

    def migrate_from_legacy(self, stream_id: StreamId) -> str:
        """Copy a legacy raw table into the current raw-table shape.

        Legacy rows are left in place. Raw ids that were already copied are
        skipped, so an interrupted migration can be re-run.
        """
        raw = stream_id.raw_table_id()
        return _transaction(
            self.create_raw_table(stream_id),
            f"INSERT INTO {raw} ({q(RAW_ID)}, {q(RAW_DATA)}, {q(EXTRACTED_AT)}, {q(LOADED_AT)})\n"
            f"SELECT\n"
            f"  legacy.{q(LEGACY_ID)},\n"
            f"  COALESCE(CAST(legacy.{q(LEGACY_DATA)} AS JSON), CAST('null' AS JSON)),\n"
            f"  legacy.{q(LEGACY_EMITTED_AT)},\n"
            f"  CAST(NULL AS TIMESTAMP WITH TIME ZONE)\n"
            f"FROM {stream_id.legacy_raw_table_id()} AS legacy\n"
            f"WHERE NOT EXISTS (\n"
            f"  SELECT 1 FROM {raw} AS migrated\n"
            f"  WHERE migrated.{q(RAW_ID)} = legacy.{q(LEGACY_ID)}\n"
            f")",
        )
