"""Typing and deduplication engine for warehouse destinations.

Raw JSON records land in an append-only raw table per stream; this package
generates and runs the SQL that types them into a final table, keeps one
row per primary key, and migrates schemas and legacy raw tables.

Usage:
    python -m destinations sync catalog.yaml --database warehouse.duckdb
    python -m destinations sql catalog.yaml public.users update
"""

from destinations.lib.destination import DuckDBDestinationHandler
from destinations.lib.sql_generator import DuckDBSqlGenerator
from destinations.lib.stream import StreamConfig, StreamIdResolver, SyncMode
from destinations.lib.sync import sync_catalog, sync_stream
from destinations.lib.type_mapper import ColumnKind

__all__ = [
    "ColumnKind",
    "DuckDBDestinationHandler",
    "DuckDBSqlGenerator",
    "StreamConfig",
    "StreamIdResolver",
    "SyncMode",
    "sync_catalog",
    "sync_stream",
]
