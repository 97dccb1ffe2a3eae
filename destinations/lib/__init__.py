"""Destination library modules.

This package contains the stream model, type mapping, SQL generation,
schema diffing, migration and execution layers of the engine.
"""

from destinations.lib.config import (
    CatalogSpec,
    DestinationSettings,
    StreamSpec,
    expand_env_vars,
    load_catalog,
    load_env_file,
    validate_catalog,
)
from destinations.lib.destination import DestinationHandler, DuckDBDestinationHandler
from destinations.lib.errors import (
    ConfigurationError,
    DestinationError,
    MigrationError,
    SchemaConflictError,
    SqlExecutionError,
)
from destinations.lib.migration import RawTableShape, detect_raw_table_shape, migrate_if_necessary
from destinations.lib.observability import get_structlog_logger, setup_logging
from destinations.lib.resilience import with_retry
from destinations.lib.schema_diff import (
    ColumnAction,
    ColumnChange,
    ExtraColumnPolicy,
    SchemaDiff,
    diff_schemas,
)
from destinations.lib.sql_generator import SHADOW_SUFFIX, DuckDBSqlGenerator, SqlGenerator
from destinations.lib.stream import (
    StreamConfig,
    StreamId,
    StreamIdResolver,
    SyncMode,
    quote_identifier,
)
from destinations.lib.sync import sync_catalog, sync_stream
from destinations.lib.type_mapper import (
    ColumnKind,
    ColumnType,
    FieldCast,
    TableSchema,
    TypeMapper,
    kind_from_json_schema,
)

__all__ = [
    # Config
    "CatalogSpec",
    "DestinationSettings",
    "StreamSpec",
    "expand_env_vars",
    "load_catalog",
    "load_env_file",
    "validate_catalog",
    # Execution
    "DestinationHandler",
    "DuckDBDestinationHandler",
    "with_retry",
    # Errors
    "ConfigurationError",
    "DestinationError",
    "MigrationError",
    "SchemaConflictError",
    "SqlExecutionError",
    # Migration
    "RawTableShape",
    "detect_raw_table_shape",
    "migrate_if_necessary",
    # Logging
    "get_structlog_logger",
    "setup_logging",
    # Schema
    "ColumnAction",
    "ColumnChange",
    "ExtraColumnPolicy",
    "SchemaDiff",
    "diff_schemas",
    # SQL
    "SHADOW_SUFFIX",
    "DuckDBSqlGenerator",
    "SqlGenerator",
    # Streams
    "StreamConfig",
    "StreamId",
    "StreamIdResolver",
    "SyncMode",
    "quote_identifier",
    "sync_catalog",
    "sync_stream",
    # Types
    "ColumnKind",
    "ColumnType",
    "FieldCast",
    "TableSchema",
    "TypeMapper",
    "kind_from_json_schema",
]
