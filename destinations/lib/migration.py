"""One-time migration of legacy raw tables.

Older destinations wrote a single raw table per stream next to the final
table, shaped (_legacy_id, _data, _emitted_at). The current engine expects
(_raw_id, _data, _extracted_at, _loaded_at) in the raw namespace. Before the
first typing pass of such a stream, its legacy rows are copied over with
_loaded_at left NULL so the next sync types all of them.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from destinations.lib.destination import DestinationHandler
from destinations.lib.errors import MigrationError
from destinations.lib.sql_generator import SqlGenerator
from destinations.lib.stream import (
    EXTRACTED_AT,
    LEGACY_DATA,
    LEGACY_EMITTED_AT,
    LEGACY_ID,
    LOADED_AT,
    RAW_DATA,
    RAW_ID,
    StreamId,
)
from destinations.lib.type_mapper import TableSchema

logger = logging.getLogger(__name__)

__all__ = ["RawTableShape", "detect_raw_table_shape", "migrate_if_necessary"]

CURRENT_COLUMNS = frozenset({RAW_ID, RAW_DATA, EXTRACTED_AT, LOADED_AT})
LEGACY_COLUMNS = frozenset({LEGACY_ID, LEGACY_DATA, LEGACY_EMITTED_AT})


class RawTableShape(Enum):
    ABSENT = "absent"
    LEGACY = "legacy"
    CURRENT = "current"


def detect_raw_table_shape(
    schema: Optional[TableSchema],
    *,
    table: Optional[str] = None,
) -> RawTableShape:
    """Classify a raw table by which columns it has.

    Raises:
        MigrationError: If the table exists but matches neither shape
    """
    if schema is None:
        return RawTableShape.ABSENT

    columns = set(schema.names())
    if CURRENT_COLUMNS <= columns:
        return RawTableShape.CURRENT
    if LEGACY_COLUMNS <= columns:
        return RawTableShape.LEGACY

    raise MigrationError(
        "Raw table matches neither the current nor the legacy shape",
        table=table,
        columns=sorted(columns),
    )


def migrate_if_necessary(
    handler: DestinationHandler,
    generator: SqlGenerator,
    stream_id: StreamId,
) -> bool:
    """Migrate a stream's legacy raw table if it has not been migrated yet.

    Migration runs only when the current raw table does not exist and a
    legacy raw table does. The legacy table is left in place.

    Returns:
        True if a migration ran
    """
    current = detect_raw_table_shape(
        handler.describe_table(stream_id.raw_namespace, stream_id.raw_name),
        table=stream_id.raw_table_id(),
    )
    if current is RawTableShape.CURRENT:
        return False
    if current is RawTableShape.LEGACY:
        raise MigrationError(
            "Raw table location holds a legacy-shaped table",
            table=stream_id.raw_table_id(),
            stream_id=stream_id,
        )

    legacy = detect_raw_table_shape(
        handler.describe_table(stream_id.final_namespace, stream_id.legacy_raw_name),
        table=stream_id.legacy_raw_table_id(),
    )
    if legacy is not RawTableShape.LEGACY:
        logger.debug("No legacy raw table for %s", stream_id.qualified_name)
        return False

    logger.info(
        "Migrating legacy raw table %s to %s",
        stream_id.legacy_raw_table_id(),
        stream_id.raw_table_id(),
    )
    handler.execute(generator.migrate_from_legacy(stream_id))
    return True
