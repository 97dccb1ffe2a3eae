"""Stream identifiers and declared stream configuration.

A logical stream (namespace, name) lands in two physical tables:

- the raw table, an append-only landing table in a shared raw namespace
- the final table, typed and deduplicated, in the stream's own namespace

StreamIdResolver derives both locations deterministically. Nothing in this
module touches the warehouse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from destinations.lib.errors import ConfigurationError
from destinations.lib.type_mapper import ColumnKind

logger = logging.getLogger(__name__)

__all__ = [
    "CDC_DELETED_AT",
    "DEFAULT_RAW_NAMESPACE",
    "EXTRACTED_AT",
    "LEGACY_DATA",
    "LEGACY_EMITTED_AT",
    "LEGACY_ID",
    "LOADED_AT",
    "META",
    "RAW_DATA",
    "RAW_ID",
    "StreamConfig",
    "StreamId",
    "StreamIdResolver",
    "SyncMode",
    "quote_identifier",
]

# Raw table columns
RAW_ID = "_raw_id"
RAW_DATA = "_data"
EXTRACTED_AT = "_extracted_at"
LOADED_AT = "_loaded_at"

# Final table metadata columns (RAW_ID and EXTRACTED_AT are shared)
META = "_meta"
CDC_DELETED_AT = "_cdc_deleted_at"

# Legacy single-table raw format
LEGACY_ID = "_legacy_id"
LEGACY_DATA = "_data"
LEGACY_EMITTED_AT = "_emitted_at"

DEFAULT_RAW_NAMESPACE = "destinations_raw"

QUOTE = '"'


def quote_identifier(name: str) -> str:
    '''Quote an identifier for the warehouse.

    Quoting is idempotent: an identifier that is already wrapped in double
    quotes, with every inner quote doubled, is returned unchanged.

    Example:
        >>> quote_identifier("users")
        '"users"'
        >>> quote_identifier('"users"')
        '"users"'
        >>> quote_identifier('"a"b"')
        '"""a""b"""'
    '''
    if len(name) >= 2 and name.startswith(QUOTE) and name.endswith(QUOTE):
        if QUOTE not in name[1:-1].replace(QUOTE * 2, ""):
            return name
    return QUOTE + name.replace(QUOTE, QUOTE * 2) + QUOTE


class SyncMode(Enum):
    """How the final table relates to earlier syncs."""

    APPEND = "append"  # Every typed record is appended
    APPEND_DEDUP = "append_dedup"  # One row per primary key, merged across syncs
    OVERWRITE_DEDUP = "overwrite_dedup"  # Rebuilt each sync, one row per primary key

    @property
    def dedupes(self) -> bool:
        return self in (SyncMode.APPEND_DEDUP, SyncMode.OVERWRITE_DEDUP)

    @property
    def overwrites(self) -> bool:
        return self is SyncMode.OVERWRITE_DEDUP


@dataclass(frozen=True)
class StreamId:
    """Physical locations for one logical stream.

    Names are stored unquoted; the *_table_id helpers return quoted,
    fully qualified table references.
    """

    raw_namespace: str
    raw_name: str
    final_namespace: str
    final_name: str
    original_namespace: str
    original_name: str

    def raw_table_id(self) -> str:
        return f"{quote_identifier(self.raw_namespace)}.{quote_identifier(self.raw_name)}"

    def final_table_id(self, suffix: str = "") -> str:
        return (
            f"{quote_identifier(self.final_namespace)}."
            f"{quote_identifier(self.final_name + suffix)}"
        )

    @property
    def legacy_raw_name(self) -> str:
        """Name of the legacy raw table, which lived next to the final table."""
        return f"_legacy_raw_{self.original_name}"

    def legacy_raw_table_id(self) -> str:
        return (
            f"{quote_identifier(self.final_namespace)}."
            f"{quote_identifier(self.legacy_raw_name)}"
        )

    @property
    def qualified_name(self) -> str:
        return f"{self.original_namespace}.{self.original_name}"


class StreamIdResolver:
    """Derives physical table locations from logical stream names.

    Example:
        >>> resolver = StreamIdResolver()
        >>> stream_id = resolver.resolve("public", "users")
        >>> stream_id.raw_table_id()
        '"destinations_raw"."public_raw__stream_users"'
        >>> stream_id.final_table_id("_tmp")
        '"public"."users_tmp"'
    """

    def __init__(self, raw_namespace: str = DEFAULT_RAW_NAMESPACE) -> None:
        if not raw_namespace:
            raise ConfigurationError("raw_namespace must not be empty", field="raw_namespace")
        self.raw_namespace = raw_namespace

    def resolve(self, namespace: str, name: str) -> StreamId:
        if not namespace or not name:
            raise ConfigurationError(
                "Stream namespace and name are required",
                namespace=namespace or None,
                stream=name or None,
            )
        return StreamId(
            raw_namespace=self.raw_namespace,
            raw_name=f"{namespace}_raw__stream_{name}",
            final_namespace=namespace,
            final_name=name,
            original_namespace=namespace,
            original_name=name,
        )


@dataclass
class StreamConfig:
    """Declared schema and sync behavior of one stream.

    Example:
        stream = StreamConfig(
            id=StreamIdResolver().resolve("public", "users"),
            sync_mode=SyncMode.APPEND_DEDUP,
            primary_key=["id"],
            cursor="updated_at",
            columns={
                "id": ColumnKind.INTEGER,
                "updated_at": ColumnKind.TIMESTAMP_WITH_TIMEZONE,
                "name": ColumnKind.STRING,
            },
        )
    """

    id: StreamId
    sync_mode: SyncMode
    columns: Dict[str, ColumnKind] = field(default_factory=dict)
    primary_key: List[str] = field(default_factory=list)
    cursor: Optional[str] = None

    def __post_init__(self) -> None:
        errors = self._validate()
        if errors:
            error_msg = "\n".join(f"  - {e}" for e in errors)
            raise ConfigurationError(
                f"Stream configuration errors:\n{error_msg}",
                namespace=self.id.original_namespace,
                stream=self.id.original_name,
            )

    def _validate(self) -> List[str]:
        errors = []

        if self.sync_mode.dedupes and not self.primary_key:
            errors.append(
                f"primary_key is required for sync_mode {self.sync_mode.value} "
                "(what makes a record unique?)"
            )

        for column in self.primary_key:
            if column not in self.columns:
                errors.append(f"primary key column '{column}' is not declared in columns")

        if self.cursor and self.cursor not in self.columns:
            errors.append(f"cursor column '{self.cursor}' is not declared in columns")

        for column in self.columns:
            if column in (RAW_ID, EXTRACTED_AT, META):
                errors.append(f"column '{column}' collides with a metadata column")

        if self.cdc_enabled and self.columns[CDC_DELETED_AT] is not ColumnKind.TIMESTAMP_WITH_TIMEZONE:
            errors.append(f"{CDC_DELETED_AT} must be declared as timestamp_with_timezone")

        if self.cursor and not self.sync_mode.dedupes:
            logger.debug(
                "Cursor %s on %s is ignored outside dedup modes",
                self.cursor,
                self.id.qualified_name,
            )

        return errors

    @property
    def cdc_enabled(self) -> bool:
        """CDC streams carry a deletion timestamp column."""
        return CDC_DELETED_AT in self.columns

    def ordered_columns(self) -> List[str]:
        """User columns in final-table order.

        Primary key first, then the cursor, then the remaining declared
        columns in declaration order, with the CDC deletion timestamp last.
        """
        ordered: List[str] = list(self.primary_key)
        if self.cursor and self.cursor not in ordered:
            ordered.append(self.cursor)
        for column in self.columns:
            if column not in ordered and column != CDC_DELETED_AT:
                ordered.append(column)
        if self.cdc_enabled:
            ordered.append(CDC_DELETED_AT)
        return ordered
