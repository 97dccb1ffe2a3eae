"""Stream catalogs and destination settings.

A catalog is a YAML file declaring the streams to sync:

    raw_namespace: destinations_raw      # optional
    streams:
      - namespace: public
        name: users
        sync_mode: append_dedup
        primary_key: [id]
        cursor: updated_at
        columns:
          id: integer
          updated_at: timestamp_with_timezone
          name: string
          address: {type: [null, object]}   # JSON-schema properties work too

String values may reference environment variables as ${VAR}. Settings that
belong to the deployment rather than the catalog (database path, retries)
come from DESTINATION_* environment variables or a .env file.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from destinations.lib.errors import ConfigurationError
from destinations.lib.stream import (
    DEFAULT_RAW_NAMESPACE,
    StreamConfig,
    StreamIdResolver,
    SyncMode,
)
from destinations.lib.type_mapper import ColumnKind, kind_from_json_schema

logger = logging.getLogger(__name__)

__all__ = [
    "CatalogSpec",
    "DestinationSettings",
    "StreamSpec",
    "expand_env_vars",
    "load_catalog",
    "load_env_file",
    "validate_catalog",
]

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load environment variables from a .env file.

    Returns:
        True if a .env file was found and loaded
    """
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(value: Any, *, strict: bool = False) -> Any:
    """Expand ${VAR} references in strings, recursing into lists and dicts.

    Unset variables are left as written unless strict is set.

    Example:
        >>> os.environ["SCHEMA"] = "analytics"
        >>> expand_env_vars({"namespace": "${SCHEMA}"})
        {'namespace': 'analytics'}
    """
    if isinstance(value, dict):
        return {k: expand_env_vars(v, strict=strict) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v, strict=strict) for v in value]
    if not isinstance(value, str):
        return value

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            if strict:
                raise ConfigurationError(
                    f"Environment variable not set: {var_name}",
                    field=var_name,
                )
            return match.group(0)
        return env_value

    return ENV_VAR_PATTERN.sub(replacer, value)


# ============================================
# Pydantic Configuration Models
# ============================================


class StreamSpec(BaseModel):
    """One stream entry of a catalog."""

    namespace: str = Field(..., min_length=1, description="Stream namespace (final schema)")
    name: str = Field(..., min_length=1, description="Stream name (final table)")
    sync_mode: str = Field(default="append", description="append, append_dedup or overwrite_dedup")
    primary_key: List[str] = Field(default_factory=list, description="Primary key columns")
    cursor: Optional[str] = Field(default=None, description="Column ordering versions of a record")
    columns: Dict[str, Union[str, Dict[str, Any]]] = Field(
        default_factory=dict,
        description="Column name to kind name or JSON-schema property",
    )

    @field_validator("sync_mode")
    @classmethod
    def validate_sync_mode(cls, v: str) -> str:
        valid_modes = [m.value for m in SyncMode]
        if v.lower() not in valid_modes:
            raise ValueError(f"sync_mode must be one of: {valid_modes}")
        return v.lower()

    @field_validator("columns")
    @classmethod
    def validate_columns(
        cls, v: Dict[str, Union[str, Dict[str, Any]]]
    ) -> Dict[str, Union[str, Dict[str, Any]]]:
        for column, kind in v.items():
            if isinstance(kind, str):
                try:
                    ColumnKind.parse(kind)
                except ValueError:
                    valid_kinds = [k.value for k in ColumnKind]
                    raise ValueError(
                        f"column '{column}' has unknown kind '{kind}' "
                        f"(expected one of {valid_kinds})"
                    )
        return v

    @model_validator(mode="after")
    def validate_dedup_key(self) -> "StreamSpec":
        if SyncMode(self.sync_mode).dedupes and not self.primary_key:
            raise ValueError(f"sync_mode {self.sync_mode} requires primary_key")
        return self

    def column_kinds(self) -> Dict[str, ColumnKind]:
        kinds: Dict[str, ColumnKind] = {}
        for column, kind in self.columns.items():
            if isinstance(kind, str):
                kinds[column] = ColumnKind.parse(kind)
            else:
                kinds[column] = kind_from_json_schema(kind)
        return kinds

    def to_stream_config(self, resolver: StreamIdResolver) -> StreamConfig:
        return StreamConfig(
            id=resolver.resolve(self.namespace, self.name),
            sync_mode=SyncMode(self.sync_mode),
            columns=self.column_kinds(),
            primary_key=list(self.primary_key),
            cursor=self.cursor,
        )


class CatalogSpec(BaseModel):
    """A whole catalog file."""

    raw_namespace: Optional[str] = Field(default=None, description="Shared raw-table namespace")
    streams: List[StreamSpec] = Field(..., min_length=1, description="Streams to sync")

    @model_validator(mode="after")
    def validate_unique_streams(self) -> "CatalogSpec":
        seen = set()
        for stream in self.streams:
            key = (stream.namespace, stream.name)
            if key in seen:
                raise ValueError(f"stream {stream.namespace}.{stream.name} is declared twice")
            seen.add(key)
        return self


class DestinationSettings(BaseSettings):
    """Environment-based destination settings using pydantic-settings.

    Loads from environment variables with the DESTINATION_ prefix.

    Example:
        >>> # DESTINATION_DATABASE=warehouse.duckdb
        >>> # DESTINATION_MAX_ATTEMPTS=3
        >>> settings = DestinationSettings()
        >>> print(settings.database)
        warehouse.duckdb
    """

    database: str = Field(default=":memory:", description="DuckDB database path")
    raw_namespace: str = Field(default=DEFAULT_RAW_NAMESPACE, description="Raw-table namespace")
    max_attempts: int = Field(default=1, ge=1, le=10, description="Attempts per statement")
    backoff_seconds: float = Field(default=0.5, ge=0.0, le=60.0, description="Retry delay")
    log_format: str = Field(default="console", description="Log format: 'json' or 'console'")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    model_config = SettingsConfigDict(
        env_prefix="DESTINATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue["loc"]) or "catalog"
        lines.append(f"  - {location}: {issue['msg']}")
    return "\n".join(lines)


def _read_catalog(path: Path) -> CatalogSpec:
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax: {e}", value=str(path)) from e

    if not raw:
        raise ConfigurationError("Empty catalog file", value=str(path))
    if not isinstance(raw, dict):
        raise ConfigurationError("Catalog must be a mapping with a 'streams' list", value=str(path))

    try:
        return CatalogSpec.model_validate(expand_env_vars(raw))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid catalog {path}:\n{_format_validation_error(e)}",
        ) from e


def load_catalog(
    path: Union[str, Path],
    *,
    raw_namespace: Optional[str] = None,
) -> List[StreamConfig]:
    """Load and validate a catalog file.

    Args:
        path: Path to the YAML catalog
        raw_namespace: Raw namespace to use when the catalog doesn't set one

    Returns:
        StreamConfig per declared stream, in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigurationError: If the catalog is malformed or a stream is invalid
    """
    path = Path(path)
    catalog = _read_catalog(path)
    resolver = StreamIdResolver(
        catalog.raw_namespace or raw_namespace or DEFAULT_RAW_NAMESPACE
    )
    streams = [spec.to_stream_config(resolver) for spec in catalog.streams]
    logger.info("Loaded %d stream(s) from %s", len(streams), path)
    return streams


def validate_catalog(path: Union[str, Path]) -> List[str]:
    """Validate a catalog file without touching the destination.

    Returns:
        List of validation errors (empty if valid)
    """
    errors: List[str] = []
    try:
        load_catalog(path)
    except ConfigurationError as e:
        errors.append(str(e))
    except FileNotFoundError as e:
        errors.append(str(e))
    return errors
