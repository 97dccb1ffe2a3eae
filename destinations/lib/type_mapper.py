"""Abstract column types and their native warehouse counterparts.

Raw records carry an untyped JSON payload. Typing a field means extracting
it from the payload and casting it to the column's native type. A cast is
never allowed to fail the row: each field produces a value expression and
a failure expression, and the failure ends up in the row's ``_meta``
diagnostics while the column is set to NULL.

The native types are DuckDB's, and match what DuckDB reports back through
information_schema so declared and physical schemas compare directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

__all__ = [
    "ColumnKind",
    "ColumnType",
    "FieldCast",
    "TableSchema",
    "TypeMapper",
    "kind_from_json_schema",
]


class ColumnKind(Enum):
    """Abstract type of a declared stream column."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    TIMESTAMP_WITH_TIMEZONE = "timestamp_with_timezone"
    TIMESTAMP_WITHOUT_TIMEZONE = "timestamp_without_timezone"
    TIME_WITH_TIMEZONE = "time_with_timezone"
    TIME_WITHOUT_TIMEZONE = "time_without_timezone"
    DATE = "date"
    OBJECT = "object"
    ARRAY = "array"
    UNKNOWN = "unknown"  # Unions and anything we can't pin down

    @classmethod
    def parse(cls, value: str) -> "ColumnKind":
        """Parse a kind name, accepting "union" as an alias for unknown."""
        normalized = value.strip().lower()
        if normalized == "union":
            return cls.UNKNOWN
        return cls(normalized)


@dataclass(frozen=True)
class ColumnType:
    """A native column type.

    Precision and scale are only meaningful for DECIMAL.
    """

    name: str
    precision: Optional[int] = None
    scale: Optional[int] = None

    def sql(self) -> str:
        if self.precision is not None:
            return f"{self.name}({self.precision}, {self.scale or 0})"
        return self.name

    @classmethod
    def from_information_schema(
        cls,
        data_type: str,
        numeric_precision: Optional[int] = None,
        numeric_scale: Optional[int] = None,
    ) -> "ColumnType":
        """Build a ColumnType from an information_schema.columns row.

        DuckDB reports decimals as e.g. "DECIMAL(38,0)"; the precision and
        scale are taken from the numeric_* columns instead of the text.
        """
        name = data_type.split("(", 1)[0].strip().upper()
        if name == "DECIMAL":
            return cls(name, int(numeric_precision or 18), int(numeric_scale or 0))
        return cls(name)

    def __str__(self) -> str:
        return self.sql()


JSON_TYPE = ColumnType("JSON")

NATIVE_TYPES: Dict[ColumnKind, ColumnType] = {
    ColumnKind.STRING: ColumnType("VARCHAR"),
    ColumnKind.NUMBER: ColumnType("DOUBLE"),
    ColumnKind.INTEGER: ColumnType("DECIMAL", 38, 0),
    ColumnKind.BOOLEAN: ColumnType("BOOLEAN"),
    ColumnKind.TIMESTAMP_WITH_TIMEZONE: ColumnType("TIMESTAMP WITH TIME ZONE"),
    ColumnKind.TIMESTAMP_WITHOUT_TIMEZONE: ColumnType("TIMESTAMP"),
    ColumnKind.TIME_WITH_TIMEZONE: ColumnType("TIME WITH TIME ZONE"),
    ColumnKind.TIME_WITHOUT_TIMEZONE: ColumnType("TIME"),
    ColumnKind.DATE: ColumnType("DATE"),
    ColumnKind.OBJECT: JSON_TYPE,
    ColumnKind.ARRAY: JSON_TYPE,
    ColumnKind.UNKNOWN: JSON_TYPE,
}


@dataclass
class TableSchema:
    """Ordered column name -> native type mapping of one table."""

    columns: Dict[str, ColumnType] = field(default_factory=dict)

    def __contains__(self, column: object) -> bool:
        return column in self.columns

    def __getitem__(self, column: str) -> ColumnType:
        return self.columns[column]

    def __iter__(self) -> Iterator[str]:
        return iter(self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    def names(self) -> List[str]:
        return list(self.columns)


@dataclass(frozen=True)
class FieldCast:
    """Outcome of typing one field, as a pair of SQL expressions.

    value_sql evaluates to the typed value, or NULL when the raw value
    can't be cast. failure_sql evaluates to a reason string when the raw
    value was present but could not be cast, and NULL otherwise. Kinds that
    can't fail (string, unknown) have no failure expression.
    """

    column: str
    value_sql: str
    failure_sql: Optional[str] = None


def _sql_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _json_path(column: str) -> str:
    escaped = column.replace("\\", "\\\\").replace('"', '\\"')
    return _sql_string(f'$."{escaped}"')


class TypeMapper:
    """Maps abstract column kinds to native types and cast expressions.

    Stateless; repeated calls for the same kind return equal results.
    """

    def __init__(self, data_column: str = '"_data"') -> None:
        self.data_column = data_column

    def column_type(self, kind: ColumnKind) -> ColumnType:
        return NATIVE_TYPES[kind]

    def cast(self, column: str, kind: ColumnKind) -> FieldCast:
        """Build the typed-value and failure expressions for one field."""
        path = _json_path(column)
        json_type = f"json_type({self.data_column}, {path})"
        extracted = f"json_extract({self.data_column}, {path})"
        extracted_text = f"json_extract_string({self.data_column}, {path})"

        if kind is ColumnKind.STRING:
            # Nested values come back as their JSON text
            return FieldCast(column, extracted_text)

        if kind is ColumnKind.UNKNOWN:
            return FieldCast(column, f"CASE WHEN {json_type} <> 'NULL' THEN {extracted} END")

        if kind in (ColumnKind.OBJECT, ColumnKind.ARRAY):
            value_sql = f"CASE WHEN {json_type} = '{kind.name}' THEN {extracted} END"
        else:
            value_sql = f"TRY_CAST({extracted_text} AS {self.column_type(kind).sql()})"

        reason = _sql_string(f"Problem with `{column}`")
        failure_sql = (
            f"CASE WHEN {json_type} <> 'NULL' AND ({value_sql}) IS NULL THEN {reason} END"
        )
        return FieldCast(column, value_sql, failure_sql)

    def native_type(self, kind: ColumnKind, column: str) -> Tuple[ColumnType, FieldCast]:
        """Return the native column type and cast expression for a column."""
        return self.column_type(kind), self.cast(column, kind)


def _non_null_types(schema: Mapping[str, Any]) -> List[str]:
    declared = schema.get("type")
    if declared is None:
        return []
    if isinstance(declared, str):
        declared = [declared]
    # YAML reads a bare null as None
    return [t for t in declared if t is not None and t != "null"]


def kind_from_json_schema(schema: Mapping[str, Any]) -> ColumnKind:
    """Derive a ColumnKind from a JSON-schema property definition.

    Example:
        >>> kind_from_json_schema({"type": ["null", "string"], "format": "date"})
        <ColumnKind.DATE: 'date'>
        >>> kind_from_json_schema({"type": ["string", "integer"]})
        <ColumnKind.UNKNOWN: 'unknown'>
    """
    if "oneOf" in schema or "anyOf" in schema:
        return ColumnKind.UNKNOWN

    types = _non_null_types(schema)
    if len(types) != 1:
        return ColumnKind.UNKNOWN

    json_type = types[0]
    if json_type == "string":
        fmt = schema.get("format")
        with_tz = schema.get("timezone", True) is not False
        if fmt == "date-time":
            return (
                ColumnKind.TIMESTAMP_WITH_TIMEZONE if with_tz
                else ColumnKind.TIMESTAMP_WITHOUT_TIMEZONE
            )
        if fmt == "time":
            return ColumnKind.TIME_WITH_TIMEZONE if with_tz else ColumnKind.TIME_WITHOUT_TIMEZONE
        if fmt == "date":
            return ColumnKind.DATE
        return ColumnKind.STRING

    simple = {
        "number": ColumnKind.NUMBER,
        "integer": ColumnKind.INTEGER,
        "boolean": ColumnKind.BOOLEAN,
        "object": ColumnKind.OBJECT,
        "array": ColumnKind.ARRAY,
    }
    return simple.get(json_type, ColumnKind.UNKNOWN)
