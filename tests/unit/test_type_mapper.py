"""Tests for abstract-to-native type mapping and cast expressions."""

from __future__ import annotations

import pytest

from destinations.lib.type_mapper import (
    ColumnKind,
    ColumnType,
    FieldCast,
    TypeMapper,
    kind_from_json_schema,
)


@pytest.fixture
def mapper():
    return TypeMapper()


class TestNativeTypes:
    """Tests for the native type table."""

    @pytest.mark.parametrize(
        "kind,expected",
        [
            (ColumnKind.STRING, "VARCHAR"),
            (ColumnKind.NUMBER, "DOUBLE"),
            (ColumnKind.INTEGER, "DECIMAL(38, 0)"),
            (ColumnKind.BOOLEAN, "BOOLEAN"),
            (ColumnKind.TIMESTAMP_WITH_TIMEZONE, "TIMESTAMP WITH TIME ZONE"),
            (ColumnKind.TIMESTAMP_WITHOUT_TIMEZONE, "TIMESTAMP"),
            (ColumnKind.TIME_WITH_TIMEZONE, "TIME WITH TIME ZONE"),
            (ColumnKind.TIME_WITHOUT_TIMEZONE, "TIME"),
            (ColumnKind.DATE, "DATE"),
            (ColumnKind.OBJECT, "JSON"),
            (ColumnKind.ARRAY, "JSON"),
            (ColumnKind.UNKNOWN, "JSON"),
        ],
    )
    def test_mapping(self, mapper, kind, expected):
        assert mapper.column_type(kind).sql() == expected

    def test_mapping_is_stable(self, mapper):
        """Repeated calls for the same kind give equal results."""
        for kind in ColumnKind:
            first = mapper.native_type(kind, "col")
            second = mapper.native_type(kind, "col")
            assert first == second

    def test_native_type_returns_type_and_cast(self, mapper):
        column_type, cast = mapper.native_type(ColumnKind.INTEGER, "id")

        assert column_type == ColumnType("DECIMAL", 38, 0)
        assert isinstance(cast, FieldCast)
        assert cast.column == "id"


class TestColumnKindParse:
    def test_parses_values(self):
        assert ColumnKind.parse("integer") is ColumnKind.INTEGER

    def test_case_insensitive(self):
        assert ColumnKind.parse(" Boolean ") is ColumnKind.BOOLEAN

    def test_union_is_unknown(self):
        assert ColumnKind.parse("union") is ColumnKind.UNKNOWN

    def test_unknown_name_raises(self):
        with pytest.raises(ValueError):
            ColumnKind.parse("money")


class TestColumnTypeFromInformationSchema:
    def test_decimal_uses_numeric_columns(self):
        column_type = ColumnType.from_information_schema("DECIMAL(18,2)", 18, 2)

        assert column_type == ColumnType("DECIMAL", 18, 2)
        assert column_type.sql() == "DECIMAL(18, 2)"

    def test_plain_types_ignore_precision(self):
        """DuckDB reports a precision for DOUBLE too; it must not leak in."""
        assert ColumnType.from_information_schema("DOUBLE", 53, 0) == ColumnType("DOUBLE")

    def test_multi_word_types(self):
        column_type = ColumnType.from_information_schema("TIMESTAMP WITH TIME ZONE")

        assert column_type == ColumnType("TIMESTAMP WITH TIME ZONE")


class TestFieldCasts:
    """Tests for the SQL produced per field."""

    def test_string_never_fails(self, mapper):
        cast = mapper.cast("name", ColumnKind.STRING)

        assert cast.failure_sql is None
        assert "json_extract_string" in cast.value_sql

    def test_unknown_never_fails(self, mapper):
        assert mapper.cast("payload", ColumnKind.UNKNOWN).failure_sql is None

    def test_scalar_cast_uses_try_cast(self, mapper):
        cast = mapper.cast("amount", ColumnKind.NUMBER)

        assert cast.value_sql.startswith("TRY_CAST(")
        assert "AS DOUBLE" in cast.value_sql

    def test_failure_names_the_column(self, mapper):
        cast = mapper.cast("amount", ColumnKind.INTEGER)

        assert "'Problem with `amount`'" in cast.failure_sql

    def test_json_null_is_not_a_failure(self, mapper):
        cast = mapper.cast("amount", ColumnKind.INTEGER)

        assert "<> 'NULL'" in cast.failure_sql

    def test_object_checks_container_kind(self, mapper):
        cast = mapper.cast("address", ColumnKind.OBJECT)

        assert "= 'OBJECT'" in cast.value_sql
        assert cast.failure_sql is not None

    def test_array_checks_container_kind(self, mapper):
        assert "= 'ARRAY'" in mapper.cast("tags", ColumnKind.ARRAY).value_sql

    def test_column_name_is_escaped_in_path(self, mapper):
        cast = mapper.cast("it's", ColumnKind.STRING)

        assert "'$.\"it''s\"'" in cast.value_sql

    def test_custom_data_column(self):
        cast = TypeMapper(data_column='"payload"').cast("id", ColumnKind.INTEGER)

        assert '"payload"' in cast.value_sql


class TestKindFromJsonSchema:
    """Tests for deriving kinds from JSON-schema properties."""

    @pytest.mark.parametrize(
        "schema,expected",
        [
            ({"type": "string"}, ColumnKind.STRING),
            ({"type": ["null", "integer"]}, ColumnKind.INTEGER),
            ({"type": "number"}, ColumnKind.NUMBER),
            ({"type": "boolean"}, ColumnKind.BOOLEAN),
            ({"type": "object"}, ColumnKind.OBJECT),
            ({"type": "array", "items": {"type": "string"}}, ColumnKind.ARRAY),
            ({"type": "string", "format": "date"}, ColumnKind.DATE),
            ({"type": "string", "format": "date-time"}, ColumnKind.TIMESTAMP_WITH_TIMEZONE),
            (
                {"type": "string", "format": "date-time", "timezone": False},
                ColumnKind.TIMESTAMP_WITHOUT_TIMEZONE,
            ),
            ({"type": "string", "format": "time"}, ColumnKind.TIME_WITH_TIMEZONE),
            ({"type": ["string", "integer"]}, ColumnKind.UNKNOWN),
            ({"oneOf": [{"type": "string"}, {"type": "integer"}]}, ColumnKind.UNKNOWN),
            ({}, ColumnKind.UNKNOWN),
        ],
    )
    def test_kinds(self, schema, expected):
        assert kind_from_json_schema(schema) is expected

    def test_yaml_null_in_type_list(self):
        """YAML reads `[null, object]` as [None, "object"]."""
        assert kind_from_json_schema({"type": [None, "object"]}) is ColumnKind.OBJECT
