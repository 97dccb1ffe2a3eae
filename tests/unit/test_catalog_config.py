"""Tests for catalog loading, env expansion and settings."""

from __future__ import annotations

import textwrap

import pytest

from destinations.lib.config import (
    DestinationSettings,
    StreamSpec,
    expand_env_vars,
    load_catalog,
    load_env_file,
    validate_catalog,
)
from destinations.lib.errors import ConfigurationError
from destinations.lib.stream import DEFAULT_RAW_NAMESPACE, SyncMode
from destinations.lib.type_mapper import ColumnKind

CATALOG = """
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
      address: {type: [null, object]}
  - namespace: public
    name: events
    columns:
      payload: union
"""


def write_catalog(tmp_path, content: str):
    path = tmp_path / "catalog.yaml"
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


class TestLoadCatalog:
    """Tests for load_catalog."""

    def test_loads_streams_in_order(self, tmp_path):
        streams = load_catalog(write_catalog(tmp_path, CATALOG))

        assert [s.id.qualified_name for s in streams] == ["public.users", "public.events"]

    def test_stream_fields(self, tmp_path):
        users = load_catalog(write_catalog(tmp_path, CATALOG))[0]

        assert users.sync_mode is SyncMode.APPEND_DEDUP
        assert users.primary_key == ["id"]
        assert users.cursor == "updated_at"
        assert list(users.columns) == ["id", "updated_at", "name", "address"]
        assert users.columns["address"] is ColumnKind.OBJECT

    def test_defaults(self, tmp_path):
        events = load_catalog(write_catalog(tmp_path, CATALOG))[1]

        assert events.sync_mode is SyncMode.APPEND
        assert events.columns["payload"] is ColumnKind.UNKNOWN
        assert events.id.raw_namespace == DEFAULT_RAW_NAMESPACE

    def test_raw_namespace_argument_used_when_catalog_silent(self, tmp_path):
        streams = load_catalog(write_catalog(tmp_path, CATALOG), raw_namespace="landing")

        assert streams[0].id.raw_namespace == "landing"

    def test_catalog_raw_namespace_wins(self, tmp_path):
        path = write_catalog(tmp_path, "raw_namespace: from_catalog\n" + CATALOG)

        streams = load_catalog(path, raw_namespace="landing")

        assert streams[0].id.raw_namespace == "from_catalog"

    def test_env_vars_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TARGET_SCHEMA", "analytics")
        path = write_catalog(
            tmp_path,
            """
            streams:
              - namespace: ${TARGET_SCHEMA}
                name: users
                columns:
                  id: integer
            """,
        )

        assert load_catalog(path)[0].id.final_namespace == "analytics"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_catalog(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_catalog(write_catalog(tmp_path, ""))

        assert "Empty catalog" in str(exc_info.value)

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_catalog(write_catalog(tmp_path, "streams: [\n"))

        assert "Invalid YAML" in str(exc_info.value)

    def test_unknown_sync_mode(self, tmp_path):
        path = write_catalog(
            tmp_path,
            """
            streams:
              - namespace: public
                name: users
                sync_mode: upsert
            """,
        )

        with pytest.raises(ConfigurationError) as exc_info:
            load_catalog(path)

        assert "sync_mode" in str(exc_info.value)

    def test_unknown_column_kind(self, tmp_path):
        path = write_catalog(
            tmp_path,
            """
            streams:
              - namespace: public
                name: users
                columns:
                  id: money
            """,
        )

        with pytest.raises(ConfigurationError) as exc_info:
            load_catalog(path)

        assert "money" in str(exc_info.value)

    def test_dedup_without_primary_key(self, tmp_path):
        path = write_catalog(
            tmp_path,
            """
            streams:
              - namespace: public
                name: users
                sync_mode: overwrite_dedup
                columns:
                  id: integer
            """,
        )

        with pytest.raises(ConfigurationError) as exc_info:
            load_catalog(path)

        assert "primary_key" in str(exc_info.value)

    def test_undeclared_cursor_caught_by_stream_config(self, tmp_path):
        path = write_catalog(
            tmp_path,
            """
            streams:
              - namespace: public
                name: users
                sync_mode: append_dedup
                primary_key: [id]
                cursor: updated_at
                columns:
                  id: integer
            """,
        )

        with pytest.raises(ConfigurationError) as exc_info:
            load_catalog(path)

        assert "updated_at" in str(exc_info.value)

    def test_duplicate_streams(self, tmp_path):
        path = write_catalog(
            tmp_path,
            """
            streams:
              - {namespace: public, name: users}
              - {namespace: public, name: users}
            """,
        )

        with pytest.raises(ConfigurationError) as exc_info:
            load_catalog(path)

        assert "declared twice" in str(exc_info.value)

    def test_streams_required(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_catalog(write_catalog(tmp_path, "raw_namespace: x\n"))


class TestValidateCatalog:
    def test_valid_catalog_has_no_errors(self, tmp_path):
        assert validate_catalog(write_catalog(tmp_path, CATALOG)) == []

    def test_errors_collected_not_raised(self, tmp_path):
        errors = validate_catalog(tmp_path / "missing.yaml")

        assert len(errors) == 1
        assert "not found" in errors[0]


class TestStreamSpec:
    def test_sync_mode_normalized(self):
        spec = StreamSpec(namespace="public", name="users", sync_mode="APPEND")

        assert spec.sync_mode == "append"


class TestExpandEnvVars:
    """Tests for ${VAR} expansion."""

    def test_expands_nested(self, monkeypatch):
        monkeypatch.setenv("SCHEMA", "analytics")

        result = expand_env_vars({"a": ["${SCHEMA}_raw", 1], "b": {"c": "${SCHEMA}"}})

        assert result == {"a": ["analytics_raw", 1], "b": {"c": "analytics"}}

    def test_unset_left_alone(self, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)

        assert expand_env_vars("${NOT_SET_ANYWHERE}") == "${NOT_SET_ANYWHERE}"

    def test_strict_raises(self, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)

        with pytest.raises(ConfigurationError):
            expand_env_vars("${NOT_SET_ANYWHERE}", strict=True)


class TestDestinationSettings:
    """Tests for environment-based settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DESTINATION_DATABASE", raising=False)
        monkeypatch.delenv("DESTINATION_MAX_ATTEMPTS", raising=False)
        settings = DestinationSettings(_env_file=None)

        assert settings.database == ":memory:"
        assert settings.raw_namespace == DEFAULT_RAW_NAMESPACE
        assert settings.max_attempts == 1

    def test_reads_prefixed_env(self, monkeypatch):
        monkeypatch.setenv("DESTINATION_DATABASE", "warehouse.duckdb")
        monkeypatch.setenv("DESTINATION_MAX_ATTEMPTS", "3")

        settings = DestinationSettings(_env_file=None)

        assert settings.database == "warehouse.duckdb"
        assert settings.max_attempts == 3

    def test_rejects_bad_log_format(self, monkeypatch):
        monkeypatch.setenv("DESTINATION_LOG_FORMAT", "xml")

        with pytest.raises(ValueError):
            DestinationSettings(_env_file=None)

    def test_load_env_file(self, tmp_path, monkeypatch):
        # Registered with monkeypatch so the value loaded below is undone
        monkeypatch.setenv("DESTINATION_RAW_NAMESPACE", "placeholder")
        env_file = tmp_path / ".env"
        env_file.write_text("DESTINATION_RAW_NAMESPACE=landing\n", encoding="utf-8")

        assert load_env_file(env_file, override=True) is True
        assert DestinationSettings(_env_file=None).raw_namespace == "landing"
