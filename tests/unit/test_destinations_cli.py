"""Tests for the destinations command-line interface.

Covers:
- --help
- validate: catalog checks without a database
- sql: statement rendering
- sync/show: end to end against a DuckDB file
"""

import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

from destinations.__main__ import main
from destinations.lib.config import load_catalog
from destinations.lib.destination import DuckDBDestinationHandler
from tests.raw_records import insert_raw_records, raw_record

PROJECT_ROOT = Path(__file__).resolve().parents[2]

CATALOG = """
streams:
  - namespace: public
    name: users
    sync_mode: append_dedup
    primary_key: [id]
    cursor: updated_at
    columns:
      id: integer
      updated_at: integer
      name: string
"""


@pytest.fixture
def catalog(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(textwrap.dedent(CATALOG), encoding="utf-8")
    return path


@pytest.fixture
def database(tmp_path):
    return str(tmp_path / "warehouse.duckdb")


class TestCLIHelp:
    """Tests for CLI help and basic invocation."""

    def test_help_flag(self):
        """--help should show usage information."""
        result = subprocess.run(
            [sys.executable, "-m", "destinations", "--help"],
            capture_output=True,
            text=True,
            cwd=PROJECT_ROOT,
        )

        assert result.returncode == 0
        assert "sync" in result.stdout
        assert "validate" in result.stdout

    def test_command_required(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code != 0


class TestValidateCommand:
    def test_valid_catalog(self, catalog, capsys):
        main(["validate", str(catalog)])

        out = capsys.readouterr().out
        assert "is valid (1 stream(s))" in out
        assert "public.users: append_dedup" in out

    def test_invalid_catalog_exits_nonzero(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("streams:\n  - {namespace: public, name: users, sync_mode: upsert}\n")

        with pytest.raises(SystemExit) as exc_info:
            main(["validate", str(path)])

        assert exc_info.value.code == 1
        assert "is invalid" in capsys.readouterr().out


class TestSqlCommand:
    def test_prints_create_table(self, catalog, capsys):
        main(["sql", str(catalog), "public.users", "create"])

        assert 'CREATE TABLE "public"."users"' in capsys.readouterr().out

    def test_prints_update(self, catalog, capsys):
        main(["sql", str(catalog), "public.users", "update"])

        out = capsys.readouterr().out
        assert out.startswith("BEGIN TRANSACTION;")
        assert "row_number()" in out

    def test_nothing_to_purge(self, catalog, capsys):
        main(["sql", str(catalog), "public.users", "purge-tombstones"])

        assert "nothing to do" in capsys.readouterr().out

    def test_unknown_stream(self, catalog):
        with pytest.raises(SystemExit) as exc_info:
            main(["sql", str(catalog), "public.nope", "create"])

        assert exc_info.value.code == 1

    def test_unknown_operation(self, catalog):
        with pytest.raises(SystemExit):
            main(["sql", str(catalog), "public.users", "explode"])


class TestSyncCommand:
    """sync and show against a database file."""

    def test_sync_then_show(self, catalog, database, capsys):
        main(["sync", str(catalog), "--database", database])
        assert "public.users: created, 0 raw records typed" in capsys.readouterr().out

        stream = load_catalog(catalog)[0]
        with DuckDBDestinationHandler(database) as handler:
            insert_raw_records(handler, stream.id, [
                raw_record({"id": 1, "updated_at": 1, "name": "a"}),
                raw_record({"id": 1, "updated_at": 2, "name": "b"}),
            ])

        main(["sync", str(catalog), "--database", database])
        assert "public.users: unchanged, 2 raw records typed" in capsys.readouterr().out

        main(["show", "public", "users", "--database", database])
        out = capsys.readouterr().out
        assert "(1 rows)" in out
        assert "b" in out

    def test_missing_catalog(self, tmp_path, database, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["sync", str(tmp_path / "missing.yaml"), "--database", database])

        assert exc_info.value.code == 1
        assert "not found" in capsys.readouterr().out

    def test_show_missing_table(self, database):
        with pytest.raises(SystemExit) as exc_info:
            main(["show", "public", "nope", "--database", database])

        assert exc_info.value.code == 1
