"""Destination handlers: run generated SQL and introspect tables.

DestinationHandler is the contract the engine needs from a warehouse:
execute a statement, run a query, describe a table. The DuckDB handler
implements it on top of the Ibis DuckDB backend and is what the tests and
the CLI use.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import duckdb
import ibis
import pandas as pd

from destinations.lib.errors import SqlExecutionError
from destinations.lib.resilience import with_retry
from destinations.lib.type_mapper import ColumnType, TableSchema

logger = logging.getLogger(__name__)

__all__ = ["DestinationHandler", "DuckDBDestinationHandler"]

DESCRIBE_TABLE_SQL = """
SELECT column_name, data_type, numeric_precision, numeric_scale
FROM information_schema.columns
WHERE table_catalog = current_database()
  AND table_schema = ?
  AND table_name = ?
ORDER BY ordinal_position
"""


@runtime_checkable
class DestinationHandler(Protocol):
    """What the engine requires from a warehouse connection."""

    def execute(self, sql: str) -> None:
        """Run one or more statements. Raises SqlExecutionError on failure."""
        ...

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Run a query and return its rows as dictionaries."""
        ...

    def describe_table(self, namespace: str, name: str) -> Optional[TableSchema]:
        """Physical schema of a table, or None if it doesn't exist."""
        ...


class DuckDBDestinationHandler:
    """DestinationHandler backed by DuckDB through Ibis.

    The handler owns its connection. Use it as a context manager, or call
    close() yourself, so the connection is released on every exit path.

    Example:
        with DuckDBDestinationHandler("warehouse.duckdb") as handler:
            handler.execute(generator.create_raw_table(stream.id))
            schema = handler.describe_table("public", "users")
    """

    def __init__(
        self,
        database: str = ":memory:",
        *,
        max_attempts: int = 1,
        backoff_seconds: float = 0.5,
    ) -> None:
        self.database = database
        logger.info("Opening DuckDB destination: %s", database)
        self._con = ibis.duckdb.connect(database=database)
        # Timestamps are stored with time zone; keep session rendering stable
        self._con.raw_sql("SET TimeZone = 'UTC'")
        self._run = with_retry(
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            retry_exceptions=(duckdb.TransactionException,),
        )(self._run_once)

    @property
    def backend(self) -> ibis.BaseBackend:
        return self._con

    def _rollback(self) -> None:
        """Leave an aborted transaction so the connection stays usable."""
        try:
            self._con.raw_sql("ROLLBACK")
        except duckdb.Error as rollback_error:
            logger.debug("Nothing to roll back: %s", rollback_error)

    def _run_once(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        try:
            if params:
                return self._con.raw_sql(sql, parameters=list(params))
            return self._con.raw_sql(sql)
        except duckdb.Error:
            self._rollback()
            raise

    def execute(self, sql: str) -> None:
        if not sql or not sql.strip():
            return
        logger.debug("Executing SQL:\n%s", sql)
        try:
            self._run(sql)
        except duckdb.Error as e:
            raise SqlExecutionError("Statement failed", statement=sql, cause=e) from e

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        try:
            cursor = self._run(sql, params)
            columns = [d[0] for d in cursor.description or []]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except duckdb.Error as e:
            raise SqlExecutionError("Query failed", statement=sql, cause=e) from e

    def describe_table(self, namespace: str, name: str) -> Optional[TableSchema]:
        rows = self.query(DESCRIBE_TABLE_SQL, [namespace, name])
        if not rows:
            return None
        return TableSchema({
            row["column_name"]: ColumnType.from_information_schema(
                row["data_type"],
                row["numeric_precision"],
                row["numeric_scale"],
            )
            for row in rows
        })

    def table_frame(self, namespace: str, name: str) -> pd.DataFrame:
        """Read a whole table into a pandas DataFrame."""
        return self._con.table(name, database=namespace).execute()

    def close(self) -> None:
        logger.debug("Closing DuckDB destination: %s", self.database)
        self._con.disconnect()

    def __enter__(self) -> "DuckDBDestinationHandler":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
