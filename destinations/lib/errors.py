"""Structured exception hierarchy for the typing and deduping engine.

Statement failures, schema conflicts and bad configuration each get their
own exception type so callers can decide whether to retry, recreate or fix
the catalog.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from destinations.lib.schema_diff import ColumnChange
    from destinations.lib.stream import StreamId

__all__ = [
    "DestinationError",
    "SqlExecutionError",
    "SchemaConflictError",
    "MigrationError",
    "ConfigurationError",
]


class DestinationError(Exception):
    """Base exception for all destination errors.

    Carries the stream it happened on plus free-form details so the error
    can be rendered for humans or logged as structured data.
    """

    def __init__(
        self,
        message: str,
        *,
        namespace: Optional[str] = None,
        stream: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.namespace = namespace
        self.stream = stream
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if namespace or stream:
            parts.insert(0, f"[{namespace or '?'}.{stream or '?'}]")

        if self.details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in self.details.items())

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    @classmethod
    def _stream_kwargs(cls, stream_id: Optional["StreamId"], kwargs: Dict[str, Any]) -> None:
        if stream_id is not None:
            kwargs.setdefault("namespace", stream_id.original_namespace)
            kwargs.setdefault("stream", stream_id.original_name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "namespace": self.namespace,
            "stream": self.stream,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class SqlExecutionError(DestinationError):
    """A generated statement failed inside the warehouse.

    Fatal to the current sync attempt. Raw records are only marked loaded
    after a successful transaction, so the sync can be retried as a whole.
    """

    def __init__(
        self,
        message: str,
        *,
        statement: Optional[str] = None,
        cause: Optional[BaseException] = None,
        stream_id: Optional["StreamId"] = None,
        **kwargs: Any,
    ) -> None:
        self.statement = statement
        self.cause = cause

        details = kwargs.pop("details", {})
        if statement:
            first_line = statement.strip().splitlines()[0] if statement.strip() else ""
            details["statement"] = first_line
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        kwargs.setdefault(
            "suggestion",
            "The sync left the previous final table intact. Fix the cause and re-run the sync.",
        )
        self._stream_kwargs(stream_id, kwargs)
        super().__init__(message, details=details, **kwargs)


class SchemaConflictError(DestinationError):
    """The declared schema cannot be applied to the physical table in place.

    Raised when a column type changes incompatibly. Resolving it needs an
    explicit recreate-and-backfill decision from the caller.
    """

    def __init__(
        self,
        message: str,
        *,
        conflicts: Optional[List["ColumnChange"]] = None,
        stream_id: Optional["StreamId"] = None,
        **kwargs: Any,
    ) -> None:
        self.conflicts = list(conflicts or [])

        details = kwargs.pop("details", {})
        for change in self.conflicts:
            details[change.column] = (
                f"declared {change.declared.sql() if change.declared else '-'}, "
                f"physical {change.physical.sql() if change.physical else '-'}"
            )

        kwargs.setdefault(
            "suggestion",
            "Re-run with allow_recreate (CLI: --allow-recreate) to rebuild the "
            "final table from the raw table.",
        )
        self._stream_kwargs(stream_id, kwargs)
        super().__init__(message, details=details, **kwargs)


class MigrationError(DestinationError):
    """A raw table has a shape that is neither current nor legacy."""

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        columns: Optional[List[str]] = None,
        stream_id: Optional["StreamId"] = None,
        **kwargs: Any,
    ) -> None:
        self.table = table
        self.columns = list(columns or [])

        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if columns:
            details["columns"] = ", ".join(columns)

        self._stream_kwargs(stream_id, kwargs)
        super().__init__(message, details=details, **kwargs)


class ConfigurationError(DestinationError):
    """Invalid stream or catalog configuration."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)
