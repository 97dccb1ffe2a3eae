"""Compare a declared final-table schema with the physical table.

The differ decides which DDL has to run before typing can start:

- a column missing from the physical table is added in place
- a decimal column declared wider than it physically is gets widened in place
- a column only present in the physical table is kept or dropped, per policy
- any other type change needs the table recreated and backfilled from raw

In-place narrowing or incompatible type changes are never attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from destinations.lib.type_mapper import ColumnType, TableSchema

logger = logging.getLogger(__name__)

__all__ = [
    "ColumnAction",
    "ColumnChange",
    "ExtraColumnPolicy",
    "SchemaDiff",
    "diff_schemas",
]


class ColumnAction(Enum):
    """What to do with one column."""

    UNCHANGED = "unchanged"
    ADD = "add"  # Declared, missing from the physical table
    WIDEN = "widen"  # Same family, declared type is a lossless superset
    RETAIN = "retain"  # Physical only, kept as-is
    DROP = "drop"  # Physical only, dropped per policy
    RECREATE = "recreate"  # Incompatible type change


class ExtraColumnPolicy(Enum):
    """Caller's choice for columns that exist physically but are not declared."""

    RETAIN = "retain"
    DROP = "drop"


@dataclass(frozen=True)
class ColumnChange:
    column: str
    action: ColumnAction
    declared: Optional[ColumnType] = None
    physical: Optional[ColumnType] = None


@dataclass
class SchemaDiff:
    """Per-column classification of a declared vs. physical schema."""

    changes: List[ColumnChange] = field(default_factory=list)

    @property
    def conflicts(self) -> List[ColumnChange]:
        return [c for c in self.changes if c.action is ColumnAction.RECREATE]

    @property
    def requires_recreate(self) -> bool:
        return bool(self.conflicts)

    @property
    def alterations(self) -> List[ColumnChange]:
        """Changes that can be applied with ALTER TABLE."""
        return [
            c for c in self.changes
            if c.action in (ColumnAction.ADD, ColumnAction.WIDEN, ColumnAction.DROP)
        ]

    @property
    def is_noop(self) -> bool:
        return not self.alterations and not self.requires_recreate

    def action_for(self, column: str) -> Optional[ColumnAction]:
        for change in self.changes:
            if change.column == column:
                return change.action
        return None

    def summary(self) -> str:
        counts: dict = {}
        for change in self.changes:
            if change.action is not ColumnAction.UNCHANGED:
                counts[change.action.value] = counts.get(change.action.value, 0) + 1
        if not counts:
            return "no changes"
        return ", ".join(f"{n} {action}" for action, n in sorted(counts.items()))


def _is_widening(declared: ColumnType, physical: ColumnType) -> bool:
    """True when every physical value fits the declared type unchanged."""
    if declared.name != "DECIMAL" or physical.name != "DECIMAL":
        return False
    declared_scale = declared.scale or 0
    physical_scale = physical.scale or 0
    declared_digits = (declared.precision or 0) - declared_scale
    physical_digits = (physical.precision or 0) - physical_scale
    return declared_scale >= physical_scale and declared_digits >= physical_digits


def _classify(declared: ColumnType, physical: ColumnType) -> ColumnAction:
    if declared == physical:
        return ColumnAction.UNCHANGED
    if _is_widening(declared, physical):
        return ColumnAction.WIDEN
    return ColumnAction.RECREATE


def diff_schemas(
    declared: TableSchema,
    physical: TableSchema,
    *,
    extra_columns: ExtraColumnPolicy = ExtraColumnPolicy.RETAIN,
) -> SchemaDiff:
    """Classify every column of the declared and physical schemas.

    Args:
        declared: Schema the final table should have
        physical: Schema reported by the destination
        extra_columns: What to do with physical columns that are not declared

    Returns:
        SchemaDiff with one change per column, declared columns first

    Example:
        >>> declared = TableSchema({"amount": ColumnType("DECIMAL", 38, 0)})
        >>> physical = TableSchema({"amount": ColumnType("DECIMAL", 18, 0)})
        >>> diff_schemas(declared, physical).action_for("amount")
        <ColumnAction.WIDEN: 'widen'>
    """
    changes: List[ColumnChange] = []

    for column, declared_type in declared.columns.items():
        if column not in physical:
            changes.append(ColumnChange(column, ColumnAction.ADD, declared=declared_type))
            continue
        physical_type = physical[column]
        changes.append(
            ColumnChange(
                column,
                _classify(declared_type, physical_type),
                declared=declared_type,
                physical=physical_type,
            )
        )

    extra_action = (
        ColumnAction.DROP if extra_columns is ExtraColumnPolicy.DROP else ColumnAction.RETAIN
    )
    for column, physical_type in physical.columns.items():
        if column not in declared:
            changes.append(ColumnChange(column, extra_action, physical=physical_type))

    diff = SchemaDiff(changes)
    logger.debug("Schema diff: %s", diff.summary())
    return diff
