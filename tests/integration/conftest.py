"""Fixtures shared by the destination integration tests."""

from __future__ import annotations

import pytest

from destinations.lib.stream import StreamConfig, SyncMode
from destinations.lib.type_mapper import ColumnKind


@pytest.fixture
def make_stream(resolver, namespace):
    """Build a stream in this test's namespace.

    Defaults to an append_dedup stream keyed on id with an integer cursor.
    """

    def factory(
        sync_mode=SyncMode.APPEND_DEDUP,
        columns=None,
        primary_key=("id",),
        cursor="updated_at",
        name="users",
    ) -> StreamConfig:
        return StreamConfig(
            id=resolver.resolve(namespace, name),
            sync_mode=sync_mode,
            columns=dict(columns or {
                "id": ColumnKind.INTEGER,
                "updated_at": ColumnKind.INTEGER,
                "val": ColumnKind.STRING,
            }),
            primary_key=list(primary_key) if sync_mode.dedupes else [],
            cursor=cursor,
        )

    return factory
