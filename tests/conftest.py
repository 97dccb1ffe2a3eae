"""Pytest configuration and fixtures.

Destination fixtures are parametrized over every {handler, generator} pair
the package ships, so the integration suite doubles as a conformance suite
for new warehouses: add an entry to DESTINATIONS and the same tests run
against it.
"""

from __future__ import annotations

import sys
import uuid
from pathlib import Path
from typing import Callable, Dict, Iterator, Tuple

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from destinations.lib.destination import DestinationHandler, DuckDBDestinationHandler  # noqa: E402
from destinations.lib.sql_generator import DuckDBSqlGenerator, SqlGenerator  # noqa: E402
from destinations.lib.stream import StreamIdResolver  # noqa: E402

DESTINATIONS: Dict[str, Tuple[Callable[[], DestinationHandler], Callable[[], SqlGenerator]]] = {
    "duckdb": (DuckDBDestinationHandler, DuckDBSqlGenerator),
}


@pytest.fixture(scope="module", params=sorted(DESTINATIONS))
def destination(request) -> Iterator[Tuple[DestinationHandler, SqlGenerator]]:
    """One live connection per test module, closed on every exit path."""
    make_handler, make_generator = DESTINATIONS[request.param]
    handler = make_handler()
    try:
        yield handler, make_generator()
    finally:
        handler.close()


@pytest.fixture
def handler(destination) -> DestinationHandler:
    return destination[0]


@pytest.fixture
def generator(destination) -> SqlGenerator:
    return destination[1]


def unique_name(prefix: str = "t") -> str:
    """Generate unique schema name to avoid conflicts between tests."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def namespace() -> str:
    return unique_name("ns")


@pytest.fixture
def resolver() -> StreamIdResolver:
    """Resolver with a raw namespace no other test shares."""
    return StreamIdResolver(unique_name("raw"))
