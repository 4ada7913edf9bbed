"""Root conftest: shared PostgreSQL server fixtures for the test suite.

Integration tests run against a session-scoped PostgreSQL testcontainer, or
against the server named by ``EPHEMERAL_PG_SERVER_URL`` when it is set.
Tests that need a server are skipped when neither is available.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterator
from pathlib import Path

import pytest

from ephemeral_pg.config import FixtureConfig

pytest_plugins = ["pytester"]

docker_available = shutil.which("docker") is not None

MIGRATIONS_ROOT = Path(__file__).resolve().parent / "tests" / "fixtures" / "migrations"
TODOS_MIGRATIONS = MIGRATIONS_ROOT / "todos"
BROKEN_MIGRATIONS = MIGRATIONS_ROOT / "broken"


@pytest.fixture(scope="session")
def server_url() -> Iterator[str]:
    """Base URL (no database) of a PostgreSQL server for this pytest session.

    Isolation contract:
    - Shared: the server process (session scope).
    - Per fixture: every EphemeralDatabase provisions its own randomly named
      database, so rows and schemas never leak between tests.
    """
    configured = os.environ.get("EPHEMERAL_PG_SERVER_URL")
    if configured:
        yield configured
        return
    if not docker_available:
        pytest.skip("Docker not available and EPHEMERAL_PG_SERVER_URL not set")

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        host = pg.get_container_host_ip()
        port = pg.get_exposed_port(5432)
        yield f"postgres://{pg.username}:{pg.password}@{host}:{port}"


@pytest.fixture(scope="session")
def ephemeral_pg_config(server_url: str) -> FixtureConfig:
    """Plugin config pointed at the session server and the todos migrations."""
    return FixtureConfig(server_url=server_url, migrations=(TODOS_MIGRATIONS,))
