"""pytest fixtures for ephemeral databases.

Registered through the ``pytest11`` entry point, so installing the package
is enough to make the fixtures available::

    def test_insert(ephemeral_database):
        ...

    async def test_isolation(ephemeral_database_factory):
        first = ephemeral_database_factory()
        second = ephemeral_database_factory()

The server URL and migration directories come from
``--ephemeral-pg-server-url`` / ``--ephemeral-pg-migrations`` or from the
``EPHEMERAL_PG_*`` environment variables. Tests that request a fixture are
skipped when no server URL is configured. Projects can override
``ephemeral_pg_config`` in their own conftest to supply a config directly.
``--ephemeral-pg-log-format=json`` switches on structured log output for the
run (see ``configure_logging``).
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable, Iterator
from contextlib import ExitStack
from typing import Any

import pytest

from ephemeral_pg.config import ENV_PREFIX, ConfigError, FixtureConfig
from ephemeral_pg.fixture import EphemeralDatabase
from ephemeral_pg.logging import configure_logging


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("ephemeral-pg", "ephemeral PostgreSQL databases")
    group.addoption(
        "--ephemeral-pg-server-url",
        dest="ephemeral_pg_server_url",
        default=None,
        help="PostgreSQL server base URL without a database, e.g. postgres://user:pw@host:5432",
    )
    group.addoption(
        "--ephemeral-pg-migrations",
        dest="ephemeral_pg_migrations",
        default=None,
        help=f"Migration directories separated by {os.pathsep!r}",
    )
    group.addoption(
        "--ephemeral-pg-log-format",
        dest="ephemeral_pg_log_format",
        choices=["text", "json"],
        default=None,
        help="Render log records through structlog in this format",
    )


def pytest_configure(config: pytest.Config) -> None:
    fmt = config.getoption("ephemeral_pg_log_format")
    if fmt:
        configure_logging(level=config.getoption("log_level", default=None) or "INFO", fmt=fmt)


@pytest.fixture(scope="session")
def ephemeral_pg_config(pytestconfig: pytest.Config) -> FixtureConfig:
    """Fixture configuration from command-line options, then the environment."""
    environ = dict(os.environ)
    server_url = pytestconfig.getoption("ephemeral_pg_server_url")
    if server_url:
        environ[f"{ENV_PREFIX}SERVER_URL"] = server_url
    migrations = pytestconfig.getoption("ephemeral_pg_migrations")
    if migrations:
        environ[f"{ENV_PREFIX}MIGRATIONS"] = migrations

    if not environ.get(f"{ENV_PREFIX}SERVER_URL"):
        pytest.skip(f"No PostgreSQL server configured ({ENV_PREFIX}SERVER_URL)")
    try:
        return FixtureConfig.from_env(environ)
    except ConfigError as exc:
        raise pytest.UsageError(f"Invalid ephemeral-pg configuration: {exc}") from exc


@pytest.fixture
def ephemeral_database_factory(
    ephemeral_pg_config: FixtureConfig,
) -> Iterator[Callable[..., EphemeralDatabase]]:
    """Create any number of ephemeral databases; all are dropped at test end.

    Keyword arguments override fields of ``ephemeral_pg_config``.
    """
    with ExitStack() as stack:

        def _make(**overrides: Any) -> EphemeralDatabase:
            config = dataclasses.replace(ephemeral_pg_config, **overrides)
            return stack.enter_context(EphemeralDatabase.from_config(config))

        yield _make


@pytest.fixture
def ephemeral_database(
    ephemeral_database_factory: Callable[..., EphemeralDatabase],
) -> EphemeralDatabase:
    """A provisioned, migrated database dropped when the test ends."""
    return ephemeral_database_factory()

