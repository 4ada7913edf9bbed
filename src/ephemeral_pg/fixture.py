"""The ephemeral database fixture.

``EphemeralDatabase`` owns one uniquely named PostgreSQL database for its
whole lifetime: the constructor returns only once the database exists and is
fully migrated, and the database is dropped when the object goes out of
scope. Scope ends at the close of a ``with`` block, when the object is
garbage collected, or at interpreter exit, whichever comes first.
"""

from __future__ import annotations

import logging
import warnings
import weakref
from dataclasses import fields
from typing import Any

import asyncpg

from ephemeral_pg.config import FixtureConfig, MigrationsArg, TeardownPolicy
from ephemeral_pg.errors import ConnectivityError, TeardownError
from ephemeral_pg.lifecycle import CONNECT_ERRORS, provision_database, teardown_database
from ephemeral_pg.migrations import resolve_locations
from ephemeral_pg.naming import database_url, generate_db_name, redact_url
from ephemeral_pg.worker import run_in_worker

logger = logging.getLogger(__name__)


def _dispose(config: FixtureConfig, db_name: str) -> None:
    """Drop *db_name*, applying the configured teardown failure policy."""
    try:
        run_in_worker(teardown_database, config, db_name, name=f"ephemeral-pg-teardown-{db_name}")
    except TeardownError as exc:
        if config.teardown_policy is not TeardownPolicy.WARN:
            logger.error("Failed to drop ephemeral database %s: %s", db_name, exc)
            raise
        logger.error("Leaking ephemeral database %s: %s", db_name, exc)
        warnings.warn(
            f"Ephemeral database {db_name} was not dropped: {exc}",
            RuntimeWarning,
            stacklevel=2,
        )


class EphemeralDatabase:
    """A throwaway, fully migrated PostgreSQL database.

    Usage::

        with EphemeralDatabase("postgres://user:pw@localhost:5432", "migrations") as db:
            pool = await db.get_pool()
            ...

    Construction blocks until ``CREATE DATABASE`` and every migration have
    completed on a private worker thread, so it is safe to call from plain
    synchronous code and from inside a running event loop alike. Teardown
    terminates any remaining sessions and drops the database; it runs exactly
    once and cannot be skipped.
    """

    def __init__(self, server_url: str, migrations: MigrationsArg, **options: Any) -> None:
        self.config = FixtureConfig(server_url, migrations, **options)
        locations = resolve_locations(self.config.migrations)
        self.db_name = generate_db_name(self.config.name_prefix)

        logger.info(
            "Provisioning ephemeral database %s on %s",
            self.db_name,
            redact_url(self.config.server_url),
        )
        run_in_worker(
            provision_database,
            self.config,
            self.db_name,
            locations,
            name=f"ephemeral-pg-provision-{self.db_name}",
        )
        # Registered only after provisioning succeeded; must not reference self.
        self._finalizer = weakref.finalize(self, _dispose, self.config, self.db_name)

    @classmethod
    def from_config(cls, config: FixtureConfig) -> EphemeralDatabase:
        """Provision a database described by an existing FixtureConfig."""
        return cls(**{f.name: getattr(config, f.name) for f in fields(config)})

    @classmethod
    def from_env(cls) -> EphemeralDatabase:
        """Provision a database configured from ``EPHEMERAL_PG_*`` variables."""
        return cls.from_config(FixtureConfig.from_env())

    @property
    def server_url(self) -> str:
        return self.config.server_url

    @property
    def url(self) -> str:
        """Connection URL of the ephemeral database."""
        return database_url(self.config.server_url, self.db_name)

    @property
    def admin_url(self) -> str:
        """Connection URL of the administrative (maintenance) database."""
        return database_url(self.config.server_url, self.config.admin_database)

    @property
    def closed(self) -> bool:
        """True once the database has been dropped (or a drop was attempted)."""
        return not self._finalizer.alive

    async def get_pool(self, *, max_size: int | None = None) -> asyncpg.Pool:
        """Create a new connection pool bound to the ephemeral database.

        Every call returns an independent pool that the caller must close.
        """
        if self.closed:
            raise ConnectivityError(
                f"Database {self.db_name} has already been torn down", db_name=self.db_name
            )
        if max_size is None:
            max_size = self.config.pool_max_size
        elif max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        # asyncpg opens min_size connections eagerly; always at least one.
        min_size = max(1, min(self.config.pool_min_size, max_size))
        try:
            pool = await asyncpg.create_pool(self.url, min_size=min_size, max_size=max_size)
        except CONNECT_ERRORS as exc:
            raise ConnectivityError(
                f"Could not create a pool for {redact_url(self.url)}: {exc}",
                db_name=self.db_name,
            ) from exc
        logger.info("Connection pool created for: %s", self.db_name)
        return pool

    def __enter__(self) -> EphemeralDatabase:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._finalizer()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<EphemeralDatabase {self.db_name} on {redact_url(self.server_url)} ({state})>"
