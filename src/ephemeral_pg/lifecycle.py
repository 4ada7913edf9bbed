"""Provisioning and teardown sequences for one ephemeral database.

Each sequence is a coroutine meant to be driven to completion by
``ephemeral_pg.worker.run_in_worker``. Steps inside a sequence run strictly
one after another.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import asyncpg
from opentelemetry import trace

from ephemeral_pg.config import FixtureConfig
from ephemeral_pg.errors import (
    ConnectivityError,
    EphemeralDatabaseError,
    ProvisioningError,
    TeardownError,
)
from ephemeral_pg.logging import database_context
from ephemeral_pg.migrations import run_migrations
from ephemeral_pg.naming import database_url, quote_ident, redact_url

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("ephemeral_pg")

CONNECT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
)
_SSL_UPGRADE_CONNECTION_LOST = "unexpected connection_lost() call"

_TERMINATE_SESSIONS_SQL = """
    SELECT count(pg_terminate_backend(pid))
    FROM pg_stat_activity
    WHERE pid <> pg_backend_pid() AND datname = $1
"""


def should_retry_with_ssl_disable(exc: Exception, dsn: str) -> bool:
    """Return True when asyncpg SSL STARTTLS fallback should retry with ssl=disable."""
    configured = "sslmode" in parse_qs(urlsplit(dsn).query)
    return (
        not configured
        and isinstance(exc, ConnectionError)
        and _SSL_UPGRADE_CONNECTION_LOST in str(exc)
    )


async def connect(dsn: str, *, db_name: str | None = None) -> asyncpg.Connection:
    """Open a single asyncpg connection, mapping failures to ConnectivityError."""
    try:
        try:
            return await asyncpg.connect(dsn)
        except ConnectionError as exc:
            if not should_retry_with_ssl_disable(exc, dsn):
                raise
            logger.info("Retrying PostgreSQL connection with ssl=disable after SSL upgrade loss")
            return await asyncpg.connect(dsn, ssl="disable")
    except CONNECT_ERRORS as exc:
        raise ConnectivityError(
            f"Could not connect to {redact_url(dsn)}: {exc}", db_name=db_name
        ) from exc


async def create_database(config: FixtureConfig, db_name: str) -> None:
    """Issue CREATE DATABASE for *db_name* over an administrative connection."""
    admin_url = database_url(config.server_url, config.admin_database)
    conn = await connect(admin_url, db_name=db_name)
    try:
        # CREATE DATABASE cannot be parameterized; the name is generated, not user input.
        await conn.execute(f"CREATE DATABASE {quote_ident(db_name)}")
    except CONNECT_ERRORS as exc:
        raise ProvisioningError(
            f"CREATE DATABASE {db_name} failed: {exc}", db_name=db_name
        ) from exc
    finally:
        await conn.close()
    logger.info("Created database: %s", db_name)


async def drop_database(config: FixtureConfig, db_name: str) -> int:
    """Terminate every other session on *db_name*, then drop it.

    Returns the number of sessions that were terminated.
    """
    admin_url = database_url(config.server_url, config.admin_database)
    conn = await connect(admin_url, db_name=db_name)
    try:
        terminated = await conn.fetchval(_TERMINATE_SESSIONS_SQL, db_name)
        await conn.execute(f"DROP DATABASE {quote_ident(db_name)}")
    except CONNECT_ERRORS as exc:
        raise TeardownError(f"DROP DATABASE {db_name} failed: {exc}", db_name=db_name) from exc
    finally:
        await conn.close()
    return int(terminated or 0)


async def provision_database(
    config: FixtureConfig, db_name: str, locations: Sequence[Path]
) -> None:
    """Create *db_name* and apply every migration found in *locations*.

    When a step after CREATE DATABASE fails and
    ``config.drop_on_failed_provision`` is set, the half-provisioned database
    is dropped before the original error propagates.
    """
    with database_context(db_name), tracer.start_as_current_span("ephemeral_pg.provision") as span:
        span.set_attribute("db.name", db_name)
        await create_database(config, db_name)
        try:
            await run_migrations(
                database_url(config.server_url, db_name), locations, db_name=db_name
            )
        except Exception as exc:
            if config.drop_on_failed_provision:
                await _drop_after_failure(config, db_name, exc)
            else:
                logger.warning("Leaving half-provisioned database in place: %s", db_name)
            raise
        logger.info("Database ready: %s", db_name)


async def _drop_after_failure(
    config: FixtureConfig, db_name: str, error: Exception
) -> None:
    logger.warning("Provisioning failed after CREATE DATABASE; dropping %s", db_name)
    try:
        await drop_database(config, db_name)
    except EphemeralDatabaseError as drop_exc:
        logger.error("Could not drop %s after failed provisioning: %s", db_name, drop_exc)
        error.add_note(f"Dropping {db_name} after the failure also failed: {drop_exc}")


async def teardown_database(config: FixtureConfig, db_name: str) -> None:
    """Forcibly disconnect every client of *db_name* and drop it.

    Raises:
        TeardownError: if the server is unreachable or a statement fails.
    """
    with database_context(db_name), tracer.start_as_current_span("ephemeral_pg.teardown") as span:
        span.set_attribute("db.name", db_name)
        try:
            terminated = await drop_database(config, db_name)
        except ConnectivityError as exc:
            raise TeardownError(
                f"Could not reach server to drop {db_name}: {exc}", db_name=db_name
            ) from exc
        span.set_attribute("db.terminated_sessions", terminated)
        logger.info("Dropped database %s (terminated %d sessions)", db_name, terminated)
