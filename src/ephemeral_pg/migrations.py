"""Programmatic Alembic migration runner for ephemeral databases.

Applies the revision scripts found in one or more user-supplied directories
to a freshly created database without shelling out to the Alembic CLI. The
Alembic environment (``env.py``) ships with this package; the user's
directories are wired in as ``version_locations`` so several independent
revision chains can be applied together.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from ephemeral_pg.errors import ConnectivityError, MigrationError
from ephemeral_pg.naming import redact_url, sqlalchemy_url

logger = logging.getLogger(__name__)

# Directory holding the package's own Alembic env.py
ALEMBIC_DIR = Path(__file__).resolve().parent / "_alembic"

DEFAULT_TARGET = "heads"


def resolve_locations(
    migrations: str | os.PathLike[str] | Sequence[str | os.PathLike[str]],
) -> tuple[Path, ...]:
    """Normalize migration directories to absolute paths and check they exist.

    Raises:
        MigrationError: if no directory is given or one is missing.
    """
    if isinstance(migrations, (str, os.PathLike)):
        migrations = [migrations]
    locations = tuple(Path(entry).expanduser().resolve() for entry in migrations)
    if not locations:
        raise MigrationError("No migration directories given")
    for location in locations:
        if not location.is_dir():
            raise MigrationError(f"Migration directory does not exist: {location}")
    return locations


def build_alembic_config(locations: Sequence[Path]) -> Config:
    """Build an Alembic Config pointing at the given revision directories.

    Args:
        locations: Directories containing Alembic revision scripts.

    Returns:
        A configured alembic.config.Config instance.
    """
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    config.set_main_option("path_separator", "os")
    # Alembic Config uses configparser interpolation; '%' must be escaped as '%%'.
    config.set_main_option(
        "version_locations",
        os.pathsep.join(str(location).replace("%", "%%") for location in locations),
    )
    return config


def _upgrade(connection: Connection, config: Config, target: str) -> None:
    config.attributes["connection"] = connection
    command.upgrade(config, target)


async def run_migrations(
    dsn: str,
    locations: Sequence[Path],
    target: str = DEFAULT_TARGET,
    *,
    db_name: str | None = None,
) -> None:
    """Open a connection to *dsn* and upgrade it to *target*.

    Args:
        dsn: libpq-style URL of the database to migrate.
        locations: Directories containing Alembic revision scripts.
        target: Alembic revision target, ``"heads"`` by default.
        db_name: Database name attached to raised errors.

    Raises:
        ConnectivityError: if the database cannot be reached.
        MigrationError: if loading or applying a revision fails.
    """
    config = build_alembic_config(locations)
    engine = create_async_engine(sqlalchemy_url(dsn), poolclass=NullPool)
    try:
        try:
            connection = await engine.connect()
        except (OSError, SQLAlchemyError) as exc:
            raise ConnectivityError(
                f"Could not connect to {redact_url(dsn)} to run migrations: {exc}",
                db_name=db_name,
            ) from exc

        try:
            logger.info(
                "Running migrations to %s (locations=%s)",
                target,
                ", ".join(str(location) for location in locations),
            )
            await connection.run_sync(_upgrade, config, target)
            await connection.commit()
        except Exception as exc:
            raise MigrationError(f"Migration failed: {exc}", db_name=db_name) from exc
        finally:
            await connection.close()
    finally:
        await engine.dispose()
