"""Disposable, fully migrated PostgreSQL databases for test runs."""

from __future__ import annotations

from ephemeral_pg.config import ConfigError, FixtureConfig, TeardownPolicy
from ephemeral_pg.errors import (
    ConnectivityError,
    EphemeralDatabaseError,
    MigrationError,
    ProvisioningError,
    TeardownError,
)
from ephemeral_pg.fixture import EphemeralDatabase
from ephemeral_pg.logging import configure_logging
from ephemeral_pg.naming import generate_db_name

__all__ = [
    "ConfigError",
    "ConnectivityError",
    "EphemeralDatabase",
    "EphemeralDatabaseError",
    "FixtureConfig",
    "MigrationError",
    "ProvisioningError",
    "TeardownError",
    "TeardownPolicy",
    "configure_logging",
    "generate_db_name",
]
