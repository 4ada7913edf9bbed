"""Exceptions raised across the ephemeral database lifecycle."""

from __future__ import annotations


class EphemeralDatabaseError(Exception):
    """Base class for every lifecycle failure.

    ``db_name`` names the database the failure relates to, so callers can
    locate leftovers when compensating cleanup is disabled or fails.
    """

    def __init__(self, message: str, *, db_name: str | None = None) -> None:
        super().__init__(message)
        self.db_name = db_name


class ConnectivityError(EphemeralDatabaseError):
    """The administrative or target endpoint could not be reached."""


class ProvisioningError(EphemeralDatabaseError):
    """CREATE DATABASE was rejected by the server."""


class MigrationError(EphemeralDatabaseError):
    """The migration set could not be loaded or applied."""


class TeardownError(EphemeralDatabaseError):
    """Session termination or DROP DATABASE failed."""
