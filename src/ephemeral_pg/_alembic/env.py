"""Alembic environment for ephemeral database migrations.

Supports:
- Programmatic invocation only; the caller opens the connection and passes
  it through ``config.attributes["connection"]``
- Multiple version chains via ``version_locations``
- Raw SQL via op.execute() (no SQLAlchemy models required)
"""

from __future__ import annotations

from alembic import context


def run_migrations_online() -> None:
    """Run migrations against the connection supplied by the caller."""
    connection = context.config.attributes.get("connection")
    if connection is None:
        raise RuntimeError(
            "ephemeral_pg migrations need a live connection in config.attributes['connection']"
        )

    context.configure(connection=connection, target_metadata=None)

    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    raise RuntimeError("ephemeral_pg does not support offline (--sql) migrations")

run_migrations_online()
