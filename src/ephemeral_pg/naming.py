"""Database names and connection URLs for ephemeral databases."""

from __future__ import annotations

import re
import uuid
from urllib.parse import urlsplit, urlunsplit

from sqlalchemy.engine import URL, make_url

DEFAULT_NAME_PREFIX = "test_db_"

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1 bytes.
MAX_IDENTIFIER_LENGTH = 63
_TOKEN_LENGTH = 36
MAX_PREFIX_LENGTH = MAX_IDENTIFIER_LENGTH - _TOKEN_LENGTH

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_VALID_SCHEMES = {"postgres", "postgresql"}


def is_identifier(value: str) -> bool:
    """Return True when *value* is a plain SQL identifier fragment."""
    return _IDENTIFIER_PATTERN.fullmatch(value) is not None


def generate_db_name(prefix: str = DEFAULT_NAME_PREFIX) -> str:
    """Return ``prefix`` followed by a uuid4 with dashes replaced by underscores."""
    return prefix + str(uuid.uuid4()).replace("-", "_")


def quote_ident(identifier: str) -> str:
    """Quote a SQL identifier for safe interpolation."""
    return '"' + identifier.replace('"', '""') + '"'


def normalize_server_url(server_url: str) -> str:
    """Validate a server base URL and strip any trailing slash.

    The base URL must use the ``postgres``/``postgresql`` scheme and must not
    select a database; the database path is appended per connection.
    """
    normalized = server_url.strip()
    parsed = urlsplit(normalized)
    if parsed.scheme not in _VALID_SCHEMES:
        raise ValueError(
            f"Unsupported server URL scheme {parsed.scheme!r}; expected postgres:// or postgresql://"
        )
    if not parsed.netloc:
        raise ValueError(f"Server URL has no host: {redact_url(normalized)}")
    if parsed.path.strip("/"):
        raise ValueError(
            f"Server URL must not name a database (got path {parsed.path!r}): "
            f"{redact_url(normalized)}"
        )
    return urlunsplit((parsed.scheme, parsed.netloc, "", parsed.query, parsed.fragment))


def database_url(server_url: str, database: str) -> str:
    """Return ``server_url + "/" + database``, keeping any query string last."""
    parsed = urlsplit(server_url)
    return urlunsplit((parsed.scheme, parsed.netloc, f"/{database}", parsed.query, ""))


def sqlalchemy_url(dsn: str) -> URL:
    """Convert a libpq-style DSN into a SQLAlchemy URL using the asyncpg driver."""
    url = make_url(dsn).set(drivername="postgresql+asyncpg")
    sslmode = url.query.get("sslmode")
    if sslmode is not None:
        # asyncpg takes ``ssl`` rather than libpq's ``sslmode``.
        url = url.difference_update_query(["sslmode"]).update_query_dict({"ssl": sslmode})
    return url


def redact_url(url: str) -> str:
    """Replace the password component of *url* with ``***``."""
    parsed = urlsplit(url)
    if parsed.password is None:
        return url
    userinfo, _, hostinfo = parsed.netloc.rpartition("@")
    user = userinfo.split(":", 1)[0]
    return urlunsplit(
        (parsed.scheme, f"{user}:***@{hostinfo}", parsed.path, parsed.query, parsed.fragment)
    )
