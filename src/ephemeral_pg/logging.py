"""Structured logging for ephemeral databases.

Uses structlog's ProcessorFormatter to upgrade every existing
``logging.getLogger(__name__)`` call site without changes.

Two output formats:
- ``text``: Colored, human-readable console output (default)
- ``json``: Machine-parseable JSON lines (CI log aggregation)

The name of the database being provisioned or torn down and the current
OTel trace context are injected by processors that read a ContextVar and
the current OTel span.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TextIO

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# Database context (asyncio-safe via ContextVar)
# ---------------------------------------------------------------------------

_database_context: ContextVar[str | None] = ContextVar("ephemeral_pg_database", default=None)


def get_database_context() -> str | None:
    """Get the database name bound to the current context."""
    return _database_context.get()


@contextmanager
def database_context(db_name: str) -> Iterator[None]:
    """Bind *db_name* to log records emitted inside the block."""
    token = _database_context.set(db_name)
    try:
        yield
    finally:
        _database_context.reset(token)


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_database_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``database`` key from the ContextVar into the event dict."""
    event_dict["database"] = _database_context.get()
    return event_dict


_NO_TRACE_ID = "0" * 32
_NO_SPAN_ID = "0" * 16


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id``/``span_id`` of the active span; zeros outside any span."""
    ctx = trace.get_current_span().get_span_context()
    valid = ctx.is_valid
    event_dict["trace_id"] = format(ctx.trace_id, "032x") if valid else _NO_TRACE_ID
    event_dict["span_id"] = format(ctx.span_id, "016x") if valid else _NO_SPAN_ID
    return event_dict


# Too chatty at INFO.
_NOISE_LOGGERS = (
    "alembic.runtime.migration",
    "asyncio",
)

# fmt -> (timestamp format, final renderer factory)
_FORMATS: dict[str, tuple[str, Callable[[], structlog.types.Processor]]] = {
    "text": ("%H:%M:%S", structlog.dev.ConsoleRenderer),
    "json": ("iso", structlog.processors.JSONRenderer),
}


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_database_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    stream: TextIO | None = None,
) -> None:
    """Route ephemeral_pg's log records (and everyone else's) through structlog.

    The library never configures logging on import. Call this once, for
    example from a ``conftest.py``, to get database-tagged output::

        from ephemeral_pg import configure_logging

        configure_logging(level="DEBUG", fmt="json")

    Replaces any handlers already attached to the root logger, so repeated
    calls do not duplicate output. *stream* defaults to ``sys.stderr`` at
    call time.
    """
    try:
        time_fmt, make_renderer = _FORMATS[fmt]
    except KeyError:
        valid = ", ".join(_FORMATS)
        raise ValueError(f"Unknown log format {fmt!r}; expected one of: {valid}") from None
    pre_chain = _pre_chain(time_fmt)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                make_renderer(),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.getLevelName(level.upper()))
    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
