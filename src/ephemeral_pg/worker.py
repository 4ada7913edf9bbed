"""Run asynchronous work to completion from synchronous call sites.

Construction and teardown of an ephemeral database both happen at points
that cannot await: ``__init__`` and object finalization. ``run_in_worker``
bridges that gap by running the coroutine on a dedicated thread with its own
event loop and blocking the caller until it finishes. Because the loop is
private to the worker, callers that are already inside a running event loop
are never re-entered.

During interpreter shutdown no new thread can be started, so the coroutine
runs on the calling thread instead; nothing is running an event loop there
by then.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
import sys
from collections.abc import Awaitable, Callable
from threading import Thread
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_in_worker(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    name: str | None = None,
) -> T:
    """Run ``func(*args)`` on a fresh thread and event loop; block until done.

    The worker runs inside a copy of the caller's ``contextvars`` context.
    The coroutine's return value is returned; any exception it raised is
    re-raised in the calling thread. Falls back to the calling thread when
    the interpreter refuses to start new threads.
    """
    outcome: dict[str, Any] = {}

    async def _main() -> T:
        return await func(*args)

    def _run() -> None:
        try:
            outcome["result"] = asyncio.run(_main())
        except BaseException as exc:  # re-raised in the calling thread
            outcome["error"] = exc

    context = contextvars.copy_context()
    if sys.is_finalizing():
        context.run(_run)
    else:
        worker = Thread(target=context.run, args=(_run,), name=name, daemon=True)
        try:
            worker.start()
        except RuntimeError as exc:
            # No new threads once interpreter shutdown has begun; atexit finalizers land here.
            logger.debug("Running %s on the calling thread: %s", name or "worker", exc)
            context.run(_run)
        else:
            logger.debug("Waiting on worker thread %s", worker.name)
            worker.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]
