"""Async helpers for exposing coroutine APIs to synchronous callers."""

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def run_sync(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion on a private event loop.

    Unlike asyncio.run(), this never touches the thread's current loop
    policy beyond the call, so it is safe to use from worker threads.
    It must not be called from a thread that is already running a loop.

    Args:
        coro: Coroutine to execute.

    Returns:
        Result of the coroutine.

    Raises:
        RuntimeError: If called from inside a running event loop.

    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        coro.close()
        raise RuntimeError("run_sync() cannot be called from a running event loop; await instead")

    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        with contextlib.suppress(Exception):
            loop.run_until_complete(loop.shutdown_asyncgens())
        asyncio.set_event_loop(None)
        loop.close()
