"""Async utilities for bridging blocking I/O into the sync engines."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used for ``requests`` calls against the Drive API and for local file
    reads/writes, so the engines only ever suspend on awaitables.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        data = await run_sync(path.read_bytes)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
