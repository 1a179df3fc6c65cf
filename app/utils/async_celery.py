"""
Shared event loop for Celery sync tasks.

The orchestrator singleton keeps asyncio state across task invocations
(in-flight runs, resolver refill tasks, the column detection lock), so every
task must run on the same loop instead of a fresh ``asyncio.run``.
"""
import asyncio
import logging
from typing import Any, Coroutine, TypeVar

logger = logging.getLogger(__name__)

_loop: asyncio.AbstractEventLoop | None = None

T = TypeVar("T")


def get_event_loop() -> asyncio.AbstractEventLoop:
    global _loop

    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
        logger.debug("Created shared event loop for sync tasks")

    return _loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run a coroutine to completion on the shared loop.

    Example:
        @celery_app.task
        def sync_window():
            return run_async(_sync_window())
    """
    return get_event_loop().run_until_complete(coro)


def cleanup_event_loop() -> None:
    """Cancel leftover tasks and close the shared loop (worker shutdown)."""
    global _loop

    loop, _loop = _loop, None
    if loop is None or loop.is_closed():
        return

    try:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    finally:
        loop.close()
        logger.info("Shared event loop closed")
