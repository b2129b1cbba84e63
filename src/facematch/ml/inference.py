"""Worker pool for CPU-bound image work.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> decode / detect / extract

Requests that cannot get a slot within ``queue_timeout`` seconds fail with
PoolSaturatedError, which the API maps to 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from facematch.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PoolSaturatedError(TimeoutError):
    """Raised when no worker slot frees up before the queue timeout."""


class InferencePool:
    """Bounds concurrent image processing and runs it off the event loop."""

    def __init__(self, settings: Settings) -> None:
        self._queue_timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="face-worker",
        )
        self._counter_lock = threading.Lock()
        self._active = 0
        self._waiting = 0

    async def _acquire(self) -> None:
        with self._counter_lock:
            self._waiting += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        except TimeoutError:
            logger.warning("No worker slot available after %.1fs", self._queue_timeout)
            raise PoolSaturatedError("Face processing is at capacity, retry later") from None
        finally:
            with self._counter_lock:
                self._waiting -= 1

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on a worker thread.

        Raises:
            PoolSaturatedError: If no slot is acquired within the queue timeout.
        """
        await self._acquire()
        with self._counter_lock:
            self._active += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active -= 1

    @property
    def active_count(self) -> int:
        """Number of jobs currently running on a worker."""
        with self._counter_lock:
            return self._active

    @property
    def queue_depth(self) -> int:
        """Number of jobs waiting for a worker slot."""
        with self._counter_lock:
            return self._waiting

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        logger.info("Worker pool shut down")
