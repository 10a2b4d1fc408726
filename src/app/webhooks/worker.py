"""Bounded background worker for post-acknowledgement processing.

The webhook endpoint must answer within seconds, so dispatching happens
after the response is sent. Work is handed to a BackgroundWorker instead of
a bare ``asyncio.create_task``: tasks are tracked (never garbage collected
mid-flight), concurrency is bounded by a semaphore, every task logs its
completion or failure, and shutdown drains what is still running.

There is no durable queue: a crash between acknowledgement and completion
loses that delivery's work until the platform re-delivers.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundWorker:
    """Runs submitted coroutines as tracked tasks with bounded concurrency.

    Args:
        max_concurrency: Maximum coroutines executing at once. Further
            submissions are scheduled immediately but wait for a slot.
    """

    def __init__(self, max_concurrency: int = 4) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive, got {max_concurrency}")
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Submitted tasks that have not finished yet."""
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], name: str = "task") -> asyncio.Task:
        """Schedule ``coro`` without waiting for it."""
        task = asyncio.create_task(self._run(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await self._semaphore.acquire()
        except asyncio.CancelledError:
            coro.close()
            raise
        try:
            start = time.perf_counter()
            try:
                await coro
            except asyncio.CancelledError:
                logger.warning("worker.task_cancelled", task=name)
                raise
            except Exception:
                logger.error(
                    "worker.task_failed",
                    task=name,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                    exc_info=True,
                )
                return
            logger.info(
                "worker.task_completed",
                task=name,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
        finally:
            self._semaphore.release()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding tasks; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logger.info("worker.draining", pending=len(tasks))
        done, not_done = await asyncio.wait(tasks, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)
            logger.warning("worker.drain_cancelled", cancelled=len(not_done))
