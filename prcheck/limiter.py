"""Bounded concurrency for repository-level tasks."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

T = TypeVar("T")

MAX_CONCURRENT_REPO_CHECKS = 5


class ConcurrencyLimiter:
    """Run at most ``limit`` task bodies at once, admitting waiters in FIFO order.

    There is no priority and no cancellation. A failing task releases its slot
    like any other, so queued tasks keep being admitted.
    """

    def __init__(self, limit: int = MAX_CONCURRENT_REPO_CHECKS) -> None:
        if limit < 1:
            raise ValueError(f"Concurrency limit must be at least 1, got {limit}.")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_flight = 0
        self.max_in_flight = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def schedule(self, task: Callable[[], Awaitable[T]]) -> T:
        """Wait for a free slot, then run ``task`` to completion."""
        async with self._semaphore:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
            try:
                return await task()
            finally:
                self._in_flight -= 1

    async def run_all(
        self,
        tasks: Iterable[Callable[[], Awaitable[T]]],
    ) -> list[T | BaseException]:
        """Schedule every task and wait until all of them have settled.

        Outcomes are returned in submission order; a failed task contributes its
        exception instead of a result.
        """
        return await asyncio.gather(
            *(self.schedule(task) for task in tasks),
            return_exceptions=True,
        )
