"""Single-flight load coalescing."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Share one in-flight operation between concurrent callers.

    The first run() starts the operation; callers arriving while it is in
    flight await the same task. The slot is cleared as soon as the task
    finishes, so the next run() after completion starts fresh. The shared
    task is shielded: cancelling one waiter does not cancel the others.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._task
        if task is None:
            task = asyncio.ensure_future(factory())
            self._task = task
            task.add_done_callback(self._clear)
        return await asyncio.shield(task)

    def _clear(self, task: asyncio.Task[T]) -> None:
        if self._task is task:
            self._task = None
        # Retrieve the exception so an unobserved failure is not reported
        if not task.cancelled():
            task.exception()

    def forget(self) -> None:
        """Detach the in-flight task so the next run() starts a new one."""
        self._task = None
