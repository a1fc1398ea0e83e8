"""Small async building blocks shared by the poller, queue and scheduler."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Hashable, Iterator, Sequence, TypeVar

from newsrelay.core.errors import FilterTimeout

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items."""

    if size < 1:
        raise ValueError("size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class SingleFlight(Generic[T]):
    """Collapse concurrent calls with the same key onto one in-flight task.

    Later callers await the first caller's task instead of starting their
    own. The entry is dropped once the task finishes, whatever the outcome.
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def is_inflight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(factory())
        self._inflight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight.get(key) is task:
                del self._inflight[key]
            elif not task.done():
                task.add_done_callback(lambda _t: self._forget(key, task))

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def clear(self) -> None:
        self._inflight.clear()


def _consume_outcome(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


async def race_timeout(future: "asyncio.Future[T]", seconds: float) -> T:
    """Return the future's result, or raise FilterTimeout after ``seconds``.

    The future is not cancelled on timeout; it is abandoned and whatever it
    eventually produces is discarded.
    """

    done, _ = await asyncio.wait({future}, timeout=seconds)
    if not done:
        future.add_done_callback(_consume_outcome)
        raise FilterTimeout(f"no result after {seconds:g}s")
    return future.result()
