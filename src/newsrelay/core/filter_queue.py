"""Bounded-concurrency queue in front of the filter manager.

Caps the number of filter calls in flight (and so the number of concurrent
classifier requests). Items start in submission order; completion order is
whatever the classifier gives us.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Protocol

from newsrelay.core.models import CandidateItem, FilterDecision

LOGGER = logging.getLogger(__name__)


class ItemFilter(Protocol):
    async def should_post_item(self, item: CandidateItem) -> FilterDecision:
        ...


@dataclass
class _FilterTask:
    item: CandidateItem
    future: asyncio.Future
    submitted_at: float = field(default_factory=time.monotonic)


class FilterQueue:
    def __init__(self, item_filter: ItemFilter, max_concurrent: int = 3) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._filter = item_filter
        self._max_concurrent = max_concurrent
        self._pending: deque[_FilterTask] = deque()
        self._active: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    def submit(self, item: CandidateItem) -> "asyncio.Future[FilterDecision]":
        """Queue an item and return a future for its decision. Never blocks."""

        loop = asyncio.get_running_loop()
        task = _FilterTask(item=item, future=loop.create_future())
        self._pending.append(task)
        self._idle.clear()
        self._drain()
        return task.future

    def _drain(self) -> None:
        while self._pending and len(self._active) < self._max_concurrent:
            task = self._pending.popleft()
            runner = asyncio.get_running_loop().create_task(self._run(task))
            self._active.add(runner)
            runner.add_done_callback(self._on_done)

    def _on_done(self, runner: asyncio.Task) -> None:
        self._active.discard(runner)
        if self._pending:
            self._drain()
        elif not self._active:
            self._idle.set()

    async def _run(self, task: _FilterTask) -> None:
        LOGGER.debug(
            "Filtering %s (queued=%s, active=%s)",
            task.item.title,
            len(self._pending),
            len(self._active),
        )
        try:
            decision = await self._filter.should_post_item(task.item)
        except Exception as exc:
            LOGGER.exception(
                "Filter task failed for %s after %.2fs",
                task.item.title,
                time.monotonic() - task.submitted_at,
            )
            if not task.future.done():
                task.future.set_exception(exc)
            return

        if not task.future.done():
            task.future.set_result(decision)
        LOGGER.debug(
            "Filtered %s in %.2fs (accept=%s)",
            task.item.title,
            time.monotonic() - task.submitted_at,
            decision.accept,
        )

    @property
    def queue_length(self) -> int:
        return len(self._pending)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_processing(self) -> bool:
        return bool(self._pending or self._active)

    async def wait_for_completion(self) -> None:
        """Wait until every submitted item has been filtered."""

        await self._idle.wait()
