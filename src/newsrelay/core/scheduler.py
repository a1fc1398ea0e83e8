"""Cycle orchestrator.

One cycle runs, in order:
1) Load destinations with an address; none means nothing to do
2) Keep the destinations whose interval has elapsed
3) Poll every source once, shared by all due destinations
4) No new items: touch every due destination and stop
5) Per destination: filter each item (with a timeout), mark accepted items
   seen, dispatch them, then touch the destination

Failures are contained to the unit they happen in (item, destination).
Only failures loading destinations or sources abort the cycle.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from newsrelay.core.batching import race_timeout
from newsrelay.core.config import FilterConfig, SchedulerConfig
from newsrelay.core.dedup import Deduplicator
from newsrelay.core.dispatcher import Dispatcher
from newsrelay.core.errors import CycleAbortError, FilterTimeout
from newsrelay.core.filter_queue import FilterQueue
from newsrelay.core.models import CandidateItem, Destination, Source
from newsrelay.core.poller import Poller
from newsrelay.core.ports import StoragePort
from newsrelay.core.stats import FilterStats

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps from the store are UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def is_due(destination: Destination, now: datetime) -> bool:
    """True when at least poll_interval_hours passed since the last update."""

    if destination.last_updated is None:
        return True
    interval = timedelta(hours=destination.poll_interval_hours or 1)
    return _as_utc(now) - _as_utc(destination.last_updated) >= interval


class Scheduler:
    def __init__(
        self,
        storage: StoragePort,
        poller: Poller,
        filter_queue: FilterQueue,
        dispatcher: Dispatcher,
        deduplicator: Deduplicator,
        config: Optional[SchedulerConfig] = None,
        filter_config: Optional[FilterConfig] = None,
        stats: Optional[FilterStats] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage = storage
        self._poller = poller
        self._filter_queue = filter_queue
        self._dispatcher = dispatcher
        self._deduplicator = deduplicator
        self._config = config or SchedulerConfig()
        self._filter_config = filter_config or FilterConfig()
        self._stats = stats or FilterStats()
        self._clock = clock
        self._timer: Optional[asyncio.Task] = None
        self._running = False
        self.last_run_time: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the periodic timer on the running event loop."""

        if self._timer is not None and not self._timer.done():
            LOGGER.warning("Scheduler already started")
            return
        self._timer = asyncio.get_running_loop().create_task(self._tick_forever())
        next_run = self._clock() + timedelta(minutes=self._config.interval_minutes)
        LOGGER.info(
            "Scheduler started, running every %s minutes (next run %s)",
            self._config.interval_minutes,
            next_run.isoformat(),
        )

    async def stop(self) -> None:
        """Cancel the timer and give abandoned filter calls one timeout to finish."""

        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        if self._filter_queue.is_processing():
            LOGGER.info(
                "Waiting for %s filter calls to finish",
                self._filter_queue.active_count + self._filter_queue.queue_length,
            )
            try:
                await asyncio.wait_for(
                    self._filter_queue.wait_for_completion(),
                    self._filter_config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                LOGGER.warning("Filter calls still running at shutdown, abandoning them")

        self._deduplicator.clear_cache()
        LOGGER.info("Scheduler stopped")

    async def _tick_forever(self) -> None:
        interval = self._config.interval_minutes * 60
        while True:
            await asyncio.sleep(interval)
            LOGGER.info("Scheduled cycle triggered")
            try:
                await self.run_once()
            except Exception:
                LOGGER.exception("Scheduled cycle crashed")

    async def trigger_manual_run(self) -> None:
        LOGGER.info("Manual cycle triggered")
        await self.run_once()

    async def run_once(self) -> None:
        """Run one cycle now, unless one is already running."""

        if self._running:
            LOGGER.info("Cycle already in progress, skipping")
            return

        self._running = True
        started = self._clock()
        try:
            await self._run_cycle()
        except CycleAbortError:
            LOGGER.exception("Cycle aborted")
        finally:
            self._running = False
            LOGGER.info("Cycle took %.1fs", (self._clock() - started).total_seconds())

    async def _run_cycle(self) -> None:
        destinations = self._load_destinations()
        if not destinations:
            LOGGER.info("No destinations configured, skipping cycle")
            return

        now = self._clock()
        due = self.due_destinations(destinations, now)
        if not due:
            LOGGER.info("No destinations due (%s configured)", len(destinations))
            return
        LOGGER.info("%s of %s destinations due", len(due), len(destinations))

        polled = await self._poller.poll_all(self._load_sources())
        items = [item for source_items in polled.values() for item in source_items]

        if not items:
            LOGGER.info("No new items in any source")
            for destination in due:
                self._touch(destination, now)
            return

        LOGGER.info(
            "Found %s new items in %s sources",
            len(items),
            sum(1 for source_items in polled.values() if source_items),
        )
        for destination in due:
            await self._process_destination(destination, items, now)

        self.last_run_time = now
        LOGGER.info("Cycle complete: %s destinations, %s items", len(due), len(items))

    def _load_destinations(self) -> list[Destination]:
        try:
            destinations = self._storage.get_destinations()
        except Exception as exc:
            raise CycleAbortError(f"Could not load destinations: {exc}") from exc
        return [destination for destination in destinations if destination.address]

    def _load_sources(self) -> list[Source]:
        try:
            return self._storage.list_sources(active_only=True)
        except Exception as exc:
            raise CycleAbortError(f"Could not load sources: {exc}") from exc

    def due_destinations(self, destinations: Iterable[Destination], now: datetime) -> list[Destination]:
        due = []
        for destination in destinations:
            if is_due(destination, now):
                due.append(destination)
            else:
                LOGGER.debug(
                    "Destination %s not due (interval %sh, last updated %s)",
                    destination.id,
                    destination.poll_interval_hours,
                    destination.last_updated,
                )
        return due

    async def _process_destination(
        self,
        destination: Destination,
        items: list[CandidateItem],
        now: datetime,
    ) -> None:
        try:
            accepted = await self._filter_items(destination, items)
            if accepted:
                await self._dispatcher.dispatch(destination, accepted)
            else:
                LOGGER.info("No items accepted for %s", destination.id)
            self._touch(destination, now)
        except Exception:
            LOGGER.exception("Processing failed for destination %s", destination.id)

    async def _filter_items(self, destination: Destination, items: list[CandidateItem]) -> list[CandidateItem]:
        futures = [self._filter_queue.submit(item) for item in items]
        accepted: list[CandidateItem] = []

        for position, (item, future) in enumerate(zip(items, futures), start=1):
            try:
                decision = await race_timeout(future, self._filter_config.timeout_seconds)
            except FilterTimeout:
                self._stats.record_error()
                LOGGER.error("Filter timed out for %s, dropping it for %s", item.title, destination.id)
                continue
            except Exception:
                self._stats.record_error()
                LOGGER.exception("Filter failed for %s, dropping it for %s", item.title, destination.id)
                continue

            self._stats.record(decision)
            LOGGER.info(
                "Item %s/%s %s: %s (%s)",
                position,
                len(items),
                "accepted" if decision.accept else "rejected",
                item.title,
                decision.reason,
            )
            if not decision.accept:
                continue

            if decision.category:
                item = replace(item, category=decision.category)
            try:
                self._storage.mark_seen(item)
            except Exception:
                LOGGER.exception("Could not mark %s as seen, not dispatching it", item.title)
                continue
            accepted.append(item)

        LOGGER.info("%s of %s items accepted for %s", len(accepted), len(items), destination.id)
        return accepted

    def _touch(self, destination: Destination, now: datetime) -> None:
        try:
            self._storage.update_destination(destination.id, last_updated=now)
        except Exception:
            LOGGER.exception("Could not update last_updated for %s", destination.id)

    def status(self) -> dict:
        return {
            "is_running": self._running,
            "is_scheduled": self._timer is not None and not self._timer.done(),
            "last_run_time": self.last_run_time,
            "queue_length": self._filter_queue.queue_length,
            "active_filters": self._filter_queue.active_count,
            "filtering": self._filter_queue.is_processing(),
            "filter_stats": self._stats.snapshot(),
            "dedup": self._deduplicator.cache_stats(),
        }