"""Concurrent source poller.

Sources are polled in fixed-width batches. Within a batch every fetch runs
concurrently and one failing source only costs that source its items for
the cycle. Per source, items are walked in provider order (newest first)
until the stored marker is reached, so older items are never re-processed.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

from newsrelay.core.batching import SingleFlight, chunked
from newsrelay.core.config import PollerConfig
from newsrelay.core.dedup import Deduplicator, compute_fingerprint, compute_item_marker
from newsrelay.core.errors import SourceFetchError
from newsrelay.core.models import CandidateItem, RawItem, Source
from newsrelay.core.ports import SourceReaderPort, StoragePort

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_item_id() -> str:
    return uuid.uuid4().hex[:12]


def is_same_local_day(moment: datetime, now: datetime) -> bool:
    """Compare calendar dates in the machine's local timezone."""

    return moment.astimezone().date() == now.astimezone().date()


class Poller:
    def __init__(
        self,
        reader: SourceReaderPort,
        storage: StoragePort,
        deduplicator: Deduplicator,
        config: Optional[PollerConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._reader = reader
        self._storage = storage
        self._deduplicator = deduplicator
        self._config = config or PollerConfig()
        self._sleep = sleep
        self._clock = clock
        self._single_flight: SingleFlight[list[CandidateItem]] = SingleFlight()
        self._polling = False

    @property
    def is_polling(self) -> bool:
        return self._polling

    @property
    def active_polls(self) -> int:
        return len(self._single_flight)

    async def poll_all(self, sources: Optional[Iterable[Source]] = None) -> dict[str, list[CandidateItem]]:
        """Poll every source once and return new items keyed by source id.

        A call made while another poll_all is in flight returns an empty
        mapping instead of starting a second cycle.
        """

        if self._polling:
            LOGGER.warning("Polling already in progress, skipping")
            return {}

        self._polling = True
        results: dict[str, list[CandidateItem]] = {}
        try:
            if sources is None:
                sources = self._storage.list_sources(active_only=True)
            sources = [source for source in sources if source.is_active]
            LOGGER.info("Polling %s sources", len(sources))

            for batch in chunked(sources, self._config.batch_width):
                outcomes = await asyncio.gather(
                    *(self.poll_source(source) for source in batch),
                    return_exceptions=True,
                )
                for source, outcome in zip(batch, outcomes):
                    if isinstance(outcome, BaseException):
                        LOGGER.error(
                            "Polling failed for source %s (%s): %s",
                            source.id,
                            source.url,
                            outcome,
                            exc_info=outcome,
                        )
                        results[source.id] = []
                    else:
                        results[source.id] = outcome

            total = sum(len(items) for items in results.values())
            LOGGER.info(
                "Polling finished: %s sources, %s new items, %s sources with items",
                len(sources),
                total,
                sum(1 for items in results.values() if items),
            )
            return results
        finally:
            self._polling = False
            self._single_flight.clear()

    async def poll_source(self, source: Source) -> list[CandidateItem]:
        """Poll one source; concurrent calls for the same id share one fetch."""

        if self._single_flight.is_inflight(source.id):
            LOGGER.info("Source %s already being polled, waiting for it", source.id)
        return await self._single_flight.run(source.id, lambda: self._poll_source(source))

    async def _poll_source(self, source: Source) -> list[CandidateItem]:
        LOGGER.info("Polling source %s (%s)", source.id, source.url)
        raw_items = await self._fetch_with_retry(source)
        candidates = self._select_new_items(source, raw_items)
        unique = await self._deduplicator.filter_duplicates(candidates)
        if unique:
            LOGGER.info("Source %s produced %s new items", source.id, len(unique))
        return unique

    async def _fetch_with_retry(self, source: Source) -> list[RawItem]:
        attempts = self._config.max_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._reader.fetch(source.url)
            except SourceFetchError as exc:
                last_error = exc
                LOGGER.warning(
                    "Fetch attempt %s/%s failed for %s (%s): %s",
                    attempt,
                    attempts,
                    source.id,
                    source.url,
                    exc,
                )
                if attempt < attempts:
                    await self._sleep(2**attempt)

        raise SourceFetchError(
            f"Failed to fetch {source.url} after {attempts} attempts: {last_error}"
        ) from last_error

    def _select_new_items(self, source: Source, raw_items: list[RawItem]) -> list[CandidateItem]:
        valid = [item for item in raw_items if item.link and item.title]
        if not valid:
            LOGGER.info("No usable items in source %s", source.id)
            return []

        now = self._clock()
        selected: list[CandidateItem] = []
        for raw in valid:
            marker = compute_item_marker(raw.title, raw.link, raw.guid)
            if source.last_seen_marker and marker == source.last_seen_marker:
                break

            published = raw.published_at or now
            if not is_same_local_day(published, now):
                LOGGER.debug("Skipping item not published today: %s", raw.title)
                continue

            fingerprint = compute_fingerprint(raw.title, raw.link)
            if self._storage.is_seen(fingerprint):
                continue

            selected.append(
                CandidateItem(
                    id=_new_item_id(),
                    source_id=source.id,
                    title=raw.title,
                    body=raw.body,
                    link=raw.link,
                    published_at=published,
                    fingerprint=fingerprint,
                    source_name=source.name,
                )
            )
            if len(selected) >= self._config.items_per_source:
                LOGGER.warning(
                    "Reached item cap of %s for source %s",
                    self._config.items_per_source,
                    source.id,
                )
                break

        if selected:
            newest = valid[0]
            self._storage.update_source_marker(
                source.id, compute_item_marker(newest.title, newest.link, newest.guid)
            )
        return selected
