"""Deduplication helpers and the two-layer deduplicator (core domain)."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import time
from typing import Callable, Iterable, Optional

from newsrelay.core.config import DedupConfig
from newsrelay.core.models import CandidateItem
from newsrelay.core.ports import StoragePort

LOGGER = logging.getLogger(__name__)


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_for_fingerprint(text: str) -> str:
    """Normalize text for deterministic fingerprinting."""

    return _collapse_whitespace(text).lower()


def compute_fingerprint(title: str, link: str) -> str:
    """Return the content fingerprint for an item.

    Only the normalized title and link take part, so the same story reported
    by two sources (or seen again after a restart) hashes identically.
    """

    payload = f"{normalize_for_fingerprint(title)}|{link.strip()}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_item_marker(title: str, link: str, guid: Optional[str] = None) -> str:
    """Return the identity stored as a source's last-seen marker."""

    if guid:
        payload = guid.strip()
    else:
        payload = f"{title}|{link}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class Deduplicator:
    """Recency cache in front of the persistent seen-set.

    The store is the source of truth; the in-memory set only saves lookups
    for fingerprints seen recently by this process.
    """

    def __init__(
        self,
        storage: StoragePort,
        config: Optional[DedupConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._storage = storage
        self._config = config or DedupConfig()
        self._clock = clock
        # dict keeps insertion order, which drives eviction.
        self._recent: dict[str, None] = {}
        self._last_reset = clock()
        self._cleanup_tasks: set[asyncio.Task] = set()

    async def is_duplicate(self, item: CandidateItem) -> bool:
        """Return True when the item's fingerprint was seen before."""

        try:
            if item.fingerprint in self._recent:
                LOGGER.info("Duplicate in memory cache: %s (%s)", item.title, item.fingerprint)
                return True

            if self._storage.is_seen(item.fingerprint):
                LOGGER.info("Duplicate in store: %s (%s)", item.title, item.fingerprint)
                self._remember(item.fingerprint)
                return True

            self._remember(item.fingerprint)
            self._maybe_reset()
            return False
        except Exception:
            # Suppression is best-effort; the durable mark at acceptance time
            # is what keeps delivery idempotent.
            LOGGER.exception("Duplicate check failed for %s (%s)", item.title, item.fingerprint)
            return False

    async def filter_duplicates(self, items: Iterable[CandidateItem]) -> list[CandidateItem]:
        """Return only the items that were not seen before, in input order."""

        items = list(items)
        unique: list[CandidateItem] = []
        for item in items:
            if not await self.is_duplicate(item):
                unique.append(item)

        LOGGER.info(
            "Duplicate filtering: %s in, %s unique, %s dropped",
            len(items),
            len(unique),
            len(items) - len(unique),
        )
        return unique

    def _remember(self, fingerprint: str) -> None:
        self._recent[fingerprint] = None
        capacity = self._config.memory_capacity
        if len(self._recent) <= capacity:
            return

        to_remove = max(1, int(capacity * self._config.evict_fraction))
        for stale in list(self._recent)[:to_remove]:
            del self._recent[stale]
        LOGGER.info("Evicted %s fingerprints from memory cache (%s left)", to_remove, len(self._recent))

    def _maybe_reset(self) -> None:
        now = self._clock()
        if now - self._last_reset <= self._config.reset_hours * 3600:
            return

        self._last_reset = now
        cleared = len(self._recent)
        self._recent.clear()
        LOGGER.info("Periodic dedup reset cleared %s fingerprints", cleared)
        self._spawn_retention_cleanup()

    def _spawn_retention_cleanup(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.warning("No running event loop, skipping retention cleanup")
            return
        task = loop.create_task(self._retention_cleanup())
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _retention_cleanup(self) -> None:
        try:
            removed = await asyncio.to_thread(
                self._storage.retention_cleanup, self._config.retention_days
            )
            LOGGER.info("Retention cleanup removed %s seen items", removed)
        except Exception:
            LOGGER.exception("Retention cleanup failed")

    def cache_stats(self) -> dict:
        return {
            "recent_fingerprints": len(self._recent),
            "capacity": self._config.memory_capacity,
            "seconds_since_reset": int(self._clock() - self._last_reset),
        }

    def clear_cache(self) -> None:
        self._recent.clear()
        LOGGER.info("Dedup memory cache cleared manually")
