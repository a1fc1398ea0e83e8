from __future__ import annotations

import asyncio
from datetime import timedelta

from fakes import NOW, FakeClassifier, FakeDelivery, FakeReader, FakeStorage, RecordingSleep

from newsrelay.core.config import FilterConfig
from newsrelay.core.dedup import Deduplicator, compute_fingerprint
from newsrelay.core.dispatcher import Dispatcher
from newsrelay.core.errors import DeliveryNotReady
from newsrelay.core.filter_queue import FilterQueue
from newsrelay.core.filtering import FilterManager
from newsrelay.core.models import Destination, FilterDecision, RawItem
from newsrelay.core.poller import Poller
from newsrelay.core.scheduler import Scheduler, is_due
from newsrelay.core.stats import FilterStats

FEED = "https://feeds.example.com/rss"
ACCEPT = '{"decision": true, "confidence": 88, "reason": "Relevant", "category": "Science"}'


def _raw(title: str, index: int) -> RawItem:
    return RawItem(
        title=title,
        body="body",
        link=f"https://example.com/{index}",
        published_at=NOW,
        guid=f"guid-{index}",
    )


class Harness:
    def __init__(
        self,
        feed: list[RawItem],
        response: str = ACCEPT,
        item_filter=None,
        timeout: float = 30.0,
        dispatcher=None,
    ) -> None:
        self.storage = FakeStorage()
        self.storage.add_source(FEED, "Example")
        self.reader = FakeReader({FEED: feed})
        self.classifier = FakeClassifier(response)
        self.delivery = FakeDelivery()
        self.stats = FilterStats()
        deduplicator = Deduplicator(self.storage)
        self.scheduler = Scheduler(
            storage=self.storage,
            poller=Poller(self.reader, self.storage, deduplicator, sleep=RecordingSleep(), clock=lambda: NOW),
            filter_queue=FilterQueue(item_filter or FilterManager(self.storage, self.classifier)),
            dispatcher=dispatcher or Dispatcher(self.delivery, sleep=RecordingSleep()),
            deduplicator=deduplicator,
            filter_config=FilterConfig(timeout_seconds=timeout),
            stats=self.stats,
            clock=lambda: NOW,
        )

    def add_destination(self, destination_id: str, last_updated=None, interval: int = 2, address="@news") -> None:
        self.storage.destinations[destination_id] = Destination(
            id=destination_id,
            address=address,
            poll_interval_hours=interval,
            last_updated=last_updated,
        )

    def run(self) -> None:
        asyncio.run(self.scheduler.run_once())


def test_destination_cadence() -> None:
    assert is_due(Destination(id="d", address="@news"), NOW)
    recent = Destination(id="d", address="@news", poll_interval_hours=2, last_updated=NOW - timedelta(minutes=90))
    stale = Destination(id="d", address="@news", poll_interval_hours=2, last_updated=NOW - timedelta(minutes=130))
    assert not is_due(recent, NOW)
    assert is_due(stale, NOW)


def test_naive_last_updated_is_treated_as_utc() -> None:
    naive = (NOW - timedelta(hours=3)).replace(tzinfo=None)
    assert is_due(Destination(id="d", address="@news", last_updated=naive), NOW)


def test_full_cycle_filters_marks_and_dispatches() -> None:
    harness = Harness([_raw("New telescope images", 1), _raw("Sports roundup", 2)])
    harness.storage.add_exclusion_rule("sports")
    harness.add_destination("dest-1")

    harness.run()

    assert harness.delivery.sent == [("@news", "New telescope images")]
    stored = harness.storage.seen[compute_fingerprint("New telescope images", "https://example.com/1")]
    assert stored.category == "Science"
    assert len(harness.storage.seen) == 1
    assert harness.storage.destination_updates == [("dest-1", {"last_updated": NOW})]
    assert len(harness.classifier.prompts) == 1
    snapshot = harness.stats.snapshot()
    assert snapshot["total_processed"] == 2
    assert snapshot["stage_a_rejects"] == 1


def test_no_new_items_touches_only_due_destinations() -> None:
    harness = Harness([])
    harness.add_destination("due")
    harness.add_destination("fresh", last_updated=NOW - timedelta(minutes=30))

    harness.run()

    assert harness.storage.destination_updates == [("due", {"last_updated": NOW})]
    assert harness.delivery.sent == []


def test_nothing_due_skips_polling() -> None:
    harness = Harness([_raw("Story", 1)])
    harness.add_destination("fresh", last_updated=NOW - timedelta(minutes=30))
    harness.run()
    assert harness.reader.calls == []


def test_destinations_without_address_are_ignored() -> None:
    harness = Harness([_raw("Story", 1)])
    harness.add_destination("unset", address=None)
    harness.run()
    assert harness.reader.calls == []
    assert harness.storage.destination_updates == []


def test_filter_timeout_drops_item() -> None:
    class HangingFilter:
        async def should_post_item(self, item):
            await asyncio.sleep(10)

    harness = Harness([_raw("Slow story", 1)], item_filter=HangingFilter(), timeout=0.01)
    harness.add_destination("dest-1")

    harness.run()

    assert harness.delivery.sent == []
    assert harness.storage.seen == {}
    assert harness.stats.snapshot()["errors"] == 1
    assert harness.storage.destination_updates == [("dest-1", {"last_updated": NOW})]


def test_destination_load_failure_aborts_quietly() -> None:
    harness = Harness([_raw("Story", 1)])
    harness.storage.fail_destinations = True
    harness.run()
    assert harness.reader.calls == []
    assert not harness.scheduler.is_running


def test_overlapping_run_is_skipped() -> None:
    harness = Harness([_raw("Story", 1)])
    harness.reader.delay = 0.01
    harness.add_destination("dest-1")

    async def scenario() -> None:
        await asyncio.gather(harness.scheduler.run_once(), harness.scheduler.trigger_manual_run())

    asyncio.run(scenario())

    assert harness.reader.calls == [FEED]
    assert harness.delivery.sent == [("@news", "Story")]
    assert len(harness.storage.destination_updates) == 1


def test_status_reports_state() -> None:
    harness = Harness([])
    status = harness.scheduler.status()
    assert status["is_running"] is False
    assert status["is_scheduled"] is False
    assert status["queue_length"] == 0
    assert status["filter_stats"]["total_processed"] == 0


def test_source_load_failure_aborts_quietly() -> None:
    harness = Harness([_raw("Story", 1)])
    harness.add_destination("dest-1")

    def locked(active_only: bool = True):
        raise RuntimeError("database is locked")

    harness.storage.list_sources = locked

    harness.run()

    assert harness.reader.calls == []
    assert harness.delivery.sent == []
    assert harness.storage.destination_updates == []
    assert not harness.scheduler.is_running


def test_failing_destination_does_not_block_the_next() -> None:
    class DroppedChannelDispatcher(Dispatcher):
        async def dispatch(self, destination, items):
            if destination.id == "broken":
                raise DeliveryNotReady("channel dropped")
            return await super().dispatch(destination, items)

    delivery = FakeDelivery()
    harness = Harness(
        [_raw("Story", 1)],
        dispatcher=DroppedChannelDispatcher(delivery, sleep=RecordingSleep()),
    )
    harness.add_destination("broken", address="@broken")
    harness.add_destination("healthy", address="@healthy")

    harness.run()

    assert delivery.sent == [("@healthy", "Story")]
    assert harness.storage.destination_updates == [("healthy", {"last_updated": NOW})]


def test_stop_waits_for_abandoned_filter_calls() -> None:
    class SlowFilter:
        async def should_post_item(self, item):
            await asyncio.sleep(0.05)
            return FilterDecision(accept=True, reason="late")

    harness = Harness([_raw("Slow story", 1)], item_filter=SlowFilter(), timeout=0.04)
    harness.add_destination("dest-1")

    async def scenario() -> tuple[bool, bool]:
        await harness.scheduler.run_once()
        busy = harness.scheduler.status()["filtering"]
        await harness.scheduler.stop()
        return busy, harness.scheduler.status()["filtering"]

    busy_after_cycle, busy_after_stop = asyncio.run(scenario())

    assert busy_after_cycle is True
    assert busy_after_stop is False
    assert harness.delivery.sent == []
