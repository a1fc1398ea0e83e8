from __future__ import annotations

import asyncio

import pytest

from fakes import FakeDelivery, RecordingSleep, make_item

from newsrelay.core.config import DispatchConfig
from newsrelay.core.dispatcher import Dispatcher
from newsrelay.core.errors import DeliveryNotReady
from newsrelay.core.models import Destination

DESTINATION = Destination(id="dest-1", address="@newsroom")


def _dispatcher(delivery: FakeDelivery, config=None) -> tuple[Dispatcher, RecordingSleep]:
    sleep = RecordingSleep()
    return Dispatcher(delivery, config, sleep=sleep), sleep


def test_failed_item_does_not_stop_the_rest() -> None:
    delivery = FakeDelivery(fail_titles={"Story 4": 99})
    dispatcher, _ = _dispatcher(delivery)
    items = [make_item(index) for index in range(1, 8)]

    report = asyncio.run(dispatcher.dispatch(DESTINATION, items))

    assert report.posted == 6
    assert report.failed == 1
    assert report.total == 7
    assert [title for _, title in delivery.sent] == [
        "Story 1", "Story 2", "Story 3", "Story 5", "Story 6", "Story 7",
    ]
    assert delivery.attempts.count("Story 4") == 3
    assert report.failures[0].startswith("Story 4:")


def test_retry_recovers_transient_failure() -> None:
    delivery = FakeDelivery(fail_titles={"Story 1": 1})
    dispatcher, sleep = _dispatcher(delivery)

    report = asyncio.run(dispatcher.dispatch(DESTINATION, [make_item(1)]))

    assert report.posted == 1
    assert report.failed == 0
    assert sleep.delays == [2]


def test_pacing_between_items_and_batches() -> None:
    delivery = FakeDelivery()
    config = DispatchConfig(batch_size=2, item_delay_seconds=1.0, batch_delay_seconds=2.0)
    dispatcher, sleep = _dispatcher(delivery, config)

    asyncio.run(dispatcher.dispatch(DESTINATION, [make_item(index) for index in range(3)]))

    # item, item, batch gap, item; nothing after the last item
    assert sleep.delays == [1.0, 1.0, 2.0]
    assert [address for address, _ in delivery.sent] == ["@newsroom"] * 3


def test_not_ready_channel_raises() -> None:
    dispatcher, _ = _dispatcher(FakeDelivery(ready=False))
    with pytest.raises(DeliveryNotReady):
        asyncio.run(dispatcher.dispatch(DESTINATION, [make_item(1)]))


def test_destination_without_address_raises() -> None:
    dispatcher, _ = _dispatcher(FakeDelivery())
    with pytest.raises(ValueError):
        asyncio.run(dispatcher.dispatch(Destination(id="dest-2", address=None), [make_item(1)]))


def test_empty_dispatch_sends_nothing() -> None:
    delivery = FakeDelivery()
    dispatcher, sleep = _dispatcher(delivery)
    report = asyncio.run(dispatcher.dispatch(DESTINATION, []))
    assert report.total == 0
    assert delivery.sent == []
    assert sleep.delays == []
