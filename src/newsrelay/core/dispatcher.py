"""Paced, batched delivery of accepted items to one destination."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from newsrelay.core.batching import chunked
from newsrelay.core.config import DispatchConfig
from newsrelay.core.errors import DeliveryError, DeliveryNotReady
from newsrelay.core.models import CandidateItem, Destination, DispatchReport
from newsrelay.core.ports import DeliveryPort

LOGGER = logging.getLogger(__name__)


class Dispatcher:
    """Sends items in order, one at a time, with retry per item.

    A failed item is counted and skipped; it never aborts the rest of the
    dispatch. Partial delivery is an accepted outcome.
    """

    def __init__(
        self,
        delivery: DeliveryPort,
        config: Optional[DispatchConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._delivery = delivery
        self._config = config or DispatchConfig()
        self._sleep = sleep

    async def dispatch(self, destination: Destination, items: Sequence[CandidateItem]) -> DispatchReport:
        if not self._delivery.is_ready():
            raise DeliveryNotReady("Delivery channel is not connected")
        if not destination.address:
            raise ValueError(f"Destination {destination.id} has no address")

        report = DispatchReport(destination_id=destination.id)
        if not items:
            LOGGER.info("Nothing to dispatch for %s", destination.id)
            return report

        batches = list(chunked(list(items), self._config.batch_size))
        LOGGER.info(
            "Dispatching %s items to %s in %s batches",
            len(items),
            destination.id,
            len(batches),
        )

        sent = 0
        for index, batch in enumerate(batches, start=1):
            LOGGER.info("Batch %s/%s (%s items)", index, len(batches), len(batch))
            for item in batch:
                sent += 1
                try:
                    await self._send_with_retry(destination.address, item)
                    report.posted += 1
                except DeliveryError as exc:
                    report.failed += 1
                    report.failures.append(f"{item.title}: {exc}")
                    LOGGER.error("Giving up on %s for %s: %s", item.link, destination.id, exc)
                if sent < len(items):
                    await self._sleep(self._config.item_delay_seconds)
            if index < len(batches):
                await self._sleep(self._config.batch_delay_seconds)

        LOGGER.info(
            "Dispatch to %s finished: %s posted, %s failed",
            destination.id,
            report.posted,
            report.failed,
        )
        if report.failed:
            LOGGER.warning(
                "%s of %s items failed for %s (success rate %s%%)",
                report.failed,
                report.total,
                destination.id,
                round(report.posted / report.total * 100),
            )
        return report

    async def _send_with_retry(self, address: str, item: CandidateItem) -> None:
        attempts = self._config.max_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                await self._delivery.send(address, item)
                LOGGER.info("Posted %s to %s (attempt %s)", item.title, address, attempt)
                return
            except Exception as exc:
                last_error = exc
                LOGGER.warning(
                    "Delivery attempt %s/%s failed for %s: %s",
                    attempt,
                    attempts,
                    item.title,
                    exc,
                )
                if attempt < attempts:
                    await self._sleep(2**attempt)

        raise DeliveryError(f"failed after {attempts} attempts: {last_error}") from last_error
