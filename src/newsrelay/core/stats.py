"""Running counters for filter decisions."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

from newsrelay.core.models import FilterDecision

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FilterStatistics:
    total_processed: int = 0
    total_allowed: int = 0
    total_rejected: int = 0
    stage_a_rejects: int = 0
    stage_b_rejects: int = 0
    fallbacks: int = 0
    errors: int = 0
    average_confidence: int = 0
    last_updated: datetime = field(default_factory=_utcnow)


class FilterStats:
    def __init__(self, log_every: int = 50) -> None:
        self._log_every = log_every
        self._stats = FilterStatistics()
        self._confidence_sum = 0
        self._confidence_count = 0

    def record(self, decision: FilterDecision) -> None:
        stats = self._stats
        stats.total_processed += 1
        stats.last_updated = _utcnow()

        if decision.accept:
            stats.total_allowed += 1
        else:
            stats.total_rejected += 1
            if decision.stage == "A":
                stats.stage_a_rejects += 1
            else:
                stats.stage_b_rejects += 1

        if decision.fallback:
            stats.fallbacks += 1

        if decision.confidence is not None:
            self._confidence_sum += decision.confidence
            self._confidence_count += 1
            stats.average_confidence = round(self._confidence_sum / self._confidence_count)

        if self._log_every and stats.total_processed % self._log_every == 0:
            self.log_summary()

    def record_error(self) -> None:
        """Count an item whose filtering failed or timed out."""

        self._stats.errors += 1
        self._stats.last_updated = _utcnow()

    def rejection_rate(self) -> int:
        if not self._stats.total_processed:
            return 0
        return round(self._stats.total_rejected / self._stats.total_processed * 100)

    def stage_a_share(self) -> int:
        """Percentage of rejections decided by keywords alone."""

        if not self._stats.total_rejected:
            return 0
        return round(self._stats.stage_a_rejects / self._stats.total_rejected * 100)

    def snapshot(self) -> dict:
        return asdict(self._stats)

    def reset(self) -> None:
        self._stats = FilterStatistics()
        self._confidence_sum = 0
        self._confidence_count = 0
        LOGGER.info("Filter statistics reset")

    def log_summary(self, logger: Optional[logging.Logger] = None) -> None:
        (logger or LOGGER).info(
            "Filter stats: processed=%s rejected=%s%% stage_a_share=%s%% avg_confidence=%s fallbacks=%s errors=%s",
            self._stats.total_processed,
            self.rejection_rate(),
            self.stage_a_share(),
            self._stats.average_confidence,
            self._stats.fallbacks,
            self._stats.errors,
        )
