"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DedupConfig:
    """Deduplication settings for the in-memory recency cache."""

    memory_capacity: int = 10_000
    evict_fraction: float = 0.1
    reset_hours: int = 24
    retention_days: int = 30


@dataclass(frozen=True)
class PollerConfig:
    """Source polling settings."""

    batch_width: int = 5
    items_per_source: int = 5
    max_attempts: int = 3


@dataclass(frozen=True)
class FilterConfig:
    """Filter queue and classification settings."""

    max_concurrent: int = 3
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class DispatchConfig:
    """Delivery pacing and retry settings consumed by the dispatcher."""

    batch_size: int = 5
    item_delay_seconds: float = 1.0
    batch_delay_seconds: float = 2.0
    max_attempts: int = 3


@dataclass(frozen=True)
class SchedulerConfig:
    """Timer settings for the periodic cycle."""

    interval_minutes: int = 30
