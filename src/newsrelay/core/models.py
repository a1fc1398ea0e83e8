"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

MIN_POLL_INTERVAL_HOURS = 1
MAX_POLL_INTERVAL_HOURS = 168


@dataclass(frozen=True)
class Source:
    """A polled feed. The marker points at the newest item already yielded."""

    id: str
    url: str
    name: str
    last_seen_marker: Optional[str] = None
    is_active: bool = True
    added_at: Optional[datetime] = None


@dataclass(frozen=True)
class RawItem:
    """Provider record as returned by a source reader, never persisted."""

    title: str
    body: str
    link: str
    published_at: Optional[datetime] = None
    guid: Optional[str] = None


@dataclass(frozen=True)
class CandidateItem:
    """A RawItem with its dedup fingerprint and a generated identity."""

    id: str
    source_id: str
    title: str
    body: str
    link: str
    published_at: datetime
    fingerprint: str
    source_name: str = ""
    category: Optional[str] = None


@dataclass(frozen=True)
class FilterDecision:
    """Outcome of the two-stage filter for one item."""

    accept: bool
    reason: str
    confidence: Optional[int] = None
    category: Optional[str] = None
    stage: str = "B"
    fallback: bool = False


@dataclass(frozen=True)
class Destination:
    """A delivery target with its own update cadence."""

    id: str
    address: Optional[str]
    poll_interval_hours: int = 2
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class ExclusionRule:
    """A keyword that rejects items in Stage A."""

    id: str
    keyword: str
    is_active: bool = True
    added_at: Optional[datetime] = None


@dataclass
class DispatchReport:
    """Aggregate delivery counts for one dispatch call."""

    destination_id: str
    posted: int = 0
    failed: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.posted + self.failed
