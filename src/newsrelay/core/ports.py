"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, source reading,
classification and delivery so that the core can be reused with different
backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from newsrelay.core.models import CandidateItem, Destination, ExclusionRule, RawItem, Source


class StoragePort(Protocol):
    """Storage operations required by the core pipeline.

    Every method raises StoreUnavailable when the backing store has not
    been initialized.
    """

    def is_seen(self, fingerprint: str) -> bool:
        ...

    def mark_seen(self, item: CandidateItem) -> None:
        ...

    def retention_cleanup(self, days: int = 30) -> int:
        ...

    def get_destinations(self) -> list[Destination]:
        ...

    def update_destination(
        self,
        destination_id: str,
        *,
        address: Optional[str] = None,
        poll_interval_hours: Optional[int] = None,
        last_updated: Optional[datetime] = None,
    ) -> None:
        ...

    def add_source(self, url: str, name: str) -> Source:
        ...

    def remove_source(self, source_id: str) -> bool:
        ...

    def list_sources(self, active_only: bool = True) -> list[Source]:
        ...

    def update_source_marker(self, source_id: str, marker: str) -> None:
        ...

    def add_exclusion_rule(self, keyword: str) -> ExclusionRule:
        ...

    def remove_exclusion_rule(self, rule_id: str) -> bool:
        ...

    def list_exclusion_rules(self, active_only: bool = True) -> list[ExclusionRule]:
        ...


class SourceReaderPort(Protocol):
    """Fetches a source and returns its items in provider order."""

    async def fetch(self, uri: str) -> list[RawItem]:
        ...


class ClassifierPort(Protocol):
    """Remote text classifier. Returns None when no answer is available."""

    async def classify(self, prompt: str) -> Optional[str]:
        ...


class DeliveryPort(Protocol):
    """Delivery channel for accepted items."""

    def is_ready(self) -> bool:
        ...

    async def send(self, address: str, item: CandidateItem) -> None:
        ...
