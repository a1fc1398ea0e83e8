from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from newsrelay.core.dedup import compute_fingerprint
from newsrelay.core.errors import DeliveryError, SourceFetchError
from newsrelay.core.models import CandidateItem, Destination, ExclusionRule, RawItem, Source

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_item(index: int, title: Optional[str] = None, body: str = "body") -> CandidateItem:
    title = title or f"Story {index}"
    link = f"https://example.com/{index}"
    return CandidateItem(
        id=f"item-{index}",
        source_id="src-1",
        title=title,
        body=body,
        link=link,
        published_at=NOW,
        fingerprint=compute_fingerprint(title, link),
        source_name="Example",
    )


class FakeStorage:
    def __init__(self) -> None:
        self.seen: dict[str, CandidateItem] = {}
        self.preseen: set[str] = set()
        self.destinations: dict[str, Destination] = {}
        self.destination_updates: list[tuple[str, dict]] = []
        self.sources: dict[str, Source] = {}
        self.markers: dict[str, str] = {}
        self.rules: list[ExclusionRule] = []
        self.cleanups: list[int] = []
        self.fail_destinations = False
        self.is_seen_calls = 0

    def is_seen(self, fingerprint: str) -> bool:
        self.is_seen_calls += 1
        return fingerprint in self.seen or fingerprint in self.preseen

    def mark_seen(self, item: CandidateItem) -> None:
        self.seen.setdefault(item.fingerprint, item)

    def retention_cleanup(self, days: int = 30) -> int:
        self.cleanups.append(days)
        return 0

    def get_destinations(self) -> list[Destination]:
        if self.fail_destinations:
            raise RuntimeError("database is locked")
        return list(self.destinations.values())

    def update_destination(self, destination_id: str, **fields) -> None:
        self.destination_updates.append((destination_id, fields))

    def add_source(self, url: str, name: str) -> Source:
        source = Source(id=f"src-{len(self.sources) + 1}", url=url, name=name)
        self.sources[source.id] = source
        return source

    def remove_source(self, source_id: str) -> bool:
        return self.sources.pop(source_id, None) is not None

    def list_sources(self, active_only: bool = True) -> list[Source]:
        return [s for s in self.sources.values() if s.is_active or not active_only]

    def update_source_marker(self, source_id: str, marker: str) -> None:
        self.markers[source_id] = marker

    def add_exclusion_rule(self, keyword: str) -> ExclusionRule:
        rule = ExclusionRule(id=f"rule-{len(self.rules) + 1}", keyword=keyword)
        self.rules.append(rule)
        return rule

    def remove_exclusion_rule(self, rule_id: str) -> bool:
        before = len(self.rules)
        self.rules = [rule for rule in self.rules if rule.id != rule_id]
        return len(self.rules) < before

    def list_exclusion_rules(self, active_only: bool = True) -> list[ExclusionRule]:
        return [rule for rule in self.rules if rule.is_active or not active_only]


class FakeReader:
    """Serves canned feeds; a url mapped to an int fails that many times first."""

    def __init__(self, feeds: dict[str, list[RawItem]], failures: Optional[dict[str, int]] = None) -> None:
        self.feeds = feeds
        self.failures = dict(failures or {})
        self.calls: list[str] = []
        self.delay = 0.0

    async def fetch(self, uri: str) -> list[RawItem]:
        self.calls.append(uri)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures.get(uri, 0) > 0:
            self.failures[uri] -= 1
            raise SourceFetchError(f"boom {uri}")
        return list(self.feeds.get(uri, []))


class FakeClassifier:
    def __init__(self, response: Optional[str] = None) -> None:
        self.response = response
        self.prompts: list[str] = []

    async def classify(self, prompt: str) -> Optional[str]:
        self.prompts.append(prompt)
        return self.response


class FakeDelivery:
    def __init__(self, fail_titles: Optional[dict[str, int]] = None, ready: bool = True) -> None:
        # title -> number of failing attempts (a large number means always)
        self.fail_titles = dict(fail_titles or {})
        self.ready = ready
        self.sent: list[tuple[str, str]] = []
        self.attempts: list[str] = []

    def is_ready(self) -> bool:
        return self.ready

    async def send(self, address: str, item: CandidateItem) -> None:
        self.attempts.append(item.title)
        if self.fail_titles.get(item.title, 0) > 0:
            self.fail_titles[item.title] -= 1
            raise DeliveryError(f"cannot post {item.title}")
        self.sent.append((address, item.title))


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
