"""RSS/Atom source reader.

Fetches over aiohttp and parses with feedparser. Everything that goes wrong
on the way (HTTP status, network, timeout, unparseable body) surfaces as
SourceFetchError so the poller can retry and isolate it.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

import aiohttp
import feedparser
from bs4 import BeautifulSoup

from newsrelay.core.errors import SourceFetchError
from newsrelay.core.models import RawItem

LOGGER = logging.getLogger(__name__)

USER_AGENT = "newsrelay/0.1 (+feed poller)"
MAX_TEXT_CHARS = 2000

_WS_RE = re.compile(r"\s+")


def sanitize_text(text: Optional[str], limit: int = MAX_TEXT_CHARS) -> str:
    """Strip markup and entities, collapse whitespace and clip.

    Adjacent elements are joined with a space.
    """

    if not text:
        return ""
    plain = BeautifulSoup(text, "html.parser").get_text(separator=" ")
    return _WS_RE.sub(" ", plain).strip()[:limit]


def _entry_time(entry: Any) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            try:
                return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
            except (OverflowError, ValueError, TypeError):
                LOGGER.debug("Invalid %s on entry %s", key, entry.get("link"))
    return None


def entry_to_raw_item(entry: Any) -> RawItem:
    return RawItem(
        title=sanitize_text(entry.get("title")),
        body=sanitize_text(entry.get("summary") or entry.get("description")),
        link=(entry.get("link") or "").strip(),
        published_at=_entry_time(entry),
        guid=entry.get("id") or None,
    )


class FeedReader:
    """SourceReaderPort implementation backed by one shared aiohttp session."""

    def __init__(self, timeout_seconds: float = 15.0, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"User-Agent": USER_AGENT},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _download(self, uri: str) -> bytes:
        session = await self._get_session()
        try:
            async with session.get(uri) as response:
                if response.status >= 400:
                    raise SourceFetchError(f"HTTP {response.status} for {uri}")
                return await response.read()
        except asyncio.TimeoutError as exc:
            raise SourceFetchError(f"Timed out fetching {uri}") from exc
        except aiohttp.ClientError as exc:
            raise SourceFetchError(f"Network error fetching {uri}: {exc}") from exc

    async def _parse(self, uri: str) -> Any:
        body = await self._download(uri)
        # feedparser is synchronous but fast on an in-memory body.
        parsed = feedparser.parse(body)
        if parsed.get("bozo") and not parsed.entries:
            raise SourceFetchError(f"Unparseable feed at {uri}: {parsed.get('bozo_exception')}")
        return parsed

    async def fetch(self, uri: str) -> list[RawItem]:
        parsed = await self._parse(uri)
        items = [entry_to_raw_item(entry) for entry in parsed.entries]
        LOGGER.debug("Fetched %s entries from %s", len(items), uri)
        return items

    async def validate(self, uri: str) -> dict:
        """Check that a URL serves a usable feed before it is added."""

        if urlparse(uri).scheme not in {"http", "https"}:
            raise SourceFetchError("URL must use http or https")
        parsed = await self._parse(uri)
        title = sanitize_text(parsed.feed.get("title"))
        if not title:
            raise SourceFetchError("Feed has no title")
        return {
            "title": title,
            "description": sanitize_text(parsed.feed.get("subtitle")) or "No description",
            "item_count": len(parsed.entries),
        }
