"""Telegram Bot API delivery adapter.

Uses the Bot API so posts can be routed through a bot that is a member
(or admin) of the destination chat.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp

from newsrelay.adapters.notification_formatting import DEFAULT_SNIPPET_CHARS, format_item
from newsrelay.core.errors import DeliveryError
from newsrelay.core.models import CandidateItem


class TelegramBotDeliveryChannel:
    """DeliveryPort implementation that sends messages via the Bot API."""

    def __init__(
        self,
        bot_token: str,
        snippet_chars: int = DEFAULT_SNIPPET_CHARS,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._bot_token = bot_token
        self._snippet_chars = snippet_chars
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    async def connect(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def is_ready(self) -> bool:
        return self._session is not None and not self._session.closed

    async def send(self, address: str, item: CandidateItem) -> None:
        """Send the formatted item via the Bot API."""

        if self._session is None:
            raise DeliveryError("Bot API session is not open")
        payload = {
            "chat_id": address,
            "text": format_item(item, mode="html", snippet_chars=self._snippet_chars),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with self._session.post(self._endpoint(), json=payload) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise DeliveryError(f"Bot API error {response.status}: {body}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeliveryError(f"Bot API request failed: {exc}") from exc
