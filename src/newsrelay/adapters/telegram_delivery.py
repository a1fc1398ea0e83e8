"""Telegram delivery through a logged-in Telethon user client.

Formats a Markdown post and sends it to the destination chat.
"""

from __future__ import annotations

from typing import Union

from telethon import TelegramClient, errors

from newsrelay.adapters.notification_formatting import DEFAULT_SNIPPET_CHARS, format_item
from newsrelay.core.errors import DeliveryError
from newsrelay.core.models import CandidateItem


def resolve_address(address: str) -> Union[str, int]:
    """Numeric chat ids are sent as ints, usernames as-is."""

    candidate = address.strip()
    if candidate.lstrip("-").isdigit():
        return int(candidate)
    return candidate


class TelethonDeliveryChannel:
    """DeliveryPort implementation that posts as the logged-in user."""

    def __init__(self, client: TelegramClient, snippet_chars: int = DEFAULT_SNIPPET_CHARS) -> None:
        self._client = client
        self._snippet_chars = snippet_chars
        self._authorized = False

    async def connect(self) -> None:
        if not self._client.is_connected():
            await self._client.connect()
        self._authorized = await self._client.is_user_authorized()
        if not self._authorized:
            raise DeliveryError("Telegram session is not authorized, run `newsrelay session` first")

    def is_ready(self) -> bool:
        return self._authorized and self._client.is_connected()

    async def send(self, address: str, item: CandidateItem) -> None:
        message = format_item(item, mode="markdown", snippet_chars=self._snippet_chars)
        try:
            await self._client.send_message(
                resolve_address(address),
                message,
                parse_mode="md",
                link_preview=False,
            )
        except (errors.RPCError, ValueError, ConnectionError) as exc:
            raise DeliveryError(f"Telegram send to {address} failed: {exc}") from exc
