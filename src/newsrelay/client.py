"""Factories for the Telegram client and the configured delivery channel."""

from __future__ import annotations

import logging
import os
from typing import Union

from dotenv import load_dotenv
from telethon import TelegramClient

from newsrelay.adapters.telegram_bot_delivery import TelegramBotDeliveryChannel
from newsrelay.adapters.telegram_delivery import TelethonDeliveryChannel

LOGGER = logging.getLogger(__name__)

DeliveryChannel = Union[TelethonDeliveryChannel, TelegramBotDeliveryChannel]


def build_client() -> TelegramClient:
    """Create a Telethon client from API_ID/API_HASH/SESSION_NAME."""

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "newsrelay")

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    LOGGER.info("Initializing Telegram client (session %s)", session_name)
    return TelegramClient(session_name, int(api_id), api_hash)


def build_delivery_channel(method: str, snippet_chars: int) -> DeliveryChannel:
    """Select the delivery adapter so the core stays unaware of Telegram details."""

    if method == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when delivery.method=bot")
        return TelegramBotDeliveryChannel(bot_token, snippet_chars=snippet_chars)
    if method == "telethon":
        return TelethonDeliveryChannel(build_client(), snippet_chars=snippet_chars)
    raise RuntimeError("delivery.method must be 'telethon' or 'bot'")
