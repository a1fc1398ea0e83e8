"""Remote classifier over an OpenAI-compatible chat completions endpoint.

Any failure returns None; the filter treats that as "no signal".
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class ChatCompletionsClassifier:
    """ClassifierPort implementation."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 25.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def classify(self, prompt: str) -> Optional[str]:
        payload = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        session = await self._get_session()
        try:
            async with session.post(self._url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    LOGGER.error("Classifier HTTP %s: %s", response.status, body[:300])
                    return None
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            LOGGER.error("Classifier request to %s failed: %s", self._model, exc)
            return None

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            LOGGER.error("Classifier response had no content: %r", data)
            return None
        return content.strip() if isinstance(content, str) else None

    async def healthcheck(self) -> bool:
        LOGGER.info("Health-checking classifier model %s", self._model)
        ok = await self.classify("ping") is not None
        if ok:
            LOGGER.info("Classifier %s is reachable", self._model)
        else:
            LOGGER.error("Classifier %s healthcheck failed", self._model)
        return ok
