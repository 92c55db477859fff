"""Telegram Bot API delivery channel."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dex_buy_tracker.alerter.models import MediaKind, RenderedAlert

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.telegram.org"
DEFAULT_TIMEOUT_SECONDS = 15.0


class TelegramDeliveryError(Exception):
    """Raised when the Bot API rejects or fails a send."""


class TelegramChannel:
    """Sends rendered alerts through the Bot HTTP API.

    Media alerts use sendAnimation / sendPhoto with the text as caption;
    everything else uses sendMessage. Failures raise so the dispatch queue
    can count and log them.

    Example:
        ```python
        channel = TelegramChannel(bot_token)
        await channel.send(-1001234567890, rendered)
        await channel.aclose()
        ```
    """

    def __init__(
        self,
        bot_token: str,
        *,
        api_base_url: str = DEFAULT_API_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._base = f"{api_base_url.rstrip('/')}/bot{bot_token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.sent_count = 0

    @staticmethod
    def _method_and_payload(chat_id: int, alert: RenderedAlert) -> tuple[str, dict[str, Any]]:
        payload: dict[str, Any] = {"chat_id": chat_id, "parse_mode": "HTML"}
        markup = alert.reply_markup()
        if markup is not None:
            payload["reply_markup"] = markup

        if alert.media_kind is MediaKind.ANIMATION and alert.media:
            payload.update(animation=alert.media, caption=alert.text)
            return "sendAnimation", payload
        if alert.media_kind is MediaKind.PHOTO and alert.media:
            payload.update(photo=alert.media, caption=alert.text)
            return "sendPhoto", payload

        payload.update(text=alert.text, disable_web_page_preview=True)
        return "sendMessage", payload

    async def send(self, chat_id: int, alert: RenderedAlert) -> None:
        method, payload = self._method_and_payload(chat_id, alert)
        try:
            response = await self._client.post(f"{self._base}/{method}", json=payload)
        except httpx.HTTPError as e:
            raise TelegramDeliveryError(f"{method} to {chat_id} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code != 200 or not body.get("ok", False):
            description = body.get("description") or response.text[:200]
            raise TelegramDeliveryError(f"{method} to {chat_id} rejected ({response.status_code}): {description}")

        self.sent_count += 1
        logger.info("Alert sent to group %s via %s", chat_id, method)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
