"""Tests for the Telegram delivery channel."""

from __future__ import annotations

import json

import httpx
import pytest

from dex_buy_tracker.alerter.models import InlineButton, MediaKind, RenderedAlert
from dex_buy_tracker.alerter.telegram import TelegramChannel, TelegramDeliveryError

CHAT_ID = -1001234567890


class Recorder:
    """MockTransport handler that records requests and replies with a fixed response."""

    def __init__(self, response: httpx.Response | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.response = response or httpx.Response(200, json={"ok": True, "result": {}})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def _channel(recorder: Recorder) -> TelegramChannel:
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return TelegramChannel("123:ABC", client=client)


class TestTelegramChannel:
    """Tests for TelegramChannel.send."""

    @pytest.mark.asyncio
    async def test_text_alert_uses_send_message(self) -> None:
        recorder = Recorder()
        channel = _channel(recorder)
        alert = RenderedAlert(text="<b>New Buy</b>", buttons=(InlineButton("👥 Join Group", "https://t.me/g"),))

        await channel.send(CHAT_ID, alert)

        request = recorder.requests[0]
        assert request.url.path == "/bot123:ABC/sendMessage"
        body = recorder.last_json()
        assert body["chat_id"] == CHAT_ID
        assert body["text"] == "<b>New Buy</b>"
        assert body["parse_mode"] == "HTML"
        assert body["disable_web_page_preview"] is True
        assert body["reply_markup"] == {"inline_keyboard": [[{"text": "👥 Join Group", "url": "https://t.me/g"}]]}
        assert channel.sent_count == 1

    @pytest.mark.asyncio
    async def test_photo_alert_uses_caption(self) -> None:
        recorder = Recorder()
        channel = _channel(recorder)
        alert = RenderedAlert(text="caption", media_kind=MediaKind.PHOTO, media="https://cdn.example/a.png")

        await channel.send(CHAT_ID, alert)

        assert recorder.requests[0].url.path.endswith("/sendPhoto")
        body = recorder.last_json()
        assert body["photo"] == "https://cdn.example/a.png"
        assert body["caption"] == "caption"
        assert "text" not in body
        assert "reply_markup" not in body

    @pytest.mark.asyncio
    async def test_animation_alert(self) -> None:
        recorder = Recorder()
        channel = _channel(recorder)

        await channel.send(CHAT_ID, RenderedAlert(text="x", media_kind=MediaKind.ANIMATION, media="anim-id"))

        assert recorder.requests[0].url.path.endswith("/sendAnimation")
        assert recorder.last_json()["animation"] == "anim-id"

    @pytest.mark.asyncio
    async def test_api_rejection_raises(self) -> None:
        recorder = Recorder(httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"}))
        channel = _channel(recorder)

        with pytest.raises(TelegramDeliveryError, match="chat not found"):
            await channel.send(CHAT_ID, RenderedAlert(text="x"))
        assert channel.sent_count == 0

    @pytest.mark.asyncio
    async def test_ok_false_with_200_raises(self) -> None:
        recorder = Recorder(httpx.Response(200, json={"ok": False, "description": "blocked"}))
        channel = _channel(recorder)

        with pytest.raises(TelegramDeliveryError):
            await channel.send(CHAT_ID, RenderedAlert(text="x"))

    @pytest.mark.asyncio
    async def test_network_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        channel = TelegramChannel("123:ABC", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(TelegramDeliveryError):
            await channel.send(CHAT_ID, RenderedAlert(text="x"))

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(Recorder()))
        channel = TelegramChannel("123:ABC", client=client)

        await channel.aclose()

        assert not client.is_closed
        await client.aclose()
