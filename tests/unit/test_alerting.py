"""
Tests for notifiers.
"""
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from trailguard.config.config import TelegramConfig
from trailguard.monitoring.alerting import (
    LogNotifier,
    TelegramNotifier,
    build_inline_keyboard,
    build_notifier,
)


def test_inline_keyboard_callback_and_url_buttons():
    markup = build_inline_keyboard([
        [("🔴 SELL NOW", "sell_p1"), ("🔵 CANCEL", "cancel_p1")],
        [("Chart", "https://dexscreener.com/solana/MintA")],
    ])

    assert markup == {
        "inline_keyboard": [
            [{"text": "🔴 SELL NOW", "callback_data": "sell_p1"}, {"text": "🔵 CANCEL", "callback_data": "cancel_p1"}],
            [{"text": "Chart", "url": "https://dexscreener.com/solana/MintA"}],
        ]
    }


def test_build_notifier_selection():
    assert isinstance(build_notifier(TelegramConfig(enabled=False, bot_token="x")), LogNotifier)
    assert isinstance(build_notifier(TelegramConfig(enabled=True, bot_token=None)), LogNotifier)
    assert isinstance(build_notifier(TelegramConfig(enabled=True, bot_token="123:abc")), TelegramNotifier)


@pytest.mark.asyncio
async def test_log_notifier_never_raises():
    await LogNotifier().send("1", "hello", [[("A", "a")]])


@pytest.mark.asyncio
async def test_telegram_notifier_posts_send_message():
    received = []
    statuses = [200, 429]

    async def send_message(request):
        received.append((request.match_info["token"], await request.json()))
        return web.json_response({"ok": True}, status=statuses.pop(0))

    app = web.Application()
    app.router.add_post("/bot{token}/sendMessage", send_message)
    server = TestServer(app)
    await server.start_server()
    notifier = TelegramNotifier("123:abc", api_base=str(server.make_url("/")), timeout_seconds=2)
    try:
        await notifier.send("1001", "status", [[("🔴 SELL NOW", "sell_p1")]])
        # Rate limited: logged, not raised
        await notifier.send("1001", "plain")
    finally:
        await notifier.close()
        await server.close()

    token, body = received[0]
    assert token == "123:abc"
    assert body["chat_id"] == "1001"
    assert body["reply_markup"]["inline_keyboard"][0][0]["callback_data"] == "sell_p1"
    assert "reply_markup" not in received[1][1]


@pytest.mark.asyncio
async def test_telegram_notifier_swallows_transport_errors():
    notifier = TelegramNotifier("t", api_base="http://127.0.0.1:1", timeout_seconds=1)
    try:
        await notifier.send("1", "hello")
    finally:
        await notifier.close()
