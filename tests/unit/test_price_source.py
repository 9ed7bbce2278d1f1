"""
Tests for the HTTP price source.
"""
from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from trailguard.data.price_source import JupiterPriceSource, parse_price

MINT = "So11111111111111111111111111111111111111112"


class TestParsePrice:

    def test_string_price(self):
        assert parse_price({"data": {MINT: {"id": MINT, "price": "142.3512"}}}, MINT) == Decimal("142.3512")

    def test_numeric_price(self):
        assert parse_price({"data": {MINT: {"price": 0.5}}}, MINT) == Decimal("0.5")

    @pytest.mark.parametrize("payload", [
        None,
        [],
        {},
        {"data": None},
        {"data": {}},
        {"data": {MINT: None}},
        {"data": {MINT: {}}},
        {"data": {MINT: {"price": "abc"}}},
        {"data": {MINT: {"price": "0"}}},
        {"data": {MINT: {"price": "-1"}}},
        {"data": {MINT: {"price": "NaN"}}},
        {"data": {MINT: {"price": True}}},
    ])
    def test_unusable_payloads(self, payload):
        assert parse_price(payload, MINT) is None

    def test_other_token_only(self):
        assert parse_price({"data": {"OtherMint": {"price": "1"}}}, MINT) is None


@pytest.fixture
def price_app():
    responses = {}

    async def handler(request):
        status, body = responses.get(request.query.get("ids"), (200, {"data": {}}))
        if isinstance(body, str):
            return web.Response(status=status, text=body)
        return web.json_response(body, status=status)

    app = web.Application()
    app.router.add_get("/price", handler)
    return app, responses


@pytest.mark.asyncio
async def test_get_price_over_http(price_app):
    app, responses = price_app
    responses[MINT] = (200, {"data": {MINT: {"price": "1.25"}}})
    responses["BadMint"] = (500, "oops")
    responses["HtmlMint"] = (200, "<html>")

    server = TestServer(app)
    await server.start_server()
    source = JupiterPriceSource(base_url=str(server.make_url("/price")), timeout_seconds=2)
    try:
        assert await source.get_price(MINT) == Decimal("1.25")
        assert await source.get_price("BadMint") is None
        assert await source.get_price("HtmlMint") is None
        assert await source.get_price("UnknownMint") is None
    finally:
        await source.close()
        await server.close()


@pytest.mark.asyncio
async def test_unreachable_host_is_none():
    source = JupiterPriceSource(base_url="http://127.0.0.1:1/price", timeout_seconds=1)
    try:
        assert await source.get_price(MINT) is None
    finally:
        await source.close()
