from __future__ import annotations

import json

import httpx
import pytest
import pytest_asyncio
import respx

from bots.keeper.config import DEFAULT_ASSETS
from bots.keeper.price_feed import BinancePriceSource, PriceFeedError
from noether_core.api import HTTPClient

BASE = "https://api.binance.us/api/v3"
TICKER = f"{BASE}/ticker/price"


@pytest_asyncio.fixture
async def source():
    client = HTTPClient(BASE)
    yield BinancePriceSource(client, DEFAULT_ASSETS)
    await client.close()


@pytest.mark.asyncio
@respx.mock
async def test_fetch_prices_maps_feed_symbols(source):
    route = respx.get(TICKER).mock(
        return_value=httpx.Response(
            200,
            json=[
                {"symbol": "BTCUSDT", "price": "97000.12000000"},
                {"symbol": "XLMUSDT", "price": "0.12345670"},
            ],
        )
    )

    prices = await source.fetch_prices(["BTC", "ETH", "XLM"])

    assert prices == {"BTC": 97000.12, "XLM": 0.1234567}
    sent = route.calls.last.request.url.params["symbols"]
    assert json.loads(sent) == ["BTCUSDT", "ETHUSDT", "XLMUSDT"]
    assert " " not in sent


@pytest.mark.asyncio
@respx.mock
async def test_fetch_prices_retries_once_then_succeeds(source):
    route = respx.get(TICKER).mock(
        side_effect=[
            httpx.Response(503),
            httpx.Response(200, json=[{"symbol": "ETHUSDT", "price": "3500"}]),
        ]
    )

    assert await source.fetch_prices() == {"ETH": 3500.0}
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_fetch_prices_raises_for_whole_set(source):
    respx.get(TICKER).mock(side_effect=httpx.ConnectError("down"))

    with pytest.raises(PriceFeedError):
        await source.fetch_prices()


@pytest.mark.asyncio
@respx.mock
async def test_fetch_prices_rejects_non_json_body(source):
    respx.get(TICKER).mock(return_value=httpx.Response(200, text="<html>"))
    with pytest.raises(PriceFeedError):
        await source.fetch_prices()


@pytest.mark.asyncio
@respx.mock
async def test_fetch_prices_rejects_error_payload(source):
    respx.get(TICKER).mock(return_value=httpx.Response(200, json={"code": -1121}))
    with pytest.raises(PriceFeedError):
        await source.fetch_prices()


@pytest.mark.asyncio
async def test_fetch_prices_with_no_matching_symbols_skips_request(source):
    assert await source.fetch_prices(["DOGE"]) == {}
