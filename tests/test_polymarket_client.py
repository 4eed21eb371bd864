import httpx
import pytest
import respx

from polymarket_mcp.errors import PolymarketApiError, PolymarketNotFound
from polymarket_mcp.polymarket import PolymarketClient

GAMMA = "https://gamma.test"
DATA = "https://data.test"


@pytest.mark.asyncio
@respx.mock
async def test_search_markets_builds_query() -> None:
    """Unset filters are dropped, booleans are lowercased and minimums use the Gamma names."""
    route = respx.get(f"{GAMMA}/markets").mock(return_value=httpx.Response(200, json=[{"slug": "a"}]))
    async with PolymarketClient(gamma_base=GAMMA, data_base=DATA) as c:
        markets = await c.search_markets(limit=5, closed=False, volume_min=1000, order="volume24hr")

    assert markets == [{"slug": "a"}]
    params = route.calls.last.request.url.params
    assert params["limit"] == "5"
    assert params["closed"] == "false"
    assert params["volume_num_min"] == "1000"
    assert params["order"] == "volume24hr"
    assert "offset" not in params
    assert "ascending" not in params


@pytest.mark.asyncio
@respx.mock
async def test_get_market_by_slug() -> None:
    """get_market fetches /markets/slug/{slug}."""
    respx.get(f"{GAMMA}/markets/slug/will-btc-hit-100k").mock(
        return_value=httpx.Response(200, json={"slug": "will-btc-hit-100k", "question": "BTC 100k?"})
    )
    async with PolymarketClient(gamma_base=GAMMA, data_base=DATA) as c:
        market = await c.get_market("will-btc-hit-100k")
    assert market["question"] == "BTC 100k?"


@pytest.mark.asyncio
@respx.mock
async def test_get_market_not_found() -> None:
    """A 404 for a slug lookup is PolymarketNotFound with a readable message."""
    respx.get(f"{GAMMA}/markets/slug/nope").mock(return_value=httpx.Response(404))
    async with PolymarketClient(gamma_base=GAMMA, data_base=DATA) as c:
        with pytest.raises(PolymarketNotFound, match="Market not found: nope") as info:
            await c.get_market("nope")
    assert info.value.status_code == 404


@pytest.mark.asyncio
@respx.mock
async def test_get_event_not_found() -> None:
    """Event slugs resolve the same way as market slugs."""
    respx.get(f"{GAMMA}/events/slug/missing").mock(return_value=httpx.Response(404))
    async with PolymarketClient(gamma_base=GAMMA, data_base=DATA) as c:
        with pytest.raises(PolymarketNotFound, match="Event not found: missing"):
            await c.get_event("missing")


@pytest.mark.asyncio
@respx.mock
async def test_server_error_is_api_error() -> None:
    """Non-success statuses carry the status code and reason."""
    respx.get(f"{GAMMA}/events").mock(return_value=httpx.Response(503))
    async with PolymarketClient(gamma_base=GAMMA, data_base=DATA) as c:
        with pytest.raises(PolymarketApiError, match="Polymarket API error: 503 Service Unavailable") as info:
            await c.search_events(featured=True)
    assert info.value.status_code == 503


@pytest.mark.asyncio
@respx.mock
async def test_network_failure_is_api_error() -> None:
    """Transport errors are wrapped so callers only handle PolymarketApiError."""
    respx.get(f"{GAMMA}/tags").mock(side_effect=httpx.ConnectError("boom"))
    async with PolymarketClient(gamma_base=GAMMA, data_base=DATA) as c:
        with pytest.raises(PolymarketApiError, match="request failed"):
            await c.list_tags(limit=10)


@pytest.mark.asyncio
@respx.mock
async def test_get_trades_uses_data_api() -> None:
    """Trades come from the Data API with the eventId parameter name."""
    route = respx.get(f"{DATA}/trades").mock(return_value=httpx.Response(200, json=[]))
    async with PolymarketClient(gamma_base=GAMMA, data_base=DATA) as c:
        assert await c.get_trades(limit=20, event_id="123", side="BUY") == []
    params = route.calls.last.request.url.params
    assert params["eventId"] == "123"
    assert params["side"] == "BUY"
    assert "market" not in params


@pytest.mark.asyncio
@respx.mock
async def test_trades_error_names_data_api() -> None:
    respx.get(f"{DATA}/trades").mock(return_value=httpx.Response(500))
    async with PolymarketClient(gamma_base=GAMMA, data_base=DATA) as c:
        with pytest.raises(PolymarketApiError, match="Polymarket Data API error: 500"):
            await c.get_trades(market="0xabc")
