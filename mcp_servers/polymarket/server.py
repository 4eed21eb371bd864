"""Polymarket MCP server: read-only market, event, tag and trade lookups."""

import json
import logging
from typing import Annotated, Any, Literal

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations
from pydantic import Field

from polymarket_mcp.errors import PolymarketApiError
from polymarket_mcp.polymarket import PolymarketClient
from polymarket_mcp.polymarket.formatting import (
    format_event_detail,
    format_event_list,
    format_market_analysis,
    format_market_detail,
    format_market_health,
    format_market_list,
    format_probability_analysis,
    format_tag_list,
    format_trade_list,
    format_trades_summary,
)
from polymarket_mcp.settings import get_settings

logger = logging.getLogger("polymarket_mcp.mcp_server")

_settings = get_settings()
_client: PolymarketClient | None = None

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True)


def get_client() -> PolymarketClient:
    global _client
    if _client is None:
        _client = PolymarketClient()
    return _client


class PolymarketFastMCP(FastMCP):
    """FastMCP whose tool failures read ``Error: <message>``.

    FastMCP prefixes a raised ``ToolError`` with "Error executing tool <name>: ";
    the message a tool raised is restored here before it becomes the error result.
    """

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        try:
            return await super().call_tool(name, arguments)
        except ToolError as e:
            if isinstance(e.__cause__, ToolError):
                raise ToolError(f"Error: {e.__cause__}") from e.__cause__
            raise


mcp = PolymarketFastMCP(
    "Polymarket",
    instructions=(
        "Read-only access to Polymarket prediction markets: search markets and "
        "events, inspect probabilities, browse tags and recent trades."
    ),
    host=_settings.mcp_server_host,
    port=_settings.mcp_server_port,
    debug=_settings.mcp_server_debug,
    json_response=True,
)


@mcp.tool(
    title="Search Markets",
    description=(
        "Search Polymarket prediction markets with filters. Find active markets, filter by "
        "tags, volume, liquidity, and more. Perfect for market discovery and analysis."
    ),
    annotations=READ_ONLY,
)
async def search_markets(
    limit: Annotated[int, Field(description="Number of results (max 100)")] = 10,
    offset: Annotated[int, Field(description="Pagination offset")] = 0,
    closed: Annotated[bool | None, Field(description="Filter by closed status (false = only active markets)")] = None,
    tag_id: Annotated[int | None, Field(description="Filter by tag ID (use list_tags to discover)")] = None,
    liquidity_min: Annotated[float | None, Field(description="Minimum liquidity in USD")] = None,
    volume_min: Annotated[float | None, Field(description="Minimum volume in USD")] = None,
    order: Annotated[str | None, Field(description="Field to order by (e.g., 'volume', 'liquidity')")] = None,
    ascending: Annotated[bool | None, Field(description="Sort direction (true = ascending)")] = None,
) -> str:
    try:
        markets = await get_client().search_markets(
            limit=limit,
            offset=offset,
            closed=closed,
            tag_id=tag_id,
            liquidity_min=liquidity_min,
            volume_min=volume_min,
            order=order,
            ascending=ascending,
        )
    except PolymarketApiError as e:
        raise ToolError(str(e)) from e
    return format_market_list(markets)


@mcp.tool(
    title="Get Market Details",
    description=(
        "Get detailed information about a specific market by slug. Returns probabilities, "
        "volume, liquidity, outcomes, and full market data."
    ),
    annotations=READ_ONLY,
)
async def get_market(
    slug: Annotated[str, Field(description="Market slug (from URL or search results)")],
) -> str:
    try:
        market = await get_client().get_market(slug)
    except PolymarketApiError as e:
        raise ToolError(str(e)) from e
    return format_market_detail(market)


@mcp.tool(
    title="Search Events",
    description=(
        "Search Polymarket events. Events group related markets together (e.g., "
        "'Presidential Election 2024' contains multiple markets). Great for discovering "
        "market clusters."
    ),
    annotations=READ_ONLY,
)
async def search_events(
    limit: Annotated[int, Field(description="Number of results (max 100)")] = 10,
    offset: Annotated[int, Field(description="Pagination offset")] = 0,
    closed: Annotated[bool | None, Field(description="Filter by closed status")] = None,
    tag_id: Annotated[int | None, Field(description="Filter by tag ID")] = None,
    featured: Annotated[bool | None, Field(description="Show only featured events")] = None,
    order: Annotated[str | None, Field(description="Field to order by")] = None,
    ascending: Annotated[bool | None, Field(description="Sort direction")] = None,
) -> str:
    try:
        events = await get_client().search_events(
            limit=limit,
            offset=offset,
            closed=closed,
            tag_id=tag_id,
            featured=featured,
            order=order,
            ascending=ascending,
        )
    except PolymarketApiError as e:
        raise ToolError(str(e)) from e
    return format_event_list(events)


@mcp.tool(
    title="Get Event Details",
    description="Get detailed information about a specific event by slug, including all related markets.",
    annotations=READ_ONLY,
)
async def get_event(
    slug: Annotated[str, Field(description="Event slug (from URL or search results)")],
) -> str:
    try:
        event = await get_client().get_event(slug)
    except PolymarketApiError as e:
        raise ToolError(str(e)) from e
    return format_event_detail(event)


@mcp.tool(
    title="List Tags",
    description=(
        "List all available tags/categories for filtering markets and events. Use tag IDs "
        "with search_markets or search_events."
    ),
    annotations=READ_ONLY,
)
async def list_tags(
    limit: Annotated[int, Field(description="Number of tags to return")] = 50,
    offset: Annotated[int, Field(description="Pagination offset")] = 0,
) -> str:
    try:
        tags = await get_client().list_tags(limit=limit, offset=offset)
    except PolymarketApiError as e:
        raise ToolError(str(e)) from e
    return format_tag_list(tags)


@mcp.tool(
    title="Get Recent Trades",
    description=(
        "Get recent trade activity from Polymarket's Data API. Analyze trading patterns, "
        "volume, and market sentiment."
    ),
    annotations=READ_ONLY,
)
async def get_trades(
    limit: Annotated[int, Field(description="Number of trades to fetch (max 100)")] = 20,
    offset: Annotated[int, Field(description="Pagination offset")] = 0,
    market: Annotated[str | None, Field(description="Filter by market condition ID")] = None,
    eventId: Annotated[str | None, Field(description="Filter by event ID")] = None,
    side: Annotated[Literal["BUY", "SELL"] | None, Field(description="Filter by trade side")] = None,
) -> str:
    try:
        trades = await get_client().get_trades(
            limit=limit, offset=offset, market=market, event_id=eventId, side=side
        )
    except PolymarketApiError as e:
        raise ToolError(str(e)) from e
    return format_trade_list(trades)


@mcp.tool(
    title="Analyze Market",
    description=(
        "Get comprehensive market analysis including probabilities, trading activity, and "
        "AI-friendly insights. Combines market data with recent trades."
    ),
    annotations=READ_ONLY,
)
async def analyze_market(
    slug: Annotated[str, Field(description="Market slug to analyze")],
    include_trades: Annotated[bool, Field(description="Include recent trading activity")] = True,
) -> str:
    client = get_client()
    try:
        market = await client.get_market(slug)
    except PolymarketApiError as e:
        raise ToolError(str(e)) from e

    text = format_market_analysis(market)
    probability = format_probability_analysis(market)
    if probability:
        text += f"\n\n{probability}"

    if include_trades and market.get("conditionId"):
        try:
            trades = await client.get_trades(market=market["conditionId"], limit=20)
        except PolymarketApiError as e:
            logger.info("Trades unavailable for %s: %s", slug, e)
            trades = []
        if trades:
            text += f"\n\n{format_trades_summary(trades)}"

    text += f"\n\n{format_market_health(market)}"
    return text


@mcp.prompt(
    name="analyze_market",
    title="Analyze Specific Market",
    description="Get comprehensive analysis of a specific Polymarket prediction market",
)
def analyze_market_prompt(market_slug: str) -> str:
    return (
        f'Please analyze the Polymarket prediction market "{market_slug}". Use the '
        "analyze_market tool to get comprehensive data including probabilities, trading "
        "activity, market health, and sentiment. Provide insights on what the market is "
        "predicting and how confident traders are."
    )


@mcp.prompt(
    name="find_trending",
    title="Find Trending Markets",
    description="Discover the most active and high-volume prediction markets",
)
def find_trending_prompt(category: str = "") -> str:
    category_text = f" in the {category} category" if category else ""
    return (
        f"Find the most active and trending prediction markets{category_text}. Use "
        "search_markets with appropriate filters to find high-volume, high-liquidity markets "
        "that are currently active. Order by volume and show me the top 10. For each market, "
        "provide the current probability, volume, and a brief analysis of what it's predicting."
    )


@mcp.prompt(
    name="compare_event",
    title="Compare Markets in Event",
    description="Analyze and compare all markets within a specific event",
)
def compare_event_prompt(event_slug: str) -> str:
    return (
        f'Analyze the Polymarket event "{event_slug}" and compare all markets within it. Use '
        "get_event to retrieve the event and all its markets. For each market, show the "
        "current probabilities and trading volume. Identify any interesting patterns or "
        "contradictions between related markets. Summarize the overall prediction for this event."
    )


@mcp.prompt(
    name="market_discovery",
    title="Discover Markets by Category",
    description="Explore prediction markets in a specific category or topic",
)
def market_discovery_prompt(category: str) -> str:
    return (
        f'Help me discover prediction markets related to "{category}". First, use list_tags '
        "to find relevant category tags. Then use search_markets with the appropriate tag_id "
        "to find active markets in this category. Show me the most interesting markets with "
        "their current probabilities, volume, and what they're predicting. Highlight any "
        "markets with strong consensus (>75% probability) or divided opinion (<60% probability)."
    )


@mcp.resource(
    "polymarket://trending",
    name="trending-markets",
    title="Trending Markets",
    description="Currently trending prediction markets with high volume and activity",
    mime_type="application/json",
)
async def trending_markets() -> str:
    try:
        markets = await get_client().search_markets(
            limit=20, closed=False, order="volume24hr", ascending=False
        )
    except PolymarketApiError as e:
        return f"Error fetching trending markets: {e}"
    return json.dumps(markets, indent=2)


@mcp.resource(
    "polymarket://categories",
    name="market-categories",
    title="Market Categories",
    description="All available categories/tags for filtering Polymarket prediction markets",
    mime_type="application/json",
)
async def market_categories() -> str:
    try:
        tags = await get_client().list_tags(limit=100)
    except PolymarketApiError as e:
        return f"Error fetching categories: {e}"
    return json.dumps(tags, indent=2)


@mcp.resource(
    "polymarket://featured",
    name="featured-events",
    title="Featured Events",
    description="Featured prediction market events with multiple related markets",
    mime_type="application/json",
)
async def featured_events() -> str:
    try:
        events = await get_client().search_events(limit=10, featured=True, closed=False)
    except PolymarketApiError as e:
        return f"Error fetching featured events: {e}"
    return json.dumps(events, indent=2)


if __name__ == "__main__":
    logging.basicConfig(level=_settings.log_level)
    mcp.run(transport="streamable-http")
