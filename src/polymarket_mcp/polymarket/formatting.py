"""Markdown renderings of Gamma/Data API payloads, tuned for reading by a language model."""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

Market = Dict[str, Any]
Event = Dict[str, Any]
Trade = Dict[str, Any]


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_list_field(value: Any) -> List[Any]:
    """Gamma sends ``outcomes``/``outcomePrices`` either as lists or JSON-encoded strings."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    return list(value) if isinstance(value, (list, tuple)) else []


def _thousands(value: Any) -> str:
    return f"${_to_float(value) / 1000:.1f}k"


def _probability(market: Market) -> str:
    prices = parse_list_field(market.get("outcomePrices"))
    if not prices:
        return "N/A"
    return f"{_to_float(prices[0]) * 100:.1f}"


def _status(item: Dict[str, Any], icons: bool = False) -> str:
    if item.get("closed"):
        return "🔴 Closed" if icons else "Closed"
    if item.get("active"):
        return "🟢 Active" if icons else "Active"
    return "⚪ Inactive" if icons else "Inactive"


def format_date(value: str) -> str:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except (AttributeError, ValueError):
        return str(value)


def format_timestamp(value: Any) -> str:
    try:
        moment = datetime.fromtimestamp(_to_float(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return str(value)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


def _tag_labels(item: Dict[str, Any]) -> str:
    return ", ".join(t.get("label", "") for t in item.get("tags") or [])


def format_market_analysis(market: Market) -> str:
    outcomes = parse_list_field(market.get("outcomes"))
    prices = parse_list_field(market.get("outcomePrices"))
    volume_24h = market.get("volume24hr")

    lines = [
        f"📊 **{market.get('question', '')}**",
        "",
        f"**Current Probability:** {_probability(market)}% ({outcomes[0] if outcomes else 'Yes'})",
        f"**Status:** {_status(market, icons=True)}",
        f"**Volume (24h):** {_thousands(volume_24h) if volume_24h not in (None, '') else 'N/A'}",
        f"**Total Volume:** {_thousands(market.get('volume'))}",
        f"**Liquidity:** {_thousands(market.get('liquidity'))}",
    ]
    if market.get("endDate"):
        lines.append(f"**End Date:** {format_date(market['endDate'])}")

    if outcomes and len(outcomes) == len(prices):
        lines.append("")
        lines.append("**Outcomes & Prices:**")
        for outcome, price in zip(outcomes, prices):
            lines.append(f"  • {outcome}: {_to_float(price) * 100:.1f}%")

    return "\n".join(lines) + "\n"


def format_market_detail(market: Market) -> str:
    text = format_market_analysis(market)
    if market.get("description"):
        text += f"\n**Description:** {market['description']}\n"
    if market.get("tags"):
        text += f"\n**Tags:** {_tag_labels(market)}\n"
    text += f"\n**Market Slug:** `{market.get('slug', '')}`"
    text += f"\n**Condition ID:** `{market.get('conditionId', '')}`"
    return text


def format_market_list(markets: Sequence[Market]) -> str:
    text = f"Found {len(markets)} markets:\n\n"
    for idx, market in enumerate(markets, 1):
        text += f"{idx}. **{market.get('question', '')}**\n"
        text += f"   Slug: `{market.get('slug', '')}`\n"
        text += f"   Probability: {_probability(market)}% | Volume: {_thousands(market.get('volume'))}\n"
        text += f"   Status: {_status(market)}\n\n"
    text += "\n💡 Use `get_market` with a slug for detailed analysis."
    return text


def format_event_list(events: Sequence[Event]) -> str:
    text = f"Found {len(events)} events:\n\n"
    for idx, event in enumerate(events, 1):
        text += f"{idx}. **{event.get('title', '')}**\n"
        text += f"   Slug: `{event.get('slug', '')}`\n"
        text += f"   Markets: {len(event.get('markets') or [])}\n"
        text += f"   Volume: {_thousands(event.get('volume'))}\n"
        text += f"   Status: {_status(event)}\n\n"
    text += "\n💡 Use `get_event` with a slug for detailed event info."
    return text


def format_event_detail(event: Event) -> str:
    text = f"🎯 **{event.get('title', '')}**\n\n"
    if event.get("description"):
        text += f"**Description:** {event['description']}\n\n"
    text += f"**Status:** {_status(event, icons=True)}\n"
    text += f"**Total Volume:** {_thousands(event.get('volume'))}\n"
    text += f"**Liquidity:** {_thousands(event.get('liquidity'))}\n"
    if event.get("endDate"):
        text += f"**End Date:** {format_date(event['endDate'])}\n"

    markets = event.get("markets") or []
    if markets:
        text += f"\n**Markets ({len(markets)}):**\n\n"
        for idx, market in enumerate(markets, 1):
            text += f"{idx}. {market.get('question', '')}\n"
            text += f"   Probability: {_probability(market)}% | Slug: `{market.get('slug', '')}`\n\n"

    if event.get("tags"):
        text += f"**Tags:** {_tag_labels(event)}\n"
    return text


def format_tag_list(tags: Sequence[Dict[str, Any]]) -> str:
    text = f"📑 **Available Tags ({len(tags)}):**\n\n"
    for idx, tag in enumerate(tags, 1):
        text += f"{idx}. **{tag.get('label', '')}** (ID: {tag.get('id', '')})\n"
        text += f"   Slug: `{tag.get('slug', '')}`\n\n"
    text += "💡 Use the tag ID with `search_markets` or `search_events` to filter by category."
    return text


def format_trades_summary(trades: Sequence[Trade]) -> str:
    total = len(trades)
    buys = sum(1 for t in trades if t.get("side") == "BUY")
    sells = sum(1 for t in trades if t.get("side") == "SELL")
    volume = sum(_to_float(t.get("size")) for t in trades)

    def share(count: int) -> str:
        return f"{count / total * 100:.1f}" if total else "0.0"

    text = "📈 **Recent Trading Activity**\n\n"
    text += f"**Total Trades:** {total}\n"
    text += f"**Buy Orders:** {buys} ({share(buys)}%)\n"
    text += f"**Sell Orders:** {sells} ({share(sells)}%)\n"
    text += f"**Total Volume:** {volume:.2f} shares\n"

    if trades:
        latest = trades[0]
        text += "\n**Latest Trade:**\n"
        text += f"  • Side: {latest.get('side', '')}\n"
        text += f"  • Price: ${latest.get('price', '')}\n"
        text += f"  • Size: {latest.get('size', '')} shares\n"
        text += f"  • Time: {format_timestamp(latest.get('timestamp'))}\n"
    return text


def format_trade_list(trades: Sequence[Trade], limit: int = 10) -> str:
    if not trades:
        return "No trades found matching the criteria."
    text = format_trades_summary(trades)
    text += "\n\n**Recent Trades:**\n"
    for idx, trade in enumerate(trades[:limit], 1):
        side = "🟢 BUY" if trade.get("side") == "BUY" else "🔴 SELL"
        text += f"\n{idx}. {side} {trade.get('size', '')} @ ${trade.get('price', '')}\n"
        title = trade.get("marketTitle") or trade.get("title")
        if title:
            text += f"   Market: {title}\n"
        text += f"   Time: {format_timestamp(trade.get('timestamp'))}\n"
    return text


def format_probability_analysis(market: Market) -> str:
    prices = [_to_float(p) * 100 for p in parse_list_field(market.get("outcomePrices"))]
    if not prices or not parse_list_field(market.get("outcomes")):
        return ""
    highest, lowest = max(prices), min(prices)

    text = "**📊 Probability Analysis:**\n"
    text += f"• Highest: {highest:.1f}%\n"
    text += f"• Lowest: {lowest:.1f}%\n"
    text += f"• Spread: {highest - lowest:.1f}%\n"
    if highest > 75:
        text += f"\n🎯 **Market Sentiment:** Strong consensus ({highest:.1f}% probability)\n"
    elif highest < 60:
        text += "\n⚖️ **Market Sentiment:** Uncertain / Divided opinion\n"
    else:
        text += "\n📈 **Market Sentiment:** Moderate confidence\n"
    return text


def format_market_health(market: Market) -> str:
    liquidity = _to_float(market.get("liquidity"))
    volume = _to_float(market.get("volume"))

    text = "**💡 Market Health:**\n"
    if liquidity > 100_000:
        text += "• Liquidity: 🟢 High (Easy to trade)\n"
    elif liquidity > 10_000:
        text += "• Liquidity: 🟡 Moderate\n"
    else:
        text += "• Liquidity: 🔴 Low (May have slippage)\n"

    if volume > 500_000:
        text += "• Activity: 🟢 Very Active\n"
    elif volume > 50_000:
        text += "• Activity: 🟡 Moderate\n"
    else:
        text += "• Activity: 🔴 Low Volume\n"
    return text
