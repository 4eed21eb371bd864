"""Polymarket Gamma/Data API access and Markdown formatting used by the MCP server."""

from .client import PolymarketClient

__all__ = ["PolymarketClient"]
