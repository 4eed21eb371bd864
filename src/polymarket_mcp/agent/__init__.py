from __future__ import annotations

"""Agent package for the Polymarket chat backend.

Exposes the service that drives the model/tool loop; MCP wiring lives in
``polymarket_mcp.mcp_client``.
"""

from .agent import PolymarketAgentService, chunk_words

__all__ = [
    "PolymarketAgentService",
    "chunk_words",
]
