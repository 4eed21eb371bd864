"""MCP client side: the swappable session, its tool catalog and the OAuth handshake."""

from .catalog import PromptDescriptor, ResourceDescriptor, ToolCatalog, ToolDescriptor
from .oauth import AuthorizationFlow, FileTokenStorage, build_oauth_provider
from .session import McpConnection, McpSession, content_to_text, streamable_http_connector

__all__ = [
    "AuthorizationFlow",
    "FileTokenStorage",
    "McpConnection",
    "McpSession",
    "PromptDescriptor",
    "ResourceDescriptor",
    "ToolCatalog",
    "ToolDescriptor",
    "build_oauth_provider",
    "content_to_text",
    "streamable_http_connector",
]
