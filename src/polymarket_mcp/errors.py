"""Exceptions raised by the MCP client session and the Polymarket API client."""


class PolymarketMcpError(Exception):
    """Base class for errors raised by this package."""


class AuthorizationRequired(PolymarketMcpError):
    """The MCP server demands an interactive OAuth step that has not happened yet."""

    def __init__(self, authorization_url: str | None = None) -> None:
        self.authorization_url = authorization_url
        message = "Authorization required"
        if authorization_url:
            message = f"Authorization required: visit {authorization_url}"
        super().__init__(message)


class AuthorizationInvalid(PolymarketMcpError):
    """The authorization code handed to the session was rejected."""


class SessionExpired(PolymarketMcpError):
    """The MCP server no longer recognises the session the call was made on."""


class ToolInvocationError(PolymarketMcpError):
    """A tool call failed on the provider side (bad arguments, internal fault)."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool {tool_name} failed: {message}")


class ProviderUnavailable(PolymarketMcpError):
    """The MCP server cannot be reached or the session is not connected."""


class PolymarketApiError(PolymarketMcpError):
    """Non-success response from the Polymarket Gamma or Data API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PolymarketNotFound(PolymarketApiError):
    """A market or event slug did not resolve."""
