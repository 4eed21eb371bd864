from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 8090
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    cors_origins: str = "*"

    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 4096
    max_iterations: int = 10
    max_cached_conversations: int = 500
    openai_api_key: str | None = None
    openai_base_url: str | None = "https://api.openai.com/v1"

    polymarket_mcp_url: str = "http://localhost:8000/mcp"
    mcp_client_name: str = "polymarket-demo-client"
    mcp_client_version: str = "1.0.0"
    mcp_timeout_seconds: float = 30.0
    tool_call_max_attempts: int = 2
    session_expired_markers: list[str] = [
        "Session not found or expired",
        "Session terminated",
    ]

    oauth_redirect_url: str | None = None
    oauth_client_name: str = "Polymarket MCP Demo"
    oauth_scope: str = "mcp:tools mcp:prompts mcp:resources"
    oauth_token_path: Path = Path("data/oauth_tokens.json")
    oauth_callback_timeout_seconds: float = 300.0

    stream_chunk_delay_seconds: float = 0.01

    redis_url: str | None = None
    context_ttl_seconds: int = 86400  # 24 hours

    gamma_api_base: str = "https://gamma-api.polymarket.com"
    data_api_base: str = "https://data-api.polymarket.com"
    polymarket_request_timeout_seconds: float = 30.0
    mcp_server_host: str = "0.0.0.0"
    mcp_server_port: int = 8000
    mcp_server_debug: bool = False

    agent_system_prompt: str = (
        "You are a helpful assistant with access to Polymarket prediction "
        "market data. You can help users:\n\n"
        "- Analyze prediction markets and their probabilities\n"
        "- Find trending markets and events\n"
        "- Compare markets within events\n"
        "- Discover markets by category\n"
        "- View recent trading activity\n"
        "- Provide insights on market sentiment\n\n"
        "When users ask about prediction markets, use the available tools to "
        "fetch real-time data from Polymarket. Present the information in a "
        "clear, engaging way with proper formatting.\n\n"
        "Always explain what the probabilities mean and provide context for "
        "the markets you're analyzing."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    @property
    def oauth_callback_url(self) -> str:
        """Redirect URI registered with the MCP authorization server."""
        if self.oauth_redirect_url:
            return self.oauth_redirect_url
        return f"http://localhost:{self.port}/oauth/callback"


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
