import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator
from urllib.parse import urlsplit, urlunsplit

import httpx
from websocket import create_connection


def setup_client_logging() -> logging.Logger:
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("polymarket_mcp.streamlit")
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / "client.log", maxBytes=2_000_000, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)
    return logger


LOGGER = setup_client_logging()


def ws_token_stream(ws_url: str, session_id: str, message: str, timeout: float = 120) -> Iterator[str]:
    """Send one message to the chat backend and yield answer chunks until the turn is done.

    Raises:
        RuntimeError: The backend reported an error for this turn.
    """
    LOGGER.info("Connecting ws_url=%s session_id=%s", ws_url, session_id)
    ws = create_connection(ws_url, timeout=timeout)
    try:
        ws.send(json.dumps({"session_id": session_id, "message": message}))
        error: str | None = None
        while True:
            payload = json.loads(ws.recv())
            kind = payload.get("type")
            if kind == "token":
                yield payload.get("data") or ""
            elif kind == "error":
                error = payload.get("data") or "Unknown error"
                LOGGER.error("WS error: %s", error)
            elif kind == "done":
                LOGGER.info(
                    "WS done session_id=%s tool_calls=%s",
                    payload.get("session_id"),
                    payload.get("tool_calls_count"),
                )
                if error:
                    raise RuntimeError(error)
                return
    finally:
        ws.close()


def health_url(ws_url: str) -> str:
    """Map ws://host/ws/chat to http://host/health (wss -> https)."""
    parts = urlsplit(ws_url)
    scheme = "https" if parts.scheme == "wss" else "http"
    return urlunsplit((scheme, parts.netloc, "/health", "", ""))


def fetch_health(ws_url: str, timeout: float = 3) -> Dict[str, Any] | None:
    """Return the backend's /health payload, or None when it cannot be reached."""
    try:
        response = httpx.get(health_url(ws_url), timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        LOGGER.warning("Health check failed: %s", e)
        return None
    return response.json()
