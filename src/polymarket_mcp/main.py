import html
import json
import logging
import uuid
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from .agent import PolymarketAgentService
from .errors import AuthorizationInvalid, AuthorizationRequired, ProviderUnavailable
from .mcp_client import McpSession
from .models import ConversationState
from .services.context_service import (
    ConversationStore,
    close_conversation_store,
    get_conversation_store_async,
)
from .settings import Settings, get_settings


def setup_server_logging(level: str = "INFO") -> logging.Logger:
    """Attach console and rotating-file handlers to the package logger; return the server logger."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("polymarket_mcp")
    if not package_logger.handlers:
        package_logger.setLevel(level)
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        package_logger.addHandler(ch)

        fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
        fh.setFormatter(fmt)
        package_logger.addHandler(fh)

    return logging.getLogger("polymarket_mcp.server")


def _cors_origins_list(origins: str) -> list[str]:
    """Parse CORS_ORIGINS into a list."""
    if not origins or origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in origins.split(",") if o.strip()]


def _oauth_page(heading: str, lines: list[str], ok: bool) -> str:
    colors = (
        "background: #d4edda; border: 1px solid #c3e6cb; color: #155724;"
        if ok
        else "background: #f8d7da; border: 1px solid #f5c6cb; color: #721c24;"
    )
    body = "".join(f"<p>{html.escape(line)}</p>" for line in lines)
    return (
        "<html><head><title>OAuth</title><style>"
        "body { font-family: system-ui; max-width: 600px; margin: 50px auto; padding: 20px; }"
        f".box {{ {colors} padding: 20px; border-radius: 8px; }}"
        "</style></head>"
        f'<body><div class="box"><h1>{html.escape(heading)}</h1>{body}</div></body></html>'
    )


def _parse_chat_payload(raw: str) -> tuple[str | None, str]:
    """Accept either plain text or JSON {"session_id": ..., "message": ...}."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None, raw.strip()
    if not isinstance(payload, dict):
        return None, raw.strip()
    session_id = payload.get("session_id")
    return (str(session_id) if session_id else None), str(payload.get("message") or "").strip()


LOGGER = setup_server_logging(get_settings().log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the MCP session at startup, tolerating a pending OAuth step; close it on shutdown."""
    settings: Settings = app.state.settings
    session: McpSession = app.state.mcp_session

    if not settings.openai_api_key:
        LOGGER.error("OPENAI_API_KEY is required. Please set it in the .env file")
        raise RuntimeError("OPENAI_API_KEY is not configured")

    LOGGER.info("Connecting to Polymarket MCP server at %s", settings.polymarket_mcp_url)
    try:
        await session.connect()
        LOGGER.info("Backend ready. WebSocket: ws://%s:%s/ws/chat", settings.host, settings.port)
    except AuthorizationRequired as e:
        LOGGER.info(
            "Server is running, waiting for OAuth authentication. Authorize at %s; callback %s",
            e.authorization_url,
            settings.oauth_callback_url,
        )
    except (ProviderUnavailable, AuthorizationInvalid) as e:
        LOGGER.error("Startup failed: %s", e)
        raise

    app.state.conversation_store = await get_conversation_store_async()
    if app.state.conversation_store is None:
        LOGGER.info("Conversation store disabled; history is kept per connection")

    yield

    LOGGER.info("Shutting down...")
    await session.close()
    await close_conversation_store()


def create_app(
    settings: Settings | None = None,
    mcp_session: McpSession | None = None,
    agent: PolymarketAgentService | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    mcp_session = mcp_session or McpSession.from_settings(settings)

    app = FastAPI(
        title="Polymarket MCP Chat Backend",
        version="1.0.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.mcp_session = mcp_session
    app.state.agent = agent or PolymarketAgentService(mcp_session, settings=settings)
    app.state.conversation_store = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins_list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_route("/tools", list_tools, methods=["GET"])
    app.add_api_route("/oauth/callback", oauth_callback, methods=["GET"], response_class=HTMLResponse)
    app.add_api_websocket_route("/ws/chat", chat_ws)
    return app


async def health(request: Request) -> dict[str, Any]:
    """Report MCP connection and authorization state; served even while OAuth is pending."""
    session: McpSession = request.app.state.mcp_session
    return {
        "status": "ok",
        "mcp_connected": session.connected,
        "connection_state": session.state.value,
        "authorization_state": session.authorization.state.value,
        "tools_available": len(session.catalog),
    }


async def list_tools(request: Request) -> dict[str, Any]:
    catalog = request.app.state.mcp_session.catalog
    return {
        "tools": [{"name": t.name, "description": t.description} for t in catalog.tools],
        "prompts": [p.name for p in catalog.prompts],
        "resources": [r.uri for r in catalog.resources],
    }


async def oauth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> HTMLResponse:
    """Receive the OAuth redirect and resume the parked MCP handshake."""
    session: McpSession = request.app.state.mcp_session

    if code:
        try:
            await session.complete_authorization(code, state)
        except (AuthorizationInvalid, AuthorizationRequired) as e:
            LOGGER.error("Failed to complete OAuth: %s", e)
            return HTMLResponse(
                _oauth_page(
                    "Authentication Failed",
                    [f"Error: {e}", "Please check the server logs and try again."],
                    ok=False,
                ),
                status_code=500,
            )
        return HTMLResponse(
            _oauth_page(
                "Authentication Successful!",
                [
                    "You can close this window and return to your terminal.",
                    "The Polymarket MCP server is now connected and ready to use.",
                ],
                ok=True,
            )
        )

    if error:
        session.authorization.reject(error)
        return HTMLResponse(
            _oauth_page("Authorization Failed", [f"Error: {error}"], ok=False),
            status_code=400,
        )

    return HTMLResponse("Invalid OAuth callback", status_code=400)


async def chat_ws(websocket: WebSocket) -> None:
    """WebSocket chat endpoint. Each inbound frame is one user message.

    Expected Input:
        Plain text, or JSON {"session_id": str (optional), "message": str}.
        Giving a session_id resumes that conversation (persisted in Redis when configured).

    Response Format (one turn):
        - {"type": "token", "data": str} - chunks of the answer, in order
        - {"type": "error", "data": str} - at most one, if the turn failed
        - {"type": "done", "session_id": str, "tool_calls_count": int} - always last
    """
    agent: PolymarketAgentService = websocket.app.state.agent
    store: ConversationStore | None = websocket.app.state.conversation_store

    await websocket.accept()
    conversation = ConversationState(session_id=f"ws-{uuid.uuid4().hex[:12]}")
    LOGGER.info("New client connected session_id=%s", conversation.session_id)

    async def send_done() -> None:
        await websocket.send_json(
            {
                "type": "done",
                "session_id": conversation.session_id,
                "tool_calls_count": conversation.tool_calls_count,
            }
        )

    try:
        while True:
            raw = await websocket.receive_text()
            session_id, message = _parse_chat_payload(raw)

            if session_id and session_id != conversation.session_id:
                restored = await store.load(session_id) if store is not None else None
                conversation = restored or agent.get_conversation(session_id)

            if not message:
                await websocket.send_json({"type": "error", "data": "Empty message"})
                await send_done()
                continue

            LOGGER.info("Received message session_id=%s", conversation.session_id)
            async for event in agent.run_turn(conversation, message):
                if event.type == "done":
                    await send_done()
                else:
                    await websocket.send_json({"type": event.type, "data": event.data})

            if store is not None:
                await store.save(conversation)

    except WebSocketDisconnect:
        LOGGER.info("Client disconnected session_id=%s", conversation.session_id)
    except (ConnectionError, TimeoutError, RuntimeError) as e:
        LOGGER.exception("Unexpected WS error: %s", e)
        try:
            await websocket.send_json({"type": "error", "data": str(e)})
            await websocket.close()
        except (OSError, RuntimeError):
            pass


app = create_app()


def run() -> None:
    """Console entry point: serve the chat backend with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "polymarket_mcp.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
