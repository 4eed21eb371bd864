"""Connection lifecycle for the remote MCP server.

``McpSession`` owns the single current ``McpConnection``. Connections are never
repaired in place: on expiry the session closes the old one and opens a new one
with a higher generation. The OAuth handshake may suspend a connection attempt
until the browser redirect delivers a code.
"""

import asyncio
import json
import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Sequence

import anyio
import httpx
from mcp import ClientSession, types
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError

from ..errors import (
    AuthorizationInvalid,
    AuthorizationRequired,
    ProviderUnavailable,
    SessionExpired,
    ToolInvocationError,
)
from ..models import ConnectionState
from ..settings import Settings
from .catalog import ToolCatalog
from .oauth import AuthorizationFlow, FileTokenStorage, build_oauth_provider

logger = logging.getLogger(__name__)

Connector = Callable[[], AbstractAsyncContextManager[ClientSession]]

DEFAULT_EXPIRED_MARKERS = ("Session not found or expired", "Session terminated")


def streamable_http_connector(settings: Settings, auth: httpx.Auth | None = None) -> Connector:
    """Return a connector that opens an MCP client session over streamable HTTP."""

    @asynccontextmanager
    async def connect() -> AsyncIterator[ClientSession]:
        async with streamablehttp_client(
            settings.polymarket_mcp_url,
            timeout=timedelta(seconds=settings.mcp_timeout_seconds),
            auth=auth,
        ) as (read, write, _get_session_id):
            async with ClientSession(
                read,
                write,
                client_info=types.Implementation(
                    name=settings.mcp_client_name,
                    version=settings.mcp_client_version,
                ),
            ) as session:
                yield session

    return connect


def content_to_text(content: Iterable[Any]) -> str:
    """Flatten MCP content blocks into text for the model."""
    parts: List[str] = []
    for block in content:
        text = getattr(block, "text", None)
        if isinstance(text, str):
            parts.append(text)
        elif hasattr(block, "model_dump"):
            parts.append(json.dumps(block.model_dump(mode="json"), default=str))
        else:
            parts.append(str(block))
    return "\n".join(parts)


def _root_cause(exc: BaseException) -> BaseException:
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


class McpConnection:
    """One live MCP client session, kept open by a dedicated runner task."""

    def __init__(
        self,
        connector: Connector,
        generation: int,
        expired_markers: Sequence[str] = DEFAULT_EXPIRED_MARKERS,
    ) -> None:
        self.generation = generation
        self.catalog = ToolCatalog()
        self._connector = connector
        self._expired_markers = tuple(expired_markers)
        self._client: ClientSession | None = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def task(self) -> "asyncio.Task[None]":
        if self._task is None:
            raise RuntimeError("connection not started")
        return self._task

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def closed(self) -> bool:
        return self._closing.is_set() or (self._task is not None and self._task.done())

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"mcp-connection-{self.generation}")

    async def _run(self) -> None:
        # Context managers must be entered and exited by the same task.
        try:
            async with self._connector() as client:
                await client.initialize()
                self.catalog = await ToolCatalog.load(client)
                self._client = client
                self._ready.set()
                await self._closing.wait()
        finally:
            self._client = None

    async def wait_ready(self) -> None:
        await self._ready.wait()

    def failure(self) -> BaseException | None:
        """Return why the runner task ended, or None while it is still running."""
        if self._task is None or not self._task.done():
            return None
        if self._task.cancelled():
            return ProviderUnavailable("MCP connection was cancelled")
        exc = self._task.exception()
        if exc is None:
            return ProviderUnavailable("MCP connection closed")
        return _root_cause(exc)

    def _is_expiry(self, message: str) -> bool:
        return any(marker in message for marker in self._expired_markers)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> List[Any]:
        """Call a tool on this connection and return its raw content blocks.

        Raises:
            SessionExpired: The server dropped the session, or this connection is gone.
            ToolInvocationError: Any other provider-side failure.
            ProviderUnavailable: Network failure talking to the server.
        """
        client = self._client
        if client is None or self.closed:
            raise SessionExpired(f"MCP connection generation {self.generation} is closed")
        try:
            result = await client.call_tool(name, arguments)
        except McpError as e:
            message = e.error.message if e.error else str(e)
            if self._is_expiry(message) or self.closed:
                raise SessionExpired(message) from e
            raise ToolInvocationError(name, message) from e
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as e:
            raise SessionExpired("MCP transport closed") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"MCP server request failed: {e}") from e
        except RuntimeError as e:
            # Raised by the SDK for results failing output-schema validation.
            raise ToolInvocationError(name, str(e)) from e

        if result.isError:
            raise ToolInvocationError(name, content_to_text(result.content))
        return list(result.content)

    async def close(self) -> None:
        """Shut the runner task down. Safe to call repeatedly."""
        self._closing.set()
        if self._task is None:
            return
        if not self._ready.is_set() and not self._task.done():
            # Still handshaking (possibly parked on an OAuth callback).
            self._task.cancel()
        await asyncio.wait({self._task})
        failure = self.failure()
        if failure is not None and not isinstance(failure, ProviderUnavailable):
            logger.debug("MCP connection %d ended with: %s", self.generation, failure)


class McpSession:
    """Owns the current MCP connection: connect, OAuth completion, reconnect and retrying tool calls."""

    def __init__(
        self,
        connector: Connector,
        authorization: AuthorizationFlow | None = None,
        max_attempts: int = 2,
        expired_markers: Sequence[str] = DEFAULT_EXPIRED_MARKERS,
    ) -> None:
        self.authorization = authorization or AuthorizationFlow()
        self._state = ConnectionState.DISCONNECTED
        self._connector = connector
        self._max_attempts = max(1, max_attempts)
        self._expired_markers = tuple(expired_markers)
        self._connection: McpConnection | None = None
        self._pending: McpConnection | None = None
        self._generation = 0
        self._swap_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "McpSession":
        flow = AuthorizationFlow(settings.oauth_callback_timeout_seconds)
        auth = build_oauth_provider(settings, flow, FileTokenStorage(settings.oauth_token_path))
        return cls(
            connector=streamable_http_connector(settings, auth),
            authorization=flow,
            max_attempts=settings.tool_call_max_attempts,
            expired_markers=settings.session_expired_markers,
        )

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> ConnectionState:
        self._reap_pending()
        return self._state

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._connection is not None

    @property
    def catalog(self) -> ToolCatalog:
        if self._connection is None:
            return ToolCatalog()
        return self._connection.catalog

    @property
    def current(self) -> McpConnection:
        """The live connection. Always read through here; never cache it across awaits."""
        if self._connection is not None:
            return self._connection
        if self.state == ConnectionState.AWAITING_AUTHORIZATION:
            raise AuthorizationRequired(self.authorization.authorization_url)
        raise ProviderUnavailable("MCP session is not connected")

    async def connect(self) -> None:
        """Open a connection and load the catalog.

        Raises:
            AuthorizationRequired: The handshake is parked until ``complete_authorization``.
            ProviderUnavailable: The server could not be reached.
        """
        async with self._swap_lock:
            await self._open()

    async def complete_authorization(self, code: str, state: str | None = None) -> None:
        """Resume the parked handshake with the code delivered by the OAuth redirect.

        Raises:
            AuthorizationInvalid: No handshake is waiting, or the server rejected the code.
        """
        if self._pending is None and self.authorization.pending:
            # A live connection re-triggered the flow mid-call; just resume it.
            self.authorization.submit(code, state)
            self.authorization.clear_pending()
            return

        async with self._swap_lock:
            self._reap_pending()
            connection = self._pending
            if connection is None:
                raise AuthorizationInvalid("No authorization is pending")
            logger.info("Completing OAuth flow...")
            self.authorization.submit(code, state)
            try:
                await self._wait_for(connection)
            except AuthorizationRequired:
                raise
            except (ProviderUnavailable, AuthorizationInvalid) as e:
                self._pending = None
                self._state = ConnectionState.DISCONNECTED
                self.authorization.fail()
                await connection.close()
                raise AuthorizationInvalid(str(e)) from e
            self._pending = None
            self._install(connection)
            logger.info("OAuth authentication successful")

    async def reconnect(self, stale: McpConnection | None = None) -> None:
        """Replace the current connection with a fresh one.

        When ``stale`` is given and the session has already moved past it, the
        call returns immediately, so concurrent retries share one swap.
        """
        async with self._swap_lock:
            if stale is not None and self._connection is not None and self._connection is not stale:
                logger.debug(
                    "Connection %d already replaced by %d; reusing it",
                    stale.generation,
                    self._connection.generation,
                )
                return
            logger.info("Reconnecting to MCP server...")
            old = self._connection
            self._connection = None
            self._state = ConnectionState.DISCONNECTED
            if old is not None:
                await old.close()
            await self._open()
            logger.info("Session restored (generation %d)", self._generation)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> List[Any]:
        """Call a tool, transparently reconnecting and retrying when the session has expired."""
        attempt = 0
        while True:
            attempt += 1
            connection = await self._live_connection()
            try:
                return await connection.call_tool(name, arguments)
            except SessionExpired as e:
                if attempt >= self._max_attempts:
                    logger.error(
                        "Tool %s failed: session expired after %d attempts",
                        name,
                        attempt,
                    )
                    raise
                logger.warning(
                    "Session expired (%s), reconnecting... (attempt %d/%d)",
                    e,
                    attempt,
                    self._max_attempts - 1,
                )
                await self.reconnect(stale=connection)

    async def close(self) -> None:
        async with self._swap_lock:
            for connection in (self._connection, self._pending):
                if connection is not None:
                    await connection.close()
            self._connection = None
            self._pending = None
            self._state = ConnectionState.DISCONNECTED

    async def _live_connection(self) -> McpConnection:
        """Like ``current``, but waits out a connect or reconnect that is in progress."""
        if self._connection is None and self._swap_lock.locked():
            async with self._swap_lock:
                return self.current
        return self.current

    def _reap_pending(self) -> None:
        """Drop a parked handshake whose task already ended (callback timeout or rejection)."""
        connection = self._pending
        if connection is None or not connection.closed:
            return
        logger.warning(
            "OAuth handshake for connection %d ended: %s",
            connection.generation,
            connection.failure(),
        )
        self._pending = None
        self._state = ConnectionState.DISCONNECTED
        self.authorization.fail()

    async def _open(self) -> None:
        if self._pending is not None:
            await self._pending.close()
            self._pending = None
        self._generation += 1
        connection = McpConnection(self._connector, self._generation, self._expired_markers)
        self._state = ConnectionState.CONNECTING
        self.authorization.begin()
        connection.start()
        try:
            await self._wait_for(connection)
        except AuthorizationRequired:
            self._pending = connection
            self._state = ConnectionState.AWAITING_AUTHORIZATION
            raise
        except BaseException:
            self._state = ConnectionState.DISCONNECTED
            await connection.close()
            raise
        self._install(connection)

    def _install(self, connection: McpConnection) -> None:
        self._connection = connection
        self._state = ConnectionState.CONNECTED
        self.authorization.clear_pending()
        logger.info(
            "Connected to MCP server (generation %d, %d tools)",
            connection.generation,
            len(connection.catalog),
        )

    async def _wait_for(self, connection: McpConnection) -> None:
        """Block until the connection is ready, its task fails, or OAuth asks for a redirect."""
        ready = asyncio.ensure_future(connection.wait_ready())
        requested = asyncio.ensure_future(self.authorization.wait_requested())
        try:
            await asyncio.wait(
                {ready, requested, connection.task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in (ready, requested):
                if not waiter.done():
                    waiter.cancel()

        if connection.is_ready:
            return
        failure = connection.failure()
        if failure is not None:
            if isinstance(failure, (AuthorizationInvalid, ProviderUnavailable)):
                raise failure
            raise ProviderUnavailable(f"Failed to connect to MCP server: {failure}") from failure
        raise AuthorizationRequired(self.authorization.authorization_url)
