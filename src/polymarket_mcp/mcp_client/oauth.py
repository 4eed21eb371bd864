"""OAuth support for the MCP client: token persistence and the redirect/callback handshake."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Tuple

from mcp.client.auth import OAuthClientProvider
from mcp.shared.auth import OAuthClientInformationFull, OAuthClientMetadata, OAuthToken

from ..errors import AuthorizationInvalid
from ..models import AuthorizationState
from ..settings import Settings

logger = logging.getLogger(__name__)


class FileTokenStorage:
    """Persist OAuth tokens and the registered client in a JSON file so restarts skip the browser step."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable token file %s: %s", self._path, e)
            return {}

    def _write(self, key: str, value: Dict[str, Any]) -> None:
        data = self._read()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    async def get_tokens(self) -> OAuthToken | None:
        raw = self._read().get("tokens")
        if raw is None:
            return None
        logger.info("Loaded saved OAuth tokens from %s", self._path)
        return OAuthToken.model_validate(raw)

    async def set_tokens(self, tokens: OAuthToken) -> None:
        self._write("tokens", tokens.model_dump(mode="json", exclude_none=True))

    async def get_client_info(self) -> OAuthClientInformationFull | None:
        raw = self._read().get("client_info")
        if raw is None:
            return None
        return OAuthClientInformationFull.model_validate(raw)

    async def set_client_info(self, client_info: OAuthClientInformationFull) -> None:
        self._write("client_info", client_info.model_dump(mode="json", exclude_none=True))


class AuthorizationFlow:
    """Bridges the OAuth redirect issued during connect with the HTTP callback that completes it.

    ``redirect_handler`` and ``callback_handler`` are handed to the MCP OAuth
    provider. The handshake suspends in ``callback_handler`` until ``submit``
    delivers the code received by the callback endpoint.
    """

    def __init__(self, callback_timeout_seconds: float = 300.0) -> None:
        self.state = AuthorizationState.NONE_REQUIRED
        self.authorization_url: str | None = None
        self._callback_timeout = callback_timeout_seconds
        self._requested = asyncio.Event()
        self._code: asyncio.Future[Tuple[str, str | None]] | None = None

    @property
    def pending(self) -> bool:
        """True while a redirect has been issued and no code has been submitted."""
        return self._code is not None and not self._code.done()

    def begin(self) -> None:
        """Forget any earlier redirect notification before a new connection attempt."""
        self._requested.clear()

    async def wait_requested(self) -> None:
        await self._requested.wait()

    async def redirect_handler(self, authorization_url: str) -> None:
        self._code = asyncio.get_running_loop().create_future()
        self.authorization_url = authorization_url
        self.state = AuthorizationState.AWAITING_REDIRECT
        logger.info("Waiting for OAuth authorization. Open this URL to continue: %s", authorization_url)
        self._requested.set()

    async def callback_handler(self) -> Tuple[str, str | None]:
        if self._code is None:
            raise AuthorizationInvalid("No authorization request is pending")
        try:
            return await asyncio.wait_for(self._code, timeout=self._callback_timeout)
        except TimeoutError as e:
            raise AuthorizationInvalid(
                f"Timed out after {self._callback_timeout:.0f}s waiting for the OAuth callback"
            ) from e

    def submit(self, code: str, state: str | None = None) -> None:
        """Deliver the authorization code to the suspended handshake."""
        if not self.pending:
            raise AuthorizationInvalid("No authorization request is pending")
        self._requested.clear()
        self._code.set_result((code, state))

    def reject(self, error: str) -> None:
        """Fail the suspended handshake, e.g. when the user denied access."""
        if self.pending:
            self._requested.clear()
            self._code.set_exception(AuthorizationInvalid(f"Authorization failed: {error}"))

    def fail(self) -> None:
        """Mark the handshake as abandoned; the next connection attempt starts a new one."""
        if self.pending:
            self._code.cancel()
        self.state = AuthorizationState.FAILED
        self._code = None
        self.authorization_url = None
        self._requested.clear()

    def clear_pending(self) -> None:
        if self.state == AuthorizationState.AWAITING_REDIRECT:
            self.state = AuthorizationState.COMPLETE
        self._code = None
        self.authorization_url = None
        self._requested.clear()


def build_oauth_provider(
    settings: Settings,
    flow: AuthorizationFlow,
    storage: FileTokenStorage | None = None,
) -> OAuthClientProvider:
    """Create the httpx auth handler used by the streamable HTTP transport."""
    metadata = OAuthClientMetadata(
        client_name=settings.oauth_client_name,
        redirect_uris=[settings.oauth_callback_url],
        grant_types=["authorization_code", "refresh_token"],
        response_types=["code"],
        token_endpoint_auth_method="none",
        scope=settings.oauth_scope,
    )
    return OAuthClientProvider(
        server_url=settings.polymarket_mcp_url,
        client_metadata=metadata,
        storage=storage or FileTokenStorage(settings.oauth_token_path),
        redirect_handler=flow.redirect_handler,
        callback_handler=flow.callback_handler,
    )
