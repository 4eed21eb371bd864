import asyncio

import pytest
import pytest_asyncio
from mcp.shared.exceptions import McpError
from mcp.types import ErrorData

from mcp_fakes import FakeMcpServer, expired_error, text_result
from polymarket_mcp.errors import (
    AuthorizationInvalid,
    AuthorizationRequired,
    ProviderUnavailable,
    SessionExpired,
    ToolInvocationError,
)
from polymarket_mcp.mcp_client import AuthorizationFlow, McpSession
from polymarket_mcp.models import AuthorizationState, ConnectionState


@pytest.fixture
def server() -> FakeMcpServer:
    """Fake MCP server with no OAuth requirement."""
    return FakeMcpServer()


@pytest_asyncio.fixture
async def session(server: FakeMcpServer):
    """Connected McpSession against the fake server, closed after the test."""
    s = McpSession(server.connect, max_attempts=2)
    await s.connect()
    yield s
    await s.close()


@pytest.mark.asyncio
async def test_connect_loads_catalog(server: FakeMcpServer) -> None:
    """connect reaches connected and snapshots tools, prompts and resources."""
    s = McpSession(server.connect)
    assert s.state == ConnectionState.DISCONNECTED
    await s.connect()
    try:
        assert s.connected
        assert s.generation == 1
        assert s.catalog.tool_names() == ["search_markets", "get_market"]
        assert [p.name for p in s.catalog.prompts] == ["analyze_market"]
        assert [r.uri for r in s.catalog.resources] == ["polymarket://trending"]
        assert s.authorization.state == AuthorizationState.NONE_REQUIRED
    finally:
        await s.close()
    assert s.state == ConnectionState.DISCONNECTED
    assert server.closed == [1]


@pytest.mark.asyncio
async def test_prompt_listing_failure_is_tolerated(server: FakeMcpServer) -> None:
    """A server without prompts still connects with an empty prompt list."""
    server.prompts_fail = True
    s = McpSession(server.connect)
    await s.connect()
    try:
        assert s.connected
        assert s.catalog.prompts == ()
        assert len(s.catalog) == 2
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_connect_failure_is_provider_unavailable(server: FakeMcpServer) -> None:
    """An unreachable server surfaces ProviderUnavailable and leaves the session disconnected."""
    server.connect_error = OSError("connection refused")
    s = McpSession(server.connect)
    with pytest.raises(ProviderUnavailable, match="connection refused"):
        await s.connect()
    assert s.state == ConnectionState.DISCONNECTED
    with pytest.raises(ProviderUnavailable):
        _ = s.current


@pytest.mark.asyncio
async def test_call_tool_returns_content(session: McpSession, server: FakeMcpServer) -> None:
    """call_tool forwards name and arguments and returns the content blocks."""
    content = await session.call_tool("search_markets", {"query": "election"})
    assert [c.text for c in content] == ["ok:search_markets"]
    assert server.calls == [(1, "search_markets", {"query": "election"})]


@pytest.mark.asyncio
async def test_single_expiry_reconnects_once_and_retries(
    session: McpSession, server: FakeMcpServer
) -> None:
    """One expiry leads to exactly one reconnect, then the retried call succeeds."""
    server.outcomes = [expired_error()]
    content = await session.call_tool("get_market", {"slug": "btc-100k"})
    assert content[0].text == "ok:get_market"
    assert server.connections == 2
    assert session.generation == 2
    assert server.closed == [1]
    assert [c[0] for c in server.calls] == [1, 2]


@pytest.mark.asyncio
async def test_terminated_marker_also_counts_as_expiry(
    session: McpSession, server: FakeMcpServer
) -> None:
    """The 'Session terminated' message is treated as an expiry too."""
    server.outcomes = [expired_error("Session terminated")]
    await session.call_tool("get_market", {"slug": "x"})
    assert server.connections == 2


@pytest.mark.asyncio
async def test_second_expiry_propagates(session: McpSession, server: FakeMcpServer) -> None:
    """Retry is bounded: an expiry on the fresh connection is raised to the caller."""
    server.outcomes = [expired_error(), expired_error()]
    with pytest.raises(SessionExpired):
        await session.call_tool("get_market", {"slug": "x"})
    assert server.connections == 2
    assert len(server.calls) == 2


@pytest.mark.asyncio
async def test_max_attempts_one_never_reconnects(server: FakeMcpServer) -> None:
    """With a single attempt configured the first expiry is final."""
    s = McpSession(server.connect, max_attempts=1)
    await s.connect()
    try:
        server.outcomes = [expired_error()]
        with pytest.raises(SessionExpired):
            await s.call_tool("get_market", {"slug": "x"})
        assert server.connections == 1
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_other_mcp_errors_do_not_reconnect(session: McpSession, server: FakeMcpServer) -> None:
    """Non-expiry protocol errors become ToolInvocationError without a reconnect."""
    server.outcomes = [McpError(ErrorData(code=-32602, message="Unknown tool: nope"))]
    with pytest.raises(ToolInvocationError, match="Unknown tool: nope") as info:
        await session.call_tool("nope", {})
    assert info.value.tool_name == "nope"
    assert server.connections == 1


@pytest.mark.asyncio
async def test_error_result_is_tool_invocation_error(
    session: McpSession, server: FakeMcpServer
) -> None:
    """A result flagged isError is reported as a ToolInvocationError carrying its text."""
    server.outcomes = [text_result("Market not found: nope", is_error=True)]
    with pytest.raises(ToolInvocationError, match="Market not found: nope"):
        await session.call_tool("get_market", {"slug": "nope"})
    assert server.connections == 1


@pytest.mark.asyncio
async def test_concurrent_expiries_share_one_reconnect(
    session: McpSession, server: FakeMcpServer
) -> None:
    """Sibling calls that expire together trigger a single reconnect and both succeed."""
    server.expire_generations = {1}
    server.call_delay = 0.01
    results = await asyncio.gather(
        session.call_tool("search_markets", {"query": "a"}),
        session.call_tool("get_market", {"slug": "b"}),
    )
    assert [r[0].text for r in results] == ["ok:search_markets", "ok:get_market"]
    assert server.connections == 2
    assert session.generation == 2
    assert sorted(c[0] for c in server.calls) == [1, 1, 2, 2]


@pytest.mark.asyncio
async def test_call_during_reconnect_waits_for_new_connection(
    session: McpSession, server: FakeMcpServer
) -> None:
    """A call issued while a reconnect is still opening uses the new connection instead of failing."""
    server.expire_generations = {1}
    server.reconnect_delay = 0.05
    expiring = asyncio.create_task(session.call_tool("search_markets", {"query": "a"}))
    await asyncio.sleep(0.01)
    assert session.state == ConnectionState.CONNECTING

    content = await session.call_tool("get_market", {"slug": "b"})
    assert content[0].text == "ok:get_market"
    assert (await expiring)[0].text == "ok:search_markets"
    assert server.connections == 2
    assert sorted(c[0] for c in server.calls) == [1, 2, 2]


@pytest.mark.asyncio
async def test_sdk_runtime_error_is_tool_invocation_error(
    session: McpSession, server: FakeMcpServer
) -> None:
    """The SDK's structured-output validation failure is reported as a tool failure, not a crash."""
    server.outcomes = [RuntimeError("Invalid structured content returned by tool get_market")]
    with pytest.raises(ToolInvocationError, match="Invalid structured content") as info:
        await session.call_tool("get_market", {"slug": "x"})
    assert info.value.tool_name == "get_market"
    assert server.connections == 1


@pytest.mark.asyncio
async def test_reconnect_with_stale_connection_is_noop(session: McpSession, server: FakeMcpServer) -> None:
    """reconnect(stale=...) does nothing once the session already moved past that connection."""
    first = session.current
    await session.reconnect()
    assert session.generation == 2
    await session.reconnect(stale=first)
    assert session.generation == 2
    assert server.connections == 2


@pytest.mark.asyncio
async def test_call_tool_before_connect_is_provider_unavailable(server: FakeMcpServer) -> None:
    """Calling a tool on a session that never connected fails fast."""
    s = McpSession(server.connect)
    with pytest.raises(ProviderUnavailable):
        await s.call_tool("search_markets", {})
    assert server.connections == 0


@pytest.mark.asyncio
async def test_authorization_wait_and_resume() -> None:
    """connect parks on OAuth, complete_authorization resumes it to connected."""
    flow = AuthorizationFlow(callback_timeout_seconds=5)
    server = FakeMcpServer(flow=flow, require_authorization=True)
    s = McpSession(server.connect, authorization=flow)
    try:
        with pytest.raises(AuthorizationRequired) as info:
            await s.connect()
        assert "auth.example.com" in info.value.authorization_url
        assert s.state == ConnectionState.AWAITING_AUTHORIZATION
        assert flow.state == AuthorizationState.AWAITING_REDIRECT
        assert not s.connected
        with pytest.raises(AuthorizationRequired):
            await s.call_tool("search_markets", {})

        await s.complete_authorization("good-code", "state-1")
        assert s.connected
        assert flow.state == AuthorizationState.COMPLETE
        assert flow.authorization_url is None
        content = await s.call_tool("search_markets", {"query": "fed"})
        assert content[0].text == "ok:search_markets"
        assert server.connections == 1
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_authorization_rejected_code() -> None:
    """A rejected authorization code surfaces AuthorizationInvalid and leaves the session down."""
    flow = AuthorizationFlow(callback_timeout_seconds=5)
    server = FakeMcpServer(flow=flow, require_authorization=True)
    s = McpSession(server.connect, authorization=flow)
    try:
        with pytest.raises(AuthorizationRequired):
            await s.connect()
        with pytest.raises(AuthorizationInvalid, match="invalid_grant"):
            await s.complete_authorization("bad-code")
        assert s.state == ConnectionState.DISCONNECTED
        assert not s.connected
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_complete_authorization_without_pending_flow(session: McpSession) -> None:
    """An unsolicited callback is rejected."""
    with pytest.raises(AuthorizationInvalid):
        await session.complete_authorization("code")
    assert session.connected


@pytest.mark.asyncio
async def test_close_while_awaiting_authorization() -> None:
    """Closing a session parked on OAuth cancels the handshake cleanly."""
    flow = AuthorizationFlow(callback_timeout_seconds=5)
    server = FakeMcpServer(flow=flow, require_authorization=True)
    s = McpSession(server.connect, authorization=flow)
    with pytest.raises(AuthorizationRequired):
        await s.connect()
    await s.close()
    assert s.state == ConnectionState.DISCONNECTED
    assert server.closed == [1]


@pytest.mark.asyncio
async def test_authorization_timeout_resets_to_disconnected() -> None:
    """A handshake whose callback never arrives stops reporting awaiting-authorization."""
    flow = AuthorizationFlow(callback_timeout_seconds=0.05)
    server = FakeMcpServer(flow=flow, require_authorization=True)
    s = McpSession(server.connect, authorization=flow)
    try:
        with pytest.raises(AuthorizationRequired):
            await s.connect()
        await asyncio.sleep(0.2)

        assert s.state == ConnectionState.DISCONNECTED
        assert flow.state == AuthorizationState.FAILED
        assert flow.authorization_url is None
        with pytest.raises(ProviderUnavailable):
            await s.call_tool("search_markets", {})
        with pytest.raises(AuthorizationInvalid, match="No authorization is pending"):
            await s.complete_authorization("good-code")

        with pytest.raises(AuthorizationRequired):
            await s.connect()
        assert s.state == ConnectionState.AWAITING_AUTHORIZATION
        assert flow.state == AuthorizationState.AWAITING_REDIRECT
    finally:
        await s.close()


@pytest.mark.asyncio
async def test_rejected_redirect_resets_to_disconnected() -> None:
    """An error redirect ends the parked handshake and the session reports disconnected."""
    flow = AuthorizationFlow(callback_timeout_seconds=5)
    server = FakeMcpServer(flow=flow, require_authorization=True)
    s = McpSession(server.connect, authorization=flow)
    try:
        with pytest.raises(AuthorizationRequired):
            await s.connect()
        flow.reject("access_denied")
        await asyncio.sleep(0.05)

        assert s.state == ConnectionState.DISCONNECTED
        assert flow.state == AuthorizationState.FAILED
        assert server.closed == [1]
    finally:
        await s.close()
