import asyncio
import json
import logging
from collections import OrderedDict
from typing import Any, AsyncIterator, Dict, List

from openai import AsyncOpenAI, OpenAIError

from ..errors import PolymarketMcpError, ToolInvocationError
from ..mcp_client import McpSession, content_to_text
from ..models import (
    ConversationMessage,
    ConversationState,
    StreamEvent,
    ToolCall,
    ToolResult,
)
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)


def chunk_words(text: str) -> List[str]:
    """Split text into word chunks whose concatenation is exactly ``text``."""
    words = text.split(" ")
    chunks = [word + " " for word in words[:-1]] + [words[-1]]
    return [chunk for chunk in chunks if chunk]


class PolymarketAgentService:
    """Runs the model/tool loop for chat turns against the Polymarket MCP tools."""

    def __init__(
        self,
        mcp_session: McpSession,
        client: AsyncOpenAI | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._mcp = mcp_session
        self._client = client
        self._settings = settings or get_settings()
        self._conversations: "OrderedDict[str, ConversationState]" = OrderedDict()

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                base_url=self._settings.openai_base_url,
            )
        return self._client

    def get_conversation(self, session_id: str) -> ConversationState:
        """Return or create the in-memory ConversationState for session_id.

        Only the most recently used ``max_cached_conversations`` are kept.
        """
        conversation = self._conversations.pop(session_id, None)
        if conversation is None:
            conversation = ConversationState(session_id=session_id)
        self._conversations[session_id] = conversation
        while len(self._conversations) > max(1, self._settings.max_cached_conversations):
            evicted, _ = self._conversations.popitem(last=False)
            logger.debug("Evicted cached conversation %s", evicted)
        return conversation

    def _build_messages(self, messages: List[ConversationMessage]) -> List[Dict[str, Any]]:
        rendered: List[Dict[str, Any]] = [
            {"role": "system", "content": self._settings.agent_system_prompt}
        ]
        for message in messages:
            rendered.extend(message.to_openai())
        return rendered

    async def _complete(self, messages: List[ConversationMessage]) -> Any:
        """Send one chat-completions request and return the assistant message."""
        tools = self._mcp.catalog.to_openai_tools()
        request: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": self._build_messages(messages),
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        response = await self.client.chat.completions.create(**request)
        if not response.choices:
            raise ValueError("Model returned no choices")
        return response.choices[0].message

    async def execute_tool_async(self, call: ToolCall) -> ToolResult:
        """Run one requested tool call through the MCP session.

        Provider-side failures and malformed arguments come back as error
        results for the model to see. Session and transport failures propagate.
        """
        try:
            arguments = json.loads(call.arguments) if call.arguments else {}
        except json.JSONDecodeError as e:
            logger.error("Invalid tool arguments for %s: %s", call.name, e)
            return ToolResult(call.id, f"Error: invalid arguments - {e}", is_error=True)
        if not isinstance(arguments, dict):
            return ToolResult(call.id, "Error: tool arguments must be a JSON object", is_error=True)

        logger.info("Tool called: %s", call.name)
        logger.debug("Tool input: %s", arguments)
        try:
            content = await self._mcp.call_tool(call.name, arguments)
        except ToolInvocationError as e:
            logger.error("Error executing tool %s: %s", call.name, e)
            return ToolResult(call.id, f"Error: {e}", is_error=True)

        logger.info("Tool result received for %s", call.name)
        return ToolResult(call.id, content_to_text(content))

    async def run_turn(
        self, conversation: ConversationState, user_message: str
    ) -> AsyncIterator[StreamEvent]:
        """Answer one user message, yielding token events then a single done event.

        Args:
            conversation: History for this client. Only extended when the turn succeeds.
            user_message: User query text.

        Yields:
            StreamEvent: ``token`` chunks of the final answer, or one ``error``;
                always followed by exactly one ``done``.
        """
        logger.info("Starting turn for session %s", conversation.session_id)
        logger.debug("User message: %s", user_message[:200])

        turn: List[ConversationMessage] = [ConversationMessage(role="user", content=user_message)]
        calls_made = 0
        try:
            for _ in range(self._settings.max_iterations):
                reply = await self._complete(conversation.messages + turn)
                tool_calls = [
                    ToolCall(
                        id=tc.id,
                        name=tc.function.name,
                        arguments=tc.function.arguments or "",
                    )
                    for tc in (reply.tool_calls or [])
                    if tc.type == "function"
                ]
                if not tool_calls:
                    final_text = reply.content or ""
                    break

                turn.append(
                    ConversationMessage(
                        role="assistant",
                        content=reply.content or "",
                        tool_calls=tool_calls,
                    )
                )
                results = await asyncio.gather(
                    *(self.execute_tool_async(tc) for tc in tool_calls)
                )
                calls_made += len(tool_calls)
                turn.append(ConversationMessage(role="tool", tool_results=list(results)))
                logger.info(
                    "Session %s: tools called: %s",
                    conversation.session_id,
                    ", ".join(tc.name for tc in tool_calls),
                )
            else:
                raise ValueError(
                    f"Model kept requesting tools after {self._settings.max_iterations} rounds"
                )
        except (
            PolymarketMcpError,
            OpenAIError,
            OSError,
            ConnectionError,
            TimeoutError,
            RuntimeError,
            ValueError,
        ) as e:
            logger.exception("Agent execution failed: %s", e)
            yield StreamEvent("error", f"Error: {e}")
            yield StreamEvent("done")
            return

        turn.append(ConversationMessage(role="assistant", content=final_text))
        conversation.messages.extend(turn)
        conversation.tool_calls_count += calls_made

        delay = self._settings.stream_chunk_delay_seconds
        for index, chunk in enumerate(chunk_words(final_text)):
            if index and delay > 0:
                await asyncio.sleep(delay)
            yield StreamEvent("token", chunk)
        yield StreamEvent("done")
