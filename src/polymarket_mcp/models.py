import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_AUTHORIZATION = "awaiting-authorization"
    CONNECTED = "connected"


class AuthorizationState(str, Enum):
    NONE_REQUIRED = "none-required"
    AWAITING_REDIRECT = "awaiting-redirect"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: str = ""


@dataclass
class ToolResult:
    """Outcome of one tool call, correlated to it by call id."""

    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass
class ConversationMessage:
    """One role-tagged entry of a conversation.

    A ``tool`` message aggregates the results of every call requested by the
    preceding assistant message.
    """

    role: Literal["user", "assistant", "tool"]
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)

    def to_openai(self) -> List[Dict[str, Any]]:
        """Render as chat-completions messages (one per tool result for ``tool``)."""
        if self.role == "tool":
            return [
                {
                    "role": "tool",
                    "tool_call_id": r.tool_call_id,
                    "content": r.content,
                }
                for r in self.tool_results
            ]
        if self.role == "assistant" and self.tool_calls:
            return [
                {
                    "role": "assistant",
                    "content": self.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": tc.arguments},
                        }
                        for tc in self.tool_calls
                    ],
                }
            ]
        return [{"role": self.role, "content": self.content}]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "tool_calls": [tc.__dict__ for tc in self.tool_calls],
            "tool_results": [r.__dict__ for r in self.tool_results],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationMessage":
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            tool_calls=[ToolCall(**tc) for tc in data.get("tool_calls", [])],
            tool_results=[ToolResult(**r) for r in data.get("tool_results", [])],
        )


@dataclass
class ConversationState:
    """Per-client conversation history and tool call count."""

    session_id: str
    messages: List[ConversationMessage] = field(default_factory=list)
    tool_calls_count: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "session_id": self.session_id,
                "messages": [m.to_dict() for m in self.messages],
                "tool_calls_count": self.tool_calls_count,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "ConversationState":
        data = json.loads(raw)
        return cls(
            session_id=data.get("session_id", ""),
            messages=[ConversationMessage.from_dict(m) for m in data.get("messages", [])],
            tool_calls_count=int(data.get("tool_calls_count", 0)),
        )


@dataclass
class StreamEvent:
    """A frame delivered to the chat caller: ``token``, ``error`` or ``done``."""

    type: Literal["token", "error", "done"]
    data: str = ""
