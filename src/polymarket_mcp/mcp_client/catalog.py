import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from mcp import ClientSession
from mcp.shared.exceptions import McpError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: Dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> Dict[str, Any]:
        """Render in the chat-completions ``tools`` format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema or {"type": "object", "properties": {}},
            },
        }


@dataclass(frozen=True)
class PromptDescriptor:
    name: str
    description: str = ""


@dataclass(frozen=True)
class ResourceDescriptor:
    uri: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class ToolCatalog:
    """Snapshot of what one MCP connection offers. Replaced, never patched."""

    tools: Tuple[ToolDescriptor, ...] = ()
    prompts: Tuple[PromptDescriptor, ...] = ()
    resources: Tuple[ResourceDescriptor, ...] = ()

    def __len__(self) -> int:
        return len(self.tools)

    def tool_names(self) -> List[str]:
        return [t.name for t in self.tools]

    def to_openai_tools(self) -> List[Dict[str, Any]]:
        return [t.to_openai() for t in self.tools]

    @classmethod
    async def load(cls, client: ClientSession) -> "ToolCatalog":
        """List tools (required) plus prompts and resources (best-effort) from a session.

        Args:
            client: An initialized MCP client session.

        Returns:
            ToolCatalog: Fresh snapshot. Prompt/resource listing failures leave
                those parts empty instead of failing the whole load.
        """
        tools_result = await client.list_tools()
        tools = tuple(
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in tools_result.tools
        )
        logger.info("Found %d tools:", len(tools))
        for index, tool in enumerate(tools, 1):
            logger.info("   %d. %s - %s", index, tool.name, tool.description)

        return cls(
            tools=tools,
            prompts=await _load_prompts(client),
            resources=await _load_resources(client),
        )


async def _load_prompts(client: ClientSession) -> Tuple[PromptDescriptor, ...]:
    try:
        result = await client.list_prompts()
    except (McpError, ConnectionError, TimeoutError, OSError) as e:
        logger.info("No prompts available: %s", e)
        return ()
    prompts = tuple(
        PromptDescriptor(name=p.name, description=p.description or "")
        for p in result.prompts
    )
    logger.info("Found %d prompts", len(prompts))
    return prompts


async def _load_resources(client: ClientSession) -> Tuple[ResourceDescriptor, ...]:
    try:
        result = await client.list_resources()
    except (McpError, ConnectionError, TimeoutError, OSError) as e:
        logger.info("No resources available: %s", e)
        return ()
    resources = tuple(
        ResourceDescriptor(
            uri=str(r.uri),
            name=r.name,
            description=r.description or "",
        )
        for r in result.resources
    )
    logger.info("Found %d resources", len(resources))
    return resources
