"""MCP interface -- lets external hosts reuse the toolrelay tools.

Every SSE session gets its own Server instance exposing:
  - each integration tool in the session's registry
  - chat: run the agent loop on the session's conversation

Uses the mcp library's low-level Server; transport is handled by
toolrelay.api.sse.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mcp.server import Server
from mcp.types import ImageContent, TextContent, Tool
from pydantic import BaseModel, Field, ValidationError

from toolrelay.api.models import ImageBlock, TextBlock, ToolOutputBlock
from toolrelay.api.tools import input_schema
from toolrelay.errors import ToolInputError

if TYPE_CHECKING:
    from toolrelay.api.sse import Session

logger = logging.getLogger(__name__)

CHAT_TOOL = "chat"

McpContent = TextContent | ImageContent


class ChatInput(BaseModel):
    message: str = Field(description="Your message to the assistant")


def to_mcp_content(block: ToolOutputBlock) -> McpContent:
    if isinstance(block, ImageBlock):
        return ImageContent(type="image", data=block.data, mimeType=block.media_type)
    return TextContent(type="text", text=block.text)


class SessionTools:
    """Tool handlers bound to one session's registry, runner and conversation."""

    def __init__(self, session: Session) -> None:
        self._session = session

    async def list_tools(self) -> list[Tool]:
        tools = [
            Tool(
                name=definition["name"],
                description=definition["description"],
                inputSchema=definition["input_schema"],
            )
            for definition in self._session.registry.list_definitions()
        ]
        tools.append(
            Tool(
                name=CHAT_TOOL,
                description=(
                    "Send a message to the assistant and get its answer. The assistant "
                    "may call any of the other tools while answering; the conversation "
                    "is kept for the lifetime of this session."
                ),
                inputSchema=input_schema(ChatInput),
            )
        )
        return tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> list[McpContent]:
        """Route a tool call.

        Tool errors and chat failures (ModelUnavailable, LoopLimitExceeded)
        are raised; the MCP server reports them as an error result.
        """
        if name == CHAT_TOOL:
            return await self._chat(arguments or {})

        blocks = await self._session.registry.dispatch(name, arguments)
        return [to_mcp_content(b) for b in blocks]

    async def _chat(self, arguments: dict[str, Any]) -> list[McpContent]:
        try:
            params = ChatInput.model_validate(arguments)
        except ValidationError as e:
            raise ToolInputError(f"Invalid input for {CHAT_TOOL}: {e}") from e

        outcome = await self._session.runner.run_turn(self._session.conversation, params.message)
        logger.info(
            "MCP chat for session %s: %d model calls, %d tool calls",
            self._session.id,
            outcome.model_calls,
            len(outcome.tool_calls),
        )
        return [to_mcp_content(TextBlock(text=outcome.text))]


def create_mcp_server(session: Session) -> Server:
    """Create a Server bound to one session's tools."""
    server = Server("toolrelay")
    tools = SessionTools(session)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return await tools.list_tools()

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[McpContent]:
        return await tools.call_tool(name, arguments)

    return server
