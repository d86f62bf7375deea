"""Tool registry for direct Anthropic API integration.

Provides:
- ToolSpec: one registered tool (name, description, pydantic input model, handler)
- ToolRegistry: registers tools, validates input, dispatches calls

Handlers are async callables that take the validated input model and
return content blocks (or plain text). Tool-level failures are raised as
ToolError subclasses by dispatch() and converted to error tool_result
blocks by call(), so one failing tool never takes down the loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from toolrelay.api.models import ImageBlock, TextBlock, ToolOutputBlock, ToolResultBlock, ToolUseBlock
from toolrelay.errors import ToolError, ToolExecutionFailure, ToolInputError, UnknownTool

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any], Awaitable[Any]]


def input_schema(model: type[BaseModel]) -> dict[str, Any]:
    """JSON schema for a tool input model, without pydantic's title noise."""
    schema = model.model_json_schema()
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    schema.setdefault("properties", {})
    return schema


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler

    def definition(self) -> dict[str, Any]:
        """Tool definition in Anthropic API format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": input_schema(self.input_model),
        }


class ToolRegistry:
    """Maps tool names to (input validator, handler) pairs.

    Read-only once built. The CLI builds one per process and every SSE
    session builds its own.
    """

    def __init__(self, tool_timeout: float | None = None) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._timeout = tool_timeout

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(
        self,
        name: str,
        description: str,
        input_model: type[BaseModel],
        handler: ToolHandler,
    ) -> None:
        """Register a tool handler with its input model."""
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = ToolSpec(name, description, input_model, handler)

    def lookup(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownTool(name)
        return spec

    def names(self) -> list[str]:
        return list(self._tools)

    def list_definitions(self) -> list[dict[str, Any]]:
        """Return all tool definitions in Anthropic API format."""
        return [spec.definition() for spec in self._tools.values()]

    async def dispatch(self, name: str, arguments: dict[str, Any] | None) -> list[ToolOutputBlock]:
        """Validate input, invoke the handler and normalise its output.

        Raises UnknownTool, ToolInputError or ToolExecutionFailure.
        """
        spec = self.lookup(name)
        try:
            params = spec.input_model.model_validate(arguments or {})
        except ValidationError as e:
            raise ToolInputError(f"Invalid input for {name}: {e}") from e

        try:
            if self._timeout:
                result = await asyncio.wait_for(spec.handler(params), timeout=self._timeout)
            else:
                result = await spec.handler(params)
        except ToolError:
            raise
        except asyncio.TimeoutError as e:
            raise ToolExecutionFailure(f"Tool {name} timed out after {self._timeout:g}s") from e
        except Exception as e:
            logger.exception("Tool dispatch error for %s", name)
            raise ToolExecutionFailure(f"Tool error: {e}") from e

        return normalize_output(result)

    async def call(self, tool_use: ToolUseBlock) -> ToolResultBlock:
        """Run one tool_use block and wrap the outcome as its tool_result.

        Never raises for tool-level failures.
        """
        try:
            content = await self.dispatch(tool_use.name, tool_use.input)
        except ToolError as e:
            logger.warning("Tool %s (%s) failed: %s", tool_use.name, tool_use.id, e)
            return ToolResultBlock(
                tool_use_id=tool_use.id,
                content=[TextBlock(text=str(e))],
                is_error=True,
            )
        return ToolResultBlock(tool_use_id=tool_use.id, content=content)


def normalize_output(result: Any) -> list[ToolOutputBlock]:
    """Flatten a handler return value into text/image blocks."""
    if result is None:
        return []
    if isinstance(result, (TextBlock, ImageBlock)):
        return [result]
    if isinstance(result, str):
        return [TextBlock(text=result)]
    if isinstance(result, (list, tuple)):
        blocks: list[ToolOutputBlock] = []
        for item in result:
            blocks.extend(normalize_output(item))
        return blocks
    raise ToolExecutionFailure(f"Unsupported tool output type: {type(result).__name__}")
