"""Shared data models for the API layer.

Content blocks are the tagged variants exchanged with the model:
text, image, tool_use and tool_result. Each renders to the Anthropic
Messages API wire shape via to_api().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str

    def to_api(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


class ImageBlock(BaseModel):
    """Base64 image payload (tool output only)."""

    type: Literal["image"] = "image"
    data: str
    media_type: str = "image/png"

    def to_api(self) -> dict[str, Any]:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": self.media_type, "data": self.data},
        }


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)

    def to_api(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: list[Union[TextBlock, ImageBlock]] = Field(default_factory=list)
    is_error: bool = False

    def to_api(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": [c.to_api() for c in self.content],
            "is_error": self.is_error,
        }


ToolOutputBlock = Union[TextBlock, ImageBlock]
ContentBlock = Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock]

# Block types a model reply may carry that the loop understands
_REPLY_BLOCK_TYPES: dict[str, type[BaseModel]] = {
    "text": TextBlock,
    "tool_use": ToolUseBlock,
}


def parse_reply_blocks(raw: list[dict[str, Any]]) -> list[ContentBlock]:
    """Parse raw content blocks from a Messages API reply.

    Unknown block types (thinking, redacted_thinking, ...) are skipped.
    """
    blocks: list[ContentBlock] = []
    for item in raw:
        model = _REPLY_BLOCK_TYPES.get(item.get("type", ""))
        if model is None:
            logger.debug("Skipping unsupported content block type: %s", item.get("type"))
            continue
        blocks.append(model.model_validate(item))
    return blocks


@dataclass
class Turn:
    """A single conversation turn."""

    role: Role
    content: list[ContentBlock]

    def to_api(self) -> dict[str, Any]:
        return {"role": self.role, "content": [b.to_api() for b in self.content]}


@dataclass
class Conversation:
    """Ordered turns for one logical session.

    The lock serialises loop steps so at most one turn mutates
    the sequence at a time.
    """

    session_id: str
    turns: list[Turn] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def append(self, role: Role, content: list[ContentBlock]) -> Turn:
        turn = Turn(role=role, content=content)
        self.turns.append(turn)
        return turn

    def to_api(self) -> list[dict[str, Any]]:
        return [t.to_api() for t in self.turns]


@dataclass
class ModelReply:
    """Parsed reply from a model backend."""

    content: list[ContentBlock]
    stop_reason: str  # end_turn, max_tokens, tool_use, stop_sequence
    usage: dict[str, int] | None = None

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))
