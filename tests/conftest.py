"""Shared fixtures: explicit Settings and a scripted model client."""

from __future__ import annotations

import uuid
from typing import Any

import pytest

from toolrelay.api.model_client import ModelClient, ModelParams
from toolrelay.api.models import ModelReply, TextBlock, ToolUseBlock, Turn
from toolrelay.config import Settings

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    """Settings that ignore the developer's .env and ambient credentials."""
    values: dict[str, Any] = {
        "ANTHROPIC_API_KEY": "test-key",
        "AWS_ACCESS_KEY_ID": "",
        "AWS_SECRET_ACCESS_KEY": "",
        "AWS_REGION": "",
        "WEATHER_API_KEY": "weather-key",
        "ACEDATA_API_KEY": "ace-key",
        "OPENAI_API_KEY": "openai-key",
        "CONFLUENCE_BASE_URL": "https://wiki.example.com",
        "CONFLUENCE_USERNAME": "bot@example.com",
        "CONFLUENCE_API_KEY": "confluence-key",
        "BACKSTAGE_BASE_URL": "https://backstage.example.com/api/catalog",
        "weather_api_url": "https://weather.example.com/v1",
        "suno_api_url": "https://suno.example.com",
        "acedata_api_url": "https://ace.example.com",
        "openai_api_url": "https://openai.example.com/v1",
        "tool_timeout": 5.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


# ---------------------------------------------------------------------------
# Scripted model client
# ---------------------------------------------------------------------------


def make_reply(
    text: str = "",
    tool_uses: list[dict] | None = None,
    stop_reason: str | None = None,
    usage: dict[str, int] | None = None,
) -> ModelReply:
    """Build a ModelReply with text and/or tool_use blocks."""
    content: list = []
    if text:
        content.append(TextBlock(text=text))
    for tu in tool_uses or []:
        content.append(
            ToolUseBlock(
                id=tu.get("id", f"toolu_{uuid.uuid4().hex[:12]}"),
                name=tu["name"],
                input=tu.get("input", {}),
            )
        )
    if stop_reason is None:
        stop_reason = "tool_use" if tool_uses else "end_turn"
    return ModelReply(content=content, stop_reason=stop_reason, usage=usage)


class ScriptedModelClient(ModelClient):
    """Returns queued replies in order; an Exception in the queue is raised.

    Records a snapshot of every (turns, tools) pair it was called with.
    """

    name = "scripted"

    def __init__(self, replies: list[ModelReply | Exception] | None = None) -> None:
        super().__init__(ModelParams("test-model", 256, 0.0))
        self.replies = list(replies or [])
        self.calls: list[tuple[list[Turn], list[dict[str, Any]] | None]] = []

    def queue(self, *replies: ModelReply | Exception) -> None:
        self.replies.extend(replies)

    async def complete(self, turns, tools=None, params=None) -> ModelReply:
        self.calls.append((list(turns), tools))
        if not self.replies:
            raise AssertionError("ScriptedModelClient ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def model_client() -> ScriptedModelClient:
    return ScriptedModelClient()
