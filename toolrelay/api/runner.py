"""Agent runner -- the tool-invocation loop.

Sends the conversation plus tool definitions to the model client,
dispatches any tool_use blocks in the reply concurrently, appends the
tool_result turn and repeats until the model answers in plain text.

The loop is bounded by max_turns dispatch rounds. A turn that fails
(model unavailable, loop limit) is rolled back so the conversation
never keeps a dangling tool_use or an unanswered user turn.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from toolrelay.api.model_client import ModelClient
from toolrelay.api.models import ContentBlock, Conversation, TextBlock, ToolResultBlock, ToolUseBlock
from toolrelay.api.tools import ToolRegistry
from toolrelay.errors import LoopLimitExceeded

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """Record of one dispatched tool_use block."""

    tool_name: str
    tool_use_id: str
    arguments: dict[str, Any]
    is_error: bool
    duration_ms: int


@dataclass
class TurnOutcome:
    """Result of a completed turn."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    model_calls: int = 0
    usage: dict[str, int] = field(default_factory=dict)


class AgentRunner:
    """Runs conversational turns against one tool registry.

    The model client may be shared; the registry belongs to whoever
    owns this runner (the CLI process or a single SSE session).
    """

    def __init__(self, client: ModelClient, registry: ToolRegistry, max_turns: int = 10) -> None:
        self._client = client
        self._registry = registry
        self._max_turns = max_turns

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def run_turn(
        self,
        conversation: Conversation,
        user_input: str | list[ContentBlock],
    ) -> TurnOutcome:
        """Append the user input and run the loop to a final answer.

        Raises ModelUnavailable or LoopLimitExceeded; in both cases the
        conversation is restored to its state before the call.
        """
        content = [TextBlock(text=user_input)] if isinstance(user_input, str) else list(user_input)

        async with conversation.lock:
            checkpoint = len(conversation.turns)
            conversation.append("user", content)
            try:
                return await self._tool_loop(conversation)
            except BaseException:
                del conversation.turns[checkpoint:]
                raise

    async def _tool_loop(self, conversation: Conversation) -> TurnOutcome:
        """Call the model, dispatch tools, repeat until no tool_use remains."""
        tools = self._registry.list_definitions()
        outcome = TurnOutcome(text="")
        rounds = 0

        while True:
            reply = await self._client.complete(list(conversation.turns), tools or None)
            outcome.model_calls += 1
            _add_usage(outcome.usage, reply.usage)

            # Empty assistant content is rejected by the API on the next call
            if reply.content:
                conversation.append("assistant", reply.content)

            tool_uses = reply.tool_uses()
            if not tool_uses:
                outcome.text = reply.text()
                return outcome

            if rounds >= self._max_turns:
                logger.warning(
                    "Tool loop reached max_turns=%d (session %s)",
                    self._max_turns,
                    conversation.session_id,
                )
                raise LoopLimitExceeded(self._max_turns)

            results = await self._dispatch_all(tool_uses, outcome)
            conversation.append("user", results)
            rounds += 1

    async def _dispatch_all(
        self,
        tool_uses: list[ToolUseBlock],
        outcome: TurnOutcome,
    ) -> list[ContentBlock]:
        """Fan out every tool_use in one reply, fan in results in block order."""
        logger.debug(
            "Dispatching %s (available: %s)",
            [tu.name for tu in tool_uses],
            self._registry.names(),
        )

        async def _timed(tool_use: ToolUseBlock) -> tuple[ToolResultBlock, ToolCall]:
            start = time.monotonic()
            result = await self._registry.call(tool_use)
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(
                "Tool %s (%s) %s in %dms",
                tool_use.name,
                tool_use.id,
                "failed" if result.is_error else "completed",
                duration_ms,
            )
            return result, ToolCall(
                tool_name=tool_use.name,
                tool_use_id=tool_use.id,
                arguments=tool_use.input,
                is_error=result.is_error,
                duration_ms=duration_ms,
            )

        settled = await asyncio.gather(*(_timed(tu) for tu in tool_uses))
        outcome.tool_calls.extend(call for _, call in settled)
        return [result for result, _ in settled]


def _add_usage(total: dict[str, int], usage: dict[str, int] | None) -> None:
    for key, value in (usage or {}).items():
        if isinstance(value, int):
            total[key] = total.get(key, 0) + value
