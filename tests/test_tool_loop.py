"""Integration tests for AgentRunner.run_turn() and its tool loop.

A scripted model client returns controlled ModelReply objects and a real
ToolRegistry dispatches to test handlers (or to the real weather adapter
over httpx.MockTransport). This verifies turn accumulation, parallel
dispatch with ordered fan-in, error results, the max_turns bound and
rollback of failed turns.
"""

import asyncio

import httpx
import pytest
from pydantic import BaseModel

from tests.conftest import ScriptedModelClient, make_reply, make_settings
from toolrelay.api.models import Conversation, TextBlock, ToolResultBlock, ToolUseBlock
from toolrelay.api.runner import AgentRunner
from toolrelay.api.tools import ToolRegistry
from toolrelay.errors import LoopLimitExceeded, ModelUnavailable
from toolrelay.integrations import build_registry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class NameInput(BaseModel):
    name: str


def _conversation() -> Conversation:
    return Conversation(session_id="test")


def _registry_with(**handlers) -> ToolRegistry:
    registry = ToolRegistry(tool_timeout=5)
    for name, handler in handlers.items():
        registry.register(name, f"{name} tool", NameInput, handler)
    return registry


def _weather_transport(request: httpx.Request) -> httpx.Response:
    location = request.url.params["q"]
    if location == "Paris":
        return httpx.Response(
            200,
            json={
                "location": {"name": "Paris"},
                "current": {"temp_c": 18.0, "temp_f": 64.4, "condition": {"text": "Partly cloudy"}},
            },
        )
    return httpx.Response(400, json={"error": {"code": 1006, "message": "No matching location found."}})


# ---------------------------------------------------------------------------
# Plain answers
# ---------------------------------------------------------------------------


class TestPlainAnswer:
    async def test_text_reply_is_final_answer(self):
        client = ScriptedModelClient([make_reply(text="42")])
        runner = AgentRunner(client, ToolRegistry())
        conv = _conversation()

        outcome = await runner.run_turn(conv, "What is six times seven?")

        assert outcome.text == "42"
        assert outcome.model_calls == 1
        assert outcome.tool_calls == []
        assert len(client.calls) == 1
        assert [t.role for t in conv.turns] == ["user", "assistant"]
        assert conv.turns[0].content == [TextBlock(text="What is six times seven?")]

    async def test_empty_registry_sends_no_tools(self):
        client = ScriptedModelClient([make_reply(text="hi")])
        await AgentRunner(client, ToolRegistry()).run_turn(_conversation(), "hello")
        _, tools = client.calls[0]
        assert tools is None

    async def test_tools_advertised(self):
        async def noop(params):
            return "ok"

        client = ScriptedModelClient([make_reply(text="hi")])
        await AgentRunner(client, _registry_with(noop=noop)).run_turn(_conversation(), "hello")
        _, tools = client.calls[0]
        assert [t["name"] for t in tools] == ["noop"]

    async def test_multiple_text_blocks_joined(self):
        reply = make_reply(text="first")
        reply.content.append(TextBlock(text="second"))
        client = ScriptedModelClient([reply])
        outcome = await AgentRunner(client, ToolRegistry()).run_turn(_conversation(), "hi")
        assert outcome.text == "first\nsecond"

    async def test_empty_reply_not_appended(self):
        client = ScriptedModelClient([make_reply(text="", stop_reason="max_tokens")])
        conv = _conversation()
        outcome = await AgentRunner(client, ToolRegistry()).run_turn(conv, "hi")
        assert outcome.text == ""
        assert [t.role for t in conv.turns] == ["user"]

    async def test_history_sent_on_next_turn(self):
        client = ScriptedModelClient([make_reply(text="one"), make_reply(text="two")])
        runner = AgentRunner(client, ToolRegistry())
        conv = _conversation()

        await runner.run_turn(conv, "first")
        await runner.run_turn(conv, "second")

        turns, _ = client.calls[1]
        assert [t.role for t in turns] == ["user", "assistant", "user"]

    async def test_usage_accumulated(self):
        client = ScriptedModelClient(
            [
                make_reply(tool_uses=[{"id": "a", "name": "noop", "input": {"name": "x"}}],
                           usage={"input_tokens": 10, "output_tokens": 3}),
                make_reply(text="done", usage={"input_tokens": 20, "output_tokens": 5}),
            ]
        )

        async def noop(params):
            return "ok"

        outcome = await AgentRunner(client, _registry_with(noop=noop)).run_turn(_conversation(), "go")
        assert outcome.usage == {"input_tokens": 30, "output_tokens": 8}


# ---------------------------------------------------------------------------
# Tool dispatch
# ---------------------------------------------------------------------------


class TestToolDispatch:
    async def test_single_tool_round(self):
        async def lookup(params):
            return f"found {params.name}"

        client = ScriptedModelClient(
            [
                make_reply(tool_uses=[{"id": "tu_1", "name": "lookup", "input": {"name": "alice"}}]),
                make_reply(text="Alice is here."),
            ]
        )
        conv = _conversation()
        outcome = await AgentRunner(client, _registry_with(lookup=lookup)).run_turn(conv, "find alice")

        assert outcome.text == "Alice is here."
        assert outcome.model_calls == 2
        assert [c.tool_name for c in outcome.tool_calls] == ["lookup"]
        assert [t.role for t in conv.turns] == ["user", "assistant", "user", "assistant"]

        results = conv.turns[2].content
        assert results == [ToolResultBlock(tool_use_id="tu_1", content=[TextBlock(text="found alice")])]

        # Second model call saw the tool_result turn
        turns, _ = client.calls[1]
        assert isinstance(turns[-1].content[0], ToolResultBlock)

    async def test_results_in_block_order_despite_completion_order(self):
        async def slow(params):
            await asyncio.sleep(0.05)
            return "slow done"

        async def fast(params):
            return "fast done"

        client = ScriptedModelClient(
            [
                make_reply(
                    tool_uses=[
                        {"id": "tu_slow", "name": "slow", "input": {"name": "a"}},
                        {"id": "tu_fast", "name": "fast", "input": {"name": "b"}},
                    ]
                ),
                make_reply(text="both done"),
            ]
        )
        conv = _conversation()
        await AgentRunner(client, _registry_with(slow=slow, fast=fast)).run_turn(conv, "go")

        results = conv.turns[2].content
        assert [r.tool_use_id for r in results] == ["tu_slow", "tu_fast"]
        assert results[0].content == [TextBlock(text="slow done")]
        assert results[1].content == [TextBlock(text="fast done")]

    async def test_tools_run_concurrently(self):
        """first waits on an event only second sets; sequential dispatch would time out."""
        ready = asyncio.Event()

        async def first(params):
            await asyncio.wait_for(ready.wait(), timeout=1)
            return "first"

        async def second(params):
            ready.set()
            return "second"

        client = ScriptedModelClient(
            [
                make_reply(
                    tool_uses=[
                        {"id": "1", "name": "first", "input": {"name": "x"}},
                        {"id": "2", "name": "second", "input": {"name": "y"}},
                    ]
                ),
                make_reply(text="ok"),
            ]
        )
        conv = _conversation()
        await AgentRunner(client, _registry_with(first=first, second=second)).run_turn(conv, "go")

        results = conv.turns[2].content
        assert [r.is_error for r in results] == [False, False]

    async def test_unknown_tool_reported_to_model(self):
        client = ScriptedModelClient(
            [
                make_reply(tool_uses=[{"id": "tu_x", "name": "does_not_exist", "input": {}}]),
                make_reply(text="Sorry, I cannot do that."),
            ]
        )
        conv = _conversation()
        outcome = await AgentRunner(client, ToolRegistry()).run_turn(conv, "go")

        assert outcome.text == "Sorry, I cannot do that."
        [result] = conv.turns[2].content
        assert result.tool_use_id == "tu_x"
        assert result.is_error is True
        assert result.content == [TextBlock(text="Tool does_not_exist does not exist")]
        assert outcome.tool_calls[0].is_error is True

    async def test_one_failing_adapter_does_not_affect_others(self):
        """Paris succeeds, XYZZY fails; both results keep their own ids."""
        http = httpx.AsyncClient(transport=httpx.MockTransport(_weather_transport))
        registry = build_registry(make_settings(), http)
        client = ScriptedModelClient(
            [
                make_reply(
                    tool_uses=[
                        {"id": "tu_paris", "name": "get_weather", "input": {"location": "Paris"}},
                        {"id": "tu_xyzzy", "name": "get_weather", "input": {"location": "XYZZY"}},
                    ]
                ),
                make_reply(text="Paris is partly cloudy; I couldn't find XYZZY."),
            ]
        )
        conv = _conversation()
        try:
            await AgentRunner(client, registry).run_turn(conv, "Weather in Paris and XYZZY?")
        finally:
            await http.aclose()

        paris, xyzzy = conv.turns[2].content
        assert paris.tool_use_id == "tu_paris"
        assert paris.is_error is False
        assert paris.content == [
            TextBlock(text="The current weather in Paris is Partly cloudy with a temperature of 18.0°C (64.4°F).")
        ]
        assert xyzzy.tool_use_id == "tu_xyzzy"
        assert xyzzy.is_error is True
        assert xyzzy.content == [TextBlock(text="Weather API error: 400 Bad Request")]

    async def test_invalid_tool_input_reported(self):
        async def lookup(params):
            return "unused"

        client = ScriptedModelClient(
            [
                make_reply(tool_uses=[{"id": "tu_1", "name": "lookup", "input": {"wrong": 1}}]),
                make_reply(text="retrying later"),
            ]
        )
        conv = _conversation()
        await AgentRunner(client, _registry_with(lookup=lookup)).run_turn(conv, "go")

        [result] = conv.turns[2].content
        assert result.is_error is True
        assert result.content[0].text.startswith("Invalid input for lookup")


# ---------------------------------------------------------------------------
# Failures and rollback
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_loop_limit_exceeded_rolls_back(self):
        async def again(params):
            return "again"

        def _tool_reply(i: int):
            return make_reply(tool_uses=[{"id": f"tu_{i}", "name": "again", "input": {"name": "x"}}])

        client = ScriptedModelClient([_tool_reply(i) for i in range(3)])
        runner = AgentRunner(client, _registry_with(again=again), max_turns=2)
        conv = _conversation()
        conv.append("user", [TextBlock(text="earlier")])
        conv.append("assistant", [TextBlock(text="earlier answer")])

        with pytest.raises(LoopLimitExceeded) as exc:
            await runner.run_turn(conv, "loop forever")

        assert exc.value.max_turns == 2
        # max_turns dispatch rounds, then the next tool request aborts
        assert len(client.calls) == 3
        assert [t.content[0].text for t in conv.turns] == ["earlier", "earlier answer"]

    async def test_model_unavailable_first_call_rolls_back(self):
        client = ScriptedModelClient([ModelUnavailable("Anthropic API error (529): overloaded_error - Overloaded")])
        conv = _conversation()

        with pytest.raises(ModelUnavailable, match="overloaded"):
            await AgentRunner(client, ToolRegistry()).run_turn(conv, "hello")

        assert conv.turns == []

    async def test_model_unavailable_mid_loop_rolls_back(self):
        async def lookup(params):
            return "found"

        client = ScriptedModelClient(
            [
                make_reply(tool_uses=[{"id": "tu_1", "name": "lookup", "input": {"name": "a"}}]),
                ModelUnavailable("API request timed out"),
            ]
        )
        conv = _conversation()

        with pytest.raises(ModelUnavailable):
            await AgentRunner(client, _registry_with(lookup=lookup)).run_turn(conv, "hello")

        assert conv.turns == []

    async def test_conversation_usable_after_failure(self):
        client = ScriptedModelClient([ModelUnavailable("down"), make_reply(text="back")])
        runner = AgentRunner(client, ToolRegistry())
        conv = _conversation()

        with pytest.raises(ModelUnavailable):
            await runner.run_turn(conv, "first try")
        outcome = await runner.run_turn(conv, "second try")

        assert outcome.text == "back"
        assert [t.content[0].text for t in conv.turns] == ["second try", "back"]


# ---------------------------------------------------------------------------
# Concurrency on one conversation
# ---------------------------------------------------------------------------


class TestSerialisation:
    async def test_concurrent_turns_do_not_interleave(self):
        gate = asyncio.Event()

        async def wait(params):
            await gate.wait()
            return "released"

        client = ScriptedModelClient(
            [
                make_reply(tool_uses=[{"id": "tu_1", "name": "wait", "input": {"name": "a"}}]),
                make_reply(text="first answer"),
                make_reply(text="second answer"),
            ]
        )
        runner = AgentRunner(client, _registry_with(wait=wait))
        conv = _conversation()

        first = asyncio.create_task(runner.run_turn(conv, "first"))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(runner.run_turn(conv, "second"))
        await asyncio.sleep(0.01)
        gate.set()
        await asyncio.gather(first, second)

        roles_and_first_block = [(t.role, type(t.content[0]).__name__) for t in conv.turns]
        assert roles_and_first_block == [
            ("user", "TextBlock"),
            ("assistant", "ToolUseBlock"),
            ("user", "ToolResultBlock"),
            ("assistant", "TextBlock"),
            ("user", "TextBlock"),
            ("assistant", "TextBlock"),
        ]
        assert conv.turns[4].content == [TextBlock(text="second")]
        assert isinstance(conv.turns[1].content[0], ToolUseBlock)
