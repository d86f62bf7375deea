"""Tests for toolrelay/api/sse.py -- SessionTransport and SessionManager.

Sessions are driven directly (no HTTP): open, post JSON-RPC bodies,
read what lands on the inbound stream, drain outbound events and close.
"""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio
from mcp import types
from mcp.shared.message import SessionMessage

from tests.conftest import ScriptedModelClient, make_settings
from toolrelay.api.sse import SessionManager, SessionTransport
from toolrelay.errors import NoActiveSession

_PING = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping"}).encode()


@pytest_asyncio.fixture
async def manager():
    async with httpx.AsyncClient() as http:
        mgr = SessionManager(make_settings(), ScriptedModelClient(), http)
        yield mgr
        await mgr.close_all()


# ---------------------------------------------------------------------------
# SessionTransport
# ---------------------------------------------------------------------------


class TestSessionTransport:
    async def test_endpoint_event_first(self):
        transport = SessionTransport("abc123", "/message")
        events = transport.events()
        try:
            first = await events.__anext__()
        finally:
            await events.aclose()
            await transport.aclose()
        assert first == {"event": "endpoint", "data": "/message?sessionId=abc123"}

    async def test_outbound_message_streamed(self):
        transport = SessionTransport("abc123", "/message")
        events = transport.events()
        await events.__anext__()

        response = types.JSONRPCMessage(types.JSONRPCResponse(jsonrpc="2.0", id=7, result={}))
        sender = asyncio.create_task(transport.write_stream.send(SessionMessage(response)))
        event = await asyncio.wait_for(events.__anext__(), timeout=1)
        await sender

        assert event["event"] == "message"
        assert json.loads(event["data"]) == {"jsonrpc": "2.0", "id": 7, "result": {}}
        await events.aclose()
        await transport.aclose()

    async def test_events_end_when_closed(self):
        transport = SessionTransport("abc123", "/message")
        events = transport.events()
        await events.__anext__()

        await transport.aclose()
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(events.__anext__(), timeout=1)
        assert transport.closed is True

    async def test_aclose_idempotent(self):
        transport = SessionTransport("abc123", "/message")
        await transport.aclose()
        await transport.aclose()
        assert transport.closed is True


# ---------------------------------------------------------------------------
# SessionManager
# ---------------------------------------------------------------------------


class TestSessionManager:
    async def test_open_session(self, manager):
        session = await manager.open_session()

        assert len(manager) == 1
        assert manager.get(session.id) is session
        assert session.state == "active"
        assert session.transport.endpoint_uri == f"/message?sessionId={session.id}"
        assert session.conversation.session_id == session.id
        assert session.conversation.turns == []
        assert "get_weather" in session.registry
        assert session.runner.registry is session.registry
        assert session.task is None

    async def test_sessions_are_isolated(self, manager):
        a = await manager.open_session()
        b = await manager.open_session()

        assert a.id != b.id
        assert a.registry is not b.registry
        assert a.conversation is not b.conversation

    async def test_post_message_delivered(self, manager):
        session = await manager.open_session()

        await manager.post_message(session.id, _PING)

        received = await asyncio.wait_for(session.transport.read_stream.receive(), timeout=1)
        assert isinstance(received, SessionMessage)
        assert received.message.root.method == "ping"
        assert received.message.root.id == 1

    async def test_unknown_session(self, manager):
        with pytest.raises(NoActiveSession, match="No transport found for session abc"):
            await manager.post_message("abc", _PING)

    async def test_missing_session_id(self, manager):
        with pytest.raises(NoActiveSession):
            await manager.post_message(None, _PING)

    async def test_invalid_body(self, manager):
        session = await manager.open_session()
        with pytest.raises(ValueError):
            await manager.post_message(session.id, b'{"not": "json-rpc"}')
        with pytest.raises(ValueError):
            await manager.post_message(session.id, b"not json at all")

    async def test_close_session(self, manager):
        session = await manager.open_session()

        assert await manager.close_session(session.id) is True
        assert await manager.close_session(session.id) is False
        assert len(manager) == 0
        assert session.state == "closed"

    async def test_post_after_close(self, manager):
        session = await manager.open_session()
        await manager.close_session(session.id)

        with pytest.raises(NoActiveSession):
            await manager.post_message(session.id, _PING)

    async def test_close_leaves_other_sessions_untouched(self, manager):
        a = await manager.open_session()
        b = await manager.open_session()

        await manager.close_session(a.id)

        assert manager.get(a.id) is None
        assert manager.get(b.id) is b
        await manager.post_message(b.id, _PING)
        received = await asyncio.wait_for(b.transport.read_stream.receive(), timeout=1)
        assert received.message.root.method == "ping"

    async def test_close_all(self, manager):
        sessions = [await manager.open_session() for _ in range(3)]

        await manager.close_all()

        assert len(manager) == 0
        assert all(s.state == "closed" for s in sessions)
