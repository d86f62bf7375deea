"""SSE session transport -- one isolated MCP session per connection.

GET /sse opens a Session: a fresh tool registry, conversation and agent
runner, plus a pair of anyio memory streams that carry JSON-RPC messages
between the HTTP layer and that session's MCP server task.

POST /message?sessionId=<id> looks the session up and forwards the body
into its inbound stream.

Closing a session closes its streams. The MCP server task is not
cancelled: in-flight tool calls run to completion and their responses are
dropped because the outbound stream is gone.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import uuid4

import anyio
import httpx
from mcp import types
from mcp.server import Server
from mcp.shared.message import SessionMessage
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse
from starlette.types import Receive, Scope, Send

from toolrelay.api.model_client import ModelClient
from toolrelay.api.models import Conversation
from toolrelay.api.runner import AgentRunner
from toolrelay.api.tools import ToolRegistry
from toolrelay.config import Settings
from toolrelay.errors import NoActiveSession
from toolrelay.integrations import build_registry

logger = logging.getLogger(__name__)

_INBOUND_BUFFER = 32

SessionState = Literal["active", "closed"]
ServerFactory = Callable[["Session"], Server]


class SessionTransport:
    """Memory-stream pair bridging HTTP and one MCP server.

    read_stream/write_stream are the ends handed to Server.run();
    the HTTP layer feeds the inbound side and drains the outbound side.
    """

    def __init__(self, session_id: str, endpoint: str) -> None:
        self.session_id = session_id
        self.endpoint_uri = f"{endpoint}?sessionId={session_id}"

        self._inbound, self.read_stream = anyio.create_memory_object_stream(_INBOUND_BUFFER)
        self.write_stream, self._outbound = anyio.create_memory_object_stream(0)

        self.closed = False

    async def send_inbound(self, message: SessionMessage) -> None:
        await self._inbound.send(message)

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """SSE events: the endpoint announcement, then each outbound message."""
        async with self._outbound:
            yield {"event": "endpoint", "data": self.endpoint_uri}
            async for session_message in self._outbound:
                yield {
                    "event": "message",
                    "data": session_message.message.model_dump_json(by_alias=True, exclude_none=True),
                }

    async def aclose(self) -> None:
        """Close the send ends; readers drain to end-of-stream and close their own ends."""
        if self.closed:
            return
        self.closed = True
        await self._inbound.aclose()
        await self.write_stream.aclose()


@dataclass
class Session:
    """One external client's isolated channel, registry and loop."""

    id: str
    transport: SessionTransport
    registry: ToolRegistry
    conversation: Conversation
    runner: AgentRunner
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def state(self) -> SessionState:
        return "closed" if self.transport.closed else "active"


class SessionManager:
    """Tracks live sessions by id."""

    def __init__(
        self,
        settings: Settings,
        client: ModelClient,
        http: httpx.AsyncClient,
        *,
        endpoint: str = "/message",
        registry_factory: Callable[[Settings, httpx.AsyncClient], ToolRegistry] = build_registry,
        server_factory: ServerFactory | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._http = http
        self._endpoint = endpoint
        self._registry_factory = registry_factory
        self._server_factory = server_factory
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    async def open_session(self) -> Session:
        """Allocate an id and build the session's private registry and runner."""
        session_id = uuid4().hex
        registry = self._registry_factory(self._settings, self._http)
        session = Session(
            id=session_id,
            transport=SessionTransport(session_id, self._endpoint),
            registry=registry,
            conversation=Conversation(session_id=session_id),
            runner=AgentRunner(self._client, registry, max_turns=self._settings.max_turns),
        )
        self._sessions[session_id] = session

        if self._server_factory is not None:
            server = self._server_factory(session)
            session.task = asyncio.create_task(self._serve(session, server), name=f"mcp-session-{session_id}")

        logger.info("[SSE] New connection established: %s", session_id)
        return session

    async def post_message(self, session_id: str | None, body: bytes) -> None:
        """Forward one JSON-RPC message into the session's MCP server.

        Raises NoActiveSession for an unknown or closed id and
        ValueError for a body that is not a JSON-RPC message.
        """
        session = self.get(session_id)
        if session is None:
            raise NoActiveSession(session_id)

        try:
            message = types.JSONRPCMessage.model_validate_json(body)
        except ValidationError as e:
            raise ValueError(f"Could not parse message: {e}") from e

        try:
            await session.transport.send_inbound(SessionMessage(message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as e:
            raise NoActiveSession(session_id) from e

    async def close_session(self, session_id: str) -> bool:
        """Tear a session down. Returns False if it was already gone."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.transport.aclose()
        logger.info("[SSE] Connection closed: %s", session_id)
        return True

    async def close_all(self) -> None:
        """Close every session and stop their server tasks (process shutdown)."""
        sessions = list(self._sessions.values())
        for session in sessions:
            await self.close_session(session.id)
        tasks = [s.task for s in sessions if s.task is not None and not s.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _serve(self, session: Session, server: Server) -> None:
        try:
            await server.run(
                session.transport.read_stream,
                session.transport.write_stream,
                server.create_initialization_options(),
            )
        except Exception:
            if session.transport.closed:
                logger.debug("MCP server for closed session %s stopped; pending results discarded", session.id)
            else:
                logger.exception("MCP server for session %s failed", session.id)
        finally:
            await self.close_session(session.id)


class SseEndpoint:
    """Raw ASGI endpoint for GET /sse.

    Streams the session's events until the client disconnects or the
    session is closed, then tears the session down.
    """

    def __init__(self, manager: SessionManager) -> None:
        self._manager = manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        session = await self._manager.open_session()
        try:
            response = EventSourceResponse(session.transport.events())
            await response(scope, receive, send)
        finally:
            await self._manager.close_session(session.id)
