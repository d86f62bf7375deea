"""toolrelay entry point.

Initializes all components, then runs the HTTP server and the CLI side
by side on one event loop:
  Settings -> ModelClient -> integrations http -> CLI runner + SessionManager
  -> App -> Uvicorn

The CLI quitting stops the server; SIGTERM/SIGINT stop both.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from pydantic import ValidationError
from starlette.applications import Starlette

from toolrelay.api.mcp import create_mcp_server
from toolrelay.api.model_client import create_model_client
from toolrelay.api.models import Conversation
from toolrelay.api.rest import create_app
from toolrelay.api.runner import AgentRunner
from toolrelay.api.sse import SessionManager
from toolrelay.cli import run_cli
from toolrelay.config import Settings
from toolrelay.errors import FatalConfiguration
from toolrelay.integrations import build_registry

logger = logging.getLogger(__name__)

CLI_SESSION_ID = "cli"


async def create_components(settings: Settings) -> dict:
    """Initialize all components in dependency order.

    1. ModelClient - Anthropic or Bedrock (FatalConfiguration if neither)
    2. integrations httpx client - shared by every registry
    3. CLI registry, runner and conversation
    4. SessionManager - builds a private registry/runner per SSE session
    """
    client = create_model_client(settings)
    await client.start()

    # Integrations client (separate from the model client -- no API auth headers)
    http = httpx.AsyncClient(
        timeout=httpx.Timeout(connect=10, read=settings.tool_timeout, write=10, pool=10),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
    )

    registry = build_registry(settings, http)
    runner = AgentRunner(client, registry, max_turns=settings.max_turns)
    conversation = Conversation(session_id=CLI_SESSION_ID)

    sessions = SessionManager(settings, client, http, server_factory=create_mcp_server)

    return {
        "client": client,
        "http": http,
        "registry": registry,
        "runner": runner,
        "conversation": conversation,
        "sessions": sessions,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down toolrelay...")

    sessions = components.get("sessions")
    if sessions:
        await sessions.close_all()

    http = components.get("http")
    if http:
        await http.aclose()

    client = components.get("client")
    if client:
        await client.close()

    logger.info("toolrelay shutdown complete.")


def build_app(settings: Settings, components: dict) -> Starlette:
    """Build the Starlette app over already-created components.

    The lifespan closes any SSE sessions still open when the server stops.
    """
    sessions: SessionManager = components["sessions"]

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        app.state.components = components
        logger.info(
            "API: backend=%s, max_turns=%d, tool_timeout=%gs",
            components["client"].name,
            settings.max_turns,
            settings.tool_timeout,
        )
        yield
        await sessions.close_all()

    return create_app(sessions, settings, backend=components["client"].name, lifespan=lifespan)


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the caller."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


async def serve(settings: Settings) -> None:
    """Run the server and the CLI until either ends or a signal arrives."""
    components = await create_components(settings)
    try:
        await _run(settings, components)
    finally:
        await shutdown_components(components)


async def _run(settings: Settings, components: dict) -> None:
    sessions: SessionManager = components["sessions"]
    server: EmbeddedServer | None = None
    tasks: list[asyncio.Task] = []

    if settings.server_enabled:
        config = uvicorn.Config(
            build_app(settings, components),
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level,
        )
        server = EmbeddedServer(config)
        tasks.append(asyncio.create_task(server.serve(), name="http-server"))
        logger.info("MCP Server running on port %d", settings.port)

    cli_task: asyncio.Task | None = None
    if settings.cli_enabled:
        cli_task = asyncio.create_task(
            run_cli(components["runner"], components["conversation"]), name="cli"
        )
        tasks.append(cli_task)

    if not tasks:
        logger.warning("Both the CLI and the HTTP server are disabled; nothing to run")
        return

    stopping = asyncio.Event()

    def _stop(signame: str) -> None:
        logger.info("Received %s. Shutting down server...", signame)
        stopping.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _stop, sig.name)

    stop_task = asyncio.create_task(stopping.wait(), name="stop-signal")
    try:
        done, pending = await asyncio.wait([*tasks, stop_task], return_when=asyncio.FIRST_COMPLETED)

        # Whichever side finished first, stop the rest. Open SSE streams
        # only end once their sessions are closed.
        if cli_task is not None and cli_task in pending:
            cli_task.cancel()
        if server is not None:
            server.should_exit = True
        await sessions.close_all()
        stop_task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            if task is not stop_task and not task.cancelled() and task.exception() is not None:
                raise task.exception()
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


def main() -> None:
    """Entry point -- parse settings, start components, run server + CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings = Settings()
    except ValidationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    logging.getLogger().setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    logger.info("Starting toolrelay")
    logger.info("Model: %s (Bedrock: %s)", settings.model, settings.bedrock_model_id)
    logger.info(
        "CLI: %s, HTTP: %s",
        "enabled" if settings.cli_enabled else "disabled",
        "enabled" if settings.server_enabled else "disabled",
    )

    try:
        asyncio.run(serve(settings))
    except FatalConfiguration as e:
        logger.error("Fatal error: %s", e)
        sys.exit(1)
    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    main()
