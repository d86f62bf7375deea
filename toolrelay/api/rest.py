"""HTTP surface for toolrelay.

Endpoints:
  GET  /sse                   - Open an MCP session, stream its events
  POST /message?sessionId=ID  - Deliver a JSON-RPC message to a session
  GET  /health                - Liveness + live session count
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from toolrelay.api.sse import SessionManager, SseEndpoint
from toolrelay.config import Settings
from toolrelay.errors import NoActiveSession

logger = logging.getLogger(__name__)


def create_app(
    manager: SessionManager,
    settings: Settings,
    backend: str = "unknown",
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def message(request: Request) -> Response:
        """POST /message - Forward a JSON-RPC message to the session's server."""
        session_id = request.query_params.get("sessionId")
        body = await request.body()

        try:
            await manager.post_message(session_id, body)
        except NoActiveSession:
            logger.warning("[SSE] Error: No transport found for session %s", session_id)
            return JSONResponse({"error": "No active transport"}, status_code=400)
        except ValueError as e:
            logger.warning("[SSE] Invalid message for session %s: %s", session_id, e)
            return JSONResponse({"error": "Invalid message"}, status_code=400)
        except Exception as e:
            logger.error("[SSE] Error handling message for session %s: %s", session_id, e)
            return JSONResponse({"error": "Error handling message"}, status_code=500)

        return PlainTextResponse("Accepted", status_code=202)

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        return JSONResponse({"status": "ok", "sessions": len(manager), "backend": backend})

    routes = [
        Route("/sse", SseEndpoint(manager), methods=["GET"]),
        Route("/message", message, methods=["POST"]),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
