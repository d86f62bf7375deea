"""Model backends behind one interface.

Two variants of ModelClient, chosen once at startup by
create_model_client():
  AnthropicClient - direct httpx calls to the Anthropic Messages API
  BedrockClient   - boto3 bedrock-runtime invoke_model

Both adapt their response to ModelReply. Failures raise ModelUnavailable;
nothing is retried here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from toolrelay.api.models import ModelReply, Turn, parse_reply_blocks
from toolrelay.config import Settings
from toolrelay.errors import FatalConfiguration, ModelUnavailable

logger = logging.getLogger(__name__)

# Anthropic API version header
_API_VERSION = "2023-06-01"
_BEDROCK_VERSION = "bedrock-2023-05-31"


@dataclass(frozen=True)
class ModelParams:
    model: str
    max_tokens: int
    temperature: float


class ModelClient(ABC):
    """Uniform "create completion" operation over a model backend."""

    name: str = "model"

    def __init__(self, params: ModelParams) -> None:
        self.params = params

    async def start(self) -> None:
        """Acquire network resources."""

    async def close(self) -> None:
        """Release network resources."""

    @abstractmethod
    async def complete(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]] | None = None,
        params: ModelParams | None = None,
    ) -> ModelReply:
        """Send the conversation and tool definitions, return the parsed reply."""

    def _reply_from_body(self, data: dict[str, Any]) -> ModelReply:
        try:
            return ModelReply(
                content=parse_reply_blocks(data["content"]),
                stop_reason=data.get("stop_reason") or "",
                usage=data.get("usage"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ModelUnavailable(f"Malformed {self.name} response: {e}") from e


class AnthropicClient(ModelClient):
    """Direct request to the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        settings: Settings,
        params: ModelParams | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(params or ModelParams(settings.model, settings.max_tokens, settings.temperature))
        self._settings = settings
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings
        headers = {
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
            "x-api-key": settings.anthropic_api_key,
        }
        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=self._transport,
        )
        logger.info("httpx client initialized for %s", settings.api_base_url)

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    async def complete(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]] | None = None,
        params: ModelParams | None = None,
    ) -> ModelReply:
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")

        params = params or self.params
        payload: dict[str, Any] = {
            "model": params.model,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "messages": [t.to_api() for t in turns],
        }
        if tools:
            payload["tools"] = tools

        try:
            response = await self._http.post("/v1/messages", json=payload)
        except httpx.TimeoutException as e:
            raise ModelUnavailable(f"API request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ModelUnavailable(f"HTTP error: {e}") from e

        if response.status_code != 200:
            try:
                error = response.json().get("error", {})
                error_type = error.get("type", "unknown")
                error_msg = error.get("message", "unknown error")
            except ValueError:
                error_type = "http_error"
                error_msg = response.text[:500]
            raise ModelUnavailable(
                f"Anthropic API error ({response.status_code}): {error_type} - {error_msg}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelUnavailable(f"Anthropic API returned invalid JSON: {e}") from e
        return self._reply_from_body(data)


class BedrockClient(ModelClient):
    """Claude through the AWS Bedrock runtime (different request envelope)."""

    name = "bedrock"

    def __init__(
        self,
        settings: Settings,
        params: ModelParams | None = None,
        client: Any | None = None,
    ) -> None:
        super().__init__(
            params or ModelParams(settings.bedrock_model_id, settings.max_tokens, settings.temperature)
        )
        self._settings = settings
        self._client = client

    async def start(self) -> None:
        if self._client is not None:
            return
        settings = self._settings
        self._client = boto3.client(
            "bedrock-runtime",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            config=Config(
                connect_timeout=settings.api_timeout_connect,
                read_timeout=settings.api_timeout_read,
                retries={"total_max_attempts": 1, "mode": "standard"},
            ),
        )
        logger.info("Bedrock runtime client initialized (region: %s)", settings.aws_region)

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
        self._client = None

    async def complete(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]] | None = None,
        params: ModelParams | None = None,
    ) -> ModelReply:
        if self._client is None:
            raise RuntimeError("Bedrock client not initialized -- call start() first")

        params = params or self.params
        body: dict[str, Any] = {
            "anthropic_version": _BEDROCK_VERSION,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "messages": [t.to_api() for t in turns],
        }
        if tools:
            body["tools"] = tools

        try:
            data = await asyncio.to_thread(self._invoke, params.model, body)
        except (ClientError, BotoCoreError) as e:
            raise ModelUnavailable(f"Bedrock error: {e}") from e
        except ValueError as e:
            raise ModelUnavailable(f"Bedrock returned invalid JSON: {e}") from e
        return self._reply_from_body(data)

    def _invoke(self, model_id: str, body: dict[str, Any]) -> dict[str, Any]:
        response = self._client.invoke_model(
            modelId=model_id,
            body=json.dumps(body),
            contentType="application/json",
            accept="application/json",
        )
        return json.loads(response["body"].read())


def create_model_client(settings: Settings) -> ModelClient:
    """Pick the backend once, by credential availability.

    ANTHROPIC_API_KEY wins; otherwise a complete AWS credential set
    selects Bedrock. Neither is fatal.
    """
    if settings.has_anthropic_credentials:
        logger.info("Using direct Anthropic API (model: %s)", settings.model)
        return AnthropicClient(settings)
    if settings.has_bedrock_credentials:
        logger.info("Using AWS Bedrock (model: %s)", settings.bedrock_model_id)
        return BedrockClient(settings)
    raise FatalConfiguration(
        "No model credentials: set ANTHROPIC_API_KEY, or AWS_ACCESS_KEY_ID, "
        "AWS_SECRET_ACCESS_KEY and AWS_REGION for Bedrock"
    )
