"""get_confluence_content: page lookup by title through the Confluence REST API."""

from __future__ import annotations

import logging
from typing import Literal

import httpx
from pydantic import BaseModel, Field

from toolrelay.api.models import TextBlock
from toolrelay.api.tools import ToolRegistry
from toolrelay.config import Settings
from toolrelay.errors import ToolExecutionFailure
from toolrelay.integrations.base import truncate

logger = logging.getLogger(__name__)

ExpandOption = Literal[
    "body",
    "body.storage",
    "childTypes.all",
    "childTypes.attachment",
    "childTypes.comment",
    "childTypes.page",
    "container",
    "metadata.currentuser",
    "metadata.properties",
    "metadata.labels",
    "operations",
    "children.page",
    "children.attachment",
    "children.comment",
    "restrictions.read.restrictions.user",
    "restrictions.read.restrictions.group",
    "restrictions.update.restrictions.user",
    "restrictions.update.restrictions.group",
    "history",
    "version",
    "descendants.page",
    "descendants.attachment",
    "descendants.comment",
    "space",
]


class ConfluenceInput(BaseModel):
    type: Literal["page"] = Field("page", description="The type of content to retrieve")
    title: str = Field(description="The title of the content to retrieve")
    expand: list[ExpandOption] | None = Field(
        None,
        description="Properties to expand in the response, body.storage is required to get the content",
    )


async def get_confluence_content(
    params: ConfluenceInput,
    *,
    _settings: Settings,
    _http: httpx.AsyncClient,
) -> list[TextBlock]:
    if not _settings.confluence_base_url:
        raise ToolExecutionFailure("Error getting Confluence content: CONFLUENCE_BASE_URL not configured")

    expand = params.expand or ["body.storage"]
    try:
        response = await _http.get(
            f"{_settings.confluence_base_url}/wiki/rest/api/content",
            params={"type": params.type, "title": params.title, "expand": ",".join(expand)},
            auth=(_settings.confluence_username, _settings.confluence_api_key),
            headers={"Content-Type": "application/json"},
        )
    except httpx.HTTPError as e:
        raise ToolExecutionFailure(f"Error getting Confluence content: {e}") from e

    if response.status_code != 200:
        raise ToolExecutionFailure(f"Error getting Confluence content: {response.reason_phrase}")

    try:
        results = response.json().get("results") or []
    except ValueError as e:
        raise ToolExecutionFailure(f"Error getting Confluence content: invalid JSON ({e})") from e

    if not results:
        return [TextBlock(text="No content found")]

    content = results[0]
    body = ((content.get("body") or {}).get("storage") or {}).get("value")
    text = (
        f"Title: {content.get('title')}\n"
        f"ID: {content.get('id')}\n"
        f"Type: {content.get('type')}\n"
        f"Status: {content.get('status')}\n"
    )
    if body:
        text += f"\nContent:\n{body}"
    return [TextBlock(text=truncate(text, _settings.truncation_limit))]


def register_confluence_tools(registry: ToolRegistry, settings: Settings, http: httpx.AsyncClient) -> None:
    async def _content(params: ConfluenceInput) -> list[TextBlock]:
        return await get_confluence_content(params, _settings=settings, _http=http)

    registry.register("get_confluence_content", "Retrieves content from Confluence", ConfluenceInput, _content)
