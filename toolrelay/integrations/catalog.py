"""get_entities_by_query: Backstage catalog search."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from toolrelay.api.models import TextBlock
from toolrelay.api.tools import ToolRegistry
from toolrelay.config import Settings
from toolrelay.errors import ToolExecutionFailure
from toolrelay.integrations.base import error_detail, truncate

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


class EntityQueryInput(BaseModel):
    filter: str = Field(
        description=(
            "Filter for just the entities defined by this filter, e.g. metadata.tags=foo for tag foo "
            "in Backstage or metadata.name=<uid retrieved> to get details about a specific element"
        )
    )
    fields: str | None = Field(None, description="Restrict to just these fields in the response.")
    limit: int | None = Field(None, description="Number of APIs to return in the response.")
    orderField: str | None = Field(None, description="The fields to sort returned results by.")
    cursor: str | None = Field(None, description="Cursor to a set page of results.")


def build_query_params(params: EntityQueryInput) -> dict[str, str]:
    """A bare filter value is treated as a tag."""
    query = {
        "filter": params.filter if "=" in params.filter else f"metadata.tags={params.filter}",
        "limit": str(params.limit or DEFAULT_LIMIT),
    }
    if params.fields:
        query["fields"] = params.fields
    if params.orderField:
        query["orderField"] = params.orderField
    if params.cursor:
        query["cursor"] = params.cursor
    return query


def _format_entity(entity: dict[str, Any], detailed: bool) -> str:
    metadata = entity.get("metadata") or {}
    spec = entity.get("spec") or {}
    annotations = metadata.get("annotations") or {}

    lines = [
        f"Entity title: {metadata.get('title')}",
        f"Entity id: {metadata.get('name')}",
        f"Entity type: {spec.get('type')}",
        f"Entity owner: {spec.get('owner')}",
        f"Entity description: {metadata.get('description')}",
        f"View URL (points to Postman): {annotations.get('backstage.io/view-url')}",
    ]
    if not detailed:
        lines += [
            f"Entity namespace: {metadata.get('namespace')}",
            f"Entity uid: {metadata.get('uid')}",
            f"Entity lifecycle: {spec.get('lifecycle')}",
            f"Entity system: {spec.get('system')}",
            "---",
        ]
        return "\n".join(lines)

    relations = ", ".join(f"{r.get('type')} -> {r.get('targetRef')}" for r in entity.get("relations") or [])
    lines += [
        f"Entity definition: {spec.get('definition')}",
        f"Entity namespace: {metadata.get('namespace')}",
        f"Entity uid: {metadata.get('uid')}",
        f"Entity etag: {metadata.get('etag')}",
        f"Entity lifecycle: {spec.get('lifecycle')}",
        f"Entity system: {spec.get('system')}",
        f"Entity relations: {relations}",
        f"Entity apiVersion: {entity.get('apiVersion')}",
        f"Entity kind: {entity.get('kind')}",
        "Entity annotations: " + ", ".join(f"{k}: {v}" for k, v in annotations.items()),
    ]
    return "\n".join(lines)


async def get_entities_by_query(
    params: EntityQueryInput,
    *,
    _settings: Settings,
    _http: httpx.AsyncClient,
) -> list[TextBlock]:
    if not _settings.backstage_base_url:
        raise ToolExecutionFailure("Error getting entities by query: BACKSTAGE_BASE_URL not configured")

    query = build_query_params(params)
    logger.debug("Backstage filter: %s", query["filter"])
    try:
        response = await _http.get(
            f"{_settings.backstage_base_url}/entities/by-query",
            params=query,
            headers={"Accept": "application/json"},
        )
    except httpx.HTTPError as e:
        raise ToolExecutionFailure(f"Error getting entities by query: {e}") from e

    if response.status_code >= 400:
        raise ToolExecutionFailure(f"Error getting entities by query: {error_detail(response)}")

    try:
        data = response.json()
    except ValueError as e:
        raise ToolExecutionFailure(f"Error getting entities by query: invalid JSON ({e})") from e

    items = data.get("items") or []
    if not items:
        return [TextBlock(text="No entities found")]

    header = f"Total items found: {data.get('totalItems')}\n\n"
    if len(items) == 1:
        text = header + _format_entity(items[0], detailed=True)
    else:
        text = header + "\n".join(_format_entity(item, detailed=False) for item in items)
    return [TextBlock(text=truncate(text, _settings.truncation_limit))]


def register_catalog_tools(registry: ToolRegistry, settings: Settings, http: httpx.AsyncClient) -> None:
    async def _query(params: EntityQueryInput) -> list[TextBlock]:
        return await get_entities_by_query(params, _settings=settings, _http=http)

    registry.register(
        "get_entities_by_query",
        "Search for Backstage API entities by a given query.",
        EntityQueryInput,
        _query,
    )
