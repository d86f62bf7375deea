"""External integration adapters.

Public API: build_registry() -- a fresh ToolRegistry with every
integration tool registered.
"""

import httpx

from toolrelay.api.tools import ToolRegistry
from toolrelay.config import Settings
from toolrelay.integrations.catalog import register_catalog_tools
from toolrelay.integrations.confluence import register_confluence_tools
from toolrelay.integrations.images import register_image_tools
from toolrelay.integrations.songs import register_song_tools
from toolrelay.integrations.weather import register_weather_tools


def build_registry(settings: Settings, http: httpx.AsyncClient) -> ToolRegistry:
    """Create a ToolRegistry with all integration tools bound to http."""
    registry = ToolRegistry(tool_timeout=settings.tool_timeout)
    register_weather_tools(registry, settings, http)
    register_song_tools(registry, settings, http)
    register_confluence_tools(registry, settings, http)
    register_image_tools(registry, settings, http)
    register_catalog_tools(registry, settings, http)
    return registry


__all__ = ["build_registry"]
