"""get_weather: current conditions from weatherapi.com."""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel, Field

from toolrelay.api.models import TextBlock
from toolrelay.api.tools import ToolRegistry
from toolrelay.config import Settings
from toolrelay.errors import ToolExecutionFailure

logger = logging.getLogger(__name__)


class WeatherInput(BaseModel):
    location: str = Field(description="The location to get the weather for")


async def get_weather(
    params: WeatherInput,
    *,
    _settings: Settings,
    _http: httpx.AsyncClient,
) -> list[TextBlock]:
    if not _settings.weather_api_key:
        logger.error("[WEATHER] No API key found in environment variables")
        raise ToolExecutionFailure("Weather API key not found")

    try:
        response = await _http.get(
            f"{_settings.weather_api_url}/current.json",
            params={"key": _settings.weather_api_key, "q": params.location, "aqi": "no"},
        )
    except httpx.HTTPError as e:
        raise ToolExecutionFailure(f"Error fetching weather: {e}") from e

    if response.status_code != 200:
        logger.error("[WEATHER] API error: %d %s", response.status_code, response.reason_phrase)
        raise ToolExecutionFailure(
            f"Weather API error: {response.status_code} {response.reason_phrase}"
        )

    try:
        data = response.json()
        name = data["location"]["name"]
        current = data["current"]
        text = (
            f"The current weather in {name} is {current['condition']['text']} "
            f"with a temperature of {current['temp_c']}°C ({current['temp_f']}°F)."
        )
    except (ValueError, KeyError, TypeError) as e:
        raise ToolExecutionFailure(f"Unexpected weather API response: {e}") from e

    return [TextBlock(text=text)]


def register_weather_tools(registry: ToolRegistry, settings: Settings, http: httpx.AsyncClient) -> None:
    async def _weather(params: WeatherInput) -> list[TextBlock]:
        return await get_weather(params, _settings=settings, _http=http)

    registry.register("get_weather", "Get the weather for a given location", WeatherInput, _weather)
