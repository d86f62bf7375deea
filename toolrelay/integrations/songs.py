"""Song generation through Suno: the classic self-hosted API and AceData's hosted one."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from toolrelay.api.models import TextBlock
from toolrelay.api.tools import ToolRegistry
from toolrelay.config import Settings
from toolrelay.errors import ToolExecutionFailure
from toolrelay.integrations.base import error_detail

logger = logging.getLogger(__name__)

_LYRICS_DESCRIPTION = (
    "The lyrics for the song, do not include instructions what the lyrics should be, "
    "just the lyrics themselves"
)


class ClassicSongInput(BaseModel):
    prompt: str = Field(description=_LYRICS_DESCRIPTION)
    tags: str | None = Field(None, description="genre with the song.")
    title: str = Field(description="The title of the song.")
    make_instrumental: bool = Field(False, description="Whether to create an instrumental version of the song.")
    wait_audio: bool = Field(True, description="Whether to wait for the audio to be generated.")


class AceSongInput(BaseModel):
    musicText: str = Field(description=_LYRICS_DESCRIPTION)
    musicStyle: str = Field(description='The style of the music (e.g., "rock", "pop", "jazz").')


async def _post_json(
    http: httpx.AsyncClient,
    url: str,
    body: dict[str, Any],
    *,
    service: str,
    headers: dict[str, str] | None = None,
    timeout: float | None = None,
) -> Any:
    try:
        response = await http.post(url, json=body, headers=headers, timeout=timeout)
    except httpx.HTTPError as e:
        raise ToolExecutionFailure(f"Error creating song with {service}: {e}") from e
    if response.status_code >= 400:
        raise ToolExecutionFailure(f"Error creating song with {service}: {error_detail(response)}")
    try:
        return response.json()
    except ValueError as e:
        raise ToolExecutionFailure(f"Error creating song with {service}: invalid JSON ({e})") from e


async def create_song_classic(
    params: ClassicSongInput,
    *,
    _settings: Settings,
    _http: httpx.AsyncClient,
) -> list[TextBlock]:
    songs = await _post_json(
        _http,
        f"{_settings.suno_api_url}/api/custom_generate",
        params.model_dump(exclude_none=True),
        service="Suno AI",
        timeout=_settings.tool_timeout,
    )
    logger.debug("Suno AI response: %s", songs)

    return [
        TextBlock(
            text=(
                f'Generated song "{song.get("title", "")}":\n'
                f"Lyrics:\n{song.get('lyric', '')}\n\n"
                f"Audio URL: {song.get('audio_url', '')}\n"
                f"Video URL: {song.get('video_url', '')}"
            )
        )
        for song in songs or []
    ]


async def create_song_ace(
    params: AceSongInput,
    *,
    _settings: Settings,
    _http: httpx.AsyncClient,
) -> list[TextBlock]:
    body = {
        "action": "generate",
        "model": "chirp-v3-0",
        "lyric": params.musicText,
        "custom": True,
        "instrumental": False,
        "style": params.musicStyle,
        "title": "Generated Song",
    }
    data = await _post_json(
        _http,
        f"{_settings.acedata_api_url}/suno/audios",
        body,
        service="ACE Data",
        headers={
            "Accept": "application/json",
            "Authorization": f"Bearer {_settings.acedata_api_key}",
        },
        timeout=_settings.tool_timeout,
    )
    logger.debug("ACE Data response: %s", data)

    songs = (data.get("data") or []) if data.get("success") else []
    if not songs:
        return [TextBlock(text="Failed to generate song")]

    return [
        TextBlock(
            text=(
                f'Generated song "{song.get("title", "")}":\n'
                f"Lyrics:\n{song.get('lyric', '')}\n\n"
                f"Style: {song.get('style', '')}\n"
                f"Audio URL: {song.get('audio_url', '')}\n"
                f"Video URL: {song.get('video_url', '')}"
            )
        )
        for song in songs
    ]


def register_song_tools(registry: ToolRegistry, settings: Settings, http: httpx.AsyncClient) -> None:
    async def _classic(params: ClassicSongInput) -> list[TextBlock]:
        return await create_song_classic(params, _settings=settings, _http=http)

    async def _ace(params: AceSongInput) -> list[TextBlock]:
        return await create_song_ace(params, _settings=settings, _http=http)

    registry.register(
        "create_song_with_suno_ai_classic",
        "Creates a song using Suno AI classic API, does not currently support instant video generation",
        ClassicSongInput,
        _classic,
    )
    registry.register(
        "create_song_suno_ai_ace",
        "Create a song using Suno ACE API, supports music videos as well",
        AceSongInput,
        _ace,
    )
