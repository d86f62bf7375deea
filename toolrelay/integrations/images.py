"""generate_image: OpenAI image generation (dall-e-2, dall-e-3, gpt-image-1).

Each model accepts a different parameter set; the request body is
clamped to what the chosen model supports.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field

from toolrelay.api.models import ImageBlock, TextBlock, ToolOutputBlock
from toolrelay.api.tools import ToolRegistry
from toolrelay.config import Settings
from toolrelay.errors import ToolExecutionFailure
from toolrelay.integrations.base import error_detail

logger = logging.getLogger(__name__)

_DALLE2_SIZES = ("256x256", "512x512", "1024x1024")
_DALLE3_SIZES = ("1024x1024", "1792x1024", "1024x1792")
_GPT_IMAGE_SIZES = ("auto", "1024x1024", "1536x1024", "1024x1536")
_GPT_IMAGE_QUALITIES = ("auto", "high", "medium", "low")


class ImageInput(BaseModel):
    prompt: str = Field(description="The description of the image to generate")
    n: int | None = Field(
        None,
        ge=1,
        le=10,
        description="The number of images to generate. Defaults to 1. dalle-3 only supports 1.",
    )
    size: Literal["256x256", "512x512", "1024x1024"] | None = Field(
        None,
        description=(
            "The size of the generated image. Larger sizes produce more detailed images. "
            "Defaults to 1024x1024. dall-e-3 only supports 1024x1024."
        ),
    )
    model: Literal["dall-e-3", "dall-e-2", "gpt-image-1"] | None = Field(
        None, description="The model to use for image generation."
    )
    quality: Literal["standard", "hd", "low"] | None = Field(None, description="The quality of the generated image.")
    response_format: Literal["url", "b64_json"] | None = Field(
        None, description="The response format of the generated image."
    )


def build_image_request(params: ImageInput) -> dict[str, Any]:
    """Request body for /images/generations, restricted to the model's parameters."""
    model = params.model or "dall-e-3"
    body: dict[str, Any] = {"prompt": params.prompt, "model": model}

    if model == "dall-e-2":
        body["n"] = params.n or 1
        body["size"] = params.size if params.size in _DALLE2_SIZES else "1024x1024"
        body["quality"] = "standard"
        body["response_format"] = params.response_format or "url"
    elif model == "dall-e-3":
        body["n"] = 1
        body["size"] = params.size if params.size in _DALLE3_SIZES else "1024x1024"
        body["quality"] = params.quality if params.quality in ("standard", "hd") else "standard"
        body["response_format"] = params.response_format or "url"
    else:
        # gpt-image-1 has no response_format; it always returns b64_json
        if params.n:
            body["n"] = max(1, min(10, params.n))
        body["size"] = params.size if params.size in _GPT_IMAGE_SIZES else "auto"
        body["quality"] = params.quality if params.quality in _GPT_IMAGE_QUALITIES else "low"
    return body


async def generate_image(
    params: ImageInput,
    *,
    _settings: Settings,
    _http: httpx.AsyncClient,
) -> list[ToolOutputBlock]:
    body = build_image_request(params)
    logger.info("Calling OpenAI image API: model=%s size=%s", body["model"], body.get("size"))

    try:
        response = await _http.post(
            f"{_settings.openai_api_url}/images/generations",
            json=body,
            headers={"Authorization": f"Bearer {_settings.openai_api_key}"},
            timeout=_settings.tool_timeout,
        )
    except httpx.HTTPError as e:
        raise ToolExecutionFailure(f"Error generating image: {e}") from e

    if response.status_code >= 400:
        raise ToolExecutionFailure(f"Error generating image: {error_detail(response)}")

    try:
        images = response.json().get("data") or []
    except ValueError as e:
        raise ToolExecutionFailure(f"Error generating image: invalid JSON ({e})") from e

    if not images:
        return [TextBlock(text="Failed to generate image")]

    blocks: list[ToolOutputBlock] = []
    for image in images:
        if image.get("b64_json"):
            caption = f"Generated image (base64)\nOriginal prompt: {params.prompt}"
            blocks.append(TextBlock(text=caption))
            blocks.append(ImageBlock(data=image["b64_json"], media_type="image/png"))
        elif image.get("url"):
            blocks.append(
                TextBlock(
                    text=(
                        f"Generated image URL: {image['url']}\n"
                        f"Original prompt: {params.prompt}\n"
                        f"Revised prompt: {image.get('revised_prompt')}"
                    )
                )
            )
        else:
            blocks.append(TextBlock(text="Unsupported image type or missing image data."))
    return blocks


def register_image_tools(registry: ToolRegistry, settings: Settings, http: httpx.AsyncClient) -> None:
    async def _generate(params: ImageInput) -> list[ToolOutputBlock]:
        return await generate_image(params, _settings=settings, _http=http)

    registry.register(
        "generate_image",
        "Generate an image using OpenAI's DALL-E or GPT Image models",
        ImageInput,
        _generate,
    )
