"""Helpers shared by the integration adapters."""

from __future__ import annotations

import json

import httpx


def truncate(text: str, limit: int) -> str:
    """Cap text at limit characters, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def error_detail(response: httpx.Response) -> str:
    """Best-effort error body for a failed upstream response."""
    try:
        return json.dumps(response.json())
    except ValueError:
        return response.text[:500] or f"{response.status_code} {response.reason_phrase}"
