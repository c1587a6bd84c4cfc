from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from shared.config import get_openai_settings

logger = logging.getLogger(__name__)


class AIResponseError(RuntimeError):
    """The completion API was unreachable, failed, or returned unusable content."""


def ai_enabled() -> bool:
    return bool(get_openai_settings()["api_key"])


def parse_json_content(content: str) -> Any:
    text = (content or "").strip()
    if not text:
        raise AIResponseError("Completion API returned empty content")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise AIResponseError("Completion API returned non-JSON content") from exc


def call_completion_json(system_prompt: str, user_prompt: str, *, temperature: float) -> Any:
    """
    Single chat completion call; the reply is expected to be a JSON document
    (object or array). Any failure is raised as AIResponseError so callers can
    switch to their fallback content.
    """
    settings = get_openai_settings()
    api_key = settings["api_key"]
    if not api_key:
        raise AIResponseError("OPENAI_API_KEY is not configured")

    payload = {
        "model": settings["model"],
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": temperature,
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    url = f"{settings['base_url']}/chat/completions"
    timeout = httpx.Timeout(settings["timeout"], connect=10.0)

    try:
        with httpx.Client(timeout=timeout) as client:
            resp = client.post(url, headers=headers, json=payload)
    except httpx.HTTPError as exc:
        logger.error("Completion request failed: %s", exc)
        raise AIResponseError(f"Completion request failed: {exc}") from exc

    if resp.status_code >= 300:
        logger.error("Completion API error: %s - %s", resp.status_code, resp.text)
        raise AIResponseError(f"Completion API error {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise AIResponseError("Completion API returned a non-JSON envelope") from exc
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise AIResponseError("Completion API returned an unexpected envelope")
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise AIResponseError("Completion API returned no message content")
    return parse_json_content(content)
