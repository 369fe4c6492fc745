from __future__ import annotations

from typing import Any


def _chat_completion_content(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def normalize_generation_payload(payload: Any, model: str) -> Any:
    content = _chat_completion_content(payload)
    if content is not None:
        return [{"generated_text": content, "model": model}]

    if isinstance(payload, list):
        normalized = list(payload)
        if normalized and isinstance(normalized[0], dict):
            normalized[0] = {**normalized[0], "model": model}
        return normalized

    if isinstance(payload, dict) and payload.get("generated_text"):
        return [{**payload, "model": model}]

    return payload
