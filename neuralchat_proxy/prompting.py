from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Sequence

DEFAULT_SYSTEM_PROMPT = (
    "You are NeuralChat, a helpful, friendly, and knowledgeable AI assistant. "
    "Provide clear, concise, and helpful responses."
)
DEFAULT_CONTEXT_EXCHANGES = 5
DEFAULT_LOADING_WAIT_SECONDS = 20
MIN_REPLY_CHARS = 5

EMPTY_REPLY_MESSAGE = (
    "I apologize, but I didn't generate a proper response. "
    "Could you please try asking again?"
)
RATE_LIMITED_MESSAGE = (
    "I'm receiving too many requests right now. Please wait a moment and try again."
)
SERVICE_UNAVAILABLE_MESSAGE = (
    "I'm having trouble generating a response. The AI service might be "
    "temporarily unavailable. Please try again in a moment."
)

Role = Literal["system", "user", "assistant"]


class PromptFormat(str, Enum):
    CHATML = "chatml"
    MISTRAL_INSTRUCT = "mistral_instruct"


# Everything from the first of these markers onward is template leakage.
_STOP_MARKERS: dict[PromptFormat, tuple[str, ...]] = {
    PromptFormat.CHATML: ("<|im_end|>", "<|im_start|>"),
    PromptFormat.MISTRAL_INSTRUCT: ("</s>", "[INST]"),
}


@dataclass(frozen=True, slots=True)
class ChatTurn:
    role: str
    content: str


@dataclass(slots=True)
class ConversationState:
    history: list[ChatTurn] = field(default_factory=list)
    ready: bool = False
    generating: bool = False

    def append(self, role: str, content: str) -> None:
        self.history.append(ChatTurn(role=role, content=content))


def _chat_role(role: str) -> Role:
    return "user" if role == "user" else "assistant"


def build_messages(
    history: Sequence[ChatTurn],
    user_message: str,
    *,
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    context_exchanges: int = DEFAULT_CONTEXT_EXCHANGES,
) -> list[dict[str, str]]:
    window = max(0, context_exchanges) * 2
    recent = list(history)[-window:] if window else []
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend(
        {"role": _chat_role(turn.role), "content": turn.content} for turn in recent
    )
    messages.append({"role": "user", "content": user_message})
    return messages


def _format_chatml(messages: Sequence[dict[str, str]]) -> str:
    blocks = [
        f"<|im_start|>{message['role']}\n{message['content']}<|im_end|>"
        for message in messages
    ]
    return "\n".join(blocks) + "\n<|im_start|>assistant\n"


def _format_mistral_instruct(messages: Sequence[dict[str, str]]) -> str:
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    pending_system = "\n\n".join(system_parts)
    prompt = "<s>"
    seen_user = False
    for message in messages:
        role = message["role"]
        if role == "system":
            continue
        if role == "user":
            seen_user = True
            content = message["content"]
            if pending_system:
                content = f"{pending_system}\n\n{content}"
                pending_system = ""
            prompt += f"[INST] {content} [/INST]"
        elif seen_user:
            # Assistant turns before the first [INST] have no slot.
            prompt += f" {message['content']}</s>"
    return prompt


def format_prompt(
    messages: Sequence[dict[str, str]],
    prompt_format: PromptFormat = PromptFormat.CHATML,
) -> str:
    if prompt_format is PromptFormat.MISTRAL_INSTRUCT:
        return _format_mistral_instruct(messages)
    return _format_chatml(messages)


def extract_generated_text(payload: Any) -> str:
    if isinstance(payload, list):
        first = payload[0] if payload else None
        if isinstance(first, dict) and isinstance(first.get("generated_text"), str):
            return first["generated_text"].strip()
        return ""
    if isinstance(payload, dict) and isinstance(payload.get("generated_text"), str):
        return payload["generated_text"].strip()
    return ""


def clean_reply(
    text: str, prompt_format: PromptFormat = PromptFormat.CHATML
) -> str:
    cleaned = text
    for marker in _STOP_MARKERS[prompt_format]:
        index = cleaned.find(marker)
        if index != -1:
            cleaned = cleaned[:index]
    cleaned = cleaned.strip()
    if len(cleaned) < MIN_REPLY_CHARS:
        return EMPTY_REPLY_MESSAGE
    return cleaned


def reply_for_error(status_code: int, payload: Any) -> str | None:
    error = payload.get("error") if isinstance(payload, dict) else None
    is_loading = isinstance(error, str) and "loading" in error
    if status_code == 503 or is_loading:
        wait = DEFAULT_LOADING_WAIT_SECONDS
        if isinstance(payload, dict):
            estimated = payload.get("estimated_time")
            if isinstance(estimated, (int, float)) and estimated > 0:
                wait = estimated
        return (
            "The AI model is starting up. This usually takes about "
            f"{math.ceil(wait)} seconds. Please try sending your message again "
            "in a moment!"
        )
    if status_code == 429:
        return RATE_LIMITED_MESSAGE
    return None
