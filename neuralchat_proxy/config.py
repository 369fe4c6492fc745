from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CANDIDATE_MODELS = (
    "Qwen/Qwen2.5-7B-Instruct",
    "mistralai/Mistral-7B-Instruct-v0.3",
    "microsoft/Phi-3-mini-4k-instruct",
    "meta-llama/Meta-Llama-3-8B-Instruct",
)


class UpstreamConvention(str, Enum):
    CHAT_COMPLETIONS = "chat_completions"
    RAW_GENERATION = "raw_generation"


class ModelCandidate(BaseModel):
    model: str
    convention: UpstreamConvention = UpstreamConvention.CHAT_COMPLETIONS
    base_url: str | None = None

    model_config = {"frozen": True}

    @field_validator("model")
    @classmethod
    def _strip_model(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Candidate model identifier must not be empty.")
        return normalized

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().rstrip("/")
        return normalized or None


class ProxyConfig(BaseModel):
    candidates: tuple[ModelCandidate, ...] = Field(
        default_factory=lambda: tuple(
            ModelCandidate(model=model) for model in DEFAULT_CANDIDATE_MODELS
        )
    )

    model_config = {"frozen": True}

    @field_validator("candidates", mode="before")
    @classmethod
    def _coerce_candidates(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Expected at least one model candidate.")
        if not isinstance(value, (list, tuple)):
            raise ValueError("Expected 'candidates' to be a list.")
        if not value:
            raise ValueError("Expected at least one model candidate.")
        coerced: list[Any] = []
        for item in value:
            # Bare strings are shorthand for chat-completions candidates.
            if isinstance(item, str):
                coerced.append({"model": item})
            else:
                coerced.append(item)
        return coerced

    def models(self) -> list[str]:
        return [candidate.model for candidate in self.candidates]


def load_proxy_config(config_path: str | None) -> ProxyConfig:
    if not config_path:
        return ProxyConfig()

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Candidate config not found at '{config_path}'. "
            "Create it or unset CANDIDATES_CONFIG_PATH."
        )

    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Expected YAML object in '{config_path}'.")

    return ProxyConfig.model_validate(raw)
