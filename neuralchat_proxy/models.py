from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from neuralchat_proxy.errors import InvalidInputError

PROMPT_REQUIRED_MESSAGE = "Prompt is required"


class GenerationParameters(BaseModel):
    # Unknown keys are forwarded to raw-generation upstreams.
    model_config = ConfigDict(extra="allow")

    max_new_tokens: int = Field(default=512, gt=0)
    temperature: float = Field(default=0.7, ge=0.0)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)

    @field_validator("max_new_tokens", "temperature", "top_p", mode="before")
    @classmethod
    def _null_means_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    def extra_parameters(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in (self.model_extra or {}).items()
            if value is not None
        }


class GenerationRequest(BaseModel):
    prompt: str
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)

    @field_validator("parameters", mode="before")
    @classmethod
    def _coerce_parameters(cls, value: Any) -> Any:
        if value is None:
            return {}
        return value


def parse_generation_request(body: Any) -> GenerationRequest:
    if not isinstance(body, dict):
        raise InvalidInputError(PROMPT_REQUIRED_MESSAGE)

    prompt = body.get("prompt")
    if not isinstance(prompt, str) or not prompt:
        raise InvalidInputError(PROMPT_REQUIRED_MESSAGE)

    try:
        return GenerationRequest.model_validate(
            {"prompt": prompt, "parameters": body.get("parameters")}
        )
    except ValidationError as exc:
        raise InvalidInputError(
            "Invalid generation parameters",
            details=exc.errors(include_url=False, include_context=False),
        ) from exc


@dataclass(slots=True)
class AttemptSuccess:
    payload: Any
    model: str
    status_code: int = 200


@dataclass(slots=True)
class AttemptLoading:
    payload: Any
    model: str
    status_code: int = 503


@dataclass(slots=True)
class AttemptRejected:
    status_code: int
    payload: Any
    model: str

    def failure_record(self) -> dict[str, Any]:
        return {"status": self.status_code, "payload": self.payload, "model": self.model}


@dataclass(slots=True)
class AttemptTransportError:
    error: str
    model: str
    error_type: str = "RequestError"

    def failure_record(self) -> dict[str, Any]:
        return {"model": self.model, "error": self.error}


UpstreamAttemptResult = Union[
    AttemptSuccess, AttemptLoading, AttemptRejected, AttemptTransportError
]


@dataclass(slots=True)
class AttemptRecord:
    model: str
    outcome: str
    latency_ms: float
    status_code: int | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "model": self.model,
            "outcome": self.outcome,
            "latency_ms": self.latency_ms,
        }
        if self.status_code is not None:
            record["status"] = self.status_code
        if self.error is not None:
            record["error"] = self.error
        return record


@dataclass(slots=True)
class ProxyOutcome:
    status_code: int
    content: Any
    model: str | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def attempted_models(self) -> list[str]:
        return [attempt.model for attempt in self.attempts]
