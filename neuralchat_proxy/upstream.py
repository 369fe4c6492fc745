from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from neuralchat_proxy.config import ModelCandidate, UpstreamConvention
from neuralchat_proxy.models import GenerationRequest


@dataclass(slots=True)
class UpstreamRequestSpec:
    url: str
    payload: dict[str, Any]


@dataclass(frozen=True, slots=True)
class UpstreamEndpoints:
    chat_completions_base_url: str
    raw_generation_base_url: str

    def base_url_for(self, candidate: ModelCandidate) -> str:
        if candidate.base_url:
            return candidate.base_url
        if candidate.convention is UpstreamConvention.RAW_GENERATION:
            return self.raw_generation_base_url.rstrip("/")
        return self.chat_completions_base_url.rstrip("/")


def _prepare_chat_completions_payload(
    model: str, request: GenerationRequest
) -> dict[str, Any]:
    parameters = request.parameters
    return {
        "model": model,
        "messages": [{"role": "user", "content": request.prompt}],
        "max_tokens": parameters.max_new_tokens,
        "temperature": parameters.temperature,
        "top_p": parameters.top_p,
        "stream": False,
    }


def _prepare_raw_generation_payload(request: GenerationRequest) -> dict[str, Any]:
    parameters = request.parameters
    upstream_parameters: dict[str, Any] = dict(parameters.extra_parameters())
    upstream_parameters.update(
        {
            "max_new_tokens": parameters.max_new_tokens,
            "temperature": parameters.temperature,
            "top_p": parameters.top_p,
        }
    )
    return {"inputs": request.prompt, "parameters": upstream_parameters}


def prepare_upstream_request(
    candidate: ModelCandidate,
    request: GenerationRequest,
    endpoints: UpstreamEndpoints,
) -> UpstreamRequestSpec:
    base_url = endpoints.base_url_for(candidate)
    if candidate.convention is UpstreamConvention.RAW_GENERATION:
        return UpstreamRequestSpec(
            url=f"{base_url}/{candidate.model}",
            payload=_prepare_raw_generation_payload(request),
        )
    return UpstreamRequestSpec(
        url=f"{base_url}/chat/completions",
        payload=_prepare_chat_completions_payload(candidate.model, request),
    )


def build_upstream_headers(api_token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_token}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
