from __future__ import annotations

import logging
import time
from typing import Sequence
from uuid import uuid4

import httpx

from neuralchat_proxy.config import ModelCandidate
from neuralchat_proxy.errors import MisconfiguredError
from neuralchat_proxy.models import (
    AttemptLoading,
    AttemptRecord,
    AttemptRejected,
    AttemptSuccess,
    AttemptTransportError,
    GenerationRequest,
    ProxyOutcome,
    UpstreamAttemptResult,
)
from neuralchat_proxy.normalization import normalize_generation_payload
from neuralchat_proxy.upstream import (
    UpstreamEndpoints,
    build_upstream_headers,
    prepare_upstream_request,
)

MODEL_LOADING_STATUS = 503
ALL_MODELS_FAILED_MESSAGE = "All models failed to respond"
MISSING_TOKEN_MESSAGE = "API token not configured"

logger = logging.getLogger("uvicorn.error")


def _transport_error_message(exc: httpx.RequestError) -> str:
    message = str(exc).strip()
    if message:
        return message
    if isinstance(exc, httpx.TimeoutException):
        return f"{exc.__class__.__name__}: upstream timed out"
    return repr(exc)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


def _attempt_record(result: UpstreamAttemptResult, latency_ms: float) -> AttemptRecord:
    if isinstance(result, AttemptSuccess):
        return AttemptRecord(
            model=result.model,
            outcome="success",
            latency_ms=latency_ms,
            status_code=result.status_code,
        )
    if isinstance(result, AttemptLoading):
        return AttemptRecord(
            model=result.model,
            outcome="loading",
            latency_ms=latency_ms,
            status_code=result.status_code,
        )
    if isinstance(result, AttemptRejected):
        return AttemptRecord(
            model=result.model,
            outcome="rejected",
            latency_ms=latency_ms,
            status_code=result.status_code,
        )
    return AttemptRecord(
        model=result.model,
        outcome="transport_error",
        latency_ms=latency_ms,
        error=f"{result.error_type}: {result.error}",
    )


class FallbackProxy:
    def __init__(
        self,
        *,
        candidates: Sequence[ModelCandidate],
        endpoints: UpstreamEndpoints,
        api_token: str | None,
        connect_timeout_seconds: float = 5.0,
        read_timeout_seconds: float = 60.0,
        write_timeout_seconds: float = 30.0,
        pool_timeout_seconds: float = 5.0,
    ) -> None:
        self.candidates = tuple(candidates)
        self.endpoints = endpoints
        self.api_token = api_token
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout=None,
                connect=max(0.1, float(connect_timeout_seconds)),
                read=max(0.1, float(read_timeout_seconds)),
                write=max(0.1, float(write_timeout_seconds)),
                pool=max(0.1, float(pool_timeout_seconds)),
            ),
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def attempt_candidate(
        self,
        candidate: ModelCandidate,
        request: GenerationRequest,
        *,
        api_token: str,
        request_id: str,
        attempt: int,
    ) -> UpstreamAttemptResult:
        request_spec = prepare_upstream_request(candidate, request, self.endpoints)
        total = len(self.candidates)
        logger.info(
            "proxy_attempt request_id=%s model=%s convention=%s attempt=%d/%d",
            request_id,
            candidate.model,
            candidate.convention.value,
            attempt,
            total,
        )
        try:
            upstream = await self.client.post(
                request_spec.url,
                json=request_spec.payload,
                headers=build_upstream_headers(api_token),
            )
        except httpx.RequestError as exc:
            error = _transport_error_message(exc)
            logger.warning(
                "proxy_request_error request_id=%s model=%s attempt=%d/%d error_type=%s error=%s",
                request_id,
                candidate.model,
                attempt,
                total,
                exc.__class__.__name__,
                error,
            )
            return AttemptTransportError(
                error=error,
                model=candidate.model,
                error_type=exc.__class__.__name__,
            )

        try:
            payload = upstream.json()
        except ValueError as exc:
            logger.warning(
                "proxy_invalid_json request_id=%s model=%s status=%d error=%s",
                request_id,
                candidate.model,
                upstream.status_code,
                exc,
            )
            return AttemptTransportError(
                error=f"Invalid JSON in upstream response: {exc}",
                model=candidate.model,
                error_type=exc.__class__.__name__,
            )

        logger.info(
            "proxy_upstream_response request_id=%s model=%s status=%d",
            request_id,
            candidate.model,
            upstream.status_code,
        )
        if upstream.is_success:
            return AttemptSuccess(
                payload=payload,
                model=candidate.model,
                status_code=upstream.status_code,
            )
        if upstream.status_code == MODEL_LOADING_STATUS:
            return AttemptLoading(payload=payload, model=candidate.model)
        return AttemptRejected(
            status_code=upstream.status_code,
            payload=payload,
            model=candidate.model,
        )

    async def generate(
        self,
        request: GenerationRequest,
        request_id: str | None = None,
    ) -> ProxyOutcome:
        api_token = (self.api_token or "").strip()
        if not api_token:
            raise MisconfiguredError(MISSING_TOKEN_MESSAGE)

        rid = request_id or uuid4().hex[:12]
        attempts: list[AttemptRecord] = []
        last_error = None

        for index, candidate in enumerate(self.candidates, start=1):
            started = time.perf_counter()
            result = await self.attempt_candidate(
                candidate,
                request,
                api_token=api_token,
                request_id=rid,
                attempt=index,
            )
            attempts.append(_attempt_record(result, _elapsed_ms(started)))
            if isinstance(result, AttemptSuccess):
                return ProxyOutcome(
                    status_code=200,
                    content=normalize_generation_payload(result.payload, result.model),
                    model=result.model,
                    attempts=attempts,
                )
            if isinstance(result, AttemptLoading):
                logger.info(
                    "proxy_model_loading request_id=%s model=%s", rid, result.model
                )
                return ProxyOutcome(
                    status_code=result.status_code,
                    content=result.payload,
                    model=result.model,
                    attempts=attempts,
                )
            last_error = result.failure_record()

        logger.error(
            "proxy_exhausted request_id=%s attempted_models=%s last_error=%s",
            rid,
            ",".join(attempt.model for attempt in attempts),
            last_error,
        )
        return ProxyOutcome(
            status_code=500,
            content={"error": ALL_MODELS_FAILED_MESSAGE, "details": last_error},
            attempts=attempts,
        )
