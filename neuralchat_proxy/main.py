from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from neuralchat_proxy.audit import AttemptChainLog
from neuralchat_proxy.config import load_proxy_config
from neuralchat_proxy.errors import ChatProxyError
from neuralchat_proxy.models import ProxyOutcome, parse_generation_request
from neuralchat_proxy.proxy import FallbackProxy
from neuralchat_proxy.settings import get_settings
from neuralchat_proxy.upstream import UpstreamEndpoints

CHAT_PATH = "/api/chat"

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,PATCH,DELETE,POST,PUT",
    "Access-Control-Allow-Headers": (
        "X-CSRF-Token, X-Requested-With, Accept, Accept-Version, Content-Length, "
        "Content-MD5, Content-Type, Date, X-Api-Version"
    ),
}

app = FastAPI(
    title="NeuralChat Proxy",
    description="Chat proxy with ordered model fallback over hosted inference APIs.",
    version="0.1.0",
)

logger = logging.getLogger("uvicorn.error")


def _outcome_response(outcome: ProxyOutcome, request_id: str) -> JSONResponse:
    headers = dict(CORS_HEADERS)
    headers["x-proxy-request-id"] = request_id
    if outcome.attempted_models:
        headers["x-proxy-attempts"] = ",".join(outcome.attempted_models)
    if outcome.model:
        headers["x-proxy-model"] = outcome.model
    return JSONResponse(
        status_code=outcome.status_code, content=outcome.content, headers=headers
    )


def _method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={"error": "Method not allowed"},
        headers=CORS_HEADERS,
    )


async def _record_attempt_chain(outcome: ProxyOutcome, request_id: str) -> None:
    attempt_log: AttemptChainLog | None = getattr(app.state, "attempt_log", None)
    if attempt_log is None or not attempt_log.enabled:
        return
    try:
        await asyncio.to_thread(attempt_log.record, outcome, request_id)
    except OSError as exc:
        logger.warning(
            "attempt_log_write_failed request_id=%s path=%s error=%s",
            request_id,
            attempt_log.path,
            exc,
        )


async def _read_json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    proxy_config = load_proxy_config(settings.candidates_config_path)
    app.state.settings = settings
    app.state.proxy_config = proxy_config
    app.state.attempt_log = AttemptChainLog(
        path=settings.audit_log_path,
        enabled=settings.audit_log_enabled,
    )
    app.state.chat_proxy = FallbackProxy(
        candidates=proxy_config.candidates,
        endpoints=UpstreamEndpoints(
            chat_completions_base_url=settings.chat_completions_base_url,
            raw_generation_base_url=settings.raw_generation_base_url,
        ),
        api_token=settings.api_token,
        connect_timeout_seconds=settings.upstream_connect_timeout_seconds,
        read_timeout_seconds=settings.upstream_read_timeout_seconds,
        write_timeout_seconds=settings.upstream_write_timeout_seconds,
        pool_timeout_seconds=settings.upstream_pool_timeout_seconds,
    )
    if settings.api_token is None:
        logger.warning("HF_API_TOKEN is not set; chat requests will fail with 500")
    logger.info(
        "startup complete candidates=%s audit_log_enabled=%s audit_log_path=%s",
        ",".join(proxy_config.models()),
        settings.audit_log_enabled,
        settings.audit_log_path,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    proxy: FallbackProxy | None = getattr(app.state, "chat_proxy", None)
    if proxy is not None:
        await proxy.close()
    logger.info("shutdown complete")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.api_route(
    CHAT_PATH,
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
async def chat(request: Request) -> Response:
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)
    if request.method != "POST":
        return _method_not_allowed()

    request_id = (
        request.headers.get("x-request-id")
        or request.headers.get("x-correlation-id")
        or uuid4().hex[:12]
    )
    try:
        generation_request = parse_generation_request(await _read_json_body(request))
        proxy: FallbackProxy = app.state.chat_proxy
        outcome = await proxy.generate(generation_request, request_id=request_id)
    except ChatProxyError:
        raise
    except Exception as exc:
        logger.exception("chat_request_failed request_id=%s", request_id)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
            headers=CORS_HEADERS,
        )
    await _record_attempt_chain(outcome, request_id)
    return _outcome_response(outcome, request_id)


@app.exception_handler(ChatProxyError)
async def chat_proxy_error_handler(_: Request, exc: ChatProxyError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_content(), headers=CORS_HEADERS
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
    if exc.status_code == 405 and request.url.path == CHAT_PATH:
        return _method_not_allowed()
    return await http_exception_handler(request, exc)


def run() -> None:
    import uvicorn

    uvicorn.run("neuralchat_proxy.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
