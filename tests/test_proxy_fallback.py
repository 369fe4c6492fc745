from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from neuralchat_proxy.config import ModelCandidate, UpstreamConvention
from neuralchat_proxy.errors import MisconfiguredError
from neuralchat_proxy.models import GenerationRequest
from neuralchat_proxy.proxy import FallbackProxy
from neuralchat_proxy.upstream import UpstreamEndpoints
from tests.client_test_utils import RecordingUpstream


def _proxy(
    models: list[str],
    upstream: RecordingUpstream,
    *,
    api_token: str | None = "token-1",
) -> FallbackProxy:
    proxy = FallbackProxy(
        candidates=[ModelCandidate(model=model) for model in models],
        endpoints=UpstreamEndpoints(
            chat_completions_base_url="http://chat.local/v1",
            raw_generation_base_url="http://raw.local/models",
        ),
        api_token=api_token,
    )
    asyncio.run(proxy.client.aclose())
    proxy.client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return proxy


def _generate(proxy: FallbackProxy, prompt: str = "hello") -> Any:
    async def _run() -> Any:
        try:
            return await proxy.generate(
                GenerationRequest(prompt=prompt), request_id="req-test"
            )
        finally:
            await proxy.close()

    return asyncio.run(_run())


def test_first_candidate_success_makes_a_single_call() -> None:
    upstream = RecordingUpstream(
        {"m1": httpx.Response(200, json={"generated_text": "hello back"})}
    )
    outcome = _generate(_proxy(["m1", "m2", "m3"], upstream))

    assert outcome.status_code == 200
    assert outcome.model == "m1"
    assert outcome.content == [{"generated_text": "hello back", "model": "m1"}]
    assert upstream.calls == ["m1"]


def test_kth_candidate_success_after_rejections() -> None:
    upstream = RecordingUpstream(
        {
            "m1": httpx.Response(401, json={"error": "unauthorized"}),
            "m2": httpx.Response(502, json={"error": "bad gateway"}),
            "m3": httpx.Response(
                200, json={"choices": [{"message": {"content": "from m3"}}]}
            ),
            "m4": httpx.Response(200, json={"generated_text": "never"}),
        }
    )
    outcome = _generate(_proxy(["m1", "m2", "m3", "m4"], upstream))

    assert outcome.status_code == 200
    assert outcome.content == [{"generated_text": "from m3", "model": "m3"}]
    assert outcome.attempted_models == ["m1", "m2", "m3"]
    assert upstream.calls == ["m1", "m2", "m3"]


def test_loading_candidate_stops_the_scan() -> None:
    upstream = RecordingUpstream(
        {
            "m1": httpx.ConnectTimeout("timed out"),
            "m2": httpx.Response(503, json={"error": "loading", "estimated_time": 3}),
            "m3": httpx.Response(200, json={"generated_text": "never"}),
        }
    )
    outcome = _generate(_proxy(["m1", "m2", "m3"], upstream))

    assert outcome.status_code == 503
    assert outcome.content == {"error": "loading", "estimated_time": 3}
    assert outcome.model == "m2"
    assert upstream.calls == ["m1", "m2"]


def test_exhaustion_keeps_only_the_last_transport_error() -> None:
    upstream = RecordingUpstream(
        {
            "m1": httpx.Response(404, json={"error": "missing"}),
            "m2": httpx.ConnectError("connection refused"),
        }
    )
    outcome = _generate(_proxy(["m1", "m2"], upstream))

    assert outcome.status_code == 500
    assert outcome.model is None
    assert outcome.content == {
        "error": "All models failed to respond",
        "details": {"model": "m2", "error": "connection refused"},
    }


def test_malformed_json_is_a_transport_failure() -> None:
    upstream = RecordingUpstream(
        {
            "m1": httpx.Response(200, content=b"{not json"),
            "m2": httpx.Response(200, json=[{"generated_text": "ok"}]),
        }
    )
    outcome = _generate(_proxy(["m1", "m2"], upstream))

    assert outcome.status_code == 200
    assert outcome.content == [{"generated_text": "ok", "model": "m2"}]
    assert upstream.calls == ["m1", "m2"]


def test_missing_token_raises_before_any_call() -> None:
    upstream = RecordingUpstream({})
    proxy = _proxy(["m1"], upstream, api_token="   ")

    with pytest.raises(MisconfiguredError):
        _generate(proxy)
    assert upstream.calls == []


def test_chat_completions_request_body_wraps_prompt_as_user_turn() -> None:
    upstream = RecordingUpstream(
        {"m1": httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]})}
    )
    _generate(_proxy(["m1"], upstream), prompt="What is 2+2?")

    sent = upstream.requests[0]
    assert str(sent.url) == "http://chat.local/v1/chat/completions"
    assert sent.headers["authorization"] == "Bearer token-1"
    assert json.loads(sent.content) == {
        "model": "m1",
        "messages": [{"role": "user", "content": "What is 2+2?"}],
        "max_tokens": 512,
        "temperature": 0.7,
        "top_p": 0.9,
        "stream": False,
    }


def test_candidates_mix_conventions_per_entry() -> None:
    upstream = RecordingUpstream(
        {
            "chat-model": httpx.Response(500, json={"error": "down"}),
            "raw-model": httpx.Response(200, json=[{"generated_text": "raw ok"}]),
        }
    )
    proxy = _proxy([], upstream)
    proxy.candidates = (
        ModelCandidate(model="chat-model"),
        ModelCandidate(model="raw-model", convention=UpstreamConvention.RAW_GENERATION),
    )
    outcome = _generate(proxy)

    assert outcome.content == [{"generated_text": "raw ok", "model": "raw-model"}]
    assert str(upstream.requests[0].url) == "http://chat.local/v1/chat/completions"
    assert str(upstream.requests[1].url) == "http://raw.local/models/raw-model"
    assert json.loads(upstream.requests[1].content) == {
        "inputs": "hello",
        "parameters": {"max_new_tokens": 512, "temperature": 0.7, "top_p": 0.9},
    }



def test_outcome_records_the_attempt_chain() -> None:
    upstream = RecordingUpstream(
        {
            "m1": httpx.ConnectError("refused"),
            "m2": httpx.Response(400, json={"error": "bad"}),
            "m3": httpx.Response(503, json={"error": "loading"}),
        }
    )
    outcome = _generate(_proxy(["m1", "m2", "m3"], upstream))

    chain = [attempt.as_dict() for attempt in outcome.attempts]
    assert [record["outcome"] for record in chain] == [
        "transport_error",
        "rejected",
        "loading",
    ]
    assert chain[0]["error"] == "ConnectError: refused"
    assert "status" not in chain[0]
    assert chain[1]["status"] == 400
    assert chain[2]["status"] == 503
    assert all(record["latency_ms"] >= 0 for record in chain)
    assert outcome.attempted_models == ["m1", "m2", "m3"]


def test_empty_transport_error_message_falls_back_to_type() -> None:
    upstream = RecordingUpstream({"m1": httpx.ReadTimeout("")})
    outcome = _generate(_proxy(["m1"], upstream))

    assert outcome.status_code == 500
    assert outcome.content["details"] == {
        "model": "m1",
        "error": "ReadTimeout: upstream timed out",
    }
